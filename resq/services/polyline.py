"""Encoded polyline codec (Google / OLA Maps format).

Each coordinate is stored as the delta from the previous point, scaled by
1e5, zig-zag encoded and written in 5-bit groups offset by 63.
"""

PRECISION = 5


def _decode_value(encoded: str, index: int) -> tuple[int, int]:
    shift = 0
    result = 0
    while True:
        if index >= len(encoded):
            raise ValueError("Truncated polyline")
        byte = ord(encoded[index]) - 63
        index += 1
        result |= (byte & 0x1F) << shift
        shift += 5
        if byte < 0x20:
            break
    delta = ~(result >> 1) if result & 1 else result >> 1
    return delta, index


def decode(encoded: str, precision: int = PRECISION) -> list[tuple[float, float]]:
    """Decode a polyline string into (lat, lng) pairs."""
    factor = 10 ** precision
    coords: list[tuple[float, float]] = []
    index = 0
    lat = 0
    lng = 0
    while index < len(encoded):
        dlat, index = _decode_value(encoded, index)
        dlng, index = _decode_value(encoded, index)
        lat += dlat
        lng += dlng
        coords.append((lat / factor, lng / factor))
    return coords


def _encode_value(value: int) -> str:
    value = ~(value << 1) if value < 0 else value << 1
    chunks = []
    while value >= 0x20:
        chunks.append(chr((0x20 | (value & 0x1F)) + 63))
        value >>= 5
    chunks.append(chr(value + 63))
    return "".join(chunks)


def encode(coords: list[tuple[float, float]], precision: int = PRECISION) -> str:
    """Encode (lat, lng) pairs; coordinates are rounded to the codec precision."""
    factor = 10 ** precision
    out = []
    prev_lat = 0
    prev_lng = 0
    for lat, lng in coords:
        ilat = round(lat * factor)
        ilng = round(lng * factor)
        out.append(_encode_value(ilat - prev_lat))
        out.append(_encode_value(ilng - prev_lng))
        prev_lat = ilat
        prev_lng = ilng
    return "".join(out)
