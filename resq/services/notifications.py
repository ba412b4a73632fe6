"""Serverless side effects: SMS and OTP.

Both functions are hosted outside this service and invoked over HTTP. They
always resolve to ``{"success": bool, ...}``; a failure here must never block
an emergency from being raised.
"""

import logging

import httpx

from resq.config import FUNCTIONS_API_KEY, FUNCTIONS_BASE_URL, FUNCTIONS_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)


async def _invoke(function: str, body: dict) -> dict:
    if not FUNCTIONS_BASE_URL:
        logger.warning("FUNCTIONS_BASE_URL not set, cannot invoke %s", function)
        return {"success": False, "error": "functions endpoint not configured"}

    headers = {"Content-Type": "application/json"}
    if FUNCTIONS_API_KEY:
        headers["Authorization"] = f"Bearer {FUNCTIONS_API_KEY}"

    try:
        async with httpx.AsyncClient(timeout=FUNCTIONS_TIMEOUT_SECONDS) as client:
            resp = await client.post(
                f"{FUNCTIONS_BASE_URL.rstrip('/')}/{function}",
                headers=headers,
                json=body,
            )
            resp.raise_for_status()
        data = resp.json()
    except httpx.TimeoutException:
        logger.warning("%s timed out", function)
        return {"success": False, "error": "timeout"}
    except httpx.HTTPStatusError as e:
        logger.error("%s returned %s", function, e.response.status_code)
        return {"success": False, "error": f"http {e.response.status_code}"}
    except Exception as e:
        logger.error("%s failed: %s", function, e)
        return {"success": False, "error": str(e)}

    if not isinstance(data, dict):
        return {"success": False, "error": "unexpected response"}
    if not data.get("success"):
        # The function answered but the provider rejected the request
        logger.error("%s rejected: %s", function, data.get("error"))
        return {"success": False, "error": data.get("error") or "unknown error"}
    return data


async def send_sms(phone: str, message: str) -> dict:
    """Send an SMS through the send-sms function."""
    if not phone:
        return {"success": False, "error": "no phone number"}
    result = await _invoke("send-sms", {"to": phone, "message": message})
    if result["success"]:
        logger.info("SMS sent to %s", phone)
    return result


async def send_otp(phone: str) -> dict:
    """Request a one-time password; success carries ``otp_hash``."""
    if not phone:
        return {"success": False, "error": "no phone number"}
    result = await _invoke("send-otp", {"phone": phone})
    if result["success"] and not result.get("otp_hash"):
        return {"success": False, "error": "missing otp_hash"}
    return result


def sos_message(emergency_type: str, lat: float, lng: float, address: str | None = None) -> str:
    """Text sent to the family contact when an SOS is raised."""
    where = address or f"{lat:.5f}, {lng:.5f}"
    return (
        f"SOS! I need help! I'm in a {emergency_type} emergency.\n"
        f"Location: {where}\n"
        f"Map: https://www.google.com/maps?q={lat},{lng}"
    )
