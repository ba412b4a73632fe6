"""Tests for Pydantic models."""

import pytest
from pydantic import ValidationError

from resq.models.emergency import (
    EmergencyCreate,
    EmergencyRecord,
    EmergencyStatus,
    EmergencyType,
    Location,
    PatientSnapshot,
    normalize_emergency_type,
    parse_status,
    status_rank,
)
from resq.models.hospital import RouteInfo
from resq.models.profile import IdentityMethod, UserCreate


class TestEmergencyType:
    @pytest.mark.parametrize(
        "label,expected",
        [
            ("accident", EmergencyType.ACCIDENT),
            ("Heart_Emergency", EmergencyType.CARDIAC),
            ("heart_attack", EmergencyType.CARDIAC),
            ("maternity", EmergencyType.MATERNAL),
            ("respiratory", EmergencyType.RESPIRATORY),
            ("snakebite", EmergencyType.OTHER),
            ("", EmergencyType.OTHER),
            (None, EmergencyType.OTHER),
        ],
    )
    def test_normalize(self, label, expected):
        assert normalize_emergency_type(label) == expected

    def test_create_normalizes_type(self):
        body = EmergencyCreate(emergency_type="heart_emergency")
        assert body.emergency_type == "cardiac"
        assert body.location is None


class TestStatus:
    def test_aliases(self):
        assert parse_status("reached_hospital") == EmergencyStatus.ARRIVED
        assert parse_status("accepted") == EmergencyStatus.DISPATCHED
        assert parse_status(" Pending ") == EmergencyStatus.PENDING

    def test_unknown_status(self):
        with pytest.raises(ValueError):
            parse_status("teleported")

    def test_terminal_outcomes_share_rank(self):
        assert status_rank(EmergencyStatus.ADMITTED) == status_rank(EmergencyStatus.REFERRED)
        assert status_rank(EmergencyStatus.ARRIVED) < status_rank(EmergencyStatus.STABILIZED)


def test_location_bounds():
    with pytest.raises(ValidationError):
        Location(lat=91, lng=0)
    with pytest.raises(ValidationError):
        Location(lat=19.0, lng=72.8, accuracy=-1)


def test_record_is_terminal():
    record = EmergencyRecord(
        id="e1",
        emergency_type=EmergencyType.ACCIDENT,
        status=EmergencyStatus.STABILIZED,
        patient=PatientSnapshot(),
        location=Location(lat=19.076, lng=72.877),
        created_at="2026-01-01T00:00:00+00:00",
    )
    assert record.is_terminal
    assert record.patient.name == "Unknown Patient"


class TestRouteInfo:
    def test_labels(self):
        route = RouteInfo(distance_meters=12345, duration_seconds=61)
        assert route.distance_label == "12.3 km"
        assert route.eta_label == "2 min"

    def test_eta_never_below_one_minute(self):
        assert RouteInfo(distance_meters=10, duration_seconds=0).eta_label == "1 min"


class TestIdentity:
    def test_aadhaar_normalized(self):
        identity = IdentityMethod(method="aadhaar", value="1234 5678-9012")
        assert identity.value == "123456789012"

    def test_aadhaar_wrong_length(self):
        with pytest.raises(ValidationError):
            IdentityMethod(method="aadhaar", value="1234")

    def test_abha_minimum_length(self):
        assert IdentityMethod(method="abha", value="12-3456-7890-1234").value == "12345678901234"
        with pytest.raises(ValidationError):
            IdentityMethod(method="abha", value="1234")

    def test_unknown_method(self):
        with pytest.raises(ValidationError):
            IdentityMethod(method="passport", value="X1234567")

    def test_user_identity_optional(self):
        assert UserCreate(name="Asha", phone="+919800000001").identity is None
