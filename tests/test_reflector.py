"""Tests for realtime change reflection."""

import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from resq.models.emergency import EmergencyStatus
from resq.services.event_bus import ChangeBus
from resq.services.record_store import TABLE
from resq.services.reflector import RealtimeReflector, ReflectorRegistry, parse_timestamp

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def _row(record_id="e1", status="pending", minutes_ago=1, **extra):
    row = {
        "id": record_id,
        "created_at": (NOW - timedelta(minutes=minutes_ago)).isoformat(),
        "emergency_type": "accident",
        "status": status,
        "patient_name": "Asha",
        "patient_phone": "+919800000001",
        "allergies": "[]",
        "patient_lat": 19.076,
        "patient_long": 72.877,
        "assigned_hospital_id": None,
        "assigned_driver_id": None,
    }
    row.update(extra)
    return row


def _change(kind, new=None, old=None, changes=None):
    return {
        "type": kind,
        "table": TABLE,
        "record_id": (new or old)["id"],
        "new": new,
        "old": old,
        "changes": changes if changes is not None else (new or {}),
    }


@pytest.fixture
def bus():
    return ChangeBus()


@pytest.fixture
def incoming(bus):
    return RealtimeReflector(
        bus,
        "incoming",
        {"status": "pending"},
        actionable=frozenset({EmergencyStatus.PENDING}),
        clock=lambda: NOW,
    )


class TestApply:
    def test_recent_insert_alerts(self, incoming):
        message = incoming.apply(_change("INSERT", new=_row()))
        assert message["type"] == "new_emergency"
        assert message["alert"] is True
        assert message["record"]["id"] == "e1"
        assert incoming.alerts == 1

    def test_old_insert_is_tracked_without_alert(self, incoming):
        message = incoming.apply(_change("INSERT", new=_row(minutes_ago=30)))
        assert message["alert"] is False
        assert "e1" in incoming.tracked

    def test_unparseable_created_at_never_alerts(self, incoming):
        message = incoming.apply(_change("INSERT", new=_row(created_at="")))
        assert message["alert"] is False

    def test_repeated_insert_is_merged(self, incoming):
        """The same id arriving twice is tracked once and alerts once."""
        incoming.apply(_change("INSERT", new=_row()))
        second = incoming.apply(_change("INSERT", new=_row(patient_name="Asha K")))
        assert len(incoming.tracked) == 1
        assert second["type"] == "emergency_update"
        assert second["alert"] is False
        assert incoming.alerts == 1

    def test_partial_update_merges(self, incoming):
        incoming.apply(_change("INSERT", new=_row()))
        incoming.apply(_change(
            "UPDATE",
            new=_row(patient_lat=19.08),
            old=_row(),
            changes={"patient_lat": 19.08},
        ))
        tracked = incoming.tracked["e1"]
        assert tracked["patient_lat"] == 19.08
        assert tracked["patient_name"] == "Asha"

    def test_untracked_update_ignored(self, incoming):
        """Updates for rows this view never admitted are dropped."""
        message = incoming.apply(_change(
            "UPDATE", new=_row("e9"), old=_row("e9"), changes={"patient_lat": 19.1}
        ))
        assert message is None
        assert incoming.tracked == {}

    def test_non_matching_insert_ignored(self, incoming):
        assert incoming.apply(_change("INSERT", new=_row(status="dispatched"))) is None

    def test_row_leaving_filter_is_removed(self, incoming):
        incoming.apply(_change("INSERT", new=_row()))
        message = incoming.apply(_change(
            "UPDATE",
            new=_row(status="hospital_assigned", assigned_hospital_id="hosp-001"),
            old=_row(),
            changes={"status": "hospital_assigned", "assigned_hospital_id": "hosp-001"},
        ))
        assert message["type"] == "emergency_removed"
        assert "e1" not in incoming.tracked

    def test_terminal_update_closes_record(self, bus):
        view = RealtimeReflector(bus, "patient", {"id": "e1"}, admit_on=("INSERT", "UPDATE"), clock=lambda: NOW)
        view.seed([_row(status="arrived")])
        message = view.apply(_change(
            "UPDATE", new=_row(status="admitted"), old=_row(status="arrived"), changes={"status": "admitted"}
        ))
        assert message["type"] == "emergency_closed"
        assert message["record"]["status"] == "admitted"
        assert view.tracked == {}

    def test_delete(self, incoming):
        incoming.apply(_change("INSERT", new=_row()))
        message = incoming.apply(_change("DELETE", old=_row()))
        assert message == {"type": "emergency_removed", "record_id": "e1"}
        assert incoming.apply(_change("DELETE", old=_row())) is None

    def test_other_table_ignored(self, incoming):
        change = _change("INSERT", new=_row())
        change["table"] = "users"
        assert incoming.apply(change) is None


class TestSeed:
    def test_backfill_dedupes_with_live_insert(self, incoming):
        incoming.seed([_row(), _row("e2", minutes_ago=40)])
        assert set(incoming.tracked) == {"e1", "e2"}
        message = incoming.apply(_change("INSERT", new=_row()))
        assert message["type"] == "emergency_update"
        assert len(incoming.tracked) == 2

    def test_backfill_alert_follows_recency(self, incoming):
        messages = incoming.seed([_row("fresh", minutes_ago=2), _row("stale", minutes_ago=50)])
        alerts = {m["record"]["id"]: m["alert"] for m in messages}
        assert alerts == {"fresh": True, "stale": False}

    def test_terminal_rows_are_not_seeded(self, incoming):
        assert incoming.seed([_row(status="admitted")]) == []

    def test_items_newest_first(self, incoming):
        incoming.seed([_row("old", minutes_ago=20), _row("new", minutes_ago=1)])
        assert [item["id"] for item in incoming.items()] == ["new", "old"]


def test_parse_timestamp():
    assert parse_timestamp("2026-03-01T12:00:00Z") == NOW
    assert parse_timestamp("2026-03-01T12:00:00") == NOW
    assert parse_timestamp("yesterday") is None
    assert parse_timestamp(None) is None


async def test_live_subscription_delivers_to_listeners(bus):
    view = RealtimeReflector(bus, "incoming", {"status": "pending"})
    view.start()
    first = view.listen()
    second = view.listen()

    await bus.publish(_change("INSERT", new=_row(created_at=datetime.now(UTC).isoformat())))
    one = await asyncio.wait_for(first.get(), timeout=1)
    two = await asyncio.wait_for(second.get(), timeout=1)
    assert one["type"] == two["type"] == "new_emergency"
    assert one["alert"] is True

    await view.close()
    assert bus.subscriber_count == 0
    assert (await asyncio.wait_for(first.get(), timeout=1))["type"] == "subscription_closed"


async def test_close_is_idempotent(bus):
    view = RealtimeReflector(bus, "hospital", {"assigned_hospital_id": "hosp-001"})
    view.start()
    await view.close()
    await view.close()
    assert view.closed
    assert bus.subscriber_count == 0


class TestRegistry:
    async def test_one_reflector_per_key(self, bus):
        registry = ReflectorRegistry()
        first = registry.add("hospital", "hosp-001", RealtimeReflector(bus, "hospital", {"assigned_hospital_id": "hosp-001"}))
        second = registry.add("hospital", "hosp-001", RealtimeReflector(bus, "hospital", {"assigned_hospital_id": "hosp-001"}))
        assert first is second
        assert bus.subscriber_count == 1
        await registry.close_all()
        assert bus.subscriber_count == 0

    async def test_release_closes_with_last_listener(self, bus):
        registry = ReflectorRegistry()
        view = registry.add("patient", "e1", RealtimeReflector(bus, "patient", {"id": "e1"}))
        a = view.listen()
        b = view.listen()
        await registry.release("patient", "e1", a)
        assert not view.closed
        await registry.release("patient", "e1", b)
        assert view.closed
        assert registry.get("patient", "e1") is None

    async def test_close_record(self, bus):
        registry = ReflectorRegistry()
        registry.add("patient", "e1", RealtimeReflector(bus, "patient", {"id": "e1"}))
        registry.add("driver", "e1", RealtimeReflector(bus, "driver", {"id": "e1"}))
        registry.add("incoming", "pending", RealtimeReflector(bus, "incoming", {"status": "pending"}))
        await registry.close_record("e1")
        assert len(registry) == 1
        assert bus.subscriber_count == 1
        await registry.close_all()
