"""Tests for the in-memory change bus."""

from resq.services.event_bus import ChangeBus

TABLE = "emergency_requests"


def _change(kind="UPDATE", new=None, old=None, table=TABLE):
    return {
        "type": kind,
        "table": table,
        "record_id": (new or old or {}).get("id"),
        "new": new,
        "old": old,
        "changes": new or {},
    }


async def test_subscribe_and_publish():
    bus = ChangeBus()
    sub = bus.subscribe(TABLE)
    await bus.publish(_change("INSERT", new={"id": "e1", "status": "pending"}))
    assert sub.queue.qsize() == 1
    assert (await sub.get())["record_id"] == "e1"


async def test_filter_on_new_row():
    bus = ChangeBus()
    sub = bus.subscribe(TABLE, {"assigned_hospital_id": "hosp-001"})
    await bus.publish(_change(new={"id": "e1", "assigned_hospital_id": "hosp-002"}))
    await bus.publish(_change(new={"id": "e2", "assigned_hospital_id": "hosp-001"}))
    assert sub.queue.qsize() == 1
    assert sub.queue.get_nowait()["record_id"] == "e2"


async def test_row_leaving_filter_is_delivered():
    """An update that moves a row out of the filter still reaches the subscriber."""
    bus = ChangeBus()
    sub = bus.subscribe(TABLE, {"status": "pending"})
    await bus.publish(_change(
        new={"id": "e1", "status": "hospital_assigned"},
        old={"id": "e1", "status": "pending"},
    ))
    assert sub.queue.qsize() == 1


async def test_event_type_and_table_filtering():
    bus = ChangeBus()
    inserts = bus.subscribe(TABLE, events=("INSERT",))
    await bus.publish(_change("UPDATE", new={"id": "e1"}))
    await bus.publish(_change("INSERT", new={"id": "e1"}, table="users"))
    assert inserts.queue.empty()


async def test_unsubscribe():
    bus = ChangeBus()
    sub = bus.subscribe(TABLE)
    assert bus.subscriber_count == 1
    sub.unsubscribe()
    sub.unsubscribe()
    assert bus.subscriber_count == 0
    await bus.publish(_change("INSERT", new={"id": "e1"}))
    assert sub.queue.empty()


async def test_full_queue_does_not_block_writer():
    """A slow subscriber loses events instead of stalling the store."""
    bus = ChangeBus(maxsize=1)
    slow = bus.subscribe(TABLE)
    fast = bus.subscribe(TABLE)
    await bus.publish(_change("INSERT", new={"id": "e1"}))
    fast.queue.get_nowait()
    await bus.publish(_change("INSERT", new={"id": "e2"}))
    assert slow.queue.qsize() == 1
    assert fast.queue.get_nowait()["record_id"] == "e2"
