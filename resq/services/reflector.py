"""Realtime change reflection.

Each role keeps a local view of the emergencies it cares about: the hospital
its assigned and incoming cases, the driver the pending alerts and its active
trip, the patient its own emergency. A reflector owns one change-bus
subscription for that view and folds every change into ``tracked``:

- changes for ids it does not track and that do not match its filter are ignored
- an id is never tracked twice; a repeated insert is merged like an update
- partial updates are merged into the tracked row, untouched fields survive
- an alert is raised only for a new actionable row created within the
  recency window, so backfilled and replayed rows stay quiet

Views are fanned out to listener queues (one per connected client). The
registry keeps a single reflector per (role, key) pair and closes it when
its last listener leaves or its record reaches a terminal status.
"""

import asyncio
import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from resq.config import ALERT_RECENCY_SECONDS
from resq.models.emergency import EmergencyStatus, parse_status
from resq.services.event_bus import CHANGE_TYPES, ChangeBus, Subscription
from resq.services.record_store import TABLE, row_to_record
from resq.services.state_machine import is_terminal

logger = logging.getLogger(__name__)


def parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


class RealtimeReflector:
    def __init__(
        self,
        bus: ChangeBus,
        role: str,
        filter: dict | None = None,
        admit_on: tuple[str, ...] = ("INSERT",),
        actionable: frozenset[EmergencyStatus] | None = None,
        recency_seconds: float = ALERT_RECENCY_SECONDS,
        clock: Callable[[], datetime] | None = None,
        name: str = "",
    ) -> None:
        self.bus = bus
        self.role = role
        self.filter = {
            column: (value.value if hasattr(value, "value") else value)
            for column, value in (filter or {}).items()
        }
        self.admit_on = admit_on
        self.actionable = actionable
        self.recency = timedelta(seconds=recency_seconds)
        self.clock = clock or (lambda: datetime.now(UTC))
        self.name = name or role
        self.tracked: dict[str, dict] = {}
        self.alerts = 0
        self.degraded = False
        self.closed = False
        self._sub: Subscription | None = None
        self._task: asyncio.Task | None = None
        self._listeners: set[asyncio.Queue] = set()

    @property
    def record_id(self) -> str | None:
        """The single record this reflector follows, if it is id-scoped."""
        return self.filter.get("id")

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def matches(self, row: dict) -> bool:
        return all(row.get(column) == value for column, value in self.filter.items())

    def is_recent(self, created_at: str | None) -> bool:
        created = parse_timestamp(created_at)
        if created is None:
            return False
        return self.clock() - created <= self.recency

    def view(self, row: dict) -> dict:
        return row_to_record(row).model_dump(mode="json")

    def items(self) -> list[dict]:
        """Tracked records, newest first."""
        rows = sorted(self.tracked.values(), key=lambda r: r.get("created_at") or "", reverse=True)
        return [self.view(row) for row in rows]

    def _admit(self, row: dict, replay: bool = False) -> dict | None:
        record_id = row["id"]
        if is_terminal(row["status"]):
            return None
        self.tracked[record_id] = dict(row)
        actionable = self.actionable is None or parse_status(row["status"]) in self.actionable
        alert = actionable and self.is_recent(row.get("created_at"))
        if alert:
            self.alerts += 1
            if replay:
                logger.info("%s: recent backfilled emergency %s", self.name, record_id)
            else:
                logger.info("%s: new emergency %s", self.name, record_id)
        return {"type": "new_emergency", "record": self.view(row), "alert": alert}

    def apply(self, change: dict) -> dict | None:
        """Fold one change event into the local view; returns the view update, if any."""
        if self.closed or change.get("table") != TABLE:
            return None
        kind = change.get("type")
        row = change.get("new") or {}
        record_id = change.get("record_id") or row.get("id") or (change.get("old") or {}).get("id")
        if not record_id or kind not in CHANGE_TYPES:
            return None

        if kind == "DELETE":
            if self.tracked.pop(record_id, None) is None:
                return None
            return {"type": "emergency_removed", "record_id": record_id}

        if record_id not in self.tracked:
            if kind not in self.admit_on or not row or not self.matches(row):
                return None
            return self._admit(row)

        current = self.tracked[record_id]
        changes = change.get("changes")
        current.update(changes if changes else row)

        if is_terminal(current["status"]):
            del self.tracked[record_id]
            return {"type": "emergency_closed", "record": self.view(current), "alert": False}
        if not self.matches(current):
            del self.tracked[record_id]
            return {"type": "emergency_removed", "record_id": record_id, "record": self.view(current)}
        return {"type": "emergency_update", "record": self.view(current), "alert": False}

    def seed(self, rows: list[dict]) -> list[dict]:
        """Load rows read directly from the store (backfill); de-duplicated like live inserts."""
        messages = []
        for row in rows:
            if row["id"] in self.tracked or not self.matches(row):
                continue
            message = self._admit(row, replay=True)
            if message is not None:
                messages.append(message)
        return messages

    def listen(self, queue: asyncio.Queue | None = None) -> asyncio.Queue:
        """Register a listener queue; several reflectors may feed the same queue."""
        if queue is None:
            queue = asyncio.Queue()
        self._listeners.add(queue)
        return queue

    def unlisten(self, queue: asyncio.Queue) -> None:
        self._listeners.discard(queue)

    def _deliver(self, message: dict) -> None:
        for queue in list(self._listeners):
            queue.put_nowait(message)

    def start(self) -> None:
        """Open the subscription and begin folding changes in the background."""
        if self._sub is not None or self.closed:
            return
        self._sub = self.bus.subscribe(TABLE, self.filter, name=self.name)
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.info("%s: subscribed %s", self.name, self.filter or "all")

    async def _run(self) -> None:
        while not self.closed:
            change = await self._sub.get()
            try:
                message = self.apply(change)
            except Exception as e:
                self.degraded = True
                logger.error("%s: could not apply change %s: %s", self.name, change.get("record_id"), e)
                continue
            if message is None:
                continue
            self._deliver(message)
            if message["type"] == "emergency_closed" and self.record_id:
                await self.close()

    def _drain(self) -> None:
        # Changes already queued (such as the terminal update) still reach listeners
        while not self._sub.queue.empty():
            change = self._sub.queue.get_nowait()
            try:
                message = self.apply(change)
            except Exception as e:
                logger.error("%s: could not apply change %s: %s", self.name, change.get("record_id"), e)
                continue
            if message is not None:
                self._deliver(message)

    async def close(self) -> None:
        """Release the subscription. Safe to call more than once."""
        if self.closed:
            return
        if self._sub is not None:
            self._drain()
            self._sub.unsubscribe()
        self.closed = True
        self._deliver({"type": "subscription_closed", "role": self.role})
        task = self._task
        self._task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.info("%s: subscription closed", self.name)


class ReflectorRegistry:
    """Owns at most one live reflector per (role, key)."""

    def __init__(self) -> None:
        self._reflectors: dict[tuple[str, str], RealtimeReflector] = {}

    def __len__(self) -> int:
        return len(self._reflectors)

    def get(self, role: str, key: str) -> RealtimeReflector | None:
        reflector = self._reflectors.get((role, key))
        if reflector is not None and reflector.closed:
            del self._reflectors[(role, key)]
            return None
        return reflector

    def add(self, role: str, key: str, reflector: RealtimeReflector) -> RealtimeReflector:
        existing = self.get(role, key)
        if existing is not None:
            return existing
        self._reflectors[(role, key)] = reflector
        reflector.start()
        return reflector

    async def release(self, role: str, key: str, queue: asyncio.Queue) -> None:
        """Drop one listener; the reflector closes with its last listener."""
        reflector = self._reflectors.get((role, key))
        if reflector is None:
            return
        reflector.unlisten(queue)
        if reflector.listener_count == 0:
            await self.close(role, key)

    async def close(self, role: str, key: str) -> None:
        reflector = self._reflectors.pop((role, key), None)
        if reflector is not None:
            await reflector.close()

    async def close_record(self, record_id: str) -> None:
        """Close every reflector that follows this record only."""
        for (role, key), reflector in list(self._reflectors.items()):
            if reflector.record_id == record_id:
                await self.close(role, key)

    async def close_all(self) -> None:
        for role, key in list(self._reflectors):
            await self.close(role, key)
