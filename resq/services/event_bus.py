import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

CHANGE_TYPES = ("INSERT", "UPDATE", "DELETE")


@dataclass(eq=False)
class Subscription:
    """Handle for one realtime channel; release it with ``unsubscribe()``."""

    table: str
    filter: dict[str, Any]
    events: tuple[str, ...]
    queue: asyncio.Queue
    bus: "ChangeBus"
    name: str = ""
    closed: bool = field(default=False, init=False)

    def matches(self, change: dict) -> bool:
        """Table and type must match; the filter may match either side of the change.

        Matching the old row too means a subscriber also hears about the
        update that moves a row out of its filter.
        """
        if change.get("table") != self.table or change.get("type") not in self.events:
            return False
        rows = [row for row in (change.get("new"), change.get("old")) if row]
        return any(
            all(row.get(column) == value for column, value in self.filter.items())
            for row in rows
        )

    async def get(self) -> dict:
        return await self.queue.get()

    def unsubscribe(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.bus._remove(self)


class ChangeBus:
    """In-memory row change feed.

    Every committed write to the record store is published here as a change
    event ``{"type", "table", "record_id", "new", "old", "changes"}``.
    Subscribers register a table, a column-equality filter and the change
    types they care about, and receive matching events on their own queue.
    """

    def __init__(self, maxsize: int = 0) -> None:
        self._maxsize = maxsize
        self._subscriptions: set[Subscription] = set()

    def subscribe(
        self,
        table: str,
        filter: dict[str, Any] | None = None,
        events: tuple[str, ...] = CHANGE_TYPES,
        name: str = "",
    ) -> Subscription:
        sub = Subscription(
            table=table,
            filter=dict(filter or {}),
            events=tuple(events),
            queue=asyncio.Queue(maxsize=self._maxsize),
            bus=self,
            name=name,
        )
        self._subscriptions.add(sub)
        logger.debug("Subscribed %s to %s %s", name or "channel", table, sub.filter)
        return sub

    def _remove(self, sub: Subscription) -> None:
        self._subscriptions.discard(sub)
        logger.debug("Unsubscribed %s from %s", sub.name or "channel", sub.table)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    async def publish(self, change: dict) -> None:
        """Deliver a change to every matching subscriber without blocking the writer."""
        for sub in list(self._subscriptions):
            if not sub.matches(change):
                continue
            try:
                sub.queue.put_nowait(change)
            except asyncio.QueueFull:
                logger.warning("Change queue full for %s subscriber", sub.name or sub.table)

