"""Throttled live-location broadcasting.

Position samples arrive as fast as the device reports them. The broadcaster
keeps only the newest one and writes it into the shared record at most once
per window, at the trailing edge: the first sample after a quiet period opens
a window, and when the window closes whatever sample is newest at that moment
is written. Nothing is written before the first valid fix.
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable

from resq.config import MAX_ACCURACY_METERS
from resq.services.geo import DEFAULT_REGION, PositionFix, Region, is_valid_fix

logger = logging.getLogger(__name__)

Writer = Callable[[PositionFix], Awaitable[None]]


class LocationBroadcaster:
    def __init__(
        self,
        writer: Writer,
        window: float,
        name: str = "",
        region: Region = DEFAULT_REGION,
        max_accuracy: float = MAX_ACCURACY_METERS,
    ) -> None:
        self.writer = writer
        self.window = window
        self.name = name
        self.region = region
        self.max_accuracy = max_accuracy
        self.latest: PositionFix | None = None
        self.last_written: PositionFix | None = None
        self.writes = 0
        self.failures = 0
        self.stopped = False
        self._pending: PositionFix | None = None
        self._flush_task: asyncio.Task | None = None

    def push(self, fix: PositionFix | None) -> bool:
        """Offer a sample; returns False when it was discarded as no fix."""
        if self.stopped:
            return False
        if not is_valid_fix(fix, self.region, self.max_accuracy):
            logger.debug("Broadcaster %s ignoring invalid fix", self.name)
            return False
        self.latest = fix
        self._pending = fix
        if self._flush_task is None or self._flush_task.done():
            self._flush_task = asyncio.get_running_loop().create_task(self._flush_after_window())
        return True

    async def _flush_after_window(self) -> None:
        await asyncio.sleep(self.window)
        await self._write_pending()

    async def _write_pending(self) -> None:
        fix = self._pending
        if fix is None or self.stopped:
            return
        self._pending = None
        try:
            await self.writer(fix)
        except Exception as e:
            # Best effort: keep watching, the next window will try again
            self.failures += 1
            logger.warning("Location write failed for %s: %s", self.name or "broadcaster", e)
            return
        self.writes += 1
        self.last_written = fix

    async def flush(self) -> None:
        """Write the pending sample now instead of waiting for the window."""
        if self._flush_task is not None and not self._flush_task.done():
            self._flush_task.cancel()
            self._flush_task = None
        await self._write_pending()

    async def consume(self, stream: AsyncIterator[PositionFix]) -> None:
        """Feed samples from a position watch until it ends or the broadcaster stops."""
        async for fix in stream:
            if self.stopped:
                break
            self.push(fix)

    async def stop(self) -> None:
        """Stop broadcasting; any sample still waiting for its window is dropped."""
        self.stopped = True
        self._pending = None
        task = self._flush_task
        self._flush_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.debug("Broadcaster %s stopped after %d writes", self.name, self.writes)
