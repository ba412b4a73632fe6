"""Cancellable countdown used to confirm automatic transitions.

A gate gives a person a short window to abort an action before it happens:
the patient's SOS auto-trigger and the driver's accept/reject window for an
incoming alert. One countdown is active per gate; starting a new one cancels
the previous.
"""

import asyncio
import inspect
import logging
from collections.abc import Callable

logger = logging.getLogger(__name__)


async def _call(callback: Callable, *args) -> None:
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


class CountdownGate:
    def __init__(self, name: str = "", tick: float = 1.0) -> None:
        self.name = name
        self.tick = tick
        self._task: asyncio.Task | None = None
        self._remaining = 0
        self._done: asyncio.Future | None = None

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def remaining(self) -> int:
        return self._remaining if self.active else 0

    def start(
        self,
        duration: int,
        on_complete: Callable,
        on_tick: Callable | None = None,
    ) -> None:
        """Count down ``duration`` ticks, then call ``on_complete`` once."""
        self.cancel()
        loop = asyncio.get_running_loop()
        self._remaining = duration
        self._done = loop.create_future()
        self._task = loop.create_task(self._run(duration, on_complete, on_tick, self._done))
        logger.debug("Countdown %s started (%ds)", self.name or "gate", duration)

    def cancel(self) -> bool:
        """Abort the running countdown; returns False when nothing was running."""
        if not self.active:
            return False
        self._task.cancel()
        self._task = None
        self._remaining = 0
        if self._done is not None and not self._done.done():
            self._done.set_result(False)
        logger.debug("Countdown %s cancelled", self.name or "gate")
        return True

    async def wait(self) -> bool:
        """True if the last countdown completed, False if it was cancelled."""
        if self._done is None:
            return False
        return await asyncio.shield(self._done)

    async def _run(self, duration, on_complete, on_tick, done: asyncio.Future) -> None:
        remaining = duration
        while remaining > 0:
            self._remaining = remaining
            if on_tick is not None:
                try:
                    await _call(on_tick, remaining)
                except Exception as e:
                    logger.error("Countdown %s tick callback failed: %s", self.name, e)
            await asyncio.sleep(self.tick)
            remaining -= 1
        self._remaining = 0

        # Detach first so on_complete may start the next countdown on this gate
        if self._task is asyncio.current_task():
            self._task = None
        if not done.done():
            done.set_result(True)
        logger.debug("Countdown %s completed", self.name or "gate")
        try:
            await _call(on_complete)
        except Exception as e:
            logger.error("Countdown %s completion callback failed: %s", self.name, e)


class CountdownRegistry:
    """One gate per pending action key (a user's SOS, a driver's alert)."""

    def __init__(self, duration: int, tick: float = 1.0, name: str = "") -> None:
        self.duration = duration
        self.tick = tick
        self.name = name
        self._gates: dict[str, CountdownGate] = {}

    def gate(self, key: str) -> CountdownGate:
        if key not in self._gates:
            self._gates[key] = CountdownGate(name=f"{self.name}:{key}", tick=self.tick)
        return self._gates[key]

    def start(self, key: str, on_complete: Callable, on_tick: Callable | None = None) -> CountdownGate:
        gate = self.gate(key)
        gate.start(self.duration, on_complete, on_tick)
        return gate

    def cancel(self, key: str) -> bool:
        gate = self._gates.get(key)
        return gate.cancel() if gate else False

    def remaining(self, key: str) -> int:
        gate = self._gates.get(key)
        return gate.remaining if gate else 0

    def cancel_all(self) -> None:
        for gate in self._gates.values():
            gate.cancel()
