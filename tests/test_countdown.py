"""Tests for the cancellable countdown gate."""

import asyncio

from resq.services.countdown import CountdownGate, CountdownRegistry

TICK = 0.01


async def test_completes_once():
    calls = []
    gate = CountdownGate("sos", tick=TICK)
    gate.start(3, lambda: calls.append("done"))
    assert gate.active
    assert await gate.wait() is True
    await asyncio.sleep(TICK * 2)
    assert calls == ["done"]
    assert not gate.active
    assert gate.remaining == 0


async def test_cancel_before_completion():
    """Cancelling inside the window means the action never happens."""
    calls = []
    gate = CountdownGate("sos", tick=TICK)
    gate.start(10, lambda: calls.append("done"))
    await asyncio.sleep(TICK * 3)
    assert gate.cancel() is True
    assert await gate.wait() is False
    await asyncio.sleep(TICK * 12)
    assert calls == []


async def test_cancel_when_idle():
    gate = CountdownGate(tick=TICK)
    assert gate.cancel() is False
    assert await gate.wait() is False


async def test_ticks_count_down():
    seen = []
    gate = CountdownGate(tick=TICK)
    gate.start(3, lambda: None, on_tick=seen.append)
    await gate.wait()
    assert seen == [3, 2, 1]


async def test_async_callbacks():
    calls = []

    async def complete():
        calls.append("done")

    gate = CountdownGate(tick=TICK)
    gate.start(2, complete)
    await gate.wait()
    await asyncio.sleep(TICK)
    assert calls == ["done"]


async def test_restart_cancels_previous():
    calls = []
    gate = CountdownGate(tick=TICK)
    gate.start(5, lambda: calls.append("first"))
    gate.start(2, lambda: calls.append("second"))
    await gate.wait()
    await asyncio.sleep(TICK * 8)
    assert calls == ["second"]


async def test_callback_error_is_contained():
    def explode():
        raise RuntimeError("boom")

    gate = CountdownGate(tick=TICK)
    gate.start(1, explode)
    assert await gate.wait() is True
    await asyncio.sleep(TICK)
    assert not gate.active


class TestRegistry:
    async def test_independent_keys(self):
        calls = []
        registry = CountdownRegistry(3, tick=TICK, name="alert")
        registry.start("d1", lambda: calls.append("d1"))
        registry.start("d2", lambda: calls.append("d2"))
        assert registry.cancel("d1") is True
        await registry.gate("d2").wait()
        await asyncio.sleep(TICK)
        assert calls == ["d2"]

    async def test_remaining_and_cancel_all(self):
        registry = CountdownRegistry(50, tick=TICK)
        registry.start("d1", lambda: None)
        await asyncio.sleep(TICK * 2)
        assert 0 < registry.remaining("d1") <= 50
        registry.cancel_all()
        assert registry.remaining("d1") == 0
        assert registry.cancel("unknown") is False
