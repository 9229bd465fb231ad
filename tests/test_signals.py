"""Tests for signal sources, schedulers, and timer helpers."""

from unittest.mock import MagicMock

import pytest

from codementor_sync.core.signals import AsyncioScheduler, Debouncer, PeriodicTimer, SignalSource


class TestSignalSource:
    def test_emit_and_remove(self):
        source = SignalSource()
        listener = MagicMock()
        source.add_listener("click", listener)
        source.emit("click")
        source.remove_listener("click", listener)
        source.remove_listener("click", listener)
        source.emit("click")
        assert listener.call_count == 1
        assert source.listener_count() == 0

    def test_emit_unknown_is_noop(self):
        SignalSource().emit("nothing")


class TestManualScheduler:
    def test_fires_in_due_order(self, scheduler):
        order = []
        scheduler.call_later(3, lambda: order.append("c"))
        scheduler.call_later(1, lambda: order.append("a"))
        scheduler.call_later(2, lambda: order.append("b"))
        scheduler.advance(10)
        assert order == ["a", "b", "c"]
        assert scheduler.now() == 10

    def test_cancelled_handle_skipped(self, scheduler):
        fired = MagicMock()
        handle = scheduler.call_later(1, fired)
        handle.cancel()
        assert scheduler.pending == 0
        scheduler.advance(5)
        fired.assert_not_called()


class TestDebouncer:
    def test_trailing_call_only(self, scheduler):
        callback = MagicMock()
        debounce = Debouncer(scheduler, 2.0, callback)
        for _ in range(5):
            debounce.trigger()
            scheduler.advance(1.0)
        callback.assert_not_called()
        assert scheduler.pending == 1
        scheduler.advance(1.0)
        callback.assert_called_once()
        assert not debounce.pending

    def test_cancel(self, scheduler):
        callback = MagicMock()
        debounce = Debouncer(scheduler, 2.0, callback)
        debounce.trigger()
        debounce.cancel()
        scheduler.advance(5)
        callback.assert_not_called()


class TestPeriodicTimer:
    def test_repeats_until_stopped(self, scheduler):
        callback = MagicMock()
        timer = PeriodicTimer(scheduler, 10, callback)
        timer.start()
        scheduler.advance(35)
        assert callback.call_count == 3
        timer.stop()
        scheduler.advance(100)
        assert callback.call_count == 3
        assert not timer.running

    def test_callback_error_keeps_timer(self, scheduler):
        callback = MagicMock(side_effect=[RuntimeError("boom"), None])
        timer = PeriodicTimer(scheduler, 1, callback)
        timer.start()
        scheduler.advance(2)
        assert callback.call_count == 2

    def test_restart_does_not_stack(self, scheduler):
        callback = MagicMock()
        timer = PeriodicTimer(scheduler, 1, callback)
        timer.start()
        timer.start()
        scheduler.advance(1)
        assert callback.call_count == 1


@pytest.mark.asyncio
async def test_asyncio_scheduler_fires():
    import asyncio

    fired = asyncio.Event()
    scheduler = AsyncioScheduler()
    scheduler.call_later(0.01, fired.set)
    await asyncio.wait_for(fired.wait(), timeout=1.0)
    assert scheduler.now() > 0
