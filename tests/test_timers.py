"""Tick scheduling: one ticker at a time, none during a conflict."""

import asyncio

from lockstate_sdk.timers import Ticker, TickerKind, TimerService


class TestTicker:
    async def test_ticks_until_stopped(self):
        calls = []
        ticker = Ticker("test", 0.01, lambda: calls.append(1))
        assert ticker.start() is True
        await asyncio.sleep(0.05)
        ticker.stop()
        count = len(calls)
        await asyncio.sleep(0.03)

        assert count >= 2
        assert len(calls) == count
        assert ticker.running is False

    async def test_async_callback_awaited(self):
        calls = []

        async def callback():
            calls.append(1)

        ticker = Ticker("test", 0.01, callback)
        ticker.start()
        await asyncio.sleep(0.05)
        ticker.stop()
        assert calls

    async def test_failing_callback_keeps_ticking(self):
        calls = []

        def callback():
            calls.append(1)
            raise RuntimeError("boom")

        ticker = Ticker("test", 0.01, callback)
        ticker.start()
        await asyncio.sleep(0.05)
        ticker.stop()
        assert len(calls) >= 2

    async def test_stop_from_own_callback_finishes_tick(self):
        finished = []
        ticker = None

        async def callback():
            ticker.stop()
            await asyncio.sleep(0)
            finished.append(1)

        ticker = Ticker("test", 0.01, callback)
        ticker.start()
        await asyncio.sleep(0.05)
        assert finished == [1]

    def test_start_without_loop(self):
        ticker = Ticker("test", 1, lambda: None)
        assert ticker.start() is False
        assert ticker.running is False


class TestTimerService:
    def test_select(self):
        assert TimerService.select(True, False, False) == TickerKind.IN_CHASTITY
        assert TimerService.select(True, True, False) == TickerKind.PAUSED
        assert TimerService.select(False, False, False) == TickerKind.CAGE_OFF
        assert TimerService.select(True, False, True) is None

    async def test_rearm_replaces_running_ticker(self):
        kinds = []
        service = TimerService(0.01, kinds.append)

        service.rearm(is_cage_on=True, is_paused=False)
        await asyncio.sleep(0.035)
        service.rearm(is_cage_on=True, is_paused=True)
        kinds.clear()
        await asyncio.sleep(0.035)
        service.disarm()

        assert kinds
        assert set(kinds) == {TickerKind.PAUSED}

    async def test_conflict_disarms(self):
        service = TimerService(0.01, lambda kind: None)
        service.rearm(is_cage_on=False, is_paused=False)
        assert service.running is True

        assert service.rearm(is_cage_on=True, is_paused=False, conflict_pending=True) is None
        assert service.armed is None
        assert service.running is False
