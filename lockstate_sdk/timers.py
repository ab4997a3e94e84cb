"""
lockstate_sdk/timers.py - Periodic tick scheduling

Three tickers drive the live counters: in-chastity, cage-off, and live-pause.
At most one is armed at a time, and every lifecycle change disarms the current
one before arming the next. While a restore conflict is pending none is armed.

Only scheduling lives here; the arithmetic is in durations.py.
"""
import asyncio
import inspect
import logging
from enum import Enum
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class TickerKind(str, Enum):
    IN_CHASTITY = "in_chastity"
    CAGE_OFF = "cage_off"
    PAUSED = "paused"


class Ticker:
    """
    Calls `callback` every `interval` seconds on the running event loop.

    A callback returning an awaitable is awaited before the next sleep.
    """

    def __init__(self, name: str, interval: float, callback: Callable[[], Any]):
        self.name = name
        self.interval = interval
        self.callback = callback
        self._task: Optional[asyncio.Task] = None
        self._stopping = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> bool:
        """Schedule the loop. Returns False when no event loop is running."""
        if self.running:
            return True
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return False
        self._task = loop.create_task(self._run(), name=f"ticker:{self.name}")
        return True

    def stop(self) -> None:
        if self._task is None:
            return
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        if self._task is current:
            # Stopped from inside its own callback: finish the tick, then exit.
            self._stopping = True
        else:
            self._task.cancel()
        self._task = None

    async def _run(self) -> None:
        while not self._stopping:
            await asyncio.sleep(self.interval)
            try:
                result = self.callback()
                if inspect.isawaitable(result):
                    await result
            except Exception:
                # A failing tick must not kill the loop; the next one retries.
                logger.exception("Tick callback failed on %s", self.name)


class TimerService:
    """Owns the three mutually exclusive tickers."""

    def __init__(self, interval: float, on_tick: Callable[[TickerKind], Any]):
        self.interval = interval
        self.on_tick = on_tick
        self.armed: Optional[TickerKind] = None
        self._ticker: Optional[Ticker] = None

    @staticmethod
    def select(is_cage_on: bool, is_paused: bool, conflict_pending: bool) -> Optional[TickerKind]:
        if conflict_pending:
            return None
        if is_paused:
            return TickerKind.PAUSED
        if is_cage_on:
            return TickerKind.IN_CHASTITY
        return TickerKind.CAGE_OFF

    def rearm(self, is_cage_on: bool, is_paused: bool, conflict_pending: bool = False) -> Optional[TickerKind]:
        """Clear the current ticker and arm the one matching the given state."""
        self.disarm()
        kind = self.select(is_cage_on, is_paused, conflict_pending)
        if kind is None:
            logger.debug("No ticker armed")
            return None
        self.armed = kind
        self._ticker = Ticker(kind.value, self.interval, lambda: self.on_tick(kind))
        if not self._ticker.start():
            logger.debug("Ticker %s armed without a running event loop", kind.value)
        return kind

    def disarm(self) -> None:
        if self._ticker is not None:
            self._ticker.stop()
        self._ticker = None
        self.armed = None

    @property
    def running(self) -> bool:
        return self._ticker is not None and self._ticker.running
