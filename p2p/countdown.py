"""
Countdown / expiry monitor for the settlement window.

Remaining time is always derived, never counted:

    remaining = max(0, window − floor(now − initiated_at))

The 1-second tick only refreshes the displayed copy; each tick and each new
trade observation recomputes it from the injected clock, so reloads and
navigation cannot drift it.

    RUNNING → EXPIRING → EXPIRED
        ↘        ↘
          STOPPED           (trade reached a terminal status first)
"""

import asyncio
import logging
import math
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from reaktiv import Signal, Computed

from p2p.config import SETTLEMENT_WINDOW_SECONDS

logger = logging.getLogger(__name__)

EXPIRING_THRESHOLD = 5 * 60


def remaining_seconds(initiated_at: datetime, now: datetime,
                      window: int = SETTLEMENT_WINDOW_SECONDS) -> int:
    elapsed = math.floor((now - initiated_at).total_seconds())
    return max(0, window - elapsed)


def format_countdown(seconds: int) -> str:
    """150 → '2:30'."""
    seconds = max(0, int(seconds))
    return f"{seconds // 60}:{seconds % 60:02d}"


class CountdownState(str, Enum):
    RUNNING = "RUNNING"
    EXPIRING = "EXPIRING"
    EXPIRED = "EXPIRED"
    STOPPED = "STOPPED"


_FINAL = (CountdownState.EXPIRED, CountdownState.STOPPED)


def _current_task():
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None


class CountdownMonitor:
    """
    Watches a TradeSessionStore and reports expiry once.

    - on_expired(trade) runs at most once, when remaining reaches zero while
      the trade is still non-terminal
    - a terminal status stops the monitor instead; it never expires afterwards
    """

    def __init__(self, store, clock: Callable[[], datetime], *,
                 window: int = SETTLEMENT_WINDOW_SECONDS, tick_interval: float = 1.0,
                 expiring_threshold: int = EXPIRING_THRESHOLD,
                 on_expired: Optional[Callable] = None):
        self.store = store
        self.clock = clock
        self.window = window
        self.tick_interval = tick_interval
        self.expiring_threshold = expiring_threshold
        self.on_expired = on_expired

        self.remaining = Signal(window)
        self.state = Signal(CountdownState.RUNNING)
        self.display = Computed(lambda: format_countdown(self.remaining()))

        self._task: Optional[asyncio.Task] = None
        self._unlisten = None

    # ── Lifecycle ────────────────────────────────────────────────────

    def start(self) -> None:
        if self._task is not None or self.state() in _FINAL:
            return
        self._unlisten = self.store.on_status_change(lambda *_: self.resync())
        self.resync()
        if self.state() in _FINAL:
            return
        self._task = asyncio.get_running_loop().create_task(self._run(), name="countdown")

    def stop(self) -> None:
        """Stop ticking. Safe to call from inside a tick and more than once."""
        if self.state() not in _FINAL:
            self.state.set(CountdownState.STOPPED)
        self._release()

    # ── Ticks ────────────────────────────────────────────────────────

    def resync(self) -> Optional[int]:
        """Recompute from the latest observation; called on every status change."""
        if self.state() in _FINAL:
            return None
        trade = self.store.snapshot
        if trade is None:
            return None
        if self.store.is_terminal():
            self.stop()
            return None
        remaining = remaining_seconds(trade.initiated_at, self.clock(), self.window)
        self.remaining.set(remaining)
        self._evaluate(remaining)
        return remaining

    def tick(self) -> Optional[int]:
        return self.resync()

    async def _run(self):
        while self.state() not in _FINAL:
            await asyncio.sleep(self.tick_interval)
            self.tick()

    # ── Internal ─────────────────────────────────────────────────────

    def _evaluate(self, remaining):
        if remaining == 0:
            self._expire()
        elif remaining <= self.expiring_threshold:
            self.state.set(CountdownState.EXPIRING)
        else:
            self.state.set(CountdownState.RUNNING)

    def _expire(self):
        trade = self.store.snapshot
        self.state.set(CountdownState.EXPIRED)
        self.store.mark_expired()
        self._release()
        logger.info("Trade %s: settlement window elapsed", trade.id)
        if self.on_expired is not None:
            try:
                self.on_expired(trade)
            except Exception:
                logger.exception("Expiry handler failed for trade %s", trade.id)

    def _release(self):
        if self._unlisten is not None:
            self._unlisten()
            self._unlisten = None
        task, self._task = self._task, None
        if task is not None and not task.done() and task is not _current_task():
            task.cancel()
