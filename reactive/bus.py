"""
EventBus — typed in-process pub/sub.

Replaces the browser-global "userBalanceUpdated" event: the bus is owned by
the application context and consumers subscribe explicitly.

    bus = EventBus()
    sub = bus.subscribe(BalanceUpdated, lambda ev: print(ev.user.balance))
    bus.publish(BalanceUpdated(user=profile))
    sub.dispose()
"""

import logging
from collections import deque
from dataclasses import dataclass
from typing import Callable, Optional

from store.models import TradeStatus, UserProfile

logger = logging.getLogger(__name__)


# ── Events ───────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class BalanceUpdated:
    """Fresh profile (with cash balance) after an escrow debit."""
    user: UserProfile


@dataclass(frozen=True)
class TradeStatusChanged:
    trade_id: str
    from_status: Optional[TradeStatus]
    to_status: TradeStatus


@dataclass(frozen=True)
class TradeInitiated:
    trade_id: str
    offer_id: str


# ── Bus ──────────────────────────────────────────────────────────────────────

class Subscription:
    """Handle returned by EventBus.subscribe()."""

    def __init__(self, bus, event_type, callback):
        self._bus = bus
        self.event_type = event_type
        self.callback = callback
        self.active = True

    def dispose(self) -> None:
        if not self.active:
            return
        self.active = False
        self._bus._remove(self)


class EventBus:
    """
    Typed broadcast channel with per-type listener lists.

    Events published while another event is being delivered (from inside a
    subscriber) are queued and delivered after it, in publish order, so
    every subscriber sees every event.
    """

    def __init__(self):
        self._listeners = {}        # event type → [Subscription]
        self._queue = deque()
        self._delivering = False

    def publish(self, event) -> None:
        self._queue.append((event, self._matching(event)))
        if self._delivering:
            return
        self._delivering = True
        try:
            while self._queue:
                event, subs = self._queue.popleft()
                for sub in subs:
                    if sub.active:
                        self._deliver(sub, event)
        finally:
            self._delivering = False

    def subscribe(self, event_type, callback: Callable) -> Subscription:
        """Call callback(event) for every future event of event_type."""
        sub = Subscription(self, event_type, callback)
        self._listeners.setdefault(event_type, []).append(sub)
        return sub

    @property
    def subscriber_count(self) -> int:
        return sum(len(subs) for subs in self._listeners.values())

    def close(self) -> None:
        """Dispose every subscription (application teardown)."""
        for subs in list(self._listeners.values()):
            for sub in list(subs):
                sub.dispose()
        self._queue.clear()

    def _matching(self, event):
        # Subscribers registered after publish() never see this event.
        matched = []
        for event_type, subs in self._listeners.items():
            if isinstance(event, event_type):
                matched.extend(subs)
        return matched

    def _remove(self, sub):
        subs = self._listeners.get(sub.event_type, [])
        if sub in subs:
            subs.remove(sub)

    @staticmethod
    def _deliver(sub, event):
        try:
            sub.callback(event)
        except Exception:
            logger.exception("Subscriber %r failed on %s",
                             sub.callback, type(event).__name__)
