"""
TradeSessionStore — the locally known state of one P2P trade.

Single writer at a time (command response, poll response or expiry), many
readers (status display, countdown display, action buttons). Readers consume
reaktiv Computed values derived from the latest authoritative Trade, never
accumulated deltas.

    store = TradeSessionStore(bus=bus)
    store.observe(trade)                      # from a poll or GET
    store.apply_intent("ACCEPTED", "confirm_payment")
    store.available_actions()                 # frozenset of command names
"""

import dataclasses
import logging
from typing import Callable, Optional

from reaktiv import Signal, Computed

from store.models import Trade, TradeStatus
from store.state_machine import TradeLifecycle
from reactive.bus import TradeStatusChanged

logger = logging.getLogger(__name__)


class TradeSessionStore:
    """
    Observation precedence:
    - terminal statuses are absorbing; nothing replaces them
    - otherwise an observation may hold or advance the status, never move it back
    - static terms and role flags are taken from the first observation only
    """

    def __init__(self, machine=TradeLifecycle, bus=None):
        self.machine = machine
        self._bus = bus
        self._listeners = []

        self.trade = Signal(None)
        self.loading = Signal(False)
        self.error = Signal(None)
        self.in_flight = Signal(None)
        self.expired = Signal(False)

        self.status = Computed(lambda: self.trade().status if self.trade() else None)
        self.is_terminal = Computed(
            lambda: self.status() is not None and self.machine.is_terminal(self.status())
        )
        self.available_actions = Computed(self._compute_actions)

    # ── Writes ────────────────────────────────────────────────────────

    def observe(self, incoming: Trade, source: str = "poll") -> bool:
        """
        Apply an authoritative observation of the trade.
        Returns True if the status changed.
        """
        current = self.trade()
        if current is None:
            self.trade.set(incoming)
            self.error.set(None)
            logger.debug("Trade %s seeded from %s with status %s",
                         incoming.id, source, incoming.status.value)
            self._notify(incoming, None, incoming.status)
            return True

        if incoming.id and current.id and incoming.id != current.id:
            raise ValueError(
                f"Observation for trade {incoming.id} applied to session {current.id}"
            )

        if not self.machine.supersedes(current.status, incoming.status):
            logger.debug("Ignoring %s observation %s for trade %s (current %s)",
                         source, incoming.status.value, current.id, current.status.value)
            return False

        if incoming.static_terms() != current.static_terms():
            logger.warning("Trade %s: server reported different terms %s; keeping %s",
                           current.id, incoming.static_terms(), current.static_terms())

        merged = current.with_status(incoming.status)
        if incoming.trade_partner is not None and current.trade_partner is None:
            merged = dataclasses.replace(merged, trade_partner=incoming.trade_partner)

        changed = merged.status != current.status
        self.trade.set(merged)
        if changed:
            logger.info("Trade %s: %s → %s (%s)", current.id,
                        current.status.value, merged.status.value, source)
            self._notify(merged, current.status, merged.status)
        return changed

    def apply_intent(self, status, command: str) -> bool:
        """Apply the local effect of a command the server has accepted."""
        current = self.trade()
        if current is None:
            return False
        return self.observe(current.with_status(TradeStatus(status)), source=command)

    def mark_expired(self) -> None:
        """Client-predicted expiry. The authoritative status is left untouched."""
        self.expired.set(True)

    def begin(self, command: str) -> bool:
        """Claim the single command slot. False if another command is in flight."""
        if self.in_flight() is not None:
            return False
        self.in_flight.set(command)
        return True

    def end(self) -> None:
        self.in_flight.set(None)

    # ── Reads ─────────────────────────────────────────────────────────

    @property
    def snapshot(self) -> Optional[Trade]:
        return self.trade()

    @property
    def role(self) -> Optional[str]:
        trade = self.trade()
        return trade.role if trade else None

    def on_status_change(self, callback: Callable) -> Callable:
        """Register callback(trade, from_status, to_status). Returns an unsubscribe fn."""
        self._listeners.append(callback)

        def remove():
            if callback in self._listeners:
                self._listeners.remove(callback)
        return remove

    # ── Internal ──────────────────────────────────────────────────────

    def _compute_actions(self):
        trade = self.trade()
        if trade is None or self.in_flight() is not None:
            return frozenset()
        if self.machine.is_terminal(trade.status):
            return frozenset()
        commands = set()
        for t in self.machine.transitions:
            if t.from_state != trade.status.value or t.command is None:
                continue
            if t.allowed_by is not None and trade.role not in t.allowed_by:
                continue
            if t.guard is not None and not t.guard(trade):
                continue
            commands.add(t.command)
        return frozenset(commands)

    def _notify(self, trade, from_status, to_status):
        if from_status is not None:
            self.machine.fire_on_exit(from_status, trade, from_status, to_status)
            self.machine.fire_on_enter(to_status, trade, from_status, to_status)

        for listener in list(self._listeners):
            try:
                listener(trade, from_status, to_status)
            except Exception:
                logger.exception("Status listener failed for trade %s", trade.id)

        if self._bus is not None:
            self._bus.publish(TradeStatusChanged(
                trade_id=trade.id, from_status=from_status, to_status=to_status,
            ))
