"""
ConfirmationReviewFlow — the admin/counterparty "Confirm Trade Completion" page.

    LOADING → REVIEWING → COMPLETED
        ↘         ↘
          ERROR ←──

Completion is fund-then-complete: a PENDING trade is confirmed first, and
complete is never sent while the trade is still PENDING. The balance refresh
that follows confirmation is secondary and cannot abort the flow.
"""

import logging
from enum import Enum

from reaktiv import Signal

from client.base_client import ApiError
from p2p.escrow import EscrowPaymentCoordinator, TradeCommandError
from p2p.feedback import TRADES_PATH
from store.models import TradeStatus
from store.session import TradeSessionStore

logger = logging.getLogger(__name__)

LOAD_ERROR = "Failed to load trade details"
CONFIRM_ERROR = "Failed to confirm payment"
COMPLETE_ERROR = "Failed to complete trade. Please try again."


class ReviewState(str, Enum):
    LOADING = "LOADING"
    REVIEWING = "REVIEWING"
    COMPLETED = "COMPLETED"
    ERROR = "ERROR"


class ConfirmationReviewFlow:

    def __init__(self, context, trade_id):
        self.context = context
        self.trade_id = trade_id
        self.store = TradeSessionStore(bus=context.bus)
        # The reviewer acts on behalf of both parties.
        self.coordinator = EscrowPaymentCoordinator(context, self.store, enforce_roles=False)

        self.state = Signal(ReviewState.LOADING)
        self.error = Signal(None)
        self.confirming = Signal(False)
        self._exit = None

    @property
    def trade(self):
        return self.store.snapshot

    async def load(self):
        """Fetch the trade. An already completed trade goes straight to COMPLETED."""
        self.state.set(ReviewState.LOADING)
        self.store.loading.set(True)
        try:
            trade = await self.context.client.get_trade(self.trade_id)
        except ApiError as e:
            logger.error("Loading trade %s for review failed: %s", self.trade_id, e.message)
            self._fail(LOAD_ERROR)
            return None
        finally:
            self.store.loading.set(False)

        self.store.observe(trade, source="load")
        if self.store.status() == TradeStatus.COMPLETED:
            self.state.set(ReviewState.COMPLETED)
        else:
            self.state.set(ReviewState.REVIEWING)
        return trade

    async def confirm_completion(self) -> bool:
        if self.state() != ReviewState.REVIEWING or self.confirming():
            return False

        self.confirming.set(True)
        try:
            if self.store.status() == TradeStatus.PENDING:
                try:
                    await self.coordinator.confirm_payment()
                except TradeCommandError as e:
                    logger.warning("Review of trade %s: %s", self.trade_id, e)
                    self._fail(CONFIRM_ERROR)
                    return False
            try:
                await self.coordinator.complete_trade()
            except TradeCommandError as e:
                logger.warning("Review of trade %s: %s", self.trade_id, e)
                self._fail(e.message or COMPLETE_ERROR)
                return False
        finally:
            self.confirming.set(False)

        self.state.set(ReviewState.COMPLETED)
        self._exit = self.context.engine.schedule(
            self.context.settings.terminal_redirect_delay, f"exit:{self.trade_id}",
            self.context.feedback.navigate, TRADES_PATH,
        )
        return True

    def back(self):
        self.context.feedback.navigate(TRADES_PATH)

    def close(self):
        if self._exit is not None:
            self._exit.cancel()

    def _fail(self, message):
        self.error.set(message)
        self.state.set(ReviewState.ERROR)
