"""
TradeSessionView — the pending-trade screen as a view model.

Composes one TradeSessionStore with its three drivers:

  TradeStatusPoller       server observations every poll_interval
  CountdownMonitor        settlement-window countdown, expiry once
  EscrowPaymentCoordinator   user commands

Everything displayed is a reaktiv Computed of the store, so the status line,
the countdown and the action buttons always agree with the latest
authoritative status.

    view = TradeSessionView(ctx, trade_id)
    await view.mount()
    view.screen()            # Screen.ACTIVE
    await view.confirm_payment()
    await view.unmount()
"""

import logging
from enum import Enum

from reaktiv import Signal, Computed

from p2p.countdown import CountdownMonitor
from p2p.escrow import EscrowPaymentCoordinator, TradeCommandError
from p2p.feedback import TRADES_PATH
from p2p.poller import TradeStatusPoller
from store.models import TradeStatus
from store.session import TradeSessionStore

logger = logging.getLogger(__name__)


class Screen(str, Enum):
    LOADING = "LOADING"
    ERROR = "ERROR"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


TERMINAL_MESSAGES = {
    Screen.COMPLETED: "The trade has been successfully completed. "
                      "Both parties have been notified via email.",
    Screen.FAILED: "The trade has failed. Your funds have been returned to your account.",
    Screen.CANCELLED: "The trade has been cancelled. Any escrowed funds have been returned.",
}

_TERMINAL_SCREENS = {
    TradeStatus.COMPLETED: Screen.COMPLETED,
    TradeStatus.FAILED: Screen.FAILED,
    TradeStatus.CANCELLED: Screen.CANCELLED,
}

# Toasts
PAYMENT_CONFIRMED = "Payment confirmed! Funds/stocks deducted."
PAYMENT_CONFIRM_FAILED = "Failed to confirm payment. Please try again."
PAYMENT_SENT = "Payment marked as sent. Waiting for seller confirmation."
PAYMENT_SENT_FAILED = "Failed to update payment status."
TRADE_CANCELLED = "Trade cancelled successfully."
CANCEL_FAILED = "Failed to cancel trade."
RECEIPT_COMING_SOON = "Confirm payment receipt feature coming soon"
TRADE_EXPIRED = "Trade expired. Redirecting..."


def _money(value) -> str:
    return f"${value:,.2f}"


class TradeSessionView:

    def __init__(self, context, trade_id):
        self.context = context
        self.trade_id = trade_id
        settings = context.settings

        self.store = TradeSessionStore(bus=context.bus)
        self.poller = TradeStatusPoller(context, self.store, trade_id)
        self.coordinator = EscrowPaymentCoordinator(context, self.store)
        self.countdown = CountdownMonitor(
            self.store, context.clock,
            window=settings.settlement_window,
            tick_interval=settings.tick_interval,
            on_expired=self._on_expired,
        )

        self.prompt_dismissed = Signal(False)
        self.screen = Computed(self._compute_screen)
        self.show_payment_prompt = Computed(self._compute_show_prompt)
        self.mounted = False
        self._unlisten = None

    # ── Lifecycle ────────────────────────────────────────────────────

    async def mount(self):
        """First load, then start polling. The countdown starts on the first observation."""
        self.mounted = True
        self._unlisten = self.store.on_status_change(self._on_status_change)
        await self.poller.load()
        if not self.mounted:
            return
        self.poller.start()

    async def unmount(self):
        """Navigation away: cancel every timer this view owns."""
        if not self.mounted:
            return
        self.mounted = False
        if self._unlisten is not None:
            self._unlisten()
            self._unlisten = None
        self.countdown.stop()
        self.poller.close()
        logger.debug("Trade view %s unmounted", self.trade_id)

    # ── Display ──────────────────────────────────────────────────────

    def _compute_screen(self):
        trade = self.store.trade()
        if trade is None:
            return Screen.LOADING if self.store.loading() or self.store.error() is None else Screen.ERROR
        return _TERMINAL_SCREENS.get(trade.status, Screen.ACTIVE)

    def _compute_show_prompt(self):
        trade = self.store.trade()
        return (trade is not None and trade.user_is_buyer
                and trade.status == TradeStatus.PENDING
                and not self.prompt_dismissed())

    @property
    def terminal_message(self):
        return TERMINAL_MESSAGES.get(self.screen())

    @property
    def payment_prompt(self):
        """(title, body) of the buyer's funding prompt, or None when hidden."""
        if not self.show_payment_prompt():
            return None
        trade = self.store.snapshot
        if trade.is_swap_trade:
            if trade.swap_quantity is None:
                given = f"your {trade.swap_stock_symbol or 'swap'} shares"
            else:
                given = f"{trade.swap_quantity:g} shares of {trade.swap_stock_symbol}"
            return ("Stock Swap Required",
                    f"This is a swap trade. You will exchange {given} "
                    f"for {trade.quantity:g} shares of {trade.stock_symbol}.")
        return ("Payment Required",
                f"You need to pay {_money(trade.total_amount)} to proceed with this trade. "
                f"Funds will be held in escrow until the seller releases the stocks.")

    @property
    def status_hint(self):
        trade = self.store.snapshot
        if trade is None or trade.is_terminal:
            return None
        if trade.status == TradeStatus.PENDING and not trade.user_is_buyer:
            return "Waiting for the buyer to confirm payment."
        if trade.status == TradeStatus.PAYMENT_SENT and trade.user_is_buyer:
            return "Waiting for the seller to confirm receipt."
        return None

    def actions(self):
        """Enabled buttons: lifecycle commands plus the seller's receipt placeholder."""
        actions = set(self.store.available_actions())
        trade = self.store.snapshot
        if (trade is not None and trade.user_is_seller
                and trade.status == TradeStatus.PAYMENT_SENT and not self.store.in_flight()):
            actions.add("confirm_receipt")
        return frozenset(actions)

    def dismiss_payment_prompt(self):
        self.prompt_dismissed.set(True)

    # ── Handlers ─────────────────────────────────────────────────────

    async def confirm_payment(self):
        return await self._handle(self.coordinator.confirm_payment(),
                                  PAYMENT_CONFIRMED, PAYMENT_CONFIRM_FAILED,
                                  on_success=self.dismiss_payment_prompt)

    async def payment_sent(self):
        return await self._handle(self.coordinator.mark_payment_sent(),
                                  PAYMENT_SENT, PAYMENT_SENT_FAILED)

    async def cancel(self, reason="User cancelled"):
        # The user's own cancellation leaves the view sooner than a polled one.
        default_delay = self.poller.exit_delay
        self.poller.exit_delay = self.context.settings.cancel_redirect_delay
        try:
            return await self._handle(self.coordinator.cancel_trade(reason),
                                      TRADE_CANCELLED, CANCEL_FAILED)
        finally:
            self.poller.exit_delay = default_delay

    def confirm_receipt(self):
        self.context.feedback.toast(RECEIPT_COMING_SOON)

    def back(self):
        self.context.feedback.navigate(TRADES_PATH)

    async def _handle(self, command, success, failure, on_success=None):
        try:
            result = await command
        except TradeCommandError as e:
            logger.info("Trade %s: %s", self.trade_id, e)
            self.context.feedback.toast(failure)
            return False
        if not result:
            return False
        if on_success is not None:
            on_success()
        self.context.feedback.toast(success)
        return True

    def _on_status_change(self, trade, from_status, to_status):
        # The first observation may come from a later poll when the first load failed.
        if from_status is None:
            self.countdown.start()

    def _on_expired(self, trade):
        self.context.feedback.toast(TRADE_EXPIRED)
        self.poller.schedule_exit(self.context.settings.expiry_redirect_delay)
