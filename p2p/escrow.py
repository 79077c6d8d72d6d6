"""
EscrowPaymentCoordinator — funding and release commands for one trade.

Each command is a one-shot intent against the escrow server:

    validate locally → claim the in-flight slot → POST → apply intent → refetch

Primary failures fail closed: TradeCommandError is raised, the store keeps its
state and an authoritative refetch is scheduled instead of any local undo.
Secondary effects (balance refresh, notification email) fail open on the
workflow engine.

    coordinator = EscrowPaymentCoordinator(ctx, store)
    await coordinator.confirm_payment()
    receipt = await coordinator.complete_trade()
"""

import logging
from typing import Optional

from client.base_client import ApiError
from client.email_client import TradeNotification
from p2p.feedback import trade_path
from store.models import CompletionReceipt, TradeStatus
from store.state_machine import GuardFailure, InvalidTransition, TransitionNotPermitted

logger = logging.getLogger(__name__)

CANCEL_QUESTION = "Are you sure you want to cancel this trade?"
DEFAULT_CANCEL_REASON = "User cancelled"


class TradeCommandError(Exception):
    """A primary trade command was refused locally or failed on the server.

    ``message`` is the server's message when there was one.
    """

    def __init__(self, command, message, status=None):
        self.command = command
        self.message = message
        self.status = status
        super().__init__(f"{command}: {message}")


class EscrowPaymentCoordinator:
    """
    Issues the four escrow commands against the trade held in a
    TradeSessionStore.

    - enforce_roles: check the acting role against the lifecycle's allowed_by.
      The admin confirmation page acts for both parties and turns this off.
    """

    def __init__(self, context, store, *, enforce_roles=True):
        self.context = context
        self.store = store
        self.enforce_roles = enforce_roles

    @property
    def trade_id(self) -> Optional[str]:
        trade = self.store.snapshot
        return trade.id if trade else None

    # ── Commands ─────────────────────────────────────────────────────

    async def confirm_payment(self):
        """Buyer funds the escrow (PENDING → ACCEPTED), then the balance is refreshed."""
        async def request(trade_id):
            await self.context.client.confirm_payment(trade_id)
            self.context.dispatcher.refresh_balance(self.context.client, self.context.bus)
            return True

        return await self._execute("confirm_payment", request, TradeStatus.ACCEPTED)

    async def mark_payment_sent(self):
        """Buyer reports the external payment (ACCEPTED → PAYMENT_SENT)."""
        async def request(trade_id):
            await self.context.client.mark_payment_sent(trade_id)
            return True

        return await self._execute("mark_payment_sent", request, TradeStatus.PAYMENT_SENT)

    async def complete_trade(self) -> Optional[CompletionReceipt]:
        """Release escrow and email the counterparty named by the completion response."""
        async def request(trade_id):
            receipt = await self.context.client.complete_trade(trade_id)
            self._notify_completed(receipt)
            return receipt

        return await self._execute("complete_trade", request, TradeStatus.COMPLETED)

    async def cancel_trade(self, reason=DEFAULT_CANCEL_REASON, *, confirmed=False):
        """
        Cancel after asking the user. Returns False if they declined, None if
        another command is in flight, True once the server accepted.
        """
        if not confirmed and not self.context.feedback.confirm(CANCEL_QUESTION):
            logger.debug("Cancellation of trade %s declined", self.trade_id)
            return False

        async def request(trade_id):
            await self.context.client.cancel_trade(trade_id, reason)
            self._notify_cancelled(reason)
            return True

        return await self._execute("cancel_trade", request, TradeStatus.CANCELLED)

    # ── Reconciliation ───────────────────────────────────────────────

    async def refetch(self):
        """Replace local belief with the server's copy. Failures are logged only."""
        trade_id = self.trade_id
        if trade_id is None:
            return None
        try:
            trade = await self.context.client.get_trade(trade_id)
        except ApiError as e:
            logger.warning("Refetch of trade %s failed: %s", trade_id, e.message)
            return None
        self.store.observe(trade, source="refetch")
        return trade

    def schedule_refetch(self):
        return self.context.engine.dispatch(f"refetch:{self.trade_id}", self.refetch)

    # ── Internal ─────────────────────────────────────────────────────

    async def _execute(self, command, request, intent):
        trade = self.store.snapshot
        if trade is None:
            raise TradeCommandError(command, "Trade is not loaded")

        role = trade.role if self.enforce_roles else None
        try:
            self.store.machine.validate_command(trade.status, command, context=trade, role=role)
        except (InvalidTransition, GuardFailure, TransitionNotPermitted) as e:
            raise TradeCommandError(command, str(e)) from e

        if not self.store.begin(command):
            logger.debug("%s ignored for trade %s: %s in flight",
                         command, trade.id, self.store.in_flight())
            return None

        try:
            result = await request(trade.id)
        except ApiError as e:
            logger.warning("%s failed for trade %s: %s", command, trade.id, e.message)
            self.schedule_refetch()
            raise TradeCommandError(command, e.message, status=e.status) from e
        finally:
            self.store.end()

        logger.info("%s accepted for trade %s", command, trade.id)
        self.store.apply_intent(intent, command)
        self.schedule_refetch()
        return result

    def _notify_completed(self, receipt: CompletionReceipt):
        trade = self.store.snapshot
        # The completion response, not the cached role flags, names the counterparty.
        recipient = receipt.seller_email if trade.user_is_buyer else receipt.buyer_email
        if not recipient:
            logger.warning("Completion of trade %s returned no counterparty email", trade.id)
            return
        self.context.dispatcher.send_notification(self.context.sink, TradeNotification(
            recipient=recipient,
            title="P2P Trade Completed",
            message=(f"Your P2P trade for {trade.quantity:g} shares of "
                     f"{trade.stock_symbol} has been completed successfully!"),
            trade_id=trade.id,
            stock_symbol=trade.stock_symbol,
            quantity=trade.quantity,
            price_per_share=trade.price_per_share,
            total_amount=trade.total_amount,
            status=TradeStatus.COMPLETED.value,
            is_swap_trade=trade.is_swap_trade,
            swap_stock_symbol=trade.swap_stock_symbol,
            swap_quantity=trade.swap_quantity,
            cta_link=trade_path(trade.id),
        ))

    def _notify_cancelled(self, reason):
        trade = self.store.snapshot
        user = self.context.user
        cancelled_by = (getattr(user, "email", None) or trade.role or "participant")
        self.context.dispatcher.send_notification(self.context.sink, TradeNotification(
            recipient=self.context.settings.admin_email,
            title="P2P Trade Cancelled",
            message=f"P2P trade {trade.id} for {trade.quantity:g} shares of "
                    f"{trade.stock_symbol} was cancelled.",
            trade_id=trade.id,
            stock_symbol=trade.stock_symbol,
            quantity=trade.quantity,
            price_per_share=trade.price_per_share,
            total_amount=trade.total_amount,
            status=TradeStatus.CANCELLED.value,
            is_swap_trade=trade.is_swap_trade,
            swap_stock_symbol=trade.swap_stock_symbol,
            swap_quantity=trade.swap_quantity,
            cancelled_by=cancelled_by,
            cancellation_reason=reason,
            is_admin=True,
        ))
