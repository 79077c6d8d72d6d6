"""
SideEffectDispatcher — names and dispatches the secondary effects of trade
commands on the workflow engine.

Secondary effects fail open: they run in the background, their errors are
logged, and the primary command that triggered them has already reported
success by the time they run.

    dispatcher = SideEffectDispatcher(engine)

    async def complete(...):
        receipt = await client.complete_trade(trade_id)
        dispatcher.send_notification(sink, notification)
        return receipt
"""

import logging

from reactive.bus import BalanceUpdated

logger = logging.getLogger(__name__)


class SideEffectDispatcher:
    """Helper for fire-and-forget side-effects.

    Wraps each effect in engine.dispatch() so the caller never awaits it and
    never sees its exception.
    """

    def __init__(self, engine):
        self._engine = engine

    def send_notification(self, sink, notification):
        """Deliver a notification through the sink, best-effort."""
        async def deliver():
            try:
                await sink.send(notification)
            except Exception as e:
                logger.warning("Notification '%s' for trade %s to %s failed: %s",
                               notification.title, notification.trade_id,
                               notification.recipient, e)
                return False
            logger.info("Notification '%s' sent for trade %s",
                        notification.title, notification.trade_id)
            return True

        return self._engine.dispatch(f"notify:{notification.trade_id}", deliver)

    def refresh_balance(self, client, bus):
        """Refetch the user profile and broadcast BalanceUpdated, best-effort."""
        async def refresh():
            try:
                profile = await client.get_profile()
            except Exception as e:
                logger.error("Failed to refresh user balance: %s", e)
                return None
            bus.publish(BalanceUpdated(user=profile))
            return profile

        return self._engine.dispatch("refresh-balance", refresh)
