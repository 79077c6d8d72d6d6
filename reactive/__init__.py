"""
Application-wide event bus: balance, status and initiation events.
"""

from reactive.bus import EventBus, Subscription, BalanceUpdated, TradeStatusChanged, TradeInitiated
