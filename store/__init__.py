"""
Trade data model and the lifecycle state machine. The per-trade session
store lives in store.session.
"""

from store.base import Payload
from store.models import Offer, Trade, TradeStatus, OfferType
from store.state_machine import TradeLifecycle
