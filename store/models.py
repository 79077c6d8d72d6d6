"""
Domain classes for the P2P marketplace.
Each is a frozen @dataclass subclassing Payload; the client never mutates
what the server sent, it replaces whole objects.
"""

import dataclasses
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Tuple

from store.base import Payload


class OfferType(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    SWAP = "SWAP"


class TradeStatus(str, Enum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    PAYMENT_SENT = "PAYMENT_SENT"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    FAILED = "FAILED"


TERMINAL_STATUSES = frozenset({
    TradeStatus.COMPLETED,
    TradeStatus.CANCELLED,
    TradeStatus.FAILED,
})


_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True)
class Trader(Payload):
    """Public summary of the trader behind an offer."""
    username: str = ""
    first_name: str = ""
    total_trades: int = 0
    completed_trades: int = 0
    rating: float = 0.0
    total_reviews: int = 0
    completion_rate: float = 0.0
    is_verified: bool = False
    badges: Tuple[str, ...] = ()


@dataclass(frozen=True)
class Offer(Payload):
    """A standing proposal to buy, sell or swap a quantity range of a stock."""
    id: str = field(default="", metadata={"api": "_id"})
    offer_type: OfferType = OfferType.SELL
    stock_symbol: str = ""
    stock_name: str = ""
    min_quantity: float = 0.0
    max_quantity: float = 0.0
    price_per_share: float = 0.0
    total_value: float = 0.0
    payment_methods: Tuple[str, ...] = ()
    trader: Optional[Trader] = None
    swap_stock_symbol: Optional[str] = None
    swap_stock_name: Optional[str] = None
    swap_ratio: Optional[float] = None
    terms_and_conditions: Optional[str] = None

    def allows_quantity(self, quantity: float) -> bool:
        return self.min_quantity <= quantity <= self.max_quantity


@dataclass(frozen=True)
class Pagination(Payload):
    page: int = 1
    total_pages: int = 1
    total: int = 0


@dataclass(frozen=True)
class OfferPage(Payload):
    offers: Tuple[Offer, ...] = ()
    pagination: Optional[Pagination] = None


@dataclass(frozen=True)
class TradePartner(Payload):
    """Counterparty's public profile, fetched once with the trade."""
    username: str = ""
    first_name: str = ""
    last_name: str = ""


@dataclass(frozen=True)
class Trade(Payload):
    """
    One escrow-mediated exchange instantiated from an Offer.

    Static terms (symbol, quantity, price, total) and the role flags are
    fixed at creation; only ``status`` moves, and only forward.
    """
    id: str = field(default="", metadata={"api": "_id"})
    stock_symbol: str = ""
    quantity: float = 0.0
    price_per_share: float = 0.0
    total_amount: float = 0.0
    payment_method: str = ""
    status: TradeStatus = TradeStatus.PENDING
    user_is_buyer: bool = False
    user_is_seller: bool = False
    initiated_at: datetime = _EPOCH
    is_swap_trade: bool = False
    swap_stock_symbol: Optional[str] = None
    swap_quantity: Optional[float] = None
    trade_partner: Optional[TradePartner] = None
    current_user_role: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def role(self) -> Optional[str]:
        """'buyer', 'seller', or None when the observer is neither party."""
        if self.user_is_buyer:
            return "buyer"
        if self.user_is_seller:
            return "seller"
        return None

    def static_terms(self) -> tuple:
        return (self.stock_symbol, self.quantity, self.price_per_share, self.total_amount)

    def with_status(self, status: TradeStatus) -> "Trade":
        return dataclasses.replace(self, status=TradeStatus(status))


@dataclass(frozen=True)
class InitiatedTrade(Payload):
    """Response of POST /p2p/trades/initiate."""
    trade_id: str = ""
    buyer_email: Optional[str] = None
    seller_email: Optional[str] = None

    @classmethod
    def from_api(cls, data: dict):
        trade = data.get("trade") or {}
        return cls(
            trade_id=str(trade.get("_id") or trade.get("id") or ""),
            buyer_email=data.get("buyerEmail"),
            seller_email=data.get("sellerEmail"),
        )


@dataclass(frozen=True)
class CompletionReceipt(Payload):
    """Response of POST /p2p/trades/:id/complete — both parties' contacts."""
    seller_email: Optional[str] = None
    seller_name: Optional[str] = None
    buyer_email: Optional[str] = None
    buyer_name: Optional[str] = None


@dataclass(frozen=True)
class UserProfile(Payload):
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    balance: float = 0.0


@dataclass(frozen=True)
class OfferFilters:
    """Query for GET /p2p/offers. Empty values are left out of the query."""
    page: int = 1
    limit: int = 20
    sort_by: str = "rating"
    stock_symbol: Optional[str] = None
    offer_type: Optional[OfferType] = None
    min_amount: Optional[float] = None
    max_amount: Optional[float] = None
    quantity: Optional[float] = None
    swap_stock: Optional[str] = None

    def to_params(self) -> dict:
        params = {"page": str(self.page), "limit": str(self.limit), "sortBy": self.sort_by}
        if self.stock_symbol:
            params["stockSymbol"] = self.stock_symbol.upper()
        if self.offer_type is not None:
            params["offerType"] = OfferType(self.offer_type).value
        if self.min_amount is not None:
            params["minAmount"] = f"{self.min_amount:g}"
        if self.max_amount is not None:
            params["maxAmount"] = f"{self.max_amount:g}"
        if self.quantity is not None:
            params["quantity"] = f"{self.quantity:g}"
        if self.swap_stock:
            params["swapStock"] = self.swap_stock.upper()
        return params
