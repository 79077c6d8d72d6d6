"""
Offer negotiation — turns a browsed Offer plus what the user typed into an
initiate-trade command.

Quantity and USD amount are linked (amount = quantity × price). Editing one
recomputes only the other, to two decimals, so the field being typed in is
never rewritten under the user.

Who settles how depends on the offer:
- SELL offer: the user buys and must pick a payment method
  ("Cash Balance", or "Crypto" after acknowledging the transfer)
- BUY / SWAP offer: the user releases shares into escrow ("Asset")
"""

import logging
from dataclasses import dataclass
from typing import Optional

from client.base_client import ApiError
from client.email_client import TradeNotification
from p2p.feedback import confirm_path, trade_path
from reactive.bus import TradeInitiated
from store.models import Offer, OfferType

logger = logging.getLogger(__name__)

CASH_BALANCE = "Cash Balance"
CRYPTO = "Crypto"
ASSET = "Asset"
ENABLED_PAYMENT_METHODS = frozenset({CASH_BALANCE, CRYPTO})

_QR = "https://api.qrserver.com/v1/create-qr-code/?size=200x200&data="


@dataclass(frozen=True)
class Wallet:
    address: str

    @property
    def qr_url(self) -> str:
        return _QR + self.address


# Platform escrow deposit addresses. Displayed only; nothing is verified on-chain.
CRYPTO_WALLETS = {
    "Bitcoin": Wallet("1A1zP1eP5QGefi2DMPTfTL5SLmv7DivfNa"),
    "Ethereum": Wallet("0x742d35Cc6634C0532925a3b844Bc9e7595f0bEb"),
    "USDT": Wallet("TN3W4H6rK2ce4vX9YnFQHwKENnHjoxb3m9"),
    "BNB": Wallet("bnb1grpf0955h0ykzq3ar5nmum7y6gdfl6lxfn46h2"),
    "Solana": Wallet("7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU"),
}


class ValidationError(Exception):
    """Input rejected before any network call."""


def amount_for_quantity(quantity: float, price: float) -> float:
    return round(quantity * price, 2)


def quantity_for_amount(amount: float, price: float) -> float:
    if price <= 0:
        raise ValueError("price must be positive")
    return round(amount / price, 2)


def _parse(text) -> Optional[float]:
    try:
        value = float(text)
    except (TypeError, ValueError):
        return None
    return value if value == value else None  # NaN


@dataclass
class CryptoDisclosure:
    """Wallet address + QR shown when the buyer picks Crypto."""
    network: str = "Bitcoin"
    acknowledged: bool = False

    @property
    def wallet(self) -> Wallet:
        return CRYPTO_WALLETS[self.network]


class OfferNegotiationController:
    """Form state and submission for one offer."""

    def __init__(self, context, offer: Offer):
        self.context = context
        self.offer = offer
        self.quantity = ""
        self.amount_usd = ""
        self.payment_method: Optional[str] = None
        self.crypto: Optional[CryptoDisclosure] = None
        self.processing = False
        self.trade_id: Optional[str] = None

    # ── Role ─────────────────────────────────────────────────────────

    @property
    def user_role(self) -> str:
        return "buyer" if self.offer.offer_type == OfferType.SELL else "seller"

    @property
    def requires_payment_method(self) -> bool:
        return self.user_role == "buyer"

    def payment_options(self):
        """(method, enabled) for every method the offer lists."""
        return [(m, m in ENABLED_PAYMENT_METHODS) for m in self.offer.payment_methods]

    # ── Linked inputs ────────────────────────────────────────────────

    def set_quantity(self, text: str) -> None:
        self.quantity = text
        qty = _parse(text) if text else None
        self.amount_usd = (
            f"{amount_for_quantity(qty, self.offer.price_per_share):.2f}"
            if qty is not None else ""
        )

    def set_amount(self, text: str) -> None:
        self.amount_usd = text
        amount = _parse(text) if text else None
        if amount is None or self.offer.price_per_share <= 0:
            self.quantity = ""
            return
        self.quantity = f"{quantity_for_amount(amount, self.offer.price_per_share):.2f}"

    # ── Payment method ───────────────────────────────────────────────

    def select_payment_method(self, method: str) -> bool:
        """Pick a method. Unavailable methods are refused with a toast."""
        if method not in ENABLED_PAYMENT_METHODS:
            self.context.feedback.toast(
                f"{method} is currently unavailable. Please select another payment method."
            )
            self.payment_method = None
            self.crypto = None
            return False
        self.payment_method = method
        self.crypto = CryptoDisclosure() if method == CRYPTO else None
        return True

    def select_crypto_network(self, network: str) -> Wallet:
        if self.crypto is None:
            raise RuntimeError("Crypto payment is not selected")
        if network not in CRYPTO_WALLETS:
            raise KeyError(f"Unknown network {network!r}; choose from {sorted(CRYPTO_WALLETS)}")
        self.crypto = CryptoDisclosure(network=network)
        return self.crypto.wallet

    def acknowledge_crypto_payment(self) -> None:
        """The user says "I've sent payment". Local only; no status moves."""
        if self.crypto is None:
            raise RuntimeError("Crypto payment is not selected")
        self.crypto.acknowledged = True

    def close_crypto_disclosure(self) -> None:
        self.crypto = None
        if self.payment_method == CRYPTO:
            self.payment_method = None

    # ── Submission ───────────────────────────────────────────────────

    def validate(self):
        """Return (quantity, wire payment method) or raise ValidationError."""
        if not self.quantity:
            raise ValidationError("Enter the number of shares")
        qty = _parse(self.quantity)
        if qty is None:
            raise ValidationError("Enter a valid quantity")
        if not self.offer.allows_quantity(qty):
            raise ValidationError(
                f"Quantity must be between {self.offer.min_quantity:g} "
                f"and {self.offer.max_quantity:g} shares"
            )

        if not self.requires_payment_method:
            return qty, ASSET
        if self.payment_method is None:
            raise ValidationError("Select a payment method")
        if self.payment_method == CRYPTO and not (self.crypto and self.crypto.acknowledged):
            raise ValidationError("Confirm that you have sent the crypto payment")
        return qty, self.payment_method

    async def submit(self) -> Optional[str]:
        """Initiate the trade. Returns the new trade id, or None if nothing was created."""
        if self.processing:
            return None
        try:
            qty, method = self.validate()
        except ValidationError as e:
            self.context.feedback.toast(str(e))
            return None

        ctx = self.context
        self.processing = True
        try:
            created = await ctx.client.initiate_trade(self.offer.id, qty, method)
        except ApiError as e:
            logger.warning("Initiate trade on offer %s failed: %s", self.offer.id, e.message)
            ctx.feedback.toast(e.message)
            return None
        finally:
            self.processing = False

        self.trade_id = created.trade_id
        logger.info("Trade %s initiated on offer %s (%g × %s, %s)",
                    created.trade_id, self.offer.id, qty, self.offer.stock_symbol, method)

        ctx.bus.publish(TradeInitiated(trade_id=created.trade_id, offer_id=self.offer.id))
        ctx.dispatcher.send_notification(ctx.sink, self._admin_notification(created.trade_id, qty))

        ctx.feedback.toast("Trade initiated successfully! Redirecting...")
        ctx.engine.schedule(ctx.settings.initiate_redirect_delay, "redirect",
                            ctx.feedback.navigate, trade_path(created.trade_id))
        return created.trade_id

    def _admin_notification(self, trade_id, qty) -> TradeNotification:
        offer = self.offer
        return TradeNotification(
            recipient=self.context.settings.admin_email,
            title="New P2P Trade Initiated - Admin Review Required",
            message=f"A new P2P trade has been initiated for {qty:g} shares of {offer.stock_symbol}",
            trade_id=trade_id,
            stock_symbol=offer.stock_symbol,
            quantity=qty,
            price_per_share=offer.price_per_share,
            total_amount=amount_for_quantity(qty, offer.price_per_share),
            status="INITIATED",
            is_swap_trade=offer.offer_type == OfferType.SWAP,
            swap_stock_symbol=offer.swap_stock_symbol,
            swap_quantity=(round(qty * offer.swap_ratio, 2) if offer.swap_ratio else None),
            cta_link=confirm_path(trade_id),
            cta_text="Review Trade",
            is_admin=True,
        )
