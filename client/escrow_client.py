"""
Escrow Client — one coroutine per P2P endpoint.

Offers are public; everything touching a trade or the user's profile is
bearer-authenticated.

    async with EscrowClient(base_url, token=token) as client:
        page = await client.list_offers(OfferFilters(stock_symbol="AAPL"))
        created = await client.initiate_trade(page.offers[0].id, 10, "Cash Balance")
        trade = await client.get_trade(created.trade_id)
"""

from client.base_client import ApiClient, ApiError
from store.models import (
    CompletionReceipt, InitiatedTrade, Offer, OfferFilters, OfferPage, Trade, UserProfile,
)


class EscrowClient(ApiClient):
    """The P2P marketplace and escrow endpoints."""

    # ── Offers ───────────────────────────────────────────────────────

    async def list_offers(self, filters=None) -> OfferPage:
        filters = filters or OfferFilters()
        data = await self.get("/p2p/offers", params=filters.to_params(), auth=False)
        return OfferPage.from_api(data)

    async def get_offer(self, offer_id) -> Offer:
        data = await self.get(f"/p2p/offers/{offer_id}", auth=False)
        return Offer.from_api(_require(data, "offer"))

    # ── Trades ───────────────────────────────────────────────────────

    async def initiate_trade(self, offer_id, quantity, payment_method) -> InitiatedTrade:
        data = await self.post("/p2p/trades/initiate", json={
            "offerId": offer_id,
            "quantity": quantity,
            "paymentMethod": payment_method,
        })
        created = InitiatedTrade.from_api(data)
        if not created.trade_id:
            raise ApiError("Initiate response carried no trade id",
                           method="POST", path="/p2p/trades/initiate")
        return created

    async def get_trade(self, trade_id) -> Trade:
        data = await self.get(f"/p2p/trades/{trade_id}")
        return Trade.from_api(_require(data, "trade"))

    async def confirm_payment(self, trade_id) -> None:
        await self.post(f"/p2p/trades/{trade_id}/confirm-payment")

    async def mark_payment_sent(self, trade_id) -> None:
        await self.post(f"/p2p/trades/{trade_id}/payment-sent")

    async def complete_trade(self, trade_id) -> CompletionReceipt:
        data = await self.post(f"/p2p/trades/{trade_id}/complete")
        return CompletionReceipt.from_api(data)

    async def cancel_trade(self, trade_id, reason) -> None:
        await self.post(f"/p2p/trades/{trade_id}/cancel", json={"reason": reason})

    # ── User ─────────────────────────────────────────────────────────

    async def get_profile(self) -> UserProfile:
        data = await self.get("/user/profile")
        return UserProfile.from_api(_require(data, "user"))


def _require(data, key):
    value = data.get(key) if isinstance(data, dict) else None
    if not isinstance(value, dict):
        raise ApiError(f"Response is missing '{key}'")
    return value
