"""
Shared fakes for the P2P tests: an in-memory escrow API behind
httpx.MockTransport, a recording Feedback, a recording NotificationSink and a
settable clock.
"""

import asyncio
import copy
import json
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import httpx
import pytest

from client.email_client import NotificationError, NotificationSink
from client.escrow_client import EscrowClient
from p2p.config import Settings
from p2p.context import AppContext
from p2p.feedback import Feedback

BASE_URL = "http://escrow.test/api"
T0 = datetime(2025, 1, 6, 12, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# API payloads
# ---------------------------------------------------------------------------

def trade_json(**overrides) -> dict:
    data = {
        "_id": "t1",
        "stockSymbol": "AAPL",
        "quantity": 10,
        "pricePerShare": 50,
        "totalAmount": 500,
        "paymentMethod": "Cash Balance",
        "status": "PENDING",
        "userIsBuyer": True,
        "userIsSeller": False,
        "initiatedAt": "2025-01-06T12:00:00Z",
        "isSwapTrade": False,
        "tradePartner": {"username": "sam", "firstName": "Sam", "lastName": "Seller"},
        "currentUserRole": "owner",
    }
    data.update(overrides)
    return data


def offer_json(**overrides) -> dict:
    data = {
        "_id": "o1",
        "offerType": "SELL",
        "stockSymbol": "AAPL",
        "stockName": "Apple Inc.",
        "minQuantity": 10,
        "maxQuantity": 100,
        "pricePerShare": 50,
        "totalValue": 5000,
        "paymentMethods": ["Cash Balance", "Crypto", "PayPal"],
        "trader": {"username": "sam", "firstName": "Sam", "rating": 4.8,
                   "totalTrades": 12, "isVerified": True, "badges": ["fast"]},
    }
    data.update(overrides)
    return data


# ---------------------------------------------------------------------------
# Fake escrow server
# ---------------------------------------------------------------------------

@dataclass
class Call:
    method: str
    path: str
    action: str
    body: Optional[dict]
    authorization: Optional[str]


class FakeEscrowServer:
    """In-memory TradeHub API. Commands advance the stored trade like the real one."""

    ADVANCES = {
        "confirm-payment": "ACCEPTED",
        "payment-sent": "PAYMENT_SENT",
        "complete": "COMPLETED",
        "cancel": "CANCELLED",
    }

    def __init__(self):
        self.trades = {"t1": trade_json()}
        self.offers = {"o1": offer_json()}
        self.profile = {"firstName": "Bea", "lastName": "Buyer",
                        "email": "bea@example.com", "balance": 9500}
        self.completion = {"sellerEmail": "sam@example.com", "sellerName": "Sam",
                           "buyerEmail": "bea@example.com", "buyerName": "Bea"}
        self.calls = []
        self.failures = {}
        self.next_trade_id = "t-new"
        self.latency = 0
        self.transport = httpx.MockTransport(self.handle)

    # ── Test controls ────────────────────────────────────────────────

    def fail(self, action, status=500, message="Server error", times=None):
        """Make action fail. status=None simulates a transport error."""
        self.failures[action] = [status, message, times]

    def recover(self, action):
        self.failures.pop(action, None)

    def set_status(self, trade_id, status):
        self.trades[trade_id]["status"] = status

    def count(self, action) -> int:
        return sum(1 for c in self.calls if c.action == action)

    @property
    def actions(self):
        return [c.action for c in self.calls]

    def commands(self):
        return [a for a in self.actions if a in self.ADVANCES or a == "initiate"]

    # ── Routing ──────────────────────────────────────────────────────

    async def handle(self, request: httpx.Request) -> httpx.Response:
        if self.latency:
            await asyncio.sleep(self.latency)
        route = request.url.path[len("/api"):]
        parts = route.strip("/").split("/")
        body = json.loads(request.content) if request.content else None
        action = self._action(request.method, parts)
        self.calls.append(Call(request.method, route, action, body,
                               request.headers.get("authorization")))

        if action in self.failures:
            status, message, times = self.failures[action]
            if times is not None:
                times -= 1
                self.failures[action][2] = times
                if times <= 0:
                    del self.failures[action]
            if status is None:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(status, json={"message": message})

        if action == "list-offers":
            return httpx.Response(200, json={
                "offers": list(self.offers.values()),
                "pagination": {"page": 1, "totalPages": 1, "total": len(self.offers)},
            })
        if action == "get-offer":
            return self._found("offer", self.offers.get(parts[2]))
        if action == "initiate":
            return self._initiate(body)
        if action == "get-trade":
            trade = self.trades.get(parts[2])
            return self._found("trade", copy.deepcopy(trade) if trade else None)
        if action in self.ADVANCES:
            trade = self.trades.get(parts[2])
            if trade is None:
                return httpx.Response(404, json={"message": "Trade not found"})
            trade["status"] = self.ADVANCES[action]
            if action == "complete":
                return httpx.Response(200, json=self.completion)
            return httpx.Response(200, json={"message": "ok"})
        if action == "profile":
            return httpx.Response(200, json={"user": self.profile})
        return httpx.Response(404, json={"message": f"No route {route}"})

    @staticmethod
    def _action(method, parts):
        if parts[:2] == ["p2p", "offers"]:
            return "list-offers" if len(parts) == 2 else "get-offer"
        if parts[:2] == ["p2p", "trades"]:
            if len(parts) == 3 and parts[2] == "initiate":
                return "initiate"
            if len(parts) == 3:
                return "get-trade"
            return parts[3]
        if parts == ["user", "profile"]:
            return "profile"
        return "unknown"

    @staticmethod
    def _found(key, value):
        if value is None:
            return httpx.Response(404, json={"message": f"{key.title()} not found"})
        return httpx.Response(200, json={key: value})

    def _initiate(self, body):
        offer = self.offers.get(body["offerId"])
        if offer is None:
            return httpx.Response(404, json={"message": "Offer not found"})
        trade = trade_json(
            _id=self.next_trade_id,
            stockSymbol=offer["stockSymbol"],
            quantity=body["quantity"],
            pricePerShare=offer["pricePerShare"],
            totalAmount=round(body["quantity"] * offer["pricePerShare"], 2),
            paymentMethod=body["paymentMethod"],
            userIsBuyer=offer["offerType"] == "SELL",
            userIsSeller=offer["offerType"] != "SELL",
        )
        self.trades[trade["_id"]] = trade
        return httpx.Response(201, json={
            "trade": trade, "buyerEmail": "bea@example.com", "sellerEmail": "sam@example.com",
        })


# ---------------------------------------------------------------------------
# Feedback, sink, clock
# ---------------------------------------------------------------------------

class RecordingFeedback(Feedback):

    def __init__(self, answer=True):
        self.answer = answer
        self.toasts = []
        self.navigations = []
        self.questions = []

    @property
    def location(self):
        return self.navigations[-1] if self.navigations else None

    def toast(self, message):
        self.toasts.append(message)

    def navigate(self, path):
        self.navigations.append(path)

    def confirm(self, question):
        self.questions.append(question)
        return self.answer


class RecordingSink(NotificationSink):

    def __init__(self, fail=False):
        self.fail = fail
        self.sent = []
        self.attempts = 0

    async def send(self, notification):
        self.attempts += 1
        if self.fail:
            raise NotificationError("EmailJS unreachable")
        self.sent.append(notification)


class FakeClock:

    def __init__(self, now=T0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)

    def set_elapsed(self, seconds):
        self.now = T0 + timedelta(seconds=seconds)


FAST = Settings(
    api_base_url=BASE_URL,
    poll_interval=0.01,
    tick_interval=0.01,
    terminal_redirect_delay=0.05,
    expiry_redirect_delay=0.03,
    initiate_redirect_delay=0.01,
    cancel_redirect_delay=0.02,
)


def make_context(server, *, feedback=None, sink=None, clock=None, settings=FAST, token="tok"):
    return AppContext(
        settings, token=token,
        client=EscrowClient(settings.api_base_url, token=token, transport=server.transport),
        sink=sink or RecordingSink(),
        feedback=feedback or RecordingFeedback(),
        clock=clock or FakeClock(),
    )


def run(ctx, scenario):
    """Run scenario() on a fresh loop, then tear the context down."""
    async def main():
        try:
            return await scenario()
        finally:
            await ctx.close()
    return asyncio.run(main())


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def server():
    return FakeEscrowServer()


@pytest.fixture
def feedback():
    return RecordingFeedback()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def ctx(server, feedback, sink, clock):
    return make_context(server, feedback=feedback, sink=sink, clock=clock)
