"""
Notification Sink — outbound transactional email for trade events.

The core hands a TradeNotification to a NotificationSink and moves on;
delivery is best-effort from its point of view. EmailJSSink delivers through
the EmailJS REST API using the P2P trade template.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

EMAILJS_ENDPOINT = "https://api.emailjs.com/api/v1.0/email/send"


class NotificationError(Exception):
    """The sink rejected or could not deliver a notification."""


@dataclass(frozen=True)
class TradeNotification:
    """Payload contract of the Notification Sink."""
    recipient: str
    title: str
    message: str
    trade_id: str
    stock_symbol: str
    quantity: float
    price_per_share: float
    total_amount: float
    status: str
    is_swap_trade: bool = False
    swap_stock_symbol: Optional[str] = None
    swap_quantity: Optional[float] = None
    cancelled_by: Optional[str] = None
    cancellation_reason: Optional[str] = None
    cta_link: Optional[str] = None
    cta_text: Optional[str] = None
    is_admin: bool = False

    def to_template_params(self, website_link: str) -> dict:
        params = {
            "to_email": self.recipient,
            "email": self.recipient,
            "website_link": website_link,
            "title": self.title,
            "message": self.message,
            "trade_id": self.trade_id,
            "stock_symbol": self.stock_symbol,
            "quantity": self.quantity,
            "price_per_share": f"{self.price_per_share:.2f}",
            "total_amount": f"{self.total_amount:.2f}",
            "status": self.status,
        }
        if self.is_swap_trade:
            params["is_swap_trade"] = True
            params["swap_stock_symbol"] = self.swap_stock_symbol
            params["swap_quantity"] = self.swap_quantity
        if self.cancelled_by:
            params["cancelled_by"] = self.cancelled_by
        if self.cancellation_reason:
            params["cancellation_reason"] = self.cancellation_reason
        if self.cta_link:
            params["cta_link"] = f"{website_link}{self.cta_link}"
            params["cta_text"] = self.cta_text or "View Trade"
        if self.is_admin:
            params["is_admin"] = True
        return params


class NotificationSink(ABC):
    """Anything that can deliver a TradeNotification."""

    @abstractmethod
    async def send(self, notification: TradeNotification) -> None:
        """Deliver the notification. Raise NotificationError on failure."""

    async def close(self) -> None:
        pass


class EmailJSSink(NotificationSink):
    """Delivers notifications through the EmailJS REST API."""

    def __init__(self, service_id, template_id, public_key, website_link,
                 endpoint=EMAILJS_ENDPOINT, transport=None):
        self.service_id = service_id
        self.template_id = template_id
        self.public_key = public_key
        self.website_link = website_link
        self.endpoint = endpoint
        self._http = httpx.AsyncClient(transport=transport)

    async def send(self, notification: TradeNotification) -> None:
        payload = {
            "service_id": self.service_id,
            "template_id": self.template_id,
            "user_id": self.public_key,
            "template_params": notification.to_template_params(self.website_link),
        }
        try:
            response = await self._http.post(self.endpoint, json=payload)
        except httpx.HTTPError as e:
            raise NotificationError(f"EmailJS unreachable: {e}") from e
        if response.is_error:
            raise NotificationError(response.text or "EmailJS failed")
        logger.debug("EmailJS accepted '%s' for %s", notification.title, notification.recipient)

    async def close(self) -> None:
        if not self._http.is_closed:
            await self._http.aclose()
