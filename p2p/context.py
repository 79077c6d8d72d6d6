"""
AppContext — explicit application state for one signed-in session.

Constructed at session start, injected into every view, torn down at logout.
Owns the HTTP clients, the notification sink, the event bus and the
background engine; nothing here is module-global.

    async with AppContext(Settings.from_env(), token=token) as ctx:
        view = TradeSessionView(ctx, trade_id)
        await view.mount()
        ...
        await view.unmount()
"""

import logging
from datetime import datetime, timezone

from client.email_client import EmailJSSink
from client.escrow_client import EscrowClient
from p2p.config import Settings
from p2p.feedback import LoggingFeedback
from reactive.bus import EventBus
from workflow.asyncio_engine import AsyncioEngine
from workflow.dispatcher import SideEffectDispatcher

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class AppContext:
    """Session-scoped collaborators shared by the trade views."""

    def __init__(self, settings=None, token=None, *, client=None, sink=None,
                 bus=None, engine=None, feedback=None, clock=utc_now, user=None):
        self.settings = settings or Settings()
        self.token = token
        self.user = user
        self.client = client or EscrowClient(self.settings.api_base_url, token=token)
        self.sink = sink or EmailJSSink(
            service_id=self.settings.emailjs_service_id,
            template_id=self.settings.emailjs_template_id,
            public_key=self.settings.emailjs_public_key,
            website_link=self.settings.website_link,
        )
        self.bus = bus or EventBus()
        self.engine = engine or AsyncioEngine()
        self.dispatcher = SideEffectDispatcher(self.engine)
        self.feedback = feedback or LoggingFeedback()
        self.clock = clock
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def close(self):
        """Logout teardown: stop background work, drop subscribers, close clients."""
        if self._closed:
            return
        self._closed = True
        await self.engine.shutdown()
        self.bus.close()
        await self.client.close()
        await self.sink.close()
        logger.debug("Application context closed")

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        await self.close()
