"""
TradeStatusPoller — keeps a TradeSessionStore eventually consistent with the
escrow server by fixed-interval refetch.

Only the first fetch is a "loading" fetch. Background poll failures are
logged and swallowed; a first-load failure becomes the store's error.

Reaching a terminal status (by poll, by refetch or by a command's intent)
stops polling and schedules exactly one delayed exit to the trade list. The
expiry path shares the same exit.
"""

import asyncio
import logging
from typing import Optional

from client.base_client import ApiError
from p2p.feedback import TRADES_PATH

logger = logging.getLogger(__name__)

LOAD_ERROR = "Failed to load trade details"


class TradeStatusPoller:

    def __init__(self, context, store, trade_id, *, interval=None, exit_delay=None):
        self.context = context
        self.store = store
        self.trade_id = trade_id
        self.interval = context.settings.poll_interval if interval is None else interval
        self.exit_delay = (context.settings.terminal_redirect_delay
                           if exit_delay is None else exit_delay)

        self.polls = 0
        self._loaded = False
        self._task: Optional[asyncio.Task] = None
        self._exit = None
        self._unlisten = store.on_status_change(self._on_status_change)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def exit_scheduled(self) -> bool:
        return self._exit is not None

    # ── Fetching ─────────────────────────────────────────────────────

    async def load(self):
        """The initial, loading-indicator fetch. Returns the trade or None."""
        self.store.loading.set(True)
        try:
            trade = await self.context.client.get_trade(self.trade_id)
        except ApiError as e:
            logger.error("Loading trade %s failed: %s", self.trade_id, e.message)
            self.store.error.set(LOAD_ERROR)
            self.context.feedback.toast(LOAD_ERROR)
            return None
        finally:
            self._loaded = True
            self.store.loading.set(False)
        self.store.observe(trade, source="load")
        return trade

    async def poll_once(self):
        """One silent background fetch. Never raises ApiError."""
        if not self._loaded:
            return await self.load()
        self.polls += 1
        try:
            trade = await self.context.client.get_trade(self.trade_id)
        except ApiError as e:
            logger.warning("Poll of trade %s failed: %s", self.trade_id, e.message)
            return None
        self.store.observe(trade, source="poll")
        return trade

    # ── Interval ─────────────────────────────────────────────────────

    def start(self) -> None:
        if self.running or self.store.is_terminal():
            return
        self._task = asyncio.get_running_loop().create_task(
            self._run(), name=f"poll:{self.trade_id}",
        )

    async def _run(self):
        while not self.store.is_terminal():
            await asyncio.sleep(self.interval)
            await self.poll_once()
        logger.debug("Polling of trade %s stopped at %s", self.trade_id, self.store.status())

    def stop(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    # ── Exit ─────────────────────────────────────────────────────────

    def schedule_exit(self, delay=None):
        """Schedule the one redirect to the trade list. Later calls return the same handle."""
        if self._exit is None:
            delay = self.exit_delay if delay is None else delay
            logger.info("Trade %s: leaving trade view in %gs", self.trade_id, delay)
            self._exit = self.context.engine.schedule(
                delay, f"exit:{self.trade_id}", self.context.feedback.navigate, TRADES_PATH,
            )
        return self._exit

    def close(self) -> None:
        """Teardown: stop polling, cancel a pending exit, drop the store listener."""
        self.stop()
        if self._exit is not None:
            self._exit.cancel()
        if self._unlisten is not None:
            self._unlisten()
            self._unlisten = None

    def _on_status_change(self, trade, from_status, to_status):
        if self.store.machine.is_terminal(to_status):
            self.stop()
            self.schedule_exit()
