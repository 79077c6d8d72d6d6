"""
Tests for TradeSessionView: screens, the buyer's payment prompt, command
handlers and the exits out of the view (terminal poll, own cancellation,
expiry, unmount).
"""

import asyncio

from conftest import RecordingFeedback, RecordingSink, make_context, run, trade_json
from p2p.countdown import CountdownState
from p2p.feedback import TRADES_PATH
from p2p.trade_view import (
    CANCEL_FAILED, PAYMENT_CONFIRM_FAILED, PAYMENT_CONFIRMED, PAYMENT_SENT,
    RECEIPT_COMING_SOON, TERMINAL_MESSAGES, TRADE_CANCELLED, TRADE_EXPIRED,
    Screen, TradeSessionView,
)
from store.models import TradeStatus


def _seller(server, status="PENDING"):
    server.trades["t1"] = trade_json(status=status, userIsBuyer=False, userIsSeller=True)


# ---------------------------------------------------------------------------
# Screens
# ---------------------------------------------------------------------------

class TestScreens:
    def test_loading_before_first_fetch(self, ctx):
        view = TradeSessionView(ctx, "t1")
        assert view.screen() is Screen.LOADING
        assert view.terminal_message is None

    def test_active_after_mount(self, ctx):
        view = TradeSessionView(ctx, "t1")

        async def scenario():
            await view.mount()
            assert view.screen() is Screen.ACTIVE
            assert view.countdown.remaining() == 1800
            assert view.countdown.display() == "30:00"
            await view.unmount()

        run(ctx, scenario)

    def test_load_failure_is_error_screen(self, server, ctx):
        server.fail("get-trade", status=500)
        view = TradeSessionView(ctx, "t1")

        async def scenario():
            await view.mount()
            await view.unmount()

        run(ctx, scenario)
        assert view.screen() is Screen.ERROR
        assert ctx.feedback.toasts == ["Failed to load trade details"]

    def test_terminal_screens(self, server):
        for status in ("COMPLETED", "FAILED", "CANCELLED"):
            server.set_status("t1", status)
            ctx = make_context(server)
            view = TradeSessionView(ctx, "t1")

            async def scenario():
                await view.mount()
                assert not view.poller.running
                assert view.countdown.state() is CountdownState.STOPPED
                await ctx.engine.drain(timeout=1)

            run(ctx, scenario)
            assert view.screen() is Screen(status)
            assert view.terminal_message == TERMINAL_MESSAGES[Screen(status)]
            assert view.actions() == frozenset()
            assert ctx.feedback.navigations == [TRADES_PATH]


# ---------------------------------------------------------------------------
# Payment prompt, hints and actions
# ---------------------------------------------------------------------------

class TestDisplay:
    def test_payment_prompt_for_pending_buyer(self, ctx):
        view = TradeSessionView(ctx, "t1")

        async def scenario():
            await view.mount()
            await view.unmount()

        run(ctx, scenario)
        title, body = view.payment_prompt
        assert title == "Payment Required"
        assert "$500.00" in body
        assert view.status_hint is None
        assert view.actions() == frozenset({"confirm_payment", "cancel_trade"})

        view.dismiss_payment_prompt()
        assert view.payment_prompt is None

    def test_swap_prompt(self, server, ctx):
        server.trades["t1"] = trade_json(isSwapTrade=True, swapStockSymbol="MSFT", swapQuantity=5)
        view = TradeSessionView(ctx, "t1")

        async def scenario():
            await view.mount()
            await view.unmount()

        run(ctx, scenario)
        title, body = view.payment_prompt
        assert title == "Stock Swap Required"
        assert "exchange 5 shares of MSFT for 10 shares of AAPL" in body

    def test_swap_prompt_without_swap_quantity(self, server, ctx):
        server.trades["t1"] = trade_json(isSwapTrade=True, swapStockSymbol="MSFT")
        view = TradeSessionView(ctx, "t1")

        async def scenario():
            await view.mount()
            await view.unmount()

        run(ctx, scenario)
        title, body = view.payment_prompt
        assert title == "Stock Swap Required"
        assert "exchange your MSFT shares for 10 shares of AAPL" in body

    def test_seller_sees_no_prompt(self, server, ctx):
        _seller(server)
        view = TradeSessionView(ctx, "t1")

        async def scenario():
            await view.mount()
            await view.unmount()

        run(ctx, scenario)
        assert view.payment_prompt is None
        assert view.status_hint == "Waiting for the buyer to confirm payment."
        assert view.actions() == frozenset({"cancel_trade"})

    def test_seller_receipt_placeholder(self, server, ctx):
        _seller(server, status="PAYMENT_SENT")
        view = TradeSessionView(ctx, "t1")

        async def scenario():
            await view.mount()
            await view.unmount()

        run(ctx, scenario)
        assert "confirm_receipt" in view.actions()
        view.confirm_receipt()
        assert ctx.feedback.toasts == [RECEIPT_COMING_SOON]
        assert view.store.status() is TradeStatus.PAYMENT_SENT

    def test_buyer_waits_for_seller(self, server, ctx):
        server.set_status("t1", "PAYMENT_SENT")
        view = TradeSessionView(ctx, "t1")

        async def scenario():
            await view.mount()
            await view.unmount()

        run(ctx, scenario)
        assert view.status_hint == "Waiting for the seller to confirm receipt."
        assert "confirm_receipt" not in view.actions()

    def test_back(self, ctx):
        TradeSessionView(ctx, "t1").back()
        assert ctx.feedback.navigations == [TRADES_PATH]


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------

class TestHandlers:
    def test_confirm_payment(self, server, ctx):
        view = TradeSessionView(ctx, "t1")

        async def scenario():
            await view.mount()
            assert await view.confirm_payment() is True
            await view.unmount()

        run(ctx, scenario)
        assert ctx.feedback.toasts == [PAYMENT_CONFIRMED]
        assert view.store.status() is TradeStatus.ACCEPTED
        assert not view.show_payment_prompt()
        assert view.actions() == frozenset({"mark_payment_sent", "complete_trade", "cancel_trade"})

    def test_confirm_payment_failure(self, server, ctx):
        server.fail("confirm-payment", status=400, message="Insufficient balance")
        view = TradeSessionView(ctx, "t1")

        async def scenario():
            await view.mount()
            assert await view.confirm_payment() is False
            await view.unmount()

        run(ctx, scenario)
        assert ctx.feedback.toasts == [PAYMENT_CONFIRM_FAILED]
        assert view.store.status() is TradeStatus.PENDING
        assert view.show_payment_prompt()

    def test_payment_sent(self, server, ctx):
        server.set_status("t1", "ACCEPTED")
        view = TradeSessionView(ctx, "t1")

        async def scenario():
            await view.mount()
            assert await view.payment_sent() is True
            await view.unmount()

        run(ctx, scenario)
        assert ctx.feedback.toasts == [PAYMENT_SENT]
        assert view.store.status() is TradeStatus.PAYMENT_SENT

    def test_cancel_declined(self, server):
        ctx = make_context(server, feedback=RecordingFeedback(answer=False))
        view = TradeSessionView(ctx, "t1")

        async def scenario():
            await view.mount()
            assert await view.cancel() is False
            await view.unmount()

        run(ctx, scenario)
        assert ctx.feedback.toasts == []
        assert server.count("cancel") == 0

    def test_cancel_failure(self, server, ctx):
        server.fail("cancel", status=None)
        view = TradeSessionView(ctx, "t1")

        async def scenario():
            await view.mount()
            assert await view.cancel() is False
            await view.unmount()

        run(ctx, scenario)
        assert ctx.feedback.toasts == [CANCEL_FAILED]
        assert view.screen() is Screen.ACTIVE

    def test_own_cancel_leaves_sooner(self, server, ctx):
        view = TradeSessionView(ctx, "t1")

        async def scenario():
            await view.mount()
            assert await view.cancel("Changed my mind") is True
            assert view.poller.exit_delay == 0.05
            # cancel_redirect_delay is 0.02, the polled-terminal delay 0.05
            await asyncio.sleep(0.035)
            navigations = list(ctx.feedback.navigations)
            await view.unmount()
            return navigations

        assert run(ctx, scenario) == [TRADES_PATH]
        assert ctx.feedback.toasts == [TRADE_CANCELLED]
        assert view.screen() is Screen.CANCELLED
        assert server.count("cancel") == 1

    def test_cancel_notification_failure_is_silent(self, server):
        ctx = make_context(server, sink=RecordingSink(fail=True))
        view = TradeSessionView(ctx, "t1")

        async def scenario():
            await view.mount()
            assert await view.cancel() is True
            await ctx.engine.drain(timeout=1)
            await view.unmount()

        run(ctx, scenario)
        assert ctx.sink.attempts == 1
        assert ctx.feedback.toasts == [TRADE_CANCELLED]
        assert ctx.feedback.navigations == [TRADES_PATH]


# ---------------------------------------------------------------------------
# Leaving the view
# ---------------------------------------------------------------------------

class TestExits:
    def test_polled_completion_near_expiry(self, server, clock, ctx):
        clock.set_elapsed(1500)
        view = TradeSessionView(ctx, "t1")

        async def scenario():
            await view.mount()
            assert view.countdown.remaining() == 300
            server.set_status("t1", "COMPLETED")
            await asyncio.sleep(0.04)
            assert view.screen() is Screen.COMPLETED
            assert view.countdown.state() is CountdownState.STOPPED
            # The window passing after completion changes nothing.
            clock.set_elapsed(1900)
            await asyncio.sleep(0.03)
            await ctx.engine.drain(timeout=1)
            await view.unmount()

        run(ctx, scenario)
        assert ctx.feedback.navigations == [TRADES_PATH]
        assert TRADE_EXPIRED not in ctx.feedback.toasts
        assert not view.store.expired()
        assert view.countdown.remaining() == 300

    def test_expiry_redirects(self, clock, ctx):
        clock.set_elapsed(1800)
        view = TradeSessionView(ctx, "t1")

        async def scenario():
            await view.mount()
            await ctx.engine.drain(timeout=1)
            await view.unmount()

        run(ctx, scenario)
        assert ctx.feedback.toasts == [TRADE_EXPIRED]
        assert ctx.feedback.navigations == [TRADES_PATH]
        assert view.countdown.state() is CountdownState.EXPIRED
        assert view.store.expired()
        assert view.store.status() is TradeStatus.PENDING

    def test_expiry_then_terminal_poll_redirects_once(self, server, clock, ctx):
        clock.set_elapsed(1800)
        view = TradeSessionView(ctx, "t1")

        async def scenario():
            await view.mount()
            server.set_status("t1", "FAILED")
            await asyncio.sleep(0.02)
            await ctx.engine.drain(timeout=1)
            await view.unmount()

        run(ctx, scenario)
        assert ctx.feedback.navigations == [TRADES_PATH]

    def test_unmount_cancels_timers(self, server, ctx):
        view = TradeSessionView(ctx, "t1")

        async def scenario():
            await view.mount()
            await view.unmount()
            fetches = server.count("get-trade")
            server.set_status("t1", "COMPLETED")
            await asyncio.sleep(0.05)
            return fetches

        fetches = run(ctx, scenario)
        assert server.count("get-trade") == fetches
        assert not view.poller.running
        assert view.countdown.state() is CountdownState.STOPPED
        assert ctx.feedback.navigations == []

    def test_unmount_during_first_load(self, server, ctx):
        server.latency = 0.02
        view = TradeSessionView(ctx, "t1")

        async def scenario():
            task = asyncio.ensure_future(view.mount())
            await asyncio.sleep(0)
            await view.unmount()
            await task

        run(ctx, scenario)
        assert not view.poller.running
        assert view.countdown._task is None

    def test_countdown_starts_when_poll_recovers_first_load(self, server, clock, ctx):
        server.fail("get-trade", status=None, times=1)
        clock.set_elapsed(1800)
        view = TradeSessionView(ctx, "t1")

        async def scenario():
            await view.mount()
            assert view.store.trade() is None
            await asyncio.sleep(0.05)
            await ctx.engine.drain(timeout=1)
            await view.unmount()

        run(ctx, scenario)
        assert view.countdown.state() is CountdownState.EXPIRED
        assert view.countdown.remaining() == 0
        assert view.store.expired()
        assert ctx.feedback.toasts == ["Failed to load trade details", TRADE_EXPIRED]
        assert ctx.feedback.navigations == [TRADES_PATH]

    def test_countdown_ticks_after_recovered_load(self, server, clock, ctx):
        server.fail("get-trade", status=None, times=1)
        clock.set_elapsed(600)
        view = TradeSessionView(ctx, "t1")

        async def scenario():
            await view.mount()
            await asyncio.sleep(0.05)
            clock.set_elapsed(660)
            await asyncio.sleep(0.03)
            state, remaining = view.countdown.state(), view.countdown.remaining()
            await view.unmount()
            return state, remaining

        state, remaining = run(ctx, scenario)
        assert state is CountdownState.RUNNING
        assert remaining == 1140
