"""
P2P Trade Client — Offers, Live Trade Watch & Completion Review
================================================================
Example: a trader browses the offer book, follows one of their trades until
it settles or expires, or (as admin) confirms a trade's completion.

Usage:  python3 -m client.trade_client [--base-url URL] [--token TOKEN] offers [--symbol AAPL]
        python3 -m client.trade_client --token TOKEN watch <trade_id>
        python3 -m client.trade_client --token TOKEN review <trade_id>
"""

import argparse
import asyncio
import logging
import os

from p2p.config import Settings
from p2p.confirmation import ConfirmationReviewFlow, ReviewState
from p2p.context import AppContext
from p2p.feedback import Feedback
from p2p.trade_view import Screen, TradeSessionView
from store.models import OfferFilters, OfferType


class ConsoleFeedback(Feedback):
    """Prints toasts; confirmations are asked on stdin."""

    def __init__(self):
        self.location = None

    def toast(self, message):
        print(f"  » {message}")

    def navigate(self, path):
        self.location = path
        print(f"  → {path}")

    def confirm(self, question):
        return input(f"{question} [y/N] ").strip().lower() in ("y", "yes")


async def show_offers(ctx, symbol=None, offer_type=None):
    filters = OfferFilters(stock_symbol=symbol,
                           offer_type=OfferType(offer_type) if offer_type else None)
    page = await ctx.client.list_offers(filters)
    total = page.pagination.total if page.pagination else len(page.offers)
    print(f"\nOffers ({len(page.offers)} of {total}):")
    for o in page.offers:
        trader = o.trader.username if o.trader else "?"
        print(f"  {o.id:<26} {o.offer_type.value:<4} {o.stock_symbol:<6} "
              f"{o.min_quantity:g}-{o.max_quantity:g} @ ${o.price_per_share:,.2f}  "
              f"[{', '.join(o.payment_methods)}]  by {trader}")


async def watch_trade(ctx, trade_id):
    view = TradeSessionView(ctx, trade_id)
    await view.mount()
    try:
        if view.screen() == Screen.ERROR:
            return
        trade = view.store.snapshot
        print(f"\nTrade {trade.id}: {trade.quantity:g} {trade.stock_symbol} "
              f"@ ${trade.price_per_share:,.2f} = ${trade.total_amount:,.2f} "
              f"({trade.role or 'observer'})")
        if view.payment_prompt:
            title, body = view.payment_prompt
            print(f"\n{title}\n  {body}")

        # Stop once the view has left for the trade list.
        while ctx.feedback.location is None:
            status = view.store.status().value
            print(f"  [{view.countdown.display()}]  {status:<13} "
                  f"actions: {', '.join(sorted(view.actions())) or '-'}")
            if view.terminal_message:
                print(f"\n{view.terminal_message}")
                await ctx.engine.drain()
                break
            await asyncio.sleep(ctx.settings.tick_interval)
    finally:
        await view.unmount()


async def review_trade(ctx, trade_id):
    flow = ConfirmationReviewFlow(ctx, trade_id)
    await flow.load()
    if flow.state() == ReviewState.ERROR:
        print(f"Error: {flow.error()}")
        return
    if flow.state() == ReviewState.COMPLETED:
        print("Trade already completed.")
        return

    trade = flow.trade
    print(f"\nConfirm Trade Completion — {trade.id}")
    print(f"  {trade.quantity:g} {trade.stock_symbol} @ ${trade.price_per_share:,.2f} "
          f"= ${trade.total_amount:,.2f}  status {trade.status.value}")
    if not ctx.feedback.confirm("Confirm completion?"):
        flow.back()
        return
    if await flow.confirm_completion():
        print("Trade completed. Both parties have been notified via email.")
        await ctx.engine.drain()
    else:
        print(f"Error: {flow.error()}")


async def main(args):
    settings = Settings.from_env(**({"api_base_url": args.base_url} if args.base_url else {}))
    async with AppContext(settings, token=args.token, feedback=ConsoleFeedback()) as ctx:
        if args.command == "offers":
            await show_offers(ctx, symbol=args.symbol, offer_type=args.type)
        elif args.command == "watch":
            await watch_trade(ctx, args.trade_id)
        elif args.command == "review":
            await review_trade(ctx, args.trade_id)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="P2P trade client for the TradeHub API")
    parser.add_argument("--base-url", default=None)
    parser.add_argument("--token", default=os.environ.get("P2P_TOKEN"))
    parser.add_argument("--log-level", default="WARNING")
    sub = parser.add_subparsers(dest="command", required=True)

    offers = sub.add_parser("offers", help="List open offers")
    offers.add_argument("--symbol")
    offers.add_argument("--type", choices=[t.value for t in OfferType])

    watch = sub.add_parser("watch", help="Follow a trade until it settles")
    watch.add_argument("trade_id")

    review = sub.add_parser("review", help="Confirm a trade's completion")
    review.add_argument("trade_id")

    args = parser.parse_args()
    logging.basicConfig(level=args.log_level.upper(),
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    try:
        asyncio.run(main(args))
    except KeyboardInterrupt:
        print("\nDisconnecting...")
