#!/usr/bin/env python3
import click
from decimal import Decimal, InvalidOperation
from .client import MarketplaceClient
from .config import save_token, save_display_name, get_display_name
import sys


def _parse_amount(value: str) -> Decimal:
    return Decimal(value.replace("$", "").replace(",", "").replace("₹", ""))


def _print_table(headers, rows):
    col_widths = [len(h) for h in headers]
    for row in rows:
        col_widths = [max(col_widths[i], len(str(row[i]))) for i in range(len(headers))]

    def build_separator(left, middle, right):
        return left + middle.join("─" * (w + 2) for w in col_widths) + right

    click.echo(build_separator("┌", "┬", "┐"))
    click.echo("│ " + " │ ".join(f"{headers[i]:<{col_widths[i]}}" for i in range(len(headers))) + " │")
    click.echo(build_separator("├", "┼", "┤"))
    for row in rows:
        click.echo("│ " + " │ ".join(f"{str(row[i]):<{col_widths[i]}}" for i in range(len(row))) + " │")
    click.echo(build_separator("└", "┴", "┘"))


def _print_auctions(client, auctions):
    rows = [
        (a["id"], a["product_id"], f"{a['quantity']} {a['unit'] or ''}".strip(), a["current_price"],
         a["status"], client.time_until_end(a["end_time"]))
        for a in auctions
    ]
    _print_table(["ID", "Product", "Quantity", "Price", "Status", "Ends"], rows)


@click.group()
def cli():
    """Agricultural marketplace auction CLI"""
    pass


@cli.command()
@click.option("--username", prompt="User ID")
@click.option("--password", prompt="Password", hide_input=True)
@click.option("--name", "display_name", default=None, help="Name shown to sellers on your bids")
def auth(username, password, display_name):
    """Authenticate with the server."""
    try:
        client = MarketplaceClient()
        token = client.authenticate(username, password)
        save_token(token)
        save_display_name(display_name or username)
        click.echo("Authentication successful!")
    except Exception as e:
        click.echo(f"Authentication failed: {e}", err=True)
        sys.exit(1)


@cli.command()
@click.argument("product_id")
@click.argument("start_price", type=str)
@click.argument("quantity", type=str)
@click.option("--ends", required=True, help="End time, 'YYYY-MM-DD HH:MM' in your timezone")
@click.option("--starts", default=None, help="Start time; defaults to now")
@click.option("--reserve", default=None, help="Reserve price")
@click.option("--increment", default=None, help="Minimum bid increment")
@click.option("--unit", default=None, help="Quantity unit, e.g. quintal")
def create(product_id, start_price, quantity, ends, starts, reserve, increment, unit):
    """Create an auction for a product."""
    try:
        client = MarketplaceClient()
        payload = {
            "product_id": product_id,
            "start_price": str(_parse_amount(start_price)),
            "quantity": str(_parse_amount(quantity)),
            "end_time": client.to_utc(ends).isoformat(),
            "unit": unit,
        }
        if starts:
            payload["start_time"] = client.to_utc(starts).isoformat()
        if reserve:
            payload["reserve_price"] = str(_parse_amount(reserve))
        if increment:
            payload["min_increment"] = str(_parse_amount(increment))
        result = client.create_auction(payload)
        click.echo(f"Auction {result['id']} created for product {result['product_id']}")
        click.echo(f"Start price: {result['start_price']}")
        click.echo(f"Ends at: {client.to_local_time(result['end_time'])}")
    except InvalidOperation:
        click.echo("Invalid amount format", err=True)
        sys.exit(1)
    except Exception as e:
        click.echo(f"Failed to create auction: {e}", err=True)
        sys.exit(1)


@cli.command()
@click.argument("auction_id", type=int)
@click.argument("amount", type=str)
@click.option("--name", "bidder_name", default=None, help="Display name shown to the seller; defaults to the name saved at login")
def bid(auction_id, amount, bidder_name):
    """Place a bid on an auction."""
    try:
        client = MarketplaceClient()
        bidder_name = bidder_name or get_display_name()
        if not bidder_name:
            click.echo("No display name saved; pass --name or run auth again", err=True)
            sys.exit(1)
        result = client.place_bid(auction_id, _parse_amount(amount), bidder_name)
        click.echo(f"Bid {result['id']} of {result['amount']} placed on auction {auction_id}")
    except InvalidOperation:
        click.echo(f"Invalid amount format: {amount}", err=True)
        sys.exit(1)
    except Exception as e:
        click.echo(f"Bid not placed: {e}", err=True)
        sys.exit(1)


@cli.command()
@click.argument("auction_id", type=int)
def cancel(auction_id):
    """Cancel one of your active auctions."""
    try:
        client = MarketplaceClient()
        client.cancel_auction(auction_id)
        click.echo(f"Auction {auction_id} cancelled")
    except Exception as e:
        click.echo(f"Failed to cancel auction: {e}", err=True)
        sys.exit(1)


@cli.command()
@click.argument("auction_id", type=int)
def status(auction_id):
    """Show an auction and its order, if settled."""
    try:
        client = MarketplaceClient()
        auction = client.get_auction(auction_id)
        click.echo(f"Auction {auction['id']} ({auction['status']})")
        click.echo(f"Product: {auction['product_id']}  Quantity: {auction['quantity']} {auction['unit'] or ''}")
        click.echo(f"Current price: {auction['current_price']}  Min increment: {auction['min_increment'] or '-'}")
        click.echo(f"Ends at: {client.to_local_time(auction['end_time'])} ({client.time_until_end(auction['end_time'])})")
        if auction["status"] == "completed":
            order = client.get_order(auction_id)
            if order:
                click.echo(f"Order {order['id']}: {order['quantity']} x {order['unit_price']} = {order['total_amount']}")
            else:
                click.echo("Ended with no sale")
    except Exception as e:
        click.echo(f"Failed to get status: {e}", err=True)
        sys.exit(1)


@cli.command()
@click.argument("auction_id", type=int)
def bids(auction_id):
    """List bids on an auction, highest first."""
    try:
        client = MarketplaceClient()
        results = client.list_bids(auction_id)
        if not results:
            click.echo("No bids yet")
            return
        rows = [
            (b["id"], b["bidder_name"], b["amount"], b["status"], client.to_local_time(b["created_at"]))
            for b in results
        ]
        _print_table(["ID", "Bidder", "Amount", "Status", "Placed At"], rows)
    except Exception as e:
        click.echo(f"Failed to list bids: {e}", err=True)
        sys.exit(1)


@cli.command()
@click.argument("auction_id", type=int)
@click.argument("bid_id", type=int)
def accept(auction_id, bid_id):
    """Accept a bid, closing the auction early."""
    try:
        client = MarketplaceClient()
        result = client.accept_bid(auction_id, bid_id)
        click.echo(f"Bid {bid_id} accepted; order {result['order_id']} created")
    except Exception as e:
        click.echo(f"Failed to accept bid: {e}", err=True)
        sys.exit(1)


@cli.command()
@click.argument("bid_id", type=int)
def reject(bid_id):
    """Reject a single bid."""
    try:
        client = MarketplaceClient()
        client.reject_bid(bid_id)
        click.echo(f"Bid {bid_id} rejected")
    except Exception as e:
        click.echo(f"Failed to reject bid: {e}", err=True)
        sys.exit(1)


@cli.command()
def sweep():
    """Settle expired auctions now."""
    try:
        client = MarketplaceClient()
        report = client.sweep()
        click.echo(f"Candidates: {len(report['candidates'])}  Failures: {len(report['failures'])}")
        for auction_id, outcome in report["outcomes"].items():
            click.echo(f"  auction {auction_id}: {outcome}")
        for auction_id, error in report["failures"].items():
            click.echo(f"  auction {auction_id}: FAILED {error}", err=True)
    except Exception as e:
        click.echo(f"Sweep failed: {e}", err=True)
        sys.exit(1)


@cli.command(name="list")
@click.option("--status", default="active", type=click.Choice(["active", "completed", "cancelled", "all"]))
def list_auctions(status):
    """List auctions open for bidding (or in another status)."""
    try:
        client = MarketplaceClient()
        auctions = client.list_auctions(status)
        if not auctions:
            click.echo("No auctions found")
            return
        _print_auctions(client, auctions)
    except Exception as e:
        click.echo(f"Failed to list auctions: {e}", err=True)
        sys.exit(1)


@cli.command()
def mine():
    """List auctions you are selling."""
    try:
        client = MarketplaceClient()
        auctions = client.my_auctions()
        if not auctions:
            click.echo("You have no auctions")
            return
        _print_auctions(client, auctions)
    except Exception as e:
        click.echo(f"Failed to list your auctions: {e}", err=True)
        sys.exit(1)


@cli.command()
@click.option("--status", default=None, type=click.Choice(["pending", "active", "accepted", "rejected"]))
def mybids(status):
    """List bids you have placed and where they stand."""
    try:
        client = MarketplaceClient()
        results = client.my_bids(status)
        if not results:
            click.echo("No bids found")
            return
        rows = [
            (b["id"], b["auction_id"], b["amount"], b["status"], "yes" if b["is_highest"] else "",
             client.to_local_time(b["created_at"]))
            for b in results
        ]
        _print_table(["ID", "Auction", "Amount", "Status", "Highest", "Placed At"], rows)
    except Exception as e:
        click.echo(f"Failed to list bids: {e}", err=True)
        sys.exit(1)


@cli.command()
@click.option("--unread", is_flag=True, help="Only unread notifications")
def notifications(unread):
    """Show your notifications, newest first."""
    try:
        client = MarketplaceClient()
        results = client.notifications(unread_only=unread)
        if not results:
            click.echo("No notifications")
            return
        for n in results:
            marker = " " if n["read"] else "*"
            click.echo(f"{marker} [{n['id']}] {client.to_local_time(n['created_at'])} {n['title']}: {n['message']}")
    except Exception as e:
        click.echo(f"Failed to get notifications: {e}", err=True)
        sys.exit(1)


@cli.command()
@click.argument("notification_id", type=int, required=False)
@click.option("--all", "mark_all", is_flag=True, help="Mark every notification as read")
def read(notification_id, mark_all):
    """Mark a notification (or all of them) as read."""
    if not mark_all and notification_id is None:
        click.echo("Give a notification ID or --all", err=True)
        sys.exit(1)
    try:
        client = MarketplaceClient()
        if mark_all:
            updated = client.mark_all_read()
            click.echo(f"Marked {updated} notifications as read")
        else:
            client.mark_read(notification_id)
            click.echo(f"Notification {notification_id} marked as read")
    except Exception as e:
        click.echo(f"Failed to mark notification read: {e}", err=True)
        sys.exit(1)


if __name__ == "__main__":
    cli()
