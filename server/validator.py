from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Optional, Union

from database import Auction, AuctionStatus
from .errors import RejectionReason

Number = Union[Decimal, int, float, str]

# Money columns are Numeric(12, 2)
MONEY_PLACES = 2
MAX_MONEY = Decimal("9999999999.99")


def to_amount(value: Number) -> Optional[Decimal]:
    """Coerce a bid amount to Decimal; None if it is not a number at all."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        return None
    try:
        # str() first so floats keep their printed value (110.1 -> 110.1, not 110.0999...)
        return Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        return None


def fits_column(value: Decimal, places: int = MONEY_PLACES, max_value: Decimal = MAX_MONEY) -> bool:
    """
    True when value is stored exactly by a Numeric column with this many
    decimal places, so what is read back equals what was validated.
    """
    if not value.is_finite() or abs(value) > max_value:
        return False
    return value == value.quantize(Decimal(1).scaleb(-places))


def to_naive_utc(value: datetime) -> datetime:
    """Timestamps are stored as naive UTC; convert aware values, pass naive ones through."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def is_open(auction: Auction, now: datetime) -> bool:
    return (
        auction.status == AuctionStatus.ACTIVE.value
        and auction.start_time <= now < auction.end_time
    )


def minimum_next_bid(auction: Auction) -> Decimal:
    """Lowest amount that would clear both the price and increment rules."""
    if auction.min_increment:
        return auction.current_price + auction.min_increment
    # Any amount strictly above current_price is admissible; show one cent above
    return auction.current_price + Decimal("0.01")


def validate_bid(
    auction: Auction,
    amount: Number,
    bidder_id: str,
    now: datetime,
    allow_self_bid: bool = False,
) -> Optional[RejectionReason]:
    """
    Decide whether a proposed bid is admissible against the auction as loaded.

    Returns None when the bid may be placed, otherwise the first rule it breaks.
    Pure: reads the auction, writes nothing.
    """
    if not is_open(auction, now):
        return RejectionReason.AUCTION_NOT_OPEN

    value = to_amount(amount)
    if value is None or not value.is_finite() or value <= 0 or not fits_column(value):
        return RejectionReason.INVALID_AMOUNT

    if value <= auction.current_price:
        return RejectionReason.BID_TOO_LOW

    if auction.min_increment and value < auction.current_price + auction.min_increment:
        return RejectionReason.INCREMENT_TOO_SMALL

    if not allow_self_bid and bidder_id == auction.seller_id:
        return RejectionReason.SELF_BID

    return None
