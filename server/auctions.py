import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from database import Auction, AuctionStatus, AuctionStore
from .errors import AuctionNotActive, AuctionNotFound, InvalidAuction, NotAuctionSeller
from .notifications import Notifier, NotificationType, safe_notify
from .validator import MAX_MONEY, MONEY_PLACES, fits_column, to_amount, to_naive_utc

logger = logging.getLogger(__name__)

# quantity is Numeric(12, 3)
QUANTITY_PLACES = 3
MAX_QUANTITY = Decimal("999999999.999")


def _positive(name: str, value, places: int = MONEY_PLACES, max_value: Decimal = MAX_MONEY) -> Decimal:
    amount = to_amount(value)
    if amount is None or not amount.is_finite() or amount <= 0:
        raise InvalidAuction(f"{name} must be a positive number")
    if not fits_column(amount, places, max_value):
        raise InvalidAuction(f"{name} must have at most {places} decimal places and be at most {max_value}")
    return amount


def _non_negative(name: str, value) -> Optional[Decimal]:
    if value is None:
        return None
    amount = to_amount(value)
    if amount is None or not amount.is_finite() or amount < 0:
        raise InvalidAuction(f"{name} must be zero or a positive number")
    if not fits_column(amount):
        raise InvalidAuction(f"{name} must have at most {MONEY_PLACES} decimal places and be at most {MAX_MONEY}")
    return amount


def create_auction(
    db: Session,
    seller_id: str,
    product_id: str,
    start_price,
    quantity,
    start_time: datetime,
    end_time: datetime,
    reserve_price=None,
    min_increment=None,
    unit: Optional[str] = None,
    description: Optional[str] = None,
) -> Auction:
    """Create an active auction after checking the listing invariants."""
    if not seller_id:
        raise InvalidAuction("seller_id is required")
    if not product_id:
        raise InvalidAuction("product_id is required")
    start = _positive("start_price", start_price)
    qty = _positive("quantity", quantity, QUANTITY_PLACES, MAX_QUANTITY)
    reserve = _non_negative("reserve_price", reserve_price)
    increment = _non_negative("min_increment", min_increment)
    start_time = to_naive_utc(start_time)
    end_time = to_naive_utc(end_time)
    if end_time <= start_time:
        raise InvalidAuction("end_time must be after start_time")

    store = AuctionStore(db)
    with store.transaction():
        auction = store.create_auction(Auction(
            product_id=product_id,
            seller_id=seller_id,
            description=description,
            start_price=start,
            current_price=start,
            reserve_price=reserve,
            min_increment=increment,
            quantity=qty,
            unit=unit,
            start_time=start_time,
            end_time=end_time,
            status=AuctionStatus.ACTIVE.value,
        ))
    db.refresh(auction)
    logger.info(f"Auction {auction.id} created by {seller_id} for product {product_id}, ends {end_time}")
    return auction


def cancel_auction(db: Session, auction_id: int, requester_id: str,
                   notifier: Optional[Notifier] = None, now: Optional[datetime] = None) -> Auction:
    """
    Cancel an active auction on behalf of its seller.

    Races with settlement are decided by whichever status flip commits first;
    the loser sees a non-active auction and gets AuctionNotActive.
    """
    store = AuctionStore(db)
    with store.transaction():
        auction = store.load_for_update(auction_id)
        if auction is None:
            raise AuctionNotFound(auction_id)
        if auction.seller_id != requester_id:
            raise NotAuctionSeller(auction_id, requester_id)
        if auction.status != AuctionStatus.ACTIVE.value:
            raise AuctionNotActive(auction_id, auction.status)

        bidder_ids = sorted({bid.bidder_id for bid in store.open_bids(auction_id)})
        if not store.cancel_transaction(auction_id, now=now):
            raise AuctionNotActive(auction_id, "no longer active")

    db.refresh(auction)
    logger.info(f"Auction {auction_id} cancelled by {requester_id}, {len(bidder_ids)} bidders notified")
    for bidder_id in bidder_ids:
        safe_notify(
            notifier, bidder_id, "Auction Cancelled",
            f"Auction #{auction_id} was cancelled by the seller; your bids have been rejected.",
            NotificationType.AUCTION, auction_id,
        )
    return auction
