import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from database import AuctionStore, Bid, BidStatus
from . import config
from .errors import AuctionNotFound, BidConflict, BidRejected, RejectionReason
from .notifications import Notifier, NotificationType, safe_notify
from .validator import to_amount, validate_bid

CENT = Decimal("0.01")

logger = logging.getLogger(__name__)


class BidPlacer:
    """Validates and records incoming bids, one transaction per attempt."""

    def __init__(self, notifier: Optional[Notifier] = None, allow_self_bid: Optional[bool] = None,
                 max_retries: Optional[int] = None):
        self.notifier = notifier
        self.allow_self_bid = config.ALLOW_SELF_BIDS if allow_self_bid is None else allow_self_bid
        self.max_retries = config.BID_CONFLICT_RETRIES if max_retries is None else max_retries

    def place_bid(self, db: Session, auction_id: int, bidder_id: str, bidder_name: str,
                  amount, now: Optional[datetime] = None) -> Bid:
        """
        Place a bid on a live auction.

        The auction row is re-read under lock and the price is raised with a
        compare-and-swap, so a bid racing another one is validated against the
        price the other bid committed. Raises BidRejected with the rule that
        failed; on rejection nothing is written.
        """
        store = AuctionStore(db)
        attempts = self.max_retries + 1

        for attempt in range(attempts):
            check_time = now or datetime.utcnow()
            with store.transaction():
                auction = store.load_for_update(auction_id)
                if auction is None:
                    raise AuctionNotFound(auction_id)

                reason = validate_bid(auction, amount, bidder_id, check_time, self.allow_self_bid)
                if reason is not None:
                    logger.info(
                        f"Bid of {amount} by {bidder_id} on auction {auction_id} rejected: {reason.value}"
                    )
                    raise BidRejected(reason)

                value = to_amount(amount).quantize(CENT)
                previous_price = auction.current_price
                bid = store.insert_bid(Bid(
                    auction_id=auction.id,
                    product_id=auction.product_id,
                    bidder_id=bidder_id,
                    bidder_name=bidder_name,
                    amount=value,
                    previous_price=previous_price,
                    status=BidStatus.PENDING.value,
                    created_at=check_time,
                ))

                swapped = store.update_auction_price(auction.id, previous_price, value)
                if not swapped:
                    # A concurrent bid committed first; undo our insert and re-validate
                    db.rollback()
                    logger.info(
                        f"Price of auction {auction_id} moved during bid by {bidder_id}, "
                        f"retrying ({attempt + 1}/{attempts})"
                    )
                    continue

                store.mark_highest(auction.id, bid.id)
                seller_id = auction.seller_id
                product_id = auction.product_id

            db.refresh(bid)
            logger.info(f"Bid {bid.id} of {value} placed on auction {auction_id} by {bidder_id}")
            safe_notify(
                self.notifier,
                seller_id,
                "New Bid",
                f"{bidder_name} bid {value} on your auction #{auction_id} (product {product_id})",
                NotificationType.BID,
                auction_id,
            )
            return bid

        raise BidConflict(f"Auction {auction_id} price changed {attempts} times while placing bid")
