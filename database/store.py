"""
Transactional persistence for auctions, bids and orders.

All writes that must be atomic go through an AuctionStore bound to one
session. State flips are conditional UPDATEs (``WHERE status = 'active'``,
``WHERE current_price = :expected``) so that the first committed transaction
wins and later ones observe zero affected rows, on PostgreSQL and SQLite alike.
"""
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from typing import Iterator, List, Optional, Sequence
import logging

from sqlalchemy.orm import Session

from .models import Auction, Bid, Order, Notification, AuctionStatus, BidStatus, OPEN_BID_STATUSES

logger = logging.getLogger(__name__)


class StaleSettlement(Exception):
    """The auction changed between reading its bids and writing the settlement."""

    def __init__(self, auction_id: int, detail: str):
        self.auction_id = auction_id
        self.detail = detail
        super().__init__(f"Auction {auction_id}: {detail}")


class AuctionStore:
    """Persistence operations over a single SQLAlchemy session."""

    def __init__(self, db: Session):
        self.db = db

    @contextmanager
    def transaction(self) -> Iterator["AuctionStore"]:
        """Commit on success, roll back and re-raise on any failure."""
        try:
            yield self
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

    def create_auction(self, auction: Auction) -> Auction:
        self.db.add(auction)
        self.db.flush()
        return auction

    def get_auction(self, auction_id: int) -> Optional[Auction]:
        return self.db.query(Auction).filter(Auction.id == auction_id).first()

    def load_for_update(self, auction_id: int) -> Optional[Auction]:
        """Load an auction under a row lock, bypassing any stale identity-map copy."""
        return (
            self.db.query(Auction)
            .filter(Auction.id == auction_id)
            .with_for_update()
            .populate_existing()
            .first()
        )

    def get_bid(self, bid_id: int) -> Optional[Bid]:
        return self.db.query(Bid).filter(Bid.id == bid_id).populate_existing().first()

    def insert_bid(self, bid: Bid) -> Bid:
        self.db.add(bid)
        self.db.flush()
        return bid

    def update_auction_price(self, auction_id: int, expected_price: Decimal, new_price: Decimal) -> bool:
        """
        Compare-and-swap current_price.

        Returns False when another transaction moved the price (or closed the
        auction) since it was read.
        """
        rows_updated = self.db.query(Auction).filter(
            Auction.id == auction_id,
            Auction.status == AuctionStatus.ACTIVE.value,
            Auction.current_price == expected_price,
        ).update(
            {"current_price": new_price, "updated_at": datetime.utcnow()},
            synchronize_session=False,
        )
        return rows_updated == 1

    def find_expired_active(self, now: datetime) -> List[int]:
        rows = self.db.query(Auction.id).filter(
            Auction.status == AuctionStatus.ACTIVE.value,
            Auction.end_time <= now,
        ).order_by(Auction.end_time, Auction.id).all()
        return [row[0] for row in rows]

    def open_bids(self, auction_id: int) -> List[Bid]:
        return self.db.query(Bid).filter(
            Bid.auction_id == auction_id,
            Bid.status.in_(OPEN_BID_STATUSES),
        ).order_by(Bid.created_at, Bid.id).populate_existing().all()

    def _flip_status(self, auction_id: int, new_status: AuctionStatus, criteria=(), **fields) -> bool:
        values = {"status": new_status.value, "updated_at": datetime.utcnow()}
        values.update(fields)
        rows_updated = self.db.query(Auction).filter(
            Auction.id == auction_id,
            Auction.status == AuctionStatus.ACTIVE.value,
            *criteria,
        ).update(values, synchronize_session=False)
        return rows_updated == 1

    def _set_bid_status(self, bid_ids: Sequence[int], status: BidStatus) -> int:
        if not bid_ids:
            return 0
        return self.db.query(Bid).filter(
            Bid.id.in_(list(bid_ids)),
            Bid.status.in_(OPEN_BID_STATUSES),
        ).update(
            {"status": status.value, "updated_at": datetime.utcnow()},
            synchronize_session=False,
        )

    def settle_transaction(
        self,
        auction_id: int,
        winning_bid_id: Optional[int],
        losing_bid_ids: Sequence[int],
        order: Optional[Order],
        expected_price: Optional[Decimal] = None,
        now: Optional[datetime] = None,
    ) -> bool:
        """
        Move an active auction to completed together with its bid resolution
        and order. Must run inside transaction(); nothing is written when the
        auction is no longer active.

        Raises StaleSettlement when the auction is still active but its price
        moved from expected_price, or the winning bid is no longer open. The
        caller's transaction then rolls back and the auction can be settled again.
        """
        settled_at = now or datetime.utcnow()
        criteria = []
        if expected_price is not None:
            criteria.append(Auction.current_price == expected_price)
        if not self._flip_status(
            auction_id,
            AuctionStatus.COMPLETED,
            criteria,
            winning_bid_id=winning_bid_id,
            settled_at=settled_at,
        ):
            if criteria and self._current_status(auction_id) == AuctionStatus.ACTIVE.value:
                raise StaleSettlement(auction_id, "a bid raised the price")
            logger.info(f"Auction {auction_id} no longer active, settlement skipped")
            return False

        self._clear_highest(auction_id)
        if winning_bid_id is not None:
            if self._set_bid_status([winning_bid_id], BidStatus.ACCEPTED) != 1:
                raise StaleSettlement(auction_id, f"bid {winning_bid_id} is no longer open")
            self._set_highest(winning_bid_id)
        self._set_bid_status(losing_bid_ids, BidStatus.REJECTED)

        if order is not None:
            self.db.add(order)
        self.db.flush()
        return True

    def cancel_transaction(self, auction_id: int, now: Optional[datetime] = None) -> bool:
        """Move an active auction to cancelled and reject its open bids."""
        cancelled_at = now or datetime.utcnow()
        if not self._flip_status(auction_id, AuctionStatus.CANCELLED, cancelled_at=cancelled_at):
            return False
        open_ids = [bid.id for bid in self.open_bids(auction_id)]
        self._set_bid_status(open_ids, BidStatus.REJECTED)
        self._clear_highest(auction_id)
        self.db.flush()
        return True

    def reject_bid(self, bid_id: int) -> bool:
        """Reject one open bid, handing the highest-bid marker to the next open bid."""
        bid = self.get_bid(bid_id)
        if bid is None or self._set_bid_status([bid_id], BidStatus.REJECTED) != 1:
            return False
        if bid.is_highest:
            self._clear_highest(bid.auction_id)
            self.promote_next_highest(bid.auction_id)
        return True

    def mark_highest(self, auction_id: int, bid_id: int):
        self._clear_highest(auction_id)
        self._set_highest(bid_id)

    def promote_next_highest(self, auction_id: int) -> Optional[Bid]:
        bid = self.db.query(Bid).filter(
            Bid.auction_id == auction_id,
            Bid.status.in_(OPEN_BID_STATUSES),
        ).order_by(Bid.amount.desc(), Bid.created_at, Bid.id).first()
        if bid is not None:
            self._set_highest(bid.id)
        return bid

    def _clear_highest(self, auction_id: int):
        self.db.query(Bid).filter(
            Bid.auction_id == auction_id,
            Bid.is_highest.is_(True),
        ).update({"is_highest": False}, synchronize_session=False)

    def _set_highest(self, bid_id: int):
        self.db.query(Bid).filter(Bid.id == bid_id).update({"is_highest": True}, synchronize_session=False)

    def _current_status(self, auction_id: int) -> Optional[str]:
        row = self.db.query(Auction.status).filter(Auction.id == auction_id).first()
        return row[0] if row else None

    def get_order_for_auction(self, auction_id: int) -> Optional[Order]:
        return self.db.query(Order).filter(Order.auction_id == auction_id).first()

    def list_auctions(self, status: Optional[str] = None, seller_id: Optional[str] = None) -> List[Auction]:
        """Newest first, optionally narrowed to one status and/or one seller."""
        query = self.db.query(Auction)
        if status is not None:
            query = query.filter(Auction.status == status)
        if seller_id is not None:
            query = query.filter(Auction.seller_id == seller_id)
        return query.order_by(Auction.created_at.desc(), Auction.id.desc()).all()

    def bids_for_bidder(self, bidder_id: str, status: Optional[str] = None) -> List[Bid]:
        query = self.db.query(Bid).filter(Bid.bidder_id == bidder_id)
        if status is not None:
            query = query.filter(Bid.status == status)
        return query.order_by(Bid.created_at.desc(), Bid.id.desc()).all()

    def notifications_for(self, user_id: str, unread_only: bool = False) -> List[Notification]:
        query = self.db.query(Notification).filter(Notification.user_id == user_id)
        if unread_only:
            query = query.filter(Notification.read.is_(False))
        return query.order_by(Notification.created_at.desc(), Notification.id.desc()).all()

    def mark_notification_read(self, notification_id: int, user_id: str) -> bool:
        """False when the notification does not exist or belongs to someone else."""
        rows_updated = self.db.query(Notification).filter(
            Notification.id == notification_id,
            Notification.user_id == user_id,
        ).update({"read": True}, synchronize_session=False)
        return rows_updated == 1

    def mark_all_notifications_read(self, user_id: str) -> int:
        return self.db.query(Notification).filter(
            Notification.user_id == user_id,
            Notification.read.is_(False),
        ).update({"read": True}, synchronize_session=False)
