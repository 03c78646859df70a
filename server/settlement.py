import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional, Sequence

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from database import (
    Auction, AuctionStatus, AuctionStore, Bid, Order, OrderStatus, PaymentStatus, OPEN_BID_STATUSES, StaleSettlement,
)
from . import config
from .errors import AuctionNotActive, AuctionNotFound, BidNotFound, NotAuctionSeller, SettlementConflict
from .notifications import Notifier, NotificationType, safe_notify

logger = logging.getLogger(__name__)


class SettlementOutcome(str, Enum):
    SOLD = "sold"
    NO_BIDS = "no_bids"
    RESERVE_NOT_MET = "reserve_not_met"
    ALREADY_SETTLED = "already_settled"


@dataclass
class SettlementResult:
    auction_id: int
    outcome: SettlementOutcome
    winning_bid_id: Optional[int] = None
    order_id: Optional[int] = None
    rejected_bid_ids: List[int] = field(default_factory=list)

    @property
    def settled(self) -> bool:
        """True when this call performed the settlement."""
        return self.outcome != SettlementOutcome.ALREADY_SETTLED


def select_winner(bids: Sequence[Bid]) -> Optional[Bid]:
    """Highest amount wins; equal amounts go to the earliest bid."""
    if not bids:
        return None
    return min(bids, key=lambda bid: (-bid.amount, bid.created_at, bid.id))


def winner_meets_reserve(auction: Auction, bid: Bid, enforce_reserve: bool = False) -> bool:
    """
    Reserve policy applied to the selected winner.

    Unless enforcement is switched on, the highest bid wins whether or not it
    clears reserve_price.
    """
    if not enforce_reserve or auction.reserve_price is None:
        return True
    return bid.amount >= auction.reserve_price


class AuctionSettler:
    """Settles one auction per call: winner, losers, order, terminal status."""

    def __init__(self, notifier: Optional[Notifier] = None, enforce_reserve: Optional[bool] = None):
        self.notifier = notifier
        self.enforce_reserve = config.ENFORCE_RESERVE_PRICE if enforce_reserve is None else enforce_reserve

    def settle(self, db: Session, auction_id: int, now: Optional[datetime] = None) -> SettlementResult:
        """Settle an auction; a no-op returning ALREADY_SETTLED if it is no longer active."""
        return self._settle(db, auction_id, now=now)

    def accept_bid(self, db: Session, auction_id: int, bid_id: int, requester_id: str,
                   now: Optional[datetime] = None) -> SettlementResult:
        """Seller closes the auction early with a chosen open bid as the winner."""
        store = AuctionStore(db)
        auction = store.get_auction(auction_id)
        if auction is None:
            raise AuctionNotFound(auction_id)
        if auction.seller_id != requester_id:
            raise NotAuctionSeller(auction_id, requester_id)
        if auction.status != AuctionStatus.ACTIVE.value:
            raise AuctionNotActive(auction_id, auction.status)
        bid = store.get_bid(bid_id)
        if bid is None or bid.auction_id != auction_id or bid.status not in OPEN_BID_STATUSES:
            raise BidNotFound(bid_id)
        return self._settle(db, auction_id, now=now, chosen_bid_id=bid_id)

    def reject_bid(self, db: Session, bid_id: int, requester_id: str) -> Bid:
        """Seller rejects a single open bid; the auction price is left as is."""
        store = AuctionStore(db)
        with store.transaction():
            bid = store.get_bid(bid_id)
            if bid is None:
                raise BidNotFound(bid_id)
            auction = store.load_for_update(bid.auction_id)
            if auction.seller_id != requester_id:
                raise NotAuctionSeller(auction.id, requester_id)
            if auction.status != AuctionStatus.ACTIVE.value:
                raise AuctionNotActive(auction.id, auction.status)
            if not store.reject_bid(bid_id):
                raise BidNotFound(bid_id)
        db.refresh(bid)
        safe_notify(
            self.notifier,
            bid.bidder_id,
            "Bid Rejected",
            f"Your bid of {bid.amount} on auction #{bid.auction_id} has been rejected",
            NotificationType.BID,
            bid.auction_id,
        )
        return bid

    def _settle(self, db: Session, auction_id: int, now: Optional[datetime] = None,
                chosen_bid_id: Optional[int] = None) -> SettlementResult:
        store = AuctionStore(db)
        settled_at = now or datetime.utcnow()

        try:
            with store.transaction():
                auction = store.load_for_update(auction_id)
                if auction is None:
                    raise AuctionNotFound(auction_id)
                if auction.status != AuctionStatus.ACTIVE.value:
                    logger.info(f"Auction {auction_id} already {auction.status}, nothing to settle")
                    return SettlementResult(auction_id, SettlementOutcome.ALREADY_SETTLED)

                bids = store.open_bids(auction_id)
                if chosen_bid_id is not None:
                    winner = next((b for b in bids if b.id == chosen_bid_id), None)
                    if winner is None:
                        raise BidNotFound(chosen_bid_id)
                else:
                    winner = select_winner(bids)

                if winner is None:
                    outcome = SettlementOutcome.NO_BIDS
                elif chosen_bid_id is None and not winner_meets_reserve(auction, winner, self.enforce_reserve):
                    logger.info(
                        f"Auction {auction_id} highest bid {winner.amount} below reserve {auction.reserve_price}"
                    )
                    outcome = SettlementOutcome.RESERVE_NOT_MET
                    winner = None
                else:
                    outcome = SettlementOutcome.SOLD

                losers = [b for b in bids if winner is None or b.id != winner.id]
                order = None
                if winner is not None:
                    order = Order(
                        auction_id=auction.id,
                        bid_id=winner.id,
                        product_id=auction.product_id,
                        seller_id=auction.seller_id,
                        buyer_id=winner.bidder_id,
                        quantity=auction.quantity,
                        unit_price=winner.amount,
                        total_amount=(winner.amount * auction.quantity).quantize(Decimal("0.01")),
                        status=OrderStatus.PENDING.value,
                        payment_status=PaymentStatus.PENDING.value,
                        created_at=settled_at,
                    )

                if not store.settle_transaction(
                    auction_id,
                    winner.id if winner is not None else None,
                    [b.id for b in losers],
                    order,
                    expected_price=auction.current_price,
                    now=settled_at,
                ):
                    return SettlementResult(auction_id, SettlementOutcome.ALREADY_SETTLED)

                # Capture what the notifications need before commit expires the objects
                seller_id = auction.seller_id
                winner_info = (winner.id, winner.bidder_id, winner.amount) if winner is not None else None
                loser_info = [(b.id, b.bidder_id, b.amount) for b in losers]
        except IntegrityError:
            # Lost the race to a concurrent settlement that inserted the order first
            logger.warning(f"Auction {auction_id} settled concurrently, treating as already settled")
            return SettlementResult(auction_id, SettlementOutcome.ALREADY_SETTLED)
        except StaleSettlement as e:
            logger.warning(f"Auction {auction_id} changed during settlement, rolled back: {e.detail}")
            raise SettlementConflict(auction_id, e.detail) from e

        result = SettlementResult(
            auction_id,
            outcome,
            winning_bid_id=winner_info[0] if winner_info else None,
            order_id=order.id if order is not None else None,
            rejected_bid_ids=[info[0] for info in loser_info],
        )
        logger.info(
            f"Auction {auction_id} settled: {outcome.value}, winner bid {result.winning_bid_id}, "
            f"order {result.order_id}, {len(loser_info)} bids rejected"
        )
        self._notify_settlement(
            auction_id, seller_id, outcome, winner_info, loser_info, result.order_id,
            accepted_by_seller=chosen_bid_id is not None,
        )
        return result

    def _notify_settlement(self, auction_id, seller_id, outcome, winner_info, loser_info, order_id,
                           accepted_by_seller=False):
        if winner_info is not None:
            _, buyer_id, amount = winner_info
            safe_notify(
                self.notifier, buyer_id, "Bid Accepted" if accepted_by_seller else "Auction Won",
                f"You won auction #{auction_id} with a bid of {amount}. Order #{order_id} has been created.",
                NotificationType.ORDER, order_id,
            )
            safe_notify(
                self.notifier, seller_id, "Auction Sold",
                f"Auction #{auction_id} sold for {amount}. Order #{order_id} has been created.",
                NotificationType.ORDER, order_id,
            )
        else:
            reason = "with no bids" if outcome == SettlementOutcome.NO_BIDS else "without meeting the reserve price"
            safe_notify(
                self.notifier, seller_id, "Auction Ended",
                f"Auction #{auction_id} ended {reason}.",
                NotificationType.AUCTION, auction_id,
            )

        for _, bidder_id, amount in loser_info:
            safe_notify(
                self.notifier, bidder_id, "Bid Rejected",
                f"Auction #{auction_id} has ended and your bid of {amount} did not win.",
                NotificationType.BID, auction_id,
            )
