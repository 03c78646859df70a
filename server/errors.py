from enum import Enum
from typing import Optional


class RejectionReason(str, Enum):
    AUCTION_NOT_OPEN = "AuctionNotOpen"
    INVALID_AMOUNT = "InvalidAmount"
    BID_TOO_LOW = "BidTooLow"
    INCREMENT_TOO_SMALL = "IncrementTooSmall"
    SELF_BID = "SelfBid"

    @property
    def message(self) -> str:
        return _REJECTION_MESSAGES[self]


_REJECTION_MESSAGES = {
    RejectionReason.AUCTION_NOT_OPEN: "Auction is not open for bidding",
    RejectionReason.INVALID_AMOUNT: "Bid amount must be a positive amount in whole cents",
    RejectionReason.BID_TOO_LOW: "Bid must be higher than the current price",
    RejectionReason.INCREMENT_TOO_SMALL: "Bid does not meet the minimum increment",
    RejectionReason.SELF_BID: "Sellers cannot bid on their own auction",
}


class AuctionError(Exception):
    """Base class for auction engine errors."""


class BidRejected(AuctionError):
    """A bid failed validation; nothing was written."""

    def __init__(self, reason: RejectionReason, detail: Optional[str] = None):
        self.reason = reason
        self.detail = detail or reason.message
        super().__init__(f"{reason.value}: {self.detail}")


class BidConflict(AuctionError):
    """The auction price kept moving under a bid until retries ran out."""


class AuctionNotFound(AuctionError):
    def __init__(self, auction_id: int):
        self.auction_id = auction_id
        super().__init__(f"Auction {auction_id} not found")


class BidNotFound(AuctionError):
    def __init__(self, bid_id: int):
        self.bid_id = bid_id
        super().__init__(f"Bid {bid_id} not found")


class AuctionNotActive(AuctionError):
    def __init__(self, auction_id: int, status: str):
        self.auction_id = auction_id
        self.status = status
        super().__init__(f"Auction {auction_id} is {status}, not active")


class NotAuctionSeller(AuctionError):
    def __init__(self, auction_id: int, user_id: str):
        self.auction_id = auction_id
        self.user_id = user_id
        super().__init__(f"User {user_id} is not the seller of auction {auction_id}")


class InvalidAuction(AuctionError):
    """Auction fields violate the listing invariants."""


class SettlementConflict(AuctionError):
    """The bids or price changed while the auction was being settled; nothing was written."""

    def __init__(self, auction_id: int, detail: str):
        self.auction_id = auction_id
        super().__init__(f"Auction {auction_id} changed during settlement: {detail}")
