from .models import (
    Auction, Bid, Order, Notification,
    AuctionStatus, BidStatus, OrderStatus, PaymentStatus,
    OPEN_BID_STATUSES, TERMINAL_AUCTION_STATUSES,
)
from .session import init_db, get_db, SessionLocal
from .store import AuctionStore, StaleSettlement

__all__ = [
    "Auction", "Bid", "Order", "Notification",
    "AuctionStatus", "BidStatus", "OrderStatus", "PaymentStatus",
    "OPEN_BID_STATUSES", "TERMINAL_AUCTION_STATUSES",
    "init_db", "get_db", "SessionLocal", "AuctionStore", "StaleSettlement",
]
