from datetime import datetime
from sqlalchemy import Column, Integer, String, Numeric, DateTime, ForeignKey, Text, Boolean, Index
from sqlalchemy.ext.declarative import declarative_base
from sqlalchemy.orm import relationship
from enum import Enum

Base = declarative_base()


class AuctionStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


TERMINAL_AUCTION_STATUSES = (AuctionStatus.COMPLETED.value, AuctionStatus.CANCELLED.value)


class BidStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


# Bids still in play: neither accepted nor rejected
OPEN_BID_STATUSES = (BidStatus.PENDING.value, BidStatus.ACTIVE.value)


class OrderStatus(str, Enum):
    PENDING = "pending"


class PaymentStatus(str, Enum):
    PENDING = "pending"


class Auction(Base):
    __tablename__ = "auctions"

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(String, nullable=False, index=True)
    seller_id = Column(String, nullable=False, index=True)
    description = Column(Text, nullable=True)
    start_price = Column(Numeric(12, 2), nullable=False)
    current_price = Column(Numeric(12, 2), nullable=False)
    reserve_price = Column(Numeric(12, 2), nullable=True)
    min_increment = Column(Numeric(12, 2), nullable=True)
    quantity = Column(Numeric(12, 3), nullable=False)
    unit = Column(String, nullable=True)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False, index=True)
    status = Column(String, nullable=False, default=AuctionStatus.ACTIVE.value, index=True)
    winning_bid_id = Column(Integer, nullable=True)
    settled_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    bids = relationship("Bid", back_populates="auction", order_by="Bid.id")
    order = relationship("Order", back_populates="auction", uselist=False)

    # Sweep lookup: active auctions past their end time
    __table_args__ = (Index("ix_auctions_status_end_time", "status", "end_time"),)


class Bid(Base):
    __tablename__ = "bids"

    id = Column(Integer, primary_key=True, index=True)
    auction_id = Column(Integer, ForeignKey("auctions.id"), nullable=False, index=True)
    product_id = Column(String, nullable=False)
    bidder_id = Column(String, nullable=False, index=True)
    bidder_name = Column(String, nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    previous_price = Column(Numeric(12, 2), nullable=True)
    # Marks the bid currently holding the auction price; moves to the next open bid on reject
    is_highest = Column(Boolean, nullable=False, default=False)
    status = Column(String, nullable=False, default=BidStatus.PENDING.value, index=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    auction = relationship("Auction", back_populates="bids")


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    # unique: a settled auction yields at most one order
    auction_id = Column(Integer, ForeignKey("auctions.id"), nullable=False, unique=True)
    bid_id = Column(Integer, ForeignKey("bids.id"), nullable=False)
    product_id = Column(String, nullable=False)
    seller_id = Column(String, nullable=False, index=True)
    buyer_id = Column(String, nullable=False, index=True)
    quantity = Column(Numeric(12, 3), nullable=False)
    unit_price = Column(Numeric(12, 2), nullable=False)
    total_amount = Column(Numeric(14, 2), nullable=False)
    status = Column(String, nullable=False, default=OrderStatus.PENDING.value)
    payment_status = Column(String, nullable=False, default=PaymentStatus.PENDING.value)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    auction = relationship("Auction", back_populates="order")


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, nullable=False, index=True)
    title = Column(String, nullable=False)
    message = Column(Text, nullable=False)
    type = Column(String, nullable=False)
    related_id = Column(String, nullable=True)
    read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
