from pydantic import BaseModel, field_validator
from datetime import datetime
from decimal import Decimal
from typing import Optional, List, Dict

from .validator import to_naive_utc


class AuthRequest(BaseModel):
    username: str
    password: str


class AuthResponse(BaseModel):
    token: str


class CreateAuctionRequest(BaseModel):
    product_id: str
    start_price: Decimal
    quantity: Decimal
    start_time: Optional[datetime] = None
    end_time: datetime
    reserve_price: Optional[Decimal] = None
    min_increment: Optional[Decimal] = None
    unit: Optional[str] = None
    description: Optional[str] = None

    @field_validator("start_time", "end_time")
    @classmethod
    def normalise_to_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        """Offsets such as Z or +05:30 are converted; stored times are naive UTC."""
        return to_naive_utc(value) if value is not None else None


class AuctionResponse(BaseModel):
    id: int
    product_id: str
    seller_id: str
    description: Optional[str]
    start_price: Decimal
    current_price: Decimal
    reserve_price: Optional[Decimal]
    min_increment: Optional[Decimal]
    quantity: Decimal
    unit: Optional[str]
    start_time: datetime
    end_time: datetime
    status: str
    winning_bid_id: Optional[int]
    settled_at: Optional[datetime]
    cancelled_at: Optional[datetime]

    model_config = {"from_attributes": True}


class PlaceBidRequest(BaseModel):
    amount: Decimal
    bidder_name: str


class BidResponse(BaseModel):
    id: int
    auction_id: int
    product_id: str
    bidder_id: str
    bidder_name: str
    amount: Decimal
    previous_price: Optional[Decimal]
    is_highest: bool
    status: str
    created_at: datetime

    model_config = {"from_attributes": True}


class BidRejectionDetail(BaseModel):
    reason: str
    message: str
    minimum_bid: Optional[Decimal] = None


class OrderResponse(BaseModel):
    id: int
    auction_id: int
    bid_id: int
    product_id: str
    seller_id: str
    buyer_id: str
    quantity: Decimal
    unit_price: Decimal
    total_amount: Decimal
    status: str
    payment_status: str
    created_at: datetime

    model_config = {"from_attributes": True}


class SettlementResponse(BaseModel):
    auction_id: int
    outcome: str
    winning_bid_id: Optional[int] = None
    order_id: Optional[int] = None
    rejected_bid_ids: List[int] = []


class SweepResponse(BaseModel):
    started_at: datetime
    candidates: List[int]
    outcomes: Dict[int, str]
    failures: Dict[int, str]


class NotificationResponse(BaseModel):
    id: int
    user_id: str
    title: str
    message: str
    type: str
    related_id: Optional[str]
    read: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class MarkReadResponse(BaseModel):
    updated: int
