from fastapi import FastAPI, Depends, HTTPException, Header
from sqlalchemy.orm import Session
from datetime import datetime, timedelta
from typing import Callable, List, Optional
import jwt
import logging

from database import get_db, Auction, AuctionStatus, Bid, Notification, AuctionStore, SessionLocal
from . import config
from .auctions import create_auction, cancel_auction
from .bidding import BidPlacer
from .errors import (
    AuctionNotActive, AuctionNotFound, BidConflict, BidNotFound, BidRejected, InvalidAuction, NotAuctionSeller,
    SettlementConflict,
)
from .models import (
    AuthRequest, AuthResponse, CreateAuctionRequest, AuctionResponse, PlaceBidRequest, BidResponse,
    BidRejectionDetail, OrderResponse, SettlementResponse, SweepResponse, NotificationResponse, MarkReadResponse,
)
from .notifications import Notifier, build_notifier
from .settlement import AuctionSettler, SettlementResult
from .validator import minimum_next_bid
from .worker import SettlementSweeper

logger = logging.getLogger(__name__)

app = FastAPI(title="Agricultural Marketplace Auctions")


def verify_token(authorization: str = Header(None)) -> str:
    """Verify the bearer token and return the user id it was issued for."""
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing or invalid authorization header")

    token = authorization.split(" ")[1]
    try:
        payload = jwt.decode(token, config.SECRET_KEY, algorithms=["HS256"])
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")
    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token")
    return user_id


def get_session_factory() -> Callable[[], Session]:
    """Session factory for work done outside the request session (notifications, sweeps)."""
    return SessionLocal


def get_notifier(session_factory: Callable[[], Session] = Depends(get_session_factory)) -> Notifier:
    return build_notifier(config.NOTIFICATION_BACKEND, session_factory)


def _settlement_response(result: SettlementResult) -> SettlementResponse:
    return SettlementResponse(
        auction_id=result.auction_id,
        outcome=result.outcome.value,
        winning_bid_id=result.winning_bid_id,
        order_id=result.order_id,
        rejected_bid_ids=result.rejected_bid_ids,
    )


def _get_auction_or_404(db: Session, auction_id: int) -> Auction:
    auction = AuctionStore(db).get_auction(auction_id)
    if not auction:
        raise HTTPException(status_code=404, detail="Auction not found")
    return auction


@app.post("/auth", response_model=AuthResponse)
def auth(request: AuthRequest):
    """Issue an API token for a marketplace user."""
    # Credentials are checked by the account service in front of this one;
    # the token subject is the user id used for seller/bidder identity.
    token = jwt.encode(
        {"sub": request.username, "exp": datetime.utcnow() + timedelta(days=30)},
        config.SECRET_KEY,
        algorithm="HS256"
    )
    return AuthResponse(token=token)


@app.post("/auctions", response_model=AuctionResponse)
def create_auction_endpoint(request: CreateAuctionRequest, db: Session = Depends(get_db),
                            user_id: str = Depends(verify_token)):
    """Create an auction listing; the caller becomes the seller."""
    try:
        auction = create_auction(
            db,
            seller_id=user_id,
            product_id=request.product_id,
            start_price=request.start_price,
            quantity=request.quantity,
            start_time=request.start_time or datetime.utcnow(),
            end_time=request.end_time,
            reserve_price=request.reserve_price,
            min_increment=request.min_increment,
            unit=request.unit,
            description=request.description,
        )
    except InvalidAuction as e:
        raise HTTPException(status_code=400, detail=str(e))
    return AuctionResponse.model_validate(auction)


@app.get("/auctions", response_model=List[AuctionResponse])
def list_auctions(status: str = AuctionStatus.ACTIVE.value, db: Session = Depends(get_db),
                  user_id: str = Depends(verify_token)):
    """Browse auctions by status, newest first; status=all lists every auction."""
    if status == "all":
        status_filter = None
    elif status in {s.value for s in AuctionStatus}:
        status_filter = status
    else:
        raise HTTPException(status_code=400, detail=f"Unknown auction status: {status}")
    auctions = AuctionStore(db).list_auctions(status=status_filter)
    return [AuctionResponse.model_validate(a) for a in auctions]


@app.get("/auctions/mine", response_model=List[AuctionResponse])
def list_my_auctions(db: Session = Depends(get_db), user_id: str = Depends(verify_token)):
    """The caller's own auctions in every status."""
    auctions = AuctionStore(db).list_auctions(seller_id=user_id)
    return [AuctionResponse.model_validate(a) for a in auctions]


@app.get("/bids/mine", response_model=List[BidResponse])
def list_my_bids(status: Optional[str] = None, db: Session = Depends(get_db),
                 user_id: str = Depends(verify_token)):
    """Bids the caller has placed, newest first, with their current status."""
    bids = AuctionStore(db).bids_for_bidder(user_id, status=status)
    return [BidResponse.model_validate(b) for b in bids]


@app.get("/auctions/{auction_id}", response_model=AuctionResponse)
def get_auction(auction_id: int, db: Session = Depends(get_db), user_id: str = Depends(verify_token)):
    return AuctionResponse.model_validate(_get_auction_or_404(db, auction_id))


@app.get("/auctions/{auction_id}/bids", response_model=List[BidResponse])
def list_bids(auction_id: int, db: Session = Depends(get_db), user_id: str = Depends(verify_token)):
    """List bids for an auction, highest first."""
    _get_auction_or_404(db, auction_id)
    bids = db.query(Bid).filter(Bid.auction_id == auction_id).order_by(Bid.amount.desc(), Bid.created_at).all()
    return [BidResponse.model_validate(b) for b in bids]


@app.get("/auctions/{auction_id}/order", response_model=Optional[OrderResponse])
def get_order(auction_id: int, db: Session = Depends(get_db), user_id: str = Depends(verify_token)):
    """Order created by settlement, visible to the seller and the buyer."""
    _get_auction_or_404(db, auction_id)
    order = AuctionStore(db).get_order_for_auction(auction_id)
    if not order:
        return None
    if user_id not in (order.seller_id, order.buyer_id):
        raise HTTPException(status_code=403, detail="Not a party to this order")
    return OrderResponse.model_validate(order)


@app.post("/auctions/{auction_id}/bids", response_model=BidResponse)
def place_bid(auction_id: int, request: PlaceBidRequest, db: Session = Depends(get_db),
              user_id: str = Depends(verify_token), notifier: Notifier = Depends(get_notifier)):
    """Place a bid; rejections carry the rule that failed."""
    placer = BidPlacer(notifier=notifier)
    try:
        bid = placer.place_bid(db, auction_id, user_id, request.bidder_name, request.amount)
    except AuctionNotFound:
        raise HTTPException(status_code=404, detail="Auction not found")
    except BidRejected as e:
        auction = AuctionStore(db).get_auction(auction_id)
        detail = BidRejectionDetail(
            reason=e.reason.value,
            message=e.detail,
            minimum_bid=minimum_next_bid(auction) if auction is not None else None,
        )
        raise HTTPException(status_code=400, detail=detail.model_dump(mode="json"))
    except BidConflict as e:
        raise HTTPException(status_code=409, detail=str(e))
    return BidResponse.model_validate(bid)


@app.post("/auctions/{auction_id}/cancel", response_model=AuctionResponse)
def cancel(auction_id: int, db: Session = Depends(get_db), user_id: str = Depends(verify_token),
           notifier: Notifier = Depends(get_notifier)):
    """Cancel an active auction (seller only)."""
    try:
        auction = cancel_auction(db, auction_id, user_id, notifier=notifier)
    except AuctionNotFound:
        raise HTTPException(status_code=404, detail="Auction not found")
    except NotAuctionSeller:
        raise HTTPException(status_code=403, detail="Only the seller can cancel this auction")
    except AuctionNotActive as e:
        raise HTTPException(status_code=400, detail=str(e))
    return AuctionResponse.model_validate(auction)


@app.post("/auctions/{auction_id}/bids/{bid_id}/accept", response_model=SettlementResponse)
def accept_bid(auction_id: int, bid_id: int, db: Session = Depends(get_db),
               user_id: str = Depends(verify_token), notifier: Notifier = Depends(get_notifier)):
    """Seller accepts an open bid, settling the auction early."""
    settler = AuctionSettler(notifier=notifier)
    try:
        result = settler.accept_bid(db, auction_id, bid_id, user_id)
    except AuctionNotFound:
        raise HTTPException(status_code=404, detail="Auction not found")
    except BidNotFound:
        raise HTTPException(status_code=404, detail="Open bid not found on this auction")
    except NotAuctionSeller:
        raise HTTPException(status_code=403, detail="Only the seller can accept bids")
    except AuctionNotActive as e:
        raise HTTPException(status_code=400, detail=str(e))
    except SettlementConflict as e:
        raise HTTPException(status_code=409, detail=str(e))
    return _settlement_response(result)


@app.post("/bids/{bid_id}/reject", response_model=BidResponse)
def reject_bid(bid_id: int, db: Session = Depends(get_db), user_id: str = Depends(verify_token),
               notifier: Notifier = Depends(get_notifier)):
    """Seller rejects a single open bid."""
    settler = AuctionSettler(notifier=notifier)
    try:
        bid = settler.reject_bid(db, bid_id, user_id)
    except BidNotFound:
        raise HTTPException(status_code=404, detail="Open bid not found")
    except NotAuctionSeller:
        raise HTTPException(status_code=403, detail="Only the seller can reject bids")
    except AuctionNotActive as e:
        raise HTTPException(status_code=400, detail=str(e))
    return BidResponse.model_validate(bid)


@app.post("/sweep", response_model=SweepResponse)
def run_sweep(user_id: str = Depends(verify_token),
              session_factory: Callable[[], Session] = Depends(get_session_factory),
              notifier: Notifier = Depends(get_notifier)):
    """Run one settlement sweep now, in addition to the scheduled ones."""
    sweeper = SettlementSweeper(AuctionSettler(notifier=notifier), session_factory=session_factory)
    report = sweeper.tick()
    logger.info(f"On-demand sweep by {user_id}: {len(report.candidates)} candidates")
    return SweepResponse(
        started_at=report.started_at,
        candidates=report.candidates,
        outcomes=report.outcomes,
        failures=report.failures,
    )


@app.get("/notifications", response_model=List[NotificationResponse])
def list_notifications(unread: bool = False, db: Session = Depends(get_db), user_id: str = Depends(verify_token)):
    notifications = AuctionStore(db).notifications_for(user_id, unread_only=unread)
    return [NotificationResponse.model_validate(n) for n in notifications]


@app.post("/notifications/read-all", response_model=MarkReadResponse)
def mark_all_read(db: Session = Depends(get_db), user_id: str = Depends(verify_token)):
    store = AuctionStore(db)
    with store.transaction():
        updated = store.mark_all_notifications_read(user_id)
    return MarkReadResponse(updated=updated)


@app.post("/notifications/{notification_id}/read", response_model=NotificationResponse)
def mark_read(notification_id: int, db: Session = Depends(get_db), user_id: str = Depends(verify_token)):
    """Mark one of the caller's notifications as read."""
    store = AuctionStore(db)
    with store.transaction():
        if not store.mark_notification_read(notification_id, user_id):
            raise HTTPException(status_code=404, detail="Notification not found")
    notification = db.query(Notification).filter(Notification.id == notification_id).populate_existing().first()
    return NotificationResponse.model_validate(notification)
