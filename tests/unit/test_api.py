import pytest
from datetime import datetime, timedelta
from decimal import Decimal
import os
from unittest.mock import patch

# Set test secret key before importing app
os.environ["SECRET_KEY"] = "test-secret-key"

from server.api import app, get_notifier
from server.notifications import DatabaseNotifier, LoggingNotifier
from database import AuctionStore, StaleSettlement
from database.models import Bid, Notification, AuctionStatus, BidStatus
from conftest import make_auction, make_bid


def test_auth_endpoint(client):
    """Test authentication endpoint."""
    response = client.post("/auth", json={"username": "trader-1", "password": "pw"})
    assert response.status_code == 200
    assert response.json()["token"]


def test_endpoints_require_auth(client, sample_auction):
    assert client.get(f"/auctions/{sample_auction.id}").status_code == 401
    assert client.post(f"/auctions/{sample_auction.id}/bids",
                       json={"amount": "110", "bidder_name": "T"}).status_code == 401
    assert client.post("/sweep").status_code == 401


def test_invalid_token(client, sample_auction):
    response = client.get(f"/auctions/{sample_auction.id}", headers={"Authorization": "Bearer not-a-token"})
    assert response.status_code == 401


def test_create_auction(client, seller_headers):
    end_time = (datetime.utcnow() + timedelta(hours=2)).isoformat()
    response = client.post(
        "/auctions",
        json={
            "product_id": "prod-onion-3",
            "start_price": "1800",
            "quantity": "25",
            "unit": "quintal",
            "min_increment": "50",
            "reserve_price": "2000",
            "end_time": end_time,
        },
        headers=seller_headers,
    )

    assert response.status_code == 200
    data = response.json()
    assert data["seller_id"] == "farmer-1"
    assert data["status"] == AuctionStatus.ACTIVE.value
    assert Decimal(data["current_price"]) == Decimal("1800")
    assert Decimal(data["min_increment"]) == Decimal("50")


def test_create_auction_invalid(client, seller_headers):
    response = client.post(
        "/auctions",
        json={
            "product_id": "prod-onion-3",
            "start_price": "1800",
            "quantity": "25",
            "start_time": datetime.utcnow().isoformat(),
            "end_time": (datetime.utcnow() - timedelta(hours=1)).isoformat(),
        },
        headers=seller_headers,
    )
    assert response.status_code == 400
    assert "end_time" in response.json()["detail"]


def test_get_auction_not_found(client, trader_headers):
    assert client.get("/auctions/999", headers=trader_headers).status_code == 404


def test_place_bid(client, trader_headers, sample_auction, db_session):
    response = client.post(
        f"/auctions/{sample_auction.id}/bids",
        json={"amount": "110", "bidder_name": "Trader One"},
        headers=trader_headers,
    )

    assert response.status_code == 200
    data = response.json()
    assert data["bidder_id"] == "trader-1"
    assert data["status"] == BidStatus.PENDING.value
    db_session.expire_all()
    assert sample_auction.current_price == Decimal("110.00")


def test_place_bid_rejection_reports_reason(client, trader_headers, sample_auction, db_session):
    response = client.post(
        f"/auctions/{sample_auction.id}/bids",
        json={"amount": "105", "bidder_name": "Trader One"},
        headers=trader_headers,
    )

    assert response.status_code == 400
    detail = response.json()["detail"]
    assert detail["reason"] == "IncrementTooSmall"
    assert detail["message"]
    assert Decimal(detail["minimum_bid"]) == Decimal("110.00")
    assert db_session.query(Bid).count() == 0


def test_place_bid_unknown_auction(client, trader_headers):
    response = client.post("/auctions/999/bids", json={"amount": "110", "bidder_name": "T"}, headers=trader_headers)
    assert response.status_code == 404


def test_seller_cannot_bid(client, seller_headers, sample_auction):
    response = client.post(
        f"/auctions/{sample_auction.id}/bids",
        json={"amount": "110", "bidder_name": "Farmer"},
        headers=seller_headers,
    )
    assert response.status_code == 400
    assert response.json()["detail"]["reason"] == "SelfBid"


def test_bid_creates_seller_notification(client, trader_headers, seller_headers, sample_auction):
    client.post(
        f"/auctions/{sample_auction.id}/bids",
        json={"amount": "110", "bidder_name": "Trader One"},
        headers=trader_headers,
    )

    response = client.get("/notifications", headers=seller_headers)
    assert response.status_code == 200
    notifications = response.json()
    assert [n["title"] for n in notifications] == ["New Bid"]
    assert notifications[0]["related_id"] == str(sample_auction.id)
    assert client.get("/notifications", headers=trader_headers).json() == []


def test_list_bids_highest_first(client, trader_headers, sample_auction, db_session):
    make_bid(db_session, sample_auction, "trader-1", "110")
    make_bid(db_session, sample_auction, "trader-2", "130")

    response = client.get(f"/auctions/{sample_auction.id}/bids", headers=trader_headers)

    assert response.status_code == 200
    assert [Decimal(b["amount"]) for b in response.json()] == [Decimal("130.00"), Decimal("110.00")]


def test_cancel_auction(client, seller_headers, sample_auction, db_session):
    make_bid(db_session, sample_auction, "trader-1", "110")

    response = client.post(f"/auctions/{sample_auction.id}/cancel", headers=seller_headers)

    assert response.status_code == 200
    assert response.json()["status"] == AuctionStatus.CANCELLED.value
    db_session.expire_all()
    assert all(b.status == BidStatus.REJECTED.value for b in sample_auction.bids)


def test_cancel_auction_not_seller(client, trader_headers, sample_auction):
    response = client.post(f"/auctions/{sample_auction.id}/cancel", headers=trader_headers)
    assert response.status_code == 403


def test_cancel_completed_auction(client, seller_headers, db_session):
    auction = make_auction(db_session, status=AuctionStatus.COMPLETED.value)
    response = client.post(f"/auctions/{auction.id}/cancel", headers=seller_headers)
    assert response.status_code == 400


def test_accept_and_reject_bid(client, seller_headers, trader_headers, sample_auction, db_session):
    low = make_bid(db_session, sample_auction, "trader-1", "110")
    high = make_bid(db_session, sample_auction, "trader-2", "130")

    response = client.post(f"/bids/{low.id}/reject", headers=seller_headers)
    assert response.status_code == 200
    assert response.json()["status"] == BidStatus.REJECTED.value

    response = client.post(f"/auctions/{sample_auction.id}/bids/{high.id}/accept", headers=seller_headers)
    assert response.status_code == 200
    data = response.json()
    assert data["outcome"] == "sold"
    assert data["winning_bid_id"] == high.id

    response = client.get(f"/auctions/{sample_auction.id}/order", headers=trader_headers)
    assert response.status_code == 403
    response = client.get(f"/auctions/{sample_auction.id}/order", headers=seller_headers)
    assert response.status_code == 200
    assert Decimal(response.json()["total_amount"]) == Decimal("1560.00")


def test_accept_bid_not_seller(client, trader_headers, sample_auction, db_session):
    bid = make_bid(db_session, sample_auction, "trader-1", "110")
    response = client.post(f"/auctions/{sample_auction.id}/bids/{bid.id}/accept", headers=trader_headers)
    assert response.status_code == 403


def test_reject_unknown_bid(client, seller_headers):
    assert client.post("/bids/12345/reject", headers=seller_headers).status_code == 404


def test_order_absent_before_settlement(client, seller_headers, sample_auction):
    response = client.get(f"/auctions/{sample_auction.id}/order", headers=seller_headers)
    assert response.status_code == 200
    assert response.json() is None


def test_sweep_endpoint(client, trader_headers, expired_auction, db_session):
    make_bid(db_session, expired_auction, "trader-1", "110")

    response = client.post("/sweep", headers=trader_headers)

    assert response.status_code == 200
    data = response.json()
    assert data["candidates"] == [expired_auction.id]
    assert data["outcomes"] == {str(expired_auction.id): "sold"}
    assert data["failures"] == {}
    db_session.expire_all()
    assert expired_auction.status == AuctionStatus.COMPLETED.value


def test_notifier_dependency_uses_database(session_factory):
    notifier = get_notifier(session_factory)
    assert isinstance(notifier, DatabaseNotifier)
    notifier.notify("farmer-1", "New Bid", "hello", "bid", "1")

    db = session_factory()
    try:
        assert db.query(Notification).filter(Notification.user_id == "farmer-1").count() == 1
    finally:
        db.close()


def test_place_sub_cent_bid_rejected(client, trader_headers, sample_auction, db_session):
    response = client.post(
        f"/auctions/{sample_auction.id}/bids",
        json={"amount": "110.004", "bidder_name": "Trader One"},
        headers=trader_headers,
    )

    assert response.status_code == 400
    assert response.json()["detail"]["reason"] == "InvalidAmount"
    assert db_session.query(Bid).count() == 0


def test_create_auction_with_sub_cent_price(client, seller_headers):
    response = client.post(
        "/auctions",
        json={
            "product_id": "prod-onion-3",
            "start_price": "1800.005",
            "quantity": "25",
            "end_time": (datetime.utcnow() + timedelta(hours=2)).isoformat(),
        },
        headers=seller_headers,
    )
    assert response.status_code == 400
    assert "start_price" in response.json()["detail"]


@pytest.mark.parametrize("offset,suffix", [(timedelta(0), "Z"), (timedelta(hours=5, minutes=30), "+05:30")])
def test_create_auction_with_offset_times(client, seller_headers, trader_headers, offset, suffix):
    """Times sent with a UTC offset are stored as the equivalent naive UTC time."""
    start = (datetime.utcnow() - timedelta(minutes=1)).replace(microsecond=0)
    end = start + timedelta(hours=2)
    response = client.post(
        "/auctions",
        json={
            "product_id": "prod-onion-3",
            "start_price": "1800",
            "quantity": "25",
            "start_time": (start + offset).isoformat() + suffix,
            "end_time": (end + offset).isoformat() + suffix,
        },
        headers=seller_headers,
    )

    assert response.status_code == 200
    data = response.json()
    assert data["start_time"] == start.isoformat()
    assert data["end_time"] == end.isoformat()

    response = client.post(
        f"/auctions/{data['id']}/bids",
        json={"amount": "1900", "bidder_name": "Trader One"},
        headers=trader_headers,
    )
    assert response.status_code == 200


def test_list_auctions_by_status(client, trader_headers, sample_auction, db_session):
    done = make_auction(db_session, status=AuctionStatus.COMPLETED.value)

    active = client.get("/auctions", headers=trader_headers).json()
    completed = client.get("/auctions?status=completed", headers=trader_headers).json()
    everything = client.get("/auctions?status=all", headers=trader_headers).json()

    assert [a["id"] for a in active] == [sample_auction.id]
    assert [a["id"] for a in completed] == [done.id]
    assert {a["id"] for a in everything} == {sample_auction.id, done.id}
    assert client.get("/auctions?status=bogus", headers=trader_headers).status_code == 400


def test_list_my_auctions(client, seller_headers, trader_headers, sample_auction, db_session):
    make_auction(db_session, seller_id="farmer-2")

    response = client.get("/auctions/mine", headers=seller_headers)

    assert response.status_code == 200
    assert [a["id"] for a in response.json()] == [sample_auction.id]
    assert client.get("/auctions/mine", headers=trader_headers).json() == []


def test_list_my_bids(client, trader_headers, other_trader_headers, sample_auction):
    client.post(f"/auctions/{sample_auction.id}/bids", json={"amount": "110", "bidder_name": "T1"},
                headers=trader_headers)
    client.post(f"/auctions/{sample_auction.id}/bids", json={"amount": "120", "bidder_name": "T2"},
                headers=other_trader_headers)

    mine = client.get("/bids/mine", headers=trader_headers).json()
    theirs = client.get("/bids/mine", headers=other_trader_headers).json()

    assert [(b["amount"], b["is_highest"]) for b in mine] == [("110.00", False)]
    assert [(b["amount"], b["is_highest"]) for b in theirs] == [("120.00", True)]
    assert client.get("/bids/mine?status=accepted", headers=trader_headers).json() == []


def test_mark_notifications_read(client, trader_headers, seller_headers, sample_auction, db_session):
    client.post(f"/auctions/{sample_auction.id}/bids", json={"amount": "110", "bidder_name": "T1"},
                headers=trader_headers)
    client.post(f"/auctions/{sample_auction.id}/bids", json={"amount": "120", "bidder_name": "T1"},
                headers=trader_headers)
    unread = client.get("/notifications?unread=true", headers=seller_headers).json()
    assert len(unread) == 2

    assert client.post(f"/notifications/{unread[0]['id']}/read", headers=trader_headers).status_code == 404
    response = client.post(f"/notifications/{unread[0]['id']}/read", headers=seller_headers)
    assert response.status_code == 200
    assert response.json()["read"] is True
    assert len(client.get("/notifications?unread=true", headers=seller_headers).json()) == 1

    assert client.post("/notifications/read-all", headers=seller_headers).json() == {"updated": 1}
    assert client.get("/notifications?unread=true", headers=seller_headers).json() == []
    assert len(client.get("/notifications", headers=seller_headers).json()) == 2


def test_accept_conflict_returns_409(client, seller_headers, sample_auction, db_session):
    bid = make_bid(db_session, sample_auction, "trader-1", "110")
    with patch.object(AuctionStore, "settle_transaction",
                      side_effect=StaleSettlement(sample_auction.id, "bid no longer open")):
        response = client.post(f"/auctions/{sample_auction.id}/bids/{bid.id}/accept", headers=seller_headers)
    assert response.status_code == 409


def test_notifier_follows_configured_backend(session_factory):
    with patch("server.api.config.NOTIFICATION_BACKEND", "log"):
        assert isinstance(get_notifier(session_factory), LoggingNotifier)
