import pytest
import os
import tempfile
from datetime import datetime, timedelta
from decimal import Decimal
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
import jwt

# Set test settings before any application imports read them
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ.setdefault("DATABASE_URL", "sqlite:///" + os.path.join(tempfile.gettempdir(), "agrimarket-test.db"))

from database.models import Base, Auction, Bid, AuctionStatus, BidStatus
from server.notifications import Notifier


class RecordingNotifier(Notifier):
    """Keeps notification events in memory for assertions."""

    def __init__(self):
        self.events = []

    def notify(self, user_id, title, message, type, related_id=None):
        self.events.append((user_id, title, message, type, related_id))

    def titles_for(self, user_id):
        return [event[1] for event in self.events if event[0] == user_id]


@pytest.fixture(scope="function")
def db_engine():
    """Create a test database engine backed by a temporary SQLite file."""
    # File-based so that separate sessions (notifier, sweeper, racing bids) share data
    test_db = tempfile.NamedTemporaryFile(delete=False, suffix='.db')
    test_db.close()
    test_db_url = f"sqlite:///{test_db.name}"

    engine = create_engine(test_db_url, connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()
    try:
        os.unlink(test_db.name)
    except OSError:
        pass


@pytest.fixture(scope="function")
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture(scope="function")
def db_session(session_factory):
    """Create a test database session."""
    session = session_factory()
    try:
        yield session
        session.rollback()
    finally:
        session.close()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture(scope="function")
def override_get_db(db_session, session_factory):
    """Point the API's session dependencies at the test database."""
    from server.api import app, get_session_factory
    from database.session import get_db

    def _get_test_db():
        yield db_session

    app.dependency_overrides.clear()
    app.dependency_overrides[get_db] = _get_test_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    yield
    app.dependency_overrides.clear()


def make_auction(db_session, **overrides):
    """Insert an active auction that is open for bidding right now."""
    now = datetime.utcnow()
    fields = dict(
        product_id="prod-wheat-1",
        seller_id="farmer-1",
        description="Durum wheat, grade A",
        start_price=Decimal("100.00"),
        current_price=Decimal("100.00"),
        min_increment=Decimal("10.00"),
        quantity=Decimal("12"),
        unit="quintal",
        start_time=now - timedelta(hours=1),
        end_time=now + timedelta(hours=1),
        status=AuctionStatus.ACTIVE.value,
    )
    fields.update(overrides)
    auction = Auction(**fields)
    db_session.add(auction)
    db_session.commit()
    db_session.refresh(auction)
    return auction


def make_bid(db_session, auction, bidder_id, amount, created_at=None, status=BidStatus.PENDING.value):
    """Insert a bid row directly, bypassing validation."""
    bid = Bid(
        auction_id=auction.id,
        product_id=auction.product_id,
        bidder_id=bidder_id,
        bidder_name=bidder_id.title(),
        amount=Decimal(str(amount)),
        status=status,
        created_at=created_at or datetime.utcnow(),
    )
    db_session.add(bid)
    db_session.commit()
    db_session.refresh(bid)
    return bid


@pytest.fixture
def sample_auction(db_session):
    """An open auction: price 100, increment 10, 12 quintals."""
    return make_auction(db_session)


@pytest.fixture
def expired_auction(db_session):
    """An active auction whose end time has passed."""
    now = datetime.utcnow()
    return make_auction(
        db_session,
        start_time=now - timedelta(hours=2),
        end_time=now - timedelta(minutes=1),
    )


def make_token(user_id):
    secret_key = os.getenv("SECRET_KEY", "test-secret-key")
    payload = {"sub": user_id, "exp": datetime.utcnow() + timedelta(days=30)}
    return jwt.encode(payload, secret_key, algorithm="HS256")


@pytest.fixture
def seller_headers():
    return {"Authorization": f"Bearer {make_token('farmer-1')}"}


@pytest.fixture
def trader_headers():
    return {"Authorization": f"Bearer {make_token('trader-1')}"}


@pytest.fixture
def other_trader_headers():
    return {"Authorization": f"Bearer {make_token('trader-2')}"}


@pytest.fixture
def client(override_get_db):
    """Create a test client with database override."""
    from fastapi.testclient import TestClient
    from server.api import app
    return TestClient(app)
