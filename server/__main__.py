import uvicorn
import logging
from database import init_db, SessionLocal
from server import config
from server.api import app
from server.notifications import build_notifier
from server.settlement import AuctionSettler
from server.worker import SettlementSweeper

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

logger = logging.getLogger(__name__)


if __name__ == "__main__":
    # Initialize database
    init_db()
    logger.info("Database initialized")

    # Sweeper ticks once on start (catching auctions that ended while down),
    # then every SWEEP_INTERVAL_SECONDS
    sweeper = SettlementSweeper(
        AuctionSettler(notifier=build_notifier(config.NOTIFICATION_BACKEND, SessionLocal)),
        session_factory=SessionLocal,
    )
    sweeper.start()
    logger.info("Settlement sweeper started")

    try:
        uvicorn.run(app, host="0.0.0.0", port=config.PORT)
    finally:
        sweeper.stop(timeout=10)
