import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from database import SessionLocal, AuctionStore
from . import config
from .settlement import AuctionSettler, SettlementOutcome

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    """Per-tick summary of what the sweeper did."""
    started_at: datetime
    candidates: List[int] = field(default_factory=list)
    outcomes: Dict[int, str] = field(default_factory=dict)
    failures: Dict[int, str] = field(default_factory=dict)

    @property
    def settled(self) -> List[int]:
        return [
            auction_id for auction_id, outcome in self.outcomes.items()
            if outcome != SettlementOutcome.ALREADY_SETTLED.value
        ]


class SettlementSweeper:
    """Periodically settles auctions whose end time has passed."""

    def __init__(self, settler: Optional[AuctionSettler] = None,
                 session_factory: Callable[[], Session] = SessionLocal,
                 interval_seconds: Optional[float] = None):
        self.settler = settler or AuctionSettler()
        self.session_factory = session_factory
        self.interval_seconds = config.SWEEP_INTERVAL_SECONDS if interval_seconds is None else interval_seconds
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _find_candidates(self, now: datetime) -> List[int]:
        db = self.session_factory()
        try:
            return AuctionStore(db).find_expired_active(now)
        finally:
            db.close()

    def tick(self, now: Optional[datetime] = None) -> SweepReport:
        """
        Settle every active auction with end_time <= now.

        Each auction gets its own session and transaction; a failure is logged
        and the auction stays active for the next tick while the rest proceed.
        """
        now = now or datetime.utcnow()
        report = SweepReport(started_at=now)
        report.candidates = self._find_candidates(now)
        if report.candidates:
            logger.info(f"Sweep found {len(report.candidates)} expired auctions")

        for auction_id in report.candidates:
            db = self.session_factory()
            try:
                result = self.settler.settle(db, auction_id, now=now)
                report.outcomes[auction_id] = result.outcome.value
            except Exception as e:
                logger.error(f"Error settling auction {auction_id}: {e}", exc_info=True)
                db.rollback()
                report.failures[auction_id] = str(e)
                continue
            finally:
                db.close()

        return report

    def run_loop(self):
        """Tick immediately, then every interval until stop() is called."""
        logger.info(f"Settlement sweeper started, interval {self.interval_seconds}s")
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception as e:
                # Candidate lookup failed (e.g. database unreachable); try again next interval
                logger.error(f"Error in settlement sweep: {e}", exc_info=True)
            self._stop_event.wait(self.interval_seconds)
        logger.info("Settlement sweeper stopped")

    def start(self):
        """Start the sweep loop on a background thread."""
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self.run_loop, name="settlement-sweeper", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None):
        """Signal the loop to exit and wait for the current tick to finish."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
