"""
Outbound notification port.

Notifications are fire-and-forget: the engine calls safe_notify() only after
its own transaction has committed, and a failing adapter is logged, never
raised back into bid placement or settlement.
"""
import logging
from typing import Callable, Optional

from sqlalchemy.orm import Session

from database import Notification

logger = logging.getLogger(__name__)


class NotificationType:
    BID = "bid"
    AUCTION = "auction"
    ORDER = "order"


class Notifier:
    """Interface for delivering a notification event to a user."""

    def notify(self, user_id: str, title: str, message: str, type: str, related_id: Optional[str] = None):
        raise NotImplementedError


class LoggingNotifier(Notifier):
    def notify(self, user_id, title, message, type, related_id=None):
        logger.info(f"Notify {user_id} [{type}] {title}: {message}")


class DatabaseNotifier(Notifier):
    """Stores notifications as rows, in a session separate from the caller's."""

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def notify(self, user_id, title, message, type, related_id=None):
        db = self.session_factory()
        try:
            db.add(Notification(
                user_id=user_id,
                title=title,
                message=message,
                type=type,
                related_id=str(related_id) if related_id is not None else None,
            ))
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()


def safe_notify(notifier: Optional[Notifier], user_id: str, title: str, message: str,
                type: str, related_id=None) -> bool:
    """Deliver a notification, swallowing and logging any adapter failure."""
    if notifier is None:
        return False
    try:
        notifier.notify(user_id, title, message, type,
                        str(related_id) if related_id is not None else None)
        return True
    except Exception as e:
        logger.warning(f"Failed to notify user {user_id} ({title}): {e}", exc_info=True)
        return False


def build_notifier(backend: str, session_factory: Callable[[], Session]) -> Notifier:
    """Notifier for a configured backend name ("database" or "log")."""
    if backend == "database":
        return DatabaseNotifier(session_factory)
    if backend == "log":
        return LoggingNotifier()
    raise ValueError(f"Unknown notification backend: {backend!r}")
