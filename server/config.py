import os
from dotenv import load_dotenv

# Load environment variables from .env file before reading settings
load_dotenv()


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


SECRET_KEY = os.getenv("SECRET_KEY", "change-me-in-production")
PORT = int(os.getenv("PORT", 8000))

# Settlement sweep cadence; a sweep also runs once at startup
SWEEP_INTERVAL_SECONDS = float(os.getenv("SWEEP_INTERVAL_SECONDS", 60))

# Sellers bidding on their own auctions is rejected unless explicitly allowed
ALLOW_SELF_BIDS = _env_flag("ALLOW_SELF_BIDS", False)

# When enabled, a highest bid below reserve_price does not win
ENFORCE_RESERVE_PRICE = _env_flag("ENFORCE_RESERVE_PRICE", False)

# Times a bid is re-validated after losing a price compare-and-swap
BID_CONFLICT_RETRIES = int(os.getenv("BID_CONFLICT_RETRIES", 3))

# Where notifications go: "database" (notifications table) or "log"
NOTIFICATION_BACKEND = os.getenv("NOTIFICATION_BACKEND", "database").strip().lower()
