import requests
from typing import Optional, List, Dict, Any
from datetime import datetime
from decimal import Decimal
import pytz
from .config import SERVER_URL, get_token, get_timezone


class MarketplaceClient:
    """Client for the auction service HTTP API."""

    def __init__(self):
        self.server_url = SERVER_URL
        self.token: Optional[str] = get_token()
        self.timezone = pytz.timezone(get_timezone())

    def _get_headers(self) -> Dict[str, str]:
        """Get headers with authentication."""
        if not self.token:
            raise ValueError("Not authenticated. Run 'agrimarket auth' first.")
        return {"Authorization": f"Bearer {self.token}"}

    def _check(self, response: requests.Response):
        """Raise with the server's error detail when the request failed."""
        if response.ok:
            return
        try:
            error_data = response.json()
        except ValueError:
            response.raise_for_status()
        detail = error_data.get("detail", response.text)
        if isinstance(detail, dict) and "message" in detail:
            detail = f"{detail['message']} ({detail.get('reason')})"
        raise requests.exceptions.HTTPError(f"{response.status_code} {response.reason}: {detail}", response=response)

    def authenticate(self, username: str, password: str) -> str:
        """Authenticate and return token."""
        response = requests.post(
            f"{self.server_url}/auth",
            json={"username": username, "password": password}
        )
        response.raise_for_status()
        data = response.json()
        self.token = data["token"]
        return self.token

    def create_auction(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        response = requests.post(f"{self.server_url}/auctions", json=payload, headers=self._get_headers())
        self._check(response)
        return response.json()

    def get_auction(self, auction_id: int) -> Dict[str, Any]:
        response = requests.get(f"{self.server_url}/auctions/{auction_id}", headers=self._get_headers())
        self._check(response)
        return response.json()

    def list_bids(self, auction_id: int) -> List[Dict[str, Any]]:
        response = requests.get(f"{self.server_url}/auctions/{auction_id}/bids", headers=self._get_headers())
        self._check(response)
        return response.json()

    def get_order(self, auction_id: int) -> Optional[Dict[str, Any]]:
        response = requests.get(f"{self.server_url}/auctions/{auction_id}/order", headers=self._get_headers())
        self._check(response)
        data = response.json()
        return data if data else None

    def place_bid(self, auction_id: int, amount: Decimal, bidder_name: str) -> Dict[str, Any]:
        response = requests.post(
            f"{self.server_url}/auctions/{auction_id}/bids",
            json={"amount": str(amount), "bidder_name": bidder_name},
            headers=self._get_headers()
        )
        self._check(response)
        return response.json()

    def cancel_auction(self, auction_id: int) -> Dict[str, Any]:
        response = requests.post(f"{self.server_url}/auctions/{auction_id}/cancel", headers=self._get_headers())
        self._check(response)
        return response.json()

    def accept_bid(self, auction_id: int, bid_id: int) -> Dict[str, Any]:
        response = requests.post(
            f"{self.server_url}/auctions/{auction_id}/bids/{bid_id}/accept",
            headers=self._get_headers()
        )
        self._check(response)
        return response.json()

    def reject_bid(self, bid_id: int) -> Dict[str, Any]:
        response = requests.post(f"{self.server_url}/bids/{bid_id}/reject", headers=self._get_headers())
        self._check(response)
        return response.json()

    def sweep(self) -> Dict[str, Any]:
        response = requests.post(f"{self.server_url}/sweep", headers=self._get_headers())
        self._check(response)
        return response.json()

    def list_auctions(self, status: str = "active") -> List[Dict[str, Any]]:
        response = requests.get(
            f"{self.server_url}/auctions", params={"status": status}, headers=self._get_headers()
        )
        self._check(response)
        return response.json()

    def my_auctions(self) -> List[Dict[str, Any]]:
        response = requests.get(f"{self.server_url}/auctions/mine", headers=self._get_headers())
        self._check(response)
        return response.json()

    def my_bids(self, status: Optional[str] = None) -> List[Dict[str, Any]]:
        params = {"status": status} if status else None
        response = requests.get(f"{self.server_url}/bids/mine", params=params, headers=self._get_headers())
        self._check(response)
        return response.json()

    def notifications(self, unread_only: bool = False) -> List[Dict[str, Any]]:
        response = requests.get(
            f"{self.server_url}/notifications",
            params={"unread": "true" if unread_only else "false"},
            headers=self._get_headers()
        )
        self._check(response)
        return response.json()

    def mark_read(self, notification_id: int) -> Dict[str, Any]:
        response = requests.post(
            f"{self.server_url}/notifications/{notification_id}/read", headers=self._get_headers()
        )
        self._check(response)
        return response.json()

    def mark_all_read(self) -> int:
        response = requests.post(f"{self.server_url}/notifications/read-all", headers=self._get_headers())
        self._check(response)
        return response.json()["updated"]

    def to_local_time(self, utc_time_str: str) -> str:
        """Convert UTC time string to local timezone string."""
        dt_utc = datetime.fromisoformat(utc_time_str.replace("Z", "+00:00"))
        if dt_utc.tzinfo is None:
            dt_utc = pytz.UTC.localize(dt_utc)
        dt_local = dt_utc.astimezone(self.timezone)
        return dt_local.strftime("%Y-%m-%d %H:%M:%S")

    def to_utc(self, local_time_str: str) -> datetime:
        """Interpret a 'YYYY-MM-DD HH:MM' string in the display timezone as naive UTC."""
        dt_local = datetime.fromisoformat(local_time_str)
        if dt_local.tzinfo is None:
            dt_local = self.timezone.localize(dt_local)
        return dt_local.astimezone(pytz.UTC).replace(tzinfo=None)

    def time_until_end(self, end_time_utc: str) -> str:
        """Format time remaining: '45m', '5h', '3d' or 'Ended'."""
        dt_end = datetime.fromisoformat(end_time_utc.replace("Z", "+00:00"))
        if dt_end.tzinfo is None:
            dt_end = pytz.UTC.localize(dt_end)
        total_seconds = (dt_end - datetime.now(pytz.UTC)).total_seconds()
        if total_seconds <= 0:
            return "Ended"
        total_hours = total_seconds / 3600
        if total_hours < 1:
            return f"{int(total_seconds / 60)}m"
        elif total_hours < 36:
            return f"{int(total_hours)}h"
        return f"{int(total_hours // 24)}d"
