from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional
import logging
import os
import random

import requests

from storage import LocalStore

logger = logging.getLogger(__name__)

API_URL = os.getenv("CARECONNECT_API_URL", "http://localhost:8000")
ALERT_TIMEOUT = float(os.getenv("ALERT_TIMEOUT_SECONDS", "1.5"))

LOCATIONS = [
    "123 Main St, Anytown, ST 12345",
    "456 Oak Ave, Somewhere, ST 67890",
    "789 Pine Rd, Another City, ST 54321",
    "321 Elm St, Hometown, ST 98765",
]


def simulated_location() -> str:
    return random.choice(LOCATIONS)


def heart_rate_breach(heart_rate: int, min_rate: int, max_rate: int) -> Optional[str]:
    """Alert description when heart_rate is outside [min_rate, max_rate], else None."""
    if heart_rate < min_rate:
        return f"Heart rate dropped to {heart_rate} BPM"
    if heart_rate > max_rate:
        return f"Heart rate exceeded {heart_rate} BPM"
    return None


@dataclass
class AlertResult:
    success: bool
    message: str
    alert: Optional[Dict[str, Any]] = None


class AlertSystem:
    """
    Turns readings and button presses into alerts.

    Emergency and test alerts go to the server first and are mirrored in
    the local store only when the server accepted them. Failures are
    reported in the result and logged; nothing is retried.
    """

    def __init__(self, store: LocalStore, api_url: str = API_URL, timeout: float = ALERT_TIMEOUT):
        self.store = store
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.emergency_pending = False

    def _post(self, path: str, payload: Dict) -> Dict:
        r = requests.post(f"{self.api_url}{path}", json=payload, timeout=self.timeout)
        r.raise_for_status()
        return r.json()

    def check_heart_rate(self, heart_rate: int, min_rate: int, max_rate: int) -> Optional[Dict]:
        description = heart_rate_breach(heart_rate, min_rate, max_rate)
        if description is None:
            return None
        logger.warning(description)
        return self.store.add_alert(
            type="heart_rate",
            description=description,
            location=simulated_location(),
            heart_rate=heart_rate,
        )

    def report_fall(self, fall_detection_active: bool, heart_rate: Optional[int] = None) -> Optional[Dict]:
        if not fall_detection_active:
            return None
        logger.warning("Fall detected")
        return self.store.add_alert(
            type="fall_detection",
            description="Possible fall detected",
            location=simulated_location(),
            heart_rate=heart_rate,
        )

    def send_emergency_alert(self, heart_rate: Optional[int] = None) -> AlertResult:
        if self.emergency_pending:
            return AlertResult(False, "Emergency alert already in progress.")

        self.emergency_pending = True
        try:
            body = self._post("/api/emergency-alert", {
                "location": simulated_location(),
                "heartRate": heart_rate,
            })
        except requests.RequestException as e:
            logger.error("Emergency alert failed: %s", e)
            return AlertResult(False, "Failed to send emergency alert. Please try again.")
        finally:
            self.emergency_pending = False

        alert = self.store.add_alert(
            type="emergency",
            description="Emergency SOS button pressed",
            location=simulated_location(),
            heart_rate=heart_rate,
        )
        logger.info("Emergency alert sent: %s", body.get("alert", {}).get("id"))
        return AlertResult(True, "Your caregiver has been notified with your location.", alert)

    def send_test_alert(self, caregiver_phone: str) -> AlertResult:
        if not caregiver_phone:
            return AlertResult(False, "Please enter a caregiver phone number first.")

        try:
            self._post("/api/test-alert", {"caregiverPhone": caregiver_phone})
        except requests.RequestException as e:
            logger.error("Test alert failed: %s", e)
            return AlertResult(False, "Failed to send test alert. Please try again.")

        alert = self.store.add_alert(
            type="test",
            description="Test SMS sent successfully",
            location="Test alert",
        )
        return AlertResult(True, "Test SMS sent successfully to your caregiver.", alert)

    def fetch_server_alerts(self, limit: int = 50) -> List[Dict]:
        try:
            r = requests.get(f"{self.api_url}/api/alerts", params={"limit": limit}, timeout=self.timeout)
            r.raise_for_status()
            return r.json()
        except requests.RequestException as e:
            logger.warning("Could not fetch server alerts: %s", e)
            return []


def _parse_ts(ts) -> datetime:
    if isinstance(ts, datetime):
        return ts
    # server timestamps may carry a trailing Z
    return datetime.fromisoformat(str(ts).replace("Z", "+00:00"))


def merge_alerts(local: List[Dict], remote: List[Dict]) -> List[Dict]:
    """Local and server alerts in one list, newest first. Server rows use camelCase."""
    rows = list(local)
    for a in remote:
        rows.append({
            "id": a.get("id"),
            "type": a.get("type"),
            "description": a.get("description"),
            "location": a.get("location"),
            "timestamp": a.get("timestamp"),
            "heart_rate": a.get("heartRate"),
        })

    def sort_key(a):
        ts = _parse_ts(a["timestamp"])
        if ts.tzinfo is not None:
            # compare everything as local wall-clock time
            ts = ts.astimezone().replace(tzinfo=None)
        return ts

    return sorted(rows, key=sort_key, reverse=True)


def alert_stats(alerts: List[Dict], now: Optional[datetime] = None) -> Dict[str, Any]:
    today = (now or datetime.now()).date()
    todays = [a for a in alerts if _parse_ts(a["timestamp"]).date() == today]
    rates = [a["heart_rate"] for a in todays if a.get("heart_rate")]
    return {
        "alerts_today": len(todays),
        "avg_heart_rate": sum(rates) / len(rates) if rates else None,
        "falls_detected": sum(1 for a in todays if a["type"] == "fall_detection"),
    }
