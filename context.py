import logging
import os
from datetime import datetime
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from alerts import AlertSystem
from medicine import MedicineScheduler
from simulator import HealthData, HealthSimulator
from storage import KeyValueStore, LocalStore, SqlKeyValueStore

logger = logging.getLogger(__name__)

LOCAL_DB_URL = os.getenv("CARECONNECT_DB_URL", "sqlite:///careconnect.db")


@dataclass
class CareContext:
    """One instance of each client component, wired together."""

    simulator: HealthSimulator
    store: LocalStore
    alerts: AlertSystem
    medicine: MedicineScheduler
    latest: Optional[HealthData] = None
    last_checked_hr: Optional[int] = None
    _unsubscribe: List[Callable[[], None]] = field(default_factory=list)

    def start(self):
        if not self._unsubscribe:
            self._unsubscribe.append(self.simulator.subscribe(self.on_health_update))

    def close(self):
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._unsubscribe.clear()

    def on_health_update(self, data: HealthData):
        self.latest = data
        # only a changed reading is checked; fall toggles and repeats are not new breaches
        if data.heart_rate == self.last_checked_hr:
            return
        self.last_checked_hr = data.heart_rate
        settings = self.store.get_settings()
        self.alerts.check_heart_rate(data.heart_rate, settings.min_heart_rate, settings.max_heart_rate)

    def confirm_dose(self, reminder_id: str, scheduled_time: str,
                     notes: Optional[str] = None, now: Optional[datetime] = None) -> str:
        log = self.medicine.mark_taken(reminder_id, scheduled_time, notes=notes, now=now)
        how = "taken late" if log.status == "late" else "taken on time"
        return f"{log.medicine_name} marked as {how}."


def build_context(kv: Optional[KeyValueStore] = None, api_url: Optional[str] = None) -> CareContext:
    store = LocalStore(kv if kv is not None else SqlKeyValueStore(LOCAL_DB_URL))
    alert_system = AlertSystem(store, api_url) if api_url else AlertSystem(store)
    ctx = CareContext(
        simulator=HealthSimulator(),
        store=store,
        alerts=alert_system,
        medicine=MedicineScheduler(store),
    )
    ctx.start()
    return ctx
