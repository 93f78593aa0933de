from sqlalchemy import create_engine, Column, String, DateTime, Text
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.sql import func
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Any, Dict, List, Optional
import json
import logging
import uuid

logger = logging.getLogger(__name__)

Base = declarative_base()

SETTINGS_KEY = "careconnect-settings"
ALERTS_KEY = "careconnect-alerts"
REMINDERS_KEY = "careconnect-medicine-reminders"
LOGS_KEY = "careconnect-medicine-logs"

MAX_ALERTS = 50


class KeyValueRow(Base):
    __tablename__ = "kv_store"
    key = Column(String, primary_key=True)
    value_json = Column(Text, nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class KeyValueStore:
    """JSON values by string key. Subclasses pick where they live."""

    def get(self, key: str) -> Optional[Any]:
        raise NotImplementedError

    def set(self, key: str, value: Any) -> None:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError


class MemoryKeyValueStore(KeyValueStore):
    def __init__(self):
        self._d: Dict[str, str] = {}

    def get(self, key):
        raw = self._d.get(key)
        return json.loads(raw) if raw is not None else None

    def set(self, key, value):
        # serialize so callers never share mutable state with the store
        self._d[key] = json.dumps(value, ensure_ascii=False)

    def delete(self, key):
        self._d.pop(key, None)


class SqlKeyValueStore(KeyValueStore):
    def __init__(self, db_url: str = "sqlite:///careconnect.db"):
        self.Session = init_db(db_url)

    def get(self, key):
        with self.Session() as s:
            row = s.get(KeyValueRow, key)
            return json.loads(row.value_json) if row else None

    def set(self, key, value):
        raw = json.dumps(value, ensure_ascii=False)
        with self.Session() as s:
            row = s.get(KeyValueRow, key)
            if row:
                row.value_json = raw
            else:
                s.add(KeyValueRow(key=key, value_json=raw))
            s.commit()

    def delete(self, key):
        with self.Session() as s:
            row = s.get(KeyValueRow, key)
            if row:
                s.delete(row)
                s.commit()


def init_db(db_url: str = "sqlite:///careconnect.db"):
    connect_args = {"check_same_thread": False} if db_url.startswith("sqlite") else {}
    engine = create_engine(db_url, connect_args=connect_args)
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@dataclass
class CaregiverSettings:
    caregiver_name: str = "Dr. Sarah Johnson"
    caregiver_phone: str = "+1-555-0123"
    min_heart_rate: int = 50
    max_heart_rate: int = 120
    fall_sensitivity: str = "medium"  # low, medium, high

    @classmethod
    def from_dict(cls, d: Dict) -> "CaregiverSettings":
        known = {k: v for k, v in d.items() if k in cls.__dataclass_fields__}
        return cls(**known)


class LocalStore:
    """
    Client-side persistence of settings, alerts, reminders and dose logs.

    Storage failures are logged and never raised: reads fall back to
    empty/default data so the dashboard keeps working.
    """

    def __init__(self, kv: KeyValueStore):
        self.kv = kv

    def _read(self, key: str, default):
        try:
            value = self.kv.get(key)
        except Exception:
            logger.exception("Failed to read %s", key)
            return default
        return default if value is None else value

    def _write(self, key: str, value) -> bool:
        try:
            self.kv.set(key, value)
        except Exception:
            logger.exception("Failed to save %s", key)
            return False
        return True

    # settings
    def get_settings(self) -> CaregiverSettings:
        stored = self._read(SETTINGS_KEY, None)
        if stored is None:
            # first use: persist the default caregiver
            settings = CaregiverSettings()
            self.save_settings(settings)
            return settings
        try:
            return CaregiverSettings.from_dict(stored)
        except (TypeError, AttributeError):
            logger.error("Corrupt settings entry, using defaults")
            return CaregiverSettings()

    def save_settings(self, settings: CaregiverSettings) -> bool:
        return self._write(SETTINGS_KEY, asdict(settings))

    # alerts
    def get_alerts(self) -> List[Dict]:
        alerts = self._read(ALERTS_KEY, [])
        return alerts if isinstance(alerts, list) else []

    def add_alert(self, type: str, description: str, location: str,
                  heart_rate: Optional[int] = None) -> Dict:
        alert = {
            "id": str(uuid.uuid4()),
            "type": type,
            "description": description,
            "location": location,
            "timestamp": datetime.now().isoformat(),
            "heart_rate": heart_rate,
        }
        alerts = self.get_alerts()
        alerts.insert(0, alert)
        self._write(ALERTS_KEY, alerts[:MAX_ALERTS])
        return alert

    def clear_alerts(self) -> None:
        try:
            self.kv.delete(ALERTS_KEY)
        except Exception:
            logger.exception("Failed to clear alerts")

    # medicine
    def get_reminders(self) -> List[Dict]:
        reminders = self._read(REMINDERS_KEY, [])
        return reminders if isinstance(reminders, list) else []

    def save_reminders(self, reminders: List[Dict]) -> bool:
        return self._write(REMINDERS_KEY, reminders)

    def get_dose_logs(self) -> List[Dict]:
        logs = self._read(LOGS_KEY, [])
        return logs if isinstance(logs, list) else []

    def save_dose_logs(self, logs: List[Dict]) -> bool:
        return self._write(LOGS_KEY, logs)
