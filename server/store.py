import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional

from sqlalchemy import select, desc
from sqlalchemy.exc import SQLAlchemyError

from .models import AlertRow, SettingsRow
from .schemas import Alert, AlertIn, Settings, SettingsIn


class StoreError(Exception):
    pass


class MemStorage:
    """Alerts and the settings singleton held in process memory."""

    def __init__(self):
        self.alerts: Dict[str, Alert] = {}
        self.settings: Optional[Settings] = None

    def create_alert(self, data: AlertIn) -> Alert:
        alert = Alert(id=str(uuid.uuid4()), timestamp=datetime.now(timezone.utc), **data.model_dump())
        self.alerts[alert.id] = alert
        return alert

    def get_alerts(self, limit: Optional[int] = None) -> List[Alert]:
        alerts = sorted(self.alerts.values(), key=lambda a: a.timestamp, reverse=True)
        return alerts[:limit] if limit is not None else alerts

    def get_alert(self, alert_id: str) -> Optional[Alert]:
        return self.alerts.get(alert_id)

    def get_settings(self) -> Optional[Settings]:
        return self.settings

    def upsert_settings(self, data: SettingsIn) -> Settings:
        settings_id = self.settings.id if self.settings else str(uuid.uuid4())
        self.settings = Settings(id=settings_id, updated_at=datetime.now(timezone.utc), **data.model_dump())
        return self.settings


class SqlStorage:
    """Same interface as MemStorage over SQLAlchemy. Database errors surface as StoreError."""

    def __init__(self, Session):
        self.Session = Session

    def create_alert(self, data: AlertIn) -> Alert:
        try:
            with self.Session() as s:
                row = AlertRow(**data.model_dump())
                s.add(row)
                s.commit()
                s.refresh(row)
                return Alert.model_validate(row)
        except SQLAlchemyError as e:
            raise StoreError("create_alert failed") from e

    def get_alerts(self, limit: Optional[int] = None) -> List[Alert]:
        try:
            with self.Session() as s:
                q = select(AlertRow).order_by(desc(AlertRow.timestamp))
                if limit is not None:
                    q = q.limit(limit)
                return [Alert.model_validate(r) for r in s.execute(q).scalars().all()]
        except SQLAlchemyError as e:
            raise StoreError("get_alerts failed") from e

    def get_alert(self, alert_id: str) -> Optional[Alert]:
        try:
            with self.Session() as s:
                row = s.get(AlertRow, alert_id)
                return Alert.model_validate(row) if row else None
        except SQLAlchemyError as e:
            raise StoreError("get_alert failed") from e

    def get_settings(self) -> Optional[Settings]:
        try:
            with self.Session() as s:
                row = s.execute(select(SettingsRow)).scalars().first()
                return Settings.model_validate(row) if row else None
        except SQLAlchemyError as e:
            raise StoreError("get_settings failed") from e

    def upsert_settings(self, data: SettingsIn) -> Settings:
        try:
            with self.Session() as s:
                row = s.execute(select(SettingsRow)).scalars().first()
                if row is None:
                    row = SettingsRow()
                    s.add(row)
                for k, v in data.model_dump().items():
                    setattr(row, k, v)
                s.commit()
                s.refresh(row)
                return Settings.model_validate(row)
        except SQLAlchemyError as e:
            raise StoreError("upsert_settings failed") from e
