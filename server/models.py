import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, DateTime, Text
from .db import Base


def _uuid():
    return str(uuid.uuid4())


def _now():
    return datetime.now(timezone.utc)


class AlertRow(Base):
    __tablename__ = "alerts"
    id = Column(String, primary_key=True, default=_uuid)
    type = Column(String, nullable=False)  # emergency, heart_rate, fall_detection, test
    description = Column(Text, nullable=False)
    location = Column(String, nullable=True)
    timestamp = Column(DateTime(timezone=True), default=_now, index=True)
    heart_rate = Column(Integer, nullable=True)


class SettingsRow(Base):
    __tablename__ = "settings"
    id = Column(String, primary_key=True, default=_uuid)
    caregiver_name = Column(String, nullable=False)
    caregiver_phone = Column(String, nullable=False)
    min_heart_rate = Column(Integer, nullable=False, default=50)
    max_heart_rate = Column(Integer, nullable=False, default=120)
    fall_sensitivity = Column(String, nullable=False, default="medium")  # low, medium, high
    updated_at = Column(DateTime(timezone=True), default=_now, onupdate=_now)
