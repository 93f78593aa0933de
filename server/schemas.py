from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

AlertType = Literal["emergency", "heart_rate", "fall_detection", "test"]
FallSensitivity = Literal["low", "medium", "high"]


class CamelModel(BaseModel):
    # the browser client speaks camelCase
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class AlertIn(CamelModel):
    type: AlertType
    description: str = Field(..., min_length=1)
    location: Optional[str] = None
    heart_rate: Optional[int] = Field(None, ge=0, le=300)


class Alert(AlertIn):
    id: str
    timestamp: datetime


class SettingsIn(CamelModel):
    caregiver_name: str
    caregiver_phone: str
    min_heart_rate: int = Field(50, ge=20, le=250)
    max_heart_rate: int = Field(120, ge=20, le=250)
    fall_sensitivity: FallSensitivity = "medium"

    @model_validator(mode="after")
    def check_range(self):
        if self.min_heart_rate >= self.max_heart_rate:
            raise ValueError("minHeartRate must be below maxHeartRate")
        return self


class Settings(SettingsIn):
    id: Optional[str] = None
    updated_at: Optional[datetime] = None


class EmergencyAlertIn(CamelModel):
    location: Optional[str] = None
    heart_rate: Optional[int] = Field(None, ge=0, le=300)


class TestAlertIn(CamelModel):
    caregiver_phone: str = Field(..., min_length=1)


class AlertEnvelope(CamelModel):
    success: bool
    alert: Alert
