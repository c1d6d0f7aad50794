"""
Schemas for the AEROVANT air-quality dashboard API

Sensor readings are produced upstream (station firmware + ML pipeline) and are only
validated here. Citizen reports are owned by this service; the attribute names used
by the external store differ from these models and are translated in reports.py.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator


# ----------------------------
# Sensor readings
# ----------------------------

class AirQualityStatus(str, Enum):
    STABLE = "Stable"
    CRITICAL = "Critical"

    @classmethod
    def from_classification(cls, value) -> "AirQualityStatus":
        """Collapse the upstream classification (numeric code or label) to one enum."""
        if isinstance(value, cls):
            return value
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return cls.STABLE if value == 1 else cls.CRITICAL
        if isinstance(value, str) and value.strip().lower() == "stable":
            return cls.STABLE
        return cls.CRITICAL


class AirQualityLevel(str, Enum):
    GOOD = "Good"
    MODERATE = "Moderate"
    UNHEALTHY = "Unhealthy"
    VERY_UNHEALTHY = "Very Unhealthy"
    HAZARDOUS = "Hazardous"

    @classmethod
    def from_mq135(cls, ppm: float) -> "AirQualityLevel":
        if ppm < 50:
            return cls.GOOD
        if ppm < 100:
            return cls.MODERATE
        if ppm < 150:
            return cls.UNHEALTHY
        if ppm < 200:
            return cls.VERY_UNHEALTHY
        return cls.HAZARDOUS


class GasReadings(BaseModel):
    """The five MQ-series gas channels, in ppm."""
    model_config = ConfigDict(extra="ignore")

    MQ135_ppm: float
    MQ2_ppm: float
    MQ3_ppm: float
    MQ6_ppm: float
    MQ9_ppm: float


class Environment(BaseModel):
    temperature: float = Field(..., description="Temperature in Celsius")
    humidity: float = Field(..., description="Relative humidity (%)")
    env_index: Optional[float] = Field(None, description="Derived environment index, passed through")


class MLPrediction(BaseModel):
    classification: AirQualityStatus
    confidence: Optional[float] = Field(None, ge=0, le=1)

    @field_validator("classification", mode="before")
    @classmethod
    def collapse_classification(cls, value):
        return AirQualityStatus.from_classification(value)


class StationLocation(BaseModel):
    latitude: float
    longitude: float
    name: str


class SensorReading(BaseModel):
    """One timestamped snapshot from the monitoring station."""
    model_config = ConfigDict(extra="ignore")

    timestamp: datetime = Field(..., description="Reading timestamp (ISO 8601)")
    readings: GasReadings
    environment: Environment
    ml_prediction: MLPrediction
    location: Optional[StationLocation] = None

    @field_validator("timestamp")
    @classmethod
    def assume_utc(cls, value: datetime) -> datetime:
        # Station clocks write naive UTC timestamps
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @computed_field
    @property
    def air_quality_level(self) -> AirQualityLevel:
        return AirQualityLevel.from_mq135(self.readings.MQ135_ppm)


# ----------------------------
# Citizen reports
# ----------------------------

class ReportType(str, Enum):
    SMOKE = "smoke"
    ODOR = "odor"
    DUST = "dust"
    OTHER = "other"


class ReportStatus(str, Enum):
    PENDING = "pending"
    INVESTIGATING = "investigating"
    RESOLVED = "resolved"
    DISMISSED = "dismissed"


class MessageSender(str, Enum):
    STAKEHOLDER = "stakeholder"
    SYSTEM = "system"


class ReportMessage(BaseModel):
    id: str
    message: str
    timestamp: datetime
    sender: MessageSender


class MessageCreate(BaseModel):
    message: str = Field(..., min_length=1)
    sender: MessageSender = MessageSender.STAKEHOLDER
    timestamp: Optional[datetime] = None


class CitizenReport(BaseModel):
    """A report as the rest of the service sees it (internal field names)."""
    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    location: Optional[str] = Field(None, description="Free-text location description")
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    report_type: Optional[ReportType] = None
    notes: str = ""
    timestamp: Optional[datetime] = None
    status: ReportStatus = ReportStatus.PENDING
    reporter_name: Optional[str] = None
    reporter_contact: Optional[str] = None
    reporter_phone: Optional[str] = None
    photos: list[str] = Field(default_factory=list)
    deployed: bool = False
    deployment_date: Optional[datetime] = None
    deployment_notes: Optional[str] = None
    messages: list[ReportMessage] = Field(default_factory=list)

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None


class NearbyReport(CitizenReport):
    distance_km: float


class ReportCreate(BaseModel):
    """Body of a new submission. Server-owned fields in the payload are ignored."""
    model_config = ConfigDict(extra="ignore")

    location: Optional[str] = None
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    report_type: ReportType = ReportType.OTHER
    notes: Optional[str] = None
    reporter_name: Optional[str] = None
    reporter_contact: Optional[str] = None
    reporter_phone: Optional[str] = None
    photos: list[str] = Field(default_factory=list)


class ReportPatch(BaseModel):
    """Combined patch body: any subset of status, deployment and one new message."""
    model_config = ConfigDict(populate_by_name=True)

    report_id: Optional[str] = Field(None, alias="reportId")
    status: Optional[ReportStatus] = None
    deployed: Optional[bool] = None
    deployment_date: Optional[datetime] = None
    deployment_notes: Optional[str] = None
    add_message: Optional[MessageCreate] = Field(None, alias="addMessage")


class ReportStats(BaseModel):
    total: int = 0
    pending: int = 0
    investigating: int = 0
    resolved: int = 0
    dismissed: int = 0
    deployed: int = 0
