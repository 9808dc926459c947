"""
BinWatch — Record Schemas
Fixed-schema records for the bins, readings, alerts, summaries and users
collections. Documents are stored with camelCase keys; Python code uses the
snake_case attributes.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from config.settings import DEFAULT_CAPACITY_KG, DEFAULT_THRESHOLD_PCT

# Collection names
BINS      = "bins"
READINGS  = "readings"
ALERTS    = "alerts"
SUMMARIES = "summaries"
USERS     = "users"


def utcnow():
    return datetime.now(timezone.utc)


def to_iso(dt):
    """Aware datetime -> ISO string as stored in documents."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.isoformat()


class Record(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    id: Optional[str] = None

    def to_document(self) -> dict:
        """JSON-ready document body (the id lives in the store key)."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True, exclude={"id"})

    @classmethod
    def from_document(cls, doc: dict):
        return cls.model_validate(doc)


class AlertKind(str, Enum):
    WARNING = "warning"
    FULL = "full"


class Bin(Record):
    name: Optional[str] = None
    location: str = "Unknown"
    capacity_kg: float = Field(default=DEFAULT_CAPACITY_KG, gt=0)
    # Kept for product clarification; alert levels come from ALERT_LEVELS.
    threshold_pct: float = Field(default=DEFAULT_THRESHOLD_PCT, gt=0, le=100)
    active: bool = True


class Reading(Record):
    bin_id: str
    weight_kg: float = Field(ge=0)
    ts: datetime = Field(default_factory=utcnow)
    percent_full: Optional[int] = Field(default=None, ge=0, le=100)
    created_at: datetime = Field(default_factory=utcnow)
    simulated: bool = False
    processed_at: Optional[datetime] = None
    skipped_reason: Optional[str] = None


class Alert(Record):
    bin_id: str
    kind: AlertKind
    message: str
    percent_full: int = Field(ge=0, le=100)
    ts: datetime = Field(default_factory=utcnow)
    ack: bool = False
    resolved_at: Optional[datetime] = None
    acked_by: Optional[str] = None
    superseded_by: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class WeeklySummary(Record):
    bin_id: str
    bin_location: str = "Unknown"
    week_start: datetime
    week_end: datetime
    total_weight: float = 0.0
    avg_weight: float = 0.0
    max_weight: float = 0.0
    reading_count: int = 0
    collection_count: int = 0
    alert_count: int = 0
    created_at: datetime = Field(default_factory=utcnow)


class User(Record):
    name: str = ""
    role: str = "operator"
    token: str
