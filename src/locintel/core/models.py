from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from uuid import uuid4


def new_id() -> str:
    return str(uuid4())


def utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class RawPosition:
    """A single fix from the device positioning sensor."""

    lat: float
    lon: float
    captured_at: datetime
    accuracy: float | None = None
    heading: float | None = None
    speed: float | None = None

    def __post_init__(self):
        if not -90.0 <= self.lat <= 90.0:
            raise ValueError(f"latitude out of range: {self.lat}")
        if not -180.0 <= self.lon <= 180.0:
            raise ValueError(f"longitude out of range: {self.lon}")
        if self.accuracy is not None and self.accuracy < 0:
            raise ValueError(f"accuracy must be >= 0: {self.accuracy}")


@dataclass
class LiveLocation:
    user_id: str
    lat: float
    lon: float
    updated_at: datetime
    accuracy: float | None = None
    heading: float | None = None
    speed: float | None = None


@dataclass
class HistoryPoint:
    user_id: str
    lat: float
    lon: float
    recorded_at: datetime
    accuracy: float | None = None
    address: str | None = None
    id: str = field(default_factory=new_id)


@dataclass
class LocationAlert:
    """Circular geofence around a place, watched for one friend."""

    user_id: str
    friend_id: str
    name: str
    lat: float
    lon: float
    radius_m: float
    is_active: bool = True
    last_triggered_at: datetime | None = None
    created_at: datetime = field(default_factory=utcnow)
    id: str = field(default_factory=new_id)


@dataclass(frozen=True)
class TriggerEvent:
    alert_id: str
    alert_name: str
    friend_id: str
    owner_id: str
    distance_m: float
    triggered_at: datetime

    def payload(self) -> dict:
        return {
            "alert_id": self.alert_id,
            "alert_name": self.alert_name,
            "friend_id": self.friend_id,
            "owner_id": self.owner_id,
            "distance_m": round(self.distance_m, 1),
            "triggered_at": self.triggered_at.isoformat(),
        }


@dataclass(frozen=True)
class Place:
    """A cluster of history points judged to be one visit."""

    id: str
    lat: float
    lon: float
    address: str
    arrived_at: datetime
    left_at: datetime
    points: int
    ongoing: bool = False

    @property
    def duration_minutes(self) -> int:
        return round((self.left_at - self.arrived_at).total_seconds() / 60)

    @property
    def duration(self) -> str:
        if self.ongoing:
            return "Now"
        return format_duration(self.duration_minutes)


def format_duration(minutes: int) -> str:
    if minutes >= 60:
        h, m = divmod(minutes, 60)
        return f"{h}h {m}m"
    return f"{minutes}m"


@dataclass
class Message:
    sender_id: str
    receiver_id: str
    content: str
    lat: float | None = None
    lon: float | None = None
    address: str | None = None
    created_at: datetime = field(default_factory=utcnow)
    id: str = field(default_factory=new_id)
