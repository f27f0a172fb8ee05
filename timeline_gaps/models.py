"""Data models for samples, per-user tracking state and timeline events."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import ClassVar, Final

from timeline_gaps.geo import haversine_m, mean_lat_lon


@dataclass(frozen=True, slots=True)
class GPSPoint:
    """A single location sample.

    Attributes:
        timestamp: Timezone-aware sample time. None only for malformed input,
            which every heuristic treats as "cannot decide".
        latitude: Latitude in decimal degrees.
        longitude: Longitude in decimal degrees.
        speed: Speed in meters/second (>= 0).
        accuracy: Horizontal accuracy in meters. Some sources use -1.0.
    """

    timestamp: datetime | None
    latitude: float
    longitude: float
    speed: float = 0.0
    accuracy: float = -1.0

    @property
    def epoch_ms(self) -> int | None:
        """Unix epoch milliseconds, or None if the timestamp is missing."""

        if self.timestamp is None:
            return None
        return int(self.timestamp.timestamp() * 1000)

    def distance_to(self, other: GPSPoint) -> float:
        """Great-circle distance to another point in meters."""

        return haversine_m(self.latitude, self.longitude, other.latitude, other.longitude)


class ProcessorMode(enum.Enum):
    """Per-user tracking mode maintained by the streaming timeline processor."""

    UNKNOWN = "UNKNOWN"
    POTENTIAL_STAY = "POTENTIAL_STAY"
    CONFIRMED_STAY = "CONFIRMED_STAY"
    IN_TRIP = "IN_TRIP"

    @property
    def is_stay(self) -> bool:
        return self in (ProcessorMode.POTENTIAL_STAY, ProcessorMode.CONFIRMED_STAY)


@dataclass(slots=True)
class UserState:
    """Mutable per-user buffer, owned by one processing context at a time.

    ``active_points`` is the pending, not yet finalized segment in arrival order.
    It is empty only while ``current_mode`` is UNKNOWN.
    """

    current_mode: ProcessorMode = ProcessorMode.UNKNOWN
    active_points: list[GPSPoint] = field(default_factory=list)
    last_processed_point: GPSPoint | None = None

    def has_active_points(self) -> bool:
        return bool(self.active_points)

    def add_active_point(self, point: GPSPoint) -> None:
        self.active_points.append(point)

    def copy_active_points(self) -> list[GPSPoint]:
        return list(self.active_points)

    def replace_active_points(self, points: list[GPSPoint] | tuple[GPSPoint, ...]) -> None:
        self.active_points = list(points)

    def reset(self) -> None:
        """Forget the pending segment (used after a confirmed data gap)."""

        self.current_mode = ProcessorMode.UNKNOWN
        self.active_points.clear()

    def calculate_centroid(self) -> GPSPoint | None:
        """Mean lat/lon of the active points as a point, or None when empty.

        The centroid carries the timestamp of the latest active point.
        """

        center = mean_lat_lon((p.latitude, p.longitude) for p in self.active_points)
        if center is None:
            return None
        return GPSPoint(
            timestamp=self.active_points[-1].timestamp,
            latitude=center[0],
            longitude=center[1],
            speed=0.0,
            accuracy=0.0,
        )


@dataclass(frozen=True, slots=True)
class Stay:
    """A finalized period of no significant movement at one place."""

    event_type: ClassVar[str] = "stay"

    start_time: datetime
    duration: timedelta
    latitude: float
    longitude: float
    points: int = 0

    @property
    def end_time(self) -> datetime:
        return self.start_time + self.duration


@dataclass(frozen=True, slots=True)
class Trip:
    """A finalized period of movement between places."""

    event_type: ClassVar[str] = "trip"

    start_time: datetime
    duration: timedelta
    distance_meters: float
    points: int = 0

    @property
    def end_time(self) -> datetime:
        return self.start_time + self.duration


@dataclass(frozen=True, slots=True)
class DataGap:
    """A period without usable samples, long enough to break continuity."""

    event_type: ClassVar[str] = "data_gap"

    start_time: datetime
    end_time: datetime

    @property
    def duration(self) -> timedelta:
        return max(timedelta(0), self.end_time - self.start_time)


TimelineEvent = Stay | Trip | DataGap

DEFAULT_TZ: Final[str] = "UTC"


def event_to_dict(event: TimelineEvent) -> dict[str, object]:
    """Flat JSON-friendly representation of an event."""

    out: dict[str, object] = {
        "type": event.event_type,
        "start_time": event.start_time.isoformat(),
        "end_time": event.end_time.isoformat(),
        "duration_seconds": event.duration.total_seconds(),
    }
    if isinstance(event, Stay):
        out.update(latitude=event.latitude, longitude=event.longitude, points=event.points)
    elif isinstance(event, Trip):
        out.update(distance_meters=round(event.distance_meters, 1), points=event.points)
    return out
