"""Turning pending point segments into Stay / Trip events."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Final, Protocol, Sequence

from timeline_gaps.config import TimelineConfig
from timeline_gaps.errors import OutOfOrderPointError
from timeline_gaps.geo import mean_lat_lon, path_length_m
from timeline_gaps.models import GPSPoint, Stay, Trip

logger = logging.getLogger(__name__)

DEFAULT_STAYPOINT_MIN_DURATION: Final[timedelta] = timedelta(minutes=7)
DEFAULT_TRIP_MIN_DISTANCE_METERS: Final[float] = 50.0
DEFAULT_TRIP_MIN_DURATION: Final[timedelta] = timedelta(minutes=1)


class SegmentFinalizer(Protocol):
    """Builds finalized events from pending segments.

    Every method may return None for a degenerate segment; that is a valid
    outcome, not an error.
    """

    def finalize_stay_without_location(
        self, active_points: Sequence[GPSPoint], config: TimelineConfig
    ) -> Stay | None: ...

    def finalize_trip_for_gap(
        self, active_points: Sequence[GPSPoint], current_point: GPSPoint, config: TimelineConfig
    ) -> Trip | None: ...

    def finalize_trip(self, trip_points: Sequence[GPSPoint], config: TimelineConfig) -> Trip | None: ...


def get_staypoint_min_duration(config: TimelineConfig) -> timedelta:
    minutes = config.staypoint_min_duration_minutes
    return timedelta(minutes=minutes) if minutes is not None else DEFAULT_STAYPOINT_MIN_DURATION


def get_trip_min_distance_meters(config: TimelineConfig) -> float:
    value = config.trip_min_distance_meters
    return value if value is not None else DEFAULT_TRIP_MIN_DISTANCE_METERS


def get_trip_min_duration(config: TimelineConfig) -> timedelta:
    minutes = config.trip_min_duration_minutes
    return timedelta(minutes=minutes) if minutes is not None else DEFAULT_TRIP_MIN_DURATION


def _timed(points: Sequence[GPSPoint]) -> list[GPSPoint]:
    return [p for p in points if p.timestamp is not None]


class SimpleSegmentFinalizer:
    """Finalizer using centroid location and summed haversine legs.

    "Without location" means no place lookup is done: the stay is reported at
    the raw centroid of its points.
    """

    def finalize_stay_without_location(
        self, active_points: Sequence[GPSPoint], config: TimelineConfig
    ) -> Stay | None:
        points = _timed(active_points)
        if not points:
            return None
        duration = points[-1].timestamp - points[0].timestamp
        if duration < get_staypoint_min_duration(config):
            logger.debug("Stay of %s is shorter than the minimum, not finalized", duration)
            return None
        lat, lon = mean_lat_lon((p.latitude, p.longitude) for p in points)
        return Stay(
            start_time=points[0].timestamp,
            duration=duration,
            latitude=lat,
            longitude=lon,
            points=len(points),
        )

    def finalize_trip(self, trip_points: Sequence[GPSPoint], config: TimelineConfig) -> Trip | None:
        points = _timed(trip_points)
        if len(points) < 2:
            return None
        duration = points[-1].timestamp - points[0].timestamp
        distance = path_length_m((p.latitude, p.longitude) for p in points)
        if duration < get_trip_min_duration(config) or distance < get_trip_min_distance_meters(config):
            logger.debug("Trip of %s / %.1fm is too small, not finalized", duration, distance)
            return None
        return Trip(
            start_time=points[0].timestamp,
            duration=duration,
            distance_meters=distance,
            points=len(points),
        )

    def finalize_trip_for_gap(
        self, active_points: Sequence[GPSPoint], current_point: GPSPoint, config: TimelineConfig
    ) -> Trip | None:
        """Finalize a trip interrupted by a gap; it ends at its last pre-gap point.

        Raises:
            OutOfOrderPointError: If ``current_point`` is older than the trip's last point.
        """

        if active_points and current_point.timestamp is not None:
            last_ts = active_points[-1].timestamp
            if last_ts is not None and current_point.timestamp < last_ts:
                raise OutOfOrderPointError(
                    f"样本乱序：{current_point.timestamp.isoformat()} 早于行程最后一点 {last_ts.isoformat()}"
                )
        return self.finalize_trip(active_points, config)
