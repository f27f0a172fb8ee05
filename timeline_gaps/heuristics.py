"""Trip stop / arrival heuristics shared by trip processing and gap stay inference.

All functions are pure: they never mutate the point lists they are given and
their results depend only on the arguments. Threshold defaults live here so the
live stop detector and the post-gap arrival check cannot drift apart.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Final, Sequence

from timeline_gaps.config import TimelineConfig
from timeline_gaps.models import GPSPoint

DEFAULT_STAY_RADIUS_METERS: Final[int] = 50
DEFAULT_STOP_SPEED_THRESHOLD: Final[float] = 2.0
DEFAULT_ARRIVAL_DETECTION_DURATION: Final[timedelta] = timedelta(seconds=90)
DEFAULT_SUSTAINED_STOP_DURATION: Final[timedelta] = timedelta(seconds=60)
DEFAULT_TRIP_ARRIVAL_MIN_POINTS: Final[int] = 3

# Bounds for the relaxed post-gap tail duration.
MIN_GAP_TAIL_STOP_DURATION: Final[timedelta] = timedelta(seconds=30)
MAX_GAP_TAIL_STOP_DURATION: Final[timedelta] = timedelta(seconds=60)


@dataclass(frozen=True, slots=True)
class TripStopDetection:
    """Result of the recent-window stop check."""

    stop_detected: bool
    stopped_cluster_start_index: int = -1


NO_STOP: Final[TripStopDetection] = TripStopDetection(stop_detected=False)


@dataclass(frozen=True, slots=True)
class TailArrivalClusterMatch:
    """Result of matching a trip tail plus the first post-gap sample against an arrival."""

    matched: bool
    start_index: int = -1
    stay_radius_meters: int = 0
    resume_distance_meters: float = 0.0
    tail_duration: timedelta = timedelta(0)


NO_TAIL_MATCH: Final[TailArrivalClusterMatch] = TailArrivalClusterMatch(matched=False)


def get_stay_radius_meters(config: TimelineConfig) -> int:
    value = config.staypoint_radius_meters
    return value if value is not None else DEFAULT_STAY_RADIUS_METERS


def get_stop_speed_threshold(config: TimelineConfig) -> float:
    value = config.staypoint_velocity_threshold
    return value if value is not None else DEFAULT_STOP_SPEED_THRESHOLD


def get_arrival_detection_duration(config: TimelineConfig) -> timedelta:
    seconds = config.trip_arrival_detection_min_duration_seconds
    return timedelta(seconds=seconds) if seconds is not None else DEFAULT_ARRIVAL_DETECTION_DURATION


def get_sustained_stop_duration(config: TimelineConfig) -> timedelta:
    seconds = config.trip_sustained_stop_min_duration_seconds
    return timedelta(seconds=seconds) if seconds is not None else DEFAULT_SUSTAINED_STOP_DURATION


def get_trip_arrival_min_points(config: TimelineConfig) -> int:
    value = config.trip_arrival_min_points
    return value if value is not None else DEFAULT_TRIP_ARRIVAL_MIN_POINTS


def gap_tail_stop_min_duration(arrival_detection_duration: timedelta) -> timedelta:
    """Relaxed tail duration required after a gap.

    Half of the live arrival detection duration, clamped to [30s, 60s].
    """

    relaxed = arrival_detection_duration / 2
    if relaxed < MIN_GAP_TAIL_STOP_DURATION:
        return MIN_GAP_TAIL_STOP_DURATION
    if relaxed > MAX_GAP_TAIL_STOP_DURATION:
        return MAX_GAP_TAIL_STOP_DURATION
    return relaxed


def get_gap_tail_stop_min_duration(config: TimelineConfig) -> timedelta:
    return gap_tail_stop_min_duration(get_arrival_detection_duration(config))


def _span(first: GPSPoint, last: GPSPoint) -> timedelta | None:
    if first.timestamp is None or last.timestamp is None:
        return None
    return last.timestamp - first.timestamp


def detect_trip_stop_from_recent_window(
    active_points: Sequence[GPSPoint] | None,
    config: TimelineConfig,
) -> TripStopDetection:
    """Check whether the last few trip points show that motion has stopped.

    The recent window is the last ``tripArrivalMinPoints`` points. Either test
    is sufficient:

      (a) every window point is within the stay radius of the last point and no
          faster than the stop threshold, over at least the arrival detection
          duration;
      (b) every window point is strictly slower than the threshold (no spatial
          check), over at least the sustained stop duration.

    Args:
        active_points: Pending trip points in arrival order.
        config: Timeline options.

    Returns:
        TripStopDetection with the index where the window starts, or NO_STOP.
    """

    min_points = get_trip_arrival_min_points(config)
    if min_points < 1 or not active_points or len(active_points) < min_points:
        return NO_STOP

    stop_speed_threshold = get_stop_speed_threshold(config)
    stay_radius = get_stay_radius_meters(config)

    window_size = min(min_points, len(active_points))
    start_index = len(active_points) - window_size
    window = active_points[start_index:]
    last_point = window[-1]
    span = _span(window[0], last_point)
    if span is None:
        return NO_STOP

    clustered_and_slow = all(
        p.distance_to(last_point) <= stay_radius and p.speed <= stop_speed_threshold for p in window
    )
    if clustered_and_slow and span >= get_arrival_detection_duration(config):
        return TripStopDetection(stop_detected=True, stopped_cluster_start_index=start_index)

    if len(window) >= 2:
        all_slow = all(p.speed < stop_speed_threshold for p in window)
        if all_slow and span >= get_sustained_stop_duration(config):
            return TripStopDetection(stop_detected=True, stopped_cluster_start_index=start_index)

    return NO_STOP


def find_gap_tail_arrival_cluster_match(
    active_trip_points: Sequence[GPSPoint] | None,
    post_gap_point: GPSPoint,
    config: TimelineConfig,
) -> TailArrivalClusterMatch:
    """Test whether an unfinished trip had already arrived before the signal was lost.

    The tail cluster is grown backwards from the last trip point. Each candidate
    is compared with the last trip point itself, not with its neighbour, and the
    walk stops at the first candidate that is too far or too fast.

    Args:
        active_trip_points: Pending trip points in arrival order.
        post_gap_point: First sample received after the gap.
        config: Timeline options.

    Returns:
        TailArrivalClusterMatch; ``start_index`` splits trip prefix from stay tail.
    """

    if not active_trip_points:
        return NO_TAIL_MATCH

    stay_radius = get_stay_radius_meters(config)
    stop_speed_threshold = get_stop_speed_threshold(config)
    last_trip_point = active_trip_points[-1]

    if last_trip_point.speed > stop_speed_threshold:
        return NO_TAIL_MATCH
    if post_gap_point.speed > stop_speed_threshold:
        return NO_TAIL_MATCH

    resume_distance = last_trip_point.distance_to(post_gap_point)
    if resume_distance > stay_radius:
        return NO_TAIL_MATCH

    start_index = len(active_trip_points) - 1
    while start_index > 0:
        candidate = active_trip_points[start_index - 1]
        if candidate.distance_to(last_trip_point) > stay_radius or candidate.speed > stop_speed_threshold:
            break
        start_index -= 1

    if len(active_trip_points) - start_index < get_trip_arrival_min_points(config):
        return NO_TAIL_MATCH

    tail_duration = _span(active_trip_points[start_index], last_trip_point)
    if tail_duration is None:
        return NO_TAIL_MATCH
    if tail_duration < get_gap_tail_stop_min_duration(config):
        return NO_TAIL_MATCH

    return TailArrivalClusterMatch(
        matched=True,
        start_index=start_index,
        stay_radius_meters=stay_radius,
        resume_distance_meters=resume_distance,
        tail_duration=tail_duration,
    )
