"""Gap stay inference: decide whether a detected data gap can be bridged.

``try_infer`` never finalizes events and never mutates the caller's state. It
returns a GapStayInferencePlan which the detection engine applies.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Final, Sequence

from timeline_gaps.config import TimelineConfig
from timeline_gaps.heuristics import find_gap_tail_arrival_cluster_match, get_stay_radius_meters
from timeline_gaps.models import GPSPoint, ProcessorMode, UserState

logger = logging.getLogger(__name__)

MAX_IN_TRIP_LOCAL_EXCURSION_DURATION: Final[timedelta] = timedelta(minutes=30)
IN_TRIP_LOCAL_EXCURSION_RADIUS_MULTIPLIER: Final[float] = 2.0


class PlanKind(enum.Enum):
    """The four shapes a gap stay inference decision can take."""

    # Emit a DataGap and reset state.
    NONE = "none"
    # Suppress the gap, leave state untouched.
    CONTINUE_EXISTING_STAY = "continue_existing_stay"
    # Suppress the gap, active points := stay_points, mode := CONFIRMED_STAY.
    REPLACE_WITH_CONFIRMED_STAY = "replace_with_confirmed_stay"
    # Finalize trip_points as a Trip, then as REPLACE_WITH_CONFIRMED_STAY.
    FINALIZE_TRIP_AND_REPLACE_WITH_CONFIRMED_STAY = "finalize_trip_and_replace_with_confirmed_stay"


@dataclass(frozen=True, slots=True)
class GapStayInferencePlan:
    """Immutable decision record consumed by the detection engine.

    Build instances through the classmethods; the point tuples are only
    meaningful for the kinds that carry them.
    """

    kind: PlanKind
    trip_points: tuple[GPSPoint, ...] = ()
    stay_points: tuple[GPSPoint, ...] = ()

    @classmethod
    def none(cls) -> GapStayInferencePlan:
        return _NONE

    @classmethod
    def continue_existing_stay(cls) -> GapStayInferencePlan:
        return _CONTINUE_EXISTING_STAY

    @classmethod
    def replace_with_confirmed_stay(cls, stay_points: Sequence[GPSPoint]) -> GapStayInferencePlan:
        return cls(kind=PlanKind.REPLACE_WITH_CONFIRMED_STAY, stay_points=tuple(stay_points))

    @classmethod
    def finalize_trip_and_replace_with_confirmed_stay(
        cls,
        trip_points: Sequence[GPSPoint],
        stay_points: Sequence[GPSPoint],
    ) -> GapStayInferencePlan:
        return cls(
            kind=PlanKind.FINALIZE_TRIP_AND_REPLACE_WITH_CONFIRMED_STAY,
            trip_points=tuple(trip_points),
            stay_points=tuple(stay_points),
        )

    @property
    def inferred(self) -> bool:
        """True for every kind that suppresses the DataGap."""

        return self.kind is not PlanKind.NONE

    @property
    def has_trip_to_finalize(self) -> bool:
        return bool(self.trip_points)

    @property
    def has_replacement_stay_points(self) -> bool:
        return bool(self.stay_points)


_NONE: Final[GapStayInferencePlan] = GapStayInferencePlan(kind=PlanKind.NONE)
_CONTINUE_EXISTING_STAY: Final[GapStayInferencePlan] = GapStayInferencePlan(kind=PlanKind.CONTINUE_EXISTING_STAY)


def _whole_hours(duration: timedelta) -> int:
    # Truncates toward zero like an integer "hours" field.
    return int(duration.total_seconds() / 3600)


def try_infer(
    current_point: GPSPoint,
    user_state: UserState,
    config: TimelineConfig,
    gap_duration: timedelta,
) -> GapStayInferencePlan:
    """Decide whether a gap before ``current_point`` can be treated as stay continuity.

    Decision order, first applicable "none" wins:
      1. feature disabled;
      2. no active points;
      3. gap longer than ``gapStayInferenceMaxGapHours`` (when > 0);
      4. UNKNOWN mode;
      5. IN_TRIP: short local excursion, else trip tail arrival;
      6. stay modes: centroid within the stay radius of ``current_point``.

    Args:
        current_point: First sample after the gap.
        user_state: State before the gap. Not modified.
        config: Timeline options.
        gap_duration: Time between the last processed sample and ``current_point``.

    Returns:
        The plan to apply.
    """

    enabled = config.gap_stay_inference_enabled
    if not enabled:
        logger.debug("Gap stay inference is disabled (enabled=%s)", enabled)
        return GapStayInferencePlan.none()

    if not user_state.has_active_points():
        logger.debug("No active points for gap stay inference comparison")
        return GapStayInferencePlan.none()

    max_gap_hours = config.gap_stay_inference_max_gap_hours
    if max_gap_hours is not None and max_gap_hours > 0:
        gap_hours = _whole_hours(gap_duration)
        if gap_hours > max_gap_hours:
            logger.debug("Gap duration %sh exceeds max allowed %sh for stay inference", gap_hours, max_gap_hours)
            return GapStayInferencePlan.none()

    mode = user_state.current_mode
    if mode is ProcessorMode.UNKNOWN:
        logger.debug("Gap stay inference not applicable for mode: %s", mode.value)
        return GapStayInferencePlan.none()

    stay_radius = get_stay_radius_meters(config)

    if mode is ProcessorMode.IN_TRIP:
        local_plan = _try_infer_for_short_local_trip(current_point, user_state, stay_radius, gap_duration)
        if local_plan.inferred:
            return local_plan
        return _try_infer_from_trip_tail_arrival(current_point, user_state, config, gap_duration)

    return _try_infer_for_stay_modes(current_point, user_state, stay_radius, gap_duration, mode)


def _try_infer_for_stay_modes(
    current_point: GPSPoint,
    user_state: UserState,
    stay_radius: int,
    gap_duration: timedelta,
    mode: ProcessorMode,
) -> GapStayInferencePlan:
    centroid = user_state.calculate_centroid()
    if centroid is None:
        logger.debug("Could not calculate centroid for gap stay inference")
        return GapStayInferencePlan.none()

    distance = centroid.distance_to(current_point)
    if distance > stay_radius:
        logger.debug(
            "Distance %.1fm from centroid exceeds stay radius %sm - creating gap instead", distance, stay_radius
        )
        return GapStayInferencePlan.none()

    logger.info(
        "Gap stay inference conditions met: mode=%s, gap=%sh, distance=%.1fm (radius=%sm)",
        mode.value,
        _whole_hours(gap_duration),
        distance,
        stay_radius,
    )
    return GapStayInferencePlan.continue_existing_stay()


def _try_infer_for_short_local_trip(
    current_point: GPSPoint,
    user_state: UserState,
    stay_radius: int,
    gap_duration: timedelta,
) -> GapStayInferencePlan:
    """Collapse a short, local, unfinished trip back into a stay."""

    trip_points = user_state.copy_active_points()
    if len(trip_points) < 2:
        logger.debug("Gap stay inference not applicable for IN_TRIP with fewer than 2 active points")
        return GapStayInferencePlan.none()

    first_point = trip_points[0]
    last_point = trip_points[-1]
    if first_point.timestamp is None or last_point.timestamp is None:
        logger.debug("Gap stay inference not applicable for IN_TRIP with missing timestamps")
        return GapStayInferencePlan.none()

    pending_duration = last_point.timestamp - first_point.timestamp
    if pending_duration > MAX_IN_TRIP_LOCAL_EXCURSION_DURATION:
        logger.debug(
            "Pending IN_TRIP duration %s exceeds local excursion limit %s for gap stay inference",
            pending_duration,
            MAX_IN_TRIP_LOCAL_EXCURSION_DURATION,
        )
        return GapStayInferencePlan.none()

    resume_distance = last_point.distance_to(current_point)
    if resume_distance > stay_radius:
        logger.debug(
            "IN_TRIP resume distance %.1fm exceeds stay radius %sm - creating gap instead",
            resume_distance,
            stay_radius,
        )
        return GapStayInferencePlan.none()

    spread = max(p.distance_to(last_point) for p in trip_points)
    excursion_limit = stay_radius * IN_TRIP_LOCAL_EXCURSION_RADIUS_MULTIPLIER
    if spread > excursion_limit:
        logger.debug(
            "Pending IN_TRIP spread %.1fm exceeds local excursion limit %.1fm (radius=%sm x %s)",
            spread,
            excursion_limit,
            stay_radius,
            IN_TRIP_LOCAL_EXCURSION_RADIUS_MULTIPLIER,
        )
        return GapStayInferencePlan.none()

    local_points = [p for p in trip_points if p.distance_to(last_point) <= stay_radius]
    if not local_points:
        local_points = [last_point]

    logger.info(
        "Gap stay inference conditions met for short local IN_TRIP: gap=%sh, pendingTrip=%s, "
        "resumeDistance=%.1fm, spread=%.1fm (radius=%sm)",
        _whole_hours(gap_duration),
        pending_duration,
        resume_distance,
        spread,
        stay_radius,
    )
    return GapStayInferencePlan.replace_with_confirmed_stay(local_points)


def _try_infer_from_trip_tail_arrival(
    current_point: GPSPoint,
    user_state: UserState,
    config: TimelineConfig,
    gap_duration: timedelta,
) -> GapStayInferencePlan:
    """Split a trip whose tail already looks like an arrival."""

    trip_points = user_state.copy_active_points()
    match = find_gap_tail_arrival_cluster_match(trip_points, current_point, config)
    if not match.matched:
        return GapStayInferencePlan.none()

    prefix = trip_points[: match.start_index]
    tail = trip_points[match.start_index :]

    logger.info(
        "Gap stay inference conditions met for IN_TRIP tail arrival: gap=%sh, tailPoints=%s, tailDuration=%s, "
        "resumeDistance=%.1fm (radius=%sm), finalizedTripPoints=%s",
        _whole_hours(gap_duration),
        len(tail),
        match.tail_duration,
        match.resume_distance_meters,
        match.stay_radius_meters,
        len(prefix),
    )
    return GapStayInferencePlan.finalize_trip_and_replace_with_confirmed_stay(prefix, tail)
