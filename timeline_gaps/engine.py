"""Data gap detection engine.

Runs on every new sample: asks the gap oracle whether a gap separates it from
the last processed sample and, if so, asks gap stay inference whether the gap
can be bridged. The resulting plan is applied to the user's state here.

Collaborator calls (oracle, finalizer) always happen before the state is
touched, so an exception from a collaborator leaves the state as it was.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable

from timeline_gaps.config import TimelineConfig
from timeline_gaps.finalize import SegmentFinalizer, SimpleSegmentFinalizer
from timeline_gaps.gaps import GapOracle, ThresholdGapOracle
from timeline_gaps.inference import GapStayInferencePlan, PlanKind, try_infer
from timeline_gaps.models import DataGap, GPSPoint, ProcessorMode, TimelineEvent, UserState

logger = logging.getLogger(__name__)

InferenceFn = Callable[[GPSPoint, UserState, TimelineConfig, timedelta], GapStayInferencePlan]


class DataGapDetectionEngine:
    """Applies gap stay inference plans to per-user state."""

    def __init__(
        self,
        gap_oracle: GapOracle | None = None,
        finalizer: SegmentFinalizer | None = None,
        infer: InferenceFn = try_infer,
    ) -> None:
        self._gap_oracle = gap_oracle if gap_oracle is not None else ThresholdGapOracle()
        self._finalizer = finalizer if finalizer is not None else SimpleSegmentFinalizer()
        self._infer = infer

    def check_for_data_gap(
        self,
        current_point: GPSPoint,
        user_state: UserState,
        config: TimelineConfig,
    ) -> list[TimelineEvent]:
        """Handle a possible gap before ``current_point``.

        Does not set ``last_processed_point``; the caller does that after
        persisting the returned events (see ``advance``).

        Args:
            current_point: Newly arrived sample.
            user_state: The user's state, mutated in place when a plan applies.
            config: Timeline options.

        Returns:
            Zero, one or two events in the order they should be persisted.
        """

        last_point = user_state.last_processed_point
        if last_point is None:
            return []

        if not self._gap_oracle.should_create_data_gap(last_point, current_point, config):
            return []

        if last_point.timestamp is None or current_point.timestamp is None:
            logger.debug("Gap with missing timestamps, skipping gap stay inference")
            plan = GapStayInferencePlan.none()
        else:
            gap_duration = current_point.timestamp - last_point.timestamp
            plan = self._infer(current_point, user_state, config, gap_duration)

        return self._apply_plan(plan, last_point, current_point, user_state, config)

    def _apply_plan(
        self,
        plan: GapStayInferencePlan,
        last_point: GPSPoint,
        current_point: GPSPoint,
        user_state: UserState,
        config: TimelineConfig,
    ) -> list[TimelineEvent]:
        if plan.kind is PlanKind.NONE:
            return self._create_data_gap(last_point, current_point, user_state, config)

        if plan.kind is PlanKind.CONTINUE_EXISTING_STAY:
            return []

        if plan.kind is PlanKind.REPLACE_WITH_CONFIRMED_STAY:
            user_state.replace_active_points(plan.stay_points)
            user_state.current_mode = ProcessorMode.CONFIRMED_STAY
            return []

        if plan.kind is PlanKind.FINALIZE_TRIP_AND_REPLACE_WITH_CONFIRMED_STAY:
            events: list[TimelineEvent] = []
            if plan.has_trip_to_finalize:
                trip = self._finalizer.finalize_trip(list(plan.trip_points), config)
                if trip is not None:
                    events.append(trip)
                else:
                    logger.debug("Trip prefix of %s points produced no event", len(plan.trip_points))
            user_state.replace_active_points(plan.stay_points)
            user_state.current_mode = ProcessorMode.CONFIRMED_STAY
            return events

        raise ValueError(f"Unhandled gap stay inference plan: {plan.kind!r}")

    def _create_data_gap(
        self,
        last_point: GPSPoint,
        current_point: GPSPoint,
        user_state: UserState,
        config: TimelineConfig,
    ) -> list[TimelineEvent]:
        events: list[TimelineEvent] = []
        mode = user_state.current_mode
        if user_state.has_active_points():
            finalized: TimelineEvent | None = None
            if mode.is_stay:
                finalized = self._finalizer.finalize_stay_without_location(user_state.copy_active_points(), config)
            elif mode is ProcessorMode.IN_TRIP:
                finalized = self._finalizer.finalize_trip_for_gap(
                    user_state.copy_active_points(), current_point, config
                )
            if finalized is not None:
                events.append(finalized)

        gap_start = _gap_start_time(last_point, user_state)
        if gap_start is not None and current_point.timestamp is not None:
            events.append(DataGap(start_time=gap_start, end_time=current_point.timestamp))
            logger.info(
                "Data gap created: %s -> %s (mode was %s)",
                gap_start.isoformat(),
                current_point.timestamp.isoformat(),
                mode.value,
            )
        else:
            logger.warning("Data gap without usable timestamps, no DataGap recorded (mode was %s)", mode.value)

        user_state.reset()
        return events


def _gap_start_time(last_point: GPSPoint, user_state: UserState) -> datetime | None:
    # Falls back to the newest timed pending point when the last sample has no time.
    if last_point.timestamp is not None:
        return last_point.timestamp
    for p in reversed(user_state.active_points):
        if p.timestamp is not None:
            return p.timestamp
    return None


def advance(user_state: UserState, current_point: GPSPoint) -> None:
    """Record ``current_point`` as processed. Call after every ``check_for_data_gap``."""

    user_state.last_processed_point = current_point
