from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta

import logging

import pytest

from timeline_gaps.config import TimelineConfig
from timeline_gaps.engine import DataGapDetectionEngine, advance
from timeline_gaps.errors import OutOfOrderPointError
from timeline_gaps.inference import GapStayInferencePlan
from timeline_gaps.models import DataGap, GPSPoint, ProcessorMode, Stay, Trip, UserState


def point(iso_ts: str | None, lat: float, lon: float, speed: float = 0.0) -> GPSPoint:
    ts = datetime.fromisoformat(iso_ts.replace("Z", "+00:00")) if iso_ts else None
    return GPSPoint(timestamp=ts, latitude=lat, longitude=lon, speed=speed, accuracy=10.0)


@dataclass
class StubOracle:
    gap: bool = True
    calls: int = 0

    def should_create_data_gap(self, last_point, current_point, config) -> bool:
        self.calls += 1
        return self.gap


@dataclass
class RecordingFinalizer:
    stay: Stay | None = None
    trip: Trip | None = None
    gap_trip: Trip | None = None
    error: Exception | None = None
    calls: list[tuple[str, list[GPSPoint]]] = field(default_factory=list)

    def finalize_stay_without_location(self, active_points, config):
        self.calls.append(("stay", list(active_points)))
        if self.error is not None:
            raise self.error
        return self.stay

    def finalize_trip_for_gap(self, active_points, current_point, config):
        self.calls.append(("trip_for_gap", list(active_points)))
        if self.error is not None:
            raise self.error
        return self.gap_trip

    def finalize_trip(self, trip_points, config):
        self.calls.append(("trip", list(trip_points)))
        return self.trip


def fixed_plan(plan: GapStayInferencePlan):
    def infer(current_point, user_state, config, gap_duration):
        return plan

    return infer


def user_state(mode: ProcessorMode, *points: GPSPoint) -> UserState:
    state = UserState(current_mode=mode)
    for p in points:
        state.add_active_point(p)
    if points:
        state.last_processed_point = points[-1]
    return state


ENABLED = TimelineConfig(gap_stay_inference_enabled=True, gap_stay_inference_max_gap_hours=24)

HOME_EVENING = (
    point("2024-01-01T20:00:00Z", 40.7128, -74.0060, 0.1),
    point("2024-01-01T20:10:00Z", 40.71282, -74.00602, 0.0),
)

STAY = Stay(
    start_time=HOME_EVENING[0].timestamp,
    duration=timedelta(minutes=10),
    latitude=40.7128,
    longitude=-74.0060,
    points=2,
)


def test_no_events_without_last_processed_point() -> None:
    oracle = StubOracle()
    engine = DataGapDetectionEngine(gap_oracle=oracle, finalizer=RecordingFinalizer())
    state = UserState()

    events = engine.check_for_data_gap(point("2024-01-02T08:00:00Z", 40.7, -74.0), state, ENABLED)

    assert events == []
    assert oracle.calls == 0


def test_no_events_when_oracle_sees_no_gap() -> None:
    finalizer = RecordingFinalizer()
    engine = DataGapDetectionEngine(gap_oracle=StubOracle(gap=False), finalizer=finalizer)
    state = user_state(ProcessorMode.CONFIRMED_STAY, *HOME_EVENING)

    events = engine.check_for_data_gap(point("2024-01-01T20:11:00Z", 40.7128, -74.0060), state, ENABLED)

    assert events == []
    assert finalizer.calls == []
    assert state.active_points == list(HOME_EVENING)


def test_continue_existing_stay_suppresses_gap_and_keeps_state() -> None:
    finalizer = RecordingFinalizer(stay=STAY)
    engine = DataGapDetectionEngine(gap_oracle=StubOracle(), finalizer=finalizer)
    state = user_state(ProcessorMode.CONFIRMED_STAY, *HOME_EVENING)

    events = engine.check_for_data_gap(point("2024-01-02T08:00:00Z", 40.71283, -74.00601), state, ENABLED)

    assert events == []
    assert finalizer.calls == []
    assert state.current_mode is ProcessorMode.CONFIRMED_STAY
    assert state.active_points == list(HOME_EVENING)
    assert state.last_processed_point == HOME_EVENING[-1]


def test_stay_too_far_is_finalized_before_the_gap() -> None:
    finalizer = RecordingFinalizer(stay=STAY)
    engine = DataGapDetectionEngine(gap_oracle=StubOracle(), finalizer=finalizer)
    state = user_state(ProcessorMode.CONFIRMED_STAY, *HOME_EVENING)
    current = point("2024-01-02T08:00:00Z", 40.7228, -74.0060)

    events = engine.check_for_data_gap(current, state, ENABLED)

    assert events == [STAY, DataGap(start_time=HOME_EVENING[-1].timestamp, end_time=current.timestamp)]
    assert finalizer.calls == [("stay", list(HOME_EVENING))]
    assert state.current_mode is ProcessorMode.UNKNOWN
    assert state.active_points == []
    assert state.last_processed_point == HOME_EVENING[-1]


def test_disabled_inference_creates_gap_even_at_same_location() -> None:
    finalizer = RecordingFinalizer()
    engine = DataGapDetectionEngine(gap_oracle=StubOracle(), finalizer=finalizer)
    state = user_state(ProcessorMode.POTENTIAL_STAY, *HOME_EVENING)
    current = point("2024-01-02T08:00:00Z", 40.7128, -74.0060)

    events = engine.check_for_data_gap(current, state, TimelineConfig(gap_stay_inference_enabled=False))

    # Finalizer returned None for the stay, so only the gap remains
    assert events == [DataGap(start_time=HOME_EVENING[-1].timestamp, end_time=current.timestamp)]
    assert finalizer.calls == [("stay", list(HOME_EVENING))]
    assert not state.has_active_points()


def test_unknown_mode_creates_gap_without_finalizing() -> None:
    finalizer = RecordingFinalizer(stay=STAY)
    engine = DataGapDetectionEngine(gap_oracle=StubOracle(), finalizer=finalizer)
    state = user_state(ProcessorMode.UNKNOWN, *HOME_EVENING)
    current = point("2024-01-02T08:00:00Z", 40.7128, -74.0060)

    events = engine.check_for_data_gap(current, state, ENABLED)

    assert events == [DataGap(start_time=HOME_EVENING[-1].timestamp, end_time=current.timestamp)]
    assert finalizer.calls == []


def test_in_trip_gap_finalizes_trip_for_gap() -> None:
    trip = Trip(start_time=HOME_EVENING[0].timestamp, duration=timedelta(minutes=10), distance_meters=900.0)
    finalizer = RecordingFinalizer(gap_trip=trip)
    engine = DataGapDetectionEngine(
        gap_oracle=StubOracle(), finalizer=finalizer, infer=fixed_plan(GapStayInferencePlan.none())
    )
    state = user_state(ProcessorMode.IN_TRIP, *HOME_EVENING)
    current = point("2024-01-02T08:00:00Z", 40.7128, -74.0060)

    events = engine.check_for_data_gap(current, state, ENABLED)

    assert events == [trip, DataGap(start_time=HOME_EVENING[-1].timestamp, end_time=current.timestamp)]
    assert finalizer.calls == [("trip_for_gap", list(HOME_EVENING))]


def test_replace_with_confirmed_stay_swaps_points_and_mode() -> None:
    finalizer = RecordingFinalizer()
    kept = HOME_EVENING[1:]
    engine = DataGapDetectionEngine(
        gap_oracle=StubOracle(),
        finalizer=finalizer,
        infer=fixed_plan(GapStayInferencePlan.replace_with_confirmed_stay(kept)),
    )
    state = user_state(ProcessorMode.IN_TRIP, *HOME_EVENING)

    events = engine.check_for_data_gap(point("2024-01-02T08:00:00Z", 40.7128, -74.0060), state, ENABLED)

    assert events == []
    assert finalizer.calls == []
    assert state.current_mode is ProcessorMode.CONFIRMED_STAY
    assert state.active_points == list(kept)


def test_finalize_trip_and_replace_emits_trip_first() -> None:
    trip = Trip(start_time=HOME_EVENING[0].timestamp, duration=timedelta(minutes=10), distance_meters=900.0)
    finalizer = RecordingFinalizer(trip=trip)
    plan = GapStayInferencePlan.finalize_trip_and_replace_with_confirmed_stay(HOME_EVENING[:1], HOME_EVENING[1:])
    engine = DataGapDetectionEngine(gap_oracle=StubOracle(), finalizer=finalizer, infer=fixed_plan(plan))
    state = user_state(ProcessorMode.IN_TRIP, *HOME_EVENING)

    events = engine.check_for_data_gap(point("2024-01-02T08:00:00Z", 40.7128, -74.0060), state, ENABLED)

    assert events == [trip]
    assert finalizer.calls == [("trip", list(HOME_EVENING[:1]))]
    assert state.current_mode is ProcessorMode.CONFIRMED_STAY
    assert state.active_points == list(HOME_EVENING[1:])


def test_finalize_trip_and_replace_tolerates_degenerate_trip() -> None:
    finalizer = RecordingFinalizer(trip=None)
    plan = GapStayInferencePlan.finalize_trip_and_replace_with_confirmed_stay(HOME_EVENING[:1], HOME_EVENING[1:])
    engine = DataGapDetectionEngine(gap_oracle=StubOracle(), finalizer=finalizer, infer=fixed_plan(plan))
    state = user_state(ProcessorMode.IN_TRIP, *HOME_EVENING)

    events = engine.check_for_data_gap(point("2024-01-02T08:00:00Z", 40.7128, -74.0060), state, ENABLED)

    assert events == []
    assert state.current_mode is ProcessorMode.CONFIRMED_STAY
    assert state.active_points == list(HOME_EVENING[1:])


def test_finalize_trip_and_replace_skips_finalizer_for_empty_prefix() -> None:
    finalizer = RecordingFinalizer()
    plan = GapStayInferencePlan.finalize_trip_and_replace_with_confirmed_stay([], HOME_EVENING)
    engine = DataGapDetectionEngine(gap_oracle=StubOracle(), finalizer=finalizer, infer=fixed_plan(plan))
    state = user_state(ProcessorMode.IN_TRIP, *HOME_EVENING)

    engine.check_for_data_gap(point("2024-01-02T08:00:00Z", 40.7128, -74.0060), state, ENABLED)

    assert finalizer.calls == []
    assert state.current_mode is ProcessorMode.CONFIRMED_STAY


def test_finalizer_error_leaves_state_unchanged() -> None:
    finalizer = RecordingFinalizer(error=RuntimeError("store unavailable"))
    engine = DataGapDetectionEngine(gap_oracle=StubOracle(), finalizer=finalizer)
    state = user_state(ProcessorMode.CONFIRMED_STAY, *HOME_EVENING)

    with pytest.raises(RuntimeError, match="store unavailable"):
        engine.check_for_data_gap(point("2024-01-02T08:00:00Z", 40.7228, -74.0060), state, ENABLED)

    assert state.current_mode is ProcessorMode.CONFIRMED_STAY
    assert state.active_points == list(HOME_EVENING)
    assert state.last_processed_point == HOME_EVENING[-1]


def test_out_of_order_point_in_trip_raises_and_keeps_state() -> None:
    engine = DataGapDetectionEngine(
        gap_oracle=StubOracle(), infer=fixed_plan(GapStayInferencePlan.none())
    )
    state = user_state(ProcessorMode.IN_TRIP, *HOME_EVENING)

    with pytest.raises(OutOfOrderPointError):
        engine.check_for_data_gap(point("2024-01-01T19:00:00Z", 40.7128, -74.0060), state, ENABLED)

    assert state.current_mode is ProcessorMode.IN_TRIP
    assert len(state.active_points) == 2


def test_missing_timestamp_skips_inference_and_data_gap() -> None:
    def infer(*args):
        raise AssertionError("inference must not run without timestamps")

    finalizer = RecordingFinalizer()
    engine = DataGapDetectionEngine(gap_oracle=StubOracle(), finalizer=finalizer, infer=infer)
    state = user_state(ProcessorMode.CONFIRMED_STAY, *HOME_EVENING)

    events = engine.check_for_data_gap(point(None, 40.7128, -74.0060), state, ENABLED)

    assert events == []
    assert finalizer.calls == [("stay", list(HOME_EVENING))]
    assert state.current_mode is ProcessorMode.UNKNOWN


def test_gap_duration_passed_to_inference() -> None:
    seen: list[timedelta] = []

    def infer(current_point, user_state, config, gap_duration):
        seen.append(gap_duration)
        return GapStayInferencePlan.continue_existing_stay()

    engine = DataGapDetectionEngine(gap_oracle=StubOracle(), finalizer=RecordingFinalizer(), infer=infer)
    state = user_state(ProcessorMode.CONFIRMED_STAY, *HOME_EVENING)

    engine.check_for_data_gap(point("2024-01-02T08:10:00Z", 40.7128, -74.0060), state, ENABLED)

    assert seen == [timedelta(hours=12)]


def test_default_collaborators_finalize_short_stay_as_gap_only() -> None:
    engine = DataGapDetectionEngine()
    state = user_state(ProcessorMode.CONFIRMED_STAY, *HOME_EVENING)
    current = point("2024-01-02T08:00:00Z", 40.7228, -74.0060)

    events = engine.check_for_data_gap(current, state, ENABLED)

    assert [type(e) for e in events] == [Stay, DataGap]
    stay = events[0]
    assert stay.duration == timedelta(minutes=10)
    assert stay.points == 2
    assert events[1].duration == timedelta(hours=11, minutes=50)


def test_untimed_last_sample_falls_back_to_pending_points_for_gap_start() -> None:
    finalizer = RecordingFinalizer()
    engine = DataGapDetectionEngine(gap_oracle=StubOracle(), finalizer=finalizer)
    untimed = point(None, 40.71282, -74.00602)
    state = user_state(ProcessorMode.CONFIRMED_STAY, *HOME_EVENING, untimed)
    current = point("2024-01-02T08:00:00Z", 40.7228, -74.0060)

    events = engine.check_for_data_gap(current, state, ENABLED)

    assert events == [DataGap(start_time=HOME_EVENING[-1].timestamp, end_time=current.timestamp)]
    assert state.current_mode is ProcessorMode.UNKNOWN


def test_gap_without_any_timestamps_is_logged(caplog: pytest.LogCaptureFixture) -> None:
    engine = DataGapDetectionEngine(gap_oracle=StubOracle(), finalizer=RecordingFinalizer())
    untimed = point(None, 40.7128, -74.0060)
    state = user_state(ProcessorMode.CONFIRMED_STAY, untimed)

    with caplog.at_level(logging.WARNING, logger="timeline_gaps.engine"):
        events = engine.check_for_data_gap(point("2024-01-02T08:00:00Z", 40.7228, -74.0060), state, ENABLED)

    assert events == []
    assert "no DataGap recorded" in caplog.text


def test_default_collaborators_at_stay_radius_edge() -> None:
    engine = DataGapDetectionEngine()
    config = ENABLED.with_overrides(staypoint_radius_meters=50)
    current = point("2024-01-02T08:00:00Z", 40.71330, -74.0060)  # ~55m from the centroid

    state = user_state(ProcessorMode.CONFIRMED_STAY, *HOME_EVENING)
    events = engine.check_for_data_gap(current, state, config)

    assert [type(e) for e in events] == [Stay, DataGap]
    assert events[0].points == 2
    assert events[1] == DataGap(start_time=HOME_EVENING[-1].timestamp, end_time=current.timestamp)
    assert state.current_mode is ProcessorMode.UNKNOWN

    # ~48m from the centroid: the same gap is bridged
    state = user_state(ProcessorMode.CONFIRMED_STAY, *HOME_EVENING)
    events = engine.check_for_data_gap(point("2024-01-02T08:00:00Z", 40.71324, -74.0060), state, config)

    assert events == []
    assert state.current_mode is ProcessorMode.CONFIRMED_STAY
    assert state.active_points == list(HOME_EVENING)


def test_default_oracle_ignores_short_interval() -> None:
    engine = DataGapDetectionEngine()
    state = user_state(ProcessorMode.CONFIRMED_STAY, *HOME_EVENING)

    events = engine.check_for_data_gap(point("2024-01-01T21:00:00Z", 40.7228, -74.0060), state, ENABLED)

    assert events == []
    assert state.has_active_points()


def test_trip_tail_arrival_end_to_end_with_defaults() -> None:
    trip = (
        point("2024-01-01T17:35:00Z", 40.7120, -74.0100, 10.0),
        point("2024-01-01T17:40:00Z", 40.7130, -74.0080, 12.0),
        point("2024-01-01T17:50:00Z", 40.7145, -74.0060, 11.0),
        point("2024-01-01T17:57:06Z", 40.71510, -74.00580, 0.7),
        point("2024-01-01T17:57:26Z", 40.71500, -74.00576, 0.5),
        point("2024-01-01T17:57:46Z", 40.71492, -74.00574, 0.6),
        point("2024-01-01T17:57:57Z", 40.71486, -74.00572, 0.4),
    )
    engine = DataGapDetectionEngine()
    state = user_state(ProcessorMode.IN_TRIP, *trip)
    current = point("2024-01-02T10:03:03Z", 40.71482, -74.00570)

    events = engine.check_for_data_gap(current, state, ENABLED.with_overrides(staypoint_radius_meters=80))
    advance(state, current)

    assert len(events) == 1
    assert isinstance(events[0], Trip)
    assert events[0].points == 3
    assert events[0].duration == timedelta(minutes=15)
    assert state.current_mode is ProcessorMode.CONFIRMED_STAY
    assert state.active_points == list(trip[3:])
    assert state.last_processed_point == current


def test_advance_records_last_processed_point() -> None:
    state = UserState()
    p = point("2024-01-01T20:00:00Z", 40.7128, -74.0060)

    advance(state, p)

    assert state.last_processed_point == p
