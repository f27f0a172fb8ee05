"""Data gap detection between consecutive samples."""

from __future__ import annotations

from datetime import timedelta
from typing import Final, Protocol

from timeline_gaps.config import TimelineConfig
from timeline_gaps.models import GPSPoint

DEFAULT_DATA_GAP_THRESHOLD: Final[timedelta] = timedelta(hours=3)
DEFAULT_DATA_GAP_MIN_DURATION: Final[timedelta] = timedelta(minutes=30)


class GapOracle(Protocol):
    """Decides whether the time between two samples is a data gap."""

    def should_create_data_gap(
        self,
        last_point: GPSPoint,
        current_point: GPSPoint,
        config: TimelineConfig,
    ) -> bool: ...


def get_data_gap_threshold(config: TimelineConfig) -> timedelta:
    seconds = config.data_gap_threshold_seconds
    return timedelta(seconds=seconds) if seconds is not None else DEFAULT_DATA_GAP_THRESHOLD


def get_data_gap_min_duration(config: TimelineConfig) -> timedelta:
    seconds = config.data_gap_min_duration_seconds
    return timedelta(seconds=seconds) if seconds is not None else DEFAULT_DATA_GAP_MIN_DURATION


class ThresholdGapOracle:
    """Gap when the elapsed time exceeds ``dataGapThresholdSeconds``.

    The elapsed time must also reach ``dataGapMinDurationSeconds``, so a
    threshold configured below the minimum cannot produce tiny gaps.
    Samples without timestamps never form a gap.
    """

    def should_create_data_gap(
        self,
        last_point: GPSPoint,
        current_point: GPSPoint,
        config: TimelineConfig,
    ) -> bool:
        if last_point.timestamp is None or current_point.timestamp is None:
            return False
        elapsed = current_point.timestamp - last_point.timestamp
        return elapsed > get_data_gap_threshold(config) and elapsed >= get_data_gap_min_duration(config)
