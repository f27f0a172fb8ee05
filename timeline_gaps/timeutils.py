"""Time zone lookup, sample time parsing and duration formatting."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta, tzinfo
from typing import Iterable

from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


def tzinfo_from_name(tz_name: str) -> tzinfo:
    """Look up an IANA zone such as "Asia/Shanghai" or "UTC".

    Raises:
        ValueError: If the zone is unknown to this system's tz database.
    """

    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"无效时区：{tz_name!r}。例如可用：Asia/Shanghai") from exc


def dt_from_epoch_ms(epoch_ms: int, tz_name: str = "UTC") -> datetime:
    return datetime.fromtimestamp(epoch_ms / 1000.0, tz=tzinfo_from_name(tz_name))


def parse_dt(text: str, tz_name: str) -> datetime:
    """Parse a sample time typed by a user or found in a CSV.

    Accepts ISO-8601 with either a space or "T" separator, optionally with an
    offset or a trailing "Z". Naive times are taken to be in ``tz_name``; aware
    times are converted to it.

    Raises:
        ValueError: If the text is not a recognizable time.
    """

    zone = tzinfo_from_name(tz_name)
    cleaned = text.strip()
    if cleaned.endswith(("Z", "z")):
        cleaned = cleaned[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(cleaned.replace("T", " ", 1))
    except ValueError as exc:
        raise ValueError(f"无法解析时间：{text!r}。建议格式：2024-01-02 08:00:00") from exc
    return parsed.replace(tzinfo=zone) if parsed.tzinfo is None else parsed.astimezone(zone)


def ensure_aware(dt: datetime) -> datetime:
    # Snapshots written by older runs may carry naive UTC times.
    return dt if dt.tzinfo is not None else dt.replace(tzinfo=UTC)


def format_hhmmss(duration: timedelta | float) -> str:
    """Render a duration (or seconds) as HH:MM:SS; hours are not wrapped at 24."""

    if isinstance(duration, timedelta):
        duration = duration.total_seconds()
    total = int(round(max(0.0, float(duration))))
    hours, rest = divmod(total, 3600)
    minutes, seconds = divmod(rest, 60)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"


@dataclass(frozen=True, slots=True)
class IntervalStats:
    """Seconds between consecutive samples."""

    count: int
    min_s: float
    median_s: float
    p95_s: float
    max_s: float


def interval_stats(timestamps: Iterable[datetime | None]) -> IntervalStats | None:
    """Summarize sampling intervals of time-ordered samples.

    Samples without a timestamp and backwards steps are ignored.

    Returns:
        IntervalStats, or None when there is no usable interval.
    """

    times = [t for t in timestamps if t is not None]
    steps = sorted(
        (later - earlier).total_seconds() for earlier, later in zip(times, times[1:]) if later >= earlier
    )
    if not steps:
        return None
    n = len(steps)
    mid = n // 2
    median = steps[mid] if n % 2 else (steps[mid - 1] + steps[mid]) / 2
    return IntervalStats(
        count=n,
        min_s=steps[0],
        median_s=median,
        p95_s=steps[int(0.95 * (n - 1))],
        max_s=steps[-1],
    )
