"""Reading location samples from tracker CSV exports."""

from __future__ import annotations

import csv
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Sequence

from timeline_gaps.models import GPSPoint
from timeline_gaps.timeutils import dt_from_epoch_ms, parse_dt

logger = logging.getLogger(__name__)

TIME_COLUMNS: tuple[str, ...] = ("geoTime", "timestamp")


@dataclass(frozen=True, slots=True)
class CsvSummary:
    """Row counts of one CSV load."""

    rows_total: int
    rows_parsed: int
    columns: tuple[str, ...] = ()

    @property
    def rows_skipped(self) -> int:
        return self.rows_total - self.rows_parsed


def _parse_float(value: str) -> float:
    return float(value.strip())


def _check_columns(columns: Sequence[str]) -> None:
    missing = [c for c in ("latitude", "longitude") if c not in columns]
    if not any(c in columns for c in TIME_COLUMNS):
        missing.append("|".join(TIME_COLUMNS))
    if missing:
        raise KeyError(f"CSV缺少必要字段：{missing}. 实际字段：{list(columns)}")


def parse_row(row: Mapping[str, str], tz_name: str = "UTC") -> GPSPoint:
    """Parse one CSV row into a GPSPoint.

    Columns (observed in tracker exports):
      - geoTime: epoch milliseconds, or timestamp: ISO-8601 (naive = tz_name)
      - latitude/longitude: decimal degrees
      - speed: m/s; negative values are "unknown" sentinels and become 0.0
      - horizontalAccuracy (or accuracy): meters

    Raises:
        ValueError: If a value cannot be parsed.
    """

    geo_time = (row.get("geoTime") or "").strip()
    if geo_time:
        ts = dt_from_epoch_ms(int(geo_time))
    else:
        ts = parse_dt(row.get("timestamp") or "", tz_name)
    speed = _parse_float(row.get("speed", "0") or "0")
    accuracy = row.get("horizontalAccuracy") or row.get("accuracy") or "-1"
    return GPSPoint(
        timestamp=ts,
        latitude=_parse_float(row["latitude"]),
        longitude=_parse_float(row["longitude"]),
        speed=max(0.0, speed),
        accuracy=_parse_float(accuracy),
    )


def load_points(csv_path: str | Path, tz_name: str = "UTC") -> tuple[list[GPSPoint], CsvSummary]:
    """Load every parseable row of a CSV, ordered by sample time.

    Rows that fail to parse are counted and skipped, not raised.

    Raises:
        KeyError: If the header lacks a location or time column.
    """

    points: list[GPSPoint] = []
    with Path(csv_path).open("r", encoding="utf-8", newline="") as f:
        reader = csv.DictReader(f)
        columns = tuple(reader.fieldnames or ())
        if columns:
            _check_columns(columns)
        total = 0
        for total, row in enumerate(reader, start=1):
            try:
                points.append(parse_row(row, tz_name))
            except (ValueError, TypeError, KeyError):
                pass

    points.sort(key=lambda pt: pt.timestamp)
    summary = CsvSummary(rows_total=total, rows_parsed=len(points), columns=columns)
    if summary.rows_skipped:
        logger.warning("CSV中有 %s 行解析失败已跳过", summary.rows_skipped)
    return points, summary
