"""Timeline configuration: a flat option set with per-option defaults.

Every option is optional. ``None`` means "use the default", and each consumer
(heuristics, inference, gap oracle, finalizer) resolves its own defaults, so a
partially filled config is always valid.

Config files are flat JSON objects using the camelCase option names, e.g.::

    {"gapStayInferenceEnabled": true, "staypointRadiusMeters": 80}
"""

from __future__ import annotations

import dataclasses
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

from timeline_gaps.errors import ConfigError


@dataclass(frozen=True, slots=True)
class TimelineConfig:
    """Options controlling gap detection, gap stay inference and finalization."""

    staypoint_radius_meters: int | None = None
    staypoint_velocity_threshold: float | None = None
    trip_arrival_detection_min_duration_seconds: int | None = None
    trip_sustained_stop_min_duration_seconds: int | None = None
    trip_arrival_min_points: int | None = None

    gap_stay_inference_enabled: bool | None = None
    # <= 0 or None means unlimited.
    gap_stay_inference_max_gap_hours: int | None = None

    data_gap_threshold_seconds: int | None = None
    data_gap_min_duration_seconds: int | None = None

    staypoint_min_duration_minutes: int | None = None
    trip_min_distance_meters: float | None = None
    trip_min_duration_minutes: int | None = None

    def with_overrides(self, **changes: Any) -> TimelineConfig:
        """Return a copy with some options replaced (None values are kept as None)."""

        return dataclasses.replace(self, **changes)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> TimelineConfig:
        """Build a config from camelCase keys (snake_case is accepted too).

        Raises:
            ConfigError: On unknown keys, values of the wrong type, or values
                below the option's minimum (e.g. tripArrivalMinPoints < 1).
        """

        kwargs: dict[str, Any] = {}
        for key, value in data.items():
            name = _CAMEL_TO_FIELD.get(key, key)
            kind = _FIELD_KINDS.get(name)
            if kind is None:
                raise ConfigError(f"未知配置项：{key!r}")
            value = _coerce(key, value, kind)
            minimum = _FIELD_MINIMUMS.get(name)
            if value is not None and minimum is not None and value < minimum:
                raise ConfigError(f"配置项 {key!r} 不能小于 {minimum}，实际 {value!r}")
            kwargs[name] = value
        return cls(**kwargs)

    def to_mapping(self) -> dict[str, Any]:
        """camelCase mapping of the options that are set."""

        out: dict[str, Any] = {}
        for f in dataclasses.fields(self):
            value = getattr(self, f.name)
            if value is not None:
                out[_FIELD_TO_CAMEL[f.name]] = value
        return out


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


_FIELD_KINDS: dict[str, type] = {
    "staypoint_radius_meters": int,
    "staypoint_velocity_threshold": float,
    "trip_arrival_detection_min_duration_seconds": int,
    "trip_sustained_stop_min_duration_seconds": int,
    "trip_arrival_min_points": int,
    "gap_stay_inference_enabled": bool,
    "gap_stay_inference_max_gap_hours": int,
    "data_gap_threshold_seconds": int,
    "data_gap_min_duration_seconds": int,
    "staypoint_min_duration_minutes": int,
    "trip_min_distance_meters": float,
    "trip_min_duration_minutes": int,
}
_FIELD_TO_CAMEL: dict[str, str] = {name: _camel(name) for name in _FIELD_KINDS}
_CAMEL_TO_FIELD: dict[str, str] = {camel: name for name, camel in _FIELD_TO_CAMEL.items()}
# Smallest accepted value per option; None passes through as "use the default".
_FIELD_MINIMUMS: dict[str, int] = {
    "staypoint_radius_meters": 0,
    "trip_arrival_min_points": 1,
}


def _coerce(key: str, value: Any, kind: type) -> Any:
    if value is None:
        return None
    # bool is a subclass of int; only accept it where a bool is expected.
    if kind is bool:
        if isinstance(value, bool):
            return value
    elif kind is int:
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        if isinstance(value, float) and value.is_integer():
            return int(value)
    elif kind is float:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)
    raise ConfigError(f"配置项 {key!r} 类型错误：期望 {kind.__name__}，实际 {value!r}")


def load_config(path: str | Path) -> TimelineConfig:
    """Load a TimelineConfig from a flat JSON file.

    Raises:
        ConfigError: If the file is not a JSON object or contains bad options.
    """

    p = Path(path)
    try:
        data = json.loads(p.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ConfigError(f"配置文件不是合法JSON：{p}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"配置文件顶层必须是对象：{p}")
    return TimelineConfig.from_mapping(data)
