"""Spherical distance helpers. All radius thresholds are meters on this sphere."""

from __future__ import annotations

import math
from typing import Iterable

EARTH_RADIUS_M = 6_371_000.0


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in meters between two (lat, lon) positions in degrees."""

    lat1_r, lat2_r = math.radians(lat1), math.radians(lat2)
    half_dlat = math.radians(lat2 - lat1) / 2.0
    half_dlon = math.radians(lon2 - lon1) / 2.0
    h = math.sin(half_dlat) ** 2 + math.cos(lat1_r) * math.cos(lat2_r) * math.sin(half_dlon) ** 2
    return 2.0 * EARTH_RADIUS_M * math.asin(min(1.0, math.sqrt(h)))


def mean_lat_lon(coords: Iterable[tuple[float, float]]) -> tuple[float, float] | None:
    """Arithmetic mean of (lat, lon) pairs, or None for an empty input."""

    lat_sum = 0.0
    lon_sum = 0.0
    n = 0
    for lat, lon in coords:
        lat_sum += lat
        lon_sum += lon
        n += 1
    if n == 0:
        return None
    return lat_sum / n, lon_sum / n


def path_length_m(coords: Iterable[tuple[float, float]]) -> float:
    """Sum of consecutive haversine legs along a path."""

    total = 0.0
    prev: tuple[float, float] | None = None
    for cur in coords:
        if prev is not None:
            total += haversine_m(prev[0], prev[1], cur[0], cur[1])
        prev = cur
    return total
