from __future__ import annotations

import argparse
import csv
import math
import random
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Final

from zoneinfo import ZoneInfo


TZ: Final[str] = "UTC"
# Degrees of latitude per meter (approximately, anywhere on Earth).
DEG_PER_M: Final[float] = 1.0 / 111_320.0


@dataclass(frozen=True, slots=True)
class Place:
    name: str
    lat: float
    lon: float


def _epoch_ms(dt: datetime) -> int:
    return int(dt.timestamp() * 1000)


def generate_segment(
    *,
    seed: int,
    start_local: datetime,
    origin: Place,
    destination: Place,
    moving_points: int,
    tail_points: int,
) -> list[dict[str, str]]:
    """Generate a pending trip: fast legs towards the destination, then a slow arrival tail."""

    rng = random.Random(seed)
    cur = start_local.replace(tzinfo=ZoneInfo(TZ))
    out: list[dict[str, str]] = []

    def row(lat: float, lon: float, speed: float) -> dict[str, str]:
        return {
            "geoTime": str(_epoch_ms(cur)),
            "latitude": f"{lat:.7f}",
            "longitude": f"{lon:.7f}",
            "speed": f"{speed:.1f}",
            "horizontalAccuracy": f"{rng.choice([5.0, 8.0, 12.0]):.1f}",
        }

    for i in range(moving_points):
        f = i / max(1, moving_points)
        lat = origin.lat + (destination.lat - origin.lat) * f
        lon = origin.lon + (destination.lon - origin.lon) * f
        out.append(row(lat, lon, rng.uniform(8.0, 14.0)))
        cur = cur + timedelta(minutes=rng.uniform(3, 8))

    # Arrival: a few slow samples jittering within ~15m of the destination
    cos_lat = math.cos(math.radians(destination.lat))
    for _ in range(tail_points):
        lat = destination.lat + rng.uniform(-15, 15) * DEG_PER_M
        lon = destination.lon + rng.uniform(-15, 15) * DEG_PER_M / cos_lat
        out.append(row(lat, lon, rng.uniform(0.0, 0.8)))
        cur = cur + timedelta(seconds=rng.uniform(15, 25))

    return out


def main() -> int:
    p = argparse.ArgumentParser(description="Generate a fake pending-trip segment CSV for demo/testing.")
    p.add_argument("--out", type=str, default="sample_data/segment.csv", help="Output CSV path")
    p.add_argument("--seed", type=int, default=42, help="Random seed (reproducible)")
    p.add_argument("--moving", type=int, default=4, help="Number of moving samples")
    p.add_argument("--tail", type=int, default=4, help="Number of slow arrival samples")
    p.add_argument("--start", type=str, default="2024-01-01 17:35:00", help="Start time (UTC)")
    args = p.parse_args()

    rows = generate_segment(
        seed=args.seed,
        start_local=datetime.fromisoformat(args.start),
        origin=Place("office", 40.7120, -74.0100),
        destination=Place("home", 40.7150, -74.0058),
        moving_points=args.moving,
        tail_points=args.tail,
    )
    out_path = Path(args.out)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    with out_path.open("w", encoding="utf-8", newline="") as f:
        w = csv.DictWriter(f, fieldnames=["geoTime", "latitude", "longitude", "speed", "horizontalAccuracy"])
        w.writeheader()
        w.writerows(rows)

    print(f"Generated: {out_path} (rows={len(rows)}, seed={args.seed})")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
