"""Command-line interface for timeline_gaps.

Run:
    python -m timeline_gaps scan --csv Path.csv
    python -m timeline_gaps seed --csv segment.csv --mode IN_TRIP --state states.json --user alice
    python -m timeline_gaps --enable-inference check-gap --state states.json --user alice \
        --time "2024-01-02 08:00:00" --lat 40.7128 --lon -74.0060
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Sequence

from timeline_gaps.config import TimelineConfig, load_config
from timeline_gaps.csv_io import load_points
from timeline_gaps.engine import DataGapDetectionEngine, advance
from timeline_gaps.errors import OutOfOrderPointError, TimelineGapsError
from timeline_gaps.gaps import ThresholdGapOracle
from timeline_gaps.models import DEFAULT_TZ, GPSPoint, ProcessorMode, event_to_dict
from timeline_gaps.state_store import UserStateStore
from timeline_gaps.timeutils import format_hhmmss, interval_stats, parse_dt, tzinfo_from_name


def _build_config(args: argparse.Namespace) -> TimelineConfig:
    config = load_config(args.config) if args.config else TimelineConfig()
    overrides: dict[str, object] = {}
    if args.enable_inference:
        overrides["gap_stay_inference_enabled"] = True
    if args.max_gap_hours is not None:
        overrides["gap_stay_inference_max_gap_hours"] = args.max_gap_hours
    if args.radius is not None:
        overrides["staypoint_radius_meters"] = args.radius
    return config.with_overrides(**overrides) if overrides else config


def _cmd_scan(args: argparse.Namespace) -> int:
    config = _build_config(args)
    points, summary = load_points(args.csv, args.tz)
    oracle = ThresholdGapOracle()

    gaps: list[tuple[GPSPoint, GPSPoint]] = []
    for prev, cur in zip(points, points[1:]):
        if oracle.should_create_data_gap(prev, cur, config):
            gaps.append((prev, cur))

    if args.json:
        payload = {
            "rows_total": summary.rows_total,
            "rows_parsed": summary.rows_parsed,
            "rows_skipped": summary.rows_skipped,
            "gaps": [
                {
                    "start_time": a.timestamp.isoformat(),
                    "end_time": b.timestamp.isoformat(),
                    "duration_seconds": (b.timestamp - a.timestamp).total_seconds(),
                    "distance_meters": round(a.distance_to(b), 1),
                }
                for a, b in gaps
            ],
        }
        print(json.dumps(payload, ensure_ascii=False, indent=2))
        return 0

    print("### 行数")
    print(f"total_rows={summary.rows_total}, parsed={summary.rows_parsed}, skipped={summary.rows_skipped}")
    print()

    stats = interval_stats(p.timestamp for p in points)
    if stats is not None:
        print("### 采样间隔（秒）")
        print(
            f"count={stats.count}, min={stats.min_s:.1f}, median={stats.median_s:.1f}, "
            f"p95={stats.p95_s:.1f}, max={stats.max_s:.1f}"
        )
        print()

    tz = tzinfo_from_name(args.tz)
    print(f"### 数据缺口（共 {len(gaps)} 段）")
    for a, b in gaps:
        start = a.timestamp.astimezone(tz)
        end = b.timestamp.astimezone(tz)
        print(
            f"{start.isoformat(sep=' ')} -> {end.isoformat(sep=' ')}  "
            f"时长={format_hhmmss(b.timestamp - a.timestamp)}  位移={a.distance_to(b):.1f}m"
        )
    return 0


def _cmd_seed(args: argparse.Namespace) -> int:
    points, _ = load_points(args.csv, args.tz)
    mode = ProcessorMode(args.mode)
    if not points and mode is not ProcessorMode.UNKNOWN:
        print("CSV中没有可用的点，只能使用 UNKNOWN 模式", file=sys.stderr)
        return 2

    store = UserStateStore(args.state)
    with store.checkout(args.user) as state:
        state.current_mode = mode
        state.replace_active_points(points)
        state.last_processed_point = points[-1] if points else None
    store.flush()
    print(f"已写入用户 {args.user!r} 的状态：mode={mode.value}, active_points={len(points)}")
    return 0


def _cmd_check_gap(args: argparse.Namespace) -> int:
    config = _build_config(args)
    point = GPSPoint(
        timestamp=parse_dt(args.time, args.tz),
        latitude=args.lat,
        longitude=args.lon,
        speed=args.speed,
        accuracy=args.accuracy,
    )
    engine = DataGapDetectionEngine()
    store = UserStateStore(args.state)

    with store.checkout(args.user) as state:
        last = state.last_processed_point
        if last is not None and last.timestamp is not None and point.timestamp < last.timestamp:
            raise OutOfOrderPointError(
                f"样本乱序：{point.timestamp.isoformat()} 早于上一个已处理点 {last.timestamp.isoformat()}"
            )
        mode_before = state.current_mode
        count_before = len(state.active_points)
        events = engine.check_for_data_gap(point, state, config)
        advance(state, point)
        mode_after = state.current_mode
        count_after = len(state.active_points)
    store.flush()

    if args.json:
        payload = {
            "user": args.user,
            "mode_before": mode_before.value,
            "mode_after": mode_after.value,
            "active_points_before": count_before,
            "active_points_after": count_after,
            "events": [event_to_dict(e) for e in events],
        }
        print(json.dumps(payload, ensure_ascii=False, indent=2))
        return 0

    print("### 状态")
    print(f"mode: {mode_before.value} -> {mode_after.value}")
    print(f"active_points: {count_before} -> {count_after}")
    print()
    print(f"### 事件（共 {len(events)} 个）")
    for e in events:
        d = event_to_dict(e)
        print(f"{d['type']}: {d['start_time']} -> {d['end_time']} ({format_hhmmss(e.duration)})")
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="timeline_gaps", description="数据缺口检测与停留推断工具")
    p.add_argument("--config", type=str, default=None, help="JSON配置文件（camelCase键）")
    p.add_argument("--enable-inference", action="store_true", help="开启 gapStayInferenceEnabled")
    p.add_argument("--max-gap-hours", type=int, default=None, help="gapStayInferenceMaxGapHours（<=0 表示不限）")
    p.add_argument("--radius", type=int, default=None, help="staypointRadiusMeters")
    p.add_argument("--tz", type=str, default=DEFAULT_TZ, help="无时区时间的默认时区（IANA）")
    p.add_argument("-v", "--verbose", action="store_true", help="输出DEBUG日志")
    sub = p.add_subparsers(dest="cmd", required=True)

    s = sub.add_parser("scan", help="列出相邻样本之间的数据缺口")
    s.add_argument("--csv", type=str, required=True)
    s.add_argument("--json", action="store_true")
    s.set_defaults(func=_cmd_scan)

    s = sub.add_parser("seed", help="把一段待定点写入用户状态")
    s.add_argument("--csv", type=str, required=True)
    s.add_argument("--mode", type=str, required=True, choices=[m.value for m in ProcessorMode])
    s.add_argument("--state", type=str, required=True, help="状态JSON文件")
    s.add_argument("--user", type=str, required=True)
    s.set_defaults(func=_cmd_seed)

    s = sub.add_parser("check-gap", help="对一个新样本运行缺口检测与停留推断")
    s.add_argument("--state", type=str, required=True, help="状态JSON文件")
    s.add_argument("--user", type=str, required=True)
    s.add_argument("--time", type=str, required=True, help="样本时间，例如 2024-01-02 08:00:00")
    s.add_argument("--lat", type=float, required=True)
    s.add_argument("--lon", type=float, required=True)
    s.add_argument("--speed", type=float, default=0.0)
    s.add_argument("--accuracy", type=float, default=-1.0)
    s.add_argument("--json", action="store_true")
    s.set_defaults(func=_cmd_check_gap)
    return p


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        return int(args.func(args))
    except (TimelineGapsError, KeyError, ValueError) as exc:
        print(f"错误：{exc}", file=sys.stderr)
        return 2
