from __future__ import annotations

from pathlib import Path

import streamlit as st

from timeline_gaps.config import TimelineConfig
from timeline_gaps.csv_io import load_points
from timeline_gaps.engine import DataGapDetectionEngine
from timeline_gaps.heuristics import (
    DEFAULT_STAY_RADIUS_METERS,
    DEFAULT_STOP_SPEED_THRESHOLD,
    DEFAULT_TRIP_ARRIVAL_MIN_POINTS,
    detect_trip_stop_from_recent_window,
    find_gap_tail_arrival_cluster_match,
)
from timeline_gaps.inference import try_infer
from timeline_gaps.models import DEFAULT_TZ, GPSPoint, ProcessorMode, UserState, event_to_dict
from timeline_gaps.timeutils import format_hhmmss, parse_dt


class _AlwaysGapOracle:
    """The explorer asks "what if this were a gap", whatever the thresholds say."""

    def should_create_data_gap(self, last_point: GPSPoint, current_point: GPSPoint, config: TimelineConfig) -> bool:
        return True


@st.cache_data(show_spinner=False)
def _load_segment(path_csv: str, tz_name: str, mtime: float) -> list[GPSPoint]:
    _ = mtime  # part of cache key so updated files reload automatically
    points, _ = load_points(path_csv, tz_name)
    return points


def main() -> None:
    st.set_page_config(page_title="数据缺口：停留推断演示", layout="wide")
    st.title("数据缺口：判断能否把缺口视为连续停留")

    with st.sidebar:
        st.subheader("数据与时区")
        tz_name = st.text_input("时区（IANA）", value=DEFAULT_TZ)
        path_csv = st.text_input("待定段 CSV 路径", value="segment.csv")
        mode = ProcessorMode(st.selectbox("当前模式", [m.value for m in ProcessorMode], index=3))

        st.subheader("推断参数")
        enabled = st.checkbox("gapStayInferenceEnabled", value=True)
        max_gap_hours = st.number_input("gapStayInferenceMaxGapHours（<=0 不限）", value=24, step=1)
        radius = st.number_input("staypointRadiusMeters", value=DEFAULT_STAY_RADIUS_METERS, step=5)
        with st.expander("高级参数（通常不用改）", expanded=False):
            velocity = st.number_input("staypointVelocityThreshold", value=DEFAULT_STOP_SPEED_THRESHOLD, step=0.1)
            min_points = st.number_input("tripArrivalMinPoints", value=DEFAULT_TRIP_ARRIVAL_MIN_POINTS, step=1)
            arrival_s = st.number_input("tripArrivalDetectionMinDurationSeconds", value=90, step=10)

        st.subheader("缺口后的第一个样本")
        resume_time = st.text_input("时间", value="2024-01-02 08:00:00")
        resume_lat = st.number_input("纬度", value=40.7128, format="%.6f")
        resume_lon = st.number_input("经度", value=-74.0060, format="%.6f")
        resume_speed = st.number_input("速度 m/s", value=0.0, step=0.1)

    p = Path(path_csv)
    if not p.exists():
        st.error(f"找不到文件：{path_csv!r}。可用 scripts/generate_sample_segment_csv.py 生成示例。")
        return

    try:
        points = _load_segment(path_csv, tz_name, p.stat().st_mtime)
        current = GPSPoint(
            timestamp=parse_dt(resume_time, tz_name),
            latitude=float(resume_lat),
            longitude=float(resume_lon),
            speed=float(resume_speed),
        )
    except (KeyError, ValueError) as exc:
        st.exception(exc)
        return

    if not points:
        st.error("CSV中没有可用的点。")
        return

    config = TimelineConfig(
        gap_stay_inference_enabled=bool(enabled),
        gap_stay_inference_max_gap_hours=int(max_gap_hours),
        staypoint_radius_meters=int(radius),
        staypoint_velocity_threshold=float(velocity),
        trip_arrival_min_points=int(min_points),
        trip_arrival_detection_min_duration_seconds=int(arrival_s),
    )
    state = UserState(current_mode=mode, active_points=list(points), last_processed_point=points[-1])
    gap = current.timestamp - points[-1].timestamp

    st.subheader("判定")
    plan = try_infer(current, state, config, gap)
    c1, c2, c3 = st.columns(3)
    c1.metric("缺口时长", format_hhmmss(gap))
    c2.metric("推断结果", plan.kind.value)
    c3.metric("恢复点距离（米）", f"{points[-1].distance_to(current):.1f}")

    if mode is ProcessorMode.IN_TRIP:
        with st.expander("行程尾部启发式", expanded=False):
            stop = detect_trip_stop_from_recent_window(points, config)
            tail = find_gap_tail_arrival_cluster_match(points, current, config)
            st.write({"recent_window_stop": stop.stop_detected, "window_start": stop.stopped_cluster_start_index})
            st.write(
                {
                    "tail_matched": tail.matched,
                    "tail_start": tail.start_index,
                    "tail_duration": format_hhmmss(tail.tail_duration),
                }
            )

    st.subheader("引擎输出（忽略缺口阈值，直接视为缺口）")

    engine = DataGapDetectionEngine(gap_oracle=_AlwaysGapOracle())
    events = engine.check_for_data_gap(current, state, config)
    st.dataframe([event_to_dict(e) for e in events], use_container_width=True)
    st.caption(f"应用后：mode={state.current_mode.value}，active_points={len(state.active_points)}")


if __name__ == "__main__":
    main()
