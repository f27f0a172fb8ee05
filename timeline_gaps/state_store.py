"""Per-user state records, checked out exclusively and optionally persisted as JSON."""

from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Iterator

from timeline_gaps.errors import StateCheckedOutError
from timeline_gaps.models import GPSPoint, ProcessorMode, UserState
from timeline_gaps.timeutils import ensure_aware

logger = logging.getLogger(__name__)


def point_to_dict(p: GPSPoint) -> dict[str, Any]:
    return {
        "timestamp": p.timestamp.isoformat() if p.timestamp is not None else None,
        "latitude": p.latitude,
        "longitude": p.longitude,
        "speed": p.speed,
        "accuracy": p.accuracy,
    }


def point_from_dict(d: dict[str, Any]) -> GPSPoint:
    ts = d.get("timestamp")
    return GPSPoint(
        timestamp=ensure_aware(datetime.fromisoformat(ts)) if ts else None,
        latitude=float(d["latitude"]),
        longitude=float(d["longitude"]),
        speed=float(d.get("speed", 0.0) or 0.0),
        accuracy=float(d.get("accuracy", -1.0)),
    )


def state_to_dict(state: UserState) -> dict[str, Any]:
    last = state.last_processed_point
    return {
        "current_mode": state.current_mode.value,
        "active_points": [point_to_dict(p) for p in state.active_points],
        "last_processed_point": point_to_dict(last) if last is not None else None,
    }


def state_from_dict(d: dict[str, Any]) -> UserState:
    last = d.get("last_processed_point")
    return UserState(
        current_mode=ProcessorMode(d.get("current_mode", ProcessorMode.UNKNOWN.value)),
        active_points=[point_from_dict(p) for p in d.get("active_points", [])],
        last_processed_point=point_from_dict(last) if last else None,
    )


class UserStateStore:
    """A keyed store of UserState records (user_id -> state).

    Each state is handed to at most one processing context at a time via
    ``checkout``. With a path, ``flush`` writes a JSON snapshot of all users.
    """

    def __init__(self, path: str | Path | None = None) -> None:
        self._path = Path(path) if path is not None else None
        self._states: dict[str, UserState] = {}
        self._checked_out: set[str] = set()
        self._loaded = False

    def load(self) -> None:
        """Load the snapshot from disk (no-op without a path or file)."""

        if self._loaded:
            return
        self._loaded = True
        if self._path is None or not self._path.exists():
            return
        text = self._path.read_text(encoding="utf-8").strip()
        if not text:
            return
        try:
            raw = json.loads(text)
            self._states = {str(k): state_from_dict(v) for k, v in raw.items()}
        except (json.JSONDecodeError, AttributeError, KeyError, TypeError, ValueError):
            # Snapshot corrupted: keep a backup and start fresh
            backup = self._path.with_suffix(self._path.suffix + ".broken")
            backup.write_text(text, encoding="utf-8")
            logger.warning("状态文件损坏，已备份到 %s 并重新开始", backup)
            self._states = {}

    def user_ids(self) -> list[str]:
        self.load()
        return sorted(self._states)

    def get(self, user_id: str) -> UserState | None:
        """Peek at a state without checking it out."""

        self.load()
        return self._states.get(user_id)

    def put(self, user_id: str, state: UserState) -> None:
        self.load()
        if user_id in self._checked_out:
            raise StateCheckedOutError(user_id)
        self._states[user_id] = state

    @contextmanager
    def checkout(self, user_id: str) -> Iterator[UserState]:
        """Exclusively borrow a user's state, creating an empty one on first use.

        Raises:
            StateCheckedOutError: If the user is already checked out.
        """

        self.load()
        if user_id in self._checked_out:
            raise StateCheckedOutError(user_id)
        state = self._states.setdefault(user_id, UserState())
        self._checked_out.add(user_id)
        try:
            yield state
        finally:
            self._checked_out.discard(user_id)

    def flush(self) -> None:
        """Persist all states to disk (atomic-ish)."""

        if self._path is None:
            return
        self.load()
        payload = {uid: state_to_dict(s) for uid, s in self._states.items()}
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
        tmp.replace(self._path)
