"""Exceptions raised by timeline_gaps.

Gap inference itself never raises: every disqualifying condition is a normal
"no inference" plan. These are for misuse at the package boundary.
"""

from __future__ import annotations


class TimelineGapsError(Exception):
    """Base class for package errors."""


class ConfigError(TimelineGapsError, ValueError):
    """An option name or value in a config mapping/file is invalid."""


class StateCheckedOutError(TimelineGapsError):
    """A user's state is already checked out by another processing context."""

    def __init__(self, user_id: str) -> None:
        super().__init__(f"用户状态已被占用：{user_id!r}")
        self.user_id = user_id


class OutOfOrderPointError(TimelineGapsError, ValueError):
    """A sample arrived earlier than the segment it is supposed to follow."""
