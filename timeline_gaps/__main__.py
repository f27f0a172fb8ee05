"""Module entry point: python -m timeline_gaps ..."""

from __future__ import annotations

from timeline_gaps.cli import main


if __name__ == "__main__":
    raise SystemExit(main())
