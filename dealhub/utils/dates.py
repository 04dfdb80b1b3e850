"""Datetime helpers for scheduling."""

from __future__ import annotations

import os

import pendulum

DEFAULT_TZ = "UTC"
DAYS_PER_MONTH = 30


def timezone_name() -> str:
    return os.environ.get("TIMEZONE", DEFAULT_TZ)


def now_in_tz() -> pendulum.DateTime:
    return pendulum.now(pendulum.timezone(timezone_name()))


def parse_timestamp(value: str) -> pendulum.DateTime:
    return pendulum.parse(value)


def months_between(earlier: pendulum.DateTime, later: pendulum.DateTime) -> float:
    """Elapsed time in 30-day months."""
    return (later - earlier).total_seconds() / (DAYS_PER_MONTH * 24 * 3600)
