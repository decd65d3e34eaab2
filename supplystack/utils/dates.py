"""Datetime helpers."""

from __future__ import annotations

import os
from datetime import datetime

import pendulum

DEFAULT_TZ = "America/Denver"


def timezone_name() -> str:
    return os.environ.get("TIMEZONE", DEFAULT_TZ)


def now_utc() -> pendulum.DateTime:
    return pendulum.now("UTC")


def utc_timestamp() -> str:
    """Fixed-width ISO-8601 timestamp used for every persisted timestamp column."""
    return now_utc().format("YYYY-MM-DD[T]HH:mm:ss.SSSSSSZ")


def parse_timestamp(value: str | datetime | None) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return pendulum.instance(value, tz="UTC")
        return value
    return pendulum.parse(str(value))
