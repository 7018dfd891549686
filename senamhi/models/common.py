"""Common types and helpers shared across models."""

import time
from datetime import UTC, datetime
from typing import TypeAlias

EpochMillis: TypeAlias = int


def now_ms() -> EpochMillis:
    return int(time.time() * 1000)


def ms_to_datetime(value: EpochMillis) -> datetime:
    return datetime.fromtimestamp(value / 1000, tz=UTC)


def ms_to_iso(value: EpochMillis) -> str:
    return ms_to_datetime(value).isoformat()
