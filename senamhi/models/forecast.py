"""Forecast data models and their JSON shape."""

import math
from dataclasses import dataclass, field
from typing import Any

from senamhi.models.common import EpochMillis

# Keys written by the first version of the service, still accepted on read.
_LEGACY_LOCATION_KEYS = {"name": "ciudad", "days": "pronostico"}
_LEGACY_DAY_KEYS = {
    "date": "fecha",
    "highTemp": "max",
    "lowTemp": "min",
    "description": "descripcion",
}


@dataclass(frozen=True)
class ForecastDay:
    date: str | None = None
    high_temp: str | None = None
    low_temp: str | None = None
    description: str | None = None

    def to_dict(self) -> dict[str, str | None]:
        return {
            "date": self.date,
            "highTemp": self.high_temp,
            "lowTemp": self.low_temp,
            "description": self.description,
        }

    @classmethod
    def from_dict(cls, raw: Any) -> "ForecastDay":
        if not isinstance(raw, dict):
            raise ValueError(f"forecast day must be an object, got {type(raw).__name__}")
        return cls(
            date=_optional_text(raw, "date", _LEGACY_DAY_KEYS),
            high_temp=_optional_text(raw, "highTemp", _LEGACY_DAY_KEYS),
            low_temp=_optional_text(raw, "lowTemp", _LEGACY_DAY_KEYS),
            description=_optional_text(raw, "description", _LEGACY_DAY_KEYS),
        )


@dataclass(frozen=True)
class LocationForecast:
    name: str
    days: list[ForecastDay] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("location name must be non-empty")

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "days": [d.to_dict() for d in self.days]}

    @classmethod
    def from_dict(cls, raw: Any) -> "LocationForecast":
        if not isinstance(raw, dict):
            raise ValueError(f"location must be an object, got {type(raw).__name__}")
        name = _lookup(raw, "name", _LEGACY_LOCATION_KEYS)
        if not isinstance(name, str) or not name:
            raise ValueError("location name missing")
        days = _lookup(raw, "days", _LEGACY_LOCATION_KEYS)
        if days is None:
            days = []
        if not isinstance(days, list):
            raise ValueError(f"days for {name!r} must be a list")
        return cls(name=name, days=[ForecastDay.from_dict(d) for d in days])


@dataclass(frozen=True)
class Snapshot:
    captured_at: EpochMillis
    locations: list[LocationForecast]

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.captured_at,
            "data": [loc.to_dict() for loc in self.locations],
        }

    @classmethod
    def from_dict(cls, raw: Any) -> "Snapshot":
        """Rebuild a snapshot from its persisted form.

        Raises ValueError when the document does not have the
        ``{"timestamp": <ms>, "data": [...]}`` shape.
        """
        if not isinstance(raw, dict):
            raise ValueError("snapshot must be a JSON object")
        timestamp = raw.get("timestamp")
        # bool is an int subclass; reject it explicitly
        if isinstance(timestamp, bool) or not isinstance(timestamp, int | float):
            raise ValueError("snapshot timestamp missing or not numeric")
        if isinstance(timestamp, float) and not math.isfinite(timestamp):
            raise ValueError(f"snapshot timestamp is not finite: {timestamp}")
        data = raw.get("data")
        if not isinstance(data, list):
            raise ValueError("snapshot data missing or not a list")
        return cls(
            captured_at=int(timestamp),
            locations=[LocationForecast.from_dict(loc) for loc in data],
        )


def locations_to_json(locations: list[LocationForecast]) -> list[dict[str, Any]]:
    return [loc.to_dict() for loc in locations]


def _lookup(raw: dict, key: str, legacy: dict[str, str]) -> Any:
    if key in raw:
        return raw[key]
    return raw.get(legacy[key])


def _optional_text(raw: dict, key: str, legacy: dict[str, str]) -> str | None:
    value = _lookup(raw, key, legacy)
    if value is None or isinstance(value, str):
        return value
    raise ValueError(f"field {key!r} must be a string or null")
