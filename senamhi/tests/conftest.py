"""Shared test fixtures."""

import asyncio
from pathlib import Path

import pytest
import yaml

from senamhi.config.schema import ServiceConfig
from senamhi.ingest.errors import FetchError
from senamhi.models.forecast import ForecastDay, LocationForecast, Snapshot
from senamhi.storage.snapshot_store import SnapshotStore

FIXTURES = Path(__file__).parent / "fixtures"


class FakeFetcher:
    """Stand-in for BrowserFetcher that counts calls.

    ``gate`` (an asyncio.Event) holds every fetch open until it is set, which
    lets tests pile up concurrent callers on one in-flight fetch.
    """

    def __init__(self, html: str = "", error: FetchError | None = None):
        self.html = html
        self.error = error
        self.calls = 0
        self.gate: asyncio.Event | None = None

    async def fetch_raw_document(self) -> str:
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        else:
            await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        return self.html


class FakeClock:
    def __init__(self, now: int = 1_760_000_000_000):
        self.now = now

    def __call__(self) -> int:
        return self.now


@pytest.fixture
def fixtures_dir() -> Path:
    return FIXTURES


@pytest.fixture
def forecast_html() -> str:
    return (FIXTURES / "forecast_page.html").read_text(encoding="utf-8")


@pytest.fixture
def fake_fetcher(forecast_html: str) -> FakeFetcher:
    return FakeFetcher(html=forecast_html)


@pytest.fixture
def sample_locations() -> list[LocationForecast]:
    return [
        LocationForecast(
            name="Lima",
            days=[
                ForecastDay(
                    date="Viernes, 17 de octubre",
                    high_temp="21°C",
                    low_temp="16°C",
                    description="Nublado parcial",
                )
            ],
        ),
        LocationForecast(name="Puno", days=[]),
    ]


@pytest.fixture
def sample_snapshot(sample_locations) -> Snapshot:
    return Snapshot(captured_at=1_760_000_000_000, locations=sample_locations)


@pytest.fixture
def store(tmp_path: Path) -> SnapshotStore:
    return SnapshotStore(tmp_path / "cache.json")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def default_config() -> ServiceConfig:
    return ServiceConfig()


@pytest.fixture
def config_yaml_path(tmp_path: Path) -> Path:
    """Write a minimal valid config YAML and return its path."""
    data = {
        "cache": {"path": str(tmp_path / "cache.json"), "ttl_ms": 3_600_000},
        "server": {"port": 8080, "prewarm": False},
    }
    path = tmp_path / "test_config.yaml"
    with open(path, "w") as f:
        yaml.dump(data, f)
    return path
