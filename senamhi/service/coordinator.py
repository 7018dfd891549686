"""Single-flight fetch coordinator in front of the snapshot cache.

Callers ask for the forecast; a fresh cached snapshot is returned directly.
On a miss, at most one fetch pipeline (browser fetch -> extract -> save) runs
at any time in the process, and every caller that misses while it runs awaits
that same pipeline and sees the same result or error.
"""

import asyncio
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol, TypeAlias

from senamhi.config.schema import ONE_DAY_MS
from senamhi.ingest.errors import PersistError
from senamhi.ingest.extractor import extract_locations
from senamhi.models.common import EpochMillis, now_ms
from senamhi.models.forecast import LocationForecast, Snapshot
from senamhi.storage.snapshot_store import SnapshotStore, is_fresh

logger = logging.getLogger(__name__)


class RawDocumentFetcher(Protocol):
    async def fetch_raw_document(self) -> str: ...


@dataclass(frozen=True)
class Idle:
    pass


@dataclass(frozen=True)
class InFlight:
    task: "asyncio.Task[list[LocationForecast]]"


CacheState: TypeAlias = Idle | InFlight

IDLE = Idle()


class ForecastCoordinator:
    def __init__(
        self,
        store: SnapshotStore,
        fetcher: RawDocumentFetcher,
        ttl_ms: int = ONE_DAY_MS,
        clock: Callable[[], EpochMillis] = now_ms,
        extract: Callable[[str], list[LocationForecast]] = extract_locations,
    ):
        self.store = store
        self.fetcher = fetcher
        self.ttl_ms = ttl_ms
        self._clock = clock
        self._extract = extract
        self._state: CacheState = IDLE
        self._state_lock = threading.Lock()
        self._last_captured_at: EpochMillis | None = None
        self._fetch_count = 0

    @property
    def in_flight(self) -> bool:
        return isinstance(self._state, InFlight)

    @property
    def fetch_count(self) -> int:
        """Number of fetch pipelines started by this coordinator."""
        return self._fetch_count

    async def get_data(self, force: bool = False) -> list[LocationForecast]:
        """Return the forecast, fetching it only when the cache cannot serve.

        ``force`` bypasses a fresh cache entry but still joins a fetch that is
        already running. Raises FetchError when the fetch fails; the stored
        snapshot is left untouched in that case.
        """
        if not force:
            snapshot = await asyncio.to_thread(self.store.load)
            if snapshot is not None and is_fresh(snapshot, self.ttl_ms, self._clock()):
                logger.info(
                    "Serving cached forecast (%d locations)", len(snapshot.locations)
                )
                return snapshot.locations

        task = self._join_or_start()
        # Shielded so a caller that goes away never cancels the shared fetch.
        return await asyncio.shield(task)

    async def aclose(self) -> None:
        """Cancel a running fetch pipeline and wait until it has unwound."""
        with self._state_lock:
            state = self._state
        if not isinstance(state, InFlight) or state.task.done():
            return
        logger.info("Cancelling in-flight forecast fetch")
        state.task.cancel()
        await asyncio.gather(state.task, return_exceptions=True)

    def _join_or_start(self) -> "asyncio.Task[list[LocationForecast]]":
        with self._state_lock:
            state = self._state
            if isinstance(state, InFlight):
                logger.info("Fetch already in flight; waiting for its result")
                return state.task

            task = asyncio.get_running_loop().create_task(self._run_pipeline())
            task.add_done_callback(self._settle)
            self._state = InFlight(task)
            self._fetch_count += 1
            return task

    def _settle(self, task: "asyncio.Task[list[LocationForecast]]") -> None:
        with self._state_lock:
            if isinstance(self._state, InFlight) and self._state.task is task:
                self._state = IDLE

        if task.cancelled():
            logger.warning("Forecast fetch was cancelled")
            return
        error = task.exception()
        if error is not None:
            logger.warning("Forecast fetch failed: %s", error)

    async def _run_pipeline(self) -> list[LocationForecast]:
        logger.info("Fetching forecast from source")
        html = await self.fetcher.fetch_raw_document()
        locations = self._extract(html)
        snapshot = Snapshot(captured_at=self._next_capture_time(), locations=locations)

        try:
            await asyncio.to_thread(self.store.save, snapshot)
        except PersistError:
            # Callers still get the data; the previous file stays in place.
            logger.exception(
                "Fetched %d locations but could not persist them", len(locations)
            )
        else:
            logger.info("Forecast updated (%d locations)", len(locations))
        return locations

    def _next_capture_time(self) -> EpochMillis:
        now = self._clock()
        if self._last_captured_at is not None and now < self._last_captured_at:
            now = self._last_captured_at
        self._last_captured_at = now
        return now
