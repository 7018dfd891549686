"""Tests for the single-flight fetch coordinator."""

import asyncio
from unittest.mock import patch

import pytest

from senamhi.ingest.errors import NavigationTimeout, PersistError, ReadinessTimeout
from senamhi.models.forecast import Snapshot
from senamhi.service.coordinator import ForecastCoordinator, Idle, InFlight
from senamhi.storage.snapshot_store import SnapshotStore

TTL = 24 * 60 * 60 * 1000


@pytest.fixture
def coordinator(store, fake_fetcher, clock) -> ForecastCoordinator:
    return ForecastCoordinator(store, fake_fetcher, ttl_ms=TTL, clock=clock)


async def _gather_while_blocked(coordinator, fetcher, calls):
    """Start ``calls`` concurrently, let them pile up, then release the fetch."""
    fetcher.gate = asyncio.Event()
    tasks = [asyncio.ensure_future(c) for c in calls]
    # Let every caller reach the in-flight fetch before it completes.
    for _ in range(20):
        await asyncio.sleep(0.01)
    assert coordinator.in_flight
    fetcher.gate.set()
    return await asyncio.gather(*tasks, return_exceptions=True)


class TestCacheHit:
    def test_fresh_snapshot_served_without_fetch(
        self, coordinator, store, sample_snapshot, fake_fetcher, clock
    ):
        store.save(sample_snapshot)
        clock.now = sample_snapshot.captured_at + 1000

        result = asyncio.run(coordinator.get_data())

        assert result == sample_snapshot.locations
        assert fake_fetcher.calls == 0
        assert coordinator.fetch_count == 0

    def test_snapshot_one_ms_inside_ttl_is_hit(
        self, coordinator, store, sample_snapshot, fake_fetcher, clock
    ):
        store.save(sample_snapshot)
        clock.now = sample_snapshot.captured_at + TTL - 1
        asyncio.run(coordinator.get_data())
        assert fake_fetcher.calls == 0

    def test_snapshot_at_exact_ttl_is_miss(
        self, coordinator, store, sample_snapshot, fake_fetcher, clock
    ):
        store.save(sample_snapshot)
        clock.now = sample_snapshot.captured_at + TTL
        asyncio.run(coordinator.get_data())
        assert fake_fetcher.calls == 1

    def test_snapshot_one_ms_past_ttl_is_miss(
        self, coordinator, store, sample_snapshot, fake_fetcher, clock
    ):
        store.save(sample_snapshot)
        clock.now = sample_snapshot.captured_at + TTL + 1
        result = asyncio.run(coordinator.get_data())
        assert fake_fetcher.calls == 1
        assert [loc.name for loc in result] == ["Lima", "Cusco", "Arequipa"]


class TestMiss:
    def test_missing_cache_fetches_and_saves(self, coordinator, store, fake_fetcher, clock):
        result = asyncio.run(coordinator.get_data())

        assert fake_fetcher.calls == 1
        saved = store.load()
        assert saved == Snapshot(captured_at=clock.now, locations=result)

    @pytest.mark.parametrize(
        "content",
        [
            "{oops",
            '{"timestamp": 1}',
            '{"data": []}',
            '{"timestamp": 1e400, "data": []}',
            '{"timestamp": Infinity, "data": []}',
            pytest.param("[" * 100_000 + "]" * 100_000, id="deeply-nested"),
        ],
    )
    def test_corrupt_cache_triggers_fetch(
        self, coordinator, store, fake_fetcher, content
    ):
        store.path.write_text(content, encoding="utf-8")
        result = asyncio.run(coordinator.get_data())
        assert fake_fetcher.calls == 1
        assert len(result) == 3

    def test_second_call_after_fetch_is_hit(self, coordinator, fake_fetcher):
        async def scenario():
            await coordinator.get_data()
            await coordinator.get_data()

        asyncio.run(scenario())
        assert fake_fetcher.calls == 1

    def test_failure_propagates_and_keeps_previous_cache(
        self, coordinator, store, sample_snapshot, fake_fetcher, clock
    ):
        store.save(sample_snapshot)
        clock.now = sample_snapshot.captured_at + TTL + 1
        fake_fetcher.error = NavigationTimeout("page took too long")

        with pytest.raises(NavigationTimeout):
            asyncio.run(coordinator.get_data())

        assert store.load() == sample_snapshot
        assert isinstance(coordinator._state, Idle)

    def test_no_automatic_retry(self, coordinator, fake_fetcher):
        fake_fetcher.error = ReadinessTimeout("no table")
        with pytest.raises(ReadinessTimeout):
            asyncio.run(coordinator.get_data())
        assert fake_fetcher.calls == 1

    def test_state_returns_to_idle_after_success(self, coordinator):
        asyncio.run(coordinator.get_data())
        assert isinstance(coordinator._state, Idle)
        assert not coordinator.in_flight

    def test_fetch_after_failure_starts_new_pipeline(self, coordinator, fake_fetcher):
        async def scenario():
            fake_fetcher.error = NavigationTimeout("slow")
            with pytest.raises(NavigationTimeout):
                await coordinator.get_data()
            fake_fetcher.error = None
            return await coordinator.get_data()

        result = asyncio.run(scenario())
        assert fake_fetcher.calls == 2
        assert len(result) == 3


class TestForce:
    def test_force_bypasses_fresh_cache(
        self, coordinator, store, sample_snapshot, fake_fetcher, clock
    ):
        store.save(sample_snapshot)
        clock.now = sample_snapshot.captured_at + 1000

        result = asyncio.run(coordinator.get_data(force=True))

        assert fake_fetcher.calls == 1
        assert store.load() == Snapshot(captured_at=clock.now, locations=result)
        assert store.load() != sample_snapshot

    def test_force_joins_in_flight_fetch(self, coordinator, fake_fetcher):
        async def scenario():
            return await _gather_while_blocked(
                coordinator,
                fake_fetcher,
                [coordinator.get_data(), coordinator.get_data(force=True)],
            )

        first, second = asyncio.run(scenario())
        assert fake_fetcher.calls == 1
        assert first == second


class TestSingleFlight:
    def test_concurrent_misses_share_one_fetch(self, coordinator, fake_fetcher):
        async def scenario():
            return await _gather_while_blocked(
                coordinator,
                fake_fetcher,
                [coordinator.get_data() for _ in range(20)],
            )

        results = asyncio.run(scenario())
        assert fake_fetcher.calls == 1
        assert coordinator.fetch_count == 1
        assert all(r == results[0] for r in results)
        assert len(results[0]) == 3

    def test_concurrent_failures_share_one_error(self, coordinator, fake_fetcher):
        fake_fetcher.error = ReadinessTimeout("no table")

        async def scenario():
            return await _gather_while_blocked(
                coordinator,
                fake_fetcher,
                [coordinator.get_data(force=i % 2 == 0) for i in range(10)],
            )

        results = asyncio.run(scenario())
        assert fake_fetcher.calls == 1
        assert all(isinstance(r, ReadinessTimeout) for r in results)
        assert isinstance(coordinator._state, Idle)

    def test_in_flight_state_holds_the_shared_task(self, coordinator, fake_fetcher):
        async def scenario():
            fake_fetcher.gate = asyncio.Event()
            first = asyncio.ensure_future(coordinator.get_data(force=True))
            await asyncio.sleep(0.01)
            state = coordinator._state
            second = asyncio.ensure_future(coordinator.get_data(force=True))
            await asyncio.sleep(0.01)
            same_state = coordinator._state is state
            fake_fetcher.gate.set()
            await asyncio.gather(first, second)
            return state, same_state

        state, same_state = asyncio.run(scenario())
        assert isinstance(state, InFlight)
        assert same_state

    def test_cancelled_caller_does_not_cancel_fetch(self, coordinator, store, fake_fetcher):
        async def scenario():
            fake_fetcher.gate = asyncio.Event()
            impatient = asyncio.ensure_future(coordinator.get_data())
            patient = asyncio.ensure_future(coordinator.get_data())
            await asyncio.sleep(0.01)
            impatient.cancel()
            await asyncio.sleep(0.01)
            fake_fetcher.gate.set()
            return await patient, impatient

        result, impatient = asyncio.run(scenario())
        assert impatient.cancelled()
        assert len(result) == 3
        assert fake_fetcher.calls == 1
        assert store.load() is not None


class TestPersistFailure:
    def test_data_returned_when_save_fails(self, coordinator, fake_fetcher):
        with patch.object(
            SnapshotStore, "save", side_effect=PersistError("read-only filesystem")
        ):
            result = asyncio.run(coordinator.get_data())
        assert len(result) == 3
        assert isinstance(coordinator._state, Idle)

    def test_next_call_fetches_again_after_save_failure(
        self, coordinator, store, fake_fetcher
    ):
        async def scenario():
            with patch.object(
                SnapshotStore, "save", side_effect=PersistError("read-only filesystem")
            ):
                await coordinator.get_data()
            await coordinator.get_data()

        asyncio.run(scenario())
        assert fake_fetcher.calls == 2
        assert store.load() is not None


class TestCaptureTime:
    def test_capture_time_never_goes_backwards(self, coordinator, store, clock):
        async def scenario():
            await coordinator.get_data(force=True)
            first = store.load().captured_at
            clock.now -= 60_000  # wall clock stepped back
            await coordinator.get_data(force=True)
            return first, store.load().captured_at

        first, second = asyncio.run(scenario())
        assert second >= first


class TestClose:
    def test_close_cancels_running_fetch(self, coordinator, store, fake_fetcher):
        async def scenario():
            fake_fetcher.gate = asyncio.Event()
            waiter = asyncio.ensure_future(coordinator.get_data())
            while not coordinator.in_flight:
                await asyncio.sleep(0.01)
            task = coordinator._state.task
            await coordinator.aclose()
            result = await asyncio.gather(waiter, return_exceptions=True)
            return task, result[0]

        task, waiter_result = asyncio.run(scenario())
        assert task.cancelled()
        assert isinstance(waiter_result, asyncio.CancelledError)
        assert isinstance(coordinator._state, Idle)
        assert store.load() is None

    def test_close_when_idle_is_noop(self, coordinator, fake_fetcher):
        async def scenario():
            await coordinator.aclose()
            return await coordinator.get_data()

        result = asyncio.run(scenario())
        assert len(result) == 3
        assert fake_fetcher.calls == 1
