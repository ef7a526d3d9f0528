"""Tests for orchestrator module (FetchOrchestrator)."""

from __future__ import annotations

import asyncio
from datetime import date

import pytest

from conftest import ControlledFetcher, make_readings
from energy_forecast.cache import PersistentCache
from energy_forecast.errors import AuthError, MalformedResponseError, NetworkError, UnknownGranularity
from energy_forecast.models import Direction, PeriodWindow, ViewGranularity
from energy_forecast.orchestrator import DisplayState, FetchOrchestrator, PrefetchSlot
from energy_forecast.periods import PeriodCalculator

ACCOUNT = "A-1234ABCD"


async def settle() -> None:
    """Let scheduled tasks run until they block on the fetcher again."""
    for _ in range(10):
        await asyncio.sleep(0)


@pytest.fixture
def orchestrator(
    fetcher: ControlledFetcher, cache: PersistentCache, periods: PeriodCalculator
) -> FetchOrchestrator:
    return FetchOrchestrator(fetcher, cache, periods, ACCOUNT, initial_date="2024-03-10")


@pytest.fixture
def day(periods: PeriodCalculator):
    def window(d: int, granularity: str = "day") -> PeriodWindow:
        return periods.window(date(2024, 3, d), granularity)

    return window


def _seed(cache: PersistentCache, window: PeriodWindow) -> None:
    cache.set(window.cache_key(ACCOUNT), [r.to_dict() for r in make_readings(window)])


async def _load_initial(orchestrator: FetchOrchestrator, fetcher: ControlledFetcher, day) -> None:
    """Start, resolve the main fetch and both prefetches."""
    orchestrator.start()
    await settle()
    fetcher.resolve(day(10))
    await settle()
    fetcher.resolve_all()
    await settle()


class TestPrefetchSlot:
    """Tests for PrefetchSlot."""

    def test_ready_requires_data_and_window(self, day) -> None:
        slot = PrefetchSlot(direction=Direction.NEXT)
        assert not slot.is_ready_for(day(11))
        slot.window = day(11)
        slot.loading = True
        assert not slot.is_ready_for(day(11))
        slot.loading = False
        slot.data = []
        assert slot.is_ready_for(day(11))
        assert not slot.is_ready_for(day(12))

    def test_clear(self, day) -> None:
        slot = PrefetchSlot(direction=Direction.PREV, window=day(9), data=[], loading=True)
        slot.clear()
        assert slot == PrefetchSlot(direction=Direction.PREV)


class TestInitialLoad:
    """Tests for start() and the first main fetch."""

    def test_construction_does_not_fetch(self, orchestrator: FetchOrchestrator, fetcher: ControlledFetcher) -> None:
        state = orchestrator.state
        assert state.displayed_window is None
        assert state.main_loading is False
        assert fetcher.calls == []

    def test_default_date_is_today(
        self, fetcher: ControlledFetcher, cache: PersistentCache, periods: PeriodCalculator
    ) -> None:
        orchestrator = FetchOrchestrator(fetcher, cache, periods, ACCOUNT)
        assert orchestrator.state.target_date.date() == date(2024, 3, 20)

    def test_invalid_granularity(
        self, fetcher: ControlledFetcher, cache: PersistentCache, periods: PeriodCalculator
    ) -> None:
        with pytest.raises(UnknownGranularity):
            FetchOrchestrator(fetcher, cache, periods, ACCOUNT, granularity="hour")

    @pytest.mark.asyncio
    async def test_first_fetch_then_prefetch(
        self, orchestrator: FetchOrchestrator, fetcher: ControlledFetcher, day
    ) -> None:
        """Verifies the main fetch runs first and prefetch follows it.

        Business context:
        The period on screen is what the user waits for; neighbours are
        fetched only after it is displayed so they never delay it.

        Arrangement:
        Orchestrator targeting the day view of 2024-03-10.

        Action:
        start(), resolve the main fetch, resolve both prefetches.

        Assertion Strategy:
        One fetch for the target window while loading, then one per
        neighbour, then has_next/has_prev.
        """
        orchestrator.start()
        assert orchestrator.state.main_loading is True
        await settle()
        assert fetcher.windows == [day(10)]

        fetcher.resolve(day(10))
        await settle()
        state = orchestrator.state
        assert state.displayed_window == day(10)
        assert len(state.displayed_series) == 48
        assert state.main_loading is False
        assert sorted(w.end for w in fetcher.pending()) == [day(9).end, day(11).end]
        assert state.next_loading and state.prev_loading

        fetcher.resolve_all()
        await settle()
        state = orchestrator.state
        assert state.has_next and state.has_prev
        assert not state.next_loading and not state.prev_loading

    @pytest.mark.asyncio
    async def test_cache_hit_displays_synchronously(
        self, orchestrator: FetchOrchestrator, fetcher: ControlledFetcher, cache: PersistentCache, day
    ) -> None:
        _seed(cache, day(10))
        orchestrator.start()

        state = orchestrator.state
        assert state.displayed_window == day(10)
        assert state.main_loading is False
        await settle()
        # Only the neighbours are fetched
        assert day(10) not in fetcher.windows
        assert len(fetcher.windows) == 2

    @pytest.mark.asyncio
    async def test_neighbours_from_cache(
        self, orchestrator: FetchOrchestrator, fetcher: ControlledFetcher, cache: PersistentCache, day
    ) -> None:
        for d in (9, 10, 11):
            _seed(cache, day(d))
        orchestrator.start()
        await settle()

        assert fetcher.calls == []
        assert orchestrator.state.has_next and orchestrator.state.has_prev

    @pytest.mark.asyncio
    async def test_results_are_cached(
        self, orchestrator: FetchOrchestrator, fetcher: ControlledFetcher, cache: PersistentCache, day
    ) -> None:
        await _load_initial(orchestrator, fetcher, day)
        keys = set(cache.list_keys())
        assert keys == {day(d).cache_key(ACCOUNT) for d in (9, 10, 11)}

    @pytest.mark.asyncio
    async def test_cache_limit(
        self, fetcher: ControlledFetcher, cache: PersistentCache, periods: PeriodCalculator, day
    ) -> None:
        orchestrator = FetchOrchestrator(fetcher, cache, periods, ACCOUNT, initial_date="2024-03-10", cache_limit=2)
        await _load_initial(orchestrator, fetcher, day)
        assert len(cache.list_keys()) == 2

    @pytest.mark.asyncio
    async def test_unreadable_cache_entry_refetched(
        self, orchestrator: FetchOrchestrator, fetcher: ControlledFetcher, cache: PersistentCache, day
    ) -> None:
        cache.set(day(10).cache_key(ACCOUNT), ["garbage"])
        orchestrator.start()
        await settle()
        assert fetcher.windows == [day(10)]


class TestNavigation:
    """Tests for navigate()."""

    @pytest.mark.asyncio
    async def test_fast_path_has_no_loading_state(
        self, orchestrator: FetchOrchestrator, fetcher: ControlledFetcher, day
    ) -> None:
        """Verifies navigating into a ready prefetch slot is instantaneous.

        Business context:
        Prefetching exists so that the next click shows data without a
        spinner. No observer may ever see a loading state in between.

        Arrangement:
        Initial period displayed, both neighbours prefetched; a listener
        records every snapshot.

        Action:
        navigate("next").

        Assertion Strategy:
        Immediately after the call the next day is displayed; no
        recorded snapshot has main_loading; the old target becomes the
        prev slot straight from the cache.
        """
        await _load_initial(orchestrator, fetcher, day)
        states: list[DisplayState] = []
        orchestrator.add_listener(states.append)

        orchestrator.navigate("next")

        state = orchestrator.state
        assert state.displayed_window == day(11)
        assert state.target_window == day(11)
        assert state.main_loading is False
        assert states and not any(s.main_loading for s in states)
        assert state.has_prev
        await settle()
        assert fetcher.pending() == [day(12)]

    @pytest.mark.asyncio
    async def test_fast_path_prev(
        self, orchestrator: FetchOrchestrator, fetcher: ControlledFetcher, day
    ) -> None:
        await _load_initial(orchestrator, fetcher, day)
        orchestrator.navigate(Direction.PREV)
        assert orchestrator.state.displayed_window == day(9)
        assert orchestrator.state.has_next

    @pytest.mark.asyncio
    async def test_slow_path_fetches(
        self, orchestrator: FetchOrchestrator, fetcher: ControlledFetcher, day
    ) -> None:
        orchestrator.start()
        await settle()
        fetcher.resolve(day(10))
        await settle()
        # Prefetches still pending: the slot is not ready
        orchestrator.navigate("next")

        state = orchestrator.state
        assert state.target_window == day(11)
        assert state.displayed_window == day(10)
        assert state.main_loading is True

        fetcher.resolve_all()
        await settle()
        assert orchestrator.state.displayed_window == day(11)
        assert orchestrator.state.main_loading is False

    @pytest.mark.asyncio
    async def test_prefetch_for_target_displays(
        self, orchestrator: FetchOrchestrator, fetcher: ControlledFetcher, day
    ) -> None:
        """A prefetch that lands for the current target is shown before the main fetch returns."""
        orchestrator.start()
        await settle()
        fetcher.resolve(day(10))
        await settle()
        orchestrator.navigate("next")
        await settle()
        assert fetcher.pending().count(day(11)) == 2

        fetcher.resolve(day(11))  # oldest: the prefetch
        await settle()
        state = orchestrator.state
        assert state.displayed_window == day(11)
        assert state.main_loading is False

    @pytest.mark.asyncio
    async def test_navigate_during_main_fetch(
        self, orchestrator: FetchOrchestrator, fetcher: ControlledFetcher, cache: PersistentCache, day
    ) -> None:
        """Verifies a response for an abandoned target is cached, not shown.

        Business context:
        Users click through periods faster than the provider answers;
        the chart must only ever show the period the user is on.

        Arrangement:
        Main fetch for March 10 in flight.

        Action:
        Navigate to March 11, then resolve the March 10 fetch.

        Assertion Strategy:
        March 10 is cached but not displayed; a fetch for March 11
        starts and its result is displayed.
        """
        orchestrator.start()
        await settle()
        orchestrator.navigate("next")
        await settle()
        assert fetcher.pending() == [day(10)]

        fetcher.resolve(day(10))
        await settle()
        assert orchestrator.state.displayed_window is None
        assert day(10).cache_key(ACCOUNT) in cache.list_keys()
        assert fetcher.pending() == [day(11)]

        fetcher.resolve(day(11))
        await settle()
        assert orchestrator.state.displayed_window == day(11)

    @pytest.mark.asyncio
    async def test_navigate_back_to_cached(
        self, orchestrator: FetchOrchestrator, fetcher: ControlledFetcher, day
    ) -> None:
        """Navigating back while a stale fetch runs shows the cached period at once."""
        await _load_initial(orchestrator, fetcher, day)
        orchestrator.set_date("2024-03-15")
        await settle()
        assert fetcher.pending() == [day(15)]

        orchestrator.set_date("2024-03-10")
        assert orchestrator.state.displayed_window == day(10)
        assert orchestrator.state.main_loading is False

        fetcher.resolve(day(15))
        await settle()
        assert orchestrator.state.displayed_window == day(10)

    @pytest.mark.asyncio
    async def test_invalid_direction(self, orchestrator: FetchOrchestrator) -> None:
        with pytest.raises(ValueError):
            orchestrator.navigate("up")

    @pytest.mark.asyncio
    async def test_stale_prefetch_discarded(
        self, orchestrator: FetchOrchestrator, fetcher: ControlledFetcher, day
    ) -> None:
        """A prefetch that settles after its slot was cleared does not fill the slot."""
        orchestrator.start()
        await settle()
        fetcher.resolve(day(10))
        await settle()
        fetcher.resolve(day(11))
        await settle()

        orchestrator.navigate("next")  # fast path; prev prefetch (9th) still in flight
        await settle()
        assert day(9) in fetcher.pending()

        fetcher.resolve(day(9))
        await settle()
        prev_slot_window = orchestrator._slots[Direction.PREV].window
        assert prev_slot_window == day(10)
        assert orchestrator.state.has_prev


class TestGranularity:
    """Tests for set_granularity()."""

    @pytest.mark.asyncio
    async def test_switch_fetches_new_window(
        self, orchestrator: FetchOrchestrator, fetcher: ControlledFetcher, day
    ) -> None:
        await _load_initial(orchestrator, fetcher, day)
        orchestrator.set_granularity("week")

        state = orchestrator.state
        assert state.granularity is ViewGranularity.WEEK
        assert state.main_loading is True
        assert not state.has_next and not state.has_prev
        await settle()
        assert fetcher.pending() == [day(10, "week")]

    @pytest.mark.asyncio
    async def test_day_week_day_discards_week(
        self, orchestrator: FetchOrchestrator, fetcher: ControlledFetcher, cache: PersistentCache, day
    ) -> None:
        """Verifies a late week response never replaces the day view.

        Business context:
        Toggling granularity quickly must leave the chart on the view
        the user ended up on.

        Arrangement:
        Day view loaded with neighbours.

        Action:
        Switch to week, back to day, then resolve the week fetch.

        Assertion Strategy:
        The day window stays displayed throughout and never shows as
        loading; the week response is cached; day neighbours come back
        from the cache without new requests.
        """
        await _load_initial(orchestrator, fetcher, day)
        orchestrator.set_granularity(ViewGranularity.WEEK)
        await settle()
        orchestrator.set_granularity(ViewGranularity.DAY)

        state = orchestrator.state
        assert state.displayed_window == day(10)
        assert state.main_loading is False

        fetcher.resolve(day(10, "week"))
        await settle()
        state = orchestrator.state
        assert state.displayed_window == day(10)
        assert state.granularity is ViewGranularity.DAY
        assert day(10, "week").cache_key(ACCOUNT) in cache.list_keys()
        assert fetcher.pending() == []
        assert state.has_next and state.has_prev

    @pytest.mark.asyncio
    async def test_same_granularity_is_noop(
        self, orchestrator: FetchOrchestrator, fetcher: ControlledFetcher, day
    ) -> None:
        await _load_initial(orchestrator, fetcher, day)
        orchestrator.set_granularity("day")
        assert orchestrator.state.has_next

    @pytest.mark.asyncio
    async def test_unknown(self, orchestrator: FetchOrchestrator) -> None:
        with pytest.raises(UnknownGranularity):
            orchestrator.set_granularity("decade")


class TestErrors:
    """Tests for fetch failures, retry() and authentication loss."""

    @pytest.mark.asyncio
    async def test_network_error_keeps_series(
        self, orchestrator: FetchOrchestrator, fetcher: ControlledFetcher, day
    ) -> None:
        """Verifies a failed fetch reports an error without blanking the chart.

        Business context:
        A flaky connection should not erase what the user was looking
        at; they get an error and a retry button instead.

        Arrangement:
        Day view loaded; next prefetch fails, so navigation fetches.

        Action:
        navigate("next") and fail the main fetch.

        Assertion Strategy:
        Error set, previous series still displayed, no automatic
        refetch; retry() fetches again and success clears the error.
        """
        orchestrator.start()
        await settle()
        fetcher.resolve(day(10))
        await settle()
        fetcher.fail(day(11), NetworkError("prefetch down"))
        fetcher.resolve(day(9))
        await settle()
        assert not orchestrator.state.has_next

        orchestrator.navigate("next")
        await settle()
        fetcher.fail(day(11), NetworkError("HTTP 503"))
        await settle()

        state = orchestrator.state
        assert state.error == "HTTP 503"
        assert state.displayed_window == day(10)
        assert len(state.displayed_series) == 48
        assert state.main_loading is False
        assert fetcher.pending() == []

        orchestrator.retry()
        assert orchestrator.state.error is None
        await settle()
        assert fetcher.pending() == [day(11)]
        fetcher.resolve(day(11))
        await settle()
        assert orchestrator.state.displayed_window == day(11)
        assert orchestrator.state.error is None

    @pytest.mark.asyncio
    async def test_malformed_response_is_error(
        self, orchestrator: FetchOrchestrator, fetcher: ControlledFetcher, day
    ) -> None:
        orchestrator.start()
        await settle()
        fetcher.fail(day(10), MalformedResponseError("no readings"))
        await settle()
        assert orchestrator.state.error == "no readings"
        assert orchestrator.state.displayed_window is None

    @pytest.mark.asyncio
    async def test_error_for_abandoned_target_ignored(
        self, orchestrator: FetchOrchestrator, fetcher: ControlledFetcher, day
    ) -> None:
        orchestrator.start()
        await settle()
        orchestrator.navigate("next")
        fetcher.fail(day(10), NetworkError("HTTP 500"))
        await settle()
        assert orchestrator.state.error is None
        assert fetcher.pending() == [day(11)]

    @pytest.mark.asyncio
    async def test_new_target_clears_failure(
        self, orchestrator: FetchOrchestrator, fetcher: ControlledFetcher, day
    ) -> None:
        orchestrator.start()
        await settle()
        fetcher.fail(day(10), NetworkError("HTTP 500"))
        await settle()

        orchestrator.navigate("next")
        assert orchestrator.state.error is None
        await settle()
        assert fetcher.pending() == [day(11)]

    @pytest.mark.asyncio
    async def test_unexpected_error_not_refetched(
        self, cache: PersistentCache, periods: PeriodCalculator, day
    ) -> None:
        """Verifies a fetcher bug surfaces once instead of refetching forever.

        Business context:
        A broken endpoint URL or a bug in the fetch path raises errors
        outside the provider taxonomy. Refetching on every loop turn would
        hammer the provider and never show the user anything.

        Arrangement:
        Fetcher that always raises RuntimeError.

        Action:
        start(), let the loop run for many turns, then retry().

        Assertion Strategy:
        Exactly one call before retry, the error is visible in state and
        nothing is loading; retry() makes exactly one more call.
        """
        calls: list[PeriodWindow] = []

        async def broken(window: PeriodWindow) -> list:
            calls.append(window)
            raise RuntimeError("boom")

        orchestrator = FetchOrchestrator(broken, cache, periods, ACCOUNT, initial_date="2024-03-10")
        orchestrator.start()
        for _ in range(200):
            await asyncio.sleep(0)

        assert calls == [day(10)]
        state = orchestrator.state
        assert state.error == "Unexpected error: RuntimeError: boom"
        assert state.main_loading is False
        assert state.displayed_window is None

        orchestrator.retry()
        for _ in range(200):
            await asyncio.sleep(0)
        assert calls == [day(10), day(10)]

    @pytest.mark.asyncio
    async def test_unexpected_prefetch_error_leaves_slot_empty(
        self, orchestrator: FetchOrchestrator, fetcher: ControlledFetcher, day
    ) -> None:
        orchestrator.start()
        await settle()
        fetcher.resolve(day(10))
        await settle()
        fetcher.fail(day(11), RuntimeError("boom"))
        fetcher.resolve(day(9))
        await settle()

        state = orchestrator.state
        assert state.next_loading is False
        assert state.has_next is False
        assert state.has_prev is True
        assert state.error is None
        assert fetcher.pending() == []

    @pytest.mark.asyncio
    async def test_cancelled_main_fetch_does_not_refetch(
        self, orchestrator: FetchOrchestrator, fetcher: ControlledFetcher
    ) -> None:
        orchestrator.start()
        await settle()
        task = orchestrator._main_task
        assert task is not None
        task.cancel()
        await settle()

        assert task.cancelled()
        assert len(fetcher.calls) == 1
        assert orchestrator._main_task is None

    @pytest.mark.asyncio
    async def test_auth_error_halts(
        self, orchestrator: FetchOrchestrator, fetcher: ControlledFetcher, day
    ) -> None:
        """Verifies authentication loss stops all automatic fetching.

        Business context:
        Once the refresh token is rejected, every further request would
        fail; the dashboard must show the login prompt instead of
        hammering the provider.

        Arrangement:
        Day view loaded; one prefetch fails with AuthError.

        Action:
        Navigate next and prev.

        Assertion Strategy:
        unauthenticated is set, the series is kept, slots are cleared
        and no new fetch starts until resume().
        """
        orchestrator.start()
        await settle()
        fetcher.resolve(day(10))
        await settle()
        fetcher.fail(day(11), AuthError("Token refresh failed"))
        await settle()

        state = orchestrator.state
        assert state.unauthenticated is True
        assert state.displayed_window == day(10)
        assert not state.has_next and not state.has_prev

        calls_before = len(fetcher.calls)
        orchestrator.navigate("next")
        orchestrator.navigate("prev")
        orchestrator.navigate("prev")
        await settle()
        assert len(fetcher.calls) == calls_before

        fetcher.resolve(day(9))  # in-flight prefetch settles unobserved
        await settle()
        orchestrator.resume()
        assert orchestrator.state.unauthenticated is False
        await settle()
        assert orchestrator.state.target_window == day(9)
        assert fetcher.pending() == [day(9)]
        fetcher.resolve(day(9))
        await settle()
        assert orchestrator.state.displayed_window == day(9)

    @pytest.mark.asyncio
    async def test_auth_error_on_main_fetch(
        self, orchestrator: FetchOrchestrator, fetcher: ControlledFetcher, day
    ) -> None:
        orchestrator.start()
        await settle()
        fetcher.fail(day(10), AuthError("Not logged in"))
        await settle()
        assert orchestrator.state.unauthenticated is True
        assert orchestrator.state.main_loading is False

        orchestrator.resume()
        await settle()
        assert fetcher.pending() == [day(10)]


class TestLifecycle:
    """Tests for listeners, close() and the wait helpers."""

    @pytest.mark.asyncio
    async def test_close_ignores_results(
        self, orchestrator: FetchOrchestrator, fetcher: ControlledFetcher, day
    ) -> None:
        states: list[DisplayState] = []
        orchestrator.add_listener(states.append)
        orchestrator.start()
        await settle()
        orchestrator.close()
        count = len(states)

        fetcher.resolve(day(10))
        await settle()
        assert orchestrator.state.displayed_window is None
        assert len(states) == count
        assert fetcher.pending() == []

    @pytest.mark.asyncio
    async def test_setters_after_close_do_nothing(
        self, orchestrator: FetchOrchestrator, fetcher: ControlledFetcher
    ) -> None:
        orchestrator.close()
        orchestrator.start()
        orchestrator.navigate("next")
        await settle()
        assert fetcher.calls == []

    @pytest.mark.asyncio
    async def test_remove_listener(self, orchestrator: FetchOrchestrator, fetcher: ControlledFetcher) -> None:
        states: list[DisplayState] = []
        remove = orchestrator.add_listener(states.append)
        remove()
        remove()
        orchestrator.start()
        assert states == []

    @pytest.mark.asyncio
    async def test_failing_listener_isolated(
        self, orchestrator: FetchOrchestrator, fetcher: ControlledFetcher, day
    ) -> None:
        def broken(state: DisplayState) -> None:
            raise RuntimeError("boom")

        states: list[DisplayState] = []
        orchestrator.add_listener(broken)
        orchestrator.add_listener(states.append)
        orchestrator.start()
        await settle()
        fetcher.resolve(day(10))
        await settle()
        assert states[-1].displayed_window == day(10)

    @pytest.mark.asyncio
    async def test_wait_for_display(
        self, orchestrator: FetchOrchestrator, fetcher: ControlledFetcher, day
    ) -> None:
        orchestrator.start()
        waiter = asyncio.create_task(orchestrator.wait_for_display())
        await settle()
        assert not waiter.done()
        fetcher.resolve(day(10))
        await asyncio.wait_for(waiter, timeout=1)
        assert orchestrator.state.displayed_window == day(10)

    @pytest.mark.asyncio
    async def test_wait_idle(self, orchestrator: FetchOrchestrator, fetcher: ControlledFetcher, day) -> None:
        orchestrator.start()
        waiter = asyncio.create_task(orchestrator.wait_idle())
        await settle()
        fetcher.resolve(day(10))
        await settle()
        assert not waiter.done()
        fetcher.resolve_all()
        await asyncio.wait_for(waiter, timeout=1)
        assert orchestrator.state.has_next

    def test_state_to_dict(self, orchestrator: FetchOrchestrator) -> None:
        data = orchestrator.state.to_dict()
        assert data["target_date"] == "2024-03-10"
        assert data["granularity"] == "day"
        assert data["target_window"]["from"] == "2024-03-08T15:00:00Z"
        assert data["displayed_window"] is None
        assert data["reading_count"] == 0
