"""
Fetch orchestration for EnergyForecast.

PURPOSE: Keep the displayed period in sync with user navigation, serving
from the cache when possible and prefetching the neighbouring periods so
the next click is instant.
AI CONTEXT: This is the dashboard controller. The web layer calls the
setters (navigate, set_granularity, retry) and renders state.

STATE:
    target       = (target_date, granularity)   what the user asked for
    displayed    = (window, series)             what is rendered
    main fetch   = at most one in flight
    slots        = next/prev PrefetchSlot, at most one fetch each

RECONCILIATION (runs after every setter and every settled fetch):
1. displayed == target: prefetch neighbours (only when no main fetch runs)
2. cache hit for target: display it synchronously
3. main fetch in flight: wait; its completion reconciles again
4. target failed last time: wait for retry() or a new target
5. otherwise start the main fetch

A settled main fetch is displayed only if its window still equals the
target window; otherwise it is discarded. Results are never cancelled,
only ignored, and close() stops every later continuation.

ERRORS:
- NetworkError/MalformedResponseError (main): error set, series kept
- Other exceptions (main): logged with traceback, handled like a network error
  so the window is not refetched until retry()
- Other errors (prefetch): logged, slot left empty
- AuthError (any fetch): halt, clear slots, unauthenticated until resume()
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import date, datetime
from typing import TYPE_CHECKING, Any

from .config import Config
from .errors import AuthError, InvalidDate, MalformedResponseError, NetworkError
from .models import Direction, PeriodWindow, Reading, ViewGranularity

if TYPE_CHECKING:
    from .cache import PersistentCache
    from .periods import PeriodCalculator

__all__ = ["DisplayState", "FetchOrchestrator", "Fetcher", "PrefetchSlot"]

logger = logging.getLogger(__name__)

Fetcher = Callable[[PeriodWindow], Awaitable[list[Reading]]]
Listener = Callable[["DisplayState"], None]


@dataclass
class PrefetchSlot:
    """
    Speculative result for the period adjacent to the displayed one.

    A slot bound to a window (window is not None) is filled, loading, or
    failed; it is not fetched again until cleared.
    """

    direction: Direction
    window: PeriodWindow | None = None
    data: list[Reading] | None = None
    loading: bool = False

    def clear(self) -> None:
        self.window = None
        self.data = None
        self.loading = False

    def is_ready_for(self, window: PeriodWindow) -> bool:
        return self.window == window and self.data is not None and not self.loading


@dataclass(frozen=True)
class DisplayState:
    """Immutable snapshot of the orchestrator handed to listeners and views."""

    target_date: datetime
    granularity: ViewGranularity
    target_window: PeriodWindow
    displayed_window: PeriodWindow | None
    displayed_series: tuple[Reading, ...]
    main_loading: bool
    next_loading: bool
    prev_loading: bool
    has_next: bool
    has_prev: bool
    error: str | None
    unauthenticated: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "target_date": self.target_date.date().isoformat(),
            "granularity": self.granularity.value,
            "target_window": self.target_window.to_dict(),
            "displayed_window": self.displayed_window.to_dict() if self.displayed_window else None,
            "reading_count": len(self.displayed_series),
            "main_loading": self.main_loading,
            "next_loading": self.next_loading,
            "prev_loading": self.prev_loading,
            "has_next": self.has_next,
            "has_prev": self.has_prev,
            "error": self.error,
            "unauthenticated": self.unauthenticated,
        }


class FetchOrchestrator:
    """
    Pull-based state machine coordinating display, cache and prefetch.

    THREAD SAFETY:
    Single event loop only. Setters are synchronous and must be called
    from within the running loop whenever they may start a fetch.
    """

    def __init__(
        self,
        fetcher: Fetcher,
        cache: PersistentCache,
        periods: PeriodCalculator,
        account_number: str,
        initial_date: date | datetime | str | None = None,
        granularity: ViewGranularity | str = ViewGranularity.DAY,
        cache_limit: int | None = None,
    ) -> None:
        """
        Initialize orchestrator. Nothing is fetched until start().

        Args:
            fetcher: Coroutine function returning the readings of a window.
                Raises AuthError, NetworkError or MalformedResponseError.
            cache: Response cache, checked before every fetch.
            periods: Window calculator (also supplies the civil zone).
            account_number: Account the cache keys are scoped to.
            initial_date: First target date. Default: today (civil zone).
            granularity: First view granularity.
            cache_limit: Usage entries kept in the cache.
                Default: Config.CACHE_MAX_WINDOWS

        Raises:
            InvalidDate: If initial_date is not a date.
            UnknownGranularity: If granularity is invalid.
        """
        self._fetcher = fetcher
        self.cache = cache
        self.periods = periods
        self.account_number = account_number
        self.cache_limit = Config.CACHE_MAX_WINDOWS if cache_limit is None else cache_limit

        converter = periods.converter
        reference = converter.now() if initial_date is None else converter.coerce_local(initial_date)
        self._target_date = converter.start_of_day(reference)
        self._granularity = ViewGranularity.parse(granularity)

        self._displayed_window: PeriodWindow | None = None
        self._displayed_series: tuple[Reading, ...] = ()
        self._main_task: asyncio.Task[None] | None = None
        self._failed_window: PeriodWindow | None = None
        self._error: str | None = None
        self._halted = False
        self._unauthenticated = False
        self._alive = True
        self._slots = {d: PrefetchSlot(direction=d) for d in Direction}
        self._prefetch_tasks: dict[Direction, asyncio.Task[None]] = {}
        self._listeners: list[Listener] = []

    # =========================================================================
    # OBSERVATION
    # =========================================================================

    @property
    def target_window(self) -> PeriodWindow:
        return self.periods.window(self._target_date, self._granularity)

    def _adjacent_window(self, direction: Direction) -> PeriodWindow:
        reference = self.periods.step(self._target_date, self._granularity, direction)
        return self.periods.window(reference, self._granularity)

    @property
    def state(self) -> DisplayState:
        """Current snapshot."""
        target = self.target_window
        next_slot = self._slots[Direction.NEXT]
        prev_slot = self._slots[Direction.PREV]
        return DisplayState(
            target_date=self._target_date,
            granularity=self._granularity,
            target_window=target,
            displayed_window=self._displayed_window,
            displayed_series=self._displayed_series,
            main_loading=self._main_task is not None and self._displayed_window != target,
            next_loading=next_slot.loading,
            prev_loading=prev_slot.loading,
            has_next=next_slot.is_ready_for(self._adjacent_window(Direction.NEXT)),
            has_prev=prev_slot.is_ready_for(self._adjacent_window(Direction.PREV)),
            error=self._error,
            unauthenticated=self._unauthenticated,
        )

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        """
        Register a callback receiving a DisplayState after every change.

        Returns:
            Function that unregisters the listener.
        """
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _notify(self) -> None:
        if not self._alive or not self._listeners:
            return
        snapshot = self.state
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Display listener failed")

    # =========================================================================
    # SETTERS
    # =========================================================================

    def start(self) -> None:
        """Run the first reconciliation."""
        logger.info(
            f"Orchestrator started: {self._granularity.value} view of {self._target_date.date()}"
        )
        self.reconcile()

    def navigate(self, direction: Direction | str) -> None:
        """
        Move the target one granularity unit forward or back.

        Fast path: when the slot for that direction holds data for exactly
        the new target window, it is displayed in the same step, with no
        loading state in between. Otherwise the target moves and
        reconciliation fetches it.

        Raises:
            ValueError: If direction is not "next"/"prev".
        """
        d = Direction.parse(direction)
        new_date = self.periods.step(self._target_date, self._granularity, d)
        new_window = self.periods.window(new_date, self._granularity)
        slot = self._slots[d]
        self._failed_window = None

        if not self._halted and slot.is_ready_for(new_window):
            series = slot.data or []
            self._target_date = new_date
            self._display(new_window, series)
            for s in self._slots.values():
                s.clear()
            logger.debug(f"Promoted {d.value} prefetch slot ({len(series)} readings)")
            self._notify()
            self.reconcile()
            return

        self._target_date = new_date
        self.reconcile()

    def set_granularity(self, granularity: ViewGranularity | str) -> None:
        """
        Switch the view granularity, invalidating both prefetch slots.

        Raises:
            UnknownGranularity: If granularity is invalid.
        """
        g = ViewGranularity.parse(granularity)
        if g is not self._granularity:
            self._granularity = g
            self._failed_window = None
            for slot in self._slots.values():
                slot.clear()
            self._notify()
        self.reconcile()

    def set_date(self, reference_date: date | datetime | str) -> None:
        """
        Jump the target to an arbitrary date.

        Raises:
            InvalidDate: If reference_date is not a date.
        """
        converter = self.periods.converter
        self._target_date = converter.start_of_day(converter.coerce_local(reference_date))
        self._failed_window = None
        self.reconcile()

    def retry(self) -> None:
        """Clear the error and refetch whatever failed."""
        self._error = None
        self._failed_window = None
        for slot in self._slots.values():
            if slot.data is None and not slot.loading:
                slot.clear()
        self._notify()
        self.reconcile()

    def resume(self) -> None:
        """Leave the unauthenticated state after a successful re-login."""
        self._halted = False
        self._unauthenticated = False
        self._error = None
        self._failed_window = None
        logger.info("Fetching resumed")
        self._notify()
        self.reconcile()

    def close(self) -> None:
        """Stop applying results. In-flight requests finish unobserved."""
        self._alive = False
        self._listeners.clear()
        logger.debug("Orchestrator closed")

    # =========================================================================
    # RECONCILIATION
    # =========================================================================

    def reconcile(self) -> None:
        """Bring the displayed window towards the target window."""
        if not self._alive or self._halted:
            return
        target = self.target_window

        if target == self._displayed_window:
            self._schedule_prefetch()
            return

        cached = self._cached_readings(target)
        if cached is not None:
            logger.debug(f"Cache hit for {target.granularity.value} window {target.start.date()}")
            self._display(target, cached)
            self._notify()
            self._schedule_prefetch()
            return

        if self._main_task is not None:
            # Settling fetch reconciles again
            self._notify()
            return

        if target == self._failed_window:
            return

        self._error = None
        self._main_task = asyncio.get_running_loop().create_task(self._run_main_fetch(target))
        self._notify()

    def _display(self, window: PeriodWindow, readings: list[Reading]) -> None:
        self._displayed_window = window
        self._displayed_series = tuple(readings)
        self._failed_window = None
        self._error = None

    def _record_failure(self, window: PeriodWindow, message: str) -> None:
        if window == self.target_window:
            self._failed_window = window
            self._error = message

    async def _run_main_fetch(self, window: PeriodWindow) -> None:
        interrupted = False
        try:
            try:
                readings = await self._fetcher(window)
            except AuthError as e:
                if self._alive:
                    self._halt(e)
                return
            except (NetworkError, MalformedResponseError) as e:
                if self._alive:
                    logger.warning(f"Fetch for {window.granularity.value} {window.start.date()} failed: {e}")
                    self._record_failure(window, str(e))
                return
            except Exception as e:
                if self._alive:
                    logger.exception(f"Unexpected error fetching {window.granularity.value} {window.start.date()}")
                    self._record_failure(window, f"Unexpected error: {type(e).__name__}: {e}")
                return
            except BaseException:
                # Cancelled or loop shutting down: no follow-up fetch
                interrupted = True
                raise

            if not self._alive:
                return
            self._store(window, readings)
            if window == self.target_window:
                self._display(window, readings)
            else:
                logger.debug(f"Discarding stale response for {window.granularity.value} {window.start.date()}")
        finally:
            self._main_task = None
            if self._alive and not interrupted:
                self._notify()
                self.reconcile()

    # =========================================================================
    # PREFETCH
    # =========================================================================

    def _schedule_prefetch(self) -> None:
        """Fill unbound slots from the cache or by fetching."""
        if not self._alive or self._halted or self._main_task is not None:
            return
        if self._displayed_window != self.target_window:
            return

        changed = False
        for direction in Direction:
            slot = self._slots[direction]
            expected = self._adjacent_window(direction)
            if slot.window == expected or direction in self._prefetch_tasks:
                continue

            slot.window = expected
            slot.data = self._cached_readings(expected)
            slot.loading = slot.data is None
            changed = True
            if slot.loading:
                task = asyncio.get_running_loop().create_task(self._run_prefetch(direction, expected))
                self._prefetch_tasks[direction] = task
        if changed:
            self._notify()

    async def _run_prefetch(self, direction: Direction, window: PeriodWindow) -> None:
        readings: list[Reading] | None = None
        try:
            readings = await self._fetcher(window)
        except AuthError as e:
            if self._alive and not self._halted:
                self._halt(e)
            return
        except (NetworkError, MalformedResponseError) as e:
            logger.info(f"Prefetch {direction.value} failed, slot left empty: {e}")
        except Exception:
            logger.exception(f"Unexpected error prefetching {direction.value}, slot left empty")
        finally:
            self._prefetch_tasks.pop(direction, None)

        if not self._alive or self._halted:
            return
        if readings is not None:
            self._store(window, readings)
        slot = self._slots[direction]
        if slot.window == window:
            slot.data = readings
            slot.loading = False
        else:
            logger.debug(f"Discarding stale {direction.value} prefetch")
        self._notify()
        self.reconcile()

    def _halt(self, error: AuthError) -> None:
        logger.warning(f"Authentication lost, automatic fetching halted: {error}")
        self._halted = True
        self._unauthenticated = True
        self._error = str(error)
        for slot in self._slots.values():
            slot.clear()
        self._notify()

    # =========================================================================
    # CACHE
    # =========================================================================

    def _cache_key(self, window: PeriodWindow) -> str:
        return window.cache_key(self.account_number)

    def _cached_readings(self, window: PeriodWindow) -> list[Reading] | None:
        key = self._cache_key(window)
        data = self.cache.get(key)
        if data is None:
            return None
        try:
            return [Reading.from_dict(item) for item in data]
        except (KeyError, TypeError, InvalidDate) as e:
            logger.warning(f"Dropping unreadable cache entry {key}: {e}")
            self.cache.remove(key)
            return None

    def _store(self, window: PeriodWindow, readings: list[Reading]) -> None:
        self.cache.set(self._cache_key(window), [r.to_dict() for r in readings])
        self.cache.prune(Config.CACHE_KEY_PREFIX, self.cache_limit)

    # =========================================================================
    # AWAITING
    # =========================================================================

    async def wait_for_display(self) -> None:
        """Wait until no main fetch is in flight (follow-up fetches included)."""
        while self._main_task is not None:
            await asyncio.wait([self._main_task])

    async def wait_idle(self) -> None:
        """Wait until neither main nor prefetch fetches are in flight."""
        while True:
            pending = [t for t in (self._main_task, *self._prefetch_tasks.values()) if t is not None]
            if not pending:
                return
            await asyncio.wait(pending)
