"""Settlement engine: owns the simulation state and runs the tick pipeline.

Per tick: tick generator -> matching pass -> cost accounting -> snapshot.
A tick runs under a lock and publishes a new frozen ``Snapshot`` by
swapping a single reference, so readers only ever see settled ticks.

Two tick drivers share the same ``advance_tick``:
- ``run_periodic_ticks``: fixed-interval asyncio loop
- ``TickScheduler``: lazy, advances on read at most once per interval
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections import deque
from collections.abc import Callable
from datetime import datetime

import numpy as np
from numpy.random import Generator

from microgrid.domain.errors import AccountingError
from microgrid.domain.models import (
    EventType,
    HouseholdView,
    ResetMode,
    SettlementConfig,
    SimulationState,
    Snapshot,
    normalize_household_id,
)
from microgrid.generators.tick import TickContext, TickGenerator
from microgrid.market.matching import MatchingEngine, MatchingResult
from microgrid.metrics.economics import EconomicsAccumulator, EconomicsSummary
from microgrid.metrics.snapshot import SnapshotBuilder

logger = logging.getLogger(__name__)

MAX_RECORDED_ERRORS = 100


class SettlementEngine:
    """Single owner of households, clock and event timers.

    The transport layer may trigger ticks, events and resets and read
    snapshots; it never touches the state directly.

    Example:
        ```python
        engine = SettlementEngine(SettlementConfig(seed=42))
        engine.trigger_outage(30)
        snapshot = engine.advance_tick()
        home = engine.get_household("h7")
        ```
    """

    def __init__(
        self,
        config: SettlementConfig | None = None,
        rng: Generator | None = None,
    ) -> None:
        """Initialize the engine and its households.

        Args:
            config: Validated engine configuration. Defaults to the
                reference tariff.
            rng: Random generator; defaults to one seeded from the config.
        """
        self.config = config if config is not None else SettlementConfig()
        self._rng: Generator = rng if rng is not None else np.random.default_rng(self.config.seed)
        self._lock = threading.Lock()

        self._tick_generator = TickGenerator(self.config, rng=self._rng)
        self._matcher = MatchingEngine(self.config)
        self._economics = EconomicsAccumulator(self.config)
        self._snapshots = SnapshotBuilder()

        start = self._start_time()
        self._state = SimulationState(
            households=self._tick_generator.profiles.initial_households(
                self.config.household_count
            ),
            clock=start,
            start_time=start,
        )

        self.accounting_errors: deque[AccountingError] = deque(maxlen=MAX_RECORDED_ERRORS)
        self.accounting_error_count = 0
        self.last_matching: MatchingResult | None = None
        self.last_economics: EconomicsSummary | None = None
        self.last_tick: TickContext | None = None

        self._snapshot = self._snapshots.build(self._state)

    def _start_time(self) -> datetime:
        if self.config.start_time is not None:
            return self.config.start_time
        return datetime.now().replace(second=0, microsecond=0)

    def _matched_kwh(self) -> float:
        return self.last_matching.total_matched_kwh if self.last_matching else 0.0

    def _publish(self) -> Snapshot:
        snapshot = self._snapshots.build(self._state, self._matched_kwh())
        self._snapshot = snapshot
        return snapshot

    def _record_accounting_error(self, error: AccountingError) -> None:
        error.tick_index = self._state.tick_index
        error.timestamp = self._state.clock
        self.accounting_errors.append(error)
        self.accounting_error_count += 1

    @property
    def state(self) -> SimulationState:
        """Live simulation state (read it, do not mutate it)."""
        return self._state

    @property
    def tick_index(self) -> int:
        """Number of ticks run since start or the last reset."""
        return self._snapshot.tick_index

    def advance_tick(self) -> Snapshot:
        """Run one full tick and publish its snapshot.

        Returns:
            The newly published Snapshot.
        """
        with self._lock:
            self.last_tick = self._tick_generator.advance(self._state)
            households = self._state.households

            matching = self._matcher.settle(households)
            if matching.accounting_error is not None:
                self._record_accounting_error(matching.accounting_error)
            self.last_matching = matching

            self.last_economics = self._economics.accumulate(households)
            return self._publish()

    def get_snapshot(self) -> Snapshot:
        """Most recently settled snapshot."""
        return self._snapshot

    def get_household(self, household_id: str | int) -> HouseholdView | None:
        """Look up a household in the current snapshot.

        Args:
            household_id: Any spelling of the id (``H007``, ``h7``, ``7``).

        Returns:
            HouseholdView, or None if the id matches no household.
        """
        canonical = normalize_household_id(household_id)
        if canonical is None:
            return None
        return self._snapshot.household(canonical)

    def trigger_event(self, event_type: EventType | str, duration_minutes: int) -> None:
        """Start a timed event.

        Args:
            event_type: Event to start.
            duration_minutes: Simulated minutes, positive integer.

        Raises:
            ValueError: On an unknown event type or a non-positive duration.
        """
        event = EventType(event_type)
        with self._lock:
            self._state.events[event].start(duration_minutes)
            if event == EventType.OUTAGE:
                logger.info("Grid outage simulation activated for %d minutes", duration_minutes)
            else:
                logger.info("%s event activated for %d minutes", event.value, duration_minutes)
            self._publish()

    def trigger_outage(self, duration_minutes: int) -> None:
        """Take the grid down for ``duration_minutes`` simulated minutes."""
        self.trigger_event(EventType.OUTAGE, duration_minutes)

    def reset(self, mode: ResetMode | str | None = None) -> Snapshot:
        """Reinitialize the simulation.

        Args:
            mode: ``clock`` rewinds the clock only, ``daily`` also zeroes
                every day-to-date accumulator, ``full`` rebuilds the
                households and clears events. Defaults to the configured
                reset mode.

        Returns:
            Snapshot after the reset.
        """
        mode = ResetMode(mode) if mode is not None else self.config.reset_mode
        with self._lock:
            start = self._start_time()
            self._state.clock = start
            self._state.start_time = start
            self._state.tick_index = 0

            if mode == ResetMode.DAILY:
                for household in self._state.households:
                    household.reset_today()
            elif mode == ResetMode.FULL:
                self._state.households = self._tick_generator.profiles.initial_households(
                    self.config.household_count
                )
                for timer in self._state.events.values():
                    timer.clear()
                self.accounting_errors.clear()
                self.accounting_error_count = 0
                self.last_matching = None
                self.last_economics = None
                self.last_tick = None

            logger.info("Simulation reset (%s)", mode.value)
            return self._publish()


class TickScheduler:
    """Lazy tick driver: advance on read, at most once per interval.

    Concurrent reads arriving within the same interval share one tick.
    """

    def __init__(
        self,
        engine: SettlementEngine,
        interval_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the scheduler.

        Args:
            engine: Engine to drive.
            interval_seconds: Minimum wall-clock time between ticks.
            clock: Monotonic time source in seconds.
        """
        if interval_seconds < 0:
            raise ValueError(f"interval_seconds must be >= 0, got {interval_seconds}")
        self.engine = engine
        self.interval_seconds = interval_seconds
        self._clock = clock
        self._last_tick_at: float | None = None
        self._lock = threading.Lock()

    def maybe_advance(self) -> bool:
        """Advance the engine if the interval has elapsed.

        Returns:
            True if a tick was run by this call.
        """
        with self._lock:
            now = self._clock()
            if (
                self._last_tick_at is not None
                and now - self._last_tick_at < self.interval_seconds
            ):
                return False
            self._last_tick_at = now
            self.engine.advance_tick()
            return True


async def run_periodic_ticks(
    engine: SettlementEngine,
    interval_seconds: float,
    max_ticks: int | None = None,
) -> None:
    """Fixed-interval tick driver.

    A failing tick is logged and skipped; readers keep getting the last
    published snapshot and the next interval ticks again.

    Args:
        engine: Engine to drive.
        interval_seconds: Wall-clock seconds between ticks.
        max_ticks: Stop after this many tick attempts (None runs until
            cancelled).
    """
    ticks = 0
    while max_ticks is None or ticks < max_ticks:
        await asyncio.sleep(interval_seconds)
        try:
            engine.advance_tick()
        except Exception:
            logger.exception("Tick %d failed, timer keeps running", engine.tick_index + 1)
        ticks += 1
