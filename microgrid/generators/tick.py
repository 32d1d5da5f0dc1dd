"""Tick generator: clock, event timers and per-household energy balance.

One call to ``TickGenerator.advance`` moves simulated time forward by one
tick and rewrites every household's physical quantities in place:
production, load, SOC, the peer share/receive offer and the residual
grid flow.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta

import numpy as np
from numpy.random import Generator

from microgrid.battery.physics import BatteryModel
from microgrid.domain.models import (
    EventType,
    Household,
    SettlementConfig,
    SimulationState,
    SplitPolicy,
)
from microgrid.generators.profiles import ProfileGenerator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EnergySplit:
    """Where a household's production-minus-load goes this tick.

    Attributes:
        share_kw: Surplus offered to neighbors.
        receive_kw: Deficit requested from neighbors.
        grid_export_kw: Surplus left over for the grid.
        grid_import_kw: Deficit left over for the grid.
        curtailed_kw: Surplus with nowhere to go (outage only).
        unserved_kw: Deficit with no supply (outage only).
    """

    share_kw: float = 0.0
    receive_kw: float = 0.0
    grid_export_kw: float = 0.0
    grid_import_kw: float = 0.0
    curtailed_kw: float = 0.0
    unserved_kw: float = 0.0


def split_energy_balance(
    balance_kw: float,
    policy: SplitPolicy,
    outage: bool,
) -> EnergySplit:
    """Split an energy balance between neighbors and the grid.

    Args:
        balance_kw: Production minus load (kW).
        policy: Fractions and caps in force.
        outage: Whether the grid is down. During an outage nothing goes to
            or comes from the grid; the part beyond the share/receive cap is
            reported as curtailed or unserved.

    Returns:
        EnergySplit with at most one of share/receive nonzero.
    """
    if balance_kw > 0:
        share = min(balance_kw * policy.share_fraction, policy.share_cap_kw)
        remainder = max(0.0, balance_kw - share)
        if outage:
            return EnergySplit(share_kw=share, curtailed_kw=remainder)
        return EnergySplit(share_kw=share, grid_export_kw=remainder)

    if balance_kw < 0:
        deficit = -balance_kw
        receive = min(deficit * policy.receive_fraction, policy.receive_cap_kw)
        remainder = max(0.0, deficit - receive)
        if outage:
            return EnergySplit(receive_kw=receive, unserved_kw=remainder)
        return EnergySplit(receive_kw=receive, grid_import_kw=remainder)

    return EnergySplit()


@dataclass
class TickContext:
    """What happened to the clock and events during one tick.

    Attributes:
        tick_index: Index of the tick just generated (1-based).
        timestamp: Simulated time after the step.
        outage_active: Whether the outage split was used for this tick.
        active_events: Events applied to this tick's profiles.
        ended_events: Events whose timer ran out during this tick.
        rolled_over: Whether the clock crossed midnight and the day-to-date
            accumulators were reset.
    """

    tick_index: int
    timestamp: datetime
    outage_active: bool
    active_events: list[EventType] = field(default_factory=list)
    ended_events: list[EventType] = field(default_factory=list)
    rolled_over: bool = False


class TickGenerator:
    """Advances the simulation clock and regenerates household physics."""

    def __init__(
        self,
        config: SettlementConfig,
        rng: Generator | None = None,
    ) -> None:
        """Initialize the tick generator.

        Args:
            config: Engine configuration.
            rng: Random generator; defaults to one seeded from the config.
        """
        self.config = config
        self._rng: Generator = rng if rng is not None else np.random.default_rng(config.seed)
        self.profiles = ProfileGenerator(
            peak_production_kw=config.peak_production_kw,
            production_noise_kw=config.production_noise_kw,
            rng=self._rng,
        )
        self.battery = BatteryModel.from_config(config)

    def _meter(self, value: float) -> float:
        """Quantize a rate to metering resolution."""
        return round(value, self.config.metering_decimals)

    def _update_household(
        self,
        household: Household,
        timestamp: datetime,
        active_events: list[EventType],
        outage: bool,
    ) -> None:
        production = self.profiles.production_kw(timestamp, active_events)
        load = self.profiles.load_kw(timestamp, active_events)

        split = split_energy_balance(
            production - load,
            self.config.split_policy(outage),
            outage,
        )

        household.production_kw = self._meter(production)
        household.load_kw = self._meter(load)
        household.battery_soc_pct = self.battery.step(
            household.battery_soc_pct, production, load
        )
        household.share_kw = self._meter(split.share_kw)
        household.receive_kw = self._meter(split.receive_kw)
        household.offered_net_kw = self._meter(split.share_kw - split.receive_kw)
        household.grid_import_kw = self._meter(split.grid_import_kw)
        household.grid_export_kw = self._meter(split.grid_export_kw)
        household.curtailed_kw = self._meter(split.curtailed_kw)
        household.unserved_kw = self._meter(split.unserved_kw)

    def advance(self, state: SimulationState) -> TickContext:
        """Generate one tick in place.

        The split for this tick uses the outage flag as it stands when the
        tick starts; event timers count down afterwards, so an event of
        ``n * tick_minutes`` covers exactly ``n`` ticks.

        Args:
            state: Simulation state to mutate.

        Returns:
            TickContext describing the step.
        """
        previous = state.clock
        state.clock = previous + timedelta(minutes=self.config.tick_minutes)
        state.tick_index += 1

        rolled_over = self.config.daily_rollover and state.clock.date() != previous.date()
        if rolled_over:
            for household in state.households:
                household.reset_today()
            logger.info("Day rollover at %s, day-to-date totals reset", state.clock.isoformat())

        active_events = [t for t, timer in state.events.items() if timer.active]
        outage = state.outage.active

        for household in state.households:
            self._update_household(household, state.clock, active_events, outage)

        ended = []
        for event_type, timer in state.events.items():
            if timer.elapse(self.config.tick_minutes):
                ended.append(event_type)
                if event_type == EventType.OUTAGE:
                    logger.info("Grid outage ended - normal operations resumed")
                else:
                    logger.info("%s event ended", event_type.value)

        return TickContext(
            tick_index=state.tick_index,
            timestamp=state.clock,
            outage_active=outage,
            active_events=active_events,
            ended_events=ended,
            rolled_over=rolled_over,
        )
