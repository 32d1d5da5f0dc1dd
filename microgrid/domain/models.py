"""Core domain models for the microgrid settlement engine.

Configuration and published snapshots use Pydantic with strict validation.
Per-tick household state is a plain mutable dataclass owned by the engine.
Units:
- Power: kW (rates for the current tick)
- Energy: kWh (one tick's rate is booked directly as kWh)
- Money: USD
- Battery: state of charge in percent
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, model_validator

# =============================================================================
# Type Aliases with Validation
# =============================================================================

PowerKW = Annotated[float, Field(ge=0, description="Power in kilowatts (kW)")]
EnergyKWh = Annotated[float, Field(ge=0, description="Energy in kilowatt-hours")]
RateUSDPerKWh = Annotated[float, Field(ge=0, description="Price in $/kWh")]
Fraction = Annotated[float, Field(gt=0, le=1, description="Fraction (0-1]")]
Percent = Annotated[float, Field(ge=0, le=100, description="Percent (0-100)")]

HOUSEHOLD_ID_PREFIX = "H"
_HOUSEHOLD_ID = re.compile(r"^\s*h?0*(\d+)\s*$", re.IGNORECASE | re.ASCII)


def format_household_id(number: int) -> str:
    """Build the canonical fixed-width identifier (1 -> ``H001``)."""
    return f"{HOUSEHOLD_ID_PREFIX}{number:03d}"


def normalize_household_id(raw: str | int) -> str | None:
    """Normalize any spelling of a household id to its canonical form.

    ``"h3"``, ``3``, ``"H3"``, ``"H0003"`` and ``" H003 "`` all map to
    ``"H003"``. Anything else (``"1.5"``, ``"H003-2"``, ``"home-3"``) is
    not a household id.

    Args:
        raw: Identifier as received from a caller.

    Returns:
        Canonical identifier, or None when the input is not an id.
    """
    match = _HOUSEHOLD_ID.match(str(raw))
    if match is None:
        return None
    return format_household_id(int(match.group(1)))


# =============================================================================
# Enums
# =============================================================================


class EventType(str, Enum):
    """Simulation events that can be triggered from outside."""

    OUTAGE = "OUTAGE"  # Grid unavailable, no import/export
    CLOUDBURST = "CLOUDBURST"  # Production drops
    HEATWAVE = "HEATWAVE"  # Cooling load rises
    EV_SURGE = "EV_SURGE"  # Evening EV charging adds load


class ResetMode(str, Enum):
    """What ``reset()`` reinitializes."""

    CLOCK = "clock"  # Clock only, accumulators keep running
    DAILY = "daily"  # Clock plus every day-to-date accumulator
    FULL = "full"  # Fresh households, events cleared


class LocalCostBasis(str, Enum):
    """Which local cost enters the microgrid cost formula."""

    TICK = "tick"  # Current tick's matched cost
    CUMULATIVE = "cumulative"  # Day-to-date matched cost


# =============================================================================
# Configuration
# =============================================================================


class SplitPolicy(BaseModel):
    """How a household's surplus or deficit is split between peers and grid."""

    model_config = ConfigDict(frozen=True)

    share_fraction: Fraction
    share_cap_kw: PowerKW
    receive_fraction: Fraction
    receive_cap_kw: PowerKW


class SettlementConfig(BaseModel):
    """Settlement engine configuration.

    Immutable for the life of the engine. Defaults reproduce the
    community's reference tariff and sharing policy.
    """

    model_config = ConfigDict(frozen=True)

    # Tariff
    fair_rate_usd_per_kwh: RateUSDPerKWh = 0.18
    retail_import_usd_per_kwh: RateUSDPerKWh = 0.30
    export_rate_usd_per_kwh: RateUSDPerKWh = 0.07

    # Participation gates
    min_credits_floor_kwh: float = -10.0  # May be negative
    neighbor_soc_threshold_pct: Percent = 15.0

    # Community
    household_count: Annotated[int, Field(gt=0, le=999)] = 25
    tick_minutes: Annotated[int, Field(gt=0, le=1440)] = 15

    # Battery
    soc_min_pct: Percent = 5.0
    soc_max_pct: Percent = 95.0
    soc_response_factor: Annotated[float, Field(gt=0)] = 0.1

    # Energy-balance split
    normal_split: SplitPolicy = Field(
        default_factory=lambda: SplitPolicy(
            share_fraction=0.6,
            share_cap_kw=2.0,
            receive_fraction=0.4,
            receive_cap_kw=1.5,
        )
    )
    outage_split: SplitPolicy = Field(
        default_factory=lambda: SplitPolicy(
            share_fraction=0.8,
            share_cap_kw=3.0,
            receive_fraction=0.6,
            receive_cap_kw=2.5,
        )
    )

    # Production / load model
    peak_production_kw: PowerKW = 6.0
    production_noise_kw: PowerKW = 1.0
    metering_decimals: Annotated[int, Field(ge=0, le=6)] = 1

    # Accounting
    conservation_tolerance_kwh: Annotated[float, Field(gt=0)] = 1e-6
    local_cost_basis: LocalCostBasis = LocalCostBasis.TICK
    reset_mode: ResetMode = ResetMode.CLOCK
    daily_rollover: bool = False

    seed: int | None = None  # For reproducibility
    start_time: datetime | None = None  # None = wall clock at startup

    @model_validator(mode="after")
    def _check_consistency(self) -> SettlementConfig:
        if self.soc_min_pct >= self.soc_max_pct:
            raise ValueError(
                f"soc_min_pct ({self.soc_min_pct}) must be below "
                f"soc_max_pct ({self.soc_max_pct})"
            )
        if not self.soc_min_pct <= self.neighbor_soc_threshold_pct <= self.soc_max_pct:
            raise ValueError(
                "neighbor_soc_threshold_pct must lie inside the SOC band "
                f"[{self.soc_min_pct}, {self.soc_max_pct}]"
            )
        if self.export_rate_usd_per_kwh > self.retail_import_usd_per_kwh:
            raise ValueError("export rate must not exceed the retail import rate")
        if not (
            self.export_rate_usd_per_kwh
            <= self.fair_rate_usd_per_kwh
            <= self.retail_import_usd_per_kwh
        ):
            raise ValueError(
                "fair rate must lie between the export rate and the retail import rate"
            )
        return self

    @property
    def tick_hours(self) -> float:
        """Length of one tick in hours."""
        return self.tick_minutes / 60.0

    def split_policy(self, outage: bool) -> SplitPolicy:
        """Split policy in force for the given grid condition."""
        return self.outage_split if outage else self.normal_split


# =============================================================================
# Mutable Simulation State
# =============================================================================


@dataclass
class Household:
    """Per-home state, mutated in place every tick.

    ``share_kw`` and ``receive_kw`` hold the offer as split by the tick
    generator; the matching pass draws them down to whatever stays unmatched.
    """

    household_id: str
    production_kw: float = 0.0
    load_kw: float = 0.0
    battery_soc_pct: float = 50.0

    share_kw: float = 0.0
    receive_kw: float = 0.0
    offered_net_kw: float = 0.0
    grid_import_kw: float = 0.0
    grid_export_kw: float = 0.0
    curtailed_kw: float = 0.0
    unserved_kw: float = 0.0

    credits_delta_kwh: float = 0.0
    credits_balance_kwh: float = 0.0
    earned_today_kwh: float = 0.0
    used_today_kwh: float = 0.0

    local_value_usd: float = 0.0
    local_cost_usd: float = 0.0
    local_value_today_usd: float = 0.0
    local_cost_today_usd: float = 0.0

    import_today_kwh: float = 0.0
    export_today_kwh: float = 0.0
    residual_import_today_kwh: float = 0.0
    residual_export_today_kwh: float = 0.0
    curtailed_today_kwh: float = 0.0
    unserved_today_kwh: float = 0.0

    baseline_cost_usd: float = 0.0
    microgrid_cost_usd: float = 0.0
    savings_usd: float = 0.0

    def reset_today(self) -> None:
        """Zero every day-to-date accumulator and the costs derived from them."""
        self.earned_today_kwh = 0.0
        self.used_today_kwh = 0.0
        self.local_value_today_usd = 0.0
        self.local_cost_today_usd = 0.0
        self.import_today_kwh = 0.0
        self.export_today_kwh = 0.0
        self.residual_import_today_kwh = 0.0
        self.residual_export_today_kwh = 0.0
        self.curtailed_today_kwh = 0.0
        self.unserved_today_kwh = 0.0
        self.baseline_cost_usd = 0.0
        self.microgrid_cost_usd = 0.0
        self.savings_usd = 0.0


@dataclass
class EventTimer:
    """Countdown for a timed simulation event.

    Attributes:
        event_type: Event this timer drives.
        active: Whether the event currently applies.
        remaining_minutes: Simulated minutes left before it clears.
    """

    event_type: EventType
    active: bool = False
    remaining_minutes: int = 0

    def start(self, duration_minutes: int) -> None:
        """Activate the event for ``duration_minutes`` simulated minutes."""
        if isinstance(duration_minutes, bool) or not isinstance(duration_minutes, int):
            raise ValueError(
                f"duration_minutes must be an integer, got {duration_minutes!r}"
            )
        if duration_minutes <= 0:
            raise ValueError(
                f"duration_minutes must be positive, got {duration_minutes}"
            )
        self.active = True
        self.remaining_minutes = duration_minutes

    def elapse(self, minutes: int) -> bool:
        """Count down by ``minutes``.

        Returns:
            True if the event ended on this call.
        """
        if not self.active:
            return False
        self.remaining_minutes -= minutes
        if self.remaining_minutes <= 0:
            self.remaining_minutes = 0
            self.active = False
            return True
        return False

    def clear(self) -> None:
        """Deactivate immediately."""
        self.active = False
        self.remaining_minutes = 0


@dataclass
class SimulationState:
    """Everything a tick mutates: households, clock and event timers."""

    households: list[Household]
    clock: datetime
    start_time: datetime
    tick_index: int = 0
    events: dict[EventType, EventTimer] = field(
        default_factory=lambda: {t: EventTimer(event_type=t) for t in EventType}
    )

    @property
    def outage(self) -> EventTimer:
        """The grid outage timer."""
        return self.events[EventType.OUTAGE]

    def is_active(self, event_type: EventType) -> bool:
        """Whether ``event_type`` currently applies."""
        return self.events[event_type].active

    def find(self, household_id: str) -> Household | None:
        """Look up a household by canonical id."""
        for household in self.households:
            if household.household_id == household_id:
                return household
        return None


# =============================================================================
# Published Snapshot
# =============================================================================


class HouseholdView(BaseModel):
    """Rounded, read-only projection of one household."""

    model_config = ConfigDict(frozen=True)

    household_id: str
    production_kw: PowerKW
    load_kw: PowerKW
    battery_soc_pct: Percent
    share_kw: PowerKW
    receive_kw: PowerKW
    offered_net_kw: float
    grid_import_kw: PowerKW
    grid_export_kw: PowerKW
    unserved_kw: PowerKW = 0.0
    curtailed_kw: PowerKW = 0.0

    credits_delta_kwh: float
    credits_balance_kwh: float
    earned_today_kwh: EnergyKWh
    used_today_kwh: EnergyKWh

    local_value_usd: float
    local_cost_usd: float
    local_value_today_usd: float
    local_cost_today_usd: float

    import_today_kwh: EnergyKWh
    export_today_kwh: EnergyKWh
    residual_import_today_kwh: EnergyKWh
    residual_export_today_kwh: EnergyKWh
    unserved_today_kwh: EnergyKWh = 0.0
    curtailed_today_kwh: EnergyKWh = 0.0

    baseline_cost_usd: float
    microgrid_cost_usd: float
    savings_usd: float


class GridTotals(BaseModel):
    """Community exchange with the external grid."""

    model_config = ConfigDict(frozen=True)

    import_kw: PowerKW
    export_kw: PowerKW


class CommunityTotals(BaseModel):
    """Community-wide aggregates for the tick."""

    model_config = ConfigDict(frozen=True)

    production_kw: PowerKW
    consumption_kw: PowerKW
    shared_kw: PowerKW  # Offered share left unmatched after the pass
    matched_kwh: EnergyKWh
    unserved_kw: PowerKW
    curtailed_kw: PowerKW = 0.0
    baseline_cost_usd: float = 0.0
    microgrid_cost_usd: float = 0.0
    savings_usd: float
    credits_earned_today: EnergyKWh
    credits_used_today: EnergyKWh
    avg_battery_soc_pct: Percent


class Snapshot(BaseModel):
    """Fully settled view of one tick, safe to share between readers."""

    model_config = ConfigDict(frozen=True)

    tick_index: Annotated[int, Field(ge=0)]
    timestamp: datetime
    outage_active: bool = False
    outage_remaining_minutes: Annotated[int, Field(ge=0)] = 0
    active_events: list[EventType] = Field(default_factory=list)
    households: list[HouseholdView]
    grid: GridTotals
    community: CommunityTotals

    def household(self, household_id: str) -> HouseholdView | None:
        """Find a household view by canonical id."""
        return next(
            (h for h in self.households if h.household_id == household_id), None
        )
