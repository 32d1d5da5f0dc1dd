"""Domain models for the microgrid settlement engine."""

from microgrid.domain.errors import AccountingError, ConfigurationError
from microgrid.domain.models import (
    CommunityTotals,
    EventTimer,
    EventType,
    GridTotals,
    Household,
    HouseholdView,
    LocalCostBasis,
    ResetMode,
    SettlementConfig,
    SimulationState,
    Snapshot,
    SplitPolicy,
    format_household_id,
    normalize_household_id,
)

__all__ = [
    "AccountingError",
    "ConfigurationError",
    "SettlementConfig",
    "SplitPolicy",
    "EventType",
    "ResetMode",
    "LocalCostBasis",
    "Household",
    "EventTimer",
    "SimulationState",
    "HouseholdView",
    "GridTotals",
    "CommunityTotals",
    "Snapshot",
    "format_household_id",
    "normalize_household_id",
]
