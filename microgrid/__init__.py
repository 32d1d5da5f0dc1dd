"""Microgrid settlement engine.

Per-tick simulation of household solar, load and batteries, greedy
peer-to-peer energy matching and baseline vs. microgrid cost accounting.
"""

from microgrid.config import load_config
from microgrid.domain.errors import AccountingError, ConfigurationError
from microgrid.domain.models import (
    EventType,
    HouseholdView,
    LocalCostBasis,
    ResetMode,
    SettlementConfig,
    Snapshot,
)
from microgrid.engine import SettlementEngine, TickScheduler

__all__ = [
    "AccountingError",
    "ConfigurationError",
    "EventType",
    "HouseholdView",
    "LocalCostBasis",
    "ResetMode",
    "SettlementConfig",
    "SettlementEngine",
    "Snapshot",
    "TickScheduler",
    "load_config",
]
