"""Test fixtures for reproducible settlement scenarios.

Provides standard communities and configurations:
- Reference configuration with a fixed seed and start time
- Hand-built households for matching and accounting scenarios
- Engines started at midnight and at dusk
"""

from collections.abc import Callable
from datetime import datetime

import pytest

from microgrid.domain.models import Household, SettlementConfig, SimulationState
from microgrid.engine import SettlementEngine

# =============================================================================
# Time Fixtures
# =============================================================================


@pytest.fixture
def base_timestamp() -> datetime:
    """Standard base timestamp for testing (midnight, summer day)."""
    return datetime(2025, 7, 15, 0, 0, 0)


@pytest.fixture
def dusk_timestamp() -> datetime:
    """Late afternoon; the first tick lands at 17:00.

    Production and load are close then, so households split between
    surplus and deficit.
    """
    return datetime(2025, 7, 15, 16, 45, 0)


# =============================================================================
# Configuration Fixtures
# =============================================================================


@pytest.fixture
def config(base_timestamp: datetime) -> SettlementConfig:
    """Reference tariff with a fixed seed and start time."""
    return SettlementConfig(seed=42, start_time=base_timestamp)


@pytest.fixture
def dusk_config(dusk_timestamp: datetime) -> SettlementConfig:
    """Reference tariff starting in late afternoon."""
    return SettlementConfig(seed=7, start_time=dusk_timestamp)


# =============================================================================
# Household Fixtures
# =============================================================================


def make_household(household_id: str, **fields: float) -> Household:
    """Household with every field at its default except ``fields``."""
    return Household(household_id=household_id, **fields)


@pytest.fixture
def household_factory() -> Callable[..., Household]:
    """Factory building households with selected fields set."""
    return make_household


@pytest.fixture
def producer() -> Household:
    """Household offering 2 kW with a healthy battery."""
    return make_household("H001", share_kw=2.0, battery_soc_pct=50.0)


@pytest.fixture
def consumer() -> Household:
    """Household requesting 1 kW with a clean credit record."""
    return make_household("H002", receive_kw=1.0, credits_balance_kwh=0.0)


@pytest.fixture
def state(base_timestamp: datetime) -> SimulationState:
    """Three-household community at midnight."""
    return SimulationState(
        households=[
            make_household("H001", battery_soc_pct=50.0),
            make_household("H002", battery_soc_pct=50.0),
            make_household("H003", battery_soc_pct=50.0),
        ],
        clock=base_timestamp,
        start_time=base_timestamp,
    )


# =============================================================================
# Engine Fixtures
# =============================================================================


@pytest.fixture
def engine(config: SettlementConfig) -> SettlementEngine:
    """Engine starting at midnight."""
    return SettlementEngine(config)


@pytest.fixture
def dusk_engine(dusk_config: SettlementConfig) -> SettlementEngine:
    """Engine whose first tick mixes producers and consumers.

    Batteries are topped up so producers pass the neighbor threshold.
    """
    engine = SettlementEngine(dusk_config)
    for household in engine.state.households:
        household.battery_soc_pct = 60.0
    return engine
