"""Configuration loading from the environment.

Engine settings are read from ``MICROGRID_*`` variables on top of the
``SettlementConfig`` defaults; service settings control the tick driver
and CORS for the HTTP adapter. Any invalid value fails at startup with
``ConfigurationError``.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from enum import Enum
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from microgrid.domain.errors import ConfigurationError
from microgrid.domain.models import SettlementConfig

ENV_PREFIX = "MICROGRID_"

# Environment variable suffix -> SettlementConfig field
ENGINE_ENV_FIELDS = {
    "FAIR_RATE": "fair_rate_usd_per_kwh",
    "RETAIL_IMPORT": "retail_import_usd_per_kwh",
    "EXPORT_RATE": "export_rate_usd_per_kwh",
    "MIN_CREDITS_FLOOR": "min_credits_floor_kwh",
    "NEIGHBOR_THRESHOLD": "neighbor_soc_threshold_pct",
    "HOUSEHOLDS": "household_count",
    "TICK_MINUTES": "tick_minutes",
    "LOCAL_COST_BASIS": "local_cost_basis",
    "RESET_MODE": "reset_mode",
    "DAILY_ROLLOVER": "daily_rollover",
    "SEED": "seed",
}


class TickMode(str, Enum):
    """How the HTTP service advances the simulation."""

    TIMER = "timer"  # Background task every tick_interval_seconds
    LAZY = "lazy"  # On read, debounced to tick_interval_seconds
    MANUAL = "manual"  # Only POST /sim/tick


class ServiceSettings(BaseModel):
    """Settings for the HTTP adapter."""

    model_config = ConfigDict(frozen=True)

    tick_mode: TickMode = TickMode.TIMER
    tick_interval_seconds: Annotated[float, Field(gt=0)] = 2.0
    cors_origins: list[str] = Field(
        default_factory=lambda: ["http://localhost:8080", "http://localhost:5173"]
    )


def _collect(env: Mapping[str, str], fields: Mapping[str, str]) -> dict[str, Any]:
    values: dict[str, Any] = {}
    for suffix, field_name in fields.items():
        raw = env.get(ENV_PREFIX + suffix)
        if raw is not None and raw != "":
            values[field_name] = raw
    return values


def load_config(
    env: Mapping[str, str] | None = None,
    **overrides: Any,
) -> SettlementConfig:
    """Build the engine configuration.

    Args:
        env: Environment mapping (defaults to ``os.environ``).
        **overrides: Field values that take precedence over the environment.

    Returns:
        Validated SettlementConfig.

    Raises:
        ConfigurationError: If any value falls outside its range or the values
            are inconsistent with each other.
    """
    values = _collect(os.environ if env is None else env, ENGINE_ENV_FIELDS)
    values.update(overrides)
    try:
        return SettlementConfig(**values)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid settlement configuration: {e}") from e


def load_service_settings(env: Mapping[str, str] | None = None) -> ServiceSettings:
    """Build the HTTP service settings from the environment.

    Reads ``MICROGRID_TICK_MODE``, ``MICROGRID_TICK_INTERVAL_SECONDS`` and
    ``MICROGRID_CORS_ORIGINS`` (comma separated).

    Raises:
        ConfigurationError: On an invalid value.
    """
    env = os.environ if env is None else env
    values: dict[str, Any] = _collect(
        env,
        {"TICK_MODE": "tick_mode", "TICK_INTERVAL_SECONDS": "tick_interval_seconds"},
    )
    origins = env.get(ENV_PREFIX + "CORS_ORIGINS")
    if origins:
        values["cors_origins"] = [o.strip() for o in origins.split(",") if o.strip()]
    try:
        return ServiceSettings(**values)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid service settings: {e}") from e
