"""Synthetic production, load and energy-balance generation."""

from microgrid.generators.profiles import ProfileGenerator
from microgrid.generators.tick import (
    EnergySplit,
    TickContext,
    TickGenerator,
    split_energy_balance,
)

__all__ = [
    "ProfileGenerator",
    "EnergySplit",
    "TickContext",
    "TickGenerator",
    "split_energy_balance",
]
