"""Household battery state-of-charge model."""

from microgrid.battery.physics import BatteryModel

__all__ = ["BatteryModel"]
