"""Household battery state-of-charge model.

Implements the per-tick SOC update:
- SOC drifts with the household's net production
- SOC is rounded to whole percent (what the inverter reports)
- SOC is clamped into the configured band every tick
"""

from __future__ import annotations

from microgrid.domain.models import SettlementConfig


class BatteryModel:
    """SOC model shared by every household battery.

    The battery is not sized; SOC responds to the production/load imbalance
    through a single scale factor. All SOC values are in percent.
    """

    def __init__(
        self,
        soc_min_pct: float = 5.0,
        soc_max_pct: float = 95.0,
        response_factor: float = 0.1,
    ) -> None:
        """Initialize the battery model.

        Args:
            soc_min_pct: Lowest SOC the battery may report.
            soc_max_pct: Highest SOC the battery may report.
            response_factor: SOC percentage points per kW of imbalance.

        Raises:
            ValueError: If the band is empty or the factor is not positive.
        """
        if soc_min_pct >= soc_max_pct:
            raise ValueError(
                f"soc_min_pct must be below soc_max_pct, got {soc_min_pct} >= {soc_max_pct}"
            )
        if response_factor <= 0:
            raise ValueError(f"response_factor must be > 0, got {response_factor}")

        self.soc_min_pct = soc_min_pct
        self.soc_max_pct = soc_max_pct
        self.response_factor = response_factor

    @classmethod
    def from_config(cls, config: SettlementConfig) -> BatteryModel:
        """Build the model from the engine configuration."""
        return cls(
            soc_min_pct=config.soc_min_pct,
            soc_max_pct=config.soc_max_pct,
            response_factor=config.soc_response_factor,
        )

    def clamp(self, soc_pct: float) -> float:
        """Clamp a SOC value into the allowed band."""
        return float(max(self.soc_min_pct, min(self.soc_max_pct, soc_pct)))

    def step(self, soc_pct: float, production_kw: float, load_kw: float) -> float:
        """Advance SOC by one tick.

        Args:
            soc_pct: SOC before the tick.
            production_kw: Production this tick (kW).
            load_kw: Load this tick (kW).

        Returns:
            New SOC, whole percent, inside the band regardless of the
            size of the imbalance.
        """
        drift = (production_kw - load_kw) * self.response_factor
        return self.clamp(round(soc_pct + drift))

    def within_bounds(self, soc_pct: float) -> bool:
        """Check if a SOC value lies inside the band."""
        return self.soc_min_pct <= soc_pct <= self.soc_max_pct
