"""Baseline vs. microgrid cost accounting.

Two parallel cost scenarios per household:

- Baseline: no microgrid at all, every kWh of deficit is bought at retail
  and every kWh of surplus sold at the export rate.
- Microgrid: matched energy is paid at the fair rate, and only the residual
  flow touches the grid.

Savings are the difference. Grid rates for one tick are booked directly as
kWh for that tick.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from microgrid.domain.models import Household, LocalCostBasis, SettlementConfig


@dataclass
class EconomicsSummary:
    """Community totals after an accounting step.

    Attributes:
        baseline_cost_usd: Sum of household baseline costs.
        microgrid_cost_usd: Sum of household microgrid costs.
        savings_usd: Sum of household savings.
        local_value_usd: Matched energy value this tick.
        import_today_kwh: Community grid import, day to date.
        export_today_kwh: Community grid export, day to date.
    """

    baseline_cost_usd: float = 0.0
    microgrid_cost_usd: float = 0.0
    savings_usd: float = 0.0
    local_value_usd: float = 0.0
    import_today_kwh: float = 0.0
    export_today_kwh: float = 0.0


class EconomicsAccumulator:
    """Folds per-tick grid flow and matched cost into running costs."""

    def __init__(self, config: SettlementConfig) -> None:
        """Initialize the accumulator.

        Args:
            config: Engine configuration (rates and local cost basis).
        """
        self.config = config

    def baseline_cost(self, household: Household) -> float:
        """Cost with no neighbor sharing."""
        return (
            household.import_today_kwh * self.config.retail_import_usd_per_kwh
            - household.export_today_kwh * self.config.export_rate_usd_per_kwh
        )

    def microgrid_cost(self, household: Household) -> float:
        """Cost with neighbor sharing.

        Under ``LocalCostBasis.TICK`` the matched cost is this tick's only,
        while the grid terms are day to date.
        """
        if self.config.local_cost_basis == LocalCostBasis.CUMULATIVE:
            local_cost = household.local_cost_today_usd
        else:
            local_cost = household.local_cost_usd
        return (
            local_cost
            + household.residual_import_today_kwh * self.config.retail_import_usd_per_kwh
            - household.residual_export_today_kwh * self.config.export_rate_usd_per_kwh
        )

    def accumulate_household(self, household: Household) -> None:
        """Book one tick for one household and refresh its costs."""
        household.import_today_kwh += household.grid_import_kw
        household.export_today_kwh += household.grid_export_kw
        household.residual_import_today_kwh += household.grid_import_kw
        household.residual_export_today_kwh += household.grid_export_kw
        household.curtailed_today_kwh += household.curtailed_kw
        household.unserved_today_kwh += household.unserved_kw
        household.local_value_today_usd += household.local_value_usd
        household.local_cost_today_usd += household.local_cost_usd
        self.recompute(household)

    def recompute(self, household: Household) -> None:
        """Refresh derived costs without booking a tick."""
        household.baseline_cost_usd = self.baseline_cost(household)
        household.microgrid_cost_usd = self.microgrid_cost(household)
        household.savings_usd = household.baseline_cost_usd - household.microgrid_cost_usd

    def accumulate(self, households: Sequence[Household]) -> EconomicsSummary:
        """Book one tick for every household.

        Args:
            households: Every household, after the matching pass.

        Returns:
            EconomicsSummary with community totals.
        """
        for household in households:
            self.accumulate_household(household)
        return summarize(households)


def summarize(households: Sequence[Household]) -> EconomicsSummary:
    """Community totals over the household accumulators as they stand."""
    summary = EconomicsSummary()
    for household in households:
        summary.baseline_cost_usd += household.baseline_cost_usd
        summary.microgrid_cost_usd += household.microgrid_cost_usd
        summary.savings_usd += household.savings_usd
        summary.local_value_usd += household.local_value_usd
        summary.import_today_kwh += household.import_today_kwh
        summary.export_today_kwh += household.export_today_kwh
    return summary
