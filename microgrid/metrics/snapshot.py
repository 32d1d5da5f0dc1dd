"""Snapshot builder: rounded, read-only projection of the simulation state.

Rates and energy are rounded to 1 decimal, money to 2 decimals and SOC to
whole percent. Aggregates are summed from unrounded values and rounded
once. The underlying state is never touched.
"""

from __future__ import annotations

from collections.abc import Sequence

from microgrid.domain.models import (
    CommunityTotals,
    GridTotals,
    Household,
    HouseholdView,
    SimulationState,
    Snapshot,
)
from microgrid.metrics.economics import summarize

KW_DECIMALS = 1
USD_DECIMALS = 2


def round_kw(value: float) -> float:
    """Round a kW/kWh figure for display."""
    return round(value, KW_DECIMALS) + 0.0  # + 0.0 turns -0.0 into 0.0


def round_usd(value: float) -> float:
    """Round a currency figure for display."""
    return round(value, USD_DECIMALS) + 0.0


class SnapshotBuilder:
    """Projects simulation state into a frozen ``Snapshot``."""

    def household_view(self, household: Household) -> HouseholdView:
        """Rounded view of a single household."""
        return HouseholdView(
            household_id=household.household_id,
            production_kw=round_kw(household.production_kw),
            load_kw=round_kw(household.load_kw),
            battery_soc_pct=float(round(household.battery_soc_pct)),
            share_kw=round_kw(household.share_kw),
            receive_kw=round_kw(household.receive_kw),
            offered_net_kw=round_kw(household.offered_net_kw),
            grid_import_kw=round_kw(household.grid_import_kw),
            grid_export_kw=round_kw(household.grid_export_kw),
            unserved_kw=round_kw(household.unserved_kw),
            curtailed_kw=round_kw(household.curtailed_kw),
            credits_delta_kwh=round_kw(household.credits_delta_kwh),
            credits_balance_kwh=round_kw(household.credits_balance_kwh),
            earned_today_kwh=round_kw(household.earned_today_kwh),
            used_today_kwh=round_kw(household.used_today_kwh),
            local_value_usd=round_usd(household.local_value_usd),
            local_cost_usd=round_usd(household.local_cost_usd),
            local_value_today_usd=round_usd(household.local_value_today_usd),
            local_cost_today_usd=round_usd(household.local_cost_today_usd),
            import_today_kwh=round_kw(household.import_today_kwh),
            export_today_kwh=round_kw(household.export_today_kwh),
            residual_import_today_kwh=round_kw(household.residual_import_today_kwh),
            residual_export_today_kwh=round_kw(household.residual_export_today_kwh),
            unserved_today_kwh=round_kw(household.unserved_today_kwh),
            curtailed_today_kwh=round_kw(household.curtailed_today_kwh),
            baseline_cost_usd=round_usd(household.baseline_cost_usd),
            microgrid_cost_usd=round_usd(household.microgrid_cost_usd),
            savings_usd=round_usd(household.savings_usd),
        )

    def grid_totals(self, households: Sequence[Household]) -> GridTotals:
        """Community import/export with the external grid."""
        return GridTotals(
            import_kw=round_kw(sum(h.grid_import_kw for h in households)),
            export_kw=round_kw(sum(h.grid_export_kw for h in households)),
        )

    def community_totals(
        self,
        households: Sequence[Household],
        matched_kwh: float = 0.0,
    ) -> CommunityTotals:
        """Community-wide aggregates.

        Args:
            households: Every household.
            matched_kwh: Energy matched between neighbors this tick.
        """
        count = len(households)
        avg_soc = sum(h.battery_soc_pct for h in households) / count if count else 0.0
        economics = summarize(households)
        return CommunityTotals(
            production_kw=round_kw(sum(h.production_kw for h in households)),
            consumption_kw=round_kw(sum(h.load_kw for h in households)),
            shared_kw=round_kw(sum(h.share_kw for h in households)),
            matched_kwh=round_kw(matched_kwh),
            unserved_kw=round_kw(sum(h.unserved_kw for h in households)),
            curtailed_kw=round_kw(sum(h.curtailed_kw for h in households)),
            baseline_cost_usd=round_usd(economics.baseline_cost_usd),
            microgrid_cost_usd=round_usd(economics.microgrid_cost_usd),
            savings_usd=round_usd(economics.savings_usd),
            credits_earned_today=round_kw(sum(h.earned_today_kwh for h in households)),
            credits_used_today=round_kw(sum(h.used_today_kwh for h in households)),
            avg_battery_soc_pct=round_kw(avg_soc),
        )

    def build(self, state: SimulationState, matched_kwh: float = 0.0) -> Snapshot:
        """Build the snapshot for the current state.

        Args:
            state: Simulation state after the accounting step.
            matched_kwh: Energy matched between neighbors this tick.

        Returns:
            Frozen Snapshot.
        """
        households = state.households
        return Snapshot(
            tick_index=state.tick_index,
            timestamp=state.clock,
            outage_active=state.outage.active,
            outage_remaining_minutes=state.outage.remaining_minutes,
            active_events=[t for t, timer in state.events.items() if timer.active],
            households=[self.household_view(h) for h in households],
            grid=self.grid_totals(households),
            community=self.community_totals(households, matched_kwh),
        )
