"""Service layer between the HTTP routes and the settlement engine.

This module drives ticks according to the configured tick mode and
converts engine snapshots into the wire schemas.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from datetime import datetime

from microgrid.api.schemas import (
    AdminGridResponse,
    AdminHomeResponse,
    AdminStateResponse,
    CommunityFrame,
    CommunityTodayResponse,
    EventRequest,
    EventResponse,
    GridFrame,
    HealthResponse,
    HomeFlowResponse,
    HomeFrame,
    ResetResponse,
    StreamFrame,
    UserCreditsResponse,
    UserEconomicsResponse,
    UserHomeResponse,
    UserStateResponse,
)
from microgrid.config import ServiceSettings, TickMode
from microgrid.domain.models import (
    HouseholdView,
    ResetMode,
    Snapshot,
    normalize_household_id,
)
from microgrid.engine import SettlementEngine, TickScheduler
from microgrid.metrics.snapshot import round_kw, round_usd

TOP_FLOWS = 5
FLOW_THRESHOLD_KW = 0.1


def format_sse(frame: StreamFrame) -> str:
    """Encode a frame as one Server-Sent Events message."""
    return f"data: {frame.model_dump_json(by_alias=True)}\n\n"


class SettlementService:
    """Service for reading and driving the simulation over HTTP."""

    def __init__(
        self,
        engine: SettlementEngine,
        settings: ServiceSettings | None = None,
    ) -> None:
        """Initialize the settlement service.

        Args:
            engine: Engine to serve.
            settings: Tick mode and interval.
        """
        self.engine = engine
        self.settings = settings if settings is not None else ServiceSettings()
        self.scheduler: TickScheduler | None = None
        if self.settings.tick_mode == TickMode.LAZY:
            self.scheduler = TickScheduler(engine, self.settings.tick_interval_seconds)

    @property
    def fair_rate_cents(self) -> int:
        """Fair peer rate in whole cents per kWh."""
        return round(self.engine.config.fair_rate_usd_per_kwh * 100)

    def current_snapshot(self) -> Snapshot:
        """Snapshot for a read request, ticking first in lazy mode."""
        if self.scheduler is not None:
            self.scheduler.maybe_advance()
        return self.engine.get_snapshot()

    # -------------------------------------------------------------------------
    # Conversions
    # -------------------------------------------------------------------------

    def _convert_home_frame(self, view: HouseholdView) -> HomeFrame:
        return HomeFrame(
            id=view.household_id,
            pv=view.production_kw,
            load=view.load_kw,
            soc=int(view.battery_soc_pct),
            share=view.share_kw,
            recv=view.receive_kw,
            imp=view.grid_import_kw,
            exp=view.grid_export_kw,
            credits_delta=view.offered_net_kw,
            credits_balance_kwh=view.credits_balance_kwh,
            credits_delta_kwh=view.credits_delta_kwh,
            earned_today_kwh=view.earned_today_kwh,
            used_today_kwh=view.used_today_kwh,
            local_value_usd=view.local_value_usd,
            local_cost_usd=view.local_cost_usd,
            baseline_cost_usd=view.baseline_cost_usd,
            microgrid_cost_usd=view.microgrid_cost_usd,
            savings_usd=view.savings_usd,
            import_kwh_today=view.import_today_kwh,
            export_kwh_today=view.export_today_kwh,
            residual_import_kwh_today=view.residual_import_today_kwh,
            residual_export_kwh_today=view.residual_export_today_kwh,
            unserved_kw=view.unserved_kw,
            curtailed_kw=view.curtailed_kw,
        )

    def convert_stream_frame(self, snapshot: Snapshot) -> StreamFrame:
        """Convert a snapshot to the SSE frame schema."""
        community = snapshot.community
        return StreamFrame(
            ts=snapshot.timestamp,
            outage_active=snapshot.outage_active,
            homes=[self._convert_home_frame(h) for h in snapshot.households],
            grid=GridFrame(imp=snapshot.grid.import_kw, exp=snapshot.grid.export_kw),
            community=CommunityFrame(
                prod=community.production_kw,
                mg_used=community.shared_kw,
                matched_kwh=community.matched_kwh,
                unserved=community.unserved_kw,
                curtailed=community.curtailed_kw,
                savings_usd=community.savings_usd,
                credits_earned_today=community.credits_earned_today,
                credits_used_today=community.credits_used_today,
            ),
        )

    def convert_admin_state(self, snapshot: Snapshot) -> AdminStateResponse:
        """Convert a snapshot to the operator dashboard schema.

        The ``*_today_kwh`` grid and community figures are the current
        rate over one tick, as the dashboard has always shown them.
        """
        tick_hours = self.engine.config.tick_hours
        households = snapshot.households
        grid = snapshot.grid
        community = snapshot.community

        exporters = [h for h in households if h.grid_export_kw > FLOW_THRESHOLD_KW]
        importers = [h for h in households if h.grid_import_kw > FLOW_THRESHOLD_KW]

        return AdminStateResponse(
            last_update_ts=snapshot.timestamp,
            outage_active=snapshot.outage_active,
            outage_remaining_minutes=snapshot.outage_remaining_minutes,
            grid=AdminGridResponse(
                to_grid_kw=grid.export_kw,
                from_grid_kw=grid.import_kw,
                to_grid_today_kwh=round_kw(grid.export_kw * tick_hours),
                from_grid_today_kwh=round_kw(grid.import_kw * tick_hours),
                top_exporters=[
                    HomeFlowResponse(home=h.household_id, kw=h.grid_export_kw)
                    for h in exporters[:TOP_FLOWS]
                ],
                drawing_now=[
                    HomeFlowResponse(home=h.household_id, kw=h.grid_import_kw)
                    for h in importers[:TOP_FLOWS]
                ],
            ),
            community_today=CommunityTodayResponse(
                production_kwh=round_kw(community.production_kw * tick_hours),
                microgrid_used_kwh=round_kw(community.shared_kw * tick_hours),
                grid_import_kwh=round_kw(grid.import_kw * tick_hours),
                grid_export_kwh=round_kw(grid.export_kw * tick_hours),
                unserved_kwh=round_kw(sum(h.unserved_today_kwh for h in households)),
                curtailed_kwh=round_kw(sum(h.curtailed_today_kwh for h in households)),
                baseline_cost_usd=community.baseline_cost_usd,
                microgrid_cost_usd=community.microgrid_cost_usd,
                savings_usd=community.savings_usd,
                credits_earned_today=community.credits_earned_today,
                credits_used_today=community.credits_used_today,
            ),
            fair_rate_cents_per_kwh=self.fair_rate_cents,
            homes=[
                AdminHomeResponse(
                    id=h.household_id,
                    pv_kw=h.production_kw,
                    usage_kw=h.load_kw,
                    sharing_kw=h.share_kw,
                    receiving_kw=h.receive_kw,
                    soc_pct=int(h.battery_soc_pct),
                    credits_net_kwh_mtd=h.offered_net_kw,
                    credits_balance_kwh=h.credits_balance_kwh,
                    earned_today_kwh=h.earned_today_kwh,
                    used_today_kwh=h.used_today_kwh,
                    savings_usd=h.savings_usd,
                )
                for h in households
            ],
        )

    def convert_user_state(
        self, snapshot: Snapshot, view: HouseholdView
    ) -> UserStateResponse:
        """Convert one household view to the household dashboard schema."""
        return UserStateResponse(
            last_update_ts=snapshot.timestamp,
            home=UserHomeResponse(
                id=view.household_id,
                pv_kw=view.production_kw,
                usage_kw=view.load_kw,
                soc_pct=int(view.battery_soc_pct),
                sharing_kw=view.share_kw,
                receiving_kw=view.receive_kw,
                grid_import_kw=view.grid_import_kw,
                grid_export_kw=view.grid_export_kw,
            ),
            credits=UserCreditsResponse(
                earned_today_kwh=view.earned_today_kwh,
                used_today_kwh=view.used_today_kwh,
                mtd_net_kwh=view.credits_balance_kwh,
                local_value_usd_today=round_usd(view.local_value_today_usd),
                local_cost_usd_today=round_usd(view.local_cost_today_usd),
            ),
            economics=UserEconomicsResponse(
                baseline_cost_usd_today=view.baseline_cost_usd,
                microgrid_cost_usd_today=view.microgrid_cost_usd,
                savings_usd_today=view.savings_usd,
            ),
            fair_rate_cents_per_kwh=self.fair_rate_cents,
        )

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    def health(self) -> HealthResponse:
        """Liveness information."""
        snapshot = self.engine.get_snapshot()
        return HealthResponse(
            ok=True,
            timestamp=datetime.now(),
            homes_count=len(snapshot.households),
            tick_index=snapshot.tick_index,
        )

    def stream_frame(self) -> StreamFrame:
        """Current snapshot as a stream frame."""
        return self.convert_stream_frame(self.current_snapshot())

    def admin_state(self) -> AdminStateResponse:
        """Current snapshot as the operator view."""
        return self.convert_admin_state(self.current_snapshot())

    def user_state(self, home_id: str) -> UserStateResponse | None:
        """Current snapshot for one household.

        Args:
            home_id: Any spelling of the household id.

        Returns:
            UserStateResponse, or None if no household matches.
        """
        snapshot = self.current_snapshot()
        household_id = normalize_household_id(home_id)
        view = snapshot.household(household_id) if household_id is not None else None
        if view is None:
            return None
        return self.convert_user_state(snapshot, view)

    def trigger_event(self, request: EventRequest) -> EventResponse:
        """Start a simulation event."""
        self.engine.trigger_event(request.type, request.duration_min)
        return EventResponse(event=request.type, duration=request.duration_min)

    def reset(self, mode: ResetMode | None = None) -> ResetResponse:
        """Reset the simulation."""
        mode = mode if mode is not None else self.engine.config.reset_mode
        self.engine.reset(mode)
        return ResetResponse(mode=mode)

    def tick(self) -> StreamFrame:
        """Advance one tick explicitly."""
        return self.convert_stream_frame(self.engine.advance_tick())

    async def stream(self, max_frames: int | None = None) -> AsyncIterator[str]:
        """Yield SSE messages, one per settled tick.

        The current snapshot is sent immediately; after that a frame is
        sent whenever a new snapshot has been published.

        Args:
            max_frames: Stop after this many frames (None streams forever).
        """
        snapshot = self.current_snapshot()
        yield format_sse(self.convert_stream_frame(snapshot))
        sent = 1

        while max_frames is None or sent < max_frames:
            await asyncio.sleep(self.settings.tick_interval_seconds)
            latest = self.current_snapshot()
            if latest is snapshot:
                continue
            snapshot = latest
            yield format_sse(self.convert_stream_frame(snapshot))
            sent += 1
