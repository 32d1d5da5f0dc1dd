"""Pydantic schemas for the HTTP/SSE wire format.

These schemas define the contract with the dashboard. Field names follow
the existing consumers (``pv``, ``load``, ``soc``, ``share``, ``recv``,
``imp``, ``exp``, ``creditsDelta``, ...); the canonical domain models in
``microgrid.domain.models`` are translated here and nowhere else.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from microgrid.domain.models import EventType, ResetMode

SCHEMA_VERSION = "1"

# =============================================================================
# Stream Frame (SSE /stream)
# =============================================================================


class HomeFrame(BaseModel):
    """One household in a stream frame."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    pv: float
    load: float
    soc: int
    share: float
    recv: float
    imp: float
    exp: float
    credits_delta: float = Field(alias="creditsDelta")
    credits_balance_kwh: float
    credits_delta_kwh: float
    earned_today_kwh: float
    used_today_kwh: float
    local_value_usd: float
    local_cost_usd: float
    baseline_cost_usd: float
    microgrid_cost_usd: float
    savings_usd: float
    import_kwh_today: float
    export_kwh_today: float
    residual_import_kwh_today: float
    residual_export_kwh_today: float
    unserved_kw: float = 0.0
    curtailed_kw: float = 0.0


class GridFrame(BaseModel):
    """Community grid exchange in a stream frame."""

    imp: float
    exp: float


class CommunityFrame(BaseModel):
    """Community aggregates in a stream frame."""

    prod: float
    mg_used: float
    matched_kwh: float = 0.0
    unserved: float = 0.0
    curtailed: float = 0.0
    savings_usd: float
    credits_earned_today: float
    credits_used_today: float


class StreamFrame(BaseModel):
    """Full payload of one SSE ``data:`` frame."""

    schema_version: str = SCHEMA_VERSION
    ts: datetime
    outage_active: bool = False
    homes: list[HomeFrame]
    grid: GridFrame
    community: CommunityFrame


# =============================================================================
# Admin State (/state/admin)
# =============================================================================


class HomeFlowResponse(BaseModel):
    """A household and its flow, for top-N lists."""

    home: str
    kw: float


class AdminGridResponse(BaseModel):
    """Grid exchange block of the admin view."""

    to_grid_kw: float
    from_grid_kw: float
    to_grid_today_kwh: float
    from_grid_today_kwh: float
    top_exporters: list[HomeFlowResponse] = Field(default_factory=list)
    drawing_now: list[HomeFlowResponse] = Field(default_factory=list)


class CommunityTodayResponse(BaseModel):
    """Community block of the admin view."""

    production_kwh: float
    microgrid_used_kwh: float
    grid_import_kwh: float
    grid_export_kwh: float
    unserved_kwh: float = 0.0
    curtailed_kwh: float = 0.0
    baseline_cost_usd: float = 0.0
    microgrid_cost_usd: float = 0.0
    savings_usd: float
    credits_earned_today: float
    credits_used_today: float


class AdminHomeResponse(BaseModel):
    """One household in the admin view."""

    id: str
    pv_kw: float
    usage_kw: float
    sharing_kw: float
    receiving_kw: float
    soc_pct: int
    credits_net_kwh_mtd: float
    credits_balance_kwh: float
    earned_today_kwh: float
    used_today_kwh: float
    savings_usd: float


class AdminStateResponse(BaseModel):
    """Operator dashboard payload."""

    schema_version: str = SCHEMA_VERSION
    last_update_ts: datetime
    outage_active: bool = False
    outage_remaining_minutes: int = 0
    grid: AdminGridResponse
    community_today: CommunityTodayResponse
    fair_rate_cents_per_kwh: int
    homes: list[AdminHomeResponse]


# =============================================================================
# User State (/state/user/{home_id})
# =============================================================================


class UserHomeResponse(BaseModel):
    """Physical state of one household."""

    id: str
    pv_kw: float
    usage_kw: float
    soc_pct: int
    sharing_kw: float
    receiving_kw: float
    grid_import_kw: float
    grid_export_kw: float


class UserCreditsResponse(BaseModel):
    """Credit ledger of one household."""

    earned_today_kwh: float
    used_today_kwh: float
    mtd_net_kwh: float
    local_value_usd_today: float
    local_cost_usd_today: float


class UserEconomicsResponse(BaseModel):
    """Cost comparison of one household."""

    baseline_cost_usd_today: float
    microgrid_cost_usd_today: float
    savings_usd_today: float


class UserStateResponse(BaseModel):
    """Household dashboard payload."""

    schema_version: str = SCHEMA_VERSION
    last_update_ts: datetime
    home: UserHomeResponse
    credits: UserCreditsResponse
    economics: UserEconomicsResponse
    fair_rate_cents_per_kwh: int


# =============================================================================
# Control Requests / Responses
# =============================================================================


class EventRequest(BaseModel):
    """Request to trigger a simulation event."""

    model_config = ConfigDict(extra="forbid")

    type: EventType = Field(description="Event to trigger")
    duration_min: int = Field(
        gt=0,
        le=7 * 24 * 60,
        description="Duration in simulated minutes",
    )


class EventResponse(BaseModel):
    """Acknowledgement of a triggered event."""

    success: bool = True
    event: EventType
    duration: int


class ResetRequest(BaseModel):
    """Request to reset the simulation."""

    model_config = ConfigDict(extra="forbid")

    mode: ResetMode | None = Field(
        default=None,
        description="Reset scope; defaults to the configured reset mode",
    )


class ResetResponse(BaseModel):
    """Acknowledgement of a reset."""

    success: bool = True
    message: str = "Simulation reset"
    mode: ResetMode


class HealthResponse(BaseModel):
    """Health check response."""

    ok: bool = True
    timestamp: datetime
    homes_count: int
    tick_index: int


# =============================================================================
# Legacy Payload Normalization
# =============================================================================


class AdminNow(BaseModel):
    """Canonical community "now" figures.

    Accepts every key spelling older backends emitted.
    """

    production_kw: float = Field(
        default=0.0,
        validation_alias=AliasChoices("production_kw", "production", "prodKw", "prod"),
    )
    consumption_kw: float = Field(
        default=0.0,
        validation_alias=AliasChoices("consumption_kw", "consumption", "loadKw"),
    )
    microgrid_shared_kw: float = Field(
        default=0.0,
        validation_alias=AliasChoices(
            "microgrid_shared_kw", "shared_kw", "mgShared", "mg_used"
        ),
    )
    grid_import_kw: float = Field(
        default=0.0,
        validation_alias=AliasChoices("grid_import_kw", "import_kw", "gridIn", "imp"),
    )
    grid_export_kw: float = Field(
        default=0.0,
        validation_alias=AliasChoices("grid_export_kw", "export_kw", "gridOut", "exp"),
    )
    avg_battery_soc_pct: float = 0.0


def normalize_admin_payload(payload: dict[str, Any]) -> AdminNow:
    """Translate any known upstream payload shape into ``AdminNow``.

    Handles flat payloads, payloads nested under ``community_now`` or
    ``now``, and stream frames with ``community`` / ``grid`` / ``homes``
    blocks.

    Args:
        payload: Decoded JSON payload.

    Returns:
        AdminNow with missing figures defaulted to 0.
    """
    source = payload.get("community_now") or payload.get("now") or payload
    community = source.get("community") or source
    grid = source.get("grid") or {}
    homes = source.get("homes") or []

    values: dict[str, Any] = {}
    for block in (grid, community):
        values.update({k: v for k, v in block.items() if isinstance(v, int | float)})

    socs = [h.get("soc") or 0 for h in homes if isinstance(h, dict)]
    if socs:
        values["avg_battery_soc_pct"] = sum(socs) / len(socs)
    return AdminNow.model_validate(values)
