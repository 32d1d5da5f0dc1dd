"""FastAPI routers for the simulator endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import StreamingResponse

from microgrid.api.schemas import (
    AdminStateResponse,
    EventRequest,
    EventResponse,
    HealthResponse,
    ResetRequest,
    ResetResponse,
    StreamFrame,
    UserStateResponse,
)
from microgrid.api.services import SettlementService

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
}


def get_service(request: Request) -> SettlementService:
    """Settlement service bound to the running application."""
    return request.app.state.service


router = APIRouter(tags=["state"])


@router.get("/health", response_model=HealthResponse)
async def health_check(
    service: SettlementService = Depends(get_service),
) -> HealthResponse:
    """Health check endpoint."""
    return service.health()


@router.get("/stream")
async def stream(
    max_frames: int | None = Query(
        default=None, ge=1, description="Close the stream after this many frames"
    ),
    service: SettlementService = Depends(get_service),
) -> StreamingResponse:
    """Server-Sent Events stream, one frame per settled tick."""
    return StreamingResponse(
        service.stream(max_frames=max_frames),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@router.get("/state/admin", response_model=AdminStateResponse)
async def admin_state(
    service: SettlementService = Depends(get_service),
) -> AdminStateResponse:
    """Community-wide operator view."""
    return service.admin_state()


@router.get("/state/user/{home_id}", response_model=UserStateResponse)
async def user_state(
    home_id: str,
    service: SettlementService = Depends(get_service),
) -> UserStateResponse:
    """Single household view."""
    result = service.user_state(home_id)
    if result is None:
        raise HTTPException(status_code=404, detail="Home not found")
    return result


# =============================================================================
# Simulation Control
# =============================================================================

sim_router = APIRouter(prefix="/sim", tags=["simulation"])


@sim_router.post("/event", response_model=EventResponse)
async def trigger_event(
    request: EventRequest,
    service: SettlementService = Depends(get_service),
) -> EventResponse:
    """Trigger a timed simulation event (outage, cloudburst, ...)."""
    try:
        return service.trigger_event(request)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e


@sim_router.post("/reset", response_model=ResetResponse)
async def reset_simulation(
    request: ResetRequest | None = None,
    service: SettlementService = Depends(get_service),
) -> ResetResponse:
    """Reset the simulation clock and, depending on mode, its accumulators."""
    mode = request.mode if request is not None else None
    return service.reset(mode)


@sim_router.post("/tick", response_model=StreamFrame, response_model_by_alias=True)
async def advance_tick(
    service: SettlementService = Depends(get_service),
) -> StreamFrame:
    """Advance the simulation by one tick."""
    return service.tick()
