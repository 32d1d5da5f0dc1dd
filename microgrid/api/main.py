"""FastAPI application for the microgrid settlement engine.

This module builds the FastAPI application: one settlement engine, the
tick driver selected by the service settings, CORS and the routers.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from microgrid.api.routes import router as state_router
from microgrid.api.routes import sim_router
from microgrid.api.services import SettlementService
from microgrid.config import ServiceSettings, TickMode, load_config, load_service_settings
from microgrid.domain.models import SettlementConfig
from microgrid.engine import SettlementEngine, run_periodic_ticks

logger = logging.getLogger(__name__)

VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: runs the timer tick driver when configured."""
    service: SettlementService = app.state.service
    task: asyncio.Task[None] | None = None

    if service.settings.tick_mode == TickMode.TIMER:
        task = asyncio.create_task(
            run_periodic_ticks(service.engine, service.settings.tick_interval_seconds)
        )
    logger.info(
        "Simulator started: %d homes, tick mode %s",
        service.engine.config.household_count,
        service.settings.tick_mode.value,
    )
    yield

    if task is not None:
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
    logger.info("Simulator stopped")


def create_app(
    config: SettlementConfig | None = None,
    settings: ServiceSettings | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        config: Engine configuration; read from the environment if omitted.
        settings: Service settings; read from the environment if omitted.

    Raises:
        ConfigurationError: If the environment holds an invalid value.
    """
    config = config if config is not None else load_config()
    settings = settings if settings is not None else load_service_settings()

    app = FastAPI(
        title="Microgrid Settlement Engine",
        description="""
Peer-to-peer energy settlement for a simulated solar community.

## Key Endpoints

- `GET /stream`: Server-Sent Events, one frame per settled tick
- `GET /state/admin`: Community-wide operator view
- `GET /state/user/{home_id}`: Single household view
- `POST /sim/event`: Trigger an outage, cloudburst, heatwave or EV surge
- `POST /sim/reset`: Reset the simulation
        """,
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.service = SettlementService(SettlementEngine(config), settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    app.include_router(state_router)
    app.include_router(sim_router)

    @app.get("/", response_class=JSONResponse)
    async def root() -> dict:
        """Root endpoint with API information."""
        return {
            "name": "Microgrid Settlement Engine",
            "version": VERSION,
            "docs": "/docs",
            "health": "/health",
            "stream": "/stream",
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "microgrid.api.main:app",
        host="0.0.0.0",
        port=3001,
        reload=True,
    )
