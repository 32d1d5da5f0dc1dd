"""FastAPI transport for the settlement engine.

This module exposes the engine to the dashboard over HTTP and
Server-Sent Events, using the wire field names existing consumers expect.
"""

from microgrid.api.main import app, create_app
from microgrid.api.schemas import (
    SCHEMA_VERSION,
    AdminNow,
    AdminStateResponse,
    EventRequest,
    StreamFrame,
    UserStateResponse,
    normalize_admin_payload,
)

__all__ = [
    "app",
    "create_app",
    "SCHEMA_VERSION",
    "AdminNow",
    "AdminStateResponse",
    "EventRequest",
    "StreamFrame",
    "UserStateResponse",
    "normalize_admin_payload",
]
