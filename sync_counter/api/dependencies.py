"""Shared FastAPI dependencies for the broadcast hub and database access."""

from fastapi import Request

from sync_counter.database.engine import SessionLocal
from sync_counter.services.broadcast import BroadcastHub


def get_broadcast_hub(request: Request) -> BroadcastHub:
    """The single hub created in the application lifespan."""
    return request.app.state.broadcast_hub


def get_session_factory():
    """Session factory for handlers that outlive a request-scoped session."""
    return SessionLocal
