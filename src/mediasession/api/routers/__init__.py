"""API router initialization."""

# Hey future me, every sub-router gets its prefix HERE, and api_router itself is mounted under
# /api in create_app(). So session.router's "/state" ends up as /api/media/state.

from fastapi import APIRouter

from mediasession.api.routers import session

api_router = APIRouter()

api_router.include_router(session.router, prefix="/media", tags=["Media Session"])

__all__ = ["api_router", "session"]
