"""FastAPI application factory."""

from fastapi import FastAPI

from mediasession.api.exception_handlers import register_exception_handlers
from mediasession.api.routers import api_router
from mediasession.config import Settings, get_settings
from mediasession.infrastructure.lifecycle import lifespan


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create the FastAPI app.

    Args:
        settings: Explicit settings (tests); defaults to get_settings()
    """
    settings = settings or get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="Spotify media session: PKCE connect, token lifecycle and playback sync",
        lifespan=lifespan,
    )
    # The lifespan reads this instead of the cached global settings
    app.state.settings = settings

    register_exception_handlers(app)
    app.include_router(api_router, prefix="/api")
    return app
