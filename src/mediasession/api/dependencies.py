"""Dependency injection for API endpoints."""

import logging
from typing import cast

from fastapi import HTTPException, Request

from mediasession.application.services.session_controller import SessionController

logger = logging.getLogger(__name__)


# Hey future me, the controller is built ONCE in the lifespan (see infrastructure/lifecycle.py)
# and hung on app.state. If it isn't there, startup failed or hasn't finished - answer 503
# instead of crashing with AttributeError.
def get_session_controller(request: Request) -> SessionController:
    """Get the media session controller from app state.

    Raises:
        HTTPException: 503 if the controller is not initialized
    """
    if not hasattr(request.app.state, "session_controller"):
        raise HTTPException(
            status_code=503,
            detail="Media session not initialized",
        )
    return cast(SessionController, request.app.state.session_controller)
