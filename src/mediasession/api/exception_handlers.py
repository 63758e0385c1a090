"""Custom exception handlers for the FastAPI application.

Converts domain exceptions into HTTP responses so routes can just let them
propagate.
"""

import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from mediasession.domain.exceptions import (
    AuthError,
    ConfigurationError,
    ExternalServiceError,
    FlowError,
    SessionExpiredError,
    TransientError,
)

logger = logging.getLogger(__name__)

RESTART_CONNECT_HINT = "Start the connection again via /api/media/connect"


# Hey future me, these handlers are registered GLOBALLY, so every route can raise domain errors
# and get a clean JSON body instead of a 500 with a stack trace. Must be called during app
# setup (create_app), before the first request arrives.
def register_exception_handlers(app: FastAPI) -> None:
    """Register handlers for the media-session domain exceptions.

    - AuthError (incl. SessionExpiredError) → 401
    - FlowError (verifier missing, state mismatch, code reused) → 400 + hint
    - ExternalServiceError (transient, provider 4xx) → 502
    - ConfigurationError → 503

    Args:
        app: FastAPI application instance
    """

    @app.exception_handler(AuthError)
    async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
        """Handle expired or missing credentials with 401 Unauthorized."""
        logger.warning(
            "Auth error at %s: %s",
            request.url.path,
            exc.message,
            extra={"path": request.url.path, "error": exc.message},
        )
        content: dict[str, object] = {"detail": exc.message}
        if isinstance(exc, SessionExpiredError):
            content["requires_reauth"] = exc.requires_reauth
        return JSONResponse(status_code=status.HTTP_401_UNAUTHORIZED, content=content)

    @app.exception_handler(FlowError)
    async def flow_error_handler(request: Request, exc: FlowError) -> JSONResponse:
        """Handle a broken OAuth flow with 400 Bad Request."""
        logger.warning(
            "OAuth flow error at %s: %s (%s)",
            request.url.path,
            exc.message,
            type(exc).__name__,
            extra={"path": request.url.path, "error": exc.message},
        )
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"detail": exc.message, "hint": RESTART_CONNECT_HINT},
        )

    @app.exception_handler(ExternalServiceError)
    async def external_service_error_handler(
        request: Request, exc: ExternalServiceError
    ) -> JSONResponse:
        """Handle provider failures with 502 Bad Gateway."""
        logger.warning(
            "External service error at %s: %s",
            request.url.path,
            exc.message,
            extra={"path": request.url.path, "error": exc.message},
        )
        headers: dict[str, str] = {}
        if isinstance(exc, TransientError) and exc.retry_after is not None:
            headers["Retry-After"] = str(exc.retry_after)
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content={"detail": exc.message},
            headers=headers,
        )

    @app.exception_handler(ConfigurationError)
    async def configuration_error_handler(
        request: Request, exc: ConfigurationError
    ) -> JSONResponse:
        """Handle misconfiguration with 503 Service Unavailable."""
        logger.error(
            "Configuration error at %s: %s",
            request.url.path,
            exc.message,
            extra={"path": request.url.path, "error": exc.message},
        )
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"detail": exc.message},
        )
