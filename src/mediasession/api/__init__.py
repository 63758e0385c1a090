"""API module for mediasession.

- routers/: HTTP endpoints (mounted under /api)
- schemas/: Pydantic request/response models
- dependencies.py: app.state lookups for routes
- exception_handlers.py: domain exception → HTTP status mapping
"""

from mediasession.api.app import create_app
from mediasession.api.routers import api_router

__all__ = ["api_router", "create_app"]
