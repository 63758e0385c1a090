"""Application services - credentials, auth flow, refresh and session orchestration."""

from mediasession.application.services.credential_store import CredentialStore
from mediasession.application.services.pkce_auth_flow import PKCEAuthFlow
from mediasession.application.services.presentation_service import (
    PresentationService,
    detect_mood,
    dominant_color_from_bytes,
)
from mediasession.application.services.session_controller import SessionController
from mediasession.application.services.token_refresher import TokenRefresher

__all__ = [
    "CredentialStore",
    "PKCEAuthFlow",
    "PresentationService",
    "SessionController",
    "TokenRefresher",
    "detect_mood",
    "dominant_color_from_bytes",
]
