"""Domain exceptions."""

from typing import Any


class DomainException(Exception):
    """Base exception for all domain exceptions."""

    # Hey future me, we store message as an attribute so code can inspect it without parsing
    # str(exception). Never raise this directly - always pick a subclass so callers can catch
    # precisely (auth vs transient vs flow errors are handled VERY differently upstream).
    def __init__(self, message: str, *args: Any) -> None:
        super().__init__(message, *args)
        self.message = message


class ValidationError(DomainException):
    """Persisted or received data failed structural validation.

    Raised when a stored credential entry is malformed (empty token strings,
    non-numeric expiry). The credential store catches it and falls through to
    the next load source; it never reaches the user.

    Example:
        raise ValidationError("access_token must be a non-empty string")
    """

    pass


class ConfigurationError(DomainException):
    """Application misconfiguration.

    HTTP Status: 503 (Service Unavailable)

    Example:
        raise ConfigurationError("SPOTIFY_CLIENT_ID is not configured")
    """

    pass


class AuthError(DomainException):
    """Credentials are expired, invalid or missing.

    The client layer gets exactly ONE refresh-and-retry for this. If it still
    fails, the session is torn down and the user has to reconnect.

    HTTP Status: 401
    """

    def __init__(self, message: str, http_status: int | None = None) -> None:
        super().__init__(message)
        self.http_status = http_status


class SessionExpiredError(AuthError):
    """Raised when token refresh fails and re-authentication is required.

    Hey future me - this is the terminal auth state. Common causes:
    - User revoked app access in the provider's account settings
    - Refresh token rotated away by another client
    - App credentials changed

    The session controller catches this, deletes credentials and shows the
    "reconnect" affordance. Nothing retries it automatically.
    """

    def __init__(
        self,
        message: str = "Session expired. Please reconnect to Spotify.",
        error_code: str | None = None,
        http_status: int | None = None,
    ) -> None:
        super().__init__(message, http_status=http_status)
        self.error_code = error_code  # e.g., "invalid_grant"

    @property
    def requires_reauth(self) -> bool:
        """Check if error requires user re-authentication."""
        # 400 with invalid_grant means the refresh token is dead, 401/403 mean access denied
        return self.error_code == "invalid_grant" or self.http_status in (400, 401, 403)


class ExternalServiceError(DomainException):
    """External service returned an error.

    HTTP Status: 502 (Bad Gateway)
    """

    def __init__(self, message: str, http_status: int | None = None) -> None:
        super().__init__(message)
        self.http_status = http_status


class TransientError(ExternalServiceError):
    """Network failure, timeout, rate limit or 5xx from the provider.

    Non-fatal: surfaced as a dismissible notice, connection state unchanged.
    This layer never retries - the caller decides (e.g. refresh_playback()).
    """

    def __init__(
        self,
        message: str,
        http_status: int | None = None,
        retry_after: int | None = None,
    ) -> None:
        super().__init__(message, http_status=http_status)
        self.retry_after = retry_after


class MediaServiceError(ExternalServiceError):
    """Provider rejected the request for a non-auth, non-transient reason.

    Example: 404 "No active device found" on a transport command.
    """

    pass


class FlowError(DomainException):
    """The OAuth authorization flow cannot be completed.

    Propagated from handle_callback(); the UI offers "connect again".

    HTTP Status: 400
    """

    pass


class MissingVerifierError(FlowError):
    """No PKCE verifier is stored for this flow (or it is too old)."""

    def __init__(
        self,
        message: str = "Session expired. Please try connecting again from the main page.",
    ) -> None:
        super().__init__(message)


class StateMismatchError(FlowError):
    """The callback state does not match the state issued by begin()."""

    pass


class CodeAlreadyUsedError(FlowError):
    """The authorization code was already exchanged by this flow."""

    pass


__all__ = [
    "AuthError",
    "CodeAlreadyUsedError",
    "ConfigurationError",
    "DomainException",
    "ExternalServiceError",
    "FlowError",
    "MediaServiceError",
    "MissingVerifierError",
    "SessionExpiredError",
    "StateMismatchError",
    "TransientError",
    "ValidationError",
]
