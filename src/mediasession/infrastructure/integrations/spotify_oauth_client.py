"""Spotify OAuth client (authorize + token endpoints) with PKCE."""

import base64
import hashlib
import logging
import secrets
from typing import Any, cast
from urllib.parse import urlencode

import httpx

from mediasession.config.settings import SpotifySettings
from mediasession.domain.exceptions import (
    ConfigurationError,
    FlowError,
    SessionExpiredError,
    TransientError,
)
from mediasession.domain.ports import IOAuthProvider

logger = logging.getLogger(__name__)

# 48 random bytes -> exactly 64 base64url characters, no padding to strip
_VERIFIER_BYTES = 48


class SpotifyOAuthClient(IOAuthProvider):
    """HTTP client for the Spotify accounts service (PKCE, no client secret)."""

    # Hey future me, this init is deceptively simple - we DON'T create the HTTP client here
    # because we need to be async-friendly. The actual client gets lazy-loaded in _get_client().
    # Tests pass a ready-made client (httpx.MockTransport) through http_client instead.
    def __init__(
        self,
        settings: SpotifySettings,
        timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """
        Initialize the OAuth client.

        Args:
            settings: Spotify configuration settings
            timeout: Total request timeout in seconds
            http_client: Optional pre-built client (owned by the caller)
        """
        self.settings = settings
        self._timeout = timeout
        self._client = http_client
        self._owns_client = http_client is None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self._timeout, connect=10.0))
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    # Yo future me, PKCE is that OAuth security dance Spotify requires instead of a client
    # secret. The verifier MUST stay secret - if someone steals it during the auth flow, they
    # can hijack the token exchange. Don't log this value or put it in URLs!
    @staticmethod
    def generate_code_verifier() -> str:
        """
        Generate a PKCE code verifier.

        Returns:
            Random 64-character URL-safe verifier
        """
        return base64.urlsafe_b64encode(secrets.token_bytes(_VERIFIER_BYTES)).decode("utf-8")

    @staticmethod
    def generate_code_challenge(code_verifier: str) -> str:
        """
        Generate a PKCE code challenge from verifier.

        Args:
            code_verifier: Code verifier string

        Returns:
            SHA256 hash of code verifier as base64 URL-safe string without padding
        """
        digest = hashlib.sha256(code_verifier.encode("utf-8")).digest()
        return base64.urlsafe_b64encode(digest).decode("utf-8").rstrip("=")

    @staticmethod
    def generate_state() -> str:
        """Generate an opaque CSRF state value."""
        return secrets.token_urlsafe(16)

    def _require_configuration(self) -> None:
        # Empty values cause cryptic "missing required parameter" pages on Spotify's side.
        # Fail fast here with a message that says which variable to set.
        if not self.settings.client_id or not self.settings.client_id.strip():
            raise ConfigurationError(
                "SPOTIFY_CLIENT_ID is not configured. "
                "Set SPOTIFY_CLIENT_ID in your environment. "
                "Get credentials at https://developer.spotify.com/dashboard"
            )
        if not self.settings.redirect_uri or not self.settings.redirect_uri.strip():
            raise ConfigurationError(
                "SPOTIFY_REDIRECT_URI is not configured. "
                "Set it to match your callback URL "
                "(e.g., http://localhost:8000/api/media/callback)"
            )

    def build_authorization_url(self, state: str, code_challenge: str) -> str:
        """
        Build the Spotify authorization URL.

        Args:
            state: State parameter for CSRF protection
            code_challenge: S256 PKCE challenge

        Returns:
            Authorization URL

        Raises:
            ConfigurationError: If client_id or redirect_uri is not configured
        """
        self._require_configuration()

        params = {
            "response_type": "code",
            "client_id": self.settings.client_id,
            "redirect_uri": self.settings.redirect_uri,
            "scope": self.settings.scopes,
            "state": state,
            "code_challenge_method": "S256",
            "code_challenge": code_challenge,
        }
        return f"{self.settings.authorize_url}?{urlencode(params)}"

    async def _post_token(self, data: dict[str, str]) -> httpx.Response:
        client = await self._get_client()
        try:
            return await client.post(
                self.settings.token_url,
                data=data,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
        except httpx.TimeoutException as e:
            raise TransientError(f"Spotify token endpoint timed out: {e}") from e
        except httpx.TransportError as e:
            raise TransientError(f"Spotify token endpoint unreachable: {e}") from e

    @staticmethod
    def _error_payload(response: httpx.Response) -> tuple[str, str]:
        """Extract (error, error_description) from an OAuth error body."""
        try:
            body = response.json()
        except ValueError:
            return "", response.text[:200]
        if not isinstance(body, dict):
            return "", ""
        return str(body.get("error", "")), str(body.get("error_description", ""))

    @staticmethod
    def _raise_if_transient(response: httpx.Response, operation: str) -> None:
        if response.status_code == 429 or response.status_code >= 500:
            retry_after = response.headers.get("Retry-After")
            raise TransientError(
                f"Spotify {operation} failed with HTTP {response.status_code}",
                http_status=response.status_code,
                retry_after=int(retry_after) if retry_after and retry_after.isdigit() else None,
            )

    # Yo future me, this is THE critical step after user auth. The code is single-use and
    # expires in ~10 minutes. The redirect_uri MUST match EXACTLY what we used when building
    # the authorization URL, or Spotify rejects it. And yeah, it HAS to be form-urlencoded.
    async def exchange_code(self, code: str, code_verifier: str) -> dict[str, Any]:
        """
        Exchange authorization code for tokens.

        Args:
            code: Authorization code
            code_verifier: PKCE code verifier

        Returns:
            Token response with access_token, refresh_token, expires_in

        Raises:
            ConfigurationError: If the client is not configured
            FlowError: If Spotify rejects the code (expired, reused, verifier mismatch)
            TransientError: On network failure, 429 or 5xx
        """
        self._require_configuration()

        response = await self._post_token(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self.settings.redirect_uri,
                "client_id": self.settings.client_id,
                "code_verifier": code_verifier,
            }
        )
        self._raise_if_transient(response, "code exchange")

        if response.is_error:
            error_code, description = self._error_payload(response)
            logger.warning(
                "Spotify rejected authorization code (HTTP %d, error=%s)",
                response.status_code,
                error_code or "unknown",
            )
            raise FlowError(
                f"Failed to exchange authorization code: {description or error_code or response.status_code}"
            )

        return cast(dict[str, Any], response.json())

    # Hey future me, access tokens expire after 1 hour. Spotify returns 400 with
    # error="invalid_grant" when the refresh token is revoked or rotated away - that means
    # re-auth is required, not a retry. Spotify MAY omit refresh_token in the response, the
    # caller keeps the old one in that case (see TokenSet.from_token_response).
    async def refresh_token(self, refresh_token: str) -> dict[str, Any]:
        """
        Refresh an access token.

        Args:
            refresh_token: Refresh token from previous authentication

        Returns:
            Token response with access_token, expires_in and maybe a rotated refresh_token

        Raises:
            SessionExpiredError: If the refresh token is invalid/revoked or access is denied
            TransientError: On network failure, 429 or 5xx
        """
        response = await self._post_token(
            {
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
                "client_id": self.settings.client_id,
            }
        )
        self._raise_if_transient(response, "token refresh")

        if response.status_code == 400:
            error_code, description = self._error_payload(response)
            raise SessionExpiredError(
                message=(
                    f"Refresh token invalid: "
                    f"{description or 'Refresh token is invalid or has been revoked'}"
                ),
                error_code=error_code or None,
                http_status=400,
            )

        if response.status_code in (401, 403):
            raise SessionExpiredError(
                message="Spotify access denied. Please reconnect to Spotify.",
                error_code="access_denied",
                http_status=response.status_code,
            )

        if response.is_error:
            raise SessionExpiredError(
                message=f"Token refresh failed with HTTP {response.status_code}",
                http_status=response.status_code,
            )

        return cast(dict[str, Any], response.json())
