"""Hands out valid access tokens, refreshing them at most once per generation."""

import asyncio
import logging
from collections.abc import Callable

from mediasession.application.services.credential_store import CredentialStore
from mediasession.domain.entities import OperationPhase, TokenSet, now_ms
from mediasession.domain.exceptions import SessionExpiredError
from mediasession.domain.ports import IOAuthProvider, ITokenProvider
from mediasession.infrastructure.observability.log_messages import LogMessages

logger = logging.getLogger(__name__)

ExpiryListener = Callable[[SessionExpiredError], None]


class TokenRefresher(ITokenProvider):
    """Guarantees a non-expiring access token before every API call.

    Single-flight: while a refresh for one TokenSet is running, every other
    caller that sees the same TokenSet awaits that refresh instead of starting
    its own. A refresh failure is terminal: credentials are deleted, the expiry
    listener is told, and SessionExpiredError is raised. Nothing retries it.
    """

    def __init__(
        self,
        credential_store: CredentialStore,
        provider: IOAuthProvider,
        refresh_buffer_seconds: int = 300,
        on_session_expired: ExpiryListener | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._store = credential_store
        self._provider = provider
        self._buffer_ms = refresh_buffer_seconds * 1000
        self._on_session_expired = on_session_expired
        self._clock = clock

        self.phase = OperationPhase.IDLE
        self._inflight: asyncio.Task[TokenSet] | None = None
        self._inflight_for: TokenSet | None = None

    def set_expiry_listener(self, listener: ExpiryListener | None) -> None:
        self._on_session_expired = listener

    async def get_valid_token(self) -> str | None:
        """
        Get an access token that won't expire within the refresh buffer.

        Returns:
            Access token, or None if no TokenSet is cached (not connected)

        Raises:
            SessionExpiredError: The refresh failed; credentials are gone
        """
        tokens = self._store.cached
        if tokens is None:
            return None

        if not tokens.expires_within(self._buffer_ms, now=self._clock()):
            return tokens.access_token

        refreshed = await self._refresh(tokens)
        return refreshed.access_token

    # Hey future me - the media client calls this after a 401/403. If somebody else already
    # refreshed (the cached token differs from the one that got rejected), just hand out the
    # newer one. Otherwise refresh the CURRENT generation through the same single-flight path,
    # so N parallel requests all hitting 401 still cause exactly one refresh.
    async def force_refresh(self, stale_access_token: str) -> str | None:
        """
        Get a token newer than the rejected one.

        Args:
            stale_access_token: The token the media service just rejected

        Returns:
            A different access token, or None if not connected

        Raises:
            SessionExpiredError: The refresh failed; credentials are gone
        """
        tokens = self._store.cached
        if tokens is None:
            return None

        if tokens.access_token != stale_access_token:
            return await self.get_valid_token()

        refreshed = await self._refresh(tokens)
        return refreshed.access_token

    async def _refresh(self, stale: TokenSet) -> TokenSet:
        if self._inflight is None or self._inflight_for is not stale:
            task = asyncio.get_running_loop().create_task(self._do_refresh(stale))
            self._inflight = task
            self._inflight_for = stale
            self.phase = OperationPhase.IN_FLIGHT
            task.add_done_callback(self._clear_inflight)

        # shield: a caller being cancelled must not cancel the refresh other callers await
        return await asyncio.shield(self._inflight)

    def _clear_inflight(self, task: asyncio.Task[TokenSet]) -> None:
        if self._inflight is task:
            self._inflight = None
            self._inflight_for = None
            self.phase = OperationPhase.IDLE
        # Retrieve the exception so a refresh nobody awaited anymore doesn't log "never retrieved"
        if not task.cancelled():
            task.exception()

    async def _do_refresh(self, stale: TokenSet) -> TokenSet:
        logger.debug("Refreshing access token (expires_at=%d)", stale.expires_at)
        issued_at = self._clock()
        try:
            response = await self._provider.refresh_token(stale.refresh_token)
            fresh = TokenSet.from_token_response(
                response,
                issued_at=issued_at,
                previous_refresh_token=stale.refresh_token,
            )
        except SessionExpiredError as e:
            self._expire(e, stale)
            raise
        except Exception as e:
            raise self._expire(e, stale) from e

        if self._store.cached is not stale:
            # Credentials were deleted or replaced while we waited (disconnect, new login).
            # Don't resurrect the old session by persisting over it.
            logger.debug("Token refresh finished after credentials changed, not persisting")
            return fresh

        self._store.save(fresh)
        logger.debug("Access token refreshed (expires_at=%d)", fresh.expires_at)
        return fresh

    def _expire(self, cause: Exception, stale: TokenSet) -> SessionExpiredError:
        error = (
            cause
            if isinstance(cause, SessionExpiredError)
            else SessionExpiredError(
                message="Session expired. Please reconnect to Spotify.",
                error_code=getattr(cause, "error_code", None),
                http_status=getattr(cause, "http_status", None),
            )
        )
        logger.warning(LogMessages.session_expired(service="Spotify", reason=str(cause)))

        current = self._store.cached
        if current is not None and current is not stale:
            # A new login replaced the generation that failed, leave it alone
            return error

        self._store.delete()
        if self._on_session_expired is not None:
            try:
                self._on_session_expired(error)
            except Exception:
                logger.exception("Session expiry listener failed")
        return error
