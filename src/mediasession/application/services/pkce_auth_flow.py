"""PKCE authorization flow: begin() builds the redirect, complete() exchanges the code.

OAuth Flow:
1. begin() -> verifier + state stored, authorization URL returned
2. User visits URL, grants access, provider redirects back with ?code=&state=
3. complete(code, state) -> TokenSet

Token storage is NOT done here - the session controller persists the result through
the credential store. This class only owns the flow-scoped verifier.
"""

import logging
from collections.abc import Callable

from mediasession.domain.entities import PendingAuthorization, TokenSet, now_ms
from mediasession.domain.exceptions import (
    CodeAlreadyUsedError,
    FlowError,
    MissingVerifierError,
    StateMismatchError,
    ValidationError,
)
from mediasession.domain.ports import IOAuthProvider, IVerifierStore
from mediasession.infrastructure.integrations.spotify_oauth_client import SpotifyOAuthClient

logger = logging.getLogger(__name__)


class PKCEAuthFlow:
    """One authorization-code exchange per code."""

    def __init__(
        self,
        provider: IOAuthProvider,
        verifier_store: IVerifierStore,
        verifier_max_age_seconds: int = 600,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._provider = provider
        self._verifiers = verifier_store
        self._max_age = verifier_max_age_seconds
        self._clock = clock
        self._used_codes: set[str] = set()

    def begin(self) -> str:
        """
        Start a new authorization flow.

        Any previous flow data is discarded first, so only the latest redirect
        can complete. Codes remembered from the old flow go with it; a code
        issued for an earlier challenge is rejected by the provider anyway.

        Returns:
            Authorization URL to send the user to

        Raises:
            ConfigurationError: If the OAuth client is not configured
        """
        self._verifiers.clear()
        self._used_codes.clear()

        code_verifier = SpotifyOAuthClient.generate_code_verifier()
        code_challenge = SpotifyOAuthClient.generate_code_challenge(code_verifier)
        state = SpotifyOAuthClient.generate_state()

        # Build the URL BEFORE persisting - a ConfigurationError must not leave a dangling verifier
        url = self._provider.build_authorization_url(state=state, code_challenge=code_challenge)
        self._verifiers.save(
            PendingAuthorization(code_verifier=code_verifier, state=state, created_at=self._clock())
        )

        logger.debug("Started PKCE flow with state=%s...", state[:8])
        return url

    # Hey future me - ALL the checks here happen before any network call. An old tab
    # hitting the callback URL after the verifier is gone must NOT burn a request against the
    # token endpoint (it would fail anyway and just eat rate-limit budget).
    # The verifier survives a FAILED exchange so a transient network error can be retried
    # with the same code; it's only cleared on success.
    async def complete(self, code: str, state: str | None = None) -> TokenSet:
        """
        Finish the flow by exchanging the authorization code.

        Args:
            code: Authorization code from the callback
            state: State echoed by the provider (checked when given)

        Returns:
            Fresh TokenSet

        Raises:
            MissingVerifierError: No verifier stored, or it is too old
            StateMismatchError: state does not match the one issued by begin()
            CodeAlreadyUsedError: This code was already exchanged
            FlowError: The provider rejected the code
            TransientError: Network failure talking to the token endpoint
        """
        if code in self._used_codes:
            raise CodeAlreadyUsedError("Authorization code has already been used.")

        pending = self._verifiers.load()
        if pending is None:
            raise MissingVerifierError()

        if pending.is_expired(self._max_age, now=self._clock()):
            self._verifiers.clear()
            logger.info("PKCE verifier expired before callback arrived")
            raise MissingVerifierError()

        if state is not None and state != pending.state:
            raise StateMismatchError(
                "Authorization state mismatch. Please try connecting again from the main page."
            )

        # Claim the code before awaiting so a duplicate callback racing this one is rejected
        self._used_codes.add(code)
        issued_at = self._clock()
        try:
            response = await self._provider.exchange_code(code, pending.code_verifier)
        except Exception:
            self._used_codes.discard(code)
            raise
        self._verifiers.clear()

        try:
            tokens = TokenSet.from_token_response(response, issued_at=issued_at)
        except ValidationError as e:
            raise FlowError(f"Token endpoint returned an unusable response: {e}") from e
        logger.info("Successfully exchanged code for tokens")
        return tokens
