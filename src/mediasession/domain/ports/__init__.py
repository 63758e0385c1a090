"""Domain ports (interfaces) for the media session.

Hey future me - the application layer only ever talks to these ABCs. The concrete JSON-file
stores, the SQL repository and the httpx clients live in infrastructure/. Tests swap in
AsyncMock(spec=...) or tiny in-memory implementations without touching the services.
"""

from abc import ABC, abstractmethod
from typing import Any

from mediasession.domain.entities import PendingAuthorization


class ILocalTokenStore(ABC):
    """Fast durable local store for the current token entry (synchronous)."""

    @abstractmethod
    def read(self) -> Any | None:
        """Return the raw stored entry, or None if nothing is stored.

        The entry is NOT validated here - the credential store does that.
        """
        pass

    @abstractmethod
    def write(self, entry: dict[str, Any]) -> None:
        """Replace the stored entry."""
        pass

    @abstractmethod
    def clear(self) -> None:
        """Remove the stored entry (no-op if absent)."""
        pass


class IPendingTokenSlot(ABC):
    """One-shot slot written by an out-of-band OAuth callback handler."""

    @abstractmethod
    def has_pending(self) -> bool:
        """Check whether tokens are waiting, without consuming them."""
        pass

    @abstractmethod
    def take(self) -> Any | None:
        """Read AND remove the pending entry.

        Returns:
            Raw entry, or None if the slot is empty or unreadable
        """
        pass

    @abstractmethod
    def put(self, entry: dict[str, Any]) -> None:
        """Write tokens into the slot (used by the callback handler)."""
        pass

    @abstractmethod
    def clear(self) -> None:
        """Empty the slot."""
        pass


class IRemoteTokenStore(ABC):
    """Slow remote backup store keyed by user identity."""

    @abstractmethod
    async def get(self, user_id: str) -> dict[str, Any] | None:
        """
        Fetch the backup row for a user.

        Args:
            user_id: Host application user identity

        Returns:
            Entry with access_token, refresh_token, expires_at (epoch ms), or None
        """
        pass

    @abstractmethod
    async def upsert(self, user_id: str, entry: dict[str, Any]) -> None:
        """Insert or update the backup row for a user."""
        pass

    @abstractmethod
    async def delete(self, user_id: str) -> None:
        """Delete the backup row for a user (no-op if absent)."""
        pass


class IVerifierStore(ABC):
    """Short-lived, flow-scoped store for the PKCE verifier and state."""

    @abstractmethod
    def save(self, pending: PendingAuthorization) -> None:
        pass

    @abstractmethod
    def load(self) -> PendingAuthorization | None:
        """Return the stored flow data, or None if absent/unreadable."""
        pass

    @abstractmethod
    def clear(self) -> None:
        pass


class IOAuthProvider(ABC):
    """Port for the provider's authorize and token endpoints."""

    @abstractmethod
    def build_authorization_url(self, state: str, code_challenge: str) -> str:
        """
        Build the authorization redirect URL.

        Args:
            state: Opaque CSRF state echoed back on the callback
            code_challenge: S256 PKCE challenge

        Returns:
            Authorization URL
        """
        pass

    @abstractmethod
    async def exchange_code(self, code: str, code_verifier: str) -> dict[str, Any]:
        """
        Exchange an authorization code for tokens.

        Returns:
            Token response with access_token, refresh_token, expires_in
        """
        pass

    @abstractmethod
    async def refresh_token(self, refresh_token: str) -> dict[str, Any]:
        """
        Refresh an access token.

        Returns:
            Token response with new access_token, expires_in and maybe refresh_token
        """
        pass


class ITokenProvider(ABC):
    """Hands out bearer tokens to the media service client."""

    @abstractmethod
    async def get_valid_token(self) -> str | None:
        """Return a non-expiring access token, or None when not connected."""
        pass

    @abstractmethod
    async def force_refresh(self, stale_access_token: str) -> str | None:
        """Get a token newer than the one the service just rejected."""
        pass


__all__ = [
    "ILocalTokenStore",
    "IOAuthProvider",
    "ITokenProvider",
    "IPendingTokenSlot",
    "IRemoteTokenStore",
    "IVerifierStore",
]
