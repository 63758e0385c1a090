"""OAuth token value objects."""

import math
import time
from dataclasses import dataclass
from typing import Any

from mediasession.domain.exceptions import ValidationError

DEFAULT_EXPIRES_IN_SECONDS = 3600


def now_ms() -> int:
    """Current wall-clock time as epoch milliseconds."""
    return int(time.time() * 1000)


def _require_token_string(data: dict[str, Any], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{key} must be a non-empty string")
    return value


def _require_epoch_ms(data: dict[str, Any], key: str) -> int:
    value = data.get(key)
    # bool is an int subclass - True would sneak through as "1ms after epoch".
    # json.load happily produces NaN and Infinity, int() chokes on both.
    if (
        isinstance(value, bool)
        or not isinstance(value, int | float)
        or not math.isfinite(value)
    ):
        raise ValidationError(f"{key} must be finite numeric epoch milliseconds")
    return int(value)


# Hey future me - TokenSet is IMMUTABLE on purpose. A refresh never patches the old object,
# it produces a brand new TokenSet which replaces the old one in the cache, the local file and
# the remote row. The token refresher relies on this: it single-flights refreshes per TokenSet
# *identity*, so mutating in place would break the "same generation" check.
@dataclass(frozen=True)
class TokenSet:
    """Access/refresh token pair with an absolute expiry (epoch milliseconds)."""

    access_token: str
    refresh_token: str
    expires_at: int

    def is_valid(self) -> bool:
        """Both token strings are non-empty."""
        return bool(self.access_token.strip() and self.refresh_token.strip())

    def expires_within(self, buffer_ms: int, now: int | None = None) -> bool:
        """Check if the access token expires within buffer_ms from now (inclusive)."""
        current = now_ms() if now is None else now
        return self.expires_at <= current + buffer_ms

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the persisted schema."""
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expires_at": self.expires_at,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "TokenSet":
        """Build a TokenSet from a persisted entry, validating field by field.

        Raises:
            ValidationError: If the entry is not a dict, a token string is empty,
                or expires_at is not a finite number.
        """
        if not isinstance(data, dict):
            raise ValidationError("Token entry must be an object")

        access_token = _require_token_string(data, "access_token")
        refresh_token = _require_token_string(data, "refresh_token")

        return cls(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=_require_epoch_ms(data, "expires_at"),
        )

    @classmethod
    def from_token_response(
        cls,
        data: dict[str, Any],
        issued_at: int | None = None,
        previous_refresh_token: str | None = None,
    ) -> "TokenSet":
        """Build a TokenSet from a token endpoint response.

        The provider returns a relative ``expires_in`` (seconds); we store an
        absolute instant. On refresh the provider may omit ``refresh_token``,
        in which case the previous one stays in use.

        Raises:
            ValidationError: If the response lacks usable tokens.
        """
        issued = now_ms() if issued_at is None else issued_at
        expires_in = data.get("expires_in") or DEFAULT_EXPIRES_IN_SECONDS
        try:
            expires_in_seconds = int(expires_in)
        except (TypeError, ValueError, OverflowError) as e:
            raise ValidationError("expires_in must be a finite number of seconds") from e

        return cls.from_dict(
            {
                "access_token": data.get("access_token"),
                "refresh_token": data.get("refresh_token") or previous_refresh_token,
                "expires_at": issued + expires_in_seconds * 1000,
            }
        )

    def __repr__(self) -> str:
        # Never leak secrets into logs or tracebacks
        return (
            f"TokenSet(access_token='{self.access_token[:4]}...', "
            f"refresh_token='{self.refresh_token[:4]}...', expires_at={self.expires_at})"
        )


@dataclass(frozen=True)
class PendingAuthorization:
    """Flow-scoped PKCE data stored between begin() and complete()."""

    code_verifier: str
    state: str
    created_at: int

    def is_expired(self, max_age_seconds: int, now: int | None = None) -> bool:
        current = now_ms() if now is None else now
        return current - self.created_at >= max_age_seconds * 1000

    def to_dict(self) -> dict[str, Any]:
        return {
            "code_verifier": self.code_verifier,
            "state": self.state,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "PendingAuthorization":
        """Raises ValidationError if the stored entry is unusable."""
        if not isinstance(data, dict):
            raise ValidationError("Pending authorization must be an object")
        verifier = _require_token_string(data, "code_verifier")
        return cls(
            code_verifier=verifier,
            state=str(data.get("state") or ""),
            created_at=_require_epoch_ms(data, "created_at"),
        )

    def __repr__(self) -> str:
        return f"PendingAuthorization(state='{self.state[:8]}...', created_at={self.created_at})"
