"""Tests for TokenRefresher: buffer check, single-flight refresh and terminal failures."""

import asyncio
from unittest.mock import MagicMock

import pytest

from mediasession.application.services.credential_store import CredentialStore
from mediasession.application.services.token_refresher import TokenRefresher
from mediasession.domain.entities import OperationPhase, TokenSet
from mediasession.domain.exceptions import SessionExpiredError, TransientError

NOW = 1_704_067_200_000
MINUTE_MS = 60_000


@pytest.fixture
def store(local_store, pending_slot) -> CredentialStore:
    return CredentialStore(local_store, pending_slot)


@pytest.fixture
def refresher(store: CredentialStore, oauth_provider, clock) -> TokenRefresher:
    return TokenRefresher(store, oauth_provider, refresh_buffer_seconds=300, clock=clock)


class TestGetValidToken:
    async def test_not_connected_returns_none(self, refresher: TokenRefresher, oauth_provider) -> None:
        assert await refresher.get_valid_token() is None
        assert oauth_provider.refresh_calls == []

    async def test_fresh_token_makes_zero_calls(
        self, refresher: TokenRefresher, store: CredentialStore, oauth_provider
    ) -> None:
        store.save(TokenSet("a1", "r1", NOW + 60 * MINUTE_MS))

        assert await refresher.get_valid_token() == "a1"
        assert oauth_provider.refresh_calls == []

    async def test_token_inside_buffer_is_refreshed(
        self, refresher: TokenRefresher, store: CredentialStore, oauth_provider, local_store
    ) -> None:
        store.save(TokenSet("a1", "r1", NOW + 4 * MINUTE_MS))

        assert await refresher.get_valid_token() == "a2"
        assert oauth_provider.refresh_calls == ["r1"]
        assert store.cached == TokenSet("a2", "r2", NOW + 60 * MINUTE_MS)
        assert local_store.entry["refresh_token"] == "r2"

    async def test_concurrent_callers_share_one_refresh(
        self, refresher: TokenRefresher, store: CredentialStore, oauth_provider
    ) -> None:
        """a1/r1 about to expire, two callers at once: one refresh, both see a2."""
        store.save(TokenSet("a1", "r1", NOW + MINUTE_MS))
        oauth_provider.refresh_gate = asyncio.Event()

        first = asyncio.create_task(refresher.get_valid_token())
        second = asyncio.create_task(refresher.get_valid_token())
        await asyncio.sleep(0)
        assert refresher.phase is OperationPhase.IN_FLIGHT

        oauth_provider.refresh_gate.set()
        results = await asyncio.gather(first, second)

        assert results == ["a2", "a2"]
        assert oauth_provider.refresh_calls == ["r1"]
        assert refresher.phase is OperationPhase.IDLE

    async def test_many_concurrent_callers(
        self, refresher: TokenRefresher, store: CredentialStore, oauth_provider
    ) -> None:
        store.save(TokenSet("a1", "r1", NOW - 1))

        results = await asyncio.gather(*(refresher.get_valid_token() for _ in range(10)))

        assert set(results) == {"a2"}
        assert len(oauth_provider.refresh_calls) == 1


class TestForceRefresh:
    async def test_refreshes_even_when_not_expiring(
        self, refresher: TokenRefresher, store: CredentialStore, oauth_provider
    ) -> None:
        store.save(TokenSet("a1", "r1", NOW + 60 * MINUTE_MS))

        assert await refresher.force_refresh("a1") == "a2"
        assert oauth_provider.refresh_calls == ["r1"]

    async def test_already_refreshed_by_someone_else(
        self, refresher: TokenRefresher, store: CredentialStore, oauth_provider
    ) -> None:
        store.save(TokenSet("a2", "r2", NOW + 60 * MINUTE_MS))

        assert await refresher.force_refresh("a1") == "a2"
        assert oauth_provider.refresh_calls == []


class TestRefreshFailure:
    async def test_invalid_grant_deletes_credentials_and_notifies(
        self, store: CredentialStore, oauth_provider, local_store, clock
    ) -> None:
        listener = MagicMock()
        refresher = TokenRefresher(store, oauth_provider, on_session_expired=listener, clock=clock)
        store.save(TokenSet("a1", "r1", NOW - 1))
        oauth_provider.refresh_error = SessionExpiredError(
            "Refresh token invalid", error_code="invalid_grant", http_status=400
        )

        with pytest.raises(SessionExpiredError) as exc_info:
            await refresher.get_valid_token()

        assert exc_info.value.error_code == "invalid_grant"
        assert store.cached is None
        assert local_store.entry is None
        listener.assert_called_once_with(exc_info.value)

    async def test_transient_failure_is_terminal_too(
        self, refresher: TokenRefresher, store: CredentialStore, oauth_provider
    ) -> None:
        store.save(TokenSet("a1", "r1", NOW - 1))
        oauth_provider.refresh_error = TransientError("token endpoint unreachable")

        with pytest.raises(SessionExpiredError) as exc_info:
            await refresher.get_valid_token()

        assert isinstance(exc_info.value.__cause__, TransientError)
        assert store.cached is None

    async def test_failure_does_not_delete_newer_login(
        self, refresher: TokenRefresher, store: CredentialStore, oauth_provider
    ) -> None:
        """A refresh of generation 1 failing after a new login must leave generation 2 alone."""
        store.save(TokenSet("a1", "r1", NOW - 1))
        oauth_provider.refresh_gate = asyncio.Event()
        oauth_provider.refresh_error = SessionExpiredError()

        task = asyncio.create_task(refresher.get_valid_token())
        await asyncio.sleep(0)
        newer = TokenSet("b1", "s1", NOW + 60 * MINUTE_MS)
        store.save(newer)
        oauth_provider.refresh_gate.set()

        with pytest.raises(SessionExpiredError):
            await task

        assert store.cached is newer

    async def test_result_not_persisted_after_disconnect(
        self, refresher: TokenRefresher, store: CredentialStore, oauth_provider, local_store
    ) -> None:
        store.save(TokenSet("a1", "r1", NOW - 1))
        oauth_provider.refresh_gate = asyncio.Event()

        task = asyncio.create_task(refresher.get_valid_token())
        await asyncio.sleep(0)
        store.delete()
        oauth_provider.refresh_gate.set()
        await task

        assert store.cached is None
        assert local_store.entry is None
