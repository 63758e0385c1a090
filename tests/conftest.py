"""Shared fixtures for the media session tests.

Hey future me - the fakes here implement the domain ports in memory, so service tests never
touch the filesystem or the network. Persistence tests use the real JSON stores with tmp_path
and an in-memory SQLite DB instead.
"""

import asyncio
from collections.abc import Callable
from typing import Any

import pytest

from mediasession.domain.entities import TokenSet
from mediasession.domain.ports import (
    ILocalTokenStore,
    IOAuthProvider,
    IPendingTokenSlot,
    IRemoteTokenStore,
)

# Fixed "now" for clock-injected services: 2024-01-01T00:00:00Z in epoch ms
NOW_MS = 1_704_067_200_000
HOUR_MS = 3_600_000


class InMemoryLocalStore(ILocalTokenStore):
    def __init__(self, entry: Any | None = None) -> None:
        self.entry = entry
        self.writes = 0

    def read(self) -> Any | None:
        return self.entry

    def write(self, entry: dict[str, Any]) -> None:
        self.entry = dict(entry)
        self.writes += 1

    def clear(self) -> None:
        self.entry = None


class InMemoryPendingSlot(IPendingTokenSlot):
    def __init__(self, entry: Any | None = None) -> None:
        self.entry = entry

    def has_pending(self) -> bool:
        return self.entry is not None

    def take(self) -> Any | None:
        entry, self.entry = self.entry, None
        return entry

    def put(self, entry: dict[str, Any]) -> None:
        self.entry = dict(entry)

    def clear(self) -> None:
        self.entry = None


class InMemoryRemoteStore(IRemoteTokenStore):
    def __init__(self, fail: bool = False) -> None:
        self.rows: dict[str, dict[str, Any]] = {}
        self.fail = fail
        self.calls: list[tuple[str, str]] = []

    async def get(self, user_id: str) -> dict[str, Any] | None:
        self.calls.append(("get", user_id))
        if self.fail:
            raise ConnectionError("backup unreachable")
        return self.rows.get(user_id)

    async def upsert(self, user_id: str, entry: dict[str, Any]) -> None:
        self.calls.append(("upsert", user_id))
        if self.fail:
            raise ConnectionError("backup unreachable")
        self.rows[user_id] = dict(entry)

    async def delete(self, user_id: str) -> None:
        self.calls.append(("delete", user_id))
        if self.fail:
            raise ConnectionError("backup unreachable")
        self.rows.pop(user_id, None)


class FakeOAuthProvider(IOAuthProvider):
    """Token endpoint stand-in that counts calls and can be told what to answer."""

    def __init__(self) -> None:
        self.refresh_calls: list[str] = []
        self.exchange_calls: list[tuple[str, str]] = []
        self.refresh_response: dict[str, Any] = {
            "access_token": "a2",
            "refresh_token": "r2",
            "expires_in": 3600,
        }
        self.exchange_response: dict[str, Any] = {
            "access_token": "a1",
            "refresh_token": "r1",
            "expires_in": 3600,
        }
        self.refresh_error: Exception | None = None
        self.exchange_error: Exception | None = None
        # Set to make refresh_token() wait until the test releases it
        self.refresh_gate: asyncio.Event | None = None

    def build_authorization_url(self, state: str, code_challenge: str) -> str:
        return f"https://auth.example/authorize?state={state}&code_challenge={code_challenge}"

    async def exchange_code(self, code: str, code_verifier: str) -> dict[str, Any]:
        self.exchange_calls.append((code, code_verifier))
        if self.exchange_error is not None:
            raise self.exchange_error
        return dict(self.exchange_response)

    async def refresh_token(self, refresh_token: str) -> dict[str, Any]:
        self.refresh_calls.append(refresh_token)
        if self.refresh_gate is not None:
            await self.refresh_gate.wait()
        else:
            # Yield once so concurrent callers really overlap
            await asyncio.sleep(0)
        if self.refresh_error is not None:
            raise self.refresh_error
        return dict(self.refresh_response)


@pytest.fixture
def make_tokens() -> Callable[..., TokenSet]:
    """Factory for TokenSets expiring `expires_in_ms` after NOW_MS."""

    def _make(
        access_token: str = "a1",
        refresh_token: str = "r1",
        expires_in_ms: int = HOUR_MS,
    ) -> TokenSet:
        return TokenSet(access_token, refresh_token, NOW_MS + expires_in_ms)

    return _make


@pytest.fixture
def clock() -> Callable[[], int]:
    return lambda: NOW_MS


@pytest.fixture
def local_store() -> InMemoryLocalStore:
    return InMemoryLocalStore()


@pytest.fixture
def pending_slot() -> InMemoryPendingSlot:
    return InMemoryPendingSlot()


@pytest.fixture
def remote_store() -> InMemoryRemoteStore:
    return InMemoryRemoteStore()


@pytest.fixture
def oauth_provider() -> FakeOAuthProvider:
    return FakeOAuthProvider()


@pytest.fixture
def failing_remote_store() -> InMemoryRemoteStore:
    return InMemoryRemoteStore(fail=True)
