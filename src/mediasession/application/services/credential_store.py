"""Credential persistence across cache, local store and remote backup.

Hey future me - there are FOUR places a TokenSet can come from, and load() checks them in a
fixed order so behaviour is deterministic no matter which backend is slow or stale:

    1. in-memory cache          (this process already knows the tokens)
    2. pending slot             (callback handler just dropped fresh tokens there, consume once)
    3. local JSON store         (durable, fast, authoritative)
    4. remote backup (SQL)      (only when we know WHO the user is)

Writes go local-first and synchronously; the remote mirror runs in the background, one call at
a time in issue order, and its failures are logged, never raised. The remote row is a
convenience for new devices, losing a write there must never break playback.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from mediasession.domain.entities import TokenSet
from mediasession.domain.exceptions import ValidationError
from mediasession.domain.ports import ILocalTokenStore, IPendingTokenSlot, IRemoteTokenStore
from mediasession.infrastructure.observability.log_messages import LogMessages

logger = logging.getLogger(__name__)


class CredentialStore:
    """Load/save/delete the current TokenSet across all backends."""

    def __init__(
        self,
        local_store: ILocalTokenStore,
        pending_slot: IPendingTokenSlot,
        remote_store: IRemoteTokenStore | None = None,
        user_id: str | None = None,
    ) -> None:
        """
        Initialize the credential store.

        Args:
            local_store: Durable local store (authoritative)
            pending_slot: One-shot slot filled by the OAuth callback handler
            remote_store: Optional remote backup keyed by user identity
            user_id: Current host user id for the remote backup, None when unknown
        """
        self._local = local_store
        self._pending = pending_slot
        self._remote = remote_store
        self._user_id = user_id
        self._cache: TokenSet | None = None
        self._background: set[asyncio.Task[None]] = set()
        self._remote_lock = asyncio.Lock()
        self._remote_generation = 0

    @property
    def user_id(self) -> str | None:
        return self._user_id

    def set_user_id(self, user_id: str | None) -> None:
        """Switch the remote backup identity.

        Learning the identity for the first time keeps the cache and backs it up
        remotely. Switching from one known user to another drops it, those tokens
        belong to the old user.
        """
        previous = self._user_id
        if previous is not None and user_id != previous:
            self._cache = None
        self._user_id = user_id
        if previous is None and user_id and self._cache is not None:
            self._mirror_to_remote(self._cache)

    @property
    def cached(self) -> TokenSet | None:
        """The in-memory TokenSet, without touching any backend."""
        return self._cache

    def clear_cache(self) -> None:
        """Forget the in-memory TokenSet. The next load() reads the backends again."""
        self._cache = None

    def has_pending(self) -> bool:
        return self._pending.has_pending()

    async def load(self) -> TokenSet | None:
        """
        Load the current TokenSet.

        Returns:
            The first valid TokenSet in cache → pending → local → remote order, or None
        """
        if self._cache is not None and self._cache.is_valid():
            return self._cache

        tokens = self._load_pending()
        if tokens is None:
            tokens = self._load_local()
        if tokens is None:
            tokens = await self._load_remote()

        self._cache = tokens
        return tokens

    def _load_pending(self) -> TokenSet | None:
        if not self._pending.has_pending():
            return None

        entry = self._pending.take()
        try:
            tokens = TokenSet.from_dict(entry)
        except ValidationError as e:
            logger.warning("Discarding malformed pending tokens: %s", e)
            return None

        logger.info("Picked up pending tokens from OAuth callback")
        self._local.write(tokens.to_dict())
        self._mirror_to_remote(tokens)
        return tokens

    def _load_local(self) -> TokenSet | None:
        entry = self._local.read()
        if entry is None:
            return None
        try:
            return TokenSet.from_dict(entry)
        except ValidationError as e:
            # Yo, remove it - a broken entry would be re-validated (and rejected) on every load
            logger.warning("Removing malformed local token entry: %s", e)
            self._local.clear()
            return None

    async def _load_remote(self) -> TokenSet | None:
        user_id = self._user_id
        if self._remote is None or not user_id:
            return None

        try:
            entry = await self._remote.get(user_id)
        except Exception as e:
            logger.warning(
                LogMessages.connection_failed(
                    service="Token backup",
                    target="media_tokens",
                    error=str(e),
                    hint="Continuing without remote tokens",
                )
            )
            return None

        if entry is None:
            return None
        try:
            tokens = TokenSet.from_dict(entry)
        except ValidationError as e:
            logger.warning("Ignoring malformed remote token entry for %s: %s", user_id, e)
            return None

        logger.info("Restored tokens from remote backup")
        self._local.write(tokens.to_dict())
        return tokens

    def save(self, tokens: TokenSet) -> None:
        """Persist tokens: cache + local now, remote in the background."""
        self._cache = tokens
        self._local.write(tokens.to_dict())
        self._mirror_to_remote(tokens)

    def delete(self) -> None:
        """Forget tokens everywhere. The remote delete runs in the background.

        Upserts still queued from earlier saves are dropped, so a slow mirror
        can never bring the deleted row back.
        """
        self._cache = None
        self._pending.clear()
        self._local.clear()

        self._remote_generation += 1
        user_id = self._user_id
        if self._remote is not None and user_id:
            remote = self._remote
            self._spawn("delete", user_id, lambda: remote.delete(user_id))

    def _mirror_to_remote(self, tokens: TokenSet) -> None:
        user_id = self._user_id
        if self._remote is None or not user_id:
            return
        remote = self._remote
        entry = tokens.to_dict()
        self._spawn(
            "upsert",
            user_id,
            lambda: remote.upsert(user_id, entry),
            generation=self._remote_generation,
        )

    # Hey future me - every remote call goes through ONE lock, and asyncio.Lock wakes waiters
    # in FIFO order, so the backup sees writes in the order save()/delete() issued them. An
    # upsert tagged with an older generation than the latest delete() is skipped outright.
    def _spawn(
        self,
        operation: str,
        user_id: str,
        call: Callable[[], Awaitable[Any]],
        generation: int | None = None,
    ) -> None:
        async def _run() -> None:
            async with self._remote_lock:
                if generation is not None and generation != self._remote_generation:
                    logger.debug("Skipping superseded remote %s for %s", operation, user_id)
                    return
                try:
                    await call()
                except Exception as e:
                    logger.warning(LogMessages.backup_sync_failed(operation, user_id, str(e)))

        task = asyncio.get_running_loop().create_task(_run())
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    @property
    def pending_background_tasks(self) -> int:
        return len(self._background)

    async def drain(self) -> None:
        """Wait for all background remote writes to finish (shutdown, tests)."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
