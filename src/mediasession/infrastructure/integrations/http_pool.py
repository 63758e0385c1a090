"""Shared HTTP client pool for unauthenticated downloads (artwork images).

Hey future me - the media service client owns its own AsyncClient because every request there
carries a bearer token and goes to one host. Artwork comes from CDN hosts and needs no auth,
so the presentation service borrows this shared pool instead of opening a client per image.

Usage:
    client = await HttpClientPool.get_client()
    response = await client.get(track.artwork_url)

Don't forget to call HttpClientPool.close() at app shutdown (see api/app.py lifespan)!
"""

import asyncio
import logging
from typing import ClassVar

import httpx

logger = logging.getLogger(__name__)


class HttpClientPool:
    """Process-wide shared httpx.AsyncClient with lazy, lock-guarded creation."""

    _client: ClassVar[httpx.AsyncClient | None] = None
    _lock: ClassVar[asyncio.Lock | None] = None

    # Artwork images are small; keep a handful of CDN connections warm
    DEFAULT_TIMEOUT: ClassVar[float] = 15.0
    DEFAULT_MAX_KEEPALIVE: ClassVar[int] = 5
    DEFAULT_MAX_CONNECTIONS: ClassVar[int] = 10

    @classmethod
    async def _ensure_lock(cls) -> asyncio.Lock:
        """Create the lock lazily so it binds to the running event loop."""
        if cls._lock is None:
            cls._lock = asyncio.Lock()
        return cls._lock

    @classmethod
    async def get_client(cls, timeout: float | None = None) -> httpx.AsyncClient:
        """Get the shared HTTP client instance.

        Args:
            timeout: Request timeout in seconds, only applied on first call

        Returns:
            Shared httpx.AsyncClient instance
        """
        lock = await cls._ensure_lock()

        async with lock:
            if cls._client is None:
                effective_timeout = timeout or cls.DEFAULT_TIMEOUT
                cls._client = httpx.AsyncClient(
                    timeout=httpx.Timeout(effective_timeout),
                    limits=httpx.Limits(
                        max_keepalive_connections=cls.DEFAULT_MAX_KEEPALIVE,
                        max_connections=cls.DEFAULT_MAX_CONNECTIONS,
                    ),
                    http2=True,
                    # Image CDNs redirect a lot
                    follow_redirects=True,
                )
                logger.info("HTTP client pool initialized (timeout=%.1fs)", effective_timeout)

            return cls._client

    @classmethod
    async def close(cls) -> None:
        """Close the shared client. The next get_client() creates a fresh one."""
        lock = await cls._ensure_lock()

        async with lock:
            if cls._client is not None:
                await cls._client.aclose()
                cls._client = None
                logger.info("HTTP client pool closed")

    @classmethod
    def is_initialized(cls) -> bool:
        return cls._client is not None
