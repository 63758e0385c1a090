"""Background loops that keep the session state moving.

Hey future me - three tiny workers, same shape as every other worker in this codebase:
start() runs the loop until stop() flips _running. The session controller owns the tasks and
also cancels them on stop, so a loop sleeping for 5s dies immediately instead of firing one
last stale poll after disconnect.

- ProgressTicker: +1000ms every second while playing (local interpolation)
- PlaybackPoller: re-fetch remote truth every 5s while playing (overwrites the tick)
- PendingTokensWatcher: notices tokens dropped by an out-of-band OAuth callback
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable

from mediasession.infrastructure.observability.log_messages import LogMessages

logger = logging.getLogger(__name__)


class ProgressTicker:
    """Advances the locally interpolated playback position."""

    def __init__(self, tick: Callable[[], None], interval_seconds: float = 1.0) -> None:
        self._tick = tick
        self._interval = interval_seconds
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        self._running = True
        logger.debug("ProgressTicker started (interval=%.1fs)", self._interval)

        while self._running:
            await asyncio.sleep(self._interval)
            # stop() may have been called while we slept
            if not self._running:
                break
            self._tick()

        logger.debug("ProgressTicker stopped")

    def stop(self) -> None:
        """Signal the worker to stop."""
        self._running = False


class PlaybackPoller:
    """Re-fetches the playback snapshot on a fixed interval."""

    def __init__(
        self,
        poll: Callable[[], Awaitable[None]],
        interval_seconds: float = 5.0,
    ) -> None:
        self._poll = poll
        self._interval = interval_seconds
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        self._running = True
        logger.debug("PlaybackPoller started (interval=%.1fs)", self._interval)

        while self._running:
            await asyncio.sleep(self._interval)
            if not self._running:
                break
            try:
                await self._poll()
            except Exception as e:
                # Poll errors are already reflected on the session state, keep polling
                logger.warning(LogMessages.worker_failed("PlaybackPoller", str(e)))

        logger.debug("PlaybackPoller stopped")

    def stop(self) -> None:
        """Signal the worker to stop."""
        self._running = False


class PendingTokensWatcher:
    """Watches the pending-tokens slot and wakes the session when tokens show up.

    Runs for the whole app lifetime (started in the lifespan), unlike the
    ticker and poller which only run while something is playing.
    """

    def __init__(
        self,
        has_pending: Callable[[], bool],
        on_pending: Callable[[], Awaitable[None]],
        interval_seconds: float = 2.0,
    ) -> None:
        self._has_pending = has_pending
        self._on_pending = on_pending
        self._interval = interval_seconds
        self._running = False

    async def start(self) -> None:
        self._running = True
        logger.info(LogMessages.worker_started("PendingTokensWatcher", self._interval))

        while self._running:
            try:
                if self._has_pending():
                    logger.debug("Pending tokens detected, waking session")
                    await self._on_pending()
            except Exception as e:
                logger.exception("PendingTokensWatcher error: %s", e)

            await asyncio.sleep(self._interval)

        logger.info("PendingTokensWatcher stopped")

    def stop(self) -> None:
        """Signal the worker to stop."""
        self._running = False
