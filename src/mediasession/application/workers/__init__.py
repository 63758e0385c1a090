"""Background workers."""

from mediasession.application.workers.playback_workers import (
    PendingTokensWatcher,
    PlaybackPoller,
    ProgressTicker,
)

__all__ = ["PendingTokensWatcher", "PlaybackPoller", "ProgressTicker"]
