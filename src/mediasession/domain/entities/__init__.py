"""Domain entities."""

from mediasession.domain.entities.playback import (
    DEFAULT_DOMINANT_COLOR,
    AudioFeatures,
    DerivedPresentation,
    Device,
    Mood,
    PlaybackSnapshot,
    RecentTrack,
    RepeatMode,
    Track,
    UserProfile,
    format_duration,
)
from mediasession.domain.entities.session import (
    DEFAULT_VOLUME,
    ConnectionState,
    ConnectionStatus,
    OperationPhase,
    SessionState,
)
from mediasession.domain.entities.tokens import PendingAuthorization, TokenSet, now_ms

__all__ = [
    "DEFAULT_DOMINANT_COLOR",
    "DEFAULT_VOLUME",
    "AudioFeatures",
    "ConnectionState",
    "ConnectionStatus",
    "DerivedPresentation",
    "Device",
    "Mood",
    "OperationPhase",
    "PendingAuthorization",
    "PlaybackSnapshot",
    "RecentTrack",
    "RepeatMode",
    "SessionState",
    "TokenSet",
    "Track",
    "UserProfile",
    "format_duration",
    "now_ms",
]
