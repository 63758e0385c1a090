"""Session state machine entities."""

from dataclasses import dataclass, field
from enum import Enum

from mediasession.domain.entities.playback import (
    DEFAULT_DOMINANT_COLOR,
    Device,
    Mood,
    PlaybackSnapshot,
    RecentTrack,
    RepeatMode,
    Track,
    UserProfile,
)

DEFAULT_VOLUME = 50


class ConnectionStatus(str, Enum):
    """Connection lifecycle of the media session."""

    DISCONNECTED = "disconnected"
    INITIALIZING = "initializing"
    CONNECTED = "connected"
    ERROR = "error"


@dataclass(frozen=True)
class ConnectionState:
    """Exactly one active connection status, plus a reason for ERROR."""

    status: ConnectionStatus = ConnectionStatus.DISCONNECTED
    reason: str | None = None

    @classmethod
    def disconnected(cls) -> "ConnectionState":
        return cls(ConnectionStatus.DISCONNECTED)

    @classmethod
    def initializing(cls) -> "ConnectionState":
        return cls(ConnectionStatus.INITIALIZING)

    @classmethod
    def connected(cls) -> "ConnectionState":
        return cls(ConnectionStatus.CONNECTED)

    @classmethod
    def error(cls, reason: str) -> "ConnectionState":
        return cls(ConnectionStatus.ERROR, reason)

    @property
    def is_connected(self) -> bool:
        return self.status is ConnectionStatus.CONNECTED


# Hey future me - this is the guard for "only one X in flight". We keep it as explicit state on
# the controller/refresher INSTANCE (not a module-level flag) so two sessions in one process -
# e.g. in tests - can never block each other. IN_FLIGHT means "someone is already doing it, your
# trigger is a no-op"; DONE means "already succeeded, don't do it again until reset to IDLE".
class OperationPhase(str, Enum):
    """Phase of a guarded operation (initialization, refresh)."""

    IDLE = "idle"
    IN_FLIGHT = "in_flight"
    DONE = "done"


@dataclass(frozen=True)
class SessionState:
    """Everything subscribers observe about the media session.

    Immutable: the controller publishes a new SessionState on every change
    via dataclasses.replace(), so a listener can keep a reference safely.
    """

    connection: ConnectionState = field(default_factory=ConnectionState.disconnected)
    is_loading: bool = True
    is_premium: bool = False
    user: UserProfile | None = None
    playback: PlaybackSnapshot | None = None
    current_track: Track | None = None
    is_playing: bool = False
    progress_ms: int = 0
    duration_ms: int = 0
    volume: int = DEFAULT_VOLUME
    shuffle: bool = False
    repeat: RepeatMode = RepeatMode.OFF
    devices: tuple[Device, ...] = ()
    recent_tracks: tuple[RecentTrack, ...] = ()
    dominant_color: str = DEFAULT_DOMINANT_COLOR
    mood: Mood | None = None
    is_liked: bool = False
    error: str | None = None

    @property
    def is_connected(self) -> bool:
        return self.connection.is_connected
