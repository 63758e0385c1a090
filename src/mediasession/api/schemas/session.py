"""API schemas for the media session."""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from mediasession.domain.entities import SessionState, format_duration


class PlayerCommand(str, Enum):
    """Commands accepted by POST /api/media/player/{command}."""

    PLAY = "play"
    PAUSE = "pause"
    TOGGLE = "toggle"
    NEXT = "next"
    PREVIOUS = "previous"
    SEEK = "seek"
    VOLUME = "volume"
    SHUFFLE = "shuffle"
    REPEAT = "repeat"
    LIKE = "like"
    TRANSFER = "transfer"


class PlayerCommandRequest(BaseModel):
    """Optional body for commands that need an argument."""

    position_ms: int | None = Field(default=None, ge=0, description="Seek target (seek)")
    volume: float | None = Field(default=None, description="Volume 0-100 (volume)")
    device_id: str | None = Field(default=None, description="Target device (transfer)")


class IdentityRequest(BaseModel):
    """Body of PUT /api/media/identity."""

    user_id: str | None = Field(
        default=None,
        min_length=1,
        description="Host user id keying the remote token backup, null when signed out",
    )


class TrackSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    uri: str
    duration_ms: int
    artists: list[str] = Field(default_factory=list)
    album_name: str = ""
    artwork_url: str | None = None
    explicit: bool = False


class DeviceSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    type: str
    is_active: bool = False
    volume_percent: int | None = None


class RecentTrackSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    track: TrackSchema
    played_at: str


class UserSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    display_name: str
    product: str | None = None
    image_url: str | None = None


class MoodSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    label: str
    color: str
    emoji: str


# Hey future me - this is the wire shape of SessionState. The domain object is a frozen
# dataclass with nested dataclasses and enums; from_state() flattens the connection into
# status/reason and adds preformatted m:ss strings so the UI doesn't redo the math.
class SessionStateResponse(BaseModel):
    """Snapshot of the media session for UIs."""

    status: str = Field(..., description="disconnected, initializing, connected or error")
    reason: str | None = Field(default=None, description="Why the session is in error")
    is_loading: bool
    is_premium: bool
    user: UserSchema | None = None
    current_track: TrackSchema | None = None
    is_playing: bool
    progress_ms: int
    duration_ms: int
    progress_label: str
    duration_label: str
    volume: int
    shuffle: bool
    repeat: str
    devices: list[DeviceSchema] = Field(default_factory=list)
    recent_tracks: list[RecentTrackSchema] = Field(default_factory=list)
    dominant_color: str
    mood: MoodSchema | None = None
    is_liked: bool
    error: str | None = None

    @classmethod
    def from_state(cls, state: SessionState) -> "SessionStateResponse":
        return cls(
            status=state.connection.status.value,
            reason=state.connection.reason,
            is_loading=state.is_loading,
            is_premium=state.is_premium,
            user=UserSchema.model_validate(state.user) if state.user else None,
            current_track=(
                TrackSchema.model_validate(state.current_track)
                if state.current_track
                else None
            ),
            is_playing=state.is_playing,
            progress_ms=state.progress_ms,
            duration_ms=state.duration_ms,
            progress_label=format_duration(state.progress_ms),
            duration_label=format_duration(state.duration_ms),
            volume=state.volume,
            shuffle=state.shuffle,
            repeat=state.repeat.value,
            devices=[DeviceSchema.model_validate(d) for d in state.devices],
            recent_tracks=[RecentTrackSchema.model_validate(r) for r in state.recent_tracks],
            dominant_color=state.dominant_color,
            mood=MoodSchema.model_validate(state.mood) if state.mood else None,
            is_liked=state.is_liked,
            error=state.error,
        )
