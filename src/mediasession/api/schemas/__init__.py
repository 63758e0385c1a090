"""API schemas."""

from mediasession.api.schemas.session import (
    DeviceSchema,
    IdentityRequest,
    MoodSchema,
    PlayerCommand,
    PlayerCommandRequest,
    RecentTrackSchema,
    SessionStateResponse,
    TrackSchema,
    UserSchema,
)

__all__ = [
    "DeviceSchema",
    "IdentityRequest",
    "MoodSchema",
    "PlayerCommand",
    "PlayerCommandRequest",
    "RecentTrackSchema",
    "SessionStateResponse",
    "TrackSchema",
    "UserSchema",
]
