"""Playback entities built from media service payloads."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class RepeatMode(str, Enum):
    """Repeat state as the media service names it."""

    OFF = "off"
    CONTEXT = "context"
    TRACK = "track"

    def next(self) -> "RepeatMode":
        """Cycle off -> context -> track -> off (same order as the player button)."""
        order = [RepeatMode.OFF, RepeatMode.CONTEXT, RepeatMode.TRACK]
        return order[(order.index(self) + 1) % len(order)]

    @classmethod
    def parse(cls, value: Any) -> "RepeatMode":
        """Parse a repeat state, falling back to OFF for unknown values."""
        try:
            return cls(value)
        except ValueError:
            return cls.OFF


@dataclass(frozen=True)
class Track:
    """A playable track."""

    id: str
    name: str
    uri: str
    duration_ms: int
    artists: tuple[str, ...] = ()
    album_name: str = ""
    artwork_url: str | None = None
    explicit: bool = False

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "Track":
        """Build from a track object of the Web API."""
        album = data.get("album") or {}
        images = album.get("images") or []
        return cls(
            id=data.get("id") or "",
            name=data.get("name") or "",
            uri=data.get("uri") or "",
            duration_ms=int(data.get("duration_ms") or 0),
            artists=tuple(a.get("name", "") for a in data.get("artists") or []),
            album_name=album.get("name") or "",
            # Largest image comes first in the API response
            artwork_url=images[0].get("url") if images else None,
            explicit=bool(data.get("explicit", False)),
        )


@dataclass(frozen=True)
class Device:
    """A playback device (phone, desktop app, speaker, web player)."""

    id: str
    name: str
    type: str
    is_active: bool = False
    volume_percent: int | None = None
    is_private_session: bool = False
    is_restricted: bool = False

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "Device":
        """Build from a device object of the Web API."""
        return cls(
            id=data.get("id") or "",
            name=data.get("name") or "",
            type=data.get("type") or "",
            is_active=bool(data.get("is_active", False)),
            volume_percent=data.get("volume_percent"),
            is_private_session=bool(data.get("is_private_session", False)),
            is_restricted=bool(data.get("is_restricted", False)),
        )


@dataclass(frozen=True)
class RecentTrack:
    """A recently played item."""

    track: Track
    played_at: str

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "RecentTrack":
        return cls(
            track=Track.from_api(data.get("track") or {}),
            played_at=data.get("played_at", ""),
        )


@dataclass(frozen=True)
class UserProfile:
    """The connected account."""

    id: str
    display_name: str
    email: str | None = None
    product: str | None = None
    country: str | None = None
    image_url: str | None = None

    @property
    def is_premium(self) -> bool:
        """Playback control endpoints need a premium account."""
        return self.product == "premium"

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "UserProfile":
        images = data.get("images") or []
        return cls(
            id=data.get("id") or "",
            display_name=data.get("display_name") or data.get("id") or "",
            email=data.get("email"),
            product=data.get("product"),
            country=data.get("country"),
            image_url=images[0].get("url") if images else None,
        )


# Hey future me - a snapshot is REMOTE TRUTH at fetched_at. The session state's progress_ms is
# ticked locally between snapshots, but the snapshot itself is never mutated. Every poll builds a
# new one and the controller overwrites the ticked value with it ("poll always overwrites tick").
@dataclass(frozen=True)
class PlaybackSnapshot:
    """Point-in-time read of the remote playback state."""

    track: Track | None
    is_playing: bool
    progress_ms: int
    duration_ms: int
    device_volume: int | None
    shuffle: bool
    repeat_mode: RepeatMode
    fetched_at: int
    device_id: str | None = None
    device_name: str | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any], fetched_at: int) -> "PlaybackSnapshot":
        """Build from the /me/player response."""
        item = data.get("item")
        # Podcast episodes come back with type "episode" - we still treat them as tracks
        track = Track.from_api(item) if item else None
        device = data.get("device") or {}
        return cls(
            track=track,
            is_playing=bool(data.get("is_playing", False)),
            progress_ms=int(data.get("progress_ms") or 0),
            duration_ms=track.duration_ms if track else 0,
            device_volume=device.get("volume_percent"),
            shuffle=bool(data.get("shuffle_state", False)),
            repeat_mode=RepeatMode.parse(data.get("repeat_state", "off")),
            fetched_at=fetched_at,
            device_id=device.get("id"),
            device_name=device.get("name"),
        )


@dataclass(frozen=True)
class AudioFeatures:
    """Audio characteristics used for mood detection."""

    valence: float
    energy: float
    danceability: float
    tempo: float | None = None
    acousticness: float | None = None
    instrumentalness: float | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "AudioFeatures":
        return cls(
            valence=float(data.get("valence", 0.0)),
            energy=float(data.get("energy", 0.0)),
            danceability=float(data.get("danceability", 0.0)),
            tempo=data.get("tempo"),
            acousticness=data.get("acousticness"),
            instrumentalness=data.get("instrumentalness"),
        )


@dataclass(frozen=True)
class Mood:
    """Mood label derived from audio features."""

    label: str
    color: str
    emoji: str


DEFAULT_DOMINANT_COLOR = "#06b6d4"


@dataclass(frozen=True)
class DerivedPresentation:
    """Artwork color and mood for one track, cached per track id."""

    track_id: str
    dominant_color: str = DEFAULT_DOMINANT_COLOR
    mood: Mood | None = field(default=None)


def format_duration(ms: int) -> str:
    """Format milliseconds as m:ss."""
    minutes = ms // 60000
    seconds = (ms % 60000) // 1000
    return f"{minutes}:{seconds:02d}"
