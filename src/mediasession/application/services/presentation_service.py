"""Artwork color and mood derivation for the now-playing track.

Hey future me - this is the "eye candy" part of the player: the accent color pulled out of
the album cover and a mood label from Spotify's audio features. Both are SLOW (image download,
extra API call) and purely decorative, so the session controller runs derive() in a background
task and only merges the result if the track is still playing. Results are cached per track id;
skipping back and forth between two songs never re-downloads anything.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from io import BytesIO

from PIL import Image as PILImage

from mediasession.domain.entities import (
    DEFAULT_DOMINANT_COLOR,
    AudioFeatures,
    DerivedPresentation,
    Mood,
    Track,
)
from mediasession.domain.exceptions import ExternalServiceError
from mediasession.infrastructure.integrations.media_service_client import MediaServiceClient

logger = logging.getLogger(__name__)

# Cover is shrunk to this many pixels per side before averaging
SAMPLE_SIZE = 50
# Near-black and near-white pixels say nothing about the cover's color
MIN_BRIGHTNESS = 30
MAX_BRIGHTNESS = 220

ImageFetcher = Callable[[str], Awaitable[bytes]]


def dominant_color_from_bytes(image_bytes: bytes) -> str:
    """
    Average the mid-brightness pixels of an image.

    Args:
        image_bytes: Encoded image (JPEG, PNG, WebP...)

    Returns:
        CSS color "rgb(r, g, b)", or the default accent if every pixel was
        too dark or too light
    """
    with PILImage.open(BytesIO(image_bytes)) as img:
        sample = img.convert("RGB").resize((SAMPLE_SIZE, SAMPLE_SIZE))
        pixels = list(sample.getdata())

    r_total = g_total = b_total = count = 0
    for r, g, b in pixels:
        brightness = (r + g + b) / 3
        if MIN_BRIGHTNESS < brightness < MAX_BRIGHTNESS:
            r_total += r
            g_total += g
            b_total += b
            count += 1

    if count == 0:
        return DEFAULT_DOMINANT_COLOR

    # Round half up, matching how browsers round color channels
    r_avg = int(r_total / count + 0.5)
    g_avg = int(g_total / count + 0.5)
    b_avg = int(b_total / count + 0.5)
    return f"rgb({r_avg}, {g_avg}, {b_avg})"


# Yo, ORDER MATTERS in this table - first match wins. "Euphoric" (happy AND energetic) has to
# be checked before "Happy", and "Chill" (just low energy) before the catch-all.
def detect_mood(features: AudioFeatures) -> Mood:
    """Map valence/energy/danceability to a mood label."""
    v, e, d = features.valence, features.energy, features.danceability

    if v > 0.7 and e > 0.7:
        return Mood("Euphoric", "#fbbf24", "🔥")
    if v > 0.6 and d > 0.7:
        return Mood("Groovy", "#a855f7", "💃")
    if v > 0.5 and e > 0.5:
        return Mood("Happy", "#22c55e", "😊")
    if v < 0.3 and e > 0.7:
        return Mood("Intense", "#ef4444", "⚡")
    if v < 0.3 and e < 0.4:
        return Mood("Melancholic", "#6366f1", "🌙")
    if e < 0.4:
        return Mood("Chill", "#06b6d4", "😌")
    if d > 0.7:
        return Mood("Funky", "#f97316", "🎵")
    return Mood("Balanced", "#8b5cf6", "✨")


async def _fetch_via_pool(url: str) -> bytes:
    from mediasession.infrastructure.integrations.http_pool import HttpClientPool

    client = await HttpClientPool.get_client()
    response = await client.get(url)
    response.raise_for_status()
    return response.content


class PresentationService:
    """Derives and caches DerivedPresentation per track id."""

    def __init__(
        self,
        media_client: MediaServiceClient,
        image_fetcher: ImageFetcher | None = None,
    ) -> None:
        self._client = media_client
        self._fetch_image = image_fetcher or _fetch_via_pool
        self._cache: dict[str, DerivedPresentation] = {}

    def cached(self, track_id: str) -> DerivedPresentation | None:
        return self._cache.get(track_id)

    def clear(self) -> None:
        self._cache.clear()

    async def derive(self, track: Track) -> DerivedPresentation:
        """
        Compute color and mood for a track, or return the cached result.

        Artwork and audio-feature failures fall back to the default color and
        no mood. AuthError is NOT swallowed - the caller decides about teardown.
        """
        cached = self._cache.get(track.id)
        if cached is not None:
            return cached

        color, mood = await asyncio.gather(
            self._dominant_color(track.artwork_url),
            self._mood(track.id),
        )
        result = DerivedPresentation(track_id=track.id, dominant_color=color, mood=mood)
        self._cache[track.id] = result
        return result

    async def _dominant_color(self, artwork_url: str | None) -> str:
        if not artwork_url:
            return DEFAULT_DOMINANT_COLOR
        try:
            image_bytes = await self._fetch_image(artwork_url)
            # Pillow is CPU-bound, keep it off the event loop
            return await asyncio.to_thread(dominant_color_from_bytes, image_bytes)
        except Exception as e:
            logger.debug("Dominant color extraction failed for %s: %s", artwork_url, e)
            return DEFAULT_DOMINANT_COLOR

    async def _mood(self, track_id: str) -> Mood | None:
        if not track_id:
            return None
        try:
            features = await self._client.get_audio_features(track_id)
        except ExternalServiceError as e:
            # Spotify deprecated audio-features for new apps, a 403/404 here is normal
            logger.debug("Audio features unavailable for %s: %s", track_id, e)
            return None
        return detect_mood(features) if features else None
