"""Authenticated Spotify Web API client for the playback session."""

import logging
from collections.abc import Callable
from typing import Any

import httpx

from mediasession.config.settings import SpotifySettings
from mediasession.domain.entities import (
    AudioFeatures,
    Device,
    PlaybackSnapshot,
    RecentTrack,
    RepeatMode,
    UserProfile,
    now_ms,
)
from mediasession.domain.exceptions import AuthError, MediaServiceError, TransientError
from mediasession.domain.ports import ITokenProvider
from mediasession.infrastructure.observability.log_messages import LogMessages

logger = logging.getLogger(__name__)

_AUTH_STATUSES = (401, 403)


class MediaServiceClient:
    """Spotify Web API calls the session needs, nothing more.

    Every request fetches its bearer token from the token provider right before
    sending. A 401/403 triggers exactly one forced refresh and one retry; if the
    retry is rejected too, AuthError is raised and there is no third attempt.
    """

    def __init__(
        self,
        settings: SpotifySettings,
        token_provider: ITokenProvider,
        timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.settings = settings
        self._tokens = token_provider
        self._timeout = timeout
        self._client = http_client
        self._owns_client = http_client is None
        self._clock = clock

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout, connect=10.0),
            )
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def _url(self, path: str) -> str:
        return f"{self.settings.api_base_url.rstrip('/')}{path}"

    async def _send(
        self,
        method: str,
        path: str,
        access_token: str,
        params: dict[str, Any] | None,
        json: Any | None,
    ) -> httpx.Response:
        client = await self._get_client()
        try:
            return await client.request(
                method,
                self._url(path),
                params=params,
                json=json,
                headers={"Authorization": f"Bearer {access_token}"},
            )
        except httpx.TimeoutException as e:
            raise TransientError(f"Spotify request timed out: {method} {path}") from e
        except httpx.TransportError as e:
            raise TransientError(f"Spotify unreachable: {e}") from e

    # Hey future me - this is the ONLY place that deals with auth failures mid-session.
    # The retry budget is exactly one: force_refresh() either returns a newer token (maybe
    # refreshed by a concurrent caller already) or raises SessionExpiredError. If Spotify
    # rejects the fresh token too, something is wrong with the grant itself (revoked scopes,
    # user removed the app) and retrying again would just loop. So we raise AuthError and let
    # the session controller tear everything down.
    async def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json: Any | None = None,
        forbidden_is_auth: bool = True,
    ) -> httpx.Response:
        token = await self._tokens.get_valid_token()
        if not token:
            raise AuthError("Not connected to Spotify")

        response = await self._send(method, path, token, params, json)
        auth_statuses = _AUTH_STATUSES if forbidden_is_auth else (401,)

        if response.status_code in auth_statuses:
            logger.debug(
                "Spotify returned %d for %s %s, forcing token refresh",
                response.status_code,
                method,
                path,
            )
            fresh_token = await self._tokens.force_refresh(token)
            if not fresh_token:
                raise AuthError("Not connected to Spotify", http_status=response.status_code)

            response = await self._send(method, path, fresh_token, params, json)
            if response.status_code in auth_statuses:
                logger.warning(
                    LogMessages.auth_retry_failed(
                        service="Spotify", endpoint=f"{method} {path}", status=response.status_code
                    )
                )
                raise AuthError(
                    "Spotify rejected the refreshed access token",
                    http_status=response.status_code,
                )

        self._raise_for_status(response, method, path)
        return response

    @staticmethod
    def _raise_for_status(response: httpx.Response, method: str, path: str) -> None:
        status = response.status_code
        if status == 429:
            retry_after = response.headers.get("Retry-After")
            raise TransientError(
                f"Spotify rate limit hit on {method} {path}",
                http_status=status,
                retry_after=int(retry_after) if retry_after and retry_after.isdigit() else None,
            )
        if status >= 500:
            raise TransientError(
                f"Spotify server error {status} on {method} {path}", http_status=status
            )
        if response.is_error:
            reason = ""
            try:
                body = response.json()
                if isinstance(body, dict):
                    error = body.get("error")
                    reason = error.get("message", "") if isinstance(error, dict) else str(error or "")
            except ValueError:
                reason = response.text[:200]
            raise MediaServiceError(
                f"Spotify rejected {method} {path} ({status}): {reason or 'no details'}",
                http_status=status,
            )

    @staticmethod
    def _json(response: httpx.Response) -> Any | None:
        """Decode the body, treating 204 and empty bodies as no content."""
        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    # === Reads ===

    async def get_profile(self) -> UserProfile:
        """Get the connected user's profile."""
        data = self._json(await self._request("GET", "/me")) or {}
        return UserProfile.from_api(data)

    # Listen up, /me/player answers 204 when NOTHING is playing on any device. That's a normal
    # state (user closed the app), not an error - we return None and the session clears the
    # current track.
    async def get_playback_state(self) -> PlaybackSnapshot | None:
        """Get the current playback state, or None if nothing is playing."""
        response = await self._request("GET", "/me/player")
        data = self._json(response)
        if not data:
            return None
        return PlaybackSnapshot.from_api(data, fetched_at=self._clock())

    async def get_devices(self) -> list[Device]:
        data = self._json(await self._request("GET", "/me/player/devices")) or {}
        return [Device.from_api(d) for d in data.get("devices") or []]

    async def get_recently_played(self, limit: int = 10) -> list[RecentTrack]:
        """Get recently played tracks (max 50 per Spotify)."""
        data = self._json(
            await self._request(
                "GET", "/me/player/recently-played", params={"limit": min(max(limit, 1), 50)}
            )
        ) or {}
        return [RecentTrack.from_api(item) for item in data.get("items") or []]

    async def is_track_liked(self, track_id: str) -> bool:
        """Check if a track is in the user's Liked Songs."""
        data = self._json(
            await self._request("GET", "/me/tracks/contains", params={"ids": track_id})
        )
        return bool(data and data[0])

    async def get_audio_features(self, track_id: str) -> AudioFeatures | None:
        """Get audio features, or None if Spotify has none for this track."""
        # 403 here means "endpoint not available for this app", not a bad token
        data = self._json(
            await self._request("GET", f"/audio-features/{track_id}", forbidden_is_auth=False)
        )
        if not data:
            return None
        return AudioFeatures.from_api(data)

    # === Library ===

    async def save_track(self, track_id: str) -> None:
        await self._request("PUT", "/me/tracks", params={"ids": track_id})

    async def remove_track(self, track_id: str) -> None:
        await self._request("DELETE", "/me/tracks", params={"ids": track_id})

    # === Transport ===

    async def play(
        self,
        context_uri: str | None = None,
        uris: list[str] | None = None,
        device_id: str | None = None,
    ) -> None:
        """Resume playback, or start a context/track list if given."""
        body: dict[str, Any] = {}
        if context_uri:
            body["context_uri"] = context_uri
        if uris:
            body["uris"] = uris
        params = {"device_id": device_id} if device_id else None
        await self._request("PUT", "/me/player/play", params=params, json=body or None)

    async def pause(self) -> None:
        await self._request("PUT", "/me/player/pause")

    async def next_track(self) -> None:
        await self._request("POST", "/me/player/next")

    async def previous_track(self) -> None:
        await self._request("POST", "/me/player/previous")

    async def seek(self, position_ms: int) -> None:
        await self._request("PUT", "/me/player/seek", params={"position_ms": max(position_ms, 0)})

    async def set_volume(self, volume_percent: int) -> None:
        await self._request(
            "PUT",
            "/me/player/volume",
            params={"volume_percent": min(max(volume_percent, 0), 100)},
        )

    async def set_shuffle(self, state: bool) -> None:
        await self._request(
            "PUT", "/me/player/shuffle", params={"state": "true" if state else "false"}
        )

    async def set_repeat(self, mode: RepeatMode) -> None:
        await self._request("PUT", "/me/player/repeat", params={"state": mode.value})

    async def transfer_playback(self, device_id: str, play: bool = False) -> None:
        """Move playback to another device."""
        await self._request("PUT", "/me/player", json={"device_ids": [device_id], "play": play})
