"""Tests for SessionController: lifecycle, timers, commands and teardown.

Hey future me - the media client and presentation service are mocks, everything else (credential
store, refresher, PKCE flow) is real on top of the in-memory fakes from conftest. Poll and
refetch intervals are tiny or zero so nothing here sleeps for long.
"""

import asyncio
from collections.abc import AsyncGenerator
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from mediasession.application.services.credential_store import CredentialStore
from mediasession.application.services.pkce_auth_flow import PKCEAuthFlow
from mediasession.application.services.presentation_service import PresentationService
from mediasession.application.services.session_controller import SessionController
from mediasession.application.services.token_refresher import TokenRefresher
from mediasession.config import SessionSettings
from mediasession.domain.entities import (
    ConnectionStatus,
    DerivedPresentation,
    Device,
    Mood,
    OperationPhase,
    PlaybackSnapshot,
    RepeatMode,
    SessionState,
    TokenSet,
    Track,
    UserProfile,
)
from mediasession.domain.exceptions import (
    AuthError,
    ConfigurationError,
    MediaServiceError,
    SessionExpiredError,
    TransientError,
)
from mediasession.infrastructure.integrations.media_service_client import MediaServiceClient
from mediasession.infrastructure.persistence.local_store import (
    LOCAL_TOKENS_KEY,
    PENDING_TOKENS_KEY,
    FileVerifierStore,
)

NOW = 1_704_067_200_000
HOUR_MS = 3_600_000

TRACK = Track(
    id="track-1",
    name="Song One",
    uri="spotify:track:track-1",
    duration_ms=200_000,
    artwork_url="https://img.example/1.jpg",
)
OTHER_TRACK = Track(id="track-2", name="Song Two", uri="spotify:track:track-2", duration_ms=180_000)


def _snapshot(
    track: Track | None = TRACK,
    is_playing: bool = True,
    progress_ms: int = 10_000,
    volume: int | None = 70,
) -> PlaybackSnapshot:
    return PlaybackSnapshot(
        track=track,
        is_playing=is_playing,
        progress_ms=progress_ms,
        duration_ms=track.duration_ms if track else 0,
        device_volume=volume,
        shuffle=False,
        repeat_mode=RepeatMode.OFF,
        fetched_at=NOW,
    )


@pytest.fixture
def session_settings() -> SessionSettings:
    return SessionSettings(
        tick_interval_seconds=3600,
        poll_interval_seconds=3600,
        command_refetch_delay_seconds=0,
    )


@pytest.fixture
def media_client() -> AsyncMock:
    client = AsyncMock(spec=MediaServiceClient)
    client.get_profile.return_value = UserProfile(id="u1", display_name="User", product="premium")
    client.get_playback_state.return_value = _snapshot()
    client.get_devices.return_value = [
        Device(id="dev-1", name="Desktop", type="Computer", is_active=True),
        Device(id="dev-2", name="Phone", type="Smartphone"),
    ]
    client.get_recently_played.return_value = []
    client.is_track_liked.return_value = True
    return client


@pytest.fixture
def presentation() -> MagicMock:
    service = MagicMock(spec=PresentationService)
    service.cached.return_value = None
    service.derive.return_value = DerivedPresentation(
        track_id="track-1",
        dominant_color="rgb(10, 20, 30)",
        mood=Mood("Happy", "#22c55e", "😊"),
    )
    return service


@pytest.fixture
def store(local_store, pending_slot) -> CredentialStore:
    return CredentialStore(local_store, pending_slot)


@pytest.fixture
def refresher(store: CredentialStore, oauth_provider, clock) -> TokenRefresher:
    return TokenRefresher(store, oauth_provider, clock=clock)


@pytest.fixture
async def controller(
    session_settings: SessionSettings,
    store: CredentialStore,
    refresher: TokenRefresher,
    oauth_provider,
    media_client: AsyncMock,
    presentation: MagicMock,
    tmp_path: Path,
    clock,
) -> AsyncGenerator[SessionController, None]:
    flow = PKCEAuthFlow(oauth_provider, FileVerifierStore(tmp_path), clock=clock)
    controller = SessionController(
        settings=session_settings,
        credential_store=store,
        auth_flow=flow,
        token_refresher=refresher,
        media_client=media_client,
        presentation=presentation,
    )
    yield controller
    await controller.shutdown()


@pytest.fixture
def stored_tokens(local_store) -> TokenSet:
    tokens = TokenSet("a1", "r1", NOW + HOUR_MS)
    local_store.entry = tokens.to_dict()
    return tokens


class TestInitialization:
    async def test_no_tokens_stays_disconnected(self, controller: SessionController) -> None:
        await controller.mount()

        assert controller.state.connection.status is ConnectionStatus.DISCONNECTED
        assert controller.state.is_loading is False
        assert controller.init_phase is OperationPhase.IDLE

    async def test_valid_tokens_connect_and_fetch(
        self, controller: SessionController, stored_tokens: TokenSet, media_client: AsyncMock
    ) -> None:
        await controller.mount()
        state = controller.state

        assert state.connection.status is ConnectionStatus.CONNECTED
        assert state.is_loading is False
        assert state.is_premium is True
        assert state.current_track == TRACK
        assert state.is_playing is True
        assert state.progress_ms == 10_000
        assert state.volume == 70
        assert state.is_liked is True
        assert len(state.devices) == 2
        assert controller.timers_running is True
        media_client.get_recently_played.assert_awaited_once_with(10)

    async def test_concurrent_triggers_initialize_once(
        self, controller: SessionController, stored_tokens: TokenSet, media_client: AsyncMock
    ) -> None:
        await asyncio.gather(
            controller.mount(),
            controller.handle_storage_notification(PENDING_TOKENS_KEY),
            controller.set_identity("host-user"),
        )

        media_client.get_profile.assert_awaited_once()
        assert controller.init_phase is OperationPhase.DONE

    async def test_unrelated_storage_key_is_ignored(
        self, controller: SessionController, stored_tokens: TokenSet, media_client: AsyncMock
    ) -> None:
        await controller.handle_storage_notification(LOCAL_TOKENS_KEY)

        media_client.get_profile.assert_not_awaited()
        assert controller.state.connection.status is ConnectionStatus.DISCONNECTED

    async def test_failed_refresh_on_startup_tears_down(
        self, controller: SessionController, local_store, oauth_provider, store: CredentialStore
    ) -> None:
        local_store.entry = TokenSet("a1", "r1", NOW - 1).to_dict()
        oauth_provider.refresh_error = SessionExpiredError(
            "Refresh token invalid: revoked", error_code="invalid_grant", http_status=400
        )

        await controller.mount()

        assert controller.state.connection.status is ConnectionStatus.ERROR
        assert controller.state.connection.reason == "Refresh token invalid: revoked"
        assert local_store.entry is None
        assert controller.init_phase is OperationPhase.IDLE

    async def test_expiring_tokens_are_refreshed_before_connecting(
        self, controller: SessionController, local_store, oauth_provider
    ) -> None:
        local_store.entry = TokenSet("a1", "r1", NOW + 60_000).to_dict()

        await controller.mount()

        assert oauth_provider.refresh_calls == ["r1"]
        assert controller.state.is_connected is True
        assert local_store.entry["access_token"] == "a2"

    async def test_sign_out_resets_state(
        self, controller: SessionController, stored_tokens: TokenSet
    ) -> None:
        await controller.mount()

        await controller.set_identity(None)

        assert controller.state == SessionState(is_loading=False)
        assert controller.timers_running is False


class TestConnectAndCallback:
    async def test_connect_hands_url_to_navigator(self, controller: SessionController) -> None:
        navigator = MagicMock()
        controller._navigator = navigator

        url = controller.connect()

        assert url.startswith("https://auth.example/authorize?")
        navigator.assert_called_once_with(url)

    async def test_connect_configuration_error_sets_message(
        self, controller: SessionController, oauth_provider, mocker
    ) -> None:
        mocker.patch.object(
            oauth_provider,
            "build_authorization_url",
            side_effect=ConfigurationError("SPOTIFY_CLIENT_ID is not configured"),
        )

        with pytest.raises(ConfigurationError):
            controller.connect()

        assert controller.state.error == "Failed to connect to Spotify"

    async def test_callback_connects_and_persists(
        self, controller: SessionController, local_store, media_client: AsyncMock
    ) -> None:
        controller.connect()

        await controller.handle_callback("code123")

        assert controller.state.is_connected is True
        assert controller.init_phase is OperationPhase.DONE
        assert local_store.entry["access_token"] == "a1"
        media_client.get_profile.assert_awaited_once()

    async def test_callback_is_followed_by_no_second_initialization(
        self, controller: SessionController, media_client: AsyncMock
    ) -> None:
        controller.connect()
        await controller.handle_callback("code123")

        await controller.mount()

        media_client.get_profile.assert_awaited_once()


class TestDisconnect:
    async def test_disconnect_twice_is_safe(
        self, controller: SessionController, stored_tokens: TokenSet, local_store, presentation
    ) -> None:
        await controller.mount()

        controller.disconnect()
        controller.disconnect()

        assert controller.state.connection.status is ConnectionStatus.DISCONNECTED
        assert controller.state.current_track is None
        assert controller.timers_running is False
        assert controller.init_phase is OperationPhase.IDLE
        assert local_store.entry is None
        presentation.clear.assert_called()

    async def test_poll_finishing_after_disconnect_is_dropped(
        self, controller: SessionController, stored_tokens: TokenSet, media_client: AsyncMock
    ) -> None:
        await controller.mount()
        gate = asyncio.Event()

        async def slow_playback() -> PlaybackSnapshot:
            await gate.wait()
            return _snapshot(track=OTHER_TRACK)

        media_client.get_playback_state.side_effect = slow_playback
        poll = asyncio.create_task(controller.refresh_playback())
        await asyncio.sleep(0)

        controller.disconnect()
        gate.set()
        await poll

        assert controller.state.current_track is None


class TestProgressTicking:
    async def test_progress_is_monotonic_and_clamped(
        self, controller: SessionController, stored_tokens: TokenSet, media_client: AsyncMock
    ) -> None:
        controller.settings = SessionSettings(
            tick_interval_seconds=0.01, poll_interval_seconds=3600
        )
        media_client.get_playback_state.return_value = PlaybackSnapshot(
            track=Track(id="short", name="Short", uri="u", duration_ms=2_500),
            is_playing=True,
            progress_ms=0,
            duration_ms=2_500,
            device_volume=None,
            shuffle=False,
            repeat_mode=RepeatMode.OFF,
            fetched_at=NOW,
        )
        seen: list[int] = []
        controller.subscribe(lambda state: seen.append(state.progress_ms))

        await controller.mount()
        await asyncio.sleep(0.15)

        assert seen == sorted(seen)
        assert max(seen) == 2_500
        assert controller.state.progress_ms == 2_500

    async def test_timers_stop_when_paused_remotely(
        self, controller: SessionController, stored_tokens: TokenSet, media_client: AsyncMock
    ) -> None:
        await controller.mount()
        assert controller.timers_running is True

        media_client.get_playback_state.return_value = _snapshot(is_playing=False)
        await controller.refresh_playback()

        assert controller.timers_running is False

    async def test_poll_overwrites_ticked_progress(
        self, controller: SessionController, stored_tokens: TokenSet, media_client: AsyncMock
    ) -> None:
        await controller.mount()
        controller._tick()
        assert controller.state.progress_ms == 11_000

        media_client.get_playback_state.return_value = _snapshot(progress_ms=9_000)
        await controller.refresh_playback()

        assert controller.state.progress_ms == 9_000

    async def test_nothing_playing_clears_track(
        self, controller: SessionController, stored_tokens: TokenSet, media_client: AsyncMock
    ) -> None:
        await controller.mount()

        media_client.get_playback_state.return_value = None
        await controller.refresh_playback()

        assert controller.state.current_track is None
        assert controller.state.is_playing is False
        assert controller.timers_running is False


class TestPresentation:
    async def test_derived_color_and_mood_are_merged(
        self, controller: SessionController, stored_tokens: TokenSet
    ) -> None:
        await controller.mount()
        await controller.drain()

        assert controller.state.dominant_color == "rgb(10, 20, 30)"
        assert controller.state.mood is not None
        assert controller.state.mood.label == "Happy"

    async def test_stale_derivation_is_not_merged(
        self,
        controller: SessionController,
        stored_tokens: TokenSet,
        media_client: AsyncMock,
        presentation: MagicMock,
    ) -> None:
        gate = asyncio.Event()

        async def slow_derive(track: Track) -> DerivedPresentation:
            await gate.wait()
            return DerivedPresentation(track_id=track.id, dominant_color="rgb(1, 1, 1)")

        presentation.derive.side_effect = slow_derive
        await controller.mount()

        media_client.get_playback_state.return_value = _snapshot(track=OTHER_TRACK)
        await controller.refresh_playback()
        gate.set()
        await controller.drain()

        # Only track-2's own derivation may set its color
        assert controller.state.current_track == OTHER_TRACK
        assert controller.state.dominant_color == "rgb(1, 1, 1)"
        assert presentation.derive.await_count == 2


class TestCommands:
    async def test_commands_are_noops_when_disconnected(
        self, controller: SessionController, media_client: AsyncMock
    ) -> None:
        await controller.play()
        await controller.set_volume(10)

        media_client.play.assert_not_awaited()
        media_client.set_volume.assert_not_awaited()

    async def test_pause_is_optimistic(
        self, controller: SessionController, stored_tokens: TokenSet, media_client: AsyncMock
    ) -> None:
        await controller.mount()
        observed: list[bool] = []

        async def record_pause() -> None:
            observed.append(controller.state.is_playing)

        media_client.pause.side_effect = record_pause
        await controller.pause()

        # State flipped before the remote call ran
        assert observed == [False]
        assert controller.timers_running is False

    async def test_failure_sets_error_without_rollback(
        self, controller: SessionController, stored_tokens: TokenSet, media_client: AsyncMock
    ) -> None:
        await controller.mount()
        media_client.pause.side_effect = MediaServiceError("No active device", http_status=404)

        await controller.pause()

        assert controller.state.error == "Failed to pause"
        assert controller.state.is_playing is False
        assert controller.state.is_connected is True

    async def test_transient_failure_keeps_connection(
        self, controller: SessionController, stored_tokens: TokenSet, media_client: AsyncMock
    ) -> None:
        await controller.mount()
        media_client.get_playback_state.side_effect = TransientError("timed out")

        await controller.refresh_playback()

        assert controller.state.error == "Failed to refresh playback"
        assert controller.state.is_connected is True

    async def test_toggle_play_pause(
        self, controller: SessionController, stored_tokens: TokenSet, media_client: AsyncMock
    ) -> None:
        await controller.mount()

        await controller.toggle_play_pause()
        media_client.pause.assert_awaited_once()

        await controller.toggle_play_pause()
        media_client.play.assert_awaited_once()

    async def test_next_resets_progress_and_refetches(
        self, controller: SessionController, stored_tokens: TokenSet, media_client: AsyncMock
    ) -> None:
        await controller.mount()
        media_client.get_playback_state.reset_mock()
        media_client.get_playback_state.return_value = _snapshot(track=OTHER_TRACK, progress_ms=0)

        await controller.next()
        assert controller.state.progress_ms == 0
        await controller.drain()

        media_client.next_track.assert_awaited_once()
        media_client.get_playback_state.assert_awaited()
        assert controller.state.current_track == OTHER_TRACK

    async def test_seek_is_clamped_to_duration(
        self, controller: SessionController, stored_tokens: TokenSet, media_client: AsyncMock
    ) -> None:
        await controller.mount()

        await controller.seek(999_999)

        media_client.seek.assert_awaited_once_with(200_000)
        assert controller.state.progress_ms == 200_000

    async def test_volume_is_rounded_and_clamped(
        self, controller: SessionController, stored_tokens: TokenSet, media_client: AsyncMock
    ) -> None:
        await controller.mount()

        await controller.set_volume(150)
        await controller.set_volume(42.6)

        assert [c.args[0] for c in media_client.set_volume.await_args_list] == [100, 43]
        assert controller.state.volume == 43

    async def test_shuffle_and_repeat(
        self, controller: SessionController, stored_tokens: TokenSet, media_client: AsyncMock
    ) -> None:
        await controller.mount()

        await controller.toggle_shuffle()
        await controller.cycle_repeat()
        await controller.cycle_repeat()

        media_client.set_shuffle.assert_awaited_once_with(True)
        assert [c.args[0] for c in media_client.set_repeat.await_args_list] == [
            RepeatMode.CONTEXT,
            RepeatMode.TRACK,
        ]
        assert controller.state.repeat is RepeatMode.TRACK

    async def test_toggle_like(
        self, controller: SessionController, stored_tokens: TokenSet, media_client: AsyncMock
    ) -> None:
        await controller.mount()
        assert controller.state.is_liked is True

        await controller.toggle_like()

        media_client.remove_track.assert_awaited_once_with("track-1")
        assert controller.state.is_liked is False

    async def test_transfer_marks_device_active_and_refetches(
        self, controller: SessionController, stored_tokens: TokenSet, media_client: AsyncMock
    ) -> None:
        await controller.mount()
        media_client.get_devices.reset_mock()

        await controller.transfer_to_device("dev-2")

        media_client.transfer_playback.assert_awaited_once_with("dev-2", play=True)
        media_client.get_devices.assert_awaited_once()

    async def test_reconcile_after_commands_refetches(
        self, controller: SessionController, stored_tokens: TokenSet, media_client: AsyncMock
    ) -> None:
        controller.settings = SessionSettings(
            tick_interval_seconds=3600, poll_interval_seconds=3600, reconcile_after_commands=True
        )
        await controller.mount()
        media_client.get_playback_state.reset_mock()

        await controller.toggle_shuffle()
        await controller.drain()

        media_client.get_playback_state.assert_awaited_once()


class TestAuthTeardown:
    async def test_auth_error_tears_down_session(
        self,
        controller: SessionController,
        stored_tokens: TokenSet,
        media_client: AsyncMock,
        local_store,
    ) -> None:
        await controller.mount()
        media_client.get_playback_state.side_effect = AuthError("rejected", http_status=401)

        await controller.refresh_playback()

        state = controller.state
        assert state.connection.status is ConnectionStatus.ERROR
        assert state.connection.reason == "Spotify session expired. Please reconnect."
        assert state.current_track is None
        assert controller.timers_running is False
        assert local_store.entry is None

    async def test_command_auth_error_tears_down(
        self, controller: SessionController, stored_tokens: TokenSet, media_client: AsyncMock
    ) -> None:
        await controller.mount()
        media_client.next_track.side_effect = AuthError("rejected", http_status=401)

        await controller.next()

        assert controller.state.connection.status is ConnectionStatus.ERROR

    async def test_reconnect_after_teardown(
        self, controller: SessionController, stored_tokens: TokenSet, media_client: AsyncMock
    ) -> None:
        await controller.mount()
        media_client.get_playback_state.side_effect = AuthError("rejected")
        await controller.refresh_playback()
        media_client.get_playback_state.side_effect = None

        controller.connect()
        await controller.handle_callback("fresh-code")

        assert controller.state.is_connected is True


class TestSubscriptions:
    async def test_unsubscribe_stops_updates(
        self, controller: SessionController, stored_tokens: TokenSet
    ) -> None:
        seen: list[SessionState] = []
        unsubscribe = controller.subscribe(seen.append)
        await controller.mount()
        count = len(seen)

        unsubscribe()
        controller.disconnect()

        assert count > 0
        assert len(seen) == count

    async def test_failing_listener_does_not_break_publishing(
        self, controller: SessionController, stored_tokens: TokenSet
    ) -> None:
        controller.subscribe(MagicMock(side_effect=RuntimeError("boom")))

        await controller.mount()

        assert controller.state.is_connected is True

    def test_format_time(self) -> None:
        assert SessionController.format_time(125_000) == "2:05"
