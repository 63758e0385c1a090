"""Media session controller: connection lifecycle, playback sync and commands.

Hey future me - this is the orchestrator the HTTP layer (or any other UI) talks to. It owns
ONE SessionState and publishes a fresh immutable copy to every subscriber on each change.

Lifecycle:
    DISCONNECTED ──initialize_session()──► INITIALIZING ──tokens ok──► CONNECTED
         ▲                                      │                          │
         │                                      └──no tokens──► DISCONNECTED
         │                                                                 │
         ├──────────────────────────── disconnect() ◄──────────────────────┤
         │                                                                 │
    ERROR(reason) ◄──────────────── AuthError / SessionExpiredError ◄──────┘

Every wake-up source (mount, identity change, pending-tokens notification, the watcher worker)
goes through initialize_session(), which is guarded by an OperationPhase on THIS instance. No
module-level flags, so two controllers (tests!) never block each other.

Commands are optimistic: state flips first, the remote call follows, failures leave a
dismissible error string but do NOT roll back. The next poll corrects any drift.
"""

import asyncio
import dataclasses
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from mediasession.application.services.credential_store import CredentialStore
from mediasession.application.services.pkce_auth_flow import PKCEAuthFlow
from mediasession.application.services.presentation_service import PresentationService
from mediasession.application.services.token_refresher import TokenRefresher
from mediasession.application.workers.playback_workers import PlaybackPoller, ProgressTicker
from mediasession.config.settings import SessionSettings
from mediasession.domain.entities import (
    DEFAULT_DOMINANT_COLOR,
    ConnectionState,
    ConnectionStatus,
    OperationPhase,
    PlaybackSnapshot,
    SessionState,
    Track,
    format_duration,
)
from mediasession.domain.exceptions import (
    AuthError,
    ConfigurationError,
    DomainException,
    SessionExpiredError,
)
from mediasession.infrastructure.integrations.media_service_client import MediaServiceClient
from mediasession.infrastructure.observability.log_messages import LogMessages
from mediasession.infrastructure.persistence.local_store import PENDING_TOKENS_KEY

logger = logging.getLogger(__name__)

SESSION_EXPIRED_MESSAGE = "Spotify session expired. Please reconnect."

Listener = Callable[[SessionState], None]
Navigator = Callable[[str], None]


class SessionController:
    """Keeps a local view of the remote playback session in sync."""

    def __init__(
        self,
        settings: SessionSettings,
        credential_store: CredentialStore,
        auth_flow: PKCEAuthFlow,
        token_refresher: TokenRefresher,
        media_client: MediaServiceClient,
        presentation: PresentationService,
        navigator: Navigator | None = None,
    ) -> None:
        """
        Initialize the controller.

        Args:
            settings: Timing knobs (tick, poll, refetch delay, recent limit)
            credential_store: Token persistence
            auth_flow: PKCE flow for connect()/handle_callback()
            token_refresher: Token source; its expiry listener is wired to this controller
            media_client: Authenticated Web API client
            presentation: Dominant color / mood derivation
            navigator: Optional callback receiving the authorization URL on connect()
        """
        self.settings = settings
        self._store = credential_store
        self._auth_flow = auth_flow
        self._refresher = token_refresher
        self._client = media_client
        self._presentation = presentation
        self._navigator = navigator

        self._state = SessionState()
        self._listeners: list[Listener] = []
        self._init_phase = OperationPhase.IDLE
        # Bumped on every teardown. Async results that started under an older generation are
        # dropped, otherwise a poll finishing after disconnect() would resurrect the track.
        self._generation = 0

        self._ticker = ProgressTicker(self._tick, settings.tick_interval_seconds)
        self._poller = PlaybackPoller(self.refresh_playback, settings.poll_interval_seconds)
        self._ticker_task: asyncio.Task[None] | None = None
        self._poller_task: asyncio.Task[None] | None = None
        self._background: set[asyncio.Task[Any]] = set()

        self._refresher.set_expiry_listener(self._on_session_expired)

    # =========================================================================
    # STATE & SUBSCRIPTIONS
    # =========================================================================

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def init_phase(self) -> OperationPhase:
        return self._init_phase

    @property
    def timers_running(self) -> bool:
        return self._ticker_task is not None or self._poller_task is not None

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """
        Register a listener for state changes.

        Returns:
            Unsubscribe callable
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _publish(self, state: SessionState) -> None:
        self._state = state
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                logger.exception("Session state listener failed")

    def _update(self, **changes: Any) -> None:
        self._publish(dataclasses.replace(self._state, **changes))

    @staticmethod
    def format_time(ms: int) -> str:
        """Format milliseconds as m:ss."""
        return format_duration(ms)

    # =========================================================================
    # TRIGGERS
    # =========================================================================

    async def mount(self) -> None:
        """The session surface became active."""
        await self.initialize_session()

    async def set_identity(self, user_id: str | None) -> None:
        """
        Host application user changed.

        Args:
            user_id: New identity, or None when signed out
        """
        previous = self._store.user_id
        self._store.set_user_id(user_id)
        if user_id is None or (previous is not None and user_id != previous):
            # Sign-out or a different user: nothing of the old session may leak through
            self._reset_session()
        if user_id is None:
            self._publish(SessionState(is_loading=False))
            return
        await self.initialize_session()

    def _reset_session(self) -> None:
        self._stop_timers()
        self._cancel_background()
        self._generation += 1
        self._init_phase = OperationPhase.IDLE
        self._presentation.clear()

    async def handle_storage_notification(self, key: str) -> None:
        """A storage key changed outside this controller (e.g. the callback handler)."""
        if key != PENDING_TOKENS_KEY:
            return
        await self.initialize_session()

    async def initialize_session(self) -> None:
        """Single guarded entry point for establishing the connection.

        No-op while another initialization is in flight or after success.
        """
        if self._init_phase is not OperationPhase.IDLE:
            return
        self._init_phase = OperationPhase.IN_FLIGHT
        generation = self._generation

        self._update(
            connection=ConnectionState.initializing(),
            is_loading=True,
            error=None,
        )

        try:
            tokens = await self._store.load()
            if tokens is None:
                logger.info("No stored media tokens, staying disconnected")
                self._init_phase = OperationPhase.IDLE
                self._update(connection=ConnectionState.disconnected(), is_loading=False)
                return

            # Refreshes right here if the stored token is about to expire
            await self._refresher.get_valid_token()
        except SessionExpiredError as e:
            # The refresher already deleted credentials and notified us
            self._init_phase = OperationPhase.IDLE
            if generation == self._generation:
                self._tear_down(e.message)
            return
        except Exception:
            self._init_phase = OperationPhase.IDLE
            self._update(connection=ConnectionState.disconnected(), is_loading=False)
            raise

        if generation != self._generation:
            # disconnect() ran while we were loading
            self._init_phase = OperationPhase.IDLE
            return

        self._init_phase = OperationPhase.DONE
        self._update(connection=ConnectionState.connected(), error=None)
        logger.info("Media session connected")

        await self._initial_fetch()
        if self._state.connection.status is ConnectionStatus.CONNECTED:
            self._update(is_loading=False)

    async def _initial_fetch(self) -> None:
        # Each slice handles its own failure, one broken endpoint must not block the rest
        await asyncio.gather(
            self._fetch_profile(),
            self.refresh_playback(),
            self._fetch_devices(),
            self._fetch_recent_tracks(),
        )

    # =========================================================================
    # CONNECT / CALLBACK / DISCONNECT
    # =========================================================================

    def connect(self) -> str:
        """
        Start the PKCE flow.

        Returns:
            Authorization URL (also handed to the navigator, if one is set)

        Raises:
            ConfigurationError: Client id or redirect URI missing
        """
        try:
            url = self._auth_flow.begin()
        except ConfigurationError:
            self._update(error="Failed to connect to Spotify")
            raise

        if self._navigator is not None:
            self._navigator(url)
        return url

    async def handle_callback(self, code: str, state: str | None = None) -> None:
        """
        Finish the OAuth flow and connect.

        Raises:
            FlowError: Verifier missing/expired, state mismatch, code reused or rejected
        """
        tokens = await self._auth_flow.complete(code, state)
        self._store.save(tokens)

        self._generation += 1
        self._init_phase = OperationPhase.DONE
        self._update(
            connection=ConnectionState.connected(),
            is_loading=True,
            error=None,
        )
        logger.info("Media session connected via OAuth callback")

        await self._initial_fetch()
        if self._state.connection.status is ConnectionStatus.CONNECTED:
            self._update(is_loading=False)

    # Listen up, disconnect() is SYNC on purpose: timers, pending background tasks and guards
    # are all gone by the time it returns. Only the remote-backup delete keeps running (it's
    # tracked by the credential store, see CredentialStore.drain()).
    def disconnect(self) -> None:
        """Drop the session and forget credentials. Idempotent."""
        self._reset_session()
        self._store.delete()
        self._publish(SessionState(is_loading=False))
        logger.info("Media session disconnected")

    def _tear_down(self, reason: str) -> None:
        """Auth failed for good: stop everything, forget credentials, show reconnect."""
        if self._state.connection.status is ConnectionStatus.ERROR and not self.timers_running:
            return

        logger.warning(LogMessages.session_expired(service="Spotify", reason=reason))
        self._reset_session()
        self._store.delete()
        self._publish(
            SessionState(
                connection=ConnectionState.error(reason),
                is_loading=False,
                error=reason,
            )
        )

    def _on_session_expired(self, error: SessionExpiredError) -> None:
        if self._state.connection.status in (
            ConnectionStatus.CONNECTED,
            ConnectionStatus.INITIALIZING,
        ):
            self._tear_down(error.message)

    # =========================================================================
    # FAILURE HANDLING
    # =========================================================================

    def _handle_failure(self, error: DomainException, message: str, generation: int) -> None:
        if generation != self._generation:
            return
        if isinstance(error, SessionExpiredError):
            self._tear_down(error.message)
        elif isinstance(error, AuthError):
            self._tear_down(SESSION_EXPIRED_MESSAGE)
        else:
            logger.warning("%s: %s", message, error.message)
            self._update(error=message)

    # =========================================================================
    # READS
    # =========================================================================

    async def refresh_playback(self) -> None:
        """Fetch the playback snapshot and overwrite the local view with it."""
        if not self._state.is_connected:
            return
        generation = self._generation

        try:
            snapshot = await self._client.get_playback_state()
        except DomainException as e:
            self._handle_failure(e, "Failed to refresh playback", generation)
            return

        is_liked = self._state.is_liked
        if snapshot is not None and snapshot.track is not None:
            try:
                is_liked = await self._client.is_track_liked(snapshot.track.id)
            except DomainException as e:
                if isinstance(e, AuthError):
                    self._handle_failure(e, "Failed to check library", generation)
                    return
                logger.debug("Liked-status check failed: %s", e.message)

        if generation != self._generation:
            return
        self._apply_snapshot(snapshot, is_liked)

    def _apply_snapshot(self, snapshot: PlaybackSnapshot | None, is_liked: bool) -> None:
        if snapshot is None or snapshot.track is None:
            self._update(
                playback=snapshot,
                current_track=None,
                is_playing=False,
                progress_ms=0,
                duration_ms=0,
                error=None,
            )
            self._sync_timers()
            return

        track = snapshot.track
        previous = self._state.current_track
        changes: dict[str, Any] = {
            "playback": snapshot,
            "current_track": track,
            "is_playing": snapshot.is_playing,
            "progress_ms": min(snapshot.progress_ms, snapshot.duration_ms),
            "duration_ms": snapshot.duration_ms,
            "shuffle": snapshot.shuffle,
            "repeat": snapshot.repeat_mode,
            "is_liked": is_liked,
            "error": None,
        }
        if snapshot.device_volume is not None:
            changes["volume"] = snapshot.device_volume

        if previous is None or previous.id != track.id:
            cached = self._presentation.cached(track.id)
            changes["dominant_color"] = cached.dominant_color if cached else DEFAULT_DOMINANT_COLOR
            changes["mood"] = cached.mood if cached else None
            if cached is None:
                self._spawn(self._derive_presentation(track))

        self._update(**changes)
        self._sync_timers()

    async def _derive_presentation(self, track: Track) -> None:
        generation = self._generation
        try:
            derived = await self._presentation.derive(track)
        except DomainException as e:
            if isinstance(e, AuthError):
                self._handle_failure(e, "Failed to load track details", generation)
            return

        # Only merge if the same track is still playing
        current = self._state.current_track
        if generation != self._generation or current is None or current.id != derived.track_id:
            return
        self._update(dominant_color=derived.dominant_color, mood=derived.mood)

    async def _fetch_profile(self) -> None:
        generation = self._generation
        try:
            user = await self._client.get_profile()
        except DomainException as e:
            self._handle_failure(e, "Failed to load profile", generation)
            return
        if generation == self._generation:
            self._update(user=user, is_premium=user.is_premium)

    async def _fetch_devices(self) -> None:
        generation = self._generation
        try:
            devices = await self._client.get_devices()
        except DomainException as e:
            self._handle_failure(e, "Failed to load devices", generation)
            return
        if generation == self._generation:
            self._update(devices=tuple(devices))

    async def _fetch_recent_tracks(self) -> None:
        generation = self._generation
        try:
            recent = await self._client.get_recently_played(self.settings.recently_played_limit)
        except DomainException as e:
            self._handle_failure(e, "Failed to load recently played", generation)
            return
        if generation == self._generation:
            self._update(recent_tracks=tuple(recent))

    # =========================================================================
    # TIMERS
    # =========================================================================

    def _tick(self) -> None:
        state = self._state
        if not state.is_connected or not state.is_playing:
            return
        # min() against duration keeps it clamped, progress <= duration keeps it monotonic
        advanced = min(state.progress_ms + self.settings.tick_quantum_ms, state.duration_ms)
        if advanced > state.progress_ms:
            self._update(progress_ms=advanced)

    def _sync_timers(self) -> None:
        """Run ticker + poller exactly while connected and playing."""
        if self._state.is_connected and self._state.is_playing:
            self._start_timers()
        else:
            self._stop_timers()

    def _start_timers(self) -> None:
        # Fresh worker objects each time, a cancelled loop must never see _running flip back on
        loop = asyncio.get_running_loop()
        if self._ticker_task is None:
            self._ticker = ProgressTicker(self._tick, self.settings.tick_interval_seconds)
            self._ticker_task = loop.create_task(self._ticker.start())
        if self._poller_task is None:
            self._poller = PlaybackPoller(
                self.refresh_playback, self.settings.poll_interval_seconds
            )
            self._poller_task = loop.create_task(self._poller.start())

    def _stop_timers(self) -> None:
        self._ticker.stop()
        self._poller.stop()
        current = asyncio.current_task() if _loop_running() else None
        for task in (self._ticker_task, self._poller_task):
            # The poller may be the one calling us (poll found playback stopped), let it exit
            # through its own loop check instead of cancelling ourselves mid-update
            if task is not None and task is not current:
                task.cancel()
        self._ticker_task = None
        self._poller_task = None

    # =========================================================================
    # BACKGROUND TASKS
    # =========================================================================

    def _spawn(self, coro: Awaitable[Any]) -> None:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._on_background_done)

    def _on_background_done(self, task: asyncio.Task[Any]) -> None:
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Background session task failed", exc_info=task.exception())

    def _cancel_background(self) -> None:
        current = asyncio.current_task() if _loop_running() else None
        for task in list(self._background):
            if task is not current:
                task.cancel()
        self._background.clear()

    def _schedule_refetch(self, delay: float) -> None:
        async def _delayed() -> None:
            await asyncio.sleep(delay)
            await self.refresh_playback()

        self._spawn(_delayed())

    async def drain(self) -> None:
        """Wait for scheduled background work (delayed re-fetches, presentation)."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def shutdown(self) -> None:
        """Stop timers and background work without touching credentials."""
        self._stop_timers()
        self._cancel_background()
        await self._store.drain()

    # =========================================================================
    # COMMANDS
    # =========================================================================

    async def _command(
        self,
        failure_message: str,
        call: Callable[[], Awaitable[None]],
        optimistic: dict[str, Any] | None = None,
        refetch_delay: float | None = None,
    ) -> bool:
        if not self._state.is_connected:
            return False
        generation = self._generation

        if optimistic:
            self._update(**optimistic)
            self._sync_timers()

        try:
            await call()
        except DomainException as e:
            self._handle_failure(e, failure_message, generation)
            return False

        if generation != self._generation:
            return False
        if refetch_delay is not None:
            self._schedule_refetch(refetch_delay)
        elif self.settings.reconcile_after_commands:
            self._schedule_refetch(0)
        return True

    async def play(self) -> None:
        await self._command("Failed to play", self._client.play, {"is_playing": True})

    async def pause(self) -> None:
        await self._command("Failed to pause", self._client.pause, {"is_playing": False})

    async def toggle_play_pause(self) -> None:
        if self._state.is_playing:
            await self.pause()
        else:
            await self.play()

    async def next(self) -> None:
        await self._command(
            "Failed to skip",
            self._client.next_track,
            {"progress_ms": 0},
            refetch_delay=self.settings.command_refetch_delay_seconds,
        )

    async def previous(self) -> None:
        await self._command(
            "Failed to go back",
            self._client.previous_track,
            {"progress_ms": 0},
            refetch_delay=self.settings.command_refetch_delay_seconds,
        )

    async def seek(self, position_ms: int) -> None:
        duration = self._state.duration_ms
        position = max(0, int(position_ms))
        if duration:
            position = min(position, duration)
        await self._command(
            "Failed to seek",
            lambda: self._client.seek(position),
            {"progress_ms": position},
        )

    async def set_volume(self, volume: float) -> None:
        level = min(max(int(round(volume)), 0), 100)
        await self._command(
            "Failed to set volume",
            lambda: self._client.set_volume(level),
            {"volume": level},
        )

    async def toggle_shuffle(self) -> None:
        target = not self._state.shuffle
        await self._command(
            "Failed to toggle shuffle",
            lambda: self._client.set_shuffle(target),
            {"shuffle": target},
        )

    async def cycle_repeat(self) -> None:
        target = self._state.repeat.next()
        await self._command(
            "Failed to set repeat",
            lambda: self._client.set_repeat(target),
            {"repeat": target},
        )

    async def toggle_like(self) -> None:
        track = self._state.current_track
        if track is None:
            return
        liked = not self._state.is_liked
        if liked:
            call = lambda: self._client.save_track(track.id)  # noqa: E731
        else:
            call = lambda: self._client.remove_track(track.id)  # noqa: E731
        await self._command("Failed to update library", call, {"is_liked": liked})

    async def transfer_to_device(self, device_id: str) -> None:
        devices = tuple(
            dataclasses.replace(d, is_active=d.id == device_id) for d in self._state.devices
        )
        is_playing = self._state.is_playing
        transferred = await self._command(
            "Failed to transfer playback",
            lambda: self._client.transfer_playback(device_id, play=is_playing),
            {"devices": devices},
        )
        if transferred:
            await self._fetch_devices()


def _loop_running() -> bool:
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return False
    return True
