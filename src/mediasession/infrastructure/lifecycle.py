"""Application lifecycle management for startup and shutdown tasks.

This module wires the media session together (stores, clients, refresher,
auth flow, controller) and owns the FastAPI lifespan context manager.
"""

import asyncio
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager, suppress
from dataclasses import dataclass

from fastapi import FastAPI

from mediasession.application.services.credential_store import CredentialStore
from mediasession.application.services.pkce_auth_flow import PKCEAuthFlow
from mediasession.application.services.presentation_service import PresentationService
from mediasession.application.services.session_controller import SessionController
from mediasession.application.services.token_refresher import TokenRefresher
from mediasession.application.workers.playback_workers import PendingTokensWatcher
from mediasession.config import Settings, get_settings
from mediasession.infrastructure.integrations.http_pool import HttpClientPool
from mediasession.infrastructure.integrations.media_service_client import MediaServiceClient
from mediasession.infrastructure.integrations.spotify_oauth_client import SpotifyOAuthClient
from mediasession.infrastructure.observability import LogMessages, configure_logging
from mediasession.infrastructure.persistence import (
    PENDING_TOKENS_KEY,
    Database,
    FileVerifierStore,
    LocalTokenStore,
    PendingTokenSlot,
    SqlRemoteTokenStore,
)

logger = logging.getLogger(__name__)


@dataclass
class SessionComponents:
    """Everything the lifespan builds, so shutdown can close it in one place."""

    credential_store: CredentialStore
    oauth_client: SpotifyOAuthClient
    media_client: MediaServiceClient
    token_refresher: TokenRefresher
    controller: SessionController
    watcher: PendingTokensWatcher

    async def close(self) -> None:
        self.watcher.stop()
        await self.controller.shutdown()
        await self.media_client.close()
        await self.oauth_client.close()


# Hey future me - this is the ONE place that knows how the pieces fit together. Order matters:
# the refresher needs the credential store and the OAuth client, the media client needs the
# refresher (it asks it for tokens), and the controller registers itself as the refresher's
# expiry listener in its __init__. Tests build their own graph with fakes instead.
def build_session_components(settings: Settings, database: Database | None) -> SessionComponents:
    """Construct the media session object graph from settings."""
    data_dir = settings.storage.data_dir
    session_settings = settings.session
    timeout = session_settings.http_timeout_seconds

    credential_store = CredentialStore(
        local_store=LocalTokenStore(data_dir),
        pending_slot=PendingTokenSlot(data_dir),
        remote_store=SqlRemoteTokenStore(database) if database is not None else None,
        user_id=session_settings.user_id,
    )
    oauth_client = SpotifyOAuthClient(settings.spotify, timeout=timeout)
    refresher = TokenRefresher(
        credential_store,
        oauth_client,
        refresh_buffer_seconds=session_settings.refresh_buffer_seconds,
    )
    auth_flow = PKCEAuthFlow(
        oauth_client,
        FileVerifierStore(data_dir),
        verifier_max_age_seconds=session_settings.verifier_max_age_seconds,
    )
    media_client = MediaServiceClient(settings.spotify, refresher, timeout=timeout)
    controller = SessionController(
        settings=session_settings,
        credential_store=credential_store,
        auth_flow=auth_flow,
        token_refresher=refresher,
        media_client=media_client,
        presentation=PresentationService(media_client),
    )
    watcher = PendingTokensWatcher(
        has_pending=credential_store.has_pending,
        on_pending=lambda: controller.handle_storage_notification(PENDING_TOKENS_KEY),
        interval_seconds=session_settings.pending_watch_interval_seconds,
    )
    return SessionComponents(
        credential_store=credential_store,
        oauth_client=oauth_client,
        media_client=media_client,
        token_refresher=refresher,
        controller=controller,
        watcher=watcher,
    )


# Listen future me, everything before `yield` runs at STARTUP, everything after at SHUTDOWN.
# The finally block makes sure the watcher task, HTTP clients and the DB engine are released
# even if startup blew up halfway. Routes find the controller on app.state.
@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager.

    Handles startup and shutdown tasks including:
    - Logging configuration
    - Directory creation
    - Remote token backup tables
    - Media session wiring and the pending-tokens watcher
    - Resource cleanup
    """
    settings: Settings = getattr(app.state, "settings", None) or get_settings()

    configure_logging(
        log_level=settings.log_level,
        json_format=settings.observability.log_json_format,
        app_name=settings.app_name,
    )
    logger.info("Starting application: %s", settings.app_name)

    db: Database | None = None
    components: SessionComponents | None = None
    watcher_task: asyncio.Task[None] | None = None
    try:
        settings.ensure_directories()
        logger.info("Storage directories initialized: %s", settings.storage.data_dir)

        db = Database(settings.database)
        await db.create_tables()
        app.state.db = db
        logger.info("Database initialized: %s", settings.database.url)

        if not settings.spotify.is_configured:
            logger.warning(
                LogMessages.config_invalid(
                    setting="SPOTIFY_CLIENT_ID / SPOTIFY_REDIRECT_URI",
                    value="<empty>",
                    expected="OAuth client id and registered redirect URI",
                    hint="Set both before calling /api/media/connect",
                )
            )

        components = build_session_components(settings, db)
        app.state.session_controller = components.controller
        app.state.credential_store = components.credential_store

        watcher_task = asyncio.create_task(components.watcher.start())
        app.state.pending_watcher = components.watcher

        try:
            await components.controller.mount()
        except Exception as e:
            # Stay up disconnected, the user can still hit /connect
            logger.exception("Initial media session load failed: %s", e)

        yield

    except Exception as e:
        logger.exception("Error during application startup: %s", e)
        raise
    finally:
        logger.info("Shutting down application")

        if components is not None:
            await components.close()
        if watcher_task is not None:
            watcher_task.cancel()
            with suppress(asyncio.CancelledError):
                await watcher_task

        await HttpClientPool.close()
        if db is not None:
            await db.close()

        logger.info("Application shutdown complete")
