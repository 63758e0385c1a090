"""Media session endpoints: connect, OAuth callback, state and player commands."""

import logging
from typing import Annotated

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse, RedirectResponse

from mediasession.api.dependencies import get_session_controller
from mediasession.api.exception_handlers import RESTART_CONNECT_HINT
from mediasession.api.schemas import (
    IdentityRequest,
    PlayerCommand,
    PlayerCommandRequest,
    SessionStateResponse,
)
from mediasession.application.services.session_controller import SessionController

logger = logging.getLogger(__name__)

router = APIRouter()

Controller = Annotated[SessionController, Depends(get_session_controller)]


@router.get("/connect")
async def connect(controller: Controller) -> RedirectResponse:
    """Redirect the browser to the provider's consent page.

    ConfigurationError (no client id / redirect URI) becomes a 503 via the
    global exception handlers.
    """
    url = controller.connect()
    return RedirectResponse(url=url, status_code=status.HTTP_302_FOUND)


# Yo, the provider redirects the BROWSER here, so success ends in a redirect back to the app
# root, not a JSON body. Failures stay JSON (400) so the user sees why and can restart connect.
# FlowError (verifier missing/expired, state mismatch, reused code) is mapped by the handlers.
@router.get("/callback", response_model=None)
async def callback(
    controller: Controller,
    code: str | None = Query(default=None),
    state: str | None = Query(default=None),
    error: str | None = Query(default=None),
) -> RedirectResponse | JSONResponse:
    """Finish the OAuth flow started by /connect."""
    if error:
        logger.warning("Provider denied authorization: %s", error)
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={
                "detail": f"Authorization failed: {error}",
                "hint": RESTART_CONNECT_HINT,
            },
        )
    if not code:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={
                "detail": "Missing authorization code",
                "hint": RESTART_CONNECT_HINT,
            },
        )

    await controller.handle_callback(code, state)
    return RedirectResponse(url="/", status_code=status.HTTP_302_FOUND)


@router.get("/state", response_model=SessionStateResponse)
async def get_state(controller: Controller) -> SessionStateResponse:
    """Current session snapshot."""
    return SessionStateResponse.from_state(controller.state)


# Hey future me - the host app owns sign-in, this is how it tells us WHO is signed in. Knowing
# the user unlocks the remote token backup (and restores tokens from it on a new device).
# null means signed out: the session is reset but the stored tokens are kept.
@router.put("/identity", response_model=SessionStateResponse)
async def set_identity(body: IdentityRequest, controller: Controller) -> SessionStateResponse:
    """Set or clear the host user identity."""
    await controller.set_identity(body.user_id)
    return SessionStateResponse.from_state(controller.state)


@router.post("/refresh", response_model=SessionStateResponse)
async def refresh(controller: Controller) -> SessionStateResponse:
    """Re-fetch playback now (manual retry after a transient error)."""
    await controller.refresh_playback()
    return SessionStateResponse.from_state(controller.state)


@router.post("/disconnect", response_model=SessionStateResponse)
async def disconnect(controller: Controller) -> SessionStateResponse:
    """Forget credentials and stop syncing. Safe to call twice."""
    controller.disconnect()
    return SessionStateResponse.from_state(controller.state)


@router.post("/player/{command}", response_model=SessionStateResponse)
async def player_command(
    command: PlayerCommand,
    controller: Controller,
    body: Annotated[PlayerCommandRequest | None, Body()] = None,
) -> SessionStateResponse:
    """Run a player command and return the (optimistically updated) state.

    Commands fail soft: a rejected remote call shows up as `error` on the
    returned state, not as an HTTP error.
    """
    params = body or PlayerCommandRequest()

    if command is PlayerCommand.PLAY:
        await controller.play()
    elif command is PlayerCommand.PAUSE:
        await controller.pause()
    elif command is PlayerCommand.TOGGLE:
        await controller.toggle_play_pause()
    elif command is PlayerCommand.NEXT:
        await controller.next()
    elif command is PlayerCommand.PREVIOUS:
        await controller.previous()
    elif command is PlayerCommand.SEEK:
        if params.position_ms is None:
            raise HTTPException(status_code=422, detail="position_ms is required for seek")
        await controller.seek(params.position_ms)
    elif command is PlayerCommand.VOLUME:
        if params.volume is None:
            raise HTTPException(status_code=422, detail="volume is required")
        await controller.set_volume(params.volume)
    elif command is PlayerCommand.SHUFFLE:
        await controller.toggle_shuffle()
    elif command is PlayerCommand.REPEAT:
        await controller.cycle_repeat()
    elif command is PlayerCommand.LIKE:
        await controller.toggle_like()
    elif command is PlayerCommand.TRANSFER:
        if not params.device_id:
            raise HTTPException(status_code=422, detail="device_id is required for transfer")
        await controller.transfer_to_device(params.device_id)

    return SessionStateResponse.from_state(controller.state)
