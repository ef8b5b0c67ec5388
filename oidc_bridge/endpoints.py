"""Room login endpoints.

- /room/{name}: start an OIDC authorization code + PKCE login for a room
- /callback: finish it and send the user to the room with a signed token

The store, provider and config are read from app.state, set by create_app().
"""

import logging
import secrets
from typing import Optional
from urllib.parse import quote, urlencode

from fastapi import APIRouter, Request
from fastapi.responses import RedirectResponse

from oidc_bridge.errors import InternalServerError, TokenMintingError
from oidc_bridge.jwt_utils import create_room_token
from oidc_bridge.provider import generate_pkce_pair
from oidc_bridge.validation import validate_callback

logger = logging.getLogger(__name__)

# Router for room login endpoints
router = APIRouter(tags=["room"])

COOKIE_NAME = "SESSION"
COOKIE_MAX_AGE = 30 * 60  # 30 minutes to finish the login at the provider


# ============== Authorization ==============

@router.get("/room/{name}")
async def room(request: Request, name: str):
    """Start a login for a room - redirects to the identity provider."""
    app_state = request.app.state
    provider = app_state.provider

    code_verifier, code_challenge = generate_pkce_pair()
    csrf_token = secrets.token_urlsafe(32)
    nonce = secrets.token_urlsafe(32)

    auth_url = provider.authorization_url(csrf_token, nonce, code_challenge)
    session_id, _ = await app_state.store.create(name, csrf_token, nonce, code_verifier)
    logger.info(f"[ROOM] Login started for room {name!r}, {len(app_state.store)} pending")

    response = RedirectResponse(url=auth_url, status_code=302)
    response.set_cookie(
        COOKIE_NAME,
        session_id,
        max_age=COOKIE_MAX_AGE,
        path="/",
        httponly=True,
        secure=app_state.config.cookie_secure,
        samesite="lax",
    )
    return response


# ============== Callback ==============

@router.get("/callback")
async def callback(
    request: Request,
    state: Optional[str] = None,
    code: Optional[str] = None,
    error: Optional[str] = None,
):
    """Validate the provider redirect and forward the user to their room."""
    app_state = request.app.state
    config = app_state.config

    identity, attempt = await validate_callback(
        app_state.store,
        app_state.provider,
        request.cookies.get(COOKIE_NAME),
        state,
        code,
        error,
    )

    try:
        token = create_room_token(
            user_id=identity.user_id,
            email=identity.email,
            name=identity.name,
            avatar=identity.avatar,
            audience=config.target_audience,
            issuer=config.target_issuer,
            subject=config.jitsi_sub,
            room=attempt.room,
            secret=config.jitsi_secret,
        )
    except TokenMintingError as e:
        logger.error(f"[JWT] Unable to create room token: {e}")
        raise InternalServerError() from e

    logger.info(f"[CALLBACK] User {identity.user_id!r} admitted to room {attempt.room!r}")

    response = RedirectResponse(url=room_url(config.jitsi_url, attempt.room, token), status_code=302)
    response.delete_cookie(COOKIE_NAME, path="/")
    return response


def room_url(target_url: str, room: str, token: str) -> str:
    """Conference URL for a room with the token attached."""
    return f"{target_url.rstrip('/')}/{quote(room, safe='')}?{urlencode({'jwt': token})}"
