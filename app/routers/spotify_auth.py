"""Spotify OAuth router: login redirect, callback and status."""

import logging
from typing import Optional

from fastapi import APIRouter
from fastapi.responses import RedirectResponse

from app.core.exceptions import BadRequestException
from app.core.security import generate_oauth_state, states_match
from app.dependencies import OAuth, Session
from app.schemas.auth import MessageResponse, SpotifyAuthStatusResponse
from app.services.spotify_service import SpotifyAuthError

router = APIRouter()
api_router = APIRouter()
logger = logging.getLogger(__name__)


def create_frontend_redirect(error: Optional[str] = None) -> RedirectResponse:
    """Redirect back to the SPA with either ?auth=success or ?error=<reason>."""
    if error:
        return RedirectResponse(url=f"/?error={error}", status_code=302)
    return RedirectResponse(url="/?auth=success", status_code=302)


@router.get("/spotify")
async def spotify_login(session: Session, oauth: OAuth):
    """Initiate Spotify OAuth login."""
    if not oauth.configured:
        raise BadRequestException("Spotify OAuth is not configured")

    state = generate_oauth_state()
    session.set_oauth_state(state)
    url = await oauth.authorization_url(state)
    return RedirectResponse(url=url, status_code=302)


@router.get("/spotify/callback")
async def spotify_callback(
    session: Session,
    oauth: OAuth,
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
):
    """
    Handle Spotify OAuth callback.

    The pending state is discarded before anything else so a callback URL
    can never be replayed. No token is stored unless every check passes.
    """
    expected_state = session.pop_oauth_state()

    if error:
        logger.warning(f"Spotify reported an OAuth error: {error}")
        session.destroy_if_empty()
        return create_frontend_redirect(error="spotify_auth_failed")

    if not states_match(state, expected_state):
        logger.warning("OAuth state mismatch - possible CSRF attack")
        session.destroy_if_empty()
        return create_frontend_redirect(error="invalid_state")

    if not code:
        session.destroy_if_empty()
        return create_frontend_redirect(error="missing_code")

    try:
        tokens = await oauth.exchange_code(code)
    except SpotifyAuthError as e:
        logger.error(f"OAuth token exchange failed: {e}")
        session.destroy_if_empty()
        return create_frontend_redirect(error="token_exchange_failed")

    session.set_spotify_tokens(tokens.access_token, tokens.refresh_token, tokens.expires_at)
    session.rotate()
    session.bind_user_agent()
    logger.info("User authenticated with Spotify")

    return create_frontend_redirect()


@api_router.get("/status", response_model=SpotifyAuthStatusResponse)
async def spotify_status(session: Session):
    """Whether the session holds a Spotify user token."""
    if not session.has_spotify_token:
        return SpotifyAuthStatusResponse(authenticated=False)
    expires_at = session.data.spotify_token_expires_at
    return SpotifyAuthStatusResponse(
        authenticated=True,
        expiresAt=expires_at.isoformat() if expires_at else None,
    )


@api_router.post("/logout", response_model=MessageResponse)
async def spotify_logout(session: Session):
    """Forget the Spotify tokens. The local account stays signed in."""
    session.clear_spotify_tokens()
    return MessageResponse()
