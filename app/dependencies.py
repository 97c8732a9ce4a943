import logging
from typing import Annotated, Optional

from fastapi import Depends, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import Settings
from app.database import get_db
from app.models.user import User
from app.core.exceptions import UnauthorizedException
from app.core.middleware import resolve_client_ip
from app.core.session import SessionContext, get_session_context
from app.services.cache_service import ArtistCache
from app.services.oauth_service import SpotifyOAuth
from app.services.spotify_service import SpotifyAuthError, SpotifyService

logger = logging.getLogger(__name__)


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_spotify_service(request: Request) -> SpotifyService:
    return request.app.state.spotify


def get_spotify_oauth(request: Request) -> SpotifyOAuth:
    return request.app.state.spotify_oauth


def get_artist_cache(request: Request) -> ArtistCache:
    return request.app.state.artist_cache


def get_client_ip(request: Request) -> str:
    settings: Settings = request.app.state.settings
    return resolve_client_ip(request, settings.trust_proxy)


async def get_current_user(
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> User:
    """
    Dependency that resolves the locally signed-in user from the session.

    Raises 401 NOT_AUTHENTICATED for anonymous sessions and
    SESSION_EXPIRED when the session was just invalidated.

    Usage:
        @app.post("/protected")
        async def protected_route(current_user: CurrentUser):
            ...
    """
    session = get_session_context(request)
    user_id, _ = session.require_user()

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if user is None:
        # Account deleted while the session was alive
        session.logout()
        raise UnauthorizedException("User not found")
    return user


async def get_user_spotify_token(
    request: Request,
    oauth: Annotated[SpotifyOAuth, Depends(get_spotify_oauth)],
) -> Optional[str]:
    """
    The session's Spotify access token, refreshed if it has expired.

    Returns None when the session has no usable token; a failed refresh
    clears the stored tokens.
    """
    session = get_session_context(request)
    if not session.has_spotify_token:
        return None

    if not session.spotify_token_expired():
        return session.data.spotify_access_token

    refresh_token = session.data.spotify_refresh_token
    if not refresh_token:
        session.clear_spotify_tokens()
        return None

    try:
        tokens = await oauth.refresh(refresh_token)
    except SpotifyAuthError as e:
        logger.warning(f"Spotify token refresh failed: {e}")
        session.clear_spotify_tokens()
        return None

    session.set_spotify_tokens(tokens.access_token, tokens.refresh_token, tokens.expires_at)
    logger.info("Refreshed Spotify user token")
    return tokens.access_token


# Type aliases for cleaner dependency injection
DbSession = Annotated[AsyncSession, Depends(get_db)]
Session = Annotated[SessionContext, Depends(get_session_context)]
CurrentUser = Annotated[User, Depends(get_current_user)]
AppSettings = Annotated[Settings, Depends(get_app_settings)]
Spotify = Annotated[SpotifyService, Depends(get_spotify_service)]
OAuth = Annotated[SpotifyOAuth, Depends(get_spotify_oauth)]
Artists = Annotated[ArtistCache, Depends(get_artist_cache)]
UserSpotifyToken = Annotated[Optional[str], Depends(get_user_spotify_token)]
ClientIP = Annotated[str, Depends(get_client_ip)]
