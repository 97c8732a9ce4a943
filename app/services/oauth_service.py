"""Spotify authorization-code flow for personal top artists."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import httpx
from authlib.common.errors import AuthlibBaseError
from authlib.integrations.httpx_client import AsyncOAuth2Client

from app.config import Settings
from app.services.spotify_service import SpotifyAuthError

logger = logging.getLogger(__name__)


@dataclass
class OAuthTokens:
    access_token: str
    refresh_token: Optional[str]
    expires_at: datetime


class SpotifyOAuth:
    """Builds the authorize redirect and exchanges codes/refresh tokens."""

    AUTHORIZE_URL = "https://accounts.spotify.com/authorize"
    TOKEN_URL = "https://accounts.spotify.com/api/token"

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = settings
        self._transport = transport

    @property
    def configured(self) -> bool:
        return self.settings.spotify_configured

    def _client(self) -> AsyncOAuth2Client:
        kwargs = {"timeout": 15.0}
        if self._transport is not None:
            kwargs["transport"] = self._transport
        return AsyncOAuth2Client(
            client_id=self.settings.spotify_client_id,
            client_secret=self.settings.spotify_client_secret,
            scope=self.settings.spotify_scopes,
            redirect_uri=self.settings.spotify_redirect_uri,
            **kwargs,
        )

    async def authorization_url(self, state: str) -> str:
        async with self._client() as client:
            url, _ = client.create_authorization_url(self.AUTHORIZE_URL, state=state)
        return url

    async def exchange_code(self, code: str) -> OAuthTokens:
        """Exchange an authorization code for an access/refresh token pair."""
        async with self._client() as client:
            try:
                token = await client.fetch_token(self.TOKEN_URL, code=code)
            except (AuthlibBaseError, httpx.HTTPError, ValueError) as e:
                raise SpotifyAuthError(f"Failed to exchange code for token: {e}") from e
        logger.info("Exchanged authorization code for Spotify tokens")
        return self._to_tokens(token)

    async def refresh(self, refresh_token: str) -> OAuthTokens:
        """Get a new access token; Spotify may or may not rotate the refresh token."""
        async with self._client() as client:
            try:
                token = await client.refresh_token(self.TOKEN_URL, refresh_token=refresh_token)
            except (AuthlibBaseError, httpx.HTTPError, ValueError) as e:
                raise SpotifyAuthError(f"Failed to refresh token: {e}") from e
        return self._to_tokens(token)

    @staticmethod
    def _to_tokens(token: dict) -> OAuthTokens:
        access_token = token.get("access_token")
        if not access_token:
            raise SpotifyAuthError("Token response had no access_token")
        expires_in = int(token.get("expires_in") or 3600)
        return OAuthTokens(
            access_token=access_token,
            refresh_token=token.get("refresh_token"),
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=expires_in),
        )
