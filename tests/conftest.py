from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlparse

import pytest
from starlette.testclient import TestClient

from app.config import Settings
from app.main import create_app
from app.schemas.artist import Artist, Track
from app.services.oauth_service import OAuthTokens
from app.services.spotify_service import SpotifyAuthError


def make_artist(artist_id: str, popularity: int = 80, name: str | None = None) -> Artist:
    return Artist(
        id=artist_id,
        name=name or f"Artist {artist_id}",
        genres=["pop"],
        popularity=popularity,
        followers=1000,
        images=[],
        spotify_url=f"https://open.spotify.com/artist/{artist_id}",
    )


class FakeSpotifyService:
    """Stands in for SpotifyService inside the app; records calls."""

    def __init__(self):
        self.global_artists = [make_artist("g1", 90), make_artist("g2", 70)]
        self.user_artists = [make_artist("u1", 50)]
        self.top_artists_calls = 0
        self.user_top_artists_calls = 0
        self.user_tokens_seen: list[str] = []
        self.fail_user_top_artists = False
        self.fail_global = False
        self.known_artists = {"g1": make_artist("g1", 90)}

    async def get_access_token(self) -> str:
        return "app-token"

    async def get_top_artists(self, token: str) -> list[Artist]:
        self.top_artists_calls += 1
        if self.fail_global:
            raise SpotifyAuthError("bad credentials", status_code=401)
        return list(self.global_artists)

    async def get_user_top_artists(self, user_token: str, limit: int = 50, time_range: str = "medium_term"):
        self.user_top_artists_calls += 1
        self.user_tokens_seen.append(user_token)
        if self.fail_user_top_artists:
            raise SpotifyAuthError("token revoked", status_code=401)
        return list(self.user_artists)

    async def get_artist(self, token: str, artist_id: str):
        return self.known_artists.get(artist_id)

    async def get_artist_top_tracks(self, token: str, artist_id: str, market: str = "US", limit: int = 5):
        return [Track(id=f"{artist_id}-t{i}", name=f"Track {i}") for i in range(limit)]


class FakeSpotifyOAuth:
    """Authorization-code flow without the network."""

    configured = True

    def __init__(self):
        self.exchanged_codes: list[str] = []
        self.fail_exchange = False
        self.fail_refresh = False
        self.token_lifetime = timedelta(hours=1)

    async def authorization_url(self, state: str) -> str:
        return f"https://accounts.spotify.com/authorize?client_id=test&state={state}"

    async def exchange_code(self, code: str) -> OAuthTokens:
        self.exchanged_codes.append(code)
        if self.fail_exchange:
            raise SpotifyAuthError("invalid_grant")
        return OAuthTokens(
            access_token=f"user-token-{code}",
            refresh_token="refresh-token",
            expires_at=datetime.now(timezone.utc) + self.token_lifetime,
        )

    async def refresh(self, refresh_token: str) -> OAuthTokens:
        if self.fail_refresh:
            raise SpotifyAuthError("invalid_grant")
        return OAuthTokens(
            access_token="refreshed-token",
            refresh_token=None,
            expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
        )


@pytest.fixture
def static_dir(tmp_path):
    public = tmp_path / "public"
    public.mkdir()
    (public / "index.html").write_text("<html><body>SPA shell</body></html>", encoding="utf-8")
    (public / "app.js").write_text("console.log('app');", encoding="utf-8")
    return public


@pytest.fixture
def settings(tmp_path, static_dir):
    return Settings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        cache_dir=str(tmp_path / "cache"),
        static_dir=str(static_dir),
        spotify_client_id="client-id",
        spotify_client_secret="client-secret",
        background_refresh=False,
    )


@pytest.fixture
def fake_spotify():
    return FakeSpotifyService()


@pytest.fixture
def fake_oauth():
    return FakeSpotifyOAuth()


@pytest.fixture
def client(settings, fake_spotify, fake_oauth):
    app = create_app(settings=settings, spotify=fake_spotify, spotify_oauth=fake_oauth)
    with TestClient(app) as test_client:
        yield test_client


def register(client, username: str = "alice", password: str = "password123", **kwargs):
    return client.post(
        "/api/auth/register",
        json={"username": username, "password": password},
        **kwargs,
    )


def spotify_login(client, code: str = "abc"):
    """Run the OAuth round trip and return the callback response."""
    response = client.get("/auth/spotify", follow_redirects=False)
    state = parse_qs(urlparse(response.headers["location"]).query)["state"][0]
    return client.get(
        "/auth/spotify/callback",
        params={"code": code, "state": state},
        follow_redirects=False,
    )
