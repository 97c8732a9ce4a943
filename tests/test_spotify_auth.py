"""Tests for the Spotify authorization-code login."""

from urllib.parse import parse_qs, urlparse

from starlette.testclient import TestClient

from app.main import create_app

from conftest import spotify_login


def start_login(client) -> str:
    response = client.get("/auth/spotify", follow_redirects=False)
    assert response.status_code == 302
    return parse_qs(urlparse(response.headers["location"]).query)["state"][0]


class TestSpotifyLogin:
    def test_redirects_with_state(self, client):
        response = client.get("/auth/spotify", follow_redirects=False)

        assert response.status_code == 302
        location = urlparse(response.headers["location"])
        assert location.netloc == "accounts.spotify.com"
        assert len(parse_qs(location.query)["state"][0]) == 32
        assert "spotify.sid=" in response.headers["set-cookie"]

    def test_not_configured(self, settings, fake_spotify, fake_oauth):
        fake_oauth.configured = False
        app = create_app(settings=settings, spotify=fake_spotify, spotify_oauth=fake_oauth)
        with TestClient(app) as client:
            response = client.get("/auth/spotify", follow_redirects=False)

        assert response.status_code == 400


class TestSpotifyCallback:
    def test_success(self, client, fake_oauth):
        response = spotify_login(client, code="good-code")

        assert response.status_code == 302
        assert response.headers["location"] == "/?auth=success"
        assert fake_oauth.exchanged_codes == ["good-code"]

        status = client.get("/api/auth/spotify/status").json()
        assert status["authenticated"] is True
        assert status["expiresAt"]

    def test_state_mismatch_stores_nothing(self, client, fake_oauth):
        start_login(client)

        response = client.get(
            "/auth/spotify/callback",
            params={"code": "abc", "state": "forged"},
            follow_redirects=False,
        )

        assert response.headers["location"] == "/?error=invalid_state"
        assert fake_oauth.exchanged_codes == []
        assert client.get("/api/auth/spotify/status").json()["authenticated"] is False

    def test_missing_state(self, client, fake_oauth):
        start_login(client)

        response = client.get("/auth/spotify/callback", params={"code": "abc"}, follow_redirects=False)

        assert response.headers["location"] == "/?error=invalid_state"
        assert fake_oauth.exchanged_codes == []

    def test_state_cannot_be_replayed(self, client, fake_oauth):
        state = start_login(client)
        params = {"code": "abc", "state": state}
        client.get("/auth/spotify/callback", params=params, follow_redirects=False)
        client.post("/api/auth/spotify/logout")

        response = client.get("/auth/spotify/callback", params=params, follow_redirects=False)

        assert response.headers["location"] == "/?error=invalid_state"
        assert fake_oauth.exchanged_codes == ["abc"]

    def test_provider_error(self, client, fake_oauth):
        state = start_login(client)

        response = client.get(
            "/auth/spotify/callback",
            params={"error": "access_denied", "state": state},
            follow_redirects=False,
        )

        assert response.headers["location"] == "/?error=spotify_auth_failed"
        assert fake_oauth.exchanged_codes == []

    def test_missing_code(self, client):
        state = start_login(client)

        response = client.get("/auth/spotify/callback", params={"state": state}, follow_redirects=False)

        assert response.headers["location"] == "/?error=missing_code"

    def test_exchange_failure(self, client, fake_oauth):
        fake_oauth.fail_exchange = True

        response = spotify_login(client)

        assert response.headers["location"] == "/?error=token_exchange_failed"
        assert client.get("/api/auth/spotify/status").json()["authenticated"] is False

    def test_callback_rotates_session(self, client):
        client.get("/auth/spotify", follow_redirects=False)
        before = client.cookies.get("spotify.sid")

        spotify_login(client)

        assert client.cookies.get("spotify.sid") != before


class TestSpotifyLogout:
    def test_logout_forgets_tokens(self, client):
        spotify_login(client)

        response = client.post("/api/auth/spotify/logout")

        assert response.json() == {"success": True}
        assert client.get("/api/auth/spotify/status").json() == {"authenticated": False, "expiresAt": None}
