"""Tests for local username/password accounts."""

import pytest
from starlette.testclient import TestClient

from app.main import create_app

from conftest import register, spotify_login


class TestRegister:
    def test_register_signs_in(self, client):
        response = register(client, username="Alice")

        assert response.status_code == 201
        data = response.json()
        assert data["success"] is True
        assert data["user"]["username"] == "alice"

        status = client.get("/api/auth/status").json()
        assert status["authenticated"] is True
        assert status["user"]["username"] == "alice"

    @pytest.mark.parametrize(
        "username, password",
        [
            ("ab", "password123"),
            ("a" * 51, "password123"),
            ("bad name!", "password123"),
            ("alice", "short"),
            ("alice", "p" * 129),
        ],
    )
    def test_rejects_invalid_credentials(self, client, username, password):
        response = register(client, username=username, password=password)

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_missing_field_is_400(self, client):
        response = client.post("/api/auth/register", json={"username": "alice"})

        assert response.status_code == 400
        assert response.json()["success"] is False

    def test_duplicate_username(self, client):
        register(client, username="alice")

        response = register(client, username="ALICE")

        assert response.status_code == 409
        assert response.json()["code"] == "USERNAME_TAKEN"

    def test_three_accounts_per_address(self, client):
        for name in ("user_one", "user_two", "user_three"):
            assert register(client, username=name).status_code == 201

        response = register(client, username="user_four")

        assert response.status_code == 403
        assert response.json()["code"] == "IP_LIMIT_REACHED"

    def test_address_cap_is_per_address(self, settings, fake_spotify, fake_oauth):
        settings.trust_proxy = True
        app = create_app(settings=settings, spotify=fake_spotify, spotify_oauth=fake_oauth)
        with TestClient(app) as client:
            for name in ("user_one", "user_two", "user_three"):
                response = register(client, username=name, headers={"X-Forwarded-For": "10.0.0.1"})
                assert response.status_code == 201

            blocked = register(client, username="user_four", headers={"X-Forwarded-For": "10.0.0.1"})
            allowed = register(client, username="user_five", headers={"X-Forwarded-For": "10.0.0.2"})

        assert blocked.status_code == 403
        assert allowed.status_code == 201


class TestLogin:
    def test_login_after_register(self, client):
        register(client)
        client.post("/api/auth/logout")

        response = client.post("/api/auth/login", json={"username": "alice", "password": "password123"})

        assert response.status_code == 200
        assert response.json()["user"]["username"] == "alice"

    def test_unknown_user_and_wrong_password_look_the_same(self, client):
        register(client)
        client.post("/api/auth/logout")

        unknown = client.post("/api/auth/login", json={"username": "nobody", "password": "password123"})
        wrong = client.post("/api/auth/login", json={"username": "alice", "password": "wrong-password"})

        assert unknown.status_code == wrong.status_code == 401
        assert unknown.json() == wrong.json() == {
            "success": False,
            "error": "Invalid username or password",
            "code": "INVALID_CREDENTIALS",
        }

    def test_login_rotates_session_id(self, client):
        register(client)
        client.post("/api/auth/logout")
        spotify_login(client)
        before = client.cookies.get("spotify.sid")

        client.post("/api/auth/login", json={"username": "alice", "password": "password123"})

        assert client.cookies.get("spotify.sid") != before


class TestLogout:
    def test_logout_clears_user(self, client):
        register(client)

        response = client.post("/api/auth/logout")

        assert response.status_code == 200
        assert client.get("/api/auth/status").json() == {"authenticated": False, "user": None}

    def test_logout_keeps_spotify_login(self, client):
        spotify_login(client)
        register(client)

        client.post("/api/auth/logout")

        assert client.get("/api/auth/status").json()["authenticated"] is False
        assert client.get("/api/auth/spotify/status").json()["authenticated"] is True

    def test_logout_without_session(self, client):
        response = client.post("/api/auth/logout")

        assert response.status_code == 200
        assert response.json() == {"success": True}
