"""Tests for the artist endpoints and the global artist cache refresh."""

from datetime import timedelta
from pathlib import Path

import pytest

from app.services.artist_cache import (
    get_global_artists,
    refresh_artist_cache,
    refresh_if_expired,
    setup_scheduler,
)
from app.services.cache_service import ArtistCache, MemoryCacheStore
from app.services.spotify_service import SpotifyFetchError

from conftest import FakeSpotifyService, make_artist, spotify_login


class TestGlobalArtists:
    def test_first_call_fetches_then_serves_cache(self, client, fake_spotify):
        first = client.get("/api/artists")

        assert first.status_code == 200
        data = first.json()
        assert data["success"] is True
        assert data["source"] == "global"
        assert data["cached"] is False
        assert data["count"] == 2
        assert [a["id"] for a in data["artists"]] == ["g1", "g2"]
        assert fake_spotify.top_artists_calls == 1

        second = client.get("/api/artists").json()

        assert second["cached"] is True
        assert second["artists"] == data["artists"]
        assert fake_spotify.top_artists_calls == 1

    def test_written_to_disk(self, client, settings):
        client.get("/api/artists")

        assert (Path(settings.cache_dir) / "artists.json").is_file()

    def test_upstream_failure(self, client, fake_spotify):
        fake_spotify.fail_global = True

        response = client.get("/api/artists")

        assert response.status_code == 500
        assert response.json() == {
            "success": False,
            "error": "Failed to fetch artists from Spotify",
            "code": "UPSTREAM_ERROR",
        }


class TestPersonalArtists:
    def test_personal_when_signed_in_with_spotify(self, client, fake_spotify):
        spotify_login(client)

        data = client.get("/api/artists").json()

        assert data["source"] == "personal"
        assert [a["id"] for a in data["artists"]] == ["u1"]
        assert fake_spotify.top_artists_calls == 0

    def test_expired_token_is_refreshed(self, client, fake_spotify, fake_oauth):
        fake_oauth.token_lifetime = timedelta(seconds=-1)
        spotify_login(client)

        data = client.get("/api/artists").json()

        assert data["source"] == "personal"
        assert fake_spotify.user_tokens_seen == ["refreshed-token"]

    def test_failed_refresh_falls_back_to_global(self, client, fake_spotify, fake_oauth):
        fake_oauth.token_lifetime = timedelta(seconds=-1)
        fake_oauth.fail_refresh = True
        spotify_login(client)

        data = client.get("/api/artists").json()

        assert data["source"] == "global"
        assert fake_spotify.user_top_artists_calls == 0
        assert client.get("/api/auth/spotify/status").json()["authenticated"] is False

    def test_failure_drops_token_and_falls_back(self, client, fake_spotify):
        spotify_login(client)
        fake_spotify.fail_user_top_artists = True

        data = client.get("/api/artists").json()

        assert data["source"] == "global"
        assert [a["id"] for a in data["artists"]] == ["g1", "g2"]
        assert client.get("/api/auth/spotify/status").json()["authenticated"] is False


class TestArtistDetails:
    def test_details_with_top_tracks(self, client):
        response = client.get("/api/artists/g1")

        assert response.status_code == 200
        data = response.json()
        assert data["artist"]["id"] == "g1"
        assert len(data["topTracks"]) == 5

    def test_unknown_artist(self, client):
        response = client.get("/api/artists/does-not-exist")

        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"


class TestCacheRefresh:
    async def test_refresh_saves_snapshot(self):
        spotify = FakeSpotifyService()
        cache = ArtistCache(MemoryCacheStore(ttl_seconds=60))

        artists = await refresh_artist_cache(spotify, cache)

        assert [a["id"] for a in artists] == ["g1", "g2"]
        assert await cache.get() == artists

    async def test_empty_result_keeps_previous_snapshot(self):
        spotify = FakeSpotifyService()
        spotify.global_artists = []
        cache = ArtistCache(MemoryCacheStore(ttl_seconds=60))
        await cache.save([make_artist("old").model_dump()])

        with pytest.raises(SpotifyFetchError):
            await refresh_artist_cache(spotify, cache)

        assert [a["id"] for a in await cache.get()] == ["old"]

    async def test_served_from_cache_when_fresh(self):
        spotify = FakeSpotifyService()
        cache = ArtistCache(MemoryCacheStore(ttl_seconds=60))
        await cache.save([make_artist("cached").model_dump()])

        artists, from_cache = await get_global_artists(spotify, cache)

        assert from_cache is True
        assert artists[0]["id"] == "cached"
        assert spotify.top_artists_calls == 0

    async def test_scheduled_check_skips_fresh_cache(self):
        spotify = FakeSpotifyService()
        cache = ArtistCache(MemoryCacheStore(ttl_seconds=60))
        await cache.save([make_artist("cached").model_dump()])

        assert await refresh_if_expired(spotify, cache) is False
        assert spotify.top_artists_calls == 0

    async def test_scheduled_check_refreshes_stale_cache(self):
        spotify = FakeSpotifyService()
        cache = ArtistCache(MemoryCacheStore(ttl_seconds=60))

        assert await refresh_if_expired(spotify, cache) is True
        assert spotify.top_artists_calls == 1

    async def test_scheduled_check_survives_failure(self):
        spotify = FakeSpotifyService()
        spotify.fail_global = True
        cache = ArtistCache(MemoryCacheStore(ttl_seconds=60))

        assert await refresh_if_expired(spotify, cache) is False

    async def test_scheduler_registers_periodic_and_startup_checks(self):
        cache = ArtistCache(MemoryCacheStore(ttl_seconds=60))
        scheduler = setup_scheduler(FakeSpotifyService(), cache, interval_seconds=3600)
        try:
            job_ids = {job.id for job in scheduler.get_jobs()}
            assert job_ids == {"refresh_artist_cache", "refresh_artist_cache_startup"}
        finally:
            scheduler.shutdown(wait=False)
