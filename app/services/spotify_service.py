import asyncio
import base64
import contextlib
import logging
import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

import httpx

from app.config import Settings
from app.schemas.artist import Artist, ArtistImage, Track
from app.services.cache_service import TokenCache
from app.services.http_client import get_http_client

logger = logging.getLogger(__name__)


class SpotifyError(Exception):
    """Base error for failed Spotify calls."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class SpotifyAuthError(SpotifyError):
    """Credentials or token missing, invalid or expired."""


class SpotifyFetchError(SpotifyError):
    """Network error or non-success response; usually transient."""


class RateLimiter:
    """
    Caps in-flight Spotify calls and spaces out their start times.

    With max_concurrency=1 calls run strictly one after another, at least
    min_interval seconds apart.
    """

    def __init__(
        self,
        max_concurrency: int = 1,
        min_interval: float = 0.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._semaphore = asyncio.Semaphore(max(1, max_concurrency))
        self._lock = asyncio.Lock()
        self._min_interval = min_interval
        self._sleep = sleep
        self._clock = clock
        self._last_start: Optional[float] = None

    @contextlib.asynccontextmanager
    async def slot(self):
        async with self._semaphore:
            async with self._lock:
                if self._last_start is not None and self._min_interval > 0:
                    wait = self._min_interval - (self._clock() - self._last_start)
                    if wait > 0:
                        await self._sleep(wait)
                self._last_start = self._clock()
            yield


def _to_artist(item: dict) -> Artist:
    images = sorted(
        item.get("images") or [],
        key=lambda image: image.get("width") or 0,
        reverse=True,
    )
    return Artist(
        id=item["id"],
        name=item.get("name", ""),
        genres=item.get("genres") or [],
        popularity=item.get("popularity") or 0,
        followers=(item.get("followers") or {}).get("total") or 0,
        images=[
            ArtistImage(url=image["url"], height=image.get("height"), width=image.get("width"))
            for image in images
            if image.get("url")
        ],
        spotify_url=(item.get("external_urls") or {}).get("spotify", ""),
    )


def _to_track(item: dict) -> Track:
    return Track(
        id=item["id"],
        name=item.get("name", ""),
        album=(item.get("album") or {}).get("name", ""),
        preview_url=item.get("preview_url"),
        spotify_url=(item.get("external_urls") or {}).get("spotify", ""),
    )


class SpotifyService:
    """Service for interacting with Spotify API."""

    TOKEN_URL = "https://accounts.spotify.com/api/token"
    API_BASE_URL = "https://api.spotify.com/v1"

    def __init__(
        self,
        settings: Settings,
        token_cache: TokenCache,
        client: Optional[httpx.AsyncClient] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.settings = settings
        self.token_cache = token_cache
        self._client = client
        self._sleep = sleep

    @property
    def client(self) -> httpx.AsyncClient:
        return self._client if self._client is not None else get_http_client()

    async def get_access_token(self) -> str:
        """Get an app-level token, from the token cache or via Client Credentials flow."""
        cached = await self.token_cache.get_valid_token()
        if cached:
            return cached

        if not self.settings.spotify_configured:
            raise SpotifyAuthError("Spotify credentials not configured")

        credentials = f"{self.settings.spotify_client_id}:{self.settings.spotify_client_secret}"
        encoded_credentials = base64.b64encode(credentials.encode()).decode()

        try:
            response = await self.client.post(
                self.TOKEN_URL,
                headers={
                    "Authorization": f"Basic {encoded_credentials}",
                    "Content-Type": "application/x-www-form-urlencoded",
                },
                data={"grant_type": "client_credentials"},
            )
        except httpx.HTTPError as e:
            raise SpotifyFetchError(f"Token request failed: {e}") from e

        if response.status_code in (400, 401):
            raise SpotifyAuthError(
                f"Spotify rejected client credentials ({response.status_code})",
                status_code=response.status_code,
            )
        if not response.is_success:
            raise SpotifyFetchError(
                f"Failed to get token: {response.status_code}",
                status_code=response.status_code,
            )

        data = response.json()
        token = data["access_token"]
        await self.token_cache.save(token, data.get("expires_in", 3600))
        logger.info("Got new access token from Spotify")
        return token

    async def _get(self, token: str, path: str, params: Optional[dict] = None) -> dict:
        try:
            response = await self.client.get(
                f"{self.API_BASE_URL}{path}",
                headers={"Authorization": f"Bearer {token}"},
                params=params,
            )
        except httpx.HTTPError as e:
            raise SpotifyFetchError(f"Request to {path} failed: {e}") from e

        if response.status_code == 401:
            raise SpotifyAuthError(f"Unauthorized request to {path}", status_code=401)
        if not response.is_success:
            raise SpotifyFetchError(
                f"Failed to fetch {path}: {response.status_code}",
                status_code=response.status_code,
            )
        return response.json()

    async def get_top_artists(self, token: str) -> list[Artist]:
        """
        Build the global top-artist list.

        Discovery searches every configured genre for popular artists,
        falling back to a search for this year's artists when too few turn
        up. Details are then fetched in batches of at most 50 ids. A failed
        batch is skipped, so the result may be shorter than the limit.

        Returns:
            Artists sorted by descending popularity, capped at top_artists_limit
        """
        limiter = RateLimiter(
            max_concurrency=self.settings.spotify_max_concurrency,
            min_interval=self.settings.spotify_request_delay_seconds,
            sleep=self._sleep,
        )

        artist_ids = await self._discover_artist_ids(token, limiter)
        logger.info(f"Discovered {len(artist_ids)} candidate artists")

        artists = await self._get_several_artists(token, artist_ids, limiter)
        artists.sort(key=lambda artist: artist.popularity, reverse=True)
        return artists[: self.settings.top_artists_limit]

    async def _search_artists(self, token: str, query: str, limiter: RateLimiter) -> list[dict]:
        async with limiter.slot():
            data = await self._get(
                token,
                "/search",
                params={"q": query, "type": "artist", "limit": 50},
            )
        return [item for item in data.get("artists", {}).get("items", []) if item]

    async def _discover_artist_ids(self, token: str, limiter: RateLimiter) -> list[str]:
        genres = self.settings.discovery_genres
        results = await asyncio.gather(
            *(self._search_artists(token, f'genre:"{genre}"', limiter) for genre in genres),
            return_exceptions=True,
        )

        # dict keeps first-seen order
        candidates: dict[str, None] = {}
        for genre, result in zip(genres, results):
            if isinstance(result, SpotifyFetchError):
                logger.warning(f"Search for genre {genre!r} failed: {result}")
                continue
            if isinstance(result, BaseException):
                raise result
            for item in result:
                if item.get("id") and (item.get("popularity") or 0) >= self.settings.discovery_min_popularity:
                    candidates.setdefault(item["id"], None)

        if len(candidates) < self.settings.discovery_min_candidates:
            year = datetime.now(timezone.utc).year
            logger.info(f"Only {len(candidates)} candidates, searching artists from {year}")
            try:
                for item in await self._search_artists(token, f"year:{year}", limiter):
                    if item.get("id"):
                        candidates.setdefault(item["id"], None)
            except SpotifyFetchError as e:
                logger.warning(f"Fallback search failed: {e}")

        return list(candidates)

    async def _get_several_artists(
        self,
        token: str,
        artist_ids: list[str],
        limiter: RateLimiter,
    ) -> list[Artist]:
        batch_size = self.settings.effective_batch_size
        batches = [artist_ids[i:i + batch_size] for i in range(0, len(artist_ids), batch_size)]

        artists: list[Artist] = []
        for batch in batches:
            try:
                async with limiter.slot():
                    data = await self._get(token, "/artists", params={"ids": ",".join(batch)})
            except SpotifyFetchError as e:
                logger.error(f"Error fetching artist batch: {e}")
                continue
            artists.extend(_to_artist(item) for item in data.get("artists", []) if item)
        return artists

    async def get_user_top_artists(
        self,
        user_token: str,
        limit: int = 50,
        time_range: str = "medium_term",
    ) -> list[Artist]:
        """Top artists of the user who owns user_token (needs user-top-read)."""
        data = await self._get(
            user_token,
            "/me/top/artists",
            params={"limit": min(limit, 50), "time_range": time_range},
        )
        return [_to_artist(item) for item in data.get("items", []) if item]

    async def get_artist(self, token: str, artist_id: str) -> Optional[Artist]:
        """
        Get artist details by Spotify ID.

        Returns:
            Artist details or None if not found
        """
        try:
            data = await self._get(token, f"/artists/{artist_id}")
        except SpotifyFetchError as e:
            if e.status_code in (400, 404):
                return None
            raise
        return _to_artist(data)

    async def get_artist_top_tracks(
        self,
        token: str,
        artist_id: str,
        market: str = "US",
        limit: int = 5,
    ) -> list[Track]:
        data = await self._get(
            token,
            f"/artists/{artist_id}/top-tracks",
            params={"market": market},
        )
        return [_to_track(item) for item in data.get("tracks", [])[:limit] if item]
