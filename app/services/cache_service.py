"""
Disk cache for the global artist list and the app-level access token.

Each snapshot lives in its own JSON file and is replaced wholesale on every
write. Reading never raises: a missing or corrupt file is a cache miss.
"""
import json
import logging
import secrets
import time
from typing import Any, Callable, Optional, Protocol

import anyio

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class CacheStore(Protocol):
    """Persistence strategy behind the artist and token caches."""

    async def read(self) -> tuple[Any, Optional[float]]: ...

    async def write(self, value: Any) -> bool: ...

    async def is_valid(self) -> bool: ...

    async def age_seconds(self) -> Optional[int]: ...

    async def file_size_bytes(self) -> int: ...


class DiskCacheStore:
    """JSON file holding {<key>: value, "timestamp": epoch seconds}."""

    def __init__(
        self,
        path: str | anyio.Path,
        ttl_seconds: float,
        key: str = "value",
        clock: Clock = time.time,
    ):
        self.path = anyio.Path(path)
        self.ttl_seconds = ttl_seconds
        self.key = key
        self._clock = clock

    async def read(self) -> tuple[Any, Optional[float]]:
        """
        Read the snapshot.

        Returns:
            (value, timestamp), or (None, None) when there is nothing usable
        """
        try:
            if not await self.path.exists():
                return None, None
            raw = await self.path.read_text(encoding="utf-8")
            data = json.loads(raw)
        except (OSError, ValueError) as e:
            logger.error(f"Error reading cache file {self.path}: {e}")
            return None, None

        if not isinstance(data, dict):
            logger.error(f"Ignoring malformed cache file {self.path}")
            return None, None

        value = data.get(self.key)
        timestamp = data.get("timestamp")
        if value is None or not isinstance(timestamp, (int, float)):
            return None, None
        return value, float(timestamp)

    async def write(self, value: Any) -> bool:
        """
        Persist value with the current time, replacing the previous snapshot.

        Returns:
            True if successful, False otherwise
        """
        payload = {self.key: value, "timestamp": self._clock()}
        # One temp file per write so overlapping refreshes never share an inode
        tmp_path = self.path.with_name(f"{self.path.name}.{secrets.token_hex(8)}.tmp")
        try:
            data = json.dumps(payload, indent=2)
            await self.path.parent.mkdir(parents=True, exist_ok=True)
            await tmp_path.write_text(data, encoding="utf-8")
            await tmp_path.replace(self.path)
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"Error writing cache file {self.path}: {e}")
            try:
                await tmp_path.unlink(missing_ok=True)
            except OSError as cleanup_error:
                logger.warning(f"Could not remove temp file {tmp_path}: {cleanup_error}")
            return False
        return True

    async def is_valid(self) -> bool:
        """True while now - timestamp < TTL; exactly TTL old is stale."""
        value, timestamp = await self.read()
        if value is None or timestamp is None:
            return False
        return self._clock() - timestamp < self.ttl_seconds

    async def age_seconds(self) -> Optional[int]:
        _, timestamp = await self.read()
        if timestamp is None:
            return None
        return int(self._clock() - timestamp)

    async def file_size_bytes(self) -> int:
        try:
            stat = await self.path.stat()
        except OSError:
            return 0
        return stat.st_size


class MemoryCacheStore:
    """In-process variant of DiskCacheStore, lost on restart."""

    def __init__(self, ttl_seconds: float, clock: Clock = time.time):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._value: Any = None
        self._timestamp: Optional[float] = None

    async def read(self) -> tuple[Any, Optional[float]]:
        if self._value is None:
            return None, None
        return self._value, self._timestamp

    async def write(self, value: Any) -> bool:
        self._value = value
        self._timestamp = self._clock()
        return True

    async def is_valid(self) -> bool:
        if self._value is None or self._timestamp is None:
            return False
        return self._clock() - self._timestamp < self.ttl_seconds

    async def age_seconds(self) -> Optional[int]:
        if self._timestamp is None:
            return None
        return int(self._clock() - self._timestamp)

    async def file_size_bytes(self) -> int:
        return 0


class ArtistCache:
    """Snapshot of the global top-artist list."""

    def __init__(self, store: CacheStore):
        self.store = store

    async def get(self) -> Optional[list[dict]]:
        artists, _ = await self.store.read()
        if not isinstance(artists, list):
            return None
        return artists

    async def save(self, artists: list[dict]) -> bool:
        ok = await self.store.write(artists)
        if ok:
            logger.info(f"Wrote {len(artists)} artists to cache")
        return ok

    async def is_valid(self) -> bool:
        return await self.store.is_valid()


class TokenCache:
    """
    Snapshot of the client-credentials access token.

    Validity is decided by the recorded expiry, not by the store TTL.
    """

    def __init__(self, store: CacheStore, margin_seconds: float = 0, clock: Clock = time.time):
        self.store = store
        self.margin_seconds = margin_seconds
        self._clock = clock

    async def get_valid_token(self) -> Optional[str]:
        value, _ = await self.store.read()
        if not isinstance(value, dict):
            return None
        token = value.get("token")
        expiry = value.get("expiry")
        if not token or not isinstance(expiry, (int, float)):
            return None
        if self._clock() >= expiry:
            logger.info("Cached access token has expired")
            return None
        return token

    async def save(self, token: str, expires_in: float = 3600) -> bool:
        lifetime = max(expires_in - self.margin_seconds, 0)
        return await self.store.write({"token": token, "expiry": self._clock() + lifetime})


def create_disk_caches(
    cache_dir: str,
    artist_ttl_seconds: float,
    token_margin_seconds: float = 0,
    clock: Clock = time.time,
) -> tuple[ArtistCache, TokenCache]:
    """Build the artist and token caches under cache_dir."""
    base = anyio.Path(cache_dir)
    artist_store = DiskCacheStore(base / "artists.json", artist_ttl_seconds, key="artists", clock=clock)
    # The token snapshot is judged by its own expiry; the store TTL is unused.
    token_store = DiskCacheStore(base / "token.json", float("inf"), key="access_token", clock=clock)
    return (
        ArtistCache(artist_store),
        TokenCache(token_store, margin_seconds=token_margin_seconds, clock=clock),
    )
