"""Global artist list: refresh on demand and in the background."""

import logging
from datetime import datetime, timedelta, timezone

from app.services.cache_service import ArtistCache
from app.services.spotify_service import SpotifyFetchError, SpotifyService

logger = logging.getLogger(__name__)


async def refresh_artist_cache(spotify: SpotifyService, cache: ArtistCache) -> list[dict]:
    """
    Fetch the global top artists and replace the cached snapshot.

    An empty result is treated as a failed fetch so a good snapshot is
    never overwritten with nothing. A failed disk write is logged by the
    cache and does not fail the refresh.
    """
    logger.info("Refreshing artist cache...")
    token = await spotify.get_access_token()
    artists = await spotify.get_top_artists(token)
    if not artists:
        raise SpotifyFetchError("Spotify returned no artists")

    payload = [artist.model_dump() for artist in artists]
    await cache.save(payload)
    logger.info(f"Cache refreshed with {len(payload)} artists")
    return payload


async def get_global_artists(spotify: SpotifyService, cache: ArtistCache) -> tuple[list[dict], bool]:
    """
    Serve the global list from cache, refreshing it first when stale.

    Returns:
        (artists, served_from_cache)
    """
    if await cache.is_valid():
        artists = await cache.get()
        if artists is not None:
            logger.info("Serving global artists from cache")
            return artists, True

    logger.info("Cache expired, fetching fresh data")
    return await refresh_artist_cache(spotify, cache), False


async def refresh_if_expired(spotify: SpotifyService, cache: ArtistCache) -> bool:
    """
    Scheduler job: refresh only when the snapshot is stale.

    Failures are logged and swallowed so the job keeps running.

    Returns:
        True if a refresh happened
    """
    if await cache.is_valid():
        return False
    try:
        await refresh_artist_cache(spotify, cache)
    except Exception as e:
        logger.error(f"Periodic cache refresh failed: {e}")
        return False
    return True


def setup_scheduler(spotify: SpotifyService, cache: ArtistCache, interval_seconds: int):
    """
    Setup the APScheduler for the periodic cache check.
    Called from main.py on startup; main.py shuts it down.
    """
    from apscheduler.schedulers.asyncio import AsyncIOScheduler
    from apscheduler.triggers.interval import IntervalTrigger

    scheduler = AsyncIOScheduler()

    scheduler.add_job(
        refresh_if_expired,
        trigger=IntervalTrigger(seconds=interval_seconds),
        args=[spotify, cache],
        id="refresh_artist_cache",
        name="Refresh global artist cache when expired",
        replace_existing=True,
        max_instances=1,
    )

    # Also check once right after startup
    scheduler.add_job(
        refresh_if_expired,
        trigger="date",
        run_date=datetime.now(timezone.utc) + timedelta(seconds=1),
        args=[spotify, cache],
        id="refresh_artist_cache_startup",
        name="Initial artist cache check",
        replace_existing=True,
    )

    scheduler.start()
    logger.info(f"Artist cache scheduler started - will check every {interval_seconds}s")

    return scheduler
