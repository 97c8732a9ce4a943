"""Artist router: global/personal top artists and artist details."""

import asyncio
import logging
from datetime import datetime, timezone

from fastapi import APIRouter

from app.core.exceptions import NotFoundException, UpstreamException
from app.dependencies import AppSettings, Artists, Session, Spotify, UserSpotifyToken
from app.schemas.artist import Artist, ArtistDetailResponse, ArtistListResponse
from app.services.artist_cache import get_global_artists
from app.services.spotify_service import SpotifyError

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get(
    "",
    response_model=ArtistListResponse,
    summary="Get top artists",
)
async def get_artists(
    session: Session,
    spotify: Spotify,
    cache: Artists,
    user_token: UserSpotifyToken,
):
    """
    Top artists: the user's own when signed in with Spotify, else the global chart.

    A failing personal fetch drops the stored Spotify token and falls back
    to the global list. The global list comes from the disk cache while it
    is fresh and is refreshed synchronously otherwise.
    """
    artists = None
    source = "global"
    cached = False

    if user_token:
        try:
            personal = await spotify.get_user_top_artists(user_token)
            artists = [artist.model_dump() for artist in personal]
            source = "personal"
            logger.info("Serving personal top artists for authenticated user")
        except SpotifyError as e:
            logger.error(f"Error fetching user artists, falling back to global: {e}")
            session.clear_spotify_tokens()

    if artists is None:
        try:
            artists, cached = await get_global_artists(spotify, cache)
        except SpotifyError as e:
            logger.error(f"Error fetching artists: {e}")
            raise UpstreamException("Failed to fetch artists from Spotify")

    return ArtistListResponse(
        artists=[Artist.model_validate(artist) for artist in artists],
        count=len(artists),
        source=source,
        cached=cached,
        timestamp=datetime.now(timezone.utc).isoformat(),
    )


@router.get(
    "/{artist_id}",
    response_model=ArtistDetailResponse,
    summary="Get artist details",
)
async def get_artist_details(
    artist_id: str,
    spotify: Spotify,
    settings: AppSettings,
    user_token: UserSpotifyToken,
):
    """
    Artist profile plus top 5 tracks, always fetched fresh.

    Uses the session's Spotify token when there is one, otherwise the
    app-level client-credentials token.
    """
    try:
        token = user_token or await spotify.get_access_token()
        artist, top_tracks = await asyncio.gather(
            spotify.get_artist(token, artist_id),
            spotify.get_artist_top_tracks(token, artist_id, market=settings.spotify_market),
        )
    except SpotifyError as e:
        if e.status_code in (400, 404):
            raise NotFoundException("Artist not found")
        logger.error(f"Error fetching artist details for {artist_id}: {e}")
        raise UpstreamException("Failed to fetch artist details")

    if artist is None:
        raise NotFoundException("Artist not found")

    return ArtistDetailResponse(artist=artist, topTracks=top_tracks)
