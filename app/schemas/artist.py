from typing import Literal, Optional

from pydantic import BaseModel, Field


class ArtistImage(BaseModel):
    """One size variant of an artist image."""
    url: str
    height: Optional[int] = None
    width: Optional[int] = None


class Artist(BaseModel):
    """Artist as returned to the frontend and stored in the disk cache."""
    id: str
    name: str
    genres: list[str] = []
    popularity: int = Field(0, ge=0, le=100)
    followers: int = 0
    images: list[ArtistImage] = []  # Largest first
    spotify_url: str = ""


class Track(BaseModel):
    """Top track of an artist."""
    id: str
    name: str
    album: str = ""
    preview_url: Optional[str] = None
    spotify_url: str = ""


class ArtistListResponse(BaseModel):
    success: bool = True
    artists: list[Artist]
    count: int
    source: Literal["personal", "global"]
    cached: bool
    timestamp: str


class ArtistDetailResponse(BaseModel):
    success: bool = True
    artist: Artist
    topTracks: list[Track]
