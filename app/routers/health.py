from datetime import datetime, timezone

from fastapi import APIRouter

from app.dependencies import Artists, Session

router = APIRouter()


@router.get("/health")
async def health_check(session: Session, cache: Artists):
    """Health check endpoint with artist cache details."""
    artists = await cache.get()
    is_valid = await cache.is_valid()
    age = await cache.store.age_seconds()
    size_bytes = await cache.store.file_size_bytes()

    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "authenticated": session.has_spotify_token,
        "cache": {
            "status": "valid" if is_valid else "expired",
            "ageSeconds": age,
            "artistCount": len(artists) if artists else 0,
            "fileSizeKB": round(size_bytes / 1024),
        },
    }
