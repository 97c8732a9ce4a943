"""
Application factory.

Run with: uvicorn app.main:create_app --factory
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import Settings, get_settings
from app.core.exceptions import register_exception_handlers
from app.core.middleware import RateLimitMiddleware, SecurityHeadersMiddleware
from app.core.session import SessionMiddleware, SessionStore
from app.database import create_engine, create_session_factory, init_models
from app.routers import artist, auth, comments, health, spa, spotify_auth
from app.services.artist_cache import setup_scheduler
from app.services.cache_service import create_disk_caches
from app.services.http_client import HTTPClientManager
from app.services.oauth_service import SpotifyOAuth
from app.services.spotify_service import SpotifyService

logger = logging.getLogger(__name__)


def configure_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup/shutdown events.
    """
    settings: Settings = app.state.settings

    # Startup
    logger.info(f"Starting {settings.app_name}...")
    await init_models(app.state.engine)
    app.state.session_store.start_cleanup()

    scheduler = None
    if settings.background_refresh:
        scheduler = setup_scheduler(
            app.state.spotify,
            app.state.artist_cache,
            settings.cache_check_interval_seconds,
        )

    if not settings.spotify_configured:
        logger.warning("Spotify credentials are not set; artist endpoints will fail")

    yield

    # Shutdown
    logger.info(f"Shutting down {settings.app_name}...")
    if scheduler is not None:
        scheduler.shutdown(wait=False)
    await app.state.session_store.stop_cleanup()
    await HTTPClientManager.close()
    await app.state.engine.dispose()


def create_app(
    settings: Optional[Settings] = None,
    spotify: Optional[SpotifyService] = None,
    spotify_oauth: Optional[SpotifyOAuth] = None,
) -> FastAPI:
    """Build the application. Tests pass their own settings and Spotify fakes."""
    settings = settings or get_settings()
    configure_logging(settings.debug)

    app = FastAPI(
        title=settings.app_name,
        description="Spotify top artists with local accounts and comments",
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    HTTPClientManager.configure(
        timeout_seconds=settings.http_timeout_seconds,
        max_connections=settings.http_max_connections,
    )
    engine = create_engine(settings.database_url, echo=settings.debug)
    artist_cache, token_cache = create_disk_caches(
        settings.cache_dir,
        settings.artist_cache_ttl_seconds,
        settings.token_expiry_margin_seconds,
    )

    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = create_session_factory(engine)
    app.state.artist_cache = artist_cache
    app.state.spotify = spotify or SpotifyService(settings, token_cache)
    app.state.spotify_oauth = spotify_oauth or SpotifyOAuth(settings)
    app.state.session_store = SessionStore(settings.session_ttl_seconds)

    app.add_middleware(
        SessionMiddleware,
        store=app.state.session_store,
        cookie_name=settings.session_cookie_name,
        max_age=settings.session_ttl_seconds,
        secure=settings.session_cookie_secure,
        samesite=settings.session_cookie_samesite,
    )

    if settings.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    if settings.rate_limit_enabled:
        app.add_middleware(
            RateLimitMiddleware,
            max_requests=settings.rate_limit_max_requests,
            window_seconds=settings.rate_limit_window_seconds,
            trust_proxy=settings.trust_proxy,
        )

    # Added last so it wraps everything, 429 responses included
    if settings.security_headers:
        app.add_middleware(SecurityHeadersMiddleware)

    register_exception_handlers(app, debug=settings.debug)

    # Include routers
    app.include_router(
        health.router,
        prefix="/api",
        tags=["Health"]
    )
    app.include_router(
        artist.router,
        prefix="/api/artists",
        tags=["Artists"]
    )
    app.include_router(
        auth.router,
        prefix="/api/auth",
        tags=["Authentication"]
    )
    app.include_router(
        spotify_auth.api_router,
        prefix="/api/auth/spotify",
        tags=["Spotify"]
    )
    app.include_router(
        spotify_auth.router,
        prefix="/auth",
        tags=["Spotify"]
    )
    app.include_router(
        comments.router,
        prefix="/api/comments",
        tags=["Comments"]
    )

    # Must stay last: catches everything the routers above do not
    app.include_router(spa.router)

    return app

