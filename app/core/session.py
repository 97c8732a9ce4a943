"""
Server-side sessions keyed by an opaque cookie id.

One session carries both identity tracks: the local account
(user_id/username) and the Spotify OAuth tokens. Handlers never touch the
store directly; the middleware attaches a request-scoped SessionContext to
request.state.session.
"""
import asyncio
import contextlib
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.types import ASGIApp

from app.core.exceptions import SessionExpiredException, UnauthorizedException, error_body
from app.core.security import generate_session_id, hash_user_agent

logger = logging.getLogger(__name__)

CLEANUP_INTERVAL_SECONDS = 300


@dataclass
class SessionData:
    """Transient auth state for one browser."""

    session_id: str
    created_at: float
    expires_at: float

    # Local account
    user_id: Optional[int] = None
    username: Optional[str] = None

    # Spotify OAuth
    spotify_access_token: Optional[str] = None
    spotify_refresh_token: Optional[str] = None
    spotify_token_expires_at: Optional[datetime] = None
    oauth_state: Optional[str] = None

    # Client binding captured at authentication time
    user_agent_hash: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return (
            self.user_id is None
            and self.spotify_access_token is None
            and self.oauth_state is None
        )


class SessionStore:
    """
    In-memory session store with sliding expiry.

    Sessions are ephemeral; a server restart logs everybody out.
    """

    def __init__(self, ttl_seconds: int, clock: Callable[[], float] = time.time):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._sessions: dict[str, SessionData] = {}
        self._cleanup_task: Optional[asyncio.Task] = None

    def __len__(self) -> int:
        return len(self._sessions)

    def create(self) -> SessionData:
        now = self._clock()
        session = SessionData(
            session_id=generate_session_id(),
            created_at=now,
            expires_at=now + self.ttl_seconds,
        )
        self._sessions[session.session_id] = session
        return session

    def get(self, session_id: Optional[str]) -> Optional[SessionData]:
        """Return a live session and extend its expiry, or None."""
        if not session_id:
            return None
        session = self._sessions.get(session_id)
        if session is None:
            return None
        now = self._clock()
        if now >= session.expires_at:
            del self._sessions[session_id]
            return None
        session.expires_at = now + self.ttl_seconds
        return session

    def destroy(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)

    def rotate(self, session: SessionData) -> SessionData:
        """Move a session to a fresh id (on login, against session fixation)."""
        self._sessions.pop(session.session_id, None)
        session.session_id = generate_session_id()
        self._sessions[session.session_id] = session
        return session

    def cleanup_expired(self) -> int:
        now = self._clock()
        expired = [sid for sid, s in self._sessions.items() if now >= s.expires_at]
        for sid in expired:
            del self._sessions[sid]
        if expired:
            logger.info("Cleaned up %d expired sessions", len(expired))
        return len(expired)

    def start_cleanup(self) -> None:
        if self._cleanup_task is not None and not self._cleanup_task.done():
            return
        self._cleanup_task = asyncio.create_task(self._cleanup_loop())

    async def stop_cleanup(self) -> None:
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._cleanup_task
            self._cleanup_task = None

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(CLEANUP_INTERVAL_SECONDS)
            self.cleanup_expired()


class SessionContext:
    """Request-scoped view of the caller's session."""

    def __init__(
        self,
        store: SessionStore,
        data: Optional[SessionData],
        user_agent_hash: str,
        invalidated: bool = False,
    ):
        self._store = store
        self.data = data
        self.user_agent_hash = user_agent_hash
        self.invalidated = invalidated
        self.destroyed = False

    # ----- lifecycle -----

    def ensure(self) -> SessionData:
        """Return the session, creating it on first write."""
        if self.data is None:
            self.data = self._store.create()
            self.destroyed = False
        return self.data

    def rotate(self) -> None:
        if self.data is not None:
            self._store.rotate(self.data)

    def destroy(self) -> None:
        if self.data is not None:
            self._store.destroy(self.data.session_id)
        self.data = None
        self.destroyed = True

    def bind_user_agent(self) -> None:
        self.ensure().user_agent_hash = self.user_agent_hash

    def destroy_if_empty(self) -> None:
        if self.data is not None and self.data.is_empty:
            self.destroy()

    # ----- local account -----

    @property
    def user_id(self) -> Optional[int]:
        return self.data.user_id if self.data else None

    @property
    def username(self) -> Optional[str]:
        return self.data.username if self.data else None

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None

    def login(self, user_id: int, username: str) -> None:
        session = self.ensure()
        session.user_id = user_id
        session.username = username
        self.rotate()
        self.bind_user_agent()

    def logout(self) -> None:
        """Clear the local account only; Spotify tokens stay."""
        if self.data is None:
            return
        self.data.user_id = None
        self.data.username = None
        self.destroy_if_empty()

    def require_user(self) -> tuple[int, str]:
        if self.invalidated:
            raise SessionExpiredException()
        if self.data is None or self.data.user_id is None:
            raise UnauthorizedException()
        return self.data.user_id, self.data.username

    # ----- Spotify OAuth -----

    @property
    def has_spotify_token(self) -> bool:
        return bool(self.data and self.data.spotify_access_token)

    def set_oauth_state(self, state: str) -> None:
        self.ensure().oauth_state = state

    def pop_oauth_state(self) -> Optional[str]:
        """Return and discard the pending state so it cannot be replayed."""
        if self.data is None:
            return None
        state = self.data.oauth_state
        self.data.oauth_state = None
        return state

    def set_spotify_tokens(
        self,
        access_token: str,
        refresh_token: Optional[str],
        expires_at: datetime,
    ) -> None:
        session = self.ensure()
        session.spotify_access_token = access_token
        if refresh_token:
            session.spotify_refresh_token = refresh_token
        session.spotify_token_expires_at = expires_at

    def clear_spotify_tokens(self) -> None:
        """Clear the Spotify fields only; the local account stays."""
        if self.data is None:
            return
        self.data.spotify_access_token = None
        self.data.spotify_refresh_token = None
        self.data.spotify_token_expires_at = None
        self.destroy_if_empty()

    def spotify_token_expired(self) -> bool:
        if self.data is None or self.data.spotify_token_expires_at is None:
            return False
        return datetime.now(timezone.utc) >= self.data.spotify_token_expires_at


def get_session_context(request: Request) -> SessionContext:
    return request.state.session


class SessionMiddleware(BaseHTTPMiddleware):
    """
    Load the session for every request and write the cookie back.

    A session bound to a different User-Agent is destroyed before the
    handler runs: API calls get a 401 SESSION_EXPIRED, pages continue
    anonymously. Either way the cookie is cleared.
    """

    def __init__(
        self,
        app: ASGIApp,
        store: SessionStore,
        cookie_name: str,
        max_age: int,
        secure: bool = False,
        samesite: str = "lax",
    ):
        super().__init__(app)
        self.store = store
        self.cookie_name = cookie_name
        self.max_age = max_age
        self.secure = secure
        self.samesite = samesite

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        cookie_value = request.cookies.get(self.cookie_name)
        ua_hash = hash_user_agent(request.headers.get("user-agent"))
        data = self.store.get(cookie_value)
        invalidated = False

        if data is not None and data.user_agent_hash and data.user_agent_hash != ua_hash:
            logger.warning("User-Agent mismatch, destroying session")
            self.store.destroy(data.session_id)
            data = None
            invalidated = True
            if request.url.path.startswith("/api/"):
                exc = SessionExpiredException()
                response = JSONResponse(
                    status_code=exc.status_code,
                    content=error_body(exc.message, exc.code),
                )
                self._clear_cookie(response)
                return response

        context = SessionContext(self.store, data, ua_hash, invalidated=invalidated)
        request.state.session = context

        response = await call_next(request)

        if context.data is not None:
            response.set_cookie(
                self.cookie_name,
                context.data.session_id,
                max_age=self.max_age,
                httponly=True,
                secure=self.secure,
                samesite=self.samesite,
            )
        elif cookie_value and (context.destroyed or context.invalidated or data is None):
            self._clear_cookie(response)
        return response

    def _clear_cookie(self, response: Response) -> None:
        response.delete_cookie(
            self.cookie_name,
            httponly=True,
            secure=self.secure,
            samesite=self.samesite,
        )
