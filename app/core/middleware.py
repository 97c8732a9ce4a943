"""ASGI middleware for response hardening and per-client request limits."""

from __future__ import annotations

import math
import time
from typing import TYPE_CHECKING, Callable

from starlette.requests import Request
from starlette.responses import JSONResponse

from app.core.exceptions import error_body

if TYPE_CHECKING:
    from starlette.types import ASGIApp, Message, Receive, Scope, Send

CONTENT_SECURITY_POLICY = (
    "default-src 'self'; "
    "script-src 'self'; "
    "style-src 'self' 'unsafe-inline'; "
    "img-src 'self' data: https: https://i.scdn.co; "
    "connect-src 'self'; "
    "font-src 'self'; "
    "object-src 'none'; "
    "media-src 'self'; "
    "frame-src 'none'; "
    "frame-ancestors 'self'; form-action 'self'; base-uri 'self'"
)

_COMMON_HEADERS: list[tuple[bytes, bytes]] = [
    (b"x-content-type-options", b"nosniff"),
    (b"x-frame-options", b"SAMEORIGIN"),
    (b"referrer-policy", b"no-referrer"),
    (b"cross-origin-opener-policy", b"same-origin"),
]

# Swagger UI and ReDoc load their assets from a CDN
_DOCS_PATHS = ("/docs", "/redoc", "/openapi.json")

RATE_LIMIT_MESSAGE = "Too many requests from this IP, please try again later."


def resolve_client_ip(request: Request, trust_proxy: bool) -> str:
    """Client address, honouring X-Forwarded-For only behind a trusted proxy."""
    if trust_proxy:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


class SecurityHeadersMiddleware:
    """Add security headers, CSP included, to every HTTP response.

    The API docs pages get the common headers without the CSP.
    """

    def __init__(self, app: ASGIApp, *, csp: str = CONTENT_SECURITY_POLICY) -> None:
        self.app = app
        self._headers = [*_COMMON_HEADERS, (b"content-security-policy", csp.encode())]

    def _headers_for(self, path: str) -> list[tuple[bytes, bytes]]:
        if path.startswith(_DOCS_PATHS):
            return _COMMON_HEADERS
        return self._headers

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        extra_headers = self._headers_for(scope["path"])

        async def send_with_headers(message: Message) -> None:
            if message["type"] == "http.response.start":
                headers = list(message.get("headers", []))
                headers.extend(extra_headers)
                message["headers"] = headers
            await send(message)

        await self.app(scope, receive, send_with_headers)


class TokenBucket:
    """Rate limiter using the token bucket algorithm.

    Tokens are added at a constant rate up to a maximum burst capacity.
    Each consume() call removes one token; returns False when the bucket
    is empty.
    """

    def __init__(self, rate: float, burst: int, clock: Callable[[], float] = time.monotonic) -> None:
        self._rate = rate
        self._burst = burst
        self._clock = clock
        self._tokens = float(burst)
        self._last_refill = clock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed = now - self._last_refill
        self._tokens = min(self._burst, self._tokens + elapsed * self._rate)
        self._last_refill = now

    def consume(self) -> bool:
        """Try to consume one token. Returns True if allowed, False if rate-limited."""
        self._refill()
        if self._tokens >= 1.0:
            self._tokens -= 1.0
            return True
        return False

    @property
    def remaining(self) -> int:
        return int(self._tokens)

    @property
    def retry_after(self) -> int:
        """Seconds until the next token is available."""
        missing = 1.0 - self._tokens
        if missing <= 0:
            return 0
        return math.ceil(missing / self._rate)

    def is_full(self) -> bool:
        self._refill()
        return self._tokens >= self._burst


class RateLimitMiddleware:
    """Per-client-IP request limit: max_requests per window_seconds.

    Limited requests get 429 with the usual JSON error body and Retry-After.
    Every response carries RateLimit-Limit and RateLimit-Remaining.
    """

    def __init__(
        self,
        app: ASGIApp,
        *,
        max_requests: int,
        window_seconds: float,
        trust_proxy: bool = False,
        max_tracked_clients: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.app = app
        self.max_requests = max_requests
        self._rate = max_requests / window_seconds
        self._trust_proxy = trust_proxy
        self._max_tracked = max_tracked_clients
        self._clock = clock
        self._buckets: dict[str, TokenBucket] = {}

    def _bucket(self, client_ip: str) -> TokenBucket:
        bucket = self._buckets.get(client_ip)
        if bucket is None:
            if len(self._buckets) >= self._max_tracked:
                self._prune()
            bucket = TokenBucket(self._rate, self.max_requests, clock=self._clock)
            self._buckets[client_ip] = bucket
        return bucket

    def _prune(self) -> None:
        # A full bucket is indistinguishable from a fresh one
        for ip in [ip for ip, bucket in self._buckets.items() if bucket.is_full()]:
            del self._buckets[ip]

    def _limit_headers(self, bucket: TokenBucket) -> list[tuple[bytes, bytes]]:
        return [
            (b"ratelimit-limit", str(self.max_requests).encode()),
            (b"ratelimit-remaining", str(bucket.remaining).encode()),
        ]

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        client_ip = resolve_client_ip(Request(scope), self._trust_proxy)
        bucket = self._bucket(client_ip)

        if not bucket.consume():
            response = JSONResponse(
                status_code=429,
                content=error_body(RATE_LIMIT_MESSAGE, "RATE_LIMITED"),
                headers={
                    "Retry-After": str(bucket.retry_after),
                    "RateLimit-Limit": str(self.max_requests),
                    "RateLimit-Remaining": "0",
                },
            )
            await response(scope, receive, send)
            return

        extra_headers = self._limit_headers(bucket)

        async def send_with_headers(message: Message) -> None:
            if message["type"] == "http.response.start":
                headers = list(message.get("headers", []))
                headers.extend(extra_headers)
                message["headers"] = headers
            await send(message)

        await self.app(scope, receive, send_with_headers)

