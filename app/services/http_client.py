"""
Shared httpx client for every call to Spotify.

Token exchanges, searches and artist lookups all reuse one pooled
AsyncClient. create_app() configures it from Settings; the lifespan
closes it on shutdown.
"""
import httpx
from typing import Any, Optional


class HTTPClientManager:
    """Holds the process-wide httpx.AsyncClient."""

    _client: Optional[httpx.AsyncClient] = None
    _options: dict[str, Any] = {}

    @classmethod
    def configure(
        cls,
        timeout_seconds: float = 15.0,
        max_connections: int = 20,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """Set options for the next client created. An open client is kept as is."""
        cls._options = {
            "timeout_seconds": timeout_seconds,
            "max_connections": max_connections,
            "transport": transport,
        }

    @classmethod
    def get_client(cls) -> httpx.AsyncClient:
        """Get or lazily create the shared client."""
        if cls._client is None:
            timeout_seconds = cls._options.get("timeout_seconds", 15.0)
            max_connections = cls._options.get("max_connections", 20)
            transport = cls._options.get("transport")

            kwargs: dict[str, Any] = {}
            if transport is not None:
                kwargs["transport"] = transport
            else:
                kwargs["http2"] = True

            cls._client = httpx.AsyncClient(
                limits=httpx.Limits(
                    max_keepalive_connections=max(1, max_connections // 2),
                    max_connections=max_connections,
                    keepalive_expiry=30.0,
                ),
                # Connecting and pool checkout fail fast; reads get the full budget
                timeout=httpx.Timeout(
                    timeout_seconds,
                    connect=min(5.0, timeout_seconds),
                    pool=min(5.0, timeout_seconds),
                ),
                headers={"Accept": "application/json"},
                follow_redirects=True,
                **kwargs,
            )
        return cls._client

    @classmethod
    async def close(cls) -> None:
        """Close the shared client. Called from the app lifespan."""
        if cls._client is not None:
            await cls._client.aclose()
            cls._client = None


def get_http_client() -> httpx.AsyncClient:
    return HTTPClientManager.get_client()
