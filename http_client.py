import logging
from typing import Optional

import httpx

from config import settings

logger = logging.getLogger(__name__)


class SharedHTTPClient:
    """Pooled async HTTP client shared by the outbound service integrations."""

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        limits = httpx.Limits(
            max_keepalive_connections=20,
            max_connections=100,
            keepalive_expiry=30.0
        )

        timeout = httpx.Timeout(
            timeout=settings.google_books_timeout,
            connect=5.0,
        )

        self._client = httpx.AsyncClient(
            limits=limits,
            timeout=timeout,
            follow_redirects=True,
            transport=transport,
        )

    async def get(self, url: str, **kwargs) -> httpx.Response:
        """Async GET through the connection pool"""
        return await self._client.get(url, **kwargs)

    async def close(self):
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


# Process-wide client instance
_global_client: Optional[SharedHTTPClient] = None


async def get_http_client() -> SharedHTTPClient:
    """Get or lazily create the process-wide HTTP client"""
    global _global_client
    if _global_client is None:
        _global_client = SharedHTTPClient()
        logger.debug("Shared HTTP client created")
    return _global_client


async def cleanup_http_client():
    """Close the process-wide HTTP client"""
    global _global_client
    if _global_client:
        await _global_client.close()
        _global_client = None
