"""Shared HTTP client construction for outbound calls.

One client is opened in the application lifespan and handed to the
CAPTCHA verifier and the identity provider client for connection reuse.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import httpx

from shield.app.core.config import Settings, settings as default_settings


def create_http_client(config: Optional[Settings] = None, **kwargs) -> httpx.AsyncClient:
    """Create a new HTTP client with pool limits and granular timeouts.

    The returned client should be closed when done:
        async with create_http_client() as client:
            ...

    Args:
        config: Settings to read timeouts and pool limits from.
        **kwargs: Extra keyword arguments passed to httpx.AsyncClient
            (for example ``transport`` in tests).
    """
    config = config or default_settings

    timeout = httpx.Timeout(
        connect=config.httpx_connect_timeout,
        read=config.httpx_read_timeout,
        write=config.httpx_write_timeout,
        pool=config.httpx_pool_timeout,
    )
    limits = httpx.Limits(
        max_connections=config.httpx_max_connections,
        max_keepalive_connections=config.httpx_max_keepalive_connections,
    )
    return httpx.AsyncClient(timeout=timeout, limits=limits, **kwargs)


@asynccontextmanager
async def init_http_client(
    config: Optional[Settings] = None,
) -> AsyncGenerator[httpx.AsyncClient, None]:
    """Open the shared HTTP client for the application lifespan.

        @asynccontextmanager
        async def lifespan(app: FastAPI):
            async with init_http_client(config) as client:
                yield
    """
    client = create_http_client(config)
    try:
        yield client
    finally:
        await client.aclose()
