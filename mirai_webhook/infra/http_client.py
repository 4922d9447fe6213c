# mirai_webhook/infra/http_client.py
"""
Shared aiohttp client sessions.

Named, lazy-initialized ``aiohttp.ClientSession`` singletons so the
gateway socket reuses one connector across reconnects.

Session profiles
~~~~~~~~~~~~~~~~
- **gateway** -- the long-lived WebSocket (no total timeout, connect=10 s)

Shutdown
~~~~~~~~
Call ``close_all_sessions()`` once during application shutdown.
"""
from __future__ import annotations

import aiohttp

from mirai_webhook.infra.logging_config import get_logger

logger = get_logger(__name__)

_sessions: dict[str, aiohttp.ClientSession] = {}


def _get_or_create(
    name: str,
    timeout: aiohttp.ClientTimeout,
    limit: int = 10,
) -> aiohttp.ClientSession:
    """Return an existing session or create a new one."""
    session = _sessions.get(name)
    if session is None or session.closed:
        session = aiohttp.ClientSession(
            timeout=timeout,
            connector=aiohttp.TCPConnector(
                limit=limit,
                enable_cleanup_closed=True,
            ),
        )
        _sessions[name] = session
        logger.debug("HTTP session '%s' created (limit=%d)", name, limit)
    return session


def get_gateway_session() -> aiohttp.ClientSession:
    """Session owning the gateway WebSocket. A socket lives for hours: no total timeout."""
    return _get_or_create(
        "gateway",
        aiohttp.ClientTimeout(total=None, connect=10),
        limit=2,
    )


async def close_all_sessions() -> None:
    """Gracefully close every managed session.  Call during app shutdown."""
    for name in list(_sessions):
        session = _sessions.pop(name, None)
        if session is not None and not session.closed:
            await session.close()
            logger.debug("HTTP session '%s' closed", name)
