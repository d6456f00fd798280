"""Redis client factory for the shared rate-limit counters."""

from __future__ import annotations

import ssl
from typing import Any

from redis import Redis

# Counters are read on the request path, so timeouts stay short.
DEFAULT_SOCKET_TIMEOUT = 2.0


def create_redis_client(url: str, **kwargs: Any) -> Redis:
    """Create a Redis client for rate limiting.

    Hosted Upstash URLs given as ``redis://`` are switched to TLS, and
    short connect/read timeouts plus decoded responses are applied unless
    the caller overrides them.

    Args:
        url: Redis connection URL (redis:// or rediss://)
        **kwargs: Extra ``Redis.from_url`` arguments
    """
    if ".upstash.io" in url and url.startswith("redis://"):
        url = url.replace("redis://", "rediss://", 1)

    kwargs.setdefault("decode_responses", True)
    kwargs.setdefault("socket_connect_timeout", DEFAULT_SOCKET_TIMEOUT)
    kwargs.setdefault("socket_timeout", DEFAULT_SOCKET_TIMEOUT)
    if url.startswith("rediss://"):
        # Hosted TLS endpoints ship certificates the default store may not trust
        kwargs.setdefault("ssl_cert_reqs", ssl.CERT_NONE)

    return Redis.from_url(url, **kwargs)
