"""Redis client construction shared by storage, progress and cancellation."""

from __future__ import annotations

import ssl
from typing import Any

from redis import Redis

# Managed providers that only accept TLS but hand out redis:// URLs
TLS_ONLY_HOST_SUFFIXES = (".upstash.io",)


def normalize_redis_url(url: str) -> str:
    """Upgrade redis:// to rediss:// for hosts that require TLS."""
    if url.startswith("redis://") and any(suffix in url for suffix in TLS_ONLY_HOST_SUFFIXES):
        return url.replace("redis://", "rediss://", 1)
    return url


def create_redis_client(url: str, **kwargs: Any) -> Redis:
    """Create a Redis client, relaxing certificate checks for TLS connections.

    Args:
        url: Redis connection URL (redis:// or rediss://)
        **kwargs: Passed through to ``Redis.from_url`` (decode_responses, timeouts...)
    """
    url = normalize_redis_url(url)
    client = Redis.from_url(url, **kwargs)
    if url.startswith("rediss://"):
        client.connection_pool.connection_kwargs["ssl_cert_reqs"] = ssl.CERT_NONE
    return client
