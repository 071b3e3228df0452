"""Redis client factory shared by progress snapshots, staged files and health checks."""

from __future__ import annotations

import ssl
from typing import Any

from redis import Redis

# Hosted Redis providers that only accept TLS connections
TLS_ONLY_HOSTS = (".upstash.io",)


def normalize_redis_url(url: str) -> str:
    """Upgrade redis:// to rediss:// for TLS-only providers."""
    if url.startswith("redis://") and any(host in url for host in TLS_ONLY_HOSTS):
        return url.replace("redis://", "rediss://", 1)
    return url


def is_tls_url(url: str) -> bool:
    return normalize_redis_url(url).startswith("rediss://")


def create_redis_client(url: str, **kwargs: Any) -> Redis:
    """Create a Redis client; TLS connections skip certificate verification.

    Args:
        url: Redis connection URL (redis:// or rediss://)
        **kwargs: Passed to Redis.from_url (decode_responses, socket_connect_timeout, ...)
    """
    url = normalize_redis_url(url)
    if url.startswith("rediss://"):
        kwargs.setdefault("ssl_cert_reqs", ssl.CERT_NONE)
    return Redis.from_url(url, **kwargs)
