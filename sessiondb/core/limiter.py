"""
Rate limiting for the administrative session endpoints.

The limiter is created once here so route modules can import it without
circular imports. Requests are counted per operator address; behind a
reverse proxy set ``TRUST_FORWARDED_FOR`` so the proxy's own address does
not become one shared bucket for every operator.
"""

import logging

from slowapi import Limiter
from starlette.requests import Request

from sessiondb.core.config import Settings, settings
from sessiondb.core.utils.request_meta import client_address

logger = logging.getLogger(__name__)

MEMORY_STORAGE = "memory://"


def rate_limit_key(request: Request) -> str:
    """Bucket for an admin request: the operator's address"""
    address = client_address(request, trust_forwarded=settings.TRUST_FORWARDED_FOR)
    return f"session-admin:{address}"


def get_limiter_storage(config: Settings = settings) -> str:
    """
    Storage URI for the rate limit counters.

    Redis when ``REDIS_URL`` is set and well formed, so several app
    instances share their counters. In-process memory otherwise.
    """
    if not config.redis_url:
        return MEMORY_STORAGE
    if not config.redis_url.startswith(("redis://", "rediss://")):
        logger.warning("REDIS_URL is not a redis:// URL, keeping rate limits in memory")
        return MEMORY_STORAGE
    logger.info("Using Redis backend for rate limiting")
    return config.redis_url


def create_limiter(config: Settings = settings) -> Limiter:
    storage_uri = get_limiter_storage(config)
    if storage_uri == MEMORY_STORAGE:
        logger.info("Using in-memory storage for rate limiting")
    if not config.RATE_LIMIT_ENABLED:
        logger.warning("Rate limiting disabled for session admin endpoints")
    return Limiter(
        key_func=rate_limit_key,
        storage_uri=storage_uri,
        enabled=config.RATE_LIMIT_ENABLED,
        default_limits=[],  # limits are applied per endpoint group
    )


limiter = create_limiter()
