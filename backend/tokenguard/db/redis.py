"""Redis client for bearer sessions, rate limiting and the task queue"""
import redis
import redis.asyncio as aioredis
import asyncio
import logging
from typing import Optional
from tokenguard.core.config import settings

logger = logging.getLogger(__name__)

# Lazy initialization - no connection at import time
_client = None
_async_client = None


def get_redis_client():
    """Get or create Redis client (lazy initialization)

    This prevents connection attempts during import, allowing mocks to be applied first.
    """
    global _client
    if _client is None:
        _client = redis.from_url(settings.REDIS_URL, decode_responses=True)
    return _client


def get_async_redis_client():
    """Get or create async Redis client bound to the running event loop"""
    global _async_client

    try:
        current_loop = asyncio.get_running_loop()
    except RuntimeError:
        return None

    if _async_client is not None:
        client_loop = getattr(_async_client.connection_pool, '_loop', None)
        if client_loop is not current_loop:
            # Tied to a previous loop (test runs create new loops)
            _async_client = None

    if _async_client is None:
        _async_client = aioredis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            max_connections=20
        )
        _async_client.connection_pool._loop = current_loop

    return _async_client


# Session TTL (30 days)
SESSION_TTL = 30 * 24 * 60 * 60

# Rate limiting configuration
RATE_LIMIT_WINDOW = 60  # seconds
RATE_LIMIT_REQUESTS = 600  # requests per window
RATE_LIMIT_STRICT_WINDOW = 60  # seconds
RATE_LIMIT_STRICT_REQUESTS = 300  # state-changing requests per window


def set_session(token: str, user_id: int, ttl: int = SESSION_TTL) -> None:
    """Register a bearer token issued by the identity provider"""
    get_redis_client().setex(f"session:{token}", ttl, user_id)


def get_session(token: str) -> Optional[int]:
    """Resolve a bearer token to a user id"""
    user_id = get_redis_client().get(f"session:{token}")
    return int(user_id) if user_id else None


def delete_session(token: str) -> None:
    """Revoke a bearer token"""
    get_redis_client().delete(f"session:{token}")


def increment_rate_limit(identifier: str, window: int) -> int:
    """Increment rate limit counter and return current count.
    Uses Lua script to atomically increment and set TTL only for new keys (fixed window rate limiting)."""
    key = f"ratelimit:{identifier}"

    lua_script = """
    local count = redis.call('INCR', KEYS[1])
    if count == 1 then
        redis.call('EXPIRE', KEYS[1], ARGV[1])
    end
    return count
    """

    count = get_redis_client().eval(lua_script, 1, key, window)
    return int(count)


def check_rate_limit(identifier: str, strict: bool = False) -> bool:
    """Check if request is within rate limit using Redis. Returns True if allowed, False if rate limited."""
    window = RATE_LIMIT_STRICT_WINDOW if strict else RATE_LIMIT_WINDOW
    max_requests = RATE_LIMIT_STRICT_REQUESTS if strict else RATE_LIMIT_REQUESTS

    current_count = increment_rate_limit(identifier, window)
    return current_count <= max_requests
