"""
Redis client for cart persistence.

Provides a singleton async Upstash Redis client and the key layout used
by RedisCartStore.
"""

from typing import Optional

from upstash_redis.asyncio import Redis as AsyncRedis

from multicart.config import get_settings


# Singleton instance
_redis_client: Optional[AsyncRedis] = None


def get_redis() -> AsyncRedis:
    """
    Get async Upstash Redis client (singleton).

    Uses standard Upstash env var names:
    - UPSTASH_REDIS_REST_URL
    - UPSTASH_REDIS_REST_TOKEN
    """
    global _redis_client

    if _redis_client is None:
        settings = get_settings()
        if not settings.redis_configured:
            raise ValueError("UPSTASH_REDIS_REST_URL and UPSTASH_REDIS_REST_TOKEN must be set")
        _redis_client = AsyncRedis(url=settings.redis_url, token=settings.redis_token)

    return _redis_client


class RedisKeys:
    """Redis key prefixes for cart data."""

    # Cart payload (JSON)
    CART = "multicart:cart:"  # multicart:cart:{cart_id}

    # Set of cart ids per (store, profile) scope
    SCOPE = "multicart:scope:"  # multicart:scope:{store_id}:{profile:<id>|guest}

    GUEST = "guest"

    @staticmethod
    def cart_key(cart_id: str) -> str:
        return f"{RedisKeys.CART}{cart_id}"

    @staticmethod
    def scope_key(store_id: str, profile_id: Optional[str]) -> str:
        owner = f"profile:{profile_id}" if profile_id is not None else RedisKeys.GUEST
        return f"{RedisKeys.SCOPE}{store_id}:{owner}"
