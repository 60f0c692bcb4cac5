"""Cart storage port and adapters.

CartStore is the only persistence contract the manager depends on.
Adapters never create, expire or delete carts on their own; they store
exactly what the manager hands them (including `updated_at`).
"""
import copy
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from operator import attrgetter
from typing import Dict, FrozenSet, List, Optional

from multicart.cart.models import Cart, CartID, CartStatus, StoreID, UserProfileID
from multicart.config import (
    STORAGE_AUTOMATIC,
    STORAGE_MEMORY,
    STORAGE_PREFERENCES,
    STORAGE_REDIS,
    Settings,
    get_settings,
)
from multicart.db import RedisKeys, get_redis
from multicart.errors import CartStorageError
from multicart.logging import get_logger, sanitize_id_for_logging

logger = get_logger(__name__)


class CartSort(str, Enum):
    """Ordering of fetch_carts results."""
    CREATED_AT_ASC = "created_at_asc"
    CREATED_AT_DESC = "created_at_desc"
    UPDATED_AT_ASC = "updated_at_asc"
    UPDATED_AT_DESC = "updated_at_desc"


@dataclass(frozen=True)
class CartQuery:
    """
    Parameters used to fetch carts from a CartStore.

    - store_id is always required
    - profile_id None means guest carts of that store
    - statuses None means any status
    """
    store_id: StoreID
    profile_id: Optional[UserProfileID] = None
    statuses: Optional[FrozenSet[CartStatus]] = None
    sort: CartSort = CartSort.UPDATED_AT_DESC

    def __post_init__(self):
        if self.statuses is not None:
            object.__setattr__(self, "statuses", frozenset(CartStatus(s) for s in self.statuses))

    @classmethod
    def active(cls, store_id: StoreID, profile_id: Optional[UserProfileID] = None) -> "CartQuery":
        """Active carts only, most recently updated first."""
        return cls(
            store_id=store_id,
            profile_id=profile_id,
            statuses=frozenset({CartStatus.ACTIVE}),
            sort=CartSort.UPDATED_AT_DESC,
        )

    def matches(self, cart: Cart) -> bool:
        if cart.store_id != self.store_id:
            return False
        if cart.profile_id != self.profile_id:
            return False
        if self.statuses and cart.status not in self.statuses:
            return False
        return True

    def order(self, carts: List[Cart], limit: Optional[int] = None) -> List[Cart]:
        """Sort by the query's ordering and apply `limit`."""
        if self.sort in (CartSort.CREATED_AT_ASC, CartSort.CREATED_AT_DESC):
            key = attrgetter("created_at")
        else:
            key = attrgetter("updated_at")
        descending = self.sort in (CartSort.CREATED_AT_DESC, CartSort.UPDATED_AT_DESC)
        ordered = sorted(carts, key=key, reverse=descending)
        if limit is not None:
            ordered = ordered[:max(0, limit)]
        return ordered


class CartStore(ABC):
    """Abstraction over the underlying cart storage."""

    @abstractmethod
    async def load_cart(self, cart_id: CartID) -> Optional[Cart]:
        """Load a single cart, or None when it does not exist."""

    @abstractmethod
    async def save_cart(self, cart: Cart) -> None:
        """Insert or update `cart` (idempotent per id)."""

    @abstractmethod
    async def delete_cart(self, cart_id: CartID) -> None:
        """Delete a cart; deleting a missing cart is not an error."""

    @abstractmethod
    async def fetch_carts(self, query: CartQuery, limit: Optional[int] = None) -> List[Cart]:
        """Carts matching `query`, ordered by `query.sort`, at most `limit`."""


class InMemoryCartStore(CartStore):
    """
    Dict-backed store.

    Deterministic and process-local. Carts are deep-copied on the way in
    and out so callers never share state with the store.
    """

    def __init__(self, carts: Optional[List[Cart]] = None):
        self._carts: Dict[str, Cart] = {}
        for cart in carts or []:
            self._carts[cart.id] = copy.deepcopy(cart)

    def __len__(self) -> int:
        return len(self._carts)

    async def load_cart(self, cart_id: CartID) -> Optional[Cart]:
        cart = self._carts.get(cart_id)
        return copy.deepcopy(cart) if cart is not None else None

    async def save_cart(self, cart: Cart) -> None:
        self._carts[cart.id] = copy.deepcopy(cart)

    async def delete_cart(self, cart_id: CartID) -> None:
        self._carts.pop(cart_id, None)

    async def fetch_carts(self, query: CartQuery, limit: Optional[int] = None) -> List[Cart]:
        matching = [cart for cart in self._carts.values() if query.matches(cart)]
        return [copy.deepcopy(cart) for cart in query.order(matching, limit)]


class RedisCartStore(CartStore):
    """
    Upstash Redis store.

    Layout:
    - multicart:cart:{id} holds the cart JSON
    - multicart:scope:{store}:{profile:<id>|guest} is a set of cart ids

    Every client failure and every unreadable payload surfaces as
    CartStorageError.
    """

    def __init__(self, redis=None):
        self._redis = redis  # Lazy initialization

    @property
    def redis(self):
        """Get Redis client (lazy initialization)."""
        if self._redis is None:
            try:
                self._redis = get_redis()
            except ValueError as e:
                raise CartStorageError(f"Redis not available: {e}") from e
        return self._redis

    @staticmethod
    def _decode(cart_id: str, data) -> Cart:
        try:
            return Cart.from_dict(json.loads(data))
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            logger.warning(f"Corrupted cart data for cart {sanitize_id_for_logging(cart_id)}: {e}")
            raise CartStorageError(f"Corrupted cart data for cart {cart_id}") from e

    async def load_cart(self, cart_id: CartID) -> Optional[Cart]:
        try:
            data = await self.redis.get(RedisKeys.cart_key(cart_id))
        except CartStorageError:
            raise
        except Exception as e:
            logger.error(f"Failed to load cart from Redis: {e}")
            raise CartStorageError(f"Cart storage unavailable: {e}") from e

        if not data:
            return None
        return self._decode(cart_id, data)

    async def save_cart(self, cart: Cart) -> None:
        previous = await self.load_cart(cart.id)
        try:
            # New index, payload, old index. fetch_carts filters by payload,
            # so a failed step leaves the cart in the scope its payload names.
            await self.redis.sadd(RedisKeys.scope_key(cart.store_id, cart.profile_id), cart.id)
            await self.redis.set(RedisKeys.cart_key(cart.id), json.dumps(cart.to_dict()))

            # Migration can move a cart to another scope
            if previous is not None and (previous.store_id, previous.profile_id) != (cart.store_id, cart.profile_id):
                await self.redis.srem(RedisKeys.scope_key(previous.store_id, previous.profile_id), cart.id)
        except CartStorageError:
            raise
        except Exception as e:
            logger.error(f"Failed to save cart to Redis: {e}")
            raise CartStorageError(f"Cart storage unavailable: {e}") from e

    async def delete_cart(self, cart_id: CartID) -> None:
        existing = await self.load_cart(cart_id)
        if existing is None:
            return
        try:
            await self.redis.delete(RedisKeys.cart_key(cart_id))
            await self.redis.srem(RedisKeys.scope_key(existing.store_id, existing.profile_id), cart_id)
        except CartStorageError:
            raise
        except Exception as e:
            logger.error(f"Failed to delete cart from Redis: {e}")
            raise CartStorageError(f"Cart storage unavailable: {e}") from e

    async def fetch_carts(self, query: CartQuery, limit: Optional[int] = None) -> List[Cart]:
        try:
            cart_ids = list(await self.redis.smembers(RedisKeys.scope_key(query.store_id, query.profile_id)) or [])
            if not cart_ids:
                return []
            payloads = await self.redis.mget(*[RedisKeys.cart_key(cart_id) for cart_id in cart_ids])
        except CartStorageError:
            raise
        except Exception as e:
            logger.error(f"Failed to query carts from Redis: {e}")
            raise CartStorageError(f"Cart storage unavailable: {e}") from e

        carts = [
            self._decode(cart_id, data)
            for cart_id, data in zip(cart_ids, payloads)
            if data
        ]
        return query.order([cart for cart in carts if query.matches(cart)], limit)


def make_cart_store(preference: Optional[str] = None, settings: Optional[Settings] = None) -> CartStore:
    """
    Build a CartStore from a storage preference.

    - memory: InMemoryCartStore
    - redis: RedisCartStore (Upstash credentials required)
    - automatic: redis when credentials are configured, memory otherwise

    Args:
        preference: One of the above; defaults to Settings.storage
        settings: Settings to read; defaults to get_settings()
    """
    settings = settings or get_settings()
    preference = (preference or settings.storage).lower()

    if preference not in STORAGE_PREFERENCES:
        raise ValueError(f"Unknown cart storage preference: {preference!r}")

    if preference == STORAGE_MEMORY:
        return InMemoryCartStore()

    if preference == STORAGE_REDIS:
        if not settings.redis_configured:
            raise ValueError("UPSTASH_REDIS_REST_URL and UPSTASH_REDIS_REST_TOKEN must be set")
        return RedisCartStore()

    if preference == STORAGE_AUTOMATIC and settings.redis_configured:
        return RedisCartStore()

    logger.info("Redis credentials not configured, using in-memory cart store")
    return InMemoryCartStore()
