"""Pytest configuration and fixtures"""
import os
from decimal import Decimal
from typing import Dict, List, Optional, Set

import pytest

# Set test environment variables
os.environ.setdefault("MULTICART_STORAGE", "memory")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from multicart.analytics import CartAnalyticsSink
from multicart.cart import CartConfiguration, CartItem, CartManager, InMemoryCartStore
from multicart.cart.models import CartItemModifier
from multicart.config import reset_settings
from multicart.money import Money


class RecordingAnalyticsSink(CartAnalyticsSink):
    """Sink that records every call as (method, args)."""

    def __init__(self):
        self.calls = []

    @property
    def names(self) -> List[str]:
        return [name for name, _ in self.calls]

    def clear(self) -> None:
        self.calls.clear()

    def cart_created(self, cart):
        self.calls.append(("cart_created", (cart.id,)))

    def cart_updated(self, cart):
        self.calls.append(("cart_updated", (cart.id,)))

    def cart_deleted(self, cart_id):
        self.calls.append(("cart_deleted", (cart_id,)))

    def active_cart_changed(self, new_active_cart_id, store_id, profile_id):
        self.calls.append(("active_cart_changed", (new_active_cart_id, store_id, profile_id)))

    def item_added(self, item, cart):
        self.calls.append(("item_added", (item.id, cart.id)))

    def item_updated(self, item, cart):
        self.calls.append(("item_updated", (item.id, cart.id)))

    def item_removed(self, item_id, cart):
        self.calls.append(("item_removed", (item_id, cart.id)))


class FakeAsyncRedis:
    """In-memory stand-in for upstash_redis.asyncio.Redis (strings and sets only)."""

    def __init__(self):
        self.values: Dict[str, str] = {}
        self.sets: Dict[str, Set[str]] = {}

    async def get(self, key: str) -> Optional[str]:
        return self.values.get(key)

    async def set(self, key: str, value: str, ex: Optional[int] = None) -> bool:
        self.values[key] = value
        return True

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self.values.pop(key, None) is not None:
                removed += 1
        return removed

    async def sadd(self, key: str, *members: str) -> int:
        bucket = self.sets.setdefault(key, set())
        before = len(bucket)
        bucket.update(members)
        return len(bucket) - before

    async def srem(self, key: str, *members: str) -> int:
        bucket = self.sets.get(key, set())
        removed = len(bucket & set(members))
        bucket.difference_update(members)
        return removed

    async def smembers(self, key: str) -> List[str]:
        return sorted(self.sets.get(key, set()))

    async def mget(self, *keys: str) -> List[Optional[str]]:
        return [self.values.get(key) for key in keys]


@pytest.fixture(autouse=True)
def fresh_settings():
    """Re-read settings from the environment for every test."""
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def store():
    """Empty in-memory cart store"""
    return InMemoryCartStore()


@pytest.fixture
def sink():
    """Analytics sink recording every notification"""
    return RecordingAnalyticsSink()


@pytest.fixture
def configuration(store, sink):
    """Default configuration on top of the in-memory store"""
    return CartConfiguration(cart_store=store, analytics_sink=sink)


@pytest.fixture
def manager(configuration):
    """CartManager with default engines"""
    return CartManager(configuration)


@pytest.fixture
def fake_redis():
    """Fake async Redis client"""
    return FakeAsyncRedis()


@pytest.fixture
def make_item():
    """Factory for cart items priced in USD by default"""

    def _make_item(
        product_id: str = "burger",
        quantity: int = 1,
        price: str = "10.00",
        currency: str = "USD",
        modifiers: Optional[List[tuple]] = None,
        available_stock: Optional[int] = None,
    ) -> CartItem:
        return CartItem(
            product_id=product_id,
            quantity=quantity,
            unit_price=Money(Decimal(price), currency),
            modifiers=[
                CartItemModifier(id=f"mod-{index}", name=name, price_delta=Money(Decimal(delta), currency))
                for index, (name, delta) in enumerate(modifiers or [])
            ],
            available_stock=available_stock,
        )

    return _make_item
