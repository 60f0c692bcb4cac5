"""Cart package: models, events, storage, configuration and manager facade."""
from .models import (
    Cart,
    CartDetailsOverrides,
    CartID,
    CartItem,
    CartItemID,
    CartItemModifier,
    CartStatus,
    CartUpdateResult,
    GuestMigrationStrategy,
    StoreID,
    UserProfileID,
)
from .events import ActiveCartChanged, CartCreated, CartDeleted, CartEvent, CartEventStream, CartUpdated
from .storage import CartQuery, CartSort, CartStore, InMemoryCartStore, RedisCartStore, make_cart_store
from .configuration import CartConfiguration
from .service import CartManager, get_cart_manager

__all__ = [
    "Cart",
    "CartDetailsOverrides",
    "CartID",
    "CartItem",
    "CartItemID",
    "CartItemModifier",
    "CartStatus",
    "CartUpdateResult",
    "GuestMigrationStrategy",
    "StoreID",
    "UserProfileID",
    "ActiveCartChanged",
    "CartCreated",
    "CartDeleted",
    "CartEvent",
    "CartEventStream",
    "CartUpdated",
    "CartQuery",
    "CartSort",
    "CartStore",
    "InMemoryCartStore",
    "RedisCartStore",
    "make_cart_store",
    "CartConfiguration",
    "CartManager",
    "get_cart_manager",
]
