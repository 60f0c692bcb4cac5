"""
MultiCart

Multi-scoped shopping carts with one active cart per (store, profile):
- cart: models, storage, events and the CartManager facade
- pricing: pricing context, totals, pricing and promotion engines
- validation: checkout and item-change validation
- conflicts: catalog conflict detection and resolution ports
- analytics: post-commit analytics sinks
"""
# cart must load first: pricing and validation import cart.models
from .cart import (
    Cart,
    CartConfiguration,
    CartItem,
    CartItemModifier,
    CartManager,
    CartStatus,
    GuestMigrationStrategy,
    InMemoryCartStore,
    RedisCartStore,
    get_cart_manager,
    make_cart_store,
)
from .errors import (
    CartConflictError,
    CartError,
    CartPricingFailedError,
    CartStorageError,
    CartUnknownError,
    CartValidationFailedError,
)
from .money import Money
from .pricing import CartPricingContext, CartTotals

__version__ = "0.1.0"

__all__ = [
    "Cart",
    "CartConfiguration",
    "CartItem",
    "CartItemModifier",
    "CartManager",
    "CartStatus",
    "GuestMigrationStrategy",
    "InMemoryCartStore",
    "RedisCartStore",
    "get_cart_manager",
    "make_cart_store",
    "CartConflictError",
    "CartError",
    "CartPricingFailedError",
    "CartStorageError",
    "CartUnknownError",
    "CartValidationFailedError",
    "Money",
    "CartPricingContext",
    "CartTotals",
]
