"""
Cart error taxonomy.

Five fixed kinds, each a CartError subclass with a stable `code`.
Reason strings used by the manager live here as constants so tests and
host apps can match on them.
"""

# Lookup / lifecycle errors
ERROR_CART_NOT_FOUND = "Cart not found"
ERROR_CART_NOT_ACTIVE = "Cart is not active"
ERROR_INVALID_STATUS_TRANSITION = "Invalid cart status transition"
ERROR_ITEM_NOT_FOUND = "Item not found in cart"
ERROR_CATALOG_CONFLICTS = "Cart has catalog conflicts"
ERROR_ACTIVE_CART_EXISTS = "Scope already has an active cart"
ERROR_NO_ACTIVE_GUEST_CART = "No active guest cart to migrate"

# Checkout errors
ERROR_CHECKOUT_REQUIRES_PROFILE = "Profile ID is missing, cannot update cart status to checked_out"

# Pricing errors
ERROR_MIXED_CURRENCIES = "Cart mixes currencies"


class CartError(Exception):
    """Base error for every cart operation."""

    code = "unknown"

    def __init__(self, reason: str = "") -> None:
        super().__init__(reason or self.code)
        self.reason = reason

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CartError):
            return NotImplemented
        return self.code == other.code and self.reason == other.reason

    def __hash__(self) -> int:
        return hash((self.code, self.reason))

    def __repr__(self) -> str:
        return f"{type(self).__name__}(reason={self.reason!r})"


class CartValidationFailedError(CartError):
    """A validation engine rejected the cart or a proposed item."""
    code = "validation_failed"


class CartPricingFailedError(CartError):
    """Totals could not be computed (e.g. mixed currencies)."""
    code = "pricing_failed"


class CartConflictError(CartError):
    """Operation conflicts with the current cart state."""
    code = "conflict"


class CartStorageError(CartError):
    """The cart store failed to load, save, delete or query."""
    code = "storage_failure"


class CartUnknownError(CartError):
    """Unclassified failure."""
    code = "unknown"


__all__ = [
    "CartError",
    "CartValidationFailedError",
    "CartPricingFailedError",
    "CartConflictError",
    "CartStorageError",
    "CartUnknownError",
    "ERROR_CART_NOT_FOUND",
    "ERROR_CART_NOT_ACTIVE",
    "ERROR_INVALID_STATUS_TRANSITION",
    "ERROR_ITEM_NOT_FOUND",
    "ERROR_CATALOG_CONFLICTS",
    "ERROR_ACTIVE_CART_EXISTS",
    "ERROR_NO_ACTIVE_GUEST_CART",
    "ERROR_CHECKOUT_REQUIRES_PROFILE",
    "ERROR_MIXED_CURRENCIES",
]
