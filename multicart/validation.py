"""
Cart validation engine.

Two side-effect-free checks, both returning CartValidationResult:
- validate(cart): full-cart checkout readiness
- validate_item_change(cart, proposed_item): a single prospective line
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Union

from multicart.cart.models import Cart, CartItem, CartItemID
from multicart.errors import ERROR_MIXED_CURRENCIES
from multicart.money import CurrencyMismatchError, Money, format_money, sum_money


# ============================================
# Validation errors
# ============================================

@dataclass(frozen=True)
class MinSubtotalNotMet:
    required: Money
    actual: Money

    @property
    def message(self) -> str:
        return (
            f"Minimum subtotal not met: required {format_money(self.required)}, "
            f"got {format_money(self.actual)}"
        )


@dataclass(frozen=True)
class MaxItemsExceeded:
    max_items: int
    actual: int

    @property
    def message(self) -> str:
        return f"Maximum item count exceeded: allowed {self.max_items}, got {self.actual}"


@dataclass(frozen=True)
class QuantityExceedsAvailableStock:
    item_id: CartItemID
    available: int
    requested: int

    @property
    def message(self) -> str:
        return f"Quantity {self.requested} exceeds available stock {self.available}"


@dataclass(frozen=True)
class CustomValidationError:
    text: str

    @property
    def message(self) -> str:
        return self.text


CartValidationError = Union[
    MinSubtotalNotMet,
    MaxItemsExceeded,
    QuantityExceedsAvailableStock,
    CustomValidationError,
]


@dataclass(frozen=True)
class CartValidationResult:
    """Verdict of a validation check: valid, or invalid with an error."""
    error: Optional[CartValidationError] = None

    @property
    def is_valid(self) -> bool:
        return self.error is None

    @classmethod
    def valid(cls) -> "CartValidationResult":
        return cls()

    @classmethod
    def invalid(cls, error: CartValidationError) -> "CartValidationResult":
        return cls(error=error)


# ============================================
# Port
# ============================================

class CartValidationEngine(ABC):
    """Accepts or rejects a cart, or a proposed item change."""

    @abstractmethod
    async def validate(self, cart: Cart) -> CartValidationResult:
        """Validate a full cart for checkout readiness."""

    @abstractmethod
    async def validate_item_change(self, cart: Cart, proposed_item: CartItem) -> CartValidationResult:
        """Validate a proposed item (added or replaced) against `cart` as it is now."""


# ============================================
# Default implementation
# ============================================

def cart_subtotal(cart: Cart, currency_code: str) -> Money:
    """Σ (unit price + modifiers) × quantity over all lines."""
    return sum_money(
        (item.unit_price_with_modifiers * item.quantity for item in cart.items),
        currency_code,
    )


class DefaultCartValidationEngine(CartValidationEngine):
    """
    Threshold-based validation.

    Cart-level `min_subtotal` / `max_item_count` win over the engine
    defaults; the defaults normally come from Settings
    (MULTICART_MIN_SUBTOTAL, MULTICART_MAX_ITEMS). Item count means units.
    """

    def __init__(
        self,
        default_min_subtotal: Optional[Money] = None,
        default_max_items: Optional[int] = None,
    ):
        self.default_min_subtotal = default_min_subtotal
        self.default_max_items = default_max_items

    async def validate(self, cart: Cart) -> CartValidationResult:
        min_subtotal = cart.min_subtotal or self.default_min_subtotal
        max_items = cart.max_item_count if cart.max_item_count is not None else self.default_max_items

        if min_subtotal is not None:
            try:
                subtotal = cart_subtotal(cart, min_subtotal.currency_code)
            except CurrencyMismatchError:
                return CartValidationResult.invalid(CustomValidationError(ERROR_MIXED_CURRENCIES))
            if subtotal.amount < min_subtotal.amount:
                return CartValidationResult.invalid(
                    MinSubtotalNotMet(required=min_subtotal, actual=subtotal)
                )

        if max_items is not None and cart.total_items > max_items:
            return CartValidationResult.invalid(
                MaxItemsExceeded(max_items=max_items, actual=cart.total_items)
            )

        return CartValidationResult.valid()

    async def validate_item_change(self, cart: Cart, proposed_item: CartItem) -> CartValidationResult:
        if proposed_item.quantity <= 0:
            return CartValidationResult.invalid(
                CustomValidationError("Quantity must be greater than zero")
            )

        stock = proposed_item.available_stock
        if stock is not None and proposed_item.quantity > stock:
            return CartValidationResult.invalid(
                QuantityExceedsAvailableStock(
                    item_id=proposed_item.id,
                    available=stock,
                    requested=proposed_item.quantity,
                )
            )

        # Other lines decide the cart currency; the replaced line does not count
        currency = proposed_item.unit_price.currency_code
        for item in cart.items:
            if item.id != proposed_item.id and item.unit_price.currency_code != currency:
                return CartValidationResult.invalid(
                    CustomValidationError(
                        f"{ERROR_MIXED_CURRENCIES}: {item.unit_price.currency_code} vs {currency}"
                    )
                )

        return CartValidationResult.valid()
