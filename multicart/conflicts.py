"""Catalog conflict detection and resolution ports.

The detector reports where a cart has drifted from the live catalog
(removed products, changed prices, missing stock). The resolver is the
host's policy for what to do about it. CartManager only passes values
between the two and never inspects conflict contents.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Union

from multicart.cart.models import Cart, CartItemID
from multicart.errors import CartError
from multicart.money import Money


# ============================================
# Conflict kinds
# ============================================

@dataclass(frozen=True)
class RemovedFromCatalog:
    """The product no longer exists or is no longer orderable."""


@dataclass(frozen=True)
class PriceChanged:
    """The catalog price differs from the cart line price."""
    old: Money
    new: Money


@dataclass(frozen=True)
class InsufficientStock:
    """The requested quantity exceeds available stock."""
    requested: int
    available: int


ConflictKind = Union[RemovedFromCatalog, PriceChanged, InsufficientStock]


@dataclass(frozen=True)
class CartCatalogConflict:
    """A conflict between one cart line and the current catalog."""
    item_id: CartItemID
    product_id: str
    kind: ConflictKind


# ============================================
# Resolution
# ============================================

@dataclass(frozen=True)
class AcceptModifiedCart:
    """Persist this (possibly cleaned-up) cart instead of the proposed one."""
    cart: Cart


@dataclass(frozen=True)
class RejectWithError:
    """Abort the operation and surface `error` to the caller."""
    error: CartError


CartConflictResolution = Union[AcceptModifiedCart, RejectWithError]


# ============================================
# Ports
# ============================================

class CartCatalogConflictDetector(ABC):
    """Detects divergence between a cart and the catalog."""

    @abstractmethod
    async def detect_conflicts(self, cart: Cart) -> List[CartCatalogConflict]:
        """Return every conflict found in `cart` (empty when consistent)."""


class NoOpCartCatalogConflictDetector(CartCatalogConflictDetector):
    """Default detector: conflicts are opt-in, so nothing is ever reported."""

    async def detect_conflicts(self, cart: Cart) -> List[CartCatalogConflict]:
        return []


class CartConflictResolver(ABC):
    """Host policy deciding how a conflicting cart is handled."""

    @abstractmethod
    async def resolve_conflict(self, cart: Cart, reason: CartError) -> CartConflictResolution:
        """
        Decide how to proceed with a conflicting cart.

        Args:
            cart: The mutated cart the manager is about to persist
            reason: Why the resolver is being asked (a conflict error)

        Returns:
            AcceptModifiedCart to persist a cart, RejectWithError to abort
        """
