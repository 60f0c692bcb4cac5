"""Analytics sink port.

CartManager calls the sink strictly after a successful persist. Methods
are synchronous and must not raise; implementations that need I/O
should hand the work to their own queue or task.
"""
import logging
from abc import ABC, abstractmethod
from typing import Optional

from multicart.cart.models import Cart, CartID, CartItem, CartItemID, StoreID, UserProfileID
from multicart.logging import get_logger, sanitize_id_for_logging

logger = get_logger(__name__)


class CartAnalyticsSink(ABC):
    """Receives post-commit cart lifecycle notifications."""

    # ==================== Cart lifecycle ====================

    @abstractmethod
    def cart_created(self, cart: Cart) -> None: ...

    @abstractmethod
    def cart_updated(self, cart: Cart) -> None: ...

    @abstractmethod
    def cart_deleted(self, cart_id: CartID) -> None: ...

    @abstractmethod
    def active_cart_changed(
        self,
        new_active_cart_id: Optional[CartID],
        store_id: StoreID,
        profile_id: Optional[UserProfileID],
    ) -> None: ...

    # ==================== Items ====================

    @abstractmethod
    def item_added(self, item: CartItem, cart: Cart) -> None: ...

    @abstractmethod
    def item_updated(self, item: CartItem, cart: Cart) -> None: ...

    @abstractmethod
    def item_removed(self, item_id: CartItemID, cart: Cart) -> None: ...


class NoOpCartAnalyticsSink(CartAnalyticsSink):
    """Default sink: ignores everything."""

    def cart_created(self, cart: Cart) -> None:
        pass

    def cart_updated(self, cart: Cart) -> None:
        pass

    def cart_deleted(self, cart_id: CartID) -> None:
        pass

    def active_cart_changed(self, new_active_cart_id, store_id, profile_id) -> None:
        pass

    def item_added(self, item: CartItem, cart: Cart) -> None:
        pass

    def item_updated(self, item: CartItem, cart: Cart) -> None:
        pass

    def item_removed(self, item_id: CartItemID, cart: Cart) -> None:
        pass


class LoggingCartAnalyticsSink(CartAnalyticsSink):
    """Writes one log line per notification. Ids are truncated and escaped."""

    def __init__(self, level: int = logging.INFO):
        self.level = level

    def _log(self, event: str, **fields) -> None:
        details = " ".join(f"{key}={sanitize_id_for_logging(value)}" for key, value in fields.items())
        logger.log(self.level, f"[CartAnalytics] {event} {details}".rstrip())

    def cart_created(self, cart: Cart) -> None:
        self._log("cart.created", cart=cart.id, store=cart.store_id, profile=cart.profile_id)

    def cart_updated(self, cart: Cart) -> None:
        self._log("cart.updated", cart=cart.id, status=cart.status.value)

    def cart_deleted(self, cart_id: CartID) -> None:
        self._log("cart.deleted", cart=cart_id)

    def active_cart_changed(self, new_active_cart_id, store_id, profile_id) -> None:
        self._log("cart.active_changed", cart=new_active_cart_id, store=store_id, profile=profile_id)

    def item_added(self, item: CartItem, cart: Cart) -> None:
        self._log("item.added", cart=cart.id, item=item.id, product=item.product_id)

    def item_updated(self, item: CartItem, cart: Cart) -> None:
        self._log("item.updated", cart=cart.id, item=item.id, product=item.product_id)

    def item_removed(self, item_id: CartItemID, cart: Cart) -> None:
        self._log("item.removed", cart=cart.id, item=item_id)
