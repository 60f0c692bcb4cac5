"""Cart manager: the single entry point for cart lifecycle and mutation."""
import asyncio
import copy
from typing import Callable, Dict, List, Optional

from multicart.cart.configuration import CartConfiguration
from multicart.cart.events import (
    ActiveCartChanged,
    CartCreated,
    CartDeleted,
    CartEventListener,
    CartEventPublisher,
    CartEventStream,
    CartUpdated,
)
from multicart.cart.models import (
    TEMPLATE_METADATA_KEY,
    Cart,
    CartDetailsOverrides,
    CartID,
    CartItem,
    CartItemID,
    CartStatus,
    CartUpdateResult,
    GuestMigrationStrategy,
    StoreID,
    UserProfileID,
    new_cart_id,
    utc_now,
)
from multicart.cart.storage import CartQuery, CartSort
from multicart.conflicts import AcceptModifiedCart, RejectWithError
from multicart.errors import (
    ERROR_ACTIVE_CART_EXISTS,
    ERROR_CART_NOT_ACTIVE,
    ERROR_CART_NOT_FOUND,
    ERROR_CATALOG_CONFLICTS,
    ERROR_CHECKOUT_REQUIRES_PROFILE,
    ERROR_INVALID_STATUS_TRANSITION,
    ERROR_ITEM_NOT_FOUND,
    ERROR_NO_ACTIVE_GUEST_CART,
    CartConflictError,
    CartError,
    CartStorageError,
    CartUnknownError,
    CartValidationFailedError,
)
from multicart.logging import get_logger, sanitize_id_for_logging, sanitize_string_for_logging
from multicart.money import Money
from multicart.pricing import CartPricingContext, CartTotals, PromotionKind
from multicart.validation import CartValidationResult

logger = get_logger(__name__)


class CartManager:
    """
    Orchestrates carts on top of the injected collaborators.

    Features:
    - Exactly one active cart per (store, profile) scope
    - Item pipeline: validate -> mutate -> detect conflicts -> resolve -> persist -> notify
    - Reorder, duplication and templates
    - Guest to profile cart migration
    - Pricing and promotions facade

    Every public operation runs under one asyncio.Lock, so concurrent
    tasks never interleave a read-decide-persist cycle. Loaded carts are
    deep-copied before mutation, and sink calls and events happen only
    after the store accepted the write.
    """

    def __init__(self, configuration: CartConfiguration):
        self.configuration = configuration
        self._lock = asyncio.Lock()
        self._events = CartEventPublisher()

    @property
    def store(self):
        return self.configuration.cart_store

    @property
    def sink(self):
        return self.configuration.analytics_sink

    # ==================== Storage ====================

    async def _store_call(self, action: str, method, *args, **kwargs):
        """Await a store call; foreign exceptions become CartStorageError."""
        try:
            return await method(*args, **kwargs)
        except CartError:
            raise
        except Exception as e:
            logger.error(f"Cart store failed to {action}: {e}")
            raise CartStorageError(str(e)) from e

    async def _load(self, cart_id: CartID) -> Optional[Cart]:
        cart = await self._store_call("load cart", self.store.load_cart, cart_id)
        return copy.deepcopy(cart) if cart is not None else None

    async def _save(self, cart: Cart) -> None:
        await self._store_call("save cart", self.store.save_cart, cart)

    async def _fetch(self, query: CartQuery, limit: Optional[int] = None) -> List[Cart]:
        carts = await self._store_call("fetch carts", self.store.fetch_carts, query, limit=limit)
        return [copy.deepcopy(cart) for cart in carts]

    async def _require_cart(self, cart_id: CartID) -> Cart:
        cart = await self._load(cart_id)
        if cart is None:
            logger.warning(f"Cart {sanitize_id_for_logging(cart_id)} not found")
            raise CartConflictError(ERROR_CART_NOT_FOUND)
        return cart

    async def _require_active_cart(self, cart_id: CartID) -> Cart:
        cart = await self._require_cart(cart_id)
        if not cart.is_active:
            logger.warning(
                f"Cart {sanitize_id_for_logging(cart_id)} is {cart.status.value}, mutation rejected"
            )
            raise CartConflictError(ERROR_CART_NOT_ACTIVE)
        return cart

    async def _active_cart(self, store_id: StoreID, profile_id: Optional[UserProfileID]) -> Optional[Cart]:
        carts = await self._fetch(CartQuery.active(store_id, profile_id), limit=1)
        return carts[0] if carts else None

    @staticmethod
    def _touch(cart: Cart) -> None:
        # updated_at never moves backwards
        cart.updated_at = max(utc_now(), cart.updated_at)

    @staticmethod
    def _copy_cart(source: Cart, status: CartStatus, profile_id: Optional[UserProfileID]) -> Cart:
        """New cart with a fresh id, fresh timestamps and regenerated item ids."""
        now = utc_now()
        return Cart(
            id=new_cart_id(),
            store_id=source.store_id,
            profile_id=profile_id,
            items=[item.copy_with_new_id() for item in source.items],
            status=status,
            created_at=now,
            updated_at=now,
            metadata=dict(source.metadata),
            display_name=source.display_name,
            context=source.context,
            store_image_url=source.store_image_url,
            min_subtotal=source.min_subtotal,
            max_item_count=source.max_item_count,
        )

    # ==================== Notifications ====================

    def _notify(self, name: str, *args) -> None:
        """Call an analytics sink method; failures are logged only."""
        try:
            getattr(self.sink, name)(*args)
        except Exception as e:
            logger.warning(f"Analytics sink {name} failed: {e}", exc_info=True)

    def _cart_created(self, cart: Cart) -> None:
        self._notify("cart_created", cart)
        self._events.publish(CartCreated(cart.id))

    def _cart_updated(self, cart: Cart) -> None:
        self._notify("cart_updated", cart)
        self._events.publish(CartUpdated(cart.id))

    def _cart_deleted(self, cart_id: CartID) -> None:
        self._notify("cart_deleted", cart_id)
        self._events.publish(CartDeleted(cart_id))

    def _active_cart_changed(
        self,
        store_id: StoreID,
        profile_id: Optional[UserProfileID],
        cart_id: Optional[CartID],
    ) -> None:
        self._notify("active_cart_changed", cart_id, store_id, profile_id)
        self._events.publish(ActiveCartChanged(store_id, profile_id, cart_id))

    def observe_events(self) -> CartEventStream:
        """Open a new event stream; close it when done."""
        return self._events.subscribe()

    def add_event_listener(self, listener: CartEventListener) -> Callable[[], None]:
        """Register a synchronous event callback; returns its remover."""
        return self._events.add_listener(listener)

    def close(self) -> None:
        """Close every open event stream."""
        self._events.close()

    # ==================== Reads ====================

    async def get_cart(self, cart_id: CartID) -> Optional[Cart]:
        """Get a cart by id, or None."""
        async with self._lock:
            return await self._load(cart_id)

    async def get_active_cart(
        self,
        store_id: StoreID,
        profile_id: Optional[UserProfileID] = None,
    ) -> Optional[Cart]:
        """Get the active cart of a scope, or None."""
        async with self._lock:
            return await self._active_cart(store_id, profile_id)

    async def list_carts(
        self,
        store_id: StoreID,
        profile_id: Optional[UserProfileID] = None,
        statuses=None,
        sort: CartSort = CartSort.UPDATED_AT_DESC,
        limit: Optional[int] = None,
    ) -> List[Cart]:
        """List carts of a scope, optionally filtered by status."""
        query = CartQuery(
            store_id=store_id,
            profile_id=profile_id,
            statuses=frozenset(statuses) if statuses is not None else None,
            sort=CartSort(sort),
        )
        async with self._lock:
            return await self._fetch(query, limit=limit)

    # ==================== Lifecycle ====================

    async def set_active_cart(
        self,
        store_id: StoreID,
        profile_id: Optional[UserProfileID] = None,
    ) -> Cart:
        """
        Get the scope's active cart, creating an empty one when missing.

        Notifies created then active-cart-changed only when a cart is created.
        """
        async with self._lock:
            existing = await self._active_cart(store_id, profile_id)
            if existing is not None:
                return existing

            cart = Cart(id=new_cart_id(), store_id=store_id, profile_id=profile_id)
            await self._save(cart)

            logger.info(
                f"Created active cart {sanitize_id_for_logging(cart.id)} "
                f"for store {sanitize_id_for_logging(store_id)}"
            )
            self._cart_created(cart)
            self._active_cart_changed(store_id, profile_id, cart.id)
            return cart

    async def update_status(self, cart_id: CartID, new_status: CartStatus) -> Cart:
        """
        Move a cart to another status.

        Rules:
        - same status: no-op, nothing persisted or notified
        - active -> any other status: allowed
        - anything else: CartConflictError (terminal statuses are final)

        checked_out additionally needs a profile and a cart that passes
        full validation.
        """
        new_status = CartStatus(new_status)
        async with self._lock:
            cart = await self._require_cart(cart_id)
            old_status = cart.status

            if old_status is new_status:
                return cart

            if old_status is not CartStatus.ACTIVE or new_status is CartStatus.ACTIVE:
                logger.warning(
                    f"Rejected status transition {old_status.value} -> {new_status.value} "
                    f"for cart {sanitize_id_for_logging(cart_id)}"
                )
                raise CartConflictError(ERROR_INVALID_STATUS_TRANSITION)

            if new_status is CartStatus.CHECKED_OUT:
                if cart.profile_id is None:
                    raise CartValidationFailedError(ERROR_CHECKOUT_REQUIRES_PROFILE)
                result = await self.configuration.validation_engine.validate(cart)
                if not result.is_valid:
                    logger.warning(
                        f"Checkout validation failed for cart {sanitize_id_for_logging(cart_id)}: "
                        f"{sanitize_string_for_logging(result.error.message)}"
                    )
                    raise CartValidationFailedError(result.error.message)

            cart.status = new_status
            self._touch(cart)
            await self._save(cart)

            logger.info(
                f"Cart {sanitize_id_for_logging(cart_id)} status {old_status.value} -> {new_status.value}"
            )
            self._cart_updated(cart)
            self._active_cart_changed(cart.store_id, cart.profile_id, None)
            return cart

    async def update_cart_details(
        self,
        cart_id: CartID,
        *,
        display_name: Optional[str] = None,
        context: Optional[str] = None,
        store_image_url: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
        min_subtotal: Optional[Money] = None,
        max_item_count: Optional[int] = None,
    ) -> Cart:
        """Overwrite the supplied presentation fields of an active cart."""
        overrides = CartDetailsOverrides(
            display_name=display_name,
            context=context,
            store_image_url=store_image_url,
            metadata=metadata,
            min_subtotal=min_subtotal,
            max_item_count=max_item_count,
        )
        async with self._lock:
            cart = await self._require_active_cart(cart_id)
            overrides.apply_to(cart)
            self._touch(cart)
            await self._save(cart)

            self._cart_updated(cart)
            return cart

    async def delete_cart(self, cart_id: CartID) -> None:
        """Delete a cart. Deleting a missing cart succeeds silently."""
        async with self._lock:
            await self._delete_cart(cart_id)

    async def _delete_cart(self, cart_id: CartID) -> None:
        existing = await self._load(cart_id)
        if existing is None:
            return

        await self._store_call("delete cart", self.store.delete_cart, cart_id)

        logger.info(f"Deleted cart {sanitize_id_for_logging(cart_id)}")
        self._cart_deleted(cart_id)
        if existing.is_active:
            self._active_cart_changed(existing.store_id, existing.profile_id, None)

    # ==================== Items ====================

    async def _validate_item_change(self, cart: Cart, item: CartItem) -> None:
        result = await self.configuration.validation_engine.validate_item_change(cart, item)
        if not result.is_valid:
            logger.warning(
                f"Item change rejected for cart {sanitize_id_for_logging(cart.id)}: "
                f"{sanitize_string_for_logging(result.error.message)}"
            )
            raise CartValidationFailedError(result.error.message)

    def _find_item(self, cart: Cart, item_id: CartItemID) -> int:
        index = cart.find_item_index(item_id)
        if index is None:
            logger.warning(
                f"Item {sanitize_id_for_logging(item_id)} not found in cart {sanitize_id_for_logging(cart.id)}"
            )
            raise CartConflictError(ERROR_ITEM_NOT_FOUND)
        return index

    async def _commit_item_change(
        self,
        cart: Cart,
        removed_items: List[CartItem],
        changed_items: List[CartItem],
        item_notification: Callable[[Cart], None],
    ) -> CartUpdateResult:
        """Detect conflicts, let the resolver decide, persist and notify."""
        conflicts = list(await self.configuration.catalog_conflict_detector.detect_conflicts(cart))
        resolver = self.configuration.conflict_resolver

        if conflicts and resolver is not None:
            resolution = await resolver.resolve_conflict(cart, CartConflictError(ERROR_CATALOG_CONFLICTS))
            if isinstance(resolution, AcceptModifiedCart):
                cart = resolution.cart
            elif isinstance(resolution, RejectWithError):
                logger.warning(
                    f"Conflict resolver rejected cart {sanitize_id_for_logging(cart.id)}: {resolution.error}"
                )
                raise resolution.error
            else:
                raise CartUnknownError(f"Unsupported conflict resolution: {resolution!r}")
        elif conflicts:
            logger.debug(
                f"Cart {sanitize_id_for_logging(cart.id)} has {len(conflicts)} catalog conflicts, "
                "no resolver configured"
            )

        self._touch(cart)
        await self._save(cart)

        self._cart_updated(cart)
        item_notification(cart)
        return CartUpdateResult(
            cart=cart,
            removed_items=removed_items,
            changed_items=changed_items,
            conflicts=conflicts,
        )

    async def add_item(self, cart_id: CartID, item: CartItem) -> CartUpdateResult:
        """Append an item to an active cart."""
        async with self._lock:
            cart = await self._require_active_cart(cart_id)
            proposed = copy.deepcopy(item)
            await self._validate_item_change(cart, proposed)

            cart.items.append(proposed)

            logger.debug(
                f"Adding product {sanitize_id_for_logging(proposed.product_id)} "
                f"to cart {sanitize_id_for_logging(cart_id)}"
            )
            return await self._commit_item_change(
                cart,
                removed_items=[],
                changed_items=[proposed],
                item_notification=lambda saved: self._notify("item_added", proposed, saved),
            )

    async def update_item(self, cart_id: CartID, item: CartItem) -> CartUpdateResult:
        """Replace the item with the same id."""
        async with self._lock:
            cart = await self._require_active_cart(cart_id)
            index = self._find_item(cart, item.id)
            proposed = copy.deepcopy(item)
            await self._validate_item_change(cart, proposed)

            cart.items[index] = proposed

            return await self._commit_item_change(
                cart,
                removed_items=[],
                changed_items=[proposed],
                item_notification=lambda saved: self._notify("item_updated", proposed, saved),
            )

    async def remove_item(self, cart_id: CartID, item_id: CartItemID) -> CartUpdateResult:
        """Remove the item with `item_id`."""
        async with self._lock:
            cart = await self._require_active_cart(cart_id)
            index = self._find_item(cart, item_id)

            removed = cart.items.pop(index)

            return await self._commit_item_change(
                cart,
                removed_items=[removed],
                changed_items=[],
                item_notification=lambda saved: self._notify("item_removed", item_id, saved),
            )

    # ==================== Reorder / duplicate ====================

    async def reorder(self, source_cart_id: CartID) -> Cart:
        """
        Make a fresh active copy of any cart.

        The scope's current active cart (possibly the source itself) is
        expired and persisted first, then the copy is persisted.
        """
        async with self._lock:
            source = await self._require_cart(source_cart_id)

            current = await self._active_cart(source.store_id, source.profile_id)
            if current is not None:
                current.status = CartStatus.EXPIRED
                self._touch(current)
                await self._save(current)
                self._cart_updated(current)
                self._active_cart_changed(current.store_id, current.profile_id, None)

            cart = self._copy_cart(source, CartStatus.ACTIVE, source.profile_id)
            await self._save(cart)

            logger.info(
                f"Reordered cart {sanitize_id_for_logging(source_cart_id)} "
                f"as {sanitize_id_for_logging(cart.id)}"
            )
            self._cart_created(cart)
            self._active_cart_changed(cart.store_id, cart.profile_id, cart.id)
            return cart

    async def duplicate_cart(
        self,
        source_cart_id: CartID,
        overrides: Optional[CartDetailsOverrides] = None,
        as_template: bool = False,
    ) -> Cart:
        """
        Copy a cart.

        Templates are stored as expired carts carrying the template
        marker. A non-template copy is active, so it is refused while the
        scope already has an active cart.
        """
        async with self._lock:
            source = await self._require_cart(source_cart_id)
            status = CartStatus.EXPIRED if as_template else CartStatus.ACTIVE

            if not as_template and await self._active_cart(source.store_id, source.profile_id) is not None:
                logger.warning(
                    f"Duplicate of cart {sanitize_id_for_logging(source_cart_id)} refused, scope has an active cart"
                )
                raise CartConflictError(ERROR_ACTIVE_CART_EXISTS)

            cart = self._copy_cart(source, status, source.profile_id)
            if overrides is not None:
                overrides.apply_to(cart)
            if as_template:
                cart.metadata[TEMPLATE_METADATA_KEY] = "true"

            await self._save(cart)
            self._cart_created(cart)
            return cart

    # ==================== Guest migration ====================

    async def migrate_guest_active_cart(
        self,
        store_id: StoreID,
        profile_id: UserProfileID,
        strategy: GuestMigrationStrategy = GuestMigrationStrategy.MOVE,
    ) -> Cart:
        """
        Hand the store's active guest cart to a signed-in profile.

        Strategies:
        - move: same cart id, re-scoped to the profile
        - copy_and_delete: new profile cart with regenerated item ids,
          then the guest cart is deleted

        Fails with CartConflictError, changing nothing, when there is no
        active guest cart or the profile already has an active cart.
        """
        strategy = GuestMigrationStrategy(strategy)
        async with self._lock:
            guest_cart = await self._active_cart(store_id, None)
            if guest_cart is None:
                raise CartConflictError(ERROR_NO_ACTIVE_GUEST_CART)

            if await self._active_cart(store_id, profile_id) is not None:
                logger.warning(
                    f"Guest cart migration refused: profile {sanitize_id_for_logging(profile_id)} "
                    f"already has an active cart in store {sanitize_id_for_logging(store_id)}"
                )
                raise CartConflictError(ERROR_ACTIVE_CART_EXISTS)

            if strategy is GuestMigrationStrategy.MOVE:
                guest_cart.profile_id = profile_id
                guest_cart.status = CartStatus.ACTIVE
                self._touch(guest_cart)
                await self._save(guest_cart)

                logger.info(
                    f"Moved guest cart {sanitize_id_for_logging(guest_cart.id)} "
                    f"to profile {sanitize_id_for_logging(profile_id)}"
                )
                self._cart_updated(guest_cart)
                self._active_cart_changed(store_id, profile_id, guest_cart.id)
                return guest_cart

            cart = self._copy_cart(guest_cart, CartStatus.ACTIVE, profile_id)
            await self._save(cart)

            logger.info(
                f"Copied guest cart {sanitize_id_for_logging(guest_cart.id)} "
                f"to profile {sanitize_id_for_logging(profile_id)} as {sanitize_id_for_logging(cart.id)}"
            )
            self._cart_created(cart)
            self._active_cart_changed(store_id, profile_id, cart.id)

            await self._delete_cart(guest_cart.id)
            return cart

    # ==================== Pricing ====================

    async def apply_promotions_if_available(
        self,
        promotions: Optional[List[PromotionKind]],
        totals: CartTotals,
    ) -> CartTotals:
        """Run the promotion engine only when promotions were supplied."""
        if promotions is None:
            return totals
        return await self.configuration.promotion_engine.apply_promotions(promotions, totals)

    async def _totals(
        self,
        cart: Cart,
        context: Optional[CartPricingContext],
        promotions: Optional[List[PromotionKind]],
    ) -> CartTotals:
        context = context or CartPricingContext.plain(cart.store_id, cart.profile_id)
        totals = await self.configuration.pricing_engine.compute_totals(cart, context)
        return await self.apply_promotions_if_available(promotions, totals)

    async def get_totals(
        self,
        cart_id: CartID,
        context: Optional[CartPricingContext] = None,
        promotions: Optional[List[PromotionKind]] = None,
    ) -> CartTotals:
        """
        Price a cart.

        Args:
            cart_id: Cart to price
            context: Fees and tax; defaults to a plain context for the cart's scope
            promotions: Applied after pricing; None skips the promotion engine
        """
        async with self._lock:
            cart = await self._require_cart(cart_id)
            return await self._totals(cart, context, promotions)

    async def get_totals_for_active_cart(
        self,
        context: CartPricingContext,
        promotions: Optional[List[PromotionKind]] = None,
    ) -> Optional[CartTotals]:
        """Price the active cart of the context's scope; None when there is none."""
        async with self._lock:
            cart = await self._active_cart(context.store_id, context.profile_id)
            if cart is None:
                return None
            return await self._totals(cart, context, promotions)

    # ==================== Validation ====================

    async def validate_before_checkout(self, cart_id: CartID) -> CartValidationResult:
        """Full-cart validation verdict; the cart is not modified."""
        async with self._lock:
            cart = await self._require_cart(cart_id)
            return await self.configuration.validation_engine.validate(cart)


# Singleton instance
_cart_manager: Optional[CartManager] = None


def get_cart_manager() -> CartManager:
    """Get CartManager singleton built from environment settings."""
    global _cart_manager
    if _cart_manager is None:
        _cart_manager = CartManager(CartConfiguration.configured())
    return _cart_manager
