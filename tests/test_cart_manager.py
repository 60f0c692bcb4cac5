"""
Tests for CartManager
"""

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock, Mock

import pytest

from multicart.cart import CartConfiguration, CartManager
from multicart.cart.events import ActiveCartChanged, CartCreated, CartDeleted, CartUpdated
from multicart.cart.models import (
    TEMPLATE_METADATA_KEY,
    CartDetailsOverrides,
    CartStatus,
    GuestMigrationStrategy,
)
from multicart.conflicts import (
    AcceptModifiedCart,
    CartCatalogConflict,
    CartCatalogConflictDetector,
    CartConflictResolver,
    PriceChanged,
    RejectWithError,
    RemovedFromCatalog,
)
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
    CartPricingFailedError,
    CartStorageError,
    CartValidationFailedError,
)
from multicart.money import Money
from multicart.pricing import CartPricingContext, FixedAmountOffCart, PercentageOffCart
from multicart.validation import DefaultCartValidationEngine, MinSubtotalNotMet


def usd(amount: str) -> Money:
    return Money(Decimal(amount), "USD")


class StaticConflictDetector(CartCatalogConflictDetector):
    """Reports a conflict for every line whose product is in `removed`."""

    def __init__(self, removed):
        self.removed = set(removed)

    async def detect_conflicts(self, cart):
        return [
            CartCatalogConflict(item_id=item.id, product_id=item.product_id, kind=RemovedFromCatalog())
            for item in cart.items
            if item.product_id in self.removed
        ]


class DropConflictingItemsResolver(CartConflictResolver):
    """Accepts the cart after removing lines for discontinued products."""

    def __init__(self, removed):
        self.removed = set(removed)
        self.reasons = []

    async def resolve_conflict(self, cart, reason):
        self.reasons.append(reason)
        cart.items = [item for item in cart.items if item.product_id not in self.removed]
        return AcceptModifiedCart(cart)


class RejectingResolver(CartConflictResolver):
    async def resolve_conflict(self, cart, reason):
        return RejectWithError(CartConflictError("Catalog changed, review your cart"))


def item_signature(cart):
    return sorted(
        (item.product_id, item.quantity, item.unit_price, tuple(m.price_delta for m in item.modifiers))
        for item in cart.items
    )


class TestSetActiveCart:
    """Tests for active cart creation."""

    @pytest.mark.asyncio
    async def test_creates_cart_when_missing(self, manager, sink):
        stream = manager.observe_events()

        cart = await manager.set_active_cart("store-1")

        assert cart.is_active
        assert cart.is_guest
        assert stream.pending() == [CartCreated(cart.id), ActiveCartChanged("store-1", None, cart.id)]
        assert sink.calls == [
            ("cart_created", (cart.id,)),
            ("active_cart_changed", (cart.id, "store-1", None)),
        ]

    @pytest.mark.asyncio
    async def test_returns_existing_without_events(self, manager, sink):
        cart = await manager.set_active_cart("store-1", "user-1")
        stream = manager.observe_events()
        sink.clear()

        again = await manager.set_active_cart("store-1", "user-1")

        assert again.id == cart.id
        assert stream.pending() == []
        assert sink.calls == []

    @pytest.mark.asyncio
    async def test_guest_and_profile_scopes_are_separate(self, manager):
        guest = await manager.set_active_cart("store-1")
        profile = await manager.set_active_cart("store-1", "user-1")
        other_store = await manager.set_active_cart("store-2")

        assert len({guest.id, profile.id, other_store.id}) == 3

    @pytest.mark.asyncio
    async def test_concurrent_calls_create_one_cart(self, manager, store):
        carts = await asyncio.gather(*[manager.set_active_cart("store-1") for _ in range(10)])

        assert len({cart.id for cart in carts}) == 1
        assert len(store) == 1


class TestUpdateStatus:
    """Tests for status transitions."""

    @pytest.mark.asyncio
    async def test_same_status_is_noop(self, manager, sink):
        cart = await manager.set_active_cart("store-1")
        stream = manager.observe_events()
        sink.clear()

        result = await manager.update_status(cart.id, CartStatus.ACTIVE)

        assert result.updated_at == cart.updated_at
        assert stream.pending() == []
        assert sink.calls == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("target", [CartStatus.CANCELLED, CartStatus.EXPIRED])
    async def test_active_to_terminal(self, manager, target):
        cart = await manager.set_active_cart("store-1")
        stream = manager.observe_events()

        result = await manager.update_status(cart.id, target)

        assert result.status is target
        assert result.updated_at >= cart.updated_at
        assert stream.pending() == [CartUpdated(cart.id), ActiveCartChanged("store-1", None, None)]
        assert await manager.get_active_cart("store-1") is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("source", [CartStatus.CANCELLED, CartStatus.EXPIRED, CartStatus.CHECKED_OUT])
    @pytest.mark.parametrize("target", list(CartStatus))
    async def test_terminal_statuses_are_final(self, manager, store, source, target):
        cart = await manager.set_active_cart("store-1", "user-1")
        stored = await store.load_cart(cart.id)
        stored.status = source
        await store.save_cart(stored)

        if source is target:
            assert (await manager.update_status(cart.id, target)).status is source
            return

        with pytest.raises(CartConflictError) as exc_info:
            await manager.update_status(cart.id, target)

        assert exc_info.value.reason == ERROR_INVALID_STATUS_TRANSITION
        assert (await store.load_cart(cart.id)).status is source

    @pytest.mark.asyncio
    async def test_checkout_requires_profile(self, manager):
        cart = await manager.set_active_cart("store-1")

        with pytest.raises(CartValidationFailedError) as exc_info:
            await manager.update_status(cart.id, CartStatus.CHECKED_OUT)

        assert exc_info.value.reason == ERROR_CHECKOUT_REQUIRES_PROFILE
        assert (await manager.get_cart(cart.id)).is_active

    @pytest.mark.asyncio
    async def test_checkout_requires_valid_cart(self, store, sink, make_item):
        manager = CartManager(CartConfiguration(
            cart_store=store,
            analytics_sink=sink,
            validation_engine=DefaultCartValidationEngine(default_min_subtotal=usd("20")),
        ))
        cart = await manager.set_active_cart("store-1", "user-1")
        await manager.add_item(cart.id, make_item(price="10.00"))
        stream = manager.observe_events()

        with pytest.raises(CartValidationFailedError) as exc_info:
            await manager.update_status(cart.id, CartStatus.CHECKED_OUT)

        assert exc_info.value.reason == MinSubtotalNotMet(required=usd("20"), actual=usd("10")).message
        assert (await manager.get_cart(cart.id)).is_active
        assert stream.pending() == []

    @pytest.mark.asyncio
    async def test_checkout_with_profile(self, manager, make_item):
        cart = await manager.set_active_cart("store-1", "user-1")
        await manager.add_item(cart.id, make_item())

        result = await manager.update_status(cart.id, "checked_out")

        assert result.status is CartStatus.CHECKED_OUT
        assert (await manager.get_cart(cart.id)).status is CartStatus.CHECKED_OUT

    @pytest.mark.asyncio
    async def test_missing_cart(self, manager):
        with pytest.raises(CartConflictError) as exc_info:
            await manager.update_status("missing", CartStatus.CANCELLED)

        assert exc_info.value == CartConflictError(ERROR_CART_NOT_FOUND)


class TestUpdateCartDetails:
    """Tests for partial detail updates."""

    @pytest.mark.asyncio
    async def test_only_supplied_fields_change(self, manager):
        cart = await manager.set_active_cart("store-1")
        await manager.update_cart_details(cart.id, display_name="Lunch", context="pickup", metadata={"a": "1"})
        stream = manager.observe_events()

        result = await manager.update_cart_details(cart.id, max_item_count=5)

        assert result.display_name == "Lunch"
        assert result.context == "pickup"
        assert result.metadata == {"a": "1"}
        assert result.max_item_count == 5
        assert stream.pending() == [CartUpdated(cart.id)]

    @pytest.mark.asyncio
    async def test_updated_at_never_decreases(self, manager):
        cart = await manager.set_active_cart("store-1")

        first = await manager.update_cart_details(cart.id, display_name="A")
        second = await manager.update_cart_details(cart.id, display_name="B")

        assert cart.updated_at <= first.updated_at <= second.updated_at

    @pytest.mark.asyncio
    async def test_inactive_cart_rejected(self, manager):
        cart = await manager.set_active_cart("store-1")
        await manager.update_status(cart.id, CartStatus.CANCELLED)

        with pytest.raises(CartConflictError) as exc_info:
            await manager.update_cart_details(cart.id, display_name="Late")

        assert exc_info.value.reason == ERROR_CART_NOT_ACTIVE


class TestDeleteCart:
    """Tests for idempotent deletion."""

    @pytest.mark.asyncio
    async def test_missing_cart_is_noop(self, manager, sink):
        stream = manager.observe_events()

        await manager.delete_cart("missing")
        await manager.delete_cart("missing")

        assert stream.pending() == []
        assert sink.calls == []

    @pytest.mark.asyncio
    async def test_delete_active_cart(self, manager, store):
        cart = await manager.set_active_cart("store-1", "user-1")
        stream = manager.observe_events()

        await manager.delete_cart(cart.id)

        assert stream.pending() == [CartDeleted(cart.id), ActiveCartChanged("store-1", "user-1", None)]
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_delete_inactive_cart(self, manager):
        cart = await manager.set_active_cart("store-1")
        await manager.update_status(cart.id, CartStatus.EXPIRED)
        stream = manager.observe_events()

        await manager.delete_cart(cart.id)

        assert stream.pending() == [CartDeleted(cart.id)]


class TestItemPipeline:
    """Tests for add/update/remove."""

    @pytest.mark.asyncio
    async def test_add_item_end_to_end_totals(self, manager, make_item):
        cart = await manager.set_active_cart("store-1")
        await manager.add_item(cart.id, make_item("burger", quantity=1, price="10"))

        totals = await manager.get_totals(cart.id, CartPricingContext(store_id="store-1", tax_rate="0.10"))

        assert totals.subtotal == usd("10")
        assert totals.tax == usd("1.0")
        assert totals.grand_total == usd("11")

    @pytest.mark.asyncio
    async def test_add_item_result_and_notifications(self, manager, sink, make_item):
        cart = await manager.set_active_cart("store-1")
        stream = manager.observe_events()
        sink.clear()
        item = make_item()

        result = await manager.add_item(cart.id, item)

        assert [line.id for line in result.cart.items] == [item.id]
        assert result.changed_items == [item]
        assert result.removed_items == []
        assert result.conflicts == []
        assert stream.pending() == [CartUpdated(cart.id)]
        assert sink.calls == [("cart_updated", (cart.id,)), ("item_added", (item.id, cart.id))]

    @pytest.mark.asyncio
    async def test_caller_item_not_shared(self, manager, make_item):
        cart = await manager.set_active_cart("store-1")
        item = make_item(quantity=1)
        await manager.add_item(cart.id, item)

        item.quantity = 99

        assert (await manager.get_cart(cart.id)).items[0].quantity == 1

    @pytest.mark.asyncio
    async def test_invalid_item_rejected_before_mutation(self, manager, sink, make_item):
        cart = await manager.set_active_cart("store-1")
        sink.clear()

        with pytest.raises(CartValidationFailedError) as exc_info:
            await manager.add_item(cart.id, make_item(quantity=5, available_stock=2))

        assert "exceeds available stock" in exc_info.value.reason
        assert (await manager.get_cart(cart.id)).items == []
        assert sink.calls == []

    @pytest.mark.asyncio
    async def test_update_item_replaces_by_id(self, manager, sink, make_item):
        cart = await manager.set_active_cart("store-1")
        first, second = make_item("burger"), make_item("burger")
        await manager.add_item(cart.id, first)
        await manager.add_item(cart.id, second)
        sink.clear()

        replacement = make_item("burger", quantity=3)
        replacement.id = second.id
        result = await manager.update_item(cart.id, replacement)

        assert [line.quantity for line in result.cart.items] == [1, 3]
        assert result.changed_items == [replacement]
        assert sink.names == ["cart_updated", "item_updated"]

    @pytest.mark.asyncio
    async def test_update_missing_item(self, manager, make_item):
        cart = await manager.set_active_cart("store-1")

        with pytest.raises(CartConflictError) as exc_info:
            await manager.update_item(cart.id, make_item())

        assert exc_info.value.reason == ERROR_ITEM_NOT_FOUND

    @pytest.mark.asyncio
    async def test_remove_item(self, manager, sink, make_item):
        cart = await manager.set_active_cart("store-1")
        item = make_item()
        await manager.add_item(cart.id, item)
        sink.clear()

        result = await manager.remove_item(cart.id, item.id)

        assert result.cart.items == []
        assert [line.id for line in result.removed_items] == [item.id]
        assert sink.calls == [("cart_updated", (cart.id,)), ("item_removed", (item.id, cart.id))]

    @pytest.mark.asyncio
    async def test_remove_missing_item(self, manager):
        cart = await manager.set_active_cart("store-1")

        with pytest.raises(CartConflictError):
            await manager.remove_item(cart.id, "missing")

    @pytest.mark.asyncio
    async def test_inactive_cart_rejects_items(self, manager, make_item):
        cart = await manager.set_active_cart("store-1")
        await manager.update_status(cart.id, CartStatus.CANCELLED)

        with pytest.raises(CartConflictError) as exc_info:
            await manager.add_item(cart.id, make_item())

        assert exc_info.value.reason == ERROR_CART_NOT_ACTIVE

    @pytest.mark.asyncio
    async def test_missing_cart_rejects_items(self, manager, make_item):
        with pytest.raises(CartConflictError) as exc_info:
            await manager.add_item("missing", make_item())

        assert exc_info.value.reason == ERROR_CART_NOT_FOUND


class TestCatalogConflicts:
    """Tests for conflict detection and resolution inside the item pipeline."""

    @pytest.mark.asyncio
    async def test_conflicts_without_resolver_are_persisted_and_reported(self, store, make_item):
        manager = CartManager(CartConfiguration(
            cart_store=store,
            catalog_conflict_detector=StaticConflictDetector({"discontinued"}),
        ))
        cart = await manager.set_active_cart("store-1")

        result = await manager.add_item(cart.id, make_item("discontinued"))

        assert len(result.conflicts) == 1
        assert result.conflicts[0].kind == RemovedFromCatalog()
        assert len((await manager.get_cart(cart.id)).items) == 1

    @pytest.mark.asyncio
    async def test_resolver_accepts_modified_cart(self, store, make_item):
        resolver = DropConflictingItemsResolver({"discontinued"})
        manager = CartManager(CartConfiguration(
            cart_store=store,
            catalog_conflict_detector=StaticConflictDetector({"discontinued"}),
            conflict_resolver=resolver,
        ))
        cart = await manager.set_active_cart("store-1")
        await manager.add_item(cart.id, make_item("burger"))

        result = await manager.add_item(cart.id, make_item("discontinued"))

        assert [line.product_id for line in result.cart.items] == ["burger"]
        assert [conflict.product_id for conflict in result.conflicts] == ["discontinued"]
        assert [line.product_id for line in (await manager.get_cart(cart.id)).items] == ["burger"]
        assert resolver.reasons == [CartConflictError(ERROR_CATALOG_CONFLICTS)]

    @pytest.mark.asyncio
    async def test_resolver_rejection_aborts(self, store, sink, make_item):
        manager = CartManager(CartConfiguration(
            cart_store=store,
            analytics_sink=sink,
            catalog_conflict_detector=StaticConflictDetector({"discontinued"}),
            conflict_resolver=RejectingResolver(),
        ))
        cart = await manager.set_active_cart("store-1")
        stream = manager.observe_events()
        sink.clear()

        with pytest.raises(CartConflictError) as exc_info:
            await manager.add_item(cart.id, make_item("discontinued"))

        assert exc_info.value.reason == "Catalog changed, review your cart"
        assert (await manager.get_cart(cart.id)).items == []
        assert stream.pending() == []
        assert sink.calls == []

    @pytest.mark.asyncio
    async def test_resolver_not_called_without_conflicts(self, store, make_item):
        resolver = DropConflictingItemsResolver(set())
        manager = CartManager(CartConfiguration(
            cart_store=store,
            catalog_conflict_detector=StaticConflictDetector(set()),
            conflict_resolver=resolver,
        ))
        cart = await manager.set_active_cart("store-1")

        await manager.add_item(cart.id, make_item())

        assert resolver.reasons == []

    def test_price_changed_kind(self):
        kind = PriceChanged(old=usd("10"), new=usd("12"))

        assert kind.new.amount - kind.old.amount == Decimal("2")


class TestStorageFailures:
    """Tests for store error handling."""

    @pytest.mark.asyncio
    async def test_failed_save_wraps_and_emits_nothing(self, manager, store, sink, make_item):
        cart = await manager.set_active_cart("store-1")
        stream = manager.observe_events()
        sink.clear()
        store.save_cart = AsyncMock(side_effect=RuntimeError("disk full"))

        with pytest.raises(CartStorageError) as exc_info:
            await manager.add_item(cart.id, make_item())

        assert exc_info.value.reason == "disk full"
        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert stream.pending() == []
        assert sink.calls == []

    @pytest.mark.asyncio
    async def test_failed_save_leaves_cart_unchanged(self, manager, store, make_item):
        cart = await manager.set_active_cart("store-1")
        store.save_cart = AsyncMock(side_effect=RuntimeError("disk full"))

        with pytest.raises(CartStorageError):
            await manager.add_item(cart.id, make_item())

        assert (await store.load_cart(cart.id)).items == []

    @pytest.mark.asyncio
    async def test_cart_errors_from_store_propagate_unchanged(self, manager, store):
        error = CartStorageError("quota exceeded")
        store.fetch_carts = AsyncMock(side_effect=error)

        with pytest.raises(CartStorageError) as exc_info:
            await manager.set_active_cart("store-1")

        assert exc_info.value is error


class TestNotificationFailures:
    """Sink and listener failures after a committed write."""

    @pytest.mark.asyncio
    async def test_failing_sink_does_not_fail_operation(self, manager, sink):
        sink.cart_created = Mock(side_effect=RuntimeError("sink down"))
        stream = manager.observe_events()

        cart = await manager.set_active_cart("store-1")

        assert (await manager.get_cart(cart.id)) is not None
        assert sink.names == ["active_cart_changed"]
        assert stream.pending() == [CartCreated(cart.id), ActiveCartChanged("store-1", None, cart.id)]

    @pytest.mark.asyncio
    async def test_listener_receives_events(self, manager):
        received = []
        remove = manager.add_event_listener(received.append)

        cart = await manager.set_active_cart("store-1")
        remove()
        await manager.delete_cart(cart.id)

        assert received == [CartCreated(cart.id), ActiveCartChanged("store-1", None, cart.id)]


class TestReorder:
    """Tests for reorder."""

    @pytest.mark.asyncio
    async def test_reorder_expires_current_active_cart(self, manager, make_item):
        source = await manager.set_active_cart("store-1", "user-1")
        await manager.add_item(source.id, make_item("burger", quantity=2, modifiers=[("cheese", "1.00")]))
        await manager.add_item(source.id, make_item("cola", quantity=1, price="2.00"))
        await manager.update_status(source.id, CartStatus.CHECKED_OUT)
        current = await manager.set_active_cart("store-1", "user-1")
        source = await manager.get_cart(source.id)
        stream = manager.observe_events()

        reordered = await manager.reorder(source.id)

        assert reordered.id not in (source.id, current.id)
        assert reordered.is_active
        assert item_signature(reordered) == item_signature(source)
        assert not {item.id for item in reordered.items} & {item.id for item in source.items}
        assert (await manager.get_cart(current.id)).status is CartStatus.EXPIRED
        assert (await manager.get_cart(source.id)).status is CartStatus.CHECKED_OUT
        assert (await manager.get_active_cart("store-1", "user-1")).id == reordered.id
        assert stream.pending() == [
            CartUpdated(current.id),
            ActiveCartChanged("store-1", "user-1", None),
            CartCreated(reordered.id),
            ActiveCartChanged("store-1", "user-1", reordered.id),
        ]

    @pytest.mark.asyncio
    async def test_reorder_active_source(self, manager, make_item):
        source = await manager.set_active_cart("store-1")
        await manager.add_item(source.id, make_item())

        reordered = await manager.reorder(source.id)

        assert (await manager.get_cart(source.id)).status is CartStatus.EXPIRED
        active = await manager.list_carts("store-1", statuses={CartStatus.ACTIVE})
        assert [cart.id for cart in active] == [reordered.id]

    @pytest.mark.asyncio
    async def test_reorder_keeps_presentation_fields(self, manager):
        source = await manager.set_active_cart("store-1")
        await manager.update_cart_details(source.id, display_name="Friday", metadata={"table": "4"})

        reordered = await manager.reorder(source.id)

        assert reordered.display_name == "Friday"
        assert reordered.metadata == {"table": "4"}
        assert reordered.created_at >= source.created_at

    @pytest.mark.asyncio
    async def test_reorder_missing_source(self, manager):
        with pytest.raises(CartConflictError):
            await manager.reorder("missing")


class TestDuplicateCart:
    """Tests for duplication and templates."""

    @pytest.mark.asyncio
    async def test_template_copy(self, manager, make_item):
        source = await manager.set_active_cart("store-1")
        source = (await manager.add_item(source.id, make_item())).cart
        stream = manager.observe_events()

        template = await manager.duplicate_cart(
            source.id,
            overrides=CartDetailsOverrides(display_name="Usual order", metadata={"kind": "weekly"}),
            as_template=True,
        )

        assert template.status is CartStatus.EXPIRED
        assert template.is_template
        assert template.metadata == {"kind": "weekly", TEMPLATE_METADATA_KEY: "true"}
        assert template.display_name == "Usual order"
        assert template.items[0].id != source.items[0].id
        assert stream.pending() == [CartCreated(template.id)]
        assert (await manager.get_active_cart("store-1")).id == source.id

    @pytest.mark.asyncio
    async def test_active_copy_when_scope_is_free(self, manager, make_item):
        source = await manager.set_active_cart("store-1")
        await manager.add_item(source.id, make_item())
        await manager.update_status(source.id, CartStatus.CANCELLED)

        duplicate = await manager.duplicate_cart(source.id)

        assert duplicate.is_active
        assert not duplicate.is_template
        assert len(duplicate.items) == 1

    @pytest.mark.asyncio
    async def test_active_copy_refused_when_scope_has_active_cart(self, manager):
        source = await manager.set_active_cart("store-1")

        with pytest.raises(CartConflictError) as exc_info:
            await manager.duplicate_cart(source.id)

        assert exc_info.value.reason == ERROR_ACTIVE_CART_EXISTS


class TestGuestMigration:
    """Tests for guest to profile migration."""

    @pytest.mark.asyncio
    async def test_move_keeps_cart_id(self, manager, make_item):
        guest = await manager.set_active_cart("store-1")
        await manager.add_item(guest.id, make_item())
        stream = manager.observe_events()

        migrated = await manager.migrate_guest_active_cart("store-1", "user-1", GuestMigrationStrategy.MOVE)

        assert migrated.id == guest.id
        assert migrated.profile_id == "user-1"
        assert len(migrated.items) == 1
        assert await manager.get_active_cart("store-1") is None
        assert (await manager.get_active_cart("store-1", "user-1")).id == guest.id
        assert stream.pending() == [CartUpdated(guest.id), ActiveCartChanged("store-1", "user-1", guest.id)]

    @pytest.mark.asyncio
    async def test_move_through_redis_store(self, fake_redis, make_item):
        from multicart.cart import RedisCartStore

        manager = CartManager(CartConfiguration(cart_store=RedisCartStore(fake_redis)))
        guest = await manager.set_active_cart("store-1")
        await manager.add_item(guest.id, make_item())

        await manager.migrate_guest_active_cart("store-1", "user-1", "move")

        assert await manager.get_active_cart("store-1") is None
        assert (await manager.get_active_cart("store-1", "user-1")).id == guest.id

    @pytest.mark.asyncio
    @pytest.mark.parametrize("failing_call", ["sadd", "set", "srem"])
    async def test_failed_redis_move_keeps_cart_in_one_scope(self, fake_redis, make_item, failing_call):
        from multicart.cart import RedisCartStore

        manager = CartManager(CartConfiguration(cart_store=RedisCartStore(fake_redis)))
        guest = await manager.set_active_cart("store-1")
        await manager.add_item(guest.id, make_item())
        setattr(fake_redis, failing_call, AsyncMock(side_effect=RuntimeError("network down")))

        with pytest.raises(CartStorageError):
            await manager.migrate_guest_active_cart("store-1", "user-1", "move")

        guest_active = await manager.get_active_cart("store-1")
        profile_active = await manager.get_active_cart("store-1", "user-1")
        assert [cart.id for cart in (guest_active, profile_active) if cart is not None] == [guest.id]
        if failing_call == "srem":
            assert profile_active is not None
        else:
            assert guest_active is not None

    @pytest.mark.asyncio
    async def test_copy_and_delete(self, manager, store, make_item):
        guest = await manager.set_active_cart("store-1")
        await manager.add_item(guest.id, make_item())
        guest = await manager.get_cart(guest.id)
        stream = manager.observe_events()

        migrated = await manager.migrate_guest_active_cart(
            "store-1", "user-1", GuestMigrationStrategy.COPY_AND_DELETE
        )

        assert migrated.id != guest.id
        assert migrated.profile_id == "user-1"
        assert item_signature(migrated) == item_signature(guest)
        assert migrated.items[0].id != guest.items[0].id
        assert await manager.get_cart(guest.id) is None
        assert len(store) == 1
        assert stream.pending() == [
            CartCreated(migrated.id),
            ActiveCartChanged("store-1", "user-1", migrated.id),
            CartDeleted(guest.id),
            ActiveCartChanged("store-1", None, None),
        ]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("strategy", list(GuestMigrationStrategy))
    async def test_profile_with_active_cart_is_refused(self, manager, make_item, strategy):
        guest = await manager.set_active_cart("store-1")
        await manager.add_item(guest.id, make_item())
        profile_cart = await manager.set_active_cart("store-1", "user-1")
        guest_before = await manager.get_cart(guest.id)
        profile_before = await manager.get_cart(profile_cart.id)

        with pytest.raises(CartConflictError) as exc_info:
            await manager.migrate_guest_active_cart("store-1", "user-1", strategy)

        assert exc_info.value.reason == ERROR_ACTIVE_CART_EXISTS
        assert await manager.get_cart(guest.id) == guest_before
        assert await manager.get_cart(profile_cart.id) == profile_before

    @pytest.mark.asyncio
    async def test_no_guest_cart(self, manager):
        with pytest.raises(CartConflictError) as exc_info:
            await manager.migrate_guest_active_cart("store-1", "user-1")

        assert exc_info.value.reason == ERROR_NO_ACTIVE_GUEST_CART


class TestSingleActiveCart:
    """At most one active cart per scope after any sequence of operations."""

    @pytest.mark.asyncio
    async def test_invariant_across_operations(self, manager, make_item):
        async def active_count(profile_id=None):
            carts = await manager.list_carts("store-1", profile_id, statuses={CartStatus.ACTIVE})
            return len(carts)

        guest = await manager.set_active_cart("store-1")
        await manager.add_item(guest.id, make_item())
        assert await active_count() == 1

        reordered = await manager.reorder(guest.id)
        assert await active_count() == 1

        await manager.migrate_guest_active_cart("store-1", "user-1", GuestMigrationStrategy.MOVE)
        assert await active_count() == 0
        assert await active_count("user-1") == 1

        await manager.reorder(reordered.id)
        assert await active_count("user-1") == 1
        assert await active_count() == 0


class TestPricingFacade:
    """Tests for totals and promotions through the manager."""

    @pytest.mark.asyncio
    async def test_missing_cart(self, manager):
        with pytest.raises(CartConflictError):
            await manager.get_totals("missing")

    @pytest.mark.asyncio
    async def test_default_context(self, manager, make_item):
        cart = await manager.set_active_cart("store-1")
        await manager.add_item(cart.id, make_item(quantity=2, price="5.00"))

        totals = await manager.get_totals(cart.id)

        assert totals.grand_total == usd("10")

    @pytest.mark.asyncio
    async def test_promotions_are_opt_in(self, manager, make_item):
        cart = await manager.set_active_cart("store-1")
        await manager.add_item(cart.id, make_item(price="100.00"))

        plain = await manager.get_totals(cart.id)
        discounted = await manager.get_totals(
            cart.id,
            promotions=[PercentageOffCart(Decimal("0.10")), FixedAmountOffCart(usd("5"))],
        )

        assert plain.subtotal == usd("100")
        assert discounted.subtotal == usd("85")

    @pytest.mark.asyncio
    async def test_active_cart_totals(self, manager, make_item):
        context = CartPricingContext(store_id="store-1", profile_id="user-1", delivery_fee=usd("3"))
        assert await manager.get_totals_for_active_cart(context) is None

        cart = await manager.set_active_cart("store-1", "user-1")
        await manager.add_item(cart.id, make_item(price="7.00"))

        totals = await manager.get_totals_for_active_cart(context)

        assert totals.grand_total == usd("10")

    @pytest.mark.asyncio
    async def test_pricing_errors_propagate(self, manager, make_item):
        cart = await manager.set_active_cart("store-1")
        await manager.add_item(cart.id, make_item())
        context = CartPricingContext(store_id="store-1", service_fee=Money(Decimal("1"), "EUR"))

        with pytest.raises(CartPricingFailedError):
            await manager.get_totals(cart.id, context)

    @pytest.mark.asyncio
    async def test_apply_promotions_if_available(self, manager, make_item):
        cart = await manager.set_active_cart("store-1")
        await manager.add_item(cart.id, make_item(price="10.00"))
        totals = await manager.get_totals(cart.id)

        assert await manager.apply_promotions_if_available(None, totals) is totals
        assert (await manager.apply_promotions_if_available([], totals)) == totals


class TestValidateBeforeCheckout:
    """Tests for the read-only checkout verdict."""

    @pytest.mark.asyncio
    async def test_verdict_does_not_change_cart(self, store, make_item):
        manager = CartManager(CartConfiguration(
            cart_store=store,
            validation_engine=DefaultCartValidationEngine(default_max_items=1),
        ))
        cart = await manager.set_active_cart("store-1")
        await manager.add_item(cart.id, make_item(quantity=2))
        before = await manager.get_cart(cart.id)

        result = await manager.validate_before_checkout(cart.id)

        assert not result.is_valid
        assert await manager.get_cart(cart.id) == before

    @pytest.mark.asyncio
    async def test_missing_cart(self, manager):
        with pytest.raises(CartConflictError):
            await manager.validate_before_checkout("missing")
