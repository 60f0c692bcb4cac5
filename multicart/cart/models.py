"""Cart models with Decimal-based pricing."""
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, NewType, Optional, List, Dict

from pydantic import BaseModel, ConfigDict

from multicart.money import Money, sum_money

if TYPE_CHECKING:
    from multicart.conflicts import CartCatalogConflict


CartID = NewType("CartID", str)
CartItemID = NewType("CartItemID", str)
StoreID = NewType("StoreID", str)
UserProfileID = NewType("UserProfileID", str)

# Metadata marker injected into template copies
TEMPLATE_METADATA_KEY = "multicart.template"


def new_cart_id() -> CartID:
    """Generate a globally unique cart id."""
    return CartID(uuid.uuid4().hex)


def new_item_id() -> CartItemID:
    """Generate a globally unique cart item id."""
    return CartItemID(uuid.uuid4().hex)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_datetime(value) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class CartStatus(str, Enum):
    """
    Cart lifecycle status.

    Flow:
        active -> checked_out | cancelled | expired

    - active: the one mutable cart of its (store, profile) scope
    - checked_out: handed over to checkout (final)
    - cancelled: abandoned by the user (final)
    - expired: superseded by reorder, or stored as a template (final)
    """
    ACTIVE = "active"
    CHECKED_OUT = "checked_out"
    CANCELLED = "cancelled"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self is not CartStatus.ACTIVE


class GuestMigrationStrategy(str, Enum):
    """How an active guest cart is handed to a signed-in profile."""
    MOVE = "move"  # same cart id, re-scoped
    COPY_AND_DELETE = "copy_and_delete"  # new profile cart, guest cart deleted


@dataclass
class CartItemModifier:
    """Per-unit price adjustment (e.g. "extra cheese +1.00")."""
    id: str
    name: str
    price_delta: Money

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "price_delta": self.price_delta.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CartItemModifier":
        return cls(
            id=data["id"],
            name=data["name"],
            price_delta=Money.from_dict(data["price_delta"]),
        )


@dataclass
class CartItem:
    """Single line in a cart. Identity is `id`, not `product_id`."""
    product_id: str
    quantity: int
    unit_price: Money
    id: CartItemID = field(default_factory=new_item_id)
    total_price: Optional[Money] = None
    modifiers: List[CartItemModifier] = field(default_factory=list)
    image_url: Optional[str] = None
    available_stock: Optional[int] = None

    def __post_init__(self):
        if self.total_price is None:
            self.total_price = self.unit_price_with_modifiers * self.quantity

    @property
    def unit_price_with_modifiers(self) -> Money:
        """Unit price plus every modifier delta."""
        return self.unit_price + sum_money(
            (modifier.price_delta for modifier in self.modifiers),
            self.unit_price.currency_code,
        )

    def copy_with_new_id(self) -> "CartItem":
        """Same content under a freshly generated id."""
        return CartItem(
            id=new_item_id(),
            product_id=self.product_id,
            quantity=self.quantity,
            unit_price=self.unit_price,
            total_price=self.total_price,
            modifiers=[
                CartItemModifier(m.id, m.name, m.price_delta) for m in self.modifiers
            ],
            image_url=self.image_url,
            available_stock=self.available_stock,
        )

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "unit_price": self.unit_price.to_dict(),
            "total_price": self.total_price.to_dict(),
            "modifiers": [modifier.to_dict() for modifier in self.modifiers],
            "image_url": self.image_url,
            "available_stock": self.available_stock,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CartItem":
        """Create from dictionary."""
        total = data.get("total_price")
        stock = data.get("available_stock")
        return cls(
            id=CartItemID(data["id"]),
            product_id=data["product_id"],
            quantity=int(data["quantity"]),
            unit_price=Money.from_dict(data["unit_price"]),
            total_price=Money.from_dict(total) if total else None,
            modifiers=[CartItemModifier.from_dict(m) for m in data.get("modifiers", [])],
            image_url=data.get("image_url"),
            available_stock=int(stock) if stock is not None else None,
        )


@dataclass
class Cart:
    """
    Shopping cart scoped to a store and an optional profile.

    `profile_id is None` marks a guest cart. Carts are created and mutated
    through CartManager only.
    """
    id: CartID
    store_id: StoreID
    profile_id: Optional[UserProfileID] = None
    items: List[CartItem] = field(default_factory=list)
    status: CartStatus = CartStatus.ACTIVE
    created_at: datetime = field(default_factory=utc_now)
    updated_at: Optional[datetime] = None
    metadata: Dict[str, str] = field(default_factory=dict)
    display_name: Optional[str] = None
    context: Optional[str] = None
    store_image_url: Optional[str] = None
    min_subtotal: Optional[Money] = None
    max_item_count: Optional[int] = None

    def __post_init__(self):
        self.status = CartStatus(self.status)
        if self.updated_at is None:
            self.updated_at = self.created_at

    @property
    def is_guest(self) -> bool:
        return self.profile_id is None

    @property
    def is_active(self) -> bool:
        return self.status is CartStatus.ACTIVE

    @property
    def is_template(self) -> bool:
        return self.metadata.get(TEMPLATE_METADATA_KEY) == "true"

    @property
    def total_items(self) -> int:
        """Total number of units in the cart."""
        return sum(item.quantity for item in self.items)

    def find_item_index(self, item_id: str) -> Optional[int]:
        """Index of the item with the given id, or None."""
        return next(
            (index for index, item in enumerate(self.items) if item.id == item_id),
            None,
        )

    def to_dict(self) -> dict:
        """Convert to dictionary for Redis storage."""
        return {
            "id": self.id,
            "store_id": self.store_id,
            "profile_id": self.profile_id,
            "items": [item.to_dict() for item in self.items],
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "metadata": dict(self.metadata),
            "display_name": self.display_name,
            "context": self.context,
            "store_image_url": self.store_image_url,
            "min_subtotal": self.min_subtotal.to_dict() if self.min_subtotal else None,
            "max_item_count": self.max_item_count,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Cart":
        """Create from dictionary."""
        min_subtotal = data.get("min_subtotal")
        max_items = data.get("max_item_count")
        profile_id = data.get("profile_id")
        return cls(
            id=CartID(data["id"]),
            store_id=StoreID(data["store_id"]),
            profile_id=UserProfileID(profile_id) if profile_id is not None else None,
            items=[CartItem.from_dict(item) for item in data.get("items", [])],
            status=CartStatus(data["status"]),
            created_at=_parse_datetime(data["created_at"]),
            updated_at=_parse_datetime(data["updated_at"]),
            metadata=dict(data.get("metadata") or {}),
            display_name=data.get("display_name"),
            context=data.get("context"),
            store_image_url=data.get("store_image_url"),
            min_subtotal=Money.from_dict(min_subtotal) if min_subtotal else None,
            max_item_count=int(max_items) if max_items is not None else None,
        )


class CartDetailsOverrides(BaseModel):
    """Presentation fields to overwrite on a cart; None keeps the current value."""
    model_config = ConfigDict(frozen=True)

    display_name: Optional[str] = None
    context: Optional[str] = None
    metadata: Optional[Dict[str, str]] = None
    store_image_url: Optional[str] = None
    min_subtotal: Optional[Money] = None
    max_item_count: Optional[int] = None

    def apply_to(self, cart: Cart) -> None:
        """Overwrite the supplied fields on `cart` in place."""
        if self.display_name is not None:
            cart.display_name = self.display_name
        if self.context is not None:
            cart.context = self.context
        if self.metadata is not None:
            cart.metadata = dict(self.metadata)
        if self.store_image_url is not None:
            cart.store_image_url = self.store_image_url
        if self.min_subtotal is not None:
            cart.min_subtotal = self.min_subtotal
        if self.max_item_count is not None:
            cart.max_item_count = self.max_item_count


@dataclass
class CartUpdateResult:
    """Observable outcome of an item mutation."""
    cart: Cart
    removed_items: List[CartItem] = field(default_factory=list)
    changed_items: List[CartItem] = field(default_factory=list)
    conflicts: List["CartCatalogConflict"] = field(default_factory=list)
