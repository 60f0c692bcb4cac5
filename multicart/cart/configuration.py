"""CartManager wiring: every collaborator is injected here."""
from dataclasses import dataclass, field
from typing import Optional

from multicart.analytics import CartAnalyticsSink, NoOpCartAnalyticsSink
from multicart.cart.storage import CartStore, make_cart_store
from multicart.config import Settings, get_settings
from multicart.conflicts import (
    CartCatalogConflictDetector,
    CartConflictResolver,
    NoOpCartCatalogConflictDetector,
)
from multicart.pricing import (
    CartPricingEngine,
    DefaultCartPricingEngine,
    DefaultPromotionEngine,
    PromotionEngine,
)
from multicart.validation import CartValidationEngine, DefaultCartValidationEngine


@dataclass
class CartConfiguration:
    """
    Collaborators used by CartManager.

    Only `cart_store` is required; every engine defaults to its stock
    implementation and the conflict resolver is optional.
    """
    cart_store: CartStore
    pricing_engine: CartPricingEngine = field(default_factory=DefaultCartPricingEngine)
    promotion_engine: PromotionEngine = field(default_factory=DefaultPromotionEngine)
    validation_engine: CartValidationEngine = field(default_factory=DefaultCartValidationEngine)
    conflict_resolver: Optional[CartConflictResolver] = None
    catalog_conflict_detector: CartCatalogConflictDetector = field(
        default_factory=NoOpCartCatalogConflictDetector
    )
    analytics_sink: CartAnalyticsSink = field(default_factory=NoOpCartAnalyticsSink)

    @classmethod
    def configured(
        cls,
        settings: Optional[Settings] = None,
        cart_store: Optional[CartStore] = None,
        **overrides,
    ) -> "CartConfiguration":
        """
        Build a configuration from Settings.

        Storage comes from make_cart_store() unless `cart_store` is given;
        validation thresholds and the pricing fallback currency come from
        settings. Remaining keyword arguments replace individual
        collaborators (e.g. analytics_sink=LoggingCartAnalyticsSink()).
        """
        settings = settings or get_settings()
        values = {
            "cart_store": cart_store if cart_store is not None else make_cart_store(settings.storage, settings),
            "pricing_engine": DefaultCartPricingEngine(default_currency=settings.default_currency),
            "validation_engine": DefaultCartValidationEngine(
                default_min_subtotal=settings.min_subtotal,
                default_max_items=settings.max_items,
            ),
        }
        values.update(overrides)
        return cls(**values)
