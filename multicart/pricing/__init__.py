"""Pricing package: pricing context, totals, pricing and promotion engines."""
from .engine import CartPricingContext, CartTotals, CartPricingEngine, DefaultCartPricingEngine
from .promotions import (
    PromotionKind,
    FreeDelivery,
    PercentageOffCart,
    FixedAmountOffCart,
    CustomPromotion,
    PromotionEngine,
    DefaultPromotionEngine,
)

__all__ = [
    "CartPricingContext",
    "CartTotals",
    "CartPricingEngine",
    "DefaultCartPricingEngine",
    "PromotionKind",
    "FreeDelivery",
    "PercentageOffCart",
    "FixedAmountOffCart",
    "CustomPromotion",
    "PromotionEngine",
    "DefaultPromotionEngine",
]
