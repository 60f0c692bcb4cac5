"""Promotions: kinds and the default promotion engine."""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Union

from multicart.errors import CartPricingFailedError, ERROR_MIXED_CURRENCIES
from multicart.money import Money, to_decimal
from multicart.pricing.engine import CartTotals


# ============================================
# Promotion kinds
# ============================================

@dataclass(frozen=True)
class FreeDelivery:
    """Delivery fee becomes zero."""


@dataclass(frozen=True)
class PercentageOffCart:
    """Percentage off the subtotal (0.10 = 10% off)."""
    rate: Decimal

    def __post_init__(self):
        object.__setattr__(self, "rate", to_decimal(self.rate))


@dataclass(frozen=True)
class FixedAmountOffCart:
    """Fixed amount off the subtotal."""
    amount: Money


@dataclass(frozen=True)
class CustomPromotion:
    """App-specific rule (e.g. "FREE_SERVICE_FEE"); ignored by the default engine."""
    kind: str
    value: Decimal = Decimal("0")

    def __post_init__(self):
        object.__setattr__(self, "value", to_decimal(self.value))


PromotionKind = Union[FreeDelivery, PercentageOffCart, FixedAmountOffCart, CustomPromotion]


# ============================================
# Port
# ============================================

class PromotionEngine(ABC):
    """Adjusts computed totals according to promotion directives."""

    @abstractmethod
    async def apply_promotions(self, promotions: List[PromotionKind], totals: CartTotals) -> CartTotals:
        """Return new totals with `promotions` applied to `totals`."""


# ============================================
# Default implementation
# ============================================

class DefaultPromotionEngine(PromotionEngine):
    """
    Stateless cart-level promotions on top of existing totals.

    Calculation order:
    1. FreeDelivery zeroes the delivery fee
    2. All PercentageOffCart rates are summed and applied once to the
       subtotal (0.10 + 0.05 = 15% off, not compounded)
    3. All positive FixedAmountOffCart amounts are summed and subtracted
       once; zero and negative amounts are ignored
    4. grand_total = subtotal + delivery_fee + service_fee + tax

    The subtotal is clamped at zero after steps 2 and 3.
    """

    async def apply_promotions(self, promotions: List[PromotionKind], totals: CartTotals) -> CartTotals:
        if not promotions:
            return totals

        currency = totals.currency_code
        subtotal = totals.subtotal
        delivery_fee = totals.delivery_fee

        if any(isinstance(promotion, FreeDelivery) for promotion in promotions):
            delivery_fee = Money.zero(currency)

        total_rate = sum(
            (p.rate for p in promotions if isinstance(p, PercentageOffCart)),
            Decimal("0"),
        )
        if total_rate > 0:
            discounted = subtotal.amount - subtotal.amount * total_rate
            subtotal = Money(max(discounted, Decimal("0")), currency)

        total_fixed = Decimal("0")
        for promotion in promotions:
            if not isinstance(promotion, FixedAmountOffCart):
                continue
            if promotion.amount.amount <= 0:
                continue
            if promotion.amount.currency_code != currency:
                raise CartPricingFailedError(
                    f"{ERROR_MIXED_CURRENCIES}: {promotion.amount.currency_code} vs {currency}"
                )
            total_fixed += promotion.amount.amount

        if total_fixed > 0:
            subtotal = Money(max(subtotal.amount - total_fixed, Decimal("0")), currency)

        grand_total = Money(
            subtotal.amount + delivery_fee.amount + totals.service_fee.amount + totals.tax.amount,
            currency,
        )

        return CartTotals(
            subtotal=subtotal,
            delivery_fee=delivery_fee,
            service_fee=totals.service_fee,
            tax=totals.tax,
            grand_total=grand_total,
        )
