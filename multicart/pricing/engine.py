"""Cart pricing: context, totals and the default pricing engine."""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator

from multicart.cart.models import Cart, StoreID, UserProfileID
from multicart.errors import CartPricingFailedError, ERROR_MIXED_CURRENCIES
from multicart.money import DEFAULT_CURRENCY, Money, parse_decimal


class CartPricingContext(BaseModel):
    """
    External inputs needed to price a cart.

    Keeps fees, tax and discounts outside the Cart entity.
    """
    model_config = ConfigDict(frozen=True)

    store_id: StoreID
    profile_id: Optional[UserProfileID] = None  # None = guest
    service_fee: Optional[Money] = None
    delivery_fee: Optional[Money] = None
    tax_rate: Decimal = Decimal("0")  # 0.11 = 11% VAT on the subtotal
    manual_discount: Optional[Money] = None  # e.g. promo code; not applied by the default engine

    @field_validator("tax_rate", mode="before")
    @classmethod
    def convert_tax_rate(cls, v):
        rate = parse_decimal(v)
        if rate < 0:
            raise ValueError("tax_rate must be >= 0")
        return rate

    @classmethod
    def plain(cls, store_id: StoreID, profile_id: Optional[UserProfileID] = None) -> "CartPricingContext":
        """No fees, no tax, no discount."""
        return cls(store_id=store_id, profile_id=profile_id)


@dataclass(frozen=True)
class CartTotals:
    """Computed totals, all in one currency."""
    subtotal: Money
    delivery_fee: Money
    service_fee: Money
    tax: Money
    grand_total: Money

    @property
    def currency_code(self) -> str:
        return self.subtotal.currency_code

    def to_dict(self) -> dict:
        return {
            "subtotal": self.subtotal.to_dict(),
            "delivery_fee": self.delivery_fee.to_dict(),
            "service_fee": self.service_fee.to_dict(),
            "tax": self.tax.to_dict(),
            "grand_total": self.grand_total.to_dict(),
        }


class CartPricingEngine(ABC):
    """Computes totals from a cart snapshot and a pricing context."""

    @abstractmethod
    async def compute_totals(self, cart: Cart, context: CartPricingContext) -> CartTotals:
        """Compute totals without mutating `cart`."""


class DefaultCartPricingEngine(CartPricingEngine):
    """
    Simple default pricing:
    - subtotal     = Σ (unit_price + Σ modifier deltas) × quantity
    - tax          = subtotal × context.tax_rate
    - grand_total  = subtotal + tax + service_fee + delivery_fee

    Modifiers are per-unit deltas. Every amount must share one currency;
    anything else raises CartPricingFailedError.
    """

    def __init__(self, default_currency: str = DEFAULT_CURRENCY):
        self.default_currency = default_currency

    def _pick_currency(self, cart: Cart, context: CartPricingContext) -> str:
        if cart.items:
            return cart.items[0].unit_price.currency_code
        for money in (context.service_fee, context.delivery_fee, context.manual_discount):
            if money is not None:
                return money.currency_code
        return self.default_currency

    @staticmethod
    def _require_currency(money: Money, currency: str) -> None:
        if money.currency_code != currency:
            raise CartPricingFailedError(
                f"{ERROR_MIXED_CURRENCIES}: {money.currency_code} vs {currency}"
            )

    async def compute_totals(self, cart: Cart, context: CartPricingContext) -> CartTotals:
        currency = self._pick_currency(cart, context)

        subtotal_amount = Decimal("0")
        for item in cart.items:
            self._require_currency(item.unit_price, currency)
            unit_amount = item.unit_price.amount
            for modifier in item.modifiers:
                self._require_currency(modifier.price_delta, currency)
                unit_amount += modifier.price_delta.amount
            subtotal_amount += unit_amount * item.quantity

        service_fee = context.service_fee or Money.zero(currency)
        delivery_fee = context.delivery_fee or Money.zero(currency)
        self._require_currency(service_fee, currency)
        self._require_currency(delivery_fee, currency)

        subtotal = Money(subtotal_amount, currency)
        tax = Money(subtotal_amount * context.tax_rate, currency)
        grand_total = Money(
            subtotal.amount + tax.amount + service_fee.amount + delivery_fee.amount,
            currency,
        )

        return CartTotals(
            subtotal=subtotal,
            delivery_fee=delivery_fee,
            service_fee=service_fee,
            tax=tax,
            grand_total=grand_total,
        )
