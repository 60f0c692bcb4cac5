"""
Money - exact decimal amount + currency code.

Avoids float precision issues by using Decimal throughout. Arithmetic
between two Money values never converts currencies: mixing codes raises
CurrencyMismatchError.
"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Union

# Fallback currency when nothing in a cart or context carries one
DEFAULT_CURRENCY = "USD"

# Default precision for money display (2 decimal places)
MONEY_PRECISION = Decimal("0.01")

# Precision for integer currencies
INTEGER_PRECISION = Decimal("1")

INTEGER_CURRENCIES = {"JPY", "KRW", "RUB", "UAH"}

CURRENCY_SYMBOLS = {
    "USD": "$",
    "EUR": "€",
    "GBP": "£",
    "RUB": "₽",
    "UAH": "₴",
    "JPY": "¥",
    "KRW": "₩",
}

Numeric = Union[str, int, float, Decimal, None]


class CurrencyMismatchError(ValueError):
    """Two Money values with different currency codes were combined."""

    def __init__(self, left: str, right: str) -> None:
        super().__init__(f"Currency mismatch: {left} vs {right}")
        self.left = left
        self.right = right


def to_decimal(value: Numeric) -> Decimal:
    """
    Convert any value to Decimal safely.

    Args:
        value: Value to convert (str, int, float, Decimal, or None)

    Returns:
        Decimal representation of the value, or Decimal("0") if None/invalid
    """
    if value is None:
        return Decimal("0")

    if isinstance(value, Decimal):
        return value

    try:
        # Go through str so 0.1 stays 0.1
        if isinstance(value, float):
            return Decimal(str(value))
        return Decimal(value)
    except (InvalidOperation, ValueError, TypeError):
        return Decimal("0")


def parse_decimal(value: Numeric) -> Decimal:
    """
    Convert a value to a finite Decimal, raising on bad input.

    Used for configuration values where a silent zero would hide a typo.

    Raises:
        ValueError: value is None, unparsable, NaN or infinite
    """
    if value is None:
        raise ValueError("Expected a decimal number, got None")
    try:
        decimal_value = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError, TypeError) as e:
        raise ValueError(f"Invalid decimal number: {value!r}") from e
    if not decimal_value.is_finite():
        raise ValueError(f"Invalid decimal number: {value!r}")
    return decimal_value


def round_money(value: Numeric, to_int: bool = False) -> Decimal:
    """
    Round monetary value to display precision.

    Args:
        value: Value to round
        to_int: If True, round to integer (JPY, RUB, etc.)

    Returns:
        Rounded Decimal value
    """
    decimal_value = to_decimal(value)
    precision = INTEGER_PRECISION if to_int else MONEY_PRECISION
    return decimal_value.quantize(precision, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class Money:
    """Exact amount in a single currency."""
    amount: Decimal
    currency_code: str = DEFAULT_CURRENCY

    def __post_init__(self):
        # Frozen dataclass: normalise through object.__setattr__
        object.__setattr__(self, "amount", to_decimal(self.amount))
        object.__setattr__(self, "currency_code", self.currency_code.upper())

    @classmethod
    def zero(cls, currency_code: str = DEFAULT_CURRENCY) -> "Money":
        return cls(Decimal("0"), currency_code)

    def _check_currency(self, other: "Money") -> None:
        if other.currency_code != self.currency_code:
            raise CurrencyMismatchError(self.currency_code, other.currency_code)

    def __add__(self, other: "Money") -> "Money":
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other)
        return Money(self.amount + other.amount, self.currency_code)

    def __sub__(self, other: "Money") -> "Money":
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other)
        return Money(self.amount - other.amount, self.currency_code)

    def __mul__(self, factor: Numeric) -> "Money":
        return Money(self.amount * to_decimal(factor), self.currency_code)

    __rmul__ = __mul__

    def clamped(self) -> "Money":
        """Same currency, never below zero."""
        return Money(max(self.amount, Decimal("0")), self.currency_code)

    def rounded(self) -> "Money":
        """Money rounded to the display precision of its currency."""
        to_int = self.currency_code in INTEGER_CURRENCIES
        return Money(round_money(self.amount, to_int=to_int), self.currency_code)

    def to_dict(self) -> dict:
        """Convert to dictionary (amount kept as an exact string)."""
        return {"amount": str(self.amount), "currency_code": self.currency_code}

    @classmethod
    def from_dict(cls, data: dict) -> "Money":
        """Create from dictionary."""
        return cls(to_decimal(data["amount"]), data["currency_code"])


def sum_money(values, currency_code: str) -> Money:
    """Sum Money values in one currency (empty input gives zero)."""
    total = Money.zero(currency_code)
    for value in values:
        total = total + value
    return total


def format_money(value: Union[Money, Numeric], currency: str = DEFAULT_CURRENCY) -> str:
    """
    Format monetary value with currency symbol.

    Args:
        value: Money, or a bare amount interpreted in `currency`
        currency: Currency code used when `value` is not Money

    Returns:
        Formatted string with currency symbol
    """
    if isinstance(value, Money):
        currency = value.currency_code
        decimal_value = value.amount
    else:
        decimal_value = to_decimal(value)

    symbol = CURRENCY_SYMBOLS.get(currency, currency)

    if currency in INTEGER_CURRENCIES:
        formatted = f"{int(round_money(decimal_value, to_int=True)):,}"
    else:
        formatted = f"{round_money(decimal_value):,.2f}"

    if currency in ("USD", "EUR", "GBP"):
        return f"{symbol}{formatted}"
    return f"{formatted} {symbol}"
