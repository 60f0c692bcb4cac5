"""MultiCart settings read from the environment."""
import os
from dataclasses import dataclass
from typing import Optional

from multicart.money import DEFAULT_CURRENCY, Money, parse_decimal

# Storage preferences understood by make_cart_store()
STORAGE_MEMORY = "memory"
STORAGE_REDIS = "redis"
STORAGE_AUTOMATIC = "automatic"
STORAGE_PREFERENCES = (STORAGE_MEMORY, STORAGE_REDIS, STORAGE_AUTOMATIC)


@dataclass
class Settings:
    """Runtime configuration for carts and storage."""
    storage: str = STORAGE_AUTOMATIC
    default_currency: str = DEFAULT_CURRENCY
    min_subtotal: Optional[Money] = None
    max_items: Optional[int] = None
    redis_url: str = ""
    redis_token: str = ""

    @property
    def redis_configured(self) -> bool:
        return bool(self.redis_url and self.redis_token)


def _optional_int(name: str) -> Optional[int]:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


def load_settings() -> Settings:
    """
    Build Settings from environment variables.

    Environment:
        MULTICART_STORAGE: memory | redis | automatic (default automatic)
        MULTICART_DEFAULT_CURRENCY: fallback currency code (default USD)
        MULTICART_MIN_SUBTOTAL: default checkout minimum, in default currency
        MULTICART_MAX_ITEMS: default maximum number of units per cart
        UPSTASH_REDIS_REST_URL / UPSTASH_REDIS_REST_TOKEN: Redis store credentials
    """
    storage = os.environ.get("MULTICART_STORAGE", STORAGE_AUTOMATIC).strip().lower()
    if storage not in STORAGE_PREFERENCES:
        raise ValueError(
            f"MULTICART_STORAGE must be one of {STORAGE_PREFERENCES}, got {storage!r}"
        )

    currency = os.environ.get("MULTICART_DEFAULT_CURRENCY", DEFAULT_CURRENCY).strip().upper() or DEFAULT_CURRENCY

    min_subtotal_raw = os.environ.get("MULTICART_MIN_SUBTOTAL", "").strip()
    min_subtotal = None
    if min_subtotal_raw:
        try:
            min_subtotal = Money(parse_decimal(min_subtotal_raw), currency)
        except ValueError:
            raise ValueError(f"MULTICART_MIN_SUBTOTAL must be a decimal amount, got {min_subtotal_raw!r}")

    return Settings(
        storage=storage,
        default_currency=currency,
        min_subtotal=min_subtotal,
        max_items=_optional_int("MULTICART_MAX_ITEMS"),
        redis_url=os.environ.get("UPSTASH_REDIS_REST_URL", ""),
        redis_token=os.environ.get("UPSTASH_REDIS_REST_TOKEN", ""),
    )


# Singleton instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get Settings singleton (read from the environment on first use)."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings() -> None:
    """Drop the cached Settings so the next call re-reads the environment."""
    global _settings
    _settings = None
