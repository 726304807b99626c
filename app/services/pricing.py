"""
Pricing - Conversion of on-chain amounts to fiat minor units.

The native-currency rate comes from a pluggable RateSource. The default is a
fixed configured rate, not a live feed. Allowlisted tokens are treated as
pegged 1:1 to USD.
"""

from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal, localcontext
from typing import Protocol

from app.config import Settings
from app.exceptions import UnsupportedTokenError

# uint256 * rate needs far more than the default 28 digits
_PRECISION = 100


class RateSource(Protocol):
    """Source of the native-currency price in USD cents per whole unit."""

    def native_usd_cents(self) -> Decimal:
        ...


@dataclass(frozen=True)
class FixedRateSource:
    """Constant native-currency price."""

    usd_cents_per_unit: Decimal

    def __post_init__(self) -> None:
        if self.usd_cents_per_unit <= 0:
            raise ValueError(f"Rate must be positive: {self.usd_cents_per_unit}")

    def native_usd_cents(self) -> Decimal:
        return self.usd_cents_per_unit


@dataclass(frozen=True)
class ReconcilerConfig:
    """Acceptance policy handed to the reconciler at construction."""

    accepted_tokens: frozenset[str]
    rate_source: RateSource
    native_token: str = "0xEeeeeEeeeEeEeeEeEeEeeEEEeeeeEeeeeeeeEEeE"
    native_decimals: int = 18
    token_decimals: int = 18

    def __post_init__(self) -> None:
        # Addresses arrive checksummed from the chain; compare lower-cased
        object.__setattr__(
            self, "accepted_tokens", frozenset(t.lower() for t in self.accepted_tokens)
        )
        object.__setattr__(self, "native_token", self.native_token.lower())

    def is_native(self, token: str) -> bool:
        return token.lower() == self.native_token

    def is_accepted(self, token: str) -> bool:
        return self.is_native(token) or token.lower() in self.accepted_tokens


def reconciler_config_from_settings(settings: Settings) -> ReconcilerConfig:
    """Build the reconciler policy from application settings."""
    return ReconcilerConfig(
        accepted_tokens=settings.accepted_tokens,
        rate_source=FixedRateSource(Decimal(settings.native_usd_cent_rate)),
        native_token=settings.native_token_sentinel,
        native_decimals=settings.native_decimals,
        token_decimals=settings.token_decimals,
    )


def to_fiat_cents(amount: int, token: str, config: ReconcilerConfig) -> Decimal:
    """
    Convert a smallest-unit transfer amount to exact USD cents.

    Raises:
        UnsupportedTokenError: token is neither native nor allowlisted
    """
    if amount < 0:
        raise ValueError(f"Amount cannot be negative: {amount}")

    with localcontext() as ctx:
        ctx.prec = _PRECISION
        if config.is_native(token):
            whole_units = Decimal(amount) / (Decimal(10) ** config.native_decimals)
            return whole_units * config.rate_source.native_usd_cents()

        if token.lower() not in config.accepted_tokens:
            raise UnsupportedTokenError(token)

        whole_units = Decimal(amount) / (Decimal(10) ** config.token_decimals)
        return whole_units * 100


def whole_cents(fiat_cents: Decimal) -> int:
    """Round a fiat value down to whole cents for storage."""
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        return int(fiat_cents.to_integral_value(rounding=ROUND_DOWN))


def _ceil_div(numerator: int, denominator: int) -> int:
    return -(-numerator // denominator)


def quote_native_amount(price_cents: int, config: ReconcilerConfig) -> int:
    """Smallest native amount whose fiat value is at least price_cents."""
    # rate may be fractional; work on its exact integer ratio
    numerator, denominator = config.rate_source.native_usd_cents().as_integer_ratio()
    return _ceil_div(price_cents * 10**config.native_decimals * denominator, numerator)


def quote_token_amount(price_cents: int, config: ReconcilerConfig) -> int:
    """Smallest allowlisted-token amount whose fiat value is at least price_cents."""
    return _ceil_div(price_cents * 10**config.token_decimals, 100)
