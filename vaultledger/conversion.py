"""
conversion.py - Deposit/Token Conversion

The manager turns a deposited amount into tokens on invest() and tokens back
into a fiat figure on initiate_withdrawal(). Both directions are pure
functions bundled in a Conversion and injected through ManagerConfig.

to_tokens must be injective and monotonic so that distinct deposits never
collapse to the same claim.
"""

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable

from .core import InvalidAmount, as_quantity


@dataclass(frozen=True, slots=True)
class Conversion:
    """
    A pair of pure conversion functions.

    Attributes:
        to_tokens: deposit amount -> token quantity
        to_fiat: token quantity -> fiat amount reported on withdrawal
        name: Label for traces and reprs
    """
    to_tokens: Callable[[Decimal], Decimal]
    to_fiat: Callable[[Decimal], Decimal]
    name: str = "custom"


def _identity(value: Decimal) -> Decimal:
    return value


# One token per unit of deposit.
IDENTITY = Conversion(to_tokens=_identity, to_fiat=_identity, name="identity")


def fixed_price(price_per_token, fee_rate=Decimal("0")) -> Conversion:
    """
    Convert at a fixed price, optionally keeping a fee on deposit.

    tokens = amount * (1 - fee_rate) / price_per_token
    fiat   = tokens * price_per_token

    Args:
        price_per_token: Positive price of one token in deposit currency
        fee_rate: Fraction of each deposit withheld, in [0, 1)

    Raises:
        InvalidAmount: If price is not positive or fee_rate is outside [0, 1)

    Example:
        conv = fixed_price(Decimal("2"), fee_rate=Decimal("0.01"))
        conv.to_tokens(Decimal("100"))   # Decimal("49.5")
    """
    price = as_quantity(price_per_token, "price_per_token")
    fee = Decimal(str(fee_rate)) if isinstance(fee_rate, float) else Decimal(fee_rate)
    if not fee.is_finite() or fee < 0 or fee >= 1:
        raise InvalidAmount(f"fee_rate must be in [0, 1), got {fee_rate}")

    def to_tokens(amount: Decimal) -> Decimal:
        return amount * (Decimal("1") - fee) / price

    def to_fiat(tokens: Decimal) -> Decimal:
        return tokens * price

    return Conversion(to_tokens=to_tokens, to_fiat=to_fiat, name=f"fixed_price({price}, fee={fee})")
