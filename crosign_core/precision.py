"""
Amount precision helpers for crosign.

Crypto.org Chain amounts travel on the wire as integer strings of the
base denomination:

    1 CRO = 100,000,000 basecro (smallest indivisible unit)

Display values are handled as ``Decimal`` so that no float rounding can
reach a signed payload.
"""

from __future__ import annotations

from decimal import Decimal, Inexact, InvalidOperation, localcontext
from typing import Union

from crosign_core.config import MAINNET, ChainConfig
from crosign_core.errors import InputError

Number = Union[Decimal, int, str]


def to_base_units(value: Number, chain: ChainConfig = MAINNET) -> int:
    """Convert a display amount (``"1.5"`` CRO) to base units (150000000).

    >>> to_base_units("0.00000001")
    1
    """
    if isinstance(value, float):
        raise InputError("float amounts are not accepted; pass a str or Decimal")
    try:
        dec = Decimal(value)
    except (InvalidOperation, ValueError) as exc:
        raise InputError(f"invalid amount {value!r}") from exc
    if not dec.is_finite() or dec < 0:
        raise InputError(f"invalid amount {value!r}")
    with localcontext() as ctx:
        ctx.prec = max(len(dec.as_tuple().digits) + chain.decimals, 28)
        ctx.traps[Inexact] = True
        try:
            scaled = dec * chain.base_per_unit
        except Inexact as exc:
            raise InputError(f"amount {value!r} cannot be represented exactly") from exc
    if scaled != scaled.to_integral_value():
        raise InputError(
            f"amount {value!r} has more than {chain.decimals} decimal places"
        )
    return int(scaled)


def from_base_units(amount: int, chain: ChainConfig = MAINNET) -> Decimal:
    """Convert base units back to a display ``Decimal``."""
    return Decimal(amount).scaleb(-chain.decimals)


def format_amount(amount: int, chain: ChainConfig = MAINNET) -> str:
    """Human-readable string with the chain's full precision."""
    value = from_base_units(amount, chain)
    return f"{value:.{chain.decimals}f} {chain.display_denom.upper()}"
