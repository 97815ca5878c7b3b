"""
prices.py - Fixed price ladder for liquidity buckets

Bucket prices are quantized to a geometric ladder:

    price(index) = FLOAT_STEP ** index        (WAD scaled)

for index in [MIN_PRICE_INDEX, MAX_PRICE_INDEX]. Any price passed to the
pool must be one of these exact WAD integers.

Ladder prices are derived with Decimal arithmetic (50 digits, banker's
rounding) in a local context and then quantized to integers, so the ladder
is identical on every platform.
"""

from __future__ import annotations
from decimal import Decimal, ROUND_HALF_EVEN, localcontext
from functools import lru_cache
from typing import Optional

from .core import WAD, InvalidPrice


FLOAT_STEP = Decimal("1.005")
MIN_PRICE_INDEX = -3232
MAX_PRICE_INDEX = 4156

_LADDER_PRECISION = 50


@lru_cache(maxsize=None)
def index_to_price(index: int) -> int:
    """
    Return the WAD price of a ladder index.

    Raises:
        InvalidPrice: If the index is outside the ladder.
    """
    if index < MIN_PRICE_INDEX or index > MAX_PRICE_INDEX:
        raise InvalidPrice(
            f"Price index {index} outside [{MIN_PRICE_INDEX}, {MAX_PRICE_INDEX}]"
        )
    with localcontext() as ctx:
        ctx.prec = _LADDER_PRECISION
        ctx.rounding = ROUND_HALF_EVEN
        value = (FLOAT_STEP ** index) * WAD
        return int(value.to_integral_value())


def _nearest_index(price: int) -> int:
    with localcontext() as ctx:
        ctx.prec = _LADDER_PRECISION
        ratio = Decimal(price) / WAD
        raw = ratio.ln() / FLOAT_STEP.ln()
        return int(raw.to_integral_value(rounding=ROUND_HALF_EVEN))


def price_to_index(price: int) -> int:
    """
    Return the ladder index of an exact ladder price.

    Raises:
        InvalidPrice: If the price is not on the ladder.
    """
    if isinstance(price, bool) or not isinstance(price, int) or price <= 0:
        raise InvalidPrice(f"Price must be a positive WAD integer, got {price!r}")
    candidate = _nearest_index(price)
    for index in (candidate, candidate - 1, candidate + 1):
        if MIN_PRICE_INDEX <= index <= MAX_PRICE_INDEX and index_to_price(index) == price:
            return index
    raise InvalidPrice(f"Price {price} is not on the price ladder")


def is_valid_price(price: int) -> bool:
    try:
        price_to_index(price)
    except InvalidPrice:
        return False
    return True


def require_price(price: int) -> int:
    """Validate a bucket price and return it unchanged."""
    price_to_index(price)
    return price


def nearest_price(value: int) -> Optional[int]:
    """
    Return the ladder price closest to an arbitrary WAD value.

    Returns None for non-positive values.
    """
    if value <= 0:
        return None
    index = min(max(_nearest_index(value), MIN_PRICE_INDEX), MAX_PRICE_INDEX)
    return index_to_price(index)

