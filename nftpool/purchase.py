"""
purchase.py - Buying quote token with NFT collateral

A bidder sells NFTs from their own deposited collateral into one bucket
in exchange for quote liquidity at that bucket's price. The supplied token
id order is significant: ids are consumed first-in first-out until their
value at the bucket price covers the amount, and any ids after that point
are left where they are.

Consumed ids become claimable collateral of the bucket, so the bucket
trades `amount` of deposit for `count * price >= amount` of NFT value and
its exchange rate never falls.
"""

from __future__ import annotations
from typing import List, Tuple

from .core import (
    InvalidTokenOrder, InsufficientCollateralValue, InsufficientCollateral,
    find_duplicates,
)
from .collateral import CollateralLedger
from .buckets import BucketLedger
from .borrower import BorrowerPositionEngine


def select_fifo(token_ids: List[int], price: int, amount: int) -> Tuple[int, ...]:
    """
    Take ids in the supplied order until their value at `price` covers `amount`.

    PURE FUNCTION - All inputs explicit.

    Example:
        select_fifo([5, 7, 2], price=60, amount=100) -> (5, 7)

    Raises:
        InsufficientCollateralValue: If all ids together are worth less than amount.
    """
    selected = []
    for token_id in token_ids:
        if len(selected) * price >= amount:
            break
        selected.append(token_id)
    if len(selected) * price < amount:
        raise InsufficientCollateralValue(
            f"{len(token_ids)} NFTs at price {price} are worth "
            f"{len(token_ids) * price}, less than {amount}"
        )
    return tuple(selected)


class PurchaseEngine:

    def __init__(
        self,
        collateral: CollateralLedger,
        buckets: BucketLedger,
        positions: BorrowerPositionEngine,
    ):
        self.collateral = collateral
        self.buckets = buckets
        self.positions = positions

    def plan_purchase(
        self,
        bidder: str,
        amount: int,
        price: int,
        token_ids: List[int],
        inflator: int,
    ) -> Tuple[int, ...]:
        """
        Validate a purchase and return the ids it would consume.

        Checks run in this order, and the first failure wins:
            1. the bucket can supply `amount`
            2. every id is unique and deposited by the bidder
            3. the ids cover `amount` at `price`
            4. the bidder's remaining collateral still covers their debt

        Raises:
            InvalidPrice, PriceBucketEmpty, InsufficientLiquidity,
            InvalidTokenOrder, InsufficientCollateralValue, InsufficientCollateral
        """
        self.buckets.check_source_liquidity(price, amount)

        duplicates = find_duplicates(token_ids)
        if duplicates:
            raise InvalidTokenOrder(f"Token ids repeated in purchase: {sorted(duplicates)}")
        owned = set(self.collateral.deposited(bidder))
        foreign = [t for t in token_ids if t not in owned]
        if foreign:
            raise InvalidTokenOrder(f"Token ids not deposited by {bidder}: {foreign}")

        consumed = select_fifo(token_ids, price, amount)
        self.positions.check_collateral_release(
            bidder, len(consumed), inflator, InsufficientCollateral
        )
        return consumed

    def purchase_bid(
        self,
        bidder: str,
        amount: int,
        price: int,
        token_ids: List[int],
        inflator: int,
    ) -> Tuple[int, ...]:
        """
        Exchange deposited NFTs for quote liquidity at one bucket.

        The quote transfer to the bidder is the caller's concern.

        Returns:
            The consumed token ids, in the supplied order
        """
        consumed = self.plan_purchase(bidder, amount, price, token_ids, inflator)
        self.buckets.source_liquidity(price, amount, inflator)
        self.collateral.move_to_claimable(bidder, list(consumed), price)
        self.positions.touch(bidder, inflator)
        return consumed
