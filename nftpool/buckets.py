"""
buckets.py - Price-ordered liquidity buckets

Each bucket sits at one ladder price and holds:
    deposit            quote liquidity available to borrowers and bidders (WAD)
    debt               quote lent out from the bucket, grown by the inflator (WAD)
    claimable NFTs     kept in the CollateralLedger under the bucket's price
    LP shares          per-lender balances and their total (RAY)

Bucket value and exchange rate:
    value          = deposit + debt + claimable_count * price
    exchange_rate  = value / lp_total                    (RAY)

Rounding always favors the bucket: LP minted rounds down, LP burned rounds
up, and bucket debt is rescaled with floor rounding.

Mutations come in two steps. preview_* / plan_* methods validate a request
and compute its effect without touching state; the matching mutators apply
it. The pool facade previews every step of an operation before applying
any of them.
"""

from __future__ import annotations
from bisect import bisect_left, insort
from dataclasses import dataclass, field
from typing import Dict, List, NamedTuple, Optional, Tuple

from .core import (
    RAY, LPBalances,
    wad_to_ray, ceil_div,
    InsufficientLiquidity, InsufficientLPBalance, PriceBucketEmpty,
)
from .collateral import CollateralLedger
from .interest import scale_bucket_debt
from .prices import require_price


@dataclass(slots=True)
class Bucket:
    price: int
    deposit: int = 0
    debt: int = 0
    inflator_snapshot: int = RAY
    lp_total: int = 0
    lp_balances: LPBalances = field(default_factory=dict)

    def copy(self) -> Bucket:
        return Bucket(
            price=self.price,
            deposit=self.deposit,
            debt=self.debt,
            inflator_snapshot=self.inflator_snapshot,
            lp_total=self.lp_total,
            lp_balances=dict(self.lp_balances),
        )


class BucketInfo(NamedTuple):
    price: int
    deposit: int
    debt: int
    lp_total: int
    claimable_ids: Tuple[int, ...]
    exchange_rate: Optional[int]


# A draw or repayment split across buckets: ((price, amount), ...)
LiquidityPlan = Tuple[Tuple[int, int], ...]


class BucketLedger:
    """
    Liquidity buckets keyed by ladder price.

    The ledger shares the CollateralLedger with the rest of the pool so the
    claimable side of bucket value has a single owner.
    """

    def __init__(self, collateral: CollateralLedger):
        self.collateral = collateral
        self._buckets: Dict[int, Bucket] = {}
        self._prices: List[int] = []  # ascending

    # ========================================================================
    # READS
    # ========================================================================

    def get(self, price: int) -> Optional[Bucket]:
        return self._buckets.get(price)

    def prices(self) -> Tuple[int, ...]:
        """Prices of existing buckets, highest first."""
        return tuple(reversed(self._prices))

    def _debt(self, bucket: Bucket, inflator: int) -> int:
        return scale_bucket_debt(bucket.debt, bucket.inflator_snapshot, inflator)

    def _value(self, bucket: Bucket, inflator: int) -> int:
        claimable = self.collateral.claimable_count(bucket.price) * bucket.price
        return bucket.deposit + self._debt(bucket, inflator) + claimable

    def bucket_value(self, price: int, inflator: int) -> int:
        bucket = self._buckets.get(price)
        if bucket is None:
            return 0
        return self._value(bucket, inflator)

    def exchange_rate(self, price: int, inflator: int) -> int:
        """
        Quote value of one LP share at a bucket (RAY).

        Raises:
            PriceBucketEmpty: If the bucket has no outstanding shares.
        """
        bucket = self._require_shares(price)
        return wad_to_ray(self._value(bucket, inflator)) * RAY // bucket.lp_total

    def lp_balance(self, lender: str, price: int) -> int:
        bucket = self._buckets.get(price)
        if bucket is None:
            return 0
        return bucket.lp_balances.get(lender, 0)

    def bucket_info(self, price: int, inflator: int) -> BucketInfo:
        bucket = self._buckets.get(price) or Bucket(price=price)
        rate = self.exchange_rate(price, inflator) if bucket.lp_total else None
        return BucketInfo(
            price=price,
            deposit=bucket.deposit,
            debt=self._debt(bucket, inflator),
            lp_total=bucket.lp_total,
            claimable_ids=self.collateral.claimable(price),
            exchange_rate=rate,
        )

    def bucket_debt(self, price: int, inflator: int) -> int:
        bucket = self._buckets.get(price)
        if bucket is None:
            return 0
        return self._debt(bucket, inflator)

    def total_deposit(self) -> int:
        return sum(b.deposit for b in self._buckets.values())

    def total_debt(self, inflator: int) -> int:
        return sum(self._debt(b, inflator) for b in self._buckets.values())

    def lup(self, inflator: int) -> Optional[int]:
        """Lowest utilized price: the lowest bucket price still carrying debt."""
        for price in self._prices:
            if self._debt(self._buckets[price], inflator) > 0:
                return price
        return None

    def _require_shares(self, price: int) -> Bucket:
        bucket = self._buckets.get(price)
        if bucket is None or bucket.lp_total == 0:
            raise PriceBucketEmpty(f"No LP shares outstanding at price {price}")
        return bucket

    # ========================================================================
    # LENDER LIQUIDITY
    # ========================================================================

    def preview_deposit(self, price: int, amount: int, inflator: int) -> int:
        """
        LP shares a deposit would mint.

        Raises:
            InvalidPrice: If the price is not on the ladder.
            ValueError: If the amount is too small to mint a share.
        """
        require_price(price)
        bucket = self._buckets.get(price)
        if bucket is None or bucket.lp_total == 0:
            return wad_to_ray(amount)
        value = self._value(bucket, inflator)
        if value == 0:
            return wad_to_ray(amount)
        minted = amount * bucket.lp_total // value
        if minted == 0:
            raise ValueError(f"Deposit of {amount} at {price} mints no LP shares")
        return minted

    def deposit(self, lender: str, price: int, amount: int, inflator: int) -> int:
        """Add quote liquidity to a bucket and mint LP shares to the lender."""
        minted = self.preview_deposit(price, amount, inflator)
        bucket = self._get_or_create(price)
        self._sync(bucket, inflator)
        bucket.deposit += amount
        bucket.lp_total += minted
        bucket.lp_balances[lender] = bucket.lp_balances.get(lender, 0) + minted
        return minted

    def preview_withdraw(self, lender: str, price: int, amount: int, inflator: int) -> int:
        """
        LP shares a withdrawal would burn (rounded up).

        Raises:
            InvalidPrice, PriceBucketEmpty, InsufficientLiquidity, InsufficientLPBalance
        """
        require_price(price)
        bucket = self._require_shares(price)
        if amount > bucket.deposit:
            raise InsufficientLiquidity(
                f"Bucket {price} holds {bucket.deposit}, cannot withdraw {amount}"
            )
        burned = ceil_div(amount * bucket.lp_total, self._value(bucket, inflator))
        self._require_lp(bucket, lender, burned)
        return burned

    def withdraw(self, lender: str, price: int, amount: int, inflator: int) -> int:
        """Remove quote liquidity from a bucket, burning the lender's LP shares."""
        burned = self.preview_withdraw(lender, price, amount, inflator)
        bucket = self._buckets[price]
        self._sync(bucket, inflator)
        bucket.deposit -= amount
        self._burn(bucket, lender, burned)
        self._prune(bucket)
        return burned

    # ========================================================================
    # PURCHASE AND CLAIM
    # ========================================================================

    def check_source_liquidity(self, price: int, amount: int) -> None:
        """
        Raises:
            InvalidPrice, PriceBucketEmpty, InsufficientLiquidity
        """
        require_price(price)
        bucket = self._require_shares(price)
        if bucket.deposit < amount:
            raise InsufficientLiquidity(
                f"Bucket {price} holds {bucket.deposit}, cannot supply {amount}"
            )

    def source_liquidity(self, price: int, amount: int, inflator: int) -> int:
        """
        Draw the full amount of quote liquidity from one bucket.

        There is no partial fill: either the whole amount is drawn or the
        call fails.

        Returns:
            The amount drawn
        """
        self.check_source_liquidity(price, amount)
        bucket = self._buckets[price]
        self._sync(bucket, inflator)
        bucket.deposit -= amount
        return amount

    def preview_claim(self, claimant: str, price: int, token_ids: List[int], inflator: int) -> int:
        """
        LP shares a claim of `token_ids` at `price` would burn.

        lp_burned = ceil(count * price * lp_total / value)

        Raises:
            InvalidPrice, PriceBucketEmpty, TokenNotClaimable, InsufficientLPBalance
        """
        require_price(price)
        bucket = self._require_shares(price)
        self.collateral.check_claimable(price, token_ids)
        value = self._value(bucket, inflator)
        burned = ceil_div(len(token_ids) * price * bucket.lp_total, value)
        self._require_lp(bucket, claimant, burned)
        return burned

    def claim_collateral(self, claimant: str, price: int, token_ids: List[int], inflator: int) -> int:
        """
        Redeem claimable NFTs for LP shares.

        Returns:
            LP shares burned from the claimant
        """
        burned = self.preview_claim(claimant, price, token_ids, inflator)
        bucket = self._buckets[price]
        self._sync(bucket, inflator)
        self._burn(bucket, claimant, burned)
        self.collateral.claim(price, token_ids)
        self._prune(bucket)
        return burned

    # ========================================================================
    # BORROWER LIQUIDITY
    # ========================================================================

    def plan_draw(self, amount: int, inflator: int) -> LiquidityPlan:
        """
        Split a loan across buckets, highest price first.

        Raises:
            InsufficientLiquidity: If all buckets together hold less than amount.
        """
        remaining = amount
        plan = []
        for price in reversed(self._prices):
            if remaining == 0:
                break
            take = min(self._buckets[price].deposit, remaining)
            if take > 0:
                plan.append((price, take))
                remaining -= take
        if remaining > 0:
            raise InsufficientLiquidity(
                f"Pool holds {amount - remaining} of deposits, cannot lend {amount}"
            )
        return tuple(plan)

    def lup_after_draw(self, plan: LiquidityPlan, inflator: int) -> int:
        drawn = [price for price, _ in plan]
        current = self.lup(inflator)
        if current is not None:
            drawn.append(current)
        return min(drawn)

    def apply_draw(self, plan: LiquidityPlan, inflator: int) -> None:
        for price, take in plan:
            bucket = self._buckets[price]
            self._sync(bucket, inflator)
            bucket.deposit -= take
            bucket.debt += take

    def plan_repay(self, amount: int, inflator: int) -> Tuple[LiquidityPlan, int]:
        """
        Split a repayment across debt-carrying buckets, lowest price first.

        Returns:
            (plan, surplus) where surplus is the part no bucket is owed
        """
        remaining = amount
        plan = []
        for price in self._prices:
            if remaining == 0:
                break
            pay = min(self._debt(self._buckets[price], inflator), remaining)
            if pay > 0:
                plan.append((price, pay))
                remaining -= pay
        return tuple(plan), remaining

    def apply_repay(self, plan: LiquidityPlan, inflator: int) -> None:
        for price, pay in plan:
            bucket = self._buckets[price]
            self._sync(bucket, inflator)
            bucket.debt -= pay
            bucket.deposit += pay

    def settle_debt(self, price: int, amount: int, inflator: int) -> None:
        """Write down bucket debt covered by collateral moved into the bucket."""
        bucket = self._buckets[price]
        self._sync(bucket, inflator)
        if amount > bucket.debt:
            raise ValueError(f"Cannot settle {amount} against bucket debt {bucket.debt}")
        bucket.debt -= amount

    def clear_debt(self, inflator: int) -> int:
        """
        Drop rounding dust left as bucket debt once no borrower owes anything.

        Returns:
            The total dust written off
        """
        dust = 0
        for bucket in list(self._buckets.values()):
            self._sync(bucket, inflator)
            dust += bucket.debt
            bucket.debt = 0
            self._prune(bucket)
        return dust

    # ========================================================================
    # INTERNALS
    # ========================================================================

    def _get_or_create(self, price: int) -> Bucket:
        bucket = self._buckets.get(price)
        if bucket is None:
            bucket = Bucket(price=price)
            self._buckets[price] = bucket
            insort(self._prices, price)
        return bucket

    def _sync(self, bucket: Bucket, inflator: int) -> None:
        bucket.debt = self._debt(bucket, inflator)
        bucket.inflator_snapshot = inflator

    @staticmethod
    def _require_lp(bucket: Bucket, lender: str, amount: int) -> None:
        balance = bucket.lp_balances.get(lender, 0)
        if balance < amount:
            raise InsufficientLPBalance(
                f"{lender} holds {balance} LP at {bucket.price}, needs {amount}"
            )

    @staticmethod
    def _burn(bucket: Bucket, lender: str, amount: int) -> None:
        remaining = bucket.lp_balances[lender] - amount
        if remaining:
            bucket.lp_balances[lender] = remaining
        else:
            del bucket.lp_balances[lender]
        bucket.lp_total -= amount

    def _prune(self, bucket: Bucket) -> None:
        if bucket.lp_total or bucket.deposit or bucket.debt:
            return
        if self.collateral.claimable_count(bucket.price):
            return
        del self._buckets[bucket.price]
        del self._prices[bisect_left(self._prices, bucket.price)]

    # ========================================================================
    # INVARIANTS
    # ========================================================================

    def verify_buckets(self, inflator: int) -> List[str]:
        """Check LP bookkeeping and non-negative balances of every bucket."""
        violations: List[str] = []
        if self._prices != sorted(self._buckets):
            violations.append("price index out of sync with buckets")
        for price, bucket in self._buckets.items():
            if sum(bucket.lp_balances.values()) != bucket.lp_total:
                violations.append(f"bucket {price}: LP balances do not sum to lp_total")
            if any(v <= 0 for v in bucket.lp_balances.values()):
                violations.append(f"bucket {price}: non-positive LP balance kept")
            if bucket.deposit < 0 or bucket.debt < 0:
                violations.append(f"bucket {price}: negative deposit or debt")
            if bucket.lp_total and self._value(bucket, inflator) == 0:
                violations.append(f"bucket {price}: outstanding LP backed by no value")
        return violations

    def copy(self, collateral: CollateralLedger) -> BucketLedger:
        cloned = BucketLedger.__new__(BucketLedger)
        cloned.collateral = collateral
        cloned._buckets = {p: b.copy() for p, b in self._buckets.items()}
        cloned._prices = list(self._prices)
        return cloned
