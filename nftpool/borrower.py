"""
borrower.py - Borrower positions: debt, collateral and collateralization

A borrower's deposited token ids live in the CollateralLedger; the engine
keeps only the debt side:

    Borrower(debt, inflator_snapshot)

Every read or write of a debt first rescales it to the current pool
inflator (interest.sync_borrower_debt) and stores the rescaled debt
together with the new snapshot.

Collateralization is measured at the lowest utilized price (LUP):

    collateralization = deposited_count * lup / debt      (WAD)

A borrower without debt reports INFINITE_COLLATERALIZATION; a borrower with
debt but no LUP to value collateral at reports 0.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, List, NamedTuple, Optional, Tuple, Type

from .core import (
    RAY, WAD, INFINITE_COLLATERALIZATION,
    wdiv, ceil_div,
    PoolError, UndercollateralizedAction, InsufficientCollateral,
    BorrowLimitReached, NoDebt, BorrowerNotLiquidatable,
)
from .config import PoolConfig
from .collateral import CollateralLedger
from .buckets import BucketLedger, LiquidityPlan
from .interest import sync_borrower_debt, calculate_pending_interest


@dataclass(frozen=True, slots=True)
class Borrower:
    debt: int = 0                # WAD, as of inflator_snapshot
    inflator_snapshot: int = RAY


class BorrowerInfo(NamedTuple):
    debt: int
    pending_debt: int
    collateral_ids: Tuple[int, ...]
    encumbered_collateral: int
    collateralization: int
    borrower_inflator: int
    pool_inflator: int


@dataclass(frozen=True, slots=True)
class RepayPlan:
    amount: int             # debt repaid by the borrower
    buckets: LiquidityPlan  # what each bucket gets back
    surplus: int            # left with the pool as reserves


@dataclass(frozen=True, slots=True)
class LiquidationPlan:
    settled: int
    token_ids: Tuple[int, ...]
    steps: Tuple[Tuple[int, int, int], ...]  # (token_id, price, credited)
    settlements: Tuple[Tuple[int, int], ...]  # (price, debt written off), ascending


# ============================================================================
# PURE FUNCTIONS
# ============================================================================

def calculate_collateralization(collateral_count: int, debt: int, lup: Optional[int]) -> int:
    """Collateral value at the LUP divided by debt (WAD)."""
    if debt == 0:
        return INFINITE_COLLATERALIZATION
    if lup is None:
        return 0
    return wdiv(collateral_count * lup, debt)


def calculate_encumbered_collateral(debt: int, lup: Optional[int]) -> int:
    """Number of NFTs (WAD) needed to cover a debt at the LUP, rounded up."""
    if debt == 0 or lup is None:
        return 0
    return ceil_div(debt * WAD, lup)


class BorrowerPositionEngine:
    """
    Orchestrates borrower debt and collateral over the bucket and
    collateral ledgers.

    Pool debt is tracked beside the borrowers with its own inflator
    snapshot and is rescaled with the same rule.
    """

    def __init__(self, config: PoolConfig, collateral: CollateralLedger, buckets: BucketLedger):
        self.config = config
        self.collateral = collateral
        self.buckets = buckets
        self._borrowers: Dict[str, Borrower] = {}
        self._pool_debt: int = 0
        self._pool_snapshot: int = RAY

    # ========================================================================
    # READS
    # ========================================================================

    def borrowers(self) -> Tuple[str, ...]:
        return tuple(self._borrowers)

    def get(self, borrower: str) -> Optional[Borrower]:
        return self._borrowers.get(borrower)

    def _synced(self, borrower: str, inflator: int) -> Borrower:
        record = self._borrowers.get(borrower)
        if record is None:
            return Borrower(debt=0, inflator_snapshot=inflator)
        debt = sync_borrower_debt(record.debt, record.inflator_snapshot, inflator)
        return Borrower(debt=debt, inflator_snapshot=inflator)

    def debt(self, borrower: str, inflator: int) -> int:
        return self._synced(borrower, inflator).debt

    def pool_debt(self, inflator: int) -> int:
        return sync_borrower_debt(self._pool_debt, self._pool_snapshot, inflator)

    def get_borrower_info(self, borrower: str, inflator: int) -> BorrowerInfo:
        """
        Read-only view of a borrower's position.

        `debt` is the debt as last recorded; `pending_debt` is the interest
        accrued on it since its snapshot. Collateralization and encumbrance
        are measured on their sum.
        """
        record = self._borrowers.get(borrower)
        if record is None:
            return BorrowerInfo(0, 0, (), 0, INFINITE_COLLATERALIZATION, 0, inflator)
        pending = calculate_pending_interest(record.debt, record.inflator_snapshot, inflator)
        total = record.debt + pending
        lup = self.buckets.lup(inflator)
        collateral_ids = self.collateral.deposited(borrower)
        return BorrowerInfo(
            debt=record.debt,
            pending_debt=pending,
            collateral_ids=collateral_ids,
            encumbered_collateral=calculate_encumbered_collateral(total, lup),
            collateralization=calculate_collateralization(len(collateral_ids), total, lup),
            borrower_inflator=record.inflator_snapshot,
            pool_inflator=inflator,
        )

    def collateralization(self, borrower: str, inflator: int) -> int:
        return calculate_collateralization(
            self.collateral.deposited_count(borrower),
            self.debt(borrower, inflator),
            self.buckets.lup(inflator),
        )

    def require_min_collateralization(
        self,
        collateral_count: int,
        debt: int,
        lup: Optional[int],
        error: Type[PoolError] = UndercollateralizedAction,
    ) -> None:
        """
        Reject a post-operation state under the configured minimum ratio.

        A position without debt always passes.
        """
        if debt == 0:
            return
        ratio = calculate_collateralization(collateral_count, debt, lup)
        if ratio < self.config.min_collateralization:
            raise error(
                f"Collateralization {ratio} below minimum {self.config.min_collateralization} "
                f"({collateral_count} NFTs against debt {debt})"
            )

    def check_collateral_release(
        self,
        borrower: str,
        count: int,
        inflator: int,
        error: Type[PoolError] = InsufficientCollateral,
    ) -> None:
        """Check that a borrower stays collateralized after giving up `count` NFTs."""
        remaining = self.collateral.deposited_count(borrower) - count
        self.require_min_collateralization(
            remaining, self.debt(borrower, inflator), self.buckets.lup(inflator), error
        )

    # ========================================================================
    # COLLATERAL
    # ========================================================================

    def add_collateral(self, borrower: str, token_ids: List[int], inflator: int) -> None:
        self.collateral.add_collateral(borrower, token_ids)
        self._store(borrower, self._synced(borrower, inflator))

    def check_remove_collateral(self, borrower: str, token_ids: List[int], inflator: int) -> None:
        """
        Raises:
            DuplicateCollateral, NotDeposited, InsufficientCollateral
        """
        self.collateral.check_deposited(borrower, token_ids)
        self.check_collateral_release(borrower, len(token_ids), inflator)

    def remove_collateral(self, borrower: str, token_ids: List[int], inflator: int) -> None:
        self.check_remove_collateral(borrower, token_ids, inflator)
        self.collateral.remove_collateral(borrower, token_ids)
        self._store(borrower, self._synced(borrower, inflator))

    def touch(self, borrower: str, inflator: int) -> None:
        """Resync a borrower after its collateral changed elsewhere."""
        if borrower in self._borrowers:
            self._store(borrower, self._synced(borrower, inflator))

    # ========================================================================
    # DEBT
    # ========================================================================

    def plan_borrow(self, borrower: str, amount: int, limit_price: int, inflator: int) -> LiquidityPlan:
        """
        Raises:
            InsufficientLiquidity: If the pool cannot lend the amount.
            BorrowLimitReached: If the LUP would fall below limit_price.
            UndercollateralizedAction: If the position would fall under the minimum.
        """
        plan = self.buckets.plan_draw(amount, inflator)
        new_lup = self.buckets.lup_after_draw(plan, inflator)
        if new_lup < limit_price:
            raise BorrowLimitReached(f"LUP would fall to {new_lup}, below limit {limit_price}")
        new_debt = self.debt(borrower, inflator) + amount
        self.require_min_collateralization(
            self.collateral.deposited_count(borrower), new_debt, new_lup
        )
        return plan

    def borrow(self, borrower: str, amount: int, limit_price: int, inflator: int) -> int:
        """
        Draw a loan from the buckets.

        Returns:
            The LUP after the draw
        """
        plan = self.plan_borrow(borrower, amount, limit_price, inflator)
        self.buckets.apply_draw(plan, inflator)
        synced = self._synced(borrower, inflator)
        self._store(borrower, Borrower(synced.debt + amount, inflator))
        self._set_pool_debt(self.pool_debt(inflator) + amount, inflator)
        return self.buckets.lup(inflator)

    def plan_repay(self, borrower: str, max_amount: int, inflator: int) -> RepayPlan:
        """
        Raises:
            NoDebt: If the borrower owes nothing.
        """
        debt = self.debt(borrower, inflator)
        if debt == 0:
            raise NoDebt(f"{borrower} has no debt to repay")
        amount = min(max_amount, debt)
        bucket_plan, surplus = self.buckets.plan_repay(amount, inflator)
        return RepayPlan(amount=amount, buckets=bucket_plan, surplus=surplus)

    def repay(self, borrower: str, max_amount: int, inflator: int) -> int:
        """
        Repay up to max_amount of a borrower's debt.

        Returns:
            The amount actually repaid
        """
        plan = self.plan_repay(borrower, max_amount, inflator)
        self.buckets.apply_repay(plan.buckets, inflator)
        synced = self._synced(borrower, inflator)
        self._store(borrower, Borrower(synced.debt - plan.amount, inflator))
        self._reduce_pool_debt(plan.amount, inflator)
        return plan.amount

    def plan_liquidation(self, borrower: str, inflator: int) -> LiquidationPlan:
        """
        Move the borrower's oldest deposited NFTs into debt-carrying buckets.

        Each NFT is credited at min(price, remaining borrower debt). It goes
        to the lowest bucket whose debt can absorb that credit, or to the
        lowest debt-carrying bucket when none can. Credit the chosen bucket
        cannot absorb spills into the buckets above it, then into the
        buckets below, so a seized NFT always settles its full value while
        debt remains anywhere in the pool.

        Raises:
            BorrowerNotLiquidatable: If the borrower has no debt, is at or
                above the minimum ratio, has no deposited NFTs, or no bucket
                carries debt to settle against.
        """
        debt = self.debt(borrower, inflator)
        if debt == 0:
            raise BorrowerNotLiquidatable(f"{borrower} has no debt")
        ratio = self.collateralization(borrower, inflator)
        if ratio >= self.config.min_collateralization:
            raise BorrowerNotLiquidatable(
                f"{borrower} collateralization {ratio} meets minimum "
                f"{self.config.min_collateralization}"
            )
        available = list(self.collateral.deposited(borrower))
        if not available:
            raise BorrowerNotLiquidatable(f"{borrower} has no collateral to settle debt with")

        owed: Dict[int, int] = {}
        for price in reversed(self.buckets.prices()):
            bucket_debt = self.buckets.bucket_debt(price, inflator)
            if bucket_debt > 0:
                owed[price] = bucket_debt
        if not owed:
            raise BorrowerNotLiquidatable(f"No bucket carries debt to settle {borrower}'s debt against")

        steps = []
        settlements: Dict[int, int] = {}
        remaining = debt
        while remaining > 0 and available and owed:
            price = next(
                (p for p, owing in owed.items() if owing >= min(p, remaining)),
                next(iter(owed)),
            )
            credit = min(price, remaining)
            placed = 0
            spill = [p for p in owed if p >= price] + [p for p in reversed(owed) if p < price]
            for target in spill:
                if credit == placed:
                    break
                take = min(owed[target], credit - placed)
                settlements[target] = settlements.get(target, 0) + take
                owed[target] -= take
                placed += take
                if owed[target] == 0:
                    del owed[target]
            steps.append((available.pop(0), price, placed))
            remaining -= placed

        return LiquidationPlan(
            settled=debt - remaining,
            token_ids=tuple(step[0] for step in steps),
            steps=tuple(steps),
            settlements=tuple(sorted(settlements.items())),
        )

    def liquidate(self, borrower: str, inflator: int) -> LiquidationPlan:
        plan = self.plan_liquidation(borrower, inflator)
        for token_id, price, _ in plan.steps:
            self.collateral.move_to_claimable(borrower, [token_id], price)
        for price, amount in plan.settlements:
            self.buckets.settle_debt(price, amount, inflator)
        synced = self._synced(borrower, inflator)
        self._store(borrower, Borrower(synced.debt - plan.settled, inflator))
        self._reduce_pool_debt(plan.settled, inflator)
        return plan

    # ========================================================================
    # INTERNALS
    # ========================================================================

    def _store(self, borrower: str, record: Borrower) -> None:
        if record.debt == 0 and self.collateral.deposited_count(borrower) == 0:
            self._borrowers.pop(borrower, None)
        else:
            self._borrowers[borrower] = record

    def _set_pool_debt(self, debt: int, inflator: int) -> None:
        self._pool_debt = debt
        self._pool_snapshot = inflator

    def _reduce_pool_debt(self, amount: int, inflator: int) -> None:
        if not any(record.debt for record in self._borrowers.values()):
            self._set_pool_debt(0, inflator)
            self.buckets.clear_debt(inflator)
            return
        self._set_pool_debt(max(self.pool_debt(inflator) - amount, 0), inflator)

    # ========================================================================
    # INVARIANTS
    # ========================================================================

    def verify_positions(self, inflator: int) -> List[str]:
        violations: List[str] = []
        for name, record in self._borrowers.items():
            if record.debt < 0:
                violations.append(f"borrower {name}: negative debt")
            if record.inflator_snapshot > inflator:
                violations.append(f"borrower {name}: snapshot ahead of pool inflator")
            if record.debt == 0 and self.collateral.deposited_count(name) == 0:
                violations.append(f"borrower {name}: empty record kept")
        for name in self.collateral.borrowers():
            if name not in self._borrowers:
                violations.append(f"borrower {name}: collateral without a record")
        return violations

    def copy(self, collateral: CollateralLedger, buckets: BucketLedger) -> BorrowerPositionEngine:
        cloned = BorrowerPositionEngine.__new__(BorrowerPositionEngine)
        cloned.config = self.config
        cloned.collateral = collateral
        cloned.buckets = buckets
        cloned._borrowers = dict(self._borrowers)
        cloned._pool_debt = self._pool_debt
        cloned._pool_snapshot = self._pool_snapshot
        return cloned
