"""
interest.py - Pool inflator and debt accrual

This module provides interest accrual using a pure function architecture
with explicit inputs.

ARCHITECTURE:
=============

1. FROZEN DATACLASS (explicit input):
   - InterestState: pool inflator, configured rate, time of last accrual

2. PURE CALCULATION FUNCTIONS (calculate_*, accrue, sync_borrower_debt):
   - Take all inputs explicitly as parameters
   - No pool reference, no hidden state
   - Return new values; nothing is mutated

Key Formulas:
    utilization     = debt / (debt + deposits)
    effective_rate  = interest_rate * (1 + utilization)
    new_inflator    = inflator * (1 + effective_rate / SECONDS_PER_YEAR) ** elapsed_seconds
    synced_debt     = ceil(debt * inflator / inflator_snapshot)

Every debt read or write goes through sync_borrower_debt first; the caller
stores the synced debt and the new snapshot together.
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from datetime import datetime, timedelta

from .core import (
    WAD, RAY, SECONDS_PER_YEAR,
    wmul, rmul, rpow, wad_to_ray, ceil_div,
)


@dataclass(frozen=True, slots=True)
class InterestState:
    """
    Immutable snapshot of the pool's interest accounting.

    Each accrual creates a NEW instance (value semantics), so a previewed
    accrual can be discarded when an operation is rejected.
    """
    inflator: int          # Pool debt inflator (RAY), starts at 1 RAY
    interest_rate: int     # Configured annual rate (WAD)
    last_update: datetime  # When the inflator was last advanced

    def __post_init__(self):
        if self.inflator < RAY:
            raise ValueError(f"inflator cannot be below 1 RAY, got {self.inflator}")
        if self.interest_rate < 0:
            raise ValueError(f"interest_rate cannot be negative, got {self.interest_rate}")


def initial_interest_state(interest_rate: int, now: datetime) -> InterestState:
    return InterestState(inflator=RAY, interest_rate=interest_rate, last_update=now)


def calculate_utilization(debt: int, deposits: int) -> int:
    """
    Fraction of pool liquidity currently lent out (WAD, 0 for an empty pool).

    Args:
        debt: Outstanding pool debt (WAD)
        deposits: Quote liquidity still available in buckets (WAD)
    """
    total = debt + deposits
    if total <= 0 or debt <= 0:
        return 0
    return min(debt * WAD // total, WAD)


def calculate_rate(interest_rate: int, utilization: int) -> int:
    """
    Effective annual rate for the current utilization.

    The configured rate applies at zero utilization and doubles at full
    utilization.
    """
    utilization = max(0, min(utilization, WAD))
    return interest_rate + wmul(interest_rate, utilization)


def calculate_pending_inflator(inflator: int, annual_rate: int, elapsed: int) -> int:
    """
    Advance an inflator by per-second compounding over an elapsed period.

    PURE FUNCTION - All inputs explicit.

    Args:
        inflator: Current inflator (RAY)
        annual_rate: Effective annual rate (WAD)
        elapsed: Whole seconds since the last accrual

    Returns:
        The new inflator (RAY); unchanged when nothing elapsed or the rate is 0.
    """
    if elapsed <= 0 or annual_rate <= 0:
        return inflator
    per_second = wad_to_ray(annual_rate) // SECONDS_PER_YEAR
    factor = rpow(RAY + per_second, elapsed)
    return max(rmul(inflator, factor), inflator)


def elapsed_seconds(last_update: datetime, now: datetime) -> int:
    """Whole seconds from last_update to now, never negative."""
    return max((now - last_update) // timedelta(seconds=1), 0)


def accrue(state: InterestState, now: datetime, utilization: int) -> InterestState:
    """
    Advance the pool inflator by the whole seconds elapsed up to `now`.

    Idempotent within the same instant: when no whole second has elapsed the
    same state is returned. last_update moves forward by exactly the seconds
    accrued, so a sub-second remainder is carried into the next accrual and
    the result does not depend on how often accrual runs.

    Args:
        state: Current interest state
        now: Pool time of the operation
        utilization: Pool utilization before the operation (WAD)

    Returns:
        New InterestState with the advanced inflator and last_update.
    """
    elapsed = elapsed_seconds(state.last_update, now)
    if elapsed == 0:
        return state
    rate = calculate_rate(state.interest_rate, utilization)
    new_inflator = calculate_pending_inflator(state.inflator, rate, elapsed)
    return replace(
        state,
        inflator=new_inflator,
        last_update=state.last_update + timedelta(seconds=elapsed),
    )


def sync_borrower_debt(debt: int, inflator_snapshot: int, inflator: int) -> int:
    """
    Rescale a recorded debt to the current inflator.

    Rounds up so the pool never under-accounts debt. The caller must persist
    the returned debt together with `inflator` as the new snapshot.

    Args:
        debt: Debt recorded at the snapshot (WAD)
        inflator_snapshot: Inflator when the debt was recorded (RAY)
        inflator: Current inflator (RAY)
    """
    if debt == 0 or inflator_snapshot == 0 or inflator == inflator_snapshot:
        return debt
    return ceil_div(debt * inflator, inflator_snapshot)


def calculate_pending_interest(debt: int, inflator_snapshot: int, inflator: int) -> int:
    """Interest accrued on a recorded debt since its snapshot."""
    return sync_borrower_debt(debt, inflator_snapshot, inflator) - debt


def scale_bucket_debt(debt: int, inflator_snapshot: int, inflator: int) -> int:
    """
    Rescale debt owed to a bucket to the current inflator.

    Rounds down, the mirror of sync_borrower_debt, so the sum of bucket
    debts never exceeds the sum of borrower debts.
    """
    if debt == 0 or inflator_snapshot == 0 or inflator == inflator_snapshot:
        return debt
    return debt * inflator // inflator_snapshot
