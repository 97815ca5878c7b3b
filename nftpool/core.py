"""
Core types and pure functions for the NFT lending pool ledger.

This module provides the foundational pieces shared by every component:
1. Fixed-point arithmetic: WAD (1e18) and RAY (1e27) integer helpers
2. Exceptions: PoolError and the domain-specific error kinds
3. Token locations: the tagged location of every NFT under pool custody
4. Events: immutable records of applied pool operations
5. Protocols: PoolView for read-only pool access

All functions in this module are pure. No function can mutate pool state.
"""

from __future__ import annotations
from dataclasses import dataclass, field, fields
from datetime import datetime
from enum import Enum
import hashlib
from typing import (
    Dict, List, Set, Optional, Any, Protocol,
    Tuple, runtime_checkable,
)


# ============================================================================
# CONSTANTS
# ============================================================================

# Quote amounts, prices, rates and ratios are integers scaled by WAD.
WAD = 10 ** 18

# Inflators and LP shares are integers scaled by RAY.
RAY = 10 ** 27

# Conversion factor between the two scales.
WAD_RAY_RATIO = 10 ** 9

SECONDS_PER_YEAR = 365 * 24 * 60 * 60

# Collateralization reported for a borrower without debt.
INFINITE_COLLATERALIZATION = 2 ** 255

# Account that holds tokens in pool custody on the token ledger.
POOL_ACCOUNT = "pool"

# Reserved account for minting and burning on the token ledger.
# It is exempt from balance validation and can hold any balance.
SYSTEM_ACCOUNT = "system"


# ============================================================================
# FIXED-POINT ARITHMETIC
# ============================================================================
#
# All helpers round half up, except ceil_div which always rounds up.
# Callers choose the rounding direction that favors the pool: debt is
# rounded up, LP minted is rounded down, LP burned is rounded up.

def wmul(x: int, y: int) -> int:
    """Multiply two WAD values."""
    return (x * y + WAD // 2) // WAD


def wdiv(x: int, y: int) -> int:
    """Divide two WAD values."""
    return (x * WAD + y // 2) // y


def rmul(x: int, y: int) -> int:
    """Multiply two RAY values."""
    return (x * y + RAY // 2) // RAY


def rdiv(x: int, y: int) -> int:
    """Divide two RAY values."""
    return (x * RAY + y // 2) // y


def rpow(x: int, n: int) -> int:
    """
    Raise a RAY value to an integer power by repeated squaring.

    Args:
        x: Base, RAY scaled
        n: Non-negative integer exponent

    Returns:
        x ** n, RAY scaled
    """
    if n < 0:
        raise ValueError(f"rpow exponent must be non-negative, got {n}")
    z = x if n % 2 else RAY
    n //= 2
    while n:
        x = rmul(x, x)
        if n % 2:
            z = rmul(z, x)
        n //= 2
    return z


def wad_to_ray(x: int) -> int:
    return x * WAD_RAY_RATIO


def ceil_div(x: int, y: int) -> int:
    """Integer division rounding toward positive infinity."""
    return -(-x // y)


# ============================================================================
# EXCEPTIONS
# ============================================================================

class PoolError(Exception):
    """Base exception for all pool-related errors."""
    pass


class AlreadyInitialized(PoolError):
    """Raised when a pool is initialized a second time."""
    pass


class PoolNotInitialized(PoolError):
    """Raised when an operation runs before the pool has been initialized."""
    pass


class TokenNotAllowed(PoolError):
    """Raised when a token id outside a subset pool's allow-list is deposited."""
    pass


class DuplicateCollateral(PoolError):
    """Raised when a token id is already under pool custody or repeated in a request."""
    pass


class NotDeposited(PoolError):
    """Raised when a token id is not in the caller's deposited collateral."""
    pass


class InsufficientCollateral(PoolError):
    """Raised when removing collateral would leave a borrower under the minimum ratio."""
    pass


class UndercollateralizedAction(PoolError):
    """Raised when a debt change would leave a borrower under the minimum ratio."""
    pass


class InsufficientLPBalance(PoolError):
    """Raised when a lender holds fewer LP shares than an operation burns."""
    pass


class TokenNotClaimable(PoolError):
    """Raised when a token id is not in the bucket's claimable collateral."""
    pass


class InsufficientLiquidity(PoolError):
    """Raised when a bucket or the pool cannot supply the requested quote amount."""
    pass


class PriceBucketEmpty(PoolError):
    """Raised when a bucket has no outstanding LP shares."""
    pass


class InvalidTokenOrder(PoolError):
    """Raised when a purchase lists a duplicate token id or one the bidder has not deposited."""
    pass


class InsufficientCollateralValue(PoolError):
    """Raised when the offered token ids are worth less than the purchase amount."""
    pass


class InvalidPrice(PoolError):
    """Raised when a price does not sit on the price ladder."""
    pass


class BorrowLimitReached(PoolError):
    """Raised when a draw would push the lowest utilized price below the borrower's limit."""
    pass


class NoDebt(PoolError):
    """Raised when a borrower without debt tries to repay."""
    pass


class BorrowerNotLiquidatable(PoolError):
    """Raised when liquidating a borrower at or above the minimum ratio."""
    pass


class InsufficientFunds(PoolError):
    """Raised when an account holds less quote token than a transfer moves."""
    pass


class NotTokenOwner(PoolError):
    """Raised when an account transfers an NFT it does not own."""
    pass


# ============================================================================
# TOKEN LOCATIONS
# ============================================================================

class LocationKind(Enum):
    """
    Where a token id under pool custody currently sits.

    DEPOSITED: In a borrower's deposited collateral.
    CLAIMABLE: In a bucket's claimable collateral, redeemable by lenders.

    A withdrawn, claimed or never-deposited id has no location.
    """
    DEPOSITED = "deposited"
    CLAIMABLE = "claimable"


@dataclass(frozen=True, slots=True)
class TokenLocation:
    """
    Tagged location of a token id under pool custody.

    Exactly one of borrower/price is set, matching the kind.
    """
    kind: LocationKind
    borrower: Optional[str] = None
    price: Optional[int] = None

    def __post_init__(self):
        if self.kind is LocationKind.DEPOSITED:
            if not self.borrower or self.price is not None:
                raise ValueError("Deposited location requires a borrower and no price")
        elif self.price is None or self.borrower is not None:
            raise ValueError("Claimable location requires a price and no borrower")

    @classmethod
    def deposited(cls, borrower: str) -> TokenLocation:
        return cls(LocationKind.DEPOSITED, borrower=borrower)

    @classmethod
    def claimable(cls, price: int) -> TokenLocation:
        return cls(LocationKind.CLAIMABLE, price=price)

    def __repr__(self) -> str:
        if self.kind is LocationKind.DEPOSITED:
            return f"Deposited({self.borrower})"
        return f"Claimable({self.price})"


# ============================================================================
# EVENTS
# ============================================================================

@dataclass(frozen=True, slots=True)
class PoolInitialized:
    interest_rate: int
    token_ids: Optional[Tuple[int, ...]] = None


@dataclass(frozen=True, slots=True)
class AddNFTCollateral:
    borrower: str
    token_ids: Tuple[int, ...]


@dataclass(frozen=True, slots=True)
class RemoveNFTCollateral:
    borrower: str
    token_ids: Tuple[int, ...]


@dataclass(frozen=True, slots=True)
class ClaimNFTCollateral:
    claimer: str
    price: int
    token_ids: Tuple[int, ...]
    lp_burned: int


@dataclass(frozen=True, slots=True)
class PurchaseWithNFTs:
    bidder: str
    price: int
    amount: int
    token_ids: Tuple[int, ...]


@dataclass(frozen=True, slots=True)
class AddQuoteToken:
    lender: str
    price: int
    amount: int
    lp_minted: int


@dataclass(frozen=True, slots=True)
class RemoveQuoteToken:
    lender: str
    price: int
    amount: int
    lp_burned: int


@dataclass(frozen=True, slots=True)
class Borrow:
    borrower: str
    lup: int
    amount: int


@dataclass(frozen=True, slots=True)
class Repay:
    borrower: str
    lup: Optional[int]
    amount: int


@dataclass(frozen=True, slots=True)
class Liquidate:
    borrower: str
    debt: int
    token_ids: Tuple[int, ...]


PoolEvent = Any


def _canonicalize(value: Any) -> str:
    """
    Produce a canonical string representation of an event for hashing.

    Events hold integers, strings, token id tuples and None. Event
    dataclasses serialize as their type name followed by their fields in
    declaration order.
    """
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return f"N:{value}"
    if isinstance(value, str):
        return f"S:{value}"
    if isinstance(value, (list, tuple)):
        # Order is significant for token id arrays
        serialized = ",".join(_canonicalize(item) for item in value)
        return f"[{serialized}]"
    if hasattr(value, "__dataclass_fields__"):
        body = ",".join(
            f"{f.name}={_canonicalize(getattr(value, f.name))}" for f in fields(value)
        )
        return f"{type(value).__name__}({body})"
    raise TypeError(f"Cannot canonicalize {type(value).__name__} in an event")


def compute_event_id(event: PoolEvent, sequence: int) -> str:
    """
    Compute a deterministic content hash for an applied event.

    The hash covers the event content and its position in the log, so
    identical operation sequences on identical pools produce identical ids.
    """
    content = f"{sequence}|{_canonicalize(event)}"
    return hashlib.sha256(content.encode()).hexdigest()[:16]


@dataclass(frozen=True, slots=True)
class LogEntry:
    """
    An applied event as recorded in the pool's append-only event log.

    Attributes:
        sequence: Monotonic position within the pool's log
        timestamp: Pool time at which the operation was applied
        event: The event record
        event_id: Content hash of (sequence, event), auto-computed
    """
    sequence: int
    timestamp: datetime
    event: PoolEvent
    event_id: str = field(default="")

    def __post_init__(self):
        if not self.event_id:
            object.__setattr__(self, 'event_id', compute_event_id(self.event, self.sequence))

    def __repr__(self) -> str:
        return f"LogEntry(#{self.sequence} {self.event_id} {self.event!r})"


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class PoolView(Protocol):
    """
    Read-only interface to pool state.

    Functions accepting a PoolView declare their read-only intent. The
    ERC721Pool facade implements this protocol but also provides mutation
    methods.
    """

    @property
    def current_time(self) -> datetime:
        """Return the current logical time of the pool."""
        ...

    def pending_inflator(self) -> int:
        """Return the pool inflator accrued up to current_time (RAY)."""
        ...

    def lup(self) -> Optional[int]:
        """Return the lowest utilized price, or None when the pool has no debt."""
        ...

    def token_location(self, token_id: int) -> Optional[TokenLocation]:
        """Return where a token id sits, or None when the pool does not hold it."""
        ...

    def lp_balance(self, lender: str, price: int) -> int:
        """Return a lender's LP shares at a bucket (RAY)."""
        ...


def find_duplicates(token_ids: List[int]) -> Set[int]:
    """Return the token ids that appear more than once in a request."""
    seen: Set[int] = set()
    duplicates: Set[int] = set()
    for token_id in token_ids:
        if token_id in seen:
            duplicates.add(token_id)
        seen.add(token_id)
    return duplicates


def require_token_ids(token_ids: List[int], label: str = "token_ids") -> Tuple[int, ...]:
    """
    Validate a token id array argument and return it as a tuple.

    Raises:
        ValueError: If the array is empty or holds non-integer or negative ids.
    """
    ids = tuple(token_ids)
    if not ids:
        raise ValueError(f"{label} cannot be empty")
    for token_id in ids:
        if isinstance(token_id, bool) or not isinstance(token_id, int) or token_id < 0:
            raise ValueError(f"{label} must hold non-negative integers, got {token_id!r}")
    return ids


def require_positive(amount: int, label: str = "amount") -> int:
    """
    Validate a fixed-point amount argument.

    Raises:
        ValueError: If the amount is not a positive integer.
    """
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ValueError(f"{label} must be an integer in WAD scale, got {type(amount).__name__}")
    if amount <= 0:
        raise ValueError(f"{label} must be positive, got {amount}")
    return amount


# Mapping from lender address to LP shares held at one bucket.
LPBalances = Dict[str, int]
