"""
collateral.py - Custody of NFT collateral units

The CollateralLedger is the single source of truth for where every token
id under pool custody sits. Each tracked id has exactly one TokenLocation:

    DEPOSITED(borrower)  -> in that borrower's deposited set
    CLAIMABLE(price)     -> in that bucket's claimable set

An id without a location is outside the pool (never deposited, withdrawn,
or claimed). The per-borrower and per-bucket sets are indexes over the
location map and are only ever changed together with it.

Every mutating method validates its whole request before changing anything,
so a rejected request leaves the ledger untouched.
"""

from __future__ import annotations
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from .core import (
    TokenLocation, LocationKind,
    DuplicateCollateral, NotDeposited, TokenNotClaimable,
    find_duplicates,
)


class OrderedTokenSet:
    """
    Insertion-ordered set of unique token ids.

    Backed by a dict, so add, remove and membership are O(1) and iteration
    follows insertion order.
    """

    __slots__ = ("_items",)

    def __init__(self, token_ids: Iterable[int] = ()):
        self._items: Dict[int, None] = {}
        for token_id in token_ids:
            self.add(token_id)

    def add(self, token_id: int) -> None:
        if token_id in self._items:
            raise KeyError(f"Token {token_id} already in set")
        self._items[token_id] = None

    def remove(self, token_id: int) -> None:
        del self._items[token_id]

    def first(self, count: int) -> Tuple[int, ...]:
        """Return the `count` oldest ids."""
        result = []
        for token_id in self._items:
            if len(result) == count:
                break
            result.append(token_id)
        return tuple(result)

    def __contains__(self, token_id: object) -> bool:
        return token_id in self._items

    def __iter__(self) -> Iterator[int]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __repr__(self) -> str:
        return f"OrderedTokenSet({list(self._items)})"

    def copy(self) -> OrderedTokenSet:
        return OrderedTokenSet(self._items)


class CollateralLedger:
    """
    Tracks deposited and claimable NFT collateral by tagged location.

    Not thread-safe. The pool serializes all calls.
    """

    def __init__(self):
        self._locations: Dict[int, TokenLocation] = {}
        self._deposited: Dict[str, OrderedTokenSet] = {}
        self._claimable: Dict[int, OrderedTokenSet] = {}

    # ========================================================================
    # READS
    # ========================================================================

    def location(self, token_id: int) -> Optional[TokenLocation]:
        return self._locations.get(token_id)

    def is_tracked(self, token_id: int) -> bool:
        return token_id in self._locations

    def deposited(self, borrower: str) -> Tuple[int, ...]:
        """Token ids deposited by a borrower, oldest first."""
        return tuple(self._deposited.get(borrower, ()))

    def deposited_count(self, borrower: str) -> int:
        return len(self._deposited.get(borrower, ()))

    def claimable(self, price: int) -> Tuple[int, ...]:
        """Token ids claimable at a bucket, in the order they arrived."""
        return tuple(self._claimable.get(price, ()))

    def claimable_count(self, price: int) -> int:
        return len(self._claimable.get(price, ()))

    def tracked_ids(self) -> Tuple[int, ...]:
        return tuple(sorted(self._locations))

    def borrowers(self) -> Tuple[str, ...]:
        return tuple(self._deposited)

    # ========================================================================
    # VALIDATION
    # ========================================================================

    def check_add(self, token_ids: List[int]) -> None:
        """
        Raises:
            DuplicateCollateral: If an id repeats or is already under custody.
        """
        duplicates = find_duplicates(token_ids)
        if duplicates:
            raise DuplicateCollateral(f"Token ids repeated in request: {sorted(duplicates)}")
        tracked = [t for t in token_ids if t in self._locations]
        if tracked:
            raise DuplicateCollateral(f"Token ids already held by the pool: {tracked}")

    def check_deposited(self, borrower: str, token_ids: List[int]) -> None:
        """
        Raises:
            DuplicateCollateral: If an id repeats in the request.
            NotDeposited: If an id is not in the borrower's deposited set.
        """
        duplicates = find_duplicates(token_ids)
        if duplicates:
            raise DuplicateCollateral(f"Token ids repeated in request: {sorted(duplicates)}")
        owned = self._deposited.get(borrower, ())
        missing = [t for t in token_ids if t not in owned]
        if missing:
            raise NotDeposited(f"Token ids not deposited by {borrower}: {missing}")

    def check_claimable(self, price: int, token_ids: List[int]) -> None:
        """
        Raises:
            TokenNotClaimable: If an id repeats or is not claimable at the bucket.
        """
        duplicates = find_duplicates(token_ids)
        if duplicates:
            raise TokenNotClaimable(f"Token ids repeated in request: {sorted(duplicates)}")
        claimable = self._claimable.get(price, ())
        missing = [t for t in token_ids if t not in claimable]
        if missing:
            raise TokenNotClaimable(f"Token ids not claimable at price {price}: {missing}")

    # ========================================================================
    # MUTATIONS
    # ========================================================================

    def add_collateral(self, borrower: str, token_ids: List[int]) -> None:
        """
        Take custody of token ids as a borrower's deposited collateral.

        The token transfer itself is the caller's concern.

        Raises:
            DuplicateCollateral: If an id repeats or is already under custody.
        """
        self.check_add(token_ids)
        owned = self._deposited.setdefault(borrower, OrderedTokenSet())
        location = TokenLocation.deposited(borrower)
        for token_id in token_ids:
            owned.add(token_id)
            self._locations[token_id] = location

    def remove_collateral(self, borrower: str, token_ids: List[int]) -> None:
        """
        Release token ids from a borrower's deposited collateral (Withdrawn).

        Only ownership is checked here; the collateralization guard belongs
        to BorrowerPositionEngine.remove_collateral.

        Raises:
            DuplicateCollateral, NotDeposited
        """
        self.check_deposited(borrower, token_ids)
        owned = self._deposited[borrower]
        for token_id in token_ids:
            owned.remove(token_id)
            del self._locations[token_id]
        if not owned:
            del self._deposited[borrower]

    def move_to_claimable(self, borrower: str, token_ids: List[int], price: int) -> None:
        """
        Relocate deposited ids into a bucket's claimable set in one step.

        Used on the purchase and liquidation paths.

        Raises:
            DuplicateCollateral, NotDeposited
        """
        self.check_deposited(borrower, token_ids)
        owned = self._deposited[borrower]
        bucket = self._claimable.setdefault(price, OrderedTokenSet())
        location = TokenLocation.claimable(price)
        for token_id in token_ids:
            owned.remove(token_id)
            bucket.add(token_id)
            self._locations[token_id] = location
        if not owned:
            del self._deposited[borrower]

    def claim(self, price: int, token_ids: List[int]) -> None:
        """
        Release claimable ids from a bucket (Withdrawn).

        LP accounting is done by BucketLedger.claim_collateral.

        Raises:
            TokenNotClaimable
        """
        self.check_claimable(price, token_ids)
        bucket = self._claimable[price]
        for token_id in token_ids:
            bucket.remove(token_id)
            del self._locations[token_id]
        if not bucket:
            del self._claimable[price]

    # ========================================================================
    # INVARIANTS
    # ========================================================================

    def verify_ownership(self) -> List[str]:
        """
        Check that every tracked id sits in exactly one set matching its location.

        Returns:
            Human-readable violations; empty when the invariant holds.
        """
        violations: List[str] = []
        seen: Dict[int, str] = {}

        for borrower, owned in self._deposited.items():
            if not owned:
                violations.append(f"empty deposited set kept for {borrower}")
            for token_id in owned:
                where = f"deposited:{borrower}"
                if token_id in seen:
                    violations.append(f"token {token_id} in {seen[token_id]} and {where}")
                seen[token_id] = where
                if self._locations.get(token_id) != TokenLocation.deposited(borrower):
                    violations.append(
                        f"token {token_id} in {where} but tagged {self._locations.get(token_id)!r}"
                    )

        for price, bucket in self._claimable.items():
            if not bucket:
                violations.append(f"empty claimable set kept for {price}")
            for token_id in bucket:
                where = f"claimable:{price}"
                if token_id in seen:
                    violations.append(f"token {token_id} in {seen[token_id]} and {where}")
                seen[token_id] = where
                if self._locations.get(token_id) != TokenLocation.claimable(price):
                    violations.append(
                        f"token {token_id} in {where} but tagged {self._locations.get(token_id)!r}"
                    )

        for token_id, location in self._locations.items():
            if token_id not in seen:
                violations.append(f"token {token_id} tagged {location!r} but in no set")

        return violations

    def counts_by_kind(self) -> Dict[LocationKind, int]:
        counts = {kind: 0 for kind in LocationKind}
        for location in self._locations.values():
            counts[location.kind] += 1
        return counts

    def copy(self) -> CollateralLedger:
        cloned = CollateralLedger.__new__(CollateralLedger)
        cloned._locations = dict(self._locations)
        cloned._deposited = {b: s.copy() for b, s in self._deposited.items()}
        cloned._claimable = {p: s.copy() for p, s in self._claimable.items()}
        return cloned
