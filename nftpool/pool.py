"""
pool.py - ERC721Pool: the lending pool facade

ERC721Pool validates arguments, previews interest accrual, delegates to the
engines and token ledger, and appends exactly one event per applied
operation to its event log.

Every mutating operation follows check-then-act:
    1. preview the accrued InterestState for the current pool time
    2. validate every step against it (engines and token ledger)
    3. commit the InterestState, apply the engine and token mutations,
       and record the event

A rejected operation raises before step 3, so pool, engines, token
ledger and event log are left exactly as they were.
"""

from __future__ import annotations
from datetime import datetime
import functools
import logging
from typing import FrozenSet, List, Optional

from .core import (
    RAY,
    PoolError, AlreadyInitialized, PoolNotInitialized, TokenNotAllowed,
    TokenLocation, LogEntry, PoolEvent,
    PoolInitialized, AddNFTCollateral, RemoveNFTCollateral, ClaimNFTCollateral,
    PurchaseWithNFTs, AddQuoteToken, RemoveQuoteToken, Borrow, Repay, Liquidate,
    find_duplicates, require_token_ids, require_positive,
)
from .config import PoolConfig
from .collateral import CollateralLedger
from .buckets import BucketLedger, BucketInfo
from .borrower import BorrowerPositionEngine, BorrowerInfo
from .purchase import PurchaseEngine
from .tokens import TokenLedger
from .interest import InterestState, initial_interest_state, accrue, calculate_utilization
from .prices import require_price


logger = logging.getLogger(__name__)


def _operation(method):
    """Log operations that the pool rejects, then re-raise."""
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except (PoolError, ValueError) as exc:
            self._log("REJECTED %s: %s: %s", method.__name__, type(exc).__name__, exc)
            raise
    return wrapper


class ERC721Pool:
    """
    NFT-collateralized lending pool over price buckets.

    Not thread-safe: calls must be serialized by the caller.

    Example:
        tokens = TokenLedger()
        tokens.mint_quote("lender", 1_000 * WAD)
        tokens.mint_nfts("borrower", [1, 2, 3])

        pool = ERC721Pool("punks", tokens=tokens)
        pool.initialize(interest_rate=WAD // 20)
        pool.add_quote_token("lender", 500 * WAD, index_to_price(0))
        pool.add_collateral("borrower", [1, 2, 3])
        pool.borrow("borrower", 2 * WAD, limit_price=index_to_price(0))
    """

    def __init__(
        self,
        name: str = "pool",
        config: Optional[PoolConfig] = None,
        tokens: Optional[TokenLedger] = None,
        initial_time: Optional[datetime] = None,
        verbose: bool = True,
    ):
        """
        Create an uninitialized pool.

        Args:
            name: Pool identifier, used in log messages
            config: Pool parameters (default: PoolConfig())
            tokens: Token ledger holding quote balances and NFT owners
                (default: a new empty TokenLedger)
            initial_time: Starting pool time (default: 1970-01-01)
            verbose: Log applied and rejected operations at INFO instead of DEBUG
        """
        self.name = name
        self.config = config or PoolConfig()
        self.tokens = tokens if tokens is not None else TokenLedger()
        self.verbose = verbose
        self.collateral = CollateralLedger()
        self.buckets = BucketLedger(self.collateral)
        self.positions = BorrowerPositionEngine(self.config, self.collateral, self.buckets)
        self.purchases = PurchaseEngine(self.collateral, self.buckets, self.positions)
        self.event_log: List[LogEntry] = []
        self._interest: Optional[InterestState] = None
        self._allowed: Optional[FrozenSet[int]] = None
        self._current_time: datetime = initial_time or datetime(1970, 1, 1)
        self._next_sequence: int = 0

    # ========================================================================
    # PoolView PROTOCOL IMPLEMENTATION (read-only methods)
    # ========================================================================

    @property
    def current_time(self) -> datetime:
        """Current logical time of the pool."""
        return self._current_time

    def pending_inflator(self) -> int:
        """Pool inflator accrued up to current_time (RAY)."""
        if self._interest is None:
            return RAY
        return self._preview_accrual().inflator

    def lup(self) -> Optional[int]:
        return self.buckets.lup(self.pending_inflator())

    def token_location(self, token_id: int) -> Optional[TokenLocation]:
        return self.collateral.location(token_id)

    def lp_balance(self, lender: str, price: int) -> int:
        return self.buckets.lp_balance(lender, price)

    # ========================================================================
    # OTHER READS
    # ========================================================================

    @property
    def is_initialized(self) -> bool:
        return self._interest is not None

    @property
    def interest_state(self) -> Optional[InterestState]:
        """Interest state as of the last applied operation."""
        return self._interest

    @property
    def allowed_token_ids(self) -> Optional[FrozenSet[int]]:
        """Allow-list of a subset pool; None for a collection-wide pool."""
        return self._allowed

    def pool_debt(self) -> int:
        return self.positions.pool_debt(self.pending_inflator())

    def utilization(self) -> int:
        return calculate_utilization(self.pool_debt(), self.buckets.total_deposit())

    def bucket_info(self, price: int) -> BucketInfo:
        """
        Raises:
            InvalidPrice: If the price is not on the ladder.
        """
        require_price(price)
        return self.buckets.bucket_info(price, self.pending_inflator())

    @_operation
    def get_borrower_info(self, borrower: str) -> BorrowerInfo:
        """
        Return (debt, pending_debt, collateral_ids, encumbered_collateral,
        collateralization, borrower_inflator, pool_inflator) for a borrower.

        Raises:
            PoolNotInitialized: If the pool has not been initialized.
        """
        self._require_initialized()
        return self.positions.get_borrower_info(borrower, self.pending_inflator())

    # ========================================================================
    # TIME MANAGEMENT
    # ========================================================================

    def advance_time(self, new_time: datetime) -> None:
        """
        Advance the pool's logical clock. Interest accrues lazily on the
        next operation.

        Raises:
            ValueError: If new_time is before the current time
        """
        if new_time < self._current_time:
            raise ValueError(
                f"Cannot move time backwards: {new_time} < {self._current_time}"
            )
        self._current_time = new_time

    # ========================================================================
    # INITIALIZATION
    # ========================================================================

    @_operation
    def initialize_subset(self, token_ids: List[int], interest_rate: int) -> LogEntry:
        """
        Initialize the pool for a fixed allow-list of token ids.

        Raises:
            AlreadyInitialized: If the pool has already been initialized.
            ValueError: If the id list is empty or repeats an id, or the rate
                is out of range.
        """
        self._require_uninitialized()
        ids = require_token_ids(token_ids)
        if find_duplicates(list(ids)):
            raise ValueError(f"Allow-list repeats token ids: {sorted(find_duplicates(list(ids)))}")
        self._require_rate(interest_rate)

        self._interest = initial_interest_state(interest_rate, self._current_time)
        self._allowed = frozenset(ids)
        return self._record(PoolInitialized(interest_rate=interest_rate, token_ids=ids))

    @_operation
    def initialize(self, interest_rate: int) -> LogEntry:
        """Initialize a collection-wide pool accepting any token id."""
        self._require_uninitialized()
        self._require_rate(interest_rate)

        self._interest = initial_interest_state(interest_rate, self._current_time)
        return self._record(PoolInitialized(interest_rate=interest_rate))

    # ========================================================================
    # COLLATERAL
    # ========================================================================

    @_operation
    def add_collateral(self, borrower: str, token_ids: List[int]) -> LogEntry:
        """
        Deposit NFTs as collateral.

        Raises:
            DuplicateCollateral, TokenNotAllowed, NotTokenOwner
        """
        ids = list(require_token_ids(token_ids))
        state = self._preview_accrual()
        self.collateral.check_add(ids)
        if self._allowed is not None:
            outside = [t for t in ids if t not in self._allowed]
            if outside:
                raise TokenNotAllowed(f"Token ids outside the pool subset: {outside}")
        self.tokens.check_transfer_nfts(borrower, ids)

        self._interest = state
        self.positions.add_collateral(borrower, ids, state.inflator)
        self.tokens.transfer_nfts(borrower, self.config.pool_account, ids)
        return self._record(AddNFTCollateral(borrower=borrower, token_ids=tuple(ids)))

    @_operation
    def remove_collateral(self, borrower: str, token_ids: List[int]) -> LogEntry:
        """
        Withdraw deposited NFTs back to the borrower.

        Raises:
            DuplicateCollateral, NotDeposited, InsufficientCollateral
        """
        ids = list(require_token_ids(token_ids))
        state = self._preview_accrual()
        self.positions.check_remove_collateral(borrower, ids, state.inflator)
        self.tokens.check_transfer_nfts(self.config.pool_account, ids)

        self._interest = state
        self.positions.remove_collateral(borrower, ids, state.inflator)
        self.tokens.transfer_nfts(self.config.pool_account, borrower, ids)
        return self._record(RemoveNFTCollateral(borrower=borrower, token_ids=tuple(ids)))

    @_operation
    def claim_collateral(
        self, claimer: str, recipient: str, token_ids: List[int], price: int
    ) -> LogEntry:
        """
        Redeem the claimer's LP shares at a bucket for claimable NFTs, sent
        to recipient.

        Raises:
            InvalidPrice, PriceBucketEmpty, TokenNotClaimable, InsufficientLPBalance
        """
        ids = list(require_token_ids(token_ids))
        state = self._preview_accrual()
        lp_burned = self.buckets.preview_claim(claimer, price, ids, state.inflator)
        self.tokens.check_transfer_nfts(self.config.pool_account, ids)

        self._interest = state
        self.buckets.claim_collateral(claimer, price, ids, state.inflator)
        self.tokens.transfer_nfts(self.config.pool_account, recipient, ids)
        return self._record(ClaimNFTCollateral(
            claimer=claimer, price=price, token_ids=tuple(ids), lp_burned=lp_burned,
        ))

    @_operation
    def purchase_bid(
        self, bidder: str, amount: int, price: int, token_ids: List[int]
    ) -> LogEntry:
        """
        Buy `amount` of quote token from the bucket at `price`, paying with
        the bidder's deposited NFTs in the supplied order.

        Raises:
            InvalidPrice, PriceBucketEmpty, InsufficientLiquidity, InvalidTokenOrder,
            InsufficientCollateralValue, InsufficientCollateral
        """
        require_positive(amount)
        ids = list(require_token_ids(token_ids))
        state = self._preview_accrual()
        consumed = self.purchases.plan_purchase(bidder, amount, price, ids, state.inflator)
        self.tokens.check_transfer_quote(self.config.pool_account, amount)

        self._interest = state
        self.purchases.purchase_bid(bidder, amount, price, ids, state.inflator)
        self.tokens.transfer_quote(self.config.pool_account, bidder, amount)
        return self._record(PurchaseWithNFTs(
            bidder=bidder, price=price, amount=amount, token_ids=consumed,
        ))

    # ========================================================================
    # QUOTE TOKEN
    # ========================================================================

    @_operation
    def add_quote_token(self, lender: str, amount: int, price: int) -> LogEntry:
        """
        Raises:
            InvalidPrice, InsufficientFunds
        """
        require_positive(amount)
        state = self._preview_accrual()
        lp_minted = self.buckets.preview_deposit(price, amount, state.inflator)
        self.tokens.check_transfer_quote(lender, amount)

        self._interest = state
        self.buckets.deposit(lender, price, amount, state.inflator)
        self.tokens.transfer_quote(lender, self.config.pool_account, amount)
        return self._record(AddQuoteToken(
            lender=lender, price=price, amount=amount, lp_minted=lp_minted,
        ))

    @_operation
    def remove_quote_token(self, lender: str, amount: int, price: int) -> LogEntry:
        """
        Raises:
            InvalidPrice, PriceBucketEmpty, InsufficientLiquidity, InsufficientLPBalance
        """
        require_positive(amount)
        state = self._preview_accrual()
        lp_burned = self.buckets.preview_withdraw(lender, price, amount, state.inflator)
        self.tokens.check_transfer_quote(self.config.pool_account, amount)

        self._interest = state
        self.buckets.withdraw(lender, price, amount, state.inflator)
        self.tokens.transfer_quote(self.config.pool_account, lender, amount)
        return self._record(RemoveQuoteToken(
            lender=lender, price=price, amount=amount, lp_burned=lp_burned,
        ))

    # ========================================================================
    # DEBT
    # ========================================================================

    @_operation
    def borrow(self, borrower: str, amount: int, limit_price: int) -> LogEntry:
        """
        Draw a loan against deposited collateral.

        Raises:
            InsufficientLiquidity, BorrowLimitReached, UndercollateralizedAction
        """
        require_positive(amount)
        require_positive(limit_price, "limit_price")
        state = self._preview_accrual()
        self.positions.plan_borrow(borrower, amount, limit_price, state.inflator)
        self.tokens.check_transfer_quote(self.config.pool_account, amount)

        self._interest = state
        lup = self.positions.borrow(borrower, amount, limit_price, state.inflator)
        self.tokens.transfer_quote(self.config.pool_account, borrower, amount)
        return self._record(Borrow(borrower=borrower, lup=lup, amount=amount))

    @_operation
    def repay(self, borrower: str, max_amount: int) -> LogEntry:
        """
        Repay up to max_amount of debt. The event carries the amount repaid.

        Raises:
            NoDebt, InsufficientFunds
        """
        require_positive(max_amount, "max_amount")
        state = self._preview_accrual()
        plan = self.positions.plan_repay(borrower, max_amount, state.inflator)
        self.tokens.check_transfer_quote(borrower, plan.amount)

        self._interest = state
        self.positions.repay(borrower, max_amount, state.inflator)
        self.tokens.transfer_quote(borrower, self.config.pool_account, plan.amount)
        lup = self.buckets.lup(state.inflator)
        return self._record(Repay(borrower=borrower, lup=lup, amount=plan.amount))

    @_operation
    def liquidate(self, borrower: str) -> LogEntry:
        """
        Settle an undercollateralized borrower's debt with their collateral.

        Raises:
            BorrowerNotLiquidatable
        """
        state = self._preview_accrual()
        self.positions.plan_liquidation(borrower, state.inflator)

        self._interest = state
        plan = self.positions.liquidate(borrower, state.inflator)
        return self._record(Liquidate(
            borrower=borrower, debt=plan.settled, token_ids=plan.token_ids,
        ))

    # ========================================================================
    # INTERNALS
    # ========================================================================

    def _require_initialized(self) -> InterestState:
        if self._interest is None:
            raise PoolNotInitialized(f"Pool {self.name} has not been initialized")
        return self._interest

    def _require_uninitialized(self) -> None:
        if self._interest is not None:
            raise AlreadyInitialized(f"Pool {self.name} is already initialized")

    def _require_rate(self, interest_rate: int) -> None:
        if isinstance(interest_rate, bool) or not isinstance(interest_rate, int):
            raise ValueError(f"interest_rate must be a WAD integer, got {interest_rate!r}")
        if interest_rate < 0 or interest_rate > self.config.max_interest_rate:
            raise ValueError(
                f"interest_rate {interest_rate} outside [0, {self.config.max_interest_rate}]"
            )

    def _preview_accrual(self) -> InterestState:
        state = self._require_initialized()
        utilization = calculate_utilization(
            self.positions.pool_debt(state.inflator), self.buckets.total_deposit()
        )
        return accrue(state, self._current_time, utilization)

    def _record(self, event: PoolEvent) -> LogEntry:
        entry = LogEntry(
            sequence=self._next_sequence,
            timestamp=self._current_time,
            event=event,
        )
        self._next_sequence += 1
        self.event_log.append(entry)
        self._log("APPLIED %s #%d %s %r", self.name, entry.sequence, entry.event_id, event)
        return entry

    def _log(self, message: str, *args) -> None:
        logger.log(logging.INFO if self.verbose else logging.DEBUG, message, *args)

    # ========================================================================
    # INVARIANTS
    # ========================================================================

    def verify_invariants(self) -> List[str]:
        """
        Check every pool-wide invariant.

        - each tracked token id sits in exactly one deposited or claimable set
        - every tracked token id is held by the pool account on the token ledger
        - subset pools only hold allowed ids
        - LP shares add up per bucket and borrower records are consistent
        - bucket deposits are backed by the pool's quote balance
        - quote balances net to zero across all accounts

        Returns:
            Human-readable violations; empty when every invariant holds.
        """
        inflator = self.pending_inflator()
        violations = self.collateral.verify_ownership()
        violations += self.buckets.verify_buckets(inflator)
        violations += self.positions.verify_positions(inflator)

        pool_account = self.config.pool_account
        for token_id in self.collateral.tracked_ids():
            owner = self.tokens.owner_of(token_id)
            if owner != pool_account:
                violations.append(f"token {token_id} tracked by the pool but owned by {owner}")
            if self._allowed is not None and token_id not in self._allowed:
                violations.append(f"token {token_id} outside the subset allow-list")

        deposits = self.buckets.total_deposit()
        balance = self.tokens.balance_of(pool_account)
        if deposits > balance:
            violations.append(f"bucket deposits {deposits} exceed pool balance {balance}")

        conservation = self.tokens.verify_conservation()
        violations += conservation['discrepancies']
        return violations

    def clone(self) -> ERC721Pool:
        """
        Create a deep copy of this pool, including its token ledger.

        All state is fully independent: modifications to the clone will not
        affect the original pool, and vice versa.
        """
        cloned = ERC721Pool.__new__(ERC721Pool)
        cloned.name = self.name
        cloned.config = self.config
        cloned.verbose = self.verbose
        cloned.tokens = self.tokens.copy()
        cloned.collateral = self.collateral.copy()
        cloned.buckets = self.buckets.copy(cloned.collateral)
        cloned.positions = self.positions.copy(cloned.collateral, cloned.buckets)
        cloned.purchases = PurchaseEngine(cloned.collateral, cloned.buckets, cloned.positions)
        cloned.event_log = list(self.event_log)
        cloned._interest = self._interest
        cloned._allowed = self._allowed
        cloned._current_time = self._current_time
        cloned._next_sequence = self._next_sequence
        return cloned
