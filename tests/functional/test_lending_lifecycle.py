"""
test_lending_lifecycle.py - End-to-end pool lifecycle scenario tests

Tests complete lending lifecycles:
- Two-bucket lending through liquidation, claims and full unwind
- Interest accrual paid back to lenders
- Purchase with NFTs followed by a lender claim
"""

import pytest
from datetime import timedelta

from nftpool import (
    WAD, RAY, LocationKind, TokenLocation, Liquidate, Repay, Borrow,
    BorrowerNotLiquidatable,
)

from tests.helpers import make_pool, T0, PRICE, HIGH_PRICE, RATE


class TestLiquidationLifecycle:
    """Deposit, borrow, liquidate, claim and unwind in a zero-rate pool."""

    @pytest.fixture
    def pool(self):
        pool = make_pool()
        pool.add_quote_token("lender", 10 * WAD, HIGH_PRICE)
        pool.add_quote_token("lender", 10 * WAD, PRICE)
        return pool

    def test_full_lifecycle(self, pool):
        # Borrower draws from the top bucket only
        pool.add_collateral("borrower", [1, 2, 3])
        entry = pool.borrow("borrower", 4 * WAD, limit_price=PRICE)
        assert entry.event == Borrow(borrower="borrower", lup=HIGH_PRICE, amount=4 * WAD)
        with pytest.raises(BorrowerNotLiquidatable):
            pool.liquidate("borrower")

        # A second loan exhausts the top bucket and pushes the LUP down
        pool.add_collateral("bidder", list(range(11, 21)))
        entry = pool.borrow("bidder", 8 * WAD, limit_price=PRICE)
        assert entry.event.lup == PRICE
        assert pool.bucket_info(HIGH_PRICE).debt == 10 * WAD
        assert pool.bucket_info(PRICE).debt == 2 * WAD
        assert pool.get_borrower_info("borrower").collateralization < WAD

        # Liquidation settles the low bucket first, then moves up
        entry = pool.liquidate("borrower")
        assert entry.event == Liquidate(
            borrower="borrower", debt=2 * WAD + HIGH_PRICE, token_ids=(1, 2, 3),
        )
        assert pool.token_location(1) == TokenLocation.claimable(PRICE)
        assert pool.token_location(2) == TokenLocation.claimable(PRICE)
        assert pool.token_location(3) == TokenLocation.claimable(HIGH_PRICE)
        assert pool.bucket_info(PRICE).debt == 0
        assert pool.bucket_info(PRICE).exchange_rate == RAY
        assert pool.lup() == HIGH_PRICE

        info = pool.get_borrower_info("borrower")
        assert info.debt == 2 * WAD - HIGH_PRICE
        assert info.collateral_ids == ()
        assert pool.verify_invariants() == []

        # The lender takes an NFT for one share's worth of LP
        entry = pool.claim_collateral("lender", "lender", [1], PRICE)
        assert entry.event.lp_burned == RAY
        assert pool.tokens.owner_of(1) == "lender"

        # Both borrowers repay; the pool has no debt left
        entry = pool.repay("bidder", 100 * WAD)
        assert entry.event.amount == 8 * WAD
        entry = pool.repay("borrower", WAD)
        assert entry.event == Repay(borrower="borrower", lup=None, amount=2 * WAD - HIGH_PRICE)
        assert pool.pool_debt() == 0
        assert pool.lup() is None
        assert "borrower" not in pool.positions.borrowers()

        # Unwind every position
        pool.remove_collateral("bidder", list(range(11, 21)))
        pool.remove_quote_token("lender", 8 * WAD, PRICE)
        pool.claim_collateral("lender", "lender", [2], PRICE)
        pool.claim_collateral("lender", "lender", [3], HIGH_PRICE)
        pool.remove_quote_token("lender", 10 * WAD - HIGH_PRICE, HIGH_PRICE)

        assert pool.buckets.prices() == ()
        assert pool.positions.borrowers() == ()
        assert pool.lp_balance("lender", PRICE) == 0
        assert pool.lp_balance("lender", HIGH_PRICE) == 0
        assert pool.tokens.balance_of(pool.config.pool_account) == 0
        assert pool.tokens.balance_of("lender") == 9_998 * WAD - HIGH_PRICE
        assert pool.tokens.balance_of("borrower") == 1_002 * WAD + HIGH_PRICE
        assert pool.tokens.balance_of("bidder") == 1_000 * WAD
        assert pool.tokens.nfts_of("lender") == (1, 2, 3)
        assert pool.verify_invariants() == []


class TestInterestLifecycle:

    def test_lenders_earn_interest(self):
        pool = make_pool(interest_rate=RATE)
        deposit = pool.add_quote_token("lender", 100 * WAD, PRICE)
        pool.add_collateral("borrower", [1, 2, 3, 4])
        pool.borrow("borrower", 2 * WAD, limit_price=PRICE)

        pool.advance_time(T0 + timedelta(days=365))
        info = pool.get_borrower_info("borrower")
        assert info.pending_debt > 2 * WAD // 20
        assert pool.bucket_info(PRICE).exchange_rate > RAY

        entry = pool.repay("borrower", 10 * WAD)
        assert entry.event.amount > 2 * WAD + 2 * WAD // 20
        assert pool.get_borrower_info("borrower").debt == 0

        # The original deposit is now worth fewer shares than were minted
        entry = pool.remove_quote_token("lender", 100 * WAD, PRICE)
        assert entry.event.lp_burned < deposit.event.lp_minted
        assert pool.lp_balance("lender", PRICE) > 0
        assert pool.verify_invariants() == []

    def test_reserves_stay_with_pool(self):
        pool = make_pool(interest_rate=RATE)
        pool.add_quote_token("lender", 100 * WAD, PRICE)
        pool.add_collateral("borrower", [1, 2, 3, 4])
        pool.borrow("borrower", 2 * WAD, limit_price=PRICE)
        pool.advance_time(T0 + timedelta(days=180))
        pool.repay("borrower", 10 * WAD)

        reserves = pool.tokens.balance_of(pool.config.pool_account) - pool.buckets.total_deposit()
        assert reserves >= 0


class TestPurchaseLifecycle:

    def test_purchase_then_claim(self):
        pool = make_pool()
        pool.add_quote_token("lender", 10 * WAD, PRICE)
        pool.add_quote_token("lender2", 10 * WAD, PRICE)
        pool.add_collateral("bidder", [15, 11, 12])

        entry = pool.purchase_bid("bidder", 2 * WAD, PRICE, [15, 11, 12])
        assert entry.event.token_ids == (15, 11)
        assert pool.token_location(12).kind is LocationKind.DEPOSITED
        assert pool.bucket_info(PRICE).claimable_ids == (15, 11)
        assert pool.bucket_info(PRICE).exchange_rate == RAY
        assert pool.tokens.balance_of("bidder") == 1_002 * WAD

        pool.claim_collateral("lender", "lender", [15], PRICE)
        pool.claim_collateral("lender2", "lender", [11], PRICE)
        assert pool.tokens.nfts_of("lender") == (11, 15)
        assert pool.lp_balance("lender", PRICE) == 9 * RAY
        assert pool.lp_balance("lender2", PRICE) == 9 * RAY
        assert pool.verify_invariants() == []
