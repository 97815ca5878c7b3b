"""
test_buckets.py - Unit tests for buckets.py

Tests:
- LP minting and burning on deposit and withdrawal
- Exchange rate including claimable collateral
- source_liquidity (no partial fill)
- claim_collateral LP burn
- Draw and repay planning across buckets, LUP
"""

import pytest

from nftpool import (
    WAD, RAY, CollateralLedger, BucketLedger, index_to_price,
    InvalidPrice, PriceBucketEmpty, InsufficientLiquidity,
    InsufficientLPBalance, TokenNotClaimable,
)


PRICE = index_to_price(0)
HIGH_PRICE = index_to_price(100)


@pytest.fixture
def collateral():
    return CollateralLedger()


@pytest.fixture
def buckets(collateral):
    buckets = BucketLedger(collateral)
    buckets.deposit("lender", PRICE, 10 * WAD, RAY)
    return buckets


class TestDeposit:

    def test_first_deposit_mints_at_par(self, buckets):
        assert buckets.lp_balance("lender", PRICE) == 10 * RAY
        assert buckets.exchange_rate(PRICE, RAY) == RAY

    def test_second_deposit_same_rate(self, buckets):
        minted = buckets.deposit("lender2", PRICE, 5 * WAD, RAY)
        assert minted == 5 * RAY
        assert buckets.get(PRICE).lp_total == 15 * RAY

    def test_off_ladder_price(self, buckets):
        with pytest.raises(InvalidPrice):
            buckets.deposit("lender", PRICE + 1, WAD, RAY)

    def test_deposit_after_value_growth_mints_fewer_shares(self, collateral, buckets):
        collateral.add_collateral("b", [1, 2])
        collateral.move_to_claimable("b", [1, 2], PRICE)
        # value 12, shares 10: 6 WAD mints 5 shares
        assert buckets.preview_deposit(PRICE, 6 * WAD, RAY) == 5 * RAY

    def test_prices_highest_first(self, buckets):
        buckets.deposit("lender", HIGH_PRICE, WAD, RAY)
        assert buckets.prices() == (HIGH_PRICE, PRICE)


class TestWithdraw:

    def test_withdraw_burns_proportionally(self, buckets):
        burned = buckets.withdraw("lender", PRICE, 4 * WAD, RAY)
        assert burned == 4 * RAY
        assert buckets.get(PRICE).deposit == 6 * WAD
        assert buckets.lp_balance("lender", PRICE) == 6 * RAY

    def test_withdraw_everything_prunes_bucket(self, buckets):
        buckets.withdraw("lender", PRICE, 10 * WAD, RAY)
        assert buckets.get(PRICE) is None
        assert buckets.prices() == ()

    def test_more_than_deposit(self, buckets):
        with pytest.raises(InsufficientLiquidity):
            buckets.withdraw("lender", PRICE, 11 * WAD, RAY)

    def test_without_shares(self, buckets):
        with pytest.raises(InsufficientLPBalance):
            buckets.withdraw("stranger", PRICE, WAD, RAY)
        assert buckets.get(PRICE).deposit == 10 * WAD

    def test_empty_bucket(self, buckets):
        with pytest.raises(PriceBucketEmpty):
            buckets.withdraw("lender", HIGH_PRICE, WAD, RAY)


class TestExchangeRate:

    def test_missing_bucket(self, buckets):
        with pytest.raises(PriceBucketEmpty):
            buckets.exchange_rate(HIGH_PRICE, RAY)

    def test_includes_claimable_value(self, collateral, buckets):
        collateral.add_collateral("b", [1])
        collateral.move_to_claimable("b", [1], PRICE)
        assert buckets.bucket_value(PRICE, RAY) == 11 * WAD
        assert buckets.exchange_rate(PRICE, RAY) == 11 * RAY // 10

    def test_includes_accrued_debt(self, buckets):
        buckets.apply_draw(buckets.plan_draw(4 * WAD, RAY), RAY)
        assert buckets.bucket_value(PRICE, 2 * RAY) == 14 * WAD


class TestSourceLiquidity:

    def test_draws_full_amount(self, buckets):
        assert buckets.source_liquidity(PRICE, 3 * WAD, RAY) == 3 * WAD
        assert buckets.get(PRICE).deposit == 7 * WAD

    def test_no_partial_fill(self, buckets):
        with pytest.raises(InsufficientLiquidity):
            buckets.source_liquidity(PRICE, 11 * WAD, RAY)
        assert buckets.get(PRICE).deposit == 10 * WAD

    def test_bucket_without_shares(self, buckets):
        with pytest.raises(PriceBucketEmpty):
            buckets.source_liquidity(HIGH_PRICE, WAD, RAY)


class TestClaimCollateral:

    @pytest.fixture
    def claimable(self, collateral, buckets):
        collateral.add_collateral("b", [1, 2])
        collateral.move_to_claimable("b", [1, 2], PRICE)
        return buckets

    def test_burn_rounds_up(self, claimable):
        # value 12 WAD, 10 RAY shares: one NFT costs ceil(10/12) shares
        burned = claimable.preview_claim("lender", PRICE, [1], RAY)
        assert burned == 833333333333333333333333334

    def test_claim(self, collateral, claimable):
        burned = claimable.claim_collateral("lender", PRICE, [1], RAY)
        assert claimable.lp_balance("lender", PRICE) == 10 * RAY - burned
        assert claimable.get(PRICE).lp_total == 10 * RAY - burned
        assert collateral.claimable(PRICE) == (2,)
        assert collateral.location(1) is None

    def test_not_claimable(self, claimable):
        with pytest.raises(TokenNotClaimable):
            claimable.claim_collateral("lender", PRICE, [3], RAY)

    def test_insufficient_lp(self, collateral, claimable):
        with pytest.raises(InsufficientLPBalance):
            claimable.claim_collateral("stranger", PRICE, [1], RAY)
        assert collateral.claimable(PRICE) == (1, 2)

    def test_empty_bucket(self, collateral, buckets):
        collateral.add_collateral("b", [1])
        collateral.move_to_claimable("b", [1], HIGH_PRICE)
        with pytest.raises(PriceBucketEmpty):
            buckets.claim_collateral("lender", HIGH_PRICE, [1], RAY)


class TestDrawAndRepay:

    @pytest.fixture
    def two_buckets(self, buckets):
        buckets.deposit("lender", HIGH_PRICE, 10 * WAD, RAY)
        return buckets

    def test_draw_from_highest_price_down(self, two_buckets):
        plan = two_buckets.plan_draw(15 * WAD, RAY)
        assert plan == ((HIGH_PRICE, 10 * WAD), (PRICE, 5 * WAD))
        assert two_buckets.lup_after_draw(plan, RAY) == PRICE
        two_buckets.apply_draw(plan, RAY)
        assert two_buckets.lup(RAY) == PRICE
        assert two_buckets.total_debt(RAY) == 15 * WAD
        assert two_buckets.total_deposit() == 5 * WAD

    def test_lup_none_without_debt(self, two_buckets):
        assert two_buckets.lup(RAY) is None

    def test_draw_beyond_liquidity(self, two_buckets):
        with pytest.raises(InsufficientLiquidity):
            two_buckets.plan_draw(21 * WAD, RAY)

    def test_repay_from_lup_upward(self, two_buckets):
        two_buckets.apply_draw(two_buckets.plan_draw(15 * WAD, RAY), RAY)
        plan, surplus = two_buckets.plan_repay(12 * WAD, RAY)
        assert plan == ((PRICE, 5 * WAD), (HIGH_PRICE, 7 * WAD))
        assert surplus == 0
        two_buckets.apply_repay(plan, RAY)
        assert two_buckets.lup(RAY) == HIGH_PRICE

    def test_repay_surplus(self, two_buckets):
        two_buckets.apply_draw(two_buckets.plan_draw(15 * WAD, RAY), RAY)
        plan, surplus = two_buckets.plan_repay(20 * WAD, RAY)
        assert surplus == 5 * WAD

    def test_debt_grows_with_inflator(self, two_buckets):
        two_buckets.apply_draw(two_buckets.plan_draw(4 * WAD, RAY), RAY)
        assert two_buckets.bucket_debt(HIGH_PRICE, 3 * RAY // 2) == 6 * WAD

    def test_settle_debt(self, two_buckets):
        two_buckets.apply_draw(two_buckets.plan_draw(4 * WAD, RAY), RAY)
        two_buckets.settle_debt(HIGH_PRICE, WAD, RAY)
        assert two_buckets.bucket_debt(HIGH_PRICE, RAY) == 3 * WAD
        with pytest.raises(ValueError):
            two_buckets.settle_debt(HIGH_PRICE, 4 * WAD, RAY)

    def test_verify_buckets(self, two_buckets):
        assert two_buckets.verify_buckets(RAY) == []
        two_buckets.get(PRICE).lp_total += 1
        assert two_buckets.verify_buckets(RAY)
