"""
conftest.py - Shared pytest fixtures for nftpool tests

Provides common fixtures used across unit, conformance and functional tests:
- Token ledgers with funded lenders and NFT holders
- Pools (uninitialized, zero-rate, interest-bearing, subset)
- Pools with liquidity and an open loan

Constants and builders live in tests/helpers.py.
"""

import pytest

from nftpool import ERC721Pool, WAD

from tests.helpers import T0, PRICE, RATE, funded_tokens, make_pool


@pytest.fixture
def tokens():
    return funded_tokens()


@pytest.fixture
def raw_pool(tokens):
    """Pool that has not been initialized yet."""
    return ERC721Pool("test", tokens=tokens, initial_time=T0, verbose=False)


@pytest.fixture
def pool():
    """Initialized zero-rate pool."""
    return make_pool()


@pytest.fixture
def interest_pool():
    """Initialized pool charging RATE."""
    return make_pool(interest_rate=RATE)


@pytest.fixture
def subset_pool(tokens):
    pool = ERC721Pool("subset", tokens=tokens, initial_time=T0, verbose=False)
    pool.initialize_subset([1, 2, 3], interest_rate=0)
    return pool


@pytest.fixture
def funded_pool(pool):
    """Zero-rate pool with 100 WAD of liquidity at PRICE."""
    pool.add_quote_token("lender", 100 * WAD, PRICE)
    return pool


@pytest.fixture
def loan_pool(funded_pool):
    """Zero-rate pool where the borrower owes 2 WAD against NFTs 1, 2, 3."""
    funded_pool.add_collateral("borrower", [1, 2, 3])
    funded_pool.borrow("borrower", 2 * WAD, limit_price=PRICE)
    return funded_pool


@pytest.fixture
def interest_loan_pool(interest_pool):
    """Interest-bearing pool where the borrower owes 2 WAD against NFTs 1, 2."""
    interest_pool.add_quote_token("lender", 100 * WAD, PRICE)
    interest_pool.add_collateral("borrower", [1, 2])
    interest_pool.borrow("borrower", 2 * WAD, limit_price=PRICE)
    return interest_pool
