"""
helpers.py - Shared constants and builders for nftpool tests
"""

from datetime import datetime
from typing import Any, Dict

from nftpool import (
    ERC721Pool, TokenLedger, PoolConfig,
    WAD, index_to_price,
)


T0 = datetime(2025, 1, 1)

# Ladder prices used throughout the tests. index 0 is exactly 1 WAD.
PRICE = index_to_price(0)
HIGH_PRICE = index_to_price(100)
LOW_PRICE = index_to_price(-100)

RATE = WAD // 20  # 5% annual

BORROWER_IDS = list(range(1, 11))
BIDDER_IDS = list(range(11, 21))
ACCOUNTS = ("lender", "lender2", "borrower", "bidder")


def funded_tokens() -> TokenLedger:
    """Token ledger with two lenders, a borrower and a bidder."""
    tokens = TokenLedger()
    tokens.mint_quote("lender", 10_000 * WAD)
    tokens.mint_quote("lender2", 10_000 * WAD)
    tokens.mint_quote("borrower", 1_000 * WAD)
    tokens.mint_quote("bidder", 1_000 * WAD)
    tokens.mint_nfts("borrower", BORROWER_IDS)
    tokens.mint_nfts("bidder", BIDDER_IDS)
    return tokens


def make_pool(interest_rate: int = 0, config: PoolConfig = None) -> ERC721Pool:
    pool = ERC721Pool("test", config=config, tokens=funded_tokens(), initial_time=T0, verbose=False)
    pool.initialize(interest_rate=interest_rate)
    return pool


def pool_snapshot(pool: ERC721Pool) -> Dict[str, Any]:
    """Capture every observable piece of pool state for equality checks."""
    all_ids = BORROWER_IDS + BIDDER_IDS
    accounts = set(ACCOUNTS) | {pool.config.pool_account}
    inflator = pool.pending_inflator()
    prices = pool.buckets.prices()
    return {
        "interest": pool.interest_state,
        "locations": {t: pool.token_location(t) for t in all_ids},
        "buckets": tuple(pool.buckets.bucket_info(p, inflator) for p in prices),
        "lp": {(a, p): pool.lp_balance(a, p) for a in accounts for p in prices},
        "borrowers": {b: pool.positions.get(b) for b in pool.positions.borrowers()},
        "pool_debt": pool.pool_debt(),
        "balances": {a: pool.tokens.balance_of(a) for a in accounts},
        "owners": {t: pool.tokens.owner_of(t) for t in all_ids},
        "events": list(pool.event_log),
    }
