"""
nftpool - NFT-Collateralized Lending Pool Ledger

Price-bucketed accounting for a lending pool that takes NFTs as collateral:
lenders deposit quote token into buckets on a fixed price ladder, borrowers
deposit NFTs and borrow against them, and bidders sell their NFTs into a
bucket for quote token.

Usage:
    from nftpool import ERC721Pool, TokenLedger, WAD, index_to_price

    tokens = TokenLedger()
    tokens.mint_quote("lender", 1_000 * WAD)
    tokens.mint_nfts("borrower", [1, 2, 3])

    pool = ERC721Pool("punks", tokens=tokens)
    pool.initialize_subset([1, 2, 3], interest_rate=WAD // 20)

    price = index_to_price(100)
    pool.add_quote_token("lender", 500 * WAD, price)
    pool.add_collateral("borrower", [1, 2, 3])
    pool.borrow("borrower", price, limit_price=price)
    info = pool.get_borrower_info("borrower")
"""

# Core types
from .core import (
    WAD,
    RAY,
    SECONDS_PER_YEAR,
    INFINITE_COLLATERALIZATION,
    POOL_ACCOUNT,
    SYSTEM_ACCOUNT,
    wmul,
    wdiv,
    rmul,
    rdiv,
    rpow,
    wad_to_ray,
    ceil_div,
    PoolView,
    LocationKind,
    TokenLocation,
    LogEntry,
    compute_event_id,
    PoolError,
    AlreadyInitialized,
    PoolNotInitialized,
    TokenNotAllowed,
    DuplicateCollateral,
    NotDeposited,
    InsufficientCollateral,
    UndercollateralizedAction,
    InsufficientLPBalance,
    TokenNotClaimable,
    InsufficientLiquidity,
    PriceBucketEmpty,
    InvalidTokenOrder,
    InsufficientCollateralValue,
    InvalidPrice,
    BorrowLimitReached,
    NoDebt,
    BorrowerNotLiquidatable,
    InsufficientFunds,
    NotTokenOwner,
    PoolInitialized,
    AddNFTCollateral,
    RemoveNFTCollateral,
    ClaimNFTCollateral,
    PurchaseWithNFTs,
    AddQuoteToken,
    RemoveQuoteToken,
    Borrow,
    Repay,
    Liquidate,
)

# Configuration
from .config import PoolConfig

# Price ladder
from .prices import (
    FLOAT_STEP,
    MIN_PRICE_INDEX,
    MAX_PRICE_INDEX,
    index_to_price,
    price_to_index,
    is_valid_price,
    nearest_price,
)

# Interest
from .interest import (
    InterestState,
    accrue,
    calculate_utilization,
    calculate_rate,
    calculate_pending_inflator,
    calculate_pending_interest,
    sync_borrower_debt,
)

# Engines
from .collateral import OrderedTokenSet, CollateralLedger
from .buckets import Bucket, BucketInfo, BucketLedger
from .borrower import (
    Borrower,
    BorrowerInfo,
    BorrowerPositionEngine,
    calculate_collateralization,
    calculate_encumbered_collateral,
)
from .purchase import PurchaseEngine, select_fifo
from .tokens import TokenLedger

# Pool
from .pool import ERC721Pool

__version__ = "0.1.0"

__all__ = [
    # Core
    'WAD', 'RAY', 'SECONDS_PER_YEAR', 'INFINITE_COLLATERALIZATION',
    'POOL_ACCOUNT', 'SYSTEM_ACCOUNT',
    'wmul', 'wdiv', 'rmul', 'rdiv', 'rpow', 'wad_to_ray', 'ceil_div',
    'PoolView', 'LocationKind', 'TokenLocation', 'LogEntry', 'compute_event_id',
    # Errors
    'PoolError', 'AlreadyInitialized', 'PoolNotInitialized', 'TokenNotAllowed',
    'DuplicateCollateral', 'NotDeposited', 'InsufficientCollateral',
    'UndercollateralizedAction', 'InsufficientLPBalance', 'TokenNotClaimable',
    'InsufficientLiquidity', 'PriceBucketEmpty', 'InvalidTokenOrder',
    'InsufficientCollateralValue', 'InvalidPrice', 'BorrowLimitReached', 'NoDebt',
    'BorrowerNotLiquidatable', 'InsufficientFunds', 'NotTokenOwner',
    # Events
    'PoolInitialized', 'AddNFTCollateral', 'RemoveNFTCollateral', 'ClaimNFTCollateral',
    'PurchaseWithNFTs', 'AddQuoteToken', 'RemoveQuoteToken', 'Borrow', 'Repay', 'Liquidate',
    # Config
    'PoolConfig',
    # Prices
    'FLOAT_STEP', 'MIN_PRICE_INDEX', 'MAX_PRICE_INDEX',
    'index_to_price', 'price_to_index', 'is_valid_price', 'nearest_price',
    # Interest
    'InterestState', 'accrue', 'calculate_utilization', 'calculate_rate',
    'calculate_pending_inflator', 'calculate_pending_interest', 'sync_borrower_debt',
    # Engines
    'OrderedTokenSet', 'CollateralLedger',
    'Bucket', 'BucketInfo', 'BucketLedger',
    'Borrower', 'BorrowerInfo', 'BorrowerPositionEngine',
    'calculate_collateralization', 'calculate_encumbered_collateral',
    'PurchaseEngine', 'select_fifo',
    'TokenLedger',
    # Pool
    'ERC721Pool',
]
