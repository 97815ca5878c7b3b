"""
config.py - Pool configuration

PoolConfig is an immutable parameter sheet, fixed when a pool is created.
Values are WAD-scaled integers, like every other quantity in the ledger.
"""

from __future__ import annotations
from dataclasses import dataclass, fields
from decimal import Decimal
from typing import Any, Mapping

from .core import WAD, POOL_ACCOUNT


# Minimum collateral value / debt a borrower must keep (100%).
DEFAULT_MIN_COLLATERALIZATION = WAD

# Highest annual interest rate a pool can be initialized with (100%).
DEFAULT_MAX_INTEREST_RATE = WAD


def _to_wad(value: Any) -> int:
    """
    Convert a configuration value to a WAD integer.

    Integers are taken as already scaled. Strings and Decimals are read as
    plain numbers ("1.25" -> 1.25 WAD). Floats are rejected.
    """
    if isinstance(value, bool):
        raise ValueError(f"Expected a number, got {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        raise ValueError(f"Float configuration values are not allowed, got {value!r}")
    return int(Decimal(str(value)) * WAD)


@dataclass(frozen=True, slots=True)
class PoolConfig:
    """
    Immutable configuration for an ERC721Pool.

    Attributes:
        min_collateralization: Required collateral value / debt (WAD). Guards
            collateral removal, borrowing and purchases; positions below it
            can be liquidated.
        max_interest_rate: Upper bound for the initialization rate (WAD).
        pool_account: Account that holds pool custody on the token ledger.
    """
    min_collateralization: int = DEFAULT_MIN_COLLATERALIZATION
    max_interest_rate: int = DEFAULT_MAX_INTEREST_RATE
    pool_account: str = POOL_ACCOUNT

    def __post_init__(self):
        """Normalize numeric fields to WAD integers and validate ranges."""
        object.__setattr__(self, 'min_collateralization', _to_wad(self.min_collateralization))
        object.__setattr__(self, 'max_interest_rate', _to_wad(self.max_interest_rate))

        if self.min_collateralization <= 0:
            raise ValueError(
                f"min_collateralization must be positive, got {self.min_collateralization}"
            )
        if self.max_interest_rate <= 0:
            raise ValueError(
                f"max_interest_rate must be positive, got {self.max_interest_rate}"
            )
        if not self.pool_account or not self.pool_account.strip():
            raise ValueError("pool_account cannot be empty")

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> PoolConfig:
        """
        Build a config from a plain mapping (e.g. parsed JSON or TOML).

        Unknown keys are rejected so typos do not silently fall back to defaults.

        Example:
            config = PoolConfig.from_mapping({"min_collateralization": "1.25"})
        """
        known = {f.name for f in fields(cls)}
        unknown = set(raw) - known
        if unknown:
            raise ValueError(f"Unknown pool config keys: {sorted(unknown)}")
        return cls(**dict(raw))
