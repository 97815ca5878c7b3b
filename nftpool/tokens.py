"""
tokens.py - In-memory custody of the quote token and the NFT collection

TokenLedger stands in for the two token contracts a pool talks to: a
fungible quote token and a non-fungible collection. It keeps quote balances
per account and the owner of every minted NFT.

Issuance goes through SYSTEM_ACCOUNT, which is exempt from balance
validation and holds the negative of everything it has issued, so the sum of
all quote balances is always zero (double-entry).

Transfers are validated in full before any balance moves. check_* methods
expose the validation on its own so the pool can validate every leg of an
operation before applying any of them.
"""

from __future__ import annotations
from collections import defaultdict
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .core import SYSTEM_ACCOUNT, InsufficientFunds, NotTokenOwner, require_positive


class TokenLedger:
    """
    Quote balances and NFT ownership.

    Example:
        tokens = TokenLedger()
        tokens.mint_quote("alice", 1000 * WAD)
        tokens.mint_nfts("bob", [1, 2, 3])
        tokens.transfer_quote("alice", "pool", 250 * WAD)
    """

    def __init__(self):
        self._balances: Dict[str, int] = defaultdict(int)
        self._owners: Dict[int, str] = {}

    # ========================================================================
    # READS
    # ========================================================================

    def balance_of(self, account: str) -> int:
        return self._balances.get(account, 0)

    def owner_of(self, token_id: int) -> Optional[str]:
        return self._owners.get(token_id)

    def nfts_of(self, account: str) -> Tuple[int, ...]:
        return tuple(sorted(t for t, owner in self._owners.items() if owner == account))

    def accounts(self) -> Tuple[str, ...]:
        return tuple(sorted(a for a, b in self._balances.items() if b))

    def total_supply(self) -> int:
        """Quote token in circulation: everything issued by SYSTEM_ACCOUNT."""
        return -self._balances.get(SYSTEM_ACCOUNT, 0)

    # ========================================================================
    # ISSUANCE
    # ========================================================================

    def mint_quote(self, account: str, amount: int) -> None:
        self.transfer_quote(SYSTEM_ACCOUNT, account, amount)

    def mint_nfts(self, account: str, token_ids: Iterable[int]) -> None:
        """
        Raises:
            ValueError: If a token id has already been minted.
        """
        ids = list(token_ids)
        minted = [t for t in ids if t in self._owners]
        if minted or len(set(ids)) != len(ids):
            raise ValueError(f"Token ids already minted or repeated: {minted or ids}")
        for token_id in ids:
            self._owners[token_id] = account

    # ========================================================================
    # TRANSFERS
    # ========================================================================

    def check_transfer_quote(self, source: str, amount: int) -> None:
        """
        Raises:
            ValueError: If the amount is not positive.
            InsufficientFunds: If the source holds less than amount.
        """
        require_positive(amount)
        # SYSTEM_ACCOUNT is exempt from balance validation
        if source == SYSTEM_ACCOUNT:
            return
        balance = self.balance_of(source)
        if balance < amount:
            raise InsufficientFunds(f"{source} holds {balance}, cannot transfer {amount}")

    def transfer_quote(self, source: str, dest: str, amount: int) -> None:
        self.check_transfer_quote(source, amount)
        self._balances[source] -= amount
        self._balances[dest] += amount

    def check_transfer_nfts(self, source: str, token_ids: Iterable[int]) -> None:
        """
        Raises:
            NotTokenOwner: If the source does not own every token id.
        """
        foreign = [t for t in token_ids if self._owners.get(t) != source]
        if foreign:
            raise NotTokenOwner(f"{source} does not own token ids {foreign}")

    def transfer_nfts(self, source: str, dest: str, token_ids: Iterable[int]) -> None:
        ids = list(token_ids)
        self.check_transfer_nfts(source, ids)
        for token_id in ids:
            self._owners[token_id] = dest

    # ========================================================================
    # CONSERVATION
    # ========================================================================

    def verify_conservation(self, expected_supply: Optional[int] = None) -> Dict[str, Any]:
        """
        Verify that quote balances balance out.

        Double-entry accounting requires the sum of all balances, including
        SYSTEM_ACCOUNT, to be zero. With expected_supply, the issued total
        is checked as well.

        Returns:
            Dict with keys:
            - 'valid': bool - True if all conservation laws hold
            - 'supply': int - Quote token issued so far
            - 'discrepancies': List[str] - Any violations found
        """
        discrepancies: List[str] = []
        net = sum(self._balances.values())
        if net != 0:
            discrepancies.append(f"quote balances sum to {net}, expected 0")
        negative = [a for a, b in self._balances.items() if b < 0 and a != SYSTEM_ACCOUNT]
        if negative:
            discrepancies.append(f"negative balances: {sorted(negative)}")
        supply = self.total_supply()
        if expected_supply is not None and supply != expected_supply:
            discrepancies.append(f"supply {supply} differs from expected {expected_supply}")
        return {
            'valid': len(discrepancies) == 0,
            'supply': supply,
            'discrepancies': discrepancies,
        }

    def copy(self) -> TokenLedger:
        cloned = TokenLedger.__new__(TokenLedger)
        cloned._balances = defaultdict(int, self._balances)
        cloned._owners = dict(self._owners)
        return cloned
