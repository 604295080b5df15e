"""
Token balances and atomic transfer batches.

Implements BalanceTable[Account, Mint] -> Amount plus the value-transfer
service the engine uses: a batch of transfers either applies in full or not at
all.
"""

from typing import Dict, Iterable, Optional, Tuple

from ..core.errors import ErrorCode, error_for
from ..core.risk.types import Transfer


# Type aliases
Account = str  # token account identifier
Mint = str  # token mint identifier
Amount = int  # Non-negative integer (raw token units)


class BalanceTable:
    """
    Balance table mapping (account, mint) -> amount.

    Each account has an owner; only the owner may sign transfers out of it.
    Accounts with no registered owner are owned by themselves (wallet accounts).
    """

    def __init__(self):
        self._balances: Dict[Tuple[Account, Mint], Amount] = {}
        self._owners: Dict[Account, str] = {}

    def get(self, account: Account, mint: Mint) -> Amount:
        """Get balance for (account, mint). Returns 0 if not found."""
        return self._balances.get((account, mint), 0)

    def set(self, account: Account, mint: Mint, amount: Amount) -> None:
        """
        Set balance for (account, mint).

        Raises:
            ValueError: If amount is negative
        """
        if amount < 0:
            raise ValueError(f"Balance cannot be negative: {amount}")
        if amount == 0:
            # Remove zero balances to keep table sparse
            self._balances.pop((account, mint), None)
        else:
            self._balances[(account, mint)] = amount

    def add(self, account: Account, mint: Mint, delta: Amount) -> None:
        """
        Add delta to balance (negative delta subtracts).

        Raises:
            ValueError: If resulting balance would be negative
        """
        current = self.get(account, mint)
        new_balance = current + delta
        if new_balance < 0:
            raise ValueError(
                f"Insufficient balance: {current} + {delta} = {new_balance} < 0"
            )
        self.set(account, mint, new_balance)

    def set_owner(self, account: Account, owner: str) -> None:
        self._owners[account] = owner

    def owner_of(self, account: Account) -> str:
        return self._owners.get(account, account)

    def apply_batch(self, transfers: Iterable[Transfer], mint: Mint) -> None:
        """
        Apply every transfer or none of them.

        The whole batch is checked against a scratch copy of the touched
        balances before anything is written.

        Raises:
            TokenError: INVALID_SIGNER when an authority does not own its source,
                INSUFFICIENT_BALANCE when any source would go negative.
        """
        batch = list(transfers)
        pending: Dict[Account, Amount] = {}
        for t in batch:
            if t.authority != self.owner_of(t.source):
                raise error_for(
                    ErrorCode.INVALID_SIGNER,
                    f"{t.authority!r} cannot move funds from {t.source!r}",
                )
            for account in (t.source, t.destination):
                if account not in pending:
                    pending[account] = self.get(account, mint)
            pending[t.source] -= t.amount
            if pending[t.source] < 0:
                raise error_for(
                    ErrorCode.INSUFFICIENT_BALANCE,
                    f"{t.source!r} short by {-pending[t.source]}",
                )
            pending[t.destination] += t.amount

        for account, amount in pending.items():
            self.set(account, mint, amount)

    def total(self, mint: Optional[Mint] = None) -> Amount:
        """Sum of all balances, optionally for one mint."""
        return sum(
            amount for (_, m), amount in self._balances.items()
            if mint is None or m == mint
        )

    def get_all_balances(self) -> Dict[Tuple[Account, Mint], Amount]:
        return dict(self._balances)

    def verify_non_negative(self) -> bool:
        return all(amount >= 0 for amount in self._balances.values())

    def __repr__(self) -> str:
        return f"BalanceTable({len(self._balances)} entries)"
