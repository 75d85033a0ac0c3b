"""
Token holdings and spending allowances for the in-process asset bank.

Implements HoldingsTable[Address, TokenId] -> Amount and
AllowanceTable[(owner, spender, TokenId)] -> Amount.
"""

from typing import Dict, Tuple


# Type aliases
Address = str  # opaque holder id (user, engine, block, treasury)
TokenId = str  # opaque token id
Amount = int  # Non-negative integer (arbitrary precision)

# Native token identifier
NATIVE_TOKEN = "native"


class HoldingsTable:
    """
    Sparse table mapping (holder, token) -> amount.

    Zero balances are dropped. Callers that need a stable order (exports,
    commitments) must sort keys themselves.
    """

    def __init__(self):
        self._balances: Dict[Tuple[Address, TokenId], Amount] = {}

    def get(self, holder: Address, token: TokenId) -> Amount:
        """Balance of `token` held by `holder`; 0 if absent."""
        return self._balances.get((holder, token), 0)

    def set(self, holder: Address, token: TokenId, amount: Amount) -> None:
        """
        Overwrite a balance.

        Raises:
            ValueError: If amount is negative
        """
        if amount < 0:
            raise ValueError(f"Balance cannot be negative: {amount}")
        if amount == 0:
            self._balances.pop((holder, token), None)
        else:
            self._balances[(holder, token)] = amount

    def credit(self, holder: Address, token: TokenId, amount: Amount) -> None:
        if amount < 0:
            raise ValueError(f"Credit must be non-negative: {amount}")
        self.set(holder, token, self.get(holder, token) + amount)

    def debit(self, holder: Address, token: TokenId, amount: Amount) -> None:
        """
        Remove `amount` from a balance.

        Raises:
            ValueError: If amount is negative or the holder has less than `amount`
        """
        if amount < 0:
            raise ValueError(f"Debit must be non-negative: {amount}")
        current = self.get(holder, token)
        if amount > current:
            raise ValueError(
                f"Insufficient balance for {holder}: has {current} {token}, needs {amount}"
            )
        self.set(holder, token, current - amount)

    def move(self, token: TokenId, sender: Address, recipient: Address, amount: Amount) -> None:
        """Debit `sender` then credit `recipient`; nothing changes if the debit fails."""
        self.debit(sender, token, amount)
        self.credit(recipient, token, amount)

    def total_supply(self, token: TokenId) -> Amount:
        return sum(amount for (_, t), amount in self._balances.items() if t == token)

    def get_all_balances(self) -> Dict[Tuple[Address, TokenId], Amount]:
        return dict(self._balances)

    def __repr__(self) -> str:
        return f"HoldingsTable({len(self._balances)} entries)"


class AllowanceTable:
    """Sparse table mapping (owner, spender, token) -> remaining allowance."""

    def __init__(self) -> None:
        self._allowances: Dict[Tuple[Address, Address, TokenId], Amount] = {}

    def get(self, owner: Address, spender: Address, token: TokenId) -> Amount:
        return self._allowances.get((owner, spender, token), 0)

    def set(self, owner: Address, spender: Address, token: TokenId, amount: Amount) -> None:
        if amount < 0:
            raise ValueError(f"Allowance cannot be negative: {amount}")
        if amount == 0:
            self._allowances.pop((owner, spender, token), None)
        else:
            self._allowances[(owner, spender, token)] = amount

    def spend(self, owner: Address, spender: Address, token: TokenId, amount: Amount) -> None:
        """
        Consume `amount` of an allowance.

        Raises:
            ValueError: If the remaining allowance is below `amount`
        """
        current = self.get(owner, spender, token)
        if amount > current:
            raise ValueError(
                f"Insufficient allowance: {spender} may move {current} {token} of {owner}, needs {amount}"
            )
        self.set(owner, spender, token, current - amount)

    def __repr__(self) -> str:
        return f"AllowanceTable({len(self._allowances)} entries)"
