"""
In-process collaborators for simulations and tests.

- `TokenBank`: an `AssetMover` over a `HoldingsTable` plus allowances.
- `MemoryBlock`: a deposit-stage block holding its deposit token; `run()`
  mints whatever yield has been scheduled for it.
- `MemoryVaultBlock`: an accumulator block issuing shares against a want
  token, with a configurable withdrawal input unit.

Both blocks accept failure injection per operation name (`fail("withdraw")`,
`fail("deposit_pull_from", mode="raise")`) so callers can exercise the
runner's error paths without bespoke doubles.
"""

from __future__ import annotations

from typing import Dict, Optional, Sequence

from ..core.blocks import CORE_CAPABILITIES, Capability, WithdrawalInputType
from ..core.settings import MAX_ALLOWANCE
from ..state.balances import NATIVE_TOKEN, Address, AllowanceTable, Amount, HoldingsTable, TokenId


class InjectedFailure(RuntimeError):
    """Raised by a memory block operation configured with `mode="raise"`."""


class TokenBank:
    """Reliable token movement with allowances."""

    def __init__(self) -> None:
        self.holdings = HoldingsTable()
        self.allowances = AllowanceTable()

    def mint(self, holder: Address, token: TokenId, amount: Amount) -> None:
        self.holdings.credit(holder, token, amount)

    def burn(self, holder: Address, token: TokenId, amount: Amount) -> None:
        self.holdings.debit(holder, token, amount)

    def balance_of(self, holder: Address, token: TokenId) -> Amount:
        return self.holdings.get(holder, token)

    def allowance(self, owner: Address, spender: Address, token: TokenId) -> Amount:
        return self.allowances.get(owner, spender, token)

    def approve(self, owner: Address, spender: Address, token: TokenId, amount: Amount) -> None:
        self.allowances.set(owner, spender, token, amount)

    def transfer(self, token: TokenId, sender: Address, recipient: Address, amount: Amount) -> None:
        self.holdings.move(token, sender, recipient, amount)

    def transfer_from(
        self,
        token: TokenId,
        owner: Address,
        recipient: Address,
        amount: Amount,
        *,
        spender: Address,
    ) -> None:
        """Move `owner`'s tokens on behalf of `spender`; nothing changes on failure."""
        if amount > self.holdings.get(owner, token):
            raise ValueError(f"Insufficient balance for {owner}: needs {amount} {token}")
        if spender != owner:
            self.allowances.spend(owner, spender, token, amount)
        self.holdings.move(token, owner, recipient, amount)

    def __repr__(self) -> str:
        return f"TokenBank({self.holdings!r}, {self.allowances!r})"


class MemoryBlock:
    """Deposit-stage block: holds its deposit token, mints scheduled yield on `run()`."""

    def __init__(
        self,
        bank: TokenBank,
        address: Address,
        deposit_token: TokenId,
        out_tokens: Sequence[TokenId] = (),
        *,
        owner: Address = "runner",
    ) -> None:
        self.bank = bank
        self.address = address
        self.owner = owner
        self.deposit_token = deposit_token
        self.out_tokens = tuple(out_tokens)
        self.tag: Optional[str] = None
        self.deposit_adaptors: list[str] = []
        self.run_calls = 0
        self._recurring_yield: Dict[TokenId, Amount] = {}
        self._queued_yield: Dict[TokenId, Amount] = {}
        self._failures: Dict[str, str] = {}

    # -- scripting ---------------------------------------------------------

    def schedule_yield(self, token: TokenId, amount: Amount, *, recurring: bool = False) -> None:
        """Mint `amount` of `token` into this block on the next run (or every run)."""
        target = self._recurring_yield if recurring else self._queued_yield
        target[token] = target.get(token, 0) + amount

    def fail(self, operation: str, mode: str = "false") -> None:
        if mode not in ("false", "raise"):
            raise ValueError(f"mode must be 'false' or 'raise', got {mode!r}")
        self._failures[operation] = mode

    def heal(self, operation: Optional[str] = None) -> None:
        if operation is None:
            self._failures.clear()
        else:
            self._failures.pop(operation, None)

    def _injected(self, operation: str) -> bool:
        mode = self._failures.get(operation)
        if mode == "raise":
            raise InjectedFailure(f"{self.address}.{operation} injected failure")
        return mode == "false"

    # -- capability --------------------------------------------------------

    def capabilities(self) -> frozenset[Capability]:
        return CORE_CAPABILITIES

    def _take(self, payer: Address, token: TokenId, amount: Amount, min_out: Amount) -> bool:
        if token != self.deposit_token or amount < min_out:
            return False
        self.bank.transfer_from(token, payer, self.address, amount, spender=self.address)
        self._on_deposit(amount)
        return True

    def _on_deposit(self, amount: Amount) -> None:
        pass

    def deposit_pull(self, token: TokenId, amount: Amount, min_out: Amount) -> bool:
        if self._injected("deposit_pull"):
            return False
        return self._take(self.owner, token, amount, min_out)

    def deposit_pull_from(self, payer: Address, token: TokenId, amount: Amount, min_out: Amount) -> bool:
        if self._injected("deposit_pull_from"):
            return False
        return self._take(payer, token, amount, min_out)

    def deposit_native(self, amount: Amount, min_out: Amount) -> bool:
        if self._injected("deposit_native"):
            return False
        return self._take(self.owner, NATIVE_TOKEN, amount, min_out)

    def withdraw(self, amount: Amount) -> bool:
        if self._injected("withdraw"):
            return False
        if amount > self.balance():
            return False
        self.bank.transfer(self.deposit_token, self.address, self.owner, amount)
        return True

    def withdraw_all(self) -> bool:
        return self.withdraw(self.balance())

    def balance(self) -> Amount:
        if self._injected("balance"):
            raise InjectedFailure(f"{self.address}.balance unavailable")
        return self.bank.balance_of(self.address, self.deposit_token)

    def run(self) -> bool:
        if self._injected("run"):
            return False
        self.run_calls += 1
        for token, amount in list(self._recurring_yield.items()) + list(self._queued_yield.items()):
            self.bank.mint(self.address, token, amount)
        self._queued_yield.clear()
        return True

    def get_deposit_token(self) -> TokenId:
        return self.deposit_token

    def get_out_tokens(self) -> Sequence[TokenId]:
        return self.out_tokens

    def approve_tokens(self) -> None:
        for token in {self.deposit_token, *self.out_tokens}:
            self.bank.approve(self.address, self.owner, token, MAX_ALLOWANCE)

    def approve_spend_if_no_allowance(self, spender: Address, token: TokenId, amount: Amount) -> None:
        if self.bank.allowance(self.address, spender, token) == 0:
            self.bank.approve(self.address, spender, token, amount)

    def set_tag(self, tag: str) -> None:
        self.tag = tag

    def set_deposit_adaptors(self, adaptors: Sequence[str]) -> None:
        self.deposit_adaptors = list(adaptors)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.address!r}, tag={self.tag!r})"


class MemoryVaultBlock(MemoryBlock):
    """
    Accumulator block: want tokens in, shares out.

    Every share is owned by the block's owner (the runner). Harvested yield in
    the want token compounds into the share price.
    """

    def __init__(
        self,
        bank: TokenBank,
        address: Address,
        want_token: TokenId,
        *,
        owner: Address = "runner",
        input_type: WithdrawalInputType = WithdrawalInputType.SHARES,
    ) -> None:
        super().__init__(bank, address, want_token, (want_token,), owner=owner)
        self.input_type = input_type
        self.total_shares: Amount = 0

    def capabilities(self) -> frozenset[Capability]:
        return CORE_CAPABILITIES | {Capability.VAULT}

    def _on_deposit(self, amount: Amount) -> None:
        # Price against the pre-deposit want balance.
        want_before = self.want_balance() - amount
        if self.total_shares == 0 or want_before <= 0:
            minted = amount
        else:
            minted = amount * self.total_shares // want_before
        self.total_shares += minted

    def withdrawal_input_type(self) -> WithdrawalInputType:
        return self.input_type

    def want_balance(self) -> Amount:
        return self.bank.balance_of(self.address, self.deposit_token)

    def share_balance(self) -> Amount:
        if self._injected("share_balance"):
            raise InjectedFailure(f"{self.address}.share_balance unavailable")
        return self.total_shares

    def shares_to_want(self, amount: Amount) -> Amount:
        if self.total_shares == 0:
            return 0
        return amount * self.want_balance() // self.total_shares

    def want_to_shares(self, amount: Amount) -> Amount:
        want = self.want_balance()
        if want == 0:
            return 0
        # Round up so redeeming `amount` want never burns too few shares.
        return -(-amount * self.total_shares // want)

    def withdraw(self, amount: Amount) -> bool:
        if self._injected("withdraw"):
            return False
        if self.input_type is WithdrawalInputType.SHARES:
            shares = amount
            want = self.shares_to_want(shares)
        else:
            want = amount
            shares = min(self.want_to_shares(want), self.total_shares)
        if shares > self.total_shares or want > self.want_balance():
            return False
        self.total_shares -= shares
        if want:
            self.bank.transfer(self.deposit_token, self.address, self.owner, want)
        return True

    def withdraw_all(self) -> bool:
        if self.input_type is WithdrawalInputType.SHARES:
            return self.withdraw(self.total_shares)
        return self.withdraw(self.want_balance())
