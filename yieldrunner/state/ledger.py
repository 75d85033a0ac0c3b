"""
Accounting store for one runner instance.

Holds principal (global and per user), per-block accumulators, per-(block, user)
yield debt and banked amounts, and the cumulative running deposit/withdrawal
counters. The arithmetic that ties these together lives in
`yieldrunner.core.accounting`; this module only stores and guards values.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Dict, Iterator, Sequence, Tuple

from .balances import Address, Amount

BlockIndex = int


@dataclass(frozen=True)
class UserInfo:
    """Per-user, per-block accounting."""

    yield_debt: int = 0
    banked_amount: int = 0

    def __post_init__(self) -> None:
        if self.yield_debt < 0:
            raise ValueError("yield_debt must be non-negative")
        if self.banked_amount < 0:
            raise ValueError("banked_amount must be non-negative")


@dataclass(frozen=True)
class BlockShareInfo:
    """Accumulated yield per deposited unit, scaled by the block's precision."""

    acc_yield_per_token: int = 0

    def __post_init__(self) -> None:
        if self.acc_yield_per_token < 0:
            raise ValueError("acc_yield_per_token must be non-negative")


_EMPTY_USER = UserInfo()


@dataclass(frozen=True)
class LedgerCheckpoint:
    """Copy of every mutable ledger table, taken before an operation writes."""

    total_deposits: Amount
    user_deposits: Tuple[Tuple[Address, Amount], ...]
    share_info: Tuple[BlockShareInfo, ...]
    user_info: Tuple[Tuple[Tuple[BlockIndex, Address], UserInfo], ...]
    running_deposits: Tuple[Amount, ...]
    running_withdrawals: Tuple[Amount, ...]

    @property
    def accumulators(self) -> Tuple[int, ...]:
        return tuple(info.acc_yield_per_token for info in self.share_info)


class Ledger:
    """
    Mutable ledger owned by exactly one runner.

    Notes:
    - `total_deposits == sum(user deposits)` is maintained by `add_principal`
      and `remove_principal`; nothing else touches principal.
    - Accumulators only move up (`raise_accumulator` rejects negative deltas).
    - Running counters only move up.
    - Zero user deposits and default `UserInfo` entries are dropped to keep the
      tables sparse.
    """

    def __init__(self) -> None:
        self._precisions: Tuple[int, ...] = ()
        self.total_deposits: Amount = 0
        self._user_deposits: Dict[Address, Amount] = {}
        self._share_info: list[BlockShareInfo] = []
        self._user_info: Dict[Tuple[BlockIndex, Address], UserInfo] = {}
        self._running_deposits: list[Amount] = []
        self._running_withdrawals: list[Amount] = []

    # -- setup -------------------------------------------------------------

    @property
    def configured(self) -> bool:
        return bool(self._precisions)

    def configure(self, precisions: Sequence[int]) -> None:
        """Fix the block count and per-block precision factors. One-shot."""
        if self.configured:
            raise ValueError("ledger already configured")
        if not precisions:
            raise ValueError("at least one block precision is required")
        for i, p in enumerate(precisions):
            if not isinstance(p, int) or isinstance(p, bool) or p <= 0:
                raise ValueError(f"precision for block {i} must be a positive int: {p!r}")
        n = len(precisions)
        self._precisions = tuple(precisions)
        self._share_info = [BlockShareInfo() for _ in range(n)]
        self._running_deposits = [0] * n
        self._running_withdrawals = [0] * n

    @property
    def n_blocks(self) -> int:
        return len(self._precisions)

    def precision(self, block: BlockIndex) -> int:
        return self._precisions[block]

    @property
    def precisions(self) -> Tuple[int, ...]:
        return self._precisions

    # -- principal ---------------------------------------------------------

    def user_deposit(self, user: Address) -> Amount:
        return self._user_deposits.get(user, 0)

    def users(self) -> Iterator[Address]:
        return iter(sorted(self._user_deposits))

    def user_deposits(self) -> Dict[Address, Amount]:
        return dict(self._user_deposits)

    def add_principal(self, user: Address, amount: Amount) -> None:
        if amount < 0:
            raise ValueError(f"principal delta must be non-negative: {amount}")
        if amount == 0:
            return
        self._user_deposits[user] = self.user_deposit(user) + amount
        self.total_deposits += amount

    def remove_principal(self, user: Address, amount: Amount) -> Amount:
        """Remove up to `amount` of `user`'s principal; returns what was removed."""
        if amount < 0:
            raise ValueError(f"principal delta must be non-negative: {amount}")
        current = self.user_deposit(user)
        removed = min(amount, current)
        remaining = current - removed
        if remaining == 0:
            self._user_deposits.pop(user, None)
        else:
            self._user_deposits[user] = remaining
        self.total_deposits = max(0, self.total_deposits - removed)
        return removed

    # -- accumulators ------------------------------------------------------

    def share_info(self, block: BlockIndex) -> BlockShareInfo:
        return self._share_info[block]

    def acc_yield_per_token(self, block: BlockIndex) -> int:
        return self._share_info[block].acc_yield_per_token

    def raise_accumulator(self, block: BlockIndex, delta: int) -> int:
        """Add `delta` to the block's accumulator; returns the new value."""
        if delta < 0:
            raise ValueError(f"accumulator delta must be non-negative: {delta}")
        info = self._share_info[block]
        self._share_info[block] = replace(info, acc_yield_per_token=info.acc_yield_per_token + delta)
        return self._share_info[block].acc_yield_per_token

    # -- per-user block info -----------------------------------------------

    def user_info(self, block: BlockIndex, user: Address) -> UserInfo:
        return self._user_info.get((block, user), _EMPTY_USER)

    def set_user_info(self, block: BlockIndex, user: Address, info: UserInfo) -> None:
        if info == _EMPTY_USER:
            self._user_info.pop((block, user), None)
        else:
            self._user_info[(block, user)] = info

    def user_info_entries(self) -> Dict[Tuple[BlockIndex, Address], UserInfo]:
        return dict(self._user_info)

    # -- running counters --------------------------------------------------

    def record_deposit(self, block: BlockIndex, amount: Amount) -> None:
        if amount < 0:
            raise ValueError(f"running deposit must be non-negative: {amount}")
        self._running_deposits[block] += amount

    def record_withdrawal(self, block: BlockIndex, amount: Amount) -> None:
        if amount < 0:
            raise ValueError(f"running withdrawal must be non-negative: {amount}")
        self._running_withdrawals[block] += amount

    def running_deposits(self) -> Tuple[Amount, ...]:
        return tuple(self._running_deposits)

    def running_withdrawals(self) -> Tuple[Amount, ...]:
        return tuple(self._running_withdrawals)

    # -- checkpoints -------------------------------------------------------

    def checkpoint(self) -> LedgerCheckpoint:
        return LedgerCheckpoint(
            total_deposits=self.total_deposits,
            user_deposits=tuple(self._user_deposits.items()),
            share_info=tuple(self._share_info),
            user_info=tuple(self._user_info.items()),
            running_deposits=tuple(self._running_deposits),
            running_withdrawals=tuple(self._running_withdrawals),
        )

    def restore(self, checkpoint: LedgerCheckpoint) -> None:
        """Put every table back to `checkpoint`. Precisions are not part of it."""
        if len(checkpoint.share_info) != self.n_blocks:
            raise ValueError(f"checkpoint has {len(checkpoint.share_info)} blocks, ledger has {self.n_blocks}")
        self.total_deposits = checkpoint.total_deposits
        self._user_deposits = dict(checkpoint.user_deposits)
        self._share_info = list(checkpoint.share_info)
        self._user_info = dict(checkpoint.user_info)
        self._running_deposits = list(checkpoint.running_deposits)
        self._running_withdrawals = list(checkpoint.running_withdrawals)

    def __repr__(self) -> str:
        return (
            f"Ledger(blocks={self.n_blocks}, users={len(self._user_deposits)}, "
            f"total_deposits={self.total_deposits})"
        )
