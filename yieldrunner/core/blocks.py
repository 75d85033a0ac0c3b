"""Capability interfaces consumed by the runner.

Blocks are external collaborators. The runner never inspects their concrete
type: it asks `capabilities()` and only uses the vault methods when
`Capability.VAULT` is advertised.

Every call into a block goes through `call_block()`, which converts a raised
exception or a `False` success flag into a `BlockCallResult`. Call sites then
decide whether a failed result is fatal (deposit/withdraw) or isolated
(run-engine routing).
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, unique
from typing import Any, Callable, Optional, Protocol, Sequence

MAX_REASON_LEN = 200


@unique
class Capability(Enum):
    DEPOSIT = "deposit"
    WITHDRAW = "withdraw"
    BALANCE = "balance"
    RUN = "run"
    VAULT = "vault"


CORE_CAPABILITIES = frozenset(
    {Capability.DEPOSIT, Capability.WITHDRAW, Capability.BALANCE, Capability.RUN}
)


@unique
class WithdrawalInputType(Enum):
    """Unit expected by a vault block's `withdraw(amount)`."""
    WANT = "want"
    SHARES = "shares"


class Block(Protocol):
    """One pipeline stage."""

    address: str

    def capabilities(self) -> frozenset[Capability]: ...

    def deposit_pull(self, token: str, amount: int, min_out: int) -> bool: ...

    def deposit_pull_from(self, payer: str, token: str, amount: int, min_out: int) -> bool: ...

    def deposit_native(self, amount: int, min_out: int) -> bool: ...

    def withdraw(self, amount: int) -> bool: ...

    def withdraw_all(self) -> bool: ...

    def balance(self) -> int: ...

    def run(self) -> bool: ...

    def get_deposit_token(self) -> str: ...

    def get_out_tokens(self) -> Sequence[str]: ...

    def approve_tokens(self) -> None: ...

    def approve_spend_if_no_allowance(self, spender: str, token: str, amount: int) -> None: ...

    def set_tag(self, tag: str) -> None: ...

    def set_deposit_adaptors(self, adaptors: Sequence[str]) -> None: ...


class VaultBlock(Block, Protocol):
    """A block that issues shares against a want token (an accumulator target)."""

    def withdrawal_input_type(self) -> WithdrawalInputType: ...

    def want_balance(self) -> int: ...

    def share_balance(self) -> int: ...

    def shares_to_want(self, amount: int) -> int: ...

    def want_to_shares(self, amount: int) -> int: ...


class AssetMover(Protocol):
    """Reliable token movement with balance queries."""

    def balance_of(self, holder: str, token: str) -> int: ...

    def transfer(self, token: str, sender: str, recipient: str, amount: int) -> None: ...

    def transfer_from(self, token: str, owner: str, recipient: str, amount: int, *, spender: str) -> None: ...

    def approve(self, owner: str, spender: str, token: str, amount: int) -> None: ...


class ConfigRegistry(Protocol):
    """Key -> address lookup used only while wiring a runner."""

    def get(self, key: int) -> Optional[str]: ...


def has_vault(block: Block) -> bool:
    return Capability.VAULT in block.capabilities()


def as_vault(block: Block) -> Optional[VaultBlock]:
    """The block viewed through its vault capability, or None if it has none."""
    if has_vault(block):
        return block  # type: ignore[return-value]
    return None


def missing_core_capabilities(block: Block) -> list[str]:
    return sorted(c.value for c in CORE_CAPABILITIES - block.capabilities())


@dataclass(frozen=True)
class BlockCallResult:
    ok: bool
    value: Any = None
    error: Optional[str] = None


def describe_failure(exc: BaseException) -> str:
    """One-line, length-capped reason for a failed block call."""
    detail = " ".join(str(exc).split())
    reason = f"{type(exc).__name__}: {detail}" if detail else type(exc).__name__
    if len(reason) > MAX_REASON_LEN:
        reason = reason[:MAX_REASON_LEN]
    return reason


def call_block(fn: Callable[..., Any], *args: Any) -> BlockCallResult:
    """Invoke a block capability without letting a failure escape.

    A `False` return is the block's own failure signal and is reported as such;
    any other return value (including None) counts as success.
    """
    try:
        value = fn(*args)
    except Exception as exc:
        return BlockCallResult(ok=False, error=describe_failure(exc))
    if value is False:
        name = getattr(fn, "__name__", "call")
        return BlockCallResult(ok=False, value=value, error=f"{name} returned false")
    return BlockCallResult(ok=True, value=value)
