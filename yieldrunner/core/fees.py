"""
Performance-fee skim and token-group allocation (deterministic, integer-only).

Group allocation follows a **remainder-to-last** pattern: every action but
the last gets `floor(basis * percent / BPS_DENOM)`, and the last action of a
group receives whatever is left, so a group summing to 100% distributes its
whole post-fee basis with no stranded dust.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

from .types import BPS_DENOM

DEFAULT_MAX_PERFORMANCE_FEE_BPS = 5_000


@dataclass(frozen=True)
class PerformanceFee:
    fee_bps: int = 0
    treasury: Optional[str] = None

    def __post_init__(self) -> None:
        if not isinstance(self.fee_bps, int) or isinstance(self.fee_bps, bool):
            raise TypeError("fee_bps must be an int")
        if not (0 <= self.fee_bps <= BPS_DENOM):
            raise ValueError(f"fee_bps must be in [0, {BPS_DENOM}]: {self.fee_bps}")
        if self.treasury is not None and (not isinstance(self.treasury, str) or not self.treasury):
            raise TypeError("treasury must be a non-empty str or None")

    @property
    def active(self) -> bool:
        return self.fee_bps > 0 and self.treasury is not None


def skim_fee(balance: int, fee: PerformanceFee) -> tuple[int, int]:
    """Split a group-start balance into (fee, post-fee basis)."""
    if not isinstance(balance, int) or isinstance(balance, bool) or balance < 0:
        raise ValueError(f"balance must be a non-negative int, got {balance!r}")
    if not fee.active:
        return 0, balance
    charged = (balance * fee.fee_bps) // BPS_DENOM
    return charged, balance - charged


def allocate_group(basis: int, percents: Sequence[int]) -> list[int]:
    """
    Amounts per action for one token group.

    If `percents` sums to `BPS_DENOM` the result sums to exactly `basis`;
    otherwise each share is floored and the remainder stays unallocated.
    """
    if basis < 0:
        raise ValueError(f"basis must be non-negative: {basis}")
    amounts = [(basis * p) // BPS_DENOM for p in percents]
    if amounts and sum(percents) == BPS_DENOM:
        amounts[-1] = basis - sum(amounts[:-1])
    if sum(amounts) > basis:
        raise AssertionError("group allocation over-distributed")
    return amounts
