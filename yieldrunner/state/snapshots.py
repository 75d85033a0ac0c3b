"""
Append-only run history.

Entry 0 is a zero-valued bootstrap record written when the runner becomes
operational. Every run appends one `RunSnapshot` holding the per-block
balances, the cumulative running counters at that moment, and the per-period
deltas against the previous entry's counters.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterator, Optional, Sequence, Tuple

from .canonical import commitment_hex


def _deltas(now: Sequence[int], before: Sequence[int]) -> Tuple[int, ...]:
    if len(now) != len(before):
        raise ValueError(f"block count changed between snapshots: {len(before)} -> {len(now)}")
    out = []
    for i, (a, b) in enumerate(zip(now, before)):
        if a < b:
            raise ValueError(f"running counter for block {i} decreased: {b} -> {a}")
        out.append(a - b)
    return tuple(out)


@dataclass(frozen=True)
class RunSnapshot:
    run_id: int
    timestamp: int
    balances: Tuple[int, ...]
    deposit_deltas: Tuple[int, ...]
    withdrawal_deltas: Tuple[int, ...]
    running_deposits: Tuple[int, ...]
    running_withdrawals: Tuple[int, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "timestamp": self.timestamp,
            "balances": list(self.balances),
            "deposit_deltas": list(self.deposit_deltas),
            "withdrawal_deltas": list(self.withdrawal_deltas),
            "running_deposits": list(self.running_deposits),
            "running_withdrawals": list(self.running_withdrawals),
        }


class SnapshotLog:
    """Append-only sequence of `RunSnapshot` records."""

    def __init__(self) -> None:
        self._entries: list[RunSnapshot] = []

    def bootstrap(self, n_blocks: int, timestamp: int) -> RunSnapshot:
        if self._entries:
            raise ValueError("snapshot log already bootstrapped")
        if n_blocks <= 0:
            raise ValueError("n_blocks must be positive")
        zeros = (0,) * n_blocks
        snap = RunSnapshot(
            run_id=0,
            timestamp=timestamp,
            balances=zeros,
            deposit_deltas=zeros,
            withdrawal_deltas=zeros,
            running_deposits=zeros,
            running_withdrawals=zeros,
        )
        self._entries.append(snap)
        return snap

    def append_run(
        self,
        timestamp: int,
        balances: Sequence[int],
        running_deposits: Sequence[int],
        running_withdrawals: Sequence[int],
    ) -> RunSnapshot:
        prev = self.latest()
        if prev is None:
            raise ValueError("snapshot log must be bootstrapped before recording runs")
        snap = RunSnapshot(
            run_id=prev.run_id + 1,
            timestamp=timestamp,
            balances=tuple(balances),
            deposit_deltas=_deltas(running_deposits, prev.running_deposits),
            withdrawal_deltas=_deltas(running_withdrawals, prev.running_withdrawals),
            running_deposits=tuple(running_deposits),
            running_withdrawals=tuple(running_withdrawals),
        )
        self._entries.append(snap)
        return snap

    def latest(self) -> Optional[RunSnapshot]:
        return self._entries[-1] if self._entries else None

    def last(self, limit: int) -> Tuple[RunSnapshot, ...]:
        """Up to `limit` most recent snapshots, oldest first."""
        if limit < 0:
            raise ValueError(f"limit must be non-negative: {limit}")
        if limit == 0:
            return ()
        return tuple(self._entries[-limit:])

    def commitment_hex(self) -> str:
        return commitment_hex("run_snapshots", [s.to_dict() for s in self._entries])

    def __len__(self) -> int:
        return len(self._entries)

    def __getitem__(self, index: int) -> RunSnapshot:
        return self._entries[index]

    def __iter__(self) -> Iterator[RunSnapshot]:
        return iter(tuple(self._entries))

    def __repr__(self) -> str:
        return f"SnapshotLog({len(self._entries)} entries)"
