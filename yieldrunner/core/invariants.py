"""Ledger invariant checkers.

Each function returns True when the invariant holds, and `check_all()` returns
the list of violated invariant IDs (empty = all pass). The runner evaluates
these after every mutating operation when `RunnerConfig.check_invariants` is
set.

`check_transition()` covers the two properties that only make sense across a
pair of states: accumulators and running counters never decrease.
"""

from __future__ import annotations

from typing import Callable, Sequence

from ..state.ledger import Ledger


def inv_total_matches_user_sum(ledger: Ledger) -> bool:
    return ledger.total_deposits == sum(ledger.user_deposits().values())


def inv_user_deposits_nonneg(ledger: Ledger) -> bool:
    return all(amount >= 0 for amount in ledger.user_deposits().values())


def inv_running_counters_nonneg(ledger: Ledger) -> bool:
    return all(v >= 0 for v in ledger.running_deposits()) and all(
        v >= 0 for v in ledger.running_withdrawals()
    )


def inv_block0_has_no_accumulator(ledger: Ledger) -> bool:
    return ledger.n_blocks == 0 or ledger.acc_yield_per_token(0) == 0


def inv_user_entries_in_range(ledger: Ledger) -> bool:
    return all(0 <= block < ledger.n_blocks for block, _ in ledger.user_info_entries())


INVARIANT_REGISTRY: dict[str, Callable[[Ledger], bool]] = {
    "inv_total_matches_user_sum": inv_total_matches_user_sum,
    "inv_user_deposits_nonneg": inv_user_deposits_nonneg,
    "inv_running_counters_nonneg": inv_running_counters_nonneg,
    "inv_block0_has_no_accumulator": inv_block0_has_no_accumulator,
    "inv_user_entries_in_range": inv_user_entries_in_range,
}


def check_all(ledger: Ledger) -> list[str]:
    """Return list of violated invariant IDs (empty = all pass)."""
    return [
        inv_id
        for inv_id, check_fn in INVARIANT_REGISTRY.items()
        if not check_fn(ledger)
    ]


def accumulators(ledger: Ledger) -> tuple[int, ...]:
    return tuple(ledger.acc_yield_per_token(b) for b in range(ledger.n_blocks))


def check_transition(
    acc_before: Sequence[int],
    running_before: tuple[Sequence[int], Sequence[int]],
    ledger: Ledger,
) -> list[str]:
    """Violations of monotonicity between a recorded pre-state and `ledger`."""
    violations: list[str] = []
    for b, (old, new) in enumerate(zip(acc_before, accumulators(ledger))):
        if new < old:
            violations.append(f"inv_acc_monotone:block{b}")
    dep_before, wd_before = running_before
    for b, (old, new) in enumerate(zip(dep_before, ledger.running_deposits())):
        if new < old:
            violations.append(f"inv_running_deposits_monotone:block{b}")
    for b, (old, new) in enumerate(zip(wd_before, ledger.running_withdrawals())):
        if new < old:
            violations.append(f"inv_running_withdrawals_monotone:block{b}")
    return violations
