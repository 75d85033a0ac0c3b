"""
Accumulator-per-share bookkeeping.

Each accumulator block `b` carries `acc[b]`, the yield per unit of principal
scaled by `precision[b]`. A user's live earnings on `b` are

    principal * acc[b] // precision[b] - yield_debt[b][user]     (floored at 0)

Whenever principal moves, earnings must first be banked, then the debt reset
to the new baseline; skipping the bank forfeits earned yield, skipping the
reset double-counts it. `settle_user()` and `apply_principal_change()` bundle
the sequence so callers cannot get the order wrong.

All arithmetic is integer: multiply before dividing, floor toward zero.
"""

from __future__ import annotations

from dataclasses import replace

from ..state.ledger import Ledger


def accrued_yield(ledger: Ledger, user: str, block: int) -> int:
    """First term of the earnings formula: principal priced at the current accumulator."""
    return ledger.user_deposit(user) * ledger.acc_yield_per_token(block) // ledger.precision(block)


def block_earnings(ledger: Ledger, user: str, block: int) -> int:
    debt = ledger.user_info(block, user).yield_debt
    return max(0, accrued_yield(ledger, user, block) - debt)


def owed_amount(ledger: Ledger, user: str, block: int) -> int:
    """Live earnings plus already banked earnings, in the block's share units."""
    return block_earnings(ledger, user, block) + ledger.user_info(block, user).banked_amount


def reset_user_yield_debt(ledger: Ledger, user: str, block: int) -> None:
    info = ledger.user_info(block, user)
    ledger.set_user_info(block, user, replace(info, yield_debt=accrued_yield(ledger, user, block)))


def reset_all_yield_debt(ledger: Ledger, user: str) -> None:
    for block in range(ledger.n_blocks):
        reset_user_yield_debt(ledger, user, block)


def bank_block_earnings(ledger: Ledger, user: str, block: int) -> int:
    earned = block_earnings(ledger, user, block)
    if earned:
        info = ledger.user_info(block, user)
        ledger.set_user_info(block, user, replace(info, banked_amount=info.banked_amount + earned))
    return earned


def bank_earnings(ledger: Ledger, user: str) -> int:
    """Fold live earnings of every accumulator block into banked amounts."""
    return sum(bank_block_earnings(ledger, user, block) for block in range(1, ledger.n_blocks))


def settle_user(ledger: Ledger, user: str) -> int:
    """Bank then reset debt on every block; returns the amount banked."""
    banked = bank_earnings(ledger, user)
    reset_all_yield_debt(ledger, user)
    return banked


def apply_principal_change(ledger: Ledger, user: str, *, added: int = 0, removed: int = 0) -> int:
    """
    Bank earnings, move principal, then re-baseline debt on every block.

    Returns the principal actually removed (removal is floored at the user's
    current principal).
    """
    if added and removed:
        raise ValueError("apply_principal_change takes either added or removed, not both")
    bank_earnings(ledger, user)
    taken = 0
    if added:
        ledger.add_principal(user, added)
    if removed:
        taken = ledger.remove_principal(user, removed)
    reset_all_yield_debt(ledger, user)
    return taken


def release_block_earnings(ledger: Ledger, user: str, block: int) -> None:
    """Zero the banked amount of `block` and re-baseline its debt after a payout."""
    info = ledger.user_info(block, user)
    ledger.set_user_info(block, user, replace(info, banked_amount=0))
    reset_user_yield_debt(ledger, user, block)


def accumulator_increase(shares_increase: int, precision: int, total_deposits: int) -> int:
    """Accumulator delta for `shares_increase` new shares spread over all principal.

    Raises:
        ZeroDivisionError: If no principal is deposited. Callers must check first.
    """
    if shares_increase < 0:
        raise ValueError(f"shares_increase must be non-negative: {shares_increase}")
    if total_deposits <= 0:
        raise ZeroDivisionError("accumulator update with no principal deposited")
    return shares_increase * precision // total_deposits


def user_balances(ledger: Ledger, user: str) -> list[int]:
    """Index 0: principal. Index >= 1: owed shares of that accumulator."""
    if ledger.n_blocks == 0:
        return []
    return [ledger.user_deposit(user)] + [owed_amount(ledger, user, b) for b in range(1, ledger.n_blocks)]
