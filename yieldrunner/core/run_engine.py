"""One run pass over the pipeline.

``execute_run(ctx)`` is the single entry point. It:

1. Harvests every block in index order. A harvest failure raises
   ``BlockCallError`` before any ledger mutation.
2. Walks each block's token groups: skims the performance fee at the start of
   a group, allocates the post-fee basis across the group's actions and routes
   every non-zero REINVEST amount to its destination.
3. Returns a ``RunReport`` of routed transfers, fee charges and isolated
   failures.

Routing is the isolation boundary: a failing destination (or a fee skim that
cannot be collected) is recorded as an ``ActionFailure`` and the pass moves on
to the next action. The boundary ends once a destination has accepted the
tokens: if its share balance then cannot be read, ``BlockCallError`` aborts
the pass. With no principal deposited, groups are reported as failures before
any fee is skimmed. Snapshots, counters and events are the caller's job.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Sequence, Union

from ..state.ledger import Ledger
from .accounting import accumulator_increase
from .blocks import AssetMover, Block, as_vault, call_block, describe_failure
from .errors import BlockCallError
from .fees import PerformanceFee, allocate_group, skim_fee
from .settings import ActionGroup, PipelineSettings
from .types import Action, ActionFailure, ActionKind, FeeCharge, RoutedTransfer

logger = logging.getLogger(__name__)

NO_PRINCIPAL = "no principal deposited"


@dataclass(frozen=True)
class RunContext:
    blocks: Sequence[Block]
    settings: PipelineSettings
    ledger: Ledger
    assets: AssetMover
    engine_address: str
    fee: PerformanceFee = PerformanceFee()


@dataclass(frozen=True)
class RunReport:
    transfers: tuple[RoutedTransfer, ...] = ()
    fees: tuple[FeeCharge, ...] = ()
    failures: tuple[ActionFailure, ...] = ()


def harvest_all(blocks: Sequence[Block]) -> None:
    for i, block in enumerate(blocks):
        result = call_block(block.run)
        if not result.ok:
            raise BlockCallError(i, "run", result.error or "unknown error")


def _collect_fee(ctx: RunContext, block_index: int, token: str, amount: int, treasury: str) -> FeeCharge:
    block = ctx.blocks[block_index]
    ctx.assets.transfer_from(token, block.address, treasury, amount, spender=ctx.engine_address)
    return FeeCharge(block_index=block_index, token=token, amount=amount, treasury=treasury)


def _measure(block: Block) -> Union[int, str]:
    """Destination share balance (vault) or plain balance; a str is a failure reason."""
    vault = as_vault(block)
    result = call_block(vault.share_balance if vault is not None else block.balance)
    if not result.ok:
        return result.error or "balance query failed"
    return int(result.value)


def route_action(
    ctx: RunContext,
    block_index: int,
    action_index: int,
    action: Action,
    amount: int,
) -> Union[RoutedTransfer, ActionFailure]:
    """Move `amount` of `action.token` into the destination and credit its accumulator."""

    def failed(reason: str) -> ActionFailure:
        return ActionFailure(
            block_index=block_index,
            action_index=action_index,
            token=action.token,
            destination=action.destination,
            amount=amount,
            reason=reason,
        )

    # The accumulator update divides by total principal; with none, funds stay in the source block.
    if ctx.ledger.total_deposits == 0:
        return failed(NO_PRINCIPAL)

    source = ctx.blocks[block_index]
    destination = ctx.blocks[action.destination]

    before = _measure(destination)
    if isinstance(before, str):
        return failed(before)

    pulled = call_block(destination.deposit_pull_from, source.address, action.token, amount, 0)
    if not pulled.ok:
        return failed(pulled.error or "deposit failed")

    # Funds have moved; an unmeasured deposit cannot be isolated.
    after = _measure(destination)
    if isinstance(after, str):
        raise BlockCallError(action.destination, "share_balance", f"after routing {amount} {action.token}: {after}")

    shares_increase = max(0, after - before)
    acc_delta = accumulator_increase(
        shares_increase, ctx.ledger.precision(action.destination), ctx.ledger.total_deposits
    )
    ctx.ledger.raise_accumulator(action.destination, acc_delta)
    ctx.ledger.record_deposit(action.destination, amount)
    return RoutedTransfer(
        block_index=block_index,
        action_index=action_index,
        token=action.token,
        destination=action.destination,
        amount=amount,
        shares_increase=shares_increase,
        acc_delta=acc_delta,
    )


def _process_group(
    ctx: RunContext,
    block_index: int,
    group: ActionGroup,
    transfers: list[RoutedTransfer],
    fees: list[FeeCharge],
    failures: list[ActionFailure],
) -> None:
    if not any(action.kind is ActionKind.REINVEST for _, action in group.members):
        # Leaf groups hold their balance.
        return

    source = ctx.blocks[block_index]
    balance = ctx.assets.balance_of(source.address, group.token)
    if ctx.ledger.total_deposits == 0:
        # No principal to credit: the balance stays put and no fee is taken.
        if balance <= 0:
            return
        amounts = allocate_group(balance, [action.percent_bps for _, action in group.members])
        for (action_index, action), planned in zip(group.members, amounts):
            if action.kind is ActionKind.REINVEST and planned > 0:
                failures.append(
                    ActionFailure(
                        block_index=block_index,
                        action_index=action_index,
                        token=action.token,
                        destination=action.destination,
                        amount=planned,
                        reason=NO_PRINCIPAL,
                    )
                )
        logger.warning("block %d holds %d %s: %s", block_index, balance, group.token, NO_PRINCIPAL)
        return

    fee_amount, basis = skim_fee(balance, ctx.fee)
    if fee_amount and ctx.fee.treasury is not None:
        try:
            fees.append(_collect_fee(ctx, block_index, group.token, fee_amount, ctx.fee.treasury))
        except Exception as exc:
            reason = describe_failure(exc)
            logger.warning("fee skim on block %d (%s) failed: %s", block_index, group.token, reason)
            failures.append(
                ActionFailure(
                    block_index=block_index,
                    action_index=-1,
                    token=group.token,
                    destination=-1,
                    amount=fee_amount,
                    reason=reason,
                    stage="fee",
                )
            )
            return

    amounts = allocate_group(basis, [action.percent_bps for _, action in group.members])
    for (action_index, action), planned in zip(group.members, amounts):
        if action.kind is not ActionKind.REINVEST:
            continue
        amount = min(planned, ctx.assets.balance_of(source.address, action.token))
        if amount <= 0:
            continue
        try:
            outcome = route_action(ctx, block_index, action_index, action, amount)
        except BlockCallError:
            raise
        except Exception as exc:
            outcome = ActionFailure(
                block_index=block_index,
                action_index=action_index,
                token=action.token,
                destination=action.destination,
                amount=amount,
                reason=describe_failure(exc),
            )
        if isinstance(outcome, ActionFailure):
            logger.warning(
                "routing block %d action %d -> block %d failed: %s",
                block_index, action_index, action.destination, outcome.reason,
            )
            failures.append(outcome)
        else:
            logger.debug(
                "routed %d %s from block %d to block %d (+%d shares, acc +%d)",
                amount, action.token, block_index, action.destination,
                outcome.shares_increase, outcome.acc_delta,
            )
            transfers.append(outcome)


def distribute(ctx: RunContext) -> RunReport:
    """Route every block's post-harvest balances according to settings."""
    transfers: list[RoutedTransfer] = []
    fees: list[FeeCharge] = []
    failures: list[ActionFailure] = []
    for block_index in range(len(ctx.blocks)):
        for group in ctx.settings.groups(block_index):
            _process_group(ctx, block_index, group, transfers, fees, failures)
    return RunReport(transfers=tuple(transfers), fees=tuple(fees), failures=tuple(failures))


def execute_run(ctx: RunContext) -> RunReport:
    harvest_all(ctx.blocks)
    return distribute(ctx)


def read_balances(blocks: Sequence[Block]) -> tuple[tuple[int, ...], tuple[ActionFailure, ...]]:
    """Current balance of every block for the run snapshot; unreadable blocks read as 0."""
    balances: list[int] = []
    failures: list[ActionFailure] = []
    for i, block in enumerate(blocks):
        result = call_block(block.balance)
        if result.ok:
            balances.append(int(result.value))
            continue
        reason: Optional[str] = result.error
        logger.warning("balance of block %d unreadable for snapshot: %s", i, reason)
        balances.append(0)
        failures.append(
            ActionFailure(
                block_index=i,
                action_index=-1,
                token="",
                destination=-1,
                amount=0,
                reason=reason or "balance query failed",
                stage="balance",
            )
        )
    return tuple(balances), tuple(failures)
