"""
Runner: the imperative shell around the accounting and run-engine kernels.

A runner owns one pipeline of blocks, one `Ledger`, one `SnapshotLog` and an
event log. Lifecycle is forward-only:

    UNINITIALIZED --initialize_pipeline--> PIPELINE_WIRED --initialize_vault--> OPERATIONAL

Every public mutating operation runs under a non-reentrant guard. Block calls
made during deposits and withdrawals are fatal on failure and leave the ledger
untouched: all external calls complete before the ledger is written. The only
partial-failure path is routing inside `run()` (see `core.run_engine`).

Each operation checkpoints the ledger before writing. When invariant checks
are on and the written state violates one, the ledger is restored to the
checkpoint and `LedgerInvariantError` is raised. Assets already moved by the
operation are not reversed.
"""

from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, Optional, Sequence

from ..state.balances import NATIVE_TOKEN
from ..state.ledger import Ledger, LedgerCheckpoint
from ..state.snapshots import RunSnapshot, SnapshotLog
from .accounting import (
    apply_principal_change,
    owed_amount,
    release_block_earnings,
    user_balances,
)
from .blocks import (
    AssetMover,
    Block,
    BlockCallResult,
    ConfigRegistry,
    WithdrawalInputType,
    as_vault,
    call_block,
    has_vault,
    missing_core_capabilities,
)
from .errors import (
    AccessError,
    AccountingError,
    BlockCallError,
    LedgerInvariantError,
    NotSupportedError,
    ReentrancyError,
    SettingsError,
    SetupError,
)
from .fees import DEFAULT_MAX_PERFORMANCE_FEE_BPS, PerformanceFee
from .invariants import check_all, check_transition
from .run_engine import RunContext, RunReport, execute_run, read_balances
from .settings import PipelineSettings, authorize_reinvest_routes, validate_settings
from .types import Action, ActionFailure, Event, Phase, RunnerEvent

logger = logging.getLogger(__name__)

TREASURY_REGISTRY_KEY = 1


def _wall_clock() -> int:
    return int(time.time())


@dataclass(frozen=True)
class RunnerConfig:
    """Runtime knobs for a runner instance."""

    # Holder id of the runner itself in the asset bank.
    address: str = "runner"
    max_performance_fee_bps: int = DEFAULT_MAX_PERFORMANCE_FEE_BPS
    # Evaluate ledger invariants after every mutating operation; a violation restores the ledger.
    check_invariants: bool = True
    clock: Callable[[], int] = field(default=_wall_clock)
    # Registry key resolved for the treasury when initialize_vault gets none.
    treasury_registry_key: int = TREASURY_REGISTRY_KEY


@dataclass(frozen=True)
class RunOutcome:
    run_id: int
    timestamp: int
    snapshot: RunSnapshot
    report: RunReport
    balance_failures: tuple[ActionFailure, ...] = ()

    @property
    def failures(self) -> tuple[ActionFailure, ...]:
        return self.report.failures + self.balance_failures


class Runner:
    def __init__(
        self,
        assets: AssetMover,
        config: RunnerConfig = RunnerConfig(),
        ledger: Optional[Ledger] = None,
    ) -> None:
        if ledger is not None and ledger.configured:
            raise SetupError("ledger must be unconfigured when handed to a runner")
        self.assets = assets
        self.config = config
        self.ledger = ledger if ledger is not None else Ledger()
        self.snapshots = SnapshotLog()
        self._phase = Phase.UNINITIALIZED
        self._blocks: tuple[Block, ...] = ()
        self._settings: Optional[PipelineSettings] = None
        self._owner: Optional[str] = None
        self._fee = PerformanceFee()
        self._events: list[RunnerEvent] = []
        self._run_count = 0
        self._last_run_timestamp = 0
        self._lock = threading.Lock()
        self._active_thread: Optional[int] = None

    # -- guards ------------------------------------------------------------

    @contextmanager
    def _operation(self, name: str) -> Iterator[None]:
        ident = threading.get_ident()
        if self._active_thread == ident:
            raise ReentrancyError(f"{name} re-entered the runner")
        with self._lock:
            self._active_thread = ident
            try:
                yield
            finally:
                self._active_thread = None

    def _require_phase(self, phase: Phase) -> None:
        if self._phase is not phase:
            raise SetupError(f"runner is {self._phase.value}, expected {phase.value}")

    def _require_owner(self, caller: str) -> None:
        if caller != self._owner:
            raise AccessError(f"{caller} is not the owner")

    def _block_index(self, block_index: int) -> int:
        if not isinstance(block_index, int) or isinstance(block_index, bool):
            raise AccountingError("block index must be an int")
        if not 0 <= block_index < len(self._blocks):
            raise AccountingError(f"invalid block index {block_index}")
        return block_index

    @staticmethod
    def _require_amount(amount: int) -> None:
        if not isinstance(amount, int) or isinstance(amount, bool):
            raise AccountingError("amount must be an int")
        if amount <= 0:
            raise AccountingError("amount must be positive")

    def _expect(self, block_index: int, operation: str, result: BlockCallResult) -> Any:
        if not result.ok:
            raise BlockCallError(block_index, operation, result.error or "unknown error")
        return result.value

    def _emit(
        self,
        event: Event,
        *,
        block_index: Optional[int] = None,
        user: Optional[str] = None,
        amount: int = 0,
        detail: str = "",
    ) -> None:
        self._events.append(
            RunnerEvent(event=event, block_index=block_index, user=user, amount=amount, detail=detail)
        )

    def _check_ledger(self, before: LedgerCheckpoint) -> None:
        """Check the written ledger against `before`; on violation restore it and raise."""
        if not self.config.check_invariants:
            return
        violations = check_all(self.ledger)
        violations += check_transition(
            before.accumulators, (before.running_deposits, before.running_withdrawals), self.ledger
        )
        if violations:
            self.ledger.restore(before)
            logger.error("ledger invariants violated, ledger restored: %s", ", ".join(violations))
            raise LedgerInvariantError(violations)

    # -- initialization ----------------------------------------------------

    def initialize_pipeline(
        self,
        blocks: Sequence[Block],
        deposit_adaptors: Sequence[Sequence[str]],
        settings: Sequence[Sequence[Action]],
        *,
        tags: Optional[Sequence[str]] = None,
    ) -> None:
        """Fix the block list and routing settings. One-shot."""
        with self._operation("initialize_pipeline"):
            if self._phase is not Phase.UNINITIALIZED:
                raise SetupError("pipeline already initialized")
            if not blocks:
                raise SetupError("at least one block is required")
            if len(deposit_adaptors) != len(blocks):
                raise SetupError(f"deposit adaptor count {len(deposit_adaptors)} != block count {len(blocks)}")
            if tags is not None and len(tags) != len(blocks):
                raise SetupError(f"tag count {len(tags)} != block count {len(blocks)}")
            addresses = [b.address for b in blocks]
            if len(set(addresses)) != len(addresses):
                raise SetupError("block addresses must be distinct")
            for i, block in enumerate(blocks):
                missing = missing_core_capabilities(block)
                if missing:
                    raise SetupError(f"block {i} lacks capabilities: {', '.join(missing)}")
                if i > 0 and not has_vault(block):
                    raise SetupError(f"block {i} is an accumulator stage and needs the vault capability")

            violations = validate_settings(settings, len(blocks))
            if violations:
                raise SettingsError(violations)
            validated = PipelineSettings.from_lists(settings)

            for i, block in enumerate(blocks):
                tag = tags[i] if tags is not None else f"stage{i}"
                self._expect(i, "set_tag", call_block(block.set_tag, tag))
                self._expect(i, "set_deposit_adaptors", call_block(block.set_deposit_adaptors, list(deposit_adaptors[i])))
                self._expect(i, "approve_tokens", call_block(block.approve_tokens))
            routes = authorize_reinvest_routes(blocks, validated)

            self._blocks = tuple(blocks)
            self._settings = validated
            self._phase = Phase.PIPELINE_WIRED
            self._emit(Event.PIPELINE_INITIALIZED, amount=len(blocks), detail=f"routes={routes}")
            logger.info("pipeline wired: %d blocks, %d reinvest routes", len(blocks), routes)

    def initialize_vault(
        self,
        owner: str,
        precisions: Sequence[int],
        *,
        treasury: Optional[str] = None,
        performance_fee_bps: int = 0,
        registry: Optional[ConfigRegistry] = None,
    ) -> None:
        """Fix owner, per-block precision factors and fee settings. One-shot."""
        with self._operation("initialize_vault"):
            if self._phase is Phase.OPERATIONAL:
                raise SetupError("vault already initialized")
            self._require_phase(Phase.PIPELINE_WIRED)
            if not isinstance(owner, str) or not owner:
                raise SetupError("owner must be a non-empty str")
            if len(precisions) != len(self._blocks):
                raise SetupError(f"precision count {len(precisions)} != block count {len(self._blocks)}")
            if treasury is None and registry is not None:
                treasury = registry.get(self.config.treasury_registry_key)
            if performance_fee_bps > self.config.max_performance_fee_bps:
                raise SetupError(
                    f"performance fee {performance_fee_bps} exceeds cap {self.config.max_performance_fee_bps}"
                )
            try:
                fee = PerformanceFee(fee_bps=performance_fee_bps, treasury=treasury)
                self.ledger.configure(precisions)
            except (TypeError, ValueError) as exc:
                raise SetupError(str(exc)) from exc

            self._fee = fee
            self._owner = owner
            self.snapshots.bootstrap(len(self._blocks), self.config.clock())
            self._phase = Phase.OPERATIONAL
            self._emit(Event.VAULT_INITIALIZED, user=owner, amount=performance_fee_bps)
            logger.info("runner operational: owner=%s fee_bps=%d treasury=%s", owner, performance_fee_bps, treasury)

    # -- deposits ----------------------------------------------------------

    def deposit(self, user: str, block_index: int, amount: int, min_out: int = 0) -> int:
        """Deposit `amount` of block 0's deposit token; returns the principal credited."""
        with self._operation("deposit"):
            self._require_phase(Phase.OPERATIONAL)
            if self._block_index(block_index) != 0:
                raise AccountingError("deposits are only accepted by block 0")
            self._require_amount(amount)
            token = self._expect(0, "get_deposit_token", call_block(self._blocks[0].get_deposit_token))
            return self._deposit(user, token, amount, min_out, native=False)

    def deposit_native(self, user: str, amount: int, min_out: int = 0) -> int:
        with self._operation("deposit_native"):
            self._require_phase(Phase.OPERATIONAL)
            self._require_amount(amount)
            token = self._expect(0, "get_deposit_token", call_block(self._blocks[0].get_deposit_token))
            if token != NATIVE_TOKEN:
                raise AccountingError(f"block 0 takes {token}, not the native token")
            return self._deposit(user, token, amount, min_out, native=True)

    def _deposit(self, user: str, token: str, amount: int, min_out: int, *, native: bool) -> int:
        block = self._blocks[0]
        me = self.config.address
        before = self.ledger.checkpoint()

        held_before = self.assets.balance_of(me, token)
        self.assets.transfer_from(token, user, me, amount, spender=me)
        received = self.assets.balance_of(me, token) - held_before
        if received <= 0:
            raise AccountingError("nothing received from depositor")

        self.assets.approve(me, block.address, token, received)
        try:
            balance_before = self._expect(0, "balance", call_block(block.balance))
            if native:
                self._expect(0, "deposit_native", call_block(block.deposit_native, received, min_out))
            else:
                self._expect(0, "deposit_pull", call_block(block.deposit_pull, token, received, min_out))
            balance_after = self._expect(0, "balance", call_block(block.balance))
            credited = int(balance_after) - int(balance_before)
            if credited <= 0:
                raise BlockCallError(0, "deposit", f"block balance did not increase ({balance_before} -> {balance_after})")
        except BlockCallError:
            self.assets.approve(me, block.address, token, 0)
            refund = self.assets.balance_of(me, token) - held_before
            if refund > 0:
                self.assets.transfer(token, me, user, refund)
            raise
        self.assets.approve(me, block.address, token, 0)

        apply_principal_change(self.ledger, user, added=credited)
        self.ledger.record_deposit(0, credited)
        self._check_ledger(before)

        self._emit(Event.DEPOSITED, block_index=0, user=user, amount=credited)
        logger.info("deposit: user=%s received=%d credited=%d", user, received, credited)
        return credited

    # -- withdrawals -------------------------------------------------------

    def withdraw(self, user: str, block_index: int, amount: int = 0) -> int:
        """
        Withdraw from one block; returns the amount paid out.

        Block 0 pays back `amount` of principal. For accumulator blocks
        `amount` is ignored and the user's full owed share is paid out.
        """
        with self._operation("withdraw"):
            self._require_phase(Phase.OPERATIONAL)
            if self._block_index(block_index) == 0:
                return self._withdraw_principal(user, amount)
            return self._withdraw_earnings(user, block_index)

    def withdraw_all(self, user: str) -> list[int]:
        """Principal from block 0 (if any), then owed shares of every other block."""
        with self._operation("withdraw_all"):
            self._require_phase(Phase.OPERATIONAL)
            paid = [0] * len(self._blocks)
            principal = self.ledger.user_deposit(user)
            if principal > 0:
                paid[0] = self._withdraw_principal(user, principal)
            for b in range(1, len(self._blocks)):
                paid[b] = self._withdraw_earnings(user, b)
            return paid

    def _release(self, block_index: int, operation: Callable[[int], Any], amount: int, user: str) -> int:
        """Call a block's withdraw and measure what reached the runner."""
        me = self.config.address
        token = self._expect(block_index, "get_deposit_token", call_block(self._blocks[block_index].get_deposit_token))
        held_before = self.assets.balance_of(me, token)
        result = call_block(operation, amount)
        if not result.ok:
            reason = result.error or "unknown error"
            self._emit(Event.WITHDRAW_FAILED, block_index=block_index, user=user, amount=amount, detail=reason)
            logger.warning("withdraw from block %d for %s failed: %s", block_index, user, reason)
            raise BlockCallError(block_index, "withdraw", reason)
        released = max(0, self.assets.balance_of(me, token) - held_before)
        if released:
            self.assets.transfer(token, me, user, released)
        return released

    def _withdraw_principal(self, user: str, amount: int) -> int:
        self._require_amount(amount)
        principal = self.ledger.user_deposit(user)
        if amount > principal:
            raise AccountingError(f"insufficient principal: requested {amount}, deposited {principal}")
        before = self.ledger.checkpoint()

        released = self._release(0, self._blocks[0].withdraw, amount, user)
        apply_principal_change(self.ledger, user, removed=released)
        self.ledger.record_withdrawal(0, released)
        self._check_ledger(before)

        self._emit(Event.WITHDRAWN, block_index=0, user=user, amount=released)
        logger.info("withdraw principal: user=%s requested=%d released=%d", user, amount, released)
        return released

    def _withdraw_earnings(self, user: str, block_index: int) -> int:
        owed = owed_amount(self.ledger, user, block_index)
        if owed == 0:
            return 0
        vault = as_vault(self._blocks[block_index])
        if vault is None:
            raise BlockCallError(block_index, "withdraw", "block has no vault capability")
        input_type = self._expect(block_index, "withdrawal_input_type", call_block(vault.withdrawal_input_type))
        if input_type is WithdrawalInputType.WANT:
            request = int(self._expect(block_index, "shares_to_want", call_block(vault.shares_to_want, owed)))
        else:
            request = owed
        before = self.ledger.checkpoint()

        released = self._release(block_index, vault.withdraw, request, user)
        release_block_earnings(self.ledger, user, block_index)
        self.ledger.record_withdrawal(block_index, released)
        self._check_ledger(before)

        self._emit(Event.WITHDRAWN, block_index=block_index, user=user, amount=released, detail=f"shares={owed}")
        logger.info("withdraw earnings: user=%s block=%d shares=%d released=%d", user, block_index, owed, released)
        return released

    # -- run ---------------------------------------------------------------

    def run(self) -> RunOutcome:
        """Harvest, route and snapshot once."""
        with self._operation("run"):
            self._require_phase(Phase.OPERATIONAL)
            if self._settings is None:
                raise SetupError("pipeline settings missing")
            before = self.ledger.checkpoint()
            ctx = RunContext(
                blocks=self._blocks,
                settings=self._settings,
                ledger=self.ledger,
                assets=self.assets,
                engine_address=self.config.address,
                fee=self._fee,
            )
            report = execute_run(ctx)
            self._check_ledger(before)
            balances, balance_failures = read_balances(self._blocks)
            timestamp = self.config.clock()
            snapshot = self.snapshots.append_run(
                timestamp,
                balances,
                self.ledger.running_deposits(),
                self.ledger.running_withdrawals(),
            )
            self._last_run_timestamp = timestamp
            self._run_count += 1

            for charge in report.fees:
                self._emit(Event.FEE_TAKEN, block_index=charge.block_index, amount=charge.amount, detail=charge.token)
            for t in report.transfers:
                self._emit(Event.YIELD_ROUTED, block_index=t.destination, amount=t.amount, detail=t.token)
            for failure in report.failures + balance_failures:
                self._emit(
                    Event.ACTION_FAILED,
                    block_index=failure.block_index,
                    amount=failure.amount,
                    detail=f"{failure.stage}: {failure.reason}",
                )
            self._emit(Event.RUN_COMPLETED, amount=snapshot.run_id)
            logger.info(
                "run %d: %d routed, %d fees, %d failures",
                snapshot.run_id, len(report.transfers), len(report.fees),
                len(report.failures) + len(balance_failures),
            )
            return RunOutcome(
                run_id=snapshot.run_id,
                timestamp=timestamp,
                snapshot=snapshot,
                report=report,
                balance_failures=balance_failures,
            )

    # -- owner operations --------------------------------------------------

    def set_performance_fee(self, caller: str, fee_bps: int) -> None:
        with self._operation("set_performance_fee"):
            self._require_phase(Phase.OPERATIONAL)
            self._require_owner(caller)
            if not isinstance(fee_bps, int) or isinstance(fee_bps, bool) or fee_bps < 0:
                raise AccountingError("fee_bps must be a non-negative int")
            if fee_bps > self.config.max_performance_fee_bps:
                raise AccountingError(f"performance fee {fee_bps} exceeds cap {self.config.max_performance_fee_bps}")
            self._fee = PerformanceFee(fee_bps=fee_bps, treasury=self._fee.treasury)
            self._emit(Event.PERFORMANCE_FEE_SET, user=caller, amount=fee_bps)

    def set_treasury(self, caller: str, treasury: str) -> None:
        with self._operation("set_treasury"):
            self._require_phase(Phase.OPERATIONAL)
            self._require_owner(caller)
            if not isinstance(treasury, str) or not treasury:
                raise AccountingError("treasury must be a non-empty str")
            self._fee = PerformanceFee(fee_bps=self._fee.fee_bps, treasury=treasury)
            self._emit(Event.TREASURY_SET, user=caller, detail=treasury)

    # -- unsupported -------------------------------------------------------

    def set_settings(self, *args: Any, **kwargs: Any) -> None:
        raise NotSupportedError("set_settings")

    def withdraw_profit(self, *args: Any, **kwargs: Any) -> None:
        raise NotSupportedError("withdraw_profit")

    def set_fail_actions(self, *args: Any, **kwargs: Any) -> None:
        raise NotSupportedError("set_fail_actions")

    # -- queries -----------------------------------------------------------

    @property
    def phase(self) -> Phase:
        return self._phase

    @property
    def owner(self) -> Optional[str]:
        return self._owner

    @property
    def blocks(self) -> tuple[Block, ...]:
        return self._blocks

    @property
    def performance_fee(self) -> PerformanceFee:
        return self._fee

    @property
    def run_count(self) -> int:
        return self._run_count

    @property
    def last_run_timestamp(self) -> int:
        return self._last_run_timestamp

    @property
    def events(self) -> tuple[RunnerEvent, ...]:
        return tuple(self._events)

    def get_settings(self) -> tuple[tuple[Action, ...], ...]:
        if self._settings is None:
            raise SetupError("pipeline not initialized")
        return self._settings.actions

    def get_user_balances(self, user: str) -> list[int]:
        """Principal at index 0, owed accumulator shares at indices >= 1."""
        self._require_phase(Phase.OPERATIONAL)
        return user_balances(self.ledger, user)

    def get_user_balances_in_want(self, user: str) -> list[int]:
        """Like `get_user_balances`, with accumulator shares converted to want units."""
        balances = self.get_user_balances(user)
        for b in range(1, len(balances)):
            if balances[b] == 0:
                continue
            vault = as_vault(self._blocks[b])
            if vault is None:
                raise BlockCallError(b, "shares_to_want", "block has no vault capability")
            balances[b] = int(self._expect(b, "shares_to_want", call_block(vault.shares_to_want, balances[b])))
        return balances

    def get_running_deposits(self) -> tuple[int, ...]:
        return self.ledger.running_deposits()

    def get_running_withdrawals(self) -> tuple[int, ...]:
        return self.ledger.running_withdrawals()

    def get_snapshots(self, limit: int) -> tuple[RunSnapshot, ...]:
        return self.snapshots.last(limit)

    def __repr__(self) -> str:
        return f"Runner({self.config.address!r}, phase={self._phase.value}, blocks={len(self._blocks)})"
