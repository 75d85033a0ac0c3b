"""Tests for yieldrunner/core/runner.py — lifecycle, deposits, runs, withdrawals.

Pipelines are built from the in-memory blocks in
`yieldrunner.integration.memory` so every token movement is observable
through the shared `TokenBank`.
"""

from __future__ import annotations

import itertools

import pytest

from yieldrunner.core.errors import (
    AccessError,
    AccountingError,
    BlockCallError,
    LedgerInvariantError,
    NotSupportedError,
    ReentrancyError,
    SettingsError,
    SetupError,
)
from yieldrunner.core.runner import Runner, RunnerConfig
from yieldrunner.core.types import Action, ActionKind, Event, Phase
from yieldrunner.core.blocks import WithdrawalInputType
from yieldrunner.integration.memory import MemoryBlock, MemoryVaultBlock, TokenBank
from yieldrunner.state.balances import NATIVE_TOKEN

P = 10**12
R = ActionKind.REINVEST
N = ActionKind.NONE


class _Registry:
    def __init__(self, entries):
        self.entries = entries

    def get(self, key):
        return self.entries.get(key)


def _config(**kwargs) -> RunnerConfig:
    ticks = itertools.count(1_000, 10)
    return RunnerConfig(clock=lambda: next(ticks), **kwargs)


def _wired(
    bank: TokenBank,
    *,
    vaults: int = 1,
    deposit_token: str = "USDC",
    input_type: WithdrawalInputType = WithdrawalInputType.SHARES,
    config: RunnerConfig = None,
):
    """Runner with block0 (deposit_token, yields CAKE) reinvesting equally into `vaults` CAKE vaults."""
    blocks = [MemoryBlock(bank, "block0", deposit_token, ("CAKE",))]
    blocks += [MemoryVaultBlock(bank, f"block{i}", "CAKE", input_type=input_type) for i in range(1, vaults + 1)]
    share = 10_000 // vaults
    stage0 = [Action("CAKE", R, share, i) for i in range(1, vaults + 1)]
    stage0[-1] = Action("CAKE", R, 10_000 - share * (vaults - 1), vaults)
    settings = [stage0] + [[Action("CAKE", N, 10_000)] for _ in range(vaults)]
    runner = Runner(bank, config or _config())
    runner.initialize_pipeline(blocks, [[] for _ in blocks], settings)
    return runner, blocks


def _operational(bank: TokenBank, **kwargs):
    fee_bps = kwargs.pop("performance_fee_bps", 0)
    treasury = kwargs.pop("treasury", None)
    runner, blocks = _wired(bank, **kwargs)
    runner.initialize_vault("ops", [P] * len(blocks), treasury=treasury, performance_fee_bps=fee_bps)
    return runner, blocks


def _fund(bank: TokenBank, user: str, amount: int, token: str = "USDC") -> None:
    bank.mint(user, token, amount)
    bank.approve(user, "runner", token, amount)


def _deposit(runner: Runner, bank: TokenBank, user: str, amount: int) -> int:
    _fund(bank, user, amount)
    return runner.deposit(user, 0, amount)


def _events(runner: Runner, kind: Event):
    return [e for e in runner.events if e.event is kind]


# ---------------------------------------------------------------------------
# initialization
# ---------------------------------------------------------------------------


class TestInitializePipeline:
    def test_wires_blocks(self):
        bank = TokenBank()
        runner, blocks = _wired(bank)
        assert runner.phase is Phase.PIPELINE_WIRED
        assert blocks[0].tag == "stage0"
        assert blocks[1].tag == "stage1"
        assert bank.allowance("block0", "runner", "CAKE") > 0
        assert bank.allowance("block0", "block1", "CAKE") > 0
        assert runner.get_settings()[0] == (Action("CAKE", R, 10_000, 1),)
        assert _events(runner, Event.PIPELINE_INITIALIZED)[0].detail == "routes=1"

    def test_tags_and_adaptors_forwarded(self):
        bank = TokenBank()
        b0 = MemoryBlock(bank, "block0", "USDC", ("CAKE",))
        b1 = MemoryVaultBlock(bank, "block1", "CAKE")
        runner = Runner(bank, _config())
        runner.initialize_pipeline(
            [b0, b1],
            [["zap"], []],
            [[Action("CAKE", R, 10_000, 1)], []],
            tags=["deposit", "cake"],
        )
        assert (b0.tag, b1.tag) == ("deposit", "cake")
        assert b0.deposit_adaptors == ["zap"]

    def test_twice_rejected(self):
        bank = TokenBank()
        runner, blocks = _wired(bank)
        with pytest.raises(SetupError):
            runner.initialize_pipeline(blocks, [[], []], [[], []])

    def test_invalid_settings_leave_runner_uninitialized(self):
        bank = TokenBank()
        b0 = MemoryBlock(bank, "block0", "USDC", ("CAKE",))
        b1 = MemoryVaultBlock(bank, "block1", "CAKE")
        runner = Runner(bank, _config())
        with pytest.raises(SettingsError) as exc:
            runner.initialize_pipeline([b0, b1], [[], []], [[Action("CAKE", R, 9_000, 1)], []])
        assert exc.value.violations == ["block0:group_sum:CAKE:9000"]
        assert runner.phase is Phase.UNINITIALIZED
        assert b0.tag is None

    def test_length_mismatch(self):
        bank = TokenBank()
        b0 = MemoryBlock(bank, "block0", "USDC")
        runner = Runner(bank, _config())
        with pytest.raises(SetupError):
            runner.initialize_pipeline([b0], [[], []], [[]])

    def test_empty_pipeline_rejected(self):
        with pytest.raises(SetupError):
            Runner(TokenBank(), _config()).initialize_pipeline([], [], [])

    def test_duplicate_addresses_rejected(self):
        bank = TokenBank()
        b0 = MemoryBlock(bank, "same", "USDC", ("CAKE",))
        b1 = MemoryVaultBlock(bank, "same", "CAKE")
        with pytest.raises(SetupError):
            Runner(bank, _config()).initialize_pipeline([b0, b1], [[], []], [[], []])

    def test_accumulator_stage_needs_vault(self):
        bank = TokenBank()
        b0 = MemoryBlock(bank, "block0", "USDC", ("CAKE",))
        b1 = MemoryBlock(bank, "block1", "CAKE")
        with pytest.raises(SetupError):
            Runner(bank, _config()).initialize_pipeline([b0, b1], [[], []], [[], []])


class TestInitializeVault:
    def test_becomes_operational(self):
        bank = TokenBank()
        runner, _ = _operational(bank)
        assert runner.phase is Phase.OPERATIONAL
        assert runner.owner == "ops"
        assert len(runner.get_snapshots(10)) == 1
        assert runner.get_snapshots(1)[0].run_id == 0

    def test_requires_wired_pipeline(self):
        runner = Runner(TokenBank(), _config())
        with pytest.raises(SetupError):
            runner.initialize_vault("ops", [P])

    def test_twice_rejected(self):
        bank = TokenBank()
        runner, _ = _operational(bank)
        with pytest.raises(SetupError):
            runner.initialize_vault("ops", [P, P])

    def test_precision_count_mismatch(self):
        bank = TokenBank()
        runner, _ = _wired(bank)
        with pytest.raises(SetupError):
            runner.initialize_vault("ops", [P])
        assert runner.phase is Phase.PIPELINE_WIRED

    def test_zero_precision_rejected(self):
        bank = TokenBank()
        runner, _ = _wired(bank)
        with pytest.raises(SetupError):
            runner.initialize_vault("ops", [P, 0])

    def test_fee_above_cap_rejected(self):
        bank = TokenBank()
        runner, _ = _wired(bank)
        with pytest.raises(SetupError):
            runner.initialize_vault("ops", [P, P], treasury="t", performance_fee_bps=5_001)

    def test_treasury_from_registry(self):
        bank = TokenBank()
        runner, _ = _wired(bank)
        runner.initialize_vault("ops", [P, P], performance_fee_bps=100, registry=_Registry({1: "treasury"}))
        assert runner.performance_fee.treasury == "treasury"
        assert runner.performance_fee.active

    def test_operations_before_operational_rejected(self):
        bank = TokenBank()
        runner, _ = _wired(bank)
        _fund(bank, "alice", 10)
        with pytest.raises(SetupError):
            runner.deposit("alice", 0, 10)
        with pytest.raises(SetupError):
            runner.run()
        with pytest.raises(SetupError):
            runner.withdraw("alice", 0, 10)


# ---------------------------------------------------------------------------
# deposit
# ---------------------------------------------------------------------------


class TestDeposit:
    def test_credits_principal(self):
        bank = TokenBank()
        runner, _ = _operational(bank)
        assert _deposit(runner, bank, "alice", 1_000) == 1_000
        assert runner.ledger.total_deposits == 1_000
        assert runner.get_user_balances("alice") == [1_000, 0]
        assert runner.get_running_deposits() == (1_000, 0)
        assert bank.balance_of("block0", "USDC") == 1_000
        assert bank.balance_of("runner", "USDC") == 0
        assert bank.allowance("runner", "block0", "USDC") == 0
        event = _events(runner, Event.DEPOSITED)[0]
        assert (event.user, event.amount) == ("alice", 1_000)

    def test_only_block0(self):
        bank = TokenBank()
        runner, _ = _operational(bank)
        _fund(bank, "alice", 10)
        with pytest.raises(AccountingError):
            runner.deposit("alice", 1, 10)

    def test_invalid_index(self):
        bank = TokenBank()
        runner, _ = _operational(bank)
        with pytest.raises(AccountingError):
            runner.deposit("alice", 7, 10)

    def test_zero_amount(self):
        bank = TokenBank()
        runner, _ = _operational(bank)
        with pytest.raises(AccountingError):
            runner.deposit("alice", 0, 0)

    def test_block_failure_refunds_and_leaves_ledger(self):
        bank = TokenBank()
        runner, blocks = _operational(bank)
        blocks[0].fail("deposit_pull")
        _fund(bank, "alice", 500)
        with pytest.raises(BlockCallError) as exc:
            runner.deposit("alice", 0, 500)
        assert exc.value.block_index == 0
        assert bank.balance_of("alice", "USDC") == 500
        assert runner.ledger.total_deposits == 0
        assert runner.get_running_deposits() == (0, 0)
        assert _events(runner, Event.DEPOSITED) == []

    def test_raising_block_is_contained(self):
        bank = TokenBank()
        runner, blocks = _operational(bank)
        blocks[0].fail("deposit_pull", mode="raise")
        _fund(bank, "alice", 500)
        with pytest.raises(BlockCallError) as exc:
            runner.deposit("alice", 0, 500)
        assert "InjectedFailure" in exc.value.reason
        assert bank.balance_of("alice", "USDC") == 500

    def test_min_out_enforced_by_block(self):
        bank = TokenBank()
        runner, _ = _operational(bank)
        _fund(bank, "alice", 500)
        with pytest.raises(BlockCallError):
            runner.deposit("alice", 0, 500, min_out=501)
        assert bank.balance_of("alice", "USDC") == 500

    def test_missing_approval(self):
        bank = TokenBank()
        runner, _ = _operational(bank)
        bank.mint("alice", "USDC", 10)
        with pytest.raises(ValueError):
            runner.deposit("alice", 0, 10)
        assert runner.ledger.total_deposits == 0

    def test_zero_credit_refunds(self):
        class SilentBlock(MemoryBlock):
            def deposit_pull(self, token, amount, min_out):
                return True

        bank = TokenBank()
        runner = Runner(bank, _config())
        runner.initialize_pipeline([SilentBlock(bank, "block0", "USDC")], [[]], [[]])
        runner.initialize_vault("ops", [P])
        _fund(bank, "alice", 500)
        with pytest.raises(BlockCallError) as exc:
            runner.deposit("alice", 0, 500)
        assert (exc.value.block_index, exc.value.operation) == (0, "deposit")
        assert bank.balance_of("alice", "USDC") == 500
        assert bank.balance_of("runner", "USDC") == 0
        assert bank.allowance("runner", "block0", "USDC") == 0
        assert runner.ledger.total_deposits == 0
        assert _events(runner, Event.DEPOSITED) == []

    def test_invariant_violation_restores_ledger(self, monkeypatch):
        bank = TokenBank()
        runner, _ = _operational(bank)
        _deposit(runner, bank, "alice", 1_000)
        saved = runner.ledger.checkpoint()
        monkeypatch.setattr("yieldrunner.core.runner.check_all", lambda ledger: ["inv_forced"])
        with pytest.raises(LedgerInvariantError) as exc:
            _deposit(runner, bank, "bob", 500)
        assert exc.value.violations == ["inv_forced"]
        assert runner.ledger.checkpoint() == saved
        assert runner.get_user_balances("bob") == [0, 0]
        assert len(_events(runner, Event.DEPOSITED)) == 1


class TestDepositNative:
    def test_native_deposit(self):
        bank = TokenBank()
        runner, _ = _operational(bank, deposit_token=NATIVE_TOKEN)
        _fund(bank, "alice", 300, NATIVE_TOKEN)
        assert runner.deposit_native("alice", 300) == 300
        assert runner.get_user_balances("alice") == [300, 0]
        assert bank.balance_of("block0", NATIVE_TOKEN) == 300

    def test_non_native_block0_rejected(self):
        bank = TokenBank()
        runner, _ = _operational(bank)
        with pytest.raises(AccountingError):
            runner.deposit_native("alice", 300)


# ---------------------------------------------------------------------------
# run
# ---------------------------------------------------------------------------


class TestRun:
    def test_single_user_gets_all_yield(self):
        bank = TokenBank()
        runner, blocks = _operational(bank)
        _deposit(runner, bank, "alice", 1_000)
        blocks[0].schedule_yield("CAKE", 100)
        outcome = runner.run()

        assert outcome.run_id == 1
        assert outcome.failures == ()
        assert runner.ledger.acc_yield_per_token(1) == 100 * P // 1_000
        assert runner.get_user_balances("alice") == [1_000, 100]
        assert bank.balance_of("block0", "CAKE") == 0
        assert bank.balance_of("block1", "CAKE") == 100
        assert runner.get_running_deposits() == (1_000, 100)
        assert runner.run_count == 1
        assert runner.last_run_timestamp == outcome.timestamp

        snap = runner.get_snapshots(1)[0]
        assert snap.balances == (1_000, 100)
        assert snap.deposit_deltas == (1_000, 100)
        assert snap.withdrawal_deltas == (0, 0)
        assert len(_events(runner, Event.YIELD_ROUTED)) == 1
        assert len(_events(runner, Event.RUN_COMPLETED)) == 1

    def test_yield_split_pro_rata(self):
        bank = TokenBank()
        runner, blocks = _operational(bank)
        _deposit(runner, bank, "alice", 1_000)
        _deposit(runner, bank, "bob", 3_000)
        blocks[0].schedule_yield("CAKE", 400)
        runner.run()
        assert runner.get_user_balances("alice") == [1_000, 100]
        assert runner.get_user_balances("bob") == [3_000, 300]

    def test_late_depositor_excluded_from_past_yield(self):
        bank = TokenBank()
        runner, blocks = _operational(bank)
        _deposit(runner, bank, "alice", 1_000)
        blocks[0].schedule_yield("CAKE", 100)
        runner.run()
        _deposit(runner, bank, "bob", 1_000)
        assert runner.get_user_balances("bob") == [1_000, 0]
        blocks[0].schedule_yield("CAKE", 200)
        runner.run()
        assert runner.get_user_balances("alice") == [1_000, 200]
        assert runner.get_user_balances("bob") == [1_000, 100]

    def test_snapshot_deltas_per_period(self):
        bank = TokenBank()
        runner, blocks = _operational(bank)
        _deposit(runner, bank, "alice", 1_000)
        blocks[0].schedule_yield("CAKE", 100)
        runner.run()
        _deposit(runner, bank, "alice", 500)
        blocks[0].schedule_yield("CAKE", 50)
        runner.run()
        runner.run()
        first, second, third = runner.get_snapshots(3)
        assert first.deposit_deltas == (1_000, 100)
        assert second.deposit_deltas == (500, 50)
        assert third.deposit_deltas == (0, 0)
        assert third.running_deposits == (1_500, 150)
        assert [s.timestamp for s in runner.get_snapshots(4)] == sorted(s.timestamp for s in runner.get_snapshots(4))

    def test_split_routing_with_failing_destination(self):
        bank = TokenBank()
        runner, blocks = _operational(bank, vaults=2)
        _deposit(runner, bank, "alice", 1_000)
        blocks[2].fail("deposit_pull_from")
        blocks[0].schedule_yield("CAKE", 100)
        outcome = runner.run()

        assert len(outcome.failures) == 1
        failure = outcome.failures[0]
        assert (failure.block_index, failure.action_index, failure.destination) == (0, 1, 2)
        assert failure.amount == 50
        assert runner.get_user_balances("alice") == [1_000, 50, 0]
        assert runner.ledger.acc_yield_per_token(2) == 0
        assert bank.balance_of("block0", "CAKE") == 50
        assert len(_events(runner, Event.ACTION_FAILED)) == 1

        blocks[2].heal()
        outcome = runner.run()
        assert outcome.failures == ()
        assert runner.get_user_balances("alice") == [1_000, 75, 25]

    def test_run_without_principal_keeps_funds(self):
        bank = TokenBank()
        runner, blocks = _operational(bank)
        blocks[0].schedule_yield("CAKE", 100)
        outcome = runner.run()
        assert [f.reason for f in outcome.failures] == ["no principal deposited"]
        assert bank.balance_of("block0", "CAKE") == 100
        assert runner.ledger.acc_yield_per_token(1) == 0

    def test_run_without_principal_takes_no_fee(self):
        bank = TokenBank()
        runner, blocks = _operational(bank, performance_fee_bps=1_000, treasury="treasury")
        blocks[0].schedule_yield("CAKE", 100)
        for _ in range(5):
            assert runner.run().report.fees == ()
        assert bank.balance_of("treasury", "CAKE") == 0
        assert bank.balance_of("block0", "CAKE") == 100
        assert _events(runner, Event.FEE_TAKEN) == []

        _deposit(runner, bank, "alice", 1_000)
        runner.run()
        assert bank.balance_of("treasury", "CAKE") == 10
        assert runner.get_user_balances("alice") == [1_000, 90]

    def test_unmeasured_routing_aborts_run(self):
        class FlakyShareVault(MemoryVaultBlock):
            reads = 0

            def share_balance(self):
                self.reads += 1
                if self.reads > 1:
                    raise RuntimeError("rpc hiccup")
                return super().share_balance()

        bank = TokenBank()
        blocks = [MemoryBlock(bank, "block0", "USDC", ("CAKE",)), FlakyShareVault(bank, "block1", "CAKE")]
        runner = Runner(bank, _config())
        runner.initialize_pipeline(blocks, [[], []], [[Action("CAKE", R, 10_000, 1)], []])
        runner.initialize_vault("ops", [P, P])
        _deposit(runner, bank, "alice", 1_000)
        blocks[0].schedule_yield("CAKE", 100)
        with pytest.raises(BlockCallError) as exc:
            runner.run()
        assert (exc.value.block_index, exc.value.operation) == (1, "share_balance")
        assert runner.run_count == 0
        assert len(runner.get_snapshots(10)) == 1
        assert _events(runner, Event.RUN_COMPLETED) == []

    def test_invariant_violation_restores_ledger_after_run(self, monkeypatch):
        bank = TokenBank()
        runner, blocks = _operational(bank)
        _deposit(runner, bank, "alice", 1_000)
        saved = runner.ledger.checkpoint()
        blocks[0].schedule_yield("CAKE", 100)
        monkeypatch.setattr("yieldrunner.core.runner.check_all", lambda ledger: ["inv_forced"])
        with pytest.raises(LedgerInvariantError):
            runner.run()
        assert runner.ledger.checkpoint() == saved
        assert runner.run_count == 0
        assert len(runner.get_snapshots(10)) == 1

    def test_harvest_failure_aborts_run(self):
        bank = TokenBank()
        runner, blocks = _operational(bank)
        _deposit(runner, bank, "alice", 1_000)
        blocks[1].fail("run")
        with pytest.raises(BlockCallError) as exc:
            runner.run()
        assert (exc.value.block_index, exc.value.operation) == (1, "run")
        assert runner.run_count == 0
        assert len(runner.get_snapshots(10)) == 1

    def test_unreadable_balance_recorded_as_zero(self):
        bank = TokenBank()
        runner, blocks = _operational(bank)
        _deposit(runner, bank, "alice", 1_000)
        blocks[1].fail("balance", mode="raise")
        blocks[0].schedule_yield("CAKE", 100)
        outcome = runner.run()
        assert outcome.report.failures == ()
        assert [(f.block_index, f.stage) for f in outcome.balance_failures] == [(1, "balance")]
        assert outcome.snapshot.balances == (1_000, 0)
        assert runner.get_user_balances("alice") == [1_000, 100]

    def test_performance_fee_skimmed_at_group_start(self):
        bank = TokenBank()
        runner, blocks = _operational(bank, performance_fee_bps=1_000, treasury="treasury")
        _deposit(runner, bank, "alice", 1_000)
        blocks[0].schedule_yield("CAKE", 100)
        outcome = runner.run()
        assert [(c.token, c.amount) for c in outcome.report.fees] == [("CAKE", 10)]
        assert bank.balance_of("treasury", "CAKE") == 10
        assert runner.get_user_balances("alice") == [1_000, 90]
        assert _events(runner, Event.FEE_TAKEN)[0].amount == 10

    def test_leaf_blocks_hold_their_balance(self):
        bank = TokenBank()
        runner, blocks = _operational(bank)
        _deposit(runner, bank, "alice", 1_000)
        blocks[1].schedule_yield("CAKE", 100, recurring=True)
        runner.run()
        runner.run()
        assert bank.balance_of("block1", "CAKE") == 200
        assert blocks[1].run_calls == 2
        assert runner.get_user_balances("alice") == [1_000, 0]

    def test_reentrant_call_rejected(self):
        bank = TokenBank()
        runner, blocks = _operational(bank)
        _deposit(runner, bank, "alice", 1_000)
        seen = []

        class ReenteringBlock(MemoryBlock):
            def run(self):
                try:
                    runner.run()
                except ReentrancyError as exc:
                    seen.append(exc)
                return True

        blocks[0].__class__ = ReenteringBlock
        runner.run()
        assert len(seen) == 1
        assert runner.run_count == 1


# ---------------------------------------------------------------------------
# withdraw
# ---------------------------------------------------------------------------


class TestWithdraw:
    def test_principal_round_trip(self):
        bank = TokenBank()
        runner, _ = _operational(bank)
        _deposit(runner, bank, "alice", 1_000)
        assert runner.withdraw("alice", 0, 400) == 400
        assert bank.balance_of("alice", "USDC") == 400
        assert runner.get_user_balances("alice") == [600, 0]
        assert runner.get_running_withdrawals() == (400, 0)

    def test_principal_over_balance_rejected(self):
        bank = TokenBank()
        runner, _ = _operational(bank)
        _deposit(runner, bank, "alice", 1_000)
        with pytest.raises(AccountingError):
            runner.withdraw("alice", 0, 1_001)

    def test_principal_zero_rejected(self):
        bank = TokenBank()
        runner, _ = _operational(bank)
        _deposit(runner, bank, "alice", 1_000)
        with pytest.raises(AccountingError):
            runner.withdraw("alice", 0, 0)

    def test_earnings_paid_in_shares(self):
        bank = TokenBank()
        runner, blocks = _operational(bank)
        _deposit(runner, bank, "alice", 1_000)
        blocks[0].schedule_yield("CAKE", 100)
        runner.run()
        assert runner.withdraw("alice", 1) == 100
        assert bank.balance_of("alice", "CAKE") == 100
        assert runner.get_user_balances("alice") == [1_000, 0]
        assert runner.get_running_withdrawals() == (0, 100)
        assert runner.withdraw("alice", 1) == 0

    def test_earnings_keep_when_principal_changes(self):
        bank = TokenBank()
        runner, blocks = _operational(bank)
        _deposit(runner, bank, "alice", 1_000)
        blocks[0].schedule_yield("CAKE", 100)
        runner.run()
        runner.withdraw("alice", 0, 1_000)
        assert runner.get_user_balances("alice") == [0, 100]
        assert runner.withdraw("alice", 1) == 100

    def test_earnings_paid_in_want(self):
        bank = TokenBank()
        runner, blocks = _operational(bank, input_type=WithdrawalInputType.WANT)
        _deposit(runner, bank, "alice", 1_000)
        blocks[0].schedule_yield("CAKE", 100)
        runner.run()
        # The vault compounds: its share price doubles.
        bank.mint("block1", "CAKE", 100)
        assert runner.get_user_balances_in_want("alice") == [1_000, 200]
        assert runner.withdraw("alice", 1) == 200
        assert bank.balance_of("alice", "CAKE") == 200
        assert blocks[1].total_shares == 0

    def test_failed_withdraw_leaves_ledger(self):
        bank = TokenBank()
        runner, blocks = _operational(bank)
        _deposit(runner, bank, "alice", 1_000)
        blocks[0].fail("withdraw")
        with pytest.raises(BlockCallError):
            runner.withdraw("alice", 0, 100)
        assert runner.get_user_balances("alice") == [1_000, 0]
        assert runner.get_running_withdrawals() == (0, 0)
        assert len(_events(runner, Event.WITHDRAW_FAILED)) == 1

    def test_withdraw_all(self):
        bank = TokenBank()
        runner, blocks = _operational(bank, vaults=2)
        _deposit(runner, bank, "alice", 1_000)
        blocks[0].schedule_yield("CAKE", 100)
        runner.run()
        assert runner.withdraw_all("alice") == [1_000, 50, 50]
        assert runner.get_user_balances("alice") == [0, 0, 0]
        assert bank.balance_of("alice", "USDC") == 1_000
        assert bank.balance_of("alice", "CAKE") == 100

    def test_withdraw_all_with_nothing(self):
        bank = TokenBank()
        runner, _ = _operational(bank)
        assert runner.withdraw_all("nobody") == [0, 0]
        assert _events(runner, Event.WITHDRAWN) == []


# ---------------------------------------------------------------------------
# owner operations / unsupported / queries
# ---------------------------------------------------------------------------


class TestOwnerOperations:
    def test_set_performance_fee(self):
        bank = TokenBank()
        runner, _ = _operational(bank)
        runner.set_performance_fee("ops", 250)
        assert runner.performance_fee.fee_bps == 250
        assert _events(runner, Event.PERFORMANCE_FEE_SET)[0].amount == 250

    def test_non_owner_rejected(self):
        bank = TokenBank()
        runner, _ = _operational(bank)
        with pytest.raises(AccessError):
            runner.set_performance_fee("mallory", 250)
        with pytest.raises(AccessError):
            runner.set_treasury("mallory", "mallory")

    def test_fee_above_cap(self):
        bank = TokenBank()
        runner, _ = _operational(bank, config=_config(max_performance_fee_bps=100))
        with pytest.raises(AccountingError):
            runner.set_performance_fee("ops", 101)

    def test_set_treasury_activates_fee(self):
        bank = TokenBank()
        runner, _ = _operational(bank, performance_fee_bps=100)
        assert not runner.performance_fee.active
        runner.set_treasury("ops", "treasury")
        assert runner.performance_fee.active


class TestUnsupported:
    @pytest.mark.parametrize("name", ["set_settings", "withdraw_profit", "set_fail_actions"])
    def test_not_supported(self, name):
        bank = TokenBank()
        runner, _ = _operational(bank)
        with pytest.raises(NotSupportedError) as exc:
            getattr(runner, name)("ops")
        assert str(exc.value) == "not supported"
        assert exc.value.operation == name


class TestQueries:
    def test_balances_before_operational(self):
        runner = Runner(TokenBank(), _config())
        with pytest.raises(SetupError):
            runner.get_user_balances("alice")

    def test_get_settings_before_pipeline(self):
        with pytest.raises(SetupError):
            Runner(TokenBank(), _config()).get_settings()

    def test_unknown_user_has_zero_balances(self):
        bank = TokenBank()
        runner, _ = _operational(bank, vaults=2)
        assert runner.get_user_balances("nobody") == [0, 0, 0]
