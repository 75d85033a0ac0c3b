"""
Core yield-runner kernels and engine
"""

from .accounting import (
    bank_earnings,
    block_earnings,
    reset_user_yield_debt,
    settle_user,
    user_balances,
)
from .blocks import Block, BlockCallResult, Capability, VaultBlock, WithdrawalInputType, call_block
from .errors import (
    AccessError,
    AccountingError,
    BlockCallError,
    LedgerInvariantError,
    NotSupportedError,
    ReentrancyError,
    RunnerError,
    SettingsError,
    SetupError,
)
from .fees import PerformanceFee, allocate_group, skim_fee
from .runner import RunOutcome, Runner, RunnerConfig
from .settings import PipelineSettings, validate_settings
from .types import (
    BPS_DENOM,
    Action,
    ActionFailure,
    ActionKind,
    Event,
    FailAction,
    Phase,
    RoutedTransfer,
    RunnerEvent,
)

__all__ = [
    "bank_earnings",
    "block_earnings",
    "reset_user_yield_debt",
    "settle_user",
    "user_balances",
    "Block",
    "BlockCallResult",
    "Capability",
    "VaultBlock",
    "WithdrawalInputType",
    "call_block",
    "AccessError",
    "AccountingError",
    "BlockCallError",
    "LedgerInvariantError",
    "NotSupportedError",
    "ReentrancyError",
    "RunnerError",
    "SettingsError",
    "SetupError",
    "PerformanceFee",
    "allocate_group",
    "skim_fee",
    "RunOutcome",
    "Runner",
    "RunnerConfig",
    "PipelineSettings",
    "validate_settings",
    "BPS_DENOM",
    "Action",
    "ActionFailure",
    "ActionKind",
    "Event",
    "FailAction",
    "Phase",
    "RoutedTransfer",
    "RunnerEvent",
]
