"""Data types for the yield runner.

All value types are frozen dataclasses (immutable).

Units/conventions:
- `*_bps` values are basis points (1/10_000).
- Amounts are non-negative Python ints in the holding block's own unit.
- Block index 0 is the deposit stage; indices >= 1 are accumulator stages.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, unique
from typing import Optional

BPS_DENOM = 10_000


@unique
class ActionKind(Enum):
    """What a routing action does with its share of a block's token balance."""
    NONE = "none"
    TAKE_PROFIT = "take_profit"
    AUTOCOMPOUND = "autocompound"
    REINVEST = "reinvest"


@unique
class Phase(Enum):
    """Forward-only lifecycle of a runner instance."""
    UNINITIALIZED = "uninitialized"
    PIPELINE_WIRED = "pipeline_wired"
    OPERATIONAL = "operational"


@unique
class Event(Enum):
    PIPELINE_INITIALIZED = "PipelineInitialized"
    VAULT_INITIALIZED = "VaultInitialized"
    DEPOSITED = "Deposited"
    WITHDRAWN = "Withdrawn"
    WITHDRAW_FAILED = "WithdrawFailed"
    FEE_TAKEN = "FeeTaken"
    YIELD_ROUTED = "YieldRouted"
    ACTION_FAILED = "ActionFailed"
    RUN_COMPLETED = "RunCompleted"
    PERFORMANCE_FEE_SET = "PerformanceFeeSet"
    TREASURY_SET = "TreasurySet"


def _require_uint(value: object, name: str) -> None:
    if not isinstance(value, int) or isinstance(value, bool):
        raise TypeError(f"{name} must be an int")
    if value < 0:
        raise ValueError(f"{name} must be non-negative: {value}")


@dataclass(frozen=True)
class Action:
    """One routing rule attached to a block.

    After a run, `percent_bps` of the block's balance of `token` moves to the
    block at index `destination`. Range and grouping rules are enforced by
    `core.settings.validate_settings`, not here.
    """

    token: str
    kind: ActionKind
    percent_bps: int
    destination: int = 0

    def __post_init__(self) -> None:
        if not isinstance(self.token, str) or not self.token:
            raise TypeError("token must be a non-empty str")
        if not isinstance(self.kind, ActionKind):
            raise TypeError("kind must be an ActionKind")
        _require_uint(self.percent_bps, "percent_bps")
        _require_uint(self.destination, "destination")


@dataclass(frozen=True)
class FailAction:
    """Fallback routing for a failed action. Stored shape only; never executed."""

    kind: ActionKind
    destination: int = 0


@dataclass(frozen=True)
class RunnerEvent:
    """One entry of the runner's event log."""

    event: Event
    block_index: Optional[int] = None
    user: Optional[str] = None
    amount: int = 0
    detail: str = ""


@dataclass(frozen=True)
class RoutedTransfer:
    """A routing action that moved funds during a run."""

    block_index: int
    action_index: int
    token: str
    destination: int
    amount: int
    shares_increase: int
    acc_delta: int


@dataclass(frozen=True)
class ActionFailure:
    """A run step that failed and was isolated from the rest of the run.

    `stage` is "route" for a routing call, "fee" for a fee skim that left its
    group unrouted, and "balance" for a block whose snapshot balance could not
    be read (recorded as 0). Fee and balance failures carry `action_index=-1`.
    """

    block_index: int
    action_index: int
    token: str
    destination: int
    amount: int
    reason: str
    stage: str = "route"


@dataclass(frozen=True)
class FeeCharge:
    """Performance fee skimmed at the start of a token group."""

    block_index: int
    token: str
    amount: int
    treasury: str
