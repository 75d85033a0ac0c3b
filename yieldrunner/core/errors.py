"""Exception types for the yield runner.

Pure validators (`core.settings`, `core.invariants`) return violation lists;
`core.runner.Runner` turns non-empty lists into the exceptions below.
"""

from __future__ import annotations

NOT_SUPPORTED = "not supported"


class RunnerError(Exception):
    """Base class for all runner failures."""


class SetupError(RunnerError):
    """Raised by initialization calls: wrong phase, length mismatch, bad precision."""


class SettingsError(SetupError):
    """Raised when an action list violates one or more routing rules."""

    def __init__(self, violations: list[str]) -> None:
        self.violations = violations
        super().__init__(f"settings violations: {', '.join(violations)}")


class AccountingError(RunnerError):
    """Raised for zero amounts, insufficient principal and invalid block indices."""


class AccessError(RunnerError):
    """Raised when an owner-only operation is called by another address."""


class ReentrancyError(RunnerError):
    """Raised when a call re-enters a runner that is already executing an operation."""


class NotSupportedError(RunnerError):
    """Raised by operations this runner variant intentionally does not implement."""

    def __init__(self, operation: str) -> None:
        self.operation = operation
        super().__init__(NOT_SUPPORTED)


class BlockCallError(RunnerError):
    """Raised when a block capability call fails outside the run engine's routing isolation."""

    def __init__(self, block_index: int, operation: str, reason: str) -> None:
        self.block_index = block_index
        self.operation = operation
        self.reason = reason
        super().__init__(f"block {block_index} {operation} failed: {reason}")


class LedgerInvariantError(RunnerError):
    """Raised when a post-operation ledger violates one or more invariants."""

    def __init__(self, violations: list[str]) -> None:
        self.violations = violations
        super().__init__(f"invariant violations: {', '.join(violations)}")
