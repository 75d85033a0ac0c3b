"""
State stores for the yield runner
"""

from .balances import NATIVE_TOKEN, AllowanceTable, HoldingsTable
from .ledger import BlockShareInfo, Ledger, LedgerCheckpoint, UserInfo
from .snapshots import RunSnapshot, SnapshotLog

__all__ = [
    "NATIVE_TOKEN",
    "AllowanceTable",
    "HoldingsTable",
    "BlockShareInfo",
    "Ledger",
    "LedgerCheckpoint",
    "UserInfo",
    "RunSnapshot",
    "SnapshotLog",
]
