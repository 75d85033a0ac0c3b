"""
Ledger export for off-line auditing.

Goals:
- Deterministic JSON for hashing and distribution.
- Round-trippable into a `Ledger` (`ledger_from_export`).
- Explicit versioning.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping

from ..core.runner import Runner
from ..state.canonical import canonical_json_bytes, commitment_hex
from ..state.ledger import Ledger, UserInfo

LEDGER_EXPORT_VERSION = 1


def _require_str(value: Any, *, name: str) -> str:
    if not isinstance(value, str) or not value:
        raise TypeError(f"{name} must be a non-empty string")
    return value


def _require_int(value: Any, *, name: str) -> int:
    if not isinstance(value, int) or isinstance(value, bool):
        raise TypeError(f"{name} must be an int")
    if value < 0:
        raise ValueError(f"{name} must be non-negative")
    return int(value)


def _require_int_list(value: Any, *, name: str, length: int) -> list[int]:
    if not isinstance(value, list) or len(value) != length:
        raise ValueError(f"{name} must be a list of {length} ints")
    return [_require_int(v, name=f"{name}[{i}]") for i, v in enumerate(value)]


@dataclass(frozen=True)
class LedgerExport:
    """
    Versioned export of one runner's ledger and run history.

    The commitment is *not* included inside `data` to avoid self-reference.
    """

    version: int
    data: Dict[str, Any]

    def canonical_bytes(self) -> bytes:
        return canonical_json_bytes(self.data)

    def commitment_hex(self) -> str:
        return commitment_hex("ledger_export", self.data, version=self.version)


def ledger_to_dict(ledger: Ledger) -> Dict[str, Any]:
    users = [
        {"user": user, "deposit": amount}
        for user, amount in ledger.user_deposits().items()
    ]
    users.sort(key=lambda e: e["user"])

    infos = [
        {"block": block, "user": user, "yield_debt": info.yield_debt, "banked_amount": info.banked_amount}
        for (block, user), info in ledger.user_info_entries().items()
    ]
    infos.sort(key=lambda e: (e["block"], e["user"]))

    return {
        "precisions": list(ledger.precisions),
        "total_deposits": ledger.total_deposits,
        "user_deposits": users,
        "acc_yield_per_token": [ledger.acc_yield_per_token(b) for b in range(ledger.n_blocks)],
        "user_info": infos,
        "running_deposits": list(ledger.running_deposits()),
        "running_withdrawals": list(ledger.running_withdrawals()),
    }


def export_runner(runner: Runner, *, version: int = LEDGER_EXPORT_VERSION) -> LedgerExport:
    if not isinstance(version, int) or isinstance(version, bool) or version <= 0:
        raise ValueError("version must be a positive int")
    fee = runner.performance_fee
    data: Dict[str, Any] = {
        "version": version,
        "phase": runner.phase.value,
        "owner": runner.owner,
        "performance_fee_bps": fee.fee_bps,
        "treasury": fee.treasury,
        "run_count": runner.run_count,
        "last_run_timestamp": runner.last_run_timestamp,
        "ledger": ledger_to_dict(runner.ledger),
        "snapshots": [s.to_dict() for s in runner.snapshots],
    }
    return LedgerExport(version=version, data=data)


def ledger_from_export(export: Mapping[str, Any]) -> Ledger:
    """Rebuild a `Ledger` from `export_runner(...).data` (or its `ledger` member)."""
    if not isinstance(export, Mapping):
        raise TypeError("export must be a mapping")
    version = export.get("version", LEDGER_EXPORT_VERSION)
    if version != LEDGER_EXPORT_VERSION:
        raise ValueError(f"unsupported export version: {version}")
    obj = export.get("ledger", export)
    if not isinstance(obj, Mapping):
        raise TypeError("export.ledger must be an object")

    precisions = obj.get("precisions")
    if not isinstance(precisions, list) or not precisions:
        raise ValueError("export.ledger.precisions must be a non-empty list")
    ledger = Ledger()
    ledger.configure([_require_int(p, name="precision") for p in precisions])
    n = ledger.n_blocks

    seen_users: set[str] = set()
    for entry in obj.get("user_deposits") or []:
        if not isinstance(entry, Mapping):
            raise TypeError("user_deposits entries must be objects")
        user = _require_str(entry.get("user"), name="user_deposits.user")
        if user in seen_users:
            raise ValueError(f"duplicate user deposit entry: {user}")
        seen_users.add(user)
        ledger.add_principal(user, _require_int(entry.get("deposit"), name="user_deposits.deposit"))
    if ledger.total_deposits != _require_int(obj.get("total_deposits", 0), name="total_deposits"):
        raise ValueError("total_deposits does not match the sum of user deposits")

    for b, acc in enumerate(_require_int_list(obj.get("acc_yield_per_token"), name="acc_yield_per_token", length=n)):
        ledger.raise_accumulator(b, acc)

    seen_infos: set[tuple[int, str]] = set()
    for entry in obj.get("user_info") or []:
        if not isinstance(entry, Mapping):
            raise TypeError("user_info entries must be objects")
        block = _require_int(entry.get("block"), name="user_info.block")
        if block >= n:
            raise ValueError(f"user_info.block out of range: {block}")
        user = _require_str(entry.get("user"), name="user_info.user")
        if (block, user) in seen_infos:
            raise ValueError(f"duplicate user_info entry: ({block}, {user})")
        seen_infos.add((block, user))
        ledger.set_user_info(
            block,
            user,
            UserInfo(
                yield_debt=_require_int(entry.get("yield_debt", 0), name="user_info.yield_debt"),
                banked_amount=_require_int(entry.get("banked_amount", 0), name="user_info.banked_amount"),
            ),
        )

    for b, v in enumerate(_require_int_list(obj.get("running_deposits"), name="running_deposits", length=n)):
        ledger.record_deposit(b, v)
    for b, v in enumerate(_require_int_list(obj.get("running_withdrawals"), name="running_withdrawals", length=n)):
        ledger.record_withdrawal(b, v)
    return ledger
