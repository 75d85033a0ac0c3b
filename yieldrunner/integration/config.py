"""
Pipeline configuration loaded from YAML.

Document shape::

    owner: ops
    treasury: treasury        # optional
    performance_fee_bps: 100  # optional, default 0
    blocks:
      - tag: deposit
        precision: 1000000000000
        deposit_adaptors: []
        actions:
          - {token: CAKE, kind: reinvest, percent_bps: 10000, destination: 1}
      - tag: cake-vault
        precision: 1000000000000
        actions:
          - {token: CAKE, kind: none, percent_bps: 10000}

Loading only checks shapes and types; routing rules are enforced by the
runner when the config is applied (`apply_pipeline_config`).
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Optional, Sequence, Union

import yaml

from ..core.blocks import Block, ConfigRegistry
from ..core.errors import SetupError
from ..core.runner import Runner
from ..core.types import Action, ActionKind


def _require_str(value: Any, *, name: str) -> str:
    if not isinstance(value, str) or not value:
        raise TypeError(f"{name} must be a non-empty string")
    return value


def _require_int(value: Any, *, name: str, positive: bool = False) -> int:
    if not isinstance(value, int) or isinstance(value, bool):
        raise TypeError(f"{name} must be an int")
    if value < 0 or (positive and value == 0):
        raise ValueError(f"{name} must be {'positive' if positive else 'non-negative'}")
    return int(value)


@dataclass(frozen=True)
class BlockConfig:
    tag: str
    precision: int
    deposit_adaptors: tuple[str, ...] = ()
    actions: tuple[Action, ...] = ()


@dataclass(frozen=True)
class PipelineConfig:
    owner: str
    blocks: tuple[BlockConfig, ...]
    treasury: Optional[str] = None
    performance_fee_bps: int = 0

    @property
    def settings(self) -> list[list[Action]]:
        return [list(b.actions) for b in self.blocks]

    @property
    def precisions(self) -> list[int]:
        return [b.precision for b in self.blocks]

    @property
    def deposit_adaptors(self) -> list[list[str]]:
        return [list(b.deposit_adaptors) for b in self.blocks]

    @property
    def tags(self) -> list[str]:
        return [b.tag for b in self.blocks]


def _parse_action(obj: Any, *, where: str) -> Action:
    if not isinstance(obj, Mapping):
        raise TypeError(f"{where} must be a mapping")
    kind_raw = _require_str(obj.get("kind"), name=f"{where}.kind").strip().lower()
    try:
        kind = ActionKind(kind_raw)
    except ValueError as exc:
        raise ValueError(f"{where}.kind: unknown action kind {kind_raw!r}") from exc
    return Action(
        token=_require_str(obj.get("token"), name=f"{where}.token"),
        kind=kind,
        percent_bps=_require_int(obj.get("percent_bps"), name=f"{where}.percent_bps"),
        destination=_require_int(obj.get("destination", 0), name=f"{where}.destination"),
    )


def _parse_block(obj: Any, index: int) -> BlockConfig:
    where = f"blocks[{index}]"
    if not isinstance(obj, Mapping):
        raise TypeError(f"{where} must be a mapping")
    adaptors = obj.get("deposit_adaptors") or []
    if not isinstance(adaptors, list):
        raise TypeError(f"{where}.deposit_adaptors must be a list")
    actions = obj.get("actions") or []
    if not isinstance(actions, list):
        raise TypeError(f"{where}.actions must be a list")
    return BlockConfig(
        tag=_require_str(obj.get("tag", f"stage{index}"), name=f"{where}.tag"),
        precision=_require_int(obj.get("precision"), name=f"{where}.precision", positive=True),
        deposit_adaptors=tuple(_require_str(a, name=f"{where}.deposit_adaptors[]") for a in adaptors),
        actions=tuple(_parse_action(a, where=f"{where}.actions[{j}]") for j, a in enumerate(actions)),
    )


def pipeline_config_from_dict(obj: Mapping[str, Any]) -> PipelineConfig:
    if not isinstance(obj, Mapping):
        raise TypeError("pipeline config must be a mapping")
    blocks = obj.get("blocks")
    if not isinstance(blocks, list) or not blocks:
        raise ValueError("pipeline config needs a non-empty 'blocks' list")
    treasury = obj.get("treasury")
    return PipelineConfig(
        owner=_require_str(obj.get("owner"), name="owner"),
        blocks=tuple(_parse_block(b, i) for i, b in enumerate(blocks)),
        treasury=None if treasury is None else _require_str(treasury, name="treasury"),
        performance_fee_bps=_require_int(obj.get("performance_fee_bps", 0), name="performance_fee_bps"),
    )


def load_pipeline_config(source: Union[str, Path]) -> PipelineConfig:
    """Load a `PipelineConfig` from a YAML file path."""
    path = Path(source)
    obj = yaml.safe_load(path.read_text(encoding="utf-8"))
    return pipeline_config_from_dict(obj)


def parse_pipeline_config(text: str) -> PipelineConfig:
    """Load a `PipelineConfig` from YAML text."""
    return pipeline_config_from_dict(yaml.safe_load(text))


def apply_pipeline_config(
    runner: Runner,
    blocks: Sequence[Block],
    config: PipelineConfig,
    *,
    registry: Optional[ConfigRegistry] = None,
) -> None:
    """Run both initialization phases of `runner` from `config`."""
    if len(blocks) != len(config.blocks):
        raise SetupError(f"config describes {len(config.blocks)} blocks, got {len(blocks)}")
    runner.initialize_pipeline(blocks, config.deposit_adaptors, config.settings, tags=config.tags)
    runner.initialize_vault(
        config.owner,
        config.precisions,
        treasury=config.treasury,
        performance_fee_bps=config.performance_fee_bps,
        registry=registry,
    )
