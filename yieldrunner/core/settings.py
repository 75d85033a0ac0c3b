"""Routing settings: validation, grouping and route pre-authorization.

A block's action list is read as consecutive token groups: adjacent actions on
the same token form one group, and a token change closes the group. Each group
must distribute exactly `BPS_DENOM`.

Rules:
- stage 0 actions are all REINVEST into a stage >= 1,
- stages >= 1 are leaves: at most one action, NONE at 100%,
- every destination is an index of the pipeline,
- a token may not open a second group on the same block.

`validate_settings()` returns the list of violation ids (empty = valid) and
never mutates anything, so a rejected list is never partially persisted.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from .blocks import Block
from .types import BPS_DENOM, Action, ActionKind

MAX_ALLOWANCE = 2**256 - 1


@dataclass(frozen=True)
class ActionGroup:
    """Consecutive actions sharing one token."""

    token: str
    members: tuple[tuple[int, Action], ...]  # (action_index, action)

    @property
    def percent_total(self) -> int:
        return sum(action.percent_bps for _, action in self.members)


def group_actions(actions: Sequence[Action]) -> list[ActionGroup]:
    """Split an action list into adjacency-defined token groups."""
    groups: list[ActionGroup] = []
    current: list[tuple[int, Action]] = []
    for index, action in enumerate(actions):
        if current and current[-1][1].token != action.token:
            groups.append(ActionGroup(token=current[0][1].token, members=tuple(current)))
            current = []
        current.append((index, action))
    if current:
        groups.append(ActionGroup(token=current[0][1].token, members=tuple(current)))
    return groups


def _stage0_violations(actions: Sequence[Action], n_blocks: int) -> list[str]:
    out: list[str] = []
    for j, action in enumerate(actions):
        if action.kind is not ActionKind.REINVEST:
            out.append(f"block0.action{j}:reinvest_required")
        if action.destination == 0:
            out.append(f"block0.action{j}:self_destination")
        elif action.destination >= n_blocks:
            out.append(f"block0.action{j}:destination_out_of_range")
    return out


def _leaf_violations(block_index: int, actions: Sequence[Action], n_blocks: int) -> list[str]:
    if not actions:
        return []
    if len(actions) > 1:
        return [f"block{block_index}:too_many_actions"]
    action = actions[0]
    out: list[str] = []
    if action.kind is not ActionKind.NONE:
        out.append(f"block{block_index}.action0:none_required")
    if action.percent_bps != BPS_DENOM:
        out.append(f"block{block_index}.action0:full_percent_required")
    if action.destination >= n_blocks:
        out.append(f"block{block_index}.action0:destination_out_of_range")
    return out


def _group_violations(block_index: int, actions: Sequence[Action]) -> list[str]:
    out: list[str] = []
    seen: set[str] = set()
    for group in group_actions(actions):
        if group.token in seen:
            out.append(f"block{block_index}:token_regrouped:{group.token}")
        seen.add(group.token)
        for j, action in group.members:
            if action.percent_bps > BPS_DENOM:
                out.append(f"block{block_index}.action{j}:percent_out_of_range")
        if group.percent_total != BPS_DENOM:
            out.append(f"block{block_index}:group_sum:{group.token}:{group.percent_total}")
    return out


def validate_settings(settings: Sequence[Sequence[Action]], n_blocks: int) -> list[str]:
    """Return violation ids for a full pipeline's settings (empty = valid)."""
    if len(settings) != n_blocks:
        return [f"settings_length:{len(settings)}!={n_blocks}"]
    violations: list[str] = []
    for i, actions in enumerate(settings):
        for j, action in enumerate(actions):
            if not isinstance(action, Action):
                violations.append(f"block{i}.action{j}:not_an_action")
        if violations:
            continue
        if i == 0:
            violations.extend(_stage0_violations(actions, n_blocks))
        else:
            violations.extend(_leaf_violations(i, actions, n_blocks))
        violations.extend(_group_violations(i, actions))
    return violations


@dataclass(frozen=True)
class PipelineSettings:
    """Validated, immutable per-block action lists."""

    actions: tuple[tuple[Action, ...], ...]

    @classmethod
    def from_lists(cls, settings: Sequence[Sequence[Action]]) -> "PipelineSettings":
        return cls(actions=tuple(tuple(a) for a in settings))

    def for_block(self, block_index: int) -> tuple[Action, ...]:
        return self.actions[block_index]

    def groups(self, block_index: int) -> list[ActionGroup]:
        return group_actions(self.actions[block_index])

    def __len__(self) -> int:
        return len(self.actions)


def authorize_reinvest_routes(blocks: Sequence[Block], settings: PipelineSettings) -> int:
    """Let each reinvest destination pull its token from the source block.

    Returns the number of routes authorized.
    """
    count = 0
    for i, actions in enumerate(settings.actions):
        for action in actions:
            if action.kind is ActionKind.REINVEST:
                destination = blocks[action.destination]
                blocks[i].approve_spend_if_no_allowance(destination.address, action.token, MAX_ALLOWANCE)
                count += 1
    return count
