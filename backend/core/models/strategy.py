"""Strategy definition models.

These mirror the rows of the relational store (strategies, strategy_blocks,
conditions, actions). The monitor only reads them; all writes happen through
the strategy management API, which lives outside this service.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


class BlockType(str, Enum):
    """Kind of node in a strategy's block tree."""

    ROOT = "ROOT"
    WEIGHT = "WEIGHT"
    ASSET = "ASSET"
    GROUP = "GROUP"
    CONDITION_IF = "CONDITION_IF"
    FILTER = "FILTER"
    ACTION = "ACTION"


class Operator(str, Enum):
    """Comparison operator applied by a condition."""

    GREATER_THAN = "GREATER_THAN"
    LESS_THAN = "LESS_THAN"
    EQUALS = "EQUALS"
    NOT_EQUALS = "NOT_EQUALS"
    GREATER_THAN_OR_EQUAL = "GREATER_THAN_OR_EQUAL"
    LESS_THAN_OR_EQUAL = "LESS_THAN_OR_EQUAL"
    CROSSES_ABOVE = "CROSSES_ABOVE"
    CROSSES_BELOW = "CROSSES_BELOW"


class ActionType(str, Enum):
    """What the executor is asked to do when a strategy triggers."""

    EXECUTE_TRADE = "EXECUTE_TRADE"
    SEND_NOTIFICATION = "SEND_NOTIFICATION"


class Condition(BaseModel):
    """A single comparison of one indicator against a value or another indicator."""

    model_config = ConfigDict(frozen=True)

    id: str
    indicator_type: str
    symbol: str | None = None
    interval: str | None = None
    parameters: dict[str, Any] = Field(default_factory=dict)
    data_source: str | None = None
    data_key: str | None = None  # Field of a data point to compare, e.g. "MACD_Signal"
    operator: Operator
    target_value: float | None = None
    target_condition_id: str | None = None

    @model_validator(mode="after")
    def _check_target(self):
        has_value = self.target_value is not None
        has_ref = self.target_condition_id is not None
        if has_value == has_ref:
            raise ValueError(
                f"Condition {self.id} must have exactly one of target_value "
                f"or target_condition_id"
            )
        return self

    @property
    def compares_indicators(self) -> bool:
        """True if the target is another condition's indicator."""
        return self.target_condition_id is not None

    @property
    def is_schedulable(self) -> bool:
        """Symbol and interval are both required to fetch the indicator."""
        return bool(self.symbol) and bool(self.interval)

    def describe_target(self) -> str:
        if self.target_condition_id is not None:
            return f"TargetCondition({self.target_condition_id})"
        return f"TargetValue({self.target_value})"


class Action(BaseModel):
    """Something to do when a strategy's conditions are all met."""

    model_config = ConfigDict(frozen=True)

    id: str
    action_type: ActionType
    parameters: dict[str, Any] = Field(default_factory=dict)
    order: int = 0


class Block(BaseModel):
    """A node in a strategy's block tree.

    Blocks reference conditions and actions rather than owning them, so the
    same Condition or Action may hang off several blocks.
    """

    id: str
    strategy_id: str
    block_type: BlockType
    parameters: dict[str, Any] = Field(default_factory=dict)
    parent_id: str | None = None
    order: int = 0
    condition: Condition | None = None
    action: Action | None = None


def collect_conditions(blocks: list[Block]) -> list[Condition]:
    """Unique conditions linked anywhere in ``blocks``, in block order."""
    seen: set[str] = set()
    conditions: list[Condition] = []
    for block in sorted(blocks, key=lambda b: b.order):
        if block.condition is None or block.condition.id in seen:
            continue
        seen.add(block.condition.id)
        conditions.append(block.condition)
    return conditions


def collect_actions(blocks: list[Block]) -> list[Action]:
    """Unique actions linked anywhere in ``blocks``, in block order."""
    seen: set[str] = set()
    actions: list[Action] = []
    for block in sorted(blocks, key=lambda b: b.order):
        if block.action is None or block.action.id in seen:
            continue
        seen.add(block.action.id)
        actions.append(block.action)
    return actions
