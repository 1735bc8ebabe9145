"""Read-only access to strategy definitions."""

from __future__ import annotations

import logging

from pydantic import ValidationError
from sqlalchemy import select

from app.storage.database import (
    ActionTable,
    ConditionTable,
    Database,
    StrategyBlockTable,
    StrategyTable,
)
from core.models.strategy import Action, Block, Condition

logger = logging.getLogger(__name__)


class StrategyRepository:
    """Queries over strategies, blocks, conditions and actions."""

    def __init__(self, database: Database):
        self._db = database

    async def get_active_conditions(self) -> list[Condition]:
        """Conditions linked to at least one block of an active strategy.

        Conditions referenced as comparison targets by those conditions are
        included too (one level), since their series must be cached for the
        comparison to resolve.
        """
        async with self._db.session() as session:
            stmt = (
                select(ConditionTable)
                .join(StrategyBlockTable, StrategyBlockTable.condition_id == ConditionTable.id)
                .join(StrategyTable, StrategyTable.id == StrategyBlockTable.strategy_id)
                .where(StrategyTable.is_active.is_(True))
                .distinct()
            )
            result = await session.execute(stmt)
            conditions = self._rows_to_conditions(result.scalars().all())

            known = {c.id for c in conditions}
            target_ids = {
                c.target_condition_id
                for c in conditions
                if c.target_condition_id is not None and c.target_condition_id not in known
            }
            if target_ids:
                stmt = select(ConditionTable).where(ConditionTable.id.in_(target_ids))
                result = await session.execute(stmt)
                conditions.extend(self._rows_to_conditions(result.scalars().all()))

            return conditions

    async def find_active_conditions(
        self, indicator_type: str, symbol: str, interval: str
    ) -> list[tuple[Condition, str]]:
        """Conditions on an indicator profile, paired with each active strategy using them.

        Parameters are not filtered here; JSON equality is checked by the
        caller.

        Returns:
            ``(condition, strategy_id)`` pairs, one per distinct pair.
        """
        async with self._db.session() as session:
            stmt = (
                select(ConditionTable, StrategyBlockTable.strategy_id)
                .join(StrategyBlockTable, StrategyBlockTable.condition_id == ConditionTable.id)
                .join(StrategyTable, StrategyTable.id == StrategyBlockTable.strategy_id)
                .where(
                    ConditionTable.indicator_type == indicator_type,
                    ConditionTable.symbol == symbol,
                    ConditionTable.interval == interval,
                    StrategyTable.is_active.is_(True),
                )
                .distinct()
            )
            result = await session.execute(stmt)

            pairs: list[tuple[Condition, str]] = []
            for row, strategy_id in result.all():
                condition = self._row_to_condition(row)
                if condition is not None:
                    pairs.append((condition, strategy_id))
            return pairs

    async def get_strategy_blocks(self, strategy_id: str) -> list[Block]:
        """All blocks of a strategy with their linked condition and action, by order.

        Returns an empty list if any block, or any condition or action linked
        to a block, fails validation.
        """
        async with self._db.session() as session:
            stmt = (
                select(StrategyBlockTable, ConditionTable, ActionTable)
                .outerjoin(ConditionTable, ConditionTable.id == StrategyBlockTable.condition_id)
                .outerjoin(ActionTable, ActionTable.id == StrategyBlockTable.action_id)
                .where(StrategyBlockTable.strategy_id == strategy_id)
                .order_by(StrategyBlockTable.order.asc())
            )
            result = await session.execute(stmt)

            blocks: list[Block] = []
            for block_row, condition_row, action_row in result.all():
                condition = self._row_to_condition(condition_row) if condition_row else None
                action = self._row_to_action(action_row) if action_row else None
                # Any unparseable linked row disqualifies the whole strategy
                if (condition_row is not None and condition is None) or (
                    action_row is not None and action is None
                ):
                    logger.warning(
                        f"Strategy {strategy_id} block {block_row.id} links an invalid "
                        f"row, skipping strategy"
                    )
                    return []
                try:
                    blocks.append(
                        Block(
                            id=block_row.id,
                            strategy_id=block_row.strategy_id,
                            block_type=block_row.block_type,
                            parameters=block_row.parameters or {},
                            parent_id=block_row.parent_id,
                            order=block_row.order,
                            condition=condition,
                            action=action,
                        )
                    )
                except ValidationError as e:
                    logger.warning(
                        f"Skipping strategy {strategy_id}: invalid block {block_row.id}: {e}"
                    )
                    return []
            return blocks

    async def get_condition(self, condition_id: str) -> Condition | None:
        """Get a condition by ID."""
        async with self._db.session() as session:
            stmt = select(ConditionTable).where(ConditionTable.id == condition_id)
            result = await session.execute(stmt)
            row = result.scalar_one_or_none()

            if row is None:
                return None
            return self._row_to_condition(row)

    def _rows_to_conditions(self, rows) -> list[Condition]:
        conditions = []
        for row in rows:
            condition = self._row_to_condition(row)
            if condition is not None:
                conditions.append(condition)
        return conditions

    def _row_to_condition(self, row: ConditionTable) -> Condition | None:
        """Convert a row; rows violating the target invariant are skipped."""
        try:
            return Condition(
                id=row.id,
                indicator_type=row.indicator_type,
                symbol=row.symbol,
                interval=row.interval,
                parameters=row.parameters if isinstance(row.parameters, dict) else {},
                data_source=row.data_source,
                data_key=row.data_key,
                operator=row.operator,
                target_value=row.target_value,
                target_condition_id=row.target_indicator_id,
            )
        except ValidationError as e:
            logger.warning(f"Skipping invalid condition {row.id}: {e}")
            return None

    def _row_to_action(self, row: ActionTable) -> Action | None:
        try:
            return Action(
                id=row.id,
                action_type=row.action_type,
                parameters=row.parameters if isinstance(row.parameters, dict) else {},
                order=row.order,
            )
        except ValidationError as e:
            logger.warning(f"Skipping invalid action {row.id}: {e}")
            return None
