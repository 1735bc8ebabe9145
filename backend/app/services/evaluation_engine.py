"""Strategy evaluation on indicator updates.

For every indicator-update event the engine finds the active strategies that
read the updated indicator and re-evaluates each of them. A strategy's
conditions are combined with AND, in block order, stopping at the first one
that is false or cannot be resolved. When all hold, one ActionRequiredEvent
is published per action of the strategy.

Evaluation is not idempotent: the same event delivered twice publishes its
actions twice.
"""

from __future__ import annotations

import logging
from typing import Any

from app.services.stream_consumer import StreamConsumer
from app.storage.event_log import EventLog
from app.storage.indicator_cache import IndicatorCache
from app.storage.strategy_repo import StrategyRepository
from core.evaluation import compare, series_values
from core.models.events import ActionRequiredEvent, IndicatorUpdateEvent
from core.models.indicator import condition_fingerprint
from core.models.strategy import Condition, collect_actions, collect_conditions

logger = logging.getLogger(__name__)


class EvaluationEngine:
    """Evaluates strategies affected by an indicator update."""

    def __init__(
        self,
        repo: StrategyRepository,
        cache: IndicatorCache,
        event_log: EventLog,
    ):
        self.repo = repo
        self.cache = cache
        self.event_log = event_log

    async def affected_strategies(self, event: IndicatorUpdateEvent) -> list[str]:
        """Active strategies with a condition on exactly this indicator."""
        pairs = await self.repo.find_active_conditions(
            event.indicator_type, event.symbol, event.interval
        )
        strategy_ids: list[str] = []
        for condition, strategy_id in pairs:
            # Dict equality is structural and ignores key order
            if condition.parameters != event.parameters:
                continue
            if condition.data_source != event.data_source:
                continue
            if strategy_id not in strategy_ids:
                strategy_ids.append(strategy_id)
        return strategy_ids

    async def evaluate_indicator_update(
        self, event: IndicatorUpdateEvent
    ) -> list[ActionRequiredEvent]:
        """Evaluate every strategy affected by ``event`` and publish its actions.

        Returns:
            The ActionRequiredEvents that were published.
        """
        logger.info(f"Evaluating update for {event.describe()}")

        strategy_ids = await self.affected_strategies(event)
        if not strategy_ids:
            logger.debug(f"No active strategies use {event.fingerprint}")
            return []

        published: list[ActionRequiredEvent] = []
        for strategy_id in strategy_ids:
            try:
                published.extend(await self.evaluate_strategy(strategy_id, event))
            except Exception as e:
                logger.error(
                    f"Error evaluating strategy {strategy_id} for {event.fingerprint}: {e}",
                    exc_info=True,
                )
        return published

    async def evaluate_strategy(
        self, strategy_id: str, event: IndicatorUpdateEvent
    ) -> list[ActionRequiredEvent]:
        """Evaluate one strategy and publish its actions if every condition holds."""
        blocks = await self.repo.get_strategy_blocks(strategy_id)
        conditions = collect_conditions(blocks)
        actions = collect_actions(blocks)

        if not conditions:
            logger.warning(f"Strategy {strategy_id} has no conditions, skipping")
            return []

        for condition in conditions:
            if not await self.evaluate_condition(condition):
                logger.debug(
                    f"Strategy {strategy_id}: condition {condition.id} not met"
                )
                return []

        logger.info(f"Strategy {strategy_id}: all {len(conditions)} conditions met")
        if not actions:
            logger.info(f"Strategy {strategy_id} triggered but has no actions")
            return []

        triggering = event.model_dump(mode="json")
        published: list[ActionRequiredEvent] = []
        for action in actions:
            action_event = ActionRequiredEvent(
                action_id=action.id,
                action_type=action.action_type,
                parameters=dict(action.parameters),
                strategy_id=strategy_id,
                triggering_indicator=triggering,
            )
            await self.event_log.publish_action_required(action_event)
            published.append(action_event)
            logger.info(
                f"Published {action.action_type.value} action {action.id} "
                f"for strategy {strategy_id}"
            )
        return published

    async def evaluate_condition(self, condition: Condition) -> bool:
        """True if the condition holds on the cached data.

        Missing data (no cache entry, no usable point, unresolvable target)
        makes the condition false.
        """
        entry = await self.cache.get(condition_fingerprint(condition))
        if entry is None:
            logger.debug(f"Condition {condition.id}: no cached data")
            return False

        current, previous = series_values(entry.data, condition.data_key)
        if current is None:
            logger.debug(f"Condition {condition.id}: no usable current value")
            return False

        target = await self.resolve_target(condition)
        if target is None:
            logger.debug(
                f"Condition {condition.id}: {condition.describe_target()} unavailable"
            )
            return False

        result = compare(condition.operator, current, target, previous)
        logger.debug(
            f"Condition {condition.id}: {current} {condition.operator.value} "
            f"{target} (prev={previous}) -> {result}"
        )
        return result

    async def resolve_target(self, condition: Condition) -> float | None:
        """Fixed target value, or the latest cached value of the referenced condition."""
        if not condition.compares_indicators:
            return condition.target_value

        target_condition = await self.repo.get_condition(condition.target_condition_id)
        if target_condition is None:
            logger.warning(
                f"Condition {condition.id} references missing condition "
                f"{condition.target_condition_id}"
            )
            return None

        entry = await self.cache.get(condition_fingerprint(target_condition))
        if entry is None:
            return None
        latest, _ = series_values(entry.data, target_condition.data_key)
        return latest


class EvaluationConsumer(StreamConsumer):
    """Reads indicator-update events and feeds them to the engine."""

    def __init__(self, engine: EvaluationEngine, event_log: EventLog, **kwargs: Any):
        super().__init__(event_log, **kwargs)
        self.engine = engine

    async def handle(self, fields: dict[Any, Any] | None) -> None:
        event = IndicatorUpdateEvent.from_fields(fields)
        await self.engine.evaluate_indicator_update(event)
