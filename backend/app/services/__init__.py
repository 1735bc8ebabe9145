"""Business services."""

from app.services.action_dispatcher import (
    ActionDispatcher,
    ActionExecutor,
    LoggingActionExecutor,
)
from app.services.discovery_scheduler import (
    DiscoveryResult,
    DiscoveryScheduler,
    TaskState,
    unique_requests,
)
from app.services.evaluation_engine import EvaluationConsumer, EvaluationEngine
from app.services.indicator_fetcher import IndicatorFetcher
from app.services.stream_consumer import StreamConsumer, default_consumer_name

__all__ = [
    "ActionDispatcher",
    "ActionExecutor",
    "LoggingActionExecutor",
    "DiscoveryResult",
    "DiscoveryScheduler",
    "TaskState",
    "unique_requests",
    "EvaluationConsumer",
    "EvaluationEngine",
    "IndicatorFetcher",
    "StreamConsumer",
    "default_consumer_name",
]
