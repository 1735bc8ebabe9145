"""Data storage layer."""

from app.storage.database import Database
from app.storage.event_log import EventLog
from app.storage.indicator_cache import CacheEntry, IndicatorCache
from app.storage.redis_client import RedisConnection
from app.storage.strategy_repo import StrategyRepository

__all__ = [
    "Database",
    "EventLog",
    "CacheEntry",
    "IndicatorCache",
    "RedisConnection",
    "StrategyRepository",
]
