"""Main application entry point."""

import asyncio
import logging
from contextlib import asynccontextmanager

# Configure logging FIRST, before any other imports
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
)

# Reduce noise from third-party libraries (must be set before importing them)
logging.getLogger("sqlalchemy").setLevel(logging.WARNING)
logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("asyncio").setLevel(logging.WARNING)

from fastapi import FastAPI
from fastapi.responses import ORJSONResponse

from app.api import router
from app.clients import AlphaVantageClient
from app.config import get_settings
from app.services import (
    ActionDispatcher,
    DiscoveryScheduler,
    EvaluationConsumer,
    EvaluationEngine,
    IndicatorFetcher,
    LoggingActionExecutor,
    default_consumer_name,
)
from app.storage import Database, EventLog, IndicatorCache, RedisConnection, StrategyRepository

# Redis must answer within this many seconds at startup
REDIS_CONNECT_TIMEOUT = 10

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager.

    Startup order: Redis, database, provider client, scheduler, consumers.
    Shutdown runs in reverse. Failing to reach Redis aborts startup.
    """
    settings = get_settings()
    logger.info("Starting strategy monitor...")

    redis_conn = RedisConnection(settings.redis_url)
    database: Database | None = None
    client: AlphaVantageClient | None = None
    scheduler: DiscoveryScheduler | None = None
    consumers: list = []

    try:
        try:
            await asyncio.wait_for(redis_conn.connect(), timeout=REDIS_CONNECT_TIMEOUT)
        except asyncio.TimeoutError:
            raise RuntimeError(
                f"Redis connection timed out after {REDIS_CONNECT_TIMEOUT}s"
            )
        logger.info("Redis connected")

        database = Database(settings.database_url)
        repo = StrategyRepository(database)
        cache = IndicatorCache(redis_conn)
        event_log = EventLog(
            redis_conn,
            indicator_stream=settings.indicator_stream,
            action_stream=settings.action_stream,
            dead_letter_suffix=settings.dead_letter_suffix,
        )
        client = AlphaVantageClient(
            api_key=settings.alpha_vantage_api_key,
            base_url=settings.alpha_vantage_base_url,
            timeout=settings.provider_timeout,
            calls_per_minute=settings.provider_calls_per_minute,
        )
        if not settings.alpha_vantage_api_key:
            logger.warning("ALPHA_VANTAGE_API_KEY is not set, provider calls will fail")

        fetcher = IndicatorFetcher(client, cache, event_log)
        scheduler = DiscoveryScheduler(
            source=repo.get_active_conditions,
            refresh=fetcher.fetch,
            discovery_interval=settings.discovery_interval,
        )

        consumer_options = dict(
            batch_size=settings.consumer_batch_size,
            block_ms=settings.consumer_block_ms,
            retry_delay=settings.consumer_retry_delay,
            claim_min_idle_ms=settings.claim_min_idle_ms,
        )
        evaluation_consumer = EvaluationConsumer(
            EvaluationEngine(repo, cache, event_log),
            event_log,
            stream=settings.indicator_stream,
            group=settings.evaluation_group,
            consumer=default_consumer_name("evaluator"),
            **consumer_options,
        )
        action_dispatcher = ActionDispatcher(
            LoggingActionExecutor(),
            event_log,
            stream=settings.action_stream,
            group=settings.action_group,
            consumer=default_consumer_name("dispatcher"),
            **consumer_options,
        )

        await scheduler.start()
        for consumer in (evaluation_consumer, action_dispatcher):
            await consumer.start()
            consumers.append(consumer)

        # Expose services to API routes via app.state
        app.state.scheduler = scheduler
        app.state.fetcher = fetcher
        app.state.redis = redis_conn

    except Exception as e:
        logger.error(f"Startup failed: {e}")
        await _shutdown(consumers, scheduler, client, redis_conn, database)
        raise  # Re-raise to prevent app from starting in broken state

    logger.info("Strategy monitor started")
    yield

    logger.info("Shutting down...")
    app.state.scheduler = None
    app.state.fetcher = None
    await _shutdown(consumers, scheduler, client, redis_conn, database)
    logger.info("Shutdown complete")


async def _shutdown(consumers, scheduler, client, redis_conn, database) -> None:
    """Stop everything that was started, newest first."""
    for consumer in reversed(consumers):
        try:
            await consumer.stop()
        except Exception as e:
            logger.warning(f"Error stopping consumer {consumer.consumer}: {e}")
    if scheduler:
        try:
            await scheduler.stop()
        except Exception as e:
            logger.warning(f"Error stopping scheduler: {e}")
    if client:
        await client.close()
    try:
        await redis_conn.close()
    except Exception as e:
        logger.warning(f"Error closing Redis: {e}")
    if database:
        try:
            await database.close()
            logger.info("Database connections closed")
        except Exception as e:
            logger.warning(f"Error closing database: {e}")


# Create FastAPI app with orjson for faster JSON serialization
app = FastAPI(
    title="Strategy Monitor",
    description="Indicator refresh, strategy evaluation and action dispatch",
    version="0.1.0",
    lifespan=lifespan,
    default_response_class=ORJSONResponse,
)

app.include_router(router, prefix="/api")


@app.get("/health")
async def health():
    """Health check endpoint."""
    redis_conn = getattr(app.state, "redis", None)
    redis_ok = bool(redis_conn) and await redis_conn.ping()
    return {"status": "healthy" if redis_ok else "degraded", "redis": redis_ok}


def main():
    """Run the application."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "app.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )


if __name__ == "__main__":
    main()
