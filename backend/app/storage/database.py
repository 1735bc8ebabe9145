"""Database connection and table definitions.

The strategy tables are owned by the strategy management API. This service
maps them for reading only and never creates or alters them.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy import (
    Boolean,
    Column,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base

from app.config import get_settings

Base = declarative_base()


class StrategyTable(Base):
    """User strategies."""

    __tablename__ = "strategies"

    id = Column(String(36), primary_key=True)
    user_id = Column(String(36), nullable=False)
    name = Column(String(200), nullable=False)
    description = Column(String, nullable=True)
    is_active = Column(Boolean, nullable=False, default=False)
    root_block_id = Column(String(36), nullable=True)

    __table_args__ = (
        Index("idx_strategies_active", "is_active"),
    )


class ConditionTable(Base):
    """Indicator conditions, shared between blocks."""

    __tablename__ = "conditions"

    id = Column(String(36), primary_key=True)
    indicator_type = Column(String(50), nullable=False)
    data_source = Column(String(50), nullable=True)
    data_key = Column(String(100), nullable=True)
    symbol = Column(String(20), nullable=True)
    interval = Column(String(20), nullable=True)
    parameters = Column(JSONB, nullable=False, default=dict)
    operator = Column(String(30), nullable=False)
    target_value = Column(Float, nullable=True)
    target_indicator_id = Column(String(36), ForeignKey("conditions.id"), nullable=True)

    __table_args__ = (
        Index("idx_conditions_indicator", "indicator_type", "symbol", "interval"),
    )


class ActionTable(Base):
    """Actions, shared between blocks."""

    __tablename__ = "actions"

    id = Column(String(36), primary_key=True)
    action_type = Column(String(30), nullable=False)
    parameters = Column(JSONB, nullable=False, default=dict)
    order = Column(Integer, nullable=False, default=0)


class StrategyBlockTable(Base):
    """Nodes of a strategy's block tree."""

    __tablename__ = "strategy_blocks"

    id = Column(String(36), primary_key=True)
    strategy_id = Column(String(36), ForeignKey("strategies.id"), nullable=False)
    block_type = Column(String(20), nullable=False)
    parameters = Column(JSONB, nullable=False, default=dict)
    parent_id = Column(String(36), ForeignKey("strategy_blocks.id"), nullable=True)
    order = Column(Integer, nullable=False, default=0)
    condition_id = Column(String(36), ForeignKey("conditions.id"), nullable=True)
    action_id = Column(String(36), ForeignKey("actions.id"), nullable=True)

    __table_args__ = (
        Index("idx_strategy_blocks_strategy", "strategy_id"),
        Index("idx_strategy_blocks_condition", "condition_id"),
    )


class Database:
    """Database connection manager."""

    def __init__(self, database_url: str | None = None):
        settings = get_settings()
        url = database_url or settings.database_url

        # Convert postgresql:// to postgresql+asyncpg://
        if url.startswith("postgresql://"):
            url = url.replace("postgresql://", "postgresql+asyncpg://", 1)

        # Read-only workload: discovery ticks plus one query burst per
        # evaluated indicator update.
        self.engine = create_async_engine(
            url,
            echo=settings.debug,
            pool_size=5,
            max_overflow=10,
            pool_pre_ping=True,    # Validate before use
            pool_recycle=3600,     # Recycle every hour
            pool_timeout=30,       # Wait max 30s for connection
            connect_args={
                "timeout": 10,
                "command_timeout": 60,
            },
        )
        self.session_factory = async_sessionmaker(
            self.engine, class_=AsyncSession, expire_on_commit=False
        )

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Get a read-only database session (always rolled back)."""
        async with self.session_factory() as session:
            try:
                yield session
            finally:
                await session.rollback()

    async def close(self) -> None:
        """Close database connection."""
        await self.engine.dispose()
