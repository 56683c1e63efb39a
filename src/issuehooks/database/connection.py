"""
Database Connection Management

SQLAlchemy async engine and session factory for the webhook store.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import StaticPool

logger = structlog.get_logger()

# SQLAlchemy declarative base
Base = declarative_base()


class Database:
    """Owns the engine and session factory for one database URL.

    Sessions are serialized through an asyncio lock so that every
    read-modify-write runs with a single writer, which is what SQLite
    supports and what the queue's lease transition relies on.

    Usage:
        db = Database("sqlite+aiosqlite:///./issuehooks.db")
        await db.open()
        async with db.session() as session:
            result = await session.execute(query)
        await db.close()
    """

    def __init__(self, url: str, echo: bool = False) -> None:
        self.url = url
        self.echo = echo
        self.engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None
        self._lock = asyncio.Lock()

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite")

    @property
    def is_open(self) -> bool:
        return self.engine is not None

    async def open(self, create_schema: bool = True) -> None:
        """Create the engine, session factory and (optionally) tables."""
        if self.engine is not None:
            logger.warning("Database already initialized")
            return

        logger.info("Initializing database connection", url=self.url.split("@")[-1])

        if self.is_sqlite:
            kwargs: dict = {"connect_args": {"check_same_thread": False}}
            if ":memory:" in self.url:
                # One shared connection, otherwise each connection sees an empty db
                kwargs["poolclass"] = StaticPool
            self.engine = create_async_engine(self.url, echo=self.echo, **kwargs)
        else:
            self.engine = create_async_engine(
                self.url,
                echo=self.echo,
                pool_pre_ping=True,
            )

        @event.listens_for(self.engine.sync_engine, "connect")
        def receive_connect(dbapi_conn, connection_record):
            logger.debug("Database connection established")

        self._session_factory = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

        if create_schema:
            # Import models so they register on Base.metadata
            from issuehooks.database import models  # noqa: F401

            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)

        logger.info("Database initialized successfully")

    async def close(self) -> None:
        """Dispose the engine and drop the session factory."""
        if self.engine is None:
            return

        logger.info("Closing database connections")
        await self.engine.dispose()
        self.engine = None
        self._session_factory = None
        logger.info("Database connections closed")

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Get a transactional session; commits on success, rolls back on error.

        Raises:
            RuntimeError: If the database is not open
        """
        if self._session_factory is None:
            raise RuntimeError("Database not initialized. Call open() first.")

        async with self._lock:
            async with self._session_factory() as session:
                try:
                    yield session
                    await session.commit()
                except Exception:
                    await session.rollback()
                    raise

    async def check_health(self) -> bool:
        """
        Check database connectivity.

        Returns:
            True if database is healthy, False otherwise
        """
        if self.engine is None:
            return False

        try:
            async with self.session() as session:
                await session.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.error("Database health check failed", error=str(e))
            return False
