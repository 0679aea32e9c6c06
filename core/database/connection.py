# PostgreSQL connection management
import asyncio
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy import text, event
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base

from core.logging import get_database_logger_safe, get_error_logger_safe

db_logger = get_database_logger_safe("database_manager")
error_logger = get_error_logger_safe("database_manager")

# The base class for all SQLAlchemy models
Base = declarative_base()

SLOW_QUERY_THRESHOLD_MS = 500
LONG_SESSION_THRESHOLD_MS = 5000


class DatabaseManager:
    """Manages the connection to the PostgreSQL database"""

    def __init__(self, db_url: str, environment: str = "development", schema_management: str = "auto"):
        self._engine = create_async_engine(
            db_url,
            echo=False,
            pool_pre_ping=True,
            pool_size=10,
            max_overflow=20,
            pool_recycle=3600,
        )
        self._session_factory = async_sessionmaker(
            self._engine,
            expire_on_commit=False,
            class_=AsyncSession,
        )
        self._environment = environment
        self._schema_management = schema_management
        self._setup_database_logging()

    async def init(self):
        """Create tables unless the schema is managed externally."""
        if self._environment == "production" or self._schema_management == "migrations_only":
            if not await self.verify_connection():
                raise RuntimeError("Production database not reachable")
            db_logger.info("Database ready - schema managed externally")
            return

        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        db_logger.info("Database initialized with create_all",
                       environment=self._environment)

    async def verify_connection(self) -> bool:
        """Verify database connection is ready"""
        try:
            async with self.get_session() as session:
                await session.execute(text("SELECT 1"))
                return True
        except Exception as e:
            db_logger.error("Database connection verification failed", error=str(e))
            return False

    async def wait_for_ready(self, timeout: int = 30, check_interval: float = 1.0):
        """Wait for database to be ready with timeout"""
        loop = asyncio.get_running_loop()
        start_time = loop.time()
        while (loop.time() - start_time) < timeout:
            if await self.verify_connection():
                db_logger.info("Database connection verified")
                return True

            db_logger.info("Database not ready, waiting...")
            await asyncio.sleep(check_interval)

        raise RuntimeError(f"Database not ready after {timeout} seconds")

    async def shutdown(self):
        """Closes the database connection pool"""
        await self._engine.dispose()
        db_logger.info("Database connection pool closed.")

    def _setup_database_logging(self):
        """Setup SQLAlchemy event listeners for slow query logging"""

        @event.listens_for(self._engine.sync_engine, "before_cursor_execute")
        def before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
            context._query_start_time = time.time()

        @event.listens_for(self._engine.sync_engine, "after_cursor_execute")
        def after_cursor_execute(conn, cursor, statement, parameters, context, executemany):
            if not hasattr(context, "_query_start_time"):
                return
            execution_time = (time.time() - context._query_start_time) * 1000
            query_type = statement.split()[0].upper() if statement else "UNKNOWN"
            if execution_time > SLOW_QUERY_THRESHOLD_MS:
                db_logger.warning("Slow database query detected",
                                  operation="query_execution",
                                  execution_time_ms=execution_time,
                                  query_type=query_type)
            elif execution_time > 100:
                db_logger.debug("Database query executed",
                                operation="query_execution",
                                execution_time_ms=execution_time,
                                query_type=query_type)

    @asynccontextmanager
    async def get_session(self) -> AsyncIterator[AsyncSession]:
        """Provides a new database session context manager WITHOUT auto-commit.

        Callers own the transaction boundary and must commit explicitly.
        """
        session_start_time = time.time()
        async with self._session_factory() as session:
            try:
                yield session
            except Exception as session_error:
                await session.rollback()
                error_logger.error("Database session error with rollback",
                                   error=str(session_error),
                                   session_duration_ms=(time.time() - session_start_time) * 1000,
                                   environment=self._environment)
                raise
            finally:
                session_duration = (time.time() - session_start_time) * 1000
                if session_duration > LONG_SESSION_THRESHOLD_MS:
                    db_logger.warning("Long-running database session",
                                      session_duration_ms=session_duration,
                                      threshold_ms=LONG_SESSION_THRESHOLD_MS)
