from typing import Optional, AsyncGenerator
from contextlib import asynccontextmanager
import urllib.parse
import asyncio
import logging

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, AsyncEngine, async_sessionmaker
from sqlalchemy.exc import SQLAlchemyError

from pkg.db_util.types import PostgresConfig


class PostgresConnection:
    """Owns one async engine + sessionmaker per configured database."""

    def __init__(self, db_config: PostgresConfig, logger: logging.Logger):
        self.db_config = db_config
        self.logger = logger
        self._engine: Optional[AsyncEngine] = None
        self._sessionmaker: Optional[async_sessionmaker] = None
        self._lock = asyncio.Lock()

    def get_db_url(self) -> str:
        if not self.db_config.host:
            raise ValueError("Database host configuration is missing.")
        password = urllib.parse.quote_plus(self.db_config.password) if self.db_config.password else ""
        return (
            f"postgresql+asyncpg://{self.db_config.username}:{password}"
            f"@{self.db_config.host}:{self.db_config.port}/{self.db_config.database}"
        )

    async def get_engine(self, max_retries: int = 3, initial_delay: float = 2.0) -> AsyncEngine:
        """Create the engine on first use, retrying with exponential backoff."""
        if self._engine is not None:
            return self._engine

        async with self._lock:
            if self._engine is not None:
                return self._engine

            last_error = None
            for attempt in range(max_retries):
                try:
                    engine = create_async_engine(
                        self.get_db_url(),
                        echo=False,
                        pool_size=self.db_config.pool_size,
                        max_overflow=self.db_config.max_overflow,
                        pool_timeout=self.db_config.pool_timeout,
                        pool_recycle=self.db_config.pool_recycle,
                        pool_pre_ping=True,
                        connect_args={
                            "timeout": 15,
                            "command_timeout": 15,
                            # PgBouncer in transaction mode rejects prepared statements
                            "statement_cache_size": 0,
                            "server_settings": {"application_name": "coreframe-chat"},
                        },
                    )
                    self.logger.info(f"Testing database connection (attempt {attempt + 1}/{max_retries})...")
                    async with engine.connect() as conn:
                        await conn.exec_driver_sql("SELECT 1")

                    self._engine = engine
                    self._sessionmaker = async_sessionmaker(
                        bind=engine,
                        class_=AsyncSession,
                        expire_on_commit=False,
                        autoflush=False,
                    )
                    self.logger.info("Async engine and sessionmaker created.")
                    return engine
                except (SQLAlchemyError, OSError, ConnectionError) as e:
                    last_error = e
                    delay = initial_delay * (2 ** attempt)
                    if attempt < max_retries - 1:
                        self.logger.warning(
                            f"Database connection attempt {attempt + 1}/{max_retries} failed: {e}. "
                            f"Retrying in {delay:.1f}s..."
                        )
                        await asyncio.sleep(delay)
                    else:
                        self.logger.error(f"Failed to create database engine after {max_retries} attempts: {e}", exc_info=True)

            raise ConnectionError(f"Could not create database engine after {max_retries} attempts: {last_error}") from last_error

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """Yield a session; commits on success, rolls back on error, always closes."""
        await self.get_engine()
        session: AsyncSession = self._sessionmaker()
        try:
            yield session
            if session.in_transaction():
                await session.commit()
        except Exception as e:
            self.logger.error(f"Error in database session: {e}. Rolling back.")
            if session.in_transaction():
                await session.rollback()
            raise
        finally:
            await session.close()

    async def close_engine(self):
        if self._engine is None:
            self.logger.info("Database engine was not initialized, no need to close.")
            return
        await self._engine.dispose()
        self._engine = None
        self._sessionmaker = None
        self.logger.info("Database engine closed.")
