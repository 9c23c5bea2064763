"""
Database connection objects.

A DataSource is one logical, named connection to a storage backend built on
the SQLAlchemy async engine. It is created unconnected, opened with
initialize() and torn down with destroy(); the ConnectionRegistry keeps at
most one initialized DataSource per name.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import MetaData, event, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from dataservice.core.config import get_settings

logger = logging.getLogger(__name__)


class DataSourceOptions(BaseModel):
    """
    Options for one logical database connection.

    Attributes:
        name: Logical connection name used as the registry key
        url: SQLAlchemy async database URL
        echo: Log SQL statements
        metadata: Metadata whose tables are created on initialize (if create_all)
        create_all: Create missing tables on initialize
        engine_options: Extra keyword arguments for create_async_engine
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str = "default"
    url: str = Field(default_factory=lambda: get_settings().database_url)
    echo: bool = Field(default_factory=lambda: get_settings().database_echo)
    metadata: Optional[MetaData] = None
    create_all: bool = False
    engine_options: Dict[str, Any] = Field(default_factory=dict)


def _mask_url(url: str) -> str:
    """Hide the password part of a database URL for logging."""
    if "@" not in url:
        return url
    credentials, host = url.split("@", 1)
    if ":" in credentials.split("//", 1)[-1]:
        user_part = credentials.rsplit(":", 1)[0]
        return f"{user_part}:***@{host}"
    return url


class DataSource:
    """
    Named handle to a storage backend.

    Lifecycle:
        DataSource(options)   -> registered but not connected
        await initialize()    -> engine created, is_initialized == True
        await destroy()       -> engine disposed, is_initialized == False

    Attributes:
        options: Connection options
        engine: AsyncEngine while initialized, None otherwise
    """

    def __init__(self, options: Optional[DataSourceOptions] = None, **kwargs: Any):
        if options is None:
            options = DataSourceOptions(**kwargs)
        elif isinstance(options, dict):
            options = DataSourceOptions(**options)
        self.options = options
        self.engine: Optional[AsyncEngine] = None
        self._session_maker: Optional[async_sessionmaker[AsyncSession]] = None

    @property
    def name(self) -> str:
        return self.options.name

    @property
    def is_initialized(self) -> bool:
        return self.engine is not None

    def _create_engine(self) -> AsyncEngine:
        """
        Create and configure the async SQLAlchemy engine.

        For SQLite:
        - Uses StaticPool so in-memory databases survive across sessions
        - Enables check_same_thread=False for async compatibility
        - Turns on foreign key enforcement for every connection
        """
        url = self.options.url
        is_sqlite = url.startswith("sqlite")

        engine_kwargs: Dict[str, Any] = {"echo": self.options.echo}
        if is_sqlite:
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            engine_kwargs["poolclass"] = StaticPool
        engine_kwargs.update(self.options.engine_options)

        engine = create_async_engine(url, **engine_kwargs)

        if is_sqlite:
            @event.listens_for(engine.sync_engine, "connect")
            def _set_sqlite_pragma(dbapi_connection, connection_record):  # noqa: ANN001
                cursor = dbapi_connection.cursor()
                cursor.execute("PRAGMA foreign_keys=ON")
                cursor.close()

        return engine

    async def initialize(self) -> "DataSource":
        """
        Open the connection.

        Returns:
            self, so callers can chain on the initialized connection

        Raises:
            RuntimeError: If the data source is already initialized
        """
        if self.is_initialized:
            raise RuntimeError(f"DataSource '{self.name}' is already initialized")

        engine = self._create_engine()
        try:
            async with engine.begin() as conn:
                if self.options.create_all and self.options.metadata is not None:
                    await conn.run_sync(self.options.metadata.create_all)
                else:
                    await conn.execute(text("SELECT 1"))
        except Exception:
            await engine.dispose()
            raise

        self.engine = engine
        self._session_maker = async_sessionmaker(
            engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
        logger.info(
            "DataSource initialized",
            extra={"connection": self.name, "url": _mask_url(self.options.url)}
        )
        return self

    async def destroy(self) -> None:
        """Close the connection and release pooled resources."""
        if self.engine is None:
            return
        await self.engine.dispose()
        self.engine = None
        self._session_maker = None
        logger.info("DataSource destroyed", extra={"connection": self.name})

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Provide a transactional session.

        Commits on success, rolls back and re-raises on error.

        Usage:
            async with data_source.session() as session:
                result = await session.execute(stmt)
        """
        if self._session_maker is None:
            raise RuntimeError(
                f"DataSource '{self.name}' is not initialized. Call initialize() first."
            )
        async with self._session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def check_connection(self) -> bool:
        """
        Check if the connection is healthy.

        Returns:
            True if the database answers SELECT 1, False otherwise
        """
        if self.engine is None:
            return False
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except Exception:
            logger.warning("Health check failed", extra={"connection": self.name}, exc_info=True)
            return False

    def __repr__(self) -> str:
        return f"DataSource(name={self.name!r}, initialized={self.is_initialized})"
