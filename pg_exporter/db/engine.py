"""Async SQLAlchemy engines, one per scraped PostgreSQL target.

Each target gets its own engine and therefore its own connection pool, so
an exhausted or unreachable database never blocks another target's
scrape.  Two timeouts bound connection acquisition:

  pool_timeout       : how long to wait for a free pooled connection
  connect_args.timeout: how long asyncpg waits to open a new connection

Query execution itself has no timeout here; an operator who needs one
sets ``statement_timeout`` on the database role.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Protocol, runtime_checkable

from sqlalchemy.engine import URL
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

logger = logging.getLogger(__name__)

Row = dict[str, object]


@runtime_checkable
class QueryRunner(Protocol):
    """A checked-out connection that can run one parameterless statement."""

    async def fetch_all(self, sql: str) -> list[Row]: ...


@runtime_checkable
class Connector(Protocol):
    """Acquire/release capability for one target's pooled connections."""

    def connect(self) -> AbstractAsyncContextManager[QueryRunner]: ...
    async def ping(self) -> None: ...
    async def dispose(self) -> None: ...


class _SqlAlchemyRunner:
    def __init__(self, conn: AsyncConnection) -> None:
        self._conn = conn

    async def fetch_all(self, sql: str) -> list[Row]:
        # exec_driver_sql passes operator SQL through untouched, so "::int"
        # casts and literal colons are not mistaken for bind parameters.
        result = await self._conn.exec_driver_sql(sql)
        # Row._mapping keeps the SELECT column order, which the value
        # inference in extraction depends on.
        return [dict(row._mapping) for row in result]


class SqlAlchemyConnector:
    """Satisfies the Connector Protocol with an AsyncEngine (asyncpg)."""

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    @classmethod
    def create(
        cls,
        *,
        host: str,
        port: int,
        user: str,
        password: str,
        database: str,
        pool_size: int = 5,
        pool_timeout: float = 5.0,
    ) -> SqlAlchemyConnector:
        url = URL.create(
            "postgresql+asyncpg",
            username=user,
            password=password,
            host=host,
            port=port,
            database=database,
        )
        engine = create_async_engine(
            url,
            # No implicit transaction: a failing custom query must not abort
            # the statements that follow it on the same connection.
            isolation_level="AUTOCOMMIT",
            pool_size=pool_size,
            max_overflow=0,
            pool_timeout=pool_timeout,
            connect_args={"timeout": pool_timeout},
        )
        return cls(engine)

    @property
    def url(self) -> URL:
        return self._engine.url

    @asynccontextmanager
    async def connect(self) -> AsyncIterator[QueryRunner]:
        # Leaving the block returns the connection to the pool on every
        # exit path, including exceptions raised by the caller.
        async with self._engine.connect() as conn:
            yield _SqlAlchemyRunner(conn)

    async def ping(self) -> None:
        async with self.connect() as runner:
            await runner.fetch_all("SELECT 1")

    async def dispose(self) -> None:
        await self._engine.dispose()
        logger.info("Database engine disposed: %s", self._engine.url)
