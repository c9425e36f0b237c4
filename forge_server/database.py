"""
forge-server — Database Service
=================================

What:  Pooled PostgreSQL access for handlers: one-off queries, queries on a
       caller-held connection, and managed transactions.
How:   Wraps a SQLAlchemy AsyncEngine (asyncpg driver). Connections are
       checked out of the engine's pool and always returned, whatever the
       outcome.

Operations:
    connect()                        create pool, verify one checkout, return engine
    query(sql, params)               own connection: acquire → run → commit → release
    query_with_client(conn, sql, p)  caller's connection, never released here
    run_transaction(fn, *args)       BEGIN → fn(conn, *args) → COMMIT
                                     any failure → ROLLBACK → re-raise
                                     connection released exactly once
    shutdown()                       dispose the pool

Parameters use SQLAlchemy named binds: "SELECT * FROM t WHERE id = :id".
Query text and driver errors go to the server log only.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

from forge_server.exceptions import DatabaseError

logger = logging.getLogger(__name__)

Parameters = Optional[Mapping[str, Any]]
TransactionFunction = Callable[..., Awaitable[Any]]


class DatabaseOptions(BaseModel):
    """
    Engine configuration.

    Pool sizing arguments are only passed to the engine when set, so drivers
    with their own pool class (e.g. SQLite in-memory) keep working.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    url: str
    pool_size: Optional[int] = None
    max_overflow: Optional[int] = None
    pool_pre_ping: bool = True
    pool_recycle: int = 3600
    echo: bool = False

    def engine_kwargs(self) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {
            "pool_pre_ping": self.pool_pre_ping,
            "pool_recycle": self.pool_recycle,
            "echo": self.echo,
        }
        if self.pool_size is not None:
            kwargs["pool_size"] = self.pool_size
        if self.max_overflow is not None:
            kwargs["max_overflow"] = self.max_overflow
        return kwargs


@dataclass
class QueryResult:
    rows: List[Dict[str, Any]] = field(default_factory=list)
    row_count: int = 0


async def _execute(connection: AsyncConnection, sql: str, params: Parameters) -> QueryResult:
    result = await connection.execute(text(sql), dict(params or {}))
    if result.returns_rows:
        rows = [dict(row) for row in result.mappings().all()]
        return QueryResult(rows=rows, row_count=len(rows))
    return QueryResult(rows=[], row_count=result.rowcount)


class DatabaseService:
    def __init__(self, options: DatabaseOptions):
        self.options = options
        self._engine: Optional[AsyncEngine] = None
        logger.info("Database pool object initialized. Ready to be connected.")

    @property
    def engine(self) -> Optional[AsyncEngine]:
        return self._engine

    def _require_engine(self, action: str) -> AsyncEngine:
        if self._engine is None:
            raise DatabaseError(
                context={"reason": f"Cannot {action} as pool connection is not initialized."}
            )
        return self._engine

    async def connect(self) -> AsyncEngine:
        """
        Create the connection pool and verify it with one checkout.

        Returns:
            The AsyncEngine backing the pool.
        """
        engine = create_async_engine(self.options.url, **self.options.engine_kwargs())
        try:
            async with engine.connect():
                pass
        except Exception:
            await engine.dispose()
            raise
        self._engine = engine
        logger.info("Connected to database pool.")
        return engine

    async def shutdown(self) -> None:
        """Close every pooled connection. Logged no-op when never connected."""
        if self._engine is None:
            logger.error("Cannot close as pool does not exist!")
            return
        logger.info("Shutting down database pool...")
        await self._engine.dispose()
        self._engine = None
        logger.info("Database pool has been shut down.")

    async def query(self, sql: str, params: Parameters = None) -> QueryResult:
        """Run one statement on a pooled connection, committing on success."""
        engine = self._require_engine("run the query")
        try:
            async with engine.begin() as connection:
                return await _execute(connection, sql, params)
        except Exception:
            logger.error("Failed fetching query result", exc_info=True)
            raise

    async def query_with_client(
        self,
        connection: AsyncConnection,
        sql: str,
        params: Parameters = None,
    ) -> QueryResult:
        """
        Run one statement on a connection the caller already holds.

        The connection is neither committed nor released; the caller (usually a
        run_transaction function) owns both.
        """
        try:
            return await _execute(connection, sql, params)
        except Exception:
            logger.error("Failed fetching query result", exc_info=True)
            raise

    async def run_transaction(self, fn: TransactionFunction, *args: Any, **kwargs: Any) -> Any:
        """
        Run `fn(connection, *args, **kwargs)` inside one transaction.

        Returns:
            Whatever `fn` returns, after COMMIT.

        Raises:
            The original exception from `fn` (or from COMMIT), after ROLLBACK.
        """
        engine = self._require_engine("run the transaction")
        connection = await engine.connect()
        try:
            transaction = await connection.begin()
            try:
                result = await fn(connection, *args, **kwargs)
                await transaction.commit()
                return result
            except Exception:
                await transaction.rollback()
                logger.error("Transaction failed, rolling back.")
                raise
        finally:
            await connection.close()
