import asyncio
import logging
from typing import Any, List, Optional, Sequence, Tuple

from fastapi import Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from sqlgateway.core.config import settings
from sqlgateway.core.errors import ExecutionError
from sqlgateway.core.gateway.introspect import SqlServerCatalog
from sqlgateway.core.schemas import Binding, RowSet

logger = logging.getLogger(__name__)


class ConnectionHandle:
    """
    The one process-wide engine, created on first use.

    Concurrent first callers wait on the same initialization instead of each
    opening a pool. A failed initialization leaves the handle empty so the
    next caller tries again. acquire/release keep a reference count and
    dispose() tears the engine down on shutdown.
    """

    def __init__(self, url: str, **engine_kwargs: Any):
        self.url = url
        self.engine_kwargs = engine_kwargs
        self._engine: Optional[AsyncEngine] = None
        self._lock = asyncio.Lock()
        self._refs = 0

    @property
    def references(self) -> int:
        return self._refs

    @property
    def is_initialized(self) -> bool:
        return self._engine is not None

    async def acquire(self) -> AsyncEngine:
        async with self._lock:
            if self._engine is None:
                self._engine = await self._open()
            self._refs += 1
            return self._engine

    async def release(self) -> None:
        async with self._lock:
            self._refs = max(0, self._refs - 1)

    async def dispose(self) -> None:
        async with self._lock:
            if self._engine is not None:
                await self._engine.dispose()
                logger.info("Database engine disposed")
            self._engine = None
            self._refs = 0

    async def _open(self) -> AsyncEngine:
        engine = create_async_engine(self.url, **self.engine_kwargs)
        try:
            # Open the first pooled connection now so failures surface here
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except Exception as error:
            await engine.dispose()
            logger.error(f"Database connection failed: {error}")
            raise ExecutionError(f"Database connection failed: {error}") from error
        logger.info("Database engine initialized")
        return engine


connection_handle = ConnectionHandle(
    settings.DATABASE_URL,
    echo=settings.DB_ECHO,
    pool_size=settings.DB_POOL_SIZE,
    max_overflow=0,
    pool_recycle=settings.DB_POOL_RECYCLE_SECONDS,
    pool_pre_ping=True,
)


def build_sp_executesql(sql: str, bindings: Sequence[Binding]) -> Tuple[str, Tuple[Any, ...]]:
    """
    Wrap a statement in sp_executesql so @name markers bind natively.

    Example:
        build_sp_executesql("SELECT @id", [Binding(name="id", wire_type=WireType.INT, value=1)])
        # ("EXEC sp_executesql ?, ?, @id = ?", ("SELECT @id", "@id int", 1))
    """
    if not bindings:
        return "EXEC sp_executesql ?", (sql,)

    declarations = ", ".join(f"@{b.name} {b.wire_type.value}" for b in bindings)
    assignments = ", ".join(f"@{b.name} = ?" for b in bindings)
    values = tuple(b.value for b in bindings)
    return f"EXEC sp_executesql ?, ?, {assignments}", (sql, declarations) + values


class SqlServerExecutor:
    """Runs final statements on the shared engine."""

    def __init__(self, engine: AsyncEngine):
        self.engine = engine

    async def execute(self, sql: str, bindings: Sequence[Binding]) -> RowSet:
        statement, parameters = build_sp_executesql(sql, bindings)
        try:
            async with self.engine.connect() as conn:
                result = await conn.exec_driver_sql(statement, parameters)
                columns: List[str] = list(result.keys())
                rows = [tuple(row) for row in result.fetchall()]
        except SQLAlchemyError as error:
            # Keep the driver message, e.g. "Must declare the scalar variable"
            raise ExecutionError(str(getattr(error, "orig", None) or error)) from error
        return RowSet(columns=columns, rows=rows)


# Hand each request the shared engine and give the reference back afterwards
async def get_engine():
    engine = await connection_handle.acquire()
    try:
        yield engine
    finally:
        await connection_handle.release()


async def get_executor(engine: AsyncEngine = Depends(get_engine)) -> SqlServerExecutor:
    return SqlServerExecutor(engine)


async def get_catalog(engine: AsyncEngine = Depends(get_engine)) -> SqlServerCatalog:
    return SqlServerCatalog(engine)

