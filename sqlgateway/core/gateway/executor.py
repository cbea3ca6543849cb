import logging
import time
from typing import Any, Dict, List, Protocol, Sequence

from sqlgateway.core.errors import ExecutionError, GatewayError
from sqlgateway.core.schemas import Binding, QueryResult, RowSet

logger = logging.getLogger(__name__)


class QueryRunner(Protocol):
    """Anything that can run a final statement with its bindings."""

    async def execute(self, sql: str, bindings: Sequence[Binding]) -> RowSet: ...


def distinct_columns(columns: Sequence[str]) -> List[str]:
    """Column names in result order, first occurrence wins."""
    return list(dict.fromkeys(columns))


def json_safe(value: Any) -> Any:
    """
    Render driver values JSON cannot carry.
    varbinary, image and rowversion cells become "0x..." hex, the way SQL Server prints them.
    """
    if isinstance(value, (bytes, bytearray, memoryview)):
        return "0x" + bytes(value).hex().upper()
    return value


def reshape_rows(columns: Sequence[str], rows: Sequence[Sequence[Any]]) -> List[Dict[str, Any]]:
    """
    Turn positional rows into name -> value mappings.

    Joins such as "SELECT t1.*, t2.*" can repeat a column name; the mapping
    keeps the first position of the name and the last value seen for it.
    """
    ordered = distinct_columns(columns)
    shaped = []
    for row in rows:
        record = dict.fromkeys(ordered)
        for name, value in zip(columns, row):
            record[name] = json_safe(value)
        shaped.append(record)
    return shaped


async def execute_query(
    runner: QueryRunner,
    sql: str,
    bindings: Sequence[Binding],
    limit: int,
    log_max_chars: int = 200,
) -> QueryResult:
    """
    Execute a prepared statement and shape the result for the caller.

    Args:
        runner: Execution collaborator.
        sql: Final statement with TOP and @markers already applied.
        bindings: Typed parameters for the statement.
        limit: Effective row bound. Rows past it are never returned.
        log_max_chars: How much of the SQL text may reach the log.

    Returns:
        QueryResult with columns, rows and timing.

    Raises:
        ExecutionError: the collaborator failed. Never retried.
    """
    start = time.perf_counter()
    try:
        rowset = await runner.execute(sql, bindings)
    except GatewayError:
        raise
    except Exception as error:
        logger.warning(
            "Query failed after %d ms: %s", _elapsed_ms(start), sql[:log_max_chars]
        )
        raise ExecutionError(str(error) or type(error).__name__) from error

    columns = distinct_columns(rowset.columns)
    rows = reshape_rows(rowset.columns, rowset.rows[:limit])
    truncated = len(rows) >= limit

    return QueryResult(
        columns=columns,
        rows=rows,
        row_count=len(rows),
        sql_used=sql,
        execution_time_ms=_elapsed_ms(start),
        truncated=truncated,
        notes=_truncation_note(limit) if truncated else None,
    )


def _truncation_note(limit: int) -> str:
    return f"Truncated to TOP({limit})."


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)
