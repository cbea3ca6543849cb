from typing import Annotated

from fastapi import APIRouter, Depends, status

from sqlgateway.core import schemas
from sqlgateway.core.database import SqlServerExecutor, get_executor
from sqlgateway.core.security import get_current_caller
from sqlgateway.core.gateway import pipeline

router = APIRouter(tags=["Query"])

executor_dep = Annotated[SqlServerExecutor, Depends(get_executor)]
caller_dep = Annotated[str, Depends(get_current_caller)]


@router.post(
    "/sql-query",
    response_model=schemas.QueryResult,
    status_code=status.HTTP_200_OK,
)
async def run_sql_query(
    request: schemas.QueryRequest, caller: caller_dep, runner: executor_dep
):
    """
    Run one read-only SELECT.
    The statement is validated, bounded with TOP(n) and parameterized first.
    """
    return await pipeline.run_query_pipeline(request, runner, caller)
