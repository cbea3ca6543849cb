from typing import Annotated, Optional

from fastapi import APIRouter, Body, Depends, Header

from sqlgateway.core import schemas
from sqlgateway.core.database import get_catalog
from sqlgateway.core.gateway import pipeline
from sqlgateway.core.gateway.introspect import SqlServerCatalog
from sqlgateway.core.security import get_current_caller

router = APIRouter(tags=["Schema"])

catalog_dep = Annotated[SqlServerCatalog, Depends(get_catalog)]
caller_dep = Annotated[str, Depends(get_current_caller)]
# X-Schema-Object-Types: views | tables | both, wins over the body
mode_header = Annotated[Optional[str], Header()]


@router.get(
    "/sql-schema",
    response_model=schemas.SchemaCatalog,
    response_model_exclude_none=True,
)
async def get_sql_schema(
    caller: caller_dep,
    catalog: catalog_dep,
    x_schema_object_types: mode_header = None,
):
    """Describe the relations visible under the server configuration."""
    return await pipeline.run_schema_pipeline(
        schemas.SchemaRequest(), catalog, caller, header_mode=x_schema_object_types
    )


@router.post(
    "/sql-schema",
    response_model=schemas.SchemaCatalog,
    response_model_exclude_none=True,
)
async def post_sql_schema(
    caller: caller_dep,
    catalog: catalog_dep,
    request: Annotated[Optional[schemas.SchemaRequest], Body()] = None,
    x_schema_object_types: mode_header = None,
):
    """
    Describe the relations visible for this request.
    The body may pick a mode and name specific schema-qualified tables.
    """
    return await pipeline.run_schema_pipeline(
        request or schemas.SchemaRequest(), catalog, caller, header_mode=x_schema_object_types
    )
