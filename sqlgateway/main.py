import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, status
from fastapi.exception_handlers import http_exception_handler
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from sqlgateway.core.config import settings
from sqlgateway.core.database import connection_handle
from sqlgateway.core.errors import GatewayError
from sqlgateway.core.gateway.pipeline import AuditLogger, PipelineStatus
from sqlgateway.api.router import api_router

logger = logging.getLogger(__name__)


# The engine is opened lazily on the first request and disposed here
@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await connection_handle.dispose()


app = FastAPI(title="SQL Gateway API", lifespan=lifespan)

# Include the master router containing all our endpoints
app.include_router(api_router)


# Failures raised outside the pipelines (auth, engine startup) still get one audit line
def audit_outside_pipeline(request: Request, outcome: PipelineStatus, error_type: str):
    caller = getattr(request.state, "caller", "anonymous")
    path = request.url.path.strip("/").removeprefix("sql-") or "root"
    AuditLogger(caller, path, settings.SQL_LOG_MAX_CHARS).record(outcome, error_type=error_type)


@app.exception_handler(GatewayError)
async def gateway_error_handler(request: Request, error: GatewayError):
    logger.warning(f"{request.url.path} failed: {error.error_type}")
    if not error.audited:
        outcome = PipelineStatus.FAILED if error.status_code >= 500 else PipelineStatus.REJECTED
        audit_outside_pipeline(request, outcome, error.error_type)
    return JSONResponse(status_code=error.status_code, content=error.to_payload())


@app.exception_handler(StarletteHTTPException)
async def auth_error_handler(request: Request, error: StarletteHTTPException):
    if error.status_code == status.HTTP_401_UNAUTHORIZED:
        audit_outside_pipeline(request, PipelineStatus.REJECTED, "Unauthorized")
    return await http_exception_handler(request, error)


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, error: Exception):
    logger.exception(f"{request.url.path} failed unexpectedly")
    audit_outside_pipeline(request, PipelineStatus.FAILED, type(error).__name__)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "Internal server error", "error_type": type(error).__name__},
    )


@app.get("/")
async def root():
    return {"message": "SQL Gateway: POST /sql-query, GET|POST /sql-schema"}
