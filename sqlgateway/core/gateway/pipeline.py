from typing import Dict, Any, List, Optional
from datetime import datetime
from enum import Enum
import logging

from sqlgateway.core.config import settings
from sqlgateway.core.errors import GatewayError, ValidationError
from sqlgateway.core.gateway import executor, metadata, params, resolver, safety
from sqlgateway.core.gateway.executor import QueryRunner
from sqlgateway.core.gateway.introspect import CatalogReader
from sqlgateway.core.schemas import (
    QueryRequest,
    QueryResult,
    Resolution,
    SchemaCatalog,
    SchemaMode,
    SchemaRequest,
)


# -----------------------------------------------------------------------------
# PIPELINE MODULE - Orchestration
# Purpose: run the query path and the schema path in order and audit every outcome
# Why: one place decides the step order, so no step can be skipped by an endpoint
# -----------------------------------------------------------------------------


class PipelineStatus(Enum):
    """Outcome recorded in the audit trail."""

    COMPLETED = "completed"
    REJECTED = "rejected"
    FAILED = "failed"


# Configure logging for pipeline
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("sqlgateway.audit")


class AuditLogger:
    """Audit trail for one gateway request. Never holds parameter values."""

    def __init__(self, caller: str, path: str, sql_max_chars: int = 200):
        """
        Initialize an audit logger scoped to one caller and one request.

        Args:
            caller: Principal from the bearer token.
            path: "query" or "schema".
            sql_max_chars: How much SQL text may be written to the log.
        """
        self.caller = caller
        self.path = path
        self.sql_max_chars = sql_max_chars
        self.start_time = datetime.now()
        self.logs = []

    def truncate(self, sql: Optional[str]) -> str:
        return (sql or "")[: self.sql_max_chars]

    def elapsed_ms(self) -> int:
        return int((datetime.now() - self.start_time).total_seconds() * 1000)

    def log(self, step: str, message: str, level: str = "info"):
        log_entry = {
            "timestamp": datetime.now().isoformat(),
            "step": step,
            "message": message,
            "level": level,
            "elapsed_ms": self.elapsed_ms(),
        }
        self.logs.append(log_entry)

        if level == "error":
            logger.error(f"[{self.caller}] {self.path}.{step}: {message}")
        elif level == "warning":
            logger.warning(f"[{self.caller}] {self.path}.{step}: {message}")
        else:
            logger.debug(f"[{self.caller}] {self.path}.{step}: {message}")

    def record(self, status: PipelineStatus, **details: Any) -> Dict[str, Any]:
        """
        Write the final audit record for the request.
        Why: every request, successful or not, leaves exactly one audit line.

        The fields are part of the message so any formatter shows them; the
        same summary also rides along as the "audit" attribute of the record.
        """
        summary = {
            "caller": self.caller,
            "path": self.path,
            "status": status.value,
            "elapsed_ms": self.elapsed_ms(),
            **details,
        }
        fields = " ".join(f"{key}={value!r}" for key, value in summary.items())
        level = logging.INFO if status == PipelineStatus.COMPLETED else logging.WARNING
        audit_logger.log(
            level, f"SQL gateway {self.path} {status.value}: {fields}", extra={"audit": summary}
        )
        return summary

    def get_logs(self) -> List[Dict[str, Any]]:
        return self.logs


async def run_query_pipeline(
    request: QueryRequest,
    runner: QueryRunner,
    caller: str = "anonymous",
) -> QueryResult:
    """
    Validate, bound, parameterize and execute one caller statement.

    Steps: validate -> inject TOP -> translate params -> execute.

    Args:
        request: Caller SQL, parameters and optional row limit.
        runner: Execution collaborator.
        caller: Principal recorded in the audit trail.

    Returns:
        QueryResult for the caller.

    Raises:
        ValidationError, BindingError, ExecutionError: after the failure is audited.
    """
    audit = AuditLogger(caller, "query", settings.SQL_LOG_MAX_CHARS)
    limit = safety.clamp_row_limit(
        request.row_limit, settings.ROW_LIMIT_DEFAULT, settings.ROW_LIMIT_MAX
    )
    sql = request.sql

    try:
        sql = safety.validate_select_only(sql)
        audit.log("validate", "Statement accepted")

        sql = safety.inject_top_limit(sql, limit)
        # A caller TOP smaller than the limit is the bound actually sent
        existing = safety.existing_top_limit(sql)
        effective_limit = min(existing, limit) if existing else limit
        audit.log("limit", f"Row bound {effective_limit}")

        sql, bindings = params.translate_params(sql, request.params)
        audit.log("params", f"{len(bindings)} parameter(s) bound")

        result = await executor.execute_query(
            runner, sql, bindings, effective_limit, settings.SQL_LOG_MAX_CHARS
        )
    except GatewayError as error:
        status = PipelineStatus.FAILED if error.status_code >= 500 else PipelineStatus.REJECTED
        audit.log("execute", f"{error.error_type}: {error.message}", "error")
        audit.record(status, sql=audit.truncate(sql), error_type=error.error_type)
        error.audited = True
        raise

    audit.record(
        PipelineStatus.COMPLETED,
        sql=audit.truncate(result.sql_used),
        row_count=result.row_count,
        execution_time_ms=result.execution_time_ms,
        parameter_names=sorted(b.name for b in bindings),
    )
    return result


def describe_resolution(
    mode: SchemaMode, resolution: Resolution, policy: resolver.ResolverPolicy
) -> str:
    """Notes explaining how the relation set was chosen."""
    if resolution.via_catalog_fallback:
        kinds = ",".join(kind.value.lower() + "s" for kind in policy.include_kinds)
        notes = (
            f"Catalog fallback. Included: {kinds or 'none'}; "
            f"Excluded schemas: {','.join(policy.excluded_schemas)}"
        )
    else:
        notes = f"Mode={mode.value}; views LIKE {policy.view_pattern}; tables from allow-list"
    if resolution.skipped_entries:
        notes += f"; Skipped entries: {','.join(resolution.skipped_entries)}"
    return notes


def parse_mode(value: Optional[str]) -> Optional[SchemaMode]:
    """Read a mode from a header value. Empty means "not given"."""
    if not value or not value.strip():
        return None
    try:
        return SchemaMode(value.strip().lower())
    except ValueError:
        raise ValidationError(f"Object types must be views, tables or both, not '{value}'.")


async def run_schema_pipeline(
    request: SchemaRequest,
    catalog: CatalogReader,
    caller: str = "anonymous",
    header_mode: Optional[str] = None,
    policy: Optional[resolver.ResolverPolicy] = None,
) -> SchemaCatalog:
    """
    Resolve the visible relations and describe them.

    Mode precedence: header, then request body, then the server default.

    Args:
        request: Optional mode and caller table list.
        catalog: Introspection collaborator.
        caller: Principal recorded in the audit trail.
        header_mode: Raw X-Schema-Object-Types value, if sent.
        policy: Resolver configuration, built from settings when omitted.

    Returns:
        SchemaCatalog restricted to the resolved relations.
    """
    audit = AuditLogger(caller, "schema", settings.SQL_LOG_MAX_CHARS)
    policy = policy or resolver.ResolverPolicy.from_settings(settings)
    mode_name = header_mode or (request.mode.value if request.mode else None)

    try:
        mode = (
            parse_mode(header_mode)
            or request.mode
            or SchemaMode(settings.SCHEMA_OBJECT_TYPES)
        )
        mode_name = mode.value

        resolution = await resolver.resolve_relations(
            catalog, mode, policy, request.tables
        )
        audit.log(
            "resolve",
            f"{len(resolution.relations)} relation(s) via {', '.join(resolution.steps)}",
        )

        document = await metadata.assemble_catalog(
            catalog,
            resolution.relations,
            notes=describe_resolution(mode, resolution, policy),
            descriptions=metadata.load_descriptions(settings.DESCRIPTIONS_FILE),
        )
    except GatewayError as error:
        audit.log("assemble", f"{error.error_type}: {error.message}", "error")
        status = PipelineStatus.FAILED if error.status_code >= 500 else PipelineStatus.REJECTED
        audit.record(status, mode=mode_name, error_type=error.error_type)
        error.audited = True
        raise

    audit.record(
        PipelineStatus.COMPLETED,
        mode=mode.value,
        relation_count=len(document.tables),
        catalog_fallback=resolution.via_catalog_fallback,
    )
    return document
