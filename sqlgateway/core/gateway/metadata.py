import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Set, Tuple

from sqlgateway.core.gateway.introspect import CatalogReader
from sqlgateway.core.schemas import (
    ColumnDescriptor,
    ColumnRow,
    ForeignKeyEdge,
    QueryTemplate,
    RelationDescriptor,
    RelationEntry,
    SchemaCatalog,
)

logger = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# METADATA MODULE
# Purpose: describe the resolved relations (columns, keys, joins) in one document.
# Why: callers write better SQL when they can see keys and example joins.
# -----------------------------------------------------------------------------

DEFAULT_DESCRIPTIONS_FILE = Path(__file__).with_name("descriptions.json")

MAX_SAMPLE_JOINS = 2

COMMON_QUERY_TEMPLATES = (
    QueryTemplate(
        description="Row count for a table",
        template="SELECT COUNT(*) AS total FROM <schema.table>",
    ),
    QueryTemplate(
        description="Preview rows",
        template="SELECT TOP(:limit) * FROM <schema.table> ORDER BY 1",
    ),
    QueryTemplate(
        description="Count by a column",
        template=(
            "SELECT <column>, COUNT(*) AS cnt FROM <schema.table> "
            "GROUP BY <column> ORDER BY cnt DESC"
        ),
    ),
)


class DescriptionTable:
    """Human descriptions for tables and columns. Missing entries are empty strings."""

    def __init__(self, tables: Dict[str, str], columns: Dict[str, Dict[str, str]]):
        self.tables = tables
        self.columns = columns

    def _lookup(self, relation: RelationDescriptor, source: Dict):
        # Qualified name first, then the bare name
        return source.get(relation.qualified_name, source.get(relation.name))

    def table(self, relation: RelationDescriptor) -> str:
        return self._lookup(relation, self.tables) or ""

    def column(self, relation: RelationDescriptor, column_name: str) -> str:
        columns = self._lookup(relation, self.columns) or {}
        return columns.get(column_name, "")


# Parsed tables keyed by path, reused until the file's mtime changes
_description_cache: Dict[Path, Tuple[float, DescriptionTable]] = {}


def load_descriptions(path: Optional[str] = None) -> DescriptionTable:
    """
    Load the description table from JSON.
    Why: descriptions are edited by people, outside the code.

    The parsed table is reused while the file's modification time is
    unchanged, so edits show up on the next request. A missing or unreadable
    file leaves every description empty and is retried on the next call.
    """
    source = Path(path) if path else DEFAULT_DESCRIPTIONS_FILE
    try:
        mtime = source.stat().st_mtime
        cached = _description_cache.get(source)
        if cached and cached[0] == mtime:
            return cached[1]
        data = json.loads(source.read_text(encoding="utf-8"))
    except (OSError, ValueError) as error:
        logger.warning(f"Descriptions unavailable from {source}: {error}")
        _description_cache.pop(source, None)
        return DescriptionTable({}, {})

    descriptions = DescriptionTable(data.get("tables", {}), data.get("columns", {}))
    _description_cache[source] = (mtime, descriptions)
    return descriptions


def build_sample_joins(qualified_name: str, fks: Sequence[ForeignKeyEdge]) -> List[QueryTemplate]:
    """One two-alias inner join per foreign key, at most MAX_SAMPLE_JOINS."""
    return [
        QueryTemplate(
            description=f"Join {qualified_name} with {fk.ref_table}",
            template=(
                f"SELECT t1.*, t2.* FROM {qualified_name} t1 "
                f"INNER JOIN {fk.ref_table} t2 ON t1.{fk.column} = t2.{fk.ref_column}"
            ),
        )
        for fk in fks[:MAX_SAMPLE_JOINS]
    ]


def _describe_column(
    row: ColumnRow, relation: RelationDescriptor, pk_columns: Set[str], descriptions: DescriptionTable
) -> ColumnDescriptor:
    return ColumnDescriptor(
        name=row.column_name,
        type=row.data_type,
        pk=row.column_name in pk_columns,
        nullable=row.is_nullable,
        # 0 and NULL mean "no length"; -1 (MAX) is kept
        max_len=row.max_length or None,
        description=descriptions.column(relation, row.column_name),
    )


async def assemble_catalog(
    catalog: CatalogReader,
    relations: Sequence[RelationDescriptor],
    notes: str = "",
    descriptions: Optional[DescriptionTable] = None,
) -> SchemaCatalog:
    """
    Build the catalog document for exactly the given relations.

    Issues three introspection calls (columns, primary keys, foreign keys),
    each filtered to the relations, and joins them by qualified name. Rows the
    collaborator returns for anything outside the set are dropped.

    Args:
        catalog: Introspection collaborator.
        relations: Resolved relation set.
        notes: Free text describing how the set was resolved.
        descriptions: Description table, the packaged default when omitted.

    Returns:
        SchemaCatalog with one entry per relation in input order.
    """
    descriptions = descriptions or load_descriptions()
    generated_at = datetime.now(timezone.utc)

    if not relations:
        return SchemaCatalog(
            tables=[],
            common_queries=list(COMMON_QUERY_TEMPLATES),
            generated_at_utc=generated_at,
            notes=notes,
        )

    column_rows = await catalog.fetch_columns(relations)
    pk_rows = await catalog.fetch_primary_keys(relations)
    fk_rows = await catalog.fetch_foreign_keys(relations)

    allowed = {relation.qualified_name for relation in relations}

    columns_by_relation: Dict[str, List[ColumnRow]] = {}
    for row in column_rows:
        if row.qualified_name in allowed:
            columns_by_relation.setdefault(row.qualified_name, []).append(row)

    pks_by_relation: Dict[str, Set[str]] = {}
    for row in pk_rows:
        pks_by_relation.setdefault(row.qualified_name, set()).add(row.column_name)

    fks_by_relation: Dict[str, List[ForeignKeyEdge]] = {}
    for row in fk_rows:
        fks_by_relation.setdefault(row.qualified_name, []).append(
            ForeignKeyEdge(
                column=row.parent_column,
                ref_table=f"{row.ref_schema}.{row.ref_table}",
                ref_column=row.ref_column,
            )
        )

    tables = []
    for relation in relations:
        qualified_name = relation.qualified_name
        rows = sorted(
            columns_by_relation.get(qualified_name, []), key=lambda r: r.ordinal_position
        )
        pk_columns = pks_by_relation.get(qualified_name, set())
        fks = fks_by_relation.get(qualified_name, [])
        tables.append(
            RelationEntry(
                name=qualified_name,
                kind=relation.kind,
                description=descriptions.table(relation),
                columns=[_describe_column(r, relation, pk_columns, descriptions) for r in rows],
                fks=fks,
                sample_joins=build_sample_joins(qualified_name, fks),
            )
        )

    return SchemaCatalog(
        tables=tables,
        common_queries=list(COMMON_QUERY_TEMPLATES),
        generated_at_utc=generated_at,
        notes=notes,
    )
