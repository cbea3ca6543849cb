from typing import Any, Dict, Iterable, Iterator, List, Protocol, Sequence, Tuple

from sqlalchemy import bindparam, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from sqlgateway.core.errors import ExecutionError
from sqlgateway.core.schemas import (
    ColumnRow,
    ForeignKeyRow,
    PrimaryKeyRow,
    RelationDescriptor,
    RelationKind,
    TablePattern,
)


# -----------------------------------------------------------------------------
# INTROSPECT MODULE
# Purpose: read SQL Server catalog views for the schema path.
# Why: the resolver and assembler only ever see relations through this seam.
# -----------------------------------------------------------------------------


class CatalogReader(Protocol):
    async def list_views(self, name_pattern: str) -> List[RelationDescriptor]: ...

    async def find_tables(self, patterns: Sequence[TablePattern]) -> List[RelationDescriptor]: ...

    async def scan_relations(
        self, include_kinds: Iterable[RelationKind], excluded_schemas: Sequence[str]
    ) -> List[RelationDescriptor]: ...

    async def fetch_columns(self, relations: Sequence[RelationDescriptor]) -> List[ColumnRow]: ...

    async def fetch_primary_keys(self, relations: Sequence[RelationDescriptor]) -> List[PrimaryKeyRow]: ...

    async def fetch_foreign_keys(self, relations: Sequence[RelationDescriptor]) -> List[ForeignKeyRow]: ...


# sys.objects type codes
_OBJECT_TYPES = {RelationKind.TABLE: "U", RelationKind.VIEW: "V"}


# SQL Server takes at most 2100 parameters per request; each relation binds two
MAX_RELATIONS_PER_QUERY = 500


def batched(items: Sequence[Any], size: int = MAX_RELATIONS_PER_QUERY) -> Iterator[Sequence[Any]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


def relation_filter(
    relations: Sequence[RelationDescriptor], schema_col: str, name_col: str, prefix: str
) -> Tuple[str, Dict[str, Any]]:
    """
    Build "(schema = :p_s0 AND name = :p_n0) OR ..." for a relation list.

    Every value is a bound parameter, only the column names are spliced in.
    """
    clauses = []
    params: Dict[str, Any] = {}
    for i, relation in enumerate(relations):
        params[f"{prefix}s{i}"] = relation.schema_name
        params[f"{prefix}n{i}"] = relation.name
        clauses.append(f"({schema_col} = :{prefix}s{i} AND {name_col} = :{prefix}n{i})")
    return " OR ".join(clauses) or "1=0", params


class SqlServerCatalog:
    """INFORMATION_SCHEMA and sys.* introspection over the shared engine."""

    def __init__(self, engine: AsyncEngine):
        self.engine = engine

    async def _fetch(self, statement, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        try:
            async with self.engine.connect() as conn:
                result = await conn.execute(statement, params)
                return [dict(row) for row in result.mappings().all()]
        except SQLAlchemyError as error:
            raise ExecutionError(str(getattr(error, "orig", None) or error)) from error

    async def _fetch_scoped(
        self,
        relations: Sequence[RelationDescriptor],
        query: str,
        schema_col: str,
        name_col: str,
        prefix: str,
    ) -> List[Dict[str, Any]]:
        """Run a query whose {where} is a relation filter, one batch at a time."""
        rows: List[Dict[str, Any]] = []
        for batch in batched(relations):
            where, params = relation_filter(batch, schema_col, name_col, prefix)
            rows.extend(await self._fetch(text(query.format(where=where)), params))
        return rows

    async def list_views(self, name_pattern: str) -> List[RelationDescriptor]:
        rows = await self._fetch(
            text(
                """
                SELECT TABLE_SCHEMA, TABLE_NAME
                FROM INFORMATION_SCHEMA.VIEWS
                WHERE TABLE_NAME LIKE :pattern
                ORDER BY TABLE_SCHEMA, TABLE_NAME
                """
            ),
            {"pattern": name_pattern},
        )
        return [
            RelationDescriptor(
                schema_name=row["TABLE_SCHEMA"], name=row["TABLE_NAME"], kind=RelationKind.VIEW
            )
            for row in rows
        ]

    async def find_tables(self, patterns: Sequence[TablePattern]) -> List[RelationDescriptor]:
        found: Dict[Tuple[str, str], RelationDescriptor] = {}
        for batch in batched(patterns):
            clauses = []
            params: Dict[str, Any] = {}
            for i, pattern in enumerate(batch):
                params[f"s{i}"] = pattern.schema_name
                # schema.* becomes a LIKE over every name, otherwise an exact match
                if pattern.is_wildcard:
                    params[f"n{i}"] = "%"
                    clauses.append(f"(t.TABLE_SCHEMA = :s{i} AND t.TABLE_NAME LIKE :n{i})")
                else:
                    params[f"n{i}"] = pattern.name
                    clauses.append(f"(t.TABLE_SCHEMA = :s{i} AND t.TABLE_NAME = :n{i})")

            rows = await self._fetch(
                text(
                    f"""
                    SELECT t.TABLE_SCHEMA, t.TABLE_NAME
                    FROM INFORMATION_SCHEMA.TABLES t
                    WHERE t.TABLE_TYPE = 'BASE TABLE' AND ({" OR ".join(clauses)})
                    """
                ),
                params,
            )
            for row in rows:
                relation = RelationDescriptor(
                    schema_name=row["TABLE_SCHEMA"], name=row["TABLE_NAME"], kind=RelationKind.TABLE
                )
                found[relation.identity] = relation

        return sorted(found.values(), key=lambda r: (r.schema_name, r.name))

    async def scan_relations(
        self, include_kinds: Iterable[RelationKind], excluded_schemas: Sequence[str]
    ) -> List[RelationDescriptor]:
        type_codes = [_OBJECT_TYPES[kind] for kind in include_kinds]
        if not type_codes:
            return []

        exclusion = "AND s.name NOT IN :excluded" if excluded_schemas else ""
        statement = text(
            f"""
            SELECT s.name AS schema_name, o.name AS object_name, o.type AS object_type
            FROM sys.objects o
            JOIN sys.schemas s ON s.schema_id = o.schema_id
            WHERE o.type IN :type_codes
              AND o.is_ms_shipped = 0
              {exclusion}
            ORDER BY s.name, o.name
            """
        ).bindparams(bindparam("type_codes", expanding=True))
        params: Dict[str, Any] = {"type_codes": type_codes}
        if excluded_schemas:
            statement = statement.bindparams(bindparam("excluded", expanding=True))
            params["excluded"] = list(excluded_schemas)

        rows = await self._fetch(statement, params)
        return [
            RelationDescriptor(
                schema_name=row["schema_name"],
                name=row["object_name"],
                kind=RelationKind.TABLE if row["object_type"].strip() == "U" else RelationKind.VIEW,
            )
            for row in rows
        ]

    async def fetch_columns(self, relations: Sequence[RelationDescriptor]) -> List[ColumnRow]:
        rows = await self._fetch_scoped(
            relations,
            """
            SELECT TABLE_SCHEMA, TABLE_NAME, COLUMN_NAME, DATA_TYPE, IS_NULLABLE,
                   CHARACTER_MAXIMUM_LENGTH, ORDINAL_POSITION
            FROM INFORMATION_SCHEMA.COLUMNS
            WHERE {where}
            ORDER BY TABLE_SCHEMA, TABLE_NAME, ORDINAL_POSITION
            """,
            "TABLE_SCHEMA",
            "TABLE_NAME",
            "c",
        )
        return [
            ColumnRow(
                schema_name=row["TABLE_SCHEMA"],
                table_name=row["TABLE_NAME"],
                column_name=row["COLUMN_NAME"],
                data_type=row["DATA_TYPE"],
                is_nullable=row["IS_NULLABLE"] == "YES",
                max_length=row["CHARACTER_MAXIMUM_LENGTH"],
                ordinal_position=row["ORDINAL_POSITION"],
            )
            for row in rows
        ]

    async def fetch_primary_keys(self, relations: Sequence[RelationDescriptor]) -> List[PrimaryKeyRow]:
        rows = await self._fetch_scoped(
            relations,
            """
            SELECT s.name AS schema_name, t.name AS table_name, c.name AS column_name
            FROM sys.tables t
            JOIN sys.schemas s ON s.schema_id = t.schema_id
            JOIN sys.indexes i ON i.object_id = t.object_id AND i.is_primary_key = 1
            JOIN sys.index_columns ic ON ic.object_id = i.object_id AND ic.index_id = i.index_id
            JOIN sys.columns c ON c.object_id = ic.object_id AND c.column_id = ic.column_id
            WHERE {where}
            """,
            "s.name",
            "t.name",
            "p",
        )
        return [PrimaryKeyRow(**row) for row in rows]

    async def fetch_foreign_keys(self, relations: Sequence[RelationDescriptor]) -> List[ForeignKeyRow]:
        rows = await self._fetch_scoped(
            relations,
            """
            SELECT sp.name AS parent_schema, tp.name AS parent_table, cp.name AS parent_column,
                   sr.name AS ref_schema, tr.name AS ref_table, cr.name AS ref_column
            FROM sys.foreign_keys fk
            JOIN sys.foreign_key_columns fkc ON fkc.constraint_object_id = fk.object_id
            JOIN sys.tables tp ON tp.object_id = fkc.parent_object_id
            JOIN sys.schemas sp ON sp.schema_id = tp.schema_id
            JOIN sys.columns cp ON cp.object_id = fkc.parent_object_id
                               AND cp.column_id = fkc.parent_column_id
            JOIN sys.tables tr ON tr.object_id = fkc.referenced_object_id
            JOIN sys.schemas sr ON sr.schema_id = tr.schema_id
            JOIN sys.columns cr ON cr.object_id = fkc.referenced_object_id
                               AND cr.column_id = fkc.referenced_column_id
            WHERE {where}
            ORDER BY sp.name, tp.name, fk.name, fkc.constraint_column_id
            """,
            "sp.name",
            "tp.name",
            "f",
        )
        return [ForeignKeyRow(**row) for row in rows]
