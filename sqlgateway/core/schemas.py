from datetime import datetime
from typing import Optional, List, Dict, Any, Tuple
from enum import Enum

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


# =========================
# Enums
# =========================
class RelationKind(str, Enum):
    TABLE = "TABLE"
    VIEW = "VIEW"


class SchemaMode(str, Enum):
    VIEWS = "views"
    TABLES = "tables"
    BOTH = "both"

    @property
    def includes_views(self) -> bool:
        return self in (SchemaMode.VIEWS, SchemaMode.BOTH)

    @property
    def includes_tables(self) -> bool:
        return self in (SchemaMode.TABLES, SchemaMode.BOTH)


class WireType(str, Enum):
    """SQL Server parameter types a binding can be declared as."""

    INT = "int"
    FLOAT = "float"
    DATETIME2 = "datetime2"
    BIT = "bit"
    NVARCHAR = "nvarchar(max)"


# =========================
# QUERY
# =========================
class Binding(BaseModel):
    name: str
    wire_type: WireType
    value: Any

    model_config = ConfigDict(frozen=True)


class RowSet(BaseModel):
    """Raw rowset handed back by the execution collaborator."""

    columns: List[str] = []
    rows: List[Tuple[Any, ...]] = []


class QueryRequest(BaseModel):
    sql: str = Field(min_length=1)
    params: Dict[str, Any] = {}
    row_limit: Optional[int] = Field(
        default=None, validation_alias=AliasChoices("row_limit", "rowLimit")
    )


class QueryResult(BaseModel):
    columns: List[str]
    rows: List[Dict[str, Any]]
    row_count: int
    sql_used: str
    execution_time_ms: int
    truncated: bool = False
    notes: Optional[str] = None


# =========================
# SCHEMA
# =========================
class RelationDescriptor(BaseModel):
    schema_name: str
    name: str
    kind: RelationKind

    # Hashable so relations can be de-duplicated by identity
    model_config = ConfigDict(frozen=True)

    @property
    def identity(self) -> Tuple[str, str]:
        return (self.schema_name, self.name)

    @property
    def qualified_name(self) -> str:
        return f"{self.schema_name}.{self.name}"


class TablePattern(BaseModel):
    """One parsed allow-list entry: schema.name or schema.*"""

    schema_name: str
    name: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    @property
    def is_wildcard(self) -> bool:
        return self.name is None

    def __str__(self) -> str:
        return f"{self.schema_name}.{self.name or '*'}"


class Resolution(BaseModel):
    relations: List[RelationDescriptor] = []
    via_catalog_fallback: bool = False
    skipped_entries: List[str] = []
    steps: List[str] = []


# Rows returned by the introspection collaborator
class ColumnRow(BaseModel):
    schema_name: str
    table_name: str
    column_name: str
    data_type: str
    is_nullable: bool
    max_length: Optional[int] = None
    ordinal_position: int

    @property
    def qualified_name(self) -> str:
        return f"{self.schema_name}.{self.table_name}"


class PrimaryKeyRow(BaseModel):
    schema_name: str
    table_name: str
    column_name: str

    @property
    def qualified_name(self) -> str:
        return f"{self.schema_name}.{self.table_name}"


class ForeignKeyRow(BaseModel):
    parent_schema: str
    parent_table: str
    parent_column: str
    ref_schema: str
    ref_table: str
    ref_column: str

    @property
    def qualified_name(self) -> str:
        return f"{self.parent_schema}.{self.parent_table}"


class ColumnDescriptor(BaseModel):
    name: str
    type: str
    pk: bool = False
    nullable: bool = True
    max_len: Optional[int] = None
    description: str = ""


class ForeignKeyEdge(BaseModel):
    column: str
    ref_table: str
    ref_column: str


class QueryTemplate(BaseModel):
    description: str
    template: str


class RelationEntry(BaseModel):
    name: str
    kind: RelationKind
    description: str = ""
    columns: List[ColumnDescriptor] = []
    fks: List[ForeignKeyEdge] = []
    sample_joins: List[QueryTemplate] = []


class SchemaRequest(BaseModel):
    mode: Optional[SchemaMode] = Field(
        default=None, validation_alias=AliasChoices("mode", "object_types")
    )
    tables: Optional[List[str]] = None

    @field_validator("mode", mode="before")
    @classmethod
    def lowercase_mode(cls, value):
        return value.lower() if isinstance(value, str) else value


class SchemaCatalog(BaseModel):
    tables: List[RelationEntry] = []
    common_queries: List[QueryTemplate] = []
    generated_at_utc: datetime
    notes: str = ""
