import pytest

from conftest import table
from sqlgateway.core.gateway.introspect import (
    MAX_RELATIONS_PER_QUERY,
    SqlServerCatalog,
    batched,
    relation_filter,
)
from sqlgateway.core.schemas import TablePattern


class RecordingResult:
    def __init__(self, rows):
        self.rows = rows

    def mappings(self):
        return self

    def all(self):
        return self.rows


class RecordingConnection:
    def __init__(self, engine):
        self.engine = engine

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    async def execute(self, statement, params):
        self.engine.statements.append((str(statement), dict(params)))
        return RecordingResult(self.engine.answer(params))


class RecordingEngine:
    """Answers a table lookup with one row per bound schema/name pair, anything else with none."""

    def __init__(self):
        self.statements = []

    def connect(self):
        return RecordingConnection(self)

    @staticmethod
    def answer(params):
        rows = []
        for key, schema_name in params.items():
            if key.startswith("s"):
                name = params["n" + key[1:]]
                rows.append({"TABLE_SCHEMA": schema_name, "TABLE_NAME": name})
        return rows


def test_batched_splits_without_losing_items():
    batches = list(batched(list(range(1201)), 500))
    assert [len(batch) for batch in batches] == [500, 500, 201]
    assert [item for batch in batches for item in batch] == list(range(1201))


def test_relation_filter_binds_every_value():
    where, params = relation_filter([table("SalesLT", "Customer")], "s.name", "t.name", "p")
    assert where == "(s.name = :ps0 AND t.name = :pn0)"
    assert params == {"ps0": "SalesLT", "pn0": "Customer"}
    assert relation_filter([], "s.name", "t.name", "p") == ("1=0", {})


@pytest.mark.asyncio
async def test_large_relation_sets_stay_under_the_parameter_limit():
    engine = RecordingEngine()
    relations = [table("dbo", f"T{i:04d}") for i in range(1201)]

    await SqlServerCatalog(engine).fetch_primary_keys(relations)

    assert len(engine.statements) == 3
    assert all(len(params) <= 2 * MAX_RELATIONS_PER_QUERY for _, params in engine.statements)
    bound = {params[key] for _, params in engine.statements for key in params if key.startswith("pn")}
    assert bound == {relation.name for relation in relations}


@pytest.mark.asyncio
async def test_find_tables_merges_batches_in_name_order():
    engine = RecordingEngine()
    patterns = [TablePattern(schema_name="dbo", name=f"T{i:04d}") for i in reversed(range(600))]

    found = await SqlServerCatalog(engine).find_tables(patterns)

    assert len(engine.statements) == 2
    assert [r.name for r in found] == [f"T{i:04d}" for i in range(600)]


@pytest.mark.asyncio
async def test_no_relations_means_no_query():
    engine = RecordingEngine()
    catalog = SqlServerCatalog(engine)

    assert await catalog.fetch_columns([]) == []
    assert await catalog.find_tables([]) == []
    assert engine.statements == []
