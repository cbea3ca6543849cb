import pytest
from httpx import AsyncClient

from sqlgateway.core.config import settings
from sqlgateway.core.errors import ExecutionError


@pytest.mark.asyncio
async def test_default_mode_lists_matching_views(client: AsyncClient, auth_headers):
    response = await client.get("/sql-schema", headers=auth_headers)

    assert response.status_code == 200
    data = response.json()
    assert [t["name"] for t in data["tables"]] == ["dbo.vwUsers"]
    assert data["notes"] == "Mode=both; views LIKE vw%; tables from allow-list"
    assert len(data["common_queries"]) == 3
    assert "generated_at_utc" in data

    users = data["tables"][0]
    assert users["kind"] == "VIEW"
    assert users["description"] == "User accounts with registration dates and basic info"
    assert users["columns"][1] == {
        "name": "Country",
        "type": "char",
        "pk": False,
        "nullable": True,
        "max_len": 2,
        "description": "User country code (ISO 2-letter)",
    }
    # No max_len key for columns without a length
    assert "max_len" not in users["columns"][0]
    assert users["fks"] == []
    assert users["sample_joins"] == []


@pytest.mark.asyncio
async def test_explicit_table_list(client: AsyncClient, auth_headers):
    payload = {"mode": "tables", "tables": ["SalesLT.Customer"]}
    response = await client.post("/sql-schema", json=payload, headers=auth_headers)

    assert response.status_code == 200
    tables = response.json()["tables"]
    assert [t["name"] for t in tables] == ["SalesLT.Customer"]
    assert [c["name"] for c in tables[0]["columns"]] == [
        "CustomerID",
        "FirstName",
        "EmailAddress",
    ]


@pytest.mark.asyncio
async def test_object_types_body_alias(client: AsyncClient, auth_headers):
    payload = {"object_types": "TABLES", "tables": ["SalesLT.SalesOrderHeader"]}
    response = await client.post("/sql-schema", json=payload, headers=auth_headers)

    entry = response.json()["tables"][0]
    assert entry["name"] == "SalesLT.SalesOrderHeader"
    assert len(entry["fks"]) == 3
    assert len(entry["sample_joins"]) == 2
    assert entry["fks"][1] == {
        "column": "ShipToAddressID",
        "ref_table": "SalesLT.Address",
        "ref_column": "AddressID",
    }


@pytest.mark.asyncio
async def test_header_mode_overrides_body(client: AsyncClient, auth_headers):
    headers = {**auth_headers, "X-Schema-Object-Types": "views"}
    payload = {"mode": "tables", "tables": ["SalesLT.Customer"]}

    response = await client.post("/sql-schema", json=payload, headers=headers)

    assert [t["name"] for t in response.json()["tables"]] == ["dbo.vwUsers"]


@pytest.mark.asyncio
async def test_catalog_fallback_when_nothing_configured(client: AsyncClient, auth_headers):
    headers = {**auth_headers, "X-Schema-Object-Types": "tables"}

    response = await client.get("/sql-schema", headers=headers)

    data = response.json()
    names = [t["name"] for t in data["tables"]]
    assert len(names) == 6
    assert not any(name.startswith(("sys.", "INFORMATION_SCHEMA.")) for name in names)
    assert data["notes"].startswith("Catalog fallback.")
    assert "Excluded schemas: sys,INFORMATION_SCHEMA,cdc" in data["notes"]


@pytest.mark.asyncio
async def test_skipped_entries_are_noted(client: AsyncClient, auth_headers):
    payload = {"mode": "tables", "tables": ["Customer", "SalesLT.Customer"]}
    data = (await client.post("/sql-schema", json=payload, headers=auth_headers)).json()
    assert [t["name"] for t in data["tables"]] == ["SalesLT.Customer"]
    assert data["notes"].endswith("Skipped entries: Customer")


@pytest.mark.asyncio
async def test_invalid_header_mode(client: AsyncClient, auth_headers):
    headers = {**auth_headers, "X-Schema-Object-Types": "everything"}
    response = await client.get("/sql-schema", headers=headers)
    assert response.status_code == 400
    assert response.json()["error_type"] == "ValidationError"


@pytest.mark.asyncio
async def test_introspection_failure(client: AsyncClient, sales_catalog, auth_headers):
    async def broken(name_pattern):
        raise ExecutionError("The server principal is not able to access the database")

    sales_catalog.list_views = broken

    response = await client.get("/sql-schema", headers=auth_headers)

    assert response.status_code == 500
    assert response.json()["error"] == (
        "The server principal is not able to access the database"
    )


@pytest.mark.asyncio
async def test_unauthorized_access(client: AsyncClient):
    response = await client.get("/sql-schema")
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_token_is_checked_before_the_catalog_is_opened(
    offline_client: AsyncClient, engine_opens
):
    response = await offline_client.post("/sql-schema", json={"mode": "tables"})

    assert response.status_code == 401
    assert engine_opens == []


@pytest.mark.asyncio
async def test_refused_caller_tables_return_an_empty_catalog(
    client: AsyncClient, auth_headers, monkeypatch
):
    monkeypatch.setattr(settings, "OBJECT_ALLOWLIST", "SalesLT.Customer")
    payload = {"mode": "tables", "tables": ["dbo.BuildVersion"]}

    data = (await client.post("/sql-schema", json=payload, headers=auth_headers)).json()

    assert data["tables"] == []
    assert not data["notes"].startswith("Catalog fallback.")
    assert data["notes"].endswith("Skipped entries: dbo.BuildVersion")
