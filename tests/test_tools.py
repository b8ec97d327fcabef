"""Tests for tool dispatch and payload formatting."""

from __future__ import annotations

import datetime
import json
import uuid
from decimal import Decimal

import pytest

from tusk_mcp.database.adapters.base import QueryResult
from tusk_mcp.database.formatting import format_tool_result
from tusk_mcp.errors import QueryExecutionError, ReadOnlyViolation
from tusk_mcp.tools import dispatch_tool


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.mark.anyio
async def test_list_schemas_returns_json(fake_adapter) -> None:
    text, is_error = await dispatch_tool(fake_adapter, "list-schemas", {})

    assert is_error is False
    assert json.loads(text) == [{"name": "public", "owner": "postgres"}]


@pytest.mark.anyio
async def test_list_tables_defaults_to_public(fake_adapter) -> None:
    text, is_error = await dispatch_tool(fake_adapter, "list-tables", None)

    assert is_error is False
    assert fake_adapter.calls == [("list_tables", "public")]
    assert json.loads(text)[0]["estimated_row_count"] == 3


@pytest.mark.anyio
async def test_describe_table_requires_table(fake_adapter) -> None:
    text, is_error = await dispatch_tool(fake_adapter, "describe-table", {"schema": "sales"})

    assert is_error is True
    assert json.loads(text) == {"error": "Missing required argument 'table'", "category": "ValueError"}
    assert fake_adapter.calls == []


@pytest.mark.anyio
async def test_missing_table_is_reported_with_category(fake_adapter) -> None:
    text, is_error = await dispatch_tool(fake_adapter, "describe-table", {"table": "missing"})

    payload = json.loads(text)
    assert is_error is True
    assert payload["category"] == "QueryExecutionError"
    assert "public.missing not found" in payload["error"]


@pytest.mark.anyio
async def test_execute_query_uses_default_limit(fake_adapter) -> None:
    text, is_error = await dispatch_tool(fake_adapter, "execute-query", {"query": "SELECT 1 AS n"})

    assert is_error is False
    assert fake_adapter.calls == [("execute_query", ("SELECT 1 AS n", 500))]
    assert json.loads(text) == {"columns": ["n"], "rows": [{"n": 1}], "row_count": 1, "truncated": False}


@pytest.mark.anyio
async def test_execute_query_passes_limit(fake_adapter) -> None:
    await dispatch_tool(fake_adapter, "execute-query", {"query": "SELECT 1", "limit": 25})

    assert fake_adapter.calls == [("execute_query", ("SELECT 1", 25))]


@pytest.mark.anyio
async def test_read_only_violation_is_a_tool_error(fake_adapter) -> None:
    fake_adapter.error = ReadOnlyViolation("Query rejected: DELETE keyword detected (write operation)")

    text, is_error = await dispatch_tool(fake_adapter, "execute-query", {"query": "DELETE FROM t"})

    assert is_error is True
    assert json.loads(text)["category"] == "ReadOnlyViolation"


@pytest.mark.anyio
async def test_structure_only_rejects_execute_query(fake_adapter) -> None:
    text, is_error = await dispatch_tool(
        fake_adapter, "execute-query", {"query": "SELECT 1"}, structure_only=True
    )

    assert is_error is True
    assert json.loads(text)["category"] == "ReadOnlyViolation"
    assert fake_adapter.calls == []


@pytest.mark.anyio
async def test_structure_only_still_allows_introspection(fake_adapter) -> None:
    _, is_error = await dispatch_tool(fake_adapter, "list-schemas", {}, structure_only=True)

    assert is_error is False


@pytest.mark.anyio
async def test_unknown_tool(fake_adapter) -> None:
    text, is_error = await dispatch_tool(fake_adapter, "drop-database", {})

    assert is_error is True
    assert json.loads(text) == {"error": "Unknown tool 'drop-database'", "category": "ValueError"}


@pytest.mark.anyio
async def test_unexpected_exception_becomes_internal_error(fake_adapter) -> None:
    fake_adapter.error = RuntimeError("driver exploded")

    text, is_error = await dispatch_tool(fake_adapter, "execute-query", {"query": "SELECT 1"})

    payload = json.loads(text)
    assert is_error is True
    assert payload["category"] == "InternalError"
    assert "driver exploded" in payload["error"]


@pytest.mark.anyio
async def test_query_execution_error_keeps_message(fake_adapter) -> None:
    fake_adapter.error = QueryExecutionError('Query failed: relation "nope" does not exist')

    text, _ = await dispatch_tool(fake_adapter, "execute-query", {"query": "SELECT * FROM nope"})

    assert json.loads(text)["error"] == 'Query failed: relation "nope" does not exist'


def test_result_formatting_stringifies_database_values() -> None:
    row_id = uuid.UUID("12345678-1234-5678-1234-567812345678")
    result = QueryResult(
        columns=["id", "amount", "created", "payload", "elapsed"],
        rows=[
            {
                "id": row_id,
                "amount": Decimal("12.50"),
                "created": datetime.datetime(2024, 1, 2, 3, 4, 5),
                "payload": b"\x00\xff",
                "elapsed": datetime.timedelta(seconds=90),
            }
        ],
        row_count=1,
        truncated=True,
    )

    payload = json.loads(format_tool_result(result))

    assert payload["truncated"] is True
    assert payload["rows"][0] == {
        "id": str(row_id),
        "amount": "12.50",
        "created": "2024-01-02T03:04:05",
        "payload": "00ff",
        "elapsed": 90.0,
    }


def test_result_formatting_keeps_unicode() -> None:
    assert "café" in format_tool_result({"name": "café"})
