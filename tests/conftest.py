"""Shared fixtures."""

from __future__ import annotations

from typing import Any, Optional

import pytest

from tusk_mcp.database.adapters.base import (
    BaseAdapter,
    ColumnInfo,
    QueryResult,
    SchemaInfo,
    TableDescription,
    TableInfo,
)
from tusk_mcp.errors import QueryExecutionError


class FakeAdapter(BaseAdapter):
    """In-memory adapter recording every call."""

    def __init__(self, result: Optional[QueryResult] = None, error: Optional[Exception] = None) -> None:
        self.result = result or QueryResult(columns=["n"], rows=[{"n": 1}], row_count=1, truncated=False)
        self.error = error
        self.calls: list[tuple[str, Any]] = []
        self.connected = False
        self.close_count = 0

    @property
    def dsn(self) -> str:
        return "postgresql://alice@db:5432/app"

    async def connect(self) -> None:
        self.connected = True

    async def list_schemas(self) -> list[SchemaInfo]:
        self.calls.append(("list_schemas", None))
        return [SchemaInfo(name="public", owner="postgres")]

    async def list_tables(self, schema: str) -> list[TableInfo]:
        self.calls.append(("list_tables", schema))
        return [TableInfo(schema=schema, name="orders", type="table", estimated_row_count=3)]

    async def describe_table(self, table: str, schema: str) -> TableDescription:
        self.calls.append(("describe_table", (table, schema)))
        if table == "missing":
            raise QueryExecutionError(f"Table {schema}.{table} not found")
        return TableDescription(
            schema=schema,
            table=table,
            columns=[ColumnInfo(name="id", type="integer", nullable=False, default_value=None, is_primary_key=True)],
        )

    async def execute_query(self, query: str, limit: int) -> QueryResult:
        self.calls.append(("execute_query", (query, limit)))
        if self.error is not None:
            raise self.error
        return self.result

    async def close(self) -> None:
        self.close_count += 1


@pytest.fixture
def fake_adapter() -> FakeAdapter:
    return FakeAdapter()
