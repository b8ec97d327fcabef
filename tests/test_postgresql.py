"""Tests for the PostgreSQL adapter: bounded execution and introspection."""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Callable

import psycopg
from psycopg import errors
import pytest

from tusk_mcp.database.adapters.postgresql import (
    COLUMNS_SQL,
    ENUMS_SQL,
    FOREIGN_KEYS_SQL,
    LIST_SCHEMAS_SQL,
    LIST_TABLES_SQL,
    PRIMARY_KEYS_SQL,
    PostgreSQLAdapter,
    clamp_limit,
    fallback_query,
    strip_terminator,
    wrap_query,
)
from tusk_mcp.database.connection import ConnectionSpec
from tusk_mcp.errors import QueryExecutionError, ReadOnlyViolation


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@dataclass
class _Column:
    name: str


Responder = Callable[[str, Any], Any]


class _FakeCursor:
    def __init__(self, connection: "_FakeConnection") -> None:
        self.connection = connection
        self.description = None
        self._rows: list[dict[str, Any]] = []

    async def __aenter__(self) -> "_FakeCursor":
        return self

    async def __aexit__(self, *exc_info: Any) -> bool:
        return False

    async def execute(self, query: str, params: Any = None, prepare: Any = None) -> None:
        self.connection.executed.append(query)
        self.connection.prepared.append(prepare)
        outcome = self.connection.responder(query, params)
        if isinstance(outcome, Exception):
            raise outcome
        columns, rows = outcome
        self.description = None if columns is None else [_Column(name) for name in columns]
        self._rows = rows

    async def fetchall(self) -> list[dict[str, Any]]:
        return list(self._rows)

    async def fetchmany(self, size: int) -> list[dict[str, Any]]:
        self.connection.fetch_sizes.append(size)
        return list(self._rows[:size])


class _FakeConnection:
    def __init__(self, responder: Responder) -> None:
        self.responder = responder
        self.executed: list[str] = []
        self.prepared: list[Any] = []
        self.fetch_sizes: list[int] = []

    def cursor(self, row_factory: Any = None) -> _FakeCursor:
        return _FakeCursor(self)


class _FakePool:
    def __init__(self, responder: Responder) -> None:
        self.spec = ConnectionSpec(host="db", user="alice", password="secret", database="app")
        self.conn = _FakeConnection(responder)
        self.acquired = 0
        self.closed = False

    @asynccontextmanager
    async def connection(self):
        self.acquired += 1
        yield self.conn

    async def open(self) -> None:
        return None

    async def close(self) -> None:
        self.closed = True


def _rows(count: int) -> tuple[list[str], list[dict[str, Any]]]:
    return ["id"], [{"id": i} for i in range(count)]


def _adapter(responder: Responder) -> tuple[PostgreSQLAdapter, _FakePool]:
    pool = _FakePool(responder)
    return PostgreSQLAdapter(pool), pool  # type: ignore[arg-type]


def test_clamp_limit() -> None:
    assert clamp_limit(10) == 10
    assert clamp_limit(5000) == 5000
    assert clamp_limit(10_000) == 5000


@pytest.mark.parametrize("limit", [0, -1, True, 2.5, "10"])
def test_clamp_limit_rejects_non_positive_integers(limit: Any) -> None:
    with pytest.raises(ValueError):
        clamp_limit(limit)


def test_strip_terminator_removes_one_semicolon() -> None:
    assert strip_terminator("  SELECT 1 ;  ") == "SELECT 1"
    assert strip_terminator("SELECT 1") == "SELECT 1"


def test_wrap_query_survives_trailing_line_comment() -> None:
    wrapped = wrap_query("SELECT 1 -- note", 11)

    assert wrapped == "SELECT * FROM (\nSELECT 1 -- note\n) AS _tusk_result LIMIT 11"


def test_fallback_query_omits_limit_for_show() -> None:
    assert fallback_query("SHOW search_path", 11) == "SHOW search_path"
    assert fallback_query("EXPLAIN SELECT 1", 11) == "EXPLAIN SELECT 1\nLIMIT 11"


@pytest.mark.anyio
async def test_execute_query_reports_truncation() -> None:
    adapter, pool = _adapter(lambda query, params: _rows(10))

    result = await adapter.execute_query("SELECT id FROM t", 3)

    assert result.truncated is True
    assert result.row_count == 3
    assert result.rows == [{"id": 0}, {"id": 1}, {"id": 2}]
    assert result.columns == ["id"]
    assert pool.conn.executed == ["SELECT * FROM (\nSELECT id FROM t\n) AS _tusk_result LIMIT 4"]
    assert pool.conn.fetch_sizes == [4]


@pytest.mark.anyio
async def test_exactly_limit_rows_is_not_truncated() -> None:
    adapter, _ = _adapter(lambda query, params: _rows(3))

    result = await adapter.execute_query("SELECT id FROM t", 3)

    assert result.truncated is False
    assert result.row_count == 3


@pytest.mark.anyio
async def test_limit_is_clamped_to_hard_ceiling() -> None:
    adapter, pool = _adapter(lambda query, params: _rows(1))

    await adapter.execute_query("SELECT id FROM t", 1_000_000)

    assert pool.conn.executed[0].endswith("LIMIT 5001")


@pytest.mark.anyio
async def test_trailing_semicolon_is_stripped_before_wrapping() -> None:
    adapter, pool = _adapter(lambda query, params: _rows(1))

    await adapter.execute_query("SELECT id FROM t;", 5)

    assert "\nSELECT id FROM t\n" in pool.conn.executed[0]


@pytest.mark.anyio
async def test_invalid_limit_raises_before_touching_the_pool() -> None:
    adapter, pool = _adapter(lambda query, params: _rows(1))

    with pytest.raises(ValueError):
        await adapter.execute_query("SELECT 1", 0)
    assert pool.acquired == 0


@pytest.mark.anyio
async def test_write_query_is_rejected_before_touching_the_pool() -> None:
    adapter, pool = _adapter(lambda query, params: _rows(1))

    with pytest.raises(ReadOnlyViolation) as excinfo:
        await adapter.execute_query("DELETE FROM users", 10)

    assert "DELETE" in str(excinfo.value)
    assert pool.acquired == 0


@pytest.mark.anyio
async def test_unwrappable_statement_falls_back_to_bare_limit() -> None:
    def responder(query: str, params: Any) -> Any:
        if query.startswith("SELECT * FROM ("):
            return errors.SyntaxError("syntax error at or near \"EXPLAIN\"")
        return ["QUERY PLAN"], [{"QUERY PLAN": "Result  (cost=0.00..0.01 rows=1 width=4)"}]

    adapter, pool = _adapter(responder)

    result = await adapter.execute_query("EXPLAIN SELECT 1", 500)

    assert pool.conn.executed[1] == "EXPLAIN SELECT 1\nLIMIT 501"
    assert result.columns == ["QUERY PLAN"]
    assert result.truncated is False


@pytest.mark.anyio
async def test_show_falls_back_without_limit() -> None:
    def responder(query: str, params: Any) -> Any:
        if query.startswith("SELECT * FROM ("):
            return errors.SyntaxError("syntax error at or near \"SHOW\"")
        return ["search_path"], [{"search_path": "public"}]

    adapter, pool = _adapter(responder)

    result = await adapter.execute_query("SHOW search_path", 10)

    assert pool.conn.executed[1] == "SHOW search_path"
    assert result.rows == [{"search_path": "public"}]


@pytest.mark.anyio
async def test_connection_failure_does_not_retry() -> None:
    adapter, pool = _adapter(lambda query, params: psycopg.OperationalError("server closed the connection"))

    with pytest.raises(QueryExecutionError):
        await adapter.execute_query("SELECT 1", 10)

    assert len(pool.conn.executed) == 1


@pytest.mark.anyio
async def test_engine_error_is_reported_without_fallback() -> None:
    adapter, pool = _adapter(lambda query, params: errors.UndefinedTable("relation \"nope\" does not exist"))

    with pytest.raises(QueryExecutionError) as excinfo:
        await adapter.execute_query("SELECT * FROM nope", 10)

    assert "does not exist" in str(excinfo.value)
    assert len(pool.conn.executed) == 1


@pytest.mark.anyio
async def test_runtime_error_keeps_its_own_message() -> None:
    adapter, pool = _adapter(lambda query, params: errors.DivisionByZero("division by zero"))

    with pytest.raises(QueryExecutionError, match="division by zero"):
        await adapter.execute_query("SELECT 1 / 0", 10)

    assert len(pool.conn.executed) == 1


@pytest.mark.anyio
async def test_fallback_error_is_reported() -> None:
    def responder(query: str, params: Any) -> Any:
        if query.startswith("SELECT * FROM ("):
            return errors.SyntaxError("syntax error at or near \"EXPLAIN\"")
        return errors.UndefinedTable("relation \"nope\" does not exist")

    adapter, pool = _adapter(responder)

    with pytest.raises(QueryExecutionError, match="does not exist"):
        await adapter.execute_query("EXPLAIN SELECT * FROM nope", 10)

    assert len(pool.conn.executed) == 2


@pytest.mark.anyio
async def test_user_statements_are_always_prepared() -> None:
    def responder(query: str, params: Any) -> Any:
        if query.startswith("SELECT * FROM ("):
            return errors.SyntaxError("syntax error at or near \"EXPLAIN\"")
        return ["QUERY PLAN"], [{"QUERY PLAN": "Result"}]

    adapter, pool = _adapter(responder)

    await adapter.execute_query("EXPLAIN SELECT 1", 10)

    assert pool.conn.prepared == [True, True]


@pytest.mark.anyio
async def test_empty_result_takes_columns_from_description() -> None:
    adapter, _ = _adapter(lambda query, params: (["id", "email"], []))

    result = await adapter.execute_query("SELECT id, email FROM users WHERE false", 10)

    assert result.columns == ["id", "email"]
    assert result.rows == []
    assert result.row_count == 0
    assert result.truncated is False


@pytest.mark.anyio
async def test_statement_without_result_set() -> None:
    adapter, _ = _adapter(lambda query, params: (None, []))

    result = await adapter.execute_query("SELECT 1", 10)

    assert result.columns == []
    assert result.rows == []


@pytest.mark.anyio
async def test_list_schemas() -> None:
    adapter, _ = _adapter(lambda query, params: (["name", "owner"], [{"name": "public", "owner": "postgres"}]))

    schemas = await adapter.list_schemas()

    assert [(s.name, s.owner) for s in schemas] == [("public", "postgres")]


@pytest.mark.anyio
async def test_list_tables_passes_schema_parameter() -> None:
    seen: list[Any] = []

    def responder(query: str, params: Any) -> Any:
        seen.append((query, params))
        return ["schema", "name", "type", "estimated_row_count"], [
            {"schema": "sales", "name": "orders", "type": "table", "estimated_row_count": 42},
            {"schema": "sales", "name": "order_totals", "type": "view", "estimated_row_count": 0},
        ]

    adapter, _ = _adapter(responder)

    tables = await adapter.list_tables("sales")

    assert seen == [(LIST_TABLES_SQL, {"schema": "sales"})]
    assert [(t.name, t.type, t.estimated_row_count) for t in tables] == [
        ("orders", "table", 42),
        ("order_totals", "view", 0),
    ]


def _describe_responder(columns: list[dict[str, Any]]) -> Responder:
    def responder(query: str, params: Any) -> Any:
        assert params == {"schema": "public", "table": "orders"}
        if query is COLUMNS_SQL:
            return ["name"], columns
        if query is FOREIGN_KEYS_SQL:
            return ["column_name"], [
                {
                    "column_name": "customer_id",
                    "referenced_table": "public.customers",
                    "referenced_column": "id",
                    "constraint_name": "orders_customer_id_fkey",
                }
            ]
        if query is PRIMARY_KEYS_SQL:
            return ["column_name"], [{"column_name": "id"}]
        if query is ENUMS_SQL:
            return ["name"], [{"name": "order_status", "enum_values": ["new", "paid"]}]
        raise AssertionError(f"unexpected query: {query}")

    return responder


@pytest.mark.anyio
async def test_describe_table_merges_catalog_queries() -> None:
    columns = [
        {"name": "id", "type": "integer", "nullable": False, "default_value": None, "udt_name": "int4"},
        {"name": "customer_id", "type": "integer", "nullable": True, "default_value": None, "udt_name": "int4"},
        {"name": "status", "type": "order_status", "nullable": False, "default_value": "'new'", "udt_name": "order_status"},
    ]
    adapter, _ = _adapter(_describe_responder(columns))

    description = await adapter.describe_table("orders", "public")

    by_name = {column.name: column for column in description.columns}
    assert by_name["id"].is_primary_key is True
    assert by_name["customer_id"].is_primary_key is False
    assert by_name["status"].enum_values == ["new", "paid"]
    assert by_name["id"].enum_values is None
    assert description.foreign_keys[0].referenced_table == "public.customers"


@pytest.mark.anyio
async def test_describe_missing_table_raises() -> None:
    adapter, _ = _adapter(_describe_responder([]))

    with pytest.raises(QueryExecutionError, match="not found"):
        await adapter.describe_table("orders", "public")


@pytest.mark.anyio
async def test_dsn_never_contains_password() -> None:
    adapter, pool = _adapter(lambda query, params: _rows(0))

    assert "secret" not in adapter.dsn

    await adapter.close()
    assert pool.closed is True


def test_schema_sql_excludes_system_schemas() -> None:
    assert "pg_catalog" in LIST_SCHEMAS_SQL
    assert "information_schema" in LIST_SCHEMAS_SQL
