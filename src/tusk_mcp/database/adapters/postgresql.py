"""PostgreSQL database adapter implementation."""

import asyncio
import logging
from typing import Any, Optional

import psycopg
from psycopg import errors
from psycopg.rows import dict_row

from .base import (
    BaseAdapter,
    ColumnInfo,
    ForeignKeyInfo,
    QueryResult,
    SchemaInfo,
    TableDescription,
    TableInfo,
)
from ..connection import ConnectionPool
from ..logging import QueryTimer, describe_spec, log_connection, log_query_execution
from ..validation import classify_query
from ...constants import MAX_QUERY_ROWS, RESULT_ALIAS
from ...errors import QueryExecutionError, ReadOnlyViolation

logger = logging.getLogger(__name__)

LIST_SCHEMAS_SQL = """
    SELECT schema_name AS name, schema_owner AS owner
    FROM information_schema.schemata
    WHERE schema_name NOT IN ('pg_catalog', 'information_schema', 'pg_toast')
      AND schema_name NOT LIKE 'pg_temp_%'
      AND schema_name NOT LIKE 'pg_toast_temp_%'
    ORDER BY schema_name
"""

LIST_TABLES_SQL = """
    SELECT
      s.schemaname AS schema,
      s.relname AS name,
      CASE
        WHEN s.relname IN (
          SELECT viewname FROM pg_views WHERE schemaname = %(schema)s
        ) THEN 'view'
        WHEN c.relkind = 'p' THEN 'partitioned table'
        ELSE 'table'
      END AS type,
      COALESCE(s.n_live_tup, 0) AS estimated_row_count
    FROM pg_stat_user_tables s
    JOIN pg_class c ON c.relname = s.relname
    JOIN pg_namespace n ON n.oid = c.relnamespace AND n.nspname = s.schemaname
    WHERE s.schemaname = %(schema)s
      AND c.oid NOT IN (SELECT inhrelid FROM pg_inherits)

    UNION ALL

    SELECT
      schemaname AS schema,
      viewname AS name,
      'view' AS type,
      0 AS estimated_row_count
    FROM pg_views
    WHERE schemaname = %(schema)s
      AND viewname NOT IN (
        SELECT relname FROM pg_stat_user_tables WHERE schemaname = %(schema)s
      )

    ORDER BY name
"""

COLUMNS_SQL = """
    SELECT
      column_name AS name,
      CASE WHEN data_type = 'USER-DEFINED' THEN udt_name ELSE data_type END AS type,
      is_nullable = 'YES' AS nullable,
      column_default AS default_value,
      udt_name
    FROM information_schema.columns
    WHERE table_schema = %(schema)s AND table_name = %(table)s
    ORDER BY ordinal_position
"""

FOREIGN_KEYS_SQL = """
    SELECT
      kcu.column_name,
      ccu.table_schema || '.' || ccu.table_name AS referenced_table,
      ccu.column_name AS referenced_column,
      tc.constraint_name
    FROM information_schema.table_constraints tc
    JOIN information_schema.key_column_usage kcu
      ON tc.constraint_name = kcu.constraint_name
      AND tc.table_schema = kcu.table_schema
    JOIN information_schema.constraint_column_usage ccu
      ON ccu.constraint_name = tc.constraint_name
      AND ccu.table_schema = tc.table_schema
    WHERE tc.constraint_type = 'FOREIGN KEY'
      AND tc.table_schema = %(schema)s
      AND tc.table_name = %(table)s
"""

PRIMARY_KEYS_SQL = """
    SELECT kcu.column_name
    FROM information_schema.table_constraints tc
    JOIN information_schema.key_column_usage kcu
      ON tc.constraint_name = kcu.constraint_name
      AND tc.table_schema = kcu.table_schema
    WHERE tc.constraint_type = 'PRIMARY KEY'
      AND tc.table_schema = %(schema)s
      AND tc.table_name = %(table)s
"""

ENUMS_SQL = """
    SELECT t.typname AS name, ARRAY_AGG(e.enumlabel ORDER BY e.enumsortorder) AS enum_values
    FROM pg_type t
    JOIN pg_enum e ON t.oid = e.enumtypid
    JOIN pg_namespace n ON t.typnamespace = n.oid
    WHERE n.nspname = %(schema)s
      AND t.typname IN (
        SELECT udt_name FROM information_schema.columns
        WHERE table_schema = %(schema)s AND table_name = %(table)s AND data_type = 'USER-DEFINED'
      )
    GROUP BY t.typname
"""


def clamp_limit(limit: int, max_rows: int = MAX_QUERY_ROWS) -> int:
    """Clamp a caller-requested row limit to the hard ceiling.

    Raises:
        ValueError: If limit is not a positive integer
    """
    if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
        raise ValueError(f"limit must be a positive integer, got {limit!r}")
    return min(limit, max_rows)


def strip_terminator(query: str) -> str:
    """Remove a single trailing statement terminator."""
    cleaned = query.strip()
    if cleaned.endswith(";"):
        cleaned = cleaned[:-1].rstrip()
    return cleaned


def wrap_query(query: str, fetch_count: int) -> str:
    # Newlines keep a trailing line comment from swallowing the wrapper
    return f"SELECT * FROM (\n{query}\n) AS {RESULT_ALIAS} LIMIT {fetch_count}"


def fallback_query(query: str, fetch_count: int) -> str:
    # SHOW returns a single row and accepts no LIMIT clause
    if query.split(None, 1)[0].upper() == "SHOW":
        return query
    return f"{query}\nLIMIT {fetch_count}"


class PostgreSQLAdapter(BaseAdapter):
    """PostgreSQL database adapter with read-only enforcement."""

    def __init__(self, pool: ConnectionPool, max_rows: int = MAX_QUERY_ROWS):
        """Initialize PostgreSQL adapter.

        Args:
            pool: Shared connection pool
            max_rows: Hard ceiling on rows returned per query
        """
        self.pool = pool
        self.max_rows = max_rows

    @property
    def dsn(self) -> str:
        """Generate DSN string for logging (password omitted)."""
        return describe_spec(self.pool.spec)

    async def connect(self) -> None:
        """Open the underlying pool; connections are dialled on demand."""
        with QueryTimer() as timer:
            await self.pool.open()
        log_connection(self.dsn, success=True, duration=timer.duration)
        logger.info(f"Connection pool ready for {self.dsn}")

    async def _fetch_all(self, query: str, params: Optional[dict[str, Any]] = None) -> list[dict[str, Any]]:
        async with self.pool.connection() as conn:
            async with conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(query, params)
                return await cur.fetchall()

    async def _fetch_limited(self, query: str, fetch_count: int) -> tuple[list[str], list[dict[str, Any]]]:
        async with self.pool.connection() as conn:
            async with conn.cursor(row_factory=dict_row) as cur:
                # A prepared statement goes through the extended protocol,
                # where the server refuses more than one statement
                await cur.execute(query, prepare=True)
                if cur.description is None:
                    return [], []
                # fetchmany bounds the result even if the server ignored LIMIT
                rows = await cur.fetchmany(fetch_count)
                if rows:
                    return list(rows[0].keys()), rows
                return [column.name for column in cur.description], rows

    async def _fetch_with_fallback(self, query: str, fetch_count: int) -> tuple[list[str], list[dict[str, Any]]]:
        try:
            return await self._fetch_limited(wrap_query(query, fetch_count), fetch_count)
        except errors.SyntaxError as e:
            # EXPLAIN and SHOW cannot appear in a subquery
            logger.debug(f"Subquery wrapping rejected ({e}); retrying with bare LIMIT")
        return await self._fetch_limited(fallback_query(query, fetch_count), fetch_count)

    async def list_schemas(self) -> list[SchemaInfo]:
        try:
            rows = await self._fetch_all(LIST_SCHEMAS_SQL)
        except psycopg.Error as e:
            raise QueryExecutionError(f"Failed to list schemas: {e}") from e
        return [SchemaInfo(name=row["name"], owner=row["owner"]) for row in rows]

    async def list_tables(self, schema: str) -> list[TableInfo]:
        try:
            rows = await self._fetch_all(LIST_TABLES_SQL, {"schema": schema})
        except psycopg.Error as e:
            raise QueryExecutionError(f"Failed to list tables: {e}") from e
        return [
            TableInfo(
                schema=row["schema"],
                name=row["name"],
                type=row["type"],
                estimated_row_count=int(row["estimated_row_count"]),
            )
            for row in rows
        ]

    async def describe_table(self, table: str, schema: str) -> TableDescription:
        params = {"schema": schema, "table": table}
        try:
            columns, foreign_keys, primary_keys, enums = await asyncio.gather(
                self._fetch_all(COLUMNS_SQL, params),
                self._fetch_all(FOREIGN_KEYS_SQL, params),
                self._fetch_all(PRIMARY_KEYS_SQL, params),
                self._fetch_all(ENUMS_SQL, params),
            )
        except psycopg.Error as e:
            raise QueryExecutionError(f"Failed to describe table: {e}") from e

        if not columns:
            raise QueryExecutionError(f"Table {schema}.{table} not found")

        pk_columns = {row["column_name"] for row in primary_keys}
        enum_map = {row["name"]: list(row["enum_values"]) for row in enums}

        return TableDescription(
            schema=schema,
            table=table,
            columns=[
                ColumnInfo(
                    name=col["name"],
                    type=col["type"],
                    nullable=bool(col["nullable"]),
                    default_value=col["default_value"],
                    is_primary_key=col["name"] in pk_columns,
                    enum_values=enum_map.get(col["udt_name"]),
                )
                for col in columns
            ],
            foreign_keys=[
                ForeignKeyInfo(
                    column_name=fk["column_name"],
                    referenced_table=fk["referenced_table"],
                    referenced_column=fk["referenced_column"],
                    constraint_name=fk["constraint_name"],
                )
                for fk in foreign_keys
            ],
        )

    async def execute_query(self, query: str, limit: int) -> QueryResult:
        """Execute read-only query with a hard row cap.

        Over-fetches one row beyond the effective limit to detect
        truncation. The statement is first wrapped as a subquery; statement
        kinds that cannot be wrapped (EXPLAIN, SHOW) fail with a syntax error
        and fall back to a bare LIMIT clause. Every other engine error is
        reported as is. Statements are always prepared, so the server itself
        rejects multi-statement text.

        Args:
            query: SQL query to execute
            limit: Requested row cap, clamped to ``max_rows``

        Returns:
            QueryResult with at most the effective limit of rows

        Raises:
            ReadOnlyViolation: If the query is not read-only
            ValueError: If limit is not a positive integer
            QueryExecutionError: If the database rejects the query
        """
        verdict = classify_query(query)
        if not verdict.read_only:
            log_query_execution(query=query, dsn=self.dsn, success=False, error=verdict.reason, blocked=True)
            raise ReadOnlyViolation(
                f"Query rejected: {verdict.reason}\n"
                f"  Hint: Only read-only queries are allowed (SELECT, WITH, EXPLAIN, SHOW, VALUES, TABLE)"
            )

        effective_limit = clamp_limit(limit, self.max_rows)
        cleaned = strip_terminator(query)
        fetch_count = effective_limit + 1

        timer = QueryTimer()
        try:
            with timer:
                columns, rows = await self._fetch_with_fallback(cleaned, fetch_count)
        except psycopg.Error as e:
            error = f"Query failed: {e}"
            logger.error(error)
            log_query_execution(query=query, dsn=self.dsn, success=False, error=error, duration=timer.duration)
            raise QueryExecutionError(error) from e

        truncated = len(rows) > effective_limit
        result_rows = [dict(row) for row in rows[:effective_limit]]

        log_query_execution(
            query=query,
            dsn=self.dsn,
            success=True,
            row_count=len(result_rows),
            duration=timer.duration,
            truncated=truncated,
        )

        return QueryResult(
            columns=columns,
            rows=result_rows,
            row_count=len(result_rows),
            truncated=truncated,
        )

    async def close(self) -> None:
        """Close the pool once in-flight queries have finished."""
        await self.pool.close()
        logger.info(f"Closed PostgreSQL pool for {self.dsn}")
