"""Database adapters."""

from .base import (
    BaseAdapter,
    ColumnInfo,
    ForeignKeyInfo,
    QueryResult,
    SchemaInfo,
    TableDescription,
    TableInfo,
)
from .postgresql import PostgreSQLAdapter
from ..connection import ConnectionPool, ConnectionSpec
from ...constants import DB_POOL_SIZE, MAX_QUERY_ROWS

__all__ = [
    "BaseAdapter",
    "ColumnInfo",
    "ForeignKeyInfo",
    "PostgreSQLAdapter",
    "QueryResult",
    "SchemaInfo",
    "TableDescription",
    "TableInfo",
    "create_adapter",
]


def create_adapter(
    spec: ConnectionSpec,
    pool_size: int = DB_POOL_SIZE,
    max_rows: int = MAX_QUERY_ROWS,
) -> PostgreSQLAdapter:
    """Factory function to create the adapter and its connection pool.

    Args:
        spec: Resolved connection settings (already re-pointed at a tunnel
              when one is in use)
        pool_size: Maximum concurrent physical connections
        max_rows: Hard ceiling on rows returned per query

    Returns:
        PostgreSQLAdapter whose pool is not yet open; await ``connect()``
    """
    pool = ConnectionPool(spec, pool_size=pool_size)
    return PostgreSQLAdapter(pool, max_rows=max_rows)
