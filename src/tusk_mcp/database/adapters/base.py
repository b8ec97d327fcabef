"""Abstract base class for database adapters."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass
class SchemaInfo:
    name: str
    owner: str


@dataclass
class TableInfo:
    schema: str
    name: str
    type: str  # "table", "view" or "partitioned table"
    estimated_row_count: int


@dataclass
class ColumnInfo:
    name: str
    type: str
    nullable: bool
    default_value: Optional[str]
    is_primary_key: bool
    enum_values: Optional[list[str]] = None


@dataclass
class ForeignKeyInfo:
    column_name: str
    referenced_table: str
    referenced_column: str
    constraint_name: str


@dataclass
class TableDescription:
    schema: str
    table: str
    columns: list[ColumnInfo] = field(default_factory=list)
    foreign_keys: list[ForeignKeyInfo] = field(default_factory=list)


@dataclass
class QueryResult:
    """Rows returned by a read-only query.

    ``truncated`` is True when the database held more rows than the
    effective limit; ``rows`` then holds exactly that many.
    """

    columns: list[str]
    rows: list[dict[str, Any]]
    row_count: int
    truncated: bool


class BaseAdapter(ABC):
    """Abstract base class for database-specific adapters.

    Every tool call goes through this interface, which keeps the MCP layer
    independent of the driver and lets tests substitute a fake.
    """

    @property
    @abstractmethod
    def dsn(self) -> str:
        """Connection description for logs (never includes the password)."""

    @abstractmethod
    async def connect(self) -> None:
        """Prepare the adapter for use."""

    @abstractmethod
    async def list_schemas(self) -> list[SchemaInfo]:
        """List non-system schemas with their owners."""

    @abstractmethod
    async def list_tables(self, schema: str) -> list[TableInfo]:
        """List tables and views in a schema with estimated row counts."""

    @abstractmethod
    async def describe_table(self, table: str, schema: str) -> TableDescription:
        """Describe a table's columns, primary key, foreign keys and enums.

        Raises:
            QueryExecutionError: If the table does not exist or the lookup fails
        """

    @abstractmethod
    async def execute_query(self, query: str, limit: int) -> QueryResult:
        """Execute read-only query and return at most ``limit`` rows.

        Args:
            query: SQL query to execute
            limit: Requested row cap (clamped to the system maximum)

        Returns:
            QueryResult with truncation flag

        Raises:
            ReadOnlyViolation: If the query is not read-only
            QueryExecutionError: If query execution fails
        """

    @abstractmethod
    async def close(self) -> None:
        """Release every connection held by the adapter."""

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
