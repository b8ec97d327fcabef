"""Tool descriptions and input schemas for the tusk-mcp server."""

from .constants import DEFAULT_QUERY_LIMIT, DEFAULT_SCHEMA, MAX_QUERY_ROWS

LIST_SCHEMAS = "list-schemas"
LIST_TABLES = "list-tables"
DESCRIBE_TABLE = "describe-table"
EXECUTE_QUERY = "execute-query"

STRUCTURE_TOOLS = (LIST_SCHEMAS, LIST_TABLES, DESCRIBE_TABLE)


class ToolDescriptions:
    """Centralized management of tool descriptions and input schemas."""

    @classmethod
    def get_list_schemas_description(cls) -> str:
        """Get the description for the list-schemas tool."""
        return "List all non-system schemas in the database with their owners."

    @classmethod
    def get_list_tables_description(cls) -> str:
        """Get the description for the list-tables tool."""
        return (
            "List tables, views and partitioned tables in a schema with estimated row counts. "
            "Row counts come from planner statistics and may be approximate."
        )

    @classmethod
    def get_describe_table_description(cls) -> str:
        """Get the description for the describe-table tool."""
        return (
            "Describe a table: columns with types, nullability, defaults, primary key membership "
            "and enum values, plus foreign key relationships."
        )

    @classmethod
    def get_execute_query_description(cls) -> str:
        """Get the description for the execute-query tool."""
        return f"""Execute a read-only SQL query and return rows as JSON.

Allowed statements: SELECT, WITH, EXPLAIN, SHOW, VALUES, TABLE.
Rejected: any data or schema modification, SELECT ... INTO, and multiple statements.

Results are capped at {MAX_QUERY_ROWS} rows regardless of 'limit'. When more rows
exist than were returned, 'truncated' is true; narrow the query or aggregate instead
of raising the limit.

TIPS:
- Call list-tables and describe-table first to learn column names
- Prefer aggregates (COUNT, GROUP BY) over fetching raw rows"""

    @classmethod
    def get_schema_parameter_description(cls) -> str:
        """Get the schema parameter description."""
        return f"Schema name (default: {DEFAULT_SCHEMA})"

    @classmethod
    def get_table_parameter_description(cls) -> str:
        """Get the table parameter description."""
        return "Table name without schema prefix"

    @classmethod
    def get_query_parameter_description(cls) -> str:
        """Get the query parameter description."""
        return "Single read-only SQL statement. Example: SELECT id, email FROM users WHERE active"

    @classmethod
    def get_limit_parameter_description(cls) -> str:
        """Get the limit parameter description."""
        return f"Maximum rows to return (default: {DEFAULT_QUERY_LIMIT}, max: {MAX_QUERY_ROWS})"

    @classmethod
    def get_input_schema(cls, tool_name: str) -> dict:
        """Get the JSON input schema for a tool."""
        if tool_name == LIST_SCHEMAS:
            return {"type": "object", "properties": {}}
        if tool_name == LIST_TABLES:
            return {
                "type": "object",
                "properties": {
                    "schema": {
                        "type": "string",
                        "description": cls.get_schema_parameter_description(),
                        "default": DEFAULT_SCHEMA,
                    },
                },
            }
        if tool_name == DESCRIBE_TABLE:
            return {
                "type": "object",
                "properties": {
                    "table": {
                        "type": "string",
                        "description": cls.get_table_parameter_description(),
                    },
                    "schema": {
                        "type": "string",
                        "description": cls.get_schema_parameter_description(),
                        "default": DEFAULT_SCHEMA,
                    },
                },
                "required": ["table"],
            }
        if tool_name == EXECUTE_QUERY:
            return {
                "type": "object",
                "properties": {
                    "query": {
                        "type": "string",
                        "description": cls.get_query_parameter_description(),
                    },
                    "limit": {
                        "type": "integer",
                        "description": cls.get_limit_parameter_description(),
                        "default": DEFAULT_QUERY_LIMIT,
                        "minimum": 1,
                        "maximum": MAX_QUERY_ROWS,
                    },
                },
                "required": ["query"],
            }
        raise KeyError(tool_name)

    @classmethod
    def get_description(cls, tool_name: str) -> str:
        """Get the description for a tool by name."""
        return {
            LIST_SCHEMAS: cls.get_list_schemas_description,
            LIST_TABLES: cls.get_list_tables_description,
            DESCRIBE_TABLE: cls.get_describe_table_description,
            EXECUTE_QUERY: cls.get_execute_query_description,
        }[tool_name]()

    @classmethod
    def get_server_instructions(cls, structure_only: bool) -> str:
        """Get the instructions sent to the client at initialization."""
        lines = [
            "**Read-only PostgreSQL access**: every session runs with default_transaction_read_only=on.",
            "Explore with list-schemas, list-tables and describe-table before writing queries.",
        ]
        if structure_only:
            lines.append(
                "**Structure-only mode**: execute-query is disabled. Only schema introspection is available."
            )
        else:
            lines.append(f"execute-query returns at most {MAX_QUERY_ROWS} rows; check 'truncated' in the result.")
        return "\n".join(lines)
