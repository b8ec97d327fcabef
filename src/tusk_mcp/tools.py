"""Tool handlers: argument checking, adapter calls and payload formatting."""

import logging
from typing import Any, Awaitable, Callable, Mapping, Optional

from .constants import DEFAULT_QUERY_LIMIT, DEFAULT_SCHEMA
from .database.adapters.base import BaseAdapter
from .database.formatting import format_tool_error, format_tool_result
from .errors import ReadOnlyViolation, TuskError
from .tool_definitions import DESCRIBE_TABLE, EXECUTE_QUERY, LIST_SCHEMAS, LIST_TABLES

logger = logging.getLogger("tusk_mcp.tools")

INTERNAL_ERROR = "InternalError"


def _string_argument(arguments: Mapping[str, Any], name: str, default: Optional[str] = None) -> str:
    value = arguments.get(name, default)
    if value is None:
        raise ValueError(f"Missing required argument '{name}'")
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"Argument '{name}' must be a non-empty string")
    return value


async def handle_list_schemas(adapter: BaseAdapter, arguments: Mapping[str, Any]) -> Any:
    return await adapter.list_schemas()


async def handle_list_tables(adapter: BaseAdapter, arguments: Mapping[str, Any]) -> Any:
    schema = _string_argument(arguments, "schema", DEFAULT_SCHEMA)
    return await adapter.list_tables(schema)


async def handle_describe_table(adapter: BaseAdapter, arguments: Mapping[str, Any]) -> Any:
    table = _string_argument(arguments, "table")
    schema = _string_argument(arguments, "schema", DEFAULT_SCHEMA)
    return await adapter.describe_table(table, schema)


async def handle_execute_query(adapter: BaseAdapter, arguments: Mapping[str, Any]) -> Any:
    query = _string_argument(arguments, "query")
    limit = arguments.get("limit", DEFAULT_QUERY_LIMIT)
    return await adapter.execute_query(query, limit)


HANDLERS: dict[str, Callable[[BaseAdapter, Mapping[str, Any]], Awaitable[Any]]] = {
    LIST_SCHEMAS: handle_list_schemas,
    LIST_TABLES: handle_list_tables,
    DESCRIBE_TABLE: handle_describe_table,
    EXECUTE_QUERY: handle_execute_query,
}


async def dispatch_tool(
    adapter: BaseAdapter,
    name: str,
    arguments: Optional[Mapping[str, Any]],
    structure_only: bool = False,
) -> tuple[str, bool]:
    """Run a tool and render its outcome as text.

    Never raises: every failure becomes a JSON error payload with the error
    class name as its category.

    Args:
        adapter: Database adapter
        name: Tool name
        arguments: Tool arguments from the client
        structure_only: Whether execute-query is disabled

    Returns:
        (payload text, is_error)
    """
    arguments = arguments or {}
    try:
        handler = HANDLERS.get(name)
        if handler is None:
            raise ValueError(f"Unknown tool '{name}'")
        if structure_only and name == EXECUTE_QUERY:
            raise ReadOnlyViolation("execute-query is disabled: server is running with --structure-only")
        result = await handler(adapter, arguments)
        return format_tool_result(result), False
    except (TuskError, ValueError) as e:
        logger.warning(f"Tool {name} failed: {type(e).__name__}: {e}")
        return format_tool_error(str(e), type(e).__name__), True
    except Exception as e:
        logger.exception(f"Unexpected error in tool {name}")
        return format_tool_error(f"{type(e).__name__}: {e}", INTERNAL_ERROR), True
