"""Database integration module for tusk-mcp.

This module provides connection resolution and read-only query execution
against PostgreSQL.

Architecture:
- connection.py: connection string parsing, connection specs and pooling
- credentials.py: password resolution (literal, file, command, environment)
- resolver.py: layered per-field connection resolution and TLS derivation
- validation.py: query classification and read-only enforcement
- formatting.py: result formatting for AI consumption
- logging.py: structured JSON event logging
- adapters/: PostgreSQL implementation
"""

from tusk_mcp.database.connection import (
    ConnectionFragment,
    ConnectionPool,
    ConnectionSpec,
    TlsConfig,
    TlsMode,
    parse_connection_string,
)
from tusk_mcp.database.credentials import PasswordSources, resolve_password
from tusk_mcp.database.formatting import format_tool_error, format_tool_result
from tusk_mcp.database.resolver import ConnectionFlags, load_tls_config, resolve_connection
from tusk_mcp.database.validation import QueryVerdict, classify_query, is_read_only_query

__all__ = [
    "ConnectionFlags",
    "ConnectionFragment",
    "ConnectionPool",
    "ConnectionSpec",
    "PasswordSources",
    "QueryVerdict",
    "TlsConfig",
    "TlsMode",
    "classify_query",
    "format_tool_error",
    "format_tool_result",
    "is_read_only_query",
    "load_tls_config",
    "parse_connection_string",
    "resolve_connection",
    "resolve_password",
]
