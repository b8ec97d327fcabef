"""tusk-mcp MCP server - Read-only PostgreSQL access for AI agents."""

import asyncio
import dataclasses
import logging
import os
import sys
from typing import Optional, Sequence

import mcp.server.stdio
import mcp.types as types
from mcp.server import Server
from mcp.server.lowlevel import NotificationOptions
from mcp.server.models import InitializationOptions

from .config import CliOptions, configure_logging, parse_args
from .constants import EXIT_FAILURE, EXIT_SUCCESS, SERVER_NAME, SERVER_VERSION, TEST_CONNECTION_QUERY
from .database.adapters import create_adapter
from .database.adapters.base import BaseAdapter
from .database.logging import describe_spec
from .database.resolver import resolve_connection
from .errors import FATAL_ERRORS, ConfigurationError, ToolCallFailed, TuskError
from .runtime import Runtime
from .tool_definitions import EXECUTE_QUERY, STRUCTURE_TOOLS, ToolDescriptions
from .tools import dispatch_tool
from .tunnel import open_tunnel

logger = logging.getLogger("tusk_mcp")


class TuskServer(Server):
    """Extended MCP Server that stores the database adapter."""

    def __init__(self, name: str, adapter: BaseAdapter, structure_only: bool = False):
        super().__init__(name)
        self.adapter = adapter
        self.structure_only = structure_only

    @property
    def tool_names(self) -> tuple[str, ...]:
        if self.structure_only:
            return STRUCTURE_TOOLS
        return STRUCTURE_TOOLS + (EXECUTE_QUERY,)


def create_server(adapter: BaseAdapter, structure_only: bool = False) -> TuskServer:
    """Build the MCP server and register its handlers."""
    server = TuskServer(SERVER_NAME, adapter, structure_only)

    @server.list_resources()
    async def list_resources() -> list[types.Resource]:
        """List available resources (none for this server)."""
        return []

    @server.list_prompts()
    async def list_prompts() -> list[types.Prompt]:
        """List available prompts (none for this server)."""
        return []

    @server.list_tools()
    async def list_tools() -> list[types.Tool]:
        """List available tools; execute-query is hidden in structure-only mode."""
        return [
            types.Tool(
                name=name,
                description=ToolDescriptions.get_description(name),
                inputSchema=ToolDescriptions.get_input_schema(name),
                annotations=types.ToolAnnotations(readOnlyHint=True),
            )
            for name in server.tool_names
        ]

    @server.call_tool()
    async def call_tool(name: str, arguments: dict) -> list[types.TextContent]:
        """Handle tool calls; failures are returned as error results."""
        text, is_error = await dispatch_tool(server.adapter, name, arguments, server.structure_only)
        if is_error:
            raise ToolCallFailed(text)
        return [types.TextContent(type="text", text=text)]

    return server


async def test_connection(adapter: BaseAdapter) -> bool:
    """Test the database connection with a single check query.

    Args:
        adapter: Connected database adapter

    Returns:
        True if test successful, False otherwise
    """
    print()
    print(f"Testing connection to {adapter.dsn}...")

    try:
        result = await adapter.execute_query(TEST_CONNECTION_QUERY, 1)
    except TuskError as e:
        print()
        print("[FAILED] Test FAILED")
        print(f"Error: {e}")
        return False

    if not result.rows:
        print()
        print("[FAILED] Test FAILED")
        print("Error: check query returned no rows")
        return False

    row = result.rows[0]
    print()
    print("[PASSED] Test PASSED")
    print(f"Database: {row.get('db')}")
    print(f"User: {row.get('usr')}")
    print(f"Server: {row.get('version')}")
    return True


async def serve_stdio(server: TuskServer, structure_only: bool) -> None:
    async with mcp.server.stdio.stdio_server() as (read_stream, write_stream):
        init_options = InitializationOptions(
            server_name=SERVER_NAME,
            server_version=SERVER_VERSION,
            capabilities=server.get_capabilities(
                notification_options=NotificationOptions(),
                experimental_capabilities={},
            ),
            instructions=ToolDescriptions.get_server_instructions(structure_only),
        )
        await server.run(read_stream, write_stream, init_options)


async def start(options: CliOptions, runtime: Runtime) -> int:
    """Resolve the connection, open resources into ``runtime`` and serve."""
    spec = await resolve_connection(options.connection, os.environ)
    logger.info(f"Database: {describe_spec(spec)} (TLS: {spec.tls.mode.value})")

    if options.tunnel is not None:
        tunnel_options = dataclasses.replace(options.tunnel, target_host=spec.host, target_port=spec.port)
        runtime.tunnel = await open_tunnel(tunnel_options)
        spec = spec.via_tunnel(runtime.tunnel.local_host, runtime.tunnel.local_port)
        logger.info(f"SSH tunnel: {runtime.tunnel.local_host}:{runtime.tunnel.local_port} -> {options.tunnel.ssh_host}")

    runtime.adapter = create_adapter(spec)
    await runtime.adapter.connect()

    if options.test:
        success = await test_connection(runtime.adapter)
        return EXIT_SUCCESS if success else EXIT_FAILURE

    logger.info("Starting tusk-mcp MCP Server")
    if options.structure_only:
        logger.info("Mode: structure-only (execute-query disabled)")

    server = create_server(runtime.adapter, options.structure_only)
    serving = asyncio.ensure_future(serve_stdio(server, options.structure_only))
    runtime.install_signal_handlers(serving)
    try:
        await serving
    except asyncio.CancelledError:
        if not runtime.shutdown_requested:
            raise
    return EXIT_SUCCESS


async def main(argv: Optional[Sequence[str]] = None) -> int:
    """Parse command line arguments and run the server.

    Returns:
        Process exit code
    """
    configure_logging()
    try:
        options = parse_args(argv)
    except ConfigurationError as e:
        logger.error(f"{SERVER_NAME}: {e}")
        return EXIT_FAILURE

    runtime = Runtime()
    try:
        return await start(options, runtime)
    except FATAL_ERRORS as e:
        logger.error(f"{SERVER_NAME}: {e}")
        return EXIT_FAILURE
    finally:
        await runtime.close()


def run():
    """Entry point for the tusk-mcp command."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
