"""Database result formatting for AI consumption."""

import dataclasses
import json
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Any


def _json_default(value: Any) -> Any:
    """Convert values json cannot encode natively."""
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).hex()
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, timedelta):
        return value.total_seconds()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    return str(value)


def format_tool_result(data: Any) -> str:
    """Format a tool payload as pretty-printed JSON.

    Dataclasses are expanded, and database values such as Decimal, UUID and
    timestamps are rendered as strings so no row can fail to serialize.

    Args:
        data: Payload (dataclass, list of dataclasses or plain data)

    Returns:
        JSON text suitable for LLM input
    """
    if dataclasses.is_dataclass(data) and not isinstance(data, type):
        data = dataclasses.asdict(data)
    elif isinstance(data, list):
        data = [
            dataclasses.asdict(item) if dataclasses.is_dataclass(item) and not isinstance(item, type) else item
            for item in data
        ]
    return json.dumps(data, indent=2, default=_json_default, ensure_ascii=False)


def format_tool_error(message: str, category: str) -> str:
    """Format a per-call failure as a structured error payload.

    Args:
        message: Human-readable error message
        category: Error class name the caller can branch on

    Returns:
        JSON text with ``error`` and ``category`` keys
    """
    return json.dumps({"error": message, "category": category}, indent=2)
