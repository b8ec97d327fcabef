"""Query validation and read-only enforcement.

Classification is lexical and conservative: a statement is
allowed only when it provably starts like a read and contains no write,
DDL or transaction-control keyword once comments and quoted text have
been blanked out. Anything ambiguous is rejected.
"""

import re
from dataclasses import dataclass
from enum import Enum, auto
from typing import Optional

ALLOWED_PREFIXES = frozenset({"SELECT", "WITH", "EXPLAIN", "SHOW", "VALUES", "TABLE"})

WRITE_KEYWORDS = frozenset({
    "INSERT", "UPDATE", "DELETE", "DROP", "ALTER", "TRUNCATE",
    "CREATE", "GRANT", "REVOKE", "COPY", "MERGE", "CALL",
    "DO", "LOCK", "REINDEX", "REFRESH", "CLUSTER", "VACUUM",
    "DISCARD", "SET", "RESET", "BEGIN", "COMMIT", "ROLLBACK",
    "SAVEPOINT", "PREPARE", "DEALLOCATE", "EXECUTE", "REASSIGN", "IMPORT",
    # SELECT ... INTO creates a table
    "INTO",
})

_WORD = re.compile(r"[A-Za-z_][A-Za-z0-9_$]*")
_DOLLAR_TAG = re.compile(r"\$([A-Za-z_][A-Za-z0-9_]*)?\$")


class UnterminatedTokenError(ValueError):
    """Raised when a comment, literal or quoted identifier never closes."""


class _State(Enum):
    CODE = auto()
    LINE_COMMENT = auto()
    BLOCK_COMMENT = auto()
    SINGLE_QUOTE = auto()
    ESCAPE_STRING = auto()
    DOUBLE_QUOTE = auto()
    DOLLAR_QUOTE = auto()


@dataclass(frozen=True)
class QueryVerdict:
    """Outcome of classifying a statement."""

    read_only: bool
    reason: Optional[str] = None


def _is_identifier_char(char: str) -> bool:
    return char.isalnum() or char in "_$"


def strip_non_code(query: str) -> str:
    """Blank out comments, string literals, dollar-quoted bodies and quoted
    identifiers so keyword checks only see actual SQL tokens.

    Each stripped region is replaced by a single space. Block comments
    nest, as they do in PostgreSQL, so a comment only ends at the ``*/``
    that balances its opening ``/*``.

    Args:
        query: Raw SQL text

    Returns:
        Text containing only code tokens

    Raises:
        UnterminatedTokenError: If the query ends inside a stripped region
    """
    out: list[str] = []
    state = _State.CODE
    dollar_tag = ""
    depth = 0
    i = 0
    length = len(query)

    while i < length:
        char = query[i]
        pair = query[i:i + 2]

        if state is _State.CODE:
            if pair == "--":
                state = _State.LINE_COMMENT
                out.append(" ")
                i += 2
            elif pair == "/*":
                state = _State.BLOCK_COMMENT
                depth = 1
                out.append(" ")
                i += 2
            elif char == "'":
                prev = query[i - 1] if i else ""
                before = query[i - 2] if i > 1 else ""
                # E'...' escape strings honour backslash escapes
                if prev in "eE" and not _is_identifier_char(before):
                    out.pop()
                    state = _State.ESCAPE_STRING
                else:
                    state = _State.SINGLE_QUOTE
                out.append(" ")
                i += 1
            elif char == '"':
                state = _State.DOUBLE_QUOTE
                out.append(" ")
                i += 1
            elif char == "$" and not (i and _is_identifier_char(query[i - 1])):
                match = _DOLLAR_TAG.match(query, i)
                if match:
                    dollar_tag = match.group(0)
                    state = _State.DOLLAR_QUOTE
                    out.append(" ")
                    i = match.end()
                else:
                    out.append(char)
                    i += 1
            else:
                out.append(char)
                i += 1

        elif state is _State.LINE_COMMENT:
            if char == "\n":
                state = _State.CODE
                out.append(char)
            i += 1

        elif state is _State.BLOCK_COMMENT:
            # Block comments nest in PostgreSQL
            if pair == "/*":
                depth += 1
                i += 2
            elif pair == "*/":
                depth -= 1
                if depth == 0:
                    state = _State.CODE
                i += 2
            else:
                i += 1

        elif state is _State.SINGLE_QUOTE:
            if pair == "''":
                i += 2
            elif char == "'":
                state = _State.CODE
                i += 1
            else:
                i += 1

        elif state is _State.ESCAPE_STRING:
            if char == "\\":
                i += 2
            elif pair == "''":
                i += 2
            elif char == "'":
                state = _State.CODE
                i += 1
            else:
                i += 1

        elif state is _State.DOUBLE_QUOTE:
            if pair == '""':
                i += 2
            elif char == '"':
                state = _State.CODE
                i += 1
            else:
                i += 1

        elif state is _State.DOLLAR_QUOTE:
            if query.startswith(dollar_tag, i):
                state = _State.CODE
                i += len(dollar_tag)
            else:
                i += 1

    if state not in (_State.CODE, _State.LINE_COMMENT):
        raise UnterminatedTokenError(f"Unterminated {state.name.lower().replace('_', ' ')}")

    return "".join(out)


def classify_query(query: str) -> QueryVerdict:
    """Decide whether a statement is guaranteed read-only.

    Two passes over the stripped, upper-cased text:
    1. The first whitespace-delimited token must be an allowed prefix.
    2. No write keyword may appear anywhere as a whole word. This blocks
       data-modifying CTEs such as ``WITH x AS (DELETE ...) SELECT ...``.

    Multiple statements are rejected outright.

    Args:
        query: Raw SQL text

    Returns:
        QueryVerdict with a reason when the statement is rejected
    """
    try:
        stripped = strip_non_code(query or "").strip()
    except UnterminatedTokenError as e:
        return QueryVerdict(False, f"Ambiguous query: {e}")

    if not stripped:
        return QueryVerdict(False, "Query cannot be empty")

    upper = stripped.upper()
    first_word = upper.split()[0]
    if first_word not in ALLOWED_PREFIXES:
        return QueryVerdict(False, f"Statement type not allowed: {first_word[:40]}")

    for word in _WORD.findall(upper):
        if word in WRITE_KEYWORDS:
            return QueryVerdict(False, f"{word} keyword detected (write operation)")

    body = upper[:-1] if upper.endswith(";") else upper
    if ";" in body:
        return QueryVerdict(False, "Multiple statements are not allowed")

    return QueryVerdict(True)


def is_read_only_query(query: str) -> bool:
    """Quick check if query is read-only.

    Args:
        query: Query to check

    Returns:
        True if query is classified as read-only
    """
    return classify_query(query).read_only
