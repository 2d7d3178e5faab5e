"""Pure text helpers used by the query builder.

These functions work on SQL fragments as plain strings. They are
heuristics, not a parser: anything they do not recognise is returned
unchanged.
"""

from __future__ import annotations

import re
from typing import Any

from relata.exceptions import ReturningEmulationError

# Tokens that, when they follow a bare word, mark that word as a column.
COMPARISON_TOKENS = frozenset(
    {"=", "!=", "<>", ">", "<", ">=", "<=", "LIKE", "ILIKE", "IN", "NOT", "IS", "BETWEEN"}
)

# Tokens that, when they precede a bare word, mark that word as a column.
CONNECTIVE_TOKENS = frozenset({"AND", "OR", "WHERE", "NOT", "ON", "HAVING"})

KEYWORDS = COMPARISON_TOKENS | CONNECTIVE_TOKENS | {"NULL", "TRUE", "FALSE", "EXISTS"}

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def split_fields(text: str) -> list[str]:
    """Split a comma separated list, ignoring commas inside parentheses or quotes.

    Example:
        >>> split_fields("id, COALESCE(a, b), 'x,y'")
        ['id', 'COALESCE(a, b)', "'x,y'"]
    """
    parts: list[str] = []
    depth = 0
    quote: str | None = None
    current: list[str] = []

    for char in text:
        if quote:
            current.append(char)
            if char == quote:
                quote = None
            continue
        if char in ("'", '"'):
            quote = char
        elif char == "(":
            depth += 1
        elif char == ")":
            depth = max(depth - 1, 0)
        elif char == "," and depth == 0:
            parts.append("".join(current).strip())
            current = []
            continue
        current.append(char)

    tail = "".join(current).strip()
    if tail or parts:
        parts.append(tail)
    return [p for p in parts if p]


def is_plain_field(field: str) -> bool:
    """Whether a SELECT list entry is a bare column name that may be qualified."""
    if not field or "(" in field or "*" in field or "." in field:
        return False
    return not any(token.upper() == "AS" for token in field.split())


def qualify_fields(fields: list[str], table: str) -> list[str]:
    """Prefix bare SELECT fields with ``table``.

    Expressions, wildcards, already qualified names and aliased entries are
    returned untouched.

    Example:
        >>> qualify_fields(["id", "COUNT(*)", "p.name", "email AS mail"], "users")
        ['users.id', 'COUNT(*)', 'p.name', 'email AS mail']
    """
    if not table:
        return list(fields)
    return [f"{table}.{f}" if is_plain_field(f) else f for f in fields]


def _is_column_token(token: str) -> bool:
    if not _IDENTIFIER.match(token):
        return False
    if token.isdigit():
        return False
    return token.upper() not in KEYWORDS


def split_tokens(text: str) -> list[str]:
    """Split on whitespace outside quotes; quoted spans keep their spacing.

    Example:
        >>> split_tokens("name = 'a  b' AND x")
        ['name', '=', "'a  b'", 'AND', 'x']
    """
    tokens: list[str] = []
    quote: str | None = None
    current: list[str] = []

    for char in text:
        if quote:
            current.append(char)
            if char == quote:
                quote = None
            continue
        if char.isspace():
            if current:
                tokens.append("".join(current))
                current = []
            continue
        if char in ("'", '"'):
            quote = char
        current.append(char)

    if current:
        tokens.append("".join(current))
    return tokens


def qualify_condition(condition: str, table: str) -> str:
    """Qualify bare column names in a condition with ``table``.

    A token is treated as a column only when the next token is a comparison
    or membership operator, or the previous token is a logical connective.
    Placeholders, quoted literals, function calls and dotted names are
    never touched. Whitespace outside quotes is normalised to single spaces.

    Example:
        >>> qualify_condition("id = $1 AND name = $2", "users")
        'users.id = $1 AND users.name = $2'
        >>> qualify_condition("profiles.id = $1", "users")
        'profiles.id = $1'
    """
    tokens = split_tokens(condition)
    if not table:
        return " ".join(tokens)

    out: list[str] = []
    for i, token in enumerate(tokens):
        nxt = tokens[i + 1].upper() if i + 1 < len(tokens) else ""
        prev = tokens[i - 1].upper() if i > 0 else ""
        if _is_column_token(token) and (nxt in COMPARISON_TOKENS or prev in CONNECTIVE_TOKENS):
            out.append(f"{table}.{token}")
        else:
            out.append(token)
    return " ".join(out)


def extract_where(sql: str) -> str:
    """Return the text after the single ``WHERE`` keyword of ``sql``.

    Raises:
        ReturningEmulationError: If the statement has no WHERE clause or more
            than one (e.g. a subquery), so it cannot be re-applied safely.
    """
    parts = sql.split(" WHERE ")
    if len(parts) != 2:
        raise ReturningEmulationError(
            f"cannot emulate RETURNING: expected exactly one WHERE clause in {sql!r}"
        )
    return parts[1].strip().rstrip(";").rstrip()


def literal(value: Any) -> str:
    """Render ``value`` as an inline SQL literal.

    Only the non-parameterised builder helpers use this. Values are quoted,
    not bound, so never pass untrusted input through it.
    """
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, int | float):
        return str(value)
    text = str(value).replace("'", "''")
    return f"'{text}'"


def to_snake_case(name: str) -> str:
    """``UserProfile`` -> ``user_profile``."""
    return _CAMEL_BOUNDARY.sub("_", name).lower()


def singular(name: str) -> str:
    """Naive singular form used for alias prefixes: strips one trailing ``s``."""
    return name[:-1] if name.endswith("s") and len(name) > 1 else name
