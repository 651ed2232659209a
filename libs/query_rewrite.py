# =============================================================================
# Query Rewrite Utilities
# =============================================================================
# Parameter binding and delete-statement rewriting for analytical queries.
# The query engine is read-only over the columnar store, so delete-intent
# statements are turned into selections of the artifacts to remove.
# =============================================================================

"""
SQL helpers for analytical query tasks.

This module provides functions for:
- Escaping Python values as SQL literals
- Binding ``$args.name`` / ``$source.name`` placeholders
- Unwrapping ``$join_table(name)`` table references
- Rewriting ``DELETE A FROM T A WHERE P`` into a read-only selection
"""

import math
import re
from typing import Any, Mapping, Optional

__all__ = [
    "QueryRewriteError",
    "escape_sql_value",
    "bind_parameters",
    "unwrap_join_tables",
    "is_delete_intent",
    "rewrite_delete_statement",
    "DELETION_COLUMNS",
]


# Columns projected by a rewritten delete statement
DELETION_COLUMNS = ("artifactLocation", "relationId")

_JOIN_TABLE_PATTERN = re.compile(r"\$join_table\(\s*([A-Za-z_][A-Za-z0-9_]*)\s*\)")

_DELETE_PATTERN = re.compile(
    r"""
    ^\s*DELETE\s+(?P<target>[A-Za-z_]\w*)
    \s+FROM\s+(?P<table>\$join_table\(\s*[A-Za-z_]\w*\s*\)|[A-Za-z_][\w.]*)
    \s+(?:AS\s+)?(?P<alias>[A-Za-z_]\w*)
    \s+WHERE\s+(?P<predicate>.+?)
    \s*;?\s*$
    """,
    re.IGNORECASE | re.DOTALL | re.VERBOSE,
)

_RESERVED_ALIASES = frozenset(["where", "as", "from", "delete"])


class QueryRewriteError(ValueError):
    """A delete-intent statement that cannot be rewritten (missing alias or wrapper)."""


def escape_sql_value(value: Any) -> str:
    """
    Render a Python value as a SQL literal.

    Strings are single-quoted with embedded quotes doubled; the content is
    otherwise preserved.

    Raises:
        ValueError: For non-finite numbers and unsupported types

    Examples:
        >>> escape_sql_value("O'Brien")
        "'O''Brien'"
        >>> escape_sql_value(None)
        'NULL'
        >>> escape_sql_value(True)
        'true'
    """
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        if isinstance(value, float) and not math.isfinite(value):
            raise ValueError(f"Invalid number value: {value!r}")
        return repr(value)
    if isinstance(value, str):
        return "'" + value.replace("'", "''") + "'"
    raise ValueError(f"Unsupported data type for SQL parameter: {type(value).__name__}")


def unwrap_join_tables(statement: str) -> str:
    """
    Replace ``$join_table(name)`` references with the bare table name.

    Example:
        >>> unwrap_join_tables("SELECT * FROM $join_table(follows) f")
        'SELECT * FROM follows f'
    """
    return _JOIN_TABLE_PATTERN.sub(r"\1", statement)


def bind_parameters(
    statement: str,
    arguments: Optional[Mapping[str, Any]] = None,
    source: Optional[Mapping[str, Any]] = None,
) -> str:
    """
    Substitute ``$args.<key>`` and ``$source.<key>`` placeholders.

    Arguments bind both placeholder forms; ``source`` values bind only
    ``$source.<key>`` and take precedence there. Longer keys are substituted
    first so ``$args.id`` never clobbers ``$args.id2``.

    Example:
        >>> bind_parameters("SELECT * FROM user WHERE id = $args.id", {"id": "u1"})
        "SELECT * FROM user WHERE id = 'u1'"
    """
    replacements: dict[str, str] = {}
    for key, value in (arguments or {}).items():
        literal = escape_sql_value(value)
        replacements[f"$args.{key}"] = literal
        replacements[f"$source.{key}"] = literal
    for key, value in (source or {}).items():
        replacements[f"$source.{key}"] = escape_sql_value(value)

    for placeholder in sorted(replacements, key=len, reverse=True):
        statement = statement.replace(placeholder, replacements[placeholder])
    return statement


def is_delete_intent(statement: str) -> bool:
    """Whether a statement asks to remove rows (starts with DELETE)."""
    return statement.lstrip().upper().startswith("DELETE")


def rewrite_delete_statement(statement: str) -> str:
    """
    Rewrite a delete statement into a selection of the artifacts to remove.

    ``DELETE A FROM T A WHERE P`` becomes
    ``SELECT A.artifactLocation, A.relationId FROM T A WHERE P``. The table may
    be written as ``$join_table(T)``. The alias is mandatory so the projected
    columns can be qualified.

    Raises:
        QueryRewriteError: If the statement lacks the alias, the alias does
            not match the DELETE target, or there is no WHERE predicate

    Example:
        >>> rewrite_delete_statement("DELETE A FROM T A WHERE A.x = 5")
        'SELECT A.artifactLocation, A.relationId FROM T A WHERE A.x = 5'
    """
    match = _DELETE_PATTERN.match(statement)
    if match is None:
        raise QueryRewriteError(
            "Delete statements must have the form "
            "'DELETE <alias> FROM <table> <alias> WHERE <predicate>': "
            f"{statement!r}"
        )

    target = match.group("target")
    alias = match.group("alias")
    if alias.lower() in _RESERVED_ALIASES:
        raise QueryRewriteError(f"Delete statement has no table alias: {statement!r}")
    if target.lower() != alias.lower():
        raise QueryRewriteError(
            f"DELETE target '{target}' does not match table alias '{alias}'"
        )

    table = unwrap_join_tables(match.group("table"))
    columns = ", ".join(f"{alias}.{column}" for column in DELETION_COLUMNS)
    return f"SELECT {columns} FROM {table} {alias} WHERE {match.group('predicate')}"
