import re
from typing import Optional

from sqlgateway.core.errors import ValidationError


# -----------------------------------------------------------------------------
# SAFETY MODULE
# Purpose: reject anything that is not a plain SELECT and bound the rows it returns.
# Why: callers never hold credentials, so every statement is screened here first.
#
# Checks are lexical. A banned keyword inside a string literal is still rejected,
# and nested SELECTs (subqueries, CTE bodies) are never rewritten.
# -----------------------------------------------------------------------------

BANNED_KEYWORDS = (
    "delete",
    "insert",
    "update",
    "merge",
    "alter",
    "drop",
    "create",
    "grant",
    "revoke",
    "truncate",
    "exec",
    "execute",
)

_SELECT_PREFIX = re.compile(r"^select\b", re.IGNORECASE)

_BANNED_PATTERN = re.compile(
    r"\b(?:" + "|".join(BANNED_KEYWORDS) + r")\b"  # destructive / DDL words
    r"|\b(?:xp|sp)_\w*"  # extended and system procedures
    r"|;|--|/\*",
    re.IGNORECASE,
)

# SELECT [ALL|DISTINCT] at the very start of the statement
_LEADING_SELECT = re.compile(
    r"^(?P<select>\s*select\b)(?P<modifier>\s+(?:all|distinct)\b)?\s*",
    re.IGNORECASE,
)

_EXISTING_TOP = re.compile(
    r"^\s*select\s+(?:(?:all|distinct)\s+)?top\s*(?:\(\s*(?P<paren>\d+)?|(?P<bare>\d+))",
    re.IGNORECASE,
)


def validate_select_only(sql: str) -> str:
    """
    Validate that the SQL is a single read-only SELECT.

    Args:
        sql: Raw caller-supplied statement.

    Returns:
        The statement with surrounding whitespace removed.

    Raises:
        ValidationError: not a SELECT, or a banned token is present.
    """
    statement = (sql or "").strip()
    if not _SELECT_PREFIX.match(statement):
        raise ValidationError("Only SELECT statements are allowed.")

    banned = _BANNED_PATTERN.search(statement)
    if banned:
        raise ValidationError(
            f"Prohibited keywords or comment markers found: '{banned.group(0)}'."
        )

    return statement


def has_top_clause(sql: str) -> bool:
    """True when the leading SELECT already carries TOP(n) or TOP n."""
    return _EXISTING_TOP.match(sql) is not None


def existing_top_limit(sql: str) -> Optional[int]:
    """Numeric bound of the leading TOP clause, if it is a plain literal."""
    match = _EXISTING_TOP.match(sql)
    if not match:
        return None
    literal = match.group("paren") or match.group("bare")
    return int(literal) if literal else None


def inject_top_limit(sql: str, limit: int) -> str:
    """
    Insert TOP(limit) after the leading SELECT unless one is already there.
    Why: every statement sent to the database must carry exactly one row bound.

    Applying it twice yields the same text as applying it once. When the
    SELECT has an ALL/DISTINCT modifier, TOP goes after the modifier since
    T-SQL does not accept it in front.

    Example:
        inject_top_limit("SELECT * FROM t", 10)  # "SELECT TOP(10) * FROM t"
    """
    if has_top_clause(sql):
        return sql

    def _insert(match: re.Match) -> str:
        modifier = match.group("modifier") or ""
        return f"{match.group('select')}{modifier} TOP({limit}) "

    return _LEADING_SELECT.sub(_insert, sql, count=1)


def clamp_row_limit(requested: Optional[int], default: int, maximum: int) -> int:
    """Missing or zero falls back to the default, then clamp into [1, maximum]."""
    limit = requested or default
    return max(1, min(int(limit), maximum))
