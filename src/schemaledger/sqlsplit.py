"""Split SQL migration bodies into individual statements.

SQLAlchemy executes one statement per call, so a migration file has to be
cut on top-level semicolons. The scanner understands enough lexical
structure to leave alone semicolons inside:

- single-quoted string literals ('it''s')
- double-quoted identifiers
- -- line comments and /* block comments */
- PostgreSQL dollar-quoted bodies ($$ ... $$, $fn$ ... $fn$), as used by
  DO blocks and function definitions
- SQLite trigger bodies (CREATE TRIGGER ... BEGIN ... END)

File-level transaction control (BEGIN; ... COMMIT;) is dropped by
strip_transaction_control because the runner wraps each migration in its
own transaction.
"""

from __future__ import annotations

import re

_DOLLAR_TAG = re.compile(r"\$([A-Za-z_][A-Za-z0-9_]*)?\$")
_WORD = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
_TRANSACTION_CONTROL = re.compile(
    r"^(?:BEGIN(?:\s+(?:TRANSACTION|WORK|DEFERRED|IMMEDIATE|EXCLUSIVE)(?:\s+TRANSACTION)?)?"
    r"|START\s+TRANSACTION(?:\s+.*)?"
    r"|COMMIT(?:\s+(?:TRANSACTION|WORK))?"
    r"|END(?:\s+(?:TRANSACTION|WORK))?)$",
    re.IGNORECASE | re.DOTALL,
)


def split_statements(sql: str) -> list[str]:
    """Split SQL text into statements on top-level semicolons.

    Args:
        sql: Raw SQL text, possibly with comments.

    Returns:
        Statements without their trailing semicolons. Statements consisting
        only of comments or whitespace are dropped.
    """
    statements: list[str] = []
    start = 0
    i = 0
    n = len(sql)
    head: list[str] = []  # first keywords of the current statement
    block_depth = 0  # BEGIN/CASE ... END nesting inside a trigger body

    while i < n:
        ch = sql[i]
        nxt = sql[i + 1] if i + 1 < n else ""

        if ch == "-" and nxt == "-":
            end = sql.find("\n", i)
            i = n if end == -1 else end + 1
            continue

        if ch == "/" and nxt == "*":
            end = sql.find("*/", i + 2)
            i = n if end == -1 else end + 2
            continue

        if ch in ("'", '"'):
            i = _skip_quoted(sql, i, ch)
            continue

        if ch == "$":
            match = _DOLLAR_TAG.match(sql, i)
            if match and not _is_word_char(sql, i - 1):
                tag = match.group(0)
                end = sql.find(tag, match.end())
                i = n if end == -1 else end + len(tag)
                continue

        if ch.isalpha() or ch == "_":
            match = _WORD.match(sql, i)
            word = match.group(0).upper()
            if len(head) < 3:
                head.append(word)
            if _is_trigger(head):
                if word in ("BEGIN", "CASE"):
                    block_depth += 1
                elif word == "END" and block_depth:
                    block_depth -= 1
            i = match.end()
            continue

        if ch == ";" and block_depth == 0:
            _append(statements, sql[start:i])
            start = i + 1
            head = []

        i += 1

    _append(statements, sql[start:])
    return statements


def strip_transaction_control(statements: list[str]) -> list[str]:
    """Remove BEGIN/COMMIT style statements.

    Args:
        statements: Output of split_statements.

    Returns:
        The statements that are not transaction control.
    """
    return [s for s in statements if not is_transaction_control(s)]


def is_transaction_control(statement: str) -> bool:
    """Whether a statement only opens or closes a transaction."""
    return bool(_TRANSACTION_CONTROL.match(strip_comments(statement).strip()))


def strip_comments(sql: str) -> str:
    """Remove -- and /* */ comments outside of quoted text."""
    out: list[str] = []
    i = 0
    n = len(sql)

    while i < n:
        ch = sql[i]
        nxt = sql[i + 1] if i + 1 < n else ""

        if ch == "-" and nxt == "-":
            end = sql.find("\n", i)
            i = n if end == -1 else end
            continue
        if ch == "/" and nxt == "*":
            end = sql.find("*/", i + 2)
            i = n if end == -1 else end + 2
            out.append(" ")
            continue
        if ch in ("'", '"'):
            end = _skip_quoted(sql, i, ch)
            out.append(sql[i:end])
            i = end
            continue

        out.append(ch)
        i += 1

    return "".join(out)


def _skip_quoted(sql: str, i: int, quote: str) -> int:
    """Return the index just past the quoted run starting at i."""
    j = i + 1
    n = len(sql)
    while j < n:
        if sql[j] == quote:
            if j + 1 < n and sql[j + 1] == quote:
                j += 2
                continue
            return j + 1
        j += 1
    return n


def _is_word_char(sql: str, i: int) -> bool:
    return i >= 0 and (sql[i].isalnum() or sql[i] == "_")


def _is_trigger(head: list[str]) -> bool:
    # CREATE TRIGGER, CREATE TEMP TRIGGER, CREATE TEMPORARY TRIGGER
    return len(head) >= 2 and head[0] == "CREATE" and "TRIGGER" in head[1:3]


def _append(statements: list[str], chunk: str) -> None:
    statement = chunk.strip()
    if statement and strip_comments(statement).strip():
        statements.append(statement)
