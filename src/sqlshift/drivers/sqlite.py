"""SQLite backend.

The sqlite3 module runs one statement per call and ``executescript`` commits
on its own, so scripts are split into complete statements and run one by one
on the migration's connection. SQLite reports no error offset; the position of
a failure is the start of the statement that raised it.
"""

from __future__ import annotations

import re
import sqlite3

from sqlalchemy.engine import Connection
from sqlalchemy.exc import SQLAlchemyError

from sqlshift.diagnostics import EngineDiagnostic
from sqlshift.drivers.base import SQLAlchemyDriver


def split_statements(script: str) -> list[tuple[int, str]]:
    """Split ``script`` into complete SQL statements.

    Semicolons inside string literals, identifiers, comments and trigger
    bodies do not end a statement. Whitespace-only pieces are dropped; a
    trailing statement without a semicolon is kept.

    Returns:
        ``(offset, statement)`` pairs, where ``offset`` is the 0-based index
        of the statement's first character in ``script``.
    """
    statements = []
    start = 0
    for index, char in enumerate(script):
        if char != ";":
            continue
        candidate = script[start : index + 1]
        if sqlite3.complete_statement(candidate):
            if candidate.strip(" \t\r\n;"):
                statements.append((start, candidate))
            start = index + 1

    tail = script[start:]
    if tail.strip(" \t\r\n;"):
        statements.append((start, tail))
    return statements


class SQLiteDriver(SQLAlchemyDriver):
    """Migration driver for SQLite files and in-memory databases."""

    name = "sqlite"

    def execute_script(self, conn: Connection, script: str) -> None:
        for offset, statement in split_statements(script):
            try:
                conn.exec_driver_sql(statement, execution_options={"no_parameters": True})
            except SQLAlchemyError as e:
                e.script_offset = offset
                raise

    def classify_error(self, error: SQLAlchemyError, script: str) -> EngineDiagnostic:
        orig = getattr(error, "orig", None)
        code = getattr(orig, "sqlite_errorname", None) or type(orig or error).__name__

        return EngineDiagnostic(
            severity="ERROR",
            code=code,
            message=str(orig or error).strip(),
            position=_statement_position(script, getattr(error, "script_offset", None)),
        )


_LEADING_NOISE = re.compile(r"(?:\s+|--[^\n]*(?:\n|$))*")


def _statement_position(script: str, offset: int | None) -> int | None:
    """1-based position of the first token of the statement starting at ``offset``.

    Blanks and line comments before the statement are skipped.
    """
    if offset is None or not 0 <= offset <= len(script):
        return None
    return _LEADING_NOISE.match(script, offset).end() + 1
