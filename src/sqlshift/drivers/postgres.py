"""PostgreSQL backend.

Scripts are sent to the server in one call, so the server parses and runs every
statement inside the migration's transaction. Failures are classified from the
driver's diagnostic fields, which carry the 1-based character position of the
error within the submitted script.
"""

from __future__ import annotations

from sqlalchemy.engine import Connection
from sqlalchemy.exc import SQLAlchemyError

from sqlshift.diagnostics import EngineDiagnostic
from sqlshift.drivers.base import SQLAlchemyDriver


class PostgresDriver(SQLAlchemyDriver):
    """Migration driver for PostgreSQL via psycopg2 or psycopg."""

    name = "postgres"

    def execute_script(self, conn: Connection, script: str) -> None:
        # Without parameters psycopg sends the script as is, so "%" needs no escaping
        conn.exec_driver_sql(script, execution_options={"no_parameters": True})

    def classify_error(self, error: SQLAlchemyError, script: str) -> EngineDiagnostic:
        orig = getattr(error, "orig", None)
        diag = getattr(orig, "diag", None)

        severity = getattr(diag, "severity", None) or "ERROR"
        code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None) or ""
        message = getattr(diag, "message_primary", None) or str(orig or error).strip()

        return EngineDiagnostic(
            severity=severity,
            code=code,
            message=message,
            position=_parse_position(getattr(diag, "statement_position", None)),
        )


def _parse_position(raw: str | int | None) -> int | None:
    if raw is None:
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        return None
