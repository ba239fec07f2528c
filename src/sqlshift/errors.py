"""Exception hierarchy for migration execution.

Errors raised while running a single migration are never propagated out of
``MigrationExecutor.execute``; they are wrapped in ``Failed`` events on the run
stream. Errors raised by driver initialization and version queries propagate to
the caller.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from sqlshift.diagnostics import EngineDiagnostic


class MigrationError(Exception):
    """Base class for all sqlshift errors."""


class ConnectivityError(MigrationError):
    """The target database could not be opened or reached."""


class UnsupportedDriverError(MigrationError):
    """No driver is registered for the URL scheme."""


class SchemaError(MigrationError):
    """The version table could not be ensured."""


class TransactionError(MigrationError):
    """Begin or commit failed."""


class ReadError(MigrationError):
    """Migration content could not be loaded or checksummed."""


class ConstraintError(MigrationError):
    """A bookkeeping write violated the version table's constraints."""


class QueryError(MigrationError):
    """Reading or writing the version table failed for another reason."""


class ScriptExecutionError(MigrationError):
    """The migration body failed.

    Attributes:
        diagnostic: Engine-neutral description of the failure.
        line: 1-based line of the failure in the script, if known.
        column: 1-based column of the failure in the script, if known.
    """

    def __init__(
        self,
        message: str,
        diagnostic: EngineDiagnostic,
        line: int | None = None,
        column: int | None = None,
    ) -> None:
        super().__init__(message)
        self.diagnostic = diagnostic
        self.line = line
        self.column = column


class RollbackError(MigrationError):
    """Rolling back after an earlier failure also failed.

    The transaction or connection may be left in an inconsistent state.

    Attributes:
        cause: The failure that triggered the rollback.
    """

    def __init__(self, message: str, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.cause = cause
