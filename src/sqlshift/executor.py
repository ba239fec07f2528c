"""Transactional execution of a single migration.

Key concepts:
- RunStream: single-producer, single-consumer queue of run events
- ScriptBackend: driver hooks for running a script and classifying its errors
- MigrationExecutor: begins a transaction, writes bookkeeping, runs the script,
  then commits or rolls back as one unit

A run reports through its stream only. It emits ``Started(file)`` first, then
at most one ``Failed`` for the first failure (plus a second ``Failed`` carrying
a ``RollbackError`` if the cleanup rollback fails too), then closes.
"""

from __future__ import annotations

import getpass
import queue
import threading
import time
from collections.abc import Callable, Iterator
from typing import Protocol

from sqlalchemy.engine import Connection, Engine, RootTransaction
from sqlalchemy.exc import SQLAlchemyError

from sqlshift.diagnostics import EngineDiagnostic, ErrorDiagnoser
from sqlshift.errors import MigrationError, RollbackError, ScriptExecutionError, TransactionError
from sqlshift.logging import get_logger
from sqlshift.models import Direction, Failed, MigrationFile, RunEvent, Started, VersionRecord
from sqlshift.version_store import VersionStore

log = get_logger("executor")

UNKNOWN_PRINCIPAL = "unknown"


def current_principal() -> str:
    """Name of the OS user running this process, for audit records."""
    try:
        return getpass.getuser()
    except (OSError, KeyError):
        log.warning("principal_unresolved")
        return UNKNOWN_PRINCIPAL


class ScriptBackend(Protocol):
    """Engine-specific hooks used by the executor."""

    def execute_script(self, conn: Connection, script: str) -> None:
        """Run a possibly multi-statement script on ``conn``."""
        ...

    def classify_error(self, error: SQLAlchemyError, script: str) -> EngineDiagnostic:
        """Describe a failure of ``script`` independently of the engine."""
        ...


class RunStream:
    """Events of one migration run, readable while the run is in flight.

    Iterating yields events until the producer closes the stream.
    """

    _CLOSED = object()

    def __init__(self) -> None:
        self._queue: queue.Queue = queue.Queue()
        self._closed = False

    def emit(self, event: RunEvent) -> None:
        self._queue.put(event)

    def close(self) -> None:
        self._queue.put(self._CLOSED)

    @property
    def closed(self) -> bool:
        """True once the consumer has read the end of the stream."""
        return self._closed

    def get(self, timeout: float | None = None) -> RunEvent | None:
        """Next event, or None once the stream is closed.

        Raises:
            queue.Empty: If ``timeout`` passes without an event.
        """
        if self._closed:
            return None
        item = self._queue.get(timeout=timeout)
        if item is self._CLOSED:
            self._closed = True
            return None
        return item

    def __iter__(self) -> Iterator[RunEvent]:
        while True:
            event = self.get()
            if event is None:
                return
            yield event

    def collect(self, timeout: float | None = None) -> list[RunEvent]:
        """Read every remaining event until the stream closes."""
        events = []
        while True:
            event = self.get(timeout=timeout)
            if event is None:
                return events
            events.append(event)


class MigrationExecutor:
    """Runs one migration at a time as an atomic unit.

    Holds no state between runs beyond the shared engine.
    """

    def __init__(
        self,
        engine: Engine,
        store: VersionStore,
        backend: ScriptBackend,
        diagnoser: ErrorDiagnoser | None = None,
        installed_by: str | None = None,
    ) -> None:
        self.engine = engine
        self.store = store
        self.backend = backend
        self.diagnoser = diagnoser or ErrorDiagnoser()
        self.installed_by = installed_by or current_principal()

    def run(self, file: MigrationFile) -> RunStream:
        """Execute ``file`` on a background thread.

        Returns:
            The stream the run reports to. It is closed when the run ends.
        """
        stream = RunStream()
        thread = threading.Thread(
            target=self._run_into,
            args=(file, stream),
            name=f"migration-{file.version}-{file.direction.value}",
            daemon=True,
        )
        thread.start()
        return stream

    def _run_into(self, file: MigrationFile, stream: RunStream) -> None:
        failed = False

        def emit(event: RunEvent) -> None:
            nonlocal failed
            failed = failed or isinstance(event, Failed)
            stream.emit(event)

        try:
            self.execute(file, emit)
        except Exception as e:
            # A run that ends without Failed counts as committed
            log.exception("migration_crashed", version=file.version, direction=file.direction.value)
            if not failed:
                stream.emit(Failed(MigrationError(f"Migration {file.version} failed unexpectedly: {e}")))
        finally:
            stream.close()

    def execute(self, file: MigrationFile, emit: Callable[[RunEvent], None]) -> bool:
        """Execute ``file`` on the calling thread, reporting through ``emit``.

        Returns:
            True if the migration committed.
        """
        emit(Started(file))
        log.info(
            "migration_started",
            version=file.version,
            direction=file.direction.value,
            script=file.file_name,
        )

        try:
            conn = self.engine.connect()
        except SQLAlchemyError as e:
            return self._fail(emit, file, TransactionError(f"Could not open connection: {e}"))

        try:
            return self._execute_on(conn, file, emit)
        finally:
            conn.close()

    def _execute_on(
        self,
        conn: Connection,
        file: MigrationFile,
        emit: Callable[[RunEvent], None],
    ) -> bool:
        try:
            tx = conn.begin()
        except SQLAlchemyError as e:
            return self._fail(emit, file, TransactionError(f"Could not begin transaction: {e}"))

        try:
            file.read_content()
            script = file.text
        except MigrationError as e:
            return self._abort(emit, file, tx, e)

        try:
            if file.direction == Direction.UP:
                self.store.record_applied(conn, VersionRecord.for_file(file, self.installed_by))
            else:
                if self.store.record_reverted(conn, file.version) == 0:
                    log.warning("revert_without_record", version=file.version)
        except MigrationError as e:
            return self._abort(emit, file, tx, e)

        started = time.monotonic()
        try:
            self.backend.execute_script(conn, script)
        except Exception as e:
            return self._abort(emit, file, tx, self._script_error(e, script))
        elapsed_ms = int((time.monotonic() - started) * 1000)

        if file.direction == Direction.UP:
            try:
                self.store.record_execution_time(conn, file.version, elapsed_ms)
            except MigrationError as e:
                return self._abort(emit, file, tx, e)

        try:
            tx.commit()
        except SQLAlchemyError as e:
            return self._fail(emit, file, TransactionError(f"Could not commit: {e}"))

        log.info(
            "migration_committed",
            version=file.version,
            direction=file.direction.value,
            execution_time_ms=elapsed_ms,
        )
        return True

    def _script_error(self, error: Exception, script: str) -> ScriptExecutionError:
        diagnostic = None
        if isinstance(error, SQLAlchemyError):
            try:
                diagnostic = self.backend.classify_error(error, script)
            except Exception:
                log.exception("classify_error_failed")
        if diagnostic is None:
            # Unpositioned: the engine gave nothing to anchor the failure to
            diagnostic = EngineDiagnostic(
                severity="ERROR",
                code=type(getattr(error, "orig", None) or error).__name__,
                message=str(error).strip(),
            )
        return self.diagnoser.diagnose(script, diagnostic)

    def _fail(
        self,
        emit: Callable[[RunEvent], None],
        file: MigrationFile,
        error: MigrationError,
    ) -> bool:
        log.error(
            "migration_failed",
            version=file.version,
            direction=file.direction.value,
            error_type=type(error).__name__,
            error=str(error),
        )
        emit(Failed(error))
        return False

    def _abort(
        self,
        emit: Callable[[RunEvent], None],
        file: MigrationFile,
        tx: RootTransaction,
        error: MigrationError,
    ) -> bool:
        self._fail(emit, file, error)
        try:
            tx.rollback()
        except SQLAlchemyError as e:
            log.error("rollback_failed", version=file.version, error=str(e))
            emit(Failed(RollbackError(f"Rollback of version {file.version} failed: {e}", cause=error)))
        return False
