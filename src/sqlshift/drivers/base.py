"""Driver interface and the SQLAlchemy-backed base implementation.

An orchestrator talks to every backend through the same method set:

    initialize(url)       open the shared engine, verify it, ensure the version table
    close()               dispose of the engine
    filename_extension()  extension of scripts this backend runs
    run(file)             execute one migration, returning its event stream
    current_version()     highest applied rank minus one, or -1

Backends subclass ``SQLAlchemyDriver`` and supply ``execute_script`` and
``classify_error``; the transaction protocol lives in ``MigrationExecutor``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Protocol, runtime_checkable

from sqlalchemy import text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from sqlshift.database import DEFAULT_VERSION_TABLE, get_engine
from sqlshift.diagnostics import DEFAULT_CONTEXT_LINES, EngineDiagnostic, ErrorDiagnoser
from sqlshift.errors import ConnectivityError, MigrationError
from sqlshift.executor import MigrationExecutor, RunStream, current_principal
from sqlshift.logging import get_logger
from sqlshift.models import MigrationFile
from sqlshift.version_store import VersionStore

log = get_logger("driver")


@runtime_checkable
class Driver(Protocol):
    """Method set every migration backend provides."""

    def initialize(self, url: str) -> None: ...

    def close(self) -> None: ...

    def filename_extension(self) -> str: ...

    def run(self, file: MigrationFile) -> RunStream: ...

    def current_version(self) -> int: ...


class SQLAlchemyDriver(ABC):
    """Shared lifecycle for backends reached through a SQLAlchemy engine."""

    name = "sql"

    def __init__(
        self,
        table_name: str = DEFAULT_VERSION_TABLE,
        context_lines: int = DEFAULT_CONTEXT_LINES,
        installed_by: str | None = None,
        echo: bool = False,
    ) -> None:
        self.table_name = table_name
        self.context_lines = context_lines
        self.installed_by = installed_by
        self.echo = echo
        self.engine: Engine | None = None
        self.store: VersionStore | None = None
        self.executor: MigrationExecutor | None = None

    def initialize(self, url: str) -> None:
        """Open the engine, check the target is reachable and ensure the version table.

        Raises:
            ConnectivityError: If the database cannot be opened or reached.
            SchemaError: If the version table cannot be created.
        """
        if self.engine is not None:
            raise MigrationError(f"{self.name} driver is already initialized")

        try:
            engine = get_engine(url, echo=self.echo)
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except (SQLAlchemyError, ImportError, ValueError) as e:
            raise ConnectivityError(f"Could not reach database: {e}") from e

        store = VersionStore(engine, self.table_name)
        try:
            store.ensure_schema()
        except MigrationError:
            engine.dispose()
            raise

        self.engine = engine
        self.store = store
        self.executor = MigrationExecutor(
            engine,
            store,
            backend=self,
            diagnoser=ErrorDiagnoser(self.context_lines),
            installed_by=self.installed_by or current_principal(),
        )
        log.info("driver_initialized", driver=self.name, table=self.table_name)

    def close(self) -> None:
        """Dispose of the engine. Safe to call once after ``initialize``."""
        if self.engine is None:
            return
        self.engine.dispose()
        self.engine = None
        self.store = None
        self.executor = None
        log.info("driver_closed", driver=self.name)

    def filename_extension(self) -> str:
        return "sql"

    def run(self, file: MigrationFile) -> RunStream:
        """Execute one migration; see ``MigrationExecutor``."""
        return self._require_executor().run(file)

    def current_version(self) -> int:
        """Highest applied rank minus one, or -1 when nothing is applied."""
        return self._require_store().current_version()

    def _require_store(self) -> VersionStore:
        if self.store is None:
            raise MigrationError(f"{self.name} driver is not initialized")
        return self.store

    def _require_executor(self) -> MigrationExecutor:
        if self.executor is None:
            raise MigrationError(f"{self.name} driver is not initialized")
        return self.executor

    @abstractmethod
    def execute_script(self, conn: Connection, script: str) -> None:
        """Run a possibly multi-statement script on ``conn``."""

    @abstractmethod
    def classify_error(self, error: SQLAlchemyError, script: str) -> EngineDiagnostic:
        """Describe a failure of ``script`` independently of the engine."""
