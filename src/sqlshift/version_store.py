"""Durable bookkeeping of installed migrations.

The version table holds one row per applied migration. Rows are inserted when
a migration is applied and deleted when it is reverted, always inside the
transaction that runs the migration's script.
"""

from __future__ import annotations

from sqlalchemy import select, update
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.schema import CreateTable

from sqlshift.database import DEFAULT_VERSION_TABLE, build_version_table
from sqlshift.errors import ConstraintError, QueryError, SchemaError
from sqlshift.logging import get_logger
from sqlshift.models import VersionRecord

log = get_logger("version_store")

NO_VERSION = -1


class VersionStore:
    """Owns the version table and every write to it."""

    def __init__(self, engine: Engine, table_name: str = DEFAULT_VERSION_TABLE) -> None:
        self.engine = engine
        self.table = build_version_table(table_name)

    def ensure_schema(self) -> None:
        """Create the version table if it does not exist.

        Raises:
            SchemaError: If the database rejects the DDL.
        """
        try:
            with self.engine.begin() as conn:
                conn.execute(CreateTable(self.table, if_not_exists=True))
        except SQLAlchemyError as e:
            raise SchemaError(f"Could not create version table {self.table.name}: {e}") from e

        log.debug("version_table_ensured", table=self.table.name)

    def record_applied(self, conn: Connection, record: VersionRecord) -> None:
        """Insert ``record`` within the caller's transaction.

        Raises:
            ConstraintError: If the version is already recorded.
            QueryError: If the insert fails for another reason.
        """
        try:
            conn.execute(self.table.insert().values(**record.model_dump()))
        except IntegrityError as e:
            raise ConstraintError(
                f"Version {record.version} is already recorded in {self.table.name}"
            ) from e
        except SQLAlchemyError as e:
            raise QueryError(f"Could not record version {record.version}: {e}") from e

    def record_execution_time(self, conn: Connection, version: int, milliseconds: int) -> None:
        """Fill in the measured duration of a version inserted by this transaction."""
        try:
            conn.execute(
                update(self.table)
                .where(self.table.c.version == version)
                .values(execution_time=milliseconds)
            )
        except SQLAlchemyError as e:
            raise QueryError(f"Could not record execution time of version {version}: {e}") from e

    def record_reverted(self, conn: Connection, version: int) -> int:
        """Delete the row for ``version`` within the caller's transaction.

        Returns:
            Number of rows deleted. Zero means nothing was recorded, which is
            not an error.

        Raises:
            QueryError: If the delete fails.
        """
        try:
            result = conn.execute(self.table.delete().where(self.table.c.version == version))
        except SQLAlchemyError as e:
            raise QueryError(f"Could not remove version {version}: {e}") from e
        return result.rowcount

    def current_version(self) -> int:
        """Highest ``version_rank`` minus one, or ``NO_VERSION`` when empty.

        Raises:
            QueryError: If the table cannot be read.
        """
        query = (
            select(self.table.c.version_rank)
            .order_by(self.table.c.version_rank.desc())
            .limit(1)
        )
        try:
            with self.engine.connect() as conn:
                rank = conn.execute(query).scalar()
        except SQLAlchemyError as e:
            raise QueryError(f"Could not read {self.table.name}: {e}") from e

        if rank is None:
            return NO_VERSION
        return rank - 1

    def list_applied(self) -> list[VersionRecord]:
        """All recorded versions in installed order.

        Raises:
            QueryError: If the table cannot be read.
        """
        query = select(self.table).order_by(
            self.table.c.installed_rank, self.table.c.version
        )
        try:
            with self.engine.connect() as conn:
                rows = conn.execute(query).fetchall()
        except SQLAlchemyError as e:
            raise QueryError(f"Could not read {self.table.name}: {e}") from e

        return [VersionRecord.model_validate(dict(row._mapping)) for row in rows]
