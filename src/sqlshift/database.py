"""Version table schema and engine construction.

Uses SQLAlchemy Core (not ORM) for explicit SQL control.
"""

from __future__ import annotations

from sqlalchemy import (
    Boolean,
    Column,
    Integer,
    MetaData,
    String,
    Table,
    create_engine,
    event,
)
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.pool import StaticPool

DEFAULT_VERSION_TABLE = "schema_version"


def build_version_table(name: str = DEFAULT_VERSION_TABLE) -> Table:
    """Define the version table under ``name``.

    Each call uses its own MetaData so differently named tables never clash.
    Column order matches the persisted layout.
    """
    return Table(
        name,
        MetaData(),
        Column("version", Integer, primary_key=True, autoincrement=False),
        Column("version_rank", Integer),
        Column("installed_rank", Integer),
        Column("description", String(500)),
        Column("type", String(500)),
        Column("script", String(500)),
        Column("checksum", Integer),
        Column("installed_by", String(500)),
        Column("execution_time", Integer),  # Milliseconds
        Column("success", Boolean),
    )


def get_engine(url: str, echo: bool = False) -> Engine:
    """Create a SQLAlchemy engine for ``url``.

    Postgres URLs given as ``postgres://`` are normalized. SQLite engines are
    set up so that BEGIN is emitted explicitly, which makes DDL in a
    migration script part of the surrounding transaction.
    """
    if url.startswith("postgres://"):
        url = "postgresql://" + url[len("postgres://"):]

    parsed = make_url(url)
    if parsed.get_backend_name() == "sqlite":
        # Runs execute on worker threads
        options = {"connect_args": {"check_same_thread": False}}
        if parsed.database in (None, "", ":memory:"):
            # One shared connection, or each thread would see its own database
            options["poolclass"] = StaticPool
        engine = create_engine(url, echo=echo, **options)
        _enable_sqlite_transactions(engine)
    else:
        engine = create_engine(url, echo=echo)

    return engine


def _enable_sqlite_transactions(engine: Engine) -> None:
    # pysqlite otherwise defers BEGIN until the first DML statement
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")
