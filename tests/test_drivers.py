"""Tests for driver lifecycle, lookup and engine-specific error handling."""

import os
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from sqlalchemy import inspect
from sqlalchemy.exc import ProgrammingError

from sqlshift.drivers import (
    Driver,
    PostgresDriver,
    SQLiteDriver,
    driver_for_url,
)
from sqlshift.drivers.sqlite import split_statements
from sqlshift.errors import (
    ConnectivityError,
    MigrationError,
    ScriptExecutionError,
    UnsupportedDriverError,
)
from sqlshift.models import Direction, Failed


# =============================================================================
# Lookup
# =============================================================================


class TestDriverForUrl:
    """Tests for choosing a driver by URL scheme."""

    @pytest.mark.parametrize(
        "url, expected",
        [
            ("sqlite:///app.db", SQLiteDriver),
            ("sqlite://", SQLiteDriver),
            ("postgresql://user@localhost/app", PostgresDriver),
            ("postgresql+psycopg2://user@localhost/app", PostgresDriver),
            ("postgres://user@localhost/app", PostgresDriver),
        ],
    )
    def test_known_schemes(self, url: str, expected: type) -> None:
        assert isinstance(driver_for_url(url), expected)

    def test_unknown_scheme(self) -> None:
        with pytest.raises(UnsupportedDriverError):
            driver_for_url("mysql://user@localhost/app")

    def test_invalid_url(self) -> None:
        with pytest.raises(UnsupportedDriverError):
            driver_for_url("not a url")

    def test_options_are_passed(self) -> None:
        driver = driver_for_url("sqlite://", table_name="history", installed_by="ci")
        assert driver.table_name == "history"
        assert driver.installed_by == "ci"


# =============================================================================
# Lifecycle
# =============================================================================


class TestLifecycle:
    """Tests for initialize/close."""

    def test_conforms_to_driver_interface(self) -> None:
        assert isinstance(SQLiteDriver(), Driver)
        assert isinstance(PostgresDriver(), Driver)

    def test_filename_extension(self) -> None:
        assert SQLiteDriver().filename_extension() == "sql"
        assert PostgresDriver().filename_extension() == "sql"

    def test_initialize_creates_version_table(self, database_url: str) -> None:
        driver = SQLiteDriver()
        driver.initialize(database_url)
        try:
            assert "schema_version" in inspect(driver.engine).get_table_names()
            assert driver.current_version() == -1
        finally:
            driver.close()

    def test_initialize_twice_on_same_database(self, database_url: str) -> None:
        for _ in range(2):
            driver = SQLiteDriver()
            driver.initialize(database_url)
            driver.close()

    def test_initialize_unreachable_database(self, tmp_path) -> None:
        url = f"sqlite:///{tmp_path / 'missing' / 'dir' / 'app.db'}"

        with pytest.raises(ConnectivityError):
            SQLiteDriver().initialize(url)

    def test_initialize_missing_dbapi(self) -> None:
        with pytest.raises(ConnectivityError):
            SQLiteDriver().initialize("postgresql+nosuchdriver://localhost/app")

    def test_initialize_already_initialized(self, driver, database_url: str) -> None:
        with pytest.raises(MigrationError):
            driver.initialize(database_url)

    def test_use_before_initialize(self, make_file) -> None:
        driver = SQLiteDriver()

        with pytest.raises(MigrationError):
            driver.current_version()
        with pytest.raises(MigrationError):
            driver.run(make_file(1, "SELECT 1;"))

    def test_close_is_safe_when_not_initialized(self) -> None:
        SQLiteDriver().close()

    def test_close_releases_engine(self, database_url: str) -> None:
        driver = SQLiteDriver()
        driver.initialize(database_url)
        driver.close()

        assert driver.engine is None
        with pytest.raises(MigrationError):
            driver.current_version()

    def test_in_memory_database_is_shared_with_runs(self, make_file) -> None:
        driver = SQLiteDriver(installed_by="tester")
        driver.initialize("sqlite://")
        try:
            events = driver.run(make_file(1, "CREATE TABLE t (id INTEGER);")).collect(timeout=10)
            assert not any(isinstance(e, Failed) for e in events)
            assert driver.current_version() == 0
        finally:
            driver.close()


# =============================================================================
# SQLite statement splitting and classification
# =============================================================================


class TestSplitStatements:
    """Tests for splitting SQLite scripts."""

    def test_splits_on_semicolons(self) -> None:
        assert split_statements("SELECT 1; SELECT 2;") == [(0, "SELECT 1;"), (9, " SELECT 2;")]

    def test_semicolon_in_string_literal(self) -> None:
        script = "INSERT INTO t VALUES ('a;b');\nSELECT 1;"
        assert split_statements(script) == [
            (0, "INSERT INTO t VALUES ('a;b');"),
            (29, "\nSELECT 1;"),
        ]

    def test_trigger_body_stays_whole(self) -> None:
        script = (
            "CREATE TRIGGER trg AFTER INSERT ON t BEGIN\n"
            "  UPDATE t SET n = n + 1;\n"
            "  DELETE FROM u;\n"
            "END;\n"
            "SELECT 1;\n"
        )
        statements = split_statements(script)
        assert len(statements) == 2
        offset, trigger = statements[0]
        assert offset == 0
        assert trigger.startswith("CREATE TRIGGER")
        assert trigger.endswith("END;")

    def test_trailing_statement_without_semicolon(self) -> None:
        assert split_statements("SELECT 1;\nSELECT 2") == [(0, "SELECT 1;"), (9, "\nSELECT 2")]

    def test_blank_pieces_are_dropped(self) -> None:
        assert split_statements("SELECT 1;;\n\n") == [(0, "SELECT 1;")]

    def test_empty_script(self) -> None:
        assert split_statements("") == []


class TestSQLiteClassification:
    """Tests for SQLite script failure positions."""

    def test_position_skips_leading_comment(self, driver, make_file) -> None:
        script = (
            "CREATE TABLE a (id INTEGER);\n"
            "-- the next statement is broken\n"
            "SELECT nme FROM a;\n"
        )

        events = driver.run(make_file(1, script)).collect(timeout=10)

        error = events[-1].error
        assert isinstance(error, ScriptExecutionError)
        assert (error.line, error.column) == (3, 1)
        assert error.diagnostic.severity == "ERROR"
        assert "no such column" in error.diagnostic.message

    def test_first_statement_failure(self, driver, make_file) -> None:
        events = driver.run(make_file(1, "SELEC 1;")).collect(timeout=10)

        error = events[-1].error
        assert (error.line, error.column) == (1, 1)
        assert str(error).startswith("ERROR ")

    def test_repeated_statement_points_at_failing_copy(self, driver, make_file) -> None:
        script = (
            "CREATE TABLE u (id INTEGER PRIMARY KEY);\n"
            "INSERT INTO u VALUES (1);\n"
            "INSERT INTO u VALUES (1);\n"
        )

        events = driver.run(make_file(1, script)).collect(timeout=10)

        error = events[-1].error
        assert isinstance(error, ScriptExecutionError)
        assert error.diagnostic.code.startswith("SQLITE_CONSTRAINT")
        assert (error.line, error.column) == (3, 1)
        assert "> 3 | INSERT INTO u VALUES (1);" in str(error)

    def test_percent_sign_is_literal(self, driver, make_file) -> None:
        script = (
            "CREATE TABLE pct (label TEXT);\n"
            "INSERT INTO pct VALUES ('100%');\n"
            "DELETE FROM pct WHERE label LIKE 'a%';\n"
        )

        assert driver.run(make_file(1, script)).collect(timeout=10)[1:] == []
        with driver.engine.connect() as conn:
            assert conn.exec_driver_sql("SELECT label FROM pct").scalar() == "100%"


# =============================================================================
# PostgreSQL classification
# =============================================================================


class FakePgError(Exception):
    """Stands in for a psycopg2 error with diagnostics."""

    def __init__(self, message: str, pgcode: str, diag: SimpleNamespace) -> None:
        super().__init__(message)
        self.pgcode = pgcode
        self.diag = diag


class TestPostgresClassification:
    """Tests for reading PostgreSQL diagnostics."""

    def test_reads_diagnostic_fields(self) -> None:
        orig = FakePgError(
            'syntax error at or near "FORM"',
            "42601",
            SimpleNamespace(
                severity="ERROR",
                message_primary='syntax error at or near "FORM"',
                statement_position="10",
            ),
        )
        error = ProgrammingError("SELECT * FORM t;", None, orig)

        diagnostic = PostgresDriver().classify_error(error, "SELECT * FORM t;")

        assert diagnostic.severity == "ERROR"
        assert diagnostic.code == "42601"
        assert diagnostic.message == 'syntax error at or near "FORM"'
        assert diagnostic.position == 10

    def test_missing_position(self) -> None:
        orig = FakePgError(
            "relation does not exist",
            "42P01",
            SimpleNamespace(severity="ERROR", message_primary="relation does not exist", statement_position=None),
        )
        error = ProgrammingError("DROP TABLE x;", None, orig)

        diagnostic = PostgresDriver().classify_error(error, "DROP TABLE x;")

        assert diagnostic.position is None

    def test_script_is_sent_without_parameters(self) -> None:
        conn = MagicMock()

        PostgresDriver().execute_script(conn, "SELECT format('%s', 'a') WHERE 'ab' LIKE 'a%';")

        conn.exec_driver_sql.assert_called_once_with(
            "SELECT format('%s', 'a') WHERE 'ab' LIKE 'a%';",
            execution_options={"no_parameters": True},
        )

    def test_error_without_diagnostics(self) -> None:
        error = ProgrammingError("SELECT 1;", None, Exception("connection lost"))

        diagnostic = PostgresDriver().classify_error(error, "SELECT 1;")

        assert diagnostic.severity == "ERROR"
        assert diagnostic.code == ""
        assert diagnostic.message == "connection lost"
        assert diagnostic.position is None


# =============================================================================
# Live PostgreSQL
# =============================================================================

POSTGRES_URL = os.environ.get("SQLSHIFT_TEST_POSTGRES_URL")


@pytest.mark.skipif(POSTGRES_URL is None, reason="SQLSHIFT_TEST_POSTGRES_URL not set")
class TestLivePostgres:
    """End-to-end runs against a real PostgreSQL server."""

    @pytest.fixture
    def pg_driver(self):
        driver = PostgresDriver(table_name="sqlshift_test_version", installed_by="tester")
        driver.initialize(POSTGRES_URL)
        with driver.engine.begin() as conn:
            conn.exec_driver_sql("DELETE FROM sqlshift_test_version")
            conn.exec_driver_sql("DROP TABLE IF EXISTS sqlshift_widgets")
        yield driver
        with driver.engine.begin() as conn:
            conn.exec_driver_sql("DROP TABLE IF EXISTS sqlshift_test_version")
            conn.exec_driver_sql("DROP TABLE IF EXISTS sqlshift_widgets")
        driver.close()

    def test_apply_and_revert(self, pg_driver, make_file) -> None:
        create = "CREATE TABLE sqlshift_widgets (id int);\nINSERT INTO sqlshift_widgets VALUES (1);\n"

        assert pg_driver.run(make_file(1, create, rank=1)).collect(timeout=30)[1:] == []
        assert pg_driver.current_version() == 0

        drop = "DROP TABLE sqlshift_widgets;"
        assert pg_driver.run(make_file(1, drop, Direction.DOWN)).collect(timeout=30)[1:] == []
        assert pg_driver.current_version() == -1

    def test_percent_sign_is_literal(self, pg_driver, make_file) -> None:
        script = (
            "CREATE TABLE sqlshift_widgets (label text);\n"
            "INSERT INTO sqlshift_widgets VALUES (format('%s%%', 100));\n"
            "DELETE FROM sqlshift_widgets WHERE label LIKE 'a%';\n"
        )

        assert pg_driver.run(make_file(1, script)).collect(timeout=30)[1:] == []
        with pg_driver.engine.connect() as conn:
            assert conn.exec_driver_sql("SELECT label FROM sqlshift_widgets").scalar() == "100%"
        assert pg_driver.current_version() == 0

    def test_bad_column_is_positioned(self, pg_driver, make_file) -> None:
        script = "CREATE TABLE sqlshift_widgets (id int);\nSELECT nme FROM sqlshift_widgets;\n"

        events = pg_driver.run(make_file(1, script)).collect(timeout=30)

        error = events[-1].error
        assert isinstance(error, ScriptExecutionError)
        assert error.diagnostic.code == "42703"
        assert (error.line, error.column) == (2, 8)
        assert "sqlshift_widgets" not in inspect(pg_driver.engine).get_table_names()
        assert pg_driver.current_version() == -1
