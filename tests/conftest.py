"""Pytest configuration and shared fixtures."""

from pathlib import Path

import pytest
from click.testing import CliRunner

from sqlshift.database import get_engine
from sqlshift.drivers import SQLiteDriver
from sqlshift.models import Direction, MigrationFile
from sqlshift.version_store import VersionStore


@pytest.fixture
def cli_runner() -> CliRunner:
    """Provide a Click CLI test runner."""
    return CliRunner()


@pytest.fixture
def database_url(tmp_path: Path) -> str:
    """URL of a fresh SQLite database file."""
    return f"sqlite:///{tmp_path / 'test.db'}"


@pytest.fixture
def engine(database_url: str):
    """Engine on the test database, disposed after the test."""
    eng = get_engine(database_url)
    yield eng
    eng.dispose()


@pytest.fixture
def store(engine) -> VersionStore:
    """Version store with its table already created."""
    version_store = VersionStore(engine)
    version_store.ensure_schema()
    return version_store


@pytest.fixture
def driver(database_url: str):
    """Initialized SQLite driver recording as a fixed principal."""
    drv = SQLiteDriver(installed_by="tester")
    drv.initialize(database_url)
    yield drv
    drv.close()


@pytest.fixture
def make_file():
    """Factory for in-memory migration files whose content is read on demand."""

    def _make(
        version: int,
        script: str,
        direction: Direction = Direction.UP,
        rank: int | None = None,
        name: str = "test migration",
    ) -> MigrationFile:
        content = script.encode("utf-8")
        return MigrationFile(
            version=version,
            rank=rank if rank is not None else version,
            name=name,
            file_name=f"{version:04d}_test.{direction.value}.sql",
            direction=direction,
            reader=lambda: content,
        )

    return _make
