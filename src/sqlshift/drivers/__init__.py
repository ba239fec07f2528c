"""Migration drivers, looked up by URL scheme."""

from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError

from sqlshift.drivers.base import Driver, SQLAlchemyDriver
from sqlshift.drivers.postgres import PostgresDriver
from sqlshift.drivers.sqlite import SQLiteDriver
from sqlshift.errors import UnsupportedDriverError

DRIVERS: dict[str, type[SQLAlchemyDriver]] = {
    "postgresql": PostgresDriver,
    "postgres": PostgresDriver,
    "sqlite": SQLiteDriver,
}


def driver_for_url(url: str, **options) -> SQLAlchemyDriver:
    """Build an uninitialized driver for ``url``.

    Args:
        url: Database URL, e.g. ``postgresql://user@host/db``.
        **options: Passed to the driver constructor.

    Raises:
        UnsupportedDriverError: If the scheme has no driver.
    """
    try:
        backend = make_url(url).get_backend_name()
    except ArgumentError as e:
        raise UnsupportedDriverError(f"Invalid database URL: {e}") from e

    driver_cls = DRIVERS.get(backend)
    if driver_cls is None:
        raise UnsupportedDriverError(f"No migration driver for scheme {backend!r}")
    return driver_cls(**options)


__all__ = [
    "DRIVERS",
    "Driver",
    "PostgresDriver",
    "SQLAlchemyDriver",
    "SQLiteDriver",
    "driver_for_url",
]
