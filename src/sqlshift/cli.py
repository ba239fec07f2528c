"""Command-line interface for sqlshift."""

from pathlib import Path

import click

from sqlshift import __version__
from sqlshift.config import Config
from sqlshift.logging import setup_logging


@click.group()
@click.option(
    "-c",
    "--config-file",
    type=click.Path(exists=False, path_type=Path),
    default=None,
    help="Path to configuration file.",
)
@click.option(
    "--database-url",
    default=None,
    help="Database URL (overrides config).",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default=None,
    help="Set logging level (overrides config).",
)
@click.option(
    "--log-json/--no-log-json",
    default=None,
    help="Output logs as JSON or human-readable format (overrides config).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    config_file: Path | None,
    database_url: str | None,
    log_level: str | None,
    log_json: bool | None,
) -> None:
    """sqlshift - transactional SQL migrations.

    Applies or reverts one migration script at a time and records it in a
    version table.
    """
    ctx.ensure_object(dict)

    config = Config.load_or_default(config_file)
    if database_url:
        config.database.url = database_url
    ctx.obj["config"] = config

    effective_log_level = log_level or config.log_level
    effective_log_json = log_json if log_json is not None else config.log_json
    setup_logging(json_output=effective_log_json, level=effective_log_level)


@cli.command()
def version() -> None:
    """Print version information."""
    click.echo(f"sqlshift {__version__}")


@cli.group()
def db() -> None:
    """Database migration commands."""
    pass


def _open_driver(config: Config):
    """Initialize the driver for the configured database or exit."""
    from sqlshift.drivers import driver_for_url
    from sqlshift.errors import MigrationError

    try:
        driver = driver_for_url(
            config.database.url,
            table_name=config.database.table,
            context_lines=config.diagnostics.context_lines,
            installed_by=config.installed_by,
            echo=config.log_level == "DEBUG",
        )
        driver.initialize(config.database.url)
    except MigrationError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)
    return driver


@db.command(name="init")
@click.pass_context
def db_init(ctx: click.Context) -> None:
    """Create the version table if it does not exist."""
    config = ctx.obj["config"]
    driver = _open_driver(config)
    driver.close()
    click.echo(f"Version table {config.database.table} is ready")


@db.command(name="status")
@click.pass_context
def db_status(ctx: click.Context) -> None:
    """Show the current version and applied migrations."""
    from sqlshift.errors import MigrationError

    config = ctx.obj["config"]
    driver = _open_driver(config)
    try:
        current = driver.current_version()
        applied = driver.store.list_applied()
    except MigrationError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)
    finally:
        driver.close()

    click.echo(f"Current version: {current}")
    if not applied:
        click.echo("No migrations applied")
        return

    click.echo(f"Applied migrations: {len(applied)}")
    for record in applied:
        click.echo(
            f"  {record.version} (rank {record.installed_rank}): {record.description}"
            f" [{record.script}, by {record.installed_by}, {record.execution_time} ms]"
        )


def _run_file(ctx: click.Context, path: Path, rank: int | None, expected: str) -> None:
    from sqlshift.errors import MigrationError
    from sqlshift.models import Failed, MigrationFile, Started

    config = ctx.obj["config"]

    try:
        file = MigrationFile.from_path(path, rank=rank)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="FILE")
    if file.direction.value != expected:
        raise click.BadParameter(
            f"{path.name} is a {file.direction.value} migration", param_hint="FILE"
        )

    driver = _open_driver(config)
    failed = False
    try:
        for event in driver.run(file):
            if isinstance(event, Started):
                click.echo(f"{file.direction.value}: {file.version} {file.name}")
            elif isinstance(event, Failed):
                failed = True
                click.echo(f"Error: {event.error}", err=True)
        if not failed:
            click.echo(f"Current version: {driver.current_version()}")
    except MigrationError as e:
        failed = True
        click.echo(f"Error: {e}", err=True)
    finally:
        driver.close()

    if failed:
        raise SystemExit(1)


@db.command(name="up")
@click.argument("path", metavar="FILE", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--rank", type=int, default=None, help="Applied-order rank (default: the version).")
@click.pass_context
def db_up(ctx: click.Context, path: Path, rank: int | None) -> None:
    """Apply one migration script (NNNN_name.up.sql)."""
    _run_file(ctx, path, rank, expected="up")


@db.command(name="down")
@click.argument("path", metavar="FILE", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_context
def db_down(ctx: click.Context, path: Path) -> None:
    """Revert one migration script (NNNN_name.down.sql)."""
    _run_file(ctx, path, None, expected="down")
