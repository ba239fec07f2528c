"""CLI entrypoint for running sqlshift as a module."""

from sqlshift.cli import cli
from sqlshift.logging import setup_logging

if __name__ == "__main__":
    setup_logging()
    cli()
