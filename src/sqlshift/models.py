"""Migration value types.

``MigrationFile`` carries one script's identity and lazily loaded payload.
``VersionRecord`` mirrors a row of the version table. ``Started`` and
``Failed`` are the events a run emits.
"""

from __future__ import annotations

import re
import zlib
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from pydantic import BaseModel

from sqlshift.errors import ReadError

SCRIPT_TYPE_SQL = "SQL"

# 0003_add_users_email.up.sql
FILENAME_PATTERN = re.compile(r"^(?P<version>\d+)_(?P<name>.+)\.(?P<direction>up|down)\.(?P<ext>\w+)$")


# =============================================================================
# Enums
# =============================================================================


class Direction(str, Enum):
    """Migration direction."""

    UP = "up"
    DOWN = "down"


# =============================================================================
# Migration files
# =============================================================================


def compute_checksum(content: bytes) -> int:
    """CRC32 of the content as a signed 32-bit integer."""
    value = zlib.crc32(content) & 0xFFFFFFFF
    return value - 0x100000000 if value >= 0x80000000 else value


@dataclass
class MigrationFile:
    """One migration script.

    ``content`` and ``checksum`` are populated by ``read_content``, which calls
    ``reader``. A file built with ``content`` already set does not need a
    reader.
    """

    version: int
    rank: int
    name: str
    file_name: str
    direction: Direction
    reader: Callable[[], bytes] | None = field(default=None, repr=False)
    content: bytes | None = field(default=None, repr=False)
    checksum: int | None = None

    def read_content(self) -> None:
        """Load the script body and compute its checksum.

        Raises:
            ReadError: If the content cannot be read.
        """
        if self.content is None:
            if self.reader is None:
                raise ReadError(f"No content reader for {self.file_name}")
            try:
                self.content = self.reader()
            except Exception as e:
                raise ReadError(f"Failed to read {self.file_name}: {e}") from e

        if not isinstance(self.content, bytes):
            raise ReadError(f"Content of {self.file_name} is not bytes")

        self.checksum = compute_checksum(self.content)

    @property
    def text(self) -> str:
        """The script body decoded as UTF-8.

        Raises:
            ReadError: If content is not loaded or not valid UTF-8.
        """
        if self.content is None:
            raise ReadError(f"Content of {self.file_name} has not been read")
        try:
            return self.content.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ReadError(f"{self.file_name} is not valid UTF-8: {e}") from e

    @classmethod
    def from_path(cls, path: Path | str, rank: int | None = None) -> "MigrationFile":
        """Build a file from a script named ``<version>_<name>.<up|down>.<ext>``.

        Args:
            path: Script path. Its bytes are read lazily.
            rank: Applied-order position. Defaults to the version.

        Raises:
            ValueError: If the file name does not follow the pattern.
        """
        path = Path(path)
        match = FILENAME_PATTERN.match(path.name)
        if match is None:
            raise ValueError(
                f"Migration file name must look like 0001_name.up.sql: {path.name}"
            )

        version = int(match["version"])
        return cls(
            version=version,
            rank=rank if rank is not None else version,
            name=match["name"].replace("_", " "),
            file_name=path.name,
            direction=Direction(match["direction"]),
            reader=path.read_bytes,
        )


# =============================================================================
# Version table rows
# =============================================================================


class VersionRecord(BaseModel):
    """A row of the version table."""

    version: int
    version_rank: int
    installed_rank: int
    description: str
    type: str = SCRIPT_TYPE_SQL
    script: str
    checksum: int | None = None
    installed_by: str
    execution_time: int = 0
    success: bool = True

    @classmethod
    def for_file(cls, file: MigrationFile, installed_by: str) -> "VersionRecord":
        """Record for applying ``file``; both ranks take the file's rank."""
        return cls(
            version=file.version,
            version_rank=file.rank,
            installed_rank=file.rank,
            description=file.name,
            type=SCRIPT_TYPE_SQL,
            script=file.file_name,
            checksum=file.checksum,
            installed_by=installed_by,
            execution_time=0,
            success=True,
        )


# =============================================================================
# Run events
# =============================================================================


@dataclass(frozen=True)
class Started:
    """Execution of ``file`` has begun."""

    file: MigrationFile


@dataclass(frozen=True)
class Failed:
    """The run hit ``error``."""

    error: Exception


RunEvent = Started | Failed
