from __future__ import annotations

import dataclasses
from datetime import datetime
from typing import Union

# Record format of rows written by this version of drive_backup.
RECORD_VERSION = 1


@dataclasses.dataclass(frozen=True)
class Directory:
    """A directory row in the history database."""

    id: int
    name: str
    parent_id: int | None = None


@dataclasses.dataclass(frozen=True)
class FileVersion:
    """A single backed up version of a file, or a tombstone if there is no hash."""

    version: int
    id: int
    directory_id: int
    file_name: str
    backup_timestamp: float
    content_hash: str | None = None

    @property
    def is_tombstone(self) -> bool:
        """True if this record marks the file as deleted."""
        return self.content_hash is None

    def __str__(self) -> str:
        """Return a string representation of the version."""
        backup_ts = datetime.fromtimestamp(self.backup_timestamp)
        state = "(deleted)" if self.is_tombstone else f"({self.content_hash})"
        return (
            f"{self.file_name} #{self.id}"
            f" backed up {backup_ts.strftime('%Y-%m-%d %H:%M:%S')} {state}"
        )


@dataclasses.dataclass(frozen=True)
class UpToDate:
    """The latest backup of the file already holds this content."""


@dataclasses.dataclass(frozen=True)
class NeedsBackup:
    """The file is new or changed. `file_id` is allocated but not yet stored."""

    directory_id: int
    file_id: int
    file_name: str


FileStatus = Union[UpToDate, NeedsBackup]
