from __future__ import annotations

from pathlib import Path


class BackupError(Exception):
    """Base class for all errors raised by drive_backup."""


class ConfigError(BackupError, ValueError):
    """The configuration file is missing, unreadable, or invalid."""


class PatternError(BackupError):
    """A configured file pattern or exclusion expression is invalid."""


class EnumerationError(BackupError):
    """Matching files could not be enumerated."""


class HashError(BackupError):
    """Base class for hashing failures."""


class FileReadError(HashError):
    """A single file could not be read while hashing."""

    def __init__(self, path: Path, reason: str = "") -> None:
        self.path = path
        super().__init__(f"Could not read {path}" + (f": {reason}" if reason else ""))


class HashJoinError(HashError):
    """A hashing task could not be scheduled or failed unexpectedly."""


class DataLayerError(BackupError):
    """The history store failed to complete an operation."""


class ArtifactError(BackupError):
    """Base class for backup artifact failures."""


class StorageIOError(ArtifactError):
    """An artifact or its source file could not be read or written."""


class CompressionError(ArtifactError):
    """The artifact stream could not be compressed."""


class ArtifactNotFound(ArtifactError):
    """No artifact exists for the given id."""

    def __init__(self, file_id: int) -> None:
        self.file_id = file_id
        super().__init__(f"No backup artifact for id {file_id}")
