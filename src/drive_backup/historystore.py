from __future__ import annotations

import logging
import sqlite3
from contextlib import closing
from contextlib import contextmanager
from typing import TYPE_CHECKING
from typing import Iterator
from typing import Protocol

from .backuperror import DataLayerError
from .backupmodel import RECORD_VERSION
from .backupmodel import Directory
from .backupmodel import FileVersion

if TYPE_CHECKING:
    from types import TracebackType

    class _BackupConfig(Protocol):
        @property
        def database_path(self) -> str:
            ...


class HistoryStore(Protocol):
    """Persistence for the directory tree and the file version records."""

    def get_max_file_id(self) -> int:
        ...

    def get_directory(self, name: str) -> Directory | None:
        ...

    def get_subdirectories(self, parent_id: int) -> list[Directory]:
        ...

    def get_latest_file(self, directory_id: int, file_name: str) -> FileVersion | None:
        ...

    def get_files(self, directory_id: int, file_name: str) -> list[FileVersion]:
        ...

    def get_file_ids(self) -> set[int]:
        ...

    def create_directory(self, name: str, parent_id: int | None) -> int:
        ...

    def create_file_version(
        self,
        directory_id: int,
        file_id: int,
        file_name: str,
        content_hash: str,
        timestamp: float,
    ) -> None:
        ...

    def refresh_latest_timestamp(
        self,
        directory_id: int,
        file_name: str,
        timestamp: float,
    ) -> None:
        ...

    def mark_deleted_groups(self, run_timestamp: float) -> int:
        ...

    def delete_file_version(self, file_id: int) -> None:
        ...

    def close(self) -> None:
        ...


_FILE_COLUMNS = "version, id, directory_id, file_name, backup_ts, hash"


class SqliteHistoryStore:
    """History of directories and file versions kept in a sqlite database."""

    logger = logging.getLogger("drive_backup.HistoryStore")

    def __init__(self, database_path: str = ":memory:") -> None:
        """
        Initialize a new history store connected to the given path.

        The store can be used as a context manager to make sure the
        connection is closed once the run is complete:

            with SqliteHistoryStore("history.db") as store:
                ...

        Args:
            database_path: The path to the database file. Defaults to an
                in-memory database.

        Raises:
            DataLayerError: The database could not be opened or initialized.
        """
        self.logger.debug("Initializing history store at %s", database_path)
        try:
            self._connection = sqlite3.connect(database_path)
            self._connection.execute("PRAGMA foreign_keys = ON")
        except sqlite3.Error as error:
            raise DataLayerError(f"Could not open {database_path}") from error

        self._create_directory_table()
        self._create_file_table()

    @classmethod
    def from_config(cls, config: _BackupConfig) -> SqliteHistoryStore:
        """Build a history store from the given configuration."""
        return cls(config.database_path)

    def __enter__(self) -> SqliteHistoryStore:
        """Enter a context manager."""
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        """Exit a context manager."""
        self.close()

    def close(self) -> None:
        """Close the database connection."""
        self._connection.close()

    @contextmanager
    def _cursor(self, action: str) -> Iterator[sqlite3.Cursor]:
        """Yield a cursor, committing on success and wrapping sqlite errors."""
        try:
            with closing(self._connection.cursor()) as cursor:
                yield cursor
                self._connection.commit()

        except sqlite3.Error as error:
            raise DataLayerError(f"Failed to {action}: {error}") from error

    def _create_directory_table(self) -> None:
        """Create the directory table if it does not already exist."""
        # Root directories have no parent. Names are unique per parent.
        with self._cursor("create directory table") as cursor:
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS directories (
                    id INTEGER PRIMARY KEY,
                    parent_id INTEGER,
                    name TEXT NOT NULL,
                    UNIQUE(parent_id, name),
                    FOREIGN KEY (parent_id) REFERENCES directories (id)
                )
                """
            )
        self.logger.debug("Created directory table")

    def _create_file_table(self) -> None:
        """Create the file version table if it does not already exist."""
        # AUTOINCREMENT keeps evicted ids from being handed out again, their
        # artifacts may still be on disk after a crash. A NULL hash is a
        # tombstone marking the file as deleted.
        with self._cursor("create file table") as cursor:
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS file_versions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    version INTEGER NOT NULL,
                    directory_id INTEGER NOT NULL,
                    file_name TEXT NOT NULL,
                    backup_ts REAL NOT NULL,
                    hash TEXT,
                    FOREIGN KEY (directory_id) REFERENCES directories (id)
                        ON DELETE CASCADE
                )
                """
            )
            cursor.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_file_versions_group
                ON file_versions (directory_id, file_name)
                """
            )
        self.logger.debug("Created file table")

    def get_max_file_id(self) -> int:
        """Return the highest file id ever issued, or 0 for an empty store."""
        with self._cursor("get max file id") as cursor:
            cursor.execute(
                """
                SELECT MAX(
                    COALESCE((SELECT MAX(id) FROM file_versions), 0),
                    COALESCE(
                        (SELECT seq FROM sqlite_sequence WHERE name = 'file_versions'),
                        0
                    )
                )
                """
            )
            return int(cursor.fetchone()[0])

    def get_directory(self, name: str) -> Directory | None:
        """Return the root directory with the given name."""
        with self._cursor("get directory") as cursor:
            cursor.execute(
                """
                SELECT id, name, parent_id FROM directories
                WHERE parent_id IS NULL AND name = ?
                """,
                (name,),
            )
            row = cursor.fetchone()

        return Directory(*row) if row else None

    def get_subdirectories(self, parent_id: int) -> list[Directory]:
        """Return all directories directly under the given parent."""
        with self._cursor("get subdirectories") as cursor:
            cursor.execute(
                "SELECT id, name, parent_id FROM directories WHERE parent_id = ?",
                (parent_id,),
            )
            # Watch the order of the columns here, must match the model
            return [Directory(*row) for row in cursor.fetchall()]

    def get_latest_file(self, directory_id: int, file_name: str) -> FileVersion | None:
        """Return the most recent version of a file, tombstones included."""
        with self._cursor("get latest file") as cursor:
            cursor.execute(
                f"""
                SELECT {_FILE_COLUMNS} FROM file_versions
                WHERE directory_id = ? AND file_name = ?
                ORDER BY backup_ts DESC, id DESC
                LIMIT 1
                """,
                (directory_id, file_name),
            )
            row = cursor.fetchone()

        return FileVersion(*row) if row else None

    def get_files(self, directory_id: int, file_name: str) -> list[FileVersion]:
        """Return every version of a file, oldest first."""
        with self._cursor("get files") as cursor:
            cursor.execute(
                f"""
                SELECT {_FILE_COLUMNS} FROM file_versions
                WHERE directory_id = ? AND file_name = ?
                ORDER BY backup_ts, id
                """,
                (directory_id, file_name),
            )
            return [FileVersion(*row) for row in cursor.fetchall()]

    def get_file_ids(self) -> set[int]:
        """Return the ids of every version that holds a backup artifact."""
        with self._cursor("get file ids") as cursor:
            cursor.execute("SELECT id FROM file_versions WHERE hash IS NOT NULL")
            return {row[0] for row in cursor.fetchall()}

    def create_directory(self, name: str, parent_id: int | None) -> int:
        """Create a directory and return its id."""
        self.logger.debug("Creating directory '%s' under %s", name, parent_id)
        with self._cursor("create directory") as cursor:
            cursor.execute(
                "INSERT INTO directories (parent_id, name) VALUES (?, ?)",
                (parent_id, name),
            )
            return int(cursor.lastrowid)

    def create_file_version(
        self,
        directory_id: int,
        file_id: int,
        file_name: str,
        content_hash: str,
        timestamp: float,
    ) -> None:
        """Insert a new version of a file with a pre-allocated id."""
        self.logger.debug("Creating version %s of '%s'", file_id, file_name)
        with self._cursor("create file version") as cursor:
            cursor.execute(
                f"""
                INSERT INTO file_versions ({_FILE_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    RECORD_VERSION,
                    file_id,
                    directory_id,
                    file_name,
                    timestamp,
                    content_hash,
                ),
            )

    def refresh_latest_timestamp(
        self,
        directory_id: int,
        file_name: str,
        timestamp: float,
    ) -> None:
        """Move the backup timestamp of the latest version of a file."""
        with self._cursor("refresh latest timestamp") as cursor:
            cursor.execute(
                """
                UPDATE file_versions SET backup_ts = ?
                WHERE id = (
                    SELECT id FROM file_versions
                    WHERE directory_id = ? AND file_name = ?
                    ORDER BY backup_ts DESC, id DESC
                    LIMIT 1
                )
                """,
                (timestamp, directory_id, file_name),
            )

    def mark_deleted_groups(self, run_timestamp: float) -> int:
        """
        Add a tombstone to every file not seen since before the given run.

        Returns:
            The number of tombstones written.
        """
        # Files touched during the run carry the run timestamp, so only files
        # which were not found by this run fall below it.
        with self._cursor("mark deleted files") as cursor:
            cursor.execute(
                """
                INSERT INTO file_versions
                    (version, directory_id, file_name, backup_ts, hash)
                SELECT ?, directory_id, file_name, ?, NULL
                FROM file_versions
                GROUP BY directory_id, file_name
                HAVING MAX(backup_ts) < ?
                """,
                (RECORD_VERSION, run_timestamp, run_timestamp),
            )
            count = cursor.rowcount

        self.logger.debug("Marked %s files as deleted", count)
        return count

    def delete_file_version(self, file_id: int) -> None:
        """Delete a single version by id."""
        self.logger.debug("Deleting version %s", file_id)
        with self._cursor("delete file version") as cursor:
            cursor.execute("DELETE FROM file_versions WHERE id = ?", (file_id,))
