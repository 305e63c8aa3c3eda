from __future__ import annotations

import logging
import os
from pathlib import PurePath
from typing import Sequence

from .backupmodel import FileStatus
from .backupmodel import NeedsBackup
from .backupmodel import UpToDate
from .historystore import HistoryStore
from .timeprovider import TimeProvider

# Every directory tree hangs off a single root named for the platform.
ROOT_SEGMENT = "C:" if os.name == "nt" else ""


def path_segments(path: PurePath) -> list[str]:
    """Split an absolute path into the root segment, its directories, and its name."""
    return [ROOT_SEGMENT, *path.parts[1:]]


class HistoryService:
    """
    Decide which files need a new backup and keep their version history.

    The service is not safe to share between threads. Directory creation and
    retention counting read then write the store, so every call must come
    from a single consumer.
    """

    logger = logging.getLogger("drive_backup.HistoryService")

    def __init__(
        self,
        store: HistoryStore,
        time_provider: TimeProvider,
        max_copies: int,
    ) -> None:
        """
        Initialize a new HistoryService.

        Args:
            store: Persistence for directories and file versions.
            time_provider: Supplies the timestamp written for this run.
            max_copies: Number of backed up versions kept for each file.

        Raises:
            ValueError: max_copies is less than one.
            DataLayerError: The next file id could not be read from the store.
        """
        if max_copies < 1:
            raise ValueError("max_copies must be at least 1")

        self._store = store
        self._time_provider = time_provider
        self._max_copies = max_copies
        self._next_file_id = store.get_max_file_id() + 1
        self._directory_ids: dict[tuple[int | None, str], int] = {}

    @property
    def run_timestamp(self) -> float:
        return self._time_provider.run_timestamp

    def resolve_directory(
        self,
        segments: Sequence[str],
        create_if_missing: bool,
    ) -> int | None:
        """
        Return the id of the directory holding the last segment.

        The segments start at the root segment and end with the file name.
        Directories along the way are created when `create_if_missing` is
        set, otherwise None is returned as soon as one is missing.
        """
        parent_id: int | None = None

        for name in segments[:-1]:
            directory_id = self._find_directory(parent_id, name)

            if directory_id is None:
                if not create_if_missing:
                    return None

                directory_id = self._store.create_directory(name, parent_id)
                self._directory_ids[(parent_id, name)] = directory_id

            parent_id = directory_id

        return parent_id

    def _find_directory(self, parent_id: int | None, name: str) -> int | None:
        """Look up a directory by name under its parent, checking the cache first."""
        key = (parent_id, name)
        if key in self._directory_ids:
            return self._directory_ids[key]

        if parent_id is None:
            directory = self._store.get_directory(name)
        else:
            directory = next(
                (d for d in self._store.get_subdirectories(parent_id) if d.name == name),
                None,
            )

        if directory is None:
            return None

        self._directory_ids[key] = directory.id
        return directory.id

    def get_file_status(self, path: PurePath, content_hash: str) -> FileStatus:
        """
        Return whether the file at path needs a new backup.

        Unchanged files have their latest version moved to this run's
        timestamp so the deletion sweep leaves them alone. For new or changed
        files the next file id is reserved. It must be committed with
        `create_file_entry` and is never handed out again.
        """
        file_name = path.name
        directory_id = self.resolve_directory(path_segments(path), True)
        if directory_id is None:
            raise ValueError(f"Cannot resolve a directory for '{path}'")

        latest = self._store.get_latest_file(directory_id, file_name)

        if latest is not None and latest.content_hash == content_hash:
            self._store.refresh_latest_timestamp(
                directory_id,
                file_name,
                self.run_timestamp,
            )
            self.logger.debug("'%s' is up to date", path)
            return UpToDate()

        file_id = self._next_file_id
        self._next_file_id += 1

        self.logger.debug("'%s' needs backup as %s", path, file_id)
        return NeedsBackup(directory_id, file_id, file_name)

    def create_file_entry(
        self,
        directory_id: int,
        file_id: int,
        file_name: str,
        content_hash: str,
    ) -> int | None:
        """
        Record a new version of a file and enforce the retention limit.

        Returns:
            The id of the version evicted to stay within max_copies, or None.
            The caller is responsible for removing that version's artifact.
        """
        self._store.create_file_version(
            directory_id,
            file_id,
            file_name,
            content_hash,
            self.run_timestamp,
        )

        # Tombstones hold no artifact and do not count towards retention.
        versions = [
            version
            for version in self._store.get_files(directory_id, file_name)
            if not version.is_tombstone
        ]
        if len(versions) <= self._max_copies:
            return None

        oldest = min(versions, key=lambda v: (v.backup_timestamp, v.id))
        self._store.delete_file_version(oldest.id)

        self.logger.debug("Evicted version %s of '%s'", oldest.id, file_name)
        return oldest.id

    def mark_seen(self, path: PurePath) -> bool:
        """
        Keep the latest version of a file alive without hashing it.

        Returns:
            True if a backed up version was found and refreshed.
        """
        directory_id = self.resolve_directory(path_segments(path), False)
        if directory_id is None:
            return False

        latest = self._store.get_latest_file(directory_id, path.name)
        if latest is None or latest.is_tombstone:
            return False

        self._store.refresh_latest_timestamp(directory_id, path.name, self.run_timestamp)
        return True

    def mark_all_deleted_files(self, run_timestamp: float | None = None) -> int:
        """
        Add a tombstone to every file not touched during this run.

        Args:
            run_timestamp: Cut-off and tombstone timestamp. Defaults to the
                timestamp of this run.

        Returns:
            The number of files marked as deleted.
        """
        if run_timestamp is None:
            run_timestamp = self.run_timestamp

        count = self._store.mark_deleted_groups(run_timestamp)
        self.logger.info("Marked %s files as deleted", count)
        return count
