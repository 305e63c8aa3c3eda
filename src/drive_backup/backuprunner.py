from __future__ import annotations

import dataclasses
import logging
import time
from contextlib import closing
from pathlib import Path
from typing import TYPE_CHECKING

from .backupconfig import BackupConfig
from .backupmodel import NeedsBackup
from .backupstore import BackupStore
from .backupstore import GzipBackupStore
from .hashengine import HashEngine
from .historyservice import HistoryService
from .historystore import HistoryStore
from .historystore import SqliteHistoryStore
from .pathsource import iter_glob_files
from .timeprovider import SystemTimeProvider
from .timeprovider import TimeProvider

if TYPE_CHECKING:
    from types import TracebackType


@dataclasses.dataclass
class RunSummary:
    """Counts of what a single backup run did."""

    # Unreadable files are counted in failed only.
    hashed: int = 0
    up_to_date: int = 0
    backed_up: int = 0
    evicted: int = 0
    tombstoned: int = 0
    failed: list[Path] = dataclasses.field(default_factory=list)


class BackupRunner:
    """Back up every file matched by the configured patterns."""

    logger = logging.getLogger(__name__)

    def __init__(
        self,
        config: BackupConfig,
        *,
        history_store: HistoryStore | None = None,
        backup_store: BackupStore | None = None,
        hash_engine: HashEngine | None = None,
    ) -> None:
        """
        Initialize a new BackupRunner.

        Args:
            config: The configuration to use for this runner.

        Keyword Args:
            history_store: Defaults to a sqlite store at the configured path.
            backup_store: Defaults to a gzip store at the configured path.
            hash_engine: Defaults to a thread pool sized from the config.

        NOTE: Only one runner may use a given database and backup path at a
            time. Nothing prevents two runs from interleaving their writes.
        """
        self._config = config
        self._history_store = history_store or SqliteHistoryStore.from_config(config)
        self._backup_store = backup_store or GzipBackupStore.from_config(config)
        self._hash_engine = hash_engine or HashEngine(
            max_workers=config.hash_workers,
            chunk_size=config.hash_chunk_bytes,
        )

    def __enter__(self) -> BackupRunner:
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
        """Release the hashing pool and the history database."""
        self._hash_engine.close()
        self._history_store.close()

    def run_once(self, time_provider: TimeProvider | None = None) -> RunSummary:
        """
        Run a single backup of every configured file.

        Files that cannot be read are logged, kept alive in the history and
        skipped. Any other failure aborts the run, leaving the artifacts and
        records written so far in place.
        """
        self.logger.info("Running backup...")
        tic = time.perf_counter()

        service = HistoryService(
            self._history_store,
            time_provider or SystemTimeProvider(),
            self._config.max_copies,
        )
        summary = RunSummary()

        paths = iter_glob_files(
            self._config.patterns,
            exclude_file_pattern=self._config.exclude_file_pattern,
        )

        # Closing the results cancels hashing that has not started when a
        # record or artifact failure aborts the run.
        with closing(self._hash_engine.hash_all(paths)) as results:
            for result in results:
                if result.digest is None:
                    self.logger.warning("Skipping file: %s", result.error)
                    summary.failed.append(result.path)
                    service.mark_seen(result.path)
                    continue

                summary.hashed += 1
                self._backup_file(service, result.path, result.digest, summary)

        summary.tombstoned = service.mark_all_deleted_files()

        toc = time.perf_counter()
        self.logger.info("Backup finished in %s seconds", toc - tic)
        self.logger.info(
            "Hashed %s files: %s backed up, %s up to date, %s evicted, %s unreadable",
            summary.hashed,
            summary.backed_up,
            summary.up_to_date,
            summary.evicted,
            len(summary.failed),
        )
        return summary

    def _backup_file(
        self,
        service: HistoryService,
        path: Path,
        digest: str,
        summary: RunSummary,
    ) -> None:
        """Store a new version of the file if its content changed."""
        status = service.get_file_status(path, digest)

        if not isinstance(status, NeedsBackup):
            summary.up_to_date += 1
            return

        # The artifact is written before the record that points at it, and the
        # record of an evicted version is removed before its artifact.
        self._backup_store.store(status.file_id, path)
        evicted_id = service.create_file_entry(
            status.directory_id,
            status.file_id,
            status.file_name,
            digest,
        )
        summary.backed_up += 1
        self.logger.debug("Backed up '%s' as %s", path, status.file_id)

        if evicted_id is not None:
            self._backup_store.delete(evicted_id)
            summary.evicted += 1

    def reconcile(self) -> list[int]:
        """
        Remove artifacts no version record points at.

        Records pointing at a missing artifact cannot be repaired and are
        only reported.

        Returns:
            The ids of the orphaned artifacts that were removed.
        """
        self.logger.info("Reconciling backups...")
        recorded = self._history_store.get_file_ids()
        stored = set(self._backup_store.iter_artifact_ids())

        orphans = sorted(stored - recorded)
        for file_id in orphans:
            self.logger.debug("Removing orphaned artifact %s", file_id)
            self._backup_store.delete(file_id)

        for file_id in sorted(recorded - stored):
            self.logger.warning("Version %s has no backup artifact", file_id)

        self.logger.info("Removed %s orphaned artifacts", len(orphans))
        return orphans
