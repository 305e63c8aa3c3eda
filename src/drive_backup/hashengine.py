from __future__ import annotations

import base64
import dataclasses
import hashlib
import logging
import os
from concurrent.futures import Executor
from concurrent.futures import Future
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import as_completed
from pathlib import Path
from typing import TYPE_CHECKING
from typing import Iterable
from typing import Iterator

from .backuperror import FileReadError
from .backuperror import HashJoinError

if TYPE_CHECKING:
    from types import TracebackType

CHUNK_SIZE = 64 * 1024


@dataclasses.dataclass(frozen=True)
class HashResult:
    """The digest of a single file, or the error that kept it from being read."""

    path: Path
    digest: str | None = None
    error: FileReadError | None = None


def hash_file(path: Path, chunk_size: int = CHUNK_SIZE) -> str:
    """
    Return the base64 encoded MD5 digest of a file's contents.

    Raises:
        OSError
    """
    digest = hashlib.md5()
    with open(path, "rb") as file_in:
        for chunk in iter(lambda: file_in.read(chunk_size), b""):
            digest.update(chunk)

    return base64.b64encode(digest.digest()).decode("ascii")


class HashEngine:
    """Hash files concurrently on a bounded pool of workers."""

    logger = logging.getLogger("drive_backup.HashEngine")

    def __init__(
        self,
        executor: Executor | None = None,
        *,
        max_workers: int | None = None,
        chunk_size: int = CHUNK_SIZE,
    ) -> None:
        """
        Initialize a new HashEngine.

        Args:
            executor: The pool to run hashing tasks on. When not given the
                engine creates and owns a thread pool which lives as long as
                the engine does.

        Keyword Args:
            max_workers: Size of the owned thread pool. Defaults to the
                number of processors. Ignored when an executor is given.
            chunk_size: Number of bytes read from a file at a time.
        """
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")

        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=max_workers or os.cpu_count() or 1,
            thread_name_prefix="drive_backup_hash",
        )
        self._chunk_size = chunk_size

    def __enter__(self) -> HashEngine:
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
        """Shut down the pool if it belongs to this engine, dropping queued tasks."""
        if self._owns_executor:
            self._executor.shutdown(wait=True, cancel_futures=True)

    def hash_all(self, paths: Iterable[Path]) -> Iterator[HashResult]:
        """
        Hash every path, yielding results in the order they complete.

        A file which cannot be read produces a result carrying a
        FileReadError and does not affect the other files. Tasks which have
        not started are cancelled once the caller stops consuming results,
        so close the iterator when abandoning it early.

        Raises:
            HashJoinError: A task could not be scheduled or failed for a
                reason other than reading its file.
        """
        futures: dict[Future[HashResult], Path] = {}
        try:
            try:
                for path in paths:
                    futures[self._executor.submit(self._hash_task, path)] = path

            except RuntimeError as error:
                raise HashJoinError(f"Could not schedule hashing task: {error}") from error

            self.logger.debug("Scheduled %s hashing tasks", len(futures))

            for future in as_completed(futures):
                try:
                    result = future.result()

                except Exception as error:
                    raise HashJoinError(f"Hashing {futures[future]} failed: {error}") from error

                yield result

        finally:
            cancelled = sum(future.cancel() for future in futures if not future.done())
            if cancelled:
                self.logger.debug("Cancelled %s pending hashing tasks", cancelled)

    def _hash_task(self, path: Path) -> HashResult:
        """Hash a single file, capturing read failures in the result."""
        try:
            digest = hash_file(path, self._chunk_size)

        except OSError as error:
            self.logger.debug("Could not read '%s': %s", path, error)
            return HashResult(path, error=FileReadError(path, str(error)))

        return HashResult(path, digest=digest)
