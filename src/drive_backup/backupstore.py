from __future__ import annotations

import gzip
import logging
import shutil
import zlib
from pathlib import Path
from typing import TYPE_CHECKING
from typing import Iterator
from typing import Protocol

from .backuperror import ArtifactNotFound
from .backuperror import CompressionError
from .backuperror import StorageIOError

if TYPE_CHECKING:

    class _BackupConfig(Protocol):
        @property
        def backup_path(self) -> str:
            ...

        @property
        def hash_chunk_bytes(self) -> int:
            ...


# Number of consecutive ids kept together in one shard directory.
SHARD_SIZE = 100_000
CHUNK_SIZE = 64 * 1024


class BackupStore(Protocol):
    """Compressed copies of backed up files, addressed by version id."""

    def store(self, file_id: int, source_path: Path) -> None:
        ...

    def delete(self, file_id: int) -> None:
        ...

    def iter_artifact_ids(self) -> Iterator[int]:
        ...


class GzipBackupStore:
    """Store each backed up file as `{root}/{id // 100000}/{id}.gz`."""

    logger = logging.getLogger("drive_backup.BackupStore")

    def __init__(
        self,
        backup_root: str | Path,
        *,
        compresslevel: int = 9,
        chunk_size: int = CHUNK_SIZE,
    ) -> None:
        self._root = Path(backup_root)
        self._compresslevel = compresslevel
        self._chunk_size = chunk_size

    @classmethod
    def from_config(cls, config: _BackupConfig) -> GzipBackupStore:
        """Build a backup store from the given configuration."""
        return cls(config.backup_path, chunk_size=config.hash_chunk_bytes)

    @property
    def root(self) -> Path:
        return self._root

    def artifact_path(self, file_id: int) -> Path:
        """Return the path an artifact with the given id is stored at."""
        return self._root / str(file_id // SHARD_SIZE) / f"{file_id}.gz"

    def store(self, file_id: int, source_path: Path) -> None:
        """
        Compress the source file into the artifact for the given id.

        An existing artifact for the id is overwritten.

        Raises:
            StorageIOError: The source could not be read or the artifact written.
            CompressionError: The compressor failed.
        """
        target = self.artifact_path(file_id)
        self.logger.debug("Storing '%s' as %s", source_path, target)

        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with open(source_path, "rb") as file_in:
                with gzip.open(target, "wb", compresslevel=self._compresslevel) as file_out:
                    shutil.copyfileobj(file_in, file_out, self._chunk_size)

        except zlib.error as error:
            raise CompressionError(f"Could not compress {source_path}: {error}") from error

        except OSError as error:
            raise StorageIOError(f"Could not store {source_path} as {target}: {error}") from error

    def delete(self, file_id: int) -> None:
        """
        Remove the artifact for the given id.

        Raises:
            ArtifactNotFound: There is no artifact for the id.
            StorageIOError: The artifact could not be removed.
        """
        target = self.artifact_path(file_id)
        self.logger.debug("Deleting %s", target)

        try:
            target.unlink()

        except FileNotFoundError as error:
            raise ArtifactNotFound(file_id) from error

        except OSError as error:
            raise StorageIOError(f"Could not delete {target}: {error}") from error

    def iter_artifact_ids(self) -> Iterator[int]:
        """Yield the id of every artifact found under the backup root."""
        if not self._root.is_dir():
            return

        for shard in sorted(self._root.iterdir()):
            if not shard.is_dir() or not shard.name.isdigit():
                continue

            for artifact in shard.glob("*.gz"):
                file_id = artifact.name[: -len(".gz")]
                if file_id.isdigit():
                    yield int(file_id)
