from __future__ import annotations

import logging
import os
from configparser import ConfigParser
from configparser import Error as ConfigParserError
from pathlib import Path

from .backuperror import ConfigError

NEW_CONFIG = """\
[system]
# config_name should be unique for each configuration file.
config_name = {name}
database_path = {filename}
# Written when run with --log-file. Defaults to the config file name ending
# in .log, next to the config file.
# log_path = drive_backup.log

[backup]
# Compressed copies are written below this directory.
backup_path = backups
# Number of backed up versions kept for each file.
max_copies = 5

# Glob patterns of the files to back up, one per line. `**` matches any
# number of directories and `~` is expanded to the home directory.
patterns =
    ~/Documents/**/*

# Exclude files from the backup.
# The following are regular expressions and are matched against the file name.
# Multiline values are combined into a single regular expression.
exclude_files = ^\\..*$

# Number of files hashed at the same time, 0 uses one per processor.
hash_workers = 0
hash_chunk_bytes = 65536

    """


class BackupConfig:
    """Configuration for a backup run."""

    logger = logging.getLogger("drive_backup.BackupConfig")

    def __init__(self, filepath: str) -> None:
        """
        Load the configuration from the given file.

        Raises:
            ConfigError: The file could not be read or holds invalid values.
        """
        self._filepath = filepath
        self._config = ConfigParser()
        try:
            success = self._config.read(filepath)
        except ConfigParserError as error:
            raise ConfigError(f"Could not parse config file at {filepath}") from error

        if not success:
            raise ConfigError(f"Could not read config file at {filepath}")

        self.logger.debug("Loaded config from %s", filepath)
        self.validate()

    def validate(self) -> None:
        """Raise ConfigError if a required value is missing or out of range."""
        if not self.backup_path:
            raise ConfigError("backup.backup_path cannot be empty")

        if self.max_copies < 1:
            raise ConfigError("backup.max_copies must be at least 1")

        if not self.patterns:
            raise ConfigError("At least one pattern is required")

        if self._getint("backup", "hash_workers", fallback=0) < 0:
            raise ConfigError("backup.hash_workers cannot be negative")

        if self.hash_chunk_bytes <= 0:
            raise ConfigError("backup.hash_chunk_bytes must be positive")

    def _getint(self, section: str, option: str, fallback: int) -> int:
        try:
            return self._config.getint(section, option, fallback=fallback)
        except ValueError as error:
            raise ConfigError(f"{section}.{option} must be an integer") from error

    @property
    def config_name(self) -> str:
        """Return the name of the config."""
        return self._config.get("system", "config_name", fallback="drive_backup")

    @property
    def database_path(self) -> str:
        """Return the path to the database file, or ":memory:" if not set."""
        return self._config.get("system", "database_path", fallback=":memory:")

    @property
    def log_path(self) -> str:
        """Return the path of the log file, next to the config file if not set."""
        filepath = Path(self._filepath).absolute()
        default = filepath.parent / f"{filepath.stem}.log"
        return self._config.get("system", "log_path", fallback=str(default))

    @property
    def backup_path(self) -> str:
        """Return the directory backups are written to. Will raise if not set."""
        try:
            return self._config.get("backup", "backup_path")
        except ConfigParserError as error:
            raise ConfigError("backup.backup_path is required") from error

    @property
    def max_copies(self) -> int:
        """Return the number of versions kept for each file."""
        return self._getint("backup", "max_copies", fallback=5)

    @property
    def patterns(self) -> list[str]:
        """Return the glob patterns of files to back up, in order."""
        config_line = self._config.get("backup", "patterns", fallback="")
        return [line.strip() for line in config_line.splitlines() if line.strip()]

    @property
    def exclude_file_pattern(self) -> str | None:
        """Return the pattern to exclude files from the backup."""
        config_line = self._config.get("backup", "exclude_files", fallback="")
        lines = [line.strip() for line in config_line.splitlines() if line.strip()]
        return "|".join(lines) or None

    @property
    def hash_workers(self) -> int | None:
        """Return the size of the hashing pool, None for one per processor."""
        return self._getint("backup", "hash_workers", fallback=0) or None

    @property
    def hash_chunk_bytes(self) -> int:
        """Return the number of bytes read from a file at a time."""
        return self._getint("backup", "hash_chunk_bytes", fallback=65536)


def write_new_config(filename: str) -> None:
    """Write a new config file if one does not exist."""
    if os.path.exists(filename):
        return

    name = os.path.splitext(os.path.basename(filename))[0]
    config = NEW_CONFIG.format(name=name, filename=filename.replace(".ini", ".db"))

    with open(filename, "w") as config_file:
        config_file.write(config)
