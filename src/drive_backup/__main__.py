from __future__ import annotations

import argparse
import logging

from drive_backup.backupconfig import BackupConfig
from drive_backup.backupconfig import write_new_config
from drive_backup.backuperror import BackupError
from drive_backup.backuperror import ConfigError
from drive_backup.backuprunner import BackupRunner

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

logger = logging.getLogger("drive_backup")


def parse_args(args: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Back up changed files matching the configured patterns, keeping a limited number of versions.",
    )
    parser.add_argument(
        "config",
        type=str,
        help="The path to the configuration file.",
    )
    parser.add_argument(
        "--reconcile",
        help="Remove backup artifacts without a history record instead of running a backup.",
        default=False,
        action="store_true",
    )
    parser.add_argument(
        "--debug",
        help="Enable debug logging.",
        default=False,
        action="store_true",
    )
    parser.add_argument(
        "--log-file",
        help="Also log to the file named by system.log_path in the config.",
        default=False,
        action="store_true",
    )
    parser.add_argument(
        "--make-config",
        help="Create a default configuration file.",
        default=False,
        action="store_true",
    )
    return parser.parse_args(args)


def add_log_file_handler(log_path: str) -> None:
    """Copy every record, debug included, to the configured log file."""
    try:
        file_handler = logging.FileHandler(log_path)
    except OSError as error:
        raise ConfigError(f"Could not open log file at {log_path}: {error}") from error

    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    logging.getLogger().addHandler(file_handler)
    logger.debug("Logging to %s", log_path)


def main(*, cli_args: list[str] | None = None) -> int:
    """Main entry point."""
    args = parse_args(cli_args)

    if args.make_config:
        write_new_config(args.config)
        return 0

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format=LOG_FORMAT,
        datefmt=DATE_FORMAT,
    )

    try:
        config = BackupConfig(args.config)
        if args.log_file:
            add_log_file_handler(config.log_path)

        with BackupRunner(config) as runner:
            if args.reconcile:
                runner.reconcile()

            else:
                runner.run_once()

    except BackupError as error:
        logger.error("Backup aborted: %s", error)
        return 1

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
