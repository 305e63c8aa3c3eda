from __future__ import annotations

import glob
import logging
import os
import re
from pathlib import Path
from typing import Iterable
from typing import Iterator

from .backuperror import EnumerationError
from .backuperror import PatternError

logger = logging.getLogger(__name__)


def iter_glob_files(
    patterns: Iterable[str],
    *,
    exclude_file_pattern: str | None = None,
) -> Iterator[Path]:
    """
    Yield the absolute path of every file matching the given glob patterns.

    Patterns are expanded in order, `~` is expanded and `**` matches any
    number of directories. Directories are skipped and a file matched by
    more than one pattern is only yielded once.

    Args:
        patterns: Glob patterns to expand.

    Keyword Args:
        exclude_file_pattern: Regular expression matched against the file
            name. Matching files are skipped.

    Raises:
        PatternError: A pattern is empty or the exclusion is not a valid regex.
        EnumerationError: A matched path could not be resolved.
    """
    try:
        exclude = re.compile(exclude_file_pattern) if exclude_file_pattern else None
    except re.error as error:
        raise PatternError(f"Invalid exclude pattern '{exclude_file_pattern}'") from error

    seen: set[Path] = set()

    for pattern in patterns:
        if not pattern.strip():
            raise PatternError("File patterns cannot be empty")

        logger.debug("Expanding pattern: %s", pattern)

        for match in glob.iglob(os.path.expanduser(pattern), recursive=True):
            try:
                path = Path(match).resolve(strict=True)

            except FileNotFoundError:
                # The file has been moved after the glob matched it
                logger.debug("'%s' moved during enumeration.", match)
                continue

            except (OSError, RuntimeError) as error:
                raise EnumerationError(f"Could not resolve '{match}': {error}") from error

            if path.is_dir() or path in seen:
                continue

            if exclude and exclude.search(path.name):
                logger.debug("Ignoring file `%s`", path)
                continue

            seen.add(path)
            yield path
