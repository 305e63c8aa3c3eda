from __future__ import annotations

from .backupconfig import BackupConfig
from .backuprunner import BackupRunner
from .backuprunner import RunSummary

__all__ = [
    "BackupConfig",
    "BackupRunner",
    "RunSummary",
]
