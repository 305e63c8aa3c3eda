from __future__ import annotations

from datetime import datetime
from typing import Protocol


class TimeProvider(Protocol):
    """Source of the timestamp shared by every record written during one run."""

    @property
    def run_timestamp(self) -> float:
        ...


class SystemTimeProvider:
    """Captures the wall clock once, when the run starts."""

    def __init__(self) -> None:
        self._start = datetime.now().timestamp()

    @property
    def run_timestamp(self) -> float:
        return self._start


class FixedTimeProvider:
    """Always reports the timestamp it was given."""

    def __init__(self, timestamp: float) -> None:
        self._timestamp = timestamp

    @property
    def run_timestamp(self) -> float:
        return self._timestamp
