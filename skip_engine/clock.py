"""Time source for the artifact expiry check."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Protocol


class Clock(Protocol):
    """Returns the aware UTC time artifact expiries are compared against."""

    def now(self) -> datetime: ...


@dataclass(frozen=True, slots=True)
class SystemClock:
    """Wall-clock UTC time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class FixedClock:
    """Pinned time; ``at`` must be timezone-aware."""

    at: datetime

    def now(self) -> datetime:
        return self.at
