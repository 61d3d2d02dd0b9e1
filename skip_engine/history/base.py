"""History store capability shared by the remote and local strategies."""

from __future__ import annotations

from typing import Protocol

from skip_engine.data_models import LookupResult


class HistoryStore(Protocol):
    """Answers "has this fingerprint succeeded before" for the current job."""

    def lookup(self, fingerprint: str) -> LookupResult:
        """
        Search prior successes for ``fingerprint``.

        Returns
        -------
        LookupResult
            The matching job, or a result with ``matched == False``.
        """
        ...

    def record_miss(self, fingerprint: str) -> None:
        """Record that the current job ran for ``fingerprint`` (no match found)."""
        ...
