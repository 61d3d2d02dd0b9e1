"""
Local bounded history log.

The log is a plain text file kept alive between pipelines by the CI cache. Each
line is ``<digest>:<job_id>``, newest first, and the file never holds more than
:data:`HISTORY_CAPACITY` lines after a write.

Design constraints
------------------
- Append (prepend, really) is the only mutation.
- No exclusive lock is taken. Two concurrent writers sharing a cache may lose
  one entry (last replace wins); cache keys are expected to be scoped per job.
- An unreadable log is treated as empty: losing history costs a skip
  opportunity, it must not break the pipeline.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from skip_engine.data_models import NOT_FOUND, HistoryEntry, LookupResult
from skip_engine.errors import HistoryLogError
from skip_engine.fingerprint import digest

logger = logging.getLogger(__name__)

HISTORY_CAPACITY = 500


@dataclass(frozen=True, slots=True)
class LocalHistoryLog:
    """
    History store backed by the local log file.

    Attributes
    ----------
    path:
        Log file location.
    job_id:
        Current job id, recorded on a miss.
    capacity:
        Maximum number of entries kept.
    """

    path: Path
    job_id: str
    capacity: int = HISTORY_CAPACITY

    def read_entries(self) -> list[HistoryEntry]:
        """
        Load the log, newest first.

        Returns
        -------
        list[HistoryEntry]
            Parsed entries; malformed lines are dropped. A missing or unreadable
            file yields an empty list.
        """
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.debug("History log %s does not exist yet", self.path)
            return []
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("History log %s is unreadable (%s), treating it as empty", self.path, exc)
            return []

        entries: list[HistoryEntry] = []
        for line in text.splitlines():
            entry = HistoryEntry.from_line(line)
            if entry is not None:
                entries.append(entry)
        logger.debug("History log %s holds %d entries", self.path, len(entries))
        return entries

    def find(self, key: str) -> str | None:
        """
        Return the job id of the newest entry whose digest equals ``key``.

        Parameters
        ----------
        key:
            Fingerprint digest.
        """
        for entry in self.read_entries():
            if entry.digest == key:
                logger.debug("Found history line %s", entry.to_line())
                return entry.job_id
        return None

    def append(self, key: str, job_id: str) -> None:
        """
        Prepend ``key:job_id`` and truncate the log to its capacity.

        Raises
        ------
        HistoryLogError
            If the log cannot be written.
        """
        entries = [HistoryEntry(digest=key, job_id=job_id), *self.read_entries()]
        del entries[self.capacity :]
        payload = "".join(entry.to_line() + "\n" for entry in entries)

        temp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with temp_path.open("w", encoding="utf-8", newline="\n") as handle:
                handle.write(payload)
            os.replace(temp_path, self.path)
        except OSError as exc:
            try:
                temp_path.unlink(missing_ok=True)
            except OSError:
                pass
            raise HistoryLogError(f"Failed to write history log: {self.path} ({exc!s})") from exc
        logger.debug("Prepended %s:%s to %s", key, job_id, self.path)

    def lookup(self, fingerprint: str) -> LookupResult:
        """Look the fingerprint's digest up in the log."""
        found = self.find(digest(fingerprint))
        if found is None:
            return NOT_FOUND
        return LookupResult(job_id=found)

    def record_miss(self, fingerprint: str) -> None:
        """Record the current job as the newest success candidate for ``fingerprint``."""
        self.append(digest(fingerprint), self.job_id)
