"""
Completion marker: the per-job idempotency gate.

The first decision in a job writes ``true`` or ``false`` to the marker file;
every later invocation in the same job reads it back and stops there.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from .data_models import Decision
from .errors import MarkerError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CompletionMarker:
    """
    Marker file for one (project id, job id) key.

    Attributes
    ----------
    path:
        Marker file location, see :attr:`SkipConfig.marker_path`.
    """

    path: Path

    def check(self) -> Decision | None:
        """
        Read a previously recorded decision.

        Returns
        -------
        Decision | None
            The stored decision, or None when the marker is absent or unreadable.
        """
        try:
            content = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.debug("Marker %s does not exist", self.path)
            return None
        except OSError as exc:
            logger.debug("Marker %s is unreadable (%s), treating as absent", self.path, exc)
            return None
        logger.debug("Marker %s exists, content=%r", self.path, content)
        return Decision.from_marker_text(content)

    def write(self, decision: Decision) -> None:
        """
        Persist ``decision``; an existing marker is overwritten.

        Raises
        ------
        MarkerError
            If the marker cannot be written.
        """
        logger.debug("Writing %s to marker %s", decision.marker_text, self.path)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(decision.marker_text, encoding="utf-8")
        except OSError as exc:
            raise MarkerError(f"Failed to write marker: {self.path} ({exc!s})") from exc
