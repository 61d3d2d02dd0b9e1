"""
Tree fingerprints.

A fingerprint is the raw ``git ls-tree`` listing of the configured paths at a
revision: one ``<mode> <type> <object-id>\\t<path>`` line per entry. Object ids
are content hashes, so equal listings mean equal content and modes under the
configured paths.

Design notes
------------
- The listing tool sits behind :class:`FingerprintProvider` so the scan and the
  decision engine can be exercised without a repository.
- Empty listings are rejected with :class:`TreeEmptyError`; an empty string must
  never be used as a match key.
- Digests are SHA-256 only, with a minimal seam in :func:`digest`.
"""

from __future__ import annotations

import hashlib
import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, Sequence

from .errors import ToolInvocationError, TreeEmptyError

logger = logging.getLogger(__name__)


class FingerprintProvider(Protocol):
    """Computes the canonical fingerprint of a path set at a revision."""

    def fingerprint(self, revision: str, paths: Sequence[str]) -> str:
        """
        Return the fingerprint of ``paths`` at ``revision``.

        Raises
        ------
        ToolInvocationError
            If the listing tool fails (e.g., unknown revision).
        TreeEmptyError
            If the listing is empty.
        """
        ...


@dataclass(frozen=True, slots=True)
class GitTreeFingerprint:
    """
    Fingerprint provider backed by ``git ls-tree``.

    Attributes
    ----------
    repo_root:
        Working directory for the git invocation.
    git_executable:
        Name or path of the git binary.
    """

    repo_root: Path
    git_executable: str = "git"

    def fingerprint(self, revision: str, paths: Sequence[str]) -> str:
        """
        List the configured paths at ``revision``.

        Parameters
        ----------
        revision:
            Commit id or symbolic revision (e.g., ``HEAD``).
        paths:
            Paths in configured order; passed as separate arguments after ``--``.

        Returns
        -------
        str
            Raw listing, newline-terminated.

        Raises
        ------
        ToolInvocationError
            If git is missing or exits non-zero.
        TreeEmptyError
            If no entry matched the configured paths.
        """
        cmd = [self.git_executable, "ls-tree", revision, "--", *paths]
        logger.debug("Running %s", " ".join(cmd))
        try:
            completed = subprocess.run(
                cmd,
                cwd=self.repo_root,
                check=False,
                capture_output=True,
                text=True,
            )
        except FileNotFoundError as exc:
            raise ToolInvocationError(f"Missing required executable: {self.git_executable!r}") from exc
        except OSError as exc:
            raise ToolInvocationError(f"Failed to run {cmd[0]!r}: {exc}") from exc

        if completed.returncode != 0:
            stderr = (completed.stderr or "").strip()
            raise ToolInvocationError(
                f"git ls-tree failed for revision {revision!r} (exit={completed.returncode}): {stderr}"
            )

        listing = completed.stdout
        logger.debug("Tree of %s:\n%s\n%s%s", revision, "-" * 80, listing, "-" * 80)
        if not listing.strip():
            raise TreeEmptyError(f"Tree of {revision!r} is empty for paths: {' '.join(paths)}")
        return listing


def digest(fingerprint: str) -> str:
    """
    Compute the compact history key of a fingerprint.

    Parameters
    ----------
    fingerprint:
        Non-empty raw fingerprint.

    Returns
    -------
    str
        Lowercase SHA-256 hex digest of the UTF-8 encoded fingerprint.

    Raises
    ------
    TreeEmptyError
        If the fingerprint is empty.
    """
    if not fingerprint:
        raise TreeEmptyError("Cannot digest an empty fingerprint")
    return hashlib.sha256(fingerprint.encode("utf-8")).hexdigest()
