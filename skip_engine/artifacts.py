"""
Artifact retrieval for a matched job.

When a job is skipped, later jobs may still depend on the files it would have
produced. Those are restored from the matched job's artifact archive.

Safety posture
--------------
- Retrieval is best-effort: callers log :class:`ArtifactError` and keep the
  skip decision.
- Archives are downloaded to a temporary directory, never into the checkout.
- Archive members must resolve inside the destination; anything else aborts
  extraction before a single file is written.
"""

from __future__ import annotations

import logging
import tempfile
import zipfile
from pathlib import Path
from typing import Protocol

from .clock import Clock, SystemClock
from .data_models import JobRecord
from .errors import ArtifactError

logger = logging.getLogger(__name__)

ARCHIVE_NAME = "artifacts.zip"


class ArtifactSource(Protocol):
    """Downloads a job's artifact archive (see :class:`JobsApiClient`)."""

    def download_artifacts(self, job_id: str, destination: Path) -> Path:
        """Write the archive of ``job_id`` to ``destination`` and return it."""
        ...


def artifacts_expired(job: JobRecord, clock: Clock) -> bool:
    """
    Return True when the job's artifacts have already expired.

    Raises
    ------
    ArtifactError
        If the expiry timestamp cannot be parsed.
    """
    try:
        expiry = job.artifacts_expiry()
    except ValueError as exc:
        raise ArtifactError(
            f"Invalid artifacts_expire_at for job {job.id}: {job.artifacts_expire_at!r}"
        ) from exc
    return expiry is not None and expiry < clock.now()


def extract_zip(archive_path: Path, destination_dir: Path) -> list[Path]:
    """
    Extract a ZIP archive into ``destination_dir``.

    Parameters
    ----------
    archive_path:
        Path to the ``.zip`` file.
    destination_dir:
        Directory to extract into (created if missing).

    Returns
    -------
    list[Path]
        Extracted file paths, in archive order.

    Raises
    ------
    ArtifactError
        If the archive is invalid, a member escapes ``destination_dir``, or the
        extraction fails.
    """
    destination_dir = destination_dir.resolve()
    try:
        destination_dir.mkdir(parents=True, exist_ok=True)
        with zipfile.ZipFile(archive_path, "r") as zf:
            members = zf.infolist()
            for member in members:
                target = (destination_dir / member.filename).resolve()
                if not target.is_relative_to(destination_dir):
                    raise ArtifactError(
                        f"Unsafe archive member {member.filename!r}: not within {destination_dir}"
                    )
            extracted: list[Path] = []
            for member in members:
                logger.debug("Extracting %s", member.filename)
                extracted.append(Path(zf.extract(member, destination_dir)))
    except zipfile.BadZipFile as exc:
        raise ArtifactError(f"Invalid artifact archive: {archive_path}") from exc
    except OSError as exc:
        raise ArtifactError(f"Failed to extract {archive_path}: {exc}") from exc
    return extracted


class ArtifactRetriever:
    """
    Downloads and extracts the artifacts of a matched job.

    Parameters
    ----------
    source:
        Artifact download client.
    destination_dir:
        Checkout directory the archive is extracted into.
    clock:
        Time source for the expiry check.
    """

    def __init__(
        self,
        source: ArtifactSource,
        destination_dir: Path,
        *,
        clock: Clock | None = None,
    ) -> None:
        self._source = source
        self._destination_dir = destination_dir
        self._clock = clock if clock is not None else SystemClock()

    def retrieve(self, job_id: str, job: JobRecord | None = None) -> bool:
        """
        Restore the artifacts of ``job_id``.

        Parameters
        ----------
        job_id:
            Matched job id.
        job:
            Full job record when known; enables the expiry checks.

        Returns
        -------
        bool
            True when an archive was extracted, False when the job has no
            artifacts or they expired.

        Raises
        ------
        ArtifactError
            If the download or the extraction fails.
        """
        if job is not None:
            if job.artifacts_expire_at is None:
                logger.info("Job %s has no artifacts, nothing to download", job_id)
                return False
            if artifacts_expired(job, self._clock):
                logger.warning(
                    "Artifacts of job %s expired at %s, ignoring them", job_id, job.artifacts_expire_at
                )
                return False

        with tempfile.TemporaryDirectory(prefix="skipci-artifacts-") as tmp:
            archive_path = Path(tmp) / ARCHIVE_NAME
            self._source.download_artifacts(job_id, archive_path)
            extracted = extract_zip(archive_path, self._destination_dir)
        logger.info("Extracted %d artifact files of job %s", len(extracted), job_id)
        return True
