"""
Remote job history: a bounded scan over the project's successful jobs.

Pages are fetched sequentially (most recent first, as returned by the API).
Every job carrying the current job name is a candidate; its revision is
fingerprinted with the same path set and compared to the current fingerprint.
The first equal fingerprint wins.

Since a scan cannot be cancelled from outside, it limits itself: it stops once
the number of checked candidates, mismatched same-name candidates or same-ref
candidates reaches its bound (see :class:`~skip_engine.config.ScanLimits`).
Jobs carrying another name are skipped without counting.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Protocol, Sequence

from skip_engine.config import ScanLimits
from skip_engine.data_models import (
    NOT_FOUND,
    CandidateOutcome,
    CandidateResult,
    JobRecord,
    LookupResult,
)
from skip_engine.errors import ToolInvocationError, TreeEmptyError
from skip_engine.fingerprint import FingerprintProvider

logger = logging.getLogger(__name__)


class ScanState(str, Enum):
    """States of the remote scan."""

    SCANNING = "scanning"
    MATCHED = "matched"
    EXHAUSTED = "exhausted"
    ABORTED_BY_LIMIT = "aborted_by_limit"


class JobSource(Protocol):
    """Paginated source of successful jobs (see :class:`JobsApiClient`)."""

    def list_successful_jobs(self, page: int) -> list[JobRecord]:
        """Return one page of successful jobs, most recent first."""
        ...


@dataclass(frozen=True, slots=True)
class ScanReport:
    """
    Final state of a remote scan.

    Attributes
    ----------
    state:
        Terminal state (MATCHED, EXHAUSTED or ABORTED_BY_LIMIT).
    job:
        Matching job when ``state`` is MATCHED.
    pages_fetched:
        Number of listing pages requested.
    jobs_checked:
        Same-name candidates checked; jobs with other names are not counted.
    same_job_count:
        Same-name candidates evaluated without a match.
    same_ref_count:
        Same-name, same-ref candidates evaluated without a match.
    """

    state: ScanState
    job: JobRecord | None
    pages_fetched: int
    jobs_checked: int
    same_job_count: int
    same_ref_count: int


class RemoteJobHistory:
    """
    History store that searches the CI API for a prior matching job.

    Parameters
    ----------
    source:
        Paginated job listing.
    fingerprints:
        Provider used to fingerprint candidate revisions.
    paths:
        Configured path set.
    job_name:
        Current job name.
    ref_name:
        Current branch or tag.
    limits:
        Scan bounds.
    """

    def __init__(
        self,
        source: JobSource,
        fingerprints: FingerprintProvider,
        *,
        paths: Sequence[str],
        job_name: str,
        ref_name: str,
        limits: ScanLimits | None = None,
    ) -> None:
        self._source = source
        self._fingerprints = fingerprints
        self._paths = tuple(paths)
        self._job_name = job_name
        self._ref_name = ref_name
        self._limits = limits or ScanLimits()

    def evaluate(self, job: JobRecord, fingerprint: str) -> CandidateResult:
        """
        Compare one candidate's fingerprint with ``fingerprint``.

        A candidate whose revision cannot be fingerprinted is reported as
        UNEVALUABLE instead of raising.
        """
        try:
            candidate = self._fingerprints.fingerprint(job.revision, self._paths)
        except (ToolInvocationError, TreeEmptyError) as exc:
            return CandidateResult(job=job, outcome=CandidateOutcome.UNEVALUABLE, detail=str(exc))
        if candidate == fingerprint:
            return CandidateResult(job=job, outcome=CandidateOutcome.MATCHED)
        return CandidateResult(job=job, outcome=CandidateOutcome.MISMATCHED)

    def scan(self, fingerprint: str) -> ScanReport:
        """
        Run the bounded scan for ``fingerprint``.

        Raises
        ------
        ApiError
            If a job listing page cannot be fetched.
        """
        limits = self._limits
        jobs_checked = 0
        same_job_count = 0
        same_ref_count = 0
        pages_fetched = 0
        outcomes_by_revision: dict[str, CandidateOutcome] = {}

        def report(state: ScanState, job: JobRecord | None = None) -> ScanReport:
            logger.debug(
                "Scan %s: pages=%d/%d jobs=%d/%d same_job=%d/%d same_ref=%d/%d",
                state.value,
                pages_fetched,
                limits.page_limit,
                jobs_checked,
                limits.job_limit,
                same_job_count,
                limits.same_job_limit,
                same_ref_count,
                limits.same_ref_limit,
            )
            return ScanReport(
                state=state,
                job=job,
                pages_fetched=pages_fetched,
                jobs_checked=jobs_checked,
                same_job_count=same_job_count,
                same_ref_count=same_ref_count,
            )

        for page in range(1, limits.page_limit + 1):
            logger.debug("Processing page %d", page)
            jobs = self._source.list_successful_jobs(page)
            pages_fetched += 1
            if not jobs:
                return report(ScanState.EXHAUSTED)

            for job in jobs:
                if job.name != self._job_name:
                    continue
                outcome = outcomes_by_revision.get(job.revision)
                if outcome is None:
                    result = self.evaluate(job, fingerprint)
                    outcome = result.outcome
                    outcomes_by_revision[job.revision] = outcome
                    if outcome is CandidateOutcome.UNEVALUABLE:
                        logger.info("Job %s is unevaluable: %s", job.id, result.detail)
                if outcome is CandidateOutcome.MATCHED:
                    logger.debug("Job %s matches the current tree", job.id)
                    return report(ScanState.MATCHED, job)
                if job.ref == self._ref_name:
                    same_ref_count += 1
                    logger.debug("Job %s has the same ref (%d)", job.id, same_ref_count)
                same_job_count += 1
                jobs_checked += 1
                if (
                    jobs_checked >= limits.job_limit
                    or same_job_count >= limits.same_job_limit
                    or same_ref_count >= limits.same_ref_limit
                ):
                    return report(ScanState.ABORTED_BY_LIMIT)

        return report(ScanState.EXHAUSTED)

    def lookup(self, fingerprint: str) -> LookupResult:
        """Scan the remote history and return the first matching job, if any."""
        scan = self.scan(fingerprint)
        if scan.state is ScanState.MATCHED and scan.job is not None:
            return LookupResult(job_id=str(scan.job.id), job=scan.job)
        return NOT_FOUND

    def record_miss(self, fingerprint: str) -> None:
        """No-op: the CI API records successful jobs by itself."""
        return None
