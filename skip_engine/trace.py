"""
Oldest-ancestor lookup in job traces.

When a job is skipped because of job N, and job N was itself skipped because of
an older job, the job that actually ran is the "oldest ancestor". Each skipping
job prints ``[skip-ci-oldest-ancestor]=<url>`` to its trace so the next one can
follow the chain without walking it.
"""

from __future__ import annotations

import logging
from typing import Protocol

from .data_models import JobRecord
from .errors import ApiError

logger = logging.getLogger(__name__)

SKIP_CI_DONE_KEY = "[skip-ci-done]"
SKIP_CI_OLDEST_ANCESTOR_KEY = "[skip-ci-oldest-ancestor]"
MAX_TRACE_SIZE = 100_000


class TraceSource(Protocol):
    """Reads the head of a job trace (see :class:`JobsApiClient`)."""

    def read_trace_head(self, job_id: str, *, max_bytes: int) -> str:
        """Return at most ``max_bytes`` of the trace of ``job_id``."""
        ...


def parse_oldest_ancestor(trace: str) -> str | None:
    """
    Extract the oldest ancestor URL from a trace.

    Parameters
    ----------
    trace:
        Trace text (or its head).

    Returns
    -------
    str | None
        The URL following ``[skip-ci-oldest-ancestor]=``, or None when the key
        is absent, appears after ``[skip-ci-done]``, or its line is incomplete.
    """
    index = trace.find(SKIP_CI_OLDEST_ANCESTOR_KEY)
    done = trace.find(SKIP_CI_DONE_KEY)
    if index < 0 or (0 <= done < index):
        return None
    start = index + len(SKIP_CI_OLDEST_ANCESTOR_KEY) + 1
    end = trace.find("\n", start)
    if end < 0:
        return None
    found = trace[start:end].strip()
    return found or None


def oldest_ancestor_line(url: str) -> str:
    """Render the trace line that later jobs parse."""
    return f"{SKIP_CI_OLDEST_ANCESTOR_KEY}={url}"


def find_oldest_ancestor(source: TraceSource, job: JobRecord) -> str:
    """
    Return the oldest ancestor of ``job``, falling back to its own URL.

    Trace failures are logged and never raised.
    """
    try:
        trace = source.read_trace_head(str(job.id), max_bytes=MAX_TRACE_SIZE)
    except ApiError as exc:
        logger.debug("Cannot read trace of job %s: %s", job.id, exc)
        return job.web_url
    found = parse_oldest_ancestor(trace)
    logger.debug("Oldest ancestor in trace of job %s: %r", job.id, found)
    return found if found else job.web_url
