"""Data models for the skip engine.

This module defines the typed representation of the values that flow between
the fingerprint provider, the history stores and the decision engine.

The models are standard-library-only (dataclasses and enums) to keep the core
engine lightweight and deterministic.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping, Self

MARKER_TRUE = "true"
MARKER_FALSE = "false"


class Decision(str, Enum):
    """Outcome recorded in the completion marker."""

    SKIP = "skip"
    NO_SKIP = "no-skip"

    @classmethod
    def from_bool(cls, skip: bool) -> Decision:
        """Map a boolean skip flag to a Decision."""
        return cls.SKIP if skip else cls.NO_SKIP

    @classmethod
    def from_marker_text(cls, text: str) -> Decision:
        """Parse marker file content; anything but ``true`` means no-skip."""
        return cls.SKIP if text.strip() == MARKER_TRUE else cls.NO_SKIP

    @property
    def marker_text(self) -> str:
        """Literal written to the marker file."""
        return MARKER_TRUE if self is Decision.SKIP else MARKER_FALSE


class DecisionSignal(str, Enum):
    """
    Result of one decision cycle.

    Callers map these values to their own exit convention; see
    :data:`EXIT_CODES` for the one used by the CLI.
    """

    SKIP = "skip"
    NO_SKIP_MARKER_CACHED = "no_skip_marker_cached"
    NOT_FOUND = "not_found"
    CONFIG_ERROR = "config_error"
    TREE_EMPTY = "tree_empty"
    ARTIFACT_FETCH_FAILED_BUT_SKIPPED = "artifact_fetch_failed_but_skipped"
    FATAL_ERROR = "fatal_error"

    @property
    def is_skip(self) -> bool:
        """True when the guarded step may be bypassed."""
        return self in (DecisionSignal.SKIP, DecisionSignal.ARTIFACT_FETCH_FAILED_BUT_SKIPPED)


EXIT_CODES: Mapping[DecisionSignal, int] = {
    DecisionSignal.SKIP: 0,
    DecisionSignal.ARTIFACT_FETCH_FAILED_BUT_SKIPPED: 0,
    DecisionSignal.CONFIG_ERROR: 1,
    DecisionSignal.FATAL_ERROR: 2,
    DecisionSignal.NO_SKIP_MARKER_CACHED: 3,
    DecisionSignal.NOT_FOUND: 4,
    DecisionSignal.TREE_EMPTY: 5,
}


class HistoryStrategy(str, Enum):
    """Supported history storage strategies."""

    API = "api"
    CACHE = "cache"


def _require_keys(payload: Mapping[str, Any], keys: set[str], *, context: str) -> None:
    missing = keys.difference(payload.keys())
    if missing:
        missing_str = ", ".join(sorted(missing))
        raise ValueError(f"Missing required keys in {context}: {missing_str}")


@dataclass(frozen=True, slots=True)
class JobRecord:
    """
    A successful job as reported by the CI API.

    Attributes
    ----------
    id:
        Numeric job identifier.
    name:
        Job name (e.g., "test").
    ref:
        Branch or tag the job ran for.
    revision:
        Commit id the job ran on.
    artifacts_expire_at:
        Raw ISO-8601 expiry of the job artifacts, or None when the job has none.
    web_url:
        Human-facing URL of the job.
    """

    id: int
    name: str
    ref: str
    revision: str
    artifacts_expire_at: str | None = None
    web_url: str = ""

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> Self:
        """Construct a :class:`JobRecord` from one element of the jobs listing."""
        _require_keys(payload, {"id", "name", "commit"}, context="job")
        commit = payload["commit"]
        if not isinstance(commit, Mapping) or "id" not in commit:
            raise ValueError("Missing required keys in job.commit: id")
        expire = payload.get("artifacts_expire_at")
        return cls(
            id=int(payload["id"]),
            name=str(payload["name"]),
            ref=str(payload.get("ref") or ""),
            revision=str(commit["id"]),
            artifacts_expire_at=str(expire) if expire else None,
            web_url=str(payload.get("web_url") or ""),
        )

    def artifacts_expiry(self) -> datetime | None:
        """
        Parse the artifact expiry timestamp.

        Returns
        -------
        datetime | None
            Aware UTC datetime, or None when the job has no artifacts.

        Raises
        ------
        ValueError
            If the timestamp is not ISO-8601.
        """
        if self.artifacts_expire_at is None:
            return None
        parsed = datetime.fromisoformat(self.artifacts_expire_at.replace("Z", "+00:00"))
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.astimezone(timezone.utc)


@dataclass(frozen=True, slots=True)
class HistoryEntry:
    """One line of the local history log: ``<digest>:<job_id>``."""

    digest: str
    job_id: str

    @classmethod
    def from_line(cls, line: str) -> Self | None:
        """Parse a log line, returning None for blank or malformed lines."""
        digest, sep, job_id = line.strip().rpartition(":")
        if not sep or not digest or not job_id:
            return None
        return cls(digest=digest, job_id=job_id)

    def to_line(self) -> str:
        """Render the entry as a log line (without newline)."""
        return f"{self.digest}:{self.job_id}"


class CandidateOutcome(str, Enum):
    """Evaluation outcome for one candidate job during a remote scan."""

    MATCHED = "matched"
    MISMATCHED = "mismatched"
    UNEVALUABLE = "unevaluable"


@dataclass(frozen=True, slots=True)
class CandidateResult:
    """
    Per-candidate evaluation result.

    Attributes
    ----------
    job:
        The candidate job.
    outcome:
        Matched, mismatched, or unevaluable (fingerprint could not be computed).
    detail:
        Optional human-readable reason, set for unevaluable candidates.
    """

    job: JobRecord
    outcome: CandidateOutcome
    detail: str = ""


@dataclass(frozen=True, slots=True)
class LookupResult:
    """
    Result of a history store lookup.

    Attributes
    ----------
    job_id:
        Identifier of the job whose fingerprint matched, or None.
    job:
        Full job record when the store knows it (remote strategy only).
    """

    job_id: str | None = None
    job: JobRecord | None = None

    @property
    def matched(self) -> bool:
        """True when a prior successful job was found."""
        return self.job_id is not None


NOT_FOUND = LookupResult()


@dataclass(frozen=True, slots=True)
class DecisionResult:
    """
    Outcome of :meth:`DecisionEngine.decide`.

    Attributes
    ----------
    signal:
        Decision signal for the caller's exit convention.
    job_id:
        Matched job id, when the decision came from a history match.
    job_url:
        Web URL of the matched job, when known.
    oldest_ancestor:
        URL of the first job in the chain of skips, when known.
    message:
        Human-readable detail for error signals.
    """

    signal: DecisionSignal
    job_id: str | None = None
    job_url: str | None = None
    oldest_ancestor: str | None = None
    message: str = ""

    @property
    def exit_code(self) -> int:
        """Process exit code for the CLI."""
        return EXIT_CODES[self.signal]
