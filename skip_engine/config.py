"""
Configuration for a single skip decision.

The configuration is built exactly once at startup (usually from the CI
environment via :func:`config_from_env`) and passed explicitly into the engine.
Nothing below this module reads environment variables.

Notes
-----
Only the inputs required to locate the completion marker are validated here.
Strategy-specific settings (paths, API token) are validated by the decision
engine after the marker check, so a job whose marker already exists never fails
on configuration.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping

from .data_models import HistoryStrategy
from .errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_PAGE_LIMIT = 5
DEFAULT_JOB_LIMIT = 1000
DEFAULT_SAME_JOB_LIMIT = 100
DEFAULT_SAME_REF_LIMIT = 2

HISTORY_FILE_NAME = "ci_ok_history"

_TRUE = "true"


@dataclass(frozen=True, slots=True)
class ScanLimits:
    """
    Bounds for the remote job scan.

    Attributes
    ----------
    page_limit:
        Maximum number of job listing pages fetched.
    job_limit:
        Maximum number of same-name candidates checked.
    same_job_limit:
        Maximum number of same-name jobs evaluated without a match.
    same_ref_limit:
        Maximum number of same-name, same-ref jobs evaluated without a match.
    """

    page_limit: int = DEFAULT_PAGE_LIMIT
    job_limit: int = DEFAULT_JOB_LIMIT
    same_job_limit: int = DEFAULT_SAME_JOB_LIMIT
    same_ref_limit: int = DEFAULT_SAME_REF_LIMIT


@dataclass(frozen=True, slots=True)
class SkipConfig:
    """
    Immutable settings for one decision.

    Attributes
    ----------
    project_path:
        Checkout directory; the marker and the history log live here.
    project_id:
        CI project identifier (marker key, API path).
    job_id:
        Current CI job identifier (marker key, history entry value).
    paths:
        Paths to fingerprint, in configured order.
    strategy:
        History storage strategy.
    job_name:
        Current job name; remote candidates must carry the same name.
    ref_name:
        Current branch or tag name.
    api_url:
        CI API v4 base URL.
    api_token:
        Read-API token for the job listing (remote strategy).
    job_token:
        CI job token used for artifact downloads.
    forced_decision:
        Override value: True/False bypasses the whole lookup, None disables it.
    fetch_artifacts:
        Download and extract the matched job's artifacts.
    verbose:
        Enable debug logging.
    limits:
        Remote scan bounds.
    """

    project_path: Path
    project_id: str
    job_id: str
    paths: tuple[str, ...] = ()
    strategy: HistoryStrategy = HistoryStrategy.API
    job_name: str = ""
    ref_name: str = ""
    api_url: str = ""
    api_token: str = ""
    job_token: str = ""
    forced_decision: bool | None = None
    fetch_artifacts: bool = True
    verbose: bool = False
    limits: ScanLimits = field(default_factory=ScanLimits)

    @property
    def marker_path(self) -> Path:
        """Completion marker path derived from (project id, job id)."""
        return self.project_path / f"ci-skip-{self.project_id}-{self.job_id}"

    @property
    def history_path(self) -> Path:
        """Local history log path."""
        return self.project_path / HISTORY_FILE_NAME

    @property
    def jobs_api_url(self) -> str:
        """Base URL of the project's jobs endpoint."""
        return f"{self.api_url.rstrip('/')}/projects/{self.project_id}/jobs"

    def validate_for_lookup(self) -> None:
        """
        Check settings required to compute a fingerprint and query history.

        Raises
        ------
        ConfigError
            If the path set is empty, or the remote strategy lacks its token,
            job name or API URL.
        """
        if not self.paths:
            raise ConfigError("SKIP_IF_TREE_OK_IN_PAST is empty, set the list of paths to check")
        if self.strategy is HistoryStrategy.API:
            if not self.api_token:
                raise ConfigError("API_READ_TOKEN is empty")
            if not self.job_name:
                raise ConfigError("CI_JOB_NAME is empty")
            if not self.api_url:
                raise ConfigError("CI_API_V4_URL is empty")

    def describe(self) -> str:
        """Render the settings for debug output, with tokens redacted."""
        rows = [
            ("project_path", str(self.project_path)),
            ("project_id", self.project_id),
            ("job_id", self.job_id),
            ("job_name", self.job_name),
            ("ref_name", self.ref_name),
            ("strategy", self.strategy.value),
            ("paths", " ".join(self.paths)),
            ("api_url", self.api_url),
            ("api_token", _redact(self.api_token)),
            ("job_token", _redact(self.job_token)),
            ("forced_decision", repr(self.forced_decision)),
            ("fetch_artifacts", repr(self.fetch_artifacts)),
            ("page_limit", str(self.limits.page_limit)),
            ("job_limit", str(self.limits.job_limit)),
            ("same_job_limit", str(self.limits.same_job_limit)),
            ("same_ref_limit", str(self.limits.same_ref_limit)),
        ]
        width = max(len(key) for key, _ in rows)
        return "\n".join(f"  {key.ljust(width)} = {value}" for key, value in rows)


def _redact(secret: str) -> str:
    return "*" * 10 if secret else ""


def resolve_project_path(builds_dir: str, project_dir: str) -> Path:
    """
    Resolve the checkout directory as seen from the job.

    Parameters
    ----------
    builds_dir:
        Value of CI_BUILDS_DIR (may be empty).
    project_dir:
        Value of CI_PROJECT_DIR.

    Returns
    -------
    Path
        ``project_dir`` when it lives under ``builds_dir``; otherwise
        ``builds_dir`` joined with ``project_dir`` minus its first component.
    """
    if project_dir.startswith(builds_dir):
        return Path(project_dir)
    remainder = re.sub(r"^/[^/]+", "", project_dir)
    return Path(builds_dir + remainder)


def parse_paths(raw: str) -> tuple[str, ...]:
    """Split the space-separated path setting, preserving order."""
    return tuple(part for part in raw.split(" ") if part)


def parse_forced_decision(raw: str | None) -> bool | None:
    """Interpret SKIP_CI_VALUE: unset/empty disables, ``true`` skips, anything else runs."""
    if not raw:
        return None
    return raw.strip() == _TRUE


def _parse_limit(environ: Mapping[str, str], key: str, default: int) -> int:
    raw = environ.get(key)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Ignoring %s=%r (not an integer), using %d", key, raw, default)
        return default
    if value < 0:
        logger.warning("Ignoring %s=%r (negative), using %d", key, raw, default)
        return default
    return value


def limits_from_env(environ: Mapping[str, str]) -> ScanLimits:
    """Build scan limits, honoring optional overrides."""
    return ScanLimits(
        page_limit=_parse_limit(environ, "SKIP_CI_PAGE_TO_FETCH_MAX", DEFAULT_PAGE_LIMIT),
        job_limit=_parse_limit(environ, "SKIP_CI_JOB_TO_CHECK_MAX", DEFAULT_JOB_LIMIT),
        same_job_limit=_parse_limit(
            environ, "SKIP_CI_COMMIT_TO_CHECK_SAME_JOB_MAX", DEFAULT_SAME_JOB_LIMIT
        ),
        same_ref_limit=_parse_limit(
            environ, "SKIP_CI_COMMIT_TO_CHECK_SAME_REF_MAX", DEFAULT_SAME_REF_LIMIT
        ),
    )


def _require(environ: Mapping[str, str], key: str) -> str:
    value = environ.get(key, "")
    if not value:
        raise ConfigError(f"{key} is not defined")
    return value


def config_from_env(
    environ: Mapping[str, str],
    *,
    strategy: HistoryStrategy | None = None,
    fetch_artifacts: bool | None = None,
    verbose: bool | None = None,
) -> SkipConfig:
    """
    Build a :class:`SkipConfig` from CI environment variables.

    Parameters
    ----------
    environ:
        Environment mapping (typically ``os.environ``).
    strategy:
        Explicit strategy; overrides SKIP_CI_STRATEGY.
    fetch_artifacts:
        Explicit artifact flag; overrides SKIP_CI_NO_ARTIFACT.
    verbose:
        Explicit verbosity; overrides SKIP_CI_VERBOSE.

    Returns
    -------
    SkipConfig
        Configuration for one decision.

    Raises
    ------
    ConfigError
        If the marker key inputs (CI_PROJECT_DIR, CI_PROJECT_ID, CI_JOB_ID) are
        missing, or SKIP_CI_STRATEGY is unknown.
    """
    project_dir = _require(environ, "CI_PROJECT_DIR")
    project_id = _require(environ, "CI_PROJECT_ID")
    job_id = _require(environ, "CI_JOB_ID")

    if strategy is None:
        raw_strategy = environ.get("SKIP_CI_STRATEGY", "") or HistoryStrategy.API.value
        try:
            strategy = HistoryStrategy(raw_strategy.strip().lower())
        except ValueError as exc:
            raise ConfigError(f"Unknown SKIP_CI_STRATEGY: {raw_strategy!r}") from exc

    if fetch_artifacts is None:
        fetch_artifacts = environ.get("SKIP_CI_NO_ARTIFACT", "") != _TRUE
    if verbose is None:
        verbose = environ.get("SKIP_CI_VERBOSE", "") == _TRUE

    # SKIP_SKIP_CI=true disables the check entirely and wins over SKIP_CI_VALUE.
    if environ.get("SKIP_SKIP_CI", "") == _TRUE:
        forced_decision: bool | None = False
    else:
        forced_decision = parse_forced_decision(environ.get("SKIP_CI_VALUE"))

    return SkipConfig(
        project_path=resolve_project_path(environ.get("CI_BUILDS_DIR", ""), project_dir),
        project_id=project_id,
        job_id=job_id,
        paths=parse_paths(environ.get("SKIP_IF_TREE_OK_IN_PAST", "")),
        strategy=strategy,
        job_name=environ.get("CI_JOB_NAME", ""),
        ref_name=environ.get("CI_COMMIT_REF_NAME", ""),
        api_url=environ.get("CI_API_V4_URL", ""),
        api_token=environ.get("API_READ_TOKEN", ""),
        job_token=environ.get("CI_JOB_TOKEN", ""),
        forced_decision=forced_decision,
        fetch_artifacts=fetch_artifacts,
        verbose=verbose,
        limits=limits_from_env(environ),
    )
