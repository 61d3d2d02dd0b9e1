"""
Decision engine.

One decision cycle runs, in order:

1. forced decision (``SKIP_CI_VALUE``) -> write marker, stop;
2. existing marker -> reproduce it, stop;
3. configuration check -> CONFIG_ERROR, no I/O;
4. fingerprint of the current revision -> TREE_EMPTY / FATAL_ERROR;
5. history lookup;
6. match -> marker ``true``, best-effort artifact retrieval -> SKIP;
7. no match -> marker ``false``, record the miss -> NOT_FOUND.

Every fatal failure after the configuration check leaves a ``false`` marker so
re-invocations within the same job answer consistently instead of redoing the
expensive work.
"""

from __future__ import annotations

import logging
from pathlib import Path

import requests

from .artifacts import ArtifactRetriever
from .clock import Clock
from .config import SkipConfig
from .data_models import Decision, DecisionResult, DecisionSignal, HistoryStrategy
from .errors import (
    ApiError,
    ArtifactError,
    ConfigError,
    HistoryLogError,
    ToolInvocationError,
    TreeEmptyError,
)
from .fingerprint import FingerprintProvider, GitTreeFingerprint
from .gitlab_api import JobsApiClient
from .history.base import HistoryStore
from .history.local_log import LocalHistoryLog
from .history.remote import RemoteJobHistory
from .marker import CompletionMarker
from .trace import TraceSource, find_oldest_ancestor

logger = logging.getLogger(__name__)

CURRENT_REVISION = "HEAD"


class DecisionEngine:
    """
    Orchestrates marker, fingerprint, history store and artifact retrieval.

    Parameters
    ----------
    config:
        Settings for this decision.
    marker:
        Completion marker for (project id, job id).
    fingerprints:
        Fingerprint provider.
    store:
        Configured history store.
    artifacts:
        Artifact retriever, or None when artifacts are not restored.
    traces:
        Trace reader used to resolve the oldest ancestor of a remote match.
    revision:
        Revision to fingerprint for the current job.
    """

    def __init__(
        self,
        config: SkipConfig,
        *,
        marker: CompletionMarker,
        fingerprints: FingerprintProvider,
        store: HistoryStore,
        artifacts: ArtifactRetriever | None = None,
        traces: TraceSource | None = None,
        revision: str = CURRENT_REVISION,
    ) -> None:
        self._config = config
        self._marker = marker
        self._fingerprints = fingerprints
        self._store = store
        self._artifacts = artifacts
        self._traces = traces
        self._revision = revision

    def decide(self) -> DecisionResult:
        """
        Run one decision cycle.

        Returns
        -------
        DecisionResult
            The signal plus match details.

        Raises
        ------
        MarkerError
            If the marker cannot be written.
        """
        config = self._config

        if config.forced_decision is not None:
            decision = Decision.from_bool(config.forced_decision)
            logger.debug("Forced decision: %s", decision.value)
            self._marker.write(decision)
            return DecisionResult(
                signal=_cached_signal(decision), message="decision forced by SKIP_CI_VALUE"
            )

        cached = self._marker.check()
        if cached is not None:
            return DecisionResult(signal=_cached_signal(cached), message="decision already made in this job")

        try:
            config.validate_for_lookup()
        except ConfigError as exc:
            return DecisionResult(signal=DecisionSignal.CONFIG_ERROR, message=str(exc))

        try:
            fingerprint = self._fingerprints.fingerprint(self._revision, config.paths)
            if not fingerprint.strip():
                raise TreeEmptyError(f"Tree of {self._revision!r} is empty")
        except TreeEmptyError as exc:
            self._marker.write(Decision.NO_SKIP)
            return DecisionResult(signal=DecisionSignal.TREE_EMPTY, message=str(exc))
        except ToolInvocationError as exc:
            self._marker.write(Decision.NO_SKIP)
            return DecisionResult(signal=DecisionSignal.FATAL_ERROR, message=str(exc))

        try:
            lookup = self._store.lookup(fingerprint)
        except ApiError as exc:
            self._marker.write(Decision.NO_SKIP)
            return DecisionResult(signal=DecisionSignal.FATAL_ERROR, message=str(exc))

        if not lookup.matched:
            self._marker.write(Decision.NO_SKIP)
            try:
                self._store.record_miss(fingerprint)
            except HistoryLogError as exc:
                logger.error("History not updated: %s", exc)
            return DecisionResult(signal=DecisionSignal.NOT_FOUND)

        self._marker.write(Decision.SKIP)
        job = lookup.job

        oldest_ancestor = None
        if job is not None and self._traces is not None:
            oldest_ancestor = find_oldest_ancestor(self._traces, job)

        signal = DecisionSignal.SKIP
        message = ""
        if config.fetch_artifacts and self._artifacts is not None and lookup.job_id is not None:
            try:
                self._artifacts.retrieve(lookup.job_id, job)
            except ArtifactError as exc:
                logger.warning("Artifacts of job %s not restored: %s", lookup.job_id, exc)
                signal = DecisionSignal.ARTIFACT_FETCH_FAILED_BUT_SKIPPED
                message = str(exc)

        return DecisionResult(
            signal=signal,
            job_id=lookup.job_id,
            job_url=job.web_url if job is not None else None,
            oldest_ancestor=oldest_ancestor,
            message=message,
        )


def _cached_signal(decision: Decision) -> DecisionSignal:
    if decision is Decision.SKIP:
        return DecisionSignal.SKIP
    return DecisionSignal.NO_SKIP_MARKER_CACHED


def build_engine(
    config: SkipConfig,
    *,
    session: requests.Session | None = None,
    fingerprints: FingerprintProvider | None = None,
    clock: Clock | None = None,
) -> DecisionEngine:
    """
    Wire a :class:`DecisionEngine` for ``config``.

    Parameters
    ----------
    config:
        Settings for this decision.
    session:
        Optional HTTP session shared by all API calls.
    fingerprints:
        Optional fingerprint provider; defaults to ``git ls-tree`` in the
        project path.
    clock:
        Optional clock for the artifact expiry check.

    Returns
    -------
    DecisionEngine
        Ready-to-run engine. Construction performs no I/O.
    """
    provider = fingerprints or GitTreeFingerprint(repo_root=Path(config.project_path))
    client = JobsApiClient(
        config.jobs_api_url,
        api_token=config.api_token,
        job_token=config.job_token,
        session=session,
    )

    store: HistoryStore
    traces: TraceSource | None = None
    if config.strategy is HistoryStrategy.API:
        store = RemoteJobHistory(
            client,
            provider,
            paths=config.paths,
            job_name=config.job_name,
            ref_name=config.ref_name,
            limits=config.limits,
        )
        traces = client
    else:
        store = LocalHistoryLog(path=config.history_path, job_id=config.job_id)

    artifacts = None
    if config.fetch_artifacts and config.api_url:
        artifacts = ArtifactRetriever(client, config.project_path, clock=clock)

    return DecisionEngine(
        config,
        marker=CompletionMarker(config.marker_path),
        fingerprints=provider,
        store=store,
        artifacts=artifacts,
        traces=traces,
    )
