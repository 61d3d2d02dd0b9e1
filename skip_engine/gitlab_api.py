"""
Thin client for the GitLab jobs API.

Only three calls are needed: the paginated listing of successful jobs, the
artifact archive of one job, and the head of one job's trace.

Notes
-----
- Tokens travel in headers, never in query strings, so URLs are safe to log.
- Artifact downloads follow redirects manually with a hard cap; token headers
  are dropped after the first hop since redirects usually point at object storage.
"""

from __future__ import annotations

import logging
from pathlib import Path
from urllib.parse import urljoin

import requests

from .data_models import JobRecord
from .errors import ApiError, ArtifactError, TooManyRedirectsError

logger = logging.getLogger(__name__)

JOBS_PER_PAGE = 100
MAX_REDIRECTS = 10
DEFAULT_TIMEOUT_SECONDS = 30.0
_REDIRECT_STATUSES = frozenset({301, 302, 303, 307, 308})
_CHUNK_SIZE = 64 * 1024


class JobsApiClient:
    """
    Client bound to one project's jobs endpoint.

    Parameters
    ----------
    jobs_api_url:
        ``{CI_API_V4_URL}/projects/{id}/jobs``.
    api_token:
        Read-API token for listings and traces.
    job_token:
        CI job token for artifact downloads.
    session:
        Optional preconfigured :class:`requests.Session` (injected by tests).
    timeout:
        Per-request timeout in seconds.
    """

    def __init__(
        self,
        jobs_api_url: str,
        *,
        api_token: str,
        job_token: str = "",
        session: requests.Session | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self._jobs_api_url = jobs_api_url.rstrip("/")
        self._api_token = api_token
        self._job_token = job_token
        self._session = session if session is not None else requests.Session()
        self._timeout = timeout

    @property
    def jobs_api_url(self) -> str:
        """Return the jobs endpoint this client is bound to."""
        return self._jobs_api_url

    def _read_headers(self) -> dict[str, str]:
        return {"PRIVATE-TOKEN": self._api_token} if self._api_token else {}

    def list_successful_jobs(self, page: int, *, per_page: int = JOBS_PER_PAGE) -> list[JobRecord]:
        """
        Fetch one page of successful jobs, most recent first.

        Parameters
        ----------
        page:
            1-based page number.
        per_page:
            Page size requested from the API.

        Returns
        -------
        list[JobRecord]
            Parsed jobs; malformed records are dropped with a warning.

        Raises
        ------
        ApiError
            On transport failure, non-success status, or a body that is not a
            JSON array.
        """
        params = {"scope": "success", "per_page": per_page, "page": page}
        logger.debug("GET %s?scope=success&per_page=%d&page=%d", self._jobs_api_url, per_page, page)
        try:
            response = self._session.get(
                self._jobs_api_url,
                params=params,
                headers=self._read_headers(),
                timeout=self._timeout,
            )
        except requests.RequestException as exc:
            raise ApiError(f"Job listing request failed: {exc}") from exc

        if not 200 <= response.status_code < 300:
            raise ApiError(
                f"Job listing returned HTTP {response.status_code} for page {page}",
                status_code=response.status_code,
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise ApiError(f"Job listing page {page} is not valid JSON") from exc
        if not isinstance(payload, list):
            raise ApiError(f"Job listing page {page} is not a JSON array")

        jobs: list[JobRecord] = []
        for item in payload:
            try:
                jobs.append(JobRecord.from_dict(item))
            except (ValueError, TypeError) as exc:
                logger.warning("Ignoring malformed job record on page %d: %s", page, exc)
        logger.debug(" -> %d jobs fetched", len(jobs))
        return jobs

    def download_artifacts(self, job_id: str, destination: Path) -> Path:
        """
        Download the artifact archive of ``job_id`` to ``destination``.

        Parameters
        ----------
        job_id:
            Job whose artifacts are fetched.
        destination:
            File path the archive is written to.

        Returns
        -------
        Path
            ``destination``.

        Raises
        ------
        TooManyRedirectsError
            If more than :data:`MAX_REDIRECTS` redirects are chained.
        ArtifactError
            On transport failure, non-success status, or write failure.
        """
        url = f"{self._jobs_api_url}/{job_id}/artifacts"
        headers = {"JOB-TOKEN": self._job_token} if self._job_token else {}

        for hop in range(MAX_REDIRECTS + 1):
            logger.debug("Downloading artifacts from %s (hop %d)", url, hop)
            try:
                response = self._session.get(
                    url,
                    headers=headers,
                    allow_redirects=False,
                    stream=True,
                    timeout=self._timeout,
                )
            except requests.RequestException as exc:
                raise ArtifactError(f"Artifact request failed: {exc}") from exc

            with response:
                if response.status_code in _REDIRECT_STATUSES:
                    location = response.headers.get("Location")
                    if not location:
                        raise ArtifactError(
                            f"HTTP {response.status_code} redirect without Location header"
                        )
                    url = urljoin(url, location)
                    headers = {}
                    continue
                if response.status_code != 200:
                    raise ArtifactError(
                        f"Artifact download for job {job_id} returned HTTP {response.status_code}"
                    )
                _write_stream(response, destination)
                return destination

        raise TooManyRedirectsError(
            f"Artifact download for job {job_id} exceeded {MAX_REDIRECTS} redirects"
        )

    def read_trace_head(self, job_id: str, *, max_bytes: int) -> str:
        """
        Read at most ``max_bytes`` from the beginning of a job trace.

        Raises
        ------
        ApiError
            On transport failure (including a broken stream) or non-success status.
        """
        url = f"{self._jobs_api_url}/{job_id}/trace"
        logger.debug("GET %s", url)
        try:
            response = self._session.get(
                url, headers=self._read_headers(), stream=True, timeout=self._timeout
            )
        except requests.RequestException as exc:
            raise ApiError(f"Trace request failed: {exc}") from exc

        with response:
            if response.status_code != 200:
                raise ApiError(
                    f"Trace of job {job_id} returned HTTP {response.status_code}",
                    status_code=response.status_code,
                )
            buffer = bytearray()
            try:
                for chunk in response.iter_content(chunk_size=_CHUNK_SIZE):
                    buffer.extend(chunk)
                    if len(buffer) >= max_bytes:
                        break
            except requests.RequestException as exc:
                raise ApiError(f"Trace of job {job_id} could not be read: {exc}") from exc
        return bytes(buffer[:max_bytes]).decode("utf-8", errors="replace")


def _write_stream(response: requests.Response, destination: Path) -> None:
    try:
        destination.parent.mkdir(parents=True, exist_ok=True)
        with destination.open("wb") as handle:
            for chunk in response.iter_content(chunk_size=_CHUNK_SIZE):
                if chunk:
                    handle.write(chunk)
    except (OSError, requests.RequestException) as exc:
        raise ArtifactError(f"Failed to write artifact archive: {destination} ({exc!s})") from exc
