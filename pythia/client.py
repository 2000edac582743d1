from __future__ import annotations

import logging
from pathlib import Path
from urllib.parse import quote, urlencode

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from pythia.config import (
    API_BASE,
    BACKOFF_FACTOR,
    MAX_RETRIES,
    REQUEST_TIMEOUT_S,
    RETRY_STATUS_CODES,
    USER_AGENT,
)
from pythia.errors import TransportError
from pythia.models import EnrichQuery, EnrichResult, JobState, QueryParams, ResultSet
from pythia.query import (
    download_query,
    enrich_download_query,
    enrich_query,
    results_query,
)

logger = logging.getLogger(__name__)


def create_session(
    max_retries: int = MAX_RETRIES,
    backoff_factor: float = BACKOFF_FACTOR,
    status_forcelist: tuple = RETRY_STATUS_CODES,
    user_agent: str = USER_AGENT,
) -> requests.Session:
    """Session with capped, backed-off retries for GETs only.

    Job creation is a POST and is never retried, so one submission never
    becomes two jobs.
    """
    session = requests.Session()
    retries = Retry(
        total=max_retries,
        backoff_factor=backoff_factor,
        status_forcelist=status_forcelist,
        allowed_methods=("GET",),
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retries)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    session.headers.update({"User-Agent": user_agent})
    return session


class ResultsClient:
    """The four backend calls plus download URL builders.

    Every failure leaves this class as a ``TransportError``.
    """

    def __init__(
        self,
        base_url: str = API_BASE,
        session: requests.Session | None = None,
        timeout: float = REQUEST_TIMEOUT_S,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.session = session or create_session()
        self.timeout = timeout

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    @staticmethod
    def _job_path(job_id: str, suffix: str) -> str:
        return f"/jobs/{quote(str(job_id), safe='')}{suffix}"

    def _request(self, method: str, path: str, **kwargs) -> dict:
        url = self._url(path)
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            logger.warning("%s %s failed: %s", method, path, exc)
            raise TransportError(f"{method} {path} failed", body=str(exc)) from exc

        if not response.ok:
            logger.warning("%s %s returned HTTP %s", method, path, response.status_code)
            raise TransportError(f"{method} {path} failed", status_code=response.status_code, body=response.text)

        try:
            payload = response.json()
        except ValueError as exc:
            logger.warning("%s %s returned a non-JSON body", method, path)
            raise TransportError(
                f"{method} {path} returned a non-JSON body",
                status_code=response.status_code,
                body=response.text,
            ) from exc
        if not isinstance(payload, dict):
            raise TransportError(f"{method} {path} returned an unexpected payload", body=response.text)
        return payload

    def create_job(self, counts_path: str | Path, metadata_path: str | Path, design_column: str) -> tuple[str, JobState]:
        counts_path = Path(counts_path)
        metadata_path = Path(metadata_path)
        with counts_path.open("rb") as counts_fh, metadata_path.open("rb") as metadata_fh:
            payload = self._request(
                "POST",
                "/jobs",
                files={
                    "counts": (counts_path.name, counts_fh, "text/csv"),
                    "metadata": (metadata_path.name, metadata_fh, "text/csv"),
                },
                data={"design_col": design_column},
            )

        job_id = str(payload.get("job_id") or "").strip()
        if not job_id:
            raise TransportError("POST /jobs returned no job id", body=str(payload)[:2000])
        state = JobState.parse(payload.get("status") or "queued")
        logger.info("Created job %s (%s)", job_id, state.value)
        return job_id, state

    def get_status(self, job_id: str) -> JobState:
        payload = self._request("GET", self._job_path(job_id, "/status"))
        return JobState.parse(payload.get("status"))

    def get_results(self, job_id: str, params: QueryParams) -> ResultSet:
        payload = self._request("GET", self._job_path(job_id, "/results"), params=results_query(params))
        return ResultSet.from_payload(payload, job_id=job_id, params=params)

    def get_enrichment(self, job_id: str, kind: str, query: EnrichQuery, params: QueryParams) -> EnrichResult:
        wire = enrich_query(kind, query, params)
        kind = kind.strip().lower()
        payload = self._request("GET", self._job_path(job_id, f"/enrich/{kind}"), params=wire)
        return EnrichResult.from_payload(payload, job_id=job_id, kind=kind, query=query, params=params)

    def download_url(self, job_id: str, params: QueryParams) -> str:
        return f"{self._url(self._job_path(job_id, '/download'))}?{urlencode(download_query(params))}"

    def enrich_download_url(
        self,
        job_id: str,
        kind: str,
        query: EnrichQuery,
        params: QueryParams,
        fmt: str = "csv",
    ) -> str:
        wire = enrich_download_query(kind, query, params, fmt=fmt)
        return f"{self._url(self._job_path(job_id, '/enrich/download'))}?{urlencode(wire)}"

    def close(self) -> None:
        self.session.close()
