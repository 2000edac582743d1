from __future__ import annotations

import asyncio
import itertools
import logging
from functools import partial
from typing import Any

from pythia.client import ResultsClient
from pythia.config import ENRICH_KINDS, POLL_INTERVAL_S
from pythia.errors import PythiaError, TransportError, ValidationError
from pythia.jobs import JobController, JobEvent, validate_job_inputs
from pythia.models import EnrichQuery, EnrichResult, Job, JobState, QueryParams, ResultSet
from pythia.query import query_key
from pythia.transform import TableSort, VolcanoPoint, build_volcano_points, format_enrich_row

logger = logging.getLogger(__name__)

RESULTS_SLOT = "results"


class AnalysisSession:
    """Client-side state for one user session.

    ``params`` is the snapshot being edited. Committed snapshots are
    fetched at most once per distinct key, and a response is only shown
    if it still belongs to the active job and is the newest request for
    its slot. Displayed results are replaced wholesale, never patched.
    """

    def __init__(
        self,
        client: ResultsClient | None = None,
        params: QueryParams | None = None,
        poll_interval: float = POLL_INTERVAL_S,
    ) -> None:
        self._owns_client = client is None
        self.client = client or ResultsClient()
        self.params = params or QueryParams()
        self.controller = JobController(self.client, poll_interval=poll_interval, on_completed=self._on_completed)
        self.controller.subscribe(self._on_job_event)
        self.results: ResultSet | None = None
        self.enrichment: dict[str, EnrichResult | None] = {kind: None for kind in ENRICH_KINDS}
        self.table_sort = TableSort()
        self.last_error: PythiaError | None = None
        self._displayed: dict[str, str] = {}
        self._inflight: dict[str, tuple[str, int]] = {}
        self._request_ids = itertools.count(1)
        self._latest: dict[str, str] = {}
        self._closed = False

    @property
    def job(self) -> Job | None:
        return self.controller.job

    @property
    def state(self) -> JobState:
        return self.controller.current_state()

    def _on_job_event(self, event: JobEvent) -> None:
        if event.error is not None:
            self.last_error = event.error

    async def _on_completed(self, job: Job) -> None:
        await self._fetch(RESULTS_SLOT, job.id, self.params, None)

    def _reset_views(self) -> None:
        self.results = None
        self.enrichment = {kind: None for kind in ENRICH_KINDS}
        self.last_error = None
        self._displayed.clear()
        self._inflight.clear()
        self._latest.clear()

    async def submit(self, counts_path, metadata_path, design_column: str) -> Job:
        # A rejected submission leaves the current job and its views alone.
        if self._closed:
            raise ValidationError("Session has been closed")
        validate_job_inputs(counts_path, metadata_path, design_column)
        self._reset_views()
        return await self.controller.create_job(counts_path, metadata_path, design_column)

    async def wait(self) -> JobState:
        return await self.controller.wait()

    def edit(self, **changes: Any) -> QueryParams:
        """Update the pending snapshot; never touches the network."""
        self.params = self.params.replace(**changes)
        return self.params

    def _completed_job_id(self) -> str | None:
        job = self.controller.job
        if job is None or self.controller.current_state() is not JobState.COMPLETED:
            return None
        return job.id

    async def commit(self) -> bool:
        """Re-query results for the pending snapshot. True if a request went out."""
        job_id = self._completed_job_id()
        if job_id is None:
            return False
        return await self._fetch(RESULTS_SLOT, job_id, self.params, None)

    async def fetch_enrichment(self, kind: str, query: EnrichQuery | None = None) -> bool:
        kind = str(kind).strip().lower()
        if kind not in ENRICH_KINDS:
            raise ValidationError(f"Unknown enrichment kind {kind!r}")
        job_id = self._completed_job_id()
        if job_id is None:
            return False
        if query is None:
            query = EnrichQuery(ontology="BP" if kind == "go" else None)
        return await self._fetch(kind, job_id, self.params, query)

    def _is_fresh(self, slot: str, job_id: str, key: str) -> bool:
        job = self.controller.job
        return not self._closed and job is not None and job.id == job_id and self._latest.get(slot) == key

    async def _fetch(self, slot: str, job_id: str, params: QueryParams, query: EnrichQuery | None) -> bool:
        key = query_key(job_id, params, query, scope=slot)
        pending = self._inflight.get(slot)
        if pending is not None and pending[0] == key:
            return False
        if key == self._displayed.get(slot) and self._latest.get(slot) == key:
            return False

        if slot == RESULTS_SLOT:
            call = partial(self.client.get_results, job_id, params)
        else:
            call = partial(self.client.get_enrichment, job_id, slot, query, params)

        request = (key, next(self._request_ids))
        self._inflight[slot] = request
        self._latest[slot] = key
        try:
            payload = await asyncio.to_thread(call)
        except TransportError as exc:
            if self._is_fresh(slot, job_id, key):
                logger.warning("Fetching %s for job %s failed: %s", slot, job_id, exc)
                self.last_error = exc
            return True
        finally:
            # Only the newest request for a slot owns its in-flight entry.
            if self._inflight.get(slot) == request:
                del self._inflight[slot]

        if not self._is_fresh(slot, job_id, key):
            logger.debug("Dropping stale %s response for job %s", slot, job_id)
            return True

        if slot == RESULTS_SLOT:
            self.results = payload
        else:
            self.enrichment[slot] = payload
        self._displayed[slot] = key
        self.last_error = None
        return True

    def volcano(self) -> list[VolcanoPoint]:
        if self.results is None:
            return []
        used = self.results.params
        return build_volcano_points(self.results.volcano, used.padj_cutoff, used.lfc_thresh, used.item_limit)

    def sort_enrichment_by(self, key: str) -> TableSort:
        self.table_sort = self.table_sort.select(key)
        return self.table_sort

    def enrichment_table(self, kind: str) -> list[dict[str, str]]:
        result = self.enrichment.get(kind)
        if result is None:
            return []
        return [format_enrich_row(item) for item in self.table_sort.apply(result.items)]

    def download_url(self) -> str | None:
        if self.results is None:
            return None
        return self.client.download_url(self.results.job_id, self.results.params)

    def enrich_download_url(self, kind: str, fmt: str = "csv") -> str | None:
        result = self.enrichment.get(kind)
        if self.results is None or result is None:
            return None
        return self.client.enrich_download_url(result.job_id, kind, result.query, result.params, fmt=fmt)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.controller.close()
        if self._owns_client:
            self.client.close()
