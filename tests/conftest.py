from __future__ import annotations

import threading

import pytest

from pythia.errors import TransportError
from pythia.models import EnrichResult, JobState, ResultSet


class FakeBackend:
    """In-process stand-in for ResultsClient.

    ``statuses[job_id]`` is consumed one entry per status call; the last
    entry repeats. A ``threading.Event`` in ``gates[job_id]`` holds that
    job's status calls until it is set.
    """

    def __init__(self):
        self.job_ids: list[str] = []
        self.statuses: dict[str, list] = {}
        self.gates: dict[str, threading.Event] = {}
        self.status_calls: list[str] = []
        self.results_calls: list[tuple] = []
        self.enrich_calls: list[tuple] = []
        self.results_error: Exception | None = None
        self.results_gate: threading.Event | None = None
        self.closed = False
        self.close_calls = 0
        self._lock = threading.Lock()

    def create_job(self, counts_path, metadata_path, design_column):
        with self._lock:
            job_id = f"job-{len(self.job_ids) + 1}"
            self.job_ids.append(job_id)
        return job_id, JobState.QUEUED

    def get_status(self, job_id):
        gate = self.gates.get(job_id)
        if gate is not None:
            gate.wait(timeout=5)
        with self._lock:
            self.status_calls.append(job_id)
            queue = self.statuses.get(job_id) or ["running"]
            value = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(value, Exception):
            raise value
        return JobState.parse(value)

    def get_results(self, job_id, params):
        if self.results_gate is not None:
            self.results_gate.wait(timeout=5)
        with self._lock:
            self.results_calls.append((job_id, params))
        if self.results_error is not None:
            raise self.results_error
        payload = {
            "job_id": job_id,
            "params": {},
            "volcano": [
                {"gene": "UP", "log2FC": 2.0, "padj": 0.01},
                {"gene": "DOWN", "log2FC": -2.0, "padj": 0.01},
                {"gene": "NS", "log2FC": 0.2, "padj": 0.5},
            ],
            "pca": [{"sample": "s1", "PC1": 1, "PC2": 2, "group": "a"}],
            "top_table": [{"gene": "UP", "padj": 0.01}],
        }
        return ResultSet.from_payload(payload, job_id=job_id, params=params)

    def get_enrichment(self, job_id, kind, query, params):
        with self._lock:
            self.enrich_calls.append((job_id, kind, query, params))
        if self.results_error is not None:
            raise self.results_error
        payload = {
            "items": [
                {"term": "T1", "description": "first", "count": 5, "gene_ratio": 0.1, "p_adjust": 0.001, "neglog10padj": 3},
                {"term": "T2", "description": "second", "count": 10, "gene_ratio": 0.2, "p_adjust": 0.01, "neglog10padj": 2},
            ]
        }
        return EnrichResult.from_payload(payload, job_id=job_id, kind=kind, query=query, params=params)

    def download_url(self, job_id, params):
        return f"http://api.test/jobs/{job_id}/download"

    def enrich_download_url(self, job_id, kind, query, params, fmt="csv"):
        return f"http://api.test/jobs/{job_id}/enrich/download?type={kind}&format={fmt}"

    def close(self):
        self.closed = True
        self.close_calls += 1


@pytest.fixture
def backend():
    fake = FakeBackend()
    yield fake
    for gate in fake.gates.values():
        gate.set()
    if fake.results_gate is not None:
        fake.results_gate.set()


@pytest.fixture
def inputs(tmp_path):
    counts = tmp_path / "counts.csv"
    metadata = tmp_path / "metadata.csv"
    counts.write_text("gene,s1,s2\nA,10,20\n", encoding="utf-8")
    metadata.write_text("sample,condition\ns1,a\ns2,b\n", encoding="utf-8")
    return counts, metadata


TRANSPORT_DOWN = TransportError("GET /jobs/x/status failed", status_code=502, body="bad gateway")
