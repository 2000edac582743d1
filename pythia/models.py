from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Union

from pythia.config import (
    DEFAULT_ENRICH_MODE,
    DEFAULT_ENRICH_TOP,
    DEFAULT_GO_ONTOLOGY,
    DEFAULT_ITEM_LIMIT,
    DEFAULT_LFC_THRESH,
    DEFAULT_ORGANISM,
    DEFAULT_P_CUTOFF,
    DEFAULT_PADJ_CUTOFF,
    DEFAULT_Q_CUTOFF,
    DEFAULT_TOP_N,
    ENRICH_MODES,
    GO_ONTOLOGIES,
    ORGANISMS,
)
from pythia.errors import TransportError, ValidationError

# A top-table cell is one of the primitive kinds the backend emits.
Cell = Union[int, float, str, None]


class JobState(str, Enum):
    IDLE = "idle"
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.COMPLETED, JobState.FAILED)

    @classmethod
    def parse(cls, raw: Any) -> "JobState":
        value = str(raw or "").strip().lower()
        try:
            state = cls(value)
        except ValueError:
            raise TransportError(f"Unrecognised job status {raw!r}", body=str(raw)) from None
        if state is cls.IDLE:
            raise TransportError("Backend reported an idle job", body=str(raw))
        return state


@dataclass(frozen=True)
class Job:
    id: str
    state: JobState


def _to_float(raw: Any) -> float:
    if raw is None or isinstance(raw, bool):
        return math.nan
    try:
        return float(raw)
    except (TypeError, ValueError):
        return math.nan


def _to_int(raw: Any) -> int:
    value = _to_float(raw)
    if not math.isfinite(value):
        return 0
    return max(0, int(value))


def to_cell(raw: Any) -> Cell:
    if raw is None or isinstance(raw, str):
        return raw
    if isinstance(raw, bool):
        return str(raw).lower()
    if isinstance(raw, (int, float)):
        return raw
    return str(raw)


def _is_positive_int(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value) and value > 0 and int(value) == value


def _clean_contrast(raw: str | None) -> str | None:
    if raw is None:
        return None
    return str(raw).strip()


@dataclass(frozen=True)
class QueryParams:
    """Snapshot of the DE result controls; passed by value."""

    padj_cutoff: float = DEFAULT_PADJ_CUTOFF
    lfc_thresh: float = DEFAULT_LFC_THRESH
    top_n: int = DEFAULT_TOP_N
    item_limit: int = DEFAULT_ITEM_LIMIT
    contrast_a: str | None = None
    contrast_b: str | None = None

    def __post_init__(self) -> None:
        if not (math.isfinite(self.padj_cutoff) and self.padj_cutoff > 0):
            raise ValidationError(f"padj cutoff must be > 0, got {self.padj_cutoff}")
        if not (math.isfinite(self.lfc_thresh) and self.lfc_thresh >= 0):
            raise ValidationError(f"log2FC threshold must be >= 0, got {self.lfc_thresh}")
        if not _is_positive_int(self.top_n):
            raise ValidationError(f"top N must be a positive integer, got {self.top_n}")
        if not _is_positive_int(self.item_limit):
            raise ValidationError(f"item limit must be a positive integer, got {self.item_limit}")
        object.__setattr__(self, "padj_cutoff", float(self.padj_cutoff))
        object.__setattr__(self, "lfc_thresh", float(self.lfc_thresh))
        object.__setattr__(self, "top_n", int(self.top_n))
        object.__setattr__(self, "item_limit", int(self.item_limit))
        object.__setattr__(self, "contrast_a", _clean_contrast(self.contrast_a))
        object.__setattr__(self, "contrast_b", _clean_contrast(self.contrast_b))

    def replace(self, **changes: Any) -> "QueryParams":
        return replace(self, **changes)


@dataclass(frozen=True)
class EnrichQuery:
    mode: str = DEFAULT_ENRICH_MODE
    ontology: str | None = DEFAULT_GO_ONTOLOGY
    organism: str = DEFAULT_ORGANISM
    p_cutoff: float = DEFAULT_P_CUTOFF
    q_cutoff: float = DEFAULT_Q_CUTOFF
    top: int = DEFAULT_ENRICH_TOP

    def __post_init__(self) -> None:
        object.__setattr__(self, "mode", str(self.mode).strip().lower())
        if self.mode not in ENRICH_MODES:
            raise ValidationError(f"Enrichment mode must be one of {', '.join(ENRICH_MODES)}")
        if self.ontology is not None:
            object.__setattr__(self, "ontology", str(self.ontology).strip().upper())
            if self.ontology not in GO_ONTOLOGIES:
                raise ValidationError(f"GO ontology must be one of {', '.join(GO_ONTOLOGIES)}")
        if self.organism not in ORGANISMS:
            raise ValidationError(f"Unknown organism {self.organism!r}")
        for name in ("p_cutoff", "q_cutoff"):
            value = getattr(self, name)
            if not (math.isfinite(value) and value > 0):
                raise ValidationError(f"{name} must be > 0, got {value}")
        if not _is_positive_int(self.top):
            raise ValidationError(f"top must be a positive integer, got {self.top}")

    @property
    def org_db(self) -> str:
        return ORGANISMS[self.organism]["go_org_db"]

    @property
    def kegg_org(self) -> str:
        return ORGANISMS[self.organism]["kegg_org"]

    def replace(self, **changes: Any) -> "EnrichQuery":
        return replace(self, **changes)


@dataclass(frozen=True)
class DEResultRow:
    gene: str
    log2fc: float
    padj: float

    @classmethod
    def from_dict(cls, raw: dict) -> "DEResultRow":
        return cls(
            gene=str(raw.get("gene", "") or ""),
            log2fc=_to_float(raw.get("log2FC", raw.get("log2fc"))),
            padj=_to_float(raw.get("padj")),
        )


@dataclass(frozen=True)
class PCAPoint:
    sample: str
    pc1: float
    pc2: float
    group: str

    @classmethod
    def from_dict(cls, raw: dict) -> "PCAPoint":
        return cls(
            sample=str(raw.get("sample", "") or ""),
            pc1=_to_float(raw.get("PC1")),
            pc2=_to_float(raw.get("PC2")),
            group=str(raw.get("group", "")),
        )


@dataclass(frozen=True)
class EnrichItem:
    term: str
    description: str
    count: int
    gene_ratio: float
    p_adjust: float
    neglog10padj: float

    @classmethod
    def from_dict(cls, raw: dict) -> "EnrichItem":
        return cls(
            term=str(raw.get("term", "") or ""),
            description=str(raw.get("description", "") or ""),
            count=_to_int(raw.get("count")),
            gene_ratio=_to_float(raw.get("gene_ratio")),
            p_adjust=_to_float(raw.get("p_adjust")),
            neglog10padj=_to_float(raw.get("neglog10padj")),
        )


def _list_field(payload: dict, name: str) -> list:
    value = payload.get(name)
    if value is None:
        return []
    if not isinstance(value, list):
        raise TransportError(f"Field {name!r} is not a list", body=str(payload)[:2000])
    return value


@dataclass(frozen=True)
class TopTable:
    columns: tuple[str, ...] = ()
    rows: tuple[tuple[Cell, ...], ...] = ()

    @classmethod
    def from_records(cls, records: list[dict]) -> "TopTable":
        if records is not None and not isinstance(records, list):
            raise TransportError("Top table is not a list", body=str(records)[:2000])
        records = [r for r in records or [] if isinstance(r, dict)]
        if not records:
            return cls()
        columns = tuple(str(k) for k in records[0].keys())
        rows = tuple(tuple(to_cell(rec.get(col)) for col in columns) for rec in records)
        return cls(columns=columns, rows=rows)

    def __len__(self) -> int:
        return len(self.rows)

    def records(self) -> list[dict[str, Cell]]:
        return [dict(zip(self.columns, row)) for row in self.rows]


@dataclass(frozen=True)
class ResultSet:
    job_id: str
    params: QueryParams
    volcano: tuple[DEResultRow, ...] = ()
    pca: tuple[PCAPoint, ...] = ()
    top_table: TopTable = field(default_factory=TopTable)
    server_params: tuple[tuple[str, Cell], ...] = ()

    @classmethod
    def from_payload(cls, payload: dict, job_id: str, params: QueryParams) -> "ResultSet":
        if not isinstance(payload, dict):
            raise TransportError("Results payload is not an object", body=str(payload)[:2000])
        server_params = payload.get("params") if isinstance(payload.get("params"), dict) else {}
        return cls(
            job_id=str(payload.get("job_id") or job_id),
            params=params,
            volcano=tuple(DEResultRow.from_dict(r) for r in _list_field(payload, "volcano") if isinstance(r, dict)),
            pca=tuple(PCAPoint.from_dict(r) for r in _list_field(payload, "pca") if isinstance(r, dict)),
            top_table=TopTable.from_records(_list_field(payload, "top_table")),
            server_params=tuple(sorted((str(k), to_cell(v)) for k, v in server_params.items())),
        )


@dataclass(frozen=True)
class EnrichResult:
    job_id: str
    kind: str
    query: EnrichQuery
    params: QueryParams
    items: tuple[EnrichItem, ...] = ()

    @classmethod
    def from_payload(
        cls,
        payload: dict,
        job_id: str,
        kind: str,
        query: EnrichQuery,
        params: QueryParams,
    ) -> "EnrichResult":
        if not isinstance(payload, dict):
            raise TransportError("Enrichment payload is not an object", body=str(payload)[:2000])
        items = _list_field(payload, "items")
        return cls(
            job_id=job_id,
            kind=kind,
            query=query,
            params=params,
            items=tuple(EnrichItem.from_dict(r) for r in items if isinstance(r, dict)),
        )
