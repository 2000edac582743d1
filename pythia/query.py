from __future__ import annotations

from dataclasses import fields
from hashlib import sha256

import numpy as np

from pythia.config import DOWNLOAD_FORMATS, ENRICH_KINDS
from pythia.errors import ValidationError
from pythia.models import EnrichQuery, QueryParams

KEY_VERSION = "v1"
UNSET = "\x00unset"


def format_number(value: float | int) -> str:
    """Render a number as a plain positional decimal, independent of locale.

    Integral values drop the fractional part, so ``1.0`` becomes ``"1"``.
    """
    return np.format_float_positional(float(value), trim="-")


def _wire_value(value) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return format_number(value)
    return str(value)


def _check_kind(kind: str) -> str:
    value = str(kind).strip().lower()
    if value not in ENRICH_KINDS:
        raise ValidationError(f"Enrichment kind must be one of {', '.join(ENRICH_KINDS)}, got {kind!r}")
    return value


def results_query(params: QueryParams) -> dict[str, str]:
    out: dict[str, str] = {}
    if params.contrast_a:
        out["a"] = params.contrast_a
    if params.contrast_b:
        out["b"] = params.contrast_b
    out["padj_cutoff"] = format_number(params.padj_cutoff)
    out["lfc_thresh"] = format_number(params.lfc_thresh)
    out["top_n"] = format_number(params.top_n)
    out["item_limit"] = format_number(params.item_limit)
    return out


def _enrich_base(kind: str, query: EnrichQuery) -> dict[str, str]:
    kind = _check_kind(kind)
    if kind == "go":
        return {
            "mode": query.mode,
            "ont": query.ontology or "BP",
            "org_db": query.org_db,
        }
    return {"mode": query.mode, "kegg_org": query.kegg_org}


def enrich_query(kind: str, query: EnrichQuery, params: QueryParams) -> dict[str, str]:
    out = _enrich_base(kind, query)
    out.update(
        {
            "a": params.contrast_a or "",
            "b": params.contrast_b or "",
            "padj_cutoff": format_number(params.padj_cutoff),
            "lfc_thresh": format_number(params.lfc_thresh),
            "p_cutoff": format_number(query.p_cutoff),
            "q_cutoff": format_number(query.q_cutoff),
            "top": format_number(query.top),
        }
    )
    return out


def download_query(params: QueryParams) -> dict[str, str]:
    return {
        "padj_cutoff": format_number(params.padj_cutoff),
        "lfc_thresh": format_number(params.lfc_thresh),
        "a": params.contrast_a or "",
        "b": params.contrast_b or "",
    }


def enrich_download_query(kind: str, query: EnrichQuery, params: QueryParams, fmt: str = "csv") -> dict[str, str]:
    fmt = str(fmt).strip().lower()
    if fmt not in DOWNLOAD_FORMATS:
        raise ValidationError(f"Download format must be one of {', '.join(DOWNLOAD_FORMATS)}")
    out = {"type": _check_kind(kind)}
    out.update(_enrich_base(kind, query))
    out.update(
        {
            "a": params.contrast_a or "",
            "b": params.contrast_b or "",
            "padj_cutoff": format_number(params.padj_cutoff),
            "lfc_thresh": format_number(params.lfc_thresh),
        }
    )
    if fmt != "csv":
        out["format"] = fmt
    return out


def _snapshot_pairs(snapshot) -> list[tuple[str, str]]:
    if isinstance(snapshot, dict):
        prefix = "dict"
        items = [(str(k), v) for k, v in snapshot.items()]
    else:
        prefix = type(snapshot).__name__
        items = [(f.name, getattr(snapshot, f.name)) for f in fields(snapshot)]
    return [(f"{prefix}.{name}", UNSET if value is None else _wire_value(value)) for name, value in items]


def query_key(job_id: str, *snapshots, scope: str = "") -> str:
    """Canonical key for ``job_id`` plus one or more parameter snapshots.

    Equal field values give equal keys whatever order they were set in.
    ``None`` is encoded with a sentinel, so an unset contrast and an empty
    one produce different (but each stable) keys.
    """
    pairs: list[tuple[str, str]] = [("job", str(job_id)), ("scope", str(scope))]
    for snapshot in snapshots:
        if snapshot is None:
            continue
        pairs.extend(_snapshot_pairs(snapshot))
    raw = "|".join([KEY_VERSION] + [f"{name}={value}" for name, value in sorted(pairs)])
    return sha256(raw.encode("utf-8")).hexdigest()
