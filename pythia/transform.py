from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, Sequence

import pandas as pd

from pythia.config import DEFAULT_ENRICH_SORT_KEY, ENRICH_SORT_KEYS
from pythia.errors import ValidationError
from pythia.models import DEResultRow, EnrichItem, PCAPoint, TopTable

UPREGULATED = "Upregulated"
DOWNREGULATED = "Downregulated"
NON_SIGNIFICANT = "Non-significant"

# Background cloud first so significant points are drawn on top.
VOLCANO_DRAW_ORDER = (NON_SIGNIFICANT, UPREGULATED, DOWNREGULATED)
VOLCANO_COLORS = {
    NON_SIGNIFICANT: "rgba(148,163,184,1)",
    UPREGULATED: "rgba(239,68,68,1)",
    DOWNREGULATED: "rgba(59,130,246,1)",
}


@dataclass(frozen=True)
class VolcanoPoint:
    gene: str
    log2fc: float
    padj: float
    y: float
    label: str


def neglog10(padj: float) -> float | None:
    """-log10(padj); +inf at zero, None when padj is not a finite value >= 0."""
    if padj is None or isinstance(padj, bool):
        return None
    try:
        value = float(padj)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(value) or value < 0:
        return None
    if value == 0:
        return math.inf
    return -math.log10(value)


def classify(log2fc: float, padj: float, padj_cutoff: float, lfc_thresh: float) -> str:
    # Both cutoffs are inclusive.
    if not padj <= padj_cutoff:
        return NON_SIGNIFICANT
    if log2fc >= lfc_thresh:
        return UPREGULATED
    if log2fc <= -lfc_thresh:
        return DOWNREGULATED
    return NON_SIGNIFICANT


def build_volcano_points(
    rows: Sequence[DEResultRow],
    padj_cutoff: float,
    lfc_thresh: float,
    item_limit: int,
) -> list[VolcanoPoint]:
    """Classify the first ``item_limit`` rows, keeping input order.

    Truncation happens before classification, in server order. Rows whose
    padj is unusable are dropped after truncation.
    """
    if item_limit <= 0:
        raise ValidationError(f"item limit must be > 0, got {item_limit}")

    points: list[VolcanoPoint] = []
    for row in list(rows)[:item_limit]:
        y = neglog10(row.padj)
        if y is None:
            continue
        points.append(
            VolcanoPoint(
                gene=row.gene,
                log2fc=row.log2fc,
                padj=row.padj,
                y=y,
                label=classify(row.log2fc, row.padj, padj_cutoff, lfc_thresh),
            )
        )
    return points


def volcano_summary(points: Iterable[VolcanoPoint]) -> dict[str, int]:
    counts = {label: 0 for label in VOLCANO_DRAW_ORDER}
    for point in points:
        counts[point.label] += 1
    return counts


def volcano_traces(points: Sequence[VolcanoPoint]) -> list[dict]:
    traces = []
    for label in VOLCANO_DRAW_ORDER:
        group = [p for p in points if p.label == label]
        traces.append(
            {
                "name": label,
                "color": VOLCANO_COLORS[label],
                "x": [p.log2fc for p in group],
                "y": [p.y for p in group],
                "text": [p.gene for p in group],
            }
        )
    return traces


def volcano_guides(padj_cutoff: float, lfc_thresh: float) -> dict:
    return {
        "padj_line": -math.log10(padj_cutoff),
        "lfc_lines": (-lfc_thresh, lfc_thresh),
    }


def pca_groups(points: Sequence[PCAPoint]) -> list[dict]:
    groups: dict[str, list[PCAPoint]] = {}
    for point in points:
        groups.setdefault(point.group, []).append(point)
    return [
        {
            "name": name,
            "x": [p.pc1 for p in pts],
            "y": [p.pc2 for p in pts],
            "text": [p.sample for p in pts],
        }
        for name, pts in groups.items()
    ]


def bar_view(items: Sequence[EnrichItem]) -> dict:
    # Server order is most significant first; reversed so it lands on top
    # of a horizontal bar chart.
    ordered = list(reversed(items))
    return {
        "y": [i.description for i in ordered],
        "x": [i.count for i in ordered],
        "color": [i.neglog10padj for i in ordered],
    }


def dot_view(items: Sequence[EnrichItem]) -> dict:
    return {
        "x": [i.gene_ratio for i in items],
        "y": [i.description for i in items],
        "size": [i.count for i in items],
        "color": [i.neglog10padj for i in items],
        "text": [i.term for i in items],
    }


def _is_missing(value) -> bool:
    return isinstance(value, float) and math.isnan(value)


@dataclass(frozen=True)
class TableSort:
    key: str = DEFAULT_ENRICH_SORT_KEY
    descending: bool = False

    def __post_init__(self) -> None:
        if self.key not in ENRICH_SORT_KEYS:
            raise ValidationError(f"Cannot sort enrichment table by {self.key!r}")

    def select(self, key: str) -> "TableSort":
        """Header click: same key flips direction, a new key starts ascending."""
        if key == self.key:
            return TableSort(key=key, descending=not self.descending)
        return TableSort(key=key, descending=False)

    def apply(self, items: Sequence[EnrichItem]) -> list[EnrichItem]:
        """Stable sort; NaN keys keep their input order after the rest."""
        present = [i for i in items if not _is_missing(getattr(i, self.key))]
        missing = [i for i in items if _is_missing(getattr(i, self.key))]
        ordered = sorted(present, key=lambda i: getattr(i, self.key), reverse=self.descending)
        return ordered + missing


def format_enrich_row(item: EnrichItem) -> dict[str, str]:
    return {
        "term": item.term,
        "description": item.description,
        "count": str(item.count),
        "gene_ratio": "NA" if _is_missing(item.gene_ratio) else f"{item.gene_ratio:.3f}",
        "p_adjust": f"{item.p_adjust:.2e}" if math.isfinite(item.p_adjust) else "NA",
        "neglog10padj": "NA" if _is_missing(item.neglog10padj) else f"{item.neglog10padj:.2f}",
    }


def volcano_frame(points: Sequence[VolcanoPoint]) -> pd.DataFrame:
    df = pd.DataFrame(
        [
            {
                "gene": p.gene,
                "log2FC": p.log2fc,
                "padj": p.padj,
                "neglog10padj": p.y,
                "label": p.label,
            }
            for p in points
        ],
        columns=["gene", "log2FC", "padj", "neglog10padj", "label"],
    )
    return df


def enrichment_frame(items: Sequence[EnrichItem]) -> pd.DataFrame:
    return pd.DataFrame(
        [
            {
                "term": i.term,
                "description": i.description,
                "count": i.count,
                "gene_ratio": i.gene_ratio,
                "p_adjust": i.p_adjust,
                "neglog10padj": i.neglog10padj,
            }
            for i in items
        ],
        columns=["term", "description", "count", "gene_ratio", "p_adjust", "neglog10padj"],
    )


def top_table_frame(table: TopTable) -> pd.DataFrame:
    return pd.DataFrame(list(table.rows), columns=list(table.columns))
