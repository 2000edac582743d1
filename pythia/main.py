from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from pythia.client import ResultsClient
from pythia.config import (
    API_BASE,
    DEFAULT_DESIGN_COLUMN,
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
    ENRICH_KINDS,
    ENRICH_MODES,
    GO_ONTOLOGIES,
    ORGANISMS,
    POLL_INTERVAL_S,
)
from pythia.errors import JobFailedError, PythiaError
from pythia.jobs import JobEvent
from pythia.models import EnrichQuery, JobState, QueryParams
from pythia.session import AnalysisSession
from pythia.transform import enrichment_frame, top_table_frame, volcano_frame, volcano_summary

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Submit a bulk RNA-seq DE job and explore its results")
    parser.add_argument("--api-base", default=API_BASE)
    parser.add_argument("--counts", required=True, help="Counts CSV")
    parser.add_argument("--metadata", required=True, help="Sample metadata CSV")
    parser.add_argument("--design-col", default=DEFAULT_DESIGN_COLUMN)
    parser.add_argument("-a", "--contrast-a", default=None, help="Contrast numerator level")
    parser.add_argument("-b", "--contrast-b", default=None, help="Contrast denominator level")
    parser.add_argument("--padj-cutoff", type=float, default=DEFAULT_PADJ_CUTOFF)
    parser.add_argument("--lfc-thresh", type=float, default=DEFAULT_LFC_THRESH)
    parser.add_argument("--top-n", type=int, default=DEFAULT_TOP_N)
    parser.add_argument("--item-limit", type=int, default=DEFAULT_ITEM_LIMIT)
    parser.add_argument("--enrich", action="append", choices=ENRICH_KINDS, default=[])
    parser.add_argument("--mode", choices=ENRICH_MODES, default=DEFAULT_ENRICH_MODE)
    parser.add_argument("--ont", choices=GO_ONTOLOGIES, default=DEFAULT_GO_ONTOLOGY)
    parser.add_argument("--organism", choices=sorted(ORGANISMS), default=DEFAULT_ORGANISM)
    parser.add_argument("--p-cutoff", type=float, default=DEFAULT_P_CUTOFF)
    parser.add_argument("--q-cutoff", type=float, default=DEFAULT_Q_CUTOFF)
    parser.add_argument("--top", type=int, default=DEFAULT_ENRICH_TOP)
    parser.add_argument("--poll-interval", type=float, default=POLL_INTERVAL_S)
    parser.add_argument("--out", type=Path, default=None, help="Write volcano/top-table/enrichment CSVs here")
    parser.add_argument("--print-urls", action="store_true", help="Print server-side download URLs")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    return parser


def _print_event(event: JobEvent) -> None:
    line = f"[{event.job_id}] {event.previous.value} -> {event.current.value}"
    if event.error is not None:
        line = f"{line} ({event.error})"
    print(line)


def _print_summary(session: AnalysisSession) -> None:
    points = session.volcano()
    counts = volcano_summary(points)
    print(f"Volcano points: {len(points)}")
    for label, n in counts.items():
        print(f"  {label}: {n}")

    table = session.results.top_table
    if table.columns:
        print(f"Top genes ({len(table)} rows):")
        print("  " + "\t".join(table.columns))
        for record in table.rows[:10]:
            print("  " + "\t".join("" if v is None else str(v) for v in record))


def _write_outputs(session: AnalysisSession, out_dir: Path) -> None:
    out_dir.mkdir(parents=True, exist_ok=True)
    volcano_frame(session.volcano()).to_csv(out_dir / "volcano.csv", index=False)
    top_table_frame(session.results.top_table).to_csv(out_dir / "top_table.csv", index=False)

    for kind, result in session.enrichment.items():
        if result is not None:
            enrichment_frame(result.items).to_csv(out_dir / f"{kind}.csv", index=False)
    logger.info("Wrote outputs to %s", out_dir)


async def run(args: argparse.Namespace) -> int:
    params = QueryParams(
        padj_cutoff=args.padj_cutoff,
        lfc_thresh=args.lfc_thresh,
        top_n=args.top_n,
        item_limit=args.item_limit,
        contrast_a=args.contrast_a,
        contrast_b=args.contrast_b,
    )
    client = ResultsClient(base_url=args.api_base)
    session = AnalysisSession(
        client=client,
        params=params,
        poll_interval=args.poll_interval,
    )
    session.controller.subscribe(_print_event)
    try:
        job = await session.submit(args.counts, args.metadata, args.design_col)
        print(f"Job ID: {job.id}")
        state = await session.wait()
        if state is JobState.FAILED:
            raise session.last_error or JobFailedError(job.id)
        if session.results is None:
            raise session.last_error or PythiaError(f"No results for job {job.id}")
        _print_summary(session)

        for kind in dict.fromkeys(args.enrich):
            query = EnrichQuery(
                mode=args.mode,
                ontology=args.ont if kind == "go" else None,
                organism=args.organism,
                p_cutoff=args.p_cutoff,
                q_cutoff=args.q_cutoff,
                top=args.top,
            )
            await session.fetch_enrichment(kind, query)
            if session.enrichment[kind] is None:
                raise session.last_error or PythiaError(f"No {kind} enrichment for job {job.id}")
            print(f"{kind.upper()} terms: {len(session.enrichment[kind].items)}")
            for row in session.enrichment_table(kind)[:10]:
                print(f"  {row['description']}\t{row['count']}\t{row['p_adjust']}")

        if args.out is not None:
            _write_outputs(session, args.out)

        if args.print_urls:
            print(f"DE download: {session.download_url()}")
            for kind in session.enrichment:
                for fmt in ("csv", "tsv"):
                    url = session.enrich_download_url(kind, fmt=fmt)
                    if url:
                        print(f"{kind.upper()} {fmt.upper()}: {url}")
        return 0
    finally:
        # The session only borrows the client.
        session.close()
        client.close()


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)
    try:
        code = asyncio.run(run(args))
    except PythiaError as exc:
        print(f"error: {exc}", file=sys.stderr)
        code = 1
    sys.exit(code)


if __name__ == "__main__":
    main()
