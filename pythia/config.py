import os

API_BASE = os.getenv("PYTHIA_API_BASE", "http://localhost:8000").rstrip("/")
REQUEST_TIMEOUT_S = float(os.getenv("PYTHIA_REQUEST_TIMEOUT", "30"))
USER_AGENT = "pythia-client/0.1"

POLL_INTERVAL_S = 1.2

MAX_RETRIES = 2
BACKOFF_FACTOR = 0.5
RETRY_STATUS_CODES = (500, 502, 503, 504)

DEFAULT_DESIGN_COLUMN = "condition"
DEFAULT_PADJ_CUTOFF = 0.05
DEFAULT_LFC_THRESH = 1.0
DEFAULT_TOP_N = 100
DEFAULT_ITEM_LIMIT = 10000

ENRICH_KINDS = ("go", "kegg")
ENRICH_MODES = ("ora", "gsea")
GO_ONTOLOGIES = ("BP", "MF", "CC")
DOWNLOAD_FORMATS = ("csv", "tsv")

DEFAULT_ENRICH_MODE = "ora"
DEFAULT_GO_ONTOLOGY = "BP"
DEFAULT_ORGANISM = "hsa"
DEFAULT_P_CUTOFF = 0.05
DEFAULT_Q_CUTOFF = 0.2
DEFAULT_ENRICH_TOP = 20

ORGANISMS = {
    "hsa": {"go_org_db": "org.Hs.eg.db", "kegg_org": "hsa", "label": "Human"},
    "mmu": {"go_org_db": "org.Mm.eg.db", "kegg_org": "mmu", "label": "Mouse"},
}

ENRICH_SORT_KEYS = ("description", "count", "gene_ratio", "p_adjust", "neglog10padj")
DEFAULT_ENRICH_SORT_KEY = "p_adjust"
