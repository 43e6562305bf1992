"""Prometheus metrics for loading, scoring and dedup."""
from __future__ import annotations

import logging

from prometheus_client import Counter, Histogram, start_http_server

from matchtext.config import settings

logger = logging.getLogger(__name__)


DOCUMENTS_LOADED_TOTAL = Counter(
    "matchtext_documents_loaded_total",
    "Documents tokenized into statistics",
    ["extractor"],
)

DOCUMENTS_SKIPPED_TOTAL = Counter(
    "matchtext_documents_skipped_total",
    "Documents dropped before scoring",
    ["reason"],
)

DOCUMENT_LOAD_SECONDS = Histogram(
    "matchtext_document_load_seconds",
    "Per-document extraction + tokenization latency",
    buckets=(0.001, 0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10, 30),
)

COMPARISONS_TOTAL = Counter(
    "matchtext_comparisons_total",
    "Pairwise similarity computations",
    ["mode"],
)

DUPLICATES_RESOLVED_TOTAL = Counter(
    "matchtext_duplicates_resolved_total",
    "Documents scheduled for removal as duplicates",
)

DUPLICATE_MOVES_TOTAL = Counter(
    "matchtext_duplicate_moves_total",
    "Duplicate file moves by outcome",
    ["outcome"],
)


def start_metrics_server() -> bool:
    """Expose metrics over HTTP when MATCHTEXT_METRICS_PORT is set."""
    port = settings.METRICS_PORT
    if port <= 0:
        return False
    try:
        start_http_server(port)
    except OSError as exc:
        logger.warning("Metrics exporter not started on port %s: %s", port, exc)
        return False
    logger.info("Metrics exporter listening on port %s", port)
    return True
