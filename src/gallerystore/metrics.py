"""Prometheus metrics definitions for GalleryStore.

All custom metrics use the ``gallerystore_`` prefix. HTTP-level metrics
(request count, latency, sizes) come from
``prometheus-fastapi-instrumentator``; the ones here describe rename
outcomes and the signed storage calls behind them.

Counters reset to zero on restart. Prometheus handles gaps via ``rate()``.
"""

from __future__ import annotations

from prometheus_client import Counter

# Flag indicating whether metrics have been initialised via init_metrics().
_initialized: bool = False

# Rename outcomes (labels: outcome = success | not_found | copy_failed | ...)
renames_total: Counter | None = None

# Signed storage calls (labels: operation = copy | delete, status = HTTP status or "error")
storage_requests_total: Counter | None = None

# Keys added to the orphan ledger after a failed delete
orphans_recorded_total: Counter | None = None


def init_metrics() -> None:
    """Create and register all Prometheus metrics.

    Called once when metrics are enabled. When metrics are disabled the
    module-level references stay ``None`` and callers skip recording.
    """
    global _initialized
    global renames_total, storage_requests_total, orphans_recorded_total

    if _initialized:
        return

    renames_total = Counter(
        "gallerystore_renames_total",
        "Total rename operations by outcome",
        ["outcome"],
    )

    storage_requests_total = Counter(
        "gallerystore_storage_requests_total",
        "Total signed storage requests by operation and upstream status",
        ["operation", "status"],
    )

    orphans_recorded_total = Counter(
        "gallerystore_orphans_recorded_total",
        "Storage keys recorded in the orphan ledger after a failed delete",
    )

    _initialized = True


def record_rename(outcome: str) -> None:
    """Count one rename outcome if metrics are enabled."""
    if renames_total is not None:
        renames_total.labels(outcome=outcome).inc()


def record_storage_request(operation: str, status: int | str) -> None:
    """Count one signed storage call if metrics are enabled."""
    if storage_requests_total is not None:
        storage_requests_total.labels(operation=operation, status=str(status)).inc()


def record_orphan() -> None:
    """Count one orphan ledger entry if metrics are enabled."""
    if orphans_recorded_total is not None:
        orphans_recorded_total.inc()
