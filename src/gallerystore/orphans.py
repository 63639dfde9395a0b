"""Orphaned storage objects: recording failed deletes and sweeping them later.

A failed delete never fails the operation that issued it. The key is
written to the orphan ledger instead, and ``sweep_orphans`` (run on its own
schedule through ``gallerystore-admin sweep-orphans``) retries it.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

import httpx

from gallerystore import metrics
from gallerystore.errors import StorageDeleteFailed
from gallerystore.metadata import MetadataStore
from gallerystore.signing import SigningContext, utc_now
from gallerystore.storage import SignedStorageClient

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    """Outcome of one orphan sweep.

    Attributes:
        attempted: Ledger entries whose delete was retried.
        removed: Entries cleared because the object is gone.
        failed: Entries left in the ledger after another failed delete.
    """

    attempted: int = 0
    removed: int = 0
    failed: int = 0


async def delete_or_record_orphan(
    metadata: MetadataStore,
    storage: SignedStorageClient,
    key: str,
    context: SigningContext,
    reason: str,
) -> bool:
    """Delete ``key``; on failure log it and add it to the orphan ledger.

    Returns:
        True if the delete succeeded, False if the key was orphaned.
    """
    try:
        response = await storage.delete_object(key, context)
    except httpx.HTTPError as exc:
        failure = StorageDeleteFailed(key, body=str(exc))
    else:
        if response.ok:
            return True
        failure = StorageDeleteFailed(key, response.status_code, response.body)

    logger.warning(
        "S3 delete failed for %s (status=%s); recording orphan",
        key,
        failure.upstream_status,
        extra={"storage_key": key, "upstream_status": failure.upstream_status},
    )
    try:
        await metadata.record_orphan(storage.bucket, key, reason)
    except Exception:
        logger.exception("Could not record orphaned key %s", key, extra={"storage_key": key})
    else:
        metrics.record_orphan()
    return False


async def sweep_orphans(
    metadata: MetadataStore,
    storage: SignedStorageClient,
    clock: Callable[[], datetime] = utc_now,
    limit: int = 100,
) -> SweepReport:
    """Retry the delete of up to ``limit`` orphaned keys in ``storage.bucket``.

    Entries with the fewest attempts go first, so a run of keys that keep
    failing cannot starve the rest of the ledger. An entry is cleared when
    the delete returns 2xx or 404 (the object is already gone); otherwise
    its attempt counter is bumped and it stays. Entries recorded for other
    buckets are left alone.

    Args:
        metadata: Store holding the orphan ledger.
        storage: Client for the bucket the orphans live in.
        clock: Source of the signing timestamp, read once per delete.
        limit: Maximum number of entries to process.

    Returns:
        Counts of what happened to each entry.
    """
    report = SweepReport()

    for orphan in await metadata.list_orphans(limit, bucket=storage.bucket):
        report.attempted += 1
        context = storage.signing_context(clock())
        try:
            response = await storage.delete_object(orphan.key, context)
        except httpx.HTTPError as exc:
            logger.warning("Orphan sweep could not reach storage for %s: %s", orphan.key, exc)
            gone = False
        else:
            gone = response.ok or response.status_code == 404

        if gone:
            await metadata.delete_orphan(orphan.id)
            report.removed += 1
        else:
            await metadata.mark_orphan_attempt(orphan.id)
            report.failed += 1

    logger.info(
        "Orphan sweep of %s: attempted=%d removed=%d failed=%d",
        storage.bucket,
        report.attempted,
        report.removed,
        report.failed,
    )
    return report
