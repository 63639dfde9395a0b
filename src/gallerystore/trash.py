"""Permanently remove an owner's trashed images."""

import logging
from collections.abc import Callable
from datetime import datetime

from gallerystore.metadata import MetadataStore
from gallerystore.orphans import delete_or_record_orphan
from gallerystore.signing import utc_now
from gallerystore.storage import SignedStorageClient

logger = logging.getLogger(__name__)


async def empty_trash(
    metadata: MetadataStore,
    storage: SignedStorageClient,
    owner_id: str,
    clock: Callable[[], datetime] = utc_now,
) -> int:
    """Delete every trashed image of ``owner_id`` from storage and metadata.

    Each object gets its own signed DELETE, signed with a fresh timestamp so
    a long trash stays within the allowed clock skew. A failed delete does
    not stop the sweep: the key goes to the orphan ledger and the record is
    removed anyway, since a trashed image must not come back.

    Args:
        metadata: Store holding the image records.
        storage: Client for the image bucket.
        owner_id: Owner whose trash is emptied.
        clock: Source of the signing timestamp, read once per delete.

    Returns:
        Number of image records removed.
    """
    trashed = await metadata.list_trashed_images(owner_id)
    if not trashed:
        return 0

    orphaned = 0
    for record in trashed:
        key = record.key
        if not key:
            logger.warning(
                "Trashed image %s has no storage key; removing record only",
                record.id,
                extra={"image_id": record.id},
            )
            continue
        context = storage.signing_context(clock())
        if not await delete_or_record_orphan(
            metadata, storage, key, context, reason="empty-trash"
        ):
            orphaned += 1

    deleted = await metadata.delete_images(owner_id, [r.id for r in trashed])
    logger.info("Emptied trash: %d images deleted, %d objects orphaned", deleted, orphaned)
    return deleted
