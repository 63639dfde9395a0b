"""Rename a stored image by copying it under a new key and deleting the old one.

Object keys are immutable, so a rename is four sequential stages::

    LOOKUP -> COPY -> DELETE_OLD -> PERSIST_METADATA

Failure policy:
    - LOOKUP and COPY failures stop the operation with nothing changed.
    - A DELETE_OLD failure is logged and the old key is recorded in the
      orphan ledger; the rename still succeeds because the new object
      exists and the record will point at it.
    - A PERSIST_METADATA failure is reported but not compensated. Storage
      and the metadata store share no transaction, so the caller receives
      the new key and reconciles by hand.

Nothing is retried here. Retrying a COPY is safe (each attempt gets a new
timestamp-prefixed key); a timed-out COPY is reported as inconclusive so the
caller checks the object before trying again.
"""

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum

import httpx

from gallerystore import metrics
from gallerystore.errors import (
    InternalError,
    MetadataUpdateFailed,
    NotFound,
    StorageCopyFailed,
    VersionConflict,
)
from gallerystore.metadata import ImageRecord, MetadataStore, ObjectLocation
from gallerystore.orphans import delete_or_record_orphan
from gallerystore.signing import SigningContext, utc_now
from gallerystore.storage import SignedStorageClient
from gallerystore.validation import validate_display_name

logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_EXTENSION_RE = re.compile(r"\.[^/.]+$")
_TAG_SEPARATOR_RE = re.compile(r"[-_\s]+")


class RenameStage(str, Enum):
    """Stages of a rename, in execution order."""

    LOOKUP = "LOOKUP"
    COPY = "COPY"
    DELETE_OLD = "DELETE_OLD"
    PERSIST_METADATA = "PERSIST_METADATA"


@dataclass
class RenameResult:
    """Outcome of a successful rename.

    Attributes:
        record: The updated metadata record.
        new_location: Bucket and key now holding the object.
        new_public_url: Public URL of the new key.
        derived_tags: Tags derived from the new display name.
        orphaned_key: The old key when its delete failed, else None.
    """

    record: ImageRecord
    new_location: ObjectLocation
    new_public_url: str
    derived_tags: list[str]
    orphaned_key: str | None = None


def derive_tags(display_name: str) -> list[str]:
    """Derive descriptive tags from a display filename.

    Strips the trailing extension, splits on runs of ``-``, ``_`` or
    whitespace, drops empty segments, lower-cases, and keeps the first
    occurrence of each tag.

    >>> derive_tags("My-Trip_Photo 01.jpg")
    ['my', 'trip', 'photo', '01']
    >>> derive_tags("___.png")
    []
    """
    stem = _EXTENSION_RE.sub("", display_name)
    tags: list[str] = []
    seen: set[str] = set()
    for segment in _TAG_SEPARATOR_RE.split(stem):
        if not segment:
            continue
        tag = segment.lower()
        folded = segment.casefold()
        if folded in seen:
            continue
        seen.add(folded)
        tags.append(tag)
    return tags


def unix_millis(timestamp: datetime) -> int:
    """Milliseconds since the Unix epoch, computed without float rounding."""
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    return (timestamp - _EPOCH) // timedelta(milliseconds=1)


def build_storage_key(display_name: str, timestamp: datetime) -> str:
    """Return ``<unixMillis>-<display_name>``.

    The prefix avoids collisions between renames to the same name; it is not
    a content hash.
    """
    return f"{unix_millis(timestamp)}-{display_name}"


class RenameOrchestrator:
    """Drives one rename through LOOKUP, COPY, DELETE_OLD and PERSIST_METADATA.

    Holds no per-operation state, so one instance may serve concurrent
    renames of different images. Concurrent renames of the same image are
    settled by the version check at PERSIST_METADATA.

    Attributes:
        metadata: Store holding image records and the orphan ledger.
        storage: Signed client for the image bucket.
        clock: Returns the current aware UTC instant.
    """

    def __init__(
        self,
        metadata: MetadataStore,
        storage: SignedStorageClient,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.metadata = metadata
        self.storage = storage
        self.clock = clock

    async def rename_object(
        self, owner_id: str, object_id: str, new_display_name: str
    ) -> RenameResult:
        """Rename the image ``object_id`` owned by ``owner_id``.

        Args:
            owner_id: Principal resolved from the caller's bearer token.
            object_id: Image id.
            new_display_name: Requested filename, extension included.

        Returns:
            The updated record, the new location and URL, the derived tags,
            and the old key if it had to be orphaned.

        Raises:
            InvalidRequest: If the display name is not usable in a key.
            NotFound: If the image is absent or owned by someone else.
            ConfigurationError: If signing inputs are missing.
            StorageCopyFailed: If the copy was rejected or its outcome is unknown.
            MetadataUpdateFailed: If the final record update failed.
            VersionConflict: If the record changed during the rename.
        """
        display_name = validate_display_name(new_display_name)

        record = await self._lookup(owner_id, object_id)
        old_location = self._location_of(record)

        # One instant for the key prefix and both signatures
        timestamp = self.clock()
        context = self.storage.signing_context(timestamp)
        new_key = build_storage_key(display_name, timestamp)
        new_location = ObjectLocation(self.storage.bucket, new_key)
        new_url = self.storage.object_url(new_key)

        await self._copy(object_id, old_location, new_location, context)

        orphaned_key = None
        if new_key != old_location.key:
            deleted = await self._delete_old(object_id, old_location, context)
            if not deleted:
                orphaned_key = old_location.key

        tags = derive_tags(display_name)
        updated = await self._persist(record, display_name, new_url, new_key, tags)

        metrics.record_rename("success_orphaned" if orphaned_key else "success")
        logger.info(
            "Renamed image %s: %s -> %s",
            object_id,
            old_location.key,
            new_key,
            extra={"image_id": object_id, "storage_key": new_key},
        )
        return RenameResult(
            record=updated,
            new_location=new_location,
            new_public_url=new_url,
            derived_tags=tags,
            orphaned_key=orphaned_key,
        )

    # -- Stages ----------------------------------------------------------------

    async def _lookup(self, owner_id: str, object_id: str) -> ImageRecord:
        record = await self.metadata.get_image(object_id)
        # Someone else's image is reported exactly like a missing one
        if record is None or record.user_id != owner_id:
            metrics.record_rename("not_found")
            logger.info(
                "Rename lookup found no image %s for owner",
                object_id,
                extra={"image_id": object_id, "stage": RenameStage.LOOKUP.value},
            )
            raise NotFound()
        return record

    def _location_of(self, record: ImageRecord) -> ObjectLocation:
        try:
            return ObjectLocation(self.storage.bucket, record.key)
        except ValueError as exc:
            raise InternalError("Image record has no usable storage key", str(exc)) from exc

    async def _copy(
        self,
        object_id: str,
        source: ObjectLocation,
        dest: ObjectLocation,
        context: SigningContext,
    ) -> None:
        extra = {"image_id": object_id, "stage": RenameStage.COPY.value}
        try:
            response = await self.storage.copy_object(source.key, dest.key, context)
        except httpx.HTTPError as exc:
            metrics.record_rename("copy_inconclusive")
            logger.error("S3 copy outcome unknown for %s: %s", dest.key, exc, extra=extra)
            raise StorageCopyFailed(body=str(exc), inconclusive=True) from exc

        if not response.ok:
            metrics.record_rename("copy_failed")
            logger.error(
                "S3 copy failed: %d %s",
                response.status_code,
                response.body,
                extra={**extra, "upstream_status": response.status_code},
            )
            raise StorageCopyFailed(upstream_status=response.status_code, body=response.body)

    async def _delete_old(
        self, object_id: str, old: ObjectLocation, context: SigningContext
    ) -> bool:
        deleted = await delete_or_record_orphan(
            self.metadata, self.storage, old.key, context, reason="rename"
        )
        if not deleted:
            logger.warning(
                "Keeping rename of %s despite failed delete of %s",
                object_id,
                old.key,
                extra={"image_id": object_id, "stage": RenameStage.DELETE_OLD.value},
            )
        return deleted

    async def _persist(
        self,
        record: ImageRecord,
        display_name: str,
        new_url: str,
        new_key: str,
        tags: list[str],
    ) -> ImageRecord:
        extra = {"image_id": record.id, "stage": RenameStage.PERSIST_METADATA.value}
        try:
            updated = await self.metadata.update_image_location(
                image_id=record.id,
                owner_id=record.user_id,
                filename=display_name,
                url=new_url,
                storage_key=new_key,
                tags=tags,
                expected_version=record.version,
            )
        except Exception as exc:
            metrics.record_rename("metadata_failed")
            logger.exception("Database update error for image %s", record.id, extra=extra)
            raise MetadataUpdateFailed(new_key=new_key, details=str(exc)) from exc

        if updated is not None:
            return updated

        current = await self.metadata.get_image(record.id)
        metrics.record_rename("metadata_failed")
        if current is not None and current.user_id == record.user_id:
            logger.warning(
                "Image %s changed during rename (expected version %d, found %d)",
                record.id,
                record.version,
                current.version,
                extra=extra,
            )
            raise VersionConflict(new_key=new_key, expected_version=record.version)

        logger.error("Image %s disappeared during rename", record.id, extra=extra)
        raise MetadataUpdateFailed(
            new_key=new_key, details={"newKey": new_key, "reason": "image record no longer exists"}
        )
