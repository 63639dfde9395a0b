"""Data model types for GalleryStore metadata.

These dataclasses represent the records kept in the metadata store
(images, albums, orphaned storage keys) and the storage location value the
rename orchestrator moves between.
"""

from __future__ import annotations

import urllib.parse
from dataclasses import asdict, dataclass, field
from typing import Any


@dataclass
class ImageRecord:
    """Metadata for one stored image.

    Attributes:
        id: Image identifier.
        user_id: Owner of the image.
        filename: Display filename shown in the gallery.
        url: Public URL of the stored object.
        storage_key: Object key inside the bucket. Empty for legacy rows,
            where the key is recovered from ``url``.
        tags: Descriptive tags, lower-case.
        is_favorite: Whether the owner starred the image.
        deleted: Whether the image sits in the trash.
        created_at: ISO 8601 creation timestamp.
        updated_at: ISO 8601 last-update timestamp.
        version: Optimistic concurrency counter, bumped on every update.
    """

    id: str
    user_id: str
    filename: str
    url: str
    storage_key: str = ""
    tags: list[str] = field(default_factory=list)
    is_favorite: bool = False
    deleted: bool = False
    created_at: str = ""
    updated_at: str = ""
    version: int = 1

    @property
    def key(self) -> str:
        """The object key, falling back to the path component of ``url``."""
        if self.storage_key:
            return self.storage_key
        return key_from_url(self.url)

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-ready dict of this record."""
        return asdict(self)


@dataclass
class AlbumMeta:
    """An album owned by one user."""

    id: str
    user_id: str
    name: str
    created_at: str = ""


@dataclass
class OrphanRecord:
    """A storage key whose delete failed and still needs cleanup.

    Attributes:
        id: Ledger entry id.
        bucket: Bucket holding the object.
        key: Object key.
        reason: Why the key was orphaned (e.g. ``rename``, ``empty-trash``).
        recorded_at: ISO 8601 timestamp of the failed delete.
        attempts: Number of sweep attempts so far.
    """

    id: int
    bucket: str
    key: str
    reason: str = ""
    recorded_at: str = ""
    attempts: int = 0


@dataclass(frozen=True)
class ObjectLocation:
    """Where an object lives: one bucket and a single key inside it."""

    bucket: str
    key: str

    def __post_init__(self) -> None:
        if not self.bucket:
            raise ValueError("bucket must not be empty")
        if not self.key or self.key.startswith("/"):
            raise ValueError(f"invalid object key: {self.key!r}")


def key_from_url(url: str) -> str:
    """Recover the object key from a virtual-hosted-style object URL."""
    path = urllib.parse.urlsplit(url).path
    return urllib.parse.unquote(path.lstrip("/"))
