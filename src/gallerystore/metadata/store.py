"""Abstract metadata store protocol for GalleryStore."""

from typing import Any, Protocol

from gallerystore.metadata.models import ImageRecord, OrphanRecord


class MetadataStore(Protocol):
    """Protocol defining the metadata store interface.

    All metadata backends (SQLite, in-memory) implement this interface.
    The store is the only shared mutable state between concurrent
    operations; per-record races are resolved by the ``version`` guard on
    ``update_image_location``.
    """

    async def init_db(self) -> None:
        """Initialize the schema. Must be idempotent (safe on every startup)."""
        ...

    async def close(self) -> None:
        """Close the database connection and release resources."""
        ...

    async def ping(self) -> None:
        """Probe the store with a trivial query; raises if it is unusable."""
        ...

    # -- Tokens ----------------------------------------------------------------

    async def put_token(self, token: str, owner_id: str) -> None:
        """Create or replace the owner a bearer token resolves to."""
        ...

    async def get_owner_for_token(self, token: str) -> str | None:
        """Return the owner id for a bearer token, or None if unknown."""
        ...

    # -- Images ----------------------------------------------------------------

    async def put_image(self, record: ImageRecord) -> None:
        """Create or replace an image record (upsert)."""
        ...

    async def get_image(self, image_id: str) -> ImageRecord | None:
        """Retrieve an image record regardless of owner.

        Args:
            image_id: The image id.

        Returns:
            The record, or None if it does not exist.
        """
        ...

    async def update_image_location(
        self,
        image_id: str,
        owner_id: str,
        filename: str,
        url: str,
        storage_key: str,
        tags: list[str],
        expected_version: int,
    ) -> ImageRecord | None:
        """Atomically point an image record at a new storage object.

        The update applies only when the record exists, belongs to
        ``owner_id``, and still has ``expected_version``; the version is
        then incremented.

        Returns:
            The updated record, or None when no row matched.
        """
        ...

    async def list_trashed_images(self, owner_id: str) -> list[ImageRecord]:
        """Return the owner's images flagged as deleted."""
        ...

    async def delete_images(self, owner_id: str, image_ids: list[str]) -> int:
        """Delete the owner's image records and their album memberships.

        Returns:
            The number of image records removed.
        """
        ...

    # -- Albums ----------------------------------------------------------------

    async def create_album(self, album_id: str, owner_id: str, name: str) -> None:
        """Create an album owned by ``owner_id``."""
        ...

    async def add_image_to_album(self, album_id: str, image_id: str) -> None:
        """Add an image to an album (idempotent)."""
        ...

    async def list_album_images(self, album_id: str, owner_id: str) -> list[dict[str, Any]] | None:
        """List the non-deleted images of an album, newest addition first.

        Returns:
            A list of dicts with id, url, filename, tags, is_favorite,
            created_at, and added_at; None if the album does not exist or
            belongs to someone else.
        """
        ...

    # -- Orphan ledger ---------------------------------------------------------

    async def record_orphan(self, bucket: str, key: str, reason: str) -> int:
        """Record a storage key whose delete failed. Returns the entry id."""
        ...

    async def list_orphans(
        self, limit: int = 100, bucket: str | None = None
    ) -> list[OrphanRecord]:
        """Return up to ``limit`` ledger entries, fewest attempts first.

        Ties go to the oldest entry, so entries that keep failing yield
        the front of the queue to newer ones. ``bucket`` restricts the
        result to one bucket.
        """
        ...

    async def mark_orphan_attempt(self, orphan_id: int) -> None:
        """Increment the attempt counter of a ledger entry."""
        ...

    async def delete_orphan(self, orphan_id: int) -> None:
        """Remove a ledger entry once its object is gone."""
        ...
