"""In-memory metadata store for GalleryStore.

Useful for testing and ephemeral deployments. Data is lost on restart.
"""

import dataclasses
from datetime import datetime, timezone
from typing import Any

from gallerystore.metadata.models import AlbumMeta, ImageRecord, OrphanRecord


def _now_iso() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.000Z")


class MemoryMetadataStore:
    """In-memory metadata store using Python dicts.

    Records are copied on the way in and out so callers never share mutable
    state with the store.
    """

    def __init__(self) -> None:
        self._tokens: dict[str, str] = {}
        self._images: dict[str, ImageRecord] = {}
        self._albums: dict[str, AlbumMeta] = {}
        # album_id -> [(image_id, added_at, sequence)]
        self._album_images: dict[str, list[tuple[str, str, int]]] = {}
        self._orphans: dict[int, OrphanRecord] = {}
        self._next_orphan_id = 1
        self._sequence = 0

    async def init_db(self) -> None:
        pass

    async def ping(self) -> None:
        pass

    async def close(self) -> None:
        self._tokens.clear()
        self._images.clear()
        self._albums.clear()
        self._album_images.clear()
        self._orphans.clear()

    async def put_token(self, token: str, owner_id: str) -> None:
        self._tokens[token] = owner_id

    async def get_owner_for_token(self, token: str) -> str | None:
        return self._tokens.get(token)

    async def put_image(self, record: ImageRecord) -> None:
        now = _now_iso()
        stored = dataclasses.replace(
            record,
            tags=list(record.tags),
            created_at=record.created_at or now,
            updated_at=record.updated_at or now,
        )
        self._images[record.id] = stored

    async def get_image(self, image_id: str) -> ImageRecord | None:
        record = self._images.get(image_id)
        if record is None:
            return None
        return dataclasses.replace(record, tags=list(record.tags))

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
        record = self._images.get(image_id)
        if record is None or record.user_id != owner_id or record.version != expected_version:
            return None
        self._images[image_id] = dataclasses.replace(
            record,
            filename=filename,
            url=url,
            storage_key=storage_key,
            tags=list(tags),
            updated_at=_now_iso(),
            version=record.version + 1,
        )
        return await self.get_image(image_id)

    async def list_trashed_images(self, owner_id: str) -> list[ImageRecord]:
        return [
            dataclasses.replace(r, tags=list(r.tags))
            for r in sorted(self._images.values(), key=lambda r: r.created_at)
            if r.user_id == owner_id and r.deleted
        ]

    async def delete_images(self, owner_id: str, image_ids: list[str]) -> int:
        removed = 0
        for image_id in image_ids:
            record = self._images.get(image_id)
            if record is not None and record.user_id == owner_id:
                del self._images[image_id]
                removed += 1
        for album_id, entries in self._album_images.items():
            self._album_images[album_id] = [e for e in entries if e[0] in self._images]
        return removed

    async def create_album(self, album_id: str, owner_id: str, name: str) -> None:
        if album_id in self._albums:
            raise KeyError(f"Album already exists: {album_id}")
        self._albums[album_id] = AlbumMeta(
            id=album_id, user_id=owner_id, name=name, created_at=_now_iso()
        )
        self._album_images[album_id] = []

    async def add_image_to_album(self, album_id: str, image_id: str) -> None:
        entries = self._album_images.setdefault(album_id, [])
        if any(e[0] == image_id for e in entries):
            return
        self._sequence += 1
        entries.append((image_id, _now_iso(), self._sequence))

    async def list_album_images(
        self, album_id: str, owner_id: str
    ) -> list[dict[str, Any]] | None:
        album = self._albums.get(album_id)
        if album is None or album.user_id != owner_id:
            return None
        result = []
        entries = sorted(self._album_images.get(album_id, []), key=lambda e: (e[1], e[2]))
        for image_id, added_at, _ in reversed(entries):
            image = self._images.get(image_id)
            if image is None or image.deleted:
                continue
            result.append(
                {
                    "id": image.id,
                    "url": image.url,
                    "filename": image.filename,
                    "tags": list(image.tags),
                    "is_favorite": image.is_favorite,
                    "created_at": image.created_at,
                    "added_at": added_at,
                }
            )
        return result

    async def record_orphan(self, bucket: str, key: str, reason: str) -> int:
        orphan_id = self._next_orphan_id
        self._next_orphan_id += 1
        self._orphans[orphan_id] = OrphanRecord(
            id=orphan_id, bucket=bucket, key=key, reason=reason, recorded_at=_now_iso()
        )
        return orphan_id

    async def list_orphans(
        self, limit: int = 100, bucket: str | None = None
    ) -> list[OrphanRecord]:
        candidates = [
            o for o in self._orphans.values() if bucket is None or o.bucket == bucket
        ]
        candidates.sort(key=lambda o: (o.attempts, o.id))
        return [dataclasses.replace(o) for o in candidates[:limit]]

    async def mark_orphan_attempt(self, orphan_id: int) -> None:
        orphan = self._orphans.get(orphan_id)
        if orphan is not None:
            orphan.attempts += 1

    async def delete_orphan(self, orphan_id: int) -> None:
        self._orphans.pop(orphan_id, None)
