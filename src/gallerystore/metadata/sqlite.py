"""SQLite-backed metadata store for GalleryStore.

Implements the MetadataStore protocol using aiosqlite for async access.
All tables use CREATE TABLE IF NOT EXISTS for schema idempotency.
Tags are stored as JSON text.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any

import aiosqlite

from gallerystore.metadata.models import ImageRecord, OrphanRecord

logger = logging.getLogger(__name__)

_IMAGE_COLUMNS = (
    "id, user_id, filename, url, storage_key, tags, is_favorite, deleted, "
    "created_at, updated_at, version"
)


def _now_iso() -> str:
    """Return the current UTC time as an ISO 8601 string."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.000Z")


def _row_to_image(row: aiosqlite.Row) -> ImageRecord:
    return ImageRecord(
        id=row["id"],
        user_id=row["user_id"],
        filename=row["filename"],
        url=row["url"],
        storage_key=row["storage_key"],
        tags=json.loads(row["tags"] or "[]"),
        is_favorite=bool(row["is_favorite"]),
        deleted=bool(row["deleted"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        version=row["version"],
    )


class SQLiteMetadataStore:
    """Metadata store backed by a local SQLite database.

    Attributes:
        db_path: Path to the SQLite database file.
        _db: The aiosqlite connection, set after init_db().
    """

    def __init__(self, db_path: str) -> None:
        """Initialize the SQLite metadata store.

        Args:
            db_path: Filesystem path to the SQLite database file.
                     Use ':memory:' for an in-memory database (useful in tests).
        """
        self.db_path = db_path
        self._db: aiosqlite.Connection | None = None

    async def init_db(self) -> None:
        """Open the database and create tables if they do not exist.

        Sets WAL journal mode, NORMAL synchronous, enables foreign keys,
        and sets a 5-second busy timeout.
        """
        self._db = await aiosqlite.connect(self.db_path)
        self._db.row_factory = aiosqlite.Row

        await self._db.execute("PRAGMA journal_mode = WAL")
        await self._db.execute("PRAGMA synchronous = NORMAL")
        await self._db.execute("PRAGMA foreign_keys = ON")
        await self._db.execute("PRAGMA busy_timeout = 5000")

        await self._create_tables()

    async def _create_tables(self) -> None:
        """Create all tables and indexes if they do not already exist."""
        assert self._db is not None

        async with self._db.execute(
            "SELECT 1 FROM sqlite_master WHERE type='table' AND name='schema_version'"
        ) as cursor:
            if await cursor.fetchone() is not None:
                return

        await self._db.executescript("""
            CREATE TABLE IF NOT EXISTS api_tokens (
                token       TEXT PRIMARY KEY,
                owner_id    TEXT NOT NULL,
                created_at  TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS images (
                id           TEXT PRIMARY KEY,
                user_id      TEXT NOT NULL,
                filename     TEXT NOT NULL,
                url          TEXT NOT NULL,
                storage_key  TEXT NOT NULL DEFAULT '',
                tags         TEXT NOT NULL DEFAULT '[]',
                is_favorite  INTEGER NOT NULL DEFAULT 0,
                deleted      INTEGER NOT NULL DEFAULT 0,
                created_at   TEXT NOT NULL,
                updated_at   TEXT NOT NULL,
                version      INTEGER NOT NULL DEFAULT 1
            );

            CREATE INDEX IF NOT EXISTS idx_images_user
                ON images(user_id, deleted);

            CREATE TABLE IF NOT EXISTS albums (
                id          TEXT PRIMARY KEY,
                user_id     TEXT NOT NULL,
                name        TEXT NOT NULL,
                created_at  TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS album_images (
                album_id  TEXT NOT NULL,
                image_id  TEXT NOT NULL,
                added_at  TEXT NOT NULL,

                PRIMARY KEY (album_id, image_id),
                FOREIGN KEY (album_id) REFERENCES albums(id) ON DELETE CASCADE,
                FOREIGN KEY (image_id) REFERENCES images(id) ON DELETE CASCADE
            );

            CREATE TABLE IF NOT EXISTS orphaned_objects (
                id           INTEGER PRIMARY KEY AUTOINCREMENT,
                bucket       TEXT NOT NULL,
                key          TEXT NOT NULL,
                reason       TEXT NOT NULL DEFAULT '',
                recorded_at  TEXT NOT NULL,
                attempts     INTEGER NOT NULL DEFAULT 0
            );

            CREATE INDEX IF NOT EXISTS idx_orphans_sweep
                ON orphaned_objects(bucket, attempts, id);

            CREATE TABLE IF NOT EXISTS schema_version (
                version    INTEGER PRIMARY KEY,
                applied_at TEXT NOT NULL
            );
        """)

        await self._db.execute(
            "INSERT OR IGNORE INTO schema_version (version, applied_at) VALUES (1, ?)",
            (_now_iso(),),
        )
        await self._db.commit()

    async def close(self) -> None:
        """Close the database connection."""
        if self._db is not None:
            await self._db.close()
            self._db = None

    async def ping(self) -> None:
        """Run ``SELECT 1``; raises if the connection is closed or broken."""
        if self._db is None:
            raise RuntimeError("database connection closed")
        async with self._db.execute("SELECT 1") as cursor:
            await cursor.fetchone()

    # -- Tokens ----------------------------------------------------------------

    async def put_token(self, token: str, owner_id: str) -> None:
        assert self._db is not None
        await self._db.execute(
            """INSERT INTO api_tokens (token, owner_id, created_at) VALUES (?, ?, ?)
               ON CONFLICT(token) DO UPDATE SET owner_id = excluded.owner_id""",
            (token, owner_id, _now_iso()),
        )
        await self._db.commit()

    async def get_owner_for_token(self, token: str) -> str | None:
        assert self._db is not None
        async with self._db.execute(
            "SELECT owner_id FROM api_tokens WHERE token = ?", (token,)
        ) as cursor:
            row = await cursor.fetchone()
            return None if row is None else row["owner_id"]

    # -- Images ----------------------------------------------------------------

    async def put_image(self, record: ImageRecord) -> None:
        """Create or replace an image record (upsert).

        Missing timestamps are filled in with the current time.
        """
        assert self._db is not None
        now = _now_iso()
        await self._db.execute(
            f"INSERT INTO images ({_IMAGE_COLUMNS}) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?) "
            """ON CONFLICT(id) DO UPDATE SET
                   user_id = excluded.user_id, filename = excluded.filename,
                   url = excluded.url, storage_key = excluded.storage_key,
                   tags = excluded.tags, is_favorite = excluded.is_favorite,
                   deleted = excluded.deleted, updated_at = excluded.updated_at,
                   version = excluded.version""",
            (
                record.id,
                record.user_id,
                record.filename,
                record.url,
                record.storage_key,
                json.dumps(record.tags),
                int(record.is_favorite),
                int(record.deleted),
                record.created_at or now,
                record.updated_at or now,
                record.version,
            ),
        )
        await self._db.commit()

    async def get_image(self, image_id: str) -> ImageRecord | None:
        assert self._db is not None
        async with self._db.execute(
            f"SELECT {_IMAGE_COLUMNS} FROM images WHERE id = ?", (image_id,)
        ) as cursor:
            row = await cursor.fetchone()
            return None if row is None else _row_to_image(row)

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
        """Point an image at a new object if owner and version still match.

        A single UPDATE statement guarded by ``version`` makes the write
        atomic with respect to other renames of the same record.
        """
        assert self._db is not None
        cursor = await self._db.execute(
            """UPDATE images
               SET filename = ?, url = ?, storage_key = ?, tags = ?,
                   updated_at = ?, version = version + 1
               WHERE id = ? AND user_id = ? AND version = ?""",
            (
                filename,
                url,
                storage_key,
                json.dumps(tags),
                _now_iso(),
                image_id,
                owner_id,
                expected_version,
            ),
        )
        updated = cursor.rowcount
        await cursor.close()
        await self._db.commit()
        if updated == 0:
            return None
        return await self.get_image(image_id)

    async def list_trashed_images(self, owner_id: str) -> list[ImageRecord]:
        assert self._db is not None
        async with self._db.execute(
            f"SELECT {_IMAGE_COLUMNS} FROM images WHERE user_id = ? AND deleted = 1 "
            "ORDER BY created_at",
            (owner_id,),
        ) as cursor:
            rows = await cursor.fetchall()
            return [_row_to_image(row) for row in rows]

    async def delete_images(self, owner_id: str, image_ids: list[str]) -> int:
        assert self._db is not None
        if not image_ids:
            return 0
        placeholders = ", ".join("?" for _ in image_ids)
        cursor = await self._db.execute(
            f"DELETE FROM images WHERE user_id = ? AND id IN ({placeholders})",
            (owner_id, *image_ids),
        )
        deleted = cursor.rowcount
        await cursor.close()
        await self._db.commit()
        return deleted

    # -- Albums ----------------------------------------------------------------

    async def create_album(self, album_id: str, owner_id: str, name: str) -> None:
        assert self._db is not None
        await self._db.execute(
            "INSERT INTO albums (id, user_id, name, created_at) VALUES (?, ?, ?, ?)",
            (album_id, owner_id, name, _now_iso()),
        )
        await self._db.commit()

    async def add_image_to_album(self, album_id: str, image_id: str) -> None:
        assert self._db is not None
        await self._db.execute(
            "INSERT OR IGNORE INTO album_images (album_id, image_id, added_at) VALUES (?, ?, ?)",
            (album_id, image_id, _now_iso()),
        )
        await self._db.commit()

    async def list_album_images(
        self, album_id: str, owner_id: str
    ) -> list[dict[str, Any]] | None:
        assert self._db is not None
        async with self._db.execute(
            "SELECT 1 FROM albums WHERE id = ? AND user_id = ?", (album_id, owner_id)
        ) as cursor:
            if await cursor.fetchone() is None:
                return None

        async with self._db.execute(
            """SELECT i.id, i.url, i.filename, i.tags, i.is_favorite, i.created_at,
                      ai.added_at
               FROM album_images ai
               JOIN images i ON i.id = ai.image_id
               WHERE ai.album_id = ? AND i.deleted = 0
               ORDER BY ai.added_at DESC, ai.rowid DESC""",
            (album_id,),
        ) as cursor:
            rows = await cursor.fetchall()
        return [
            {
                "id": row["id"],
                "url": row["url"],
                "filename": row["filename"],
                "tags": json.loads(row["tags"] or "[]"),
                "is_favorite": bool(row["is_favorite"]),
                "created_at": row["created_at"],
                "added_at": row["added_at"],
            }
            for row in rows
        ]

    # -- Orphan ledger ---------------------------------------------------------

    async def record_orphan(self, bucket: str, key: str, reason: str) -> int:
        assert self._db is not None
        cursor = await self._db.execute(
            "INSERT INTO orphaned_objects (bucket, key, reason, recorded_at) VALUES (?, ?, ?, ?)",
            (bucket, key, reason, _now_iso()),
        )
        orphan_id = cursor.lastrowid
        await cursor.close()
        await self._db.commit()
        return orphan_id

    async def list_orphans(
        self, limit: int = 100, bucket: str | None = None
    ) -> list[OrphanRecord]:
        assert self._db is not None
        where, params = ("WHERE bucket = ? ", (bucket,)) if bucket is not None else ("", ())
        async with self._db.execute(
            "SELECT id, bucket, key, reason, recorded_at, attempts "
            f"FROM orphaned_objects {where}ORDER BY attempts, id LIMIT ?",
            (*params, limit),
        ) as cursor:
            rows = await cursor.fetchall()
        return [OrphanRecord(**dict(row)) for row in rows]

    async def mark_orphan_attempt(self, orphan_id: int) -> None:
        assert self._db is not None
        await self._db.execute(
            "UPDATE orphaned_objects SET attempts = attempts + 1 WHERE id = ?", (orphan_id,)
        )
        await self._db.commit()

    async def delete_orphan(self, orphan_id: int) -> None:
        assert self._db is not None
        await self._db.execute("DELETE FROM orphaned_objects WHERE id = ?", (orphan_id,))
        await self._db.commit()
