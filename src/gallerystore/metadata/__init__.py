"""Metadata store backends for GalleryStore."""

from typing import TYPE_CHECKING

from gallerystore.metadata.models import (
    AlbumMeta,
    ImageRecord,
    ObjectLocation,
    OrphanRecord,
    key_from_url,
)
from gallerystore.metadata.store import MetadataStore

if TYPE_CHECKING:
    from gallerystore.config import MetadataConfig

__all__ = [
    "AlbumMeta",
    "create_metadata_store",
    "ImageRecord",
    "key_from_url",
    "MetadataStore",
    "ObjectLocation",
    "OrphanRecord",
]


def create_metadata_store(config: "MetadataConfig") -> MetadataStore:
    """Create a metadata store instance based on configuration.

    Args:
        config: The metadata configuration.

    Returns:
        A metadata store instance implementing the MetadataStore protocol.

    Raises:
        ValueError: If the engine is unknown.
    """
    engine = config.engine

    if engine == "sqlite":
        from gallerystore.metadata.sqlite import SQLiteMetadataStore

        return SQLiteMetadataStore(config.sqlite_path)

    elif engine == "memory":
        from gallerystore.metadata.memory import MemoryMetadataStore

        return MemoryMetadataStore()

    else:
        raise ValueError(f"Unknown metadata engine: {engine}")
