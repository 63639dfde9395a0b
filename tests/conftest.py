"""Shared pytest fixtures for GalleryStore tests.

A single FastAPI app is created per test session to avoid duplicate
Prometheus metric registration errors (the instrumentator registers
gauges in the global prometheus_client registry).

The metadata store and storage client are manually attached to the app
for each test instead of running the lifespan, so every test starts from
an empty store and a fresh fake storage endpoint.
"""

import itertools
from datetime import datetime, timedelta, timezone

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from gallerystore.config import (
    AuthConfig,
    GalleryStoreConfig,
    MetadataConfig,
    ObservabilityConfig,
    ServerConfig,
    StorageConfig,
)
from gallerystore.metadata import ImageRecord
from gallerystore.metadata.sqlite import SQLiteMetadataStore
from gallerystore.server import create_app
from gallerystore.storage import SignedStorageClient

BUCKET = "gallery-bucket"
REGION = "us-east-1"
HOST = f"{BUCKET}.s3.{REGION}.amazonaws.com"

# 2024-05-01T12:30:45.123Z
FIXED_NOW = datetime(2024, 5, 1, 12, 30, 45, 123000, tzinfo=timezone.utc)
FIXED_MILLIS = 1714566645123
FIXED_AMZ_DATE = "20240501T123045Z"

OLD_KEY = "1700000000000-old-name.jpg"
OLD_URL = f"https://{HOST}/{OLD_KEY}"

TOKENS = {"token-alice": "alice", "token-bob": "bob"}


def fixed_clock() -> datetime:
    return FIXED_NOW


def ticking_clock(step: timedelta = timedelta(minutes=1)):
    """Clock that starts at FIXED_NOW and advances ``step`` per call."""
    ticks = itertools.count()

    def clock() -> datetime:
        return FIXED_NOW + step * next(ticks)

    return clock


class FakeS3:
    """Scriptable stand-in for the storage endpoint.

    Records every request it receives. Copy (PUT) and delete (DELETE)
    statuses can be set per test, or an exception raised instead of
    answering.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.copy_status = 200
        self.delete_status = 204
        self.copy_error: Exception | None = None
        self.delete_error: Exception | None = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.method == "PUT":
            if self.copy_error is not None:
                raise self.copy_error
            if 200 <= self.copy_status < 300:
                return httpx.Response(self.copy_status, text="<CopyObjectResult/>")
            return httpx.Response(self.copy_status, text="<Error><Code>AccessDenied</Code></Error>")
        if request.method == "DELETE":
            if self.delete_error is not None:
                raise self.delete_error
            return httpx.Response(self.delete_status, text="")
        return httpx.Response(405)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def methods(self) -> list[str]:
        return [r.method for r in self.requests]


@pytest.fixture
def s3() -> FakeS3:
    return FakeS3()


@pytest.fixture
def storage_config() -> StorageConfig:
    return StorageConfig(
        bucket=BUCKET,
        region=REGION,
        access_key_id="AKIDEXAMPLE",
        secret_access_key="test-secret-key",
    )


@pytest.fixture
async def storage(storage_config, s3):
    """A signed storage client whose requests go to the FakeS3 endpoint."""
    client = SignedStorageClient.from_config(storage_config, transport=s3.transport)
    await client.init()
    yield client
    await client.close()


@pytest.fixture
async def metadata():
    """A fresh in-memory SQLite metadata store with tokens seeded."""
    store = SQLiteMetadataStore(":memory:")
    await store.init_db()
    for token, owner_id in TOKENS.items():
        await store.put_token(token, owner_id)
    yield store
    await store.close()


def make_image(
    image_id: str = "img-1",
    user_id: str = "alice",
    filename: str = "old-name.jpg",
    key: str = OLD_KEY,
    **kwargs,
) -> ImageRecord:
    return ImageRecord(
        id=image_id,
        user_id=user_id,
        filename=filename,
        url=f"https://{HOST}/{key}",
        storage_key=key,
        **kwargs,
    )


@pytest.fixture
async def image(metadata) -> ImageRecord:
    """Alice's image ``img-1`` stored under OLD_KEY."""
    record = make_image()
    await metadata.put_image(record)
    return record


@pytest.fixture(scope="session")
def config() -> GalleryStoreConfig:
    return GalleryStoreConfig(
        server=ServerConfig(host="127.0.0.1", port=8099),
        auth=AuthConfig(tokens=dict(TOKENS)),
        storage=StorageConfig(
            bucket=BUCKET,
            region=REGION,
            access_key_id="AKIDEXAMPLE",
            secret_access_key="test-secret-key",
        ),
        metadata=MetadataConfig(engine="sqlite", sqlite_path=":memory:"),
        observability=ObservabilityConfig(metrics=True, health_check=True),
    )


@pytest.fixture(scope="session")
def app(config: GalleryStoreConfig):
    """Create a single test FastAPI application for the whole session."""
    return create_app(config, clock=fixed_clock)


@pytest.fixture
async def client(app, metadata, storage) -> AsyncClient:
    """Async test client with this test's metadata store and storage attached."""
    app.state.metadata = metadata
    app.state.storage = storage
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac


def auth_header(token: str = "token-alice") -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}
