"""Signed S3 client for the two object calls GalleryStore needs.

Only copy and delete are implemented. Every request is signed by hand with
:mod:`gallerystore.signing` and sent over a single ``httpx.AsyncClient``;
no SDK is involved.

Header shape (both calls)::

    host: <bucket>.s3.<region>.amazonaws.com
    x-amz-date: <AmzDate>
    x-amz-content-sha256: UNSIGNED-PAYLOAD
    x-amz-copy-source: /<bucket>/<source key>     (copy only)
    Authorization: AWS4-HMAC-SHA256 Credential=..., SignedHeaders=..., Signature=...
"""

import logging
from dataclasses import dataclass
from datetime import datetime

import httpx

from gallerystore import metrics
from gallerystore.config import StorageConfig
from gallerystore.signing import (
    UNSIGNED_PAYLOAD,
    Credentials,
    SigningContext,
    sign,
    uri_encode_path,
)

logger = logging.getLogger(__name__)

# Upstream error bodies are truncated to this many characters in errors and logs
_MAX_BODY_CHARS = 2048


@dataclass(frozen=True)
class StorageResponse:
    """Status and body of one storage call."""

    status_code: int
    body: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


class SignedStorageClient:
    """Issues SigV4-signed copy and delete calls against one bucket.

    Attributes:
        bucket: Bucket name.
        region: Region bound into every signature.
        host: Virtual-hosted-style host for the bucket.
    """

    def __init__(
        self,
        bucket: str,
        region: str,
        credentials: Credentials,
        endpoint_host: str = "{bucket}.s3.{region}.amazonaws.com",
        scheme: str = "https",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the client. Call ``init()`` before issuing requests.

        Args:
            bucket: Bucket name.
            region: Region name.
            credentials: Access key pair used to sign.
            endpoint_host: Host template with ``{bucket}`` and ``{region}``.
            scheme: URL scheme.
            timeout: Per-request timeout in seconds.
            transport: Optional httpx transport (tests pass a MockTransport).
        """
        self.bucket = bucket
        self.region = region
        self.credentials = credentials
        self.host = endpoint_host.format(bucket=bucket, region=region)
        self.scheme = scheme
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @classmethod
    def from_config(
        cls, config: StorageConfig, transport: httpx.AsyncBaseTransport | None = None
    ) -> "SignedStorageClient":
        """Build a client from the storage section of the configuration."""
        return cls(
            bucket=config.bucket,
            region=config.region,
            credentials=Credentials(config.access_key_id, config.secret_access_key),
            endpoint_host=config.endpoint_host,
            scheme=config.scheme,
            timeout=config.timeout_seconds,
            transport=transport,
        )

    async def init(self) -> None:
        """Open the underlying HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                transport=self._transport,
                timeout=self.timeout,
            )

    async def close(self) -> None:
        """Release the underlying HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def object_url(self, key: str) -> str:
        """Return the public URL of ``key`` in this bucket."""
        return f"{self.scheme}://{self.host}{uri_encode_path('/' + key)}"

    def signing_context(self, timestamp: datetime) -> SigningContext:
        """Return the signing context for requests issued at ``timestamp``."""
        return SigningContext(region=self.region, timestamp=timestamp)

    async def copy_object(
        self, source_key: str, dest_key: str, context: SigningContext
    ) -> StorageResponse:
        """Copy ``source_key`` to ``dest_key`` inside the bucket.

        Raises:
            httpx.HTTPError: On timeouts and connection failures.
        """
        headers = self._base_headers(context)
        headers["x-amz-copy-source"] = uri_encode_path(f"/{self.bucket}/{source_key}")
        return await self._send("copy", "PUT", dest_key, headers, context)

    async def delete_object(self, key: str, context: SigningContext) -> StorageResponse:
        """Delete ``key`` from the bucket.

        Raises:
            httpx.HTTPError: On timeouts and connection failures.
        """
        headers = self._base_headers(context)
        return await self._send("delete", "DELETE", key, headers, context)

    def _base_headers(self, context: SigningContext) -> dict[str, str]:
        return {
            "host": self.host,
            "x-amz-date": context.amz_date,
            "x-amz-content-sha256": UNSIGNED_PAYLOAD,
        }

    async def _send(
        self,
        operation: str,
        method: str,
        key: str,
        headers: dict[str, str],
        context: SigningContext,
    ) -> StorageResponse:
        if self._client is None:
            await self.init()
        assert self._client is not None

        signed = sign(method, key, headers, self.credentials, context)
        request_headers = dict(headers)
        request_headers["Authorization"] = signed.authorization

        try:
            response = await self._client.request(
                method, self.object_url(key), headers=request_headers
            )
        except httpx.HTTPError:
            metrics.record_storage_request(operation, "error")
            raise

        metrics.record_storage_request(operation, response.status_code)
        result = StorageResponse(
            status_code=response.status_code,
            body=response.text[:_MAX_BODY_CHARS],
        )
        if not result.ok:
            logger.debug(
                "S3 %s %s returned %d",
                method,
                key,
                response.status_code,
                extra={"storage_key": key, "upstream_status": response.status_code},
            )
        return result
