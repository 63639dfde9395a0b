"""Error definitions for GalleryStore.

Every error carries a stable code, a human-readable message, the HTTP status
the API layer responds with, and optional details rendered next to the
message in the JSON error body.
"""

from typing import Any


class GalleryError(Exception):
    """A GalleryStore error with code, message, and HTTP status.

    Attributes:
        code: Stable error code string (e.g. "NotFound", "StorageCopyFailed").
        message: Human-readable error description (the ``error`` field).
        http_status: The HTTP status code to return.
        details: Additional information for the ``details`` field, if any.
    """

    def __init__(
        self,
        code: str,
        message: str,
        http_status: int = 400,
        details: Any = None,
    ) -> None:
        """Initialize the error.

        Args:
            code: Error code.
            message: Error description.
            http_status: HTTP status code (default 400).
            details: Optional extra detail for the response body.
        """
        super().__init__(message)
        self.code = code
        self.message = message
        self.http_status = http_status
        self.details = details

    def to_body(self) -> dict[str, Any]:
        """Return the JSON body for this error."""
        body: dict[str, Any] = {"error": self.message}
        if self.details is not None:
            body["details"] = self.details
        return body


class ConfigurationError(GalleryError):
    """A required signing or storage setting is missing."""

    def __init__(self, message: str = "Storage credentials not configured") -> None:
        super().__init__(code="ConfigurationError", message=message, http_status=500)


class InvalidRequest(GalleryError):
    """The request body or parameters are not valid."""

    def __init__(self, message: str = "Invalid request", details: Any = None) -> None:
        super().__init__(code="InvalidRequest", message=message, http_status=400, details=details)


class Unauthorized(GalleryError):
    """The bearer token is missing or unknown."""

    def __init__(self, message: str = "Unauthorized") -> None:
        super().__init__(code="Unauthorized", message=message, http_status=401)


class NotFound(GalleryError):
    """The object does not exist or is owned by someone else."""

    def __init__(self, message: str = "Image not found") -> None:
        super().__init__(code="NotFound", message=message, http_status=404)


class StorageCopyFailed(GalleryError):
    """The storage endpoint rejected the copy, or its outcome is unknown.

    Attributes:
        upstream_status: HTTP status returned by the endpoint, or None when
            no response was observed.
        inconclusive: True when the call timed out or the connection failed
            before a response arrived; the copy may or may not exist.
    """

    def __init__(
        self,
        upstream_status: int | None = None,
        body: str = "",
        inconclusive: bool = False,
    ) -> None:
        message = "Failed to copy file in S3"
        if inconclusive:
            message = "Copy outcome unknown; verify the object before retrying"
        super().__init__(
            code="StorageCopyFailed",
            message=message,
            http_status=500,
            details=body,
        )
        self.upstream_status = upstream_status
        self.inconclusive = inconclusive


class StorageDeleteFailed(GalleryError):
    """The storage endpoint rejected a delete.

    Only ever recorded and logged during a rename; never fails the operation.
    """

    def __init__(self, key: str, upstream_status: int | None = None, body: str = "") -> None:
        super().__init__(
            code="StorageDeleteFailed",
            message=f"Failed to delete {key} from S3",
            http_status=500,
            details=body,
        )
        self.key = key
        self.upstream_status = upstream_status


class MetadataUpdateFailed(GalleryError):
    """The metadata store rejected the final write after storage changed.

    The storage side effects are not rolled back. ``new_key`` names the object
    that now holds the data so the record can be reconciled by hand.
    """

    def __init__(
        self,
        new_key: str = "",
        details: Any = None,
        message: str = "Failed to update image metadata",
        http_status: int = 500,
        code: str = "MetadataUpdateFailed",
    ) -> None:
        super().__init__(code=code, message=message, http_status=http_status, details=details)
        self.new_key = new_key


class VersionConflict(MetadataUpdateFailed):
    """The image record changed between LOOKUP and PERSIST_METADATA."""

    def __init__(self, new_key: str = "", expected_version: int | None = None) -> None:
        super().__init__(
            new_key=new_key,
            details={"newKey": new_key, "expectedVersion": expected_version},
            message="Image was modified concurrently",
            http_status=409,
            code="VersionConflict",
        )
        self.expected_version = expected_version


class InternalError(GalleryError):
    """An unexpected server-side failure."""

    def __init__(self, message: str = "Internal server error", details: Any = None) -> None:
        super().__init__(code="InternalError", message=message, http_status=500, details=details)
