"""Image request handlers for GalleryStore.

Implements:
    - RenameImage (POST /rename-image)
    - EmptyTrash (POST /empty-trash)
    - GetAlbumImages (GET /album-images?albumId=...)
"""

import json
import logging
from typing import Any

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse

from gallerystore.auth import authenticate
from gallerystore.errors import InvalidRequest, NotFound
from gallerystore.rename import RenameOrchestrator
from gallerystore.trash import empty_trash
from gallerystore.validation import validate_identifier

logger = logging.getLogger(__name__)


class ImageHandler:
    """Handles image operations.

    Attributes:
        app: The parent FastAPI application.
    """

    def __init__(self, app: FastAPI) -> None:
        """Initialize the image handler.

        Args:
            app: The FastAPI application instance.
        """
        self.app = app

    @property
    def metadata(self):
        """Shortcut to the metadata store on app.state."""
        return self.app.state.metadata

    @property
    def storage(self):
        """Shortcut to the signed storage client on app.state."""
        return self.app.state.storage

    @property
    def config(self):
        """Shortcut to the GalleryStoreConfig on app.state."""
        return self.app.state.config

    @property
    def clock(self):
        """Clock used for signing timestamps and key prefixes."""
        return self.app.state.clock

    async def _read_json(self, request: Request) -> dict[str, Any]:
        """Parse the request body as a JSON object.

        Raises:
            InvalidRequest: If the body is not a JSON object.
        """
        body_bytes = await request.body()
        try:
            payload = json.loads(body_bytes or b"{}")
        except ValueError:
            raise InvalidRequest("Request body must be valid JSON")
        if not isinstance(payload, dict):
            raise InvalidRequest("Request body must be a JSON object")
        return payload

    async def rename_image(self, request: Request) -> Response:
        """Rename an image by copying its object to a new key.

        Implements: POST /rename-image

        The body is checked before the caller is authenticated, so a request
        missing ``imageId`` or ``newFilename`` gets 400 even without a token.

        Args:
            request: The incoming HTTP request.

        Returns:
            JSON response ``{"message": "Rename successful", "data": record}``.
        """
        payload = await self._read_json(request)
        image_id = payload.get("imageId")
        new_filename = payload.get("newFilename")
        if not image_id or not new_filename:
            raise InvalidRequest("Missing imageId or newFilename")
        image_id = validate_identifier(image_id, "imageId")

        owner_id = await authenticate(self.metadata, request.headers.get("authorization"))

        orchestrator = RenameOrchestrator(self.metadata, self.storage, clock=self.clock)
        result = await orchestrator.rename_object(owner_id, image_id, new_filename)

        return JSONResponse(
            content={"message": "Rename successful", "data": result.record.to_dict()},
            status_code=200,
        )

    async def empty_trash(self, request: Request) -> Response:
        """Permanently delete the caller's trashed images.

        Implements: POST /empty-trash

        Args:
            request: The incoming HTTP request.

        Returns:
            JSON response with ``message`` and ``deletedCount``.
        """
        owner_id = await authenticate(self.metadata, request.headers.get("authorization"))

        deleted = await empty_trash(self.metadata, self.storage, owner_id, clock=self.clock)
        message = "Trash emptied successfully" if deleted else "Trash is already empty"
        return JSONResponse(content={"message": message, "deletedCount": deleted})

    async def album_images(self, request: Request) -> Response:
        """List the non-trashed images of one of the caller's albums.

        Implements: GET /album-images?albumId=...

        Args:
            request: The incoming HTTP request.

        Returns:
            JSON response ``{"images": [...]}``, newest addition first.
        """
        owner_id = await authenticate(self.metadata, request.headers.get("authorization"))

        album_id = request.query_params.get("albumId", "").strip()
        if not album_id:
            raise InvalidRequest("Album ID is required")

        images = await self.metadata.list_album_images(album_id, owner_id)
        if images is None:
            raise NotFound("Album not found")
        return JSONResponse(content={"images": images})
