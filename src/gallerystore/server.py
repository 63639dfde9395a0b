"""FastAPI application factory and route setup for GalleryStore."""

import logging
import secrets
import time
from collections.abc import Callable
from contextlib import asynccontextmanager
from datetime import datetime

import httpx
from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from gallerystore.config import GalleryStoreConfig, validate_storage_config
from gallerystore.errors import GalleryError, InternalError, InvalidRequest
from gallerystore.handlers.images import ImageHandler
from gallerystore.metadata import create_metadata_store
from gallerystore.signing import utc_now
from gallerystore.storage import SignedStorageClient

logger = logging.getLogger(__name__)

CORS_ALLOW_METHODS = ["GET", "POST", "PUT", "DELETE", "OPTIONS"]
CORS_ALLOW_HEADERS = ["Content-Type", "Authorization", "X-Client-Info", "Apikey"]

# Shared by every app built in this process; its collectors live in the
# global Prometheus registry and can only be registered once.
_instrumentator = None


def _get_instrumentator():
    global _instrumentator
    if _instrumentator is None:
        from prometheus_fastapi_instrumentator import Instrumentator

        _instrumentator = Instrumentator(
            should_instrument_requests_inprogress=True,
            excluded_handlers=["/metrics"],
        )
    return _instrumentator


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


def create_app(
    config: GalleryStoreConfig,
    storage_transport: httpx.AsyncBaseTransport | None = None,
    clock: Callable[[], datetime] = utc_now,
) -> FastAPI:
    """Create and configure the GalleryStore FastAPI application.

    The lifespan context manager validates the storage settings, opens the
    metadata store and the signed storage client, and seeds the configured
    bearer tokens; both are closed on shutdown.

    Args:
        config: The loaded GalleryStore configuration.
        storage_transport: Optional httpx transport for the storage client
            (tests route storage calls to a ``MockTransport``).
        clock: Source of signing timestamps and key prefixes.

    Returns:
        A configured FastAPI application ready to run.

    Raises:
        ConfigurationError: At startup, if signing credentials are missing.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Lifespan hook: open the metadata store and storage client, seed tokens."""
        validate_storage_config(config.storage)

        metadata = create_metadata_store(config.metadata)
        await metadata.init_db()
        app.state.metadata = metadata

        # Idempotent upsert on every startup
        for token, owner_id in config.auth.tokens.items():
            await metadata.put_token(token, owner_id)

        storage = SignedStorageClient.from_config(config.storage, transport=storage_transport)
        await storage.init()
        app.state.storage = storage

        logger.info(
            "Metadata store initialized (%s), %d tokens seeded",
            config.metadata.engine,
            len(config.auth.tokens),
        )
        logger.info("Storage client ready for bucket %s (%s)", storage.bucket, storage.region)

        yield

        await storage.close()
        await metadata.close()
        logger.info("Metadata store and storage client closed")

    app = FastAPI(
        title="GalleryStore API",
        version="0.1.0",
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
    )
    app.state.config = config
    app.state.clock = clock

    _register_exception_handlers(app)
    _register_middleware(app, config)

    if config.observability.metrics:
        import gallerystore.metrics as _metrics

        _metrics.init_metrics()
        _get_instrumentator().instrument(app, metric_namespace="gallerystore").expose(
            app, endpoint="/metrics"
        )

    _setup_routes(app, config)

    return app


# ---------------------------------------------------------------------------
# Exception handlers
# ---------------------------------------------------------------------------


def _error_response(exc: GalleryError) -> JSONResponse:
    return JSONResponse(content=exc.to_body(), status_code=exc.http_status)


def _register_exception_handlers(app: FastAPI) -> None:
    """Register exception handlers on the FastAPI app."""

    @app.exception_handler(GalleryError)
    async def gallery_error_handler(request: Request, exc: GalleryError) -> Response:
        """Render GalleryError exceptions as ``{"error", "details"}`` JSON."""
        if exc.http_status >= 500:
            logger.error(
                "%s on %s: %s",
                exc.code,
                request.url.path,
                exc.message,
                extra={"path": request.url.path, "status": exc.http_status},
            )
        return _error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> Response:
        """Map FastAPI validation errors to an InvalidRequest body."""
        problems = [
            ".".join(str(part) for part in err.get("loc", ())) + f": {err.get('msg', 'invalid')}"
            for err in exc.errors()
        ]
        return _error_response(InvalidRequest("; ".join(problems) or "Invalid request"))

    @app.exception_handler(Exception)
    async def generic_error_handler(request: Request, exc: Exception) -> Response:
        """Catch unexpected exceptions and return InternalError."""
        logger.exception("Unhandled exception in request handler")
        return _error_response(InternalError())


# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------


def _register_middleware(app: FastAPI, config: GalleryStoreConfig) -> None:
    """Register middleware on the FastAPI app.

    Middleware registered last runs first, so CORS wraps the access log.
    """

    # Paths to suppress from per-request logging
    _QUIET_PATHS = {"/metrics", "/health"}

    @app.middleware("http")
    async def access_log_middleware(request: Request, call_next) -> Response:
        """Tag each response with a request id and write one access log line."""
        request_id = secrets.token_hex(8)
        request.state.request_id = request_id
        start = time.monotonic()

        response = await call_next(request)

        duration_ms = round((time.monotonic() - start) * 1000, 2)
        response.headers["x-request-id"] = request_id

        if request.url.path not in _QUIET_PATHS:
            logger.info(
                "%s %s %d %.2fms",
                request.method,
                request.url.path,
                response.status_code,
                duration_ms,
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "status": response.status_code,
                    "duration_ms": duration_ms,
                    "request_id": request_id,
                },
            )

        return response

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.server.cors_origins,
        allow_methods=CORS_ALLOW_METHODS,
        allow_headers=CORS_ALLOW_HEADERS,
    )


# ---------------------------------------------------------------------------
# Health check helpers
# ---------------------------------------------------------------------------


async def _check_metadata(app: FastAPI) -> dict:
    """Probe the metadata store.

    Returns a dict with ``status`` and ``latency_ms`` keys.
    """
    metadata = getattr(app.state, "metadata", None)
    if metadata is None:
        return {"status": "error", "error": "metadata store not initialized", "latency_ms": 0}
    try:
        start = time.monotonic()
        await metadata.ping()
        latency = round((time.monotonic() - start) * 1000, 1)
        return {"status": "ok", "latency_ms": latency}
    except Exception as exc:
        return {"status": "error", "error": str(exc), "latency_ms": 0}


def _check_storage(app: FastAPI) -> dict:
    """Report whether the storage client is configured.

    No request is sent: a signed probe would need list or head permissions
    the service does not otherwise use.
    """
    storage = getattr(app.state, "storage", None)
    if storage is None:
        return {"status": "error", "error": "storage client not initialized"}
    return {"status": "ok", "bucket": storage.bucket, "region": storage.region}


# ---------------------------------------------------------------------------
# Route handlers
# ---------------------------------------------------------------------------


def _setup_routes(app: FastAPI, config: GalleryStoreConfig) -> None:
    """Register all routes on the application.

    Args:
        app: The FastAPI application to attach routes to.
        config: The GalleryStore configuration.
    """
    image_handler = ImageHandler(app)

    health_check_enabled = config.observability.health_check

    @app.get("/health")
    async def health_check(request: Request) -> Response:
        """Return health status.

        When health_check is enabled: probe the metadata store and storage
        client, return JSON with component checks. When disabled: return
        static ``{"status": "ok"}``.
        """
        if not health_check_enabled:
            return JSONResponse(content={"status": "ok"})

        meta_check = await _check_metadata(app)
        storage_check = _check_storage(app)
        all_ok = meta_check["status"] == "ok" and storage_check["status"] == "ok"
        return JSONResponse(
            content={
                "status": "ok" if all_ok else "degraded",
                "checks": {"metadata": meta_check, "storage": storage_check},
            },
            status_code=200 if all_ok else 503,
        )

    @app.post("/rename-image")
    async def handle_rename_image(request: Request) -> Response:
        """Handle POST /rename-image -- RenameImage."""
        return await image_handler.rename_image(request)

    @app.post("/empty-trash")
    async def handle_empty_trash(request: Request) -> Response:
        """Handle POST /empty-trash -- EmptyTrash."""
        return await image_handler.empty_trash(request)

    @app.get("/album-images")
    async def handle_album_images(request: Request) -> Response:
        """Handle GET /album-images -- GetAlbumImages."""
        return await image_handler.album_images(request)

    # Browsers send preflights with an Origin header and CORSMiddleware
    # answers them; plain OPTIONS requests still get an empty 200.
    @app.options("/{path:path}")
    async def handle_options(path: str) -> Response:
        """Handle OPTIONS on any path."""
        return Response(status_code=200)
