"""FastAPI gallery server for Hearth.

Exposes, under /api/v1:
- GET    /albums
- POST   /albums
- GET    /albums/{album_id}
- DELETE /albums/{album_id}
- GET    /albums/{album_id}/images?limit&offset
- POST   /albums/{album_id}/images            (multipart: files + metadata)
- DELETE /albums/{album_id}/images/{image_id}
- GET    /images/{object_key}

Every non-2xx response carries a `{code, message}` body.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import socket
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import APIRouter, FastAPI, File, Form, Query, Request, Response, UploadFile
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from .blobstore import BlobStoreError, get_blob_store
from .catalog import Catalog
from .config import HearthConfig, get_config
from .deletion import DeletionCoordinator
from .errors import HearthError, InternalError, NotFound, ValidationError, toast
from .ingest import SourceFile, UploadPipeline, UploadReport
from .logging_config import get_logger
from .metadata import parse_timestamp
from .schemas import (
    AlbumCreate,
    AlbumOut,
    GalleryPage,
    MediaItemOut,
    Toast,
    UploadFailure,
    UploadMetadata,
    UploadReportOut,
)
from .utils import with_timeout

logger = get_logger(__name__)

API_PREFIX = "/api/v1"
IMAGE_CACHE_CONTROL = "public, max-age=31536000, immutable"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log the first client that connects, with full URL for debugging."""

    async def dispatch(self, request, call_next):
        if not getattr(request.app.state, "logged_first_request", False):
            logger = logging.getLogger("hearth.request")
            user_agent = request.headers.get("user-agent", "")
            client_name = user_agent.split("/")[0] if user_agent else "unknown"
            client_ip = request.client.host if request.client else "unknown"
            message = (
                'client_connected="%s" ip="%s" url="%s %s" host="%s" ua="%s"'
                % (
                    client_name,
                    client_ip,
                    request.method,
                    str(request.url),
                    request.headers.get("host", ""),
                    user_agent,
                )
            )
            logger.info(message)
            request.app.state.logged_first_request = True
        return await call_next(request)


def _info(msg: str) -> None:
    logger.info(msg)


def _get_lan_ip() -> Optional[str]:
    """Return this machine's LAN IP (for the API URL when binding to 0.0.0.0)."""
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
            s.connect(("8.8.8.8", 80))
            return s.getsockname()[0]
    except OSError:
        return None


@asynccontextmanager
async def _lifespan(app: FastAPI):
    async def _print_startup_messages():
        await asyncio.sleep(0.1)
        _info("Started server process [" + str(os.getpid()) + "]")
        _info("Application startup complete. (Press CTRL+C to quit)")
        api_url = getattr(app.state, "api_url_public", None)
        if api_url:
            _info("Gallery API available at: " + api_url)
        storage = getattr(app.state, "storage_description", None)
        if storage:
            _info("Blob storage: " + storage)

    asyncio.create_task(_print_startup_messages())
    yield


app = FastAPI(title="Hearth", lifespan=_lifespan)
app.add_middleware(RequestLoggingMiddleware)

router = APIRouter(prefix=API_PREFIX)


# --- Error rendering ---


@app.exception_handler(HearthError)
async def _hearth_error_handler(request: Request, exc: HearthError) -> JSONResponse:
    return JSONResponse(status_code=exc.code, content=exc.toast())


@app.exception_handler(RequestValidationError)
async def _request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = exc.errors()
    if errors:
        first = errors[0]
        where = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{where}: {first.get('msg', 'invalid value')}" if where else first.get("msg", "")
    else:
        message = "Invalid request"
    return JSONResponse(status_code=ValidationError.code, content=toast(ValidationError.code, message))


@app.exception_handler(StarletteHTTPException)
async def _http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=toast(exc.status_code, str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def _unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error on {request.method} {request.url.path}", exc_info=exc)
    error = InternalError("Unexpected server error")
    return JSONResponse(status_code=error.code, content=error.toast())


# --- Services ---


def _catalog(config: HearthConfig) -> Catalog:
    return Catalog(timeout=config.timeouts.catalog_seconds)


def _pipeline(config: HearthConfig) -> UploadPipeline:
    return UploadPipeline(
        _catalog(config),
        get_blob_store(config),
        batch_size=config.uploads.batch_size,
        max_upload_bytes=config.uploads.max_upload_bytes,
        blob_timeout=config.timeouts.blob_seconds,
    )


def _deleter(config: HearthConfig) -> DeletionCoordinator:
    return DeletionCoordinator(
        _catalog(config),
        get_blob_store(config),
        blob_timeout=config.timeouts.blob_seconds,
    )


# --- Albums ---


@router.get("/albums", response_model=List[AlbumOut])
async def list_albums():
    return await _catalog(get_config()).list_albums()


@router.post("/albums", response_model=AlbumOut, status_code=201)
async def create_album(body: AlbumCreate):
    name = body.name.strip()
    if not name:
        raise ValidationError("Album name is required")
    album = await _catalog(get_config()).create_album(name)
    logger.info(f"Created album {album.id} '{album.name}'")
    return album


@router.get("/albums/{album_id}", response_model=AlbumOut)
async def get_album(album_id: int):
    album = await _catalog(get_config()).get_album(album_id)
    if album is None:
        raise NotFound("Album not found")
    return album


@router.delete("/albums/{album_id}", response_model=Toast)
async def delete_album(album_id: int):
    await _deleter(get_config()).delete_album(album_id)
    return toast(200, "Album deleted")


# --- Images ---


@router.get("/albums/{album_id}/images", response_model=GalleryPage)
async def list_images(
    album_id: int,
    limit: Optional[int] = Query(None, ge=1),
    offset: int = Query(0, ge=0),
):
    config = get_config()
    page_size = min(limit or config.gallery.page_size, config.gallery.max_page_size)
    catalog = _catalog(config)
    if await catalog.get_album(album_id) is None:
        raise NotFound("Album not found")
    return await catalog.list_page(album_id, offset=offset, limit=page_size)


def _parse_upload_metadata(raw: Optional[str]) -> List[Optional[UploadMetadata]]:
    """Decode the `metadata` part. Malformed input is ignored, entry by entry."""
    if not raw:
        return []
    try:
        decoded = json.loads(raw)
    except ValueError:
        logger.warning("Ignoring malformed upload metadata (not JSON)")
        return []
    if not isinstance(decoded, list):
        logger.warning("Ignoring upload metadata that is not a JSON array")
        return []
    hints: List[Optional[UploadMetadata]] = []
    for entry in decoded:
        try:
            hints.append(UploadMetadata.model_validate(entry))
        except PydanticValidationError:
            hints.append(None)
    return hints


def _report_response(report: UploadReport) -> JSONResponse:
    failures = report.failures()
    errors = [
        UploadFailure(
            index=index,
            filename=item.filename,
            code=item.error.code if item.error else InternalError.code,
            message=item.error.message if item.error else "Upload failed",
        )
        for index, item in failures
    ]
    # The most severe failure decides the status.
    code = max(e.code for e in errors)
    total = len(report.items)
    if report.succeeded:
        message = f"{report.failed} of {total} file(s) failed to upload"
    else:
        message = "No files were uploaded" if total != 1 else errors[0].message
    body = UploadReportOut(
        code=code,
        message=message,
        succeeded=report.succeeded,
        failed=report.failed,
        data=report.created,
        errors=errors,
    )
    return JSONResponse(status_code=code, content=jsonable_encoder(body))


@router.post("/albums/{album_id}/images", response_model=List[MediaItemOut], status_code=201)
async def upload_images(
    album_id: int,
    files: List[UploadFile] = File(...),
    metadata: Optional[str] = Form(None),
):
    config = get_config()
    hints = _parse_upload_metadata(metadata)

    sources: List[SourceFile] = []
    for index, upload in enumerate(files):
        hint = hints[index] if index < len(hints) else None
        filename = upload.filename or (hint.filename if hint else None) or ""
        data = await upload.read()
        taken_at = parse_timestamp(hint.taken_at) if hint else None
        sources.append(SourceFile(filename=filename, data=data, taken_at=taken_at))

    report = await _pipeline(config).run(album_id, sources)
    if report.failed:
        return _report_response(report)
    return report.created


@router.delete("/albums/{album_id}/images/{image_id}", response_model=Toast)
async def delete_image(album_id: int, image_id: int):
    await _deleter(get_config()).delete_image(album_id, image_id)
    return toast(200, "Image deleted")


@router.get("/images/{object_key:path}")
async def get_image(object_key: str) -> Response:
    config = get_config()
    blobs = get_blob_store(config)
    try:
        blob = await with_timeout(
            blobs.get(object_key), config.timeouts.blob_seconds, f"read {object_key}"
        )
    except ValueError:
        raise NotFound("Image not found")
    except (BlobStoreError, HearthError) as exc:
        logger.warning(f"Serving {object_key} failed: {exc}")
        raise NotFound("Image not found")
    if blob is None:
        raise NotFound("Image not found")
    return Response(
        content=blob.data,
        media_type=blob.content_type,
        headers={"Cache-Control": IMAGE_CACHE_CONTROL},
    )


app.include_router(router)


@app.get("/favicon.ico", include_in_schema=False)
def favicon() -> Response:
    return Response(status_code=204)


class _AccessFilter(logging.Filter):
    """Filter out access log lines for successful requests to reduce console noise.
    Keep errors (4xx, 5xx) visible for debugging.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            msg = record.getMessage()
            if any(
                pattern in msg
                for pattern in [
                    ' 200 OK',
                    '" 200',
                    ' 201 Created',
                    '" 201',
                    ' 204 No Content',
                    '" 204',
                    ' 304 Not Modified',
                    '" 304',
                ]
            ):
                return False
            return True
        except Exception:
            return True


class _UvicornStartupFilter(logging.Filter):
    """Suppress all uvicorn startup messages; we print our own in lifespan."""

    _PATTERNS = (
        "Started server process",
        "Waiting for application startup",
        "Application startup complete",
        "running on",
    )

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            msg = record.getMessage()
        except Exception:
            return True
        raw = str(getattr(record, "msg", ""))
        return not any(p in msg or p in raw for p in self._PATTERNS)


def run_server(
    config: HearthConfig,
    host: Optional[str],
    port: Optional[int],
) -> None:
    """Run the FastAPI app with Uvicorn."""
    import uvicorn

    effective_host = host or config.server_host
    effective_port = port or config.server_port

    # Show the network IP when binding to 0.0.0.0 so clients know where to connect
    if effective_host == "0.0.0.0":
        lan_ip = _get_lan_ip()
        public_host = lan_ip if lan_ip else "0.0.0.0"
    else:
        public_host = effective_host
    app.state.api_url_public = f"http://{public_host}:{effective_port}{API_PREFIX}/"
    if config.storage.backend == "s3":
        app.state.storage_description = f"s3://{config.storage.bucket}"
    else:
        app.state.storage_description = str(config.storage.path)

    startup_filter = _UvicornStartupFilter()
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access", "uvicorn.lifespan"):
        logging.getLogger(name).addFilter(startup_filter)
    logging.getLogger().addFilter(startup_filter)
    logging.getLogger("uvicorn.access").addFilter(_AccessFilter())

    uvicorn.run(
        app,
        host=effective_host,
        port=effective_port,
        log_level="info",
        log_config=None,
    )
