"""Batch ingestion of uploaded files into the blob store and the catalog.

Each file moves through pending -> uploading -> done | error. Files are
processed in batches, in submission order. Within a batch every blob write
runs concurrently, then the written items go into the catalog with a single
multi-row insert.

Two stores, no shared transaction:
- a catalog row is only inserted after its blob write succeeded
- when the insert fails, the batch's blobs are deleted again so no
  unreferenced object is left behind
- one file's failure never rolls back or blocks its siblings in other batches
"""

from __future__ import annotations

import asyncio
import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, FrozenSet, List, Optional, Sequence

from .blobstore import BlobStore, BlobStoreError
from .catalog import Catalog
from .errors import HearthError, InternalError, NotFound, StorageUnavailable, ValidationError
from .logging_config import get_logger
from .metadata import content_type_for, extract_captured_at, media_kind_for, new_object_key
from .models import MediaItem
from .schemas import MediaItemOut
from .utils import chunked, with_timeout

logger = get_logger(__name__)


class UploadStatus(str, enum.Enum):
    PENDING = "pending"
    UPLOADING = "uploading"
    DONE = "done"
    ERROR = "error"


LEGAL_TRANSITIONS: Dict[UploadStatus, FrozenSet[UploadStatus]] = {
    UploadStatus.PENDING: frozenset({UploadStatus.UPLOADING}),
    UploadStatus.UPLOADING: frozenset({UploadStatus.DONE, UploadStatus.ERROR}),
    UploadStatus.DONE: frozenset(),
    UploadStatus.ERROR: frozenset(),
}


class InvalidTransition(RuntimeError):
    pass


@dataclass
class UploadQueueItem:
    filename: str
    status: UploadStatus = UploadStatus.PENDING
    error: Optional[HearthError] = None

    @property
    def is_terminal(self) -> bool:
        return not LEGAL_TRANSITIONS[self.status]

    def advance(self, status: UploadStatus, error: Optional[HearthError] = None) -> None:
        """Move to `status`; raises InvalidTransition for anything but the legal edges."""
        if status not in LEGAL_TRANSITIONS[self.status]:
            raise InvalidTransition(
                f"{self.filename}: {self.status.value} -> {status.value} is not allowed"
            )
        self.status = status
        self.error = error

    def fail(self, error: HearthError) -> None:
        self.advance(UploadStatus.ERROR, error)


@dataclass(frozen=True)
class SourceFile:
    """One uploaded file. `taken_at` is the client's capture-time hint, if any."""

    filename: str
    data: bytes
    taken_at: Optional[datetime] = None


@dataclass
class _Prepared:
    index: int
    item: UploadQueueItem
    source: SourceFile
    object_key: str
    content_type: str
    media_kind: str
    captured_at: Optional[datetime]


@dataclass
class UploadReport:
    items: List[UploadQueueItem]
    created: List[MediaItemOut] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for item in self.items if item.status is UploadStatus.DONE)

    @property
    def failed(self) -> int:
        return sum(1 for item in self.items if item.status is UploadStatus.ERROR)

    @property
    def complete(self) -> bool:
        return all(item.is_terminal for item in self.items)

    def failures(self) -> List[tuple[int, UploadQueueItem]]:
        return [
            (index, item)
            for index, item in enumerate(self.items)
            if item.status is UploadStatus.ERROR
        ]


class UploadPipeline:
    def __init__(
        self,
        catalog: Catalog,
        blobs: BlobStore,
        *,
        batch_size: int = 5,
        max_upload_bytes: Optional[int] = None,
        blob_timeout: float = 30.0,
    ):
        self.catalog = catalog
        self.blobs = blobs
        self.batch_size = max(1, batch_size)
        self.max_upload_bytes = max_upload_bytes
        self.blob_timeout = blob_timeout

    async def run(self, album_id: int, files: Sequence[SourceFile]) -> UploadReport:
        """Ingest `files` into the album and report a terminal status per file.

        Raises NotFound when the album does not exist; nothing is written then.
        """
        if await self.catalog.get_album(album_id) is None:
            raise NotFound("Album not found")

        report = UploadReport(items=[UploadQueueItem(filename=f.filename) for f in files])
        indexed = list(enumerate(files))
        for batch in chunked(indexed, self.batch_size):
            created = await self._run_batch(album_id, batch, report.items)
            report.created.extend(created)

        logger.info(
            f"Album {album_id}: {report.succeeded} uploaded, {report.failed} failed"
        )
        return report

    async def _run_batch(
        self,
        album_id: int,
        batch: List[tuple[int, SourceFile]],
        items: List[UploadQueueItem],
    ) -> List[MediaItemOut]:
        prepared: List[_Prepared] = []
        for index, source in batch:
            item = items[index]
            item.advance(UploadStatus.UPLOADING)
            try:
                self._validate(source)
            except ValidationError as exc:
                logger.warning(f"✗ {source.filename or '<unnamed>'}: {exc.message}")
                item.fail(exc)
                continue
            captured_at = source.taken_at
            if captured_at is None:
                captured_at = await asyncio.to_thread(extract_captured_at, source.data)
            prepared.append(
                _Prepared(
                    index=index,
                    item=item,
                    source=source,
                    object_key=new_object_key(album_id, source.filename),
                    content_type=content_type_for(source.filename),
                    media_kind=media_kind_for(source.filename),
                    captured_at=captured_at,
                )
            )

        if not prepared:
            return []

        results = await asyncio.gather(
            *(self._write_blob(album_id, p) for p in prepared),
            return_exceptions=True,
        )

        written: List[_Prepared] = []
        for p, result in zip(prepared, results):
            if isinstance(result, BaseException):
                error = _as_hearth_error(result)
                logger.error(f"✗ {p.source.filename}: blob write failed: {error.message}")
                p.item.fail(error)
                # The write may have landed partially before failing.
                await self._discard_blobs([p.object_key])
            else:
                written.append(p)

        if not written:
            return []

        rows = [
            MediaItem(
                album_id=album_id,
                object_key=p.object_key,
                filename=p.source.filename,
                captured_at=p.captured_at,
                byte_size=len(p.source.data),
                media_kind=p.media_kind,
            )
            for p in written
        ]
        try:
            created = await self.catalog.insert_items(rows)
        except Exception as exc:
            error = _as_hearth_error(exc)
            logger.error(
                f"✗ Catalog insert failed for {len(written)} file(s): {error.message}; "
                "removing their blobs"
            )
            for p in written:
                p.item.fail(error)
            await self._discard_blobs([p.object_key for p in written])
            return []

        for p in written:
            p.item.advance(UploadStatus.DONE)
            logger.debug(f"✓ {p.source.filename} -> {p.object_key}")
        return created

    def _validate(self, source: SourceFile) -> None:
        if not source.filename or not source.filename.strip():
            raise ValidationError("Missing filename")
        if not source.data:
            raise ValidationError(f"{source.filename} is empty")
        if self.max_upload_bytes is not None and len(source.data) > self.max_upload_bytes:
            raise ValidationError(
                f"{source.filename} is too large. Max is {self.max_upload_bytes} bytes."
            )

    async def _write_blob(self, album_id: int, p: _Prepared) -> None:
        try:
            await with_timeout(
                self.blobs.put(
                    p.object_key,
                    p.source.data,
                    content_type=p.content_type,
                    metadata={"album_id": str(album_id), "filename": p.source.filename},
                ),
                self.blob_timeout,
                f"write {p.object_key}",
            )
        except BlobStoreError as exc:
            raise StorageUnavailable(str(exc)) from exc

    async def _discard_blobs(self, keys: List[str]) -> None:
        """Compensating delete; failures are logged since nothing else can be done here."""
        results = await asyncio.gather(
            *(with_timeout(self.blobs.delete(key), self.blob_timeout, f"delete {key}") for key in keys),
            return_exceptions=True,
        )
        for key, result in zip(keys, results):
            if isinstance(result, BaseException):
                logger.error(f"Could not remove orphaned blob {key}: {result}")


def _as_hearth_error(exc: BaseException) -> HearthError:
    if isinstance(exc, HearthError):
        return exc
    if isinstance(exc, BlobStoreError):
        return StorageUnavailable(str(exc))
    logger.exception("Unexpected ingestion error", exc_info=exc)
    return InternalError("Unexpected error while storing the file")
