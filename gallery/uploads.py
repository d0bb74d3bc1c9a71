"""Client-side upload queue.

Collects local files, reads their capture time, sends them in one multipart
request and maps the server's per-index results back onto queue items.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Awaitable, Callable, Iterable, List, Optional

import httpx

from server.errors import StorageUnavailable, error_for_code
from server.ingest import UploadQueueItem, UploadReport, UploadStatus
from server.logging_config import get_logger
from server.metadata import extract_captured_at

from .client import GalleryApiError, GalleryClient

logger = get_logger(__name__)

OnUploaded = Callable[[int], Awaitable[object]]


@dataclass
class _Queued:
    item: UploadQueueItem
    data: bytes


class UploadQueue:
    def __init__(self, client: GalleryClient, *, on_uploaded: Optional[OnUploaded] = None):
        self.client = client
        self.on_uploaded = on_uploaded
        self._queue: List[_Queued] = []

    @property
    def items(self) -> List[UploadQueueItem]:
        return [q.item for q in self._queue]

    def add(self, filename: str, data: bytes) -> UploadQueueItem:
        item = UploadQueueItem(filename=filename)
        self._queue.append(_Queued(item=item, data=data))
        return item

    def add_paths(self, paths: Iterable[Path]) -> List[UploadQueueItem]:
        return [self.add(Path(p).name, Path(p).read_bytes()) for p in paths]

    def clear_finished(self) -> None:
        self._queue = [q for q in self._queue if not q.item.is_terminal]

    async def submit(self, album_id: int) -> UploadReport:
        """Upload every pending item to `album_id` and report the outcome.

        All submitted items end in `done` or `error`.
        """
        batch = [q for q in self._queue if q.item.status is UploadStatus.PENDING]
        report = UploadReport(items=[q.item for q in batch])
        if not batch:
            return report

        for q in batch:
            q.item.advance(UploadStatus.UPLOADING)
        taken: List[Optional[datetime]] = await asyncio.gather(
            *(asyncio.to_thread(extract_captured_at, q.data) for q in batch)
        )

        try:
            result = await self.client.upload_images(
                album_id,
                [(q.item.filename, q.data, taken_at) for q, taken_at in zip(batch, taken)],
            )
        except GalleryApiError as exc:
            error = error_for_code(exc.code, exc.message)
            for q in batch:
                q.item.fail(error)
            logger.error(f"Upload to album {album_id} failed: {exc.message}")
            return report
        except httpx.HTTPError as exc:
            error = StorageUnavailable(f"Upload request failed: {exc}")
            for q in batch:
                q.item.fail(error)
            logger.error(f"Upload to album {album_id} failed: {exc!r}")
            return report

        failed = {f.index: f for f in result.errors}
        for index, q in enumerate(batch):
            failure = failed.get(index)
            if failure is None:
                q.item.advance(UploadStatus.DONE)
            else:
                q.item.fail(error_for_code(failure.code, failure.message))
        report.created.extend(result.data)

        logger.info(f"Album {album_id}: {report.succeeded} uploaded, {report.failed} failed")
        if report.succeeded and self.on_uploaded is not None:
            await self.on_uploaded(album_id)
        return report
