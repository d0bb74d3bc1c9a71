"""Tests for the upload pipeline: per-item status, batching and cleanup on failure."""

import asyncio
import time
from datetime import datetime

import pytest

from server.blobstore import BlobStoreError
from server.catalog import Catalog
from server.errors import NotFound, StorageUnavailable
from server.ingest import (
    InvalidTransition,
    SourceFile,
    UploadPipeline,
    UploadQueueItem,
    UploadStatus,
)
from server.repository import Repository


class FlakyBlobStore:
    """Wraps a real store; writes for filenames in `fail_on` raise BlobStoreError."""

    def __init__(self, inner, fail_on=()):
        self.inner = inner
        self.fail_on = set(fail_on)
        self.put_keys = []

    async def put(self, key, data, *, content_type, metadata=None):
        self.put_keys.append(key)
        if metadata and metadata.get("filename") in self.fail_on:
            raise BlobStoreError(f"simulated failure for {key}")
        await self.inner.put(key, data, content_type=content_type, metadata=metadata)

    async def get(self, key):
        return await self.inner.get(key)

    async def delete(self, key):
        await self.inner.delete(key)

    async def list_keys(self, prefix=""):
        return await self.inner.list_keys(prefix)


class CountingCatalog:
    """Delegates to the real catalog and records (or fails) multi-row inserts."""

    def __init__(self, inner, fail_inserts=False):
        self.inner = inner
        self.fail_inserts = fail_inserts
        self.insert_calls = []

    async def get_album(self, album_id):
        return await self.inner.get_album(album_id)

    async def insert_items(self, items):
        self.insert_calls.append([item.filename for item in items])
        if self.fail_inserts:
            raise StorageUnavailable("Catalog unavailable (insert items)")
        return await self.inner.insert_items(items)


def _files(*names, data=b"\xff\xd8fake-jpeg-bytes"):
    return [SourceFile(filename=name, data=data) for name in names]


def test_all_files_succeed(catalog, blobs):
    album = asyncio.run(catalog.create_album("Trip"))
    pipeline = UploadPipeline(catalog, blobs, batch_size=5)

    report = asyncio.run(pipeline.run(album.id, _files("a.jpg", "b.png", "c.mp4")))

    assert [i.status for i in report.items] == [UploadStatus.DONE] * 3
    assert (report.succeeded, report.failed) == (3, 0)
    assert report.complete
    assert [item.media_kind for item in report.created] == ["image", "image", "video"]
    assert asyncio.run(catalog.count_items(album.id)) == 3
    stored = asyncio.run(blobs.list_keys())
    assert sorted(stored) == sorted(item.object_key for item in report.created)
    for item in report.created:
        assert item.object_key.startswith(f"albums/{album.id}/")


def test_blob_failure_marks_only_that_item(catalog, blobs):
    album = asyncio.run(catalog.create_album("Flaky"))
    store = FlakyBlobStore(blobs, fail_on={"b.jpg"})
    pipeline = UploadPipeline(catalog, store, batch_size=5)

    report = asyncio.run(pipeline.run(album.id, _files("a.jpg", "b.jpg", "c.jpg", "d.jpg")))

    statuses = [i.status for i in report.items]
    assert statuses == [UploadStatus.DONE, UploadStatus.ERROR, UploadStatus.DONE, UploadStatus.DONE]
    assert isinstance(report.items[1].error, StorageUnavailable)
    assert (report.succeeded, report.failed) == (3, 1)
    assert sorted(i.filename for i in report.created) == ["a.jpg", "c.jpg", "d.jpg"]

    failed_key = store.put_keys[1]
    assert failed_key not in asyncio.run(catalog.object_keys())
    assert failed_key not in asyncio.run(blobs.list_keys())


def test_failed_insert_marks_batch_and_removes_blobs(catalog, blobs):
    album = asyncio.run(catalog.create_album("No catalog"))
    failing = CountingCatalog(catalog, fail_inserts=True)
    pipeline = UploadPipeline(failing, blobs, batch_size=5)

    report = asyncio.run(pipeline.run(album.id, _files("a.jpg", "b.jpg")))

    assert [i.status for i in report.items] == [UploadStatus.ERROR, UploadStatus.ERROR]
    assert all(isinstance(i.error, StorageUnavailable) for i in report.items)
    assert report.created == []
    assert asyncio.run(blobs.list_keys()) == []
    assert asyncio.run(catalog.count_items(album.id)) == 0


def test_slow_insert_past_deadline_leaves_no_row(catalog, blobs, monkeypatch):
    album = asyncio.run(catalog.create_album("Slow disk"))
    original = Repository.insert_items

    def slow_insert(self, items):
        inserted = original(self, items)
        time.sleep(0.5)
        return inserted

    monkeypatch.setattr(Repository, "insert_items", slow_insert)
    pipeline = UploadPipeline(Catalog(timeout=0.1), blobs, batch_size=5)

    # asyncio.run waits for the worker thread before returning.
    report = asyncio.run(pipeline.run(album.id, _files("late.jpg")))

    assert report.items[0].status == UploadStatus.ERROR
    assert isinstance(report.items[0].error, StorageUnavailable)
    assert asyncio.run(catalog.object_keys()) == set()
    assert asyncio.run(blobs.list_keys()) == []


def test_batches_run_in_order_with_one_insert_each(catalog, blobs):
    album = asyncio.run(catalog.create_album("Batches"))
    counting = CountingCatalog(catalog)
    pipeline = UploadPipeline(counting, blobs, batch_size=2)

    report = asyncio.run(pipeline.run(album.id, _files("1.jpg", "2.jpg", "3.jpg", "4.jpg", "5.jpg")))

    assert counting.insert_calls == [["1.jpg", "2.jpg"], ["3.jpg", "4.jpg"], ["5.jpg"]]
    assert report.succeeded == 5


def test_insert_failure_in_one_batch_does_not_affect_the_next(catalog, blobs):
    album = asyncio.run(catalog.create_album("Partial"))

    class FailFirstInsert(CountingCatalog):
        async def insert_items(self, items):
            self.fail_inserts = not self.insert_calls
            return await super().insert_items(items)

    pipeline = UploadPipeline(FailFirstInsert(catalog), blobs, batch_size=2)

    report = asyncio.run(pipeline.run(album.id, _files("1.jpg", "2.jpg", "3.jpg")))

    assert [i.status for i in report.items] == [
        UploadStatus.ERROR,
        UploadStatus.ERROR,
        UploadStatus.DONE,
    ]
    assert asyncio.run(blobs.list_keys()) == [report.created[0].object_key]


def test_empty_and_oversized_files_fail_validation(catalog, blobs):
    album = asyncio.run(catalog.create_album("Sizes"))
    pipeline = UploadPipeline(catalog, blobs, batch_size=5, max_upload_bytes=10)
    files = [
        SourceFile(filename="empty.jpg", data=b""),
        SourceFile(filename="big.jpg", data=b"x" * 11),
        SourceFile(filename="ok.jpg", data=b"x" * 10),
    ]

    report = asyncio.run(pipeline.run(album.id, files))

    assert [i.status for i in report.items] == [
        UploadStatus.ERROR,
        UploadStatus.ERROR,
        UploadStatus.DONE,
    ]
    assert [i.error.code for i in report.items[:2]] == [400, 400]


def test_missing_album_raises_not_found(catalog, blobs):
    pipeline = UploadPipeline(catalog, blobs)

    with pytest.raises(NotFound):
        asyncio.run(pipeline.run(4242, _files("a.jpg")))

    assert asyncio.run(blobs.list_keys()) == []


def test_capture_time_from_exif_and_hint(catalog, blobs, make_jpeg):
    album = asyncio.run(catalog.create_album("Dates"))
    pipeline = UploadPipeline(catalog, blobs)
    hinted = datetime(2001, 2, 3, 4, 5, 6)
    files = [
        SourceFile(filename="exif.jpg", data=make_jpeg(datetime(2015, 8, 9, 10, 11, 12))),
        SourceFile(filename="hint.jpg", data=make_jpeg(datetime(2015, 8, 9)), taken_at=hinted),
        SourceFile(filename="plain.jpg", data=make_jpeg()),
    ]

    report = asyncio.run(pipeline.run(album.id, files))

    by_name = {item.filename: item for item in report.created}
    assert by_name["exif.jpg"].captured_at == datetime(2015, 8, 9, 10, 11, 12)
    assert by_name["hint.jpg"].captured_at == hinted
    assert by_name["plain.jpg"].captured_at is None


def test_status_transitions_are_enforced():
    item = UploadQueueItem(filename="a.jpg")

    with pytest.raises(InvalidTransition):
        item.advance(UploadStatus.DONE)

    item.advance(UploadStatus.UPLOADING)
    item.advance(UploadStatus.DONE)
    assert item.is_terminal

    with pytest.raises(InvalidTransition):
        item.advance(UploadStatus.UPLOADING)
    with pytest.raises(InvalidTransition):
        item.advance(UploadStatus.ERROR)
