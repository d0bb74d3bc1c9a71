"""Tests for image and album deletion ordering and guards."""

import asyncio

import pytest

from server.blobstore import BlobStoreError
from server.deletion import DeletionCoordinator
from server.errors import Conflict, NotFound, StorageUnavailable
from server.ingest import SourceFile, UploadPipeline


class BrokenDeleteStore:
    def __init__(self, inner):
        self.inner = inner

    async def delete(self, key):
        raise BlobStoreError("bucket unreachable")

    def __getattr__(self, name):
        return getattr(self.inner, name)


def _upload(catalog, blobs, album_id, count):
    files = [SourceFile(filename=f"{i}.jpg", data=b"bytes-%d" % i) for i in range(count)]
    report = asyncio.run(UploadPipeline(catalog, blobs).run(album_id, files))
    return report.created


def test_delete_image_removes_blob_then_row(catalog, blobs):
    album = asyncio.run(catalog.create_album("Delete"))
    item = _upload(catalog, blobs, album.id, 1)[0]

    asyncio.run(DeletionCoordinator(catalog, blobs).delete_image(album.id, item.id))

    assert asyncio.run(blobs.get(item.object_key)) is None
    assert asyncio.run(catalog.get_item(album.id, item.id)) is None


def test_delete_image_with_missing_blob_still_removes_row(catalog, blobs):
    album = asyncio.run(catalog.create_album("Already gone"))
    item = _upload(catalog, blobs, album.id, 1)[0]
    asyncio.run(blobs.delete(item.object_key))

    asyncio.run(DeletionCoordinator(catalog, blobs).delete_image(album.id, item.id))

    assert asyncio.run(catalog.get_item(album.id, item.id)) is None


def test_blob_failure_keeps_the_row(catalog, blobs):
    album = asyncio.run(catalog.create_album("Unreachable"))
    item = _upload(catalog, blobs, album.id, 1)[0]
    coordinator = DeletionCoordinator(catalog, BrokenDeleteStore(blobs))

    with pytest.raises(StorageUnavailable):
        asyncio.run(coordinator.delete_image(album.id, item.id))

    assert asyncio.run(catalog.get_item(album.id, item.id)) is not None
    assert asyncio.run(blobs.get(item.object_key)) is not None


def test_delete_image_not_found(catalog, blobs):
    album = asyncio.run(catalog.create_album("Lonely"))
    other = asyncio.run(catalog.create_album("Other"))
    item = _upload(catalog, blobs, album.id, 1)[0]
    coordinator = DeletionCoordinator(catalog, blobs)

    with pytest.raises(NotFound):
        asyncio.run(coordinator.delete_image(album.id, item.id + 100))
    # The image exists, but not in that album.
    with pytest.raises(NotFound):
        asyncio.run(coordinator.delete_image(other.id, item.id))

    assert asyncio.run(blobs.get(item.object_key)) is not None


def test_album_with_images_is_not_deleted(catalog, blobs):
    album = asyncio.run(catalog.create_album("Busy"))
    _upload(catalog, blobs, album.id, 3)

    with pytest.raises(Conflict):
        asyncio.run(DeletionCoordinator(catalog, blobs).delete_album(album.id))

    summary = asyncio.run(catalog.get_album(album.id))
    assert summary is not None
    assert summary.image_count == 3


def test_empty_album_is_deleted(catalog, blobs):
    album = asyncio.run(catalog.create_album("Empty"))

    asyncio.run(DeletionCoordinator(catalog, blobs).delete_album(album.id))

    assert asyncio.run(catalog.get_album(album.id)) is None


def test_delete_missing_album(catalog, blobs):
    with pytest.raises(NotFound):
        asyncio.run(DeletionCoordinator(catalog, blobs).delete_album(12345))
