"""Image and album deletion.

Images are removed blob first, then row. If the row delete fails afterwards
the result is a dangling row pointing at nothing, which the next read
surfaces as a broken reference. The reverse order could leak a blob that no
row refers to.
"""

from __future__ import annotations

from .blobstore import BlobStore, BlobStoreError
from .catalog import Catalog
from .errors import Conflict, NotFound, StorageUnavailable
from .logging_config import get_logger
from .utils import with_timeout

logger = get_logger(__name__)


class DeletionCoordinator:
    def __init__(self, catalog: Catalog, blobs: BlobStore, *, blob_timeout: float = 30.0):
        self.catalog = catalog
        self.blobs = blobs
        self.blob_timeout = blob_timeout

    async def delete_image(self, album_id: int, image_id: int) -> None:
        item = await self.catalog.get_item(album_id, image_id)
        if item is None:
            raise NotFound("Image not found")

        try:
            await with_timeout(
                self.blobs.delete(item.object_key),
                self.blob_timeout,
                f"delete {item.object_key}",
            )
        except BlobStoreError as exc:
            logger.error(f"✗ Blob delete failed for image {image_id}: {exc}")
            raise StorageUnavailable("Could not delete the stored file") from exc

        if not await self.catalog.delete_item(image_id):
            # Someone else removed the row between our read and delete.
            raise NotFound("Image not found")
        logger.info(f"Deleted image {image_id} ({item.object_key}) from album {album_id}")

    async def delete_album(self, album_id: int) -> None:
        count = await self.catalog.delete_album_if_empty(album_id)
        if count is None:
            raise NotFound("Album not found")
        if count > 0:
            raise Conflict(f"Album still contains {count} image(s); delete them first")
        logger.info(f"Deleted album {album_id}")
