"""Client-side deletion: calls the API and keeps GalleryState in step."""

from __future__ import annotations

from typing import Optional

from server.errors import Conflict
from server.logging_config import get_logger

from .client import GalleryApiError, GalleryClient
from .state import GalleryState

logger = get_logger(__name__)


class GalleryDeleter:
    def __init__(self, client: GalleryClient, state: GalleryState):
        self.client = client
        self.state = state

    async def delete_image(self, album_id: int, image_id: int) -> bool:
        """Delete one image. Returns False when the server no longer had it.

        Either way the item is dropped from the loaded gallery.
        """
        try:
            await self.client.delete_image(album_id, image_id)
        except GalleryApiError as exc:
            if exc.code != 404:
                raise
            logger.info(f"Image {image_id} was already gone")
            self._forget(album_id, image_id)
            return False
        self._forget(album_id, image_id)
        return True

    async def delete_album(self, album_id: int, image_count: Optional[int] = None) -> None:
        """Delete an empty album. Raises Conflict without a request when it visibly has items."""
        if self.state.album_id == album_id and len(self.state):
            raise Conflict("Album still contains images; delete them first")
        if image_count:
            raise Conflict(f"Album still contains {image_count} image(s); delete them first")
        await self.client.delete_album(album_id)
        if self.state.album_id == album_id:
            self.state.reset(None)

    def _forget(self, album_id: int, image_id: int) -> None:
        if self.state.album_id == album_id:
            self.state.remove_item(image_id)
