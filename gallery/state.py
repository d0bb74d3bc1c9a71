"""Client-side gallery state: the loaded items of one album plus paging cursors."""

from __future__ import annotations

from typing import List, Optional

from server.logging_config import get_logger
from server.schemas import GalleryPage, MediaItemOut

logger = get_logger(__name__)


class GalleryState:
    """Ordered items of the current album.

    `epoch` increases on every reset. A page is only applied when it was
    requested under the current epoch, so a slow response for a previous
    album can never land in the new one.
    """

    def __init__(self):
        self.album_id: Optional[int] = None
        self.items: List[MediaItemOut] = []
        self.next_offset: Optional[int] = None
        self.has_more = False
        self.epoch = 0

    def __len__(self) -> int:
        return len(self.items)

    def reset(self, album_id: Optional[int]) -> int:
        self.album_id = album_id
        self.items = []
        self.next_offset = None
        self.has_more = True
        self.epoch += 1
        return self.epoch

    def refresh(self) -> int:
        return self.reset(self.album_id)

    def append(self, page: GalleryPage, epoch: int) -> bool:
        """Apply `page` if it belongs to the current epoch. Returns False when discarded."""
        if epoch != self.epoch:
            logger.debug(f"Discarding stale page (epoch {epoch}, current {self.epoch})")
            return False
        known = {item.id for item in self.items}
        self.items.extend(item for item in page.data if item.id not in known)
        self.next_offset = page.next_offset
        self.has_more = page.has_more
        return True

    def index_of(self, item_id: int) -> Optional[int]:
        for index, item in enumerate(self.items):
            if item.id == item_id:
                return index
        return None

    def remove_item(self, item_id: int) -> bool:
        index = self.index_of(item_id)
        if index is None:
            return False
        del self.items[index]
        # Rows after the deleted one moved up by one on the server.
        if self.next_offset is not None:
            self.next_offset = max(0, self.next_offset - 1)
        return True
