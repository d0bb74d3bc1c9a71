"""Full-screen lightbox navigation over the loaded gallery items."""

from __future__ import annotations

import asyncio
from typing import Optional, Set

from server.logging_config import get_logger
from server.schemas import MediaItemOut

from .fetch import FetchCoordinator
from .state import GalleryState

logger = get_logger(__name__)

# Start loading the next page this many items before the end.
READ_AHEAD_MARGIN = 3

KEY_BINDINGS = {
    "ArrowLeft": "prev",
    "Left": "prev",
    "prev": "prev",
    "ArrowRight": "next",
    "Right": "next",
    "next": "next",
    "Escape": "close",
    "Esc": "close",
    "close": "close",
}


class LightboxNavigator:
    """Tracks the selected index; None means closed.

    The index always stays within the loaded items. When GalleryState is
    reset (album switch or refresh) the lightbox closes; when items are
    removed the index is pulled back to the last remaining item.

    Moving near the end of the loaded items schedules a read-ahead fetch on
    the running loop. The task is returned so callers can await it. Outside
    a running loop navigation still works but no read-ahead is scheduled;
    the scroll sentinel picks the next page up instead.
    """

    def __init__(self, state: GalleryState, fetcher: FetchCoordinator):
        self.state = state
        self.fetcher = fetcher
        self.selected_index: Optional[int] = None
        self._epoch = state.epoch
        self._tasks: Set[asyncio.Task] = set()

    @property
    def is_open(self) -> bool:
        self._sync()
        return self.selected_index is not None

    @property
    def current(self) -> Optional[MediaItemOut]:
        self._sync()
        if self.selected_index is None:
            return None
        return self.state.items[self.selected_index]

    def open(self, index: int) -> Optional[asyncio.Task]:
        if not 0 <= index < len(self.state):
            raise IndexError(f"No item at index {index} (have {len(self.state)})")
        self.selected_index = index
        self._epoch = self.state.epoch
        return self._maybe_read_ahead()

    def close(self) -> None:
        # Loaded items stay in GalleryState.
        self.selected_index = None

    def next(self) -> Optional[asyncio.Task]:
        self._sync()
        if self.selected_index is None:
            return None
        self.selected_index = min(self.selected_index + 1, len(self.state) - 1)
        return self._maybe_read_ahead()

    def prev(self) -> Optional[asyncio.Task]:
        self._sync()
        if self.selected_index is None:
            return None
        self.selected_index = max(self.selected_index - 1, 0)
        return self._maybe_read_ahead()

    def _sync(self) -> None:
        if self.selected_index is None:
            return
        if self.state.epoch != self._epoch or len(self.state) == 0:
            self.close()
            return
        self.selected_index = min(self.selected_index, len(self.state) - 1)

    def handle_key(self, key: str) -> Optional[asyncio.Task]:
        action = KEY_BINDINGS.get(key)
        if action == "close":
            self.close()
            return None
        if action == "next":
            return self.next()
        if action == "prev":
            return self.prev()
        return None

    def _maybe_read_ahead(self) -> Optional[asyncio.Task]:
        index = self.selected_index
        if index is None or not self.state.has_more:
            return None
        if index < len(self.state) - READ_AHEAD_MARGIN:
            return None
        if self.fetcher.in_flight:
            return None
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop; skipping lightbox read-ahead")
            return None
        task = loop.create_task(
            self.fetcher.request_page(self.state.next_offset)
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task
