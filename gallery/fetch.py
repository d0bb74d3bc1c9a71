"""Single-flight page fetching for GalleryState.

Three triggers feed `request_page`: the scroll sentinel, lightbox read-ahead
and album resets. At most one fetch runs at a time; a trigger that arrives
while one is in flight is dropped, not queued. The caller re-triggers once its
condition still holds.
"""

from __future__ import annotations

import asyncio
from typing import Optional

import httpx

from server.config import HearthConfig
from server.logging_config import get_logger

from .client import GalleryApiError, GalleryClient
from .state import GalleryState

logger = get_logger(__name__)


class FetchCoordinator:
    def __init__(
        self,
        state: GalleryState,
        client: GalleryClient,
        *,
        page_size: int = 20,
        timeout: float = 15.0,
    ):
        self.state = state
        self.client = client
        self.page_size = page_size
        self.timeout = timeout
        self._in_flight = False
        self._reset_pending = False

    @classmethod
    def from_config(
        cls, state: GalleryState, client: GalleryClient, config: HearthConfig
    ) -> "FetchCoordinator":
        return cls(
            state,
            client,
            page_size=config.gallery.page_size,
            timeout=config.timeouts.fetch_seconds,
        )

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    async def request_page(self, offset: Optional[int] = None) -> bool:
        """Fetch one page at `offset` (None for the first page).

        Returns True when a fetch was issued, False when it was dropped.
        Failures are logged and leave the state untouched.
        """
        if self._in_flight:
            logger.debug(f"Fetch already in flight; dropping request for offset {offset}")
            return False
        album_id = self.state.album_id
        if album_id is None:
            return False

        # No await between the check above and this assignment.
        self._in_flight = True
        epoch = self.state.epoch
        try:
            page = await asyncio.wait_for(
                self.client.list_images(album_id, offset=offset or 0, limit=self.page_size),
                timeout=self.timeout,
            )
        except (GalleryApiError, httpx.HTTPError, asyncio.TimeoutError) as exc:
            logger.warning(f"Fetching album {album_id} at offset {offset or 0} failed: {exc!r}")
        else:
            self.state.append(page, epoch)
        finally:
            self._in_flight = False

        if self._reset_pending:
            self._reset_pending = False
            await self.request_page(None)
        return True

    async def on_sentinel_visible(self) -> bool:
        if not self.state.has_more:
            return False
        return await self.request_page(self.state.next_offset)

    async def reset(self, album_id: Optional[int]) -> bool:
        """Switch album (or refresh the current one) and load its first page."""
        self.state.reset(album_id)
        if self._in_flight:
            # The stale fetch will be discarded; load the first page right after it.
            self._reset_pending = True
            return False
        return await self.request_page(None)

    async def refresh(self) -> bool:
        return await self.reset(self.state.album_id)
