"""Async catalog facade for Hearth.

Each call opens its own SQLModel session in a worker thread, commits on
success, and returns detached schema objects. SQLAlchemy failures and
timeouts surface as StorageUnavailable.

A call that misses its deadline is not left to commit behind the caller's
back: the worker checks a per-call gate before committing and rolls back
once the caller has given up. If the commit already went through, the
result is returned even though the deadline passed.
"""

from __future__ import annotations

import asyncio
import threading
from typing import Callable, List, Optional, Set, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from .database import get_engine
from .errors import StorageUnavailable
from .logging_config import get_logger
from .models import MediaItem
from .repository import AlbumSummary, Repository
from .schemas import AlbumOut, GalleryPage, MediaItemOut
from .utils import with_timeout

logger = get_logger(__name__)

T = TypeVar("T")


def _album_out(summary: AlbumSummary) -> AlbumOut:
    album = summary.album
    return AlbumOut(
        id=album.id,
        name=album.name,
        created_at=album.created_at,
        image_count=summary.image_count,
        cover_key=summary.cover_key,
    )


def build_page(rows: List[MediaItem], *, offset: int, limit: int) -> GalleryPage:
    """Turn a `limit + 1` probe into a page.

    The extra row only signals that more exist; it is never returned.
    """
    has_more = len(rows) > limit
    data = rows[:limit]
    return GalleryPage(
        data=[MediaItemOut.model_validate(row) for row in data],
        next_offset=offset + limit if has_more else None,
        has_more=has_more,
    )


class CallAbandoned(Exception):
    """Raised in the worker when the caller gave up before the commit."""


class _CommitGate:
    """Decides, exactly once, whether a catalog call commits or rolls back."""

    def __init__(self):
        self._lock = threading.Lock()
        self.abandoned = False
        self.committed = False

    def commit(self, repo: Repository) -> None:
        with self._lock:
            if self.abandoned:
                repo.session.rollback()
                raise CallAbandoned()
            repo.commit()
            self.committed = True

    def abandon(self) -> bool:
        """Stop any later commit. Returns True if the commit already happened."""
        with self._lock:
            if not self.committed:
                self.abandoned = True
            return self.committed


def _settle(task: asyncio.Future) -> None:
    # Retrieve the late outcome so asyncio does not report it as unhandled.
    if not task.cancelled():
        task.exception()


class Catalog:
    def __init__(self, engine=None, timeout: float = 10.0):
        self._engine = engine
        self.timeout = timeout

    @property
    def engine(self):
        return self._engine if self._engine is not None else get_engine()

    def _run_sync(self, fn: Callable[[Repository], T], gate: _CommitGate) -> T:
        with Session(self.engine, expire_on_commit=False) as session:
            repo = Repository(session)
            result = fn(repo)
            gate.commit(repo)
            return result

    async def _run(self, what: str, fn: Callable[[Repository], T]) -> T:
        gate = _CommitGate()
        task = asyncio.ensure_future(asyncio.to_thread(self._run_sync, fn, gate))
        try:
            try:
                return await with_timeout(asyncio.shield(task), self.timeout, f"catalog {what}")
            except StorageUnavailable:
                # The gate lock may be held by an in-progress commit.
                if not await asyncio.to_thread(gate.abandon):
                    task.add_done_callback(_settle)
                    raise
                logger.warning(f"Catalog {what} committed after its deadline; keeping the result")
                return await task
        except SQLAlchemyError as exc:
            logger.error(f"Catalog error during {what}: {exc}")
            raise StorageUnavailable(f"Catalog unavailable ({what})") from exc

    # --- Albums ---

    async def create_album(self, name: str) -> AlbumOut:
        def op(repo: Repository) -> AlbumOut:
            album = repo.create_album(name)
            return _album_out(AlbumSummary(album, 0, None))

        return await self._run("create album", op)

    async def list_albums(self) -> List[AlbumOut]:
        def op(repo: Repository) -> List[AlbumOut]:
            return [_album_out(s) for s in repo.list_album_summaries()]

        return await self._run("list albums", op)

    async def get_album(self, album_id: int) -> Optional[AlbumOut]:
        def op(repo: Repository) -> Optional[AlbumOut]:
            summary = repo.get_album_summary(album_id)
            return _album_out(summary) if summary else None

        return await self._run("get album", op)

    async def delete_album_if_empty(self, album_id: int) -> Optional[int]:
        """Delete the album only when it holds no items, in one transaction.

        Returns None when the album does not exist, otherwise the item count
        observed (0 means the album row was deleted).
        """
        def op(repo: Repository) -> Optional[int]:
            album = repo.get_album(album_id)
            if album is None:
                return None
            count = repo.count_items(album_id)
            if count == 0:
                repo.delete_album(album)
            return count

        return await self._run("delete album", op)

    # --- Media items ---

    async def count_items(self, album_id: int) -> int:
        return await self._run("count items", lambda repo: repo.count_items(album_id))

    async def list_page(self, album_id: int, *, offset: int, limit: int) -> GalleryPage:
        def op(repo: Repository) -> GalleryPage:
            rows = repo.list_items(album_id, offset=offset, limit=limit + 1)
            return build_page(rows, offset=offset, limit=limit)

        return await self._run("list page", op)

    async def insert_items(self, items: List[MediaItem]) -> List[MediaItemOut]:
        """Multi-row insert: either every row is committed or none is."""
        def op(repo: Repository) -> List[MediaItemOut]:
            return [MediaItemOut.model_validate(row) for row in repo.insert_items(items)]

        return await self._run("insert items", op)

    async def get_item(self, album_id: int, item_id: int) -> Optional[MediaItemOut]:
        def op(repo: Repository) -> Optional[MediaItemOut]:
            item = repo.get_item(album_id, item_id)
            return MediaItemOut.model_validate(item) if item else None

        return await self._run("get item", op)

    async def delete_item(self, item_id: int) -> bool:
        return await self._run("delete item", lambda repo: repo.delete_item(item_id))

    async def object_keys(self) -> Set[str]:
        return await self._run("list object keys", lambda repo: repo.get_object_keys())

    async def totals(self) -> tuple[int, int, int]:
        return await self._run("totals", lambda repo: repo.totals())
