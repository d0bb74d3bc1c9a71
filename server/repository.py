"""Data Access Layer for Hearth.

Encapsulates catalog operations using SQLModel/SQLAlchemy. Callers own the
session and decide when to commit.
"""

from __future__ import annotations

from typing import List, NamedTuple, Optional, Set

from sqlmodel import Session, col, func, select

from .models import Album, MediaItem


class AlbumSummary(NamedTuple):
    album: Album
    image_count: int
    cover_key: Optional[str]


def gallery_order() -> tuple:
    """ORDER BY clauses for the gallery: captured_at DESC (nulls last), then id DESC.

    This is the pagination contract; offsets are only meaningful against it.
    """
    return (
        col(MediaItem.captured_at).is_(None),
        col(MediaItem.captured_at).desc(),
        col(MediaItem.id).desc(),
    )


class Repository:
    """Catalog access for albums and media items."""

    def __init__(self, session: Session):
        self.session = session

    def commit(self) -> None:
        """Commit the current transaction. Callers control when to commit."""
        self.session.commit()

    # --- Albums ---

    def create_album(self, name: str) -> Album:
        album = Album(name=name)
        self.session.add(album)
        self.session.flush()
        self.session.refresh(album)
        return album

    def get_album(self, album_id: int) -> Optional[Album]:
        return self.session.get(Album, album_id)

    def count_items(self, album_id: int) -> int:
        statement = (
            select(func.count())
            .select_from(MediaItem)
            .where(MediaItem.album_id == album_id)
        )
        return self.session.exec(statement).one()

    def cover_key(self, album_id: int) -> Optional[str]:
        """Object key of the first item in gallery order, or None for an empty album."""
        statement = (
            select(MediaItem.object_key)
            .where(MediaItem.album_id == album_id)
            .order_by(*gallery_order())
            .limit(1)
        )
        return self.session.exec(statement).first()

    def summarize(self, album: Album) -> AlbumSummary:
        return AlbumSummary(
            album=album,
            image_count=self.count_items(album.id),
            cover_key=self.cover_key(album.id),
        )

    def get_album_summary(self, album_id: int) -> Optional[AlbumSummary]:
        album = self.get_album(album_id)
        if album is None:
            return None
        return self.summarize(album)

    def list_album_summaries(self) -> List[AlbumSummary]:
        """All albums, newest first, with derived image count and cover."""
        statement = select(Album).order_by(
            col(Album.created_at).desc(), col(Album.id).desc()
        )
        return [self.summarize(album) for album in self.session.exec(statement).all()]

    def delete_album(self, album: Album) -> None:
        self.session.delete(album)
        self.session.flush()

    # --- Media items ---

    def list_items(self, album_id: int, *, offset: int, limit: int) -> List[MediaItem]:
        """Up to `limit` items of an album starting at `offset` in gallery order."""
        statement = (
            select(MediaItem)
            .where(MediaItem.album_id == album_id)
            .order_by(*gallery_order())
            .offset(offset)
            .limit(limit)
        )
        return list(self.session.exec(statement).all())

    def insert_items(self, items: List[MediaItem]) -> List[MediaItem]:
        """Insert several rows in the current transaction and return them with ids."""
        self.session.add_all(items)
        self.session.flush()
        for item in items:
            self.session.refresh(item)
        return items

    def get_item(self, album_id: int, item_id: int) -> Optional[MediaItem]:
        statement = select(MediaItem).where(
            MediaItem.id == item_id, MediaItem.album_id == album_id
        )
        return self.session.exec(statement).first()

    def delete_item(self, item_id: int) -> bool:
        item = self.session.get(MediaItem, item_id)
        if item is None:
            return False
        self.session.delete(item)
        self.session.flush()
        return True

    # --- Read methods (used by cleanup/stats) ---

    def get_object_keys(self) -> Set[str]:
        """Return the set of object keys referenced by the catalog."""
        return set(self.session.exec(select(MediaItem.object_key)).all())

    def totals(self) -> tuple[int, int, int]:
        """Return (album_count, item_count, total_bytes)."""
        albums = self.session.exec(select(func.count()).select_from(Album)).one()
        items = self.session.exec(select(func.count()).select_from(MediaItem)).one()
        size = self.session.exec(select(func.coalesce(func.sum(MediaItem.byte_size), 0))).one()
        return albums, items, int(size)
