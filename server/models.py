"""SQLModel database models for Hearth."""

from datetime import datetime, timezone
from typing import Optional

from sqlmodel import Field, SQLModel


class AlbumBase(SQLModel):
    name: str


class Album(AlbumBase, table=True):
    __tablename__ = "albums"
    id: Optional[int] = Field(default=None, primary_key=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class MediaItemBase(SQLModel):
    album_id: int = Field(foreign_key="albums.id", index=True)
    object_key: str = Field(unique=True, index=True)
    filename: str
    captured_at: Optional[datetime] = Field(default=None, index=True)
    byte_size: int
    media_kind: str = "image"  # image | video | file


class MediaItem(MediaItemBase, table=True):
    __tablename__ = "media_items"
    id: Optional[int] = Field(default=None, primary_key=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
