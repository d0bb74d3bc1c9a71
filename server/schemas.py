"""Wire schemas for the Hearth HTTP API.

Field names are snake_case in Python and camelCase on the wire.
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class MediaItemOut(CamelModel):
    id: int
    album_id: int
    object_key: str
    filename: str
    captured_at: Optional[datetime] = None
    byte_size: int
    media_kind: str = "image"
    created_at: datetime


class AlbumOut(CamelModel):
    id: int
    name: str
    created_at: datetime
    image_count: int = 0
    cover_key: Optional[str] = None


class AlbumCreate(BaseModel):
    name: str = ""


class GalleryPage(CamelModel):
    data: List[MediaItemOut]
    next_offset: Optional[int] = None
    has_more: bool = False


class UploadMetadata(CamelModel):
    """One entry of the `metadata` multipart part, aligned by index with `files`."""

    model_config = ConfigDict(extra="ignore")

    filename: Optional[str] = None
    taken_at: Optional[str] = None


class UploadFailure(CamelModel):
    index: int
    filename: str
    code: int
    message: str


class UploadReportOut(CamelModel):
    code: int
    message: str
    succeeded: int
    failed: int
    data: List[MediaItemOut] = []
    errors: List[UploadFailure] = []


class Toast(BaseModel):
    code: int
    message: str
