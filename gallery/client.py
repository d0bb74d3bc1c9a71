"""HTTP client for the Hearth gallery API.

Used endpoints (all under /api/v1):
- GET/POST    /albums, GET/DELETE /albums/{id}
- GET         /albums/{id}/images?limit&offset  -> {data, nextOffset, hasMore}
- POST        /albums/{id}/images               (multipart files + metadata)
- DELETE      /albums/{id}/images/{imageId}
- GET         /images/{objectKey}
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, List, Optional, Sequence

import httpx

from server.config import HearthConfig
from server.schemas import AlbumOut, GalleryPage, MediaItemOut, UploadReportOut

API_PREFIX = "/api/v1"


class GalleryApiError(RuntimeError):
    """A non-2xx response; `code` and `message` come from the `{code, message}` body."""

    def __init__(self, code: int, message: str, body: Optional[dict] = None):
        super().__init__(f"{code}: {message}")
        self.code = code
        self.message = message
        self.body = body or {}


def _normalize_base_url(base_url: str) -> str:
    base_url = (base_url or "").strip()
    if not base_url:
        raise ValueError("Gallery base URL is empty.")
    return base_url.rstrip("/")


def _api_error(resp: httpx.Response) -> GalleryApiError:
    try:
        body = resp.json()
    except ValueError:
        body = None
    if not isinstance(body, dict):
        # Avoid dumping huge bodies; include a small snippet.
        return GalleryApiError(resp.status_code, resp.text[:500] or resp.reason_phrase)
    code = body.get("code")
    if not isinstance(code, int):
        code = resp.status_code
    message = body.get("message") or resp.reason_phrase
    return GalleryApiError(code, str(message), body)


class GalleryClient:
    """Thin async wrapper over httpx.AsyncClient. Use as an async context manager."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._client = httpx.AsyncClient(
            base_url=_normalize_base_url(base_url) + API_PREFIX,
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_config(
        cls,
        config: HearthConfig,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "GalleryClient":
        """Client for `[server] base_url`, with `[timeouts] fetch_seconds` per request."""
        return cls(
            config.server.base_url,
            timeout=config.timeouts.fetch_seconds,
            transport=transport,
        )

    async def __aenter__(self) -> "GalleryClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        resp = await self._client.request(method, path, **kwargs)
        if resp.is_error:
            raise _api_error(resp)
        return resp

    # --- Albums ---

    async def list_albums(self) -> List[AlbumOut]:
        resp = await self._request("GET", "/albums")
        return [AlbumOut.model_validate(a) for a in resp.json()]

    async def create_album(self, name: str) -> AlbumOut:
        resp = await self._request("POST", "/albums", json={"name": name})
        return AlbumOut.model_validate(resp.json())

    async def get_album(self, album_id: int) -> AlbumOut:
        resp = await self._request("GET", f"/albums/{album_id}")
        return AlbumOut.model_validate(resp.json())

    async def delete_album(self, album_id: int) -> dict:
        resp = await self._request("DELETE", f"/albums/{album_id}")
        return resp.json()

    # --- Images ---

    async def list_images(
        self, album_id: int, *, offset: int = 0, limit: Optional[int] = None
    ) -> GalleryPage:
        params = {"offset": offset}
        if limit is not None:
            params["limit"] = limit
        resp = await self._request("GET", f"/albums/{album_id}/images", params=params)
        return GalleryPage.model_validate(resp.json())

    async def upload_images(
        self,
        album_id: int,
        files: Sequence[tuple[str, bytes, Optional[datetime]]],
    ) -> UploadReportOut:
        """Post (filename, data, taken_at) triples in one multipart request.

        Partial failures come back as a report, not an exception. Errors that
        concern the whole request (missing album, bad form) raise GalleryApiError.
        """
        metadata = [
            {"filename": name, "takenAt": taken_at.isoformat() if taken_at else None}
            for name, _, taken_at in files
        ]
        multipart = [("files", (name, data)) for name, data, _ in files]
        resp = await self._client.post(
            f"/albums/{album_id}/images",
            files=multipart,
            data={"metadata": json.dumps(metadata)},
        )
        if resp.status_code == 201:
            created = [MediaItemOut.model_validate(item) for item in resp.json()]
            return UploadReportOut(
                code=201,
                message=f"Uploaded {len(created)} file(s)",
                succeeded=len(created),
                failed=0,
                data=created,
            )
        if resp.is_error:
            error = _api_error(resp)
            if "errors" in error.body and "succeeded" in error.body:
                return UploadReportOut.model_validate(error.body)
            raise error
        raise GalleryApiError(resp.status_code, f"Unexpected upload response {resp.status_code}")

    async def delete_image(self, album_id: int, image_id: int) -> dict:
        resp = await self._request("DELETE", f"/albums/{album_id}/images/{image_id}")
        return resp.json()

    async def get_image(self, object_key: str) -> bytes:
        resp = await self._request("GET", f"/images/{object_key}")
        return resp.content
