"""Blob store backends for Hearth.

Provides a unified async interface over key-addressed object storage:
- LocalBlobStore: files under a directory, with a JSON sidecar per object
- S3BlobStore: any S3-compatible bucket through boto3

Deleting a missing object is not an error: the desired end state (no blob)
already holds.
"""

from __future__ import annotations

import asyncio
import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Protocol
from urllib.parse import quote, unquote

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from .config import HearthConfig
from .logging_config import get_logger

logger = get_logger(__name__)

META_SUFFIX = ".meta.json"
_MISSING_CODES = {"NoSuchKey", "404", "NotFound"}


class BlobStoreError(RuntimeError):
    pass


@dataclass(frozen=True)
class BlobObject:
    key: str
    data: bytes
    content_type: str
    metadata: Dict[str, str] = field(default_factory=dict)


class BlobStore(Protocol):
    async def put(
        self,
        key: str,
        data: bytes,
        *,
        content_type: str,
        metadata: Optional[Dict[str, str]] = None,
    ) -> None:
        ...

    async def get(self, key: str) -> Optional[BlobObject]:
        ...

    async def delete(self, key: str) -> None:
        ...

    async def list_keys(self, prefix: str = "") -> List[str]:
        ...


def validate_key(key: str) -> str:
    """Reject keys that could escape the store root or collide with sidecars."""
    if not key or key.startswith("/") or "\\" in key:
        raise ValueError(f"Invalid object key: {key!r}")
    if any(part in ("", ".", "..") for part in key.split("/")):
        raise ValueError(f"Invalid object key: {key!r}")
    if key.endswith(META_SUFFIX):
        raise ValueError(f"Invalid object key: {key!r}")
    return key


class LocalBlobStore:
    """Stores each object as `<root>/<key>` plus `<root>/<key>.meta.json`."""

    def __init__(self, root: Path):
        self.root = Path(root)

    def _path(self, key: str) -> Path:
        return self.root / validate_key(key)

    def _put_sync(
        self, key: str, data: bytes, content_type: str, metadata: Dict[str, str]
    ) -> None:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_name(path.name + ".part")
        tmp_path.write_bytes(data)
        os.replace(tmp_path, path)
        sidecar = {"content_type": content_type, "metadata": metadata}
        path.with_name(path.name + META_SUFFIX).write_text(
            json.dumps(sidecar, ensure_ascii=True), encoding="utf-8"
        )

    def _get_sync(self, key: str) -> Optional[BlobObject]:
        path = self._path(key)
        if not path.is_file():
            return None
        data = path.read_bytes()
        content_type = "application/octet-stream"
        metadata: Dict[str, str] = {}
        sidecar_path = path.with_name(path.name + META_SUFFIX)
        if sidecar_path.exists():
            try:
                sidecar = json.loads(sidecar_path.read_text(encoding="utf-8"))
                content_type = sidecar.get("content_type") or content_type
                metadata = dict(sidecar.get("metadata") or {})
            except ValueError:
                logger.warning(f"Unreadable sidecar for {key}, serving without metadata")
        return BlobObject(key=key, data=data, content_type=content_type, metadata=metadata)

    def _delete_sync(self, key: str) -> None:
        path = self._path(key)
        path.unlink(missing_ok=True)
        path.with_name(path.name + META_SUFFIX).unlink(missing_ok=True)

    def _list_sync(self, prefix: str) -> List[str]:
        if not self.root.exists():
            return []
        keys = []
        for path in self.root.rglob("*"):
            if not path.is_file():
                continue
            if path.name.endswith(META_SUFFIX) or path.name.endswith(".part"):
                continue
            key = path.relative_to(self.root).as_posix()
            if key.startswith(prefix):
                keys.append(key)
        return sorted(keys)

    async def put(
        self,
        key: str,
        data: bytes,
        *,
        content_type: str,
        metadata: Optional[Dict[str, str]] = None,
    ) -> None:
        try:
            await asyncio.to_thread(self._put_sync, key, data, content_type, metadata or {})
        except OSError as exc:
            raise BlobStoreError(f"Failed to write {key}: {exc}") from exc

    async def get(self, key: str) -> Optional[BlobObject]:
        try:
            return await asyncio.to_thread(self._get_sync, key)
        except OSError as exc:
            raise BlobStoreError(f"Failed to read {key}: {exc}") from exc

    async def delete(self, key: str) -> None:
        try:
            await asyncio.to_thread(self._delete_sync, key)
        except OSError as exc:
            raise BlobStoreError(f"Failed to delete {key}: {exc}") from exc

    async def list_keys(self, prefix: str = "") -> List[str]:
        try:
            return await asyncio.to_thread(self._list_sync, prefix)
        except OSError as exc:
            raise BlobStoreError(f"Failed to list {self.root}: {exc}") from exc


def _error_code(error: ClientError) -> str:
    return str(error.response.get("Error", {}).get("Code", ""))


def _describe_boto3_error(error: Exception) -> str:
    """Short, actionable description of a boto3 failure."""
    if isinstance(error, ClientError):
        code = _error_code(error)
        message = error.response.get("Error", {}).get("Message", str(error))
        if code in ("AccessDenied", "403"):
            return f"access denied ({message}); check bucket permissions"
        if code == "NoSuchBucket":
            return "bucket does not exist or is not accessible"
        return f"{code or 'error'}: {message}"
    return str(error)


class S3BlobStore:
    """S3-compatible storage (AWS S3, Cloudflare R2, MinIO)."""

    def __init__(
        self,
        bucket: str,
        *,
        client=None,
        endpoint_url: Optional[str] = None,
        region: Optional[str] = None,
    ):
        if not bucket:
            raise BlobStoreError("S3 bucket name is empty.")
        self.bucket = bucket
        self._client = client
        self._endpoint_url = endpoint_url or None
        self._region = region or None

    @property
    def client(self):
        if self._client is None:
            config = Config(
                max_pool_connections=20,
                retries={"max_attempts": 3, "mode": "standard"},
            )
            self._client = boto3.client(
                "s3",
                endpoint_url=self._endpoint_url,
                region_name=self._region,
                config=config,
            )
        return self._client

    def _put_sync(
        self, key: str, data: bytes, content_type: str, metadata: Dict[str, str]
    ) -> None:
        self.client.put_object(
            Bucket=self.bucket,
            Key=key,
            Body=data,
            ContentType=content_type,
            # S3 user metadata must be ASCII
            Metadata={k: quote(v, safe="") for k, v in metadata.items()},
        )

    def _get_sync(self, key: str) -> Optional[BlobObject]:
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=key)
        except ClientError as exc:
            if _error_code(exc) in _MISSING_CODES:
                return None
            raise
        body = response["Body"]
        try:
            data = body.read()
        finally:
            body.close()
        return BlobObject(
            key=key,
            data=data,
            content_type=response.get("ContentType") or "application/octet-stream",
            metadata={k: unquote(v) for k, v in (response.get("Metadata") or {}).items()},
        )

    def _delete_sync(self, key: str) -> None:
        try:
            self.client.delete_object(Bucket=self.bucket, Key=key)
        except ClientError as exc:
            if _error_code(exc) in _MISSING_CODES:
                return
            raise

    def _list_sync(self, prefix: str) -> List[str]:
        paginator = self.client.get_paginator("list_objects_v2")
        keys = []
        for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
            keys.extend(obj["Key"] for obj in page.get("Contents", []))
        return sorted(keys)

    async def _call(self, what: str, func, *args):
        try:
            return await asyncio.to_thread(func, *args)
        except (ClientError, BotoCoreError) as exc:
            raise BlobStoreError(
                f"{what} s3://{self.bucket} failed: {_describe_boto3_error(exc)}"
            ) from exc

    async def put(
        self,
        key: str,
        data: bytes,
        *,
        content_type: str,
        metadata: Optional[Dict[str, str]] = None,
    ) -> None:
        validate_key(key)
        await self._call(f"put {key}", self._put_sync, key, data, content_type, metadata or {})

    async def get(self, key: str) -> Optional[BlobObject]:
        validate_key(key)
        return await self._call(f"get {key}", self._get_sync, key)

    async def delete(self, key: str) -> None:
        validate_key(key)
        await self._call(f"delete {key}", self._delete_sync, key)

    async def list_keys(self, prefix: str = "") -> List[str]:
        return await self._call("list", self._list_sync, prefix)


_s3_stores: Dict[tuple, S3BlobStore] = {}


def get_blob_store(config: HearthConfig) -> BlobStore:
    """Build the blob store configured in [storage].

    S3 stores are cached so the boto3 client (and its connection pool) is reused.
    """
    storage = config.storage
    if storage.backend == "local":
        return LocalBlobStore(storage.path)
    if storage.backend == "s3":
        cache_key = (storage.bucket, storage.endpoint_url, storage.region)
        store = _s3_stores.get(cache_key)
        if store is None:
            store = S3BlobStore(
                storage.bucket,
                endpoint_url=storage.endpoint_url,
                region=storage.region,
            )
            _s3_stores[cache_key] = store
        return store
    raise BlobStoreError(f"Unsupported storage backend: {storage.backend}")
