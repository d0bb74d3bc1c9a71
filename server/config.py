"""Config management for Hearth.

Reads `config.ini` from DATA_DIR (beside the executable / main.py unless the
DATA_DIR environment variable points elsewhere).
When running as PyInstaller onefile, PROJECT_ROOT is the directory containing the executable.
"""

from __future__ import annotations

import configparser
import dataclasses
import os
import pathlib
import sys
from typing import Optional

from .logging_config import get_logger

logger = get_logger(__name__)


def _get_project_root() -> pathlib.Path:
    if getattr(sys, "frozen", False):
        return pathlib.Path(sys.executable).resolve().parent
    return pathlib.Path(__file__).resolve().parents[1]


PROJECT_ROOT = _get_project_root()

# DATA_DIR holds all persistent state (config.ini, hearth.db, blobs/).
# Set via env var for Docker; defaults to PROJECT_ROOT for standalone use.
DATA_DIR = pathlib.Path(os.environ.get("DATA_DIR", str(PROJECT_ROOT)))
DEFAULT_CONFIG_PATH = DATA_DIR / "config.ini"

STORAGE_BACKENDS = ("local", "s3")


@dataclasses.dataclass
class ArchiveConfig:
    name: str = "Family Archive"


@dataclasses.dataclass
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 8080
    base_url: str = "http://localhost:8080"


@dataclasses.dataclass
class StorageConfig:
    """Where blob bytes live. `path` is used by the local backend, the rest by s3."""

    backend: str = "local"
    path: pathlib.Path = dataclasses.field(default_factory=lambda: DATA_DIR / "blobs")
    bucket: str = ""
    endpoint_url: str = ""
    region: str = ""


@dataclasses.dataclass
class GalleryConfig:
    page_size: int = 20
    max_page_size: int = 100


@dataclasses.dataclass
class UploadConfig:
    batch_size: int = 5
    max_upload_bytes: int = 50 * 1024 * 1024


@dataclasses.dataclass
class TimeoutConfig:
    blob_seconds: float = 30.0
    catalog_seconds: float = 10.0
    fetch_seconds: float = 15.0


@dataclasses.dataclass
class HearthConfig:
    archive: ArchiveConfig
    server: ServerConfig
    storage: StorageConfig
    gallery: GalleryConfig
    uploads: UploadConfig
    timeouts: TimeoutConfig

    @property
    def server_host(self) -> str:
        return self.server.host

    @property
    def server_port(self) -> int:
        return self.server.port


def default_config() -> HearthConfig:
    return HearthConfig(
        archive=ArchiveConfig(),
        server=ServerConfig(),
        storage=StorageConfig(),
        gallery=GalleryConfig(),
        uploads=UploadConfig(),
        timeouts=TimeoutConfig(),
    )


def _resolve_data_path(raw: str) -> pathlib.Path:
    path = pathlib.Path(raw).expanduser()
    return path if path.is_absolute() else DATA_DIR / path


def load_config(config_path: Optional[pathlib.Path] = None) -> HearthConfig:
    """Load configuration from config.ini.

    Defaults to `config.ini` in DATA_DIR.
    """
    path = config_path or DEFAULT_CONFIG_PATH
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    parser = configparser.ConfigParser()
    parser.read(path)

    archive = ArchiveConfig(
        name=parser.get("archive", "name", fallback="Family Archive"),
    )

    server = ServerConfig(
        host=parser.get("server", "host", fallback="0.0.0.0"),
        port=parser.getint("server", "port", fallback=8080),
    )
    server.base_url = parser.get(
        "server", "base_url", fallback=f"http://localhost:{server.port}"
    ).rstrip("/")

    backend = parser.get("storage", "backend", fallback="local").strip().lower()
    if backend not in STORAGE_BACKENDS:
        raise ValueError(
            f"Unsupported storage backend '{backend}'. Allowed: {', '.join(STORAGE_BACKENDS)}"
        )
    storage = StorageConfig(
        backend=backend,
        path=_resolve_data_path(parser.get("storage", "path", fallback="blobs")),
        bucket=parser.get("storage", "bucket", fallback="").strip(),
        endpoint_url=parser.get("storage", "endpoint_url", fallback="").strip(),
        region=parser.get("storage", "region", fallback="").strip(),
    )
    if storage.backend == "s3" and not storage.bucket:
        logger.warning("[storage] backend is s3 but no bucket is configured")

    gallery = GalleryConfig(
        page_size=parser.getint("gallery", "page_size", fallback=20),
        max_page_size=parser.getint("gallery", "max_page_size", fallback=100),
    )

    uploads = UploadConfig(
        batch_size=max(1, parser.getint("uploads", "batch_size", fallback=5)),
        max_upload_bytes=parser.getint(
            "uploads", "max_upload_bytes", fallback=50 * 1024 * 1024
        ),
    )

    timeouts = TimeoutConfig(
        blob_seconds=parser.getfloat("timeouts", "blob_seconds", fallback=30.0),
        catalog_seconds=parser.getfloat("timeouts", "catalog_seconds", fallback=10.0),
        fetch_seconds=parser.getfloat("timeouts", "fetch_seconds", fallback=15.0),
    )

    return HearthConfig(
        archive=archive,
        server=server,
        storage=storage,
        gallery=gallery,
        uploads=uploads,
        timeouts=timeouts,
    )


def write_config(config_path: pathlib.Path, name: str, storage_path: pathlib.Path) -> None:
    """Write a config.ini with default settings for a new archive."""
    parser = configparser.ConfigParser()

    parser["archive"] = {"name": name}
    parser["server"] = {
        "host": "0.0.0.0",
        "port": "8080",
        "base_url": "http://localhost:8080",
    }
    parser["storage"] = {
        "backend": "local",
        "path": str(storage_path.expanduser()),
        "bucket": "",
        "endpoint_url": "",
        "region": "",
    }
    parser["gallery"] = {"page_size": "20", "max_page_size": "100"}
    parser["uploads"] = {
        "batch_size": "5",
        "max_upload_bytes": str(50 * 1024 * 1024),
    }
    parser["timeouts"] = {
        "blob_seconds": "30",
        "catalog_seconds": "10",
        "fetch_seconds": "15",
    }

    config_path.parent.mkdir(parents=True, exist_ok=True)
    with config_path.open("w") as handle:
        parser.write(handle)


_cached_config: Optional[HearthConfig] = None


def get_config() -> HearthConfig:
    """Return the cached config singleton. Loads from disk on first call."""
    global _cached_config
    if _cached_config is None:
        _cached_config = load_config()
    return _cached_config


def reset_config_cache() -> None:
    """Clear the cached config (useful for tests)."""
    global _cached_config
    _cached_config = None
