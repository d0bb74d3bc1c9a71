"""Shared fixtures: a temporary catalog database and a local blob store."""

from datetime import datetime
from io import BytesIO

import pytest
from PIL import Image
from sqlmodel import create_engine

from server.blobstore import LocalBlobStore
from server.catalog import Catalog
from server.config import default_config
from server.database import init_db


@pytest.fixture
def test_config(tmp_path):
    """Create a test configuration with blobs under tmp_path."""
    config = default_config()
    config.storage.path = tmp_path / "blobs"
    config.gallery.page_size = 3
    config.uploads.batch_size = 2
    config.uploads.max_upload_bytes = 1024 * 1024
    return config


@pytest.fixture
def test_db(tmp_path, monkeypatch):
    """Create a test database."""
    db_file = tmp_path / "test.db"
    monkeypatch.setattr("server.database.DB_PATH", db_file, raising=True)

    engine = create_engine(f"sqlite:///{db_file}", connect_args={"check_same_thread": False})
    monkeypatch.setattr("server.database.engine", engine, raising=True)

    init_db()
    return engine


@pytest.fixture
def catalog(test_db):
    return Catalog()


@pytest.fixture
def blobs(test_config):
    return LocalBlobStore(test_config.storage.path)


def jpeg_bytes(taken: datetime | None = None) -> bytes:
    """A tiny JPEG, optionally carrying an EXIF DateTime."""
    image = Image.new("RGB", (4, 4), color=(200, 120, 40))
    buffer = BytesIO()
    if taken is None:
        image.save(buffer, "JPEG")
    else:
        exif = Image.Exif()
        exif[306] = taken.strftime("%Y:%m:%d %H:%M:%S")
        image.save(buffer, "JPEG", exif=exif)
    return buffer.getvalue()


@pytest.fixture
def make_jpeg():
    return jpeg_bytes
