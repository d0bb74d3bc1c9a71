"""Tests for the HTTP API."""

import json

import pytest
from fastapi.testclient import TestClient

from server.api import IMAGE_CACHE_CONTROL, app


@pytest.fixture
def client(test_config, test_db, monkeypatch):
    """Create a test client."""
    monkeypatch.setattr("server.api.get_config", lambda: test_config)
    return TestClient(app)


def _create_album(client, name="Holidays"):
    response = client.post("/api/v1/albums", json={"name": name})
    assert response.status_code == 201
    return response.json()


def _upload(client, album_id, *names, metadata=None, data=b"\xff\xd8jpeg"):
    files = [("files", (name, data, "image/jpeg")) for name in names]
    form = {"metadata": metadata} if metadata is not None else {}
    return client.post(f"/api/v1/albums/{album_id}/images", files=files, data=form)


def test_create_and_list_albums(client):
    first = _create_album(client, "  First  ")
    second = _create_album(client, "Second")

    assert first["name"] == "First"
    assert first["imageCount"] == 0
    assert first["coverKey"] is None

    response = client.get("/api/v1/albums")
    assert response.status_code == 200
    assert [a["id"] for a in response.json()] == [second["id"], first["id"]]


def test_create_album_requires_name(client):
    response = client.post("/api/v1/albums", json={"name": "   "})

    assert response.status_code == 400
    assert response.json() == {"code": 400, "message": "Album name is required"}


def test_get_missing_album_is_a_toast(client):
    response = client.get("/api/v1/albums/999")

    assert response.status_code == 404
    assert response.json() == {"code": 404, "message": "Album not found"}


def test_malformed_id_is_a_validation_error(client):
    response = client.get("/api/v1/albums/not-a-number/images")

    assert response.status_code == 400
    assert response.json()["code"] == 400


def test_upload_then_page_through(client):
    album = _create_album(client)
    metadata = json.dumps(
        [
            {"filename": "a.jpg", "takenAt": "2020-01-01T10:00:00Z"},
            {"filename": "b.jpg", "takenAt": "2022-01-01T10:00:00Z"},
            {"filename": "c.jpg", "takenAt": None},
            {"filename": "d.jpg", "takenAt": "2021-01-01T10:00:00+02:00"},
        ]
    )

    response = _upload(client, album["id"], "a.jpg", "b.jpg", "c.jpg", "d.jpg", metadata=metadata)

    assert response.status_code == 201
    created = response.json()
    assert [item["filename"] for item in created] == ["a.jpg", "b.jpg", "c.jpg", "d.jpg"]
    assert created[0]["albumId"] == album["id"]
    assert created[0]["objectKey"].startswith(f"albums/{album['id']}/")
    assert created[0]["byteSize"] == len(b"\xff\xd8jpeg")

    # page_size is 3 in the test config
    first = client.get(f"/api/v1/albums/{album['id']}/images").json()
    assert [i["filename"] for i in first["data"]] == ["b.jpg", "d.jpg", "a.jpg"]
    assert first["hasMore"] is True
    assert first["nextOffset"] == 3

    second = client.get(
        f"/api/v1/albums/{album['id']}/images", params={"offset": first["nextOffset"]}
    ).json()
    assert [i["filename"] for i in second["data"]] == ["c.jpg"]
    assert second["hasMore"] is False
    assert second["nextOffset"] is None

    summary = client.get(f"/api/v1/albums/{album['id']}").json()
    assert summary["imageCount"] == 4
    assert summary["coverKey"] == first["data"][0]["objectKey"]


def test_limit_is_capped(client, test_config):
    album = _create_album(client)
    _upload(client, album["id"], "a.jpg")
    test_config.gallery.max_page_size = 2

    response = client.get(f"/api/v1/albums/{album['id']}/images", params={"limit": 500})

    assert response.status_code == 200
    assert len(response.json()["data"]) == 1


def test_malformed_metadata_is_ignored(client):
    album = _create_album(client)

    response = _upload(client, album["id"], "a.jpg", metadata="{not json")

    assert response.status_code == 201
    assert response.json()[0]["capturedAt"] is None


def test_partial_upload_failure_reports_per_file(client):
    album = _create_album(client)
    files = [
        ("files", ("good.jpg", b"\xff\xd8jpeg", "image/jpeg")),
        ("files", ("empty.jpg", b"", "image/jpeg")),
    ]

    response = client.post(f"/api/v1/albums/{album['id']}/images", files=files)

    assert response.status_code == 400
    body = response.json()
    assert body["code"] == 400
    assert body["succeeded"] == 1
    assert body["failed"] == 1
    assert [item["filename"] for item in body["data"]] == ["good.jpg"]
    assert body["errors"][0]["index"] == 1
    assert body["errors"][0]["filename"] == "empty.jpg"
    assert body["errors"][0]["code"] == 400


def test_upload_to_missing_album(client):
    response = _upload(client, 777, "a.jpg")

    assert response.status_code == 404
    assert response.json() == {"code": 404, "message": "Album not found"}


def test_serve_image_with_cache_headers(client):
    album = _create_album(client)
    item = _upload(client, album["id"], "photo.png", data=b"png-bytes").json()[0]

    response = client.get(f"/api/v1/images/{item['objectKey']}")

    assert response.status_code == 200
    assert response.content == b"png-bytes"
    assert response.headers["content-type"] == "image/png"
    assert response.headers["cache-control"] == IMAGE_CACHE_CONTROL


def test_serve_missing_image(client):
    assert client.get("/api/v1/images/albums/1/nope.jpg").status_code == 404
    assert client.get("/api/v1/images/albums/../../etc/passwd").status_code == 404


def test_delete_image(client):
    album = _create_album(client)
    item = _upload(client, album["id"], "a.jpg").json()[0]
    url = f"/api/v1/albums/{album['id']}/images/{item['id']}"

    response = client.delete(url)
    assert response.status_code == 200
    assert response.json() == {"code": 200, "message": "Image deleted"}

    assert client.delete(url).status_code == 404
    assert client.get(f"/api/v1/images/{item['objectKey']}").status_code == 404


def test_delete_album_guard(client):
    album = _create_album(client)
    item = _upload(client, album["id"], "a.jpg").json()[0]

    response = client.delete(f"/api/v1/albums/{album['id']}")
    assert response.status_code == 409
    assert response.json()["code"] == 409
    assert client.get(f"/api/v1/albums/{album['id']}").status_code == 200

    client.delete(f"/api/v1/albums/{album['id']}/images/{item['id']}")
    response = client.delete(f"/api/v1/albums/{album['id']}")
    assert response.status_code == 200
    assert client.get(f"/api/v1/albums/{album['id']}").status_code == 404


def test_unexpected_error_becomes_internal_error(client, monkeypatch):
    async def boom(self):
        raise RuntimeError("kaboom")

    monkeypatch.setattr("server.catalog.Catalog.list_albums", boom)
    client = TestClient(app, raise_server_exceptions=False)

    response = client.get("/api/v1/albums")

    assert response.status_code == 500
    assert response.json() == {"code": 500, "message": "Unexpected server error"}
