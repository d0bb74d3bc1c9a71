"""Tests for the Typer CLI."""

import pytest
from typer.testing import CliRunner

import main
from server.config import load_config


runner = CliRunner()


@pytest.fixture
def cli_env(tmp_path, test_db, monkeypatch):
    config_path = tmp_path / "config.ini"
    monkeypatch.setattr("main.DEFAULT_CONFIG_PATH", config_path)
    monkeypatch.setattr("server.config.DEFAULT_CONFIG_PATH", config_path)
    monkeypatch.setattr("main.setup_logging", lambda *args, **kwargs: None)
    result = runner.invoke(main.app, ["init", "--name", "Test", "--storage", str(tmp_path / "blobs")])
    assert result.exit_code == 0, result.output
    return tmp_path


def test_init_writes_config(cli_env):
    config = load_config(cli_env / "config.ini")

    assert config.archive.name == "Test"
    assert config.storage.path == cli_env / "blobs"


def test_album_upload_stats_and_cleanup(cli_env):
    photo = cli_env / "photo.jpg"
    photo.write_bytes(b"\xff\xd8jpeg")
    empty = cli_env / "empty.jpg"
    empty.write_bytes(b"")

    result = runner.invoke(main.app, ["create-album", "Summer"])
    assert result.exit_code == 0, result.output
    assert "Created album 1: Summer" in result.output

    result = runner.invoke(main.app, ["upload", "1", str(photo), str(empty)])
    assert result.exit_code == 1
    assert "1 uploaded, 1 failed" in result.output
    assert "empty.jpg" in result.output

    result = runner.invoke(main.app, ["albums"])
    assert "Summer  (1 items)" in result.output

    result = runner.invoke(main.app, ["stats"])
    assert "Albums: 1" in result.output
    assert "Media items: 1" in result.output

    stray = cli_env / "blobs" / "albums" / "1" / "stray.jpg"
    stray.write_bytes(b"orphan")
    result = runner.invoke(main.app, ["cleanup", "--dry-run"])
    assert "albums/1/stray.jpg" in result.output
    assert stray.exists()

    result = runner.invoke(main.app, ["cleanup"])
    assert "Removed 1 orphaned blob(s)" in result.output
    assert not stray.exists()


def test_upload_to_missing_album(cli_env):
    photo = cli_env / "photo.jpg"
    photo.write_bytes(b"\xff\xd8jpeg")

    result = runner.invoke(main.app, ["upload", "42", str(photo)])

    assert result.exit_code == 1
    assert "Album not found" in result.output


def test_reset_requires_confirm(cli_env):
    result = runner.invoke(main.app, ["reset"])

    assert result.exit_code == 1
    assert "--confirm" in result.output
