"""Hearth CLI entry point."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import List, Optional

import typer

from server.api import run_server
from server.blobstore import BlobStoreError, get_blob_store
from server.catalog import Catalog
from server.config import DEFAULT_CONFIG_PATH, DATA_DIR, HearthConfig, load_config, write_config
from server.database import init_db, reset_database
from server.errors import HearthError
from server.ingest import SourceFile, UploadPipeline
from server.logging_config import setup_logging
from server.migrations import get_status, run_migrations, stamp_if_needed
from server.utils import human_size


__version__ = "0.1.0"

app = typer.Typer(add_completion=False, help="Hearth family photo archive CLI")
logger = logging.getLogger("hearth")

STARTUP_BANNER = r"""
 __  __     ______     ______     ______     ______   __  __
/\ \_\ \   /\  ___\   /\  __ \   /\  == \   /\__  _\ /\ \_\ \
\ \  __ \  \ \  __\   \ \  __ \  \ \  __<   \/_/\ \/ \ \  __ \
 \ \_\ \_\  \ \_____\  \ \_\ \_\  \ \_\ \_\    \ \_\  \ \_\ \_\
  \/_/\/_/   \/_____/   \/_/\/_/   \/_/ /_/     \/_/   \/_/\/_/
"""


def _ensure_config() -> HearthConfig:
    try:
        return load_config()
    except FileNotFoundError:
        typer.echo("[ERROR] config.ini not found. Run: hearth init")
        raise typer.Exit(code=1)
    except ValueError as exc:
        typer.echo(f"[ERROR] Invalid config.ini: {exc}")
        raise typer.Exit(code=1)


def _catalog(config: HearthConfig) -> Catalog:
    return Catalog(timeout=config.timeouts.catalog_seconds)


def _run(coro):
    try:
        return asyncio.run(coro)
    except HearthError as exc:
        typer.echo(f"[ERROR] {exc.message}")
        raise typer.Exit(code=1)


@app.command()
def init(
    name: str = typer.Option("Family Archive", "--name", help="Archive name"),
    storage: Path = typer.Option(
        DATA_DIR / "blobs", "--storage", help="Directory for the local blob store"
    ),
) -> None:
    """Initialize config.ini with default settings."""
    config_path = DEFAULT_CONFIG_PATH
    write_config(config_path, name, storage)
    typer.echo(f"[OK] Config created at {config_path}")


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Server host"),
    port: Optional[int] = typer.Option(None, "--port", help="Server port"),
    log_level: Optional[str] = typer.Option(
        None, "--log-level", help="Console log level (default: HEARTH_LOG_LEVEL or INFO)"
    ),
) -> None:
    """Start the gallery API server."""
    log_file = setup_logging(log_level)

    typer.echo(typer.style(STARTUP_BANNER, fg=typer.colors.MAGENTA, bold=True))
    config = _ensure_config()
    logger.info(f"Logging to {log_file}")
    init_db()

    # Migrations: stamp databases created by init_db, then upgrade to head.
    stamp_if_needed()
    current, head = get_status()
    if current != head:
        logger.info(f"Migrating database {current} -> {head} ...")
        run_migrations(backup=True)
        logger.info("Migration complete.")
    else:
        logger.info(f"Database at {head} (up to date).")

    try:
        run_server(config, host=host, port=port)
    except KeyboardInterrupt:
        pass


@app.command()
def stats() -> None:
    """Show archive statistics."""
    config = _ensure_config()
    init_db()
    albums, items, total_bytes = _run(_catalog(config).totals())

    typer.echo(f"{config.archive.name} statistics:")
    typer.echo(f"  Albums: {albums}")
    typer.echo(f"  Media items: {items}")
    typer.echo(f"  Total size: {human_size(total_bytes)}")
    typer.echo(f"  Storage: {config.storage.backend}")


@app.command()
def albums() -> None:
    """List albums, newest first."""
    config = _ensure_config()
    init_db()
    rows = _run(_catalog(config).list_albums())
    if not rows:
        typer.echo("[INFO] No albums yet. Create one with: hearth create-album NAME")
        return
    for album in rows:
        typer.echo(f"  {album.id:>4}  {album.name}  ({album.image_count} items)")


@app.command("create-album")
def create_album(name: str = typer.Argument(..., help="Album name")) -> None:
    """Create an empty album."""
    config = _ensure_config()
    init_db()
    name = name.strip()
    if not name:
        typer.echo("[ERROR] Album name is required.")
        raise typer.Exit(code=1)
    album = _run(_catalog(config).create_album(name))
    typer.echo(f"[OK] Created album {album.id}: {album.name}")


@app.command()
def upload(
    album_id: int = typer.Argument(..., help="Target album id"),
    files: List[Path] = typer.Argument(..., exists=True, dir_okay=False, help="Files to upload"),
) -> None:
    """Upload local files into an album."""
    setup_logging()
    config = _ensure_config()
    init_db()

    sources = [SourceFile(filename=path.name, data=path.read_bytes()) for path in files]
    pipeline = UploadPipeline(
        _catalog(config),
        get_blob_store(config),
        batch_size=config.uploads.batch_size,
        max_upload_bytes=config.uploads.max_upload_bytes,
        blob_timeout=config.timeouts.blob_seconds,
    )
    report = _run(pipeline.run(album_id, sources))

    for index, item in report.failures():
        reason = item.error.message if item.error else "unknown error"
        typer.echo(f"  ✗ {files[index].name}: {reason}")
    typer.echo(f"✓ Upload completed: {report.succeeded} uploaded, {report.failed} failed.")
    if report.failed:
        raise typer.Exit(code=1)


async def _cleanup_orphans(config: HearthConfig, dry_run: bool) -> List[str]:
    blobs = get_blob_store(config)
    known = await _catalog(config).object_keys()
    orphans = [key for key in await blobs.list_keys("albums/") if key not in known]
    if not dry_run:
        for key in orphans:
            await blobs.delete(key)
    return orphans


@app.command()
def cleanup(
    dry_run: bool = typer.Option(False, "--dry-run", help="Only list orphaned blobs"),
) -> None:
    """Remove blobs that no catalog row refers to."""
    setup_logging()
    config = _ensure_config()
    init_db()
    try:
        orphans = _run(_cleanup_orphans(config, dry_run))
    except BlobStoreError as exc:
        typer.echo(f"[ERROR] {exc}")
        raise typer.Exit(code=1)

    for key in orphans:
        typer.echo(f"  {key}")
    verb = "Found" if dry_run else "Removed"
    typer.echo(f"[INFO] {verb} {len(orphans)} orphaned blob(s)")


@app.command()
def migrate(
    check: bool = typer.Option(False, "--check", help="Print status and exit (1 if not at head)"),
) -> None:
    """Run pending database migrations (or check status with --check)."""
    _ensure_config()                    # config must exist before we touch the DB
    init_db()                           # ensure tables exist for a brand-new DB

    current, head = get_status()

    if check:
        if current == head:
            typer.echo(f"[OK] Database at {head} (head).")
            raise typer.Exit(code=0)
        else:
            typer.echo(f"[WARN] Database behind. Current: {current}, head: {head}")
            raise typer.Exit(code=1)

    if current == head:
        logger.info(f"Database already at {head} (head). Nothing to do.")
        raise typer.Exit(code=0)

    logger.info(f"Migrating database {current} -> {head} ...")
    run_migrations(backup=True)
    logger.info("Migration complete.")


@app.command()
def reset(
    confirm: bool = typer.Option(False, "--confirm", help="Confirm destructive reset"),
) -> None:
    """Reset the catalog database. Stored blobs are kept; run cleanup to remove them."""
    if not confirm:
        typer.echo("[ERROR] This will delete your catalog database. Use --confirm.")
        raise typer.Exit(code=1)

    _ensure_config()
    reset_database()
    typer.echo("[INFO] Catalog reset. Run 'hearth cleanup' to delete the now orphaned blobs.")


if __name__ == "__main__":
    app()
