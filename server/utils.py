"""Utility functions for Hearth."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Iterator, List, Sequence, TypeVar

from .errors import StorageUnavailable
from .logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


def chunked(items: Sequence[T], size: int) -> Iterator[List[T]]:
    """Yield consecutive slices of at most `size` items, preserving order."""
    if size < 1:
        raise ValueError("size must be >= 1")
    for start in range(0, len(items), size):
        yield list(items[start:start + size])


async def with_timeout(awaitable: Awaitable[T], seconds: float, what: str) -> T:
    """Await with a deadline; a timeout surfaces as StorageUnavailable."""
    try:
        return await asyncio.wait_for(awaitable, timeout=seconds)
    except asyncio.TimeoutError:
        logger.warning(f"Timed out after {seconds:g}s: {what}")
        raise StorageUnavailable(f"Timed out: {what}")


def human_size(num_bytes: int) -> str:
    """Return a short human readable size, e.g. 1.5 MB."""
    size = float(num_bytes)
    for unit in ("B", "KB", "MB", "GB"):
        if size < 1024 or unit == "GB":
            return f"{size:.0f} {unit}" if unit == "B" else f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} GB"
