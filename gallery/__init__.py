"""Client-side gallery engine for Hearth.

Paging with single-flight fetches, lightbox navigation, an upload queue and
deletion, all driven over the HTTP API.
"""

from .client import GalleryApiError, GalleryClient
from .deletion import GalleryDeleter
from .fetch import FetchCoordinator
from .lightbox import LightboxNavigator
from .state import GalleryState
from .uploads import UploadQueue

__all__ = [
    "FetchCoordinator",
    "GalleryApiError",
    "GalleryClient",
    "GalleryDeleter",
    "GalleryState",
    "LightboxNavigator",
    "UploadQueue",
]
