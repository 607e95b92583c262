"""
Storage Layer.

This package handles all data persistence: the mods repository on disk,
character pictures under the assets root, the settings file and the in-memory
view cache.
"""

from .assets import AssetStore
from .cache import CacheEntry, RepositoryCache
from .repository import RepositoryStateStore
from .settings import SettingsManager

__all__ = [
    "AssetStore",
    "CacheEntry",
    "RepositoryCache",
    "RepositoryStateStore",
    "SettingsManager",
]
