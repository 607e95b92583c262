"""
The shared state every engine component works against.
"""

import logging
from dataclasses import dataclass, field

from modshelf.archive.backend import SevenZipBackend
from modshelf.archive.inspector import ArchiveInspector
from modshelf.models.config import Settings
from modshelf.storage.assets import AssetStore
from modshelf.storage.cache import RepositoryCache
from modshelf.storage.repository import RepositoryStateStore
from modshelf.utils.naming import name_key

log = logging.getLogger(__name__)


class GenerationCounter:
    """
    Hands out strictly increasing refresh tokens and remembers the latest one
    issued per character. A result tagged with an older token is stale.
    """

    def __init__(self):
        self._last = 0
        self._current: dict[str, int] = {}

    def next(self, character: str) -> int:
        self._last += 1
        self._current[name_key(character)] = self._last
        return self._last

    def current(self, character: str) -> int | None:
        return self._current.get(name_key(character))

    def is_current(self, character: str, generation: int) -> bool:
        return self._current.get(name_key(character)) == generation


@dataclass
class RepositoryContext:
    """Settings plus the objects built from them, passed explicitly to callers."""

    settings: Settings
    backend: SevenZipBackend
    inspector: ArchiveInspector
    store: RepositoryStateStore
    assets: AssetStore
    cache: RepositoryCache
    generations: GenerationCounter = field(default_factory=GenerationCounter)

    @classmethod
    def from_settings(
        cls, settings: Settings, backend: SevenZipBackend | None = None
    ) -> "RepositoryContext":
        backend = backend or SevenZipBackend(settings.seven_zip_path)
        inspector = ArchiveInspector(backend)
        return cls(
            settings=settings,
            backend=backend,
            inspector=inspector,
            store=RepositoryStateStore(settings.mods_root, inspector),
            assets=AssetStore(settings.images_root),
            cache=RepositoryCache(settings.cache_capacity),
        )

    def apply_settings(self, settings: Settings) -> None:
        """Points the components at new settings; a new mods root empties the cache."""
        if settings.seven_zip_path != self.settings.seven_zip_path:
            self.backend = SevenZipBackend(settings.seven_zip_path)
            self.inspector.backend = self.backend
        if settings.mods_root != self.settings.mods_root:
            self.store.mods_root = settings.mods_root
            self.cache.clear()
            log.debug(f"Mods root changed to '{settings.mods_root}'.")
        self.assets.images_root = settings.images_root
        self.cache.resize(settings.cache_capacity)
        self.settings = settings
