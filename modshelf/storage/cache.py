"""
An in-memory LRU cache of the most recently viewed characters' mod lists.
"""

import logging
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from modshelf.models.config import DEFAULT_CACHE_CAPACITY
from modshelf.models.mods import ModView
from modshelf.utils.naming import name_key

log = logging.getLogger(__name__)

# Sub-results merged into every ModView by the refresh pipeline
SUB_RESULTS = ("preview", "primary", "metadata", "details")


@dataclass
class CacheEntry:
    """The derived state of one character's mods for a single refresh generation."""

    character: str
    generation: int
    views: list[ModView] = field(default_factory=list)
    last_access: float = field(default_factory=time.monotonic)

    def view_for(self, path: Path) -> ModView | None:
        return next((v for v in self.views if v.mod.path == path), None)

    @property
    def complete(self) -> bool:
        """True once every view has all of its sub-results merged in."""
        return all(v.resolved.issuperset(SUB_RESULTS) for v in self.views)


class RepositoryCache:
    """
    Keyed by character display name (case-insensitive). ``get`` counts as a use
    and refreshes the entry's position; ``peek`` does not.
    """

    def __init__(
        self,
        capacity: int = DEFAULT_CACHE_CAPACITY,
        stats_callback: Callable[[bool], None] | None = None,
    ):
        """
        Args:
            capacity: Maximum number of characters kept.
            stats_callback: Optional callback to report cache hits (True) or misses
            (False).
        """
        if capacity < 1:
            raise ValueError("Cache capacity must be at least 1.")
        self.capacity = capacity
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._stats_callback = stats_callback

    def get(self, character: str) -> CacheEntry | None:
        entry = self._entries.get(name_key(character))
        if self._stats_callback:
            self._stats_callback(entry is not None)
        if entry is None:
            return None
        self._entries.move_to_end(name_key(character))
        entry.last_access = time.monotonic()
        return entry

    def peek(self, character: str) -> CacheEntry | None:
        return self._entries.get(name_key(character))

    def put(self, entry: CacheEntry) -> None:
        key = name_key(entry.character)
        entry.last_access = time.monotonic()
        self._entries[key] = entry
        self._entries.move_to_end(key)
        self._evict()

    def resize(self, capacity: int) -> None:
        """Changes the capacity, evicting least recently used entries at once."""
        if capacity < 1:
            raise ValueError("Cache capacity must be at least 1.")
        self.capacity = capacity
        self._evict()

    def _evict(self) -> None:
        while len(self._entries) > self.capacity:
            evicted, _ = self._entries.popitem(last=False)
            log.debug(f"Evicted '{evicted}' from the repository cache.")

    def invalidate(self, character: str) -> bool:
        return self._entries.pop(name_key(character), None) is not None

    def clear(self) -> None:
        if self._entries:
            log.debug(f"Clearing {len(self._entries)} cached character(s).")
        self._entries.clear()

    def keys(self) -> list[str]:
        """Cached keys, least recently used first."""
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, character: str) -> bool:
        return name_key(character) in self._entries
