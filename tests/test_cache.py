from __future__ import annotations

from pathlib import Path

import pytest

from modshelf.models.mods import FolderMod, ModView
from modshelf.storage.cache import SUB_RESULTS, CacheEntry, RepositoryCache


def _entry(name: str, generation: int = 1) -> CacheEntry:
    return CacheEntry(character=name, generation=generation)


def test_evicts_least_recently_used_beyond_capacity() -> None:
    cache = RepositoryCache(capacity=5)
    for i in range(6):
        cache.put(_entry(f"c{i}"))
    assert len(cache) == 5
    assert "c0" not in cache
    assert cache.keys() == ["c1", "c2", "c3", "c4", "c5"]


def test_get_refreshes_position_but_peek_does_not() -> None:
    cache = RepositoryCache(capacity=2)
    cache.put(_entry("Alice"))
    cache.put(_entry("Bob"))

    assert cache.peek("Alice") is not None
    cache.put(_entry("Carol"))
    assert "Alice" not in cache

    cache.get("Bob")
    cache.put(_entry("Dave"))
    assert "Bob" in cache
    assert "Carol" not in cache


def test_keys_are_case_insensitive() -> None:
    cache = RepositoryCache()
    cache.put(_entry("Hu Tao", generation=3))
    assert cache.get("hu tao").generation == 3
    cache.put(_entry("HU TAO", generation=4))
    assert len(cache) == 1
    assert cache.peek("Hu Tao").generation == 4


def test_invalidate_and_clear() -> None:
    cache = RepositoryCache()
    cache.put(_entry("Alice"))
    cache.put(_entry("Bob"))
    assert cache.invalidate("alice")
    assert not cache.invalidate("alice")
    cache.clear()
    assert len(cache) == 0


def test_stats_callback_reports_hits_and_misses() -> None:
    seen = []
    cache = RepositoryCache(stats_callback=seen.append)
    cache.get("Alice")
    cache.put(_entry("Alice"))
    cache.get("Alice")
    cache.peek("Alice")
    assert seen == [False, True]


def test_rejects_zero_capacity() -> None:
    with pytest.raises(ValueError):
        RepositoryCache(capacity=0)


def test_entry_complete_once_every_view_is_resolved(tmp_path: Path) -> None:
    view = ModView(mod=FolderMod("Alice", tmp_path / "Outfit"))
    entry = CacheEntry(character="Alice", generation=1, views=[view])
    assert entry.view_for(tmp_path / "Outfit") is view
    assert entry.view_for(tmp_path / "Other") is None
    assert not entry.complete
    view.resolved.update(SUB_RESULTS)
    assert entry.complete


def test_shrinking_capacity_evicts_immediately() -> None:
    cache = RepositoryCache(capacity=5)
    for name in ("a", "b", "c", "d"):
        cache.put(_entry(name))
    cache.get("a")

    cache.resize(2)

    assert cache.keys() == ["d", "a"]
    with pytest.raises(ValueError):
        cache.resize(0)
