from __future__ import annotations

from pathlib import Path

from modshelf.core.session import Session
from modshelf.storage.cache import CacheEntry
from modshelf.storage.settings import SettingsManager

from .conftest import FakeBackend


def test_engine_settings_reach_the_running_components(tmp_path: Path) -> None:
    session = Session(SettingsManager(tmp_path / "settings.json"), backend=FakeBackend())
    for name in ("a", "b", "c"):
        session.context.cache.put(CacheEntry(character=name, generation=1))

    settings = session.set_engine(max_workers=2, cache_capacity=1)

    assert settings.max_workers == 2
    assert session.pipeline.max_workers == 2
    assert session.context.cache.keys() == ["c"]
    assert SettingsManager(tmp_path / "settings.json").load().cache_capacity == 1


def test_set_engine_without_changes_keeps_settings(tmp_path: Path) -> None:
    session = Session(SettingsManager(tmp_path / "settings.json"), backend=FakeBackend())
    assert session.set_engine() is session.settings
    assert not (tmp_path / "settings.json").exists()
