from __future__ import annotations

import json
from pathlib import Path

import pytest

from modshelf.exceptions import ConfigurationError
from modshelf.models.config import DEFAULT_CACHE_CAPACITY, Settings
from modshelf.storage.settings import SettingsManager


def test_missing_file_yields_defaults(tmp_path: Path) -> None:
    settings = SettingsManager(tmp_path / "settings.json").load()
    assert settings.mods_root is None
    assert settings.cache_capacity == DEFAULT_CACHE_CAPACITY


def test_saved_file_uses_camel_case_keys(tmp_path: Path) -> None:
    path = tmp_path / "conf" / "settings.json"
    manager = SettingsManager(path)
    manager.save(Settings(mods_root=tmp_path / "Mods", max_workers=2))

    data = json.loads(path.read_text(encoding="utf-8"))
    assert data["modsRoot"] == str(tmp_path / "Mods")
    assert data["maxWorkers"] == 2
    assert "imagesRoot" not in data

    loaded = manager.load()
    assert loaded.mods_root == tmp_path / "Mods"
    assert loaded.max_workers == 2


def test_empty_root_means_unset(tmp_path: Path) -> None:
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({"modsRoot": "  "}), encoding="utf-8")
    assert SettingsManager(path).load().mods_root is None


@pytest.mark.parametrize(
    "content",
    ["{not json", "[1, 2]", json.dumps({"maxWorkers": 0}), json.dumps({"debounceMs": -1})],
)
def test_invalid_files_raise_configuration_error(tmp_path: Path, content: str) -> None:
    path = tmp_path / "settings.json"
    path.write_text(content, encoding="utf-8")
    with pytest.raises(ConfigurationError):
        SettingsManager(path).load()


def test_update_validates_and_persists(tmp_path: Path) -> None:
    manager = SettingsManager(tmp_path / "settings.json")
    manager.update(cache_capacity=8)
    assert manager.load().cache_capacity == 8

    with pytest.raises(ConfigurationError):
        manager.update(cache_capacity=0)
    assert manager.load().cache_capacity == 8
