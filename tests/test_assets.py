from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest

from modshelf.exceptions import NotConfigured
from modshelf.storage.assets import AssetStore


def test_save_replaces_other_extensions_and_records_source(tmp_path: Path) -> None:
    assets = AssetStore(tmp_path / "images")

    async def scenario():
        await assets.save_character_image("Alice", b"jpg", "jpg")
        await assets.save_character_image(
            "Alice", b"png", ".png", "https://example.org/a.png", {"x": 1, "y": 2}
        )
        return await assets.character_info("Alice")

    info = asyncio.run(scenario())
    folder = tmp_path / "images" / "Alice"
    assert sorted(p.name for p in folder.iterdir()) == ["Alice.png", "Alice.txt"]
    assert info.image_path == folder / "Alice.png"
    assert info.url == "https://example.org/a.png"
    assert info.crop == {"x": 1, "y": 2}


def test_legacy_info_file_holds_bare_url(tmp_path: Path) -> None:
    folder = tmp_path / "Alice"
    folder.mkdir()
    (folder / "Alice.txt").write_text(" https://example.org/old \n", encoding="utf-8")
    (folder / "other.webp").write_bytes(b"w")

    info = asyncio.run(AssetStore(tmp_path).character_info("Alice"))
    assert info.url == "https://example.org/old"
    assert info.crop is None
    assert info.image_path == folder / "other.webp"


def test_rename_moves_folder_and_files(tmp_path: Path) -> None:
    folder = tmp_path / "Alice"
    folder.mkdir()
    (folder / "Alice.png").write_bytes(b"p")
    (folder / "Alice.txt").write_text(json.dumps({"url": "u"}), encoding="utf-8")
    assets = AssetStore(tmp_path)

    assert asyncio.run(assets.rename_character_assets("Alice", "Alicia"))
    assert sorted(p.name for p in (tmp_path / "Alicia").iterdir()) == ["Alicia.png", "Alicia.txt"]
    assert not asyncio.run(assets.rename_character_assets("Nobody", "Someone"))


def test_delete_and_unset_root(tmp_path: Path) -> None:
    (tmp_path / "Alice").mkdir()
    assert asyncio.run(AssetStore(tmp_path).delete_character_assets("Alice"))
    assert not (tmp_path / "Alice").exists()

    unset = AssetStore(None)
    assert asyncio.run(unset.character_image("Alice")) is None
    assert asyncio.run(unset.character_info("Alice")).image_path is None
    with pytest.raises(NotConfigured):
        asyncio.run(unset.save_character_image("Alice", b"p", "png"))
