from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest

from modshelf.exceptions import (
    ArchiveReadError,
    InvalidName,
    ModNotFound,
    NotConfigured,
    TargetExists,
)
from modshelf.models.mods import FlatArchiveMod, FolderMod
from modshelf.storage.repository import RepositoryStateStore
from modshelf.utils.naming import has_disable_prefix

from .conftest import make_zip


def names(directory: Path) -> list[str]:
    return sorted(p.name for p in directory.iterdir())


@pytest.fixture
def alice(mods_root: Path) -> Path:
    path = mods_root / "Alice"
    path.mkdir()
    return path


# --- Characters ---


def test_listing_without_root_is_empty(inspector) -> None:
    store = RepositoryStateStore(None, inspector)
    assert asyncio.run(store.list_characters()) == []
    assert asyncio.run(store.list_mods("Alice")) == []
    with pytest.raises(NotConfigured):
        asyncio.run(store.find_character("Alice"))


def test_characters_are_deduplicated_preferring_enabled(
    store: RepositoryStateStore, mods_root: Path
) -> None:
    for name in ("DISABLED_alice", "Alice", "bob", "Zed__tmp__123"):
        (mods_root / name).mkdir()
    (mods_root / "notes.txt").write_text("x")

    characters = asyncio.run(store.list_characters())

    assert [c.name for c in characters] == ["Alice", "bob"]
    assert characters[0].enabled


def test_find_character_accepts_prefixed_and_any_case(
    store: RepositoryStateStore, mods_root: Path
) -> None:
    (mods_root / "DISABLED_Bob").mkdir()
    assert asyncio.run(store.find_character("bob")).backing_name == "DISABLED_Bob"
    assert asyncio.run(store.find_character("disabled_BOB")).backing_name == "DISABLED_Bob"
    with pytest.raises(ModNotFound):
        asyncio.run(store.find_character("Carol"))


def test_add_character_rejects_duplicates_and_bad_names(
    store: RepositoryStateStore, mods_root: Path
) -> None:
    (mods_root / "DISABLED_Alice").mkdir()
    with pytest.raises(TargetExists):
        asyncio.run(store.add_character("alice"))
    with pytest.raises(InvalidName):
        asyncio.run(store.add_character("bad/name"))
    created = asyncio.run(store.add_character("  Bob "))
    assert created.path == mods_root / "Bob"


def test_rename_character_keeps_prefix(store: RepositoryStateStore, mods_root: Path) -> None:
    (mods_root / "DISABLED_Alice").mkdir()
    outcome = asyncio.run(store.rename_character("Alice", "Alicia"))
    assert outcome.changed
    assert names(mods_root) == ["DISABLED_Alicia"]


def test_rename_character_case_only(store: RepositoryStateStore, mods_root: Path) -> None:
    (mods_root / "Foo").mkdir()
    (mods_root / "Foo" / "keep.txt").write_text("x")

    outcome = asyncio.run(store.rename_character("Foo", "FOO"))

    assert outcome.changed
    assert names(mods_root) == ["FOO"]
    assert (mods_root / "FOO" / "keep.txt").is_file()


def test_rename_character_onto_existing_fails(
    store: RepositoryStateStore, mods_root: Path
) -> None:
    (mods_root / "Alice").mkdir()
    (mods_root / "DISABLED_Bob").mkdir()
    with pytest.raises(TargetExists):
        asyncio.run(store.rename_character("Alice", "bob"))
    assert names(mods_root) == ["Alice", "DISABLED_Bob"]


def test_normalize_names(store: RepositoryStateStore, mods_root: Path) -> None:
    for name in ("soldier 11", "DISABLED_hu tao", "Ready"):
        (mods_root / name).mkdir()

    report = asyncio.run(store.normalize_names())

    assert sorted(report.changed) == [
        ("DISABLED_hu tao", "DISABLED_Hu tao"),
        ("soldier 11", "Soldier 11"),
    ]
    assert report.skipped == []
    assert names(mods_root) == ["DISABLED_Hu tao", "Ready", "Soldier 11"]


def test_normalize_skips_collisions_and_keeps_both(
    store: RepositoryStateStore, mods_root: Path
) -> None:
    (mods_root / "Alice").mkdir()
    (mods_root / "alice").mkdir()
    (mods_root / "alice" / "mine.txt").write_text("x")

    report = asyncio.run(store.normalize_names())

    assert report.changed == []
    assert report.skipped == ["alice"]
    assert names(mods_root) == ["Alice", "alice"]
    assert (mods_root / "alice" / "mine.txt").is_file()


def test_normalize_requires_root(inspector) -> None:
    with pytest.raises(NotConfigured):
        asyncio.run(RepositoryStateStore(None, inspector).normalize_names())


# --- Mods ---


def test_list_mods_folder_wins_and_enabled_first(
    store: RepositoryStateStore, alice: Path
) -> None:
    (alice / "x").mkdir()
    make_zip(alice / "x.zip", {"a": b"1"})
    make_zip(alice / "DISABLED_a.7z", {"a": b"1"})
    make_zip(alice / "b.rar", {"a": b"1"})
    (alice / "readme.txt").write_text("ignored")

    mods = asyncio.run(store.list_mods("Alice"))

    assert [(m.name, m.kind, m.enabled) for m in mods] == [
        ("b", "archive", True),
        ("x", "folder", True),
        ("a", "archive", False),
    ]


def test_enable_disable_flat_archive_is_idempotent(
    store: RepositoryStateStore, alice: Path
) -> None:
    make_zip(alice / "x.zip", {"a": b"1"})

    async def scenario():
        mod = await store.find_mod("Alice", "x")
        first = await store.disable(mod)
        disabled = await store.find_mod("Alice", "x")
        second = await store.disable(disabled)
        back = await store.enable(disabled)
        return first, second, back

    first, second, back = asyncio.run(scenario())

    assert (first.before, first.after, first.changed) == ("x.zip", "DISABLED_x.zip", True)
    assert not second.changed
    assert back.after == "x.zip"
    assert names(alice) == ["x.zip"]


def test_enable_disambiguates_before_extension(
    store: RepositoryStateStore, alice: Path
) -> None:
    make_zip(alice / "x.zip", {"a": b"1"})
    make_zip(alice / "DISABLED_x.zip", {"a": b"2"})
    hidden = FlatArchiveMod("Alice", alice / "DISABLED_x.zip")

    outcome = asyncio.run(store.enable(hidden))

    assert outcome.after == "x (2).zip"
    assert names(alice) == ["x (2).zip", "x.zip"]


def test_folder_toggle_mirrors_state_into_details(
    store: RepositoryStateStore, alice: Path
) -> None:
    (alice / "Outfit").mkdir()

    async def scenario():
        return await store.disable(await store.find_mod("Alice", "Outfit"))

    outcome = asyncio.run(scenario())
    details = json.loads((alice / "DISABLED_Outfit" / "mod.json").read_text("utf-8"))

    assert outcome.after == "DISABLED_Outfit"
    assert details["enabled"] is False
    assert "updatedAt" in details


def test_state_always_follows_the_backing_name(
    store: RepositoryStateStore, alice: Path
) -> None:
    (alice / "Outfit").mkdir()
    (alice / "Outfit" / "mod.json").write_text('{"enabled": false}', encoding="utf-8")

    mods = asyncio.run(store.list_mods("Alice"))

    assert all(m.enabled == (not has_disable_prefix(m.backing_name)) for m in mods)
    assert mods[0].enabled


def test_exclusive_activate(store: RepositoryStateStore, alice: Path) -> None:
    make_zip(alice / "a.zip", {"a": b"1"})
    make_zip(alice / "DISABLED_b.zip", {"a": b"1"})
    (alice / "c").mkdir()

    report = asyncio.run(store.exclusive_activate("Alice", "B"))

    assert report.enabled == "b.zip"
    assert report.disabled == ["a", "c"]
    assert not report.is_partial
    assert names(alice) == ["DISABLED_a.zip", "DISABLED_c", "b.zip"]


def test_exclusive_activate_disables_shadowed_archive(
    store: RepositoryStateStore, alice: Path
) -> None:
    (alice / "x").mkdir()
    make_zip(alice / "x.zip", {"a": b"1"})
    (alice / "DISABLED_y").mkdir()

    report = asyncio.run(store.exclusive_activate("Alice", "y"))

    assert report.enabled == "y"
    assert report.disabled == ["x", "x"]
    assert names(alice) == ["DISABLED_x", "DISABLED_x.zip", "y"]


def test_exclusive_activate_continues_past_failing_sibling(
    store: RepositoryStateStore, alice: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    make_zip(alice / "a.zip", {"a": b"1"})
    (alice / "b").mkdir()
    make_zip(alice / "c.zip", {"a": b"1"})
    (alice / "DISABLED_target").mkdir()

    real_rename = Path.rename

    def rename(self, target):
        if self.name == "b":
            raise PermissionError("folder is locked")
        return real_rename(self, target)

    monkeypatch.setattr(Path, "rename", rename)
    report = asyncio.run(store.exclusive_activate("Alice", "target"))

    assert report.is_partial
    assert [name for name, _ in report.failed] == ["b"]
    assert "locked" in report.failed[0][1]
    assert report.disabled == ["a", "c"]
    assert report.enabled == "target"
    assert names(alice) == ["DISABLED_a.zip", "DISABLED_c.zip", "b", "target"]

def test_exclusive_activate_unknown_target(store: RepositoryStateStore, alice: Path) -> None:
    make_zip(alice / "a.zip", {"a": b"1"})
    with pytest.raises(ModNotFound):
        asyncio.run(store.exclusive_activate("Alice", "nope"))
    assert names(alice) == ["a.zip"]


def test_rename_mod_keeps_extension_and_prefix(
    store: RepositoryStateStore, alice: Path
) -> None:
    make_zip(alice / "DISABLED_old.7z", {"a": b"1"})
    outcome = asyncio.run(store.rename_mod("Alice", "old", "new.zip"))
    assert outcome.after == "DISABLED_new.7z"


def test_rename_mod_case_only_and_collision(store: RepositoryStateStore, alice: Path) -> None:
    (alice / "Foo").mkdir()
    make_zip(alice / "DISABLED_bar.zip", {"a": b"1"})

    assert asyncio.run(store.rename_mod("Alice", "Foo", "FOO")).changed
    with pytest.raises(TargetExists):
        asyncio.run(store.rename_mod("Alice", "FOO", "Bar"))
    assert names(alice) == ["DISABLED_bar.zip", "FOO"]


def test_convert_flat_to_folder_flattens_single_container(
    store: RepositoryStateStore, alice: Path
) -> None:
    make_zip(
        alice / "DISABLED_x.zip",
        {"x/": None, "x/CharacterMod/a.ini": b"1", "x/preview.png": b"p"},
    )

    async def scenario():
        return await store.convert_flat_to_folder(await store.find_mod("Alice", "x"))

    folder = asyncio.run(scenario())

    assert isinstance(folder, FolderMod)
    assert folder.backing_name == "DISABLED_x"
    assert names(alice) == ["DISABLED_x"]
    assert names(alice / "DISABLED_x") == ["CharacterMod", "mod.json", "preview.png"]


def test_convert_disambiguates_existing_folder(store: RepositoryStateStore, alice: Path) -> None:
    make_zip(alice / "x.zip", {"a.ini": b"1"})
    (alice / "DISABLED_x").mkdir()

    folder = asyncio.run(store.convert_flat_to_folder(FlatArchiveMod("Alice", alice / "x.zip")))

    assert folder.backing_name == "x (2)"
    assert names(alice) == ["DISABLED_x", "x (2)"]
    assert (alice / "x (2)" / "a.ini").is_file()


def test_convert_failure_cleans_up(store: RepositoryStateStore, alice: Path) -> None:
    (alice / "broken.zip").write_bytes(b"not an archive")
    with pytest.raises(ArchiveReadError):
        asyncio.run(store.convert_flat_to_folder(FlatArchiveMod("Alice", alice / "broken.zip")))
    assert names(alice) == ["broken.zip"]


def test_import_archive_disambiguates(
    store: RepositoryStateStore, alice: Path, tmp_path: Path
) -> None:
    (alice / "DISABLED_pack").mkdir()
    source = make_zip(tmp_path / "downloads" / "pack.zip", {"Mod/": None, "Mod/a.ini": b"1"})

    flat = asyncio.run(store.import_archive("Alice", source))
    folder = asyncio.run(
        store.import_archive(
            "Alice", source, extract=True, details={"page_url": "https://example.org/pack"}
        )
    )

    assert flat.backing_name == "pack (2).zip"
    assert folder.backing_name == "pack (3)"
    assert names(alice / "pack (3)") == ["a.ini", "mod.json"]
    details = json.loads((alice / "pack (3)" / "mod.json").read_text("utf-8"))
    assert details["pageUrl"] == "https://example.org/pack"
    assert source.is_file()


def test_save_details_merges_fields(store: RepositoryStateStore, alice: Path) -> None:
    (alice / "Outfit").mkdir()
    make_zip(alice / "flat.zip", {"a": b"1"})

    async def scenario():
        mod = await store.find_mod("Alice", "Outfit")
        await store.save_details(mod, version="1.0", author="Someone")
        merged = await store.save_details(mod, update_url="https://example.org/u.zip")
        flat = await store.save_details(await store.find_mod("Alice", "flat"), version="2")
        return merged, flat

    merged, flat = asyncio.run(scenario())

    assert merged.version == "1.0"
    assert merged.author == "Someone"
    assert merged.update_url == "https://example.org/u.zip"
    assert merged.enabled is True
    assert flat is None


def test_delete_mod(store: RepositoryStateStore, alice: Path) -> None:
    make_zip(alice / "x.zip", {"a": b"1"})
    (alice / "x.preview.png").write_bytes(b"p")
    (alice / "Folder").mkdir()

    async def scenario():
        await store.delete_mod(await store.find_mod("Alice", "x"))
        await store.delete_mod(await store.find_mod("Alice", "folder"))

    asyncio.run(scenario())
    assert names(alice) == []


def test_reconcile_restores_interrupted_renames(
    store: RepositoryStateStore, mods_root: Path, alice: Path
) -> None:
    (mods_root / "Foo__tmp__1700000000000").mkdir()
    (mods_root / "Bar").mkdir()
    (mods_root / "Bar__tmp__1700000000001").mkdir()
    make_zip(alice / "x.zip__tmp__42", {"a": b"1"})
    make_zip(mods_root / "Foo__tmp__1700000000000" / "y.zip__tmp__7", {"a": b"1"})

    report = asyncio.run(store.reconcile_temporaries())

    assert sorted(report.restored) == [
        ("Alice/x.zip__tmp__42", "Alice/x.zip"),
        ("Foo/y.zip__tmp__7", "Foo/y.zip"),
        ("Foo__tmp__1700000000000", "Foo"),
    ]
    assert report.skipped == ["Bar__tmp__1700000000001"]
    assert (mods_root / "Foo").is_dir()
    assert (alice / "x.zip").is_file()
