"""
Owns every on-disk mutation of the mods repository.

Characters are directories under the mods root; mods are directories or flat
archives under a character. Activation state lives only in the backing name
(see ``modshelf.utils.naming``). Filesystem work runs in worker threads, one
operation at a time, guarded by a single lock. Interference from other
processes during a multi-step rename is not defended against.
"""

import asyncio
import json
import logging
import shutil
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import Any

from modshelf.archive.inspector import ArchiveInspector, load_details_sync
from modshelf.exceptions import (
    ArchiveReadError,
    InvalidName,
    ModNotFound,
    ModShelfError,
    NotConfigured,
    TargetExists,
)
from modshelf.models.mods import (
    Character,
    FlatArchiveMod,
    FolderMod,
    ModDetails,
    ModEntry,
    sort_mods,
)
from modshelf.models.reports import (
    ActivationReport,
    NormalizeReport,
    ReconcileReport,
    RenameOutcome,
)
from modshelf.utils.naming import (
    DETAILS_FILE,
    IMAGE_EXTENSIONS,
    ModState,
    canonicalize,
    display_name,
    is_archive_name,
    is_temporary_name,
    name_key,
    original_from_temporary,
    split_archive_name,
    strip_disable_prefix,
    with_state,
)
from modshelf.utils.path import (
    first_free_path,
    flatten_single_container,
    remove_path,
    safe_rename,
    validate_name,
)

log = logging.getLogger(__name__)

DETAIL_FIELDS = ("version", "author", "description", "page_url", "update_url", "image")


def _prefer_enabled(best: dict[str, Any], item: Any) -> None:
    """Keeps one item per display key, preferring the non-disabled variant."""
    current = best.get(item.key)
    if current is None or (not current.enabled and item.enabled):
        best[item.key] = item


def _write_details_sync(folder: Path, details: ModDetails) -> None:
    (folder / DETAILS_FILE).write_text(
        json.dumps(details.to_dict(), indent=2), encoding="utf-8"
    )


def _clean_display(name: str) -> str:
    """Validates a requested display name and drops a stray disable prefix."""
    cleaned = strip_disable_prefix(validate_name(name))
    if not cleaned.strip():
        raise InvalidName(f"'{name}' does not contain a usable name.")
    return cleaned


class RepositoryStateStore:
    """Characters and mods as filesystem objects."""

    def __init__(self, mods_root: Path | None, inspector: ArchiveInspector):
        self.mods_root = mods_root
        self.inspector = inspector
        self._lock = asyncio.Lock()

    async def _run_locked(self, func: Callable, *args):
        """Runs a synchronous filesystem operation under the store lock."""
        async with self._lock:
            return await asyncio.to_thread(func, *args)

    @property
    def configured(self) -> bool:
        return self.mods_root is not None and self.mods_root.is_dir()

    def _root(self) -> Path:
        if self.mods_root is None:
            raise NotConfigured(
                "Mods root is not set. Run 'modshelf config set-mods-root <PATH>'."
            )
        if not self.mods_root.is_dir():
            raise NotConfigured(f"Mods root '{self.mods_root}' does not exist.")
        return self.mods_root

    # --- Characters ---

    def _scan_characters_sync(self) -> list[Character]:
        best: dict[str, Character] = {}
        for entry in sorted(self._root().iterdir(), key=lambda p: p.name):
            if entry.is_dir() and not is_temporary_name(entry.name):
                _prefer_enabled(best, Character(entry))
        return sorted(best.values(), key=lambda c: (c.key, c.backing_name))

    def _find_character_sync(self, name: str) -> Character:
        key = name_key(display_name(name.strip()))
        for character in self._scan_characters_sync():
            if character.key == key:
                return character
        raise ModNotFound(f"Character '{name}' not found.")

    async def list_characters(self) -> list[Character]:
        """Lists characters; an unset or missing root yields an empty list."""
        if not self.configured:
            return []
        return await asyncio.to_thread(self._scan_characters_sync)

    async def find_character(self, name: str) -> Character:
        return await asyncio.to_thread(self._find_character_sync, name)

    def _add_character_sync(self, name: str) -> Character:
        name = _clean_display(name)
        if any(c.key == name_key(name) for c in self._scan_characters_sync()):
            raise TargetExists(f"Character '{name}' already exists.")
        path = self._root() / name
        path.mkdir()
        log.info(f"Created character '{name}'.")
        return Character(path)

    async def add_character(self, name: str) -> Character:
        return await self._run_locked(self._add_character_sync, name)

    def _rename_character_sync(self, old: str, new: str) -> RenameOutcome:
        root = self._root()
        new = _clean_display(new)
        character = self._find_character_sync(old)
        target = with_state(new, character.state)
        if target == character.backing_name:
            return RenameOutcome(character.backing_name, target, False)

        if name_key(new) != character.key:
            occupied = any(
                c.key == name_key(new) for c in self._scan_characters_sync()
            ) or any((root / with_state(new, s)).exists() for s in ModState)
            if occupied:
                raise TargetExists(f"Character '{new}' already exists.")

        safe_rename(character.path, root / target)
        log.info(f"Renamed character '{character.backing_name}' → '{target}'.")
        return RenameOutcome(character.backing_name, target, True)

    async def rename_character(self, old: str, new: str) -> RenameOutcome:
        """
        Renames a character, keeping its disable prefix. Case-only renames go
        through a temporary name; any other occupied target raises TargetExists.
        """
        return await self._run_locked(self._rename_character_sync, old, new)

    def _delete_character_sync(self, name: str) -> Path:
        character = self._find_character_sync(name)
        shutil.rmtree(character.path)
        log.info(f"Deleted character folder '{character.backing_name}'.")
        return character.path

    async def delete_character(self, name: str) -> Path:
        return await self._run_locked(self._delete_character_sync, name)

    def _normalize_names_sync(self) -> NormalizeReport:
        root = self._root()
        report = NormalizeReport()
        names = sorted(
            p.name
            for p in root.iterdir()
            if p.is_dir() and not is_temporary_name(p.name)
        )
        live = set(names)

        for name in names:
            display = strip_disable_prefix(name)
            prefix = name[: len(name) - len(display)]
            target = prefix + canonicalize(display)
            if target == name:
                continue
            collides = any(
                other != name and other.casefold() == target.casefold()
                for other in live
            )
            if collides:
                log.warning(f"Skipping '{name}': '{target}' already exists.")
                report.skipped.append(name)
                continue
            try:
                safe_rename(root / name, root / target)
            except (OSError, ModShelfError) as e:
                log.warning(f"Could not rename '{name}' → '{target}': {e}")
                report.skipped.append(name)
                continue
            live.discard(name)
            live.add(target)
            report.changed.append((name, target))

        log.info(
            f"Normalized {len(report.changed)} character name(s), "
            f"skipped {len(report.skipped)}."
        )
        return report

    async def normalize_names(self) -> NormalizeReport:
        """
        Canonicalizes every character's display name. Individual failures are
        reported as skipped; only an unavailable root raises.
        """
        return await self._run_locked(self._normalize_names_sync)

    # --- Mods ---

    def _mod_entries_sync(self, character: Character) -> list[ModEntry]:
        """Every mod-like entry of a character, shadowed duplicates included."""
        entries: list[ModEntry] = []
        for entry in sorted(character.path.iterdir(), key=lambda p: p.name):
            if is_temporary_name(entry.name):
                continue
            if entry.is_dir():
                entries.append(FolderMod(character.name, entry))
            elif entry.is_file() and is_archive_name(entry.name):
                entries.append(FlatArchiveMod(character.name, entry))
        return entries

    def _scan_mods_sync(self, character: Character) -> list[ModEntry]:
        folders: dict[str, FolderMod] = {}
        archives: dict[str, FlatArchiveMod] = {}
        for mod in self._mod_entries_sync(character):
            if isinstance(mod, FolderMod):
                _prefer_enabled(folders, mod)
            else:
                _prefer_enabled(archives, mod)
        mods: list[ModEntry] = list(folders.values())
        mods.extend(m for key, m in archives.items() if key not in folders)
        return sort_mods(mods)

    def _list_mods_sync(self, character_name: str) -> list[ModEntry]:
        return self._scan_mods_sync(self._find_character_sync(character_name))

    def _find_mod_sync(self, character_name: str, mod_name: str) -> ModEntry:
        mod_name = mod_name.strip()
        key = name_key(display_name(mod_name, is_archive=is_archive_name(mod_name)))
        for mod in self._list_mods_sync(character_name):
            if mod.key == key:
                return mod
        raise ModNotFound(f"Mod '{mod_name}' not found for '{character_name}'.")

    async def list_mods(self, character_name: str) -> list[ModEntry]:
        """
        Lists a character's mods, enabled first. A folder and an archive with the
        same display name collapse into the folder.
        """
        if not self.configured:
            return []
        return await asyncio.to_thread(self._list_mods_sync, character_name)

    async def find_mod(self, character_name: str, mod_name: str) -> ModEntry:
        return await asyncio.to_thread(self._find_mod_sync, character_name, mod_name)

    def _taken_keys_sync(self, directory: Path) -> set[str]:
        """Display keys of every mod-like entry, across both states."""
        keys = set()
        for entry in directory.iterdir():
            if entry.is_dir():
                keys.add(name_key(display_name(entry.name)))
            elif is_archive_name(entry.name):
                keys.add(name_key(display_name(entry.name, is_archive=True)))
        return keys

    def _mirror_enabled_sync(self, folder: Path, enabled: bool) -> None:
        """Copies the activation state into mod.json for diagnostics only."""
        try:
            details = load_details_sync(folder) or ModDetails(
                name=display_name(folder.name),
                created_at=datetime.now().isoformat(),
            )
            details.enabled = enabled
            details.updated_at = datetime.now().isoformat()
            _write_details_sync(folder, details)
        except OSError as e:
            log.debug(f"Could not mirror state into '{folder / DETAILS_FILE}': {e}")

    def _set_state_sync(self, mod: ModEntry, state: ModState) -> RenameOutcome:
        before = mod.backing_name
        if mod.state is state:
            return RenameOutcome(before, before, False)

        target = with_state(before, state)
        if isinstance(mod, FlatArchiveMod):
            stem, suffix = split_archive_name(target)
        elif isinstance(mod, FolderMod):
            stem, suffix = target, ""
        else:
            raise TypeError(f"Unsupported mod type: {type(mod).__name__}")

        dest = first_free_path(mod.path.parent, stem, suffix)
        mod.path.rename(dest)
        if isinstance(mod, FolderMod):
            self._mirror_enabled_sync(dest, state is ModState.ENABLED)
        log.info(f"{state.value.capitalize()} '{mod.name}': '{before}' → '{dest.name}'.")
        return RenameOutcome(before, dest.name, True)

    async def enable(self, mod: ModEntry) -> RenameOutcome:
        """Strips the disable prefix. Enabling an enabled mod is a no-op."""
        return await self._run_locked(self._set_state_sync, mod, ModState.ENABLED)

    async def disable(self, mod: ModEntry) -> RenameOutcome:
        """Adds the disable prefix. Disabling a disabled mod is a no-op."""
        return await self._run_locked(self._set_state_sync, mod, ModState.DISABLED)

    def _exclusive_activate_sync(
        self, character_name: str, target_name: str
    ) -> ActivationReport:
        character = self._find_character_sync(character_name)
        target = self._find_mod_sync(character_name, target_name)
        report = ActivationReport(target=target.name)
        # Entries hidden from listings by a same-named folder are siblings too.
        siblings = [
            m for m in self._mod_entries_sync(character) if m.path != target.path
        ]
        for mod in siblings:
            try:
                outcome = self._set_state_sync(mod, ModState.DISABLED)
            except (OSError, ModShelfError) as e:
                log.warning(f"Could not disable '{mod.name}': {e}")
                report.failed.append((mod.name, str(e)))
                continue
            if outcome.changed:
                report.disabled.append(mod.name)
        try:
            report.enabled = self._set_state_sync(target, ModState.ENABLED).after
        except (OSError, ModShelfError) as e:
            log.warning(f"Could not enable '{target.name}': {e}")
            report.failed.append((target.name, str(e)))
        return report

    async def exclusive_activate(
        self, character_name: str, target_name: str
    ) -> ActivationReport:
        """
        Disables every sibling and enables only ``target_name``. Per-mod failures
        are logged and collected in the report instead of aborting the batch.
        """
        return await self._run_locked(
            self._exclusive_activate_sync, character_name, target_name
        )

    def _rename_mod_sync(self, character_name: str, old: str, new: str) -> RenameOutcome:
        mod = self._find_mod_sync(character_name, old)
        new = _clean_display(new)
        if isinstance(mod, FlatArchiveMod):
            if is_archive_name(new):
                new = split_archive_name(new)[0]
            target = f"{with_state(new, mod.state)}{mod.extension}"
        elif isinstance(mod, FolderMod):
            target = with_state(new, mod.state)
        else:
            raise TypeError(f"Unsupported mod type: {type(mod).__name__}")

        if target == mod.backing_name:
            return RenameOutcome(mod.backing_name, target, False)
        if name_key(new) != mod.key and name_key(new) in self._taken_keys_sync(
            mod.path.parent
        ):
            raise TargetExists(f"A mod named '{new}' already exists.")

        safe_rename(mod.path, mod.path.parent / target)
        log.info(f"Renamed mod '{mod.backing_name}' → '{target}'.")
        return RenameOutcome(mod.backing_name, target, True)

    async def rename_mod(self, character_name: str, old: str, new: str) -> RenameOutcome:
        return await self._run_locked(self._rename_mod_sync, character_name, old, new)

    async def _materialize(self, archive: Path, dest: Path) -> None:
        """Extracts ``archive`` into the new directory ``dest`` and flattens it."""
        await asyncio.to_thread(dest.mkdir)
        try:
            if not await self.inspector.backend.extract(archive, dest):
                raise ArchiveReadError(f"Could not extract '{archive.name}'.")
            await asyncio.to_thread(flatten_single_container, dest)
        except (OSError, ModShelfError):
            await asyncio.to_thread(shutil.rmtree, dest, True)
            raise

    async def convert_flat_to_folder(self, mod: ModEntry) -> FolderMod:
        """
        Extracts a flat archive mod into a folder mod with the same backing stem
        (the disable prefix is kept) and removes the archive. When a folder with
        that display name exists in either state, the new folder gets a " (n)"
        suffix.
        """
        if isinstance(mod, FolderMod):
            return mod
        if not isinstance(mod, FlatArchiveMod):
            raise TypeError(f"Unsupported mod type: {type(mod).__name__}")

        async with self._lock:
            parent = mod.path.parent
            stem = split_archive_name(mod.backing_name)[0]

            def folder_keys() -> set[str]:
                return {
                    name_key(display_name(p.name)) for p in parent.iterdir() if p.is_dir()
                }

            taken = await asyncio.to_thread(folder_keys)
            dest = await asyncio.to_thread(
                first_free_path,
                parent,
                stem,
                "",
                lambda candidate: name_key(display_name(candidate)) in taken,
            )
            await self._materialize(mod.path, dest)
            await asyncio.to_thread(mod.path.unlink)
            await asyncio.to_thread(self._mirror_enabled_sync, dest, mod.enabled)
        log.info(f"Converted '{mod.backing_name}' into folder '{dest.name}'.")
        return FolderMod(mod.character, dest)

    async def import_archive(
        self,
        character_name: str,
        archive: Path,
        extract: bool = False,
        name: str | None = None,
        details: dict[str, str] | None = None,
    ) -> ModEntry:
        """
        Adds an archive to a character, either copied in as a flat mod or
        extracted into a folder mod. The mod name gets a " (n)" suffix when taken.
        """
        archive = Path(archive)
        if not archive.is_file():
            raise ModNotFound(f"Archive '{archive}' not found.")
        if not is_archive_name(archive.name):
            raise InvalidName(f"'{archive.name}' is not a .zip, .7z or .rar archive.")

        character = await self.find_character(character_name)
        stem, ext = split_archive_name(archive.name)
        base = _clean_display(name) if name else strip_disable_prefix(stem)

        async with self._lock:
            taken = await asyncio.to_thread(self._taken_keys_sync, character.path)
            suffix = "" if extract else ext.lower()

            def is_taken(candidate: str) -> bool:
                return name_key(display_name(candidate, is_archive=not extract)) in taken

            dest = first_free_path(character.path, base, suffix, is_taken)
            if not extract:
                await asyncio.to_thread(shutil.copy2, archive, dest)
                log.info(f"Imported '{archive.name}' as '{dest.name}'.")
                return FlatArchiveMod(character.name, dest)

            await self._materialize(archive, dest)
            record = ModDetails(
                name=dest.name,
                enabled=True,
                created_at=datetime.now().isoformat(),
                updated_at=datetime.now().isoformat(),
            )
            for field_name, value in (details or {}).items():
                if field_name in DETAIL_FIELDS and value:
                    setattr(record, field_name, value)
            await asyncio.to_thread(_write_details_sync, dest, record)
        log.info(f"Extracted '{archive.name}' into '{dest.name}'.")
        return FolderMod(character.name, dest)

    def _delete_mod_sync(self, mod: ModEntry) -> None:
        if isinstance(mod, FolderMod):
            remove_path(mod.path)
        elif isinstance(mod, FlatArchiveMod):
            mod.path.unlink()
            # Older releases kept the preview next to the archive.
            for ext in IMAGE_EXTENSIONS:
                sidecar = mod.path.parent / f"{mod.name}.preview{ext}"
                if sidecar.is_file():
                    sidecar.unlink()
        else:
            raise TypeError(f"Unsupported mod type: {type(mod).__name__}")
        log.info(f"Deleted mod '{mod.backing_name}'.")

    async def delete_mod(self, mod: ModEntry) -> None:
        await self._run_locked(self._delete_mod_sync, mod)

    def _save_details_sync(self, mod: ModEntry, fields: dict[str, Any]) -> ModDetails | None:
        if isinstance(mod, FlatArchiveMod):
            log.debug(f"'{mod.backing_name}' is an archive; no details file kept.")
            return None
        if not isinstance(mod, FolderMod):
            raise TypeError(f"Unsupported mod type: {type(mod).__name__}")

        now = datetime.now().isoformat()
        details = load_details_sync(mod.path) or ModDetails(name=mod.name, created_at=now)
        for field_name, value in fields.items():
            if field_name not in DETAIL_FIELDS:
                raise ValueError(f"Unknown detail field '{field_name}'.")
            if value is not None:
                setattr(details, field_name, value or None)
        details.enabled = mod.enabled
        details.created_at = details.created_at or now
        details.updated_at = now
        _write_details_sync(mod.path, details)
        return details

    async def save_details(self, mod: ModEntry, **fields: Any) -> ModDetails | None:
        """
        Merges descriptive fields (version, author, description, page_url,
        update_url, image) into a folder mod's mod.json. Flat mods keep none.
        """
        return await self._run_locked(self._save_details_sync, mod, fields)

    async def update_from_archive(self, mod: ModEntry, archive: Path) -> None:
        """Extracts a downloaded update over an existing folder mod."""
        if not isinstance(mod, FolderMod):
            raise ModShelfError(
                f"'{mod.name}' is not a folder mod; convert it before updating."
            )
        async with self._lock:
            if not await self.inspector.backend.extract(archive, mod.path):
                raise ArchiveReadError(f"Could not extract update for '{mod.name}'.")
        await self.save_details(mod)
        log.info(f"Updated '{mod.name}' from downloaded archive.")

    # --- Startup reconciliation ---

    def _restore_in_sync(self, directory: Path, report: ReconcileReport) -> None:
        root = self._root()
        for entry in list(directory.iterdir()):
            original = original_from_temporary(entry.name)
            if original is None:
                continue
            dest = entry.with_name(original)
            if dest.exists():
                log.warning(f"Cannot restore '{entry.name}': '{original}' exists.")
                report.skipped.append(str(entry.relative_to(root)))
                continue
            entry.rename(dest)
            report.restored.append(
                (str(entry.relative_to(root)), str(dest.relative_to(root)))
            )

    def _reconcile_sync(self) -> ReconcileReport:
        root = self._root()
        report = ReconcileReport()
        # Character names first, so restored characters are scanned as well.
        self._restore_in_sync(root, report)
        for directory in root.iterdir():
            if directory.is_dir() and not is_temporary_name(directory.name):
                self._restore_in_sync(directory, report)
        if report.restored:
            log.info(f"Restored {len(report.restored)} interrupted rename(s).")
        return report

    async def reconcile_temporaries(self) -> ReconcileReport:
        """
        Restores entries left under a temporary name by an interrupted two-phase
        rename. An entry whose original name is occupied again is left alone and
        reported.
        """
        return await self._run_locked(self._reconcile_sync)
