"""
Inspects mods without unpacking them: archive listings, the primary entry, the
embedded ``data.txt`` metadata record and the embedded preview picture.

Folder mods are served with direct file access and never reach the archive
backend; only flat archive mods shell out to 7-Zip.
"""

import asyncio
import json
import logging
import os
import re
from pathlib import Path

import aiofiles

from modshelf.archive.backend import SevenZipBackend
from modshelf.exceptions import ArchiveReadError, ArchiveWriteError, ParseError
from modshelf.models.mods import (
    ArchiveEntryRecord,
    EmbeddedMetadata,
    FlatArchiveMod,
    FolderMod,
    ModDetails,
    ModEntry,
    PreviewImage,
)
from modshelf.models.reports import RenameOutcome
from modshelf.utils.naming import (
    DETAILS_FILE,
    LEGACY_METADATA_FILE,
    LEGACY_PREVIEW_STEM,
    METADATA_FILE,
    PREVIEW_STEM,
    guess_mime,
    is_reserved_entry,
    normalize_image_extension,
    preview_candidates,
)
from modshelf.utils.path import safe_rename, scratch_dir, validate_name

log = logging.getLogger(__name__)

LISTING_SEPARATOR = "----------"
_FOLDER_ATTR_RE = re.compile(r"\bD", re.IGNORECASE)


def parse_listing(output: str) -> list[ArchiveEntryRecord]:
    """
    Parses the output of ``7z l -slt`` into entry records.

    The listing starts with a block describing the archive itself; entries follow
    the ``----------`` separator, one ``Key = Value`` block per entry.

    Raises:
        ArchiveReadError: If the output does not look like a technical listing.
    """
    lines = output.splitlines()
    start = next(
        (i for i, line in enumerate(lines) if line.strip() == LISTING_SEPARATOR), None
    )
    if start is None:
        raise ArchiveReadError("Unrecognized archive listing output.")

    entries: list[ArchiveEntryRecord] = []
    block: dict[str, str] = {}

    def flush() -> None:
        path = block.get("Path", "")
        if path:
            folder_flag = block.get("Folder", "").lower() in ("+", "yes", "1")
            attributes = block.get("Attributes", "")
            size = block.get("Size", "")
            entries.append(
                ArchiveEntryRecord(
                    path=path,
                    is_container=folder_flag
                    or bool(_FOLDER_ATTR_RE.search(attributes)),
                    size=int(size) if size.isdigit() else None,
                    attributes=attributes,
                )
            )
        block.clear()

    for raw in lines[start + 1 :]:
        line = raw.strip()
        if not line:
            flush()
            continue
        key, sep, value = line.partition("=")
        if sep:
            block[key.strip()] = value.strip()
    flush()
    return entries


def _top_level(path: str) -> str:
    return re.split(r"[\\/]", path, maxsplit=1)[0]


def compute_primary(entries: list[ArchiveEntryRecord]) -> str | None:
    """
    Picks the top-level name that holds the mod's real payload.

    Reserved names (metadata, details, previews) are ignored. A container wins
    over a plain file; first-seen order breaks ties.
    """
    order: list[str] = []
    is_container: dict[str, bool] = {}
    for entry in entries:
        path = entry.path.strip()
        if not path or path in (".", "./"):
            continue
        top = _top_level(path)
        if not top or is_reserved_entry(top):
            continue
        if top not in is_container:
            order.append(top)
            is_container[top] = False
        # A deeper path means ``top`` has children.
        if entry.is_container or path.rstrip("\\/") != top:
            is_container[top] = True

    if not order:
        return None
    return next((name for name in order if is_container[name]), order[0])


def _folder_primary_sync(folder: Path) -> str | None:
    entries = sorted(
        (e for e in os.scandir(folder) if not is_reserved_entry(e.name)),
        key=lambda e: e.name,
    )
    if not entries:
        return None
    directory = next((e for e in entries if e.is_dir()), None)
    return (directory or entries[0]).name


def _find_image_sync(directory: Path, stems: tuple[str, ...]) -> Path | None:
    """Finds ``<stem>.<ext>`` case-insensitively, honoring stem and extension order."""
    try:
        present = {p.name.lower(): p for p in directory.iterdir() if p.is_file()}
    except OSError:
        return None
    for stem in stems:
        for candidate in preview_candidates(stem):
            if candidate in present:
                return present[candidate]
    return None


def load_details_sync(folder: Path) -> ModDetails | None:
    """Reads a folder mod's ``mod.json``; a missing or broken file yields None."""
    path = folder / DETAILS_FILE
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return None
    if not isinstance(data, dict):
        return None
    return ModDetails.from_dict(data, fallback_name=folder.name)


async def _read_text(path: Path) -> str:
    async with aiofiles.open(path, encoding="utf-8", errors="replace") as f:
        return await f.read()


async def _read_metadata_dir(directory: Path) -> EmbeddedMetadata | None:
    for name in (METADATA_FILE, LEGACY_METADATA_FILE):
        path = directory / name
        if not await asyncio.to_thread(path.is_file):
            continue
        try:
            return EmbeddedMetadata.from_text(await _read_text(path))
        except (OSError, ParseError) as e:
            log.debug(f"Ignoring unreadable metadata '{path}': {e}")
            return None
    return None


async def _read_image(path: Path) -> PreviewImage:
    async with aiofiles.open(path, "rb") as f:
        data = await f.read()
    return PreviewImage(name=path.name, mime=guess_mime(path.name), data=data)


def _unsupported(mod: object) -> TypeError:
    return TypeError(f"Unsupported mod type: {type(mod).__name__}")


class ArchiveInspector:
    """Stateless inspection of mods; every call works from a path."""

    def __init__(self, backend: SevenZipBackend):
        self.backend = backend

    # --- Archive-level operations ---

    async def list_entries(self, archive: Path) -> list[ArchiveEntryRecord]:
        return parse_listing(await self.backend.list(archive))

    async def primary_entry(self, archive: Path) -> str | None:
        return compute_primary(await self.list_entries(archive))

    async def read_embedded_metadata(self, archive: Path) -> EmbeddedMetadata | None:
        """
        Extracts the reserved metadata file into a scratch folder and decodes it.
        A failed extraction or undecodable content both mean "no metadata".
        """
        with scratch_dir("meta") as tmp:
            tmp_dir = Path(tmp)
            extracted = await self.backend.extract(
                archive, tmp_dir, (METADATA_FILE, LEGACY_METADATA_FILE)
            )
            if not extracted:
                return None
            return await _read_metadata_dir(tmp_dir)

    async def write_embedded_metadata(
        self, archive: Path, value: EmbeddedMetadata
    ) -> None:
        """Replaces the metadata record: delete old and legacy entries, then add."""
        for name in (LEGACY_METADATA_FILE, METADATA_FILE):
            if not await self.backend.delete(archive, name):
                log.debug(f"No '{name}' entry removed from '{archive.name}'.")
        with scratch_dir("meta_write") as tmp:
            tmp_dir = Path(tmp)
            async with aiofiles.open(tmp_dir / METADATA_FILE, "w", encoding="utf-8") as f:
                await f.write(value.to_json())
            if not await self.backend.add(archive, METADATA_FILE, cwd=tmp_dir):
                raise ArchiveWriteError(f"Could not write metadata into '{archive.name}'.")
        log.debug(f"Embedded metadata written into '{archive.name}'.")

    async def rename_primary_entry(self, archive: Path, new_name: str) -> RenameOutcome:
        new_name = validate_name(new_name)
        current = await self.primary_entry(archive)
        if current is None or current == new_name:
            return RenameOutcome(current or "", new_name, False)
        if not await self.backend.rename_entry(archive, current, new_name):
            raise ArchiveWriteError(
                f"Could not rename '{current}' to '{new_name}' in '{archive.name}'."
            )
        log.info(f"Renamed '{current}' → '{new_name}' inside '{archive.name}'.")
        return RenameOutcome(current, new_name, True)

    async def read_embedded_preview(self, archive: Path) -> PreviewImage | None:
        with scratch_dir("preview") as tmp:
            tmp_dir = Path(tmp)
            if not await self.backend.extract(archive, tmp_dir, (f"{PREVIEW_STEM}.*",)):
                return None
            found = await asyncio.to_thread(_find_image_sync, tmp_dir, (PREVIEW_STEM,))
            return await _read_image(found) if found else None

    async def write_embedded_preview(self, archive: Path, data: bytes, ext: str) -> str:
        ext = normalize_image_extension(ext)
        entry_name = f"{PREVIEW_STEM}{ext}"
        await self.backend.delete(archive, f"{PREVIEW_STEM}.*")
        with scratch_dir("preview_write") as tmp:
            tmp_dir = Path(tmp)
            async with aiofiles.open(tmp_dir / entry_name, "wb") as f:
                await f.write(data)
            if not await self.backend.add(archive, entry_name, cwd=tmp_dir):
                raise ArchiveWriteError(f"Could not add preview to '{archive.name}'.")
        return entry_name

    # --- Mod-level dispatch ---

    async def primary_name(self, mod: ModEntry) -> str | None:
        if isinstance(mod, FolderMod):
            return await asyncio.to_thread(_folder_primary_sync, mod.path)
        if isinstance(mod, FlatArchiveMod):
            return await self.primary_entry(mod.path)
        raise _unsupported(mod)

    async def read_metadata(self, mod: ModEntry) -> EmbeddedMetadata | None:
        if isinstance(mod, FolderMod):
            return await _read_metadata_dir(mod.path)
        if isinstance(mod, FlatArchiveMod):
            return await self.read_embedded_metadata(mod.path)
        raise _unsupported(mod)

    async def write_metadata(self, mod: ModEntry, value: EmbeddedMetadata) -> None:
        if isinstance(mod, FolderMod):
            async with aiofiles.open(
                mod.path / METADATA_FILE, "w", encoding="utf-8"
            ) as f:
                await f.write(value.to_json())
            legacy = mod.path / LEGACY_METADATA_FILE
            if await asyncio.to_thread(legacy.is_file):
                await asyncio.to_thread(legacy.unlink)
            return
        if isinstance(mod, FlatArchiveMod):
            await self.write_embedded_metadata(mod.path, value)
            return
        raise _unsupported(mod)

    async def rename_primary(self, mod: ModEntry, new_name: str) -> RenameOutcome:
        if isinstance(mod, FolderMod):
            new_name = validate_name(new_name)
            current = await asyncio.to_thread(_folder_primary_sync, mod.path)
            if current is None or current == new_name:
                return RenameOutcome(current or "", new_name, False)
            await asyncio.to_thread(
                safe_rename, mod.path / current, mod.path / new_name
            )
            return RenameOutcome(current, new_name, True)
        if isinstance(mod, FlatArchiveMod):
            return await self.rename_primary_entry(mod.path, new_name)
        raise _unsupported(mod)

    async def read_preview(self, mod: ModEntry) -> PreviewImage | None:
        if isinstance(mod, FolderMod):
            found = await asyncio.to_thread(
                _find_image_sync, mod.path, (PREVIEW_STEM, LEGACY_PREVIEW_STEM)
            )
            return await _read_image(found) if found else None
        if isinstance(mod, FlatArchiveMod):
            return await self.read_embedded_preview(mod.path)
        raise _unsupported(mod)

    async def write_preview(self, mod: ModEntry, data: bytes, ext: str) -> str:
        """Stores ``preview<ext>`` in the mod, replacing any earlier preview."""
        if isinstance(mod, FolderMod):
            ext = normalize_image_extension(ext)
            entry_name = f"{PREVIEW_STEM}{ext}"

            def _drop_old() -> None:
                for old in mod.path.iterdir():
                    if old.is_file() and old.name.lower() in preview_candidates():
                        old.unlink()

            await asyncio.to_thread(_drop_old)
            async with aiofiles.open(mod.path / entry_name, "wb") as f:
                await f.write(data)
            return entry_name
        if isinstance(mod, FlatArchiveMod):
            return await self.write_embedded_preview(mod.path, data, ext)
        raise _unsupported(mod)

    async def read_details(self, mod: ModEntry) -> ModDetails | None:
        if isinstance(mod, FolderMod):
            return await asyncio.to_thread(load_details_sync, mod.path)
        if isinstance(mod, FlatArchiveMod):
            return None
        raise _unsupported(mod)
