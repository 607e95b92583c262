"""
Character pictures kept under the assets root.

Layout: ``<assets root>/<Character>/<Character>.<ext>`` holds the picture and
``<Character>.txt`` holds ``{"url": ..., "crop": {...}}`` (older files hold the
bare source URL).
"""

import asyncio
import json
import logging
import shutil
from pathlib import Path
from typing import Any

import aiofiles

from modshelf.exceptions import NotConfigured
from modshelf.models.mods import CharacterInfo
from modshelf.utils.naming import IMAGE_EXTENSIONS, is_image_name, normalize_image_extension
from modshelf.utils.path import create_dir, safe_rename, validate_name

log = logging.getLogger(__name__)


def _pick_image_sync(directory: Path, preferred_stem: str) -> Path | None:
    """The ``<preferred_stem>.<ext>`` picture if present, else the first picture."""
    try:
        files = sorted(p for p in directory.iterdir() if p.is_file())
    except OSError:
        return None
    for path in files:
        if path.stem.casefold() == preferred_stem.casefold() and is_image_name(path.name):
            return path
    return next((p for p in files if is_image_name(p.name)), None)


def _parse_info(raw: str) -> tuple[str | None, dict[str, Any] | None]:
    text = raw.strip()
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return text or None, None
    if isinstance(data, dict):
        url = data.get("url")
        crop = data.get("crop")
        return (
            url.strip() or None if isinstance(url, str) else None,
            crop if isinstance(crop, dict) else None,
        )
    return text or None, None


class AssetStore:
    """Reads and writes character pictures and their source URLs."""

    def __init__(self, images_root: Path | None):
        self.images_root = images_root

    def _root(self) -> Path:
        if self.images_root is None:
            raise NotConfigured(
                "Assets root is not set. Run 'modshelf config set-assets-root <PATH>'."
            )
        return self.images_root

    def character_dir(self, character: str) -> Path:
        return self._root() / validate_name(character)

    async def character_image(self, character: str) -> Path | None:
        if self.images_root is None:
            return None
        return await asyncio.to_thread(
            _pick_image_sync, self.images_root / character, character
        )

    async def character_info(self, character: str) -> CharacterInfo:
        """Picture path plus saved URL and crop; an unset root yields empty info."""
        if self.images_root is None:
            return CharacterInfo(name=character)
        image = await self.character_image(character)
        info_path = self.images_root / character / f"{character}.txt"
        url, crop = None, None
        if await asyncio.to_thread(info_path.is_file):
            try:
                async with aiofiles.open(info_path, encoding="utf-8") as f:
                    url, crop = _parse_info(await f.read())
            except OSError as e:
                log.debug(f"Could not read '{info_path}': {e}")
        return CharacterInfo(name=character, image_path=image, url=url, crop=crop)

    async def save_character_image(
        self,
        character: str,
        data: bytes,
        ext: str,
        source_url: str | None = None,
        crop: dict[str, Any] | None = None,
    ) -> Path:
        """
        Stores the picture as ``<Character><ext>``, replacing pictures saved with
        another extension, and records the source URL and crop when given.
        """
        ext = normalize_image_extension(ext)
        directory = self.character_dir(character)
        await asyncio.to_thread(create_dir, directory)

        def _drop_old() -> None:
            for old_ext in IMAGE_EXTENSIONS:
                old = directory / f"{character}{old_ext}"
                if old_ext != ext and old.is_file():
                    old.unlink()

        await asyncio.to_thread(_drop_old)
        target = directory / f"{character}{ext}"
        async with aiofiles.open(target, "wb") as f:
            await f.write(data)

        if source_url or crop:
            payload: dict[str, Any] = {}
            if source_url:
                payload["url"] = source_url
            if crop:
                payload["crop"] = crop
            async with aiofiles.open(
                directory / f"{character}.txt", "w", encoding="utf-8"
            ) as f:
                await f.write(json.dumps(payload, indent=2))
        log.info(f"Saved picture for '{character}' as '{target.name}'.")
        return target

    def _rename_sync(self, old: str, new: str) -> bool:
        source = self._root() / old
        if not source.is_dir():
            return False
        target = self._root() / new
        safe_rename(source, target)
        for item in list(target.iterdir()):
            if item.stem == old:
                item.rename(target / f"{new}{item.suffix}")
        return True

    async def rename_character_assets(self, old: str, new: str) -> bool:
        """Follows a character rename; returns False when there was nothing to move."""
        if self.images_root is None:
            return False
        return await asyncio.to_thread(self._rename_sync, old, new)

    async def delete_character_assets(self, character: str) -> bool:
        if self.images_root is None:
            return False
        directory = self.images_root / character
        if not await asyncio.to_thread(directory.is_dir):
            return False
        await asyncio.to_thread(shutil.rmtree, directory)
        log.info(f"Deleted assets for '{character}'.")
        return True
