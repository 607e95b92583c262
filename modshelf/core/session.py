"""
High-level coordinator used by the CLI: settings changes, the watched mods root,
the refresh pipeline and the operations that span more than one store.
"""

import asyncio
import logging
from pathlib import Path
from typing import Any

import aiofiles

from modshelf.archive.backend import SevenZipBackend
from modshelf.archive.inspector import ArchiveInspector
from modshelf.core.context import RepositoryContext
from modshelf.core.refresh import RefreshPipeline, UpdateListener
from modshelf.core.watcher import RepositoryWatcher
from modshelf.exceptions import ConfigurationError, ModShelfError, NotConfigured
from modshelf.models.config import Settings
from modshelf.models.mods import EmbeddedMetadata, ModEntry
from modshelf.models.reports import ReconcileReport, RenameOutcome
from modshelf.storage.cache import CacheEntry
from modshelf.storage.repository import RepositoryStateStore
from modshelf.storage.settings import SettingsManager
from modshelf.utils.naming import guess_mime, is_image_name, split_archive_name
from modshelf.utils.path import scratch_dir
from modshelf.web.downloader import Downloader

log = logging.getLogger(__name__)


class Session:
    """
    Owns one ``RepositoryContext`` and everything that reacts to it. The
    selected character is the one refreshed again after filesystem changes.
    """

    def __init__(
        self,
        settings_manager: SettingsManager,
        backend: SevenZipBackend | None = None,
        on_update: UpdateListener | None = None,
    ):
        self.settings_manager = settings_manager
        self.context = RepositoryContext.from_settings(settings_manager.load(), backend)
        self.pipeline = RefreshPipeline(self.context, on_update=on_update)
        self.downloader = Downloader()
        self.watcher: RepositoryWatcher | None = None
        self.selected: str | None = None
        self._background: set[asyncio.Task] = set()

    @property
    def settings(self) -> Settings:
        return self.context.settings

    @property
    def store(self) -> RepositoryStateStore:
        return self.context.store

    @property
    def inspector(self) -> ArchiveInspector:
        return self.context.inspector

    async def close(self) -> None:
        if self.watcher is not None:
            self.watcher.stop()
        for task in list(self._background):
            task.cancel()
        await asyncio.gather(*self._background, return_exceptions=True)
        await self.pipeline.close()
        await self.downloader.close()

    # --- Settings ---

    def _update_settings(self, **changes: Any) -> Settings:
        settings = self.settings_manager.update(**changes)
        self.context.apply_settings(settings)
        if self.pipeline.max_workers != settings.max_workers:
            self.pipeline.resize(settings.max_workers)
        return settings

    def set_mods_root(self, root: Path) -> Settings:
        """Switches to another mods root; the cache is cleared and the watch moved."""
        root = Path(root).expanduser()
        if not root.is_dir():
            raise ConfigurationError(f"'{root}' is not a directory.")
        settings = self._update_settings(mods_root=root.resolve())
        self.selected = None
        if self.watcher is not None and self.watcher.running:
            self.watcher.start(settings.mods_root)
        log.info(f"Mods root set to '{settings.mods_root}'.")
        return settings

    def set_images_root(self, root: Path) -> Settings:
        root = Path(root).expanduser()
        root.mkdir(parents=True, exist_ok=True)
        return self._update_settings(images_root=root.resolve())

    def set_engine(
        self,
        max_workers: int | None = None,
        cache_capacity: int | None = None,
        debounce_ms: int | None = None,
    ) -> Settings:
        """Changes the engine tunables; None keeps a value as it is."""
        changes = {
            key: value
            for key, value in (
                ("max_workers", max_workers),
                ("cache_capacity", cache_capacity),
                ("debounce_ms", debounce_ms),
            )
            if value is not None
        }
        return self._update_settings(**changes) if changes else self.settings

    def set_seven_zip(self, executable: Path | None) -> str:
        """Saves an explicit 7-Zip path (None to search again) once it resolves."""
        resolved = SevenZipBackend(executable).locate()
        self._update_settings(seven_zip_path=executable)
        return resolved

    # --- Views ---

    async def select(self, character: str) -> int:
        """Makes ``character`` the selected one and starts refreshing it."""
        found = await self.store.find_character(character)
        self.selected = found.name
        return await self.pipeline.refresh(found.name)

    async def view(self, character: str, fresh: bool = False) -> CacheEntry | None:
        """
        Returns the fully resolved view of a character, from the cache when it
        holds a complete entry, otherwise after a refresh.
        """
        found = await self.store.find_character(character)
        entry = None if fresh else self.context.cache.get(found.name)
        if entry is not None and entry.complete:
            return entry
        await self.select(found.name)
        return await self.pipeline.wait(found.name)

    def on_fs_changed(self, root: Path) -> None:
        """Drops every cached view and refreshes the selected character."""
        log.debug(f"Filesystem changed under '{root}'.")
        self.context.cache.clear()
        if self.selected is None:
            return
        task = asyncio.create_task(self._refresh_selected())
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _refresh_selected(self) -> None:
        try:
            await self.pipeline.refresh(self.selected)
        except ModShelfError as e:
            log.warning(f"Could not refresh '{self.selected}': {e}")
            self.selected = None

    def start_watching(self) -> RepositoryWatcher:
        if self.settings.mods_root is None:
            raise NotConfigured("Mods root is not set; nothing to watch.")
        if self.watcher is None:
            self.watcher = RepositoryWatcher(
                asyncio.get_running_loop(),
                self.on_fs_changed,
                self.settings.debounce_ms,
            )
        self.watcher.start(self.settings.mods_root)
        return self.watcher

    async def startup(self) -> ReconcileReport | None:
        """Repairs leftovers from interrupted renames when a root is configured."""
        if not self.store.configured:
            return None
        return await self.store.reconcile_temporaries()

    # --- Characters ---

    async def rename_character(self, old: str, new: str) -> RenameOutcome:
        before = (await self.store.find_character(old)).name
        outcome = await self.store.rename_character(old, new)
        if outcome.changed:
            after = (await self.store.find_character(new)).name
            await self.context.assets.rename_character_assets(before, after)
            self.context.cache.invalidate(before)
        return outcome

    async def delete_character(self, name: str) -> None:
        character = await self.store.find_character(name)
        await self.store.delete_character(character.name)
        await self.context.assets.delete_character_assets(character.name)
        self.context.cache.invalidate(character.name)
        if self.selected and self.selected.casefold() == character.key:
            self.selected = None

    async def set_character_image(
        self,
        name: str,
        url: str | None = None,
        file: Path | None = None,
        crop: dict[str, Any] | None = None,
    ) -> Path:
        character = await self.store.find_character(name)
        data, ext = await self._load_image(url, file)
        return await self.context.assets.save_character_image(
            character.name, data, ext, source_url=url, crop=crop
        )

    # --- Mods ---

    async def _load_image(self, url: str | None, file: Path | None) -> tuple[bytes, str]:
        if url:
            data, _mime, ext = await self.downloader.fetch_image(url)
            return data, ext
        if file is None:
            raise ValueError("Either an image URL or a file is required.")
        if not is_image_name(file.name):
            raise ValueError(f"'{file.name}' is not a supported image ({guess_mime(file.name)}).")
        async with aiofiles.open(file, "rb") as f:
            return await f.read(), file.suffix

    async def set_preview(
        self, mod: ModEntry, url: str | None = None, file: Path | None = None
    ) -> str:
        data, ext = await self._load_image(url, file)
        entry_name = await self.inspector.write_preview(mod, data, ext)
        self.context.cache.invalidate(mod.character)
        return entry_name

    async def set_metadata(
        self, mod: ModEntry, page_url: str | None = None, image_url: str | None = None
    ) -> EmbeddedMetadata:
        """Updates the embedded record; fields left as None keep their value."""
        current = await self.inspector.read_metadata(mod) or EmbeddedMetadata()
        updated = EmbeddedMetadata(
            page_url=current.page_url if page_url is None else (page_url or None),
            image_url=current.image_url if image_url is None else (image_url or None),
        )
        await self.inspector.write_metadata(mod, updated)
        self.context.cache.invalidate(mod.character)
        return updated

    async def page_url(self, mod: ModEntry) -> str | None:
        metadata = await self.inspector.read_metadata(mod)
        if metadata and metadata.page_url:
            return metadata.page_url
        details = await self.inspector.read_details(mod)
        return details.page_url if details else None

    async def update_mod(self, mod: ModEntry) -> None:
        """Downloads the mod's update URL and extracts it over the folder."""
        details = await self.inspector.read_details(mod)
        if not details or not details.update_url:
            raise ModShelfError(f"'{mod.name}' has no update URL in its details.")
        url = details.update_url
        ext = split_archive_name(url.split("?", 1)[0])[1] or ".zip"
        with scratch_dir("update") as tmp:
            archive = Path(tmp) / f"update{ext}"
            await self.downloader.download_file(url, archive)
            await self.store.update_from_archive(mod, archive)
        self.context.cache.invalidate(mod.character)

    async def peek(self, archive: Path) -> str | None:
        """Primary entry of an archive anywhere on disk, e.g. before importing it."""
        return await self.inspector.primary_entry(Path(archive))
