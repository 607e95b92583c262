"""
Data structures for characters, mods and the data derived from them.

A mod is a closed union of ``FolderMod`` and ``FlatArchiveMod``. Their activation
state is always read from the backing name, never stored.
"""

import base64
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Union

from modshelf.exceptions import ParseError
from modshelf.utils.naming import (
    ModState,
    display_name,
    name_key,
    split_archive_name,
    state_of,
)


@dataclass(frozen=True)
class Character:
    """A character directory directly under the mods root."""

    path: Path

    @property
    def backing_name(self) -> str:
        return self.path.name

    @property
    def name(self) -> str:
        return display_name(self.backing_name)

    @property
    def key(self) -> str:
        return name_key(self.name)

    @property
    def state(self) -> ModState:
        return state_of(self.backing_name)

    @property
    def enabled(self) -> bool:
        return self.state is ModState.ENABLED


@dataclass(frozen=True)
class _ModBase:
    character: str
    path: Path

    @property
    def backing_name(self) -> str:
        return self.path.name

    @property
    def state(self) -> ModState:
        return state_of(self.backing_name)

    @property
    def enabled(self) -> bool:
        return self.state is ModState.ENABLED

    @property
    def key(self) -> str:
        return name_key(self.name)

    @property
    def name(self) -> str:
        raise NotImplementedError


@dataclass(frozen=True)
class FolderMod(_ModBase):
    """An extracted mod directory."""

    @property
    def name(self) -> str:
        return display_name(self.backing_name)

    @property
    def kind(self) -> str:
        return "folder"


@dataclass(frozen=True)
class FlatArchiveMod(_ModBase):
    """An unextracted archive placed directly under the character directory."""

    @property
    def name(self) -> str:
        return display_name(self.backing_name, is_archive=True)

    @property
    def extension(self) -> str:
        return split_archive_name(self.backing_name)[1]

    @property
    def kind(self) -> str:
        return "archive"


ModEntry = Union[FolderMod, FlatArchiveMod]


def sort_mods(mods: list[ModEntry]) -> list[ModEntry]:
    """Enabled mods first, then case-insensitive name order."""
    return sorted(mods, key=lambda m: (not m.enabled, m.key, m.backing_name))


@dataclass(frozen=True)
class ArchiveEntryRecord:
    """One entry of an archive listing."""

    path: str
    is_container: bool = False
    size: int | None = None
    attributes: str = ""


@dataclass(frozen=True)
class EmbeddedMetadata:
    """The small ``{pageUrl, imageUrl}`` record stored in ``data.txt``."""

    page_url: str | None = None
    image_url: str | None = None

    def to_json(self) -> str:
        payload = {}
        if self.page_url:
            payload["pageUrl"] = self.page_url
        if self.image_url:
            payload["imageUrl"] = self.image_url
        return json.dumps(payload, indent=2)

    @classmethod
    def from_text(cls, raw: str) -> "EmbeddedMetadata":
        """
        Decodes a metadata file. Older files hold a bare URL instead of JSON; that
        text becomes the page URL.

        Raises:
            ParseError: If the content is empty or cannot be interpreted.
        """
        text = raw.lstrip("\ufeff").strip()
        if not text:
            raise ParseError("Metadata file is empty.")
        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            return cls(page_url=text)
        if isinstance(data, dict):
            return cls(
                page_url=_clean_str(data.get("pageUrl")),
                image_url=_clean_str(data.get("imageUrl")),
            )
        if isinstance(data, str) and data.strip():
            return cls(page_url=data.strip())
        raise ParseError(f"Unexpected metadata payload of type {type(data).__name__}.")


def _clean_str(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


@dataclass
class ModDetails:
    """
    Contents of a folder mod's auxiliary ``mod.json``.

    ``enabled`` is written as a diagnostic mirror of the folder name and must not
    be used to decide whether the mod is active.
    """

    name: str
    version: str | None = None
    author: str | None = None
    description: str | None = None
    page_url: str | None = None
    update_url: str | None = None
    image: str | None = None
    enabled: bool | None = None
    created_at: str | None = None
    updated_at: str | None = None

    _ALIASES = {
        "page_url": "pageUrl",
        "update_url": "updateUrl",
        "created_at": "createdAt",
        "updated_at": "updatedAt",
    }

    def to_dict(self) -> dict[str, Any]:
        out = {}
        for attr in (
            "name",
            "version",
            "author",
            "description",
            "page_url",
            "update_url",
            "image",
            "enabled",
            "created_at",
            "updated_at",
        ):
            value = getattr(self, attr)
            if value is not None:
                out[self._ALIASES.get(attr, attr)] = value
        return out

    @classmethod
    def from_dict(cls, data: dict[str, Any], fallback_name: str) -> "ModDetails":
        def pick(attr: str) -> Any:
            return data.get(cls._ALIASES.get(attr, attr))

        enabled = pick("enabled")
        return cls(
            name=_clean_str(pick("name")) or fallback_name,
            version=_clean_str(pick("version")),
            author=_clean_str(pick("author")),
            description=_clean_str(pick("description")),
            page_url=_clean_str(pick("page_url")),
            update_url=_clean_str(pick("update_url")),
            image=_clean_str(pick("image")),
            enabled=enabled if isinstance(enabled, bool) else None,
            created_at=_clean_str(pick("created_at")),
            updated_at=_clean_str(pick("updated_at")),
        )


@dataclass(frozen=True)
class PreviewImage:
    """Preview picture bytes read from a folder or an archive."""

    name: str
    mime: str
    data: bytes = field(repr=False)

    def to_data_url(self) -> str:
        encoded = base64.b64encode(self.data).decode("ascii")
        return f"data:{self.mime};base64,{encoded}"


@dataclass
class ModView:
    """Derived, display-ready state of one mod, filled in by the refresh pipeline."""

    mod: ModEntry
    preview: PreviewImage | None = None
    primary_name: str | None = None
    page_url: str | None = None
    image_url: str | None = None
    update_url: str | None = None
    resolved: set[str] = field(default_factory=set)

    @property
    def name(self) -> str:
        return self.mod.name

    @property
    def enabled(self) -> bool:
        return self.mod.enabled


@dataclass(frozen=True)
class CharacterInfo:
    """What the assets root knows about a character."""

    name: str
    image_path: Path | None = None
    url: str | None = None
    crop: dict[str, Any] | None = None
