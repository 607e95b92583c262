"""
Naming policy for the mods repository.

Everything that inspects or builds a backing name goes through this module: the
disable prefix, archive extensions, reserved entries inside a mod, display-name
canonicalization and numbered collision suffixes.
"""

import re
from collections.abc import Iterator
from enum import Enum
from pathlib import PurePath

DISABLE_PREFIX = "DISABLED_"

ARCHIVE_EXTENSIONS = (".zip", ".7z", ".rar")
IMAGE_EXTENSIONS = (".png", ".jpg", ".jpeg", ".webp", ".gif")

METADATA_FILE = "data.txt"
LEGACY_METADATA_FILE = "data"
DETAILS_FILE = "mod.json"

PREVIEW_STEM = "preview"
LEGACY_PREVIEW_STEM = "cover"

# Marker inserted into the intermediate name of a two-phase rename
TEMP_MARKER = "__tmp__"

_PREFIX_RE = re.compile(rf"^{DISABLE_PREFIX}", re.IGNORECASE)
_ARCHIVE_RE = re.compile(r"\.(zip|7z|rar)$", re.IGNORECASE)
_PREVIEW_RE = re.compile(r"^preview\.(png|jpe?g|webp|gif)$", re.IGNORECASE)
_TEMP_RE = re.compile(rf"^(?P<original>.+?){TEMP_MARKER}\d+$")

_MIME_BY_EXT = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".webp": "image/webp",
    ".gif": "image/gif",
}


class ModState(Enum):
    """Activation state encoded in a backing name."""

    ENABLED = "enabled"
    DISABLED = "disabled"


def has_disable_prefix(name: str) -> bool:
    return bool(_PREFIX_RE.match(name))


def state_of(backing_name: str) -> ModState:
    """Reads the activation state from a backing folder or file name."""
    return ModState.DISABLED if has_disable_prefix(backing_name) else ModState.ENABLED


def strip_disable_prefix(name: str) -> str:
    return _PREFIX_RE.sub("", name, count=1)


def add_disable_prefix(name: str) -> str:
    if has_disable_prefix(name):
        return name
    return f"{DISABLE_PREFIX}{name}"


def with_state(name: str, state: ModState) -> str:
    """Returns the backing name for ``name`` carrying the given state."""
    if state is ModState.DISABLED:
        return add_disable_prefix(name)
    return strip_disable_prefix(name)


def is_archive_name(name: str) -> bool:
    return bool(_ARCHIVE_RE.search(name))


def split_archive_name(name: str) -> tuple[str, str]:
    """Splits ``x.zip`` into ``("x", ".zip")``; non-archives get an empty suffix."""
    match = _ARCHIVE_RE.search(name)
    if not match:
        return name, ""
    return name[: match.start()], name[match.start() :]


def display_name(backing_name: str, is_archive: bool = False) -> str:
    """Strips the disable prefix (and the archive extension for flat mods)."""
    stem = split_archive_name(backing_name)[0] if is_archive else backing_name
    return strip_disable_prefix(stem)


def name_key(name: str) -> str:
    """Case-insensitive comparison key for display names."""
    return name.casefold()


def canonicalize(name: str) -> str:
    """
    Canonical display form: surrounding whitespace trimmed, first letter upper,
    everything else lower.
    """
    trimmed = name.strip()
    if not trimmed:
        return name
    return trimmed[0].upper() + trimmed[1:].lower()


def numbered_candidates(stem: str, suffix: str = "") -> Iterator[str]:
    """Yields ``stem``, ``stem (2)``, ``stem (3)``... with ``suffix`` appended."""
    yield f"{stem}{suffix}"
    n = 2
    while True:
        yield f"{stem} ({n}){suffix}"
        n += 1


def is_preview_name(name: str) -> bool:
    return bool(_PREVIEW_RE.match(name))


def is_reserved_entry(name: str) -> bool:
    """
    True for the top-level names that never count as a mod's payload: the
    embedded metadata file (current and legacy), the details file and previews.
    """
    lowered = name.lower()
    if lowered in (METADATA_FILE, LEGACY_METADATA_FILE, DETAILS_FILE):
        return True
    return is_preview_name(name)


def preview_candidates(stem: str = PREVIEW_STEM) -> list[str]:
    return [f"{stem}{ext}" for ext in IMAGE_EXTENSIONS]


def is_image_name(name: str) -> bool:
    return PurePath(name).suffix.lower() in IMAGE_EXTENSIONS


def guess_mime(name: str) -> str:
    return _MIME_BY_EXT.get(PurePath(name).suffix.lower(), "application/octet-stream")


def extension_for_mime(mime: str, default: str = ".png") -> str:
    mime = mime.lower()
    if "jpeg" in mime or "jpg" in mime:
        return ".jpg"
    if "webp" in mime:
        return ".webp"
    if "gif" in mime:
        return ".gif"
    if "png" in mime:
        return ".png"
    return default


def normalize_image_extension(ext: str) -> str:
    """Ensures a leading dot and checks the image allow-list."""
    ext = ext.lower()
    if not ext.startswith("."):
        ext = f".{ext}"
    if ext not in IMAGE_EXTENSIONS:
        raise ValueError(
            f"Unsupported image extension '{ext}'. "
            f"Allowed: {', '.join(IMAGE_EXTENSIONS)}."
        )
    return ext


def temporary_name(name: str, token: int) -> str:
    return f"{name}{TEMP_MARKER}{token}"


def is_temporary_name(name: str) -> bool:
    return bool(_TEMP_RE.match(name))


def original_from_temporary(name: str) -> str | None:
    match = _TEMP_RE.match(name)
    return match.group("original") if match else None
