"""
Utilities for handling names and paths inside the mods repository.
"""

import logging
import shutil
import tempfile
import time
from collections.abc import Callable
from pathlib import Path

from pathvalidate import ValidationError, validate_filename

from modshelf.exceptions import InvalidName, TargetExists
from modshelf.utils.naming import numbered_candidates, temporary_name

log = logging.getLogger(__name__)


def create_dir(directory_path: Path) -> None:
    """Creates a directory if it does not already exist."""
    directory_path.mkdir(parents=True, exist_ok=True)


def validate_name(name: str) -> str:
    """
    Checks that ``name`` can be used as a single folder or file name on this
    platform and returns it with surrounding whitespace removed.
    """
    cleaned = (name or "").strip()
    if not cleaned:
        raise InvalidName("Name cannot be empty.")
    try:
        validate_filename(cleaned, platform="auto")
    except ValidationError as e:
        raise InvalidName(f"'{cleaned}' is not a valid name: {e}") from e
    return cleaned


def first_free_path(
    directory: Path,
    stem: str,
    suffix: str = "",
    is_taken: Callable[[str], bool] | None = None,
) -> Path:
    """
    Returns the first of ``stem``, ``stem (2)``, ``stem (3)``... (with ``suffix``)
    that neither exists in ``directory`` nor is reported taken by ``is_taken``.
    """
    for candidate in numbered_candidates(stem, suffix):
        path = directory / candidate
        if path.exists():
            continue
        if is_taken and is_taken(candidate):
            continue
        return path
    raise AssertionError("unreachable")


def _is_same_entry(a: Path, b: Path) -> bool:
    try:
        return a.samefile(b)
    except OSError:
        return False


def two_phase_rename(src: Path, dst: Path) -> None:
    """
    Renames ``src`` to ``dst`` through an intermediate temporary name.

    Phase 1 moves the entry to ``<name>__tmp__<millis>``; phase 2 moves it to the
    destination. If phase 2 fails the entry is moved back. An interruption between
    the phases leaves the temporary name on disk, which
    ``RepositoryStateStore.reconcile_temporaries`` repairs.
    """
    temp = src.with_name(temporary_name(src.name, int(time.time() * 1000)))
    src.rename(temp)
    try:
        temp.rename(dst)
    except OSError:
        log.warning(f"Second rename phase failed, restoring '{src.name}'.")
        temp.rename(src)
        raise


def safe_rename(src: Path, dst: Path) -> bool:
    """
    Renames ``src`` to ``dst`` in the same directory.

    Returns False when the names are identical. Case-only renames always go
    through ``two_phase_rename`` so they work on case-insensitive filesystems;
    any other occupied destination raises ``TargetExists``.
    """
    if src.name == dst.name:
        return False
    if src.name.casefold() == dst.name.casefold():
        if dst.exists() and not _is_same_entry(src, dst):
            raise TargetExists(f"'{dst.name}' already exists.")
        two_phase_rename(src, dst)
        return True
    if dst.exists():
        raise TargetExists(f"'{dst.name}' already exists.")
    src.rename(dst)
    return True


def flatten_single_container(directory: Path) -> bool:
    """
    If ``directory`` holds exactly one sub-directory and no files, lifts that
    sub-directory's children one level up and removes the empty wrapper.
    """
    children = list(directory.iterdir())
    if len(children) != 1 or not children[0].is_dir():
        return False
    inner = children[0]
    # The wrapper may contain a child with its own name; move it aside first.
    wrapper = inner.rename(directory / temporary_name(inner.name, int(time.time() * 1000)))
    for item in list(wrapper.iterdir()):
        item.rename(directory / item.name)
    wrapper.rmdir()
    log.debug(f"Flattened nested folder '{inner.name}' in '{directory.name}'.")
    return True


def scratch_dir(purpose: str) -> tempfile.TemporaryDirectory:
    """Creates a self-deleting scratch directory in the system temp folder."""
    return tempfile.TemporaryDirectory(prefix=f"modshelf_{purpose}_")


def remove_path(path: Path) -> None:
    """Removes a file or a whole directory tree."""
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    else:
        path.unlink()
