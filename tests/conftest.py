from __future__ import annotations

import asyncio
import fnmatch
import zipfile
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import pytest

from modshelf.archive.inspector import ArchiveInspector
from modshelf.exceptions import ArchiveReadError
from modshelf.storage.repository import RepositoryStateStore


def make_zip(path: Path, entries: Dict[str, Optional[bytes]]) -> Path:
    """Writes a zip where ``None`` values become explicit directory entries."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(path, "w") as zf:
        for name, data in entries.items():
            if data is None:
                zf.writestr(name.rstrip("/") + "/", b"")
            else:
                zf.writestr(name, data)
    return path


def zip_names(path: Path) -> List[str]:
    with zipfile.ZipFile(path) as zf:
        return sorted(zf.namelist())


def _top(name: str) -> str:
    return name.split("/", 1)[0]


class FakeBackend:
    """
    Implements the 7-Zip contract on top of ``zipfile``. ``list`` emits the same
    technical listing layout as ``7z l -slt``.
    """

    def __init__(self, gate: Optional[asyncio.Event] = None) -> None:
        self.calls: List[tuple] = []
        self.gate = gate
        self.entered: Optional[asyncio.Event] = None

    def locate(self) -> str:
        return "fake-7z"

    @property
    def available(self) -> bool:
        return True

    async def _enter(self, *call) -> None:
        self.calls.append(call)
        if self.entered is not None:
            self.entered.set()
        if self.gate is not None:
            await self.gate.wait()

    def _read(self, archive: Path) -> Dict[str, bytes]:
        with zipfile.ZipFile(archive) as zf:
            return {info.filename: zf.read(info) for info in zf.infolist()}

    def _write(self, archive: Path, entries: Dict[str, bytes]) -> None:
        with zipfile.ZipFile(archive, "w") as zf:
            for name, data in entries.items():
                zf.writestr(name, data)

    async def list(self, archive: Path) -> str:
        await self._enter("list", Path(archive).name)
        try:
            with zipfile.ZipFile(archive) as zf:
                infos = zf.infolist()
        except (OSError, zipfile.BadZipFile) as e:
            raise ArchiveReadError(f"Could not list '{Path(archive).name}'.") from e

        lines = [
            "7-Zip [64] 17.05 : Copyright (c) 1999-2021 Igor Pavlov : 2017-08-28",
            "",
            "Scanning the drive for archives:",
            "1 file, 1024 bytes (1 KiB)",
            "",
            f"Listing archive: {archive}",
            "",
            "--",
            f"Path = {archive}",
            "Type = zip",
            "Physical Size = 1024",
            "",
            "----------",
        ]
        for info in infos:
            is_dir = info.filename.endswith("/")
            lines += [
                f"Path = {info.filename.rstrip('/')}",
                f"Folder = {'+' if is_dir else '-'}",
                f"Size = {info.file_size}",
                "Packed Size = 0",
                "Modified = 2024-01-01 00:00:00",
                f"Attributes = {'D' if is_dir else 'A'}",
                "CRC = ",
                "Encrypted = -",
                "Method = Store",
                "",
            ]
        return "\n".join(lines)

    async def extract(
        self, archive: Path, dest_dir: Path, selectors: Sequence[str] = ()
    ) -> bool:
        await self._enter("extract", Path(archive).name, tuple(selectors))
        try:
            entries = self._read(archive)
        except (OSError, zipfile.BadZipFile):
            return False
        dest_dir = Path(dest_dir)
        for name, data in entries.items():
            if selectors and not any(
                "/" not in name and fnmatch.fnmatch(name.lower(), s.lower())
                for s in selectors
            ):
                continue
            target = dest_dir / name
            if name.endswith("/"):
                target.mkdir(parents=True, exist_ok=True)
                continue
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        return True

    async def add(self, archive: Path, entry_name: str, cwd: Path) -> bool:
        await self._enter("add", Path(archive).name, entry_name)
        source = Path(cwd) / entry_name
        if not source.exists():
            return False
        entries = self._read(archive) if Path(archive).exists() else {}
        entries = {k: v for k, v in entries.items() if _top(k) != entry_name}
        if source.is_dir():
            for path in sorted(source.rglob("*")):
                if path.is_file():
                    entries[path.relative_to(cwd).as_posix()] = path.read_bytes()
        else:
            entries[entry_name] = source.read_bytes()
        self._write(archive, entries)
        return True

    async def delete(self, archive: Path, entry_name: str) -> bool:
        await self._enter("delete", Path(archive).name, entry_name)
        try:
            entries = self._read(archive)
        except (OSError, zipfile.BadZipFile):
            return False
        kept = {
            k: v
            for k, v in entries.items()
            if not fnmatch.fnmatch(_top(k).lower(), entry_name.lower())
        }
        self._write(archive, kept)
        return True

    async def rename_entry(self, archive: Path, old: str, new: str) -> bool:
        await self._enter("rename", Path(archive).name, old, new)
        entries = self._read(archive)
        renamed = {}
        hit = False
        for name, data in entries.items():
            if name == old or name.startswith(f"{old}/"):
                name = new + name[len(old) :]
                hit = True
            renamed[name] = data
        if hit:
            self._write(archive, renamed)
        return hit


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def inspector(backend: FakeBackend) -> ArchiveInspector:
    return ArchiveInspector(backend)


@pytest.fixture
def mods_root(tmp_path: Path) -> Path:
    root = tmp_path / "Mods"
    root.mkdir()
    return root


@pytest.fixture
def store(mods_root: Path, inspector: ArchiveInspector) -> RepositoryStateStore:
    return RepositoryStateStore(mods_root, inspector)
