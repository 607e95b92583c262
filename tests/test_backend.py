from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from modshelf.archive import backend as backend_module
from modshelf.archive.backend import SevenZipBackend
from modshelf.exceptions import BackendUnavailable


def test_missing_executable_is_reported(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(backend_module.shutil, "which", lambda name: None)
    monkeypatch.setattr(backend_module, "_windows_candidates", lambda: [])
    backend = SevenZipBackend()
    assert not backend.available
    with pytest.raises(BackendUnavailable):
        backend.locate()


def test_search_order_prefers_path(monkeypatch: pytest.MonkeyPatch) -> None:
    seen = []

    def which(name):
        seen.append(name)
        return f"/usr/bin/{name}" if name == "7zz" else None

    monkeypatch.setattr(backend_module.shutil, "which", which)
    assert SevenZipBackend().locate() == "/usr/bin/7zz"
    assert seen == ["7z", "7zz"]


def test_configured_file_is_used_as_is(tmp_path: Path) -> None:
    exe = tmp_path / "7z"
    exe.write_bytes(b"")
    assert SevenZipBackend(exe).locate() == str(exe)


def test_configured_path_that_does_not_exist(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(backend_module.shutil, "which", lambda name: None)
    with pytest.raises(BackendUnavailable):
        SevenZipBackend(tmp_path / "missing" / "7z").locate()


def test_list_raises_when_tool_is_missing(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(backend_module.shutil, "which", lambda name: None)
    monkeypatch.setattr(backend_module, "_windows_candidates", lambda: [])
    with pytest.raises(BackendUnavailable):
        asyncio.run(SevenZipBackend().list(tmp_path / "x.7z"))
