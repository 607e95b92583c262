"""
Runs the external 7-Zip executable to list and mutate archives in place.
"""

import asyncio
import logging
import os
import shutil
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from modshelf.exceptions import ArchiveReadError, BackendUnavailable

log = logging.getLogger(__name__)

EXECUTABLE_NAMES = ("7z", "7zz", "7za")


def _windows_candidates() -> list[Path]:
    if os.name != "nt":
        return []
    roots = [
        os.getenv("ProgramFiles", "C:/Program Files"),
        os.getenv("ProgramFiles(x86)", "C:/Program Files (x86)"),
    ]
    return [Path(root) / "7-Zip" / "7z.exe" for root in roots]


@dataclass(frozen=True)
class BackendResult:
    """Exit status and decoded output of one backend invocation."""

    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class SevenZipBackend:
    """
    Thin asynchronous wrapper around the 7-Zip command line.

    Exit code 0 means success; any other exit code or a spawn error means failure.
    No timeout is applied: a hung tool holds the caller until it exits.
    """

    def __init__(self, executable: Path | str | None = None):
        """
        Args:
            executable: Explicit path to the 7-Zip binary. When omitted, the binary
            is searched on PATH and in the standard Windows install folders.
        """
        self._configured = Path(executable) if executable else None
        self._resolved: str | None = None

    def locate(self) -> str:
        """
        Returns the executable to run.

        Raises:
            BackendUnavailable: If no 7-Zip binary can be found.
        """
        if self._resolved:
            return self._resolved

        if self._configured is not None:
            if self._configured.is_file():
                self._resolved = str(self._configured)
                return self._resolved
            found = shutil.which(str(self._configured))
            if found:
                self._resolved = found
                return found
            raise BackendUnavailable(
                f"Configured 7-Zip executable not found: '{self._configured}'."
            )

        for name in EXECUTABLE_NAMES:
            found = shutil.which(name)
            if found:
                self._resolved = found
                return found
        for candidate in _windows_candidates():
            if candidate.is_file():
                self._resolved = str(candidate)
                return self._resolved

        raise BackendUnavailable(
            "7-Zip executable not found. Install 7-Zip (7z, 7zz or 7za) or set its"
            " path with 'modshelf config set-7z'."
        )

    @property
    def available(self) -> bool:
        try:
            self.locate()
            return True
        except BackendUnavailable:
            return False

    async def _run(self, *args: str, cwd: Path | None = None) -> BackendResult:
        executable = self.locate()
        log.debug(f"7z {' '.join(args)}" + (f" (cwd={cwd})" if cwd else ""))
        try:
            process = await asyncio.create_subprocess_exec(
                executable,
                *args,
                cwd=str(cwd) if cwd else None,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            self._resolved = None
            raise BackendUnavailable(f"Could not start 7-Zip: {e}") from e
        except OSError as e:
            log.debug(f"Spawning 7-Zip failed: {e}")
            return BackendResult(-1, "", str(e))

        stdout, stderr = await process.communicate()
        result = BackendResult(
            process.returncode if process.returncode is not None else -1,
            stdout.decode("utf-8", errors="replace"),
            stderr.decode("utf-8", errors="replace"),
        )
        if not result.ok:
            log.debug(
                f"7z {args[0]} exited with {result.returncode}: "
                f"{result.stderr.strip() or result.stdout.strip()[-200:]}"
            )
        return result

    async def list(self, archive: Path) -> str:
        """Returns the technical (``-slt``) listing of ``archive``."""
        result = await self._run("l", "-slt", str(Path(archive).resolve()))
        if not result.ok:
            raise ArchiveReadError(
                f"Could not list '{Path(archive).name}' (7z exit {result.returncode})."
            )
        return result.stdout

    async def extract(
        self, archive: Path, dest_dir: Path, selectors: Sequence[str] = ()
    ) -> bool:
        """
        Extracts ``archive`` into ``dest_dir``. With ``selectors`` only matching
        top-level names are extracted; wildcards such as ``preview.*`` are allowed.
        """
        args = ["x", str(Path(archive).resolve()), *selectors, f"-o{dest_dir}", "-y"]
        if selectors:
            args.append("-r-")
        return (await self._run(*args)).ok

    async def add(self, archive: Path, entry_name: str, cwd: Path) -> bool:
        """Adds (or replaces) ``entry_name``, resolved relative to ``cwd``."""
        result = await self._run(
            "a", str(Path(archive).resolve()), entry_name, "-y", cwd=cwd
        )
        return result.ok

    async def delete(self, archive: Path, entry_name: str) -> bool:
        return (await self._run("d", str(Path(archive).resolve()), entry_name)).ok

    async def rename_entry(self, archive: Path, old: str, new: str) -> bool:
        return (await self._run("rn", str(Path(archive).resolve()), old, new)).ok
