"""
I/O Bridges
===========

The external collaborators that tools act through. The desktop shell
provides its own implementations (IPC to the main process, the embedded
terminal); this module defines the contracts and ships local versions for
headless use.

FileBridge:
    read_file(path) -> str
    write_file(path, content) -> bool     atomic: temp file, then rename
    read_directory(path) -> [DirectoryEntry]   recursive tree

TerminalBridge:
    send_input(text) -> None              fire-and-forget, no output channel
"""

import asyncio
import os
import sys
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from atelier.utils.logger import Logger

logger = Logger("Bridge")


@dataclass
class DirectoryEntry:
    """One node of a directory listing."""
    name: str
    path: str
    is_directory: bool
    children: list["DirectoryEntry"] | None = field(default=None)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "path": self.path,
            "isDirectory": self.is_directory,
            "children": [c.to_dict() for c in self.children] if self.children is not None else None,
        }


class FileBridge(Protocol):
    async def read_file(self, path: str) -> str:
        ...

    async def write_file(self, path: str, content: str) -> bool:
        ...

    async def read_directory(self, path: str) -> list[DirectoryEntry]:
        ...


class TerminalBridge(Protocol):
    async def send_input(self, text: str) -> None:
        ...


# ==============================================================================
# Local implementations
# ==============================================================================

class LocalFileBridge:
    """
    File bridge over the local filesystem.

    Blocking I/O runs in a worker thread so the event loop keeps serving
    the interactive session.

    Example:
        files = LocalFileBridge()
        await files.write_file("/tmp/p/a.py", "print('hi')\\n")
        tree = await files.read_directory("/tmp/p")
    """

    def __init__(self, skip_names: set[str] | None = None):
        """
        Args:
            skip_names: Directory names not descended into (e.g. ".git")
        """
        self.skip_names = skip_names or set()

    async def read_file(self, path: str) -> str:
        return await asyncio.to_thread(Path(path).read_text, encoding="utf-8")

    async def write_file(self, path: str, content: str) -> bool:
        await asyncio.to_thread(atomic_write_text, Path(path), content)
        return True

    async def read_directory(self, path: str) -> list[DirectoryEntry]:
        return await asyncio.to_thread(self._read_directory_sync, Path(path))

    def _read_directory_sync(self, directory: Path) -> list[DirectoryEntry]:
        try:
            items = sorted(directory.iterdir(), key=lambda p: p.name)
        except OSError:
            # Unreadable directories show up empty rather than failing the listing
            return []

        entries = []
        for item in items:
            is_dir = item.is_dir()
            children = None
            if is_dir:
                children = [] if item.name in self.skip_names else self._read_directory_sync(item)
            entries.append(DirectoryEntry(
                name=item.name,
                path=str(item),
                is_directory=is_dir,
                children=children,
            ))
        return entries


def atomic_write_text(path: Path, content: str) -> None:
    """
    Write text so readers never observe a partial file.

    The content goes to a uniquely named sibling temp file which then
    replaces the target. Parent directories are created and an existing
    file keeps its permission bits.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".tmp-", suffix=f"-{path.name}")
    tmp = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(content)
        if path.exists():
            os.chmod(tmp, path.stat().st_mode & 0o7777)
        os.replace(tmp, path)
    except OSError:
        tmp.unlink(missing_ok=True)
        raise


class ShellTerminalBridge:
    """
    An interactive shell fed through its stdin.

    The shell is started lazily in the project directory on first input and
    kept alive, so commands share state (cwd, environment) like a real
    terminal tab. Output goes to this process's stdout; nothing is captured
    or returned to the caller.
    """

    def __init__(self, cwd: str | None = None, shell: str | None = None):
        self.cwd = cwd or os.path.expanduser("~")
        self.shell = shell or ("powershell.exe" if sys.platform == "win32" else "bash")
        self._process: asyncio.subprocess.Process | None = None

    async def start(self) -> None:
        if self._process is not None and self._process.returncode is None:
            return
        logger.info(f"Starting terminal: {self.shell} in {self.cwd}")
        self._process = await asyncio.create_subprocess_exec(
            self.shell,
            stdin=asyncio.subprocess.PIPE,
            cwd=self.cwd,
        )

    async def send_input(self, text: str) -> None:
        await self.start()
        if self._process is None or self._process.stdin is None:
            raise RuntimeError(f"Terminal is not running: {self.shell}")
        # Terminals submit on carriage return; pipes want a newline
        data = text.replace("\r", "\n")
        self._process.stdin.write(data.encode("utf-8"))
        await self._process.stdin.drain()

    async def close(self) -> None:
        if self._process is None:
            return
        if self._process.returncode is None:
            if self._process.stdin is not None:
                self._process.stdin.close()
            try:
                await asyncio.wait_for(self._process.wait(), timeout=5)
            except asyncio.TimeoutError:
                self._process.kill()
        self._process = None
