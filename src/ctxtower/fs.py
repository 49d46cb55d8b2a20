"""Asynchronous filesystem access.

Every call may fail with the builtin ``OSError`` family; callers decide
whether a failure is fatal.
"""

from __future__ import annotations

import asyncio
import os
import stat
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol


@dataclass(frozen=True)
class FileStat:
    """Subset of stat information used by the tree.

    Attributes
    ----------
    is_directory
        True if the path is a directory.
    size
        Size in bytes.
    """

    is_directory: bool
    size: int


@dataclass(frozen=True)
class DirEntry:
    """One entry of a directory listing.

    ``is_directory`` follows symbolic links; ``is_symlink`` tells whether the
    entry itself is one.
    """

    name: str
    is_directory: bool
    is_symlink: bool = False


class Filesystem(Protocol):
    """Filesystem operations the core depends on."""

    async def exists(self, path: str) -> bool: ...

    async def stat(self, path: str) -> FileStat: ...

    async def read_dir(self, path: str) -> list[DirEntry]: ...

    async def read_file(self, path: str) -> str: ...


class LocalFilesystem:
    """Filesystem backed by the local disk.

    Blocking calls run in the default executor so the event loop keeps
    serving other work while a directory is listed or a file is read.
    """

    async def exists(self, path: str) -> bool:
        return await asyncio.to_thread(os.path.exists, path)

    async def stat(self, path: str) -> FileStat:
        return await asyncio.to_thread(_stat, path)

    async def read_dir(self, path: str) -> list[DirEntry]:
        return await asyncio.to_thread(_read_dir, path)

    async def read_file(self, path: str) -> str:
        return await asyncio.to_thread(Path(path).read_text, encoding="utf-8")


def _stat(path: str) -> FileStat:
    st = os.stat(path)
    return FileStat(is_directory=stat.S_ISDIR(st.st_mode), size=st.st_size)


def _read_dir(path: str) -> list[DirEntry]:
    with os.scandir(path) as it:
        return [DirEntry(name=entry.name, is_directory=entry.is_dir(), is_symlink=entry.is_symlink()) for entry in it]
