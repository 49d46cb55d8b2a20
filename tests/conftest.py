"""Shared test fixtures for ctxtower tests."""

from __future__ import annotations

import asyncio
import os

import pytest

from ctxtower.errors import TokenizerError
from ctxtower.fs import DirEntry, FileStat
from ctxtower.gate import GateDecision
from ctxtower.ignore import PatternMatcher

ROOT = "/ws"


class FakeFilesystem:
    """In-memory filesystem that records every call."""

    def __init__(self, root: str = ROOT) -> None:
        self.root = root
        self.files: dict[str, str] = {}
        self.sizes: dict[str, int] = {}
        self.dirs: set[str] = {root}
        self.denied: set[str] = set()
        self.blocked: dict[str, asyncio.Event] = {}
        self.calls: list[tuple[str, str]] = []

    def path(self, rel: str) -> str:
        return os.path.join(self.root, *rel.split("/"))

    def add_file(self, rel: str, content: str = "", *, size: int | None = None) -> str:
        path = self.path(rel)
        self.files[path] = content
        if size is not None:
            self.sizes[path] = size
        parent = os.path.dirname(path)
        while parent not in self.dirs:
            self.dirs.add(parent)
            parent = os.path.dirname(parent)
        return path

    def add_dir(self, rel: str) -> str:
        path = self.path(rel)
        while path not in self.dirs:
            self.dirs.add(path)
            path = os.path.dirname(path)
        return self.path(rel)

    def remove(self, rel: str) -> None:
        path = self.path(rel)
        prefix = path + os.sep
        self.files = {p: c for p, c in self.files.items() if p != path and not p.startswith(prefix)}
        self.dirs = {d for d in self.dirs if d != path and not d.startswith(prefix)}

    @property
    def reads(self) -> list[str]:
        return [p for op, p in self.calls if op == "read_file"]

    @property
    def io_calls(self) -> list[tuple[str, str]]:
        return list(self.calls)

    async def exists(self, path: str) -> bool:
        self.calls.append(("exists", path))
        return path in self.files or path in self.dirs

    async def stat(self, path: str) -> FileStat:
        self.calls.append(("stat", path))
        if path in self.denied:
            raise PermissionError(path)
        if path in self.dirs:
            return FileStat(is_directory=True, size=0)
        if path in self.files:
            return FileStat(is_directory=False, size=self.sizes.get(path, len(self.files[path].encode())))
        raise FileNotFoundError(path)

    async def read_dir(self, path: str) -> list[DirEntry]:
        self.calls.append(("read_dir", path))
        if path in self.denied:
            raise PermissionError(path)
        if path not in self.dirs:
            raise FileNotFoundError(path)
        entries = [DirEntry(name=os.path.basename(d), is_directory=True) for d in self.dirs if os.path.dirname(d) == path and d != path]
        entries.extend(DirEntry(name=os.path.basename(f), is_directory=False) for f in self.files if os.path.dirname(f) == path)
        # unsorted on purpose; listing order is the tree's job
        return list(reversed(entries))

    async def read_file(self, path: str) -> str:
        self.calls.append(("read_file", path))
        event = self.blocked.get(path)
        if event is not None:
            await event.wait()
        if path in self.denied:
            raise PermissionError(path)
        if path not in self.files:
            raise FileNotFoundError(path)
        return self.files[path]


class WordTokenizer:
    """Counts whitespace-separated words; rejects text containing OVERSIZED."""

    def __init__(self) -> None:
        self.seen: list[str] = []

    def count(self, text: str) -> int:
        self.seen.append(text)
        if "OVERSIZED" in text:
            raise TokenizerError("Input is too large to tokenize")
        return len(text.split())


class ScriptedGate:
    """Size gate answering from a path -> decision map, PROCEED by default."""

    def __init__(self, decisions: dict[str, GateDecision] | None = None) -> None:
        self.decisions = decisions or {}
        self.asked: list[tuple[str, float, float]] = []

    async def confirm_large_file(self, path: str, size_kb: float, threshold_kb: float) -> GateDecision:
        self.asked.append((path, size_kb, threshold_kb))
        await asyncio.sleep(0)
        return self.decisions.get(path, GateDecision.PROCEED)


@pytest.fixture
def fake_fs() -> FakeFilesystem:
    """Create an empty in-memory filesystem rooted at /ws."""
    return FakeFilesystem()


@pytest.fixture
def tokenizer() -> WordTokenizer:
    """Create a word-counting tokenizer."""
    return WordTokenizer()


@pytest.fixture
def gate() -> ScriptedGate:
    """Create a size gate that accepts everything unless scripted otherwise."""
    return ScriptedGate()


@pytest.fixture
def matcher() -> PatternMatcher:
    """Create a matcher with the usual default exclusions."""
    return PatternMatcher((".git", "node_modules", "*.log"))
