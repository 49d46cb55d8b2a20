"""Exclusion patterns for the selection tree.

Matching is deliberately simplified and works on entry names only:
exact names, ``name/`` directory entries and ``*.ext`` suffixes.
Anything else in an ignore file is kept but never matches.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

log = logging.getLogger(__name__)

DEFAULT_IGNORE_PATTERNS: list[str] = [
    ".git",
    "node_modules",
    ".vscode",
    "dist",
    "out",
]

STANDARD_IGNORE_FILE = ".gitignore"


@dataclass(frozen=True)
class PatternMatcher:
    """Name-based exclusion matcher.

    Attributes
    ----------
    patterns
        Deduplicated patterns in the order they were first seen.
    """

    patterns: tuple[str, ...]

    def match(self, name: str) -> bool:
        """Return True if ``name`` matches any pattern."""
        return any(_matches_pattern(name, p) for p in self.patterns)


def build_matcher(root: Path, *, ignore: list[str], use_gitignore: bool) -> PatternMatcher:
    """Build a PatternMatcher from the default, gitignore and user patterns.

    Parameters
    ----------
    root
        Workspace root; ``.gitignore`` is read from here.
    ignore
        User-supplied patterns. Surrounding whitespace is stripped and
        empty entries are dropped.
    use_gitignore
        If True, include the entries of ``root/.gitignore``.

    Returns
    -------
    PatternMatcher
        Matcher over the combined, deduplicated pattern list.
    """
    patterns: list[str] = list(DEFAULT_IGNORE_PATTERNS)
    if use_gitignore:
        patterns.extend(_read_gitignore(root / STANDARD_IGNORE_FILE))
    patterns.extend(p.strip() for p in ignore if p.strip())
    # dict.fromkeys keeps first-seen order
    return PatternMatcher(tuple(dict.fromkeys(patterns)))


def _read_gitignore(path: Path) -> list[str]:
    if not path.is_file():
        return []
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        log.warning("Could not read ignore file %s: %s", path, e)
        return []
    lines = (line.strip() for line in text.splitlines())
    return [line for line in lines if line and not line.startswith("#")]


def _matches_pattern(name: str, pattern: str) -> bool:
    if not pattern:
        return False
    if name == pattern:
        return True
    if pattern.endswith("/") and name == pattern[:-1]:
        return True
    if pattern.startswith("*."):
        return name.endswith(pattern[1:])
    return False
