"""Project tree block for the ``{treeBlock}`` placeholder."""

from __future__ import annotations

import logging
import os
from collections import deque
from dataclasses import dataclass, field

from ctxtower.config import ProjectTreeFormat, ProjectTreeType
from ctxtower.fs import Filesystem
from ctxtower.ignore import PatternMatcher

log = logging.getLogger(__name__)


@dataclass
class _Dir:
    dirs: dict[str, _Dir] = field(default_factory=dict)
    files: dict[str, int | None] = field(default_factory=dict)

    def insert(self, parts: tuple[str, ...], *, is_dir: bool, size: int | None = None) -> None:
        node = self
        for part in parts[:-1]:
            node = node.dirs.setdefault(part, _Dir())
        if is_dir:
            node.dirs.setdefault(parts[-1], _Dir())
        else:
            node.files[parts[-1]] = size


async def render_project_tree(
    root: str,
    *,
    fs: Filesystem,
    matcher: PatternMatcher,
    fmt: ProjectTreeFormat,
    selected: list[str],
) -> str:
    """Render the project tree block.

    Parameters
    ----------
    root
        Absolute workspace root.
    fs
        Filesystem accessor used to walk the workspace.
    matcher
        Exclusion matcher; excluded entries and their contents are skipped.
    fmt
        Tree settings.
    selected
        Absolute paths of the checked files (used by ``selectedFilesOnly``).

    Returns
    -------
    str
        The rendered block, or an empty string when the tree is disabled.
    """
    if not fmt.enabled:
        return ""

    tree = _Dir()
    if fmt.type is ProjectTreeType.SELECTED_FILES_ONLY:
        for path in selected:
            rel = os.path.relpath(path, root)
            size = await _size(fs, path) if fmt.show_file_size else None
            tree.insert(tuple(rel.split(os.sep)), is_dir=False, size=size)
    else:
        files = fmt.type is ProjectTreeType.FULL_FILES_AND_DIRECTORIES
        await _walk(root, tree, fs=fs, matcher=matcher, files=files, sizes=fmt.show_file_size)

    lines = [os.path.basename(root.rstrip(os.sep)) + "/"]
    _draw(tree, "", lines, show_size=fmt.show_file_size)
    return fmt.template.replace("{projectTree}", "\n".join(lines))


def bytes_to_human(size_bytes: int) -> str:
    """Convert byte count to a human-readable string."""
    if size_bytes == 0:
        return "0 B"
    units = ("B", "KB", "MB", "GB", "TB")
    value = float(size_bytes)
    for unit in units[:-1]:
        if abs(value) < 1024:
            return f"{value:.1f} {unit}" if unit != "B" else f"{int(value)} B"
        value /= 1024
    return f"{value:.1f} {units[-1]}"


async def _walk(root: str, tree: _Dir, *, fs: Filesystem, matcher: PatternMatcher, files: bool, sizes: bool) -> None:
    queue: deque[tuple[str, tuple[str, ...]]] = deque([(root, ())])
    while queue:
        abs_dir, rel_parts = queue.popleft()
        try:
            entries = await fs.read_dir(abs_dir)
        except OSError as e:
            log.warning("Cannot read directory %s for project tree: %s", abs_dir, e)
            continue
        for entry in entries:
            if matcher.match(entry.name):
                continue
            parts = rel_parts + (entry.name,)
            path = os.path.join(abs_dir, entry.name)
            if entry.is_directory:
                tree.insert(parts, is_dir=True)
                # Linked directories are listed but never entered.
                if entry.is_symlink:
                    log.debug("Not following directory link %s", path)
                else:
                    queue.append((path, parts))
            elif files:
                size = await _size(fs, path) if sizes else None
                tree.insert(parts, is_dir=False, size=size)


async def _size(fs: Filesystem, path: str) -> int | None:
    try:
        return (await fs.stat(path)).size
    except OSError:
        return None


def _draw(node: _Dir, prefix: str, lines: list[str], *, show_size: bool) -> None:
    entries: list[tuple[str, _Dir | None, int | None]] = [
        (name, node.dirs[name], None) for name in sorted(node.dirs, key=_name_key)
    ]
    entries.extend((name, None, node.files[name]) for name in sorted(node.files, key=_name_key))
    for idx, (name, child, size) in enumerate(entries):
        last = idx == len(entries) - 1
        branch = "└── " if last else "├── "
        if child is not None:
            lines.append(prefix + branch + name + "/")
            _draw(child, prefix + ("    " if last else "│   "), lines, show_size=show_size)
        else:
            suffix = f" ({bytes_to_human(size)})" if show_size and size is not None else ""
            lines.append(prefix + branch + name + suffix)


def _name_key(name: str) -> tuple[str, str]:
    return (name.lower(), name)
