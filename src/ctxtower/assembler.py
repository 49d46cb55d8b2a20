"""Template rendering of the context bundle.

Each template is filled in a single pass over its own text. Placeholders
that are not recognised are left untouched, and substituted values are never
scanned again, so placeholder-like text inside files, issue text or extra
values is kept literally.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Mapping

from ctxtower.config import OutputFormat
from ctxtower.errors import RenderError
from ctxtower.fs import Filesystem

log = logging.getLogger(__name__)

_LEADING_BLANK_LINES = re.compile(r"\A(?:[ \t]*\r?\n)+")
_TRAILING_BLANK_LINES = re.compile(r"(?:\r?\n[ \t]*)+\Z")
_PLACEHOLDER = re.compile(r"\{([\w.-]+)\}")


@dataclass(frozen=True)
class WrapMetadata:
    """Values for the wrapper template.

    Attributes
    ----------
    file_count
        Number of rendered files (``{fileCount}``).
    output_file_name
        Name of the generated file (``{outputFileName}``).
    tree_block
        Rendered project tree (``{treeBlock}``).
    github_issues
        Externally supplied issue/PR text (``{githubIssues}``).
    placeholders
        Further externally supplied placeholders, keyed by name without braces.
    timestamp
        ISO-8601 timestamp (``{timestamp}``); defaults to render time.
    """

    file_count: int
    output_file_name: str = ""
    tree_block: str = ""
    github_issues: str = ""
    placeholders: Mapping[str, str] = field(default_factory=dict)
    timestamp: str | None = None


def substitute(template: str, values: Mapping[str, str]) -> str:
    """Replace every known ``{name}`` in ``template`` in one pass."""
    return _PLACEHOLDER.sub(lambda m: values.get(m.group(1), m.group(0)), template)


class ContextAssembler:
    """Render checked files into one string.

    Parameters
    ----------
    root
        Workspace root; ``{rawFilePath}`` is relative to it.
    fs
        Filesystem accessor used to read file contents.
    fmt
        Output format settings.
    """

    def __init__(self, root: str | Path, *, fs: Filesystem, fmt: OutputFormat) -> None:
        self.root = os.path.abspath(str(root))
        self.fmt = fmt
        self._fs = fs

    async def render_block(self, path: str) -> str:
        """Render one file through the block template.

        Raises
        ------
        RenderError
            If the file cannot be read or decoded.
        """
        try:
            content = await self._fs.read_file(path)
        except (OSError, UnicodeDecodeError) as e:
            raise RenderError(path, str(e)) from e

        name_with_ext = os.path.basename(path)
        name, ext = os.path.splitext(name_with_ext)
        rel = os.path.relpath(path, self.root).replace(os.sep, "/").replace("\\", "/")
        return substitute(
            self.fmt.block_template,
            {
                "fileNameWithExtension": name_with_ext,
                "rawFilePath": "/" + rel,
                "fileName": name,
                "fileExtension": ext,
                "fullPath": path,
                "fileContent": content,
            },
        )

    def join(self, blocks: list[str]) -> str:
        """Join rendered blocks with the configured separator."""
        if self.fmt.block_trim_lines:
            blocks = [trim_blank_lines(b) for b in blocks]
        return self.fmt.block_separator.join(blocks)

    def wrap(self, joined: str, metadata: WrapMetadata) -> str:
        """Apply the wrapper template, or return ``joined`` unchanged if it is disabled."""
        wrapper = self.fmt.wrapper_format
        if wrapper is None:
            return joined
        timestamp = metadata.timestamp or iso_timestamp()
        values = dict(metadata.placeholders)
        values.update(
            timestamp=timestamp,
            fileCount=str(metadata.file_count),
            workspaceRoot=self.root,
            outputFileName=metadata.output_file_name,
            treeBlock=metadata.tree_block,
            githubIssues=metadata.github_issues,
            blocks=joined,
        )
        return substitute(wrapper.template, values)

    async def render(self, paths: list[str], metadata: WrapMetadata | None = None) -> str:
        """Render, join and wrap the given files.

        Files are read one after another; the first failure aborts the whole
        render and nothing is returned.

        Parameters
        ----------
        paths
            Absolute paths of the files to include, in output order.
        metadata
            Wrapper values; ``file_count`` defaults to ``len(paths)``.

        Returns
        -------
        str
            The complete bundle.

        Raises
        ------
        RenderError
            If any file cannot be read.
        """
        blocks = [await self.render_block(p) for p in paths]
        if metadata is None:
            metadata = WrapMetadata(file_count=len(paths))
        log.debug("Rendered %d blocks", len(blocks))
        return self.wrap(self.join(blocks), metadata)


def iso_timestamp() -> str:
    """Current UTC time as ISO-8601 with milliseconds and a ``Z`` suffix."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def trim_blank_lines(text: str) -> str:
    """Remove leading and trailing whitespace-only lines."""
    return _TRAILING_BLANK_LINES.sub("", _LEADING_BLANK_LINES.sub("", text))
