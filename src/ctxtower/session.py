"""One workspace: selection tree, token recount and bundle generation wired together."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import tempfile
from pathlib import Path
from typing import Callable, Mapping

from ctxtower.assembler import ContextAssembler, WrapMetadata
from ctxtower.config import TowerConfig
from ctxtower.errors import TowerError
from ctxtower.fs import Filesystem, LocalFilesystem
from ctxtower.gate import AutoGate, SizeGate
from ctxtower.ignore import build_matcher
from ctxtower.project_tree import render_project_tree
from ctxtower.scheduler import AggregateResult, RecomputeScheduler
from ctxtower.tokens import TiktokenTokenizer, Tokenizer
from ctxtower.tree import Node, SelectionEvent, SelectionTree, ToggleOutcome

log = logging.getLogger(__name__)

DEFAULT_OUTPUT_NAME = "context"
INITIAL_RECOUNT_DELAY = 0.1


class Session:
    """Selection, token aggregate and generation for one workspace root.

    Selection events from the tree drive the scheduler: a cleared selection
    resets the aggregate at once, any other change schedules a recount.
    Files the scheduler finds missing are pruned from the tree.

    Parameters
    ----------
    root
        Workspace root.
    config
        Settings; defaults are used when omitted.
    fs
        Filesystem accessor; the local disk by default.
    gate
        Size gate; by default large files are accepted without asking.
    tokenizer
        Token counter; tiktoken with ``config.token_encoding`` by default.
    """

    def __init__(
        self,
        root: str | Path,
        *,
        config: TowerConfig | None = None,
        fs: Filesystem | None = None,
        gate: SizeGate | None = None,
        tokenizer: Tokenizer | None = None,
    ) -> None:
        self.root = os.path.abspath(str(root))
        self.config = config or TowerConfig()
        self.fs = fs or LocalFilesystem()
        self.matcher = build_matcher(
            Path(self.root), ignore=self.config.ignore, use_gitignore=self.config.use_gitignore
        )
        self.tree = SelectionTree(
            self.root,
            fs=self.fs,
            matcher=self.matcher,
            gate=gate or AutoGate(),
            threshold_kb=self.config.max_file_size_warning_kb,
        )
        self.scheduler = RecomputeScheduler(
            self.tree.get_checked_file_paths,
            fs=self.fs,
            tokenizer=tokenizer or TiktokenTokenizer(self.config.token_encoding),
            delay=self.config.recompute_delay_ms / 1000,
            batch_size=self.config.recompute_batch_size,
            on_missing=self.tree.prune,
        )
        self.assembler = ContextAssembler(self.root, fs=self.fs, fmt=self.config.output_format)
        self.prompt_prefix = ""
        self.prompt_suffix = ""
        self._unsubscribe = self.tree.subscribe(self._on_selection)

    @property
    def token_result(self) -> AggregateResult:
        return self.scheduler.result

    def subscribe_tokens(self, callback: Callable[[AggregateResult], None]) -> Callable[[], None]:
        return self.scheduler.subscribe(callback)

    async def start(self) -> list[Node]:
        """List the workspace root and schedule the first recount."""
        children = await self.tree.list_children()
        self.scheduler.invalidate(delay=INITIAL_RECOUNT_DELAY)
        return children

    async def list_children(self, dir_path: str | None = None) -> list[Node]:
        return await self.tree.list_children(dir_path)

    async def toggle(self, path: str) -> ToggleOutcome:
        return await self.tree.toggle(path)

    async def select_path(self, path: str | Path) -> ToggleOutcome:
        """Add one file (for example the one open in an editor) to the selection."""
        return await self.tree.select_path(str(path))

    async def toggle_all(self, new_state: bool | None = None) -> bool:
        """Set every known node; with no argument, flip between all and none.

        Returns
        -------
        bool
            The state that was applied.
        """
        if new_state is None:
            return self.tree.toggle_all_auto()
        self.tree.toggle_all(new_state)
        return new_state

    async def refresh(self) -> None:
        """Re-scan known directories and schedule a recount."""
        await self.tree.rescan()
        self.scheduler.invalidate()

    async def generate_context_string(
        self,
        *,
        output_file_name: str = "",
        github_issues: str = "",
        placeholders: Mapping[str, str] | None = None,
        paths: list[str] | None = None,
    ) -> str:
        """Render the checked files into the final bundle, with prompt prefix and suffix.

        Raises
        ------
        RenderError
            If any checked file cannot be read.
        """
        if paths is None:
            paths = await self.tree.get_checked_file_paths()
        tree_block = await render_project_tree(
            self.root,
            fs=self.fs,
            matcher=self.matcher,
            fmt=self.config.output_format.project_tree_format,
            selected=paths,
        )
        metadata = WrapMetadata(
            file_count=len(paths),
            output_file_name=output_file_name,
            tree_block=tree_block,
            github_issues=github_issues,
            placeholders=dict(placeholders or {}),
        )
        context = await self.assembler.render(paths, metadata)
        return apply_prompt(context, prefix=self.prompt_prefix, suffix=self.prompt_suffix)

    async def generate(
        self,
        output_name: str = DEFAULT_OUTPUT_NAME,
        *,
        github_issues: str = "",
        placeholders: Mapping[str, str] | None = None,
    ) -> Path:
        """Render the bundle and write it to ``<root>/<output_name>.<extension>``.

        Raises
        ------
        ValueError
            If ``output_name`` contains an extension or a path separator.
        TowerError
            If no files are selected.
        RenderError
            If any checked file cannot be read; nothing is written.
        """
        output_name = output_name or DEFAULT_OUTPUT_NAME
        if "." in output_name or "/" in output_name or os.sep in output_name:
            raise ValueError(f"Output name must not contain an extension or path: {output_name!r}")
        paths = await self.tree.get_checked_file_paths()
        if not paths:
            raise TowerError("No files selected")

        file_name = f"{output_name}.{self.config.output_format.output_extension}"
        text = await self.generate_context_string(
            output_file_name=file_name, github_issues=github_issues, placeholders=placeholders, paths=paths
        )
        return await asyncio.to_thread(write_output, Path(self.root) / file_name, text)

    def close(self) -> None:
        self._unsubscribe()
        self.scheduler.close()

    def _on_selection(self, event: SelectionEvent) -> None:
        if event is SelectionEvent.CLEARED:
            self.scheduler.clear_all()
        else:
            self.scheduler.invalidate()


def apply_prompt(context: str, *, prefix: str = "", suffix: str = "") -> str:
    """Surround the bundle with non-empty prompt text, one newline apart."""
    parts = [p for p in (prefix.strip() and prefix, context, suffix.strip() and suffix) if p]
    return "\n".join(parts)


def write_output(path: Path, text: str) -> Path:
    """Write ``text`` verbatim to ``path``; errors propagate.

    The text goes to a temporary file in the same directory which then
    replaces ``path``. A failed write leaves any previous file untouched.
    """
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
            f.write(text)
        os.replace(tmp_name, path)
    except BaseException:
        with contextlib.suppress(FileNotFoundError):
            os.unlink(tmp_name)
        raise
    log.info("Wrote %d characters to %s", len(text), path)
    return path
