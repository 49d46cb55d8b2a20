"""Checked-state tree over a lazily discovered workspace.

Nodes are immutable snapshots keyed by absolute path. Listing a directory
replaces the snapshots of its children and carries their checked flag
forward by path, so callers must not hold Node values across a re-scan;
look them up again with :meth:`SelectionTree.get`.
"""

from __future__ import annotations

import logging
import os
from collections import deque
from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path
from typing import Callable

from ctxtower.fs import Filesystem
from ctxtower.gate import GateDecision, SizeGate
from ctxtower.ignore import PatternMatcher

log = logging.getLogger(__name__)


class NodeKind(str, Enum):
    """Kind of a tracked filesystem entry."""

    FILE = "file"
    DIRECTORY = "directory"


class SelectionState(str, Enum):
    """Derived selection state of a node.

    Attributes
    ----------
    CHECKED
        The node and every known descendant are checked.
    UNCHECKED
        Neither the node nor any known descendant is checked.
    PARTIAL
        A directory whose known descendants disagree with it or each other.
    """

    CHECKED = "checked"
    UNCHECKED = "unchecked"
    PARTIAL = "partial"


class ToggleStatus(str, Enum):
    """Result kind of a single toggle.

    Attributes
    ----------
    APPLIED
        The node took its new state (a directory cascade may still have
        declined some files; see ``ToggleOutcome.declined``).
    CANCELLED
        The size gate was declined for the file; nothing changed.
    MISSING
        The file vanished before it could be checked and was pruned.
    OUTSIDE_ROOT
        The path is not inside the workspace root.
    EXCLUDED
        A component of the path matches the exclusion patterns.
    """

    APPLIED = "applied"
    CANCELLED = "cancelled"
    MISSING = "missing"
    OUTSIDE_ROOT = "outside_root"
    EXCLUDED = "excluded"


class SelectionEvent(str, Enum):
    """Notification emitted after the selection changes."""

    CHANGED = "changed"
    CLEARED = "cleared"


SelectionListener = Callable[[SelectionEvent], None]


@dataclass(frozen=True)
class Node:
    """Snapshot of one tracked file or directory.

    Attributes
    ----------
    path
        Absolute path; the node's identity.
    kind
        File or directory.
    checked
        Stored checked flag.
    name
        Display name (the last path component).
    """

    path: str
    kind: NodeKind
    checked: bool
    name: str

    @property
    def is_directory(self) -> bool:
        return self.kind is NodeKind.DIRECTORY


@dataclass(frozen=True)
class ToggleOutcome:
    """What a toggle did.

    Attributes
    ----------
    path
        The toggled node.
    status
        How the request ended; see :class:`ToggleStatus`.
    checked
        The node's stored flag after the toggle.
    declined
        Files inside a directory cascade whose size gate was declined.
    """

    path: str
    status: ToggleStatus
    checked: bool
    declined: tuple[str, ...] = ()

    @property
    def any_declined(self) -> bool:
        return bool(self.declined)

    @property
    def needs_recompute(self) -> bool:
        return self.status is ToggleStatus.APPLIED


class SelectionTree:
    """Path-keyed checked state with directory cascade and a size gate.

    Parameters
    ----------
    root
        Workspace root. The root itself is not a node; its children are.
    fs
        Filesystem accessor.
    matcher
        Exclusion matcher applied to entry names while listing.
    gate
        Consulted before a file above ``threshold_kb`` is checked.
    threshold_kb
        Size threshold in KB.
    """

    def __init__(
        self,
        root: str | Path,
        *,
        fs: Filesystem,
        matcher: PatternMatcher,
        gate: SizeGate,
        threshold_kb: float = 500,
    ) -> None:
        self.root = os.path.abspath(str(root))
        self.threshold_kb = threshold_kb
        self._fs = fs
        self._matcher = matcher
        self._gate = gate
        self._nodes: dict[str, Node] = {}
        # directory path -> child paths from its most recent listing
        self._children: dict[str, list[str]] = {}
        self._listeners: list[SelectionListener] = []

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, path: object) -> bool:
        return path in self._nodes

    def get(self, path: str) -> Node | None:
        """Return the current snapshot for ``path``, if known."""
        return self._nodes.get(path)

    def nodes(self) -> list[Node]:
        """Return every known node, ordered by path."""
        return [self._nodes[p] for p in sorted(self._nodes)]

    def subscribe(self, listener: SelectionListener) -> Callable[[], None]:
        """Register a selection listener; returns a function that removes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def list_children(self, dir_path: str | None = None) -> list[Node]:
        """List a directory and record its children.

        Parameters
        ----------
        dir_path
            Directory to list; defaults to the workspace root.

        Returns
        -------
        list[Node]
            Children with directories first, then by name. Unreadable or
            vanished directories yield an empty list.
        """
        children = await self._scan(self.root if dir_path is None else dir_path)
        return children if children is not None else []

    async def rescan(self) -> None:
        """Revisit every known directory, pruning entries that disappeared."""
        pruned_checked = False
        queue: deque[str] = deque([self.root])
        while queue:
            dir_path = queue.popleft()
            if dir_path != self.root and dir_path not in self._nodes:
                continue
            before = set(self._children.get(dir_path, ()))
            children = await self._scan(dir_path)
            if children is None:
                continue
            for gone in before - {c.path for c in children}:
                node = self._nodes.get(gone)
                pruned_checked = pruned_checked or (node is not None and node.checked)
                self.prune(gone)
            queue.extend(c.path for c in children if c.is_directory and c.path in self._children)
        if pruned_checked:
            self._emit(SelectionEvent.CHANGED)

    async def toggle(self, path: str) -> ToggleOutcome:
        """Flip the checked flag of a node.

        Checking a file consults the size gate first. Toggling a directory
        applies the new flag to every known descendant in pre-order; each
        file being checked is gated on its own, and declined files stay
        unchecked while the rest of the cascade proceeds.

        Parameters
        ----------
        path
            Path of a known node.

        Returns
        -------
        ToggleOutcome
            What happened, including any files declined during a cascade.

        Raises
        ------
        KeyError
            If ``path`` is not a known node.
        """
        node = self._nodes.get(path)
        if node is None:
            raise KeyError(path)
        new_state = not node.checked

        if node.kind is NodeKind.FILE:
            if new_state:
                decision = await self._gate_file(path)
                if decision is None:
                    return ToggleOutcome(path=path, status=ToggleStatus.MISSING, checked=False)
                if decision is GateDecision.CANCEL:
                    log.debug("Selection of %s cancelled at size gate", path)
                    return ToggleOutcome(path=path, status=ToggleStatus.CANCELLED, checked=False)
            self._set_checked(path, new_state)
            self._emit(SelectionEvent.CHANGED)
            return ToggleOutcome(path=path, status=ToggleStatus.APPLIED, checked=new_state)

        self._set_checked(path, new_state)
        try:
            declined = await self._cascade(path, new_state)
        finally:
            self._emit(SelectionEvent.CHANGED)
        return ToggleOutcome(path=path, status=ToggleStatus.APPLIED, checked=new_state, declined=tuple(declined))

    async def select_path(self, path: str) -> ToggleOutcome:
        """Check a file by path, listing any ancestors that are not yet known.

        Ancestors are listed from the root down. A file that is already
        checked is left alone; a file that is not goes through the size
        gate as in :meth:`toggle`. An unchecked directory is toggled on with
        its cascade. Nothing is ever unchecked.

        Parameters
        ----------
        path
            Path of a file or directory inside the workspace.

        Returns
        -------
        ToggleOutcome
            ``OUTSIDE_ROOT``, ``EXCLUDED`` or ``MISSING`` when the path cannot
            be selected; otherwise the outcome of checking it.
        """
        path = os.path.abspath(path)
        rel = os.path.relpath(path, self.root)
        if rel == os.curdir or rel == os.pardir or rel.startswith(os.pardir + os.sep):
            return ToggleOutcome(path=path, status=ToggleStatus.OUTSIDE_ROOT, checked=False)
        parts = rel.split(os.sep)
        if any(self._matcher.match(part) for part in parts):
            return ToggleOutcome(path=path, status=ToggleStatus.EXCLUDED, checked=False)

        parent = self.root
        for part in parts:
            current = os.path.join(parent, part)
            if current not in self._nodes:
                await self._scan(parent)
            node = self._nodes.get(current)
            if node is None or (current != path and not node.is_directory):
                return ToggleOutcome(path=path, status=ToggleStatus.MISSING, checked=False)
            parent = current

        node = self._nodes[path]
        if node.checked:
            return ToggleOutcome(path=path, status=ToggleStatus.APPLIED, checked=True)
        if node.is_directory and path not in self._children:
            await self._scan(path)
        return await self.toggle(path)

    def toggle_all(self, new_state: bool) -> None:
        """Set every known node to ``new_state`` without consulting the size gate."""
        for path, node in list(self._nodes.items()):
            if node.checked != new_state:
                self._nodes[path] = replace(node, checked=new_state)
        self._emit(SelectionEvent.CHANGED if new_state else SelectionEvent.CLEARED)

    def toggle_all_auto(self) -> bool:
        """Clear everything if all nodes are checked, otherwise check everything.

        Returns
        -------
        bool
            The state that was applied.
        """
        new_state = not all(n.checked for n in self._nodes.values())
        self.toggle_all(new_state)
        return new_state

    async def get_checked_file_paths(self) -> list[str]:
        """Return checked files that still exist, ordered by path.

        Files that no longer exist are pruned from the tree.
        """
        candidates = sorted(p for p, n in self._nodes.items() if n.checked and n.kind is NodeKind.FILE)
        paths: list[str] = []
        for path in candidates:
            if await self._fs.exists(path):
                paths.append(path)
            else:
                log.debug("Checked file vanished, pruning: %s", path)
                self.prune(path)
        return paths

    def selection_state(self, path: str) -> SelectionState:
        """Derive the tri-state selection of a node from its known descendants.

        Raises
        ------
        KeyError
            If ``path`` is not a known node.
        """
        node = self._nodes[path]
        any_checked = node.checked
        any_unchecked = not node.checked
        if node.is_directory:
            stack = list(self._children.get(path, ()))
            while stack and not (any_checked and any_unchecked):
                child = self._nodes.get(stack.pop())
                if child is None:
                    continue
                if child.checked:
                    any_checked = True
                else:
                    any_unchecked = True
                if child.is_directory:
                    stack.extend(self._children.get(child.path, ()))
        if any_checked and any_unchecked:
            return SelectionState.PARTIAL
        return SelectionState.CHECKED if any_checked else SelectionState.UNCHECKED

    def prune(self, path: str) -> bool:
        """Forget a path and everything known below it.

        Returns
        -------
        bool
            True if anything was removed.
        """
        prefix = path + os.sep
        doomed = [p for p in self._nodes if p == path or p.startswith(prefix)]
        for p in doomed:
            del self._nodes[p]
        for d in [d for d in self._children if d == path or d.startswith(prefix)]:
            del self._children[d]
        siblings = self._children.get(os.path.dirname(path))
        if siblings is not None and path in siblings:
            siblings.remove(path)
        return bool(doomed)

    async def _scan(self, dir_path: str) -> list[Node] | None:
        parent = self._nodes.get(dir_path)
        inherit = parent.checked if parent is not None else False
        try:
            entries = await self._fs.read_dir(dir_path)
        except FileNotFoundError:
            if dir_path != self.root:
                log.debug("Directory vanished, pruning: %s", dir_path)
                self.prune(dir_path)
            return None
        except OSError as e:
            log.warning("Cannot read directory %s: %s", dir_path, e)
            return None

        children: list[Node] = []
        discovered_checked = False
        for entry in entries:
            if self._matcher.match(entry.name):
                continue
            path = os.path.join(dir_path, entry.name)
            known = self._nodes.get(path)
            kind = NodeKind.DIRECTORY if entry.is_directory else NodeKind.FILE
            if known is None:
                checked = inherit
                discovered_checked = discovered_checked or (checked and kind is NodeKind.FILE)
            else:
                checked = known.checked
            node = Node(path=path, kind=kind, checked=checked, name=entry.name)
            self._nodes[path] = node
            children.append(node)

        children.sort(key=_sort_key)
        self._children[dir_path] = [c.path for c in children]
        if discovered_checked:
            self._emit(SelectionEvent.CHANGED)
        return children

    async def _cascade(self, dir_path: str, new_state: bool) -> list[str]:
        declined: list[str] = []
        # Explicit stack keeps deep trees off the call stack; reversed pushes give pre-order.
        stack = list(reversed(self._children.get(dir_path, ())))
        while stack:
            path = stack.pop()
            node = self._nodes.get(path)
            if node is None:
                continue
            if node.is_directory:
                self._set_checked(path, new_state)
                stack.extend(reversed(self._children.get(path, ())))
                continue
            target = new_state
            if new_state and not node.checked:
                decision = await self._gate_file(path)
                if decision is None:
                    continue
                if decision is GateDecision.CANCEL:
                    declined.append(path)
                    target = False
            self._set_checked(path, target)
        return declined

    async def _gate_file(self, path: str) -> GateDecision | None:
        """Ask the size gate about a file; None means the file vanished."""
        try:
            st = await self._fs.stat(path)
        except FileNotFoundError:
            log.debug("File vanished before selection, pruning: %s", path)
            self.prune(path)
            return None
        except OSError as e:
            log.debug("Could not stat %s, skipping size check: %s", path, e)
            return GateDecision.PROCEED
        size_kb = st.size / 1024
        if size_kb <= self.threshold_kb:
            return GateDecision.PROCEED
        return await self._gate.confirm_large_file(path, size_kb, self.threshold_kb)

    def _set_checked(self, path: str, checked: bool) -> None:
        node = self._nodes.get(path)
        if node is not None and node.checked != checked:
            self._nodes[path] = replace(node, checked=checked)

    def _emit(self, event: SelectionEvent) -> None:
        for listener in list(self._listeners):
            listener(event)


def _sort_key(node: Node) -> tuple[int, str, str]:
    return (0 if node.is_directory else 1, node.name.lower(), node.name)
