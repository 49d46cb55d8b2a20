"""ctxtower: assemble a context bundle from a selected subset of a workspace."""

from __future__ import annotations

from ctxtower.assembler import ContextAssembler, WrapMetadata
from ctxtower.config import TowerConfig, load_config
from ctxtower.errors import ConfigError, RenderError, TokenizerError, TowerError
from ctxtower.scheduler import AggregateResult, RecomputeScheduler
from ctxtower.session import Session
from ctxtower.tree import Node, NodeKind, SelectionState, SelectionTree, ToggleOutcome, ToggleStatus

__version__ = "0.1.0"

__all__ = [
    "AggregateResult",
    "ConfigError",
    "ContextAssembler",
    "Node",
    "NodeKind",
    "RecomputeScheduler",
    "RenderError",
    "SelectionState",
    "SelectionTree",
    "Session",
    "ToggleOutcome",
    "ToggleStatus",
    "TokenizerError",
    "TowerConfig",
    "TowerError",
    "WrapMetadata",
    "load_config",
]
