"""Error types for ctxtower.

Filesystem failures use the builtin ``OSError`` family directly
(``FileNotFoundError`` for vanished paths, ``PermissionError`` for unreadable
ones). The classes here cover the failures the package itself defines.
"""

from __future__ import annotations

from pathlib import Path


class TowerError(Exception):
    """Base class for ctxtower errors."""


class ConfigError(TowerError):
    """Configuration could not be read or failed validation."""


class TokenizerError(TowerError):
    """The tokenizer rejected its input (e.g. the text is too large)."""


class RenderError(TowerError):
    """A file could not be rendered into the context bundle.

    Attributes
    ----------
    path
        Absolute path of the file that failed.
    """

    def __init__(self, path: str | Path, reason: str) -> None:
        self.path = str(path)
        self.reason = reason
        super().__init__(f"Failed to render {self.path}: {reason}")
