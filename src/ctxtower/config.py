"""Configuration models and loading.

Settings can be read from TOML or YAML. Keys are snake_case; placeholder
names inside templates keep their camelCase spelling since they form the
template contract.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any

import tomli
import yaml
from pydantic import BaseModel, Field, ValidationError

from ctxtower.errors import ConfigError

DEFAULT_BLOCK_TEMPLATE = '<file name="{fileNameWithExtension}" path="{rawFilePath}">\n{fileContent}\n</file>'
DEFAULT_WRAPPER_TEMPLATE = (
    "<context>\n{githubIssues}{treeBlock}<project_files>\n{blocks}\n</project_files>\n</context>"
)
DEFAULT_TREE_TEMPLATE = "<project_tree>\n{projectTree}\n</project_tree>\n"

CONFIG_SECTION = "ctxtower"


class ProjectTreeType(str, Enum):
    """Which entries the project tree block lists.

    Attributes
    ----------
    FULL_FILES_AND_DIRECTORIES
        Every non-excluded file and directory in the workspace.
    FULL_DIRECTORIES_ONLY
        Every non-excluded directory in the workspace.
    SELECTED_FILES_ONLY
        Only the checked files and the directories leading to them.
    """

    FULL_FILES_AND_DIRECTORIES = "fullFilesAndDirectories"
    FULL_DIRECTORIES_ONLY = "fullDirectoriesOnly"
    SELECTED_FILES_ONLY = "selectedFilesOnly"


class ProjectTreeFormat(BaseModel):
    """Settings for the ``{treeBlock}`` placeholder.

    Attributes
    ----------
    enabled
        If False, ``{treeBlock}`` renders as an empty string.
    type
        Which entries to list.
    show_file_size
        Append a human-readable size to each file.
    template
        Envelope for the tree; ``{projectTree}`` receives the drawing.
    """

    enabled: bool = True
    type: ProjectTreeType = ProjectTreeType.FULL_FILES_AND_DIRECTORIES
    show_file_size: bool = False
    template: str = DEFAULT_TREE_TEMPLATE

    model_config = {"frozen": True, "extra": "forbid"}


class WrapperFormat(BaseModel):
    """Envelope around the joined blocks."""

    template: str = DEFAULT_WRAPPER_TEMPLATE

    model_config = {"frozen": True, "extra": "forbid"}


class OutputFormat(BaseModel):
    """Rendering settings for the context bundle.

    Attributes
    ----------
    block_template
        Template applied to every checked file.
    block_separator
        Text placed between rendered blocks.
    block_trim_lines
        Trim leading and trailing blank lines from each block.
    output_extension
        Extension of the generated file, without the dot.
    project_tree_format
        Settings for the project tree block.
    wrapper_format
        Envelope template, or None to emit the joined blocks verbatim.
    """

    block_template: str = DEFAULT_BLOCK_TEMPLATE
    block_separator: str = "\n"
    block_trim_lines: bool = True
    output_extension: str = Field(default="txt", min_length=1, pattern=r"^[^./\\]+$")
    project_tree_format: ProjectTreeFormat = Field(default_factory=ProjectTreeFormat)
    wrapper_format: WrapperFormat | None = Field(default_factory=WrapperFormat)

    model_config = {"frozen": True, "extra": "forbid"}


class TowerConfig(BaseModel):
    """Top-level settings.

    Attributes
    ----------
    use_gitignore
        Add the workspace ``.gitignore`` entries to the exclusion patterns.
    ignore
        Extra exclusion patterns.
    max_file_size_warning_kb
        Files larger than this ask the size gate before being checked.
    recompute_delay_ms
        Debounce delay for token recounts.
    recompute_batch_size
        Number of files counted between cancellation checks.
    token_encoding
        tiktoken encoding used for counting.
    output_format
        Rendering settings.
    """

    use_gitignore: bool = True
    ignore: list[str] = Field(default_factory=list)
    max_file_size_warning_kb: float = Field(default=500, ge=0)
    recompute_delay_ms: int = Field(default=300, ge=0)
    recompute_batch_size: int = Field(default=50, ge=1)
    token_encoding: str = "cl100k_base"
    output_format: OutputFormat = Field(default_factory=OutputFormat)

    model_config = {"frozen": True, "extra": "forbid"}


def load_config(path: Path) -> TowerConfig:
    """Load settings from a TOML or YAML file.

    A missing file yields the defaults. If the document has a top-level
    ``ctxtower`` table, only that table is used.

    Parameters
    ----------
    path
        Path to a ``.toml``, ``.yaml`` or ``.yml`` file.

    Returns
    -------
    TowerConfig
        Validated settings.

    Raises
    ------
    ConfigError
        If the file cannot be read, parsed or validated.
    """
    if not path.exists():
        return TowerConfig()
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Failed to read config file: {path}") from e

    data = _parse(text, path)
    if isinstance(data.get(CONFIG_SECTION), dict):
        data = data[CONFIG_SECTION]
    try:
        return TowerConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid config in {path}: {e}") from e


def _parse(text: str, path: Path) -> dict[str, Any]:
    suffix = path.suffix.lower()
    if suffix == ".toml":
        try:
            return tomli.loads(text)
        except tomli.TOMLDecodeError as e:
            raise ConfigError(f"Failed to parse TOML config: {path}") from e
    if suffix in (".yaml", ".yml"):
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise ConfigError(f"Failed to parse YAML config: {path}") from e
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigError(f"Config must be a mapping: {path}")
        return data
    raise ConfigError(f"Unsupported config format: {path}")
