"""Tracker configuration and project root discovery.

Merge order: built-in defaults, then ``<root>/.comments/config.toml``
(``[tracker]`` table), then command line overrides.
"""

import tomllib
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from nonsource_comments.line_index import ResolveMode

DEFAULT_STATE_DIR = ".comments"
CONFIG_FILE_NAME = "config.toml"


class ConfigError(ValueError):
    """Raised when the config file is unreadable or has invalid values."""

    pass


class TrackerConfig(BaseModel):
    """Effective settings for one project."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    state_dir: str = Field(default=DEFAULT_STATE_DIR, min_length=1)
    state_file: str = Field(default="nonsource_comments.json", min_length=1)
    resolve_mode: ResolveMode = ResolveMode.CONTAINING
    # Separator assumed for files that contain none; None leaves them unindexable
    fallback_separator: Literal["\n", "\r\n", "\r"] | None = None
    lock_timeout: float = Field(default=5.0, gt=0)

    def state_path(self, project_root: Path) -> Path:
        return project_root / self.state_dir / self.state_file


def load_config_file(project_root: Path, state_dir: str = DEFAULT_STATE_DIR) -> dict[str, Any]:
    """Read the ``[tracker]`` table of the project config file.

    Returns:
        Raw settings, empty if the file does not exist

    Raises:
        ConfigError: If the file is not valid TOML or [tracker] is not a table
    """
    path = project_root / state_dir / CONFIG_FILE_NAME
    if not path.is_file():
        return {}
    try:
        with open(path, "rb") as f:
            payload = tomllib.load(f)
    except (tomllib.TOMLDecodeError, OSError) as e:
        raise ConfigError(f"Failed to read config file {path}: {e}") from e

    table = payload.get("tracker", {})
    if not isinstance(table, dict):
        raise ConfigError(f"[tracker] in {path} must be a table")
    return table


def load_config(project_root: Path, overrides: dict[str, Any] | None = None) -> TrackerConfig:
    """Build the effective configuration for a project.

    Args:
        project_root: Project root directory
        overrides: Values that win over the config file; None values are ignored

    Raises:
        ConfigError: If any setting is unknown or invalid
    """
    settings = load_config_file(project_root)
    if overrides:
        settings.update({k: v for k, v in overrides.items() if v is not None})
    try:
        return TrackerConfig.model_validate(settings)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e


def find_project_root(start_path: Path | None = None, state_dir: str = DEFAULT_STATE_DIR) -> Path:
    """Find the project root by walking up to a .git or state directory.

    Args:
        start_path: Starting directory for search (defaults to current working directory)
        state_dir: Name of the comments state directory

    Returns:
        Absolute path to project root

    Raises:
        ValueError: If neither marker is found in any parent directory
    """
    if start_path is None:
        start_path = Path.cwd()

    current = start_path.resolve()
    for parent in [current] + list(current.parents):
        if (parent / ".git").exists() or (parent / state_dir).is_dir():
            return parent

    raise ValueError(
        f"No .git or {state_dir} directory found in {start_path} or any parent directory.\n"
        f"Run inside a git repository or create {state_dir}/ at the project root."
    )
