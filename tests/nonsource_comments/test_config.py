"""Tests for configuration loading and project root discovery."""

from pathlib import Path

import pytest

from nonsource_comments.config import (
    ConfigError,
    TrackerConfig,
    find_project_root,
    load_config,
)
from nonsource_comments.line_index import ResolveMode


def write_config(root: Path, text: str) -> None:
    config_dir = root / ".comments"
    config_dir.mkdir(exist_ok=True)
    (config_dir / "config.toml").write_text(text)


class TestLoadConfig:
    """Tests for merge order and validation."""

    def test_defaults_without_file(self, tmp_path: Path) -> None:
        config = load_config(tmp_path)

        assert config == TrackerConfig()
        assert config.resolve_mode is ResolveMode.CONTAINING
        assert config.fallback_separator is None
        assert config.state_path(tmp_path) == tmp_path / ".comments" / "nonsource_comments.json"

    def test_file_values(self, tmp_path: Path) -> None:
        write_config(
            tmp_path,
            '[tracker]\nresolve_mode = "next_line_start"\nfallback_separator = "\\n"\nlock_timeout = 1.5\n',
        )

        config = load_config(tmp_path)

        assert config.resolve_mode is ResolveMode.NEXT_LINE_START
        assert config.fallback_separator == "\n"
        assert config.lock_timeout == 1.5

    def test_overrides_win(self, tmp_path: Path) -> None:
        write_config(tmp_path, '[tracker]\nresolve_mode = "next_line_start"\n')

        config = load_config(tmp_path, {"resolve_mode": "containing"})

        assert config.resolve_mode is ResolveMode.CONTAINING

    def test_none_override_ignored(self, tmp_path: Path) -> None:
        write_config(tmp_path, '[tracker]\nresolve_mode = "next_line_start"\n')

        config = load_config(tmp_path, {"resolve_mode": None})

        assert config.resolve_mode is ResolveMode.NEXT_LINE_START

    def test_other_tables_ignored(self, tmp_path: Path) -> None:
        write_config(tmp_path, "[editor]\ntheme = 'dark'\n")

        assert load_config(tmp_path) == TrackerConfig()

    @pytest.mark.parametrize(
        "text",
        [
            "[tracker]\nunknown_key = 1\n",
            '[tracker]\nresolve_mode = "sideways"\n',
            "[tracker]\nlock_timeout = 0\n",
            '[tracker]\nfallback_separator = ";"\n',
        ],
    )
    def test_invalid_values(self, tmp_path: Path, text: str) -> None:
        write_config(tmp_path, text)

        with pytest.raises(ConfigError, match="Invalid configuration"):
            load_config(tmp_path)

    def test_invalid_toml(self, tmp_path: Path) -> None:
        write_config(tmp_path, "[tracker\n")

        with pytest.raises(ConfigError, match="Failed to read config file"):
            load_config(tmp_path)

    def test_tracker_not_a_table(self, tmp_path: Path) -> None:
        write_config(tmp_path, "tracker = 3\n")

        with pytest.raises(ConfigError, match="must be a table"):
            load_config(tmp_path)

    def test_config_is_frozen(self) -> None:
        config = TrackerConfig()

        with pytest.raises(ValueError):
            config.lock_timeout = 10


class TestFindProjectRoot:
    """Tests for find_project_root function."""

    def test_git_directory(self, tmp_path: Path) -> None:
        (tmp_path / ".git").mkdir()

        assert find_project_root(tmp_path) == tmp_path.resolve()

    def test_state_directory(self, tmp_path: Path) -> None:
        (tmp_path / ".comments").mkdir()

        assert find_project_root(tmp_path) == tmp_path.resolve()

    def test_from_subdirectory(self, tmp_path: Path) -> None:
        (tmp_path / ".git").mkdir()
        subdir = tmp_path / "docs" / "notes"
        subdir.mkdir(parents=True)

        assert find_project_root(subdir) == tmp_path.resolve()

    def test_defaults_to_cwd(self, tmp_path: Path, monkeypatch) -> None:
        (tmp_path / ".git").mkdir()
        monkeypatch.chdir(tmp_path)

        assert find_project_root() == tmp_path.resolve()

    def test_no_marker_raises(self, tmp_path: Path) -> None:
        with pytest.raises(ValueError, match="No .git or .comments directory found"):
            find_project_root(tmp_path)
