"""Tests for state file I/O."""

import json
import sys
from pathlib import Path

import pytest

from nonsource_comments.locking import LockTimeout, state_lock
from nonsource_comments.models import AnchorRecord, CommentsState, FileNode
from nonsource_comments.storage import (
    StateFileError,
    path_to_url,
    read_state,
    update_state,
    url_to_path,
    write_state,
)


@pytest.fixture
def state() -> CommentsState:
    return CommentsState(
        files=[
            FileNode(
                url="file:///project/notes.txt",
                comments=[
                    AnchorRecord(text="check", start_offset=6, line_hash="second"),
                    AnchorRecord(text="ünïcode", start_offset=0, line_hash="первая"),
                ],
            )
        ]
    )


class TestReadState:
    """Tests for read_state function."""

    def test_missing_file_is_empty_state(self, tmp_path: Path) -> None:
        assert read_state(tmp_path / "nope.json") == CommentsState()

    def test_reads_written_state(self, tmp_path: Path, state: CommentsState) -> None:
        path = tmp_path / ".comments" / "state.json"
        write_state(path, state)

        assert read_state(path) == state

    def test_reads_hand_written_state(self, tmp_path: Path) -> None:
        path = tmp_path / "state.json"
        path.write_text(
            json.dumps(
                {
                    "files": [
                        {
                            "url": "file:///x.txt",
                            "comments": [{"text": "t", "start_offset": 4, "line_hash": "l"}],
                        }
                    ]
                }
            )
        )

        result = read_state(path)

        assert result.files[0].comments[0].start_offset == 4

    def test_invalid_json(self, tmp_path: Path) -> None:
        path = tmp_path / "state.json"
        path.write_text("{not json")

        with pytest.raises(StateFileError, match="Invalid JSON"):
            read_state(path)

    def test_schema_violation(self, tmp_path: Path) -> None:
        path = tmp_path / "state.json"
        path.write_text(json.dumps({"files": [{"comments": []}]}))

        with pytest.raises(StateFileError, match="schema validation"):
            read_state(path)

    def test_directory_path(self, tmp_path: Path) -> None:
        with pytest.raises(StateFileError, match="not a file"):
            read_state(tmp_path)

    def test_missing_file_creates_nothing(self, tmp_path: Path) -> None:
        """Reading a state that does not exist leaves no lock file behind."""
        read_state(tmp_path / ".comments" / "state.json")

        assert not (tmp_path / ".comments").exists()

    @pytest.mark.skipif(sys.platform == "win32", reason="flock semantics")
    def test_waits_for_writer(self, tmp_path: Path, state: CommentsState) -> None:
        """A read does not see the file while a writer holds the lock."""
        path = tmp_path / "state.json"
        write_state(path, state)

        with state_lock(path, mode="exclusive"):
            with pytest.raises(LockTimeout, match="shared lock"):
                read_state(path, timeout=0.2)


class TestUpdateState:
    """Tests for update_state function."""

    def test_sees_current_file(self, tmp_path: Path, state: CommentsState) -> None:
        path = tmp_path / "state.json"
        write_state(path, state)

        def append_node(current: CommentsState) -> CommentsState:
            return current.replace_files([], [FileNode(url="file:///b.txt")])

        result = update_state(path, append_node)

        assert [n.url for n in result.files] == ["file:///project/notes.txt", "file:///b.txt"]
        assert read_state(path) == result

    def test_interleaved_updates_keep_both(self, tmp_path: Path) -> None:
        """Two writers that read the same old state do not overwrite each other."""
        path = tmp_path / "state.json"
        stale = read_state(path)

        def add_node(url: str):
            return lambda current: current.replace_files([url], [FileNode(url=url)])

        update_state(path, add_node("file:///one.txt"))
        update_state(path, add_node("file:///two.txt"))

        assert stale.files == []
        assert [n.url for n in read_state(path).files] == ["file:///one.txt", "file:///two.txt"]

    def test_failed_update_leaves_file(self, tmp_path: Path, state: CommentsState) -> None:
        path = tmp_path / "state.json"
        write_state(path, state)
        before = path.read_bytes()

        def fail(current: CommentsState) -> CommentsState:
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            update_state(path, fail)

        assert path.read_bytes() == before
        with state_lock(path, timeout=0.5):
            pass

    def test_invalid_current_file(self, tmp_path: Path) -> None:
        path = tmp_path / "state.json"
        path.write_text("{broken")

        with pytest.raises(StateFileError, match="Invalid JSON"):
            update_state(path, lambda current: current)


class TestWriteState:
    """Tests for write_state function."""

    def test_creates_parent_directories(self, tmp_path: Path, state: CommentsState) -> None:
        path = tmp_path / "a" / "b" / "state.json"

        write_state(path, state)

        assert path.is_file()

    def test_deterministic_json(self, tmp_path: Path, state: CommentsState) -> None:
        path = tmp_path / "state.json"

        write_state(path, state)
        text = path.read_text(encoding="utf-8")

        assert text.endswith("}\n")
        assert '  "files": [' in text
        assert text.index('"comments"') < text.index('"url"')
        assert "ünïcode" in text

    def test_same_state_same_bytes(self, tmp_path: Path, state: CommentsState) -> None:
        path = tmp_path / "state.json"
        write_state(path, state)
        first = path.read_bytes()

        write_state(path, state)

        assert path.read_bytes() == first

    def test_no_temp_files_left(self, tmp_path: Path, state: CommentsState) -> None:
        path = tmp_path / "state.json"

        write_state(path, state)

        leftovers = [p.name for p in tmp_path.iterdir() if p.name.startswith(".tmp_")]
        assert leftovers == []

    def test_lock_file_beside_state(self, tmp_path: Path, state: CommentsState) -> None:
        path = tmp_path / "state.json"

        write_state(path, state)

        assert (tmp_path / "state.json.lock").exists()


class TestUrls:
    """Tests for path_to_url and url_to_path."""

    def test_path_to_url_is_absolute_file_url(self, tmp_path: Path) -> None:
        url = path_to_url(tmp_path / "notes.txt")

        assert url.startswith("file://")
        assert url.endswith("/notes.txt")

    def test_round_trip_with_spaces(self, tmp_path: Path) -> None:
        path = tmp_path / "my notes" / "file one.txt"

        assert url_to_path(path_to_url(path)) == path.resolve()

    def test_relative_path_is_resolved(self, tmp_path: Path, monkeypatch) -> None:
        monkeypatch.chdir(tmp_path)

        assert path_to_url(Path("x.txt")) == path_to_url(tmp_path / "x.txt")

    @pytest.mark.parametrize("url", ["https://example.com/a.txt", "temp:///scratch", "not a url"])
    def test_non_file_urls(self, url: str) -> None:
        assert url_to_path(url) is None
