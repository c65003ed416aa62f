"""State file I/O: reading and writing .comments/nonsource_comments.json."""

import json
import os
import tempfile
from collections.abc import Callable
from pathlib import Path
from urllib.parse import unquote, urlparse

from pydantic import ValidationError

from nonsource_comments.locking import state_lock
from nonsource_comments.models import CommentsState


class StateFileError(ValueError):
    """Raised when the state file cannot be read or fails validation."""

    pass


def path_to_url(path: Path) -> str:
    """
    Stable URL for a file, used as its key in the state file.

    Args:
        path: Path to the file (resolved to an absolute path)

    Returns:
        ``file://`` URL, e.g. "file:///home/me/project/notes.txt"
    """
    return path.resolve().as_uri()


def url_to_path(url: str) -> Path | None:
    """
    Map a state file URL back to a local path.

    Returns:
        Path for ``file://`` URLs, None for any other scheme
    """
    parsed = urlparse(url)
    if parsed.scheme != "file":
        return None
    path = unquote(parsed.path)
    # file:///C:/dir/file -> C:/dir/file on Windows
    if os.name == "nt" and path.startswith("/") and len(path) > 2 and path[2] == ":":
        path = path[1:]
    return Path(path)


def read_state(path: Path, *, timeout: float = 5.0) -> CommentsState:
    """
    Read and validate the comments state file under a shared state lock.

    Args:
        path: Path to the state file
        timeout: Lock timeout in seconds

    Returns:
        Parsed state; an empty state if the file does not exist yet

    Raises:
        StateFileError: If the file is not valid JSON or fails schema validation
        LockTimeout: If a writer holds the lock for longer than timeout
    """
    # Checked before locking so a missing state file creates nothing
    if not path.exists():
        return CommentsState()
    if not path.is_file():
        raise StateFileError(f"Path is not a file: {path}")

    with state_lock(path, mode="shared", timeout=timeout):
        return _load_state(path)


def write_state(path: Path, state: CommentsState, *, timeout: float = 5.0) -> None:
    """
    Write the comments state file atomically with deterministic JSON.

    The write happens under an exclusive state lock, via a temp file in the
    same directory renamed over the target, so readers never see a partial
    file. Output is sorted, 2-space indented and ends with a newline for
    git-friendly diffs.

    Args:
        path: Path to the state file
        state: State to serialize
        timeout: Lock timeout in seconds

    Raises:
        LockTimeout: If the lock cannot be acquired within timeout
        OSError: If the write fails (permissions, disk full, etc.)
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    with state_lock(path, mode="exclusive", timeout=timeout):
        _replace_state_file(path, state)


def update_state(
    path: Path,
    update_fn: Callable[[CommentsState], CommentsState],
    *,
    timeout: float = 5.0,
) -> CommentsState:
    """
    Read, update and write the state file under one exclusive lock.

    ``update_fn`` always sees the state as currently on disk, so changes made
    by another process since this one last read the file are kept. If
    ``update_fn`` raises, the file is left untouched.

    Args:
        path: Path to the state file
        update_fn: Function that takes the current state and returns the new one
        timeout: Lock timeout in seconds

    Returns:
        The state that was written

    Raises:
        StateFileError: If the current file is not valid JSON or fails validation
        LockTimeout: If the lock cannot be acquired within timeout
        OSError: If the write fails

    Example:
        >>> def drop_file(state: CommentsState) -> CommentsState:
        ...     return state.replace_files([url], [])
        >>> update_state(state_path, drop_file)
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    with state_lock(path, mode="exclusive", timeout=timeout):
        state = update_fn(_load_state(path))
        _replace_state_file(path, state)
    return state


def _load_state(path: Path) -> CommentsState:
    """Parse the state file; the caller holds the state lock."""
    if not path.exists():
        return CommentsState()

    if not path.is_file():
        raise StateFileError(f"Path is not a file: {path}")

    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise StateFileError(f"Invalid JSON in state file {path}: {e}") from e
    except OSError as e:
        raise StateFileError(f"Failed to read state file {path}: {e}") from e

    try:
        return CommentsState.model_validate(data)
    except ValidationError as e:
        raise StateFileError(f"State file failed schema validation: {e}") from e


def _replace_state_file(path: Path, state: CommentsState) -> None:
    """Atomically replace the state file; the caller holds the exclusive lock."""
    json_str = json.dumps(state.model_dump(mode="json"), indent=2, sort_keys=True, ensure_ascii=False)
    json_str += "\n"

    fd, temp_name = tempfile.mkstemp(dir=path.parent, prefix=".tmp_", suffix=".json")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(json_str)
        os.replace(temp_name, path)
    except Exception:
        try:
            os.unlink(temp_name)
        except OSError:
            pass  # Temp file may already be gone
        raise
