"""CLI entry point for line-anchored comments."""

import difflib
import json
import sys
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn

import click
from pydantic import ValidationError

from nonsource_comments import __version__
from nonsource_comments.config import ConfigError, TrackerConfig, find_project_root, load_config
from nonsource_comments.errors import AnchorError, NotReadyError
from nonsource_comments.line_index import ResolveMode
from nonsource_comments.locking import LockTimeout
from nonsource_comments.logging import get_logger, init_logger
from nonsource_comments.models import CommentsState, Conflict, ConflictSet
from nonsource_comments.provider import LocalFileProvider
from nonsource_comments.storage import StateFileError, read_state, update_state, url_to_path
from nonsource_comments.tracker import AnchorTracker


@dataclass
class Workspace:
    """Everything a command needs after the state file has been loaded."""

    root: Path
    config: TrackerConfig
    provider: LocalFileProvider
    tracker: AnchorTracker
    state: CommentsState
    conflicts: ConflictSet

    @property
    def state_path(self) -> Path:
        return self.config.state_path(self.root)


def _fail(message: str, code: int = 1, suggestion: str | None = None) -> NoReturn:
    get_logger().error(message, suggestion=suggestion)
    sys.exit(code)


def open_workspace(resolve_mode: str | None = None) -> Workspace:
    """
    Locate the project, load its configuration and state, and run the load pass.

    Exits with code 2 when the environment is unusable (no project root,
    invalid config or state file, host not ready).
    """
    try:
        root = find_project_root()
    except ValueError as e:
        _fail(str(e), code=2)

    try:
        config = load_config(root, {"resolve_mode": resolve_mode})
        state = read_state(config.state_path(root), timeout=config.lock_timeout)
    except (ConfigError, StateFileError) as e:
        _fail(str(e), code=2)
    except LockTimeout as e:
        _fail(str(e), code=2, suggestion="Another ncomment process may be writing; retry")

    provider = LocalFileProvider(root, fallback_separator=config.fallback_separator)
    tracker = AnchorTracker(provider, mode=config.resolve_mode)
    try:
        conflicts = tracker.load(state)
    except NotReadyError as e:
        _fail(str(e), code=2)

    return Workspace(root, config, provider, tracker, state, conflicts)


def project_file(file_path: Path, root: Path) -> Path:
    """Resolve a command line path, rejecting files outside the project root."""
    resolved = file_path.resolve()
    try:
        resolved.relative_to(root.resolve())
    except ValueError:
        _fail(
            f"File is outside project root:\n  File: {resolved}\n  Root: {root.resolve()}",
            code=1,
        )
    return resolved


def display_path(url: str, root: Path) -> str:
    """Project-relative POSIX path for a file URL, or the URL itself."""
    path = url_to_path(url)
    if path is None:
        return url
    try:
        return path.resolve().relative_to(root.resolve()).as_posix()
    except ValueError:
        return path.as_posix()


def format_conflict(conflict: Conflict, root: Path) -> list[str]:
    """Render one conflict as a header line followed by a unified diff."""
    header = f'{display_path(conflict.file, root)}:{conflict.line_number + 1}  "{conflict.comment_text}"'
    diff = difflib.unified_diff(
        [conflict.old_line],
        [conflict.new_line],
        fromfile="old line",
        tofile="new line",
        lineterm="",
    )
    return [header] + [f"  {line}" for line in diff]


def persist(
    ws: Workspace,
    files: Iterable[Path] | None = None,
    prune: bool = False,
    change: Callable[[AnchorTracker], object] | None = None,
) -> None:
    """
    Apply a change to the latest state, re-fingerprint comments and write it.

    The state file is re-read under the exclusive state lock and reloaded into
    the tracker before ``change`` runs, so comments written by another
    ``ncomment`` process in the meantime are kept.

    Args:
        ws: Loaded workspace
        files: Only re-fingerprint these files; other files keep their stored
            fingerprints. None re-fingerprints every tracked file.
        prune: Drop stored comments of files that no longer exist
        change: Registry edit to apply to the reloaded tracker
    """
    files = list(files) if files is not None else None
    touched = [ws.provider.file_url(f) for f in files] if files is not None else []

    def apply(current: CommentsState) -> CommentsState:
        try:
            ws.conflicts = ws.tracker.load(current)
        except NotReadyError as e:
            _fail(str(e), code=2)

        drifted = ws.conflicts.by_file()
        for url in touched:
            if url in drifted:
                get_logger().warning(
                    f"Accepting changed lines of {len(drifted[url])} existing comment(s)",
                    path=display_path(url, ws.root),
                )

        if change is not None:
            change(ws.tracker)

        try:
            update = ws.tracker.save(files)
        except (AnchorError, OSError) as e:
            _fail(
                f"Cannot save comments: {e}",
                code=1,
                suggestion="Run 'ncomment list' and remove or re-add the broken comment",
            )

        if prune:
            return update
        urls = touched + [node.url for node in update.files]
        return current.replace_files(urls, update.files)

    try:
        ws.state = update_state(ws.state_path, apply, timeout=ws.config.lock_timeout)
    except StateFileError as e:
        _fail(str(e), code=2)
    except LockTimeout as e:
        _fail(str(e), code=2, suggestion="Another ncomment process may be writing; retry")
    except OSError as e:
        _fail(f"Failed to write state file {ws.state_path}: {e}", code=2)


@click.group()
@click.version_option(version=__version__, prog_name="ncomment")
@click.option("--verbose", "-v", is_flag=True, help="Show debug output")
@click.option(
    "--resolve-mode",
    type=click.Choice([mode.value for mode in ResolveMode]),
    default=None,
    help="Offset resolution rule (overrides .comments/config.toml)",
)
@click.pass_context
def cli(ctx: click.Context, verbose: bool, resolve_mode: str | None):
    """Comments anchored to lines of files, kept outside the files."""
    init_logger(verbose=verbose)
    ctx.obj = {"resolve_mode": resolve_mode}


@cli.command()
@click.argument("file_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("text", required=True)
@click.option("--line", "line_number", type=click.IntRange(min=1), help="Line to comment on (1-indexed)")
@click.option("--offset", type=click.IntRange(min=0), help="Byte offset to anchor the comment at")
@click.pass_obj
def add(obj: dict, file_path: Path, text: str, line_number: int | None, offset: int | None):
    """Attach a comment to a line of FILE_PATH.

    Re-fingerprints every comment of FILE_PATH, accepting (with a warning)
    any changed lines of its existing comments.

    Examples:
        ncomment add notes.txt --line 3 "Double-check this value"
        ncomment add data.csv --offset 120 "Outlier row"
    """
    if (line_number is None) == (offset is None):
        _fail("Must specify exactly one of --line or --offset")

    ws = open_workspace(obj["resolve_mode"])
    file = project_file(file_path, ws.root)

    try:
        index = ws.tracker.build_index(file)
        if line_number is not None:
            offset = index.anchor_offset(line_number - 1)
        assert offset is not None  # For type checker
        _, resolved_line = index.resolve(offset)
    except (AnchorError, OSError) as e:
        _fail(f"Cannot anchor comment in {file_path}: {e}")

    def attach(tracker: AnchorTracker) -> None:
        try:
            tracker.add(file, text, offset)
        except ValidationError as e:
            _fail(f"Invalid comment text: {e.errors()[0]['msg']}")

    persist(ws, [file], change=attach)
    click.echo(f"Added comment to {display_path(ws.provider.file_url(file), ws.root)}:{resolved_line + 1}")


@cli.command()
@click.argument("file_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("index", type=click.IntRange(min=1))
@click.pass_obj
def remove(obj: dict, file_path: Path, index: int):
    """Remove the INDEX-th comment (as shown by 'list') from FILE_PATH.

    Re-fingerprints the remaining comments of FILE_PATH.
    """
    ws = open_workspace(obj["resolve_mode"])
    file = project_file(file_path, ws.root)

    comments = ws.tracker.comments_for(file)
    if index > len(comments):
        _fail(f"{file_path} has {len(comments)} comment(s), no comment #{index}")
    target = comments[index - 1]

    def detach(tracker: AnchorTracker) -> None:
        # Ids are not persisted, so match the reloaded comment by content
        for comment in tracker.comments_for(file):
            if comment.text == target.text and comment.offset == target.offset:
                tracker.remove(file, comment.id)
                return
        _fail(f"Comment #{index} of {file_path} was already removed")

    persist(ws, [file], change=detach)
    click.echo(f'Removed comment #{index}: "{target.text}"')


@cli.command(name="list")
@click.argument("file_path", type=click.Path(exists=True, dir_okay=False, path_type=Path), required=False)
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.pass_obj
def list_comments(obj: dict, file_path: Path | None, json_output: bool):
    """List comments with the line each one currently points at."""
    ws = open_workspace(obj["resolve_mode"])
    if file_path is not None:
        files = [project_file(file_path, ws.root)]
    else:
        files = ws.tracker.tracked_files()

    results = []
    for file in files:
        url = ws.provider.file_url(file)
        try:
            line_index = ws.tracker.build_index(file)
        except (AnchorError, OSError) as e:
            get_logger().warning(f"Cannot index file: {e}", url=url)
            line_index = None

        entries = []
        for i, comment in enumerate(ws.tracker.comments_for(file), start=1):
            line, current = None, None
            if line_index is not None:
                try:
                    current, line_number = line_index.resolve(comment.offset)
                    line = line_number + 1
                except AnchorError:
                    pass  # Reported as unresolved below
            entries.append(
                {
                    "index": i,
                    "text": comment.text,
                    "offset": comment.offset,
                    "line": line,
                    "current_line": current,
                }
            )
        results.append({"path": display_path(url, ws.root), "url": url, "comments": entries})

    if json_output:
        total = sum(len(r["comments"]) for r in results)
        click.echo(json.dumps({"files": results, "total": total}, indent=2))
        return

    if not any(r["comments"] for r in results):
        click.echo("No comments found")
        return

    for result in results:
        if not result["comments"]:
            continue
        click.echo(result["path"])
        for entry in result["comments"]:
            if entry["line"] is None:
                click.echo(f'  [{entry["index"]}] offset {entry["offset"]} [unresolved]: "{entry["text"]}"')
            else:
                click.echo(f'  [{entry["index"]}] line {entry["line"]}: "{entry["text"]}"')
                click.echo(f"      > {entry['current_line']}")


@cli.command()
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.pass_obj
def check(obj: dict, json_output: bool):
    """Report comments whose line changed since the last save.

    Exits with code 1 when conflicts are found.
    """
    ws = open_workspace(obj["resolve_mode"])
    conflicts = ws.conflicts

    if json_output:
        payload = [
            {**c.model_dump(), "path": display_path(c.file, ws.root)} for c in conflicts.conflicts
        ]
        click.echo(json.dumps({"conflicts": payload, "total": len(conflicts)}, indent=2))
    elif conflicts.is_empty():
        click.echo("No conflicts: all comments match their lines")
    else:
        click.echo(click.style(conflicts.summary(), fg="yellow"))
        for conflict in conflicts.conflicts:
            click.echo()
            for line in format_conflict(conflict, ws.root):
                click.echo(line)

    if not conflicts.is_empty():
        sys.exit(1)


@cli.command()
@click.option("--prune", is_flag=True, help="Drop comments of files that no longer exist")
@click.pass_obj
def refresh(obj: dict, prune: bool):
    """Re-fingerprint every comment against the current content of its line.

    Accepts all drift reported by 'check'.
    """
    ws = open_workspace(obj["resolve_mode"])
    persist(ws, prune=prune)
    click.echo(
        f"Refreshed {len(ws.tracker)} comment(s) in {len(ws.tracker.tracked_files())} file(s)"
    )
