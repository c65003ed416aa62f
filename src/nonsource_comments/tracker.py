"""Comment registry and drift detection.

AnchorTracker owns the comments of every tracked file. Loading a state file
restores the registry and compares each stored line fingerprint with the line
its offset resolves to now; saving re-fingerprints every live comment against
the current content.

Load is best-effort: files that cannot be found or indexed, and anchors that
no longer resolve, are logged and skipped. Save is strict: an anchor that does
not resolve aborts the save so no corrupted state is written.
"""

from collections.abc import Hashable, Iterable
from typing import Protocol

from nonsource_comments.errors import (
    LineNotFoundError,
    MalformedFileError,
    NotReadyError,
    OffsetOutOfRangeError,
)
from nonsource_comments.line_index import LineIndex, ResolveMode
from nonsource_comments.logging import Logger, get_logger
from nonsource_comments.models import (
    AnchorRecord,
    Comment,
    CommentsState,
    Conflict,
    ConflictSet,
    FileNode,
)


class FileProvider(Protocol):
    """Host services the tracker needs to read tracked files."""

    def is_ready(self) -> bool:
        """Whether files can be located and read."""
        ...

    def locate_file(self, url: str) -> Hashable | None:
        """Map a persisted file URL to a file identity, or None if not found."""
        ...

    def file_url(self, file: Hashable) -> str:
        """Stable URL under which a file's comments are persisted."""
        ...

    def get_raw_content(self, file: Hashable) -> bytes:
        """Current bytes of a file.

        Raises:
            FileNotFoundError: If the file no longer exists
            OSError: If the file cannot be read
        """
        ...

    def get_line_separator_length(self, file: Hashable) -> int:
        """Length of the file's line separator.

        Raises:
            MalformedFileError: If the separator cannot be determined
        """
        ...


class AnchorTracker:
    """Registry of comments per file, with load and save passes.

    Attributes:
        provider: Host used to locate and read files
        mode: Offset resolution rule for every LineIndex built
    """

    def __init__(
        self,
        provider: FileProvider,
        mode: ResolveMode = ResolveMode.CONTAINING,
        logger: Logger | None = None,
    ) -> None:
        self.provider = provider
        self.mode = ResolveMode(mode)
        self._logger = logger
        self._comments: dict[Hashable, list[Comment]] = {}

    @property
    def logger(self) -> Logger:
        return self._logger if self._logger is not None else get_logger()

    def __len__(self) -> int:
        return sum(len(comments) for comments in self._comments.values())

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    def tracked_files(self) -> list[Hashable]:
        """Files with at least one comment, in insertion order."""
        return [file for file, comments in self._comments.items() if comments]

    def comments_for(self, file: Hashable) -> list[Comment]:
        return list(self._comments.get(file, []))

    def add(self, file: Hashable, text: str, offset: int) -> Comment:
        """Attach a new comment to a file.

        Args:
            file: File identity from the provider
            text: Comment text
            offset: Byte offset of the anchored position

        Returns:
            The newly created Comment
        """
        comment = Comment(text=text, offset=offset, file=self.provider.file_url(file))
        self._comments.setdefault(file, []).append(comment)
        return comment

    def remove(self, file: Hashable, comment_id: str) -> Comment:
        """Remove a comment by id.

        Raises:
            KeyError: If the file has no comment with that id
        """
        comments = self._comments.get(file, [])
        for i, comment in enumerate(comments):
            if comment.id == comment_id:
                del comments[i]
                if not comments:
                    del self._comments[file]
                return comment
        raise KeyError(f"No comment {comment_id} on {self.provider.file_url(file)}")

    def move(self, file: Hashable, comment_id: str, offset: int) -> Comment:
        """Re-anchor a comment at a new offset.

        Raises:
            KeyError: If the file has no comment with that id
        """
        for comment in self._comments.get(file, []):
            if comment.id == comment_id:
                comment.offset = offset
                return comment
        raise KeyError(f"No comment {comment_id} on {self.provider.file_url(file)}")

    def forget(self, file: Hashable) -> list[Comment]:
        """Stop tracking a file, dropping all its comments."""
        return self._comments.pop(file, [])

    # ------------------------------------------------------------------
    # Load / save
    # ------------------------------------------------------------------

    def build_index(self, file: Hashable) -> LineIndex:
        """Index the current content of a file.

        Raises:
            FileNotFoundError: If the file no longer exists
            OSError: If the file cannot be read
            MalformedFileError: If the file's separator cannot be determined
        """
        raw = self.provider.get_raw_content(file)
        separator_length = self.provider.get_line_separator_length(file)
        return LineIndex(raw, separator_length, mode=self.mode)

    def load(self, state: CommentsState) -> ConflictSet:
        """Restore comments from persisted state and detect drifted anchors.

        Replaces the registry. Files whose URL cannot be located are skipped
        with all their records.

        Args:
            state: Persisted comments state

        Returns:
            Conflicts between stored fingerprints and current lines

        Raises:
            NotReadyError: If the provider is not ready; the registry is untouched
        """
        self._require_ready()

        comments: dict[Hashable, list[Comment]] = {}
        for node in state.files:
            file = self.provider.locate_file(node.url)
            if file is None:
                self.logger.debug("Skipping comments of missing file", url=node.url)
                continue
            url = self.provider.file_url(file)
            # Several nodes may name the same file under different URLs
            comments.setdefault(file, []).extend(
                Comment(text=record.text, offset=record.start_offset, file=url)
                for record in node.comments
                if record.text
            )
        self._comments = comments

        return self.find_conflicts(state)

    def find_conflicts(self, state: CommentsState) -> ConflictSet:
        """Compare stored fingerprints in state with current file content.

        Does not modify the registry, so the host can rerun it after
        a NotReadyError.

        Raises:
            NotReadyError: If the provider is not ready
        """
        self._require_ready()

        conflicts = ConflictSet()
        for node in state.files:
            file = self.provider.locate_file(node.url)
            if file is None:
                continue
            try:
                index = self.build_index(file)
            except (OSError, MalformedFileError) as e:
                self.logger.warning(f"Cannot check comments: {e}", url=node.url)
                continue

            self.logger.debug(
                "Checking anchors", url=node.url, comments=len(node.comments), lines=len(index)
            )
            for record in node.comments:
                if not record.text or record.line_hash is None:
                    continue
                try:
                    current_line, line_number = index.resolve(record.start_offset)
                except (OffsetOutOfRangeError, LineNotFoundError) as e:
                    self.logger.warning(
                        f"Cannot resolve anchor: {e}", url=node.url, offset=record.start_offset
                    )
                    continue
                if current_line != record.line_hash:
                    conflicts.add(
                        Conflict(
                            comment_text=record.text,
                            file=node.url,
                            line_number=line_number,
                            old_line=record.line_hash,
                            new_line=current_line,
                        )
                    )
        return conflicts

    def save(self, files: Iterable[Hashable] | None = None) -> CommentsState:
        """Fingerprint every live comment against current file content.

        Args:
            files: Restrict the pass to these files (default: every tracked file).
                Files without comments produce no node.

        Returns:
            State ready to persist, one FileNode per tracked file

        Raises:
            NotReadyError: If the provider is not ready
            FileNotFoundError: If a tracked file no longer exists
            MalformedFileError: If a tracked file's separator cannot be determined
            OffsetOutOfRangeError: If a comment offset is past the end of its file
            LineNotFoundError: If a comment offset does not map to a line
        """
        self._require_ready()

        selected = self.tracked_files()
        if files is not None:
            wanted = set(files)
            selected = [file for file in selected if file in wanted]

        nodes: list[FileNode] = []
        for file in selected:
            index = self.build_index(file)
            records = []
            for comment in self._comments[file]:
                line_text, _ = index.resolve(comment.offset)
                records.append(
                    AnchorRecord(text=comment.text, start_offset=comment.offset, line_hash=line_text)
                )
            nodes.append(FileNode(url=self.provider.file_url(file), comments=records))
        return CommentsState(files=nodes)

    def _require_ready(self) -> None:
        if not self.provider.is_ready():
            raise NotReadyError("File provider is not ready; retry once it is")
