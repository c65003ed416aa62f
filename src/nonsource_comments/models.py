"""Data models for comments, persisted anchor records, and conflicts."""

from pydantic import BaseModel, Field, field_validator
from ulid import new as new_ulid

SCHEMA_VERSION = "1.0"


class Comment(BaseModel):
    """A live comment attached to a line of a tracked file.

    The offset is captured when the comment is created and is not updated by
    edits to the file; the host moves it explicitly when it knows better.
    """

    id: str = Field(default_factory=lambda: str(new_ulid()))
    text: str = Field(..., min_length=1, max_length=10000)
    offset: int = Field(..., ge=0, description="Byte offset of the anchor in the file")
    file: str = Field(..., min_length=1, description="URL of the owning file")

    @field_validator("id")
    @classmethod
    def validate_ulid(cls, v: str) -> str:
        """Validate that id is a valid ULID (26 characters)."""
        if len(v) != 26:
            raise ValueError(f"ULID must be exactly 26 characters, got {len(v)}")
        return v


class AnchorRecord(BaseModel):
    """Persisted form of a comment.

    ``line_hash`` is the exact text of the anchored line at the time of the
    last save: the line content is its own fingerprint. State files written
    before fingerprints existed have no ``line_hash``; those anchors are
    restored but never reported as conflicts.
    """

    text: str = Field(..., max_length=10000)
    start_offset: int = Field(..., ge=0)
    line_hash: str | None = None


class FileNode(BaseModel):
    """All anchor records of one file, keyed by a stable file URL."""

    url: str = Field(..., min_length=1)
    comments: list[AnchorRecord] = Field(default_factory=list)


class CommentsState(BaseModel):
    """Root structure of the comments state file."""

    schema_version: str = Field(default=SCHEMA_VERSION)
    files: list[FileNode] = Field(default_factory=list)

    def replace_files(self, urls: list[str], nodes: list[FileNode]) -> "CommentsState":
        """Return a copy with the nodes of ``urls`` replaced by ``nodes``.

        Nodes of other files keep their stored fingerprints. A URL in ``urls``
        without a matching node in ``nodes`` is dropped from the state.
        """
        replaced = set(urls)
        kept = [node for node in self.files if node.url not in replaced]
        return CommentsState(schema_version=self.schema_version, files=kept + list(nodes))


class Conflict(BaseModel, frozen=True):
    """A comment whose anchored line no longer matches its stored fingerprint."""

    comment_text: str
    file: str
    line_number: int = Field(..., ge=0, description="0-indexed line the anchor resolved to")
    old_line: str
    new_line: str


class ConflictSet(BaseModel):
    """Conflicts found by one scan, in the order they were detected."""

    conflicts: list[Conflict] = Field(default_factory=list)

    def add(self, conflict: Conflict) -> None:
        self.conflicts.append(conflict)

    def __len__(self) -> int:
        return len(self.conflicts)

    def is_empty(self) -> bool:
        return not self.conflicts

    def files(self) -> list[str]:
        """File URLs with at least one conflict, in first-seen order."""
        return list(dict.fromkeys(c.file for c in self.conflicts))

    def by_file(self) -> dict[str, list[Conflict]]:
        grouped: dict[str, list[Conflict]] = {}
        for conflict in self.conflicts:
            grouped.setdefault(conflict.file, []).append(conflict)
        return grouped

    def summary(self) -> str:
        """Single notification message for the whole set.

        Returns:
            Empty string when there are no conflicts
        """
        if not self.conflicts:
            return ""
        count = len(self.conflicts)
        noun = "comment" if count == 1 else "comments"
        return (
            f"Your file(s) with comments have been changed: "
            f"{count} {noun} in {len(self.files())} file(s) no longer match their lines."
        )
