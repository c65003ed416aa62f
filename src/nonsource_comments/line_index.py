"""Offset to line resolution over one snapshot of a file.

A LineIndex is built from the raw bytes of a file and the length of its line
separator, and answers "which line does this byte offset point at". It is
rebuilt for every load or save pass and never updated in place.
"""

from bisect import bisect_right
from enum import Enum

from nonsource_comments.errors import LineNotFoundError, MalformedFileError, OffsetOutOfRangeError

LINE_SEPARATORS = ("\r\n", "\n", "\r")


class ResolveMode(str, Enum):
    """How an offset is mapped onto a line."""

    CONTAINING = "containing"  # Line whose byte range holds the offset
    NEXT_LINE_START = "next_line_start"  # First line starting after the offset


def detect_line_separator(raw_content: bytes | str) -> str | None:
    """Detect the line separator used by a file.

    The first separator in the content wins, so files with mixed separators
    are indexed with the separator of their first line.

    Args:
        raw_content: File content

    Returns:
        One of "\\r\\n", "\\n", "\\r", or None if the content has no separator
    """
    if isinstance(raw_content, str):
        raw_content = raw_content.encode("utf-8")

    for position, byte in enumerate(raw_content):
        if byte == 0x0A:  # \n
            return "\n"
        if byte == 0x0D:  # \r
            if raw_content[position + 1 : position + 2] == b"\n":
                return "\r\n"
            return "\r"
    return None


class LineIndex:
    """Read-only index of line start offsets for one file snapshot.

    Attributes:
        offsets: Byte offset of the first character of each line (strictly increasing)
        lines: Line number -> line text, separator stripped
        length: Total bytes scanned, counting one separator per line
        mode: Resolution rule used by resolve()
    """

    def __init__(
        self,
        raw_content: bytes | str,
        line_separator_length: int | None,
        mode: ResolveMode = ResolveMode.CONTAINING,
    ) -> None:
        """Scan content into line offsets.

        Args:
            raw_content: File content; str content is encoded as UTF-8
            line_separator_length: Length in bytes of the file's line separator
            mode: Resolution rule used by resolve()

        Raises:
            MalformedFileError: If the separator length is unknown or not positive
        """
        if line_separator_length is None or line_separator_length <= 0:
            raise MalformedFileError(
                f"Cannot index file without a line separator (got {line_separator_length!r})"
            )
        if isinstance(raw_content, str):
            raw_content = raw_content.encode("utf-8")

        offsets: list[int] = []
        lines: dict[int, str] = {}
        offset = 0
        for i, line in enumerate(raw_content.splitlines()):
            offsets.append(offset)
            offset += len(line) + line_separator_length
            lines[i] = line.decode("utf-8", errors="replace")

        self.offsets: tuple[int, ...] = tuple(offsets)
        self.lines: dict[int, str] = lines
        self.length: int = offset
        self.mode = ResolveMode(mode)

    def __len__(self) -> int:
        return len(self.offsets)

    @property
    def line_count(self) -> int:
        return len(self.offsets)

    def line_text(self, line_number: int) -> str:
        """Return the text of a 0-indexed line.

        Raises:
            LineNotFoundError: If the line does not exist
        """
        try:
            return self.lines[line_number]
        except KeyError:
            raise LineNotFoundError(
                f"Line {line_number} does not exist (file has {self.line_count} lines)"
            ) from None

    def offset_of(self, line_number: int) -> int:
        """Return the start offset of a 0-indexed line.

        Raises:
            LineNotFoundError: If the line does not exist
        """
        if not 0 <= line_number < len(self.offsets):
            raise LineNotFoundError(
                f"Line {line_number} does not exist (file has {self.line_count} lines)"
            )
        return self.offsets[line_number]

    def anchor_offset(self, line_number: int) -> int:
        """Return an offset that resolve() maps back to a 0-indexed line.

        Raises:
            LineNotFoundError: If the line does not exist, or cannot be reached
                under ResolveMode.NEXT_LINE_START (line 0)
        """
        start = self.offset_of(line_number)
        if self.mode is ResolveMode.NEXT_LINE_START:
            if line_number == 0:
                raise LineNotFoundError("Line 0 cannot be anchored in next_line_start mode")
            return self.offsets[line_number - 1]
        return start

    def resolve(self, offset: int) -> tuple[str, int]:
        """Resolve a byte offset to the line it anchors.

        With ResolveMode.CONTAINING the result is the line whose range
        [offsets[n], offsets[n + 1]) holds the offset; bytes of a separator
        belong to the line they terminate.

        With ResolveMode.NEXT_LINE_START the result is the first line whose
        start offset is strictly greater than the offset, so an offset equal
        to the start of line k resolves to line k + 1. State files written by
        the first releases were fingerprinted with this rule.

        Args:
            offset: Byte offset into the scanned content

        Returns:
            Tuple of (line_text, line_number), line_number 0-indexed

        Raises:
            OffsetOutOfRangeError: If offset is negative or greater than length
            LineNotFoundError: If no line matches the offset
        """
        if offset < 0 or offset > self.length:
            raise OffsetOutOfRangeError(offset, self.length)

        if self.mode is ResolveMode.NEXT_LINE_START:
            line_number = bisect_right(self.offsets, offset)
            if line_number >= len(self.offsets):
                raise LineNotFoundError(f"No line starts after offset {offset}")
        else:
            if offset == self.length:
                raise LineNotFoundError(f"Offset {offset} is at end of file")
            line_number = bisect_right(self.offsets, offset) - 1

        return self.lines[line_number], line_number
