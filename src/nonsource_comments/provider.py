"""Local filesystem host for the tracker."""

import os
from pathlib import Path

from nonsource_comments.errors import MalformedFileError
from nonsource_comments.line_index import detect_line_separator
from nonsource_comments.storage import path_to_url, url_to_path


def is_binary_content(raw: bytes) -> bool:
    """
    Detect binary content.

    Checks the first 8192 bytes for null bytes, the same heuristic git uses.
    """
    return b"\x00" in raw[:8192]


class LocalFileProvider:
    """Serves files under a project root, identified by resolved Path.

    Attributes:
        project_root: Directory that must exist and be readable before scans run
        fallback_separator: Separator assumed for files without any line break
    """

    def __init__(self, project_root: Path, fallback_separator: str | None = None) -> None:
        self.project_root = Path(project_root)
        self.fallback_separator = fallback_separator

    def is_ready(self) -> bool:
        return self.project_root.is_dir() and os.access(self.project_root, os.R_OK)

    def locate_file(self, url: str) -> Path | None:
        path = url_to_path(url)
        if path is None or not path.is_file():
            return None
        return path.resolve()

    def file_url(self, file: Path) -> str:
        return path_to_url(file)

    def get_raw_content(self, file: Path) -> bytes:
        return Path(file).read_bytes()

    def get_line_separator_length(self, file: Path) -> int:
        """
        Detect the line separator length of a file.

        Raises:
            FileNotFoundError: If the file does not exist
            MalformedFileError: If the file is binary, or has no line separator
                and no fallback separator is configured
        """
        raw = self.get_raw_content(file)
        if is_binary_content(raw):
            raise MalformedFileError(f"Binary files not supported: {file}")

        separator = detect_line_separator(raw) or self.fallback_separator
        if separator is None:
            raise MalformedFileError(f"Cannot detect line separator of {file}")
        return len(separator)
