"""Exceptions raised while resolving comment anchors."""


class AnchorError(ValueError):
    """Base class for failures to map an anchor onto file content."""

    pass


class MalformedFileError(AnchorError):
    """Raised when a file's line separator cannot be determined."""

    pass


class OffsetOutOfRangeError(AnchorError):
    """Raised when an anchor offset lies outside the scanned content."""

    def __init__(self, offset: int, length: int):
        self.offset = offset
        self.length = length
        super().__init__(f"length of file is {length}, and offset is {offset}")


class LineNotFoundError(AnchorError):
    """Raised when an offset or line number does not map to a line."""

    pass


class NotReadyError(RuntimeError):
    """Raised when the host cannot serve file contents yet.

    The caller owns the retry: schedule the operation again once the host
    reports ready.
    """

    pass
