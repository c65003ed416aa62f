"""Stderr logging for the tracker and the ncomment command line.

- All messages go to stderr so command output on stdout stays parseable
- DEBUG messages only appear with --verbose
- ANSI colours when stderr is a terminal and NO_COLOR is unset
"""

import os
import sys
import traceback
from typing import Any


class Logger:
    """Console logger.

    Attributes:
        verbose: If True, DEBUG messages are printed
        use_colors: If True, use ANSI color codes
    """

    def __init__(self, verbose: bool = False, use_colors: bool = True) -> None:
        self.verbose = verbose
        self.use_colors = (
            use_colors and sys.stderr.isatty() and os.environ.get("NO_COLOR") is None
        )

    def _colorize(self, text: str, color_code: str) -> str:
        if not self.use_colors:
            return text
        return f"\033[{color_code}m{text}\033[0m"

    @staticmethod
    def _details(kwargs: dict[str, Any]) -> str:
        if not kwargs:
            return ""
        return " (" + " ".join(f"{k}={v!r}" for k, v in kwargs.items()) + ")"

    def debug(self, message: str, **kwargs: Any) -> None:
        """Log debug message (only if verbose enabled).

        Args:
            message: Message to log
            **kwargs: Additional key-value pairs to include
        """
        if not self.verbose:
            return
        formatted = self._colorize(f"DEBUG: {message}", "36")  # Cyan
        print(formatted + self._details(kwargs), file=sys.stderr)

    def info(self, message: str) -> None:
        print(self._colorize(message, "37"), file=sys.stderr)  # White

    def warning(self, message: str, **kwargs: Any) -> None:
        """Log warning message.

        Args:
            message: Warning message to log
            **kwargs: Additional key-value pairs to include (file URL, offset...)
        """
        formatted = self._colorize(f"Warning: {message}", "33")  # Yellow
        print(formatted + self._details(kwargs), file=sys.stderr)

    def error(self, message: str, suggestion: str | None = None) -> None:
        """Log error message with optional suggestion.

        Args:
            message: Error message to log
            suggestion: Optional suggestion for fixing the error
        """
        print(self._colorize(f"Error: {message}", "31"), file=sys.stderr)  # Red
        if suggestion:
            print(self._colorize(f"  -> {suggestion}", "33"), file=sys.stderr)

    def exception(self, message: str, exc: BaseException) -> None:
        """Log exception, with traceback in verbose mode.

        Args:
            message: Context message
            exc: Exception to log
        """
        self.error(f"{message}: {exc}")
        if self.verbose:
            tb = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
            print(self._colorize(tb, "90"), file=sys.stderr)  # Gray


# Global logger instance (initialized by the CLI)
_logger: Logger | None = None


def init_logger(verbose: bool = False, use_colors: bool = True) -> Logger:
    """Initialize the global logger.

    Args:
        verbose: Enable debug output
        use_colors: Enable ANSI color codes

    Returns:
        Logger instance
    """
    global _logger
    _logger = Logger(verbose=verbose, use_colors=use_colors)
    return _logger


def get_logger() -> Logger:
    """Get the global logger, creating a quiet default if none was initialized."""
    global _logger
    if _logger is None:
        _logger = Logger()
    return _logger
