"""
Centralized console output for livefront.

All user-facing output is prefixed with the elapsed time since launch in
MM:SS.cc format (minutes:seconds.centiseconds), so a long watch session shows
when each recompile happened.

Example output:
    00:00.04 livefront v0.1.0
    00:00.05 Compiling sources...
    00:00.31 Compiled index.html.
    00:00.32 ERROR: broken.tmpl: Included file not found: missing.tmpl (line 3)
    00:12.87 Compiling dependent: pages/about.tmpl

Usage:
    from livefront.output import log, log_detail, log_error

    log("Compiling sources...")
    log_detail("3 files watched")
    log_error("broken.tmpl: unexpected token")
"""

import sys
import time
from types import TracebackType
from typing import Optional, TextIO

# Global state for the timer
_start_time: Optional[float] = None
_output_stream: Optional[TextIO] = None  # None: current sys.stdout
_verbose: bool = True
_output_file: Optional[TextIO] = None


def init_timer(output_stream: Optional[TextIO] = None) -> None:
    """
    Initialize the program timer.

    Call this at program startup to set the reference time for all timestamps.
    If not called explicitly, it will be called automatically on first log.

    Args:
        output_stream: Optional output stream (defaults to sys.stdout)
    """
    global _start_time, _output_stream
    _start_time = time.time()
    if output_stream is not None:
        _output_stream = output_stream


def set_verbose(verbose: bool) -> None:
    """
    Set verbose mode for logging.

    Args:
        verbose: If True, all messages are printed. If False, only non-verbose messages.
    """
    global _verbose
    _verbose = verbose


def set_output_file(output_file: Optional[TextIO]) -> None:
    """
    Set a file to receive all log output (in addition to stdout).

    Args:
        output_file: File object to receive output, or None to disable file output
    """
    global _output_file
    _output_file = output_file


def get_elapsed() -> float:
    """Get elapsed time in seconds since timer initialization."""
    if _start_time is None:
        init_timer()
    return time.time() - _start_time  # type: ignore


def format_timestamp() -> str:
    """
    Format the current elapsed time as MM:SS.cc.

    Returns:
        Formatted timestamp string
    """
    elapsed = get_elapsed()
    minutes = int(elapsed // 60)
    seconds = elapsed % 60
    return f"{minutes:02d}:{seconds:05.2f}"


def _print(message: str, end: str = "\n") -> None:
    timestamp = format_timestamp()
    line = f"{timestamp} {message}{end}"
    stream = _output_stream if _output_stream is not None else sys.stdout
    stream.write(line)
    stream.flush()

    if _output_file is not None:
        _output_file.write(line)
        _output_file.flush()


def log(message: str, verbose_only: bool = False) -> None:
    """
    Log a message with timestamp.

    Args:
        message: Message to log
        verbose_only: If True, only print if verbose mode is enabled
    """
    if verbose_only and not _verbose:
        return
    _print(message)


def log_detail(message: str, indent: int = 6, verbose_only: bool = False) -> None:
    """
    Log a detail message (indented).

    Args:
        message: Detail message
        indent: Number of spaces to indent (default 6)
        verbose_only: If True, only print if verbose mode is enabled
    """
    if verbose_only and not _verbose:
        return
    _print(f"{' ' * indent}{message}")


def log_header(title: str, version: str) -> None:
    """Log the program banner."""
    _print(f"{title} v{version}")


def log_compiled(display_path: str, verbose_only: bool = False) -> None:
    """
    Log a successful compile.

    Format: Compiled <output>.

    Args:
        display_path: Output path relative to the working root
        verbose_only: If True, only print if verbose mode is enabled
    """
    if verbose_only and not _verbose:
        return
    _print(f"Compiled {display_path}.")


def log_error(message: str) -> None:
    """Log an error message. Always printed."""
    _print(f"ERROR: {message}")


def log_warning(message: str) -> None:
    """Log a warning message. Always printed."""
    _print(f"WARNING: {message}")


class TimedLogger:
    """
    Context manager for logging with elapsed time tracking.

    Usage:
        with TimedLogger("Compiling sources") as logger:
            # Do compilation
            logger.detail("Compiled 10 files")
        # Automatically logs completion time
    """

    def __init__(self, operation: str, verbose_only: bool = False):
        """
        Initialize timed logger.

        Args:
            operation: Description of the operation
            verbose_only: If True, only print if verbose mode is enabled
        """
        self.operation = operation
        self.verbose_only = verbose_only
        self.start_time = 0.0

    def __enter__(self) -> "TimedLogger":
        self.start_time = time.time()
        log(f"{self.operation}...", self.verbose_only)
        return self

    def __exit__(
        self,
        exc_type: Optional[type[BaseException]],
        exc_val: Optional[BaseException],
        exc_tb: Optional[TracebackType],
    ) -> None:
        del exc_val, exc_tb  # Unused
        elapsed = time.time() - self.start_time
        if exc_type is None:
            log_detail(f"Done ({elapsed:.2f}s)", verbose_only=self.verbose_only)
        return None

    def detail(self, message: str) -> None:
        """Log a detail message within this operation."""
        log_detail(message, verbose_only=self.verbose_only)
