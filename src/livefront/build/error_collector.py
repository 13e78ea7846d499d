"""
Error Collector - Structured error collection for rebuild sessions.

Scan, compile, dependency-resolution and transport problems are recorded here
instead of being raised, so a watch session keeps running and can still
report what went wrong.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class ErrorSeverity(Enum):
    """Severity level of a build error."""

    WARNING = "warning"
    ERROR = "error"
    FATAL = "fatal"


class ErrorPhase(Enum):
    """Where in a rebuild session the error happened."""

    SCAN = "scan"
    COMPILE = "compile"
    RESOLVE = "resolve"
    TRANSPORT = "transport"


@dataclass
class BuildError:
    """Single build error."""

    severity: ErrorSeverity
    phase: ErrorPhase
    file_path: Optional[str]
    error_message: str
    line: Optional[int] = None
    column: Optional[int] = None
    timestamp: float = field(default_factory=time.time)

    def format(self) -> str:
        """Format error as human-readable string.

        Returns:
            Formatted error message
        """
        lines = [f"[{self.severity.value.upper()}] {self.phase.value}: {self.error_message}"]

        if self.file_path:
            location = self.file_path
            if self.line is not None:
                location += f":{self.line}"
                if self.column is not None:
                    location += f":{self.column}"
            lines.append(f"  File: {location}")

        return "\n".join(lines)


class ErrorCollector:
    """Collects errors during a rebuild session."""

    def __init__(self, max_errors: int = 100):
        """Initialize error collector.

        Args:
            max_errors: Maximum number of errors to keep (oldest dropped first)
        """
        self.errors: list[BuildError] = []
        self.lock = threading.Lock()
        self.max_errors = max_errors

        logging.debug(f"ErrorCollector initialized (max_errors={max_errors})")

    def add_error(self, error: BuildError) -> None:
        """Add error to collection.

        Args:
            error: Build error to add
        """
        with self.lock:
            if len(self.errors) >= self.max_errors:
                logging.warning(f"ErrorCollector full ({self.max_errors} errors), dropping oldest")
                self.errors.pop(0)

            self.errors.append(error)

        logging.debug(f"Added {error.severity.value} error in phase {error.phase.value}: {error.error_message}")

    def get_errors(self, severity: Optional[ErrorSeverity] = None) -> list[BuildError]:
        """Get all errors, optionally filtered by severity."""
        with self.lock:
            if severity:
                return [e for e in self.errors if e.severity == severity]
            return self.errors.copy()

    def get_errors_by_phase(self, phase: ErrorPhase) -> list[BuildError]:
        with self.lock:
            return [e for e in self.errors if e.phase == phase]

    def get_errors_for_file(self, file_path: str) -> list[BuildError]:
        with self.lock:
            return [e for e in self.errors if e.file_path == file_path]

    def has_errors(self) -> bool:
        """Check if any errors (non-warning) occurred.

        Returns:
            True if errors exist
        """
        with self.lock:
            return any(e.severity in (ErrorSeverity.ERROR, ErrorSeverity.FATAL) for e in self.errors)

    def has_warnings(self) -> bool:
        with self.lock:
            return any(e.severity == ErrorSeverity.WARNING for e in self.errors)

    def get_error_count(self) -> dict[str, int]:
        """Get count of errors by severity.

        Returns:
            Dictionary with counts by severity
        """
        with self.lock:
            counts = {
                "warnings": sum(1 for e in self.errors if e.severity == ErrorSeverity.WARNING),
                "errors": sum(1 for e in self.errors if e.severity == ErrorSeverity.ERROR),
                "fatal": sum(1 for e in self.errors if e.severity == ErrorSeverity.FATAL),
                "total": len(self.errors),
            }
        return counts

    def format_errors(self, max_errors: Optional[int] = None) -> str:
        """Format all errors as human-readable string.

        Args:
            max_errors: Maximum number of errors to include (None = all)

        Returns:
            Formatted error report
        """
        with self.lock:
            if not self.errors:
                return "No errors"
            errors_to_show = self.errors if max_errors is None else self.errors[:max_errors]
            lines = [err.format() for err in errors_to_show]
            hidden = len(self.errors) - len(errors_to_show)

        if hidden > 0:
            lines.append(f"... and {hidden} more errors")
        lines.append(f"Summary: {self.format_summary()}")
        return "\n\n".join(lines)

    def format_summary(self) -> str:
        """Format a brief summary of errors.

        Returns:
            Brief error summary
        """
        counts = self.get_error_count()
        if counts["total"] == 0:
            return "No errors"

        parts = []
        if counts["fatal"] > 0:
            parts.append(f"{counts['fatal']} fatal")
        if counts["errors"] > 0:
            parts.append(f"{counts['errors']} errors")
        if counts["warnings"] > 0:
            parts.append(f"{counts['warnings']} warnings")

        return ", ".join(parts)

    def clear(self) -> None:
        """Clear all collected errors."""
        with self.lock:
            error_count = len(self.errors)
            self.errors.clear()

        if error_count > 0:
            logging.debug(f"Cleared {error_count} errors from ErrorCollector")
