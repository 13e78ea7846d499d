"""Compiler plugin contract.

A compiler turns one source file into output text. Compilers are external
collaborators: livefront only needs ``render`` and the extension of the
generated file. Plugins are registered per source extension, either directly
or through the ``livefront.compilers`` entry point group, where the entry
point name is the source extension and the object is a compiler instance or
a zero-argument factory returning one.

Example plugin (in a third-party package's pyproject.toml):

    [project.entry-points."livefront.compilers"]
    styl = "livefront_stylus:StylusCompiler"
"""

import logging
import threading
from importlib.metadata import entry_points
from pathlib import Path
from typing import Any, Optional, Protocol, runtime_checkable

logger = logging.getLogger(__name__)

ENTRY_POINT_GROUP = "livefront.compilers"


class CompileError(Exception):
    """Structured transformation failure reported by a compiler.

    Attributes:
        message: Human-readable failure description
        line: 1-based line number, if known
        column: 1-based column number, if known
        path: Source file the error points into, if known
    """

    def __init__(
        self,
        message: str,
        line: Optional[int] = None,
        column: Optional[int] = None,
        path: Optional[Path] = None,
    ):
        super().__init__(message)
        self.message = message
        self.line = line
        self.column = column
        self.path = path

    def format(self) -> str:
        """Format as ``message (line L, column C)``."""
        location = []
        if self.line is not None:
            location.append(f"line {self.line}")
        if self.column is not None:
            location.append(f"column {self.column}")
        if not location:
            return self.message
        return f"{self.message} ({', '.join(location)})"


@runtime_checkable
class Compiler(Protocol):
    """Protocol implemented by every compiler plugin."""

    output_extension: str

    def render(self, source_path: Path, options: dict[str, Any]) -> str:
        """Compile ``source_path`` and return the output text.

        Args:
            source_path: Absolute path of the file to compile; the compiler
                reads it from disk on every call.
            options: Compiler options (``filename``, ``root``)

        Raises:
            CompileError: On a structured compile failure
        """
        ...


class CompilerRegistry:
    """Maps source file extensions to compiler plugins."""

    def __init__(self) -> None:
        self._compilers: dict[str, Compiler] = {}
        self._lock = threading.Lock()

    def register(self, extension: str, compiler: Compiler) -> None:
        """Register (or replace) the compiler for an extension."""
        if not isinstance(compiler, Compiler):
            raise TypeError(f"{compiler!r} does not implement the Compiler protocol")
        with self._lock:
            self._compilers[extension.lstrip(".")] = compiler
        logger.debug(f"Registered compiler for .{extension.lstrip('.')}: {type(compiler).__name__}")

    def get(self, extension: str) -> Optional[Compiler]:
        with self._lock:
            return self._compilers.get(extension.lstrip("."))

    @property
    def extensions(self) -> frozenset[str]:
        """Source extensions with a registered compiler."""
        with self._lock:
            return frozenset(self._compilers)

    def load_entry_points(self) -> int:
        """Register every compiler advertised under the plugin entry point group.

        A plugin that fails to load is logged and skipped.

        Returns:
            Number of compilers registered
        """
        loaded = 0
        for ep in entry_points(group=ENTRY_POINT_GROUP):
            try:
                obj = ep.load()
                compiler = obj() if isinstance(obj, type) or not isinstance(obj, Compiler) else obj
                self.register(ep.name, compiler)
                loaded += 1
            except KeyboardInterrupt:
                raise
            except Exception as e:
                logger.error(f"Failed to load compiler plugin '{ep.name}' ({ep.value}): {e}", exc_info=True)
        if loaded:
            logger.info(f"Loaded {loaded} compiler plugins from entry points")
        return loaded

    def __contains__(self, extension: object) -> bool:
        if not isinstance(extension, str):
            return False
        return self.get(extension) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._compilers)
