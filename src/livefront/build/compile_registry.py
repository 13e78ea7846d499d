"""Per-file compile actions.

Each discovered source file gets exactly one CompileAction bound to the
compiler for its extension. An action is idempotent: every run reads the file
from disk again, renders it, and writes the output, so it can be re-run on
every modification and on every cascade that reaches it.
"""

import asyncio
import logging
import os
import threading
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from .. import output
from ..compilers import CompileError, Compiler
from .source_scanner import split_extension

logger = logging.getLogger(__name__)


class FileState(Enum):
    """Compile state of a source file."""

    UNINITIALIZED = "uninitialized"
    COMPILED = "compiled"
    FAILED = "failed"


@dataclass
class CompileOutcome:
    """Result of a single compile run.

    Attributes:
        source_path: File that was compiled
        output_path: File that was (or would have been) written
        success: True if output was written
        error: CompileError describing the failure, if any
        duration: Wall-clock seconds spent in the run
    """

    source_path: Path
    output_path: Path
    success: bool
    error: Optional[CompileError] = None
    duration: float = 0.0


class CompileAction:
    """Compile one source file with its bound compiler."""

    def __init__(
        self,
        source_path: Path,
        compiler: Compiler,
        output_path: Path,
        root: Path,
        options: Optional[dict[str, Any]] = None,
    ):
        self.source_path = source_path
        self.compiler = compiler
        self.output_path = output_path
        self.root = root
        self.options = dict(options or {})
        self.state = FileState.UNINITIALIZED
        self.last_error: Optional[CompileError] = None
        self.run_count = 0
        # serializes render+write when cascades for different files reach this one
        self._run_lock = asyncio.Lock()

    @property
    def display_path(self) -> str:
        return _display(self.source_path, self.root)

    @property
    def display_output_path(self) -> str:
        return _display(self.output_path, self.root)

    async def run(self) -> CompileOutcome:
        """Compile the file and write its output.

        Never raises for compiler or output failures: the action moves to
        FAILED, the failure is logged with the file's display path, and the
        returned outcome carries the error.

        Runs of the same action never overlap: a run that arrives while
        another is rendering waits for it, then reads the file afresh.

        Returns:
            CompileOutcome for this run
        """
        async with self._run_lock:
            return await self._run_locked()

    async def _run_locked(self) -> CompileOutcome:
        self.run_count += 1
        start = time.time()
        options = {"filename": str(self.source_path), "root": str(self.root), **self.options}

        try:
            rendered = await asyncio.to_thread(self.compiler.render, self.source_path, options)
            await asyncio.to_thread(_write_output, self.output_path, rendered)
        except asyncio.CancelledError:
            raise
        except KeyboardInterrupt:
            raise
        except CompileError as e:
            return self._failed(e, start)
        except OSError as e:
            return self._failed(CompileError(f"Cannot write {self.display_output_path}: {e}"), start)
        except Exception as e:
            logger.debug(f"Compiler {type(self.compiler).__name__} raised for {self.source_path}", exc_info=True)
            return self._failed(CompileError(f"{type(e).__name__}: {e}"), start)

        duration = time.time() - start
        self.state = FileState.COMPILED
        self.last_error = None
        output.log_compiled(self.display_output_path)
        logger.info(f"Compiled {self.source_path} -> {self.output_path} ({duration:.2f}s)")
        return CompileOutcome(self.source_path, self.output_path, success=True, duration=duration)

    def _failed(self, error: CompileError, start: float) -> CompileOutcome:
        self.state = FileState.FAILED
        self.last_error = error
        output.log_error(f"{self.display_path}: {error.format()}")
        logger.warning(f"Compile failed for {self.source_path}: {error.format()}")
        return CompileOutcome(self.source_path, self.output_path, success=False, error=error, duration=time.time() - start)


def _write_output(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


def _display(path: Path, root: Path) -> str:
    try:
        return Path(os.path.relpath(path, root)).as_posix()
    except ValueError:
        # different drive on Windows
        return str(path)


class CompileRegistry:
    """One CompileAction per source file.

    Usage:
        registry = CompileRegistry(root)
        action = registry.bind(path, compilers.get("tmpl"))
        await action.run()
    """

    def __init__(self, root: Path, output_dir: Optional[Path] = None):
        """Initialize the registry.

        Args:
            root: Working root; display paths are relative to it
            output_dir: Mirror outputs under this directory instead of
                writing them next to their sources
        """
        self.root = Path(root).resolve()
        self.output_dir = Path(output_dir).resolve() if output_dir is not None else None
        self._actions: dict[Path, CompileAction] = {}
        self._lock = threading.Lock()

    def output_path_for(self, source_path: Path, compiler: Compiler) -> Path:
        """Compute where the output of ``source_path`` is written."""
        parts = split_extension(source_path.name)
        stem = parts[0] if parts is not None else source_path.name
        name = f"{stem}.{compiler.output_extension}"

        if self.output_dir is None:
            return source_path.parent / name
        try:
            relative_dir = source_path.parent.relative_to(self.root)
        except ValueError:
            relative_dir = Path()
        return self.output_dir / relative_dir / name

    def bind(self, source_path: Path, compiler: Compiler, options: Optional[dict[str, Any]] = None) -> CompileAction:
        """Create the action for a file, or return the existing one.

        Args:
            source_path: Absolute source path
            compiler: Compiler for the file's extension
            options: Extra compiler options

        Returns:
            The file's CompileAction
        """
        with self._lock:
            action = self._actions.get(source_path)
            if action is None:
                action = CompileAction(
                    source_path=source_path,
                    compiler=compiler,
                    output_path=self.output_path_for(source_path, compiler),
                    root=self.root,
                    options=options,
                )
                self._actions[source_path] = action
                logger.debug(f"Bound {type(compiler).__name__} to {source_path}")
            return action

    def get(self, source_path: Path) -> Optional[CompileAction]:
        with self._lock:
            return self._actions.get(source_path)

    def actions(self) -> list[CompileAction]:
        with self._lock:
            return sorted(self._actions.values(), key=lambda action: action.source_path)

    def states(self) -> dict[Path, FileState]:
        with self._lock:
            return {path: action.state for path, action in self._actions.items()}

    def failed(self) -> list[CompileAction]:
        """Actions whose most recent run failed."""
        with self._lock:
            return [action for action in self._actions.values() if action.state == FileState.FAILED]

    def __contains__(self, source_path: object) -> bool:
        with self._lock:
            return source_path in self._actions

    def __len__(self) -> int:
        with self._lock:
            return len(self._actions)
