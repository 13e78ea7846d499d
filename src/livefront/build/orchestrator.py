"""
Rebuild Engine - dependency-aware incremental recompilation.

Wires the source scanner, dependency graph, compile registry and watcher
together:

1. Initial pass: scan the root, bind one CompileAction per source, compile it,
   record its dependencies and (in watch mode) subscribe it to the watcher.
2. Watch callback for file F (a "cascade"): re-read F, compile it, replace
   F's dependency edges with the ones derived from the fresh content, then
   compile every file that depends on F.

Cascades for the same file never overlap: each file has its own lock, and
modifications arriving while a cascade is running coalesce into at most one
follow-up cascade. Cascades for different files run independently, so a hung
compiler stalls only the file it is compiling.

Example:
    >>> import asyncio
    >>> from pathlib import Path
    >>> from livefront.build.orchestrator import RebuildEngine
    >>>
    >>> async def main():
    ...     engine = RebuildEngine(Path("site"), recursive=True, watch=True)
    ...     await engine.start()
    ...     await engine.serve_forever()
    >>>
    >>> asyncio.run(main())
"""

import asyncio
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from .. import config, output
from ..compilers import CompilerRegistry, default_compilers
from ..watch import PollingWatcher, Watcher
from .compile_registry import CompileAction, CompileOutcome, CompileRegistry, FileState
from .dependency_graph import DependencyGraph, DependencyRecord, DependencyResolutionError
from .error_collector import BuildError, ErrorCollector, ErrorPhase, ErrorSeverity
from .extractors import get_dialect
from .source_scanner import ScanError, SourceScanner

logger = logging.getLogger(__name__)


@dataclass
class CascadeResult:
    """Outcome of one cascade.

    Attributes:
        trigger: The modified file
        compiled: Files compiled successfully, in order
        failed: Files whose compile failed, in order
        skipped: Files reached by the cascade that have no compile action
        unresolved: Unresolvable references found while re-deriving edges
    """

    trigger: Path
    compiled: list[Path] = field(default_factory=list)
    failed: list[Path] = field(default_factory=list)
    skipped: list[Path] = field(default_factory=list)
    unresolved: list[DependencyResolutionError] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return not self.failed


@dataclass
class BuildSummary:
    """Outcome of the initial compile pass."""

    compiled: list[Path] = field(default_factory=list)
    failed: list[Path] = field(default_factory=list)
    watched: list[Path] = field(default_factory=list)
    unresolved: list[DependencyResolutionError] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.failed


class RebuildEngine:
    """Owns the dependency graph, compile registry and watcher of one session."""

    def __init__(
        self,
        root: Path,
        compilers: Optional[CompilerRegistry] = None,
        watcher: Optional[Watcher] = None,
        recursive: bool = False,
        watch: bool = False,
        output_dir: Optional[Path] = None,
        transitive: bool = False,
        poll_interval: Optional[float] = None,
        error_collector: Optional[ErrorCollector] = None,
    ) -> None:
        """Initialize the engine.

        Args:
            root: Working directory holding the sources
            compilers: Compiler plugins by extension (default: built-ins + entry points)
            watcher: Watcher implementation (default: PollingWatcher, created on start)
            recursive: Scan subdirectories
            watch: Subscribe sources and recompile on modification
            output_dir: Mirror outputs under this directory
            transitive: Cascade to the full dependent closure instead of direct dependents
            poll_interval: Per-file watch interval in seconds (default: the watcher's own)
            error_collector: Collector for scan/compile/resolve problems
        """
        self.root = Path(root).resolve()
        self.compilers = compilers if compilers is not None else default_compilers()
        self.watcher = watcher
        self.watch = watch
        self.transitive = transitive
        self.poll_interval = poll_interval
        self.scanner = SourceScanner(self.root, recursive=recursive)
        self.graph = DependencyGraph()
        self.registry = CompileRegistry(self.root, output_dir)
        self.errors = error_collector if error_collector is not None else ErrorCollector()

        self._extensions: dict[Path, str] = {}
        self._cascade_locks: dict[Path, asyncio.Lock] = {}
        self._queued: dict[Path, asyncio.Task[CascadeResult]] = {}
        self._stopped: Optional[asyncio.Event] = None

        logger.info(f"RebuildEngine initialized (root={self.root}, recursive={recursive}, watch={watch}, transitive={transitive})")

    def display_path(self, path: Path) -> str:
        try:
            return Path(os.path.relpath(path, self.root)).as_posix()
        except ValueError:
            return str(path)

    def state_of(self, path: Path) -> FileState:
        action = self.registry.get(Path(path).resolve())
        return action.state if action is not None else FileState.UNINITIALIZED

    async def start(self) -> BuildSummary:
        """Scan, compile every source once, record dependencies and subscribe.

        Returns:
            BuildSummary of the initial pass

        Raises:
            ScanError: If the root cannot be scanned (fatal)
        """
        self._stopped = asyncio.Event()
        summary = BuildSummary()

        try:
            sources = await asyncio.to_thread(self.scanner.scan, self.compilers.extensions)
        except ScanError as e:
            self.errors.add_error(
                BuildError(
                    severity=ErrorSeverity.FATAL,
                    phase=ErrorPhase.SCAN,
                    file_path=str(e.path) if e.path else None,
                    error_message=str(e),
                )
            )
            raise

        for skipped in self.scanner.unreadable:
            output.log_error(f"{self.display_path(skipped.path)}: not UTF-8 text, skipped")
            self.errors.add_error(
                BuildError(
                    severity=ErrorSeverity.ERROR,
                    phase=ErrorPhase.SCAN,
                    file_path=self.display_path(skipped.path),
                    error_message=str(skipped),
                )
            )

        if self.watch and self.watcher is None:
            self.watcher = PollingWatcher(self.poll_interval or config.POLL_INTERVAL)

        for source in sources:
            compiler = self.compilers.get(source.extension)
            if compiler is None:
                continue
            action = self.registry.bind(source.path, compiler)
            self._extensions[source.path] = source.extension

            outcome = await action.run()
            self._collect_outcome(outcome, summary.compiled, summary.failed)

            if get_dialect(source.extension) is not None and source.content is not None:
                record = self.graph.record_dependencies(source.path, source.extension, source.content)
                self._collect_unresolved(record, summary.unresolved)

            if self.watch and self.watcher is not None:
                self.watcher.subscribe(source.path, self.handle_modification, self.poll_interval)
                summary.watched.append(source.path)

        logger.info(f"Initial pass: {len(summary.compiled)} compiled, {len(summary.failed)} failed, {len(summary.watched)} watched")
        return summary

    async def handle_modification(self, path: Path) -> CascadeResult:
        """Watch callback: run (or join) a cascade for ``path``.

        At most one cascade per file runs at a time. A call made while one is
        running queues a single follow-up; calls made while a follow-up is
        already queued share its result.
        """
        path = Path(path).resolve()
        queued = self._queued.get(path)
        if queued is not None:
            logger.debug(f"Cascade for {path} already queued, coalescing")
            return await asyncio.shield(queued)

        task = asyncio.get_running_loop().create_task(self._run_serialized(path))
        self._queued[path] = task
        return await asyncio.shield(task)

    async def _run_serialized(self, path: Path) -> CascadeResult:
        lock = self._cascade_locks.setdefault(path, asyncio.Lock())
        async with lock:
            # from here on, new events queue a fresh follow-up
            if self._queued.get(path) is asyncio.current_task():
                del self._queued[path]
            return await self._cascade(path)

    async def _cascade(self, path: Path) -> CascadeResult:
        result = CascadeResult(trigger=path)
        action = self.registry.get(path)

        if action is not None:
            content: Optional[str]
            try:
                content = await asyncio.to_thread(path.read_text, encoding="utf-8")
            except (OSError, UnicodeDecodeError) as e:
                logger.warning(f"Cannot re-read {path}: {e}")
                content = None

            outcome = await action.run()
            self._collect_outcome(outcome, result.compiled, result.failed)

            if outcome.success and content is not None:
                # no await between clear and record
                extension = self._extensions.get(path, path.suffix.lstrip("."))
                self.graph.clear_dependencies(path)
                record = self.graph.record_dependencies(path, extension, content)
                self._collect_unresolved(record, result.unresolved)
        else:
            logger.debug(f"{path} has no compile action; cascading to dependents only")

        if self.transitive:
            targets = self.graph.transitive_dependents_of(path)
        else:
            targets = sorted(self.graph.dependents_of(path))

        for dependent in targets:
            dependent_action = self.registry.get(dependent)
            if dependent_action is None:
                result.skipped.append(dependent)
                continue
            output.log(f"Compiling dependent: {self.display_path(dependent)}")
            outcome = await dependent_action.run()
            self._collect_outcome(outcome, result.compiled, result.failed)

        logger.info(f"Cascade for {self.display_path(path)}: {len(result.compiled)} compiled, {len(result.failed)} failed")
        return result

    def _collect_outcome(self, outcome: CompileOutcome, compiled: list[Path], failed: list[Path]) -> None:
        if outcome.success:
            compiled.append(outcome.source_path)
            return
        failed.append(outcome.source_path)
        error = outcome.error
        self.errors.add_error(
            BuildError(
                severity=ErrorSeverity.ERROR,
                phase=ErrorPhase.COMPILE,
                file_path=self.display_path(outcome.source_path),
                error_message=error.message if error else "compile failed",
                line=error.line if error else None,
                column=error.column if error else None,
            )
        )

    def _collect_unresolved(self, record: DependencyRecord, sink: list[DependencyResolutionError]) -> None:
        for unresolved in record.unresolved:
            sink.append(unresolved)
            output.log_warning(f"{self.display_path(record.path)}: cannot resolve '{unresolved.reference}'")
            self.errors.add_error(
                BuildError(
                    severity=ErrorSeverity.WARNING,
                    phase=ErrorPhase.RESOLVE,
                    file_path=self.display_path(record.path),
                    error_message=str(unresolved),
                )
            )

    def action_for(self, path: Path) -> Optional[CompileAction]:
        return self.registry.get(Path(path).resolve())

    async def serve_forever(self) -> None:
        """Block until ``stop()`` is called."""
        if self._stopped is None:
            self._stopped = asyncio.Event()
        await self._stopped.wait()

    async def stop(self) -> None:
        """Stop watching and cancel queued cascades."""
        for task in list(self._queued.values()):
            task.cancel()
        self._queued.clear()
        if self.watcher is not None:
            await self.watcher.close()
        if self._stopped is not None:
            self._stopped.set()
        logger.info("RebuildEngine stopped")
