"""Bidirectional dependency index between source files.

An edge (dependency, dependent) means "dependent's compiled output is affected
when dependency changes": ``index.tmpl`` containing ``extends layout`` yields
the edge (layout.tmpl, index.tmpl). Edges are stored twice, once per
direction, so a file's outgoing edges can be cleared in O(edges) when it is
recompiled and its include list re-derived.
"""

import logging
import os
import threading
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Iterator

from .extractors import Dialect, get_dialect

logger = logging.getLogger(__name__)


class DependencyResolutionError(Exception):
    """A directive referenced a file that does not exist on disk."""

    def __init__(self, reference: str, source_path: Path, candidates: list[Path]):
        tried = ", ".join(str(c) for c in candidates)
        super().__init__(f"Cannot resolve '{reference}' referenced from {source_path} (tried: {tried})")
        self.reference = reference
        self.source_path = source_path
        self.candidates = candidates


@dataclass
class DependencyRecord:
    """Result of deriving one file's dependencies.

    Attributes:
        path: The dependent file
        resolved: Dependency targets that became edges
        unresolved: References that could not be found on disk
    """

    path: Path
    resolved: list[Path] = field(default_factory=list)
    unresolved: list[DependencyResolutionError] = field(default_factory=list)


def _has_extension(reference: str) -> bool:
    return PurePosixPath(reference).suffix != ""


def resolve_reference(reference: str, source_path: Path, dialect: Dialect) -> Path:
    """Resolve a raw directive reference to an absolute file path.

    The reference is taken relative to the including file's directory. When its
    final component carries no extension the dialect default is appended; for
    dialects with index fallback a missing direct candidate is retried as
    ``<reference>/index.<ext>``.

    Args:
        reference: Reference string as written in the source
        source_path: Absolute path of the including file
        dialect: Dialect of the including file

    Returns:
        Absolute, normalized path of an existing file

    Raises:
        DependencyResolutionError: If no candidate exists
    """
    base = source_path.parent
    candidates: list[Path] = []

    if _has_extension(reference):
        candidates.append(Path(os.path.normpath(base / reference)))
    else:
        direct = base / f"{reference}.{dialect.default_extension}"
        candidates.append(Path(os.path.normpath(direct)))
        if dialect.index_fallback:
            index = base / reference / f"index.{dialect.default_extension}"
            candidates.append(Path(os.path.normpath(index)))

    for candidate in candidates:
        if candidate.is_file():
            return candidate

    raise DependencyResolutionError(reference, source_path, candidates)


class DependencyGraph:
    """Mutually-inverse dependents/dependencies indices.

    Thread-safe; all mutations happen under a single lock so the two indices
    are never observed out of sync.

    Usage:
        graph = DependencyGraph()
        graph.record_dependencies(index_path, "tmpl", index_path.read_text())
        for dependent in graph.dependents_of(layout_path):
            ...
    """

    def __init__(self) -> None:
        self._dependents: dict[Path, set[Path]] = {}
        self._dependencies: dict[Path, set[Path]] = {}
        self._lock = threading.Lock()

    def add_edge(self, dependency: Path, dependent: Path) -> None:
        """Record that ``dependent`` structurally includes ``dependency``.

        Idempotent: adding an existing edge has no effect.
        """
        with self._lock:
            self._dependents.setdefault(dependency, set()).add(dependent)
            self._dependencies.setdefault(dependent, set()).add(dependency)

    def clear_dependencies(self, path: Path) -> None:
        """Remove every edge in which ``path`` is the dependent."""
        with self._lock:
            for dependency in self._dependencies.pop(path, set()):
                dependents = self._dependents.get(dependency)
                if dependents is None:
                    continue
                dependents.discard(path)
                if not dependents:
                    del self._dependents[dependency]

    def record_dependencies(self, path: Path, extension: str, content: str) -> DependencyRecord:
        """Derive and store the dependencies declared in ``content``.

        Existing edges are kept; callers that re-derive a file's dependencies
        clear them first with ``clear_dependencies``.

        Args:
            path: Absolute path of the file
            extension: The file's extension, selects the dialect
            content: Current file content

        Returns:
            DependencyRecord listing resolved targets and unresolved references
        """
        record = DependencyRecord(path=path)
        dialect = get_dialect(extension)
        if dialect is None:
            return record

        for reference in dialect.extract(content):
            try:
                target = resolve_reference(reference, path, dialect)
            except DependencyResolutionError as e:
                logger.warning(str(e))
                record.unresolved.append(e)
                continue
            self.add_edge(target, path)
            record.resolved.append(target)

        logger.debug(f"Recorded {len(record.resolved)} dependencies for {path} ({len(record.unresolved)} unresolved)")
        return record

    def dependents_of(self, path: Path) -> set[Path]:
        """Files whose output includes ``path`` directly."""
        with self._lock:
            return set(self._dependents.get(path, ()))

    def dependencies_of(self, path: Path) -> set[Path]:
        """Files directly included by ``path``."""
        with self._lock:
            return set(self._dependencies.get(path, ()))

    def transitive_dependents_of(self, path: Path) -> list[Path]:
        """All files reachable through dependents edges, nearest first.

        Cycles are tolerated; ``path`` itself is never part of the result.
        """
        seen: set[Path] = {path}
        order: list[Path] = []
        queue: deque[Path] = deque([path])
        while queue:
            current = queue.popleft()
            for dependent in sorted(self.dependents_of(current)):
                if dependent in seen:
                    continue
                seen.add(dependent)
                order.append(dependent)
                queue.append(dependent)
        return order

    def edges(self) -> Iterator[tuple[Path, Path]]:
        """Snapshot of all (dependency, dependent) pairs."""
        with self._lock:
            pairs = [(dep, dependent) for dep, dependents in self._dependents.items() for dependent in dependents]
        return iter(pairs)

    def __contains__(self, edge: object) -> bool:
        if not isinstance(edge, tuple) or len(edge) != 2:
            return False
        dependency, dependent = edge
        with self._lock:
            return dependent in self._dependents.get(dependency, ())

    def __len__(self) -> int:
        with self._lock:
            return sum(len(dependents) for dependents in self._dependents.values())
