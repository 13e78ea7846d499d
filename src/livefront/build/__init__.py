"""Incremental build pipeline.

Public API:
    SourceScanner: Discover source files under a root.
    DependencyGraph: Bidirectional include/extends/import index.
    CompileRegistry: One CompileAction per source file.
    RebuildEngine: Initial pass + dependency-aware cascades on modification.
    ErrorCollector: Structured scan/compile/resolve problems.
"""

from .compile_registry import CompileAction, CompileOutcome, CompileRegistry, FileState
from .dependency_graph import DependencyGraph, DependencyRecord, DependencyResolutionError, resolve_reference
from .error_collector import BuildError, ErrorCollector, ErrorPhase, ErrorSeverity
from .extractors import Dialect, dialect_extensions, get_dialect, register_dialect
from .orchestrator import BuildSummary, CascadeResult, RebuildEngine
from .source_scanner import ScanError, SourceFile, SourceScanner

__all__ = [
    "BuildError",
    "BuildSummary",
    "CascadeResult",
    "CompileAction",
    "CompileOutcome",
    "CompileRegistry",
    "DependencyGraph",
    "DependencyRecord",
    "DependencyResolutionError",
    "Dialect",
    "ErrorCollector",
    "ErrorPhase",
    "ErrorSeverity",
    "FileState",
    "RebuildEngine",
    "ScanError",
    "SourceFile",
    "SourceScanner",
    "dialect_extensions",
    "get_dialect",
    "register_dialect",
    "resolve_reference",
]
