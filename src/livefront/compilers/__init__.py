"""Compiler plugins for livefront.

Public API:
    Compiler: Protocol every dialect compiler implements.
    CompileError: Structured compile failure (message, line, column).
    CompilerRegistry: Extension -> compiler mapping with entry point discovery.
    TemplateCompiler: Built-in ``.tmpl`` dialect.
    default_compilers: Registry with built-ins and installed plugins.
"""

from .base import ENTRY_POINT_GROUP, CompileError, Compiler, CompilerRegistry
from .template import TemplateCompiler


def default_compilers(load_plugins: bool = True) -> CompilerRegistry:
    """Create a registry with the built-in dialects and installed plugins.

    Plugins are loaded after the built-ins, so a plugin may replace one.

    Args:
        load_plugins: Discover ``livefront.compilers`` entry points

    Returns:
        Populated CompilerRegistry
    """
    registry = CompilerRegistry()
    registry.register("tmpl", TemplateCompiler())
    if load_plugins:
        registry.load_entry_points()
    return registry


__all__ = [
    "ENTRY_POINT_GROUP",
    "CompileError",
    "Compiler",
    "CompilerRegistry",
    "TemplateCompiler",
    "default_compilers",
]
