"""Built-in ``.tmpl`` template dialect.

A deliberately small layout language that exercises the rebuild engine
without third-party compilers:

    extends layout          <- render layout.tmpl, put the rest of this file
                               where the layout says {{ body }}
    include partials/nav    <- replaced by the rendered partials/nav.tmpl

References without an extension get ``.tmpl``; paths are relative to the
including file. Everything else is copied through verbatim.
"""

import re
from pathlib import Path
from typing import Any, Optional

from .base import CompileError

BODY_MARKER = "{{ body }}"

_INCLUDE = re.compile(r"^([ \t]*)include[ \t]+(.+?)[ \t]*$")
_EXTENDS = re.compile(r"^[ \t]*extends?[ \t]+(.+?)[ \t]*$")


def _reference_path(reference: str, including_file: Path) -> Path:
    if Path(reference).suffix == "":
        reference = f"{reference}.tmpl"
    return (including_file.parent / reference).resolve()


class TemplateCompiler:
    """Renders ``.tmpl`` files to HTML."""

    output_extension = "html"

    def render(self, source_path: Path, options: dict[str, Any]) -> str:
        del options  # No options for this dialect
        return self._render_file(Path(source_path).resolve(), stack=[])

    def _read(self, path: Path, referenced_from: Optional[Path], line: Optional[int]) -> str:
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError as e:
            if referenced_from is None:
                raise CompileError(f"Source file not found: {path}", path=path) from e
            raise CompileError(f"Included file not found: {path.name}", line=line, path=referenced_from) from e
        except (OSError, UnicodeDecodeError) as e:
            raise CompileError(f"Cannot read {path}: {e}", path=path) from e

    def _render_file(
        self,
        path: Path,
        stack: list[Path],
        referenced_from: Optional[Path] = None,
        line: Optional[int] = None,
    ) -> str:
        if path in stack:
            chain = " -> ".join(p.name for p in stack + [path])
            raise CompileError(f"Include cycle: {chain}", line=line, path=referenced_from)

        content = self._read(path, referenced_from, line)
        stack = stack + [path]

        layout: Optional[tuple[Path, int]] = None
        body_lines: list[str] = []
        for lineno, text in enumerate(content.splitlines(), start=1):
            extends = _EXTENDS.match(text)
            if extends:
                if layout is not None:
                    raise CompileError("Only one extends directive is allowed", line=lineno, path=path)
                layout = (_reference_path(extends.group(1), path), lineno)
                continue

            include = _INCLUDE.match(text)
            if include:
                indent = include.group(1)
                target = _reference_path(include.group(2), path)
                rendered = self._render_file(target, stack, referenced_from=path, line=lineno)
                body_lines.extend(f"{indent}{part}" if part else part for part in rendered.splitlines())
                continue

            body_lines.append(text)

        body = "\n".join(body_lines)
        if layout is None:
            return body

        layout_path, layout_line = layout
        rendered_layout = self._render_file(layout_path, stack, referenced_from=path, line=layout_line)
        if BODY_MARKER not in rendered_layout:
            raise CompileError(f"Layout {layout_path.name} has no {BODY_MARKER} marker", line=layout_line, path=path)
        return rendered_layout.replace(BODY_MARKER, body.strip("\n"))
