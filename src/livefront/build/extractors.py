"""Per-dialect dependency extractors.

An extractor scans a source file's text for include/extends-style directives
and returns the raw reference strings exactly as written (minus quoting).
Resolving those references to files on disk is dialect-independent and lives
in the dependency graph; a dialect only contributes the default extension and
whether a directory reference may fall back to ``<ref>/index.<ext>``.
"""

import re
import threading
from dataclasses import dataclass, field
from typing import Callable, Optional

Extractor = Callable[[str], list[str]]

# Template directives: "include partial" / "extends layout" (also "extend")
_TEMPLATE_INCLUDE = re.compile(r"^[ \t]*include[ \t]+([^\n]+)", re.MULTILINE)
_TEMPLATE_EXTENDS = re.compile(r"^[ \t]*extends?[ \t]+([^\n]+)", re.MULTILINE)

# Stylesheet directive: @import "mixins"
_STYLUS_IMPORT = re.compile(r"^[ \t]*@import[ \t]+([^\n]+)", re.MULTILINE)


def clean_reference(raw: str) -> str:
    """Strip whitespace, a trailing semicolon and surrounding quotes."""
    ref = raw.strip()
    if ref.endswith(";"):
        ref = ref[:-1].rstrip()
    if len(ref) >= 2 and ref[0] == ref[-1] and ref[0] in ("'", '"'):
        ref = ref[1:-1].strip()
    return ref


def _extract_all(patterns: tuple[re.Pattern[str], ...], content: str) -> list[str]:
    refs: list[str] = []
    for pattern in patterns:
        for match in pattern.finditer(content):
            ref = clean_reference(match.group(1))
            if ref:
                refs.append(ref)
    return refs


def extract_template_references(content: str) -> list[str]:
    """Return include/extends targets of a jade-style template."""
    return _extract_all((_TEMPLATE_INCLUDE, _TEMPLATE_EXTENDS), content)


def extract_stylus_references(content: str) -> list[str]:
    """Return @import targets of a stylus stylesheet."""
    refs = _extract_all((_STYLUS_IMPORT,), content)
    # url(...) imports are fetched by the browser, not inlined at compile time
    return [ref for ref in refs if not ref.startswith("url(")]


@dataclass(frozen=True)
class Dialect:
    """A source dialect whose files can structurally include other files.

    Attributes:
        name: Human-readable dialect name
        extensions: File extensions belonging to this dialect
        default_extension: Extension appended to references that carry none
        extract: Function returning raw references found in a file's content
        index_fallback: Probe ``<ref>/index.<default_extension>`` when the
            direct candidate does not exist (stylesheet dialects)
    """

    name: str
    extensions: frozenset[str]
    default_extension: str
    extract: Extractor = field(compare=False)
    index_fallback: bool = False


JADE = Dialect(
    name="jade",
    extensions=frozenset({"jade"}),
    default_extension="jade",
    extract=extract_template_references,
)

STYLUS = Dialect(
    name="stylus",
    extensions=frozenset({"styl", "stylus"}),
    default_extension="styl",
    extract=extract_stylus_references,
    index_fallback=True,
)

TEMPLATE = Dialect(
    name="tmpl",
    extensions=frozenset({"tmpl"}),
    default_extension="tmpl",
    extract=extract_template_references,
)

_dialects: dict[str, Dialect] = {}
_dialects_lock = threading.Lock()


def register_dialect(dialect: Dialect) -> None:
    """Register a dialect for each of its extensions (replacing earlier ones)."""
    with _dialects_lock:
        for ext in dialect.extensions:
            _dialects[ext] = dialect


def get_dialect(extension: str) -> Optional[Dialect]:
    """Look up the dialect for a file extension (without the dot)."""
    with _dialects_lock:
        return _dialects.get(extension.lstrip("."))


def dialect_extensions() -> frozenset[str]:
    """All extensions with a registered dialect."""
    with _dialects_lock:
        return frozenset(_dialects)


for _builtin in (JADE, STYLUS, TEMPLATE):
    register_dialect(_builtin)
