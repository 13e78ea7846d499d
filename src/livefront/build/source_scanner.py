"""Source file discovery.

Finds candidate source files under a working root, filtered by a set of
recognized extensions. Used both for the compile pass (dialect sources, read
with their content) and for the live-reload asset watch (generated html/css/js,
paths only).
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional

logger = logging.getLogger(__name__)


class ScanError(Exception):
    """Raised when the scan root or a selected file cannot be listed or read."""

    def __init__(self, message: str, path: Optional[Path] = None):
        super().__init__(message)
        self.path = path


@dataclass
class SourceFile:
    """A discovered source file.

    Attributes:
        path: Canonical absolute path
        extension: Text after the final dot, without the dot
        content: UTF-8 content at scan time (None when only paths were requested)
        mtime: Modification time at scan time
    """

    path: Path
    extension: str
    content: Optional[str] = None
    mtime: float = 0.0


def split_extension(name: str) -> Optional[tuple[str, str]]:
    """Split a file name at its final dot.

    Args:
        name: File name (no directory part)

    Returns:
        (stem, extension) tuple, or None when the name has no dot
    """
    dot = name.rfind(".")
    if dot == -1:
        return None
    return name[:dot], name[dot + 1 :]


class SourceScanner:
    """Enumerates source files under a root directory.

    Usage:
        scanner = SourceScanner(Path("site"), recursive=True)
        for source in scanner.scan({"tmpl", "styl"}):
            print(source.path, source.extension)
    """

    def __init__(self, root: Path, recursive: bool = False, skip_dotfiles: bool = False):
        """Initialize scanner.

        Args:
            root: Directory to scan
            recursive: Descend into subdirectories (depth-first)
            skip_dotfiles: Exclude files whose name starts with a dot
        """
        self.root = Path(root).resolve()
        self.recursive = recursive
        self.skip_dotfiles = skip_dotfiles
        # files skipped by the last scan() because they are not UTF-8 text
        self.unreadable: list[ScanError] = []

    def find_files(self, extensions: Iterable[str]) -> list[Path]:
        """List regular files whose extension is in the given set.

        Args:
            extensions: Extensions without the leading dot

        Returns:
            Absolute paths of matching files, in no particular order

        Raises:
            ScanError: If the root (or a subdirectory) cannot be listed
        """
        wanted = {ext.lstrip(".") for ext in extensions}
        found: list[Path] = []
        self._walk(self.root, wanted, found)
        logger.debug(f"Found {len(found)} files under {self.root} matching {sorted(wanted)}")
        return found

    def _walk(self, directory: Path, wanted: set[str], found: list[Path]) -> None:
        try:
            with os.scandir(directory) as it:
                entries = list(it)
        except OSError as e:
            raise ScanError(f"Cannot list directory {directory}: {e}", directory) from e

        for entry in entries:
            try:
                if entry.is_dir(follow_symlinks=False):
                    if self.recursive:
                        self._walk(Path(entry.path), wanted, found)
                    continue
                if not entry.is_file():
                    # sockets, fifos, devices, dangling links
                    continue
            except OSError as e:
                raise ScanError(f"Cannot stat {entry.path}: {e}", Path(entry.path)) from e

            if self.skip_dotfiles and entry.name.startswith("."):
                continue

            parts = split_extension(entry.name)
            if parts is None or parts[1] not in wanted:
                continue
            found.append(Path(entry.path))

    def scan(self, extensions: Iterable[str]) -> list[SourceFile]:
        """Find matching files and read their content.

        Files that are not valid UTF-8 are left out and collected in
        ``unreadable``; the rest of the scan continues.

        Args:
            extensions: Extensions without the leading dot

        Returns:
            SourceFile list with content and mtime populated

        Raises:
            ScanError: If a directory cannot be listed or a file cannot be read
        """
        sources: list[SourceFile] = []
        self.unreadable = []
        for path in self.find_files(extensions):
            try:
                content = path.read_text(encoding="utf-8")
                mtime = path.stat().st_mtime
            except UnicodeDecodeError as e:
                logger.warning(f"Skipping {path}: not UTF-8 text ({e})")
                self.unreadable.append(ScanError(f"Cannot decode {path} as UTF-8: {e}", path))
                continue
            except OSError as e:
                raise ScanError(f"Cannot read {path}: {e}", path) from e

            _, extension = split_extension(path.name) or ("", "")
            sources.append(SourceFile(path=path, extension=extension, content=content, mtime=mtime))

        logger.info(f"Scanned {len(sources)} source files under {self.root}")
        return sources
