"""
Live-reload hub - pushes file modifications to connected browser pages.

Each connected page first reports which stylesheets and scripts it loaded
(``resolvePaths``); the hub answers with the canonical form of every path
(``pathsResolved``) so both sides agree on one spelling per file. Whenever a
watched html/css/js file changes, every client receives ``fileModified`` with
the canonical path and the action that client should take:

- the path is one of its stylesheets: ``rewriteStylesheet`` (swap the link's
  href for a cache-busted one, no page reload)
- the path is one of its scripts or the page itself: ``reload``
- otherwise: ``none``

Canonical paths are root-relative POSIX paths with a leading slash, e.g.
``/css/site.css``. They are independent of the host OS path syntax, so the
mapping a browser holds stays valid whatever the server runs on.

Wire format (JSON text frames):
    client -> hub  {"type": "resolvePaths", "data": {"page": str, "css": [str], "js": [str]}}
    hub -> client  {"type": "pathsResolved", "data": {"page": str, "css": {canonical: original}, "js": {...}}}
    hub -> client  {"type": "fileModified", "data": {"path": str, "action": str, "original": str | null}}
    hub -> client  {"type": "error", "data": {"message": str}}
"""

import asyncio
import json
import logging
import os
import posixpath
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Coroutine, Iterable, Optional
from urllib.parse import unquote, urlsplit

from .. import config
from ..build.error_collector import BuildError, ErrorCollector, ErrorPhase, ErrorSeverity
from ..build.source_scanner import SourceScanner
from ..watch import Watcher

logger = logging.getLogger(__name__)

# Sends one text frame to a client
SendFunc = Callable[[str], Awaitable[None]]

DEFAULT_SEND_TIMEOUT = 5.0  # seconds


class MessageType(Enum):
    """Live-reload protocol message types."""

    RESOLVE_PATHS = "resolvePaths"
    PATHS_RESOLVED = "pathsResolved"
    FILE_MODIFIED = "fileModified"
    ERROR = "error"


class ReloadAction(Enum):
    """What a client does when a file it may depend on changes."""

    REWRITE_STYLESHEET = "rewriteStylesheet"
    FULL_RELOAD = "reload"
    NONE = "none"


class TransportError(Exception):
    """Delivering a message to a client failed."""

    def __init__(self, client_id: str, message: str):
        super().__init__(f"Client {client_id}: {message}")
        self.client_id = client_id


def canonicalize(reference: str, page_path: str = "/") -> Optional[str]:
    """Normalize a URL path as written in a page into its canonical form.

    Query strings and fragments are dropped, relative references are joined
    with the page's directory, ``.``/``..`` segments are collapsed (never
    above the root) and directory references map to their ``index.html``.

    Args:
        reference: href/src attribute value or page location
        page_path: Canonical path of the page the reference appears in

    Returns:
        Canonical path, or None for references to another origin
        (``https://...``, ``//cdn...``) and empty references

    Examples:
        >>> canonicalize("../c.css", "/a/b.html")
        '/c.css'
        >>> canonicalize("/docs/", "/")
        '/docs/index.html'
    """
    parts = urlsplit(reference.strip())
    if parts.scheme or parts.netloc:
        return None
    path = unquote(parts.path)
    if not path:
        return None

    if not path.startswith("/"):
        path = posixpath.join(posixpath.dirname(page_path) or "/", path)

    is_directory = path.endswith("/")
    normalized = "/" + posixpath.normpath(path).lstrip("/")
    if is_directory or normalized == "/":
        normalized = posixpath.join(normalized, "index.html")
    return normalized


@dataclass
class ClientPathMapping:
    """Canonical paths a page depends on, each mapped to its original spelling.

    Attributes:
        page_path: Canonical path of the page itself
        stylesheets: canonical -> original for ``<link href>`` values
        scripts: canonical -> original for ``<script src>`` values
    """

    page_path: Optional[str] = None
    stylesheets: dict[str, str] = field(default_factory=dict)
    scripts: dict[str, str] = field(default_factory=dict)

    def action_for(self, canonical: str) -> ReloadAction:
        if canonical in self.stylesheets:
            return ReloadAction.REWRITE_STYLESHEET
        if canonical in self.scripts or canonical == self.page_path:
            return ReloadAction.FULL_RELOAD
        return ReloadAction.NONE

    def original_for(self, canonical: str) -> Optional[str]:
        if canonical in self.stylesheets:
            return self.stylesheets[canonical]
        return self.scripts.get(canonical)


@dataclass
class LiveClient:
    """A connected page.

    Attributes:
        client_id: Unique identifier (UUID string)
        send: Coroutine function delivering one text frame
        mapping: Paths the page reported, empty until ``resolvePaths``
        connected_at: Unix timestamp of registration
        lock: Serializes sends so frames never interleave
    """

    client_id: str
    send: SendFunc
    mapping: ClientPathMapping = field(default_factory=ClientPathMapping)
    connected_at: float = field(default_factory=time.time)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)


def _message(msg_type: MessageType, data: dict[str, Any]) -> str:
    return json.dumps({"type": msg_type.value, "data": data})


def _string_list(value: Any, name: str) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ValueError(f"'{name}' must be a list of strings")
    return value


class LiveReloadHub:
    """Registry of connected pages plus the asset watch that feeds them.

    Usage:
        hub = LiveReloadHub(root)
        client = hub.register(websocket.send_text)
        await hub.handle_message(client, frame)
        ...
        hub.watch_assets(PollingWatcher())
    """

    def __init__(
        self,
        root: Path,
        error_collector: Optional[ErrorCollector] = None,
        send_timeout: float = DEFAULT_SEND_TIMEOUT,
    ):
        self.root = Path(root).resolve()
        self.errors = error_collector if error_collector is not None else ErrorCollector()
        self.send_timeout = send_timeout
        self._clients: dict[str, LiveClient] = {}
        self._watcher: Optional[Watcher] = None
        self._watched: list[Path] = []
        self._handlers: dict[MessageType, Callable[[LiveClient, dict[str, Any]], Coroutine[Any, Any, None]]] = {
            MessageType.RESOLVE_PATHS: self._handle_resolve_paths,
        }

    # Client registry

    def register(self, send: SendFunc) -> LiveClient:
        client = LiveClient(client_id=str(uuid.uuid4()), send=send)
        self._clients[client.client_id] = client
        logger.info(f"Live client {client.client_id} connected ({len(self._clients)} total)")
        return client

    def unregister(self, client_id: str) -> bool:
        client = self._clients.pop(client_id, None)
        if client is None:
            return False
        logger.info(f"Live client {client_id} disconnected ({len(self._clients)} remaining)")
        return True

    def get_client(self, client_id: str) -> Optional[LiveClient]:
        return self._clients.get(client_id)

    @property
    def clients(self) -> list[LiveClient]:
        return list(self._clients.values())

    # Protocol

    def resolve_paths(self, client: LiveClient, page: str, css: Iterable[str], js: Iterable[str]) -> dict[str, Any]:
        """Record a page's stylesheets and scripts in canonical form.

        Args:
            client: The reporting client
            page: The page's own location path
            css: Stylesheet hrefs as written in the page
            js: Script srcs as written in the page

        Returns:
            The ``pathsResolved`` message (as a dict) for the client
        """
        page_path = canonicalize(page) or "/index.html"
        stylesheets: dict[str, str] = {}
        scripts: dict[str, str] = {}
        for original in css:
            canonical = canonicalize(original, page_path)
            if canonical is not None:
                stylesheets[canonical] = original
        for original in js:
            canonical = canonicalize(original, page_path)
            if canonical is not None:
                scripts[canonical] = original

        client.mapping = ClientPathMapping(page_path=page_path, stylesheets=stylesheets, scripts=scripts)
        logger.debug(f"Client {client.client_id} page={page_path} css={len(stylesheets)} js={len(scripts)}")
        return {
            "type": MessageType.PATHS_RESOLVED.value,
            "data": {"page": page_path, "css": stylesheets, "js": scripts},
        }

    async def handle_message(self, client: LiveClient, raw: str) -> None:
        """Process one frame received from a client.

        Malformed frames are answered with an ``error`` message; they never
        disconnect the client.

        Raises:
            TransportError: If the reply cannot be delivered
        """
        try:
            message = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning(f"Invalid JSON from client {client.client_id}: {e}")
            await self._send_error(client, f"Invalid JSON: {e}")
            return

        if not isinstance(message, dict) or not message.get("type"):
            await self._send_error(client, "Missing message type")
            return

        try:
            msg_type = MessageType(message["type"])
        except ValueError:
            await self._send_error(client, f"Unknown message type: {message['type']}")
            return

        handler = self._handlers.get(msg_type)
        if handler is None:
            await self._send_error(client, f"No handler for message type: {msg_type.value}")
            return

        data = message.get("data")
        if data is None:
            data = {}
        if not isinstance(data, dict):
            await self._send_error(client, "Message data must be an object")
            return

        logger.debug(f"Processing {msg_type.value} from client {client.client_id}")
        await handler(client, data)

    async def _handle_resolve_paths(self, client: LiveClient, data: dict[str, Any]) -> None:
        page = data.get("page", "/")
        try:
            if not isinstance(page, str):
                raise ValueError("'page' must be a string")
            css = _string_list(data.get("css"), "css")
            js = _string_list(data.get("js"), "js")
        except ValueError as e:
            await self._send_error(client, str(e))
            return
        reply = self.resolve_paths(client, page, css, js)
        await self.send(client, json.dumps(reply))

    async def broadcast_file_modified(self, canonical: str) -> int:
        """Tell every client that ``canonical`` changed.

        Each client gets the action matching its own mapping. A client whose
        send fails is dropped; the others still receive the message.

        Returns:
            Number of clients the message was delivered to
        """
        clients = self.clients
        if not clients:
            return 0
        results = await asyncio.gather(*(self._deliver_file_modified(client, canonical) for client in clients))
        delivered = sum(1 for ok in results if ok)
        logger.debug(f"Broadcast fileModified {canonical} to {delivered}/{len(clients)} clients")
        return delivered

    async def _deliver_file_modified(self, client: LiveClient, canonical: str) -> bool:
        action = client.mapping.action_for(canonical)
        frame = _message(
            MessageType.FILE_MODIFIED,
            {"path": canonical, "action": action.value, "original": client.mapping.original_for(canonical)},
        )
        try:
            await self.send(client, frame)
        except TransportError as e:
            logger.warning(f"Dropping live client: {e}")
            self.errors.add_error(
                BuildError(
                    severity=ErrorSeverity.WARNING,
                    phase=ErrorPhase.TRANSPORT,
                    file_path=canonical,
                    error_message=str(e),
                )
            )
            self.unregister(client.client_id)
            return False
        return True

    async def send(self, client: LiveClient, frame: str) -> None:
        """Deliver one frame to a client.

        Raises:
            TransportError: If the send fails or times out
        """
        try:
            async with client.lock:
                await asyncio.wait_for(client.send(frame), timeout=self.send_timeout)
        except asyncio.TimeoutError as e:
            raise TransportError(client.client_id, "send timed out") from e
        except asyncio.CancelledError:
            raise
        except KeyboardInterrupt:
            raise
        except Exception as e:
            raise TransportError(client.client_id, f"{type(e).__name__}: {e}") from e

    async def _send_error(self, client: LiveClient, error_message: str) -> None:
        await self.send(client, _message(MessageType.ERROR, {"message": error_message}))

    # Filesystem <-> canonical

    def to_canonical(self, fs_path: Path) -> Optional[str]:
        """Canonical path of a file under the root, or None if outside it."""
        absolute = Path(os.path.normpath(Path(fs_path).absolute()))
        try:
            relative = absolute.relative_to(self.root)
        except ValueError:
            return None
        return "/" + relative.as_posix() if relative.parts else "/"

    def to_filesystem(self, canonical: str) -> Optional[Path]:
        """File path under the root for a canonical path, or None if it escapes the root."""
        normalized = posixpath.normpath("/" + canonical.lstrip("/"))
        candidate = Path(os.path.normpath(self.root / normalized.lstrip("/")))
        try:
            candidate.relative_to(self.root)
        except ValueError:
            return None
        return candidate

    async def notify_change(self, fs_path: Path) -> int:
        """Watch callback for generated assets."""
        canonical = self.to_canonical(fs_path)
        if canonical is None:
            logger.debug(f"Ignoring change outside root: {fs_path}")
            return 0
        return await self.broadcast_file_modified(canonical)

    # Asset watch

    def watch_assets(
        self,
        watcher: Watcher,
        recursive: bool = True,
        extensions: Optional[Iterable[str]] = None,
        interval: Optional[float] = None,
    ) -> list[Path]:
        """Subscribe every html/css/js file under the root to ``notify_change``.

        Must be called from within a running event loop.

        Returns:
            Subscribed paths
        """
        wanted = set(extensions) if extensions is not None else set(config.LIVE_ASSET_EXTENSIONS)
        scanner = SourceScanner(self.root, recursive=recursive, skip_dotfiles=True)
        paths = scanner.find_files(wanted)
        for path in paths:
            watcher.subscribe(path, self.notify_change, interval or config.ASSET_POLL_INTERVAL)
        self._watcher = watcher
        self._watched.extend(paths)
        logger.info(f"Watching {len(paths)} live assets under {self.root}")
        return paths

    def unwatch_assets(self) -> None:
        if self._watcher is None:
            return
        for path in self._watched:
            self._watcher.unsubscribe(path)
        self._watched.clear()
        self._watcher = None

    @property
    def watched_assets(self) -> list[Path]:
        return list(self._watched)
