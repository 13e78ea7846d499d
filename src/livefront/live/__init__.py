"""Live reload: notification hub and local file server.

Public API:
    LiveReloadHub: Connected pages + asset watch, ``fileModified`` fan-out.
    canonicalize: URL path -> canonical root-relative form.
    create_app: FastAPI application serving the working directory.
    serve_app: Run an application with uvicorn in the current loop.
"""

from .hub import (
    ClientPathMapping,
    LiveClient,
    LiveReloadHub,
    MessageType,
    ReloadAction,
    TransportError,
    canonicalize,
)
from .server import create_app, inject_client_script, serve_app

__all__ = [
    "ClientPathMapping",
    "LiveClient",
    "LiveReloadHub",
    "MessageType",
    "ReloadAction",
    "TransportError",
    "canonicalize",
    "create_app",
    "inject_client_script",
    "serve_app",
]
