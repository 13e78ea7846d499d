"""Local static file server with optional live reload.

Serves the working directory over HTTP. With a LiveReloadHub attached, every
HTML response gets the live-reload client injected and browsers connect back
over a websocket to receive ``fileModified`` notifications.
"""

from __future__ import annotations

import asyncio
import logging
import mimetypes
from importlib import resources
from pathlib import Path

import uvicorn
from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import FileResponse, HTMLResponse, PlainTextResponse, RedirectResponse, Response

from .. import config, output
from .hub import LiveReloadHub, TransportError

logger = logging.getLogger(__name__)

NOT_FOUND_MESSAGE = "File not found."
UNSUPPORTED_MESSAGE = "Unsupported request type."
UNSUPPORTED_METHODS = ["POST", "PUT", "PATCH", "DELETE", "OPTIONS", "HEAD"]

CLIENT_SCRIPT_TAG = f'<script src="{config.CLIENT_SCRIPT_URL}"></script>'


def load_client_script() -> str:
    """Read the packaged browser client."""
    script = resources.files(__package__).joinpath("static", "live.js")
    return script.read_text(encoding="utf-8")


def inject_client_script(html: str, tag: str = CLIENT_SCRIPT_TAG) -> str:
    """Insert the client script before ``</body>``, or append it when there is none."""
    if "</body>" in html:
        return html.replace("</body>", tag + "</body>", 1)
    return html + tag


def resolve_under_root(root: Path, url_path: str) -> Path | None:
    """Map a request path onto the filesystem, refusing anything outside ``root``."""
    candidate = (root / url_path.lstrip("/")).resolve()
    try:
        candidate.relative_to(root)
    except ValueError:
        return None
    return candidate


def create_app(root: Path, hub: LiveReloadHub | None = None) -> FastAPI:
    """Build the server application.

    Args:
        root: Directory to serve
        hub: Live-reload hub; enables the client script, the websocket
            endpoint and script injection into HTML pages

    Returns:
        FastAPI application
    """
    root = Path(root).resolve()
    app = FastAPI(title="livefront", docs_url=None, redoc_url=None, openapi_url=None)
    app.state.root = root
    app.state.hub = hub

    if hub is not None:
        client_script = load_client_script()

        @app.get(config.CLIENT_SCRIPT_URL)
        async def live_client_script() -> Response:
            return Response(content=client_script, media_type="application/javascript")

        @app.websocket(config.WEBSOCKET_PATH)
        async def live_socket(websocket: WebSocket) -> None:
            await websocket.accept()
            client = hub.register(websocket.send_text)
            try:
                while True:
                    raw = await websocket.receive_text()
                    await hub.handle_message(client, raw)
            except WebSocketDisconnect:
                pass
            except TransportError as e:
                logger.warning(f"Closing live client: {e}")
            finally:
                hub.unregister(client.client_id)

    @app.get("/{path:path}")
    async def serve_file(request: Request, path: str) -> Response:
        target = resolve_under_root(root, path)
        if target is None:
            logger.debug(f"Refusing path outside root: {request.url.path}")
            return PlainTextResponse(NOT_FOUND_MESSAGE, status_code=404)

        if target.is_dir():
            if not request.url.path.endswith("/"):
                location = request.url.path + "/"
                if request.url.query:
                    location += "?" + request.url.query
                return RedirectResponse(location, status_code=301)
            target = target / "index.html"

        if not target.is_file():
            return PlainTextResponse(NOT_FOUND_MESSAGE, status_code=404)

        media_type = mimetypes.guess_type(target.name)[0] or "text/plain"
        if hub is not None and media_type == "text/html":
            html = await asyncio.to_thread(target.read_text, encoding="utf-8", errors="replace")
            return HTMLResponse(inject_client_script(html))
        return FileResponse(target, media_type=media_type)

    @app.api_route("/{path:path}", methods=UNSUPPORTED_METHODS)
    async def unsupported(path: str) -> Response:
        return PlainTextResponse(UNSUPPORTED_MESSAGE, status_code=400)

    return app


async def serve_app(
    app: FastAPI,
    host: str = config.DEFAULT_HOST,
    port: int = config.DEFAULT_PORT,
    log_level: str = "warning",
) -> None:
    """Run the application with uvicorn inside the current event loop.

    Returns when the server shuts down.
    """
    server_config = uvicorn.Config(
        app,
        host=host,
        port=port,
        ws="websockets",
        log_level=log_level,
        lifespan="off",
    )
    server = uvicorn.Server(server_config)
    output.log(f"Serving your files at http://{host}:{port}/.")
    await server.serve()
