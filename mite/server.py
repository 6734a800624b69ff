"""Development server and watcher for Mite.

Serves the project root with live reload for local authoring:
- Injects a reload script into HTML responses.
- Rejects directory listings and missing paths with a 404 (serving 404.html when present).
- Watches markdown, template and YAML sources and runs incremental rebuilds.

Pages are generated next to their sources, so the served directory is the
project root itself.

Key classes:
- DevServer: Runs the watcher, and in serve mode the HTTP and websocket servers.
- _ReloadHandler: HTTP request handler that injects reload script and enforces 404s.
- _ChangeHandler: File system event handler for triggering rebuilds.
"""

from __future__ import annotations

import asyncio
import functools
import json
import threading
import time
from http.server import SimpleHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path

import websockets
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from .build import BuildError, build_site, load_config
from .utils import MARKDOWN_SUFFIX, TEMPLATE_SUFFIX

WATCHED_SUFFIXES = (MARKDOWN_SUFFIX, TEMPLATE_SUFFIX, ".yaml")


class _ReloadHandler(SimpleHTTPRequestHandler):
    """HTTP request handler that injects live reload script into HTML pages.

    Attributes:
        reload_script: JavaScript code for WebSocket connection to trigger reloads.
    """

    reload_script_template = """
    <script>
    (() => {{
      const ws = new WebSocket('ws://' + location.hostname + ':{ws_port}');
      ws.onmessage = (event) => {{
        const data = JSON.parse(event.data || '{{}}');
        if (data.type === 'reload') location.reload();
      }};
    }})();
    </script>
    """
    reload_script = reload_script_template.format(ws_port=4001)

    def end_headers(self):
        self.send_header("Cache-Control", "no-cache, no-store, must-revalidate")
        super().end_headers()

    def list_directory(self, path):  # pragma: no cover - exercised via send_head
        return self._serve_404()

    def _inject(self, content: str) -> bytes:
        if "</body>" in content:
            content = content.replace("</body>", f"{self.reload_script}</body>")
        else:
            content += self.reload_script
        return content.encode("utf-8")

    def _serve_404(self):
        """Serve 404.html (when present) with injected reload script and a 404 status."""
        error_page = Path(self.directory) / "404.html"
        if error_page.exists():
            encoded = self._inject(error_page.read_text(encoding="utf-8"))
            self.send_response(404)
            self.send_header("Content-type", "text/html; charset=utf-8")
            self.send_header("Content-Length", str(len(encoded)))
            self.end_headers()
            self.wfile.write(encoded)
            return None
        self.send_error(404, "File not found")
        return None

    def send_head(self):
        path_obj = Path(self.translate_path(self.path))
        if path_obj.is_dir():
            index_path = path_obj / "index.html"
            if not index_path.exists():
                return self._serve_404()
            path_obj = index_path
        elif not path_obj.exists():
            return self._serve_404()

        if path_obj.suffix == ".html":
            encoded = self._inject(path_obj.read_text(encoding="utf-8"))
            self.send_response(200)
            self.send_header("Content-type", "text/html; charset=utf-8")
            self.send_header("Content-Length", str(len(encoded)))
            self.end_headers()
            self.wfile.write(encoded)
            return None
        return super().send_head()


class DevServer:
    """Watcher with optional HTTP server and live reload.

    Attributes:
        project_root: Root directory of the project.
        config: Site configuration.
        ws_port: Port for WebSocket connections.
        http_port: Port for HTTP server.
        _observer: File system observer for changes.
        _ws_clients: Set of connected WebSocket clients.
        _loop: Event loop for WebSocket handling.
    """

    def __init__(self, project_root: Path, http_port: int | None = None, ws_port: int | None = None):
        """Initialize the development server.

        Args:
            project_root: Root directory of the project.
            http_port: Optional override for HTTP port.
            ws_port: Optional override for the live reload websocket port.
        """
        self.project_root = project_root
        self.config = load_config(project_root)
        base_http = int(http_port or self.config.get("port", 4000))
        if ws_port is not None:
            resolved_ws = ws_port
        elif http_port is not None:
            resolved_ws = base_http + 1
        else:
            resolved_ws = int(self.config.get("ws_port", base_http + 1))
        self.ws_port = resolved_ws
        self.http_port = base_http
        self._reload_script = _ReloadHandler.reload_script_template.format(ws_port=self.ws_port)
        self._observer: Observer | None = None
        self._ws_clients: set = set()
        self._loop = asyncio.new_event_loop()
        self._serving = False
        self._rebuilding = False
        self._last_rebuild_at = 0.0
        self._last_signature: tuple | None = None
        self._debounce_seconds = 0.05

    def start(self) -> None:  # pragma: no cover - integration path
        """Build, serve over HTTP, and rebuild plus reload on change."""
        self._serving = True
        self._initial_build()
        threading.Thread(target=self._start_http, daemon=True).start()
        threading.Thread(target=self._start_ws, daemon=True).start()
        self._run_watcher()

    def watch(self) -> None:  # pragma: no cover - integration path
        """Build, then rebuild incrementally on change."""
        self._initial_build()
        self._run_watcher()

    def _initial_build(self) -> None:
        self._build(incremental=True)
        self._last_signature = self._compute_signature()

    def _run_watcher(self) -> None:  # pragma: no cover - integration path
        self._start_watcher()
        try:
            while True:
                time.sleep(1)
        except KeyboardInterrupt:
            self.stop()

    def stop(self) -> None:
        if self._observer:
            self._observer.stop()
            self._observer.join()
        self._loop.call_soon_threadsafe(self._loop.stop)

    def _start_http(self) -> None:  # pragma: no cover - integration path
        handler_cls = type(
            "_ReloadHandlerWithPort",
            (_ReloadHandler,),
            {"reload_script": self._reload_script},
        )
        handler = functools.partial(handler_cls, directory=str(self.project_root))
        httpd = ThreadingHTTPServer(("", self.http_port), handler)
        print(f"Serving {self.project_root} at http://localhost:{self.http_port}")
        httpd.serve_forever()

    def _start_ws(self) -> None:  # pragma: no cover - integration path
        asyncio.set_event_loop(self._loop)
        try:
            self._loop.run_until_complete(self._run_ws_server())
        except OSError as exc:
            print(f"WebSocket server failed to start (port {self.ws_port}): {exc}")
            return

    async def _run_ws_server(self) -> None:  # pragma: no cover - integration path
        async with websockets.serve(self._ws_handler, "0.0.0.0", self.ws_port):
            await asyncio.Future()

    async def _ws_handler(self, websocket):
        self._ws_clients.add(websocket)
        try:
            await websocket.wait_closed()
        finally:
            self._ws_clients.discard(websocket)

    def _broadcast_reload(self):
        message = json.dumps({"type": "reload"})
        asyncio.run_coroutine_threadsafe(self._async_broadcast(message), self._loop)

    async def _async_broadcast(self, message: str):
        stale = set()
        for ws in self._ws_clients:
            try:
                await ws.send(message)
            except websockets.ConnectionClosed:
                stale.add(ws)
        for ws in stale:
            self._ws_clients.discard(ws)

    def _start_watcher(self) -> None:
        handler = _ChangeHandler(self)
        observer = Observer()
        observer.schedule(handler, str(self.project_root), recursive=True)
        observer.start()
        self._observer = observer

    def _build(self, incremental: bool) -> bool:
        try:
            result = build_site(self.project_root, incremental=incremental)
        except BuildError as exc:
            print(f"Build failed: {exc.source_path}: {exc.message}")
            return False
        if result.skipped:
            print("Up to date.")
        else:
            print(f"Built {len(result.pages)} pages.")
        for warning in result.warnings:
            print(f"Warning: {warning}")
        return True

    def rebuild(self) -> None:
        now = time.time()
        if self._rebuilding or (now - self._last_rebuild_at) < self._debounce_seconds:
            return
        signature = self._compute_signature()
        if signature is not None and signature == self._last_signature:
            return
        self._rebuilding = True
        try:
            print("Change detected; rebuilding...")
            built = self._build(incremental=True)
            self._last_signature = signature
            if built and self._serving:
                self._broadcast_reload()
        finally:
            self._rebuilding = False
            self._last_rebuild_at = time.time()

    def _compute_signature(self) -> tuple | None:
        entries: list[tuple] = []
        for path in sorted(self.project_root.rglob("*")):
            if not _is_watched(self.project_root, path) or path.is_dir():
                continue
            try:
                stat = path.stat()
            except OSError:
                continue
            rel = path.relative_to(self.project_root)
            entries.append((str(rel), stat.st_mtime_ns, stat.st_size))
        return tuple(entries) if entries else None


def _is_watched(root: Path, path: Path) -> bool:
    try:
        rel = path.relative_to(root)
    except ValueError:
        return False
    if any(part.startswith(".") for part in rel.parts):
        return False
    return path.suffix in WATCHED_SUFFIXES


class _ChangeHandler(FileSystemEventHandler):
    def __init__(self, server: DevServer):
        super().__init__()
        self.server = server

    def on_any_event(self, event):
        if event.is_directory:
            return
        if not _is_watched(self.server.project_root, Path(event.src_path)):
            return
        self.server.rebuild()
