"""HTTP serving engine for brog.

Serves the live SiteSnapshot from memory:
- ``/`` and ``/page/<n>`` serve the rendered listings.
- ``/<slug>`` serves the matching post or page.
- ``/assets/...`` serves static files from the asset directory.
- Anything else is a 404 (the site's not_found page when it has one).

Each request reads the snapshot reference once and answers entirely from
that snapshot, so a swap in the middle of a request is never observed. In
development mode a live reload script is injected into HTML responses and a
websocket server tells browsers to reload after each swap.

Key classes:
- SiteServer: Binds, serves, swaps snapshots and stops gracefully.
- SiteHTTPServer: ThreadingHTTPServer that tracks in-flight requests.
- LiveReload: Websocket broadcaster for development mode.
- _SiteHandler: Request handler routing paths to documents.
"""

from __future__ import annotations

import asyncio
import json
import logging
import threading
import urllib.parse
from http.server import SimpleHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path

import websockets

from .config import Configuration
from .errors import ServingError
from .snapshot import RenderedDocument, SiteSnapshot, SnapshotRef

logger = logging.getLogger(__name__)

ASSET_PREFIX = "/assets/"
SNAPSHOT_HEADER = "X-Brog-Snapshot"


def inject_script(body: bytes, script: str) -> bytes:
    """Insert ``script`` before ``</body>``, or append it."""
    content = body.decode("utf-8")
    if "</body>" in content:
        content = content.replace("</body>", f"{script}</body>", 1)
    else:
        content += script
    return content.encode("utf-8")


class LiveReload:
    """Websocket server telling connected browsers to reload.

    Attributes:
        host: Interface to bind.
        port: Websocket port.
    """

    script_template = """
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

    def __init__(self, host: str, port: int):
        self.host = host
        self.port = port
        self.script = self.script_template.format(ws_port=port)
        self._ws_clients: set = set()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._stop_future: asyncio.Future | None = None
        self._stopping = False
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        self._stopping = False
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._start_ws, name="brog-live-reload", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        if self._thread is None:
            return
        self._stopping = True
        loop = self._loop
        if loop is not None and not loop.is_closed():
            try:
                loop.call_soon_threadsafe(self._resolve_stop)
            except RuntimeError:
                # Closed between the check and the call.
                pass
        self._thread.join(timeout)
        self._thread = None

    def _resolve_stop(self) -> None:
        if self._stop_future is not None and not self._stop_future.done():
            self._stop_future.set_result(None)

    def _start_ws(self) -> None:
        asyncio.set_event_loop(self._loop)
        try:
            self._loop.run_until_complete(self._run_ws_server())
        except OSError as exc:
            logger.warning("Live reload server failed to start (port %d): %s", self.port, exc)
        finally:
            self._loop.close()

    async def _run_ws_server(self) -> None:
        self._stop_future = self._loop.create_future()
        async with websockets.serve(self._ws_handler, self.host, self.port):
            logger.info("Live reload listening on ws://%s:%d", self.host, self.port)
            if self._stopping:
                return
            await self._stop_future

    async def _ws_handler(self, websocket) -> None:
        self._ws_clients.add(websocket)
        try:
            await websocket.wait_closed()
        finally:
            self._ws_clients.discard(websocket)

    def broadcast_reload(self) -> None:
        loop = self._loop
        if loop is None or loop.is_closed() or not loop.is_running():
            return
        message = json.dumps({"type": "reload"})
        try:
            asyncio.run_coroutine_threadsafe(self._async_broadcast(message), loop)
        except RuntimeError:
            logger.debug("Live reload loop closed; reload not sent")

    async def _async_broadcast(self, message: str) -> None:
        stale = set()
        for ws in list(self._ws_clients):
            try:
                await ws.send(message)
            except Exception:
                stale.add(ws)
        for ws in stale:
            self._ws_clients.discard(ws)


class SiteHTTPServer(ThreadingHTTPServer):
    """Threaded HTTP server over a SnapshotRef.

    Tracks in-flight requests so that a stop can let them finish before the
    listening socket is closed.

    Attributes:
        snapshots: Reference to the live snapshot.
        asset_dir: Directory served under /assets/, or None.
        request_timeout: Socket timeout for each connection.
        development: Whether responses disable caching.
        reload_script: Script injected into HTML responses ("" for none).
    """

    daemon_threads = True
    block_on_close = False

    def __init__(
        self,
        server_address: tuple[str, int],
        handler_class: type,
        snapshots: SnapshotRef,
        asset_dir: Path | None = None,
        request_timeout: float | None = None,
        development: bool = False,
        reload_script: str = "",
    ):
        self.snapshots = snapshots
        self.asset_dir = asset_dir
        self.request_timeout = request_timeout or None
        self.development = development
        self.reload_script = reload_script
        self._inflight = 0
        self._idle = threading.Condition()
        super().__init__(server_address, handler_class)

    @property
    def inflight(self) -> int:
        with self._idle:
            return self._inflight

    def process_request(self, request, client_address) -> None:
        with self._idle:
            self._inflight += 1
        try:
            super().process_request(request, client_address)
        except Exception:
            self._request_done()
            raise

    def process_request_thread(self, request, client_address) -> None:
        try:
            super().process_request_thread(request, client_address)
        finally:
            self._request_done()

    def _request_done(self) -> None:
        with self._idle:
            self._inflight -= 1
            if self._inflight == 0:
                self._idle.notify_all()

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Wait until no request is in flight; False on timeout."""
        with self._idle:
            return self._idle.wait_for(lambda: self._inflight == 0, timeout)


class _SiteHandler(SimpleHTTPRequestHandler):
    """Routes requests to documents of the live snapshot."""

    server: SiteHTTPServer

    def setup(self) -> None:
        # StreamRequestHandler applies self.timeout to the connection socket.
        self.timeout = self.server.request_timeout
        super().setup()

    def end_headers(self) -> None:
        if self.server.development:
            self.send_header("Cache-Control", "no-cache, no-store, must-revalidate")
        super().end_headers()

    def log_message(self, format: str, *args) -> None:
        logger.debug("%s - %s", self.address_string(), format % args)

    def do_GET(self) -> None:
        self._handle(send_body=True)

    def do_HEAD(self) -> None:
        self._handle(send_body=False)

    def _reject(self) -> None:
        self._send_not_found(self.server.snapshots.get(), send_body=True)

    do_POST = do_PUT = do_DELETE = do_PATCH = do_OPTIONS = _reject

    def __getattr__(self, name: str):
        # Any other method (TRACE, CONNECT, unknown verbs) is a 404, never a 501.
        if name.startswith("do_"):
            return self._reject
        raise AttributeError(name)

    def _handle(self, send_body: bool) -> None:
        # Read the reference exactly once; everything below uses this snapshot.
        snapshot = self.server.snapshots.get()
        try:
            raw_path = urllib.parse.urlsplit(self.path).path
            if raw_path.startswith(ASSET_PREFIX):
                self._serve_asset(raw_path[len(ASSET_PREFIX) :], snapshot, send_body)
                return
            if snapshot is None:
                raise ServingError(503, "Site is not built yet")
            document = snapshot.lookup(urllib.parse.unquote(raw_path))
            if document is None:
                self._send_not_found(snapshot, send_body)
                return
            self._send_document(document, snapshot, 200, send_body)
        except ServingError as exc:
            self.send_error(exc.status, exc.message)
        except (BrokenPipeError, ConnectionResetError):
            logger.debug("Client went away during %s", self.path)
        except Exception:
            logger.exception("Error serving %s", self.path)
            self.close_connection = True
            try:
                self.send_error(500, "Internal Server Error")
            except OSError:
                pass

    def _send_document(
        self,
        document: RenderedDocument,
        snapshot: SiteSnapshot,
        status: int,
        send_body: bool,
    ) -> None:
        body = document.body
        if self.server.reload_script and document.content_type.startswith("text/html"):
            body = inject_script(body, self.server.reload_script)
        if status == 200 and self.headers.get("If-None-Match") == document.etag:
            self.send_response(304)
            self.send_header("ETag", document.etag)
            self.send_header(SNAPSHOT_HEADER, str(snapshot.version))
            self.end_headers()
            return
        self.send_response(status)
        self.send_header("Content-Type", document.content_type)
        self.send_header("Content-Length", str(len(body)))
        if status == 200:
            self.send_header("ETag", document.etag)
        self.send_header(SNAPSHOT_HEADER, str(snapshot.version))
        self.end_headers()
        if send_body:
            self.wfile.write(body)

    def _send_not_found(self, snapshot: SiteSnapshot | None, send_body: bool) -> None:
        if snapshot is not None and snapshot.not_found is not None:
            self._send_document(snapshot.not_found, snapshot, 404, send_body)
            return
        self.send_error(404, "Not Found")

    def _serve_asset(self, rel: str, snapshot: SiteSnapshot | None, send_body: bool) -> None:
        asset_dir = self.server.asset_dir
        if asset_dir is None or not rel or rel.endswith("/"):
            self._send_not_found(snapshot, send_body)
            return
        original = self.path
        self.directory = str(asset_dir)
        self.path = "/" + rel
        try:
            if not Path(self.translate_path(self.path)).is_file():
                self._send_not_found(snapshot, send_body)
                return
            f = self.send_head()
            if f:
                try:
                    if send_body:
                        self.copyfile(f, self.wfile)
                finally:
                    f.close()
        finally:
            self.path = original

    def list_directory(self, path):  # pragma: no cover - directories are rejected earlier
        # Never expose directory listings; treat as missing content.
        self.send_error(404, "Not Found")
        return None


class SiteServer:
    """Serves the live snapshot over HTTP.

    Attributes:
        config: Site configuration.
        snapshots: Reference to the live snapshot.
        development: Whether this is the development server.
        live_reload: Live reload broadcaster, in development mode.
    """

    def __init__(
        self,
        config: Configuration,
        snapshots: SnapshotRef | None = None,
        development: bool = False,
        live_reload: LiveReload | None = None,
    ):
        self.config = config
        self.snapshots = snapshots or SnapshotRef()
        self.development = development
        self.live_reload = live_reload
        self._httpd: SiteHTTPServer | None = None
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()

    @property
    def address(self) -> tuple[str, int]:
        if self._httpd is None:
            raise RuntimeError("server is not running")
        host, port = self._httpd.server_address[:2]
        return host, port

    @property
    def snapshot(self) -> SiteSnapshot | None:
        return self.snapshots.get()

    @property
    def serving(self) -> bool:
        return self._httpd is not None

    def serve(self, address: tuple[str, int] | None = None) -> tuple[str, int]:
        """Bind and start serving in a background thread.

        Args:
            address: (host, port); defaults to the configured hostname and the
                port of the current mode.

        Returns:
            The bound (host, port).

        Raises:
            OSError: If the address cannot be bound.
        """
        with self._lock:
            if self._httpd is not None:
                raise RuntimeError("server is already running")
            if address is None:
                address = (self.config.hostname, self.config.port(self.development))
            self._httpd = SiteHTTPServer(
                address,
                _SiteHandler,
                self.snapshots,
                asset_dir=self.config.asset_path,
                request_timeout=self.config.request_timeout,
                development=self.development,
                reload_script=self.live_reload.script if self.live_reload else "",
            )
            self._thread = threading.Thread(
                target=self._httpd.serve_forever,
                kwargs={"poll_interval": 0.1},
                name="brog-http",
                daemon=True,
            )
            self._thread.start()
        host, port = self.address
        logger.info("Serving %s at http://%s:%d", self.config.root, host, port)
        return host, port

    def swap(self, snapshot: SiteSnapshot) -> SiteSnapshot | None:
        """Atomically make ``snapshot`` the live one; returns the previous one."""
        previous = self.snapshots.swap(snapshot)
        logger.info("Now serving snapshot %d", snapshot.version)
        if self.live_reload is not None:
            self.live_reload.broadcast_reload()
        return previous

    def stop(self, grace: float | None = None) -> bool:
        """Stop accepting connections, drain in-flight requests, close the socket.

        Args:
            grace: Seconds to wait for in-flight requests; defaults to the
                configured shutdown_grace.

        Returns:
            True if every in-flight request finished within the grace period.
        """
        with self._lock:
            httpd, self._httpd = self._httpd, None
            thread, self._thread = self._thread, None
        if httpd is None:
            return True
        if grace is None:
            grace = self.config.shutdown_grace
        httpd.shutdown()
        drained = httpd.wait_idle(grace)
        if not drained:
            logger.warning(
                "%d request(s) still running after %.1fs grace period; closing anyway",
                httpd.inflight,
                grace,
            )
        httpd.server_close()
        if thread is not None:
            thread.join()
        logger.info("Server stopped")
        return drained
