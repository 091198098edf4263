"""
HTTP and WebSocket server for Trackpad Relay.

aiohttp serves the file exchange endpoints; the websockets server carries
trackpad intents and notifications on the next port up.
"""

import asyncio
import logging
import signal
import time
import urllib.parse
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import AsyncIterator, Callable, List, Optional

from aiohttp import web
from aiohttp.multipart import BodyPartReader
import websockets
from websockets.exceptions import ConnectionClosed

from . import __version__
from .clipboard import HostClipboardWatcher
from .config import Config, get_config, get_local_ip
from .exceptions import (
    DeviceFatal,
    DragConflict,
    NotFound,
    ProtocolError,
    StorageError,
    UploadTooLarge,
)
from .files import FileStore
from .input_handler import DeviceWriter, create_backend
from .protocol import encode_connected, parse_intent
from .sessions import DEVICE_INTENTS, Session, SessionRegistry


logger = logging.getLogger(__name__)


DOWNLOAD_CHUNK_SIZE = 64 * 1024
SLOW_CONSUMER_CLOSE_CODE = 1008


class TrackpadServer:
    """
    Relay server for remote trackpad clients.

    Features:
    - One virtual input device shared by every connected session
    - Clipboard history broadcast to all other sessions
    - Ephemeral file exchange with TTL expiry
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        backend=None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the server.

        Args:
            config: Settings; the global config when omitted.
            backend: Input backend; created from the config when omitted.
            clock: Time source for file expiry.

        Raises:
            DeviceFatal: The input backend could not be opened.
        """
        self.config = config or get_config()

        if backend is None:
            backend = create_backend(self.config.input_backend)
        self.device = DeviceWriter(
            backend,
            navigate_keys=self.config.navigate_keys,
            scroll_divisor=self.config.scroll_divisor,
        )

        self.files = FileStore(
            self.config.upload_dir,
            ttl=self.config.ttl_seconds,
            grace=self.config.grace_seconds,
            max_size=self.config.max_upload_bytes,
            clock=clock,
        )

        self.registry = SessionRegistry(
            self.device,
            files=self.files,
            queue_size=self.config.queue_size,
            history_size=self.config.history_size,
            notify_uploader=self.config.notify_uploader,
        )

        # xdotool calls block; one worker keeps them off the event loop and in order
        self._device_executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="device")

        # Server instances
        self.http_runner: Optional[web.AppRunner] = None
        self.ws_server: Optional[websockets.Server] = None
        self._tasks: List[asyncio.Task] = []

        # Shutdown event
        self.shutdown_event = asyncio.Event()
        self.fatal_error: Optional[DeviceFatal] = None

        self.http_app = web.Application()
        self._setup_http_routes()

    def _setup_http_routes(self) -> None:
        """Setup HTTP routes."""
        self.http_app.router.add_get("/", self._handle_index)
        self.http_app.router.add_get("/ping", self._handle_ping)
        self.http_app.router.add_get("/status", self._handle_status)
        self.http_app.router.add_get("/files", self._handle_files)
        self.http_app.router.add_post("/upload", self._handle_upload)
        self.http_app.router.add_get("/download/{file_id}", self._handle_download)

        static_path = self.config.static_dir
        if static_path and static_path.exists():
            self.http_app.router.add_static("/static/", static_path)

    async def _handle_index(self, request: web.Request) -> web.StreamResponse:
        """Serve the client page if a static directory is configured."""
        static_path = self.config.static_dir
        if static_path and (static_path / "index.html").exists():
            return web.FileResponse(static_path / "index.html")

        return web.Response(text=f"Trackpad Relay {__version__} is running.\n")

    async def _handle_ping(self, request: web.Request) -> web.Response:
        """Simple ping endpoint."""
        return web.Response(text="pong")

    async def _handle_status(self, request: web.Request) -> web.Response:
        """Return server status."""
        status = {
            "status": "running",
            "version": __version__,
            "protocol": "websocket",
            "ws_port": self.config.ws_port,
            "clients": len(self.registry),
            "drag_active": self.device.drag_owner is not None,
            "clipboard_entries": len(self.registry.clipboard),
            "files": len(self.files),
        }

        return web.json_response(status)

    async def _handle_files(self, request: web.Request) -> web.Response:
        return web.json_response(self.files.list())

    async def _handle_upload(self, request: web.Request) -> web.Response:
        """Store the multipart field ``file`` and announce it to sessions."""
        if not request.content_type.startswith("multipart/"):
            return web.json_response({"error": "Expected multipart/form-data"}, status=400)

        uploader = request.query.get("session")
        reader = await request.multipart()

        async for part in reader:
            if not isinstance(part, BodyPartReader) or part.name != "file":
                await part.release()
                continue

            filename = part.filename or "unnamed"
            try:
                record = await self.files.store(filename, _iter_chunks(part))
            except UploadTooLarge as e:
                logger.warning("Rejected upload %s: %s", filename, e)
                return web.json_response({"error": str(e)}, status=413)
            except StorageError as e:
                logger.error("Upload failed: %s", e)
                return web.json_response({"error": "Failed to store file"}, status=500)

            try:
                self.registry.announce_upload(record, uploader=uploader)
            except DeviceFatal as e:
                self._fail(e)
            return web.json_response({"id": record.id, "filename": record.filename})

        return web.json_response({"error": "No file uploaded"}, status=400)

    async def _handle_download(self, request: web.Request) -> web.StreamResponse:
        """Stream a stored file back as an attachment."""
        file_id = request.match_info["file_id"]

        try:
            with self.files.fetch(file_id) as (record, f):
                response = web.StreamResponse(headers={
                    "Content-Type": "application/octet-stream",
                    "Content-Disposition": _content_disposition(record.filename),
                })
                response.content_length = record.size
                await response.prepare(request)

                while True:
                    chunk = f.read(DOWNLOAD_CHUNK_SIZE)
                    if not chunk:
                        break
                    await response.write(chunk)

                await response.write_eof()
                return response
        except NotFound:
            logger.debug("Download of unknown or expired file %s", file_id)
            raise web.HTTPNotFound(text="File not found or expired")

    async def _websocket_handler(self, websocket: websockets.ServerConnection) -> None:
        """Handle a WebSocket connection."""
        session_id = self.registry.register()
        session = self.registry.get(session_id)

        logger.info("Client connected: %s (session %s)", websocket.remote_address, session_id)

        self.registry.send(session_id, encode_connected(session_id))
        # Replay history oldest first, keeping room in the queue
        backlog = self.registry.clipboard.history()[: self.config.queue_size - 1]
        for entry in reversed(backlog):
            self.registry.send(session_id, entry.to_message())

        writer = asyncio.create_task(self._pump(websocket, session))
        reader = asyncio.create_task(self._read(websocket, session_id))
        closed = asyncio.create_task(session.closed.wait())
        tasks = (writer, reader, closed)

        try:
            await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

            reason = session.close_reason
            try:
                # let the device worker lift a held drag; unregister then finds none
                await self._run_device(self.device.release, session_id)
            except DeviceFatal as e:
                self._fail(e)
            try:
                self.registry.unregister(session_id)
            except DeviceFatal as e:
                self._fail(e)
            if reason == "slow consumer":
                await websocket.close(SLOW_CONSUMER_CLOSE_CODE, "slow consumer")

            logger.info("Client disconnected: %s (session %s)", websocket.remote_address, session_id)

    async def _read(self, websocket: websockets.ServerConnection, session_id: str) -> None:
        """Decode and dispatch inbound messages, in the order they arrive."""
        try:
            async for message in websocket:
                try:
                    intent = parse_intent(message)
                except ProtocolError as e:
                    logger.warning("Dropping message from session %s: %s", session_id, e)
                    continue

                if isinstance(intent, DEVICE_INTENTS):
                    try:
                        await self._run_device(self.registry.apply_device, session_id, intent)
                    except DragConflict as e:
                        self.registry.reject_drag(session_id, e)
                else:
                    self.registry.dispatch(session_id, intent)
        except ConnectionClosed:
            pass
        except DeviceFatal as e:
            self._fail(e)
        except Exception:
            logger.exception("Reader for session %s failed", session_id)

    async def _run_device(self, func, *args):
        """Run a DeviceWriter call on the device worker thread."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._device_executor, func, *args)

    async def _pump(self, websocket: websockets.ServerConnection, session: Session) -> None:
        """Send queued notifications to one client."""
        try:
            while True:
                message = await session.queue.get()
                await websocket.send(message)
        except ConnectionClosed:
            pass
        except Exception:
            logger.exception("Writer for session %s failed", session.id)

    async def _watch_host_clipboard(self, watcher: HostClipboardWatcher) -> None:
        try:
            await watcher.run()
        except DeviceFatal as e:
            # a slow consumer dropped by the broadcast could not release its drag
            self._fail(e)

    def _fail(self, error: DeviceFatal) -> None:
        """The input device is gone; bring the whole server down."""
        logger.critical("Input device failure, shutting down: %s", error)
        if self.fatal_error is None:
            self.fatal_error = error
        self.shutdown_event.set()

    async def start(self) -> None:
        """Start both HTTP and WebSocket servers."""
        # Uploads from a previous run are unreachable; the index lives in memory
        self.files.purge_orphans()

        self.http_runner = web.AppRunner(self.http_app)
        await self.http_runner.setup()
        http_site = web.TCPSite(self.http_runner, self.config.host, self.config.port)
        await http_site.start()

        self.ws_server = await websockets.serve(
            self._websocket_handler,
            self.config.host,
            self.config.ws_port,
            max_size=self.config.max_message_bytes,
            ping_interval=20,
            ping_timeout=20,
        )

        self._tasks.append(asyncio.create_task(self.files.reap_forever(self.config.reap_interval)))

        if self.config.watch_host_clipboard:
            watcher = HostClipboardWatcher(
                self.registry.clipboard, poll_interval=self.config.clipboard_poll_interval
            )
            self._tasks.append(asyncio.create_task(self._watch_host_clipboard(watcher)))

        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGTERM, self.shutdown_event.set)
        except (NotImplementedError, RuntimeError):
            logger.debug("SIGTERM handler not supported on this platform")

        # Show user-friendly URL
        display_host = self.config.host
        if display_host == "0.0.0.0":
            display_host = get_local_ip()

        print(f"\n📱 Trackpad Relay started!")
        print(f"   Web UI:    http://{display_host}:{self.config.port}")
        print(f"   WebSocket: ws://{display_host}:{self.config.ws_port}")
        print(f"   Uploads:   {Path(self.config.upload_dir).resolve()}")
        print(f"\n   Make sure your phone is on the same network.\n")

    async def stop(self) -> None:
        """Stop the servers."""
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

        # Releases any drag still held so the pointer stays usable
        try:
            self.registry.close_all()
        except DeviceFatal as e:
            logger.error("Could not release drag on shutdown: %s", e)

        if self.ws_server:
            self.ws_server.close()
            await self.ws_server.wait_closed()

        self._device_executor.shutdown(wait=False)

        if self.http_runner:
            await self.http_runner.cleanup()

        print("\n📱 Trackpad Relay stopped.\n")

    async def run_forever(self) -> None:
        """
        Run the server until interrupted.

        Raises:
            DeviceFatal: The input device failed while running.
        """
        await self.start()

        try:
            await self.shutdown_event.wait()
        except asyncio.CancelledError:
            pass
        finally:
            await self.stop()

        if self.fatal_error is not None:
            raise self.fatal_error


async def _iter_chunks(part: BodyPartReader) -> AsyncIterator[bytes]:
    while True:
        chunk = await part.read_chunk()
        if not chunk:
            break
        yield chunk


def _content_disposition(filename: str) -> str:
    fallback = filename.encode("ascii", "replace").decode("ascii").replace('"', "_")
    quoted = urllib.parse.quote(filename, safe="")
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quoted}"


def run_server(config: Optional[Config] = None) -> int:
    """
    Run the server (blocking).

    Returns:
        Process exit status: 1 if the input device failed, else 0.
    """
    try:
        server = TrackpadServer(config)
        asyncio.run(server.run_forever())
    except DeviceFatal as e:
        logger.critical("Input device unavailable: %s", e)
        return 1
    except KeyboardInterrupt:
        print("\nShutting down...")

    return 0
