from __future__ import annotations

import asyncio
import functools
import logging
import uuid
from dataclasses import dataclass, field
from http import HTTPStatus
from typing import Any, Callable, Dict, Optional

from websockets.asyncio.server import Server, ServerConnection, serve
from websockets.datastructures import Headers
from websockets.exceptions import ConnectionClosed, ProtocolError
from websockets.http11 import Request, Response

from chatrelay.config import Settings
from chatrelay.core.broadcast import BroadcastEngine
from chatrelay.core.dispatch import EventDispatcher
from chatrelay.core.moderation import ModerationController
from chatrelay.core.reference import countries_payload
from chatrelay.core.state import ChatState
from chatrelay.core.sweeper import Sweeper
from chatrelay.core.synthetic import SyntheticPool
from chatrelay.utils import codec

log = logging.getLogger("chatrelay.server.runtime")

Work = Callable[[], Any]


@dataclass(frozen=True, slots=True)
class _Close:
    reason: str


_STOP = object()

# close frames carry at most 125 bytes, two of which are the status code
MAX_CLOSE_REASON_BYTES = 120


def close_reason(reason: str) -> str:
    return reason.encode("utf-8")[:MAX_CLOSE_REASON_BYTES].decode("utf-8", "ignore")


@dataclass(slots=True)
class Connection:
    connection_id: str
    websocket: ServerConnection
    address: str
    outbox: asyncio.Queue = field(default_factory=asyncio.Queue)
    writer: Optional[asyncio.Task] = None
    closing: bool = False


class ServerRuntime:
    """WebSocket relay: one dispatcher task drives the synchronous core.

    Inbound frames, disconnects and timer ticks are queued on ``_inbox`` and
    executed one at a time. Outbound frames go to per-connection queues drained
    by writer tasks, so a slow client never stalls the dispatcher.
    """

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.listen_host, self.listen_port = settings.listen_addr

        self.state: Optional[ChatState] = None
        self.engine: Optional[BroadcastEngine] = None
        self.moderation: Optional[ModerationController] = None
        self.dispatcher: Optional[EventDispatcher] = None
        self.sweeper: Optional[Sweeper] = None
        self.synthetic: Optional[SyntheticPool] = None

        self._connections: Dict[str, Connection] = {}
        self._inbox: asyncio.Queue[Work] = asyncio.Queue()
        self._ws_server: Optional[Server] = None
        self._tasks: list[asyncio.Task] = []

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        self.state = ChatState(self.settings)
        self.engine = BroadcastEngine(self.state, self)
        self.moderation = ModerationController(self.state, self.engine)
        self.dispatcher = EventDispatcher(self.engine, self.moderation)
        self.sweeper = Sweeper(self.state, self.engine)
        self.synthetic = SyntheticPool(self.state, self.engine)

        self._tasks.append(asyncio.create_task(self._dispatch_loop(), name="dispatcher"))
        self.sweeper.start(self.submit)
        if self.settings.synthetic.enabled:
            self.synthetic.seed()
            self.synthetic.start(self.submit)

        self._ws_server = await serve(
            self._handle_connection,
            self.listen_host,
            self.listen_port,
            process_request=self._process_request,
        )
        log.info("Chat relay listening on ws://%s:%d", self.listen_host, self.port)

    async def stop(self) -> None:
        if self.sweeper is not None:
            await self.sweeper.stop()
        if self.synthetic is not None:
            await self.synthetic.stop()

        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

        writers = [conn.writer for conn in self._connections.values() if conn.writer is not None]
        for writer in writers:
            writer.cancel()
        await asyncio.gather(*writers, return_exceptions=True)

        for conn in list(self._connections.values()):
            try:
                await conn.websocket.close(1001, "server shutting down")
            except Exception:
                log.debug("Close failed for %s", conn.connection_id, exc_info=True)
        self._connections.clear()

        if self._ws_server is not None:
            self._ws_server.close()
            await self._ws_server.wait_closed()
            self._ws_server = None

        if self.state is not None:
            self.state.close()
        log.info("Chat relay stopped")

    @property
    def port(self) -> int:
        if self._ws_server is not None:
            for sock in self._ws_server.sockets:
                return sock.getsockname()[1]
        return self.listen_port

    # ------------------------------------------------------------------
    # Event queue
    # ------------------------------------------------------------------

    def submit(self, work: Work) -> None:
        self._inbox.put_nowait(work)

    async def _dispatch_loop(self) -> None:
        while True:
            work = await self._inbox.get()
            try:
                work()
            except Exception:
                log.exception("Work item failed")

    # ------------------------------------------------------------------
    # Transport (called synchronously by the core)
    # ------------------------------------------------------------------

    def send(self, connection_id: str, frame: Dict[str, Any]) -> None:
        conn = self._connections.get(connection_id)
        if conn is None or conn.closing:
            return
        conn.outbox.put_nowait(codec.encode_frame(frame))

    def close(self, connection_id: str, reason: str = "") -> None:
        conn = self._connections.get(connection_id)
        if conn is None or conn.closing:
            return
        conn.closing = True
        conn.outbox.put_nowait(_Close(reason))

    # ------------------------------------------------------------------
    # Connection handling
    # ------------------------------------------------------------------

    async def _handle_connection(self, websocket: ServerConnection) -> None:
        conn = Connection(
            connection_id=uuid.uuid4().hex,
            websocket=websocket,
            address=self._client_address(websocket),
        )
        self._connections[conn.connection_id] = conn
        conn.writer = asyncio.create_task(self._writer(conn), name=f"writer-{conn.connection_id[:8]}")
        log.debug("Accepted connection %s from %s", conn.connection_id, conn.address)
        assert self.dispatcher is not None
        try:
            async for raw in websocket:
                if conn.closing:
                    break
                try:
                    data = codec.decode_frame(raw)
                except codec.JSONDecodeError:
                    self.submit(functools.partial(self._reject_frame, conn.connection_id))
                    continue
                self.submit(functools.partial(self._deliver, conn, data))
        except ConnectionClosed:
            pass
        finally:
            self.submit(functools.partial(self._on_closed, conn))

    def _deliver(self, conn: Connection, data: Any) -> None:
        # frames queued before a forced close must not act on the connection
        if conn.closing:
            log.debug("Dropping frame from closing connection %s", conn.connection_id)
            return
        assert self.dispatcher is not None
        self.dispatcher.handle_raw(conn.connection_id, conn.address, data)

    def _reject_frame(self, connection_id: str) -> None:
        assert self.engine is not None
        self.engine.send_error(connection_id, "BAD_FRAME", "invalid JSON")

    def _on_closed(self, conn: Connection) -> None:
        assert self.dispatcher is not None
        self.dispatcher.disconnect(conn.connection_id)
        self._connections.pop(conn.connection_id, None)
        conn.outbox.put_nowait(_STOP)
        log.debug("Connection %s closed", conn.connection_id)

    async def _writer(self, conn: Connection) -> None:
        try:
            while True:
                item = await conn.outbox.get()
                if item is _STOP:
                    return
                if isinstance(item, _Close):
                    await conn.websocket.close(1008, close_reason(item.reason))
                    return
                await conn.websocket.send(item)
        except ConnectionClosed:
            log.debug("Writer for %s hit a closed connection", conn.connection_id)
        except ProtocolError:
            log.exception("Protocol error writing to %s; aborting transport", conn.connection_id)
            conn.websocket.transport.abort()

    def _client_address(self, websocket: ServerConnection) -> str:
        if self.settings.trust_forwarded_for:
            forwarded = websocket.request.headers.get("X-Forwarded-For") if websocket.request else None
            if forwarded:
                return forwarded.split(",")[0].strip()
        peer = websocket.remote_address
        if isinstance(peer, tuple):
            return str(peer[0])
        return str(peer)

    # ------------------------------------------------------------------
    # Plain HTTP routes
    # ------------------------------------------------------------------

    def _process_request(self, connection: ServerConnection, request: Request) -> Optional[Response]:
        path = request.path.split("?", 1)[0]
        if path == "/health":
            return self._json_response({"status": "healthy"})
        if path == "/api/countries":
            return self._json_response(countries_payload())
        return None

    @staticmethod
    def _json_response(payload: Any, status: HTTPStatus = HTTPStatus.OK) -> Response:
        body = codec.encode_json(payload)
        headers = Headers(
            [
                ("Content-Type", "application/json"),
                ("Content-Length", str(len(body))),
                ("Connection", "close"),
            ]
        )
        return Response(status.value, status.phrase, headers, body)


__all__ = ["ServerRuntime", "Connection", "close_reason"]
