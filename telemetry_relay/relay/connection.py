"""One peer's live WebSocket session.

A :class:`Connection` owns the transport (a starlette ``WebSocket`` in
production, any object with the same ``receive``/``send_bytes``/``send_text``/
``close`` coroutines in tests), a FIFO send queue drained by a single writer
task, and an explicit OPEN/CLOSED state. Exactly one terminal event (close or
error) is delivered over the connection's lifetime.
"""

from __future__ import annotations

import asyncio
import enum
import os
import socket
import traceback
from typing import Any, Callable, List, Optional, Tuple, Union

SEND_QUEUE_SIZE = int(os.getenv("RELAY_SEND_QUEUE", "256"))

Payload = Union[bytes, str]
MessageHandler = Callable[["Connection", Payload, bool], None]
CloseHandler = Callable[["Connection"], None]
ErrorHandler = Callable[["Connection", BaseException], None]


class RelayError(Exception):
    """Base class for relay errors."""


class ConnectionClosedError(RelayError):
    """Raised (via the send future) when sending on a closed connection."""


class SendQueueFullError(RelayError):
    """The peer is not draining its queue fast enough; the frame was dropped."""


class ConnectionState(enum.Enum):
    OPEN = "open"
    CLOSED = "closed"


def _find_socket(transport: Any) -> Optional[socket.socket]:
    get_extra_info = getattr(transport, "get_extra_info", None)
    if not callable(get_extra_info):
        return None
    return get_extra_info("socket")


class Connection:
    def __init__(self, transport: Any, remote: str = "?", max_queue: int = SEND_QUEUE_SIZE):
        self.transport = transport
        self.remote = remote
        self.state = ConnectionState.OPEN
        self.close_code: Optional[int] = None
        self._queue: asyncio.Queue[Tuple[Payload, bool, asyncio.Future]] = asyncio.Queue(
            maxsize=max_queue
        )
        self._writer: Optional[asyncio.Task] = None
        self._closer: Optional[asyncio.Task] = None
        self._terminated = False
        self._message_handlers: List[MessageHandler] = []
        self._close_handlers: List[CloseHandler] = []
        self._error_handlers: List[ErrorHandler] = []

    def __repr__(self) -> str:
        return f"<Connection {self.remote} {self.state.value}>"

    @property
    def is_open(self) -> bool:
        return self.state is ConnectionState.OPEN

    # --------------------------------------------------------------------------
    # Event registration
    # --------------------------------------------------------------------------
    def on_message(self, handler: MessageHandler) -> None:
        self._message_handlers.append(handler)

    def on_close(self, handler: CloseHandler) -> None:
        self._close_handlers.append(handler)

    def on_error(self, handler: ErrorHandler) -> None:
        self._error_handlers.append(handler)

    # --------------------------------------------------------------------------
    # Setup
    # --------------------------------------------------------------------------
    def configure_low_latency(self) -> bool:
        """Disable Nagle's algorithm on the underlying socket, if reachable.

        Returns False when the transport does not expose a socket; that only
        means the optimisation was skipped.
        """

        sock = _find_socket(self.transport)
        if sock is None:
            return False
        try:
            sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        except (OSError, AttributeError):
            return False
        return True

    def start(self) -> None:
        """Start the writer task. Frames queued before this are kept."""

        if self._writer is None and self.is_open:
            self._writer = asyncio.get_running_loop().create_task(self._drain())

    # --------------------------------------------------------------------------
    # Outbound
    # --------------------------------------------------------------------------
    def send(self, payload: Payload, is_binary: bool) -> asyncio.Future:
        """Queue *payload* for delivery and return its completion future.

        Never raises and never waits on the network: failures are reported
        through the returned future.
        """

        fut = asyncio.get_running_loop().create_future()
        if not self.is_open:
            fut.set_exception(ConnectionClosedError(f"connection {self.remote} is closed"))
            return fut
        try:
            self._queue.put_nowait((payload, is_binary, fut))
        except asyncio.QueueFull:
            fut.set_exception(SendQueueFullError(f"send queue full for {self.remote}"))
        return fut

    async def _drain(self) -> None:
        while True:
            payload, is_binary, fut = await self._queue.get()
            if fut.done():
                continue
            try:
                if is_binary:
                    await self.transport.send_bytes(payload)
                else:
                    await self.transport.send_text(payload)
            except asyncio.CancelledError:
                if not fut.done():
                    fut.set_exception(ConnectionClosedError(f"connection {self.remote} is closed"))
                raise
            except Exception as exc:
                if not fut.done():
                    fut.set_exception(exc)
                self._terminate(exc)
                return
            else:
                if not fut.done():
                    fut.set_result(None)

    # --------------------------------------------------------------------------
    # Inbound
    # --------------------------------------------------------------------------
    async def run(self) -> None:
        """Read frames until the peer goes away, then fire the terminal event."""

        self.start()
        try:
            while self.is_open:
                message = await self.transport.receive()
                if not self.is_open:
                    break
                kind = message.get("type")
                if kind == "websocket.disconnect":
                    self.close_code = message.get("code", 1000)
                    break
                if kind != "websocket.receive":
                    continue
                data = message.get("bytes")
                if data is not None:
                    self._dispatch(data, True)
                else:
                    self._dispatch(message.get("text") or "", False)
        except asyncio.CancelledError:
            self._terminate(None)
            raise
        except Exception as exc:
            self._terminate(exc)
        else:
            self._terminate(None)

    def _dispatch(self, payload: Payload, is_binary: bool) -> None:
        for handler in list(self._message_handlers):
            handler(self, payload, is_binary)

    # --------------------------------------------------------------------------
    # Teardown
    # --------------------------------------------------------------------------
    async def close(self, code: int = 1000) -> None:
        self._terminate(None)
        await self._close_transport(code)

    async def _close_transport(self, code: int) -> None:
        try:
            await self.transport.close(code)
        except Exception:
            pass  # peer already gone

    def _terminate(self, exc: Optional[BaseException]) -> None:
        if self._terminated:
            return
        self._terminated = True
        self.state = ConnectionState.CLOSED
        self._stop_writer()

        if exc is None:
            for handler in list(self._close_handlers):
                try:
                    handler(self)
                except Exception:
                    traceback.print_exc()
        else:
            for handler in list(self._error_handlers):
                try:
                    handler(self, exc)
                except Exception:
                    traceback.print_exc()
            # Wake the reader with a disconnect instead of leaving the socket open.
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                return
            self._closer = loop.create_task(self._close_transport(1011))

    def _stop_writer(self) -> None:
        current = None
        try:
            current = asyncio.current_task()
        except RuntimeError:
            pass
        if self._writer is not None and self._writer is not current and not self._writer.done():
            self._writer.cancel()
        while True:
            try:
                _, _, fut = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            if not fut.done():
                fut.set_exception(ConnectionClosedError(f"connection {self.remote} is closed"))


__all__ = [
    "Connection",
    "ConnectionClosedError",
    "ConnectionState",
    "RelayError",
    "SendQueueFullError",
]
