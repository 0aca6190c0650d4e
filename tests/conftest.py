import asyncio
import struct

import pytest

from telemetry_relay.relay.connection import Connection


# 32-byte frame: seq=1, ts=1000, pitch=12.5, roll=-3.0, yaw=90.0, temp=26.4, hum=55.2, batt=6.1
SAMPLE_FRAME = struct.pack("<II6f", 1, 1000, 12.5, -3.0, 90.0, 26.4, 55.2, 6.1)


class FakeTransport:
    """Stands in for a starlette WebSocket."""

    def __init__(self, fail_with: Exception | None = None, sock=None):
        self.sent = []
        self.inbox: asyncio.Queue = asyncio.Queue()
        self.fail_with = fail_with
        self.closed_with = None
        self._sock = sock

    async def send_bytes(self, data):
        if self.fail_with is not None:
            raise self.fail_with
        self.sent.append((data, True))

    async def send_text(self, data):
        if self.fail_with is not None:
            raise self.fail_with
        self.sent.append((data, False))

    async def receive(self):
        return await self.inbox.get()

    async def close(self, code=1000):
        self.closed_with = code
        self.disconnect(code)

    def get_extra_info(self, name):
        return self._sock if name == "socket" else None

    def feed_bytes(self, data: bytes):
        self.inbox.put_nowait({"type": "websocket.receive", "bytes": data})

    def feed_text(self, text: str):
        self.inbox.put_nowait({"type": "websocket.receive", "text": text})

    def disconnect(self, code: int = 1000):
        self.inbox.put_nowait({"type": "websocket.disconnect", "code": code})


async def settle(rounds: int = 10):
    """Give writer tasks a chance to drain their queues."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def make_conn():
    def factory(remote: str = "peer", **transport_kwargs) -> Connection:
        return Connection(FakeTransport(**transport_kwargs), remote=remote)

    return factory
