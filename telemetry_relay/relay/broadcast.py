"""Classify inbound frames and fan them out to every other peer."""

from __future__ import annotations

import asyncio
import enum
import os
import time
import traceback
from dataclasses import dataclass
from typing import Callable, List, Optional

from .. import packet
from .connection import Connection, Payload
from .registry import Registry

LOG_TELEMETRY = os.getenv("RELAY_LOG_TELEMETRY", "1") not in ("", "0", "false", "no")


class MessageKind(enum.Enum):
    TELEMETRY = "binary"
    TEXT = "text"
    OTHER_BINARY = "other-binary"


@dataclass(frozen=True)
class RouteOutcome:
    kind: MessageKind
    size: int
    recipients: int
    sender: Optional[Connection] = None
    payload: Payload = b""


Observer = Callable[[RouteOutcome], None]


def classify(message: Payload, is_binary: bool) -> MessageKind:
    if packet.is_telemetry_frame(message, is_binary):
        return MessageKind.TELEMETRY
    if not is_binary:
        return MessageKind.TEXT
    return MessageKind.OTHER_BINARY


class BroadcastEngine:
    """Deliver each message to all registered connections except its sender.

    Sends are fire-and-forget: frames are queued on each recipient and the
    outcome is observed through the send future. Observers run only after
    delivery has been submitted and cannot influence it.
    """

    def __init__(self, registry: Registry, observers: Optional[List[Observer]] = None):
        self.registry = registry
        self._observers: List[Observer] = list(observers or [])

    def add_observer(self, observer: Observer) -> None:
        self._observers.append(observer)

    def route(self, sender: Optional[Connection], message: Payload, is_binary: bool) -> RouteOutcome:
        kind = classify(message, is_binary)
        binary = kind is not MessageKind.TEXT

        def deliver(conn: Connection) -> None:
            fut = conn.send(message, binary)
            fut.add_done_callback(lambda f, c=conn: _report_send(f, c, kind))

        recipients = self.registry.for_each_except(sender, deliver)
        outcome = RouteOutcome(
            kind=kind, size=len(message), recipients=recipients, sender=sender, payload=message
        )
        self._notify(outcome)
        return outcome

    def _notify(self, outcome: RouteOutcome) -> None:
        for observer in list(self._observers):
            try:
                observer(outcome)
            except Exception:
                traceback.print_exc()


def _report_send(fut: asyncio.Future, conn: Connection, kind: MessageKind) -> None:
    if fut.cancelled():
        return
    err = fut.exception()
    if err is not None:
        print(f"[relay] forward error ({kind.value}) to {conn.remote}: {err}")


class TelemetryLogger:
    """Observer printing one diagnostic line per telemetry frame."""

    def __init__(self, clock: Callable[[], float] = time.time, emit: Callable[[str], None] = print):
        self.clock = clock
        self.emit = emit

    def __call__(self, outcome: RouteOutcome) -> None:
        if outcome.kind is not MessageKind.TELEMETRY:
            return
        try:
            decoded = packet.decode(outcome.payload)
        except Exception as exc:
            self.emit(f"[relay] telemetry decode failed: {exc}")
            return
        if not isinstance(decoded, packet.TelemetryPacket):
            return
        now_ms = int(self.clock() * 1000)
        latency = packet.estimate_latency_ms(decoded, now_ms)
        self.emit(packet.format_packet(decoded, latency))


__all__ = [
    "BroadcastEngine",
    "LOG_TELEMETRY",
    "MessageKind",
    "RouteOutcome",
    "TelemetryLogger",
    "classify",
]
