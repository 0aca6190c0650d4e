"""Simulated telemetry source.

Streams synthetic 32-byte telemetry frames (or JSON text frames with
``--json``) to a running relay, the way the flight controller does.

Usage:
    telemetry-producer --url ws://localhost:3000 --rate 20
"""

from __future__ import annotations

import argparse
import asyncio
import math
import time
from typing import Callable, Optional, Union

import orjson
import websockets

from . import packet

_UINT32_MASK = 0xFFFFFFFF


def synth_packet(seq: int, t: float) -> packet.TelemetryPacket:
    """Smoothly varying attitude and environment, battery draining slowly."""

    return packet.TelemetryPacket(
        sequence=seq & _UINT32_MASK,
        source_timestamp_ms=int(t * 1000) & _UINT32_MASK,
        pitch=10.0 * math.sin(t / 4),
        roll=15.0 * math.cos(t / 5),
        yaw=(t * 20) % 360,
        temperature=25.0 + 2.0 * math.sin(t / 30),
        humidity=50.0 + 5.0 * math.cos(t / 40),
        battery_voltage=max(5.0, 6.6 - t * 0.001),
    )


def build_frame(pkt: packet.TelemetryPacket, as_json: bool = False) -> Union[bytes, str]:
    if not as_json:
        return packet.encode(pkt)
    return orjson.dumps(
        {
            "pitch": pkt.pitch,
            "roll": pkt.roll,
            "yaw": pkt.yaw,
            "temperature": pkt.temperature,
            "humidity": pkt.humidity,
            "battery": pkt.battery_voltage,
        }
    ).decode("utf-8")


async def produce(
    url: str,
    rate_hz: float = 20.0,
    count: Optional[int] = None,
    as_json: bool = False,
    clock: Callable[[], float] = time.monotonic,
) -> int:
    """Send frames to *url* until *count* is reached (forever if None)."""

    interval = 1.0 / rate_hz
    t0 = clock()
    sent = 0
    async with websockets.connect(url, max_size=None, compression=None) as ws:
        print(f"[producer] connected to {url} ({'json' if as_json else 'binary'} @ {rate_hz} Hz)")
        while count is None or sent < count:
            pkt = synth_packet(sent + 1, clock() - t0)
            await ws.send(build_frame(pkt, as_json))
            sent += 1
            await asyncio.sleep(interval)
    return sent


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Stream synthetic telemetry to the relay")
    parser.add_argument("--url", default="ws://localhost:3000")
    parser.add_argument("--rate", type=float, default=20.0, help="frames per second")
    parser.add_argument("--count", type=int, default=None, help="stop after N frames")
    parser.add_argument("--json", action="store_true", help="send JSON text frames instead")
    args = parser.parse_args(argv)

    if args.rate <= 0:
        parser.error("--rate must be positive")

    try:
        sent = asyncio.run(produce(args.url, args.rate, args.count, args.json))
    except KeyboardInterrupt:
        return
    except (OSError, websockets.exceptions.WebSocketException) as exc:
        print(f"[producer] connection failed: {exc}")
        raise SystemExit(1) from exc
    print(f"[producer] sent {sent} frames")


if __name__ == "__main__":
    main()
