"""Codec for the fixed 32-byte telemetry frame.

Layout (little-endian)::

    seq(u32) ts_ms(u32) pitch(f32) roll(f32) yaw(f32) temp(f32) hum(f32) batt(f32)

Decoding is a raw reinterpretation of the bytes: NaN and infinite floats are
valid results and are returned untouched. Range checks belong to whoever
presents the values, never to the relay.
"""

from __future__ import annotations

import math
import struct
from dataclasses import dataclass, field
from typing import Final, Optional, Tuple, Union

TELEMETRY_FORMAT: Final[str] = "<II6f"
TELEMETRY_FRAME_SIZE: Final[int] = struct.calcsize(TELEMETRY_FORMAT)

_UINT32_MAX: Final[int] = 0xFFFFFFFF
_WORDS_FORMAT: Final[str] = "<8I"
_FLOAT_FIELDS: Final[Tuple[str, ...]] = (
    "pitch",
    "roll",
    "yaw",
    "temperature",
    "humidity",
    "battery_voltage",
)


@dataclass(frozen=True)
class TelemetryPacket:
    """Decoded form of one telemetry frame."""

    sequence: int
    source_timestamp_ms: int
    pitch: float
    roll: float
    yaw: float
    temperature: float
    humidity: float
    battery_voltage: float
    # Raw 32-bit words of the frame; float conversion may quiet a signaling NaN.
    raw_words: Optional[Tuple[int, ...]] = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class NotATelemetryFrame:
    """Classification result for a payload that is not 32 bytes long."""

    length: int


DecodeResult = Union[TelemetryPacket, NotATelemetryFrame]


def is_telemetry_frame(data: bytes, is_binary: bool = True) -> bool:
    return is_binary and len(data) == TELEMETRY_FRAME_SIZE


def decode(data: bytes) -> DecodeResult:
    """Decode *data* into a :class:`TelemetryPacket`.

    Any length other than 32 yields :class:`NotATelemetryFrame`; this is a
    classification, not an error.
    """

    if len(data) != TELEMETRY_FRAME_SIZE:
        return NotATelemetryFrame(length=len(data))

    seq, ts_ms, pitch, roll, yaw, temp, hum, batt = struct.unpack(
        TELEMETRY_FORMAT, bytes(data)
    )
    return TelemetryPacket(
        sequence=seq,
        source_timestamp_ms=ts_ms,
        pitch=pitch,
        roll=roll,
        yaw=yaw,
        temperature=temp,
        humidity=hum,
        battery_voltage=batt,
        raw_words=struct.unpack(_WORDS_FORMAT, bytes(data)),
    )


def _is_nan_word(word: int) -> bool:
    return (word & 0x7F800000) == 0x7F800000 and (word & 0x007FFFFF) != 0


def encode(packet: TelemetryPacket) -> bytes:
    """Pack *packet* into its 32-byte wire form."""

    for name in ("sequence", "source_timestamp_ms"):
        value = getattr(packet, name)
        if not 0 <= value <= _UINT32_MAX:
            raise ValueError(f"{name} out of uint32 range: {value}")

    try:
        frame = struct.pack(
            TELEMETRY_FORMAT,
            packet.sequence,
            packet.source_timestamp_ms,
            packet.pitch,
            packet.roll,
            packet.yaw,
            packet.temperature,
            packet.humidity,
            packet.battery_voltage,
        )
    except (struct.error, OverflowError) as exc:
        raise ValueError(f"cannot encode telemetry packet: {exc}") from exc

    if packet.raw_words is None:
        return frame

    # Restore NaN bit patterns exactly as they arrived.
    out = bytearray(frame)
    for index, name in enumerate(_FLOAT_FIELDS, start=2):
        word = packet.raw_words[index]
        if math.isnan(getattr(packet, name)) and _is_nan_word(word):
            struct.pack_into("<I", out, index * 4, word)
    return bytes(out)


def estimate_latency_ms(packet: TelemetryPacket, now_ms: int) -> int:
    # Sender clock is usually millis-since-boot, so this is only a coarse hint.
    return now_ms - packet.source_timestamp_ms


def format_packet(packet: TelemetryPacket, latency_ms: int | None = None) -> str:
    lat = "?" if latency_ms is None else str(latency_ms)
    return (
        f"T#{packet.sequence} | lat~{lat}ms"
        f" | P:{packet.pitch:.1f} R:{packet.roll:.1f} Y:{packet.yaw:.1f}"
        f" | T:{packet.temperature:.1f}C H:{packet.humidity:.1f}%"
        f" V:{packet.battery_voltage:.2f}V"
    )


__all__ = [
    "DecodeResult",
    "NotATelemetryFrame",
    "TELEMETRY_FRAME_SIZE",
    "TelemetryPacket",
    "decode",
    "encode",
    "estimate_latency_ms",
    "format_packet",
    "is_telemetry_frame",
]
