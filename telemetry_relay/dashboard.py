"""Consumer-side view of the telemetry stream.

Mirrors what the browser dashboard does with each frame it receives from the
relay: 32-byte binary frames carry the full packet, text frames carry a JSON
object with any subset of ``pitch``/``roll``/``yaw``/``temperature``/
``humidity``/``battery``.
"""

from __future__ import annotations

import math
import os
from dataclasses import dataclass
from typing import Any, Optional, Union

import orjson

from . import packet

BATTERY_EMPTY_V = float(os.getenv("BATTERY_EMPTY_V", "5.0"))
BATTERY_FULL_V = float(os.getenv("BATTERY_FULL_V", "6.6"))


def _clamp_pct(value: float) -> float:
    return max(0.0, min(100.0, value))


def battery_percent(voltage: float, empty: float = BATTERY_EMPTY_V, full: float = BATTERY_FULL_V) -> float:
    """Map a pack voltage onto 0..100 % using a linear empty/full range."""

    if full <= empty:
        raise ValueError("full voltage must be above empty voltage")
    if math.isnan(voltage):
        return 0.0
    if voltage >= full:
        return 100.0
    if voltage <= empty:
        return 0.0
    return _clamp_pct((voltage - empty) / (full - empty) * 100.0)


def temperature_percent(celsius: float) -> float:
    # -20..80 C fills the gauge.
    if math.isnan(celsius):
        return 0.0
    return _clamp_pct((celsius + 20.0) / 100.0 * 100.0)


def battery_level(pct: float) -> str:
    if pct > 60:
        return "high"
    if pct > 30:
        return "medium"
    return "low"


def _number(value: Any) -> float:
    # Anything float() rejects (lists, dicts, None, junk strings) and NaN become 0.
    # Numeric strings are accepted, including Python spellings such as "inf".
    if isinstance(value, bool):
        return float(value)
    try:
        result = float(value)
    except (TypeError, ValueError):
        return 0.0
    return 0.0 if math.isnan(result) else result


@dataclass
class DashboardState:
    pitch: float = 0.0
    roll: float = 0.0
    yaw: float = 0.0
    temperature: float = 0.0
    humidity: float = 0.0
    battery_voltage: float = 0.0
    last_sequence: Optional[int] = None

    @property
    def battery_pct(self) -> float:
        return battery_percent(self.battery_voltage)

    def apply_packet(self, pkt: packet.TelemetryPacket) -> None:
        self.pitch = pkt.pitch
        self.roll = pkt.roll
        self.yaw = pkt.yaw
        self.temperature = pkt.temperature
        self.humidity = pkt.humidity
        self.battery_voltage = pkt.battery_voltage
        self.last_sequence = pkt.sequence

    def apply_json(self, data: dict) -> bool:
        changed = False
        if "pitch" in data and "roll" in data and "yaw" in data:
            self.pitch = _number(data["pitch"])
            self.roll = _number(data["roll"])
            self.yaw = _number(data["yaw"])
            changed = True
        if "temperature" in data:
            self.temperature = _number(data["temperature"])
            changed = True
        if "battery" in data:
            self.battery_voltage = _number(data["battery"])
            changed = True
        if "humidity" in data:
            self.humidity = _number(data["humidity"])
            changed = True
        return changed

    def summary(self) -> str:
        pct = self.battery_pct
        return (
            f"P:{self.pitch:.1f} R:{self.roll:.1f} Y:{self.yaw:.1f}"
            f" | T:{self.temperature:.1f}C H:{self.humidity:.1f}%"
            f" | V:{self.battery_voltage:.2f}V {pct:.0f}% ({battery_level(pct)})"
        )


def apply_frame(state: DashboardState, payload: Union[bytes, str], is_binary: bool) -> bool:
    """Fold one relayed frame into *state*. Returns True if anything changed."""

    if is_binary:
        decoded = packet.decode(payload)
        if isinstance(decoded, packet.NotATelemetryFrame):
            return False
        state.apply_packet(decoded)
        return True

    try:
        data = orjson.loads(payload)
    except orjson.JSONDecodeError:
        return False
    if not isinstance(data, dict):
        return False
    return state.apply_json(data)


__all__ = [
    "BATTERY_EMPTY_V",
    "BATTERY_FULL_V",
    "DashboardState",
    "apply_frame",
    "battery_level",
    "battery_percent",
    "temperature_percent",
]
