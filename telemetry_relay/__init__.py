"""Low-latency WebSocket relay for 32-byte binary telemetry packets."""

__version__ = "0.1.0"
