# Relay package
#
# Provides:
#  - FastAPI-based WebSocket endpoint that accepts producer/consumer peers
#  - Connection wrapper with a FIFO writer task per peer
#  - Registry of open connections and a broadcast engine (fan-out to others)
#
# See telemetry_relay/relay/node.py for the app entry point.
