import argparse
import os
import traceback
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, WebSocket
from fastapi.responses import FileResponse, JSONResponse
from fastapi.staticfiles import StaticFiles

from .. import __version__
from .broadcast import LOG_TELEMETRY, BroadcastEngine, TelemetryLogger
from .connection import Connection
from .registry import Registry

# ------------------------------------------------------------------------------
# Configuration
# ------------------------------------------------------------------------------
HOST = os.getenv("RELAY_HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "3000"))
PUBLIC_DIR = Path(__file__).resolve().parent.parent / "public"


def _remote_label(ws: WebSocket) -> str:
    client = ws.client
    if client is None:
        return "?"
    return f"{client.host}:{client.port}"


# ------------------------------------------------------------------------------
# Acceptor
# ------------------------------------------------------------------------------
class Acceptor:
    """Turns each accepted WebSocket into a registered, wired Connection."""

    def __init__(self, registry: Registry, engine: BroadcastEngine):
        self.registry = registry
        self.engine = engine

    def _on_close(self, conn: Connection) -> None:
        self.registry.remove(conn)
        print(f"[relay] client disconnected: {conn.remote} code={conn.close_code}")

    def _on_error(self, conn: Connection, exc: BaseException) -> None:
        self.registry.remove(conn)
        print(f"[relay] WS error from {conn.remote}: {exc}")

    def attach(self, conn: Connection) -> Connection:
        conn.configure_low_latency()
        conn.on_message(self.engine.route)
        conn.on_close(self._on_close)
        conn.on_error(self._on_error)
        # Registered before the handshake completes so a peer is eligible for
        # broadcasts as soon as its connect returns; frames wait in its queue.
        self.registry.add(conn)
        return conn

    async def handle(self, ws: WebSocket) -> None:
        conn = self.attach(Connection(ws, remote=_remote_label(ws)))
        try:
            await ws.accept()
        except Exception:
            await conn.close()
            raise
        print(f"[relay] client connected: {conn.remote}")

        try:
            await conn.run()
        except Exception:
            traceback.print_exc()
        finally:
            await conn.close()


# ------------------------------------------------------------------------------
# App scaffolding
# ------------------------------------------------------------------------------
def create_app(
    registry: Optional[Registry] = None,
    engine: Optional[BroadcastEngine] = None,
    log_telemetry: bool = LOG_TELEMETRY,
) -> FastAPI:
    registry = registry if registry is not None else Registry()
    if engine is None:
        engine = BroadcastEngine(registry)
        if log_telemetry:
            engine.add_observer(TelemetryLogger())
    acceptor = Acceptor(registry, engine)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        print("[relay] starting WebSocket relay...")
        yield
        for conn in registry.snapshot():
            await conn.close(1001)
        registry.clear()

    app = FastAPI(title="telemetry relay", version=__version__, lifespan=lifespan)
    app.state.registry = registry
    app.state.engine = engine
    app.state.acceptor = acceptor

    # --------------------------------------------------------------------------
    # WebSocket endpoint: / (and /ws)
    # --------------------------------------------------------------------------
    @app.websocket("/")
    async def relay_socket(ws: WebSocket):
        await acceptor.handle(ws)

    app.add_api_websocket_route("/ws", relay_socket)

    # --------------------------------------------------------------------------
    # HTTP endpoints
    # --------------------------------------------------------------------------
    @app.get("/health")
    async def health():
        return JSONResponse({"status": "ok"})

    @app.get("/relay/peers")
    async def relay_peers():
        peers = registry.snapshot()
        return JSONResponse(
            {
                "peers": len(peers),
                "addresses": sorted(conn.remote for conn in peers),
            }
        )

    @app.get("/")
    async def index():
        return FileResponse(PUBLIC_DIR / "index.html")

    if PUBLIC_DIR.is_dir():
        app.mount("/static", StaticFiles(directory=PUBLIC_DIR), name="static")

    return app


app = create_app()


def main(argv: Optional[list[str]] = None) -> None:
    import uvicorn

    parser = argparse.ArgumentParser(description="Low-latency WebSocket telemetry relay")
    parser.add_argument("--host", default=HOST)
    parser.add_argument("--port", type=int, default=PORT)
    args = parser.parse_args(argv)

    print(f"[relay] HTTP + WS server listening on http://{args.host}:{args.port}")
    try:
        # Compression adds per-frame latency for 32-byte packets.
        uvicorn.run(
            app,
            host=args.host,
            port=args.port,
            log_level="info",
            ws_per_message_deflate=False,
        )
    except OSError as exc:
        print(f"[relay] cannot listen on {args.host}:{args.port}: {exc}")
        raise SystemExit(1) from exc


if __name__ == "__main__":
    main()
