"""Console dashboard: prints each telemetry update received from the relay."""

from __future__ import annotations

import argparse
import asyncio
from typing import Callable, Optional, Union

import websockets

from .dashboard import DashboardState, apply_frame


def render_frame(state: DashboardState, payload: Union[bytes, str], is_binary: bool) -> Optional[str]:
    if not apply_frame(state, payload, is_binary):
        return None
    prefix = f"#{state.last_sequence} " if is_binary else "json "
    return f"[monitor] {prefix}{state.summary()}"


async def monitor(
    url: str,
    limit: Optional[int] = None,
    emit: Callable[[str], None] = print,
    reconnect_delay: float = 1.0,
) -> DashboardState:
    """Follow the relay at *url*, reconnecting until *limit* updates were shown."""

    state = DashboardState()
    shown = 0
    while limit is None or shown < limit:
        try:
            async with websockets.connect(url, max_size=None, compression=None) as ws:
                emit(f"[monitor] connected to {url}")
                async for message in ws:
                    line = render_frame(state, message, isinstance(message, bytes))
                    if line is None:
                        continue
                    emit(line)
                    shown += 1
                    if limit is not None and shown >= limit:
                        break
        except (OSError, websockets.exceptions.WebSocketException) as exc:
            emit(f"[monitor] disconnected: {exc}")
        if limit is None or shown < limit:
            await asyncio.sleep(reconnect_delay)
    return state


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Print relayed telemetry to the console")
    parser.add_argument("--url", default="ws://localhost:3000")
    parser.add_argument("--limit", type=int, default=None, help="exit after N updates")
    args = parser.parse_args(argv)

    try:
        asyncio.run(monitor(args.url, args.limit))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
