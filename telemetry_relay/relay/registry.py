"""The live set of connections eligible to receive broadcasts."""

from __future__ import annotations

import threading
import traceback
from typing import Callable, Iterator, Optional, Set, Tuple

from .connection import Connection


class Registry:
    """Set of open connections.

    Mutation and snapshotting share one lock; iteration always walks an
    immutable snapshot, so connections closing mid-broadcast never disturb
    the loop.
    """

    def __init__(self) -> None:
        self._members: Set[Connection] = set()
        self._lock = threading.Lock()

    def add(self, conn: Connection) -> None:
        with self._lock:
            self._members.add(conn)

    def remove(self, conn: Connection) -> bool:
        """Drop *conn*. Returns False (and does nothing else) if it was absent."""

        with self._lock:
            if conn not in self._members:
                return False
            self._members.discard(conn)
            return True

    def snapshot(self) -> Tuple[Connection, ...]:
        with self._lock:
            return tuple(self._members)

    def for_each_except(
        self, exclude: Optional[Connection], fn: Callable[[Connection], None]
    ) -> int:
        """Call *fn* for every open member other than *exclude*.

        A failure for one member is logged and does not stop the rest.
        Returns the number of members *fn* was called for.
        """

        visited = 0
        for conn in self.snapshot():
            if conn is exclude or not conn.is_open:
                continue
            visited += 1
            try:
                fn(conn)
            except Exception:
                traceback.print_exc()
        return visited

    def clear(self) -> None:
        with self._lock:
            self._members.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._members)

    def __contains__(self, conn: object) -> bool:
        with self._lock:
            return conn in self._members

    def __iter__(self) -> Iterator[Connection]:
        return iter(self.snapshot())


__all__ = ["Registry"]
