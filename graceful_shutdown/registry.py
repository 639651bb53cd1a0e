"""Connection registry tracking idle/busy state per connection."""

import itertools
import logging
import threading
from dataclasses import dataclass, replace
from typing import Any, Callable, Hashable, Optional

from graceful_shutdown.metrics import CONNECTIONS_BUSY, CONNECTIONS_OPEN, record_reaped
from graceful_shutdown.state import ShutdownState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Connection:
    """One accepted connection.

    ``handle`` is the transport object; the registry only hands it back to
    the destroy operation and never mutates it.
    """

    id: int
    handle: Any
    idle: bool = True


class ConnectionRegistry:
    """Side table of live connections keyed by identifier.

    Thread-safe: every mutation runs under a single lock. Connections are
    evicted under the lock before they are destroyed, so each one is
    destroyed by the registry at most once.
    """

    def __init__(
        self,
        state: ShutdownState,
        destroy: Callable[[Any], None],
    ) -> None:
        """
        Initialize the registry.

        Args:
            state: Shared draining flag
            destroy: Transport operation that forcefully closes a handle
        """
        self._state = state
        self._destroy = destroy
        self._lock = threading.Lock()
        self._counter = itertools.count()
        self._connections: dict[int, Connection] = {}
        self._ids: dict[Hashable, int] = {}
        self._busy = 0
        self._accepted = 0

    def __len__(self) -> int:
        return len(self._connections)

    @property
    def busy_count(self) -> int:
        return self._busy

    @property
    def accepted_count(self) -> int:
        """Connections registered since creation, including closed ones."""
        return self._accepted

    def register(self, handle: Any) -> int:
        """Track a new connection as idle and return its identifier."""
        with self._lock:
            conn_id = next(self._counter)
            self._connections[conn_id] = Connection(conn_id, handle)
            self._ids[handle] = conn_id
            self._accepted += 1
            self._update_gauges()
        logger.debug("Connection registered", extra={"connection_id": conn_id})
        return conn_id

    def id_for(self, handle: Any) -> Optional[int]:
        """Look up the identifier of a registered handle."""
        return self._ids.get(handle)

    def get(self, conn_id: int) -> Optional[Connection]:
        return self._connections.get(conn_id)

    def mark_busy(self, conn_id: int) -> bool:
        """Flag a connection as processing a request.

        Returns:
            False if the connection was already removed
        """
        with self._lock:
            conn = self._connections.get(conn_id)
            if conn is None:
                return False
            if conn.idle:
                self._connections[conn_id] = replace(conn, idle=False)
                self._busy += 1
                self._update_gauges()
        return True

    def mark_idle(self, conn_id: int) -> bool:
        """Flag a connection as idle after its response finished.

        While draining, the connection is evicted and destroyed right away
        instead of waiting for another sweep.

        Returns:
            True if the connection was reaped
        """
        with self._lock:
            conn = self._connections.get(conn_id)
            if conn is None:
                return False
            if not conn.idle:
                self._busy -= 1
            if self._state.draining:
                self._evict(conn)
            else:
                self._connections[conn_id] = replace(conn, idle=True)
                conn = None
            self._update_gauges()

        if conn is None:
            return False
        self.destroy(conn)
        record_reaped("request_finished")
        logger.debug(
            "Reaped connection after its request finished",
            extra={"connection_id": conn_id},
        )
        return True

    def remove(self, conn_id: int) -> bool:
        """Forget a connection the transport reported closed.

        Returns:
            False if it had already been removed or reaped
        """
        with self._lock:
            conn = self._connections.get(conn_id)
            if conn is None:
                return False
            if not conn.idle:
                self._busy -= 1
            self._evict(conn)
            self._update_gauges()
        return True

    def snapshot(self) -> list[Connection]:
        """Point-in-time list of tracked connections."""
        with self._lock:
            return list(self._connections.values())

    def evict_idle(self) -> list[Connection]:
        """Atomically remove and return every idle connection."""
        with self._lock:
            idle = [conn for conn in self._connections.values() if conn.idle]
            for conn in idle:
                self._evict(conn)
            self._update_gauges()
        return idle

    def destroy(self, connection: Connection) -> None:
        """Forcefully close a connection's transport.

        A transport that is already gone is not an error.
        """
        try:
            self._destroy(connection.handle)
        except OSError as exc:
            logger.debug(
                f"Connection already closed: {exc}",
                extra={"connection_id": connection.id},
            )

    def _evict(self, conn: Connection) -> None:
        del self._connections[conn.id]
        if self._ids.get(conn.handle) == conn.id:
            del self._ids[conn.handle]

    def _update_gauges(self) -> None:
        CONNECTIONS_OPEN.set(len(self._connections))
        CONNECTIONS_BUSY.set(self._busy)
