"""Server collaborator protocols and an ``asyncio.Server`` adapter."""

import asyncio
import logging
from typing import Any, Callable, Optional, Protocol

from graceful_shutdown.errors import ListenerNotStartedError
from graceful_shutdown.logging_config import peer

logger = logging.getLogger(__name__)


class ConnectionObserver(Protocol):
    """Receives connection and request lifecycle events from a server."""

    def connection_opened(self, handle: Any) -> None: ...

    def request_started(self, handle: Any) -> None: ...

    def request_finished(self, handle: Any) -> None: ...

    def connection_closed(self, handle: Any) -> None: ...


class Listener(Protocol):
    """Server operations used while draining."""

    def subscribe(self, observer: ConnectionObserver) -> None: ...

    def close(self, on_complete: Callable[[], None]) -> None:
        """Stop accepting connections; call on_complete once fully closed."""
        ...

    def destroy(self, handle: Any) -> None:
        """Forcefully terminate one connection."""
        ...


def _format_peer(transport: asyncio.BaseTransport) -> str:
    address = transport.get_extra_info("peername")
    if isinstance(address, tuple) and len(address) >= 2:
        return f"{address[0]}:{address[1]}"
    return str(address) if address else "-"


class _TrackedProtocol(asyncio.Protocol):
    """Wraps an application protocol and reports open/close to the listener."""

    def __init__(self, inner: asyncio.Protocol, listener: "AsyncioListener") -> None:
        self._inner = inner
        self._listener = listener
        self._transport: Optional[asyncio.Transport] = None
        self._peer = "-"

    def connection_made(self, transport: asyncio.BaseTransport) -> None:
        self._transport = transport
        self._peer = _format_peer(transport)
        self._listener._connection_made(transport)
        token = peer.set(self._peer)
        try:
            self._inner.connection_made(transport)
        finally:
            peer.reset(token)

    def data_received(self, data: bytes) -> None:
        # Tasks spawned by the application protocol inherit the peer address
        token = peer.set(self._peer)
        try:
            self._inner.data_received(data)
        finally:
            peer.reset(token)

    def eof_received(self) -> Optional[bool]:
        return self._inner.eof_received()

    def pause_writing(self) -> None:
        self._inner.pause_writing()

    def resume_writing(self) -> None:
        self._inner.resume_writing()

    def connection_lost(self, exc: Optional[Exception]) -> None:
        try:
            self._inner.connection_lost(exc)
        finally:
            self._listener._connection_lost(self._transport)


class AsyncioListener:
    """``Listener`` implementation for ``asyncio.Server``.

    Application protocols report request boundaries with
    :meth:`request_started` and :meth:`request_finished`, passing their own
    transport. Closing completes once the server is closed and every
    connection it accepted has been lost.

    Usage:
        listener = AsyncioListener()
        await listener.start(MyProtocol, "127.0.0.1", 8080)
        controller = GracefulShutdown(listener)
    """

    def __init__(self) -> None:
        self._server: Optional[asyncio.Server] = None
        self._observers: list[ConnectionObserver] = []
        self._transports: set[asyncio.BaseTransport] = set()
        self._closing = False
        self._server_closed = False
        self._on_complete: Optional[Callable[[], None]] = None

    @property
    def server(self) -> Optional[asyncio.Server]:
        return self._server

    @property
    def open_connections(self) -> int:
        return len(self._transports)

    def wrap(
        self, protocol_factory: Callable[[], asyncio.Protocol]
    ) -> Callable[[], asyncio.Protocol]:
        """Return a factory whose protocols report to this listener."""

        def factory() -> asyncio.Protocol:
            return _TrackedProtocol(protocol_factory(), self)

        return factory

    async def start(
        self,
        protocol_factory: Callable[[], asyncio.Protocol],
        host: Optional[str] = None,
        port: Optional[int] = None,
        **kwargs,
    ) -> asyncio.Server:
        """Create and hold a server for the wrapped protocol factory."""
        loop = asyncio.get_running_loop()
        self._server = await loop.create_server(
            self.wrap(protocol_factory), host, port, **kwargs
        )
        logger.info(
            "Listening",
            extra={"sockets": [str(s.getsockname()) for s in self._server.sockets]},
        )
        return self._server

    def subscribe(self, observer: ConnectionObserver) -> None:
        self._observers.append(observer)

    def request_started(self, transport: asyncio.BaseTransport) -> None:
        for observer in self._observers:
            observer.request_started(transport)

    def request_finished(self, transport: asyncio.BaseTransport) -> None:
        for observer in self._observers:
            observer.request_finished(transport)

    def close(self, on_complete: Callable[[], None]) -> None:
        """Stop accepting and call on_complete once all connections are gone."""
        if self._server is None:
            raise ListenerNotStartedError("listener has no server to close")
        self._closing = True
        self._on_complete = on_complete
        self._server.close()
        asyncio.get_running_loop().create_task(self._wait_server_closed())

    def destroy(self, handle: asyncio.BaseTransport) -> None:
        """Abort a transport; aborting a closed transport does nothing."""
        handle.abort()

    async def _wait_server_closed(self) -> None:
        await self._server.wait_closed()
        self._server_closed = True
        self._maybe_complete()

    def _connection_made(self, transport: asyncio.BaseTransport) -> None:
        self._transports.add(transport)
        for observer in self._observers:
            observer.connection_opened(transport)

    def _connection_lost(self, transport: asyncio.BaseTransport) -> None:
        self._transports.discard(transport)
        for observer in self._observers:
            observer.connection_closed(transport)
        self._maybe_complete()

    def _maybe_complete(self) -> None:
        if not (self._closing and self._server_closed) or self._transports:
            return
        on_complete, self._on_complete = self._on_complete, None
        if on_complete is not None:
            on_complete()
