"""Termination signals and server events feeding the orchestrator and registry."""

import asyncio
import logging
import signal
from types import FrameType
from typing import Any, Iterable, Optional, Union

from graceful_shutdown.config import split_signal_names
from graceful_shutdown.errors import InvalidSignalError
from graceful_shutdown.orchestrator import ShutdownOrchestrator
from graceful_shutdown.registry import ConnectionRegistry

logger = logging.getLogger(__name__)

SignalSpec = Union[str, int, signal.Signals]


def parse_signals(
    value: Union[str, Iterable[SignalSpec]],
) -> tuple[signal.Signals, ...]:
    """Resolve signal names or numbers.

    Accepts the ``"SIGINT SIGTERM"`` string form or an iterable of names,
    numbers or ``signal.Signals`` members. Duplicates are dropped.

    Raises:
        InvalidSignalError: If a name or number is not a signal on this platform
    """
    items = split_signal_names(value) if isinstance(value, str) else list(value)

    resolved: list[signal.Signals] = []
    for item in items:
        try:
            if isinstance(item, str):
                sig = signal.Signals[item.upper()]
            else:
                sig = signal.Signals(item)
        except (KeyError, ValueError) as exc:
            raise InvalidSignalError(f"unknown signal: {item!r}") from exc
        if sig not in resolved:
            resolved.append(sig)
    return tuple(resolved)


class TriggerAdapter:
    """Forwards termination signals and connection events.

    Implements the ``ConnectionObserver`` protocol so it can be subscribed
    to a listener directly. Events for handles the registry does not know
    are ignored.
    """

    def __init__(
        self,
        orchestrator: ShutdownOrchestrator,
        registry: ConnectionRegistry,
        signals: Union[str, Iterable[SignalSpec]] = "SIGINT SIGTERM",
    ) -> None:
        self._orchestrator = orchestrator
        self._registry = registry
        self.signals = parse_signals(signals)
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._loop_handlers: list[signal.Signals] = []
        self._original_handlers: dict[signal.Signals, Any] = {}

    # Server events

    def connection_opened(self, handle: Any) -> None:
        self._registry.register(handle)

    def request_started(self, handle: Any) -> None:
        conn_id = self._registry.id_for(handle)
        if conn_id is not None:
            self._registry.mark_busy(conn_id)

    def request_finished(self, handle: Any) -> None:
        conn_id = self._registry.id_for(handle)
        if conn_id is not None:
            self._registry.mark_idle(conn_id)

    def connection_closed(self, handle: Any) -> None:
        conn_id = self._registry.id_for(handle)
        if conn_id is not None:
            self._registry.remove(conn_id)

    # Termination signals

    def install(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        """Install signal handlers on the event loop.

        Falls back to ``signal.signal`` where the loop does not support
        signal handlers (Windows).
        """
        self._loop = loop or asyncio.get_running_loop()
        for sig in self.signals:
            try:
                self._loop.add_signal_handler(sig, self._on_signal, sig)
                self._loop_handlers.append(sig)
            except NotImplementedError:
                self._original_handlers[sig] = signal.signal(sig, self._handle_signal)
        logger.info(
            f"Registered shutdown signals: {', '.join(s.name for s in self.signals)}"
        )

    def uninstall(self) -> None:
        """Remove installed handlers and restore the original ones."""
        for sig in self._loop_handlers:
            self._loop.remove_signal_handler(sig)
        for sig, original in self._original_handlers.items():
            signal.signal(sig, original)
        self._loop_handlers.clear()
        self._original_handlers.clear()
        logger.debug("Restored original signal handlers")

    def _handle_signal(self, signum: int, frame: Optional[FrameType]) -> None:
        """Handle shutdown signals delivered outside the event loop."""
        self._loop.call_soon_threadsafe(self._on_signal, signal.Signals(signum))

    def _on_signal(self, sig: signal.Signals) -> None:
        logger.info(
            f"Received {sig.name}, initiating graceful shutdown",
            extra={"signal": sig.name, "signal_number": int(sig)},
        )
        self._orchestrator.shutdown(sig.name)
