"""One graceful shutdown coordinator per server."""

import asyncio
import sys
from typing import Any, Callable, Optional

from graceful_shutdown.config import ShutdownSettings, get_settings
from graceful_shutdown.finalizer import Finalizer, ShutdownCallback
from graceful_shutdown.listener import Listener
from graceful_shutdown.logging_config import setup_logging
from graceful_shutdown.orchestrator import ShutdownOrchestrator
from graceful_shutdown.registry import ConnectionRegistry
from graceful_shutdown.state import ShutdownPhase, ShutdownState
from graceful_shutdown.triggers import TriggerAdapter


class GracefulShutdown:
    """Wires the registry, orchestrator, finalizer and triggers for a listener.

    Usage:
        listener = AsyncioListener()
        await listener.start(MyProtocol, "0.0.0.0", 8080)

        controller = GracefulShutdown(listener, callback=close_database)
        controller.install_signal_handlers()
    """

    def __init__(
        self,
        listener: Listener,
        settings: Optional[ShutdownSettings] = None,
        callback: Optional[ShutdownCallback] = None,
        *,
        exit_func: Callable[[int], Any] = sys.exit,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.listener = listener

        self.state = ShutdownState()
        self.registry = ConnectionRegistry(self.state, listener.destroy)
        self.finalizer = Finalizer(
            callback,
            exit_code=self.settings.exit_code,
            exit_func=exit_func,
        )
        self.orchestrator = ShutdownOrchestrator(
            listener,
            self.registry,
            self.state,
            self.finalizer,
            timeout=self.settings.timeout_seconds,
            development=self.settings.development,
            loop=loop,
        )
        self.triggers = TriggerAdapter(
            self.orchestrator, self.registry, self.settings.signals
        )
        listener.subscribe(self.triggers)

    @property
    def phase(self) -> ShutdownPhase:
        return self.orchestrator.phase

    @property
    def draining(self) -> bool:
        return self.state.draining

    def install_signal_handlers(
        self, loop: Optional[asyncio.AbstractEventLoop] = None
    ) -> None:
        self.triggers.install(loop)

    def restore_signal_handlers(self) -> None:
        self.triggers.uninstall()

    def shutdown(self, reason: str = "manual") -> bool:
        """Programmatically trigger shutdown (tests, admin endpoints)."""
        return self.orchestrator.shutdown(reason)

    async def wait_finalized(self) -> None:
        await self.orchestrator.wait_finalized()


def graceful_shutdown(
    listener: Listener,
    settings: Optional[ShutdownSettings] = None,
    callback: Optional[ShutdownCallback] = None,
    **overrides: Any,
) -> GracefulShutdown:
    """Gracefully shut down ``listener`` when the process receives a signal.

    Must be called from a coroutine: handlers are installed on the running
    loop. Also configures logging from the `log_level` and `log_json`
    settings.

    Args:
        listener: Server to drain
        settings: Base settings; environment settings when omitted
        callback: Optional cleanup run before exit, may be async
        **overrides: Setting overrides, e.g. ``timeout=5000, development=True``

    Returns:
        The installed controller

    Raises:
        TypeError: If an override does not name a setting
    """
    unknown = sorted(set(overrides) - set(ShutdownSettings.model_fields))
    if unknown:
        raise TypeError(f"Unknown shutdown settings: {', '.join(unknown)}")
    if overrides:
        base = settings.model_dump() if settings is not None else {}
        settings = ShutdownSettings(**{**base, **overrides})
    settings = settings or get_settings()
    setup_logging(settings.log_level, settings.log_json)

    controller = GracefulShutdown(listener, settings, callback)
    controller.install_signal_handlers()
    return controller
