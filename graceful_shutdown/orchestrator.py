"""Shutdown state machine: Running -> Draining -> Finalizing."""

import asyncio
import logging
import threading
import time
from typing import Optional

from graceful_shutdown.finalizer import Finalizer
from graceful_shutdown.listener import Listener
from graceful_shutdown.metrics import record_shutdown
from graceful_shutdown.reaper import reap
from graceful_shutdown.registry import ConnectionRegistry
from graceful_shutdown.state import ShutdownPhase, ShutdownState

logger = logging.getLogger(__name__)


class ShutdownOrchestrator:
    """Coordinates drain start, listener close, reaping and the forced timeout.

    The first call to :meth:`shutdown` wins; later triggers are ignored.
    Listener close completion and the forced timer race each other, and
    whichever arrives first schedules the finalizer exactly once.
    """

    def __init__(
        self,
        listener: Listener,
        registry: ConnectionRegistry,
        state: ShutdownState,
        finalizer: Finalizer,
        timeout: float = 30.0,
        development: bool = False,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> None:
        """
        Initialize the orchestrator.

        Args:
            listener: Server whose close operation stops accepting connections
            registry: Connections to reap while draining
            state: Shared draining flag
            finalizer: Runs the callback and exits
            timeout: Forced shutdown grace period in seconds
            development: Finalize immediately without draining
            loop: Event loop for the timer and finalizer task; defaults to
                the running loop at trigger time
        """
        self._listener = listener
        self._registry = registry
        self._state = state
        self._finalizer = finalizer
        self.timeout = timeout
        self.development = development
        self._loop = loop

        self._lock = threading.Lock()
        self._phase = ShutdownPhase.RUNNING
        self._timer: Optional[asyncio.TimerHandle] = None
        self._task: Optional[asyncio.Task] = None
        self._started_at: Optional[float] = None
        self._completion_path: Optional[str] = None
        self._finalized = asyncio.Event()

    @property
    def phase(self) -> ShutdownPhase:
        return self._phase

    @property
    def completion_path(self) -> Optional[str]:
        """How finalization was reached: natural, forced or development."""
        return self._completion_path

    def shutdown(self, reason: Optional[str] = None) -> bool:
        """Enter the draining state.

        Safe to call from any thread; off the loop thread the drain is
        handed to the loop.

        Args:
            reason: Signal name or other trigger label, for logs only

        Returns:
            True if this call started the shutdown sequence

        Raises:
            RuntimeError: If no loop was given and none is running
        """
        logger.info(f"Shutdown signal - {reason}", extra={"signal": reason})
        on_loop = self._resolve_loop()

        if not self._state.begin_draining():
            logger.debug(f"Shutdown already in progress, ignoring {reason}")
            return False

        self._started_at = time.perf_counter()
        with self._lock:
            self._phase = ShutdownPhase.DRAINING

        if on_loop:
            self._drain()
        else:
            self._loop.call_soon_threadsafe(self._drain)
        return True

    async def wait_finalized(self) -> None:
        """Wait until the finalizer has run."""
        await self._finalized.wait()

    def _resolve_loop(self) -> bool:
        """Bind the event loop; True when called on it."""
        if self._loop is None:
            try:
                self._loop = asyncio.get_running_loop()
            except RuntimeError:
                raise RuntimeError(
                    "shutdown needs a running event loop or an explicit loop"
                ) from None
        return self._on_loop()

    def _drain(self) -> None:
        if self.development:
            logger.info("Development mode - immediate forceful shutdown")
            self._finalize("development")
            return

        try:
            self._listener.close(self._on_listener_closed)
        except Exception:
            # The forced timer still bounds the drain
            logger.exception("Listener close failed, waiting for the forced timeout")

        destroyed = reap(self._registry, self._state.draining)
        logger.info(
            f"Connections destroyed: {destroyed}",
            extra={
                "destroyed": destroyed,
                "remaining": len(self._registry),
                "accepted": self._registry.accepted_count,
            },
        )

        # The listener may have reported closed synchronously
        with self._lock:
            if self._phase is ShutdownPhase.DRAINING:
                self._timer = self._loop.call_later(self.timeout, self._on_timeout)

    def _on_listener_closed(self, *args) -> None:
        logger.info("Listener closed, all connections finished")
        self._finalize("natural")

    def _on_timeout(self) -> None:
        logger.warning(
            f"Could not close connections in time ({self.timeout * 1000:.0f}ms), "
            "forcefully shutting down",
            extra={"remaining": len(self._registry)},
        )
        self._finalize("forced")

    def _finalize(self, path: str) -> None:
        with self._lock:
            if self._phase is ShutdownPhase.FINALIZING:
                return
            self._phase = ShutdownPhase.FINALIZING
            self._completion_path = path
            timer, self._timer = self._timer, None

        if timer is not None:
            timer.cancel()

        duration = time.perf_counter() - self._started_at
        record_shutdown(path, duration)
        logger.info(
            f"Finalizing shutdown ({path})",
            extra={"path": path, "duration_ms": round(duration * 1000, 2)},
        )
        if self._on_loop():
            self._start_finalizer()
        else:
            self._loop.call_soon_threadsafe(self._start_finalizer)

    def _on_loop(self) -> bool:
        try:
            return asyncio.get_running_loop() is self._loop
        except RuntimeError:
            return False

    def _start_finalizer(self) -> None:
        self._task = self._loop.create_task(self._run_finalizer())

    async def _run_finalizer(self) -> None:
        try:
            await self._finalizer.finalize()
        finally:
            self._finalized.set()
