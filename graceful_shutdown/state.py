"""Shutdown state management."""

import logging
import threading
from enum import Enum

logger = logging.getLogger(__name__)


class ShutdownPhase(str, Enum):
    """Lifecycle phases of a managed server."""

    RUNNING = "running"
    DRAINING = "draining"
    FINALIZING = "finalizing"


class ShutdownState:
    """One-way draining flag shared by the registry and the orchestrator.

    The flag goes from False to True exactly once and is never reset.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._draining = False

    @property
    def draining(self) -> bool:
        """Check if shutdown is in progress."""
        return self._draining

    def begin_draining(self) -> bool:
        """Mark the server as draining.

        Returns:
            True for the caller that performed the transition, False for
            every later caller
        """
        with self._lock:
            if self._draining:
                return False
            self._draining = True
        logger.info("Graceful shutdown initiated")
        return True
