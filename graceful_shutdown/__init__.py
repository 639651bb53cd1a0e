"""Graceful shutdown coordination for connection-oriented servers."""

from graceful_shutdown.config import ShutdownSettings, get_settings
from graceful_shutdown.controller import GracefulShutdown, graceful_shutdown
from graceful_shutdown.errors import (
    GracefulShutdownError,
    InvalidSignalError,
    ListenerNotStartedError,
)
from graceful_shutdown.finalizer import Finalizer
from graceful_shutdown.listener import AsyncioListener, ConnectionObserver, Listener
from graceful_shutdown.orchestrator import ShutdownOrchestrator
from graceful_shutdown.reaper import reap
from graceful_shutdown.registry import Connection, ConnectionRegistry
from graceful_shutdown.state import ShutdownPhase, ShutdownState
from graceful_shutdown.triggers import TriggerAdapter, parse_signals

__all__ = [
    "AsyncioListener",
    "Connection",
    "ConnectionObserver",
    "ConnectionRegistry",
    "Finalizer",
    "GracefulShutdown",
    "GracefulShutdownError",
    "InvalidSignalError",
    "Listener",
    "ListenerNotStartedError",
    "ShutdownOrchestrator",
    "ShutdownPhase",
    "ShutdownSettings",
    "ShutdownState",
    "TriggerAdapter",
    "get_settings",
    "graceful_shutdown",
    "parse_signals",
    "reap",
]
