"""
Shared pytest fixtures for graceful shutdown tests.
"""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from graceful_shutdown.config import ShutdownSettings
from graceful_shutdown.registry import ConnectionRegistry
from graceful_shutdown.state import ShutdownState


class FakeHandle:
    """Stand-in transport handle."""

    def __init__(self, name: str):
        self.name = name
        self.destroyed = 0

    def __repr__(self):
        return f"FakeHandle({self.name!r})"


class FakeListener:
    """In-memory Listener.

    Destroying or dropping a handle reports it closed to subscribers, like a
    real transport would. Closing completes once no handle is open.
    """

    def __init__(self):
        self.observers = []
        self.open_handles = []
        self.destroyed = []
        self.close_calls = 0
        self._on_complete = None

    def subscribe(self, observer):
        self.observers.append(observer)

    def close(self, on_complete):
        self.close_calls += 1
        self._on_complete = on_complete
        self._maybe_complete()

    def destroy(self, handle):
        handle.destroyed += 1
        self.destroyed.append(handle)
        if handle in self.open_handles:
            self.drop(handle)

    # Helpers that emit server events

    def open(self, name: str) -> FakeHandle:
        handle = FakeHandle(name)
        self.open_handles.append(handle)
        for observer in self.observers:
            observer.connection_opened(handle)
        return handle

    def start_request(self, handle):
        for observer in self.observers:
            observer.request_started(handle)

    def finish_request(self, handle):
        for observer in self.observers:
            observer.request_finished(handle)

    def drop(self, handle):
        self.open_handles.remove(handle)
        for observer in self.observers:
            observer.connection_closed(handle)
        self._maybe_complete()

    def _maybe_complete(self):
        if self._on_complete is not None and not self.open_handles:
            on_complete, self._on_complete = self._on_complete, None
            on_complete()


class ExitRecorder:
    """Replacement for sys.exit that records exit codes."""

    def __init__(self):
        self.codes = []

    def __call__(self, code):
        self.codes.append(code)


@pytest.fixture
def state():
    """Fresh shutdown state for each test."""
    return ShutdownState()


@pytest.fixture
def destroyed():
    """Handles passed to the registry's destroy operation."""
    return []


@pytest.fixture
def registry(state, destroyed):
    """Registry whose destroy operation records handles."""
    return ConnectionRegistry(state, destroyed.append)


@pytest.fixture
def exit_recorder():
    return ExitRecorder()


@pytest.fixture
def fake_listener():
    return FakeListener()


@pytest.fixture
def settings():
    """Settings with a 100ms timeout, isolated from the environment."""
    return ShutdownSettings(
        _env_file=None,
        signals="SIGINT SIGTERM",
        timeout=100,
        development=False,
        exit_code=1,
    )
