"""Unit tests for the connection registry."""

import threading

import pytest

from graceful_shutdown.registry import Connection, ConnectionRegistry
from graceful_shutdown.state import ShutdownState


class Handle:
    pass


class TestRegister:
    """Tests for registering connections."""

    def test_register_assigns_monotonic_ids(self, registry):
        """Identifiers increase in accept order."""
        ids = [registry.register(Handle()) for _ in range(3)]
        assert ids == [0, 1, 2]

    def test_new_connection_is_idle(self, registry):
        """Connections start idle."""
        conn_id = registry.register(Handle())
        assert registry.get(conn_id).idle is True

    def test_id_for_returns_registered_id(self, registry):
        handle = Handle()
        conn_id = registry.register(handle)
        assert registry.id_for(handle) == conn_id

    def test_id_for_unknown_handle(self, registry):
        assert registry.id_for(Handle()) is None

    def test_accepted_count_includes_removed(self, registry):
        """accepted_count keeps counting after connections close."""
        conn_id = registry.register(Handle())
        registry.register(Handle())
        registry.remove(conn_id)
        assert registry.accepted_count == 2
        assert len(registry) == 1


class TestBusyIdle:
    """Tests for idle/busy transitions."""

    def test_mark_busy(self, registry):
        conn_id = registry.register(Handle())
        assert registry.mark_busy(conn_id) is True
        assert registry.get(conn_id).idle is False
        assert registry.busy_count == 1

    def test_mark_idle_after_busy(self, registry):
        conn_id = registry.register(Handle())
        registry.mark_busy(conn_id)
        assert registry.mark_idle(conn_id) is False
        assert registry.get(conn_id).idle is True
        assert registry.busy_count == 0

    def test_mark_busy_twice_counts_once(self, registry):
        conn_id = registry.register(Handle())
        registry.mark_busy(conn_id)
        registry.mark_busy(conn_id)
        assert registry.busy_count == 1

    def test_mark_busy_after_remove_is_noop(self, registry):
        """Race with close is harmless."""
        conn_id = registry.register(Handle())
        registry.remove(conn_id)
        assert registry.mark_busy(conn_id) is False
        assert registry.get(conn_id) is None

    def test_mark_idle_after_remove_is_noop(self, registry, destroyed):
        conn_id = registry.register(Handle())
        registry.remove(conn_id)
        assert registry.mark_idle(conn_id) is False
        assert destroyed == []

    def test_mark_idle_not_draining_does_not_destroy(self, registry, destroyed):
        conn_id = registry.register(Handle())
        registry.mark_busy(conn_id)
        registry.mark_idle(conn_id)
        assert destroyed == []
        assert len(registry) == 1

    def test_mark_idle_while_draining_reaps(self, state, registry, destroyed):
        """Finishing a request while draining closes the connection right away."""
        handle = Handle()
        conn_id = registry.register(handle)
        registry.mark_busy(conn_id)
        state.begin_draining()

        assert registry.mark_idle(conn_id) is True
        assert destroyed == [handle]
        assert registry.get(conn_id) is None
        assert registry.id_for(handle) is None
        assert registry.busy_count == 0

    def test_classification_matches_last_event(self, registry):
        """Idle flag follows the last applied event per connection."""
        a, b, c = (registry.register(Handle()) for _ in range(3))
        registry.mark_busy(a)
        registry.mark_busy(b)
        registry.mark_idle(b)
        registry.mark_busy(c)
        registry.mark_idle(c)
        registry.mark_busy(c)

        idle = {conn.id: conn.idle for conn in registry.snapshot()}
        assert idle == {a: False, b: True, c: False}
        assert registry.busy_count == 2


class TestRemove:
    """Tests for removing connections."""

    def test_remove_busy_connection(self, registry):
        conn_id = registry.register(Handle())
        registry.mark_busy(conn_id)
        assert registry.remove(conn_id) is True
        assert len(registry) == 0
        assert registry.busy_count == 0

    def test_remove_twice(self, registry):
        conn_id = registry.register(Handle())
        assert registry.remove(conn_id) is True
        assert registry.remove(conn_id) is False


class TestSnapshotAndEviction:
    """Tests for snapshots and idle eviction."""

    def test_snapshot_is_a_copy(self, registry):
        registry.register(Handle())
        snapshot = registry.snapshot()
        snapshot.clear()
        assert len(registry.snapshot()) == 1

    def test_connections_are_immutable(self, registry):
        """Idle flags can only change through the registry."""
        registry.register(Handle())
        conn = registry.snapshot()[0]
        assert isinstance(conn, Connection)
        with pytest.raises(AttributeError):
            conn.idle = False

    def test_evict_idle_only_takes_idle(self, registry):
        idle_id = registry.register(Handle())
        busy_id = registry.register(Handle())
        registry.mark_busy(busy_id)

        evicted = registry.evict_idle()

        assert [conn.id for conn in evicted] == [idle_id]
        assert [conn.id for conn in registry.snapshot()] == [busy_id]


class TestDestroy:
    """Tests for destroying transports."""

    def test_destroy_tolerates_closed_transport(self, state):
        """OSError from an already-closed transport is not escalated."""

        def destroy(handle):
            raise OSError("Bad file descriptor")

        registry = ConnectionRegistry(state, destroy)
        registry.register(Handle())
        conn = registry.snapshot()[0]

        registry.destroy(conn)


class TestConcurrency:
    """Tests for concurrent event delivery."""

    def test_concurrent_events_lose_nothing(self, registry):
        """Parallel register/busy/idle/remove keeps counts consistent."""
        kept = []
        lock = threading.Lock()

        def worker():
            for _ in range(200):
                conn_id = registry.register(Handle())
                registry.mark_busy(conn_id)
                registry.mark_idle(conn_id)
                registry.mark_busy(conn_id)
                with lock:
                    kept.append(conn_id)

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(registry) == 800
        assert len(set(kept)) == 800
        assert registry.busy_count == 800
        assert all(not conn.idle for conn in registry.snapshot())
