"""Destroys idle connections once draining has started."""

import logging

from graceful_shutdown.metrics import record_reaped
from graceful_shutdown.registry import ConnectionRegistry

logger = logging.getLogger(__name__)


def reap(registry: ConnectionRegistry, draining: bool) -> int:
    """Destroy every idle connection in the registry.

    Connections the transport closed concurrently have already been removed
    from the registry and are never seen here.

    Args:
        registry: Registry to sweep
        draining: Current draining flag; nothing happens while False

    Returns:
        Number of connections destroyed
    """
    if not draining:
        return 0

    victims = registry.evict_idle()
    for conn in victims:
        registry.destroy(conn)

    record_reaped("sweep", len(victims))
    logger.debug(f"Reaped {len(victims)} idle connections")
    return len(victims)
