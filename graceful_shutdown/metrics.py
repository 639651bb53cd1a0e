"""Prometheus metrics for connection draining and shutdown."""

from prometheus_client import Counter, Gauge, Histogram

# Connection bookkeeping (updated by the registry)
CONNECTIONS_OPEN = Gauge(
    "graceful_shutdown_connections_open",
    "Connections currently tracked by the registry",
)

CONNECTIONS_BUSY = Gauge(
    "graceful_shutdown_connections_busy",
    "Tracked connections with a request in progress",
)

CONNECTIONS_REAPED_TOTAL = Counter(
    "graceful_shutdown_connections_reaped_total",
    "Idle connections destroyed while draining",
    ["reason"],
)

# Shutdown sequence
SHUTDOWN_TOTAL = Counter(
    "graceful_shutdown_total",
    "Completed shutdown sequences by completion path",
    ["path"],
)

DRAIN_DURATION_SECONDS = Histogram(
    "graceful_shutdown_drain_duration_seconds",
    "Time from the termination trigger to finalization",
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0],
)

CALLBACK_FAILURES_TOTAL = Counter(
    "graceful_shutdown_callback_failures_total",
    "Shutdown callbacks that raised or returned a failed future",
)


def record_reaped(reason: str, count: int = 1) -> None:
    """Record destroyed idle connections.

    Args:
        reason: "sweep" for the drain-start sweep, "request_finished" for
            connections reaped as their last request completed
        count: Number of connections destroyed
    """
    if count:
        CONNECTIONS_REAPED_TOTAL.labels(reason=reason).inc(count)


def record_shutdown(path: str, duration_seconds: float) -> None:
    """Record a finished drain.

    Args:
        path: "natural", "forced" or "development"
        duration_seconds: Time since the trigger
    """
    SHUTDOWN_TOTAL.labels(path=path).inc()
    DRAIN_DURATION_SECONDS.observe(duration_seconds)
