"""Error types and the readiness error payload."""


class GracefulShutdownError(Exception):
    """Base class for errors raised by the shutdown coordinator."""


class InvalidSignalError(GracefulShutdownError, ValueError):
    """Raised when a configured termination signal does not exist."""


class ListenerNotStartedError(GracefulShutdownError, RuntimeError):
    """Raised when a listener operation needs a running server."""


def shutting_down_error() -> dict:
    """Error body returned by the readiness endpoint while draining."""
    return {
        "error": {
            "code": "shutting_down",
            "message": "Server is shutting down",
            "hint": "Stop routing new traffic to this instance. Connections are being drained.",
        }
    }
