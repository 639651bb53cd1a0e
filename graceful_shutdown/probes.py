"""Health, readiness and metrics endpoints for a managed server."""

import logging

from fastapi import FastAPI, Response
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from graceful_shutdown.controller import GracefulShutdown
from graceful_shutdown.errors import shutting_down_error

logger = logging.getLogger(__name__)


def create_probe_app(controller: GracefulShutdown) -> FastAPI:
    """Build a FastAPI app exposing the controller's state.

    Serve it on a separate port (e.g. with uvicorn) so probes keep working
    while the main listener drains.
    """
    app = FastAPI(
        title="Graceful Shutdown Probes",
        description="Liveness, readiness and metrics for a draining server.",
        version="0.1.0",
    )

    @app.get("/health")
    async def health_check():
        """Health check endpoint (liveness probe).

        Always returns 200 while the process is alive, even during shutdown.
        Use /ready for readiness checks.
        """
        return {
            "status": "healthy",
            "phase": controller.phase.value,
            "connections": len(controller.registry),
            "busy": controller.registry.busy_count,
        }

    @app.get("/ready")
    async def readiness_check():
        """Readiness probe for Kubernetes.

        Returns 503 once draining starts to stop receiving new traffic.
        """
        if controller.draining:
            return JSONResponse(
                status_code=503,
                content={"status": "shutting_down", **shutting_down_error()},
            )
        return {"status": "ready"}

    @app.get("/metrics")
    async def metrics():
        """Prometheus metrics endpoint.

        Includes:
        - graceful_shutdown_connections_open / _busy: registry gauges
        - graceful_shutdown_connections_reaped_total: destroyed idle connections
        - graceful_shutdown_total: finished shutdowns by path
        - graceful_shutdown_drain_duration_seconds: trigger-to-finalize latency
        """
        return Response(
            content=generate_latest(),
            media_type=CONTENT_TYPE_LATEST,
        )

    return app
