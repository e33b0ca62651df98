"""
Health endpoint — lightweight FastAPI app for monitoring.

GET  /health  returns scheduler state, active channels and the last run.
POST /run     triggers a reconciliation pass under the shared run lock.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from expiryguard import __version__
from expiryguard.runlock import held_here
from expiryguard.reconciler import RUN_LOCK

if TYPE_CHECKING:
    from expiryguard.config import Config
    from expiryguard.reconciler import ReconciliationJob

logger = logging.getLogger(__name__)


def create_health_app(config: Config, job: ReconciliationJob):
    """Create a lightweight FastAPI health app."""
    from fastapi import FastAPI

    app = FastAPI(title="ExpiryGuard", docs_url=None, redoc_url=None)

    @app.get("/health")
    async def health():
        last = job.last_summary
        return {
            "status": "healthy",
            "timestamp": datetime.now(UTC).isoformat(),
            "version": __version__,
            "scheduler": {
                "enabled": config.scheduler.enabled,
                "cron": config.scheduler.cron,
                "timezone": config.scheduler.timezone,
            },
            "channels": job.dispatcher.channel_names(),
            "run_in_progress": held_here(RUN_LOCK),
            "last_run": last.to_dict() if last else None,
        }

    @app.post("/run")
    async def run_now():
        """Trigger a run immediately; returns its summary."""
        summary = await job.run_once()
        logger.info("Manual run via /run: %s", summary.status.value)
        return summary.to_dict()

    return app


async def serve_health(config: Config, job: ReconciliationJob) -> None:
    """Serve the health app with uvicorn until cancelled."""
    import uvicorn

    app = create_health_app(config, job)
    server_config = uvicorn.Config(
        app,
        host=config.health_host,
        port=config.health_port,
        log_level="warning",
    )
    server = uvicorn.Server(server_config)
    await server.serve()
