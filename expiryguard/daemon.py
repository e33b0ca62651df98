"""
Main daemon entry point — starts the cron scheduler and health endpoint.

Runs as: python -m expiryguard.daemon  (or: expiryguard daemon)
"""

from __future__ import annotations

import asyncio
import logging

from expiryguard.config import Config, get_config
from expiryguard.db.connection import close_pool
from expiryguard.dispatcher import Dispatcher
from expiryguard.health import serve_health
from expiryguard.reconciler import ReconciliationJob
from expiryguard.scheduler import ExpiryScheduler
from expiryguard.store import PostgresSecretStore

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"


def configure_logging(level: int = logging.INFO) -> None:
    logging.basicConfig(level=level, format=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")


def build_job(config: Config) -> ReconciliationJob:
    """Wire the PostgreSQL store and configured channels into a job."""
    return ReconciliationJob(PostgresSecretStore(), Dispatcher.from_config(config), config)


async def main(config: Config | None = None) -> None:
    """Start all daemon subsystems."""
    configure_logging()
    config = config or get_config()

    logger.info("Starting ExpiryGuard daemon...")
    logger.info(
        "Schedule: %s (%s) enabled=%s",
        config.scheduler.cron,
        config.scheduler.timezone,
        config.scheduler.enabled,
    )
    logger.info("Health port: %d", config.health_port)

    job = build_job(config)
    logger.info("Channels: %s", ", ".join(job.dispatcher.channel_names()) or "none")

    scheduler = ExpiryScheduler(config, job)
    tasks = [
        asyncio.create_task(scheduler.start(), name="scheduler"),
        asyncio.create_task(serve_health(config, job), name="health"),
    ]

    done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
    for task in done:
        if task.exception():
            logger.error("Task %s failed: %s", task.get_name(), task.exception())
        else:
            logger.info("Task %s completed", task.get_name())

    logger.info("Shutting down subsystems...")
    scheduler.shutdown()
    for task in pending:
        task.cancel()
    await asyncio.gather(*pending, return_exceptions=True)
    close_pool()
    logger.info("ExpiryGuard stopped")


if __name__ == "__main__":
    asyncio.run(main())
