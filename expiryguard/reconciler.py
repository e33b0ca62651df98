"""
Reconciliation job — one fetch → evaluate → dispatch → commit → summarize pass.

A run only fails as a whole when candidates cannot be fetched. After that,
every secret is handled in isolation: channel failures are absorbed by the
dispatcher and commit failures are logged, leaving the secret eligible (and
likely re-notified) on the next run.

Secrets are processed concurrently up to ``scheduler.max_concurrency``; each
secret's own evaluate/dispatch/commit sequence stays strictly ordered, and the
summary broadcast only starts after every commit has been attempted.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta

from expiryguard.config import Config, today as utc_today
from expiryguard.dispatcher import Dispatcher
from expiryguard.evaluator import evaluate
from expiryguard.models import RunStatus, RunSummary, Secret
from expiryguard.runlock import RunLock
from expiryguard.store import SecretStore

logger = logging.getLogger(__name__)

RUN_LOCK = "reconcile"
URGENT_THRESHOLD = 3


@dataclass
class _SecretResult:
    notified: bool = False
    threshold: int | None = None
    commit_failed: bool = False


class ReconciliationJob:
    """Orchestrates reconciliation runs against a store and a dispatcher."""

    def __init__(self, store: SecretStore, dispatcher: Dispatcher, config: Config) -> None:
        self.store = store
        self.dispatcher = dispatcher
        self.config = config
        self.last_summary: RunSummary | None = None

    async def run_once(self, today: date | None = None) -> RunSummary:
        """Execute one reconciliation pass."""
        if not self.config.scheduler.enabled:
            logger.info("ExpiryGuard: scheduler disabled, skipping notification run")
            return RunSummary(status=RunStatus.DISABLED, today=today)

        lock = RunLock(self.store, RUN_LOCK)
        try:
            acquired = await lock.acquire()
        except Exception as e:
            logger.error("Could not check the run lock, aborting run: %s", e)
            summary = RunSummary(status=RunStatus.FAILED, today=today, error=str(e))
            self.last_summary = summary
            return summary

        if not acquired:
            logger.info("Reconciliation skipped: previous run still in progress")
            return RunSummary(status=RunStatus.SKIPPED, today=today)

        try:
            summary = await self._run(today or utc_today())
        finally:
            await lock.release()

        self.last_summary = summary
        return summary

    async def _run(self, today: date) -> RunSummary:
        summary = RunSummary(status=RunStatus.COMPLETED, today=today, started_at=datetime.now(UTC))
        logger.info("ExpiryGuard: starting notification run %s for %s", summary.id, today)

        max_date = today + timedelta(days=self.config.lookahead_days)
        try:
            secrets = await asyncio.to_thread(
                self.store.list_active_expiring_between, today, max_date
            )
        except Exception as e:
            logger.exception("Failed to fetch candidate secrets, aborting run")
            summary.status = RunStatus.FAILED
            summary.error = str(e)
            summary.completed_at = datetime.now(UTC)
            return summary

        summary.candidates = len(secrets)
        logger.info(
            "Found %d secrets expiring within %d days", len(secrets), self.config.lookahead_days
        )

        semaphore = asyncio.Semaphore(max(1, self.config.scheduler.max_concurrency))

        async def bounded(secret: Secret) -> _SecretResult:
            async with semaphore:
                return await self._process(today, secret)

        results = await asyncio.gather(*(bounded(s) for s in secrets), return_exceptions=True)

        for secret, result in zip(secrets, results, strict=True):
            if isinstance(result, BaseException):
                logger.error("Unexpected error processing secret '%s': %s", secret.name, result)
                continue
            if result.commit_failed:
                summary.failed_commits += 1
            if result.notified:
                summary.notified += 1
                if result.threshold == URGENT_THRESHOLD:
                    summary.urgent_names.append(secret.name)

        if self.dispatcher.is_configured():
            summary.summary_outcomes = await self.dispatcher.broadcast_summary(
                summary.candidates, summary.notified, list(summary.urgent_names)
            )

        summary.completed_at = datetime.now(UTC)
        logger.info(
            "ExpiryGuard: notification run completed. Sent %d notifications "
            "(%d candidates, %d failed commits)",
            summary.notified,
            summary.candidates,
            summary.failed_commits,
        )
        return summary

    async def _process(self, today: date, secret: Secret) -> _SecretResult:
        decision = evaluate(today, secret, self.config.thresholds)
        threshold = decision.threshold
        if not decision.due or threshold is None:
            logger.debug(
                "Secret '%s' expires in %d days - nothing due", secret.name, decision.days_remaining
            )
            return _SecretResult()

        logger.info(
            "Secret '%s' expires in %d days - sending %s notification (%d-day threshold)",
            secret.name,
            decision.days_remaining,
            decision.urgency,
            threshold,
        )

        outcomes = await self.dispatcher.dispatch(secret, decision)
        if not self.dispatcher.committable(outcomes):
            return _SecretResult()

        try:
            await asyncio.to_thread(self.store.commit_notification, secret.id, today, threshold)
        except Exception as e:
            logger.error(
                "Failed to record %d-day notification for '%s': %s", threshold, secret.name, e
            )
            return _SecretResult(notified=True, threshold=threshold, commit_failed=True)

        logger.info("%s notification sent for: %s", decision.urgency, secret.name)
        return _SecretResult(notified=True, threshold=threshold)
