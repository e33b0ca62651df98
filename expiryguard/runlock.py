"""
Run lock — at most one reconciliation pass per store at a time.

Two layers:
- an in-process registry, checked first, so concurrent triggers inside one
  daemon (cron, POST /run) are turned away without a database round trip;
- the store's own lock (a PostgreSQL advisory lock for PostgresSecretStore),
  which is what keeps separate processes apart: a CLI ``run`` next to a
  daemon, or two daemon replicas.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

logger = logging.getLogger(__name__)

_held_here: set[str] = set()


class LockingStore(Protocol):
    def try_lock_run(self, key: str) -> bool: ...

    def unlock_run(self, key: str) -> None: ...


class RunLock:
    """Lock for one named run against one store.

    Usage:
        lock = RunLock(store, "reconcile")
        if await lock.acquire():
            try:
                ...
            finally:
                await lock.release()
    """

    def __init__(self, store: LockingStore, key: str) -> None:
        self.store = store
        self.key = key

    async def acquire(self) -> bool:
        """True when this process now holds both layers.

        Raises whatever the store raises if its lock cannot be checked.
        """
        if self.key in _held_here:
            logger.debug("Run '%s' already in progress in this process", self.key)
            return False

        # Claimed before the first await so a concurrent trigger sees it.
        _held_here.add(self.key)
        try:
            acquired = await asyncio.to_thread(self.store.try_lock_run, self.key)
        except BaseException:
            _held_here.discard(self.key)
            raise

        if not acquired:
            _held_here.discard(self.key)
            logger.info("Run '%s' already in progress in another process", self.key)
        return acquired

    async def release(self) -> None:
        try:
            await asyncio.to_thread(self.store.unlock_run, self.key)
        finally:
            _held_here.discard(self.key)


def held_here(key: str) -> bool:
    """Whether a run for ``key`` is in progress in this process."""
    return key in _held_here


def forget_all() -> None:
    """Drop the in-process registry. Only for testing."""
    _held_here.clear()
