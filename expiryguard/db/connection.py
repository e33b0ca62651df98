"""
PostgreSQL connections for ExpiryGuard.

Two kinds:
- pooled, via get_connection(): the store's short transactions. The pool is
  sized from ``scheduler.max_concurrency`` so a run committing at full
  concurrency never exhausts it.
- dedicated, via open_connection(): an autocommit session that outlives any
  single transaction. Used to hold the cross-process run lock.

Usage:
    from expiryguard.db import get_connection

    with get_connection() as conn:
        cur = conn.cursor()
        cur.execute("SELECT 1")
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager

import psycopg2
from psycopg2.extensions import connection as PGConnection
from psycopg2.pool import ThreadedConnectionPool

from expiryguard.config import Config, DatabaseConfig, get_config

logger = logging.getLogger(__name__)

# Candidate fetch plus one operator call (CLI, /health) alongside the commits.
POOL_HEADROOM = 2
CONNECT_TIMEOUT = 5

_pool: ThreadedConnectionPool | None = None
_pool_guard = threading.Lock()


def pool_size(config: Config) -> int:
    """Maximum pooled connections for a configuration."""
    return max(1, config.scheduler.max_concurrency) + POOL_HEADROOM


def _unreachable(db: DatabaseConfig, error: Exception) -> ConnectionError:
    where = f"{db.host or 'local socket'}:{db.port}/{db.name}"
    return ConnectionError(
        f"Cannot reach PostgreSQL at {where}: {error}. "
        "Check the EXPIRYGUARD_DB_* environment variables."
    )


def get_pool() -> ThreadedConnectionPool:
    """Return the shared pool, opening it on first use."""
    global _pool
    with _pool_guard:
        if _pool is not None and not _pool.closed:
            return _pool

        config = get_config()
        maxconn = pool_size(config)
        logger.info(
            "Opening PostgreSQL pool for %s (max %d connections)", config.db.name, maxconn
        )
        try:
            _pool = ThreadedConnectionPool(
                1, maxconn, connect_timeout=CONNECT_TIMEOUT, **config.db.dict
            )
        except psycopg2.OperationalError as e:
            raise _unreachable(config.db, e) from e
        return _pool


@contextmanager
def get_connection() -> Iterator[PGConnection]:
    """Borrow a pooled connection for one transaction.

    Commits on a clean exit, rolls back on error, and always returns the
    connection to the pool.
    """
    pool = get_pool()
    conn = pool.getconn()
    try:
        yield conn
    except Exception:
        conn.rollback()
        raise
    else:
        conn.commit()
    finally:
        pool.putconn(conn)


def open_connection() -> PGConnection:
    """Open an unpooled autocommit connection. The caller closes it."""
    db = get_config().db
    try:
        conn = psycopg2.connect(connect_timeout=CONNECT_TIMEOUT, **db.dict)
    except psycopg2.OperationalError as e:
        raise _unreachable(db, e) from e
    conn.autocommit = True
    return conn


def close_pool() -> None:
    global _pool
    with _pool_guard:
        if _pool is not None:
            _pool.closeall()
            _pool = None
