"""Database connection management for ExpiryGuard."""

from expiryguard.db.connection import (
    close_pool,
    get_connection,
    get_pool,
    open_connection,
    pool_size,
)

__all__ = ["close_pool", "get_connection", "get_pool", "open_connection", "pool_size"]
