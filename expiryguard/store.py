"""
Secret store — reads candidates and persists notification state.

PostgreSQL via psycopg2, using get_connection() and RealDictCursor. Every
database failure surfaces as StoreError so the reconciler can tell a fetch
failure (fatal to the run) from a commit failure (logged, run continues).
"""

from __future__ import annotations

import logging
from datetime import date
from pathlib import Path
from typing import Any, Protocol

import psycopg2
from psycopg2.extras import RealDictCursor

from expiryguard.db.connection import get_connection, open_connection
from expiryguard.errors import StoreError
from expiryguard.models import Secret

logger = logging.getLogger(__name__)

SCHEMA_SQL = Path(__file__).parent / "migrations" / "001_secrets.sql"

_COLUMNS = (
    "id, owner_email, name, expiry_date, notes, active, "
    "last_notified_on, last_notified_threshold, created_at"
)


class SecretStore(Protocol):
    """What the reconciliation engine needs from persistence."""

    def list_active_expiring_between(self, min_date: date, max_date: date) -> list[Secret]: ...

    def save(self, secret: Secret) -> Secret: ...

    def commit_notification(self, secret_id: int, notified_on: date, threshold: int) -> bool: ...

    def try_lock_run(self, key: str) -> bool: ...

    def unlock_run(self, key: str) -> None: ...


def _row_to_secret(row: dict[str, Any]) -> Secret:
    return Secret(
        id=int(row["id"]),
        name=row["name"],
        expiry_date=row["expiry_date"],
        owner_email=row["owner_email"],
        notes=row.get("notes"),
        active=bool(row["active"]),
        last_notified_on=row.get("last_notified_on"),
        last_notified_threshold=row.get("last_notified_threshold"),
        created_at=row.get("created_at"),
    )


class PostgresSecretStore:
    """SecretStore backed by the ``secrets`` table."""

    def __init__(self) -> None:
        # Run-lock sessions, one dedicated connection per held key
        self._lock_sessions: dict[str, Any] = {}

    def init_schema(self) -> None:
        """Create the secrets table and indexes if missing."""
        sql = SCHEMA_SQL.read_text()
        try:
            with get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(sql)
        except (psycopg2.Error, ConnectionError) as e:
            raise StoreError(f"Failed to apply schema: {e}") from e
        logger.info("Schema applied from %s", SCHEMA_SQL.name)

    # ─── Reconciliation contract ─────────────────────────────────────────

    def list_active_expiring_between(self, min_date: date, max_date: date) -> list[Secret]:
        """Active secrets with min_date <= expiry_date <= max_date, soonest first."""
        try:
            with get_connection() as conn:
                cur = conn.cursor(cursor_factory=RealDictCursor)
                cur.execute(
                    f"""
                    SELECT {_COLUMNS}
                    FROM secrets
                    WHERE active = TRUE
                      AND expiry_date >= %s
                      AND expiry_date <= %s
                    ORDER BY expiry_date ASC, id ASC
                    """,
                    (min_date, max_date),
                )
                rows = cur.fetchall()
        except (psycopg2.Error, ConnectionError) as e:
            raise StoreError(f"Failed to list expiring secrets: {e}") from e
        return [_row_to_secret(r) for r in rows]

    def commit_notification(self, secret_id: int, notified_on: date, threshold: int) -> bool:
        """Persist last_notified_on and last_notified_threshold in one statement."""
        try:
            with get_connection() as conn:
                cur = conn.cursor()
                cur.execute(
                    """
                    UPDATE secrets
                    SET last_notified_on = %s,
                        last_notified_threshold = %s
                    WHERE id = %s
                    """,
                    (notified_on, threshold, secret_id),
                )
                updated = cur.rowcount > 0
        except (psycopg2.Error, ConnectionError) as e:
            raise StoreError(f"Failed to commit notification for secret {secret_id}: {e}") from e
        if updated:
            logger.info("Marked secret %s as notified at %d-day threshold", secret_id, threshold)
        else:
            logger.warning("Commit for secret %s matched no row", secret_id)
        return updated

    def try_lock_run(self, key: str) -> bool:
        """Take the session-level advisory lock for ``key``.

        The lock lives on a dedicated connection that stays open until
        unlock_run(), so every process sharing the database sees it. Returns
        False when another session already holds it.
        """
        if key in self._lock_sessions:
            return False
        conn = None
        try:
            conn = open_connection()
            cur = conn.cursor()
            cur.execute("SELECT pg_try_advisory_lock(hashtext(%s))", (key,))
            acquired = bool(cur.fetchone()[0])
        except (psycopg2.Error, ConnectionError) as e:
            if conn is not None:
                conn.close()
            raise StoreError(f"Failed to take run lock '{key}': {e}") from e

        if not acquired:
            conn.close()
            logger.info("Run lock '%s' is held by another session", key)
            return False
        self._lock_sessions[key] = conn
        return True

    def unlock_run(self, key: str) -> None:
        """Release a lock taken by try_lock_run(). Closing the session frees it regardless."""
        conn = self._lock_sessions.pop(key, None)
        if conn is None:
            return
        try:
            cur = conn.cursor()
            cur.execute("SELECT pg_advisory_unlock(hashtext(%s))", (key,))
        except psycopg2.Error as e:
            logger.warning("Explicit unlock of '%s' failed, closing session: %s", key, e)
        finally:
            conn.close()

    def save(self, secret: Secret) -> Secret:
        """Upsert a secret by id."""
        try:
            with get_connection() as conn:
                cur = conn.cursor(cursor_factory=RealDictCursor)
                cur.execute(
                    f"""
                    INSERT INTO secrets (
                        id, owner_email, name, expiry_date, notes, active,
                        last_notified_on, last_notified_threshold
                    ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                    ON CONFLICT (id) DO UPDATE SET
                        owner_email = EXCLUDED.owner_email,
                        name = EXCLUDED.name,
                        expiry_date = EXCLUDED.expiry_date,
                        notes = EXCLUDED.notes,
                        active = EXCLUDED.active,
                        last_notified_on = EXCLUDED.last_notified_on,
                        last_notified_threshold = EXCLUDED.last_notified_threshold
                    RETURNING {_COLUMNS}
                    """,
                    (
                        secret.id,
                        secret.owner_email,
                        secret.name,
                        secret.expiry_date,
                        secret.notes,
                        secret.active,
                        secret.last_notified_on,
                        secret.last_notified_threshold,
                    ),
                )
                row = cur.fetchone()
        except (psycopg2.Error, ConnectionError) as e:
            raise StoreError(f"Failed to save secret {secret.id}: {e}") from e
        return _row_to_secret(row)

    # ─── Owner-facing operations ─────────────────────────────────────────

    def add_secret(
        self,
        owner_email: str,
        name: str,
        expiry_date: date,
        notes: str | None = None,
    ) -> Secret:
        """Create a new, never-notified secret."""
        name = name.strip()
        if not name:
            raise ValueError("Secret name must not be empty")
        try:
            with get_connection() as conn:
                cur = conn.cursor(cursor_factory=RealDictCursor)
                cur.execute(
                    f"""
                    INSERT INTO secrets (owner_email, name, expiry_date, notes)
                    VALUES (%s, %s, %s, %s)
                    RETURNING {_COLUMNS}
                    """,
                    (owner_email, name, expiry_date, notes or None),
                )
                row = cur.fetchone()
        except (psycopg2.Error, ConnectionError) as e:
            raise StoreError(f"Failed to add secret '{name}': {e}") from e
        return _row_to_secret(row)

    def get_secret(self, secret_id: int) -> Secret | None:
        try:
            with get_connection() as conn:
                cur = conn.cursor(cursor_factory=RealDictCursor)
                cur.execute(f"SELECT {_COLUMNS} FROM secrets WHERE id = %s", (secret_id,))
                row = cur.fetchone()
        except (psycopg2.Error, ConnectionError) as e:
            raise StoreError(f"Failed to load secret {secret_id}: {e}") from e
        return _row_to_secret(row) if row else None

    def list_for_owner(self, owner_email: str) -> list[Secret]:
        """Active secrets for one owner, soonest expiry first."""
        try:
            with get_connection() as conn:
                cur = conn.cursor(cursor_factory=RealDictCursor)
                cur.execute(
                    f"""
                    SELECT {_COLUMNS}
                    FROM secrets
                    WHERE owner_email = %s AND active = TRUE
                    ORDER BY expiry_date ASC, id ASC
                    """,
                    (owner_email,),
                )
                rows = cur.fetchall()
        except (psycopg2.Error, ConnectionError) as e:
            raise StoreError(f"Failed to list secrets for {owner_email}: {e}") from e
        return [_row_to_secret(r) for r in rows]

    def deactivate_secret(self, secret_id: int, owner_email: str) -> bool:
        """Soft-delete a secret. Only the owner's own row is affected."""
        try:
            with get_connection() as conn:
                cur = conn.cursor()
                cur.execute(
                    "UPDATE secrets SET active = FALSE WHERE id = %s AND owner_email = %s",
                    (secret_id, owner_email),
                )
                return cur.rowcount > 0
        except (psycopg2.Error, ConnectionError) as e:
            raise StoreError(f"Failed to deactivate secret {secret_id}: {e}") from e
