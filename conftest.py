"""
Root-level shared test fixtures.

Provides an in-memory SecretStore (with a run lock that can be marked as held
by another process), secret factories, and a config whose scheduler is
enabled with no real channels.
"""

from __future__ import annotations

from datetime import date, timedelta

import pytest

from expiryguard.config import Config, SchedulerConfig, SMTPConfig, WebhookConfig, reset_config
from expiryguard.models import Secret
from expiryguard.runlock import forget_all

TODAY = date(2025, 1, 1)


class FakeSecretStore:
    """In-memory SecretStore. Set ``fail_list``/``fail_commit_ids`` to inject errors."""

    def __init__(self, secrets: list[Secret] | None = None) -> None:
        self.secrets: dict[int, Secret] = {s.id: s for s in secrets or []}
        self.list_calls: list[tuple[date, date]] = []
        self.commits: list[tuple[int, date, int]] = []
        self.fail_list: Exception | None = None
        self.fail_commit_ids: set[int] = set()
        # Simulates another process holding the run lock
        self.locked_elsewhere = False
        self.fail_lock: Exception | None = None
        self.locks_held: set[str] = set()
        self.unlock_calls: list[str] = []

    def list_active_expiring_between(self, min_date: date, max_date: date) -> list[Secret]:
        self.list_calls.append((min_date, max_date))
        if self.fail_list is not None:
            raise self.fail_list
        matching = [
            s
            for s in self.secrets.values()
            if s.active and min_date <= s.expiry_date <= max_date
        ]
        return sorted(matching, key=lambda s: (s.expiry_date, s.id))

    def save(self, secret: Secret) -> Secret:
        self.secrets[secret.id] = secret
        return secret

    def commit_notification(self, secret_id: int, notified_on: date, threshold: int) -> bool:
        if secret_id in self.fail_commit_ids:
            raise RuntimeError(f"commit failed for {secret_id}")
        self.commits.append((secret_id, notified_on, threshold))
        self.secrets[secret_id] = self.secrets[secret_id].with_notification(notified_on, threshold)
        return True

    def try_lock_run(self, key: str) -> bool:
        if self.fail_lock is not None:
            raise self.fail_lock
        if self.locked_elsewhere or key in self.locks_held:
            return False
        self.locks_held.add(key)
        return True

    def unlock_run(self, key: str) -> None:
        self.unlock_calls.append(key)
        self.locks_held.discard(key)


def make_secret(
    secret_id: int,
    days: int,
    last_threshold: int | None = None,
    name: str | None = None,
    today: date = TODAY,
) -> Secret:
    return Secret(
        id=secret_id,
        name=name or f"secret-{secret_id}",
        expiry_date=today + timedelta(days=days),
        owner_email=f"owner{secret_id}@example.com",
        last_notified_threshold=last_threshold,
    )


@pytest.fixture(autouse=True)
def _isolation():
    """Reset the config singleton and run locks between tests."""
    reset_config()
    forget_all()
    yield
    reset_config()
    forget_all()


@pytest.fixture
def clean_env(monkeypatch):
    """Remove ExpiryGuard env vars that leak between tests."""
    import os

    for key in list(os.environ):
        if key.startswith("EXPIRYGUARD_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def today() -> date:
    return TODAY


@pytest.fixture
def config() -> Config:
    """Scheduler on, email disabled, no webhooks."""
    return Config(
        smtp=SMTPConfig(enabled=False),
        webhooks=WebhookConfig(),
        scheduler=SchedulerConfig(enabled=True, max_concurrency=4),
    )


@pytest.fixture
def fake_store() -> FakeSecretStore:
    return FakeSecretStore()


@pytest.fixture
def secret_factory():
    """Build a secret expiring ``days`` after the fixed test date."""
    return make_secret


@pytest.fixture
def store_factory():
    return FakeSecretStore
