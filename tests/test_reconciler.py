"""Tests for expiryguard.reconciler — full runs against an in-memory store."""

import asyncio
from dataclasses import replace
from datetime import timedelta

import pytest

from expiryguard.config import SchedulerConfig, SMTPConfig
from expiryguard.dispatcher import Dispatcher
from expiryguard.errors import StoreError
from expiryguard.models import ChannelOutcome, RunStatus
from expiryguard.notifiers import EmailNotifier, NotificationMessage, Notifier
from expiryguard.reconciler import RUN_LOCK, ReconciliationJob
from expiryguard.runlock import forget_all, held_here


class RecordingNotifier(Notifier):
    def __init__(self, name: str = "webhook", result: bool = True, delay: float = 0.0):
        self.name = name
        self.result = result
        self.delay = delay
        self.messages: list[NotificationMessage] = []

    async def send(self, message: NotificationMessage) -> bool:
        if self.delay:
            await asyncio.sleep(self.delay)
        self.messages.append(message)
        return self.result

    @property
    def expiry_messages(self):
        return [m for m in self.messages if m.kind == "expiry"]

    @property
    def summaries(self):
        return [m for m in self.messages if m.kind == "summary"]


@pytest.fixture
def hook():
    return RecordingNotifier()


@pytest.fixture
def make_job(config, hook):
    def _make(store, cfg=None, email=None):
        dispatcher = Dispatcher(email, [hook])
        return ReconciliationJob(store, dispatcher, cfg or config)

    return _make


class TestRunOnce:
    @pytest.mark.asyncio
    async def test_notifies_due_secrets_and_commits(
        self, make_job, store_factory, secret_factory, today, hook
    ):
        store = store_factory([secret_factory(1, 25), secret_factory(2, 45)])
        summary = await make_job(store).run_once(today)

        assert summary.status == RunStatus.COMPLETED
        # 45 days out is outside the lookahead window and never fetched
        assert summary.candidates == 1
        assert summary.notified == 1
        assert store.commits == [(1, today, 30)]
        assert store.secrets[1].last_notified_threshold == 30
        assert store.secrets[1].last_notified_on == today
        assert len(hook.expiry_messages) == 1

    @pytest.mark.asyncio
    async def test_fetch_window_uses_lookahead(self, make_job, fake_store, config, today):
        cfg = replace(config, lookahead_days=14)
        await make_job(fake_store, cfg).run_once(today)
        assert fake_store.list_calls == [(today, today + timedelta(days=14))]

    @pytest.mark.asyncio
    async def test_second_run_same_day_sends_nothing(
        self, make_job, store_factory, secret_factory, today, hook
    ):
        store = store_factory([secret_factory(1, 6), secret_factory(2, 2)])
        job = make_job(store)
        first = await job.run_once(today)
        second = await job.run_once(today)

        assert first.notified == 2
        assert second.notified == 0
        assert len(hook.expiry_messages) == 2

    @pytest.mark.asyncio
    async def test_daily_summary_counts(
        self, make_job, store_factory, secret_factory, today, hook
    ):
        secrets = [secret_factory(i, 20, last_threshold=30) for i in range(1, 9)]
        secrets.append(secret_factory(9, 2, last_threshold=7, name="prod-db-cert"))
        secrets.append(secret_factory(10, 6, last_threshold=30, name="staging-key"))
        store = store_factory(secrets)

        summary = await make_job(store).run_once(today)

        assert summary.candidates == 10
        assert summary.notified == 2
        assert summary.urgent_names == ["prod-db-cert"]
        assert len(hook.summaries) == 1
        message = hook.summaries[0]
        assert (message.total, message.sent, message.urgent_names) == (10, 2, ("prod-db-cert",))
        assert summary.summary_outcomes == [ChannelOutcome("webhook", True)]

    @pytest.mark.asyncio
    async def test_no_summary_without_webhooks(
        self, config, store_factory, secret_factory, today
    ):
        store = store_factory([secret_factory(1, 2)])
        job = ReconciliationJob(store, Dispatcher(None, []), config)
        summary = await job.run_once(today)
        assert summary.notified == 1
        assert summary.summary_outcomes == []

    @pytest.mark.asyncio
    async def test_channel_failure_still_commits(
        self, config, store_factory, secret_factory, today
    ):
        failing = RecordingNotifier("slack", result=False)
        store = store_factory([secret_factory(1, 5)])
        job = ReconciliationJob(store, Dispatcher(None, [failing]), config)

        summary = await job.run_once(today)

        assert summary.notified == 1
        assert store.commits == [(1, today, 7)]

    @pytest.mark.asyncio
    async def test_summary_sent_after_all_commits(
        self, make_job, store_factory, secret_factory, today, hook
    ):
        store = store_factory([secret_factory(i, 2) for i in range(1, 6)])
        commits_at_summary: list[int] = []

        original = hook.send

        async def send(message):
            if message.kind == "summary":
                commits_at_summary.append(len(store.commits))
            return await original(message)

        hook.send = send
        await make_job(store).run_once(today)
        assert commits_at_summary == [5]


class TestRunFailures:
    @pytest.mark.asyncio
    async def test_fetch_failure_fails_run_without_dispatch(
        self, make_job, fake_store, today, hook
    ):
        fake_store.fail_list = RuntimeError("db down")
        job = make_job(fake_store)

        summary = await job.run_once(today)

        assert summary.status == RunStatus.FAILED
        assert "db down" in summary.error
        assert hook.messages == []
        assert fake_store.commits == []
        assert job.last_summary is summary
        assert held_here(RUN_LOCK) is False

    @pytest.mark.asyncio
    async def test_commit_failure_does_not_stop_other_secrets(
        self, make_job, store_factory, secret_factory, today
    ):
        store = store_factory([secret_factory(i, 2) for i in range(1, 4)])
        store.fail_commit_ids = {2}

        summary = await make_job(store).run_once(today)

        assert summary.status == RunStatus.COMPLETED
        assert summary.failed_commits == 1
        assert sorted(c[0] for c in store.commits) == [1, 3]
        assert store.secrets[2].last_notified_threshold is None

    @pytest.mark.asyncio
    async def test_failed_commit_renotifies_next_run(
        self, make_job, store_factory, secret_factory, today, hook
    ):
        store = store_factory([secret_factory(1, 2)])
        store.fail_commit_ids = {1}
        job = make_job(store)

        await job.run_once(today)
        store.fail_commit_ids = set()
        await job.run_once(today)

        assert len(hook.expiry_messages) == 2
        assert store.commits == [(1, today, 3)]


class TestRunGating:
    @pytest.mark.asyncio
    async def test_disabled_scheduler_does_not_fetch(self, make_job, fake_store, config, today):
        cfg = replace(config, scheduler=SchedulerConfig(enabled=False))
        summary = await make_job(fake_store, cfg).run_once(today)
        assert summary.status == RunStatus.DISABLED
        assert fake_store.list_calls == []

    @pytest.mark.asyncio
    async def test_run_held_by_another_process_is_skipped(self, make_job, fake_store, today, hook):
        fake_store.locked_elsewhere = True
        summary = await make_job(fake_store).run_once(today)
        assert summary.status == RunStatus.SKIPPED
        assert fake_store.list_calls == []
        assert hook.messages == []
        assert fake_store.unlock_calls == []

    @pytest.mark.asyncio
    async def test_unreachable_lock_fails_run(self, make_job, fake_store, today):
        fake_store.fail_lock = StoreError("Failed to take run lock 'reconcile'")
        job = make_job(fake_store)
        summary = await job.run_once(today)
        assert summary.status == RunStatus.FAILED
        assert "run lock" in summary.error
        assert fake_store.list_calls == []
        assert job.last_summary is summary

    @pytest.mark.asyncio
    async def test_store_lock_released_after_run(self, make_job, fake_store, today):
        await make_job(fake_store).run_once(today)
        assert fake_store.unlock_calls == [RUN_LOCK]
        assert fake_store.locks_held == set()

    @pytest.mark.asyncio
    async def test_concurrent_triggers_run_once(
        self, config, store_factory, secret_factory, today
    ):
        slow = RecordingNotifier(delay=0.05)
        store = store_factory([secret_factory(1, 2)])
        job = ReconciliationJob(store, Dispatcher(None, [slow]), config)

        results = await asyncio.gather(job.run_once(today), job.run_once(today))

        statuses = sorted(r.status for r in results)
        assert statuses == [RunStatus.COMPLETED, RunStatus.SKIPPED]
        assert len(slow.expiry_messages) == 1

    @pytest.mark.asyncio
    async def test_lock_released_after_run(self, make_job, fake_store, today):
        await make_job(fake_store).run_once(today)
        assert held_here(RUN_LOCK) is False

    @pytest.mark.asyncio
    async def test_second_process_sees_store_lock(
        self, config, store_factory, secret_factory, today
    ):
        slow = RecordingNotifier(delay=0.2)
        store = store_factory([secret_factory(1, 2)])
        daemon_job = ReconciliationJob(store, Dispatcher(None, [slow]), config)
        cli_job = ReconciliationJob(store, Dispatcher(None, [slow]), config)

        running = asyncio.create_task(daemon_job.run_once(today))
        await asyncio.sleep(0.05)
        # A separate process shares only the store, not this module's registry
        forget_all()
        skipped = await cli_job.run_once(today)
        completed = await running

        assert skipped.status == RunStatus.SKIPPED
        assert completed.status == RunStatus.COMPLETED
        assert len(slow.expiry_messages) == 1


class StubEmail(EmailNotifier):
    def __init__(self, result: bool = True, error: Exception | None = None):
        super().__init__(SMTPConfig())
        self.result = result
        self.error = error
        self.messages: list[NotificationMessage] = []

    async def send(self, message: NotificationMessage) -> bool:
        self.messages.append(message)
        if self.error is not None:
            raise self.error
        return self.result


class TestEmailChannelIsolation:
    @pytest.mark.asyncio
    async def test_email_failure_still_commits_and_webhook_sends(
        self, make_job, store_factory, secret_factory, today, hook
    ):
        email = StubEmail(result=False)
        store = store_factory([secret_factory(1, 6, last_threshold=30)])

        summary = await make_job(store, email=email).run_once(today)

        assert len(email.messages) == 1
        assert len(hook.expiry_messages) == 1
        assert hook.expiry_messages[0].threshold == 7
        assert store.commits == [(1, today, 7)]
        assert summary.notified == 1
        assert summary.failed_commits == 0

    @pytest.mark.asyncio
    async def test_email_raising_still_commits_and_webhook_sends(
        self, make_job, store_factory, secret_factory, today, hook
    ):
        email = StubEmail(error=OSError("smtp unreachable"))
        store = store_factory([secret_factory(1, 2)])

        summary = await make_job(store, email=email).run_once(today)

        assert len(email.messages) == 1
        assert len(hook.expiry_messages) == 1
        assert store.commits == [(1, today, 3)]
        assert summary.status == RunStatus.COMPLETED
        assert summary.urgent_names == ["secret-1"]
