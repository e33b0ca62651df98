"""
Notification dispatcher — fans one due notification out to every channel.

Email is always attempted for an expiry notice; the webhook set (Slack,
Discord, generic) only includes channels with a URL. Channels are sent
concurrently and fail independently: a failing channel yields a failed
ChannelOutcome and never stops the others or raises out of dispatch().
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from datetime import UTC, datetime

from expiryguard.config import Config
from expiryguard.errors import DeliveryError
from expiryguard.models import ChannelOutcome, Decision, Secret
from expiryguard.notifiers import (
    DiscordNotifier,
    EmailNotifier,
    GenericWebhookNotifier,
    NotificationMessage,
    Notifier,
    SlackNotifier,
)

logger = logging.getLogger(__name__)


class Dispatcher:
    """Sends expiry notices and run summaries to the configured channels."""

    def __init__(
        self,
        email: EmailNotifier | None,
        webhooks: Sequence[Notifier] = (),
        webhooks_enabled: bool = True,
    ) -> None:
        self.email = email
        self.webhooks = [w for w in webhooks if w.is_configured()] if webhooks_enabled else []

    @classmethod
    def from_config(cls, cfg: Config) -> Dispatcher:
        hooks = cfg.webhooks
        webhooks: list[Notifier] = [
            SlackNotifier(hooks.slack_url, timeout=hooks.timeout),
            DiscordNotifier(hooks.discord_url, timeout=hooks.timeout),
            GenericWebhookNotifier(hooks.generic_url, timeout=hooks.timeout),
        ]
        return cls(EmailNotifier(cfg.smtp), webhooks, webhooks_enabled=hooks.enabled)

    def is_configured(self) -> bool:
        """True when at least one webhook channel is active."""
        return bool(self.webhooks)

    def channel_names(self) -> list[str]:
        names = [w.name for w in self.webhooks]
        if self.email is not None and self.email.is_configured():
            names.insert(0, self.email.name)
        return names

    async def _send_all(
        self, notifiers: Sequence[Notifier], message: NotificationMessage
    ) -> list[ChannelOutcome]:
        results = await asyncio.gather(
            *(n.send(message) for n in notifiers), return_exceptions=True
        )
        outcomes: list[ChannelOutcome] = []
        for notifier, result in zip(notifiers, results, strict=True):
            if isinstance(result, BaseException):
                logger.error("%s channel raised during send: %s", notifier.name, result)
                outcomes.append(ChannelOutcome(notifier.name, False, str(result)))
            elif result:
                outcomes.append(ChannelOutcome(notifier.name, True))
            else:
                outcomes.append(ChannelOutcome(notifier.name, False, "send failed"))
        return outcomes

    async def dispatch(self, secret: Secret, decision: Decision) -> list[ChannelOutcome]:
        """Send one expiry notice to email plus every configured webhook."""
        if not decision.due or decision.threshold is None:
            return []
        message = NotificationMessage.expiry(secret, decision.threshold, decision.days_remaining)

        notifiers: list[Notifier] = []
        if self.email is not None and self.email.is_configured():
            notifiers.append(self.email)
        notifiers.extend(self.webhooks)

        outcomes = await self._send_all(notifiers, message)
        failed = [o.channel for o in outcomes if not o.ok]
        if failed:
            logger.warning(
                "Secret '%s': %d/%d channels failed (%s)",
                secret.name,
                len(failed),
                len(outcomes),
                ", ".join(failed),
            )
        return outcomes

    async def broadcast_summary(
        self, total: int, sent: int, urgent_names: list[str]
    ) -> list[ChannelOutcome]:
        """Send the run summary to every configured webhook. No-op when none are."""
        if not self.is_configured():
            return []
        message = NotificationMessage.summary(total, sent, urgent_names)
        return await self._send_all(self.webhooks, message)

    @staticmethod
    def committable(outcomes: list[ChannelOutcome]) -> bool:
        """Whether a finished dispatch may be committed as notified.

        Best-effort policy: once dispatch has been attempted the threshold is
        recorded, whatever each channel reported. Delivery failures are logged
        by the channels and never block the commit.
        """
        return True

    async def send_test_email(self, to_email: str) -> None:
        """Send a configuration test email. Raises DeliveryError on failure."""
        if self.email is None:
            raise DeliveryError("Email channel is not configured")
        subject = "ExpiryGuard: Test Email Notification"
        body = (
            "This is a test email from ExpiryGuard.\n\n"
            "If you received this email, your email configuration is working correctly!\n\n"
            f"Test sent at: {datetime.now(UTC).isoformat()}"
        )
        try:
            await asyncio.to_thread(self.email.send_email, to_email, subject, body)
        except Exception as e:
            logger.error("Failed to send test email to %s: %s", to_email, e)
            raise DeliveryError(f"Test email failed: {e}") from e
        logger.info("Test email sent successfully to: %s", to_email)
