"""
Notification channels — email, Slack, Discord and a generic webhook.

Every channel implements the same Notifier.send(message) -> bool contract so
the dispatcher can treat them uniformly. A send never raises: network errors,
timeouts and non-2xx responses are logged and reported as False.

Message shapes:
- Slack:    {"text": "...", "mrkdwn": true}
- Discord:  {"content": "..."}
- Generic:  {"event", "secret_name", "expiry_date", "days_remaining",
             "threshold", "urgency", "owner_email", "timestamp"}
- Email:    plain-text subject and body to the secret owner
"""

from __future__ import annotations

import asyncio
import logging
import smtplib
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import UTC, datetime
from email.message import EmailMessage

import httpx

from expiryguard.config import SMTPConfig
from expiryguard.models import Secret, Urgency, urgency_emoji, urgency_for

logger = logging.getLogger(__name__)

EXPIRY_EVENT = "secret_expiry_warning"
SUMMARY_EVENT = "expiry_summary"


@dataclass(frozen=True)
class NotificationMessage:
    """A channel-neutral notification: one secret's expiry, or a run summary."""

    kind: str  # "expiry" | "summary"
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    # expiry
    secret: Secret | None = None
    threshold: int | None = None
    days_remaining: int | None = None

    # summary
    total: int = 0
    sent: int = 0
    urgent_names: tuple[str, ...] = ()

    @classmethod
    def expiry(cls, secret: Secret, threshold: int, days_remaining: int) -> NotificationMessage:
        return cls(kind="expiry", secret=secret, threshold=threshold, days_remaining=days_remaining)

    @classmethod
    def summary(cls, total: int, sent: int, urgent_names: list[str]) -> NotificationMessage:
        return cls(kind="summary", total=total, sent=sent, urgent_names=tuple(urgent_names))

    @property
    def urgency(self) -> Urgency:
        return urgency_for(self.threshold)


# ─── Formatting ──────────────────────────────────────────────────────


def _expiry_secret(message: NotificationMessage) -> Secret:
    if message.secret is None:
        raise ValueError(f"{message.kind} message carries no secret")
    return message.secret


def format_summary_text(message: NotificationMessage) -> str:
    """Slack-flavoured daily summary (``*`` for bold)."""
    if message.urgent_names:
        urgent_line = "• \u26a0\ufe0f Urgent: " + ", ".join(message.urgent_names)
    else:
        urgent_line = "• No urgent secrets today!"
    return (
        "\U0001f4ca *ExpiryGuard Daily Summary*\n"
        f"• Secrets monitored: {message.total}\n"
        f"• Notifications sent: {message.sent}\n"
        f"{urgent_line}"
    )


def _format_expiry_text(message: NotificationMessage, bold: str) -> str:
    secret = _expiry_secret(message)
    return (
        f"{urgency_emoji(message.threshold)} {bold}[{message.urgency}]{bold} "
        f"Secret {bold}{secret.name}{bold} expires in "
        f"{bold}{message.days_remaining} days{bold} ({secret.expiry_date.isoformat()})\n"
        f"Owner: {secret.owner_email}"
    )


def format_slack_text(message: NotificationMessage) -> str:
    if message.kind == "summary":
        return format_summary_text(message)
    return _format_expiry_text(message, "*")


def format_discord_text(message: NotificationMessage) -> str:
    if message.kind == "summary":
        return format_summary_text(message).replace("*", "**")
    return _format_expiry_text(message, "**")


def build_generic_payload(message: NotificationMessage) -> dict:
    """Structured JSON body for the generic webhook."""
    timestamp = message.timestamp.astimezone(UTC).isoformat().replace("+00:00", "Z")
    if message.kind == "summary":
        return {
            "event": SUMMARY_EVENT,
            "total_secrets": message.total,
            "notifications_sent": message.sent,
            "urgent_secrets": list(message.urgent_names),
            "timestamp": timestamp,
        }
    secret = _expiry_secret(message)
    return {
        "event": EXPIRY_EVENT,
        "secret_name": secret.name,
        "expiry_date": secret.expiry_date.isoformat(),
        "days_remaining": message.days_remaining,
        "threshold": message.threshold,
        "urgency": message.urgency.value,
        "owner_email": secret.owner_email,
        "timestamp": timestamp,
    }


def format_email(message: NotificationMessage) -> tuple[str, str]:
    """Return (subject, body) for an expiry email."""
    secret = _expiry_secret(message)
    subject = (
        f"ExpiryGuard reminder: {secret.name} expires in {message.days_remaining} days"
    )
    body = (
        f"Your secret '{secret.name}' will expire on {secret.expiry_date.isoformat()} "
        f"({message.days_remaining} days remaining).\n\n"
        "Please take necessary action to renew or update it."
    )
    return subject, body


# ─── Channels ────────────────────────────────────────────────────────


class Notifier(ABC):
    """Base class for notification channels."""

    name: str = ""

    def is_configured(self) -> bool:
        return True

    @abstractmethod
    async def send(self, message: NotificationMessage) -> bool:
        """Send a notification.

        Args:
            message: Expiry or summary message to deliver.

        Returns:
            True if the channel accepted the message.
        """


class WebhookNotifier(Notifier):
    """POSTs a JSON body to a URL; success is any 2xx status."""

    def __init__(self, url: str, timeout: float = 10.0, headers: dict | None = None):
        self.url = url
        self.timeout = timeout
        self.headers = headers or {}

    def is_configured(self) -> bool:
        return bool(self.url)

    def build_payload(self, message: NotificationMessage) -> dict:
        return build_generic_payload(message)

    async def send(self, message: NotificationMessage) -> bool:
        if not self.is_configured():
            logger.debug("%s webhook not configured, skipping", self.name)
            return False
        payload = self.build_payload(message)
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(self.url, json=payload, headers=self.headers)
            if 200 <= resp.status_code < 300:
                logger.debug("%s notification sent successfully", self.name)
                return True
            logger.warning("%s notification failed with status: %s", self.name, resp.status_code)
            return False
        except Exception as e:
            logger.error("Failed to send %s notification: %s", self.name, e)
            return False


class GenericWebhookNotifier(WebhookNotifier):
    name = "webhook"


class SlackNotifier(WebhookNotifier):
    name = "slack"

    def build_payload(self, message: NotificationMessage) -> dict:
        return {"text": format_slack_text(message), "mrkdwn": True}


class DiscordNotifier(WebhookNotifier):
    name = "discord"

    def build_payload(self, message: NotificationMessage) -> dict:
        return {"content": format_discord_text(message)}


class EmailNotifier(Notifier):
    """Email to the secret owner over SMTP.

    Dev mode: with no SMTP host configured the message is logged instead of sent.
    """

    name = "email"

    def __init__(self, smtp: SMTPConfig) -> None:
        self.smtp = smtp

    def is_configured(self) -> bool:
        return self.smtp.enabled

    def send_email(self, to_email: str, subject: str, body: str) -> None:
        """Blocking SMTP send. Raises on failure."""
        if not self.smtp.host:
            logger.info("Email (dev mode) to=%s subject=%r\n%s", to_email, subject, body)
            return

        msg = EmailMessage()
        msg["From"] = self.smtp.from_email
        msg["To"] = to_email
        msg["Subject"] = subject
        msg.set_content(body)

        with smtplib.SMTP(self.smtp.host, self.smtp.port, timeout=self.smtp.timeout) as s:
            s.ehlo()
            if s.has_extn("starttls"):
                s.starttls()
                s.ehlo()
            if self.smtp.user and self.smtp.password:
                s.login(self.smtp.user, self.smtp.password)
            s.send_message(msg)

    async def send(self, message: NotificationMessage) -> bool:
        if message.kind != "expiry" or message.secret is None:
            logger.debug("Email channel only carries expiry notices, skipping %s", message.kind)
            return False
        if not self.is_configured():
            logger.debug("Email disabled, skipping notification")
            return False

        to_email = message.secret.owner_email
        subject, body = format_email(message)
        try:
            await asyncio.to_thread(self.send_email, to_email, subject, body)
        except Exception as e:
            logger.error("Failed to send email to %s: %s", to_email, e)
            return False
        logger.info("Email sent to %s for secret: %s", to_email, message.secret.name)
        return True
