"""
Data models for ExpiryGuard.

All models are plain dataclasses. Secrets and decisions are frozen so the
evaluator can never mutate state behind the reconciler's back; notification
state only changes through an explicit store commit.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from enum import StrEnum


class Urgency(StrEnum):
    URGENT = "URGENT"
    WARNING = "WARNING"
    NOTICE = "NOTICE"
    UNKNOWN = "UNKNOWN"


class RunStatus(StrEnum):
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"
    DISABLED = "disabled"


_URGENCY_BY_THRESHOLD = {3: Urgency.URGENT, 7: Urgency.WARNING, 30: Urgency.NOTICE}
_EMOJI_BY_THRESHOLD = {3: "\U0001f6a8", 7: "\u26a0\ufe0f", 30: "\U0001f4c5"}
_DEFAULT_EMOJI = "\u2139\ufe0f"


def urgency_for(threshold: int | None) -> Urgency:
    """Urgency label for a ladder threshold; anything off-ladder is UNKNOWN."""
    return _URGENCY_BY_THRESHOLD.get(threshold, Urgency.UNKNOWN)  # type: ignore[arg-type]


def urgency_emoji(threshold: int | None) -> str:
    """Marker shown in front of chat messages for a threshold."""
    return _EMOJI_BY_THRESHOLD.get(threshold, _DEFAULT_EMOJI)  # type: ignore[arg-type]


@dataclass(frozen=True)
class Secret:
    """An expiring credential, certificate or license owned by one user."""

    id: int
    name: str
    expiry_date: date
    owner_email: str
    notes: str | None = None
    active: bool = True

    # Audit only, never read by the evaluator
    last_notified_on: date | None = None
    # None = never notified; otherwise one of the ladder values
    last_notified_threshold: int | None = None

    created_at: datetime | None = None

    def with_notification(self, notified_on: date, threshold: int) -> Secret:
        """Return a copy carrying the new notification state."""
        return replace(self, last_notified_on=notified_on, last_notified_threshold=threshold)


@dataclass(frozen=True)
class Decision:
    """Outcome of evaluating one secret against the threshold ladder."""

    due: bool
    days_remaining: int
    current_threshold: int | None = None
    threshold: int | None = None  # set only when due

    @property
    def urgency(self) -> Urgency:
        return urgency_for(self.threshold if self.due else self.current_threshold)


@dataclass
class ChannelOutcome:
    """Result of one send attempt on one channel."""

    channel: str
    ok: bool
    error: str = ""


@dataclass
class RunSummary:
    """Aggregated result of one reconciliation run."""

    status: RunStatus
    today: date | None = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    started_at: datetime | None = None
    completed_at: datetime | None = None

    candidates: int = 0
    notified: int = 0
    failed_commits: int = 0
    urgent_names: list[str] = field(default_factory=list)
    summary_outcomes: list[ChannelOutcome] = field(default_factory=list)

    error: str = ""

    @property
    def duration_ms(self) -> int | None:
        if self.started_at is None or self.completed_at is None:
            return None
        return int((self.completed_at - self.started_at).total_seconds() * 1000)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "status": self.status.value,
            "today": self.today.isoformat() if self.today else None,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_ms": self.duration_ms,
            "candidates": self.candidates,
            "notified": self.notified,
            "failed_commits": self.failed_commits,
            "urgent_names": list(self.urgent_names),
            "summary_outcomes": [
                {"channel": o.channel, "ok": o.ok, "error": o.error} for o in self.summary_outcomes
            ],
            "error": self.error,
        }
