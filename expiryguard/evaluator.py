"""
Threshold evaluator — decides whether a secret is due for a notification.

Ladder (first match wins, most urgent first):
    days_remaining <= 3   → 3   URGENT
    days_remaining <= 7   → 7   WARNING
    days_remaining <= 30  → 30  NOTICE
    otherwise             → no threshold

A secret is due when it has never been notified, or when its current band is
strictly more urgent than the last band it was notified at. Escalation only
ever moves toward smaller thresholds.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import date

from expiryguard.config import DEFAULT_THRESHOLDS
from expiryguard.models import Decision, Secret

logger = logging.getLogger(__name__)


def days_remaining(today: date, expiry_date: date) -> int:
    """Whole days from today until expiry. Negative once expired."""
    return (expiry_date - today).days


def current_threshold(
    remaining: int, ladder: Sequence[int] = DEFAULT_THRESHOLDS
) -> int | None:
    """Map days remaining onto the ladder. None when beyond every threshold."""
    for threshold in sorted(ladder):
        if remaining <= threshold:
            return threshold
    return None


def evaluate(
    today: date, secret: Secret, ladder: Sequence[int] = DEFAULT_THRESHOLDS
) -> Decision:
    """Evaluate one secret. Pure: reads only ``expiry_date`` and ``last_notified_threshold``."""
    remaining = days_remaining(today, secret.expiry_date)
    band = current_threshold(remaining, ladder)

    if band is None:
        return Decision(due=False, days_remaining=remaining)

    last = secret.last_notified_threshold

    if last is None:
        logger.debug(
            "Secret '%s': never notified, will notify at %d-day threshold", secret.name, band
        )
        return Decision(due=True, days_remaining=remaining, current_threshold=band, threshold=band)

    if band < last:
        logger.debug(
            "Secret '%s': escalating from %d-day to %d-day threshold", secret.name, last, band
        )
        return Decision(due=True, days_remaining=remaining, current_threshold=band, threshold=band)

    logger.debug(
        "Secret '%s': already notified at %d-day threshold (current: %d)",
        secret.name,
        last,
        band,
    )
    return Decision(due=False, days_remaining=remaining, current_threshold=band)
