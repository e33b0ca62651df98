"""
ExpiryGuard — expiry notifications for credentials, certificates and licenses.

Public API:
    evaluate(today, secret)           → Decision (due / threshold / urgency)
    ReconciliationJob.run_once()      → one fetch-evaluate-dispatch-commit pass
    Dispatcher.from_config(cfg)       → email + Slack + Discord + webhook fan-out
"""

from __future__ import annotations

__version__ = "0.1.0"

from expiryguard.evaluator import evaluate
from expiryguard.models import Decision, RunStatus, RunSummary, Secret, Urgency

__all__ = [
    "Decision",
    "RunStatus",
    "RunSummary",
    "Secret",
    "Urgency",
    "__version__",
    "evaluate",
]
