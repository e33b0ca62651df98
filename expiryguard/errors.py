"""Exception types raised by ExpiryGuard."""

from __future__ import annotations


class ExpiryGuardError(Exception):
    """Base class for all ExpiryGuard errors."""


class StoreError(ExpiryGuardError):
    """The secret store could not be read or written."""


class DeliveryError(ExpiryGuardError):
    """An operator-initiated send (e.g. a test email) failed."""
