"""Exception hierarchy for the alert subsystem."""

from __future__ import annotations


class AlertError(Exception):
    """Base exception for all alert subsystem errors."""


class AlertStoreError(AlertError):
    """The underlying database rejected or failed an operation."""


class WebhookDeliveryError(AlertError):
    """A webhook endpoint could not be reached or answered with a non-2xx status."""
