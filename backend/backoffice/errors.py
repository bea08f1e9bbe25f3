# Overview: Business error kinds raised by the ledger and document services.

"""
Error kinds for the transactional core.

Every error raised inside a unit of work aborts it (the session is rolled
back by services.concurrency.run_in_transaction). Each error carries a
human-readable message plus a ``details`` dict with the computed values a
caller needs to render a precise message (limits, totals, quantities).
"""

from __future__ import annotations


class BackofficeError(Exception):
    """Base class for rejected operations."""

    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": self.message, "details": self.details}


class NotFound(BackofficeError):
    """Referenced entity missing or inactive."""
    status_code = 404


class ValidationFailed(BackofficeError):
    """Malformed input or an operation not allowed in the current state."""
    status_code = 400


class InsufficientStock(BackofficeError):
    status_code = 409


class PaymentMismatch(BackofficeError):
    status_code = 400


class CreditAccountDisabled(BackofficeError):
    status_code = 409


class CreditLimitExceeded(BackofficeError):
    status_code = 409


class AlreadyCancelled(BackofficeError):
    status_code = 409


class ReversalRejected(BackofficeError):
    status_code = 409


class ConfigurationMissing(BackofficeError):
    """A sequence counter or other persisted configuration row is absent."""
    status_code = 500


class Conflict(BackofficeError):
    """Concurrent modification detected after retries were exhausted."""
    status_code = 409
