"""Payment Reminder -- Error taxonomy.

Every failure the package raises derives from ``PaymentReminderError`` so
call sites (relay handlers, CLI commands, UI actions) can report them in
one place.  Nothing here is retried.
"""

from __future__ import annotations

from typing import Optional


class PaymentReminderError(Exception):
    """Base exception for all payment-reminder errors."""


class ConfigurationError(PaymentReminderError):
    """A provider credential or setting required for an operation is absent."""


class ValidationError(PaymentReminderError):
    """Malformed form input or import row.

    ``row`` is the 1-based data row for import failures, ``field`` the
    offending field name when known.
    """

    def __init__(self, message: str, *, row: Optional[int] = None,
                 field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.row = row
        self.field = field

    def __str__(self) -> str:
        if self.row is not None:
            return f"Row {self.row}: {self.message}"
        return self.message


class DeliveryError(PaymentReminderError):
    """A provider answered, but rejected the request."""

    def __init__(self, message: str, *, status_code: Optional[int] = None,
                 provider: str = ""):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.provider = provider


class TransportError(PaymentReminderError):
    """The provider could not be reached (connection failure or timeout)."""

    def __init__(self, message: str, *, provider: str = ""):
        super().__init__(message)
        self.provider = provider


class NotFoundError(PaymentReminderError):
    """The record to update or delete does not exist for this owner."""

    def __init__(self, collection: str, record_id: str):
        super().__init__(f"{collection} record not found: {record_id}")
        self.collection = collection
        self.record_id = record_id
