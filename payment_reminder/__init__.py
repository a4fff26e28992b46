"""Payment Reminder - customers, risk classification and multi-channel reminders.

Dataclasses for customers, reminders and per-owner provider settings; a
pure status/risk classifier; an async dispatcher that sends one AI-written
message over email, WhatsApp and voice; and a SQLite-backed repository
with change subscriptions.

The ReminderService ties them together for the UI, CLI and HTTP relay.
"""

from .errors import (
    ConfigurationError,
    DeliveryError,
    NotFoundError,
    PaymentReminderError,
    TransportError,
    ValidationError,
)
from .models import (
    Channel,
    Customer,
    CustomerDraft,
    CustomerStatus,
    ProviderSettings,
    Reminder,
    ReminderStatus,
    RiskLevel,
    Tone,
)
from .repository import Repository
from .service import OwnerContext, ReminderService

__all__ = [
    "Channel",
    "ConfigurationError",
    "Customer",
    "CustomerDraft",
    "CustomerStatus",
    "DeliveryError",
    "NotFoundError",
    "OwnerContext",
    "PaymentReminderError",
    "ProviderSettings",
    "Reminder",
    "ReminderService",
    "ReminderStatus",
    "Repository",
    "RiskLevel",
    "Tone",
    "TransportError",
    "ValidationError",
]
