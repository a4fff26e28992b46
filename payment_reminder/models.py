"""Data models for the Payment Reminder system.

All models are plain dataclasses with type hints.  No ORM, no Pydantic --
the repository layer stores them as JSON documents via ``to_document`` /
``from_document``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Optional


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class CustomerStatus(str, Enum):
    """Payment status of a customer.  Derived except for PAID."""

    PENDING = "pending"
    OVERDUE = "overdue"
    PAID = "paid"


class RiskLevel(str, Enum):
    """Payment risk tier derived from lateness and amount."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Channel(str, Enum):
    """Delivery mechanisms a reminder can go out on."""

    EMAIL = "email"
    WHATSAPP = "whatsapp"
    VOICE = "voice"


class ReminderStatus(str, Enum):
    """Lifecycle states for a Reminder record."""

    PENDING = "pending"
    SENT = "sent"
    DELIVERED = "delivered"
    FAILED = "failed"
    RESPONDED = "responded"


class Tone(str, Enum):
    """Tones offered to the text-generation provider."""

    PROFESSIONAL = "professional"
    FRIENDLY = "friendly"
    URGENT = "urgent"
    FORMAL = "formal"


class ReminderSchedule(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    CUSTOM = "custom"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_DATE_FORMATS = ("%Y-%m-%d", "%m/%d/%Y", "%d/%m/%Y", "%Y/%m/%d", "%b %d, %Y", "%d %b %Y")


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def coerce_date(value: Any) -> date | None:
    """Turn a cell / JSON value into a ``date``.

    Accepts ``date``, ``datetime`` and strings in ISO or a handful of
    common spreadsheet formats.  Returns None for blanks; raises
    ValueError for anything unparseable.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if not text:
        return None
    # ISO datetimes ("2025-01-10T00:00:00.000Z") keep only the date part.
    if "T" in text and text[:4].isdigit():
        text = text.split("T", 1)[0]
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    raise ValueError(f"Unrecognised date: {value!r}")


def _parse_timestamp(value: Any) -> datetime | None:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _enum_value(enum_cls, value: Any, default):
    """Look up an enum member by value, falling back to ``default``."""
    for member in enum_cls:
        if member.value == value:
            return member
    return default


# ---------------------------------------------------------------------------
# Core Data Models
# ---------------------------------------------------------------------------

@dataclass
class Customer:
    """A customer with an outstanding balance, owned by one user.

    ``status`` and ``risk_level`` are stored, but the classifier is the
    source of truth: they are recomputed whenever the customer is read for
    display.
    """

    # --- identity ---
    owner_id: str
    name: str
    email: str
    id: str = ""

    # --- contact ---
    phone: str = ""
    company: str = ""

    # --- balance ---
    amount_due: float = 0.0
    due_date: date | None = None

    # --- derived ---
    status: CustomerStatus = CustomerStatus.PENDING
    risk_level: RiskLevel = RiskLevel.LOW

    notes: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_paid(self) -> bool:
        return self.status is CustomerStatus.PAID

    @property
    def amount_formatted(self) -> str:
        """Dollar-formatted amount, e.g. '$2,700.56'."""
        return f"${self.amount_due:,.2f}"

    @property
    def due_date_formatted(self) -> str:
        """Human-readable due date, e.g. 'Feb 05, 2026'."""
        if self.due_date is None:
            return ""
        return self.due_date.strftime("%b %d, %Y")

    def to_document(self) -> dict[str, Any]:
        """Serialize to a JSON-safe dict (the stored document shape)."""
        return {
            "id": self.id,
            "user_id": self.owner_id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "company": self.company,
            "amount_due": self.amount_due,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "status": self.status.value,
            "risk_level": self.risk_level.value,
            "notes": self.notes,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    @classmethod
    def from_document(cls, d: dict[str, Any]) -> Customer:
        """Deserialize a stored document back into a Customer."""
        try:
            due_date = coerce_date(d.get("due_date"))
        except ValueError:
            due_date = None
        return cls(
            id=str(d.get("id", "")),
            owner_id=str(d.get("user_id", "")),
            name=str(d.get("name", "")),
            email=str(d.get("email", "")),
            phone=str(d.get("phone") or ""),
            company=str(d.get("company") or ""),
            amount_due=float(d.get("amount_due") or 0.0),
            due_date=due_date,
            status=_enum_value(CustomerStatus, d.get("status"), CustomerStatus.PENDING),
            risk_level=_enum_value(RiskLevel, d.get("risk_level"), RiskLevel.LOW),
            notes=str(d.get("notes") or ""),
            created_at=_parse_timestamp(d.get("created_at")),
            updated_at=_parse_timestamp(d.get("updated_at")),
        )


@dataclass
class CustomerDraft:
    """A validated import row, not yet owned or persisted."""

    name: str
    email: str
    amount_due: float
    due_date: date
    phone: str = ""
    company: str = ""
    notes: str = ""

    def to_customer(self, owner_id: str) -> Customer:
        return Customer(
            owner_id=owner_id,
            name=self.name,
            email=self.email,
            phone=self.phone,
            company=self.company,
            amount_due=self.amount_due,
            due_date=self.due_date,
            notes=self.notes,
        )


@dataclass
class Reminder:
    """One delivery attempt of a reminder on one channel."""

    owner_id: str
    customer_id: str
    type: Channel
    id: str = ""
    status: ReminderStatus = ReminderStatus.PENDING
    message_content: str = ""
    ai_tone: str = Tone.PROFESSIONAL.value
    sent_at: datetime | None = None

    # --- delivery details ---
    provider_message_id: str = ""
    error_message: str = ""
    dispatch_id: str = ""

    created_at: datetime | None = None
    updated_at: datetime | None = None

    def to_document(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.owner_id,
            "customer_id": self.customer_id,
            "type": self.type.value,
            "status": self.status.value,
            "message_content": self.message_content,
            "ai_tone": self.ai_tone,
            "sent_at": _iso(self.sent_at),
            "provider_message_id": self.provider_message_id,
            "error_message": self.error_message,
            "dispatch_id": self.dispatch_id,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    @classmethod
    def from_document(cls, d: dict[str, Any]) -> Reminder:
        return cls(
            id=str(d.get("id", "")),
            owner_id=str(d.get("user_id", "")),
            customer_id=str(d.get("customer_id", "")),
            type=_enum_value(Channel, d.get("type"), Channel.EMAIL),
            status=_enum_value(ReminderStatus, d.get("status"), ReminderStatus.PENDING),
            message_content=str(d.get("message_content") or ""),
            ai_tone=str(d.get("ai_tone") or Tone.PROFESSIONAL.value),
            sent_at=_parse_timestamp(d.get("sent_at")),
            provider_message_id=str(d.get("provider_message_id") or ""),
            error_message=str(d.get("error_message") or ""),
            dispatch_id=str(d.get("dispatch_id") or ""),
            created_at=_parse_timestamp(d.get("created_at")),
            updated_at=_parse_timestamp(d.get("updated_at")),
        )


@dataclass
class ReminderView:
    """A Reminder joined with the name/email of its customer."""

    reminder: Reminder
    customer_name: str
    customer_email: str


@dataclass(frozen=True)
class TwilioCredentials:
    """Shared by the WhatsApp and voice adapters."""

    account_sid: str
    auth_token: str
    phone_number: str


@dataclass
class ProviderSettings:
    """Per-owner provider credentials and automation preferences.

    At most one record exists per owner (upserted by the settings store).
    """

    owner_id: str
    id: str = ""

    # --- provider credentials ---
    openai_api_key: str = ""
    resend_api_key: str = ""
    from_email: str = ""
    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    twilio_phone_number: str = ""

    # --- automation preferences ---
    automation_enabled: bool = False
    default_ai_tone: str = Tone.PROFESSIONAL.value
    reminder_schedule: str = ReminderSchedule.DAILY.value
    escalation_rules: str = ""

    created_at: datetime | None = None
    updated_at: datetime | None = None

    _SECRET_FIELDS = ("openai_api_key", "resend_api_key", "twilio_auth_token")

    @property
    def twilio_credentials(self) -> TwilioCredentials | None:
        """Twilio credential set, or None when any part is missing."""
        if not (self.twilio_account_sid and self.twilio_auth_token
                and self.twilio_phone_number):
            return None
        return TwilioCredentials(
            account_sid=self.twilio_account_sid,
            auth_token=self.twilio_auth_token,
            phone_number=self.twilio_phone_number,
        )

    def to_document(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.owner_id,
            "openai_api_key": self.openai_api_key,
            "resend_api_key": self.resend_api_key,
            "from_email": self.from_email,
            "twilio_account_sid": self.twilio_account_sid,
            "twilio_auth_token": self.twilio_auth_token,
            "twilio_phone_number": self.twilio_phone_number,
            "automation_enabled": self.automation_enabled,
            "default_ai_tone": self.default_ai_tone,
            "reminder_schedule": self.reminder_schedule,
            "escalation_rules": self.escalation_rules,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def masked(self) -> dict[str, Any]:
        """Document with secrets replaced by a presence marker -- safe to log."""
        doc = self.to_document()
        for key in self._SECRET_FIELDS:
            doc[key] = "***" if doc.get(key) else ""
        return doc

    @classmethod
    def from_document(cls, d: dict[str, Any]) -> ProviderSettings:
        return cls(
            id=str(d.get("id", "")),
            owner_id=str(d.get("user_id", "")),
            openai_api_key=str(d.get("openai_api_key") or ""),
            resend_api_key=str(d.get("resend_api_key") or ""),
            from_email=str(d.get("from_email") or ""),
            twilio_account_sid=str(d.get("twilio_account_sid") or ""),
            twilio_auth_token=str(d.get("twilio_auth_token") or ""),
            twilio_phone_number=str(d.get("twilio_phone_number") or ""),
            automation_enabled=bool(d.get("automation_enabled", False)),
            default_ai_tone=str(d.get("default_ai_tone") or Tone.PROFESSIONAL.value),
            reminder_schedule=str(d.get("reminder_schedule") or ReminderSchedule.DAILY.value),
            escalation_rules=str(d.get("escalation_rules") or ""),
            created_at=_parse_timestamp(d.get("created_at")),
            updated_at=_parse_timestamp(d.get("updated_at")),
        )
