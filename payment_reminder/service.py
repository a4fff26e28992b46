"""
Payment Reminder -- Reminder Service

The operations the UI, CLI and relay call.  Every operation takes an
explicit ``OwnerContext``; nothing reads the "current user" from ambient
state.

    customers   add / update / delete / mark paid / list (recomputed)
    import      validate a spreadsheet, batch-insert the valid rows
    reminders   send (dispatch + one Reminder record per channel), list
    settings    get / save (upsert)
    dashboard   portfolio statistics plus recent reminder activity
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, fields
from datetime import datetime
from typing import Any, Iterable, Mapping, Optional

import httpx

from .channels import ChannelAdapter
from .config import AppConfig, get_config
from .dispatcher import DispatchReport, MessageGeneratorFn, dispatch
from .errors import NotFoundError, ValidationError
from .importer import ImportResult, Source, load_customers
from .message_generator import MessageGenerator
from .models import (
    Channel,
    Customer,
    CustomerStatus,
    ProviderSettings,
    Reminder,
    ReminderSchedule,
    ReminderStatus,
    ReminderView,
    RiskLevel,
    Tone,
    coerce_date,
)
from .repository import Repository
from .risk_classifier import PortfolioSummary, classify, summarize_portfolio

logger = logging.getLogger(__name__)

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

# Customer fields a caller may edit directly.
_EDITABLE_CUSTOMER_FIELDS = frozenset({
    "name", "email", "phone", "company", "amount_due", "due_date", "notes", "status",
})

_SETTINGS_FIELDS = frozenset(
    f.name for f in fields(ProviderSettings)
    if f.name not in ("id", "owner_id", "created_at", "updated_at")
)


# ---------------------------------------------------------------------------
# Context & result containers
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class OwnerContext:
    """Identity of the user an operation acts for."""
    owner_id: str

    def __post_init__(self):
        if not self.owner_id or not str(self.owner_id).strip():
            raise ValidationError("owner_id is required", field="owner_id")


@dataclass
class ImportOutcome:
    """What an import stored, alongside the parse result it came from."""
    result: ImportResult
    imported: list[Customer] = field(default_factory=list)

    @property
    def imported_count(self) -> int:
        return len(self.imported)

    @property
    def error_count(self) -> int:
        return len(self.result.errors)


@dataclass
class DashboardStats:
    """Dashboard view: portfolio figures plus reminder activity."""
    portfolio: PortfolioSummary
    reminder_counts: dict[str, int]
    recent_reminders: list[ReminderView]

    @property
    def reminders_sent(self) -> int:
        return self.reminder_counts.get(ReminderStatus.SENT.value, 0)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------

def _require_text(value: Any, field_name: str, label: str) -> str:
    text = str(value or "").strip()
    if not text:
        raise ValidationError(f"{label} is required", field=field_name)
    return text


def _validate_email(value: Any) -> str:
    email = _require_text(value, "email", "Email")
    if not _EMAIL_RE.match(email):
        raise ValidationError(f"Invalid email address: {email}", field="email")
    return email


def _validate_amount(value: Any) -> float:
    try:
        amount = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid amount due: {value!r}", field="amount_due") from None
    if amount != amount or amount < 0:
        raise ValidationError(f"Invalid amount due: {value!r}", field="amount_due")
    return amount


def _validate_due_date(value: Any):
    try:
        due = coerce_date(value)
    except ValueError:
        raise ValidationError(f"Invalid due date: {value!r}", field="due_date") from None
    if due is None:
        raise ValidationError("Due date is required", field="due_date")
    return due


def _validate_choice(value: str, enum_cls, field_name: str) -> str:
    allowed = [m.value for m in enum_cls]
    if value not in allowed:
        raise ValidationError(
            f"Invalid {field_name}: {value!r} (expected one of {', '.join(allowed)})",
            field=field_name,
        )
    return value


# ---------------------------------------------------------------------------
# ReminderService
# ---------------------------------------------------------------------------

class ReminderService:
    """Application service over the repository, classifier and dispatcher.

    ``generate_message``, ``adapters`` and ``http_client`` are the seams
    tests use to keep provider calls offline.
    """

    def __init__(
        self,
        repository: Optional[Repository] = None,
        *,
        config: Optional[AppConfig] = None,
        generate_message: Optional[MessageGeneratorFn] = None,
        adapters: Optional[Mapping[Channel, ChannelAdapter]] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config or get_config()
        self.repo = repository or Repository(self.config.storage.resolved_path)
        self.generate_message = generate_message or MessageGenerator(self.config.providers)
        self.adapters = adapters
        self.http_client = http_client

    # ------------------------------------------------------------------
    # Customers
    # ------------------------------------------------------------------

    def _classified(self, customer: Customer, now=None) -> Customer:
        result = classify(customer, now, thresholds=self.config.classifier)
        customer.status = result.status
        customer.risk_level = result.risk_level
        return customer

    def add_customer(
        self,
        ctx: OwnerContext,
        *,
        name: str,
        email: str,
        amount_due: Any,
        due_date: Any,
        phone: str = "",
        company: str = "",
        notes: str = "",
        now: Optional[datetime] = None,
    ) -> Customer:
        """Validate a manual entry and store it with its initial status/risk."""
        customer = Customer(
            owner_id=ctx.owner_id,
            name=_require_text(name, "name", "Name"),
            email=_validate_email(email),
            phone=str(phone or "").strip(),
            company=str(company or "").strip(),
            amount_due=_validate_amount(amount_due),
            due_date=_validate_due_date(due_date),
            notes=str(notes or "").strip(),
        )
        stored = self.repo.customers.add(self._classified(customer, now))
        logger.info("Added customer %s (%s) for owner %s", stored.id, stored.name, ctx.owner_id)
        return stored

    def get_customer(self, ctx: OwnerContext, customer_id: str) -> Customer:
        customer = self.repo.customers.get(ctx.owner_id, customer_id)
        if customer is None:
            raise NotFoundError("customers", customer_id)
        return customer

    def update_customer(self, ctx: OwnerContext, customer_id: str,
                        now: Optional[datetime] = None, **changes: Any) -> Customer:
        """Edit customer fields; status and risk are recomputed afterwards."""
        unknown = set(changes) - _EDITABLE_CUSTOMER_FIELDS
        if unknown:
            raise ValidationError(f"Cannot edit field(s): {', '.join(sorted(unknown))}")

        if "name" in changes:
            changes["name"] = _require_text(changes["name"], "name", "Name")
        if "email" in changes:
            changes["email"] = _validate_email(changes["email"])
        if "amount_due" in changes:
            changes["amount_due"] = _validate_amount(changes["amount_due"])
        if "due_date" in changes:
            changes["due_date"] = _validate_due_date(changes["due_date"])
        if "status" in changes:
            try:
                changes["status"] = CustomerStatus(changes["status"])
            except ValueError:
                raise ValidationError(f"Invalid status: {changes['status']!r}",
                                      field="status") from None

        current = self.get_customer(ctx, customer_id)
        for key, value in changes.items():
            setattr(current, key, value)
        self._classified(current, now)
        changes.update(status=current.status, risk_level=current.risk_level)
        return self.repo.customers.update(ctx.owner_id, customer_id, **changes)

    def mark_paid(self, ctx: OwnerContext, customer_id: str) -> Customer:
        customer = self.repo.customers.update(
            ctx.owner_id, customer_id,
            status=CustomerStatus.PAID, risk_level=RiskLevel.LOW,
        )
        logger.info("Customer %s marked paid", customer_id)
        return customer

    def delete_customer(self, ctx: OwnerContext, customer_id: str) -> None:
        self.repo.customers.delete(ctx.owner_id, customer_id)

    def list_customers(self, ctx: OwnerContext, *, now: Optional[datetime] = None,
                       limit: Optional[int] = None) -> list[Customer]:
        """Newest-first customers with status/risk recomputed for ``now``.

        Records whose derived fields changed are written back.
        """
        customers = self.repo.customers.list(ctx.owner_id, limit=limit)
        refreshed = []
        for customer in customers:
            result = classify(customer, now, thresholds=self.config.classifier)
            if result.changed:
                logger.debug("Customer %s: %s/%s -> %s/%s", customer.id,
                             customer.status.value, customer.risk_level.value,
                             result.status.value, result.risk_level.value)
                customer = self.repo.customers.update(
                    ctx.owner_id, customer.id,
                    status=result.status, risk_level=result.risk_level,
                )
            refreshed.append(customer)
        return refreshed

    # ------------------------------------------------------------------
    # Import
    # ------------------------------------------------------------------

    def import_customers(
        self,
        ctx: OwnerContext,
        source: Source,
        *,
        filename: Optional[str] = None,
        strict: bool = False,
        now: Optional[datetime] = None,
    ) -> ImportOutcome:
        """Parse a CSV/XLSX file and batch-insert its valid rows.

        With ``strict`` any row error aborts the import before anything is
        stored.  The batch insert itself is all-or-nothing.
        """
        result = load_customers(source, filename=filename)
        if strict and result.errors:
            shown = "\n".join(result.error_messages(limit=5))
            more = "\n..." if len(result.errors) > 5 else ""
            raise ValidationError(f"Validation errors:\n{shown}{more}", field="file")

        customers = [
            self._classified(draft.to_customer(ctx.owner_id), now)
            for draft in result.customers
        ]
        imported = self.repo.customers.add_batch(customers)
        logger.info("Imported %d customers for owner %s (%d rows rejected)",
                    len(imported), ctx.owner_id, len(result.errors))
        return ImportOutcome(result=result, imported=imported)

    # ------------------------------------------------------------------
    # Reminders
    # ------------------------------------------------------------------

    async def send_reminder(
        self,
        ctx: OwnerContext,
        customer_id: str,
        channels: Iterable[Channel | str],
        tone: Optional[str] = None,
        *,
        now: Optional[datetime] = None,
    ) -> DispatchReport:
        """Dispatch a reminder and record one Reminder per channel outcome.

        Configuration and generation failures propagate before anything is
        recorded.  Afterwards the customer's status/risk are recomputed.
        """
        customer = self.get_customer(ctx, customer_id)
        settings = self.repo.settings.get(ctx.owner_id)
        if tone is not None:
            _validate_choice(tone, Tone, "tone")

        report = await dispatch(
            settings, customer, channels, tone,
            generate_message=self.generate_message,
            adapters=self.adapters,
            config=self.config.providers,
            client=self.http_client,
        )

        records = []
        for outcome in report.outcomes:
            try:
                channel = Channel(outcome.channel)
            except ValueError:
                logger.warning("Not recording unsupported channel %r", outcome.channel)
                continue
            records.append(Reminder(
                owner_id=ctx.owner_id,
                customer_id=customer.id,
                type=channel,
                status=ReminderStatus.SENT if outcome.success else ReminderStatus.FAILED,
                message_content=report.message,
                ai_tone=report.tone,
                sent_at=report.dispatched_at if outcome.success else None,
                provider_message_id=outcome.result.provider_message_id if outcome.result else "",
                error_message=outcome.error or "",
                dispatch_id=report.dispatch_id,
            ))
        self.repo.reminders.add_batch(records)

        result = classify(customer, now, thresholds=self.config.classifier)
        if result.changed:
            self.repo.customers.update(
                ctx.owner_id, customer.id,
                status=result.status, risk_level=result.risk_level,
            )
        logger.info("Reminder for customer %s: %s", customer.id, report.summary())
        return report

    def list_reminders(self, ctx: OwnerContext, *,
                       limit: Optional[int] = None) -> list[ReminderView]:
        return self.repo.reminders.list_with_customers(ctx.owner_id, limit=limit)

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def get_settings(self, ctx: OwnerContext) -> ProviderSettings:
        """Stored settings, or unsaved defaults when the owner has none."""
        settings = self.repo.settings.get(ctx.owner_id)
        if settings is None:
            settings = ProviderSettings(
                owner_id=ctx.owner_id,
                from_email=self.config.providers.default_from_email,
            )
        return settings

    def save_settings(self, ctx: OwnerContext, **values: Any) -> ProviderSettings:
        """Merge ``values`` into the owner's settings and upsert them."""
        unknown = set(values) - _SETTINGS_FIELDS
        if unknown:
            raise ValidationError(f"Unknown setting(s): {', '.join(sorted(unknown))}")

        settings = self.get_settings(ctx)
        for key, value in values.items():
            if isinstance(value, str):
                value = value.strip()
            setattr(settings, key, value)

        _validate_choice(settings.default_ai_tone, Tone, "default_ai_tone")
        _validate_choice(settings.reminder_schedule, ReminderSchedule, "reminder_schedule")
        if not settings.from_email:
            settings.from_email = self.config.providers.default_from_email
        else:
            _validate_email(settings.from_email)
        settings.automation_enabled = bool(settings.automation_enabled)

        return self.repo.settings.save(ctx.owner_id, settings)

    # ------------------------------------------------------------------
    # Dashboard
    # ------------------------------------------------------------------

    def dashboard(self, ctx: OwnerContext, *, now: Optional[datetime] = None,
                  recent: int = 5) -> DashboardStats:
        customers = self.repo.customers.list(ctx.owner_id)
        portfolio = summarize_portfolio(customers, now, thresholds=self.config.classifier)

        counts = {status.value: 0 for status in ReminderStatus}
        for reminder in self.repo.reminders.list(ctx.owner_id):
            counts[reminder.status.value] += 1

        return DashboardStats(
            portfolio=portfolio,
            reminder_counts=counts,
            recent_reminders=self.repo.reminders.list_with_customers(ctx.owner_id, limit=recent),
        )
