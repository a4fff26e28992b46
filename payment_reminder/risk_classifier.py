"""
Customer Status / Risk Classifier

Derives a customer's payment status and risk tier from due date, amount
due and current status.  Both functions are pure: given the same inputs
and the same ``now`` they always return the same answer, so recomputing
on an already-classified record is a no-op.

Status:
    PAID      current status is paid (terminal, never re-evaluated)
    OVERDUE   due date (midnight UTC) strictly before now
    PENDING   otherwise

Risk (paid customers are always LOW):
    HIGH      days_overdue > 30  OR  amount_due > 50,000
    MEDIUM    days_overdue > 7   OR  amount_due > 15,000
    LOW       otherwise
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterable, Optional, Union

from .config import ClassifierConfig
from .models import Customer, CustomerStatus, RiskLevel, coerce_date, utc_now


# ---------------------------------------------------------------------------
# Risk Boundaries
# ---------------------------------------------------------------------------
# Thresholds are exclusive: 30 days overdue is still MEDIUM, 31 is HIGH.

HIGH_RISK_DAYS: int = 30
MEDIUM_RISK_DAYS: int = 7
HIGH_RISK_AMOUNT: float = 50_000.0
MEDIUM_RISK_AMOUNT: float = 15_000.0

_SECONDS_PER_DAY = 86_400

DateLike = Union[date, datetime, str]


def _default_thresholds() -> ClassifierConfig:
    return ClassifierConfig(
        high_risk_days=HIGH_RISK_DAYS,
        medium_risk_days=MEDIUM_RISK_DAYS,
        high_risk_amount=HIGH_RISK_AMOUNT,
        medium_risk_amount=MEDIUM_RISK_AMOUNT,
    )


# ---------------------------------------------------------------------------
# Time normalisation
# ---------------------------------------------------------------------------

def _as_instant(value: DateLike) -> datetime:
    """Convert a due date (or a reference time) to an aware UTC datetime.

    Calendar dates are taken at midnight UTC.  Naive datetimes are
    assumed to be UTC.
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    parsed = coerce_date(value)
    if parsed is None:
        raise ValueError("due date is required")
    return datetime.combine(parsed, time.min, tzinfo=timezone.utc)


def _reference(now: Optional[DateLike]) -> datetime:
    return utc_now() if now is None else _as_instant(now)


def _is_paid(current_status: CustomerStatus | str | None) -> bool:
    if current_status is None:
        return False
    value = current_status.value if isinstance(current_status, CustomerStatus) else current_status
    return str(value).strip().lower() == CustomerStatus.PAID.value


# ---------------------------------------------------------------------------
# Core Classification Functions
# ---------------------------------------------------------------------------

def days_overdue(due_date: DateLike, now: Optional[DateLike] = None) -> int:
    """
    Whole days elapsed since the due date, floored.

    Negative when the due date is still ahead.

    Examples:
        >>> days_overdue(date(2025, 1, 1), now=datetime(2025, 1, 9, 12, tzinfo=timezone.utc))
        8
        >>> days_overdue(date(2025, 1, 10), now=datetime(2025, 1, 9, 12, tzinfo=timezone.utc))
        -1
    """
    delta = _reference(now) - _as_instant(due_date)
    return math.floor(delta.total_seconds() / _SECONDS_PER_DAY)


def classify_status(
    due_date: DateLike,
    current_status: CustomerStatus | str | None,
    now: Optional[DateLike] = None,
) -> CustomerStatus:
    """
    Payment status for a customer.

    A due date exactly equal to ``now`` is NOT overdue.

    Examples:
        >>> classify_status(date(2025, 1, 1), "pending", now=date(2025, 2, 1))
        <CustomerStatus.OVERDUE: 'overdue'>
        >>> classify_status(date(2025, 3, 1), "overdue", now=date(2025, 2, 1))
        <CustomerStatus.PENDING: 'pending'>
        >>> classify_status(date(2025, 1, 1), "paid", now=date(2025, 2, 1))
        <CustomerStatus.PAID: 'paid'>
    """
    if _is_paid(current_status):
        return CustomerStatus.PAID
    if _as_instant(due_date) < _reference(now):
        return CustomerStatus.OVERDUE
    return CustomerStatus.PENDING


def classify_risk(
    due_date: DateLike,
    amount_due: float | int | None,
    current_status: CustomerStatus | str | None,
    now: Optional[DateLike] = None,
    *,
    thresholds: Optional[ClassifierConfig] = None,
) -> RiskLevel:
    """
    Risk tier for a customer.

    Examples:
        >>> classify_risk(date(2025, 1, 1), 0, "pending", now=date(2025, 2, 1))
        <RiskLevel.HIGH: 'high'>
        >>> classify_risk(date(2025, 1, 24), 0, "pending", now=date(2025, 2, 1))
        <RiskLevel.MEDIUM: 'medium'>
        >>> classify_risk(date(2025, 2, 1), 60000, "pending", now=date(2025, 2, 1))
        <RiskLevel.HIGH: 'high'>
        >>> classify_risk(date(2025, 1, 1), 99999, "paid", now=date(2025, 2, 1))
        <RiskLevel.LOW: 'low'>
    """
    if _is_paid(current_status):
        return RiskLevel.LOW

    t = thresholds or _default_thresholds()
    overdue = days_overdue(due_date, now)
    amount = float(amount_due or 0.0)

    if overdue > t.high_risk_days or amount > t.high_risk_amount:
        return RiskLevel.HIGH
    if overdue > t.medium_risk_days or amount > t.medium_risk_amount:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


# ---------------------------------------------------------------------------
# Classification Result
# ---------------------------------------------------------------------------

@dataclass
class ClassificationResult:
    """
    The result of classifying a single customer.

    Attributes:
        status: Recomputed payment status.
        risk_level: Recomputed risk tier.
        days_overdue: Floored days past the due date (negative if not yet due).
        changed: True when status or risk differ from the stored values.
    """
    status: CustomerStatus
    risk_level: RiskLevel
    days_overdue: int
    changed: bool


def classify(
    customer: Customer,
    now: Optional[DateLike] = None,
    *,
    thresholds: Optional[ClassifierConfig] = None,
) -> ClassificationResult:
    """Classify a stored customer without mutating it.

    A customer with no due date is treated as due exactly ``now``: it is
    pending unless paid, and only the amount can raise its risk.
    """
    reference = _reference(now)
    due = customer.due_date if customer.due_date is not None else reference

    status = classify_status(due, customer.status, reference)
    risk = classify_risk(due, customer.amount_due, customer.status, reference,
                         thresholds=thresholds)
    return ClassificationResult(
        status=status,
        risk_level=risk,
        days_overdue=days_overdue(due, reference),
        changed=(status is not customer.status or risk is not customer.risk_level),
    )


# ---------------------------------------------------------------------------
# Portfolio Summary (dashboard statistics)
# ---------------------------------------------------------------------------

@dataclass
class PortfolioSummary:
    """Aggregate figures across one owner's customers."""
    total_customers: int = 0
    total_outstanding: float = 0.0
    overdue_count: int = 0
    overdue_amount: float = 0.0
    pending_count: int = 0
    paid_count: int = 0
    risk_counts: dict[str, int] = field(default_factory=lambda: {
        level.value: 0 for level in RiskLevel
    })
    upcoming_due: list[Customer] = field(default_factory=list)

    @property
    def collection_rate(self) -> int:
        """Percentage of customers marked paid, rounded to a whole number."""
        if not self.total_customers:
            return 0
        return round(self.paid_count / self.total_customers * 100)


def summarize_portfolio(
    customers: Iterable[Customer],
    now: Optional[DateLike] = None,
    *,
    thresholds: Optional[ClassifierConfig] = None,
) -> PortfolioSummary:
    """
    Produce dashboard statistics for a set of customers.

    Status and risk are recomputed for the given ``now`` rather than read
    from the stored fields.  ``upcoming_due`` lists unpaid customers whose
    due date falls within the next ``upcoming_window_days`` days.
    """
    t = thresholds or _default_thresholds()
    reference = _reference(now)
    window_end = reference + timedelta(days=t.upcoming_window_days)
    summary = PortfolioSummary()

    for customer in customers:
        result = classify(customer, reference, thresholds=t)
        summary.total_customers += 1
        summary.total_outstanding += customer.amount_due
        summary.risk_counts[result.risk_level.value] += 1

        if result.status is CustomerStatus.PAID:
            summary.paid_count += 1
            continue
        if result.status is CustomerStatus.OVERDUE:
            summary.overdue_count += 1
            summary.overdue_amount += customer.amount_due
        else:
            summary.pending_count += 1
            if customer.due_date is not None and _as_instant(customer.due_date) <= window_end:
                summary.upcoming_due.append(customer)

    summary.upcoming_due.sort(key=lambda c: c.due_date)
    return summary
