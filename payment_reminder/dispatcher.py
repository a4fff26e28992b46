"""
Payment Reminder -- Reminder Dispatcher

Sends one reminder to one customer over one or more channels:

    1. Check the owner's credentials for every requested channel (and for
       text generation) -- ConfigurationError before any network call
    2. Generate ONE message, shared by all channels
    3. Fan out to the channel adapters concurrently; a failing channel
       never aborts the others
    4. Return a DispatchReport whose outcomes follow the request order

Persisting Reminder records is left to the caller (see service.py).
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Iterable, Mapping, Optional

import httpx

from .channels import DEFAULT_ADAPTERS, ChannelAdapter, ChannelResult, missing_credentials
from .config import ProviderSettingsConfig
from .errors import ConfigurationError, PaymentReminderError, TransportError, ValidationError
from .models import Channel, Customer, ProviderSettings, Tone, utc_now

logger = logging.getLogger(__name__)

MessageGeneratorFn = Callable[[ProviderSettings, Customer, str], Awaitable[str]]

UNSUPPORTED_CHANNEL = "Unsupported channel"


# ---------------------------------------------------------------------------
# Result containers
# ---------------------------------------------------------------------------

@dataclass
class ChannelOutcome:
    """What happened on one channel of a dispatch."""
    channel: str
    success: bool
    result: ChannelResult | None = None
    error: str | None = None
    error_type: str = ""

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"channel": self.channel, "success": self.success}
        if self.success and self.result is not None:
            data["result"] = self.result.to_dict()
        else:
            data["error"] = self.error
            data["errorType"] = self.error_type
        return data


@dataclass
class DispatchReport:
    """Aggregated outcome of a dispatch, outcomes in request order."""
    dispatch_id: str
    customer_id: str
    tone: str
    message: str
    outcomes: list[ChannelOutcome] = field(default_factory=list)
    dispatched_at: datetime | None = None

    @property
    def success_count(self) -> int:
        return sum(1 for o in self.outcomes if o.success)

    @property
    def failure_count(self) -> int:
        return sum(1 for o in self.outcomes if not o.success)

    @property
    def all_succeeded(self) -> bool:
        return bool(self.outcomes) and self.failure_count == 0

    def summary(self) -> str:
        """One-line notification text, e.g. 'Sent via email; failed: voice'."""
        sent = [o.channel for o in self.outcomes if o.success]
        failed = [o.channel for o in self.outcomes if not o.success]
        parts = []
        if sent:
            parts.append(f"Sent via {', '.join(sent)}")
        if failed:
            parts.append(f"failed: {', '.join(failed)}")
        return "; ".join(parts) if parts else "Nothing sent"

    def to_dict(self) -> dict[str, Any]:
        return {
            "dispatchId": self.dispatch_id,
            "customerId": self.customer_id,
            "tone": self.tone,
            "message": self.message,
            "successCount": self.success_count,
            "failureCount": self.failure_count,
            "summary": self.summary(),
            "outcomes": [o.to_dict() for o in self.outcomes],
        }


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def normalize_channels(channels: Iterable[Channel | str]) -> list[Channel | str]:
    """Parse channel names, dropping duplicates but keeping first-seen order.

    Unknown names are kept as plain strings so they can be reported as
    unsupported in their original position.
    """
    seen: set[str] = set()
    ordered: list[Channel | str] = []
    for raw in channels:
        value = raw.value if isinstance(raw, Channel) else str(raw).strip().lower()
        if value in seen:
            continue
        seen.add(value)
        try:
            ordered.append(Channel(value))
        except ValueError:
            ordered.append(value)
    return ordered


def check_credentials(settings: Optional[ProviderSettings],
                      channels: Iterable[Channel | str]) -> None:
    """Raise ConfigurationError naming every missing credential."""
    missing: dict[str, list[str]] = {}
    for channel in channels:
        if isinstance(channel, Channel):
            fields = missing_credentials(channel, settings)
            if fields:
                missing[channel.value] = fields
    if missing:
        detail = "; ".join(f"{ch}: {', '.join(names)}" for ch, names in missing.items())
        raise ConfigurationError(f"Provider credentials not configured ({detail})")
    if settings is None or not settings.openai_api_key:
        raise ConfigurationError("OpenAI API key not configured")


def _failure(channel: str, exc: BaseException) -> ChannelOutcome:
    return ChannelOutcome(
        channel=channel,
        success=False,
        error=str(exc) or exc.__class__.__name__,
        error_type=exc.__class__.__name__,
    )


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------

async def dispatch(
    settings: Optional[ProviderSettings],
    customer: Customer,
    channels: Iterable[Channel | str],
    tone: Optional[str] = None,
    *,
    generate_message: MessageGeneratorFn,
    adapters: Optional[Mapping[Channel, ChannelAdapter]] = None,
    config: Optional[ProviderSettingsConfig] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> DispatchReport:
    """Generate one reminder message and send it on every requested channel.

    Raises:
        ValidationError: no channel requested.
        ConfigurationError: a requested channel (or text generation) lacks
            credentials.  Raised before any network call.
        PaymentReminderError: text generation failed; nothing was sent.
    """
    cfg = config or ProviderSettingsConfig()
    adapters = DEFAULT_ADAPTERS if adapters is None else adapters
    requested = normalize_channels(channels)
    if not requested:
        raise ValidationError("At least one channel is required", field="channels")

    check_credentials(settings, requested)
    tone = tone or settings.default_ai_tone or Tone.PROFESSIONAL.value

    try:
        message = await asyncio.wait_for(
            generate_message(settings, customer, tone), timeout=cfg.timeout_seconds,
        )
    except asyncio.TimeoutError as exc:
        raise TransportError("Message generation timed out", provider="openai") from exc

    report = DispatchReport(
        dispatch_id=str(uuid.uuid4()),
        customer_id=customer.id,
        tone=tone,
        message=message,
        dispatched_at=utc_now(),
    )

    owns_client = client is None
    if owns_client:
        client = httpx.AsyncClient(timeout=httpx.Timeout(cfg.timeout_seconds))

    async def _deliver(channel: Channel | str) -> ChannelOutcome:
        name = channel.value if isinstance(channel, Channel) else channel
        adapter = adapters.get(channel) if isinstance(channel, Channel) else None
        if adapter is None:
            return ChannelOutcome(channel=name, success=False,
                                  error=UNSUPPORTED_CHANNEL, error_type="ValidationError")
        try:
            result = await asyncio.wait_for(
                adapter(settings, customer, message, client=client, config=cfg),
                timeout=cfg.timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning("Channel %s timed out for customer %s", name, customer.id)
            return _failure(name, TransportError(f"{name} delivery timed out"))
        except PaymentReminderError as exc:
            logger.warning("Channel %s failed for customer %s: %s", name, customer.id, exc)
            return _failure(name, exc)
        except Exception as exc:
            logger.exception("Unexpected error on channel %s for customer %s", name, customer.id)
            return _failure(name, exc)
        return ChannelOutcome(channel=name, success=True, result=result)

    try:
        report.outcomes = list(await asyncio.gather(*(_deliver(ch) for ch in requested)))
    finally:
        if owns_client:
            await client.aclose()

    logger.info(
        "Dispatch %s for customer %s: %d sent, %d failed",
        report.dispatch_id, customer.id, report.success_count, report.failure_count,
    )
    return report
