"""
Payment Reminder -- Channel Adapters

One narrow function per provider contract:

    send_email       Resend   POST /emails             (JSON, bearer auth)
    send_whatsapp    Twilio   POST .../Messages.json   (form, basic auth)
    make_voice_call  Twilio   POST .../Calls.json      (form, basic auth)

Each makes exactly one HTTP attempt.  A non-2xx answer raises
``DeliveryError`` carrying the provider's status and message; a network
failure or timeout raises ``TransportError``.

The ``deliver_*`` adapters on top pull credentials from the owner's
``ProviderSettings`` and the recipient from the ``Customer`` -- they are
what the dispatcher fans out to.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

import httpx

from .config import ProviderSettingsConfig
from .errors import ConfigurationError, DeliveryError, TransportError, ValidationError
from .models import Channel, Customer, ProviderSettings, TwilioCredentials
from .templates import build_subject, render_email_html, render_voice_twiml

logger = logging.getLogger(__name__)

RESEND = "resend"
TWILIO = "twilio"


@dataclass
class ChannelResult:
    """Successful provider response."""
    channel: Channel
    success: bool
    provider_message_id: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "channel": self.channel.value,
            "success": self.success,
            "messageId": self.provider_message_id,
        }


ChannelAdapter = Callable[..., Awaitable[ChannelResult]]


# ---------------------------------------------------------------------------
# HTTP helpers
# ---------------------------------------------------------------------------

def _provider_message(response: httpx.Response) -> str:
    """Best-effort extraction of the provider's error text."""
    try:
        data = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(data, dict):
        for key in ("message", "error", "detail"):
            if data.get(key):
                return str(data[key])
    return response.reason_phrase


async def _post(
    client: httpx.AsyncClient,
    url: str,
    *,
    provider: str,
    **kwargs: Any,
) -> dict[str, Any]:
    try:
        response = await client.post(url, **kwargs)
    except httpx.TimeoutException as exc:
        raise TransportError(f"{provider} request timed out", provider=provider) from exc
    except httpx.RequestError as exc:
        raise TransportError(f"{provider} request failed: {exc}", provider=provider) from exc

    if response.is_error:
        message = _provider_message(response)
        logger.warning("%s rejected request: HTTP %d %s", provider, response.status_code, message)
        raise DeliveryError(message, status_code=response.status_code, provider=provider)

    try:
        return response.json()
    except ValueError:
        return {}


# ---------------------------------------------------------------------------
# Provider contracts
# ---------------------------------------------------------------------------

async def send_email(
    api_key: str,
    to: str,
    subject: str,
    html: str,
    *,
    client: httpx.AsyncClient,
    from_email: Optional[str] = None,
    config: Optional[ProviderSettingsConfig] = None,
) -> ChannelResult:
    """Send one email through Resend.

    ``from_email`` defaults to the provider's sandbox sender.
    """
    cfg = config or ProviderSettingsConfig()
    if not api_key:
        raise ConfigurationError("Resend API key not configured")

    data = await _post(
        client,
        f"{cfg.resend_base_url}/emails",
        provider=RESEND,
        headers={"Authorization": f"Bearer {api_key}"},
        json={
            "from": from_email or cfg.default_from_email,
            "to": [to],
            "subject": subject,
            "html": html,
        },
    )
    message_id = str(data.get("id", ""))
    logger.info("Email sent to %s (id=%s)", to, message_id)
    return ChannelResult(channel=Channel.EMAIL, success=True, provider_message_id=message_id)


async def send_whatsapp(
    credentials: TwilioCredentials,
    to: str,
    message: str,
    *,
    client: httpx.AsyncClient,
    config: Optional[ProviderSettingsConfig] = None,
) -> ChannelResult:
    """Send a WhatsApp message through Twilio."""
    cfg = config or ProviderSettingsConfig()
    data = await _post(
        client,
        f"{cfg.twilio_base_url}/Accounts/{credentials.account_sid}/Messages.json",
        provider=TWILIO,
        auth=(credentials.account_sid, credentials.auth_token),
        data={
            "From": f"whatsapp:{credentials.phone_number}",
            "To": f"whatsapp:{to}",
            "Body": message,
        },
    )
    sid = str(data.get("sid", ""))
    logger.info("WhatsApp message queued to %s (sid=%s)", to, sid)
    return ChannelResult(channel=Channel.WHATSAPP, success=True, provider_message_id=sid)


async def make_voice_call(
    credentials: TwilioCredentials,
    to: str,
    message: str,
    *,
    client: httpx.AsyncClient,
    config: Optional[ProviderSettingsConfig] = None,
) -> ChannelResult:
    """Place a voice call through Twilio that reads the message aloud."""
    cfg = config or ProviderSettingsConfig()
    data = await _post(
        client,
        f"{cfg.twilio_base_url}/Accounts/{credentials.account_sid}/Calls.json",
        provider=TWILIO,
        auth=(credentials.account_sid, credentials.auth_token),
        data={
            "From": credentials.phone_number,
            "To": to,
            "Twiml": render_voice_twiml(message),
        },
    )
    sid = str(data.get("sid", ""))
    logger.info("Voice call placed to %s (sid=%s)", to, sid)
    return ChannelResult(channel=Channel.VOICE, success=True, provider_message_id=sid)


# ---------------------------------------------------------------------------
# Credential checks
# ---------------------------------------------------------------------------

def missing_credentials(channel: Channel, settings: Optional[ProviderSettings]) -> list[str]:
    """Names of the settings fields a channel needs but does not have."""
    if channel is Channel.EMAIL:
        required = ["resend_api_key"]
    else:
        required = ["twilio_account_sid", "twilio_auth_token", "twilio_phone_number"]
    if settings is None:
        return required
    return [name for name in required if not getattr(settings, name)]


# ---------------------------------------------------------------------------
# Dispatcher-facing adapters
# ---------------------------------------------------------------------------

def _twilio(settings: ProviderSettings) -> TwilioCredentials:
    credentials = settings.twilio_credentials
    if credentials is None:
        raise ConfigurationError("Twilio credentials not configured")
    return credentials


def _phone(customer: Customer) -> str:
    if not customer.phone:
        raise ValidationError(f"Customer {customer.name!r} has no phone number", field="phone")
    return customer.phone


async def deliver_email(settings: ProviderSettings, customer: Customer, message: str, *,
                        client: httpx.AsyncClient,
                        config: Optional[ProviderSettingsConfig] = None) -> ChannelResult:
    if not customer.email:
        raise ValidationError(f"Customer {customer.name!r} has no email address", field="email")
    return await send_email(
        settings.resend_api_key,
        customer.email,
        build_subject(customer),
        render_email_html(message, customer),
        client=client,
        from_email=settings.from_email or None,
        config=config,
    )


async def deliver_whatsapp(settings: ProviderSettings, customer: Customer, message: str, *,
                           client: httpx.AsyncClient,
                           config: Optional[ProviderSettingsConfig] = None) -> ChannelResult:
    return await send_whatsapp(_twilio(settings), _phone(customer), message,
                               client=client, config=config)


async def deliver_voice(settings: ProviderSettings, customer: Customer, message: str, *,
                        client: httpx.AsyncClient,
                        config: Optional[ProviderSettingsConfig] = None) -> ChannelResult:
    return await make_voice_call(_twilio(settings), _phone(customer), message,
                                 client=client, config=config)


DEFAULT_ADAPTERS: dict[Channel, ChannelAdapter] = {
    Channel.EMAIL: deliver_email,
    Channel.WHATSAPP: deliver_whatsapp,
    Channel.VOICE: deliver_voice,
}
