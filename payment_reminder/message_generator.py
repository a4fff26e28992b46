"""
Payment Reminder -- AI message generation

Produces the reminder text shared by every channel of a dispatch with a
single chat-completion call.  The first choice is used verbatim.
"""

from __future__ import annotations

import logging
from typing import Optional

import httpx
from openai import APIConnectionError, APIStatusError, APITimeoutError, AsyncOpenAI

from .config import ProviderSettingsConfig
from .errors import ConfigurationError, DeliveryError, TransportError
from .models import Customer, ProviderSettings
from .templates import SYSTEM_PROMPT, build_prompt

logger = logging.getLogger(__name__)

OPENAI = "openai"


class MessageGenerator:
    """Chat-completion client bound to the provider configuration.

    ``http_client`` lets callers share (or mock) the underlying httpx
    transport; a shared client is left open.  Without one, each call
    builds its own client and closes it afterwards.  The SDK's own retry
    loop is disabled.
    """

    def __init__(
        self,
        config: Optional[ProviderSettingsConfig] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config or ProviderSettingsConfig()
        self.http_client = http_client

    def _client(self, api_key: str) -> AsyncOpenAI:
        return AsyncOpenAI(
            api_key=api_key,
            base_url=self.config.openai_base_url,
            timeout=self.config.timeout_seconds,
            max_retries=0,
            http_client=self.http_client,
        )

    async def generate(self, api_key: str, customer: Customer, tone: str) -> str:
        """Return the reminder text for ``customer`` in the given tone."""
        if not api_key:
            raise ConfigurationError("OpenAI API key not configured")

        prompt = build_prompt(customer, tone)
        logger.debug("Generating %s reminder for customer %s", tone, customer.id or customer.name)

        client = self._client(api_key)
        try:
            response = await client.chat.completions.create(
                model=self.config.openai_model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                max_tokens=self.config.openai_max_tokens,
                temperature=self.config.openai_temperature,
            )
        except APITimeoutError as exc:
            raise TransportError("OpenAI request timed out", provider=OPENAI) from exc
        except APIConnectionError as exc:
            raise TransportError(f"OpenAI request failed: {exc}", provider=OPENAI) from exc
        except APIStatusError as exc:
            raise DeliveryError(
                f"Failed to generate AI message: {exc.message}",
                status_code=exc.status_code,
                provider=OPENAI,
            ) from exc
        finally:
            if self.http_client is None:
                await client.close()

        if not response.choices or not response.choices[0].message.content:
            raise DeliveryError("Failed to generate AI message: empty completion",
                                provider=OPENAI)
        return response.choices[0].message.content

    async def __call__(self, settings: ProviderSettings, customer: Customer, tone: str) -> str:
        return await self.generate(settings.openai_api_key, customer, tone)
