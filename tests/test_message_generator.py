"""Tests for payment_reminder.message_generator and the prompt templates.

The OpenAI SDK is pointed at an ``httpx.MockTransport`` so the
chat-completions contract is exercised without a network.
"""

import asyncio
import json
from datetime import date

import httpx
import pytest

from payment_reminder.config import ProviderSettingsConfig
from payment_reminder.errors import ConfigurationError, DeliveryError, TransportError
from payment_reminder import message_generator
from payment_reminder.message_generator import MessageGenerator
from payment_reminder.models import Customer, CustomerStatus, ProviderSettings, RiskLevel
from payment_reminder.templates import (
    SYSTEM_PROMPT,
    build_prompt,
    build_subject,
    render_customer_card_html,
)


def _completion(content):
    return {
        "id": "chatcmpl-1",
        "object": "chat.completion",
        "created": 1700000000,
        "model": "gpt-3.5-turbo",
        "choices": [{
            "index": 0,
            "message": {"role": "assistant", "content": content},
            "finish_reason": "stop",
        }],
        "usage": {"prompt_tokens": 10, "completion_tokens": 20, "total_tokens": 30},
    }


def _customer(**overrides) -> Customer:
    defaults = dict(owner_id="o", id="c1", name="Jane Doe", email="jane@x.io",
                    amount_due=1500.0, due_date=date(2025, 1, 10))
    defaults.update(overrides)
    return Customer(**defaults)


def _generate(handler, api_key="sk-test", tone="friendly", customer=None, config=None):
    async def _go():
        transport = httpx.MockTransport(handler)
        async with httpx.AsyncClient(transport=transport) as http_client:
            gen = MessageGenerator(config, http_client=http_client)
            return await gen.generate(api_key, customer or _customer(), tone)
    return asyncio.run(_go())


# ============================================================================
# Prompt templates
# ============================================================================

class TestPrompt:
    def test_prompt_wording(self):
        assert build_prompt(_customer(), "friendly") == (
            "Generate a friendly payment reminder message for a customer named Jane Doe "
            "who owes $1500 due on 2025-01-10. Keep it professional but friendly."
        )

    def test_prompt_keeps_cents(self):
        assert "owes $99.50 due" in build_prompt(_customer(amount_due=99.5), "urgent")

    def test_prompt_without_due_date(self):
        assert "due on an unspecified date" in build_prompt(_customer(due_date=None), "formal")

    def test_subject(self):
        assert build_subject(_customer()) == "Payment Reminder - Jane Doe"


STATUS_COLORS = {"overdue": {"bg": "#f8d7da", "text": "#721c24"}}
RISK_COLORS = {"high": {"bg": "#f8d7da", "text": "#721c24"}}


class TestCustomerCard:
    def test_summary_line(self):
        customer = _customer(phone="+15550100", status=CustomerStatus.OVERDUE,
                             risk_level=RiskLevel.HIGH)
        card = render_customer_card_html(customer, STATUS_COLORS, RISK_COLORS)
        assert card.startswith("**Jane Doe** &nbsp; <span class=\"badge\"")
        assert "background:#f8d7da;color:#721c24\">overdue</span>" in card
        assert ">high</span>" in card
        assert "jane@x.io +15550100 &nbsp;|&nbsp; $1,500.00 due Jan 10, 2025" in card

    def test_unknown_badge_value_uses_fallback(self):
        card = render_customer_card_html(_customer(), {}, {})
        assert "background:#e2e3e5;color:#383d41\">pending</span>" in card

    def test_customer_fields_are_escaped(self):
        customer = _customer(name="<img src=x onerror=alert(1)>",
                             email="a@x.io<script>", phone="\"><b>1</b>")
        card = render_customer_card_html(customer, STATUS_COLORS, RISK_COLORS)
        assert "<img" not in card
        assert "<script>" not in card
        assert "<b>" not in card
        assert "&lt;img src=x onerror=alert(1)&gt;" in card
        assert "a@x.io&lt;script&gt;" in card


# ============================================================================
# MessageGenerator
# ============================================================================

class TestMessageGenerator:
    def test_returns_first_choice(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json=_completion("Hi Jane, friendly nudge."))

        assert _generate(handler) == "Hi Jane, friendly nudge."
        assert len(requests) == 1
        req = requests[0]
        assert str(req.url) == "https://api.openai.com/v1/chat/completions"
        assert req.headers["Authorization"] == "Bearer sk-test"

    def test_request_body(self):
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json=_completion("ok"))

        cfg = ProviderSettingsConfig(openai_model="gpt-test", openai_max_tokens=50,
                                     openai_temperature=0.2)
        _generate(handler, tone="urgent", config=cfg)
        body = bodies[0]
        assert body["model"] == "gpt-test"
        assert body["max_tokens"] == 50
        assert body["temperature"] == 0.2
        assert body["messages"][0] == {"role": "system", "content": SYSTEM_PROMPT}
        assert body["messages"][1]["role"] == "user"
        assert "urgent payment reminder" in body["messages"][1]["content"]

    def test_missing_key_makes_no_request(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json=_completion("x"))

        with pytest.raises(ConfigurationError):
            _generate(handler, api_key="")
        assert requests == []

    def test_provider_rejection(self):
        def handler(request):
            return httpx.Response(401, json={"error": {"message": "Incorrect API key",
                                                       "type": "invalid_request_error"}})

        with pytest.raises(DeliveryError) as exc_info:
            _generate(handler)
        assert exc_info.value.status_code == 401
        assert exc_info.value.provider == "openai"
        assert str(exc_info.value).startswith("Failed to generate AI message")

    def test_empty_completion(self):
        def handler(request):
            return httpx.Response(200, json=_completion(None))

        with pytest.raises(DeliveryError, match="empty completion"):
            _generate(handler)

    def test_connection_failure_is_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(TransportError):
            _generate(handler)
        assert len(calls) == 1

    def test_callable_uses_settings_key(self):
        keys = []

        def handler(request):
            keys.append(request.headers["Authorization"])
            return httpx.Response(200, json=_completion("ok"))

        async def _go():
            async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
                gen = MessageGenerator(http_client=client)
                settings = ProviderSettings(owner_id="o", openai_api_key="sk-owner")
                return await gen(settings, _customer(), "professional")

        assert asyncio.run(_go()) == "ok"
        assert keys == ["Bearer sk-owner"]


# ============================================================================
# Client lifetime
# ============================================================================

class TestClientLifetime:
    def _patch_sdk(self, monkeypatch, handler) -> list[httpx.AsyncClient]:
        created = []
        sdk_client = message_generator.AsyncOpenAI

        def factory(**kwargs):
            http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
            created.append(http_client)
            return sdk_client(**{**kwargs, "http_client": http_client})

        monkeypatch.setattr(message_generator, "AsyncOpenAI", factory)
        return created

    def test_own_client_closed_after_each_call(self, monkeypatch):
        created = self._patch_sdk(
            monkeypatch, lambda request: httpx.Response(200, json=_completion("ok")))
        gen = MessageGenerator()

        async def _go():
            return [await gen.generate("sk-test", _customer(), "friendly") for _ in range(3)]

        assert asyncio.run(_go()) == ["ok", "ok", "ok"]
        assert len(created) == 3
        assert all(client.is_closed for client in created)

    def test_own_client_closed_on_provider_error(self, monkeypatch):
        created = self._patch_sdk(
            monkeypatch, lambda request: httpx.Response(500, json={"error": {"message": "boom"}}))

        with pytest.raises(DeliveryError):
            asyncio.run(MessageGenerator().generate("sk-test", _customer(), "friendly"))
        assert created[0].is_closed

    def test_shared_client_left_open(self):
        def handler(request):
            return httpx.Response(200, json=_completion("ok"))

        async def _go():
            async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
                gen = MessageGenerator(http_client=client)
                await gen.generate("sk-test", _customer(), "friendly")
                await gen.generate("sk-test", _customer(), "urgent")
                return client.is_closed

        assert asyncio.run(_go()) is False
