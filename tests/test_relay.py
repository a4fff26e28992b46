"""Tests for payment_reminder.relay -- the FastAPI relay endpoints.

Resend is simulated with ``httpx.MockTransport``; the dispatch endpoint
runs against a ReminderService with fake providers and a tmp database.
"""

import json
from datetime import date

import httpx
import pytest
from fastapi.testclient import TestClient

from payment_reminder.channels import ChannelResult
from payment_reminder.config import AppConfig
from payment_reminder.models import Channel
from payment_reminder.relay import MISSING_FIELDS_ERROR, create_app
from payment_reminder.repository import Repository
from payment_reminder.service import OwnerContext, ReminderService


class ResendStub:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self.payload = payload if payload is not None else {"id": "email_abc"}
        self.requests: list[httpx.Request] = []

    def __call__(self, request):
        self.requests.append(request)
        return httpx.Response(self.status_code, json=self.payload)


def _client(stub=None, service=None) -> TestClient:
    http_client = None
    if stub is not None:
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(stub))
    return TestClient(create_app(AppConfig(), service=service, http_client=http_client))


VALID_BODY = {
    "to": "customer@x.io",
    "subject": "Payment Reminder - Jane",
    "content": "<p>Please pay</p>",
    "apiKey": "re_123",
}


# ============================================================================
# Health checks
# ============================================================================

class TestHealthChecks:
    def test_health(self):
        resp = _client().get("/api/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "OK"
        assert data["timestamp"].endswith("Z")

    def test_test_endpoint(self):
        resp = _client().get("/api/test")
        assert resp.json() == {"message": "Backend server is running!"}

    def test_cors_preflight(self):
        resp = _client().options(
            "/api/send-email",
            headers={"Origin": "http://localhost:5173",
                     "Access-Control-Request-Method": "POST"},
        )
        assert resp.status_code == 200
        assert resp.headers["access-control-allow-origin"] == "http://localhost:5173"


# ============================================================================
# POST /api/send-email
# ============================================================================

class TestSendEmail:
    def test_success(self):
        stub = ResendStub()
        resp = _client(stub).post("/api/send-email", json={**VALID_BODY, "from": "me@x.io"})
        assert resp.status_code == 200
        assert resp.json() == {"success": True, "messageId": "email_abc"}

        (req,) = stub.requests
        assert req.headers["Authorization"] == "Bearer re_123"
        assert json.loads(req.content) == {
            "from": "me@x.io",
            "to": ["customer@x.io"],
            "subject": "Payment Reminder - Jane",
            "html": "<p>Please pay</p>",
        }

    def test_default_sender(self):
        stub = ResendStub()
        _client(stub).post("/api/send-email", json=VALID_BODY)
        assert json.loads(stub.requests[0].content)["from"] == "onboarding@resend.dev"

    @pytest.mark.parametrize("missing", ["to", "subject", "content", "apiKey"])
    def test_missing_field(self, missing):
        stub = ResendStub()
        body = {k: v for k, v in VALID_BODY.items() if k != missing}
        resp = _client(stub).post("/api/send-email", json=body)
        assert resp.status_code == 400
        assert resp.json() == {"error": MISSING_FIELDS_ERROR}
        assert stub.requests == []

    def test_empty_string_counts_as_missing(self):
        resp = _client(ResendStub()).post("/api/send-email", json={**VALID_BODY, "to": ""})
        assert resp.status_code == 400

    def test_malformed_json(self):
        resp = _client(ResendStub()).post(
            "/api/send-email", content=b"{not json",
            headers={"Content-Type": "application/json"},
        )
        assert resp.status_code == 400
        assert resp.json() == {"error": MISSING_FIELDS_ERROR}

    def test_provider_rejection_passes_status_through(self):
        stub = ResendStub(status_code=403, payload={"message": "API key is invalid"})
        resp = _client(stub).post("/api/send-email", json=VALID_BODY)
        assert resp.status_code == 403
        assert resp.json() == {"error": "Failed to send email: API key is invalid"}

    def test_network_failure(self):
        def boom(request):
            raise httpx.ConnectError("refused", request=request)

        resp = _client(boom).post("/api/send-email", json=VALID_BODY)
        assert resp.status_code == 500
        assert resp.json()["error"].startswith("Internal server error")


# ============================================================================
# POST /api/reminders
# ============================================================================

@pytest.fixture
def service(tmp_path) -> ReminderService:
    async def generate(settings, customer, tone):
        return f"Hello {customer.name}"

    async def email(settings, customer, message, *, client, config):
        return ChannelResult(Channel.EMAIL, True, "em-1")

    return ReminderService(
        Repository(tmp_path / "relay.db"),
        config=AppConfig(),
        generate_message=generate,
        adapters={Channel.EMAIL: email},
    )


class TestReminderEndpoint:
    def _customer(self, service):
        return service.add_customer(OwnerContext("u1"), name="Jane", email="jane@x.io",
                                    amount_due=100, due_date=date(2025, 1, 1))

    def test_dispatch(self, service):
        service.save_settings(OwnerContext("u1"), openai_api_key="sk", resend_api_key="re")
        customer = self._customer(service)
        resp = _client(service=service).post("/api/reminders", json={
            "ownerId": "u1", "customerId": customer.id, "channels": ["email"],
        })
        assert resp.status_code == 200
        data = resp.json()
        assert data["message"] == "Hello Jane"
        assert data["successCount"] == 1
        assert data["outcomes"][0]["result"]["messageId"] == "em-1"
        assert len(service.list_reminders(OwnerContext("u1"))) == 1

    def test_unknown_customer(self, service):
        resp = _client(service=service).post("/api/reminders", json={
            "ownerId": "u1", "customerId": "nope", "channels": ["email"],
        })
        assert resp.status_code == 404

    def test_missing_credentials(self, service):
        customer = self._customer(service)
        resp = _client(service=service).post("/api/reminders", json={
            "ownerId": "u1", "customerId": customer.id, "channels": ["email"],
        })
        assert resp.status_code == 400
        assert "not configured" in resp.json()["error"]

    def test_invalid_body(self, service):
        resp = _client(service=service).post("/api/reminders", json={"ownerId": "u1"})
        assert resp.status_code == 400
        assert resp.json()["error"].startswith("Invalid request body")

    def test_blank_owner(self, service):
        resp = _client(service=service).post("/api/reminders", json={
            "ownerId": " ", "customerId": "x", "channels": ["email"],
        })
        assert resp.status_code == 400
