"""
Payment Reminder -- HTTP Relay

FastAPI application that forwards email sends to Resend on behalf of a
browser client (which cannot call the provider directly), plus a trusted
dispatch endpoint that resolves credentials server-side.

    POST /api/send-email   {to, subject, content, from?, apiKey}
    POST /api/reminders    {ownerId, customerId, channels, tone?}
    GET  /api/health       {status: "OK", timestamp}
    GET  /api/test         {message: "Backend server is running!"}

Errors are always answered as ``{"error": "..."}``.

Run with ``python -m payment_reminder.main serve`` or directly:

    uvicorn payment_reminder.relay:app --port 3002
"""

from __future__ import annotations

import logging
from typing import Optional

import httpx
from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from .channels import send_email
from .config import AppConfig, get_config
from .errors import (
    ConfigurationError,
    DeliveryError,
    NotFoundError,
    PaymentReminderError,
    TransportError,
    ValidationError,
)
from .models import utc_now
from .service import OwnerContext, ReminderService

logger = logging.getLogger(__name__)

MISSING_FIELDS_ERROR = "Missing required fields: to, subject, content, apiKey"


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------

class SendEmailRequest(BaseModel):
    """Fields are optional here so missing ones get the relay's own 400."""
    model_config = ConfigDict(populate_by_name=True)

    to: Optional[str] = None
    subject: Optional[str] = None
    content: Optional[str] = None
    from_email: Optional[str] = Field(default=None, alias="from")
    api_key: Optional[str] = Field(default=None, alias="apiKey")


class ReminderRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    owner_id: str = Field(alias="ownerId")
    customer_id: str = Field(alias="customerId")
    channels: list[str]
    tone: Optional[str] = None


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------

def create_app(
    config: Optional[AppConfig] = None,
    *,
    service: Optional[ReminderService] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> FastAPI:
    """Build the relay app.

    ``service`` is created lazily on the first dispatch request when not
    given, so the email relay never touches the database.
    """
    cfg = config or get_config()

    app = FastAPI(title="Payment Reminder Relay", version="1.0.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.relay.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.config = cfg
    app.state.service = service
    app.state.http_client = http_client

    def get_service() -> ReminderService:
        if app.state.service is None:
            app.state.service = ReminderService(config=cfg, http_client=http_client)
        return app.state.service

    @app.exception_handler(RequestValidationError)
    async def _invalid_body(request: Request, exc: RequestValidationError):
        if request.url.path == "/api/send-email":
            return _error(400, MISSING_FIELDS_ERROR)
        fields = sorted({str(e["loc"][-1]) for e in exc.errors() if e.get("loc")})
        return _error(400, f"Invalid request body: {', '.join(fields) or 'malformed JSON'}")

    # -- email relay ---------------------------------------------------

    @app.post("/api/send-email")
    async def relay_email(body: SendEmailRequest):
        logger.info("Received email request: to=%s subject=%r from=%s hasApiKey=%s",
                    body.to, body.subject, body.from_email, bool(body.api_key))

        if not (body.to and body.subject and body.content and body.api_key):
            return _error(400, MISSING_FIELDS_ERROR)

        try:
            if http_client is not None:
                result = await send_email(body.api_key, body.to, body.subject, body.content,
                                          client=http_client, from_email=body.from_email,
                                          config=cfg.providers)
            else:
                async with httpx.AsyncClient(timeout=cfg.providers.timeout_seconds) as client:
                    result = await send_email(body.api_key, body.to, body.subject, body.content,
                                              client=client, from_email=body.from_email,
                                              config=cfg.providers)
        except DeliveryError as exc:
            return _error(exc.status_code or 502, f"Failed to send email: {exc.message}")
        except PaymentReminderError as exc:
            logger.error("Email relay failed: %s", exc)
            return _error(500, f"Internal server error: {exc}")

        return {"success": True, "messageId": result.provider_message_id}

    # -- trusted dispatch ----------------------------------------------

    @app.post("/api/reminders")
    async def send_reminder(body: ReminderRequest,
                            svc: ReminderService = Depends(get_service)):
        try:
            ctx = OwnerContext(body.owner_id)
            report = await svc.send_reminder(ctx, body.customer_id, body.channels, body.tone)
        except NotFoundError as exc:
            return _error(404, str(exc))
        except (ConfigurationError, ValidationError) as exc:
            return _error(400, str(exc))
        except DeliveryError as exc:
            return _error(502, str(exc))
        except TransportError as exc:
            logger.error("Dispatch failed: %s", exc)
            return _error(500, f"Internal server error: {exc}")
        return report.to_dict()

    # -- health ---------------------------------------------------------

    @app.get("/api/health")
    async def health():
        return {"status": "OK", "timestamp": utc_now().isoformat().replace("+00:00", "Z")}

    @app.get("/api/test")
    async def test():
        return {"message": "Backend server is running!"}

    return app


app = create_app()
