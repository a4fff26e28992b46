"""
Payment Reminder -- Message Templates

Renders the outbound artefacts built around the AI-generated reminder
text:

  1. The AI prompt for a customer and tone
  2. The email subject line
  3. The HTML email body (escaped AI text split into paragraphs, plus an
     amount / due-date summary)
  4. The TwiML document read out on voice calls
  5. The customer card shown in the dashboard UI

Templates are inline Jinja2 sources with autoescaping on, so customer
fields and AI text can never inject markup into the email, the TwiML
or the UI card.
"""

from __future__ import annotations

from datetime import date

from jinja2 import DictLoader, Environment, select_autoescape

from .models import Customer


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Date format: "Feb 05, 2026"
_DATE_FORMAT = "%b %d, %Y"

SYSTEM_PROMPT = (
    "You are a professional financial assistant helping with payment reminders."
)

_PROMPT_TEMPLATE = (
    "Generate a {tone} payment reminder message for a customer named {name} "
    "who owes ${amount} due on {due_date}. Keep it professional but {tone}."
)

_SUBJECT_TEMPLATE = "Payment Reminder - {name}"

_TEMPLATES = {
    "reminder_email.html": """\
<!DOCTYPE html>
<html>
  <body style="font-family: Arial, sans-serif; color: #1f2937; line-height: 1.5;">
{%- for paragraph in paragraphs %}
    <p>{{ paragraph }}</p>
{%- endfor %}
    <table style="margin-top: 16px; border-collapse: collapse;">
      <tr><td style="padding-right: 12px;"><strong>Amount due</strong></td><td>{{ amount }}</td></tr>
{%- if due_date %}
      <tr><td style="padding-right: 12px;"><strong>Due date</strong></td><td>{{ due_date }}</td></tr>
{%- endif %}
    </table>
  </body>
</html>
""",
    "voice.xml": "<Response><Say>{{ message }}</Say></Response>",
    "customer_card.html": (
        "{%- macro badge(value, palette, fallback) -%}"
        "{%- set colors = palette.get(value, fallback) -%}"
        "<span class=\"badge\" style=\"background:{{ colors.bg }};color:{{ colors.text }}\">"
        "{{ value }}</span>"
        "{%- endmacro -%}"
        "**{{ name }}** &nbsp; {{ badge(status, status_colors, fallback) }} {{ badge(risk, risk_colors, fallback) }}<br>"
        "{{ email }} {{ phone }} &nbsp;|&nbsp; {{ amount }} due {{ due_date }}"
    ),
}


# ---------------------------------------------------------------------------
# Helper: Format Utilities
# ---------------------------------------------------------------------------

def format_date(d: date | None) -> str:
    """Format a date as 'Mon DD, YYYY' (e.g. 'Feb 05, 2026').

    Returns empty string for None.
    """
    if d is None:
        return ""
    return d.strftime(_DATE_FORMAT)


def format_currency(amount: float | None) -> str:
    """Format a float as USD currency: '$1,510.00'.

    Returns '$0.00' for None.
    """
    if amount is None:
        return "$0.00"
    return f"${amount:,.2f}"


def _format_prompt_amount(amount: float) -> str:
    # "1500" rather than "1500.0" for whole amounts
    if float(amount).is_integer():
        return str(int(amount))
    return f"{amount:.2f}"


# ---------------------------------------------------------------------------
# Renderers
# ---------------------------------------------------------------------------

_env = Environment(
    loader=DictLoader(_TEMPLATES),
    autoescape=select_autoescape(enabled_extensions=("html", "xml"), default=True),
    keep_trailing_newline=True,
)


def build_prompt(customer: Customer, tone: str) -> str:
    """The user-role prompt sent to the text-generation provider."""
    due = customer.due_date.isoformat() if customer.due_date else "an unspecified date"
    return _PROMPT_TEMPLATE.format(
        tone=tone,
        name=customer.name,
        amount=_format_prompt_amount(customer.amount_due),
        due_date=due,
    )


def build_subject(customer: Customer) -> str:
    return _SUBJECT_TEMPLATE.format(name=customer.name)


def render_email_html(message: str, customer: Customer) -> str:
    """Wrap the AI text in the reminder email layout.

    Blank lines in the message separate paragraphs; every paragraph is
    HTML-escaped.
    """
    paragraphs = [p.strip() for p in message.replace("\r\n", "\n").split("\n\n") if p.strip()]
    template = _env.get_template("reminder_email.html")
    return template.render(
        paragraphs=paragraphs or [message],
        amount=format_currency(customer.amount_due),
        due_date=format_date(customer.due_date),
    )


def render_voice_twiml(message: str) -> str:
    """TwiML instructing the call to read the message aloud."""
    return _env.get_template("voice.xml").render(message=message.strip())


_BADGE_FALLBACK = {"bg": "#e2e3e5", "text": "#383d41"}


def render_customer_card_html(customer: Customer, status_colors: dict, risk_colors: dict) -> str:
    """Markdown/HTML summary line for one customer with status and risk badges."""
    return _env.get_template("customer_card.html").render(
        name=customer.name,
        email=customer.email,
        phone=customer.phone,
        status=customer.status.value,
        risk=customer.risk_level.value,
        status_colors=status_colors,
        risk_colors=risk_colors,
        fallback=_BADGE_FALLBACK,
        amount=format_currency(customer.amount_due),
        due_date=format_date(customer.due_date),
    )
