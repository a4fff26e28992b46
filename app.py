"""
Payment Reminder -- Streamlit Web Interface

Simple UI to track customers, import spreadsheets, send reminders and
manage provider settings.  All work goes through ``ReminderService``.

Usage:
    streamlit run app.py

The owner id is entered in the sidebar; sign-in is handled outside this
app.
"""

from __future__ import annotations

import asyncio
import html
import logging
import sys
from pathlib import Path

import streamlit as st

# ---------------------------------------------------------------------------
# Project root setup -- ensure payment_reminder/ is importable
# ---------------------------------------------------------------------------
PROJECT_ROOT = Path(__file__).resolve().parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from payment_reminder.config import get_config
from payment_reminder.errors import (
    ConfigurationError,
    NotFoundError,
    PaymentReminderError,
    ValidationError,
)
from payment_reminder.models import Channel, CustomerStatus, ReminderSchedule, Tone
from payment_reminder.service import OwnerContext, ReminderService
from payment_reminder.templates import render_customer_card_html

logger = logging.getLogger("payment_reminder.ui")


# ---------------------------------------------------------------------------
# Colors & Page Config
# ---------------------------------------------------------------------------

BRAND_DARK = "#1e3a5f"
BRAND_ACCENT = "#2f80ed"

STATUS_COLORS = {
    "pending": {"bg": "#fff3cd", "text": "#856404"},
    "overdue": {"bg": "#f8d7da", "text": "#721c24"},
    "paid":    {"bg": "#d4edda", "text": "#155724"},
    "sent":    {"bg": "#cce5ff", "text": "#004085"},
    "failed":  {"bg": "#f5c6cb", "text": "#721c24"},
}

RISK_COLORS = {
    "low":    {"bg": "#d4edda", "text": "#155724"},
    "medium": {"bg": "#fff3cd", "text": "#856404"},
    "high":   {"bg": "#f8d7da", "text": "#721c24"},
}

st.set_page_config(
    page_title="Payment Reminder",
    layout="wide",
    initial_sidebar_state="expanded",
)

st.markdown(f"""
<style>
    .pr-header {{
        background: linear-gradient(135deg, {BRAND_DARK}, {BRAND_ACCENT});
        color: #ffffff;
        padding: 1rem 1.5rem;
        border-radius: 8px;
        margin-bottom: 1.5rem;
    }}
    .pr-header h1 {{ color: #ffffff !important; margin: 0 !important; font-size: 1.6rem !important; }}
    .pr-header p {{ margin: 0.25rem 0 0 0; font-size: 0.9rem; opacity: 0.85; }}
    .badge {{
        display: inline-block;
        padding: 0.15rem 0.6rem;
        border-radius: 12px;
        font-size: 0.75rem;
        font-weight: 600;
    }}
</style>
""", unsafe_allow_html=True)


# ---------------------------------------------------------------------------
# Session state & service
# ---------------------------------------------------------------------------

@st.cache_resource
def get_service() -> ReminderService:
    return ReminderService(config=get_config())


def init_session_state():
    defaults = {
        "owner_id": "",
        "page": "dashboard",
        "upload_key": 0,
        "last_report": None,
    }
    for key, value in defaults.items():
        if key not in st.session_state:
            st.session_state[key] = value


init_session_state()


# ---------------------------------------------------------------------------
# Helper Functions
# ---------------------------------------------------------------------------

def badge_html(value: str, palette: dict) -> str:
    colors = palette.get(value, {"bg": "#e2e3e5", "text": "#383d41"})
    return (f'<span class="badge" style="background:{colors["bg"]};'
            f'color:{colors["text"]}">{value}</span>')


def header(title: str, subtitle: str = ""):
    st.markdown(f'<div class="pr-header"><h1>{title}</h1><p>{subtitle}</p></div>',
                unsafe_allow_html=True)


def owner_context() -> OwnerContext | None:
    if not st.session_state.owner_id.strip():
        st.info("Enter your user id in the sidebar to get started.")
        return None
    return OwnerContext(st.session_state.owner_id.strip())


def run_action(action, success: str = "") -> bool:
    """Run a service call, turning package errors into UI messages."""
    try:
        action()
    except ValidationError as exc:
        st.error(f"Invalid input: {exc}")
        return False
    except ConfigurationError as exc:
        st.error(f"{exc}. Add your provider credentials on the Settings page.")
        return False
    except NotFoundError as exc:
        st.error(str(exc))
        return False
    except PaymentReminderError as exc:
        logger.error("Action failed: %s", exc)
        st.error(f"Something went wrong: {exc}")
        return False
    if success:
        st.success(success)
    return True


# ---------------------------------------------------------------------------
# Sidebar
# ---------------------------------------------------------------------------

PAGES = {
    "dashboard": "Dashboard",
    "customers": "Customers",
    "reminders": "Reminders",
    "settings": "Settings",
}


def render_sidebar():
    with st.sidebar:
        st.markdown(f"""
        <div style="text-align: center; padding: 0.5rem 0 1rem 0;">
            <div style="font-size: 1.5rem; font-weight: 700; color: {BRAND_DARK};">
                Payment Reminder
            </div>
        </div>
        """, unsafe_allow_html=True)

        st.session_state.owner_id = st.text_input(
            "User id", value=st.session_state.owner_id,
            help="Every customer, reminder and setting belongs to this user.",
        )
        st.markdown("---")
        st.session_state.page = st.radio(
            "Navigate", options=list(PAGES), format_func=PAGES.get,
            index=list(PAGES).index(st.session_state.page),
        )


# ---------------------------------------------------------------------------
# Pages
# ---------------------------------------------------------------------------

def render_dashboard_page(service: ReminderService, ctx: OwnerContext):
    header("Dashboard", "Outstanding balances at a glance")
    stats = service.dashboard(ctx)
    p = stats.portfolio

    c1, c2, c3, c4 = st.columns(4)
    c1.metric("Total Outstanding", f"${p.total_outstanding:,.2f}")
    c2.metric("Active Customers", p.total_customers)
    c3.metric("Overdue", p.overdue_count, help=f"${p.overdue_amount:,.2f} overdue")
    c4.metric("Collection Rate", f"{p.collection_rate}%")
    st.progress(p.collection_rate / 100)

    left, right = st.columns(2)
    with left:
        st.markdown("#### Risk distribution")
        for level, count in p.risk_counts.items():
            st.markdown(f"{badge_html(level, RISK_COLORS)} &nbsp; {count}",
                        unsafe_allow_html=True)
        st.markdown("#### Due in the next week")
        if not p.upcoming_due:
            st.caption("Nothing due this week.")
        for c in p.upcoming_due:
            st.markdown(f"- **{c.name}** {c.amount_formatted} on {c.due_date_formatted}")
    with right:
        st.markdown("#### Recent reminders")
        if not stats.recent_reminders:
            st.caption("No reminders sent yet.")
        for view in stats.recent_reminders:
            r = view.reminder
            st.markdown(
                f"{badge_html(r.status.value, STATUS_COLORS)} &nbsp; "
                f"{r.type.value} to **{html.escape(view.customer_name)}**",
                unsafe_allow_html=True,
            )


def render_customers_page(service: ReminderService, ctx: OwnerContext):
    header("Customers", "Add, import and remind")

    add_tab, import_tab = st.tabs(["Add customer", "Import file"])
    with add_tab:
        with st.form("add_customer", clear_on_submit=True):
            a, b = st.columns(2)
            name = a.text_input("Name *")
            email = b.text_input("Email *")
            phone = a.text_input("Phone", help="E.164 format for WhatsApp and voice, e.g. +15551234567")
            company = b.text_input("Company")
            amount = a.number_input("Amount due *", min_value=0.0, step=100.0)
            due = b.date_input("Due date *")
            notes = st.text_area("Notes")
            if st.form_submit_button("Add customer", type="primary"):
                run_action(lambda: service.add_customer(
                    ctx, name=name, email=email, phone=phone, company=company,
                    amount_due=amount, due_date=due, notes=notes,
                ), success=f"Added {name}")

    with import_tab:
        uploaded = st.file_uploader(
            "CSV or Excel file", type=["csv", "xlsx"],
            help="Columns: name, email, phone, company, amount_due, due_date, notes",
            key=f"import_{st.session_state.upload_key}",
        )
        if uploaded is not None and st.button("Import", type="primary"):
            def _import():
                outcome = service.import_customers(ctx, uploaded.getvalue(),
                                                   filename=uploaded.name)
                st.success(f"Imported {outcome.imported_count} customers.")
                if outcome.result.errors:
                    st.warning("Skipped rows:\n\n" + "\n\n".join(
                        outcome.result.error_messages(limit=5)))
                st.session_state.upload_key += 1
            run_action(_import)

    st.markdown("---")
    customers = service.list_customers(ctx)
    if not customers:
        st.caption("No customers yet.")
        return

    for customer in customers:
        with st.container(border=True):
            info, actions = st.columns([3, 2])
            with info:
                st.markdown(
                    render_customer_card_html(customer, STATUS_COLORS, RISK_COLORS),
                    unsafe_allow_html=True,
                )
            with actions:
                channels = st.multiselect(
                    "Channels", [c.value for c in Channel], default=[Channel.EMAIL.value],
                    key=f"channels_{customer.id}", label_visibility="collapsed",
                )
                b1, b2, b3 = st.columns(3)
                if b1.button("Send", key=f"send_{customer.id}", disabled=not channels):
                    def _send(customer_id=customer.id, selected=channels):
                        report = asyncio.run(service.send_reminder(ctx, customer_id, selected))
                        st.session_state.last_report = report.summary()
                    with st.spinner("Generating and sending..."):
                        run_action(_send)
                if customer.status is not CustomerStatus.PAID and b2.button(
                        "Paid", key=f"paid_{customer.id}"):
                    if run_action(lambda cid=customer.id: service.mark_paid(ctx, cid)):
                        st.rerun()
                if b3.button("Delete", key=f"delete_{customer.id}"):
                    if run_action(lambda cid=customer.id: service.delete_customer(ctx, cid)):
                        st.rerun()

    if st.session_state.last_report:
        st.toast(st.session_state.last_report)
        st.session_state.last_report = None


def render_reminders_page(service: ReminderService, ctx: OwnerContext):
    header("Reminders", "Every delivery attempt, newest first")
    views = service.list_reminders(ctx, limit=200)
    if not views:
        st.caption("No reminders sent yet.")
        return
    rows = []
    for view in views:
        r = view.reminder
        stamp = r.sent_at or r.created_at
        rows.append({
            "When": stamp.strftime("%Y-%m-%d %H:%M") if stamp else "",
            "Customer": view.customer_name,
            "Email": view.customer_email,
            "Channel": r.type.value,
            "Status": r.status.value,
            "Tone": r.ai_tone,
            "Error": r.error_message,
            "Message": r.message_content,
        })
    st.dataframe(rows, use_container_width=True, hide_index=True)


def render_settings_page(service: ReminderService, ctx: OwnerContext):
    header("Settings", "Provider credentials and automation preferences")
    current = service.get_settings(ctx)

    with st.form("settings"):
        st.markdown("#### AI text generation")
        openai_key = st.text_input("OpenAI API key", value=current.openai_api_key, type="password")

        st.markdown("#### Email (Resend)")
        resend_key = st.text_input("Resend API key", value=current.resend_api_key, type="password")
        from_email = st.text_input("From email", value=current.from_email)

        st.markdown("#### WhatsApp & voice (Twilio)")
        sid = st.text_input("Account SID", value=current.twilio_account_sid)
        token = st.text_input("Auth token", value=current.twilio_auth_token, type="password")
        number = st.text_input("Phone number", value=current.twilio_phone_number)

        st.markdown("#### Automation")
        enabled = st.checkbox("Enable automated reminders", value=current.automation_enabled)
        tones = [t.value for t in Tone]
        tone = st.selectbox("Default AI tone", tones, index=tones.index(current.default_ai_tone))
        schedules = [s.value for s in ReminderSchedule]
        schedule = st.selectbox("Reminder schedule", schedules,
                                index=schedules.index(current.reminder_schedule))
        rules = st.text_area("Escalation rules", value=current.escalation_rules)

        if st.form_submit_button("Save settings", type="primary"):
            run_action(lambda: service.save_settings(
                ctx,
                openai_api_key=openai_key,
                resend_api_key=resend_key,
                from_email=from_email,
                twilio_account_sid=sid,
                twilio_auth_token=token,
                twilio_phone_number=number,
                automation_enabled=enabled,
                default_ai_tone=tone,
                reminder_schedule=schedule,
                escalation_rules=rules,
            ), success="Settings saved.")


# ---------------------------------------------------------------------------
# MAIN: Router
# ---------------------------------------------------------------------------

def main():
    render_sidebar()
    ctx = owner_context()
    if ctx is None:
        return

    service = get_service()
    page = st.session_state.page
    if page == "customers":
        render_customers_page(service, ctx)
    elif page == "reminders":
        render_reminders_page(service, ctx)
    elif page == "settings":
        render_settings_page(service, ctx)
    else:
        render_dashboard_page(service, ctx)


if __name__ == "__main__":
    main()
