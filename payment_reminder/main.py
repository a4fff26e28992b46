"""Payment Reminder -- Command Line Interface.

Subcommands:

    serve       Run the HTTP relay (uvicorn)
    import      Import customers from a CSV / XLSX file
    customers   List customers with freshly computed status and risk
    send        Send a reminder to one customer on one or more channels
    reminders   List sent / failed reminders, newest first
    dashboard   Print portfolio statistics
    settings    Show or change the owner's provider settings

Every data command acts for the owner given with ``--owner``.

Usage::

    # From the project root:
    python -m payment_reminder.main serve --port 3002

    python -m payment_reminder.main import customers.csv --owner u1
    python -m payment_reminder.main send --owner u1 --customer <id> -c email -c whatsapp
    python -m payment_reminder.main dashboard --owner u1 --verbose
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import Optional

from .config import AppConfig, LoggingConfig, get_config
from .errors import (
    ConfigurationError,
    DeliveryError,
    NotFoundError,
    PaymentReminderError,
    TransportError,
    ValidationError,
)
from .models import Channel, Tone
from .service import OwnerContext, ReminderService

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

def configure_logging(cfg: LoggingConfig, verbose: bool = False) -> None:
    """Configure root logging from the ``logging`` config section."""
    level = logging.DEBUG if verbose else getattr(logging, cfg.level.upper(), logging.INFO)
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if cfg.log_file:
        handlers.append(logging.FileHandler(cfg.log_file, encoding="utf-8"))
    logging.basicConfig(
        level=level,
        format=cfg.format,
        datefmt=cfg.datefmt,
        handlers=handlers,
        force=True,
    )


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def _cmd_serve(args: argparse.Namespace, cfg: AppConfig) -> int:
    import uvicorn

    from .relay import create_app

    host = args.host or cfg.relay.host
    port = args.port or cfg.relay.port
    logger.info("Relay server starting on %s:%d", host, port)
    uvicorn.run(create_app(cfg), host=host, port=port, log_level=cfg.logging.level.lower())
    return 0


def _cmd_import(args: argparse.Namespace, service: ReminderService) -> int:
    outcome = service.import_customers(OwnerContext(args.owner), args.file, strict=args.strict)
    outcome.result.print_summary()
    print(f"\nImported {outcome.imported_count} customers.")
    return 0 if outcome.result.ok else 2


def _cmd_customers(args: argparse.Namespace, service: ReminderService) -> int:
    customers = service.list_customers(OwnerContext(args.owner), limit=args.limit)
    if not customers:
        print("No customers.")
        return 0

    print(f"{'ID':<10s} {'Name':<24s} {'Email':<28s} {'Amount':>12s} "
          f"{'Due':<13s} {'Status':<8s} {'Risk':<6s}")
    print("-" * 106)
    for c in customers:
        print(f"{c.id[:8]:<10s} {c.name[:24]:<24s} {c.email[:28]:<28s} "
              f"{c.amount_formatted:>12s} {c.due_date_formatted:<13s} "
              f"{c.status.value:<8s} {c.risk_level.value:<6s}")
    return 0


def _cmd_send(args: argparse.Namespace, service: ReminderService) -> int:
    report = asyncio.run(service.send_reminder(
        OwnerContext(args.owner), args.customer, args.channel, args.tone,
    ))

    print(f"\nMessage ({report.tone}):\n{report.message}\n")
    for outcome in report.outcomes:
        if outcome.success:
            print(f"  [OK]     {outcome.channel:<9s} id={outcome.result.provider_message_id}")
        else:
            print(f"  [FAILED] {outcome.channel:<9s} {outcome.error}")
    print(f"\n{report.summary()}")
    return 0 if report.all_succeeded else 2


def _cmd_reminders(args: argparse.Namespace, service: ReminderService) -> int:
    views = service.list_reminders(OwnerContext(args.owner), limit=args.limit)
    if not views:
        print("No reminders.")
        return 0

    for view in views:
        r = view.reminder
        stamp = r.sent_at or r.created_at
        when = stamp.strftime("%Y-%m-%d %H:%M") if stamp else ""
        print(f"{when:<17s} {r.type.value:<9s} {r.status.value:<7s} "
              f"{view.customer_name[:24]:<24s} {r.ai_tone:<12s} {r.error_message}")
    return 0


def _cmd_dashboard(args: argparse.Namespace, service: ReminderService) -> int:
    stats = service.dashboard(OwnerContext(args.owner))
    p = stats.portfolio

    print("=" * 65)
    print("  Payment Reminder -- Dashboard")
    print("=" * 65)
    print(f"  Customers          : {p.total_customers}")
    print(f"  Total outstanding  : ${p.total_outstanding:,.2f}")
    print(f"  Overdue            : {p.overdue_count}  (${p.overdue_amount:,.2f})")
    print(f"  Pending / Paid     : {p.pending_count} / {p.paid_count}")
    print(f"  Collection rate    : {p.collection_rate}%")
    print("-" * 65)
    print("  Risk distribution:")
    for level, count in p.risk_counts.items():
        print(f"    {level:<8s}: {count}")
    if p.upcoming_due:
        print("-" * 65)
        print("  Due in the next week:")
        for c in p.upcoming_due:
            print(f"    {c.name:<30s} {c.amount_formatted:>12s}  {c.due_date_formatted}")
    print("-" * 65)
    print(f"  Reminders sent     : {stats.reminders_sent}")
    print(f"  Reminders failed   : {stats.reminder_counts.get('failed', 0)}")
    print("=" * 65)
    return 0


def _cmd_settings(args: argparse.Namespace, service: ReminderService) -> int:
    ctx = OwnerContext(args.owner)
    if args.set:
        values = {}
        for item in args.set:
            key, sep, value = item.partition("=")
            if not sep:
                raise ValidationError(f"Expected KEY=VALUE, got {item!r}")
            if key == "automation_enabled":
                values[key] = value.strip().lower() in ("1", "true", "yes", "on")
            else:
                values[key] = value
        settings = service.save_settings(ctx, **values)
        print("Settings saved.")
    else:
        settings = service.get_settings(ctx)

    for key, value in settings.masked().items():
        if key not in ("id", "user_id"):
            print(f"  {key:<22s}: {value}")
    return 0


# ---------------------------------------------------------------------------
# CLI Entry Point
# ---------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="payment-reminder",
        description="Payment Reminder - track balances and send reminders",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  python -m payment_reminder.main serve\n"
            "  python -m payment_reminder.main import data/customers.xlsx --owner u1\n"
            "  python -m payment_reminder.main send --owner u1 --customer ID -c email\n"
        ),
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to config.yaml (default: project root config.yaml)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the HTTP relay")
    serve.add_argument("--host", default=None, help="Bind address (default: config)")
    serve.add_argument("--port", type=int, default=None, help="Port (default: config / RELAY_PORT)")

    def owner_parser(name: str, help_text: str) -> argparse.ArgumentParser:
        p = sub.add_parser(name, help=help_text)
        p.add_argument("--owner", required=True, help="Owner (user) id")
        return p

    imp = owner_parser("import", "Import customers from CSV / XLSX")
    imp.add_argument("file", help="Path to a .csv or .xlsx file")
    imp.add_argument("--strict", action="store_true",
                     help="Import nothing if any row fails validation")

    customers = owner_parser("customers", "List customers")
    customers.add_argument("--limit", type=int, default=None)

    send = owner_parser("send", "Send a reminder")
    send.add_argument("--customer", required=True, help="Customer id")
    send.add_argument("--channel", "-c", action="append", required=True,
                      choices=[c.value for c in Channel],
                      help="Channel to send on (repeatable)")
    send.add_argument("--tone", default=None, choices=[t.value for t in Tone],
                      help="Message tone (default: owner's setting)")

    reminders = owner_parser("reminders", "List reminders")
    reminders.add_argument("--limit", type=int, default=50)

    owner_parser("dashboard", "Print portfolio statistics")

    settings = owner_parser("settings", "Show or change provider settings")
    settings.add_argument("--set", action="append", metavar="KEY=VALUE",
                          help="Setting to change, e.g. resend_api_key=re_123 (repeatable)")
    return parser


_COMMANDS = {
    "import": _cmd_import,
    "customers": _cmd_customers,
    "send": _cmd_send,
    "reminders": _cmd_reminders,
    "dashboard": _cmd_dashboard,
    "settings": _cmd_settings,
}


def main(argv: Optional[list[str]] = None) -> int:
    """CLI entry point.

    Returns:
        Exit code (0 = success, 1 = error, 2 = partial success).
    """
    args = build_parser().parse_args(argv)
    cfg = get_config(args.config)
    configure_logging(cfg.logging, args.verbose)

    try:
        if args.command == "serve":
            return _cmd_serve(args, cfg)
        service = ReminderService(config=cfg)
        return _COMMANDS[args.command](args, service)

    except FileNotFoundError as exc:
        logger.error("File not found: %s", exc)
        print(f"\nERROR: {exc}")
        return 1
    except (ValidationError, NotFoundError) as exc:
        logger.error("Invalid request: %s", exc)
        print(f"\nERROR: {exc}")
        return 1
    except ConfigurationError as exc:
        logger.error("Configuration error: %s", exc)
        print(f"\nERROR: {exc}\nSave your provider credentials in Settings first.")
        return 1
    except (DeliveryError, TransportError) as exc:
        logger.error("Provider error: %s", exc)
        print(f"\nERROR: {exc}")
        return 1
    except PaymentReminderError as exc:
        logger.error("Error: %s", exc)
        print(f"\nERROR: {exc}")
        return 1
    except Exception as exc:
        logger.exception("Unexpected error")
        print(f"\nUNEXPECTED ERROR: {exc}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
