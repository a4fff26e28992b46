"""Tests for payment_reminder.main -- the command line interface.

Each test runs ``main(argv)`` against the per-test database configured by
the root conftest; only commands that stay offline are exercised.
"""

import pytest

from payment_reminder.main import build_parser, main


CSV = (
    "name,email,amount_due,due_date\n"
    "Acme,ap@acme.io,1200,2025-01-10\n"
    "Beta,,50,2025-01-10\n"
)


@pytest.fixture
def csv_file(tmp_path):
    path = tmp_path / "customers.csv"
    path.write_text(CSV, encoding="utf-8")
    return path


class TestParser:
    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_owner_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["customers"])

    def test_send_channels_repeatable(self):
        args = build_parser().parse_args(
            ["send", "--owner", "u1", "--customer", "c1", "-c", "email", "-c", "voice"])
        assert args.channel == ["email", "voice"]
        assert args.tone is None

    def test_send_rejects_unknown_channel(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(
                ["send", "--owner", "u1", "--customer", "c1", "-c", "sms"])


class TestCommands:
    def test_import_partial_returns_2(self, csv_file, capsys):
        assert main(["import", str(csv_file), "--owner", "u1"]) == 2
        out = capsys.readouterr().out
        assert "Imported 1 customers." in out
        assert "Row 2: Missing email" in out

    def test_import_strict_fails(self, csv_file, capsys):
        assert main(["import", str(csv_file), "--owner", "u1", "--strict"]) == 1
        assert "Validation errors" in capsys.readouterr().out
        assert main(["customers", "--owner", "u1"]) == 0
        assert "No customers." in capsys.readouterr().out

    def test_import_missing_file(self, tmp_path, capsys):
        assert main(["import", str(tmp_path / "nope.csv"), "--owner", "u1"]) == 1
        assert "ERROR" in capsys.readouterr().out

    def test_customers_listing(self, csv_file, capsys):
        main(["import", str(csv_file), "--owner", "u1"])
        capsys.readouterr()
        assert main(["customers", "--owner", "u1"]) == 0
        out = capsys.readouterr().out
        assert "Acme" in out
        assert "$1,200.00" in out
        assert "overdue" in out

    def test_dashboard(self, csv_file, capsys):
        main(["import", str(csv_file), "--owner", "u1"])
        capsys.readouterr()
        assert main(["dashboard", "--owner", "u1"]) == 0
        out = capsys.readouterr().out
        assert "Customers          : 1" in out
        assert "Reminders sent     : 0" in out

    def test_settings_round_trip_masks_secrets(self, capsys):
        assert main(["settings", "--owner", "u1",
                     "--set", "openai_api_key=sk-hidden",
                     "--set", "automation_enabled=yes"]) == 0
        out = capsys.readouterr().out
        assert "Settings saved." in out
        assert "sk-hidden" not in out
        assert main(["settings", "--owner", "u1"]) == 0
        out = capsys.readouterr().out
        assert "openai_api_key" in out and "***" in out
        assert "automation_enabled    : True" in out

    def test_settings_bad_pair(self, capsys):
        assert main(["settings", "--owner", "u1", "--set", "novalue"]) == 1

    def test_reminders_empty_and_send_unknown_customer(self, csv_file, capsys):
        main(["import", str(csv_file), "--owner", "u1"])
        assert main(["reminders", "--owner", "u1"]) == 0
        assert "No reminders." in capsys.readouterr().out
        assert main(["send", "--owner", "u1", "--customer", "missing", "-c", "email"]) == 1
