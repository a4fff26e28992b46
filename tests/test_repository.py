"""Tests for payment_reminder.repository -- SQLite document store.

Covers:
- Customer CRUD scoped by owner
- Newest-first listing and limits
- Batch inserts are all-or-nothing
- Reminder listing joined with customer names ("Unknown" when deleted)
- Settings upsert (one record per owner)
- Change subscriptions fed by mutations
"""

import sqlite3
from datetime import date, datetime, timedelta, timezone

import pytest

from payment_reminder.errors import NotFoundError, ValidationError
from payment_reminder.models import (
    Channel,
    Customer,
    CustomerStatus,
    ProviderSettings,
    Reminder,
    ReminderStatus,
)
from payment_reminder.repository import UNKNOWN_CUSTOMER, Repository


@pytest.fixture
def repo(tmp_path) -> Repository:
    return Repository(tmp_path / "test.db")


def _customer(owner="u1", name="Acme", **overrides) -> Customer:
    defaults = dict(owner_id=owner, name=name, email=f"{name.lower()}@x.io",
                    amount_due=100.0, due_date=date(2025, 1, 1))
    defaults.update(overrides)
    return Customer(**defaults)


def _reminder(customer: Customer, **overrides) -> Reminder:
    defaults = dict(owner_id=customer.owner_id, customer_id=customer.id,
                    type=Channel.EMAIL, status=ReminderStatus.SENT,
                    message_content="pay please")
    defaults.update(overrides)
    return Reminder(**defaults)


# ============================================================================
# Store setup
# ============================================================================

class TestStore:
    def test_creates_tables(self, repo):
        conn = sqlite3.connect(repo.db_path)
        try:
            names = {r[0] for r in conn.execute(
                "SELECT name FROM sqlite_master WHERE type = 'table'")}
        finally:
            conn.close()
        assert {"customers", "reminders", "api_settings"} <= names

    def test_creates_parent_directory(self, tmp_path):
        repo = Repository(tmp_path / "nested" / "dir" / "x.db")
        assert repo.db_path.parent.is_dir()

    def test_default_path_from_environment(self, tmp_path):
        # conftest points PAYMENT_REMINDER_DB at tmp_path/default.db
        assert Repository().db_path == tmp_path / "default.db"

    def test_data_survives_reopen(self, tmp_path):
        path = tmp_path / "persist.db"
        added = Repository(path).customers.add(_customer())
        assert Repository(path).customers.get("u1", added.id) == added


# ============================================================================
# Customers
# ============================================================================

class TestCustomers:
    def test_add_assigns_id_and_timestamps(self, repo):
        c = repo.customers.add(_customer())
        assert c.id
        assert c.created_at is not None
        assert c.updated_at == c.created_at

    def test_add_requires_owner(self, repo):
        with pytest.raises(ValidationError):
            repo.customers.add(_customer(owner=""))

    def test_get_round_trips(self, repo):
        c = repo.customers.add(_customer(phone="+1555", company="Acme Inc", notes="vip"))
        assert repo.customers.get("u1", c.id) == c

    def test_get_foreign_or_missing_is_none(self, repo):
        c = repo.customers.add(_customer())
        assert repo.customers.get("u2", c.id) is None
        assert repo.customers.get("u1", "nope") is None

    def test_list_newest_first_and_scoped(self, repo):
        first = repo.customers.add(_customer(name="First"))
        second = repo.customers.add(_customer(name="Second"))
        repo.customers.add(_customer(owner="u2", name="Other"))
        assert [c.id for c in repo.customers.list("u1")] == [second.id, first.id]
        assert [c.name for c in repo.customers.list("u1", limit=1)] == ["Second"]

    def test_list_orders_by_created_at(self, repo):
        old = datetime(2024, 1, 1, tzinfo=timezone.utc)
        repo.customers.add(_customer(name="New"))
        repo.customers.add(_customer(name="Old", created_at=old))
        assert [c.name for c in repo.customers.list("u1")] == ["New", "Old"]

    def test_update(self, repo):
        c = repo.customers.add(_customer())
        updated = repo.customers.update("u1", c.id, amount_due=250.0,
                                        status=CustomerStatus.PAID)
        assert updated.amount_due == 250.0
        assert updated.status is CustomerStatus.PAID
        assert updated.created_at == c.created_at
        assert updated.updated_at >= c.updated_at
        assert repo.customers.get("u1", c.id) == updated

    def test_update_foreign_record(self, repo):
        c = repo.customers.add(_customer())
        with pytest.raises(NotFoundError):
            repo.customers.update("u2", c.id, amount_due=1.0)
        assert repo.customers.get("u1", c.id).amount_due == 100.0

    @pytest.mark.parametrize("field_name", ["owner_id", "id", "created_at", "updated_at"])
    def test_update_immutable_field(self, repo, field_name):
        c = repo.customers.add(_customer())
        with pytest.raises(ValidationError, match=field_name):
            repo.customers.update("u1", c.id, **{field_name: "u2"})
        assert repo.customers.get("u1", c.id) == c

    def test_update_unknown_field(self, repo):
        c = repo.customers.add(_customer())
        with pytest.raises(ValidationError):
            repo.customers.update("u1", c.id, favourite_colour="blue")

    def test_delete(self, repo):
        c = repo.customers.add(_customer())
        repo.customers.delete("u1", c.id)
        assert repo.customers.get("u1", c.id) is None
        assert repo.customers.count("u1") == 0

    def test_delete_foreign_or_missing(self, repo):
        c = repo.customers.add(_customer())
        with pytest.raises(NotFoundError, match="customers record not found"):
            repo.customers.delete("u2", c.id)
        with pytest.raises(NotFoundError):
            repo.customers.delete("u1", "missing")
        assert repo.customers.count("u1") == 1


# ============================================================================
# Batch insert
# ============================================================================

class TestBatch:
    def test_add_batch(self, repo):
        added = repo.customers.add_batch([_customer(name=f"C{i}") for i in range(5)])
        assert len(added) == 5
        assert len({c.id for c in added}) == 5
        assert repo.customers.count("u1") == 5

    def test_empty_batch(self, repo):
        assert repo.customers.add_batch([]) == []

    def test_batch_is_atomic(self, repo):
        existing = repo.customers.add(_customer(name="Existing"))
        batch = [_customer(name="New1"), _customer(name="Dup", id=existing.id),
                 _customer(name="New2")]
        with pytest.raises(sqlite3.IntegrityError):
            repo.customers.add_batch(batch)
        assert [c.name for c in repo.customers.list("u1")] == ["Existing"]

    def test_batch_validates_before_writing(self, repo):
        with pytest.raises(ValidationError):
            repo.customers.add_batch([_customer(name="Ok"), _customer(owner="")])
        assert repo.customers.count("u1") == 0


# ============================================================================
# Reminders
# ============================================================================

class TestReminders:
    def test_list_for_customer(self, repo):
        a = repo.customers.add(_customer(name="A"))
        b = repo.customers.add(_customer(name="B"))
        repo.reminders.add(_reminder(a))
        repo.reminders.add(_reminder(b, type=Channel.VOICE))
        repo.reminders.add(_reminder(a, type=Channel.WHATSAPP))
        types = [r.type for r in repo.reminders.list_for_customer("u1", a.id)]
        assert types == [Channel.WHATSAPP, Channel.EMAIL]

    def test_list_with_customers(self, repo):
        c = repo.customers.add(_customer(name="Acme"))
        repo.reminders.add(_reminder(c))
        (view,) = repo.reminders.list_with_customers("u1")
        assert view.customer_name == "Acme"
        assert view.customer_email == "acme@x.io"
        assert view.reminder.message_content == "pay please"

    def test_deleted_customer_shows_unknown(self, repo):
        c = repo.customers.add(_customer())
        repo.reminders.add(_reminder(c))
        repo.customers.delete("u1", c.id)
        (view,) = repo.reminders.list_with_customers("u1")
        assert view.customer_name == UNKNOWN_CUSTOMER == "Unknown"
        assert view.customer_email == ""

    def test_join_does_not_cross_owners(self, repo):
        theirs = repo.customers.add(_customer(owner="u2", name="Theirs"))
        repo.reminders.add(Reminder(owner_id="u1", customer_id=theirs.id, type=Channel.EMAIL))
        (view,) = repo.reminders.list_with_customers("u1")
        assert view.customer_name == "Unknown"

    def test_list_with_customers_limit(self, repo):
        c = repo.customers.add(_customer())
        repo.reminders.add_batch([_reminder(c) for _ in range(4)])
        assert len(repo.reminders.list_with_customers("u1", limit=2)) == 2


# ============================================================================
# Settings
# ============================================================================

class TestSettings:
    def test_missing(self, repo):
        assert repo.settings.get("u1") is None

    def test_insert_then_update_keeps_one_record(self, repo):
        first = repo.settings.save("u1", ProviderSettings(owner_id="u1", openai_api_key="sk-1"))
        second = repo.settings.save("u1", ProviderSettings(owner_id="u1", openai_api_key="sk-2",
                                                           resend_api_key="re"))
        assert second.id == first.id
        assert second.created_at == first.created_at
        stored = repo.settings.get("u1")
        assert stored.openai_api_key == "sk-2"
        assert stored.resend_api_key == "re"

        conn = sqlite3.connect(repo.db_path)
        try:
            (count,) = conn.execute(
                "SELECT COUNT(*) FROM api_settings WHERE owner_id = 'u1'").fetchone()
        finally:
            conn.close()
        assert count == 1

    def test_owner_from_argument_wins(self, repo):
        saved = repo.settings.save("u1", ProviderSettings(owner_id="someone-else"))
        assert saved.owner_id == "u1"
        assert repo.settings.get("someone-else") is None

    def test_secrets_not_logged(self, repo, caplog):
        with caplog.at_level("INFO", logger="payment_reminder.repository"):
            repo.settings.save("u1", ProviderSettings(owner_id="u1", openai_api_key="sk-topsecret"))
        assert "sk-topsecret" not in caplog.text
        assert "Created provider settings for owner u1" in caplog.text


# ============================================================================
# Subscriptions
# ============================================================================

class TestSubscriptions:
    def test_immediate_snapshot(self, repo):
        repo.customers.add(_customer())
        received = []
        repo.customers.subscribe("u1", received.append)
        assert len(received) == 1
        assert received[0][0].name == "Acme"

    def test_snapshot_after_each_mutation(self, repo):
        received = []
        repo.customers.subscribe("u1", received.append)
        c = repo.customers.add(_customer())
        repo.customers.update("u1", c.id, amount_due=5.0)
        repo.customers.delete("u1", c.id)
        assert [len(s) for s in received] == [0, 1, 1, 0]
        assert received[2][0].amount_due == 5.0

    def test_batch_publishes_once(self, repo):
        received = []
        repo.customers.subscribe("u1", received.append)
        repo.customers.add_batch([_customer(name=f"C{i}") for i in range(3)])
        assert [len(s) for s in received] == [0, 3]

    def test_other_owner_not_notified(self, repo):
        received = []
        repo.customers.subscribe("u1", received.append)
        repo.customers.add(_customer(owner="u2"))
        assert len(received) == 1

    def test_closed_subscription(self, repo):
        received = []
        sub = repo.reminders.subscribe("u1", received.append)
        sub.close()
        c = repo.customers.add(_customer())
        repo.reminders.add(_reminder(c))
        assert len(received) == 1

    def test_failing_subscriber_does_not_undo_write(self, repo):
        def broken(rows):
            if rows:
                raise RuntimeError("boom")

        repo.customers.subscribe("u1", broken)
        c = repo.customers.add(_customer())
        assert repo.customers.get("u1", c.id) is not None
