"""
Payment Reminder -- Repository Module

SQLite-backed document store for the three owner-scoped collections:

    customers      Customer documents
    reminders      Reminder documents (one per channel per dispatch)
    api_settings   ProviderSettings, at most one per owner

Each table holds the JSON document plus the columns queries need
(id, owner, timestamps).  Listings are newest-first by ``created_at``.

Every mutation publishes the owner's full snapshot to the collection's
change feed (see subscriptions.py).

Usage:
    from payment_reminder.repository import Repository

    repo = Repository()                          # uses the configured db path
    repo = Repository("path/to/reminders.db")    # custom path

    customer = repo.customers.add(Customer(owner_id="u1", name="Ann", email="a@x.io"))
    repo.customers.update("u1", customer.id, amount_due=250.0)
    sub = repo.customers.subscribe("u1", print)
    sub.close()

    repo.settings.save("u1", ProviderSettings(owner_id="u1", resend_api_key="re_..."))
"""

from __future__ import annotations

import dataclasses
import json
import logging
import sqlite3
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Generic, Iterable, Optional, TypeVar

from .config import StorageConfig
from .errors import NotFoundError, ValidationError
from .models import Customer, ProviderSettings, Reminder, ReminderView, utc_now
from .subscriptions import ChangeFeed, Subscription

logger = logging.getLogger(__name__)

T = TypeVar("T", Customer, Reminder)


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

UNKNOWN_CUSTOMER = "Unknown"

# SQLite journal mode for better concurrency with Streamlit
_PRAGMA_SETTINGS = [
    "PRAGMA journal_mode=WAL;",
    "PRAGMA foreign_keys=ON;",
    "PRAGMA busy_timeout=5000;",
]

# Fields a caller may never change through ``update``.
_IMMUTABLE_FIELDS = frozenset({"id", "owner_id", "created_at", "updated_at"})


# ---------------------------------------------------------------------------
# Database Schema
# ---------------------------------------------------------------------------

_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS customers (
    id          TEXT PRIMARY KEY,
    owner_id    TEXT NOT NULL,
    created_at  TEXT NOT NULL,
    updated_at  TEXT NOT NULL,
    doc         TEXT NOT NULL                   -- JSON document
);

CREATE TABLE IF NOT EXISTS reminders (
    id          TEXT PRIMARY KEY,
    owner_id    TEXT NOT NULL,
    customer_id TEXT NOT NULL,                  -- weak reference, no FK
    created_at  TEXT NOT NULL,
    updated_at  TEXT NOT NULL,
    doc         TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS api_settings (
    id          TEXT PRIMARY KEY,
    owner_id    TEXT NOT NULL UNIQUE,
    created_at  TEXT NOT NULL,
    updated_at  TEXT NOT NULL,
    doc         TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_customers_owner_created ON customers(owner_id, created_at);
CREATE INDEX IF NOT EXISTS idx_reminders_owner_created ON reminders(owner_id, created_at);
CREATE INDEX IF NOT EXISTS idx_reminders_customer ON reminders(customer_id);
"""


# ---------------------------------------------------------------------------
# Serialization Helpers
# ---------------------------------------------------------------------------

def _dump(doc: dict[str, Any]) -> str:
    return json.dumps(doc, ensure_ascii=False, default=str)


def _load(raw: str) -> dict[str, Any]:
    try:
        data = json.loads(raw) if raw else {}
    except (json.JSONDecodeError, TypeError):
        logger.warning("Skipping unreadable document: %.60s", raw)
        return {}
    return data if isinstance(data, dict) else {}


# ---------------------------------------------------------------------------
# DocumentStore -- connection handling shared by every collection
# ---------------------------------------------------------------------------

class DocumentStore:
    """Owns the database file and hands out short-lived connections.

    Thread safety: each operation opens/closes its own connection.  The
    WAL journal mode allows concurrent reads from Streamlit while a write
    is in progress.
    """

    def __init__(self, db_path: Optional[str | Path] = None):
        self.db_path = Path(db_path) if db_path else StorageConfig().resolved_path
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _get_conn(self) -> sqlite3.Connection:
        """Open a new SQLite connection with row_factory and pragmas."""
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        for pragma in _PRAGMA_SETTINGS:
            conn.execute(pragma)
        return conn

    def _init_db(self) -> None:
        """Create tables and indexes if they don't exist."""
        conn = self._get_conn()
        try:
            conn.executescript(_SCHEMA_SQL)
            conn.commit()
        finally:
            conn.close()


# ---------------------------------------------------------------------------
# Owner-scoped collections
# ---------------------------------------------------------------------------

class _Collection(Generic[T]):
    """CRUD plus change feed over one document table."""

    table: str = ""
    label: str = ""
    model: type

    def __init__(self, store: DocumentStore):
        self.store = store
        self.feed: ChangeFeed[T] = ChangeFeed(self.table, self.list)

    def _extra_columns(self, record: T) -> dict[str, Any]:
        return {}

    def _prepare(self, record: T) -> T:
        if not record.owner_id:
            raise ValidationError("owner_id is required", field="owner_id")
        now = utc_now()
        return dataclasses.replace(
            record,
            id=record.id or str(uuid.uuid4()),
            created_at=record.created_at or now,
            updated_at=now,
        )

    def _insert(self, conn: sqlite3.Connection, record: T) -> None:
        row = {
            "id": record.id,
            "owner_id": record.owner_id,
            "created_at": record.created_at.isoformat(),
            "updated_at": record.updated_at.isoformat(),
            **self._extra_columns(record),
            "doc": _dump(record.to_document()),
        }
        columns = list(row.keys())
        placeholders = ", ".join(["?"] * len(columns))
        conn.execute(
            f"INSERT INTO {self.table} ({', '.join(columns)}) VALUES ({placeholders})",
            [row[c] for c in columns],
        )

    def _fetch(self, conn: sqlite3.Connection, owner_id: str, record_id: str) -> T | None:
        row = conn.execute(
            f"SELECT doc FROM {self.table} WHERE id = ? AND owner_id = ?",
            (record_id, owner_id),
        ).fetchone()
        if row is None:
            return None
        return self.model.from_document(_load(row["doc"]))

    # ------------------------------------------------------------------
    # CRUD Operations
    # ------------------------------------------------------------------

    def add(self, record: T) -> T:
        """Insert one record; returns it with id and timestamps filled in."""
        record = self._prepare(record)
        conn = self.store._get_conn()
        try:
            self._insert(conn, record)
            conn.commit()
        finally:
            conn.close()
        logger.debug("Added %s %s for owner %s", self.label, record.id, record.owner_id)
        self.feed.publish(record.owner_id)
        return record

    def add_batch(self, records: Iterable[T]) -> list[T]:
        """Insert many records in ONE transaction: all are stored or none."""
        prepared = [self._prepare(r) for r in records]
        if not prepared:
            return []

        conn = self.store._get_conn()
        try:
            for record in prepared:
                self._insert(conn, record)
            conn.commit()
        except sqlite3.Error:
            conn.rollback()
            logger.error("Batch insert into %s rolled back (%d records)",
                         self.table, len(prepared))
            raise
        finally:
            conn.close()

        logger.info("Added %d %s records", len(prepared), self.label)
        for owner_id in dict.fromkeys(r.owner_id for r in prepared):
            self.feed.publish(owner_id)
        return prepared

    def get(self, owner_id: str, record_id: str) -> T | None:
        """Return the record, or None when missing or owned by someone else."""
        conn = self.store._get_conn()
        try:
            return self._fetch(conn, owner_id, record_id)
        finally:
            conn.close()

    def list(self, owner_id: str, limit: Optional[int] = None) -> list[T]:
        """All of the owner's records, newest first."""
        sql = (f"SELECT doc FROM {self.table} WHERE owner_id = ? "
               f"ORDER BY created_at DESC, rowid DESC")
        params: list[Any] = [owner_id]
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)

        conn = self.store._get_conn()
        try:
            rows = conn.execute(sql, params).fetchall()
        finally:
            conn.close()
        return [self.model.from_document(_load(r["doc"])) for r in rows]

    def update(self, owner_id: str, record_id: str, /, **changes: Any) -> T:
        """Apply field changes to one record and return the new version.

        Raises:
            NotFoundError: no such record for this owner.
            ValidationError: an unknown or immutable field was named.
        """
        blocked = _IMMUTABLE_FIELDS.intersection(changes)
        if blocked:
            raise ValidationError(f"Cannot change {', '.join(sorted(blocked))}")

        conn = self.store._get_conn()
        try:
            current = self._fetch(conn, owner_id, record_id)
            if current is None:
                raise NotFoundError(self.table, record_id)
            try:
                updated = dataclasses.replace(current, updated_at=utc_now(), **changes)
            except TypeError as exc:
                raise ValidationError(f"Unknown {self.label} field: {exc}") from exc

            extra = self._extra_columns(updated)
            assignments = ["updated_at = ?", "doc = ?"] + [f"{k} = ?" for k in extra]
            conn.execute(
                f"UPDATE {self.table} SET {', '.join(assignments)} WHERE id = ? AND owner_id = ?",
                [updated.updated_at.isoformat(), _dump(updated.to_document()),
                 *extra.values(), record_id, owner_id],
            )
            conn.commit()
        finally:
            conn.close()

        logger.debug("Updated %s %s (%s)", self.label, record_id, ", ".join(sorted(changes)))
        self.feed.publish(owner_id)
        return updated

    def delete(self, owner_id: str, record_id: str) -> None:
        """Remove one record.  Raises NotFoundError when missing or foreign."""
        conn = self.store._get_conn()
        try:
            result = conn.execute(
                f"DELETE FROM {self.table} WHERE id = ? AND owner_id = ?",
                (record_id, owner_id),
            )
            if result.rowcount == 0:
                raise NotFoundError(self.table, record_id)
            conn.commit()
        finally:
            conn.close()

        logger.info("Deleted %s %s for owner %s", self.label, record_id, owner_id)
        self.feed.publish(owner_id)

    def count(self, owner_id: str) -> int:
        conn = self.store._get_conn()
        try:
            row = conn.execute(
                f"SELECT COUNT(*) AS cnt FROM {self.table} WHERE owner_id = ?", (owner_id,),
            ).fetchone()
            return row["cnt"]
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Change subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, owner_id: str, callback: Callable[[list[T]], None]) -> Subscription[T]:
        """Receive the owner's full list now and after every change."""
        return self.feed.subscribe(owner_id, callback)


class CustomerRepository(_Collection[Customer]):
    table = "customers"
    label = "customer"
    model = Customer


class ReminderRepository(_Collection[Reminder]):
    table = "reminders"
    label = "reminder"
    model = Reminder

    def _extra_columns(self, record: Reminder) -> dict[str, Any]:
        return {"customer_id": record.customer_id}

    def list_for_customer(self, owner_id: str, customer_id: str) -> list[Reminder]:
        conn = self.store._get_conn()
        try:
            rows = conn.execute(
                """SELECT doc FROM reminders
                   WHERE owner_id = ? AND customer_id = ?
                   ORDER BY created_at DESC, rowid DESC""",
                (owner_id, customer_id),
            ).fetchall()
        finally:
            conn.close()
        return [Reminder.from_document(_load(r["doc"])) for r in rows]

    def list_with_customers(self, owner_id: str,
                            limit: Optional[int] = None) -> list[ReminderView]:
        """Reminders joined with their customer's name and email.

        Customers that no longer exist show as ``"Unknown"``.
        """
        sql = """SELECT r.doc AS reminder_doc, c.doc AS customer_doc
                 FROM reminders r
                 LEFT JOIN customers c
                   ON c.id = r.customer_id AND c.owner_id = r.owner_id
                 WHERE r.owner_id = ?
                 ORDER BY r.created_at DESC, r.rowid DESC"""
        params: list[Any] = [owner_id]
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)

        conn = self.store._get_conn()
        try:
            rows = conn.execute(sql, params).fetchall()
        finally:
            conn.close()

        views = []
        for r in rows:
            reminder = Reminder.from_document(_load(r["reminder_doc"]))
            customer = _load(r["customer_doc"]) if r["customer_doc"] else {}
            views.append(ReminderView(
                reminder=reminder,
                customer_name=customer.get("name") or UNKNOWN_CUSTOMER,
                customer_email=customer.get("email") or "",
            ))
        return views


# ---------------------------------------------------------------------------
# SettingsStore -- one ProviderSettings per owner
# ---------------------------------------------------------------------------

class SettingsStore:
    """Upserting store for per-owner provider settings."""

    def __init__(self, store: DocumentStore):
        self.store = store

    def get(self, owner_id: str) -> ProviderSettings | None:
        conn = self.store._get_conn()
        try:
            row = conn.execute(
                "SELECT doc FROM api_settings WHERE owner_id = ?", (owner_id,),
            ).fetchone()
        finally:
            conn.close()
        if row is None:
            return None
        return ProviderSettings.from_document(_load(row["doc"]))

    def save(self, owner_id: str, settings: ProviderSettings) -> ProviderSettings:
        """Update the owner's record if one exists, else insert it."""
        now = utc_now()
        conn = self.store._get_conn()
        try:
            existing = conn.execute(
                "SELECT id, created_at FROM api_settings WHERE owner_id = ?", (owner_id,),
            ).fetchone()

            if existing is not None:
                saved = dataclasses.replace(
                    settings,
                    id=existing["id"],
                    owner_id=owner_id,
                    created_at=datetime.fromisoformat(existing["created_at"]),
                    updated_at=now,
                )
                conn.execute(
                    "UPDATE api_settings SET updated_at = ?, doc = ? WHERE id = ?",
                    (now.isoformat(), _dump(saved.to_document()), saved.id),
                )
                action = "Updated"
            else:
                saved = dataclasses.replace(
                    settings,
                    id=settings.id or str(uuid.uuid4()),
                    owner_id=owner_id,
                    created_at=now,
                    updated_at=now,
                )
                conn.execute(
                    """INSERT INTO api_settings (id, owner_id, created_at, updated_at, doc)
                       VALUES (?, ?, ?, ?, ?)""",
                    (saved.id, owner_id, now.isoformat(), now.isoformat(),
                     _dump(saved.to_document())),
                )
                action = "Created"
            conn.commit()
        finally:
            conn.close()

        masked = saved.masked()
        logger.info(
            "%s provider settings for owner %s (openai=%s resend=%s twilio=%s)",
            action, owner_id,
            masked["openai_api_key"] or "-", masked["resend_api_key"] or "-",
            masked["twilio_auth_token"] or "-",
        )
        return saved


# ---------------------------------------------------------------------------
# Repository -- the facade the service layer uses
# ---------------------------------------------------------------------------

class Repository:
    """All collections over one database file."""

    def __init__(self, db_path: Optional[str | Path] = None):
        self.store = DocumentStore(db_path)
        self.customers = CustomerRepository(self.store)
        self.reminders = ReminderRepository(self.store)
        self.settings = SettingsStore(self.store)

    @property
    def db_path(self) -> Path:
        return self.store.db_path
