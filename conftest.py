"""Root conftest.py -- ensures `payment_reminder` is importable from tests
and keeps tests away from the real database."""

import sys
from pathlib import Path

import pytest

# Add the project root to sys.path so `from payment_reminder.models import ...` works.
PROJECT_ROOT = Path(__file__).resolve().parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))


@pytest.fixture(autouse=True)
def _isolated_storage(tmp_path, monkeypatch):
    """Point the default database at a per-test file."""
    monkeypatch.setenv("PAYMENT_REMINDER_DB", str(tmp_path / "default.db"))
