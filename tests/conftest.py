"""
Pytest fixtures for the payment kernel test suite.

Provides:
- In-memory SQLite engine and sessions (no server required)
- DeterministicClock
- An in-memory blob store double
- Reference data: one user per role, an expense type/category, an account
- Structured log capture

The engine uses StaticPool, so every session shares one connection.  Tests
that drive JobRunner or the orchestrator commit their setup first and read
results through fresh sessions.
"""

import json
import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from decimal import Decimal
from io import StringIO
from typing import Any

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

import payment_batch.models  # noqa: F401  (registers batch tables)
from payment_kernel.db.base import Base
from payment_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from payment_kernel.domain.authorization import Role
from payment_kernel.domain.clock import DeterministicClock
from payment_kernel.exceptions import BlobNotFoundError
from payment_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from payment_kernel.models import import_all_models
from payment_kernel.models.payment_request import PaymentRequest
from payment_kernel.models.recurrence_rule import RecurrenceRule
from payment_kernel.models.reference import ExpenseCategory, ExpenseType, PaymentAccount, User
from payment_kernel.services.blob_store import resolve_path

KYIV = "Europe/Kyiv"


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture payment_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, workflow):
            workflow.update_request(...)
            logs = captured_logs()
            assert any(r["message"] == "payment_request_updated" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("payment_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Database fixtures
# =============================================================================


def _enable_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


@pytest.fixture
def engine():
    import_all_models()
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    event.listen(eng, "connect", _enable_foreign_keys)
    Base.metadata.create_all(eng)
    register_immutability_listeners()
    yield eng
    unregister_immutability_listeners()
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture
def session(session_factory):
    s = session_factory()
    yield s
    s.rollback()
    s.close()


@pytest.fixture
def clock():
    return DeterministicClock(datetime(2026, 2, 10, 7, 10, tzinfo=timezone.utc))


# =============================================================================
# Blob store double
# =============================================================================


class InMemoryBlobStore:
    """BlobStore double keeping file contents in a dict."""

    def __init__(self, base_url: str = "/storage", files: dict[str, bytes] | None = None):
        self.base_url = base_url
        self.files: dict[str, bytes] = dict(files or {})
        self.deleted: list[str] = []
        self.fail_copy = False

    def exists(self, path: str) -> bool:
        return path in self.files

    def copy(self, source: str, destination: str) -> None:
        if source not in self.files:
            raise BlobNotFoundError(source)
        if self.fail_copy:
            from payment_kernel.exceptions import BlobStoreError

            raise BlobStoreError(destination, "disk full")
        self.files[destination] = self.files[source]

    def delete(self, path: str) -> None:
        self.files.pop(path, None)
        self.deleted.append(path)

    def url_of(self, path: str) -> str:
        return f"{self.base_url}/{path}"

    def path_from_url(self, url: str | None) -> str | None:
        return resolve_path(url, self.base_url)


@pytest.fixture
def blob_store():
    return InMemoryBlobStore()


# =============================================================================
# Reference data
# =============================================================================


@dataclass
class ReferenceData:
    user: User
    other_user: User
    accountant: User
    admin: User
    expense_type: ExpenseType
    category: ExpenseCategory
    other_type: ExpenseType
    other_category: ExpenseCategory
    account: PaymentAccount


@pytest.fixture
def refs(session) -> ReferenceData:
    def _user(name: str, role: Role) -> User:
        u = User(name=name, email=f"{name}@example.com", role=role.value)
        session.add(u)
        return u

    expense_type = ExpenseType(name="Office")
    other_type = ExpenseType(name="Travel")
    session.add_all([expense_type, other_type])
    session.flush()
    category = ExpenseCategory(name="Supplies", expense_type_id=expense_type.id)
    other_category = ExpenseCategory(name="Tickets", expense_type_id=other_type.id)
    account = PaymentAccount(name="Main account")
    session.add_all([category, other_category, account])

    data = ReferenceData(
        user=_user("olena", Role.USER),
        other_user=_user("taras", Role.USER),
        accountant=_user("iryna", Role.ACCOUNTANT),
        admin=_user("admin", Role.ADMIN),
        expense_type=expense_type,
        category=category,
        other_type=other_type,
        other_category=other_category,
        account=account,
    )
    session.commit()
    return data


@pytest.fixture
def make_request(session, refs):
    """Persist a request created by ``owner`` (default: the plain user)."""

    def _make(owner: User | None = None, **overrides: Any) -> PaymentRequest:
        owner = owner or refs.user
        values: dict[str, Any] = {
            "created_by_id": owner.id,
            "expense_type_id": refs.expense_type.id,
            "expense_category_id": refs.category.id,
            "amount": Decimal("100.00"),
            "ready_for_payment": False,
            "paid": False,
        }
        values.update(overrides)
        request = PaymentRequest(**values)
        request.participants.append(owner)
        session.add(request)
        session.commit()
        return request

    return _make


@pytest.fixture
def make_rule(session, refs):
    """Persist a rule owned by ``owner`` with explicit scheduling state."""

    def _make(owner: User | None = None, **overrides: Any) -> RecurrenceRule:
        owner = owner or refs.user
        values: dict[str, Any] = {
            "owner_id": owner.id,
            "name": "Monthly rent",
            "expense_type_id": refs.expense_type.id,
            "expense_category_id": refs.category.id,
            "amount": Decimal("1500.00"),
            "ready_for_payment": False,
            "frequency": "daily",
            "start_date": date(2026, 2, 1),
            "run_at": time(9, 0),
            "timezone": KYIV,
            "next_due_at": datetime(2026, 2, 10, 7, 0, tzinfo=timezone.utc),
            "is_active": True,
        }
        values.update(overrides)
        rule = RecurrenceRule(**values)
        session.add(rule)
        session.commit()
        return rule

    return _make
