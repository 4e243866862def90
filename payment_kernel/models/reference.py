"""
Module: payment_kernel.models.reference
Responsibility: Reference data consumed by the workflow -- users with their
    role, expense types and categories, and payment accounts.
Architecture position: Kernel > Models.  May import from db/base.py only.

Maintenance of these rows (CRUD screens) lives outside this package; the
models exist so that requests and rules can be validated against them and
so that pruning can resolve a history actor.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from payment_kernel.db.base import TrackedBase, UUIDString
from payment_kernel.domain.authorization import Actor, Role


class User(TrackedBase):
    """An actor that can own rules, create requests and appear in history."""

    __tablename__ = "users"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True, unique=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default=Role.USER.value)
    blocked_at: Mapped[datetime | None] = mapped_column(nullable=True)

    @property
    def is_blocked(self) -> bool:
        return self.blocked_at is not None

    def as_actor(self) -> Actor:
        return Actor(actor_id=self.id, role=Role(self.role))

    def __repr__(self) -> str:
        return f"<User {self.name} ({self.role})>"


class ExpenseType(TrackedBase):
    __tablename__ = "expense_types"

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    categories: Mapped[list["ExpenseCategory"]] = relationship(
        back_populates="expense_type",
    )


class ExpenseCategory(TrackedBase):
    """A category always belongs to exactly one expense type."""

    __tablename__ = "expense_categories"

    __table_args__ = (
        Index("ix_expense_categories_type", "expense_type_id"),
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    expense_type_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("expense_types.id"),
        nullable=False,
    )

    expense_type: Mapped[ExpenseType] = relationship(back_populates="categories")


class PaymentAccount(TrackedBase):
    """Account a request is paid from."""

    __tablename__ = "payment_accounts"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
