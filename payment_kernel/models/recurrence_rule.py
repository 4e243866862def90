"""
Module: payment_kernel.models.recurrence_rule
Responsibility: ORM persistence for recurrence rules -- the definition of
    when a payment request is generated, its payload template, and the
    rule's scheduling state.
Architecture position: Kernel > Models.  May import from db/ and the pure
    domain recurrence types.

Invariants enforced:
    - A non-null next_due_at is always the value computed by the recurrence
      calculator at the last create, edit or execution of the rule.  Only
      ``apply_schedule`` writes the scheduling fields.
    - A ``once`` rule without a next occurrence is inactive.
"""

from datetime import date, datetime, time
from decimal import Decimal
from uuid import UUID

from sqlalchemy import JSON, Boolean, Date, ForeignKey, Index, Integer, String, Text, Time
from sqlalchemy.orm import Mapped, mapped_column, relationship

from payment_kernel.db.base import TrackedBase, UUIDString
from payment_kernel.db.types import Money
from payment_kernel.domain.recurrence import (
    DEFAULT_TIMEZONE,
    RuleDefinition,
    SchedulingState,
)
from payment_kernel.models.reference import User


class RecurrenceRule(TrackedBase):
    """
    A recurring payment-request template.

    Guarantees:
        - ``to_definition()`` / ``scheduling_state()`` produce immutable
          snapshots for the pure recurrence functions.
        - ``apply_schedule()`` is the single write path for
          next_due_at / last_executed_at / is_active.
    """

    __tablename__ = "recurrence_rules"

    __table_args__ = (
        Index("ix_recurrence_rules_due", "is_active", "next_due_at"),
        Index("ix_recurrence_rules_owner", "owner_id"),
    )

    owner_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("users.id"), nullable=False,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    # Payload template
    expense_type_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("expense_types.id"), nullable=False,
    )
    expense_category_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("expense_categories.id"), nullable=False,
    )
    requisites: Mapped[str | None] = mapped_column(Text, nullable=True)
    requisites_file_url: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    amount: Mapped[Money] = mapped_column(nullable=False)
    ready_for_payment: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Definition
    frequency: Mapped[str] = mapped_column(String(20), nullable=False)
    interval_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    days_of_week: Mapped[list | None] = mapped_column(JSON, nullable=True)
    day_of_month: Mapped[int | None] = mapped_column(Integer, nullable=True)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    run_at: Mapped[time] = mapped_column(Time, nullable=False)
    timezone: Mapped[str] = mapped_column(String(64), nullable=False, default=DEFAULT_TIMEZONE)

    # Scheduling state
    next_due_at: Mapped[datetime | None] = mapped_column(nullable=True)
    last_executed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    owner: Mapped[User] = relationship()

    def to_definition(self) -> RuleDefinition:
        return RuleDefinition(
            frequency=self.frequency,
            start_date=self.start_date,
            run_at=self.run_at,
            timezone=self.timezone or DEFAULT_TIMEZONE,
            interval_days=self.interval_days,
            days_of_week=frozenset(int(d) for d in (self.days_of_week or ())),
            day_of_month=self.day_of_month,
        )

    def scheduling_state(self) -> SchedulingState:
        return SchedulingState(
            next_due_at=self.next_due_at,
            last_executed_at=self.last_executed_at,
            is_active=self.is_active,
        )

    def apply_schedule(self, state: SchedulingState) -> None:
        self.next_due_at = state.next_due_at
        self.last_executed_at = state.last_executed_at
        self.is_active = state.is_active

    def is_due(self, now: datetime) -> bool:
        return (
            self.is_active
            and self.next_due_at is not None
            and self.next_due_at <= now
        )

    def __repr__(self) -> str:
        return f"<RecurrenceRule {self.name} {self.frequency} next={self.next_due_at}>"
