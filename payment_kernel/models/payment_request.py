"""
Module: payment_kernel.models.payment_request
Responsibility: ORM persistence for payment requests and their participants.
Architecture position: Kernel > Models.

Invariants enforced:
    - paid => ready_for_payment.  Every write path goes through
      ``authorization.normalize_status`` before assigning the flags.
    - The creator is always a participant; participants are only added,
      never removed.
    - Requests are never hard-deleted by this package.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, Column, ForeignKey, Index, String, Table, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from payment_kernel.db.base import Base, TrackedBase, UUIDString
from payment_kernel.db.types import Money
from payment_kernel.domain.authorization import RequestState
from payment_kernel.models.reference import User

payment_request_participants = Table(
    "payment_request_participants",
    Base.metadata,
    Column(
        "payment_request_id",
        UUIDString(),
        ForeignKey("payment_requests.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Column(
        "user_id",
        UUIDString(),
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True,
    ),
)

# Fields whose old/new values are tracked in the change history.  Order is
# the order of ``changed_fields`` in audit records.
AUDITED_FIELDS: tuple[str, ...] = (
    "created_by_id",
    "expense_type_id",
    "expense_category_id",
    "requisites",
    "requisites_file_url",
    "amount",
    "commission",
    "purchase_reference",
    "ready_for_payment",
    "paid",
    "paid_account_id",
    "receipt_url",
)


class PaymentRequest(TrackedBase):
    """A request to pay an amount against an expense category."""

    __tablename__ = "payment_requests"

    __table_args__ = (
        Index("ix_payment_requests_status", "ready_for_payment", "paid"),
        Index("ix_payment_requests_file_uploaded", "requisites_file_uploaded_at"),
    )

    created_by_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("users.id"), nullable=False,
    )

    expense_type_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("expense_types.id"), nullable=False,
    )
    expense_category_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("expense_categories.id"), nullable=False,
    )

    amount: Mapped[Money] = mapped_column(nullable=False)
    commission: Mapped[Decimal | None] = mapped_column(nullable=True)
    requisites: Mapped[str | None] = mapped_column(Text, nullable=True)
    requisites_file_url: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    requisites_file_uploaded_at: Mapped[datetime | None] = mapped_column(nullable=True)
    purchase_reference: Mapped[str | None] = mapped_column(String(255), nullable=True)

    ready_for_payment: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    paid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    paid_account_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("payment_accounts.id"), nullable=True,
    )
    receipt_url: Mapped[str | None] = mapped_column(String(2048), nullable=True)

    creator: Mapped[User] = relationship(foreign_keys=[created_by_id])
    participants: Mapped[list[User]] = relationship(
        secondary=payment_request_participants,
        lazy="selectin",
    )

    @property
    def state(self) -> RequestState:
        return RequestState.from_flags(self.ready_for_payment, self.paid)

    def has_participant(self, user_id: UUID) -> bool:
        return any(p.id == user_id for p in self.participants)

    def add_participant(self, user: User) -> None:
        if not self.has_participant(user.id):
            self.participants.append(user)

    def audited_values(self) -> dict:
        return {name: getattr(self, name) for name in AUDITED_FIELDS}

    def __repr__(self) -> str:
        return f"<PaymentRequest {self.id} {self.amount} {self.state.value}>"
