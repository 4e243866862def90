"""
Module: payment_kernel.models.audit_record
Responsibility: ORM persistence for the field-level change history of
    payment requests and recurrence rules.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Append-only: no UPDATE or DELETE (ORM listeners in db/immutability.py).
    - seq is strictly increasing, allocated by SequenceService.
    - One record per logical change; ``changed_fields`` maps each changed
      field to ``{"old": ..., "new": ...}``.

Failure modes:
    - ImmutabilityViolationError on any UPDATE/DELETE attempt.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from payment_kernel.db.base import Base, UUIDString


class AuditAction(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    STATUS_CHANGED = "status_changed"
    REQUISITES_FILE_PRUNED = "requisites_file_pruned"


class AuditEntityType(str, Enum):
    PAYMENT_REQUEST = "payment_request"
    RECURRENCE_RULE = "recurrence_rule"


class AuditRecord(Base):
    """
    One change to one entity.

    Non-goals:
        - Does not resolve ids to labels; consumers do that at read time.
    """

    __tablename__ = "audit_records"

    __table_args__ = (
        Index("ix_audit_records_entity", "entity_type", "entity_id"),
        Index("ix_audit_records_created", "created_at"),
    )

    seq: Mapped[int] = mapped_column(Integer, nullable=False, unique=True)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    changed_fields: Mapped[dict] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return f"<AuditRecord #{self.seq} {self.entity_type}:{self.entity_id} {self.action}>"
