"""
Module: payment_kernel.models.rule_log
Responsibility: User-facing execution log of recurrence rules (one row per
    run outcome or degraded step).  Deleted together with the rule.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from payment_kernel.db.base import Base, UUIDString


class RuleLogLevel(str, Enum):
    INFO = "info"
    ERROR = "error"


class RuleLogEntry(Base):
    __tablename__ = "rule_logs"

    __table_args__ = (
        Index("ix_rule_logs_rule_created", "rule_id", "created_at"),
    )

    rule_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("recurrence_rules.id", ondelete="CASCADE"),
        nullable=False,
    )
    level: Mapped[str] = mapped_column(String(10), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    context: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
