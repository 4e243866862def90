"""
ORM models for batch bookkeeping.

Contract:
    BatchJobModel records one run of a named job with its item counters.
    JobLockModel is the storage-level non-overlap guard: at most one row per
    job name, held by one holder until released or expired.

Architecture: payment_batch/models.  Imports from payment_kernel.db.base only.

Invariants enforced:
    - ``job_locks.job_name`` is UNIQUE: two concurrent inserts for the same
      job cannot both succeed.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from payment_kernel.db.base import Base, TrackedBase


class BatchJobModel(TrackedBase):
    """Persistent record of one job run."""

    __tablename__ = "batch_jobs"

    __table_args__ = (
        Index("ix_batch_jobs_job_name", "job_name"),
        Index("ix_batch_jobs_status", "status"),
    )

    job_name: Mapped[str] = mapped_column(String(200), nullable=False)
    task_type: Mapped[str] = mapped_column(String(200), nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False)
    parameters: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    total_items: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    succeeded_items: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    failed_items: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    skipped_items: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    started_at: Mapped[datetime | None] = mapped_column(nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    correlation_id: Mapped[str | None] = mapped_column(String(200), nullable=True)
    error_summary: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<BatchJob {self.job_name} {self.status}>"


class JobLockModel(Base):
    """A held job lock.  Deleted on release; taken over once expired."""

    __tablename__ = "job_locks"

    job_name: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    holder_id: Mapped[str] = mapped_column(String(64), nullable=False)
    acquired_at: Mapped[datetime] = mapped_column(nullable=False)
    expires_at: Mapped[datetime] = mapped_column(nullable=False)

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now

    def __repr__(self) -> str:
        return f"<JobLock {self.job_name} held by {self.holder_id}>"
