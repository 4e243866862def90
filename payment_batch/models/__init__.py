"""Batch ORM models.  Importing this package registers their tables."""

from payment_batch.models.batch import BatchJobModel, JobLockModel

__all__ = ["BatchJobModel", "JobLockModel"]
