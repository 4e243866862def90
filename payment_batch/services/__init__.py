from payment_batch.services.executor import BatchExecutor
from payment_batch.services.job_guard import JobGuard
from payment_batch.services.job_runner import JobRunner
from payment_batch.services.scheduler import BatchScheduler

__all__ = ["BatchExecutor", "BatchScheduler", "JobGuard", "JobRunner"]
