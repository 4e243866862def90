"""Batch task protocol, registry and the task implementations."""

from payment_batch.tasks.base import BatchItemInput, BatchTask, BatchTaskResult, TaskRegistry
from payment_batch.tasks.file_tasks import PruneRequisitesFilesTask
from payment_batch.tasks.rule_tasks import RunDueRulesTask

__all__ = [
    "BatchItemInput",
    "BatchTask",
    "BatchTaskResult",
    "PruneRequisitesFilesTask",
    "RunDueRulesTask",
    "TaskRegistry",
]
