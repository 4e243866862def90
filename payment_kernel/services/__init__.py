"""
Kernel services -- the imperative shell.

Services flush but never commit; the caller owns the transaction.
"""

from payment_kernel.services.blob_store import BlobStore, LocalBlobStore, resolve_path
from payment_kernel.services.history_service import HistoryService
from payment_kernel.services.request_workflow import RequestWorkflowService
from payment_kernel.services.rule_log_service import RuleLogService
from payment_kernel.services.rule_service import RecurrenceRuleService
from payment_kernel.services.sequence_service import SequenceService

__all__ = [
    "BlobStore",
    "HistoryService",
    "LocalBlobStore",
    "RecurrenceRuleService",
    "RequestWorkflowService",
    "RuleLogService",
    "SequenceService",
    "resolve_path",
]
