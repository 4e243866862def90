"""ORM models for the payment kernel."""

from payment_kernel.models.audit_record import AuditAction, AuditEntityType, AuditRecord
from payment_kernel.models.payment_request import (
    AUDITED_FIELDS,
    PaymentRequest,
    payment_request_participants,
)
from payment_kernel.models.recurrence_rule import RecurrenceRule
from payment_kernel.models.reference import ExpenseCategory, ExpenseType, PaymentAccount, User
from payment_kernel.models.rule_log import RuleLogEntry, RuleLogLevel


def import_all_models() -> None:
    """Import every kernel module that registers tables on Base.metadata.

    Batch tables live in ``payment_batch.models``; importing that package
    before ``create_tables()`` adds them to the same metadata.
    """
    import payment_kernel.services.sequence_service  # noqa: F401


__all__ = [
    "AUDITED_FIELDS",
    "AuditAction",
    "AuditEntityType",
    "AuditRecord",
    "ExpenseCategory",
    "ExpenseType",
    "PaymentAccount",
    "PaymentRequest",
    "RecurrenceRule",
    "RuleLogEntry",
    "RuleLogLevel",
    "User",
    "import_all_models",
    "payment_request_participants",
]
