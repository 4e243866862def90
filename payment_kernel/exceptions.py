"""
Typed exception hierarchy for the payment kernel.

Every error has a class-level ``code`` (machine-readable, stable across
message wording changes) and stores its context as attributes so that the
structured log formatter and API layers can serialize it without parsing
messages.

    PaymentKernelError (base)
    |
    +-- ValidationError
    |
    +-- AuthorizationError
    |   +-- EditNotAllowedError
    |   +-- StatusChangeNotAllowedError
    |
    +-- NotFoundError
    |   +-- PaymentRequestNotFoundError
    |   +-- RecurrenceRuleNotFoundError
    |   +-- ActorNotFoundError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |
    +-- BlobStoreError
    |   +-- BlobNotFoundError
    |
    +-- BatchError
    |   +-- JobAlreadyRunningError
    |   +-- TaskNotRegisteredError
    |
    +-- ScheduleError
    |   +-- InvalidCronExpressionError
    |
    +-- ConfigurationError

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Validation      | VALIDATION_FAILED           | Field-level input errors, before mutation
Authorization   | EDIT_NOT_ALLOWED            | Role/state/participation forbids the edit
                | STATUS_CHANGE_NOT_ALLOWED   | Role may edit but not flip ready/paid
                | NOT_AUTHORIZED              | Rule owner/admin check failed
Not found       | PAYMENT_REQUEST_NOT_FOUND   | Unknown request id
                | RECURRENCE_RULE_NOT_FOUND   | Unknown rule id
                | ACTOR_NOT_FOUND             | Unknown user id
Immutability    | IMMUTABILITY_VIOLATION      | UPDATE/DELETE of an audit record
Blob storage    | BLOB_NOT_FOUND              | Copy source missing
Batch           | JOB_ALREADY_RUNNING         | Overlapping trigger of the same job
                | TASK_NOT_REGISTERED         | Unknown task type
Schedule        | INVALID_CRON_EXPRESSION     | Malformed cron in configuration
Configuration   | CONFIGURATION_ERROR         | Bad settings file or env override
"""

from typing import Any, Mapping


class PaymentKernelError(Exception):
    """Base exception for all payment kernel errors."""

    code: str = "PAYMENT_KERNEL_ERROR"


# Validation


class ValidationError(PaymentKernelError):
    """One or more input fields are invalid.  Raised before any mutation."""

    code: str = "VALIDATION_FAILED"

    def __init__(self, errors: Mapping[str, str]):
        self.errors = dict(errors)
        details = "; ".join(f"{k}: {v}" for k, v in sorted(self.errors.items()))
        super().__init__(f"Validation failed: {details}")


# Authorization


class AuthorizationError(PaymentKernelError):
    """Actor is not permitted to perform the operation."""

    code: str = "NOT_AUTHORIZED"

    def __init__(self, actor_id: str, action: str, reason: str = ""):
        self.actor_id = actor_id
        self.action = action
        self.reason = reason
        message = f"Actor {actor_id} is not allowed to {action}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class EditNotAllowedError(AuthorizationError):
    """Role, request state or participation forbids editing the request."""

    code: str = "EDIT_NOT_ALLOWED"

    def __init__(self, actor_id: str, request_id: str, role: str, state: str):
        self.request_id = request_id
        self.role = role
        self.state = state
        super().__init__(
            actor_id,
            f"edit payment request {request_id}",
            f"role {role} cannot edit a {state} request",
        )


class StatusChangeNotAllowedError(AuthorizationError):
    """Actor may edit but may not change ready/paid flags."""

    code: str = "STATUS_CHANGE_NOT_ALLOWED"

    def __init__(self, actor_id: str, request_id: str | None, role: str, state: str):
        self.request_id = request_id
        self.role = role
        self.state = state
        super().__init__(
            actor_id,
            "change payment request status",
            f"role {role} cannot change status of a {state} request",
        )


# Not found


class NotFoundError(PaymentKernelError):
    """Base exception for missing entities."""

    code: str = "NOT_FOUND"


class PaymentRequestNotFoundError(NotFoundError):
    code: str = "PAYMENT_REQUEST_NOT_FOUND"

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"Payment request not found: {request_id}")


class RecurrenceRuleNotFoundError(NotFoundError):
    code: str = "RECURRENCE_RULE_NOT_FOUND"

    def __init__(self, rule_id: str):
        self.rule_id = rule_id
        super().__init__(f"Recurrence rule not found: {rule_id}")


class ActorNotFoundError(NotFoundError):
    code: str = "ACTOR_NOT_FOUND"

    def __init__(self, actor_id: str):
        self.actor_id = actor_id
        super().__init__(f"Actor not found: {actor_id}")


# Immutability


class ImmutabilityError(PaymentKernelError):
    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# Blob storage


class BlobStoreError(PaymentKernelError):
    code: str = "BLOB_STORE_ERROR"

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Blob store error for {path}: {reason}")


class BlobNotFoundError(BlobStoreError):
    code: str = "BLOB_NOT_FOUND"

    def __init__(self, path: str):
        super().__init__(path, "blob does not exist")


# Batch


class BatchError(PaymentKernelError):
    code: str = "BATCH_ERROR"


class JobAlreadyRunningError(BatchError):
    """Another run of the same job currently holds the job lock."""

    code: str = "JOB_ALREADY_RUNNING"

    def __init__(self, job_name: str, holder_id: str):
        self.job_name = job_name
        self.holder_id = holder_id
        super().__init__(
            f"Job '{job_name}' is already running (holder {holder_id})"
        )


class TaskNotRegisteredError(BatchError):
    code: str = "TASK_NOT_REGISTERED"

    def __init__(self, task_type: str, available: tuple[str, ...] = ()):
        self.task_type = task_type
        self.available = available
        super().__init__(
            f"No task registered for type '{task_type}'. "
            f"Available: {list(available)}"
        )


# Schedule


class ScheduleError(PaymentKernelError):
    code: str = "SCHEDULE_ERROR"


class InvalidCronExpressionError(ScheduleError):
    code: str = "INVALID_CRON_EXPRESSION"

    def __init__(self, expression: str, reason: str):
        self.expression = expression
        self.reason = reason
        super().__init__(f"Invalid cron expression '{expression}': {reason}")


# Configuration


class ConfigurationError(PaymentKernelError):
    code: str = "CONFIGURATION_ERROR"

    def __init__(self, key: str, reason: str, value: Any = None):
        self.key = key
        self.reason = reason
        self.value = value
        super().__init__(f"Invalid configuration for '{key}': {reason}")
