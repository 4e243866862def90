"""
Pure domain layer.

Data transfer objects and decision logic with NO dependencies on the ORM,
the database, ambient time or I/O.  All domain objects are immutable and
deterministic.
"""

from payment_kernel.domain.authorization import (
    Actor,
    RequestState,
    Role,
    can_change_status,
    can_edit,
    can_manage_rule,
    can_set_commission,
    can_view,
    normalize_status,
)
from payment_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from payment_kernel.domain.recurrence import (
    RecurrenceFrequency,
    RuleDefinition,
    SchedulingState,
    advance_schedule,
    compute_next,
    initial_schedule,
    reschedule,
)

__all__ = [
    "Actor",
    "Clock",
    "DeterministicClock",
    "RecurrenceFrequency",
    "RequestState",
    "Role",
    "RuleDefinition",
    "SchedulingState",
    "SystemClock",
    "advance_schedule",
    "can_change_status",
    "can_edit",
    "can_manage_rule",
    "can_set_commission",
    "can_view",
    "compute_next",
    "initial_schedule",
    "normalize_status",
    "reschedule",
]
