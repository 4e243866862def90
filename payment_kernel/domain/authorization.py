"""
Request approval state machine and role-gated authorization.

Responsibility:
    Pure decisions about who may view, edit and flip the status of a
    payment request, and the normalization that keeps the status flags
    consistent.

Architecture position:
    Kernel > Domain -- pure functions over a closed set of roles.  No ORM,
    no I/O.  ``RequestWorkflowService`` and ``RecurrenceRuleService`` call
    these before touching storage.

States:

    draft (ready=F, paid=F) --> ready (ready=T, paid=F) --> paid (ready=T, paid=T)

    Any state can be reached from any other by an actor allowed to change
    status; normalization guarantees ``paid => ready`` after every write.

Role matrix:

    Role        | view          | edit                      | change status
    ------------|---------------|---------------------------|--------------
    ADMIN       | always        | always                    | always
    ACCOUNTANT  | always        | unless paid               | unless paid
    USER        | participant   | draft and participant     | never
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from uuid import UUID


class Role(str, Enum):
    """Closed set of actor roles."""

    USER = "user"
    ACCOUNTANT = "accountant"
    ADMIN = "admin"


class RequestState(str, Enum):
    """Derived workflow state of a payment request."""

    DRAFT = "draft"
    READY = "ready"
    PAID = "paid"

    @classmethod
    def from_flags(cls, ready_for_payment: bool, paid: bool) -> RequestState:
        if paid:
            return cls.PAID
        if ready_for_payment:
            return cls.READY
        return cls.DRAFT


@dataclass(frozen=True)
class Actor:
    """The authenticated principal performing an operation."""

    actor_id: UUID
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN


def normalize_status(ready_for_payment: bool, paid: bool) -> tuple[bool, bool]:
    """Return ``(ready, paid)`` with ``paid => ready`` restored.

    Not ready forces not paid; paid forces ready.  Applied in that order,
    so a write of ``(False, True)`` normalizes to ``(False, False)``.
    """
    if not ready_for_payment:
        paid = False
    if paid:
        ready_for_payment = True
    return ready_for_payment, paid


def can_view(role: Role, is_participant: bool) -> bool:
    if role in (Role.ADMIN, Role.ACCOUNTANT):
        return True
    return is_participant


def can_edit(role: Role, state: RequestState, is_participant: bool = False) -> bool:
    """Whether ``role`` may edit a request currently in ``state``."""
    if role is Role.ADMIN:
        return True
    if state is RequestState.PAID:
        return False
    if role is Role.ACCOUNTANT:
        return True
    return state is RequestState.DRAFT and is_participant


def can_change_status(role: Role, state: RequestState) -> bool:
    """Whether ``role`` may change ready/paid on a request in ``state``."""
    if role is Role.ADMIN:
        return True
    if role is Role.ACCOUNTANT:
        return state is not RequestState.PAID
    return False


def can_set_commission(role: Role) -> bool:
    return role is not Role.USER


def can_manage_rule(actor: Actor, owner_id: UUID) -> bool:
    """Rules are edited or deleted by their owner or an admin."""
    return actor.is_admin or actor.actor_id == owner_id
