"""
RequestWorkflowService -- role-gated create and edit of payment requests.

Responsibility:
    Applies human edits to payment requests: validation, status
    normalization, authorization, field-level diffing, participant
    tracking, and exactly one history record per effective change.

Architecture position:
    Kernel > Services -- imperative shell around the pure decisions in
    ``domain/authorization.py``.

Invariants enforced:
    - paid => ready_for_payment after every write (normalize_status runs
      before authorization, so authorization sees the normalized target).
    - A rejected edit writes nothing: validation and authorization both run
      before the first attribute assignment.
    - No effective change => no history record and no new participant.
    - The replaced reference file is deleted only after the transaction
      commits.

Failure modes:
    - PaymentRequestNotFoundError / ActorNotFoundError for unknown ids.
    - ValidationError for bad input.
    - EditNotAllowedError / StatusChangeNotAllowedError / AuthorizationError.
"""

from __future__ import annotations

from typing import Any, Mapping
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from payment_kernel.domain.authorization import (
    Actor,
    RequestState,
    can_change_status,
    can_edit,
    can_set_commission,
    can_view,
    normalize_status,
)
from payment_kernel.domain.clock import Clock, SystemClock
from payment_kernel.exceptions import (
    ActorNotFoundError,
    AuthorizationError,
    EditNotAllowedError,
    PaymentRequestNotFoundError,
    StatusChangeNotAllowedError,
    ValidationError,
)
from payment_kernel.logging_config import LogContext, get_logger
from payment_kernel.models.audit_record import AuditAction, AuditEntityType, AuditRecord
from payment_kernel.models.payment_request import PaymentRequest
from payment_kernel.models.reference import User
from payment_kernel.services.blob_store import BlobStore, delete_after_commit
from payment_kernel.services.history_service import HistoryService
from payment_kernel.services.validation import validate_request_fields

logger = get_logger("services.request_workflow")

EDITABLE_FIELDS: tuple[str, ...] = (
    "expense_type_id",
    "expense_category_id",
    "requisites",
    "requisites_file_url",
    "amount",
    "commission",
    "purchase_reference",
    "ready_for_payment",
    "paid",
    "paid_account_id",
    "receipt_url",
)

_STATUS_FIELDS = ("ready_for_payment", "paid")


class RequestWorkflowService:
    """
    Create, read and edit payment requests on behalf of an actor.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
        - Does NOT resolve ids to display labels.
    """

    def __init__(
        self,
        session: Session,
        blob_store: BlobStore,
        clock: Clock | None = None,
        history_service: HistoryService | None = None,
    ):
        self._session = session
        self._blob_store = blob_store
        self._clock = clock or SystemClock()
        self._history = history_service or HistoryService(session, self._clock)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_request(self, actor: Actor, request_id: UUID) -> PaymentRequest:
        request = self._session.get(PaymentRequest, request_id)
        if request is None:
            raise PaymentRequestNotFoundError(str(request_id))
        if not can_view(actor.role, request.has_participant(actor.actor_id)):
            raise AuthorizationError(
                str(actor.actor_id), f"view payment request {request_id}",
            )
        return request

    # -------------------------------------------------------------------------
    # Create
    # -------------------------------------------------------------------------

    def create_request(self, actor: Actor, fields: Mapping[str, Any]) -> PaymentRequest:
        """Create a request authored by ``actor``.

        A user's commission is discarded.  Presetting ready/paid requires
        the right to change status of a draft.
        """
        _reject_unknown_fields(fields)
        values = validate_request_fields(self._session, fields)
        if not can_set_commission(actor.role):
            values["commission"] = None
        ready, paid = normalize_status(values["ready_for_payment"], values["paid"])
        if (ready or paid) and not can_change_status(actor.role, RequestState.DRAFT):
            raise StatusChangeNotAllowedError(
                str(actor.actor_id), None, actor.role.value, RequestState.DRAFT.value,
            )
        values["ready_for_payment"], values["paid"] = ready, paid

        creator = self._load_user(actor.actor_id)
        request = self.create_for_owner(creator, values)

        logger.info(
            "payment_request_created",
            extra={"request_id": str(request.id), "actor_id": str(actor.actor_id)},
        )
        return request

    def create_for_owner(self, owner: User, values: Mapping[str, Any]) -> PaymentRequest:
        """
        Persist a request for ``owner`` from already validated values and
        write its ``created`` record.  No authorization: used for
        system-generated requests and after ``create_request`` checks.
        """
        now = self._clock.now()
        ready, paid = normalize_status(
            bool(values.get("ready_for_payment")), bool(values.get("paid")),
        )
        request = PaymentRequest(
            created_by_id=owner.id,
            expense_type_id=values["expense_type_id"],
            expense_category_id=values["expense_category_id"],
            requisites=values.get("requisites"),
            requisites_file_url=values.get("requisites_file_url"),
            requisites_file_uploaded_at=now if values.get("requisites_file_url") else None,
            amount=values["amount"],
            commission=values.get("commission"),
            purchase_reference=values.get("purchase_reference"),
            ready_for_payment=ready,
            paid=paid,
            paid_account_id=values.get("paid_account_id"),
            receipt_url=values.get("receipt_url"),
        )
        request.participants.append(owner)
        self._session.add(request)
        self._session.flush()

        self._history.record_created(
            AuditEntityType.PAYMENT_REQUEST,
            request.id,
            owner.id,
            request.audited_values(),
        )
        return request

    # -------------------------------------------------------------------------
    # Update
    # -------------------------------------------------------------------------

    def update_request(
        self,
        actor: Actor,
        request_id: UUID,
        changes: Mapping[str, Any],
    ) -> AuditRecord | None:
        """
        Apply ``changes`` to a request on behalf of ``actor``.

        Returns:
            The history record written, or None when nothing changed.
        """
        _reject_unknown_fields(changes)
        request = self._session.execute(
            select(PaymentRequest)
            .where(PaymentRequest.id == request_id)
            .with_for_update()
        ).scalar_one_or_none()
        if request is None:
            raise PaymentRequestNotFoundError(str(request_id))

        with LogContext.bind(request_id=request_id, actor_id=actor.actor_id):
            current = {name: getattr(request, name) for name in EDITABLE_FIELDS}
            values = validate_request_fields(self._session, {**current, **changes})

            if not can_set_commission(actor.role):
                values["commission"] = request.commission
            values["ready_for_payment"], values["paid"] = normalize_status(
                values["ready_for_payment"], values["paid"],
            )

            state = request.state
            if not can_edit(actor.role, state, request.has_participant(actor.actor_id)):
                logger.info(
                    "payment_request_edit_denied",
                    extra={"role": actor.role.value, "state": state.value},
                )
                raise EditNotAllowedError(
                    str(actor.actor_id), str(request_id), actor.role.value, state.value,
                )

            status_changed = any(values[f] != current[f] for f in _STATUS_FIELDS)
            if status_changed and not can_change_status(actor.role, state):
                logger.info(
                    "payment_request_status_change_denied",
                    extra={"role": actor.role.value, "state": state.value},
                )
                raise StatusChangeNotAllowedError(
                    str(actor.actor_id), str(request_id), actor.role.value, state.value,
                )

            editor = self._load_user(actor.actor_id)
            before = request.audited_values()
            old_file_url = request.requisites_file_url

            for name in EDITABLE_FIELDS:
                setattr(request, name, values[name])
            if request.requisites_file_url != old_file_url:
                request.requisites_file_uploaded_at = (
                    self._clock.now() if request.requisites_file_url else None
                )
                self._forget_file(old_file_url)

            after = request.audited_values()
            action = (
                AuditAction.STATUS_CHANGED
                if any(before[f] != after[f] for f in _STATUS_FIELDS)
                else AuditAction.UPDATED
            )
            record = self._history.record_changes(
                AuditEntityType.PAYMENT_REQUEST,
                request.id,
                actor.actor_id,
                action,
                before,
                after,
            )
            if record is None:
                logger.debug("payment_request_unchanged")
                return None

            request.add_participant(editor)
            self._session.flush()
            logger.info(
                "payment_request_updated",
                extra={"action": action.value, "fields": list(record.changed_fields)},
            )
            return record

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------

    def _load_user(self, user_id: UUID) -> User:
        user = self._session.get(User, user_id)
        if user is None:
            raise ActorNotFoundError(str(user_id))
        return user

    def _forget_file(self, url: str | None) -> None:
        path = self._blob_store.path_from_url(url)
        if path is not None:
            delete_after_commit(self._session, self._blob_store, path)


def _reject_unknown_fields(fields: Mapping[str, Any]) -> None:
    unknown = sorted(set(fields) - set(EDITABLE_FIELDS))
    if unknown:
        raise ValidationError({name: "is not an editable field" for name in unknown})
