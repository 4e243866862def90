"""
Reference file retention: prune old requisites files from payment requests.

Contract:
    ``PruneRequisitesFilesTask`` ("files.prune_requisites") deletes the
    reference file of every request whose file was uploaded more than
    ``retention_days`` ago, clears the request's file fields and records a
    ``requisites_file_pruned`` history entry.

Invariants enforced:
    - ``retention_days <= 0`` disables pruning entirely.
    - The blob is deleted only after the run's transaction commits; a
      rolled-back run keeps both the request reference and the file.
    - A URL that does not resolve to a storage path is left alone and
      counted as SKIPPED.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from payment_kernel.domain.authorization import Role
from payment_kernel.domain.clock import Clock, SystemClock
from payment_kernel.logging_config import LogContext, get_logger
from payment_kernel.models.audit_record import AuditAction, AuditEntityType
from payment_kernel.models.payment_request import PaymentRequest
from payment_kernel.models.reference import User
from payment_kernel.services.blob_store import BlobStore, delete_after_commit
from payment_kernel.services.history_service import HistoryService

from payment_batch.domain.types import BatchItemStatus
from payment_batch.tasks.base import BatchItemInput, BatchTaskResult

logger = get_logger("batch.tasks.files")


class PruneRequisitesFilesTask:
    """Delete reference files past their retention period.

    ``parameters["retention_days"]`` overrides the configured retention for
    a single run.
    """

    def __init__(
        self,
        blob_store: BlobStore,
        clock: Clock | None = None,
        retention_days: int = 7,
        batch_size: int = 200,
        system_actor_id: UUID | None = None,
    ):
        self._blob_store = blob_store
        self._clock = clock or SystemClock()
        self._retention_days = retention_days
        self._batch_size = batch_size
        self._system_actor_id = system_actor_id

    @property
    def task_type(self) -> str:
        return "files.prune_requisites"

    @property
    def description(self) -> str:
        return "Delete requisites files older than the retention period"

    def _cutoff(self, parameters: dict[str, Any], as_of: datetime) -> datetime | None:
        days = int(parameters.get("retention_days", self._retention_days))
        if days <= 0:
            return None
        return as_of - timedelta(days=days)

    def prepare_items(
        self,
        parameters: dict[str, Any],
        session: Session,
        as_of: datetime,
    ) -> tuple[BatchItemInput, ...]:
        cutoff = self._cutoff(parameters, as_of)
        if cutoff is None:
            logger.info("requisites_pruning_disabled")
            return ()

        stmt = (
            select(PaymentRequest.id)
            .where(
                PaymentRequest.requisites_file_url.is_not(None),
                PaymentRequest.requisites_file_uploaded_at.is_not(None),
                PaymentRequest.requisites_file_uploaded_at <= cutoff,
            )
            .order_by(PaymentRequest.id)
        )

        items: list[BatchItemInput] = []
        offset = 0
        while True:
            ids = session.execute(stmt.offset(offset).limit(self._batch_size)).scalars().all()
            for request_id in ids:
                items.append(BatchItemInput(
                    item_index=len(items),
                    item_key=str(request_id),
                    payload={"request_id": str(request_id)},
                ))
            if len(ids) < self._batch_size:
                break
            offset += self._batch_size

        logger.info(
            "requisites_files_prepared",
            extra={"count": len(items), "cutoff": cutoff},
        )
        return tuple(items)

    def execute_item(
        self,
        item: BatchItemInput,
        parameters: dict[str, Any],
        session: Session,
        as_of: datetime,
    ) -> BatchTaskResult:
        request_id = UUID(item.payload["request_id"])
        cutoff = self._cutoff(parameters, as_of)
        request = session.execute(
            select(PaymentRequest)
            .where(PaymentRequest.id == request_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

        if (
            cutoff is None
            or request is None
            or request.requisites_file_url is None
            or request.requisites_file_uploaded_at is None
            or request.requisites_file_uploaded_at > cutoff
        ):
            return BatchTaskResult(
                status=BatchItemStatus.SKIPPED,
                result_data={"reason": "not_eligible"},
            )

        with LogContext.bind(request_id=request_id):
            old_url = request.requisites_file_url
            path = self._blob_store.path_from_url(old_url)
            if path is None:
                logger.warning("requisites_file_url_unresolvable", extra={"url": old_url})
                return BatchTaskResult(
                    status=BatchItemStatus.SKIPPED,
                    result_data={"reason": "unresolvable_url", "url": old_url},
                )

            actor = self._history_actor(session, request)
            request.requisites_file_url = None
            request.requisites_file_uploaded_at = None
            request.add_participant(actor)
            session.flush()

            HistoryService(session, self._clock).record(
                AuditEntityType.PAYMENT_REQUEST,
                request.id,
                actor.id,
                AuditAction.REQUISITES_FILE_PRUNED,
                {"requisites_file_url": {"old": old_url, "new": None}},
            )

            if self._blob_store.exists(path):
                delete_after_commit(session, self._blob_store, path)
            logger.info("requisites_file_pruned", extra={"path": path, "actor_id": str(actor.id)})

        return BatchTaskResult(
            status=BatchItemStatus.SUCCEEDED,
            result_data={"path": path},
        )

    def _history_actor(self, session: Session, request: PaymentRequest) -> User:
        """Configured system actor, else the first active admin, else the creator."""
        if self._system_actor_id is not None:
            actor = session.get(User, self._system_actor_id)
            if actor is not None:
                return actor
            logger.warning(
                "system_actor_not_found",
                extra={"system_actor_id": str(self._system_actor_id)},
            )

        admin = session.execute(
            select(User)
            .where(User.role == Role.ADMIN.value, User.blocked_at.is_(None))
            .order_by(User.created_at, User.id)
            .limit(1)
        ).scalar_one_or_none()
        if admin is not None:
            return admin
        return request.creator
