"""
Tests for payment_kernel.services.request_workflow.

Validates create/update of payment requests: status normalization,
role-gated edits, field-level history, participants and deferred deletion
of replaced reference files.
"""

from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from payment_kernel.exceptions import (
    AuthorizationError,
    EditNotAllowedError,
    PaymentRequestNotFoundError,
    StatusChangeNotAllowedError,
    ValidationError,
)
from payment_kernel.models.audit_record import AuditRecord
from payment_kernel.models.payment_request import PaymentRequest
from payment_kernel.selectors.history_selector import HistorySelector
from payment_kernel.services.request_workflow import RequestWorkflowService


@pytest.fixture
def workflow(session, blob_store, clock):
    return RequestWorkflowService(session, blob_store, clock)


def _audit_count(session) -> int:
    return session.execute(select(func.count()).select_from(AuditRecord)).scalar_one()


def _fields(refs, **overrides):
    values = {
        "expense_type_id": refs.expense_type.id,
        "expense_category_id": refs.category.id,
        "amount": "100",
        "requisites": "UA213223130000026007233566001",
    }
    values.update(overrides)
    return values


# =============================================================================
# Create
# =============================================================================


class TestCreateRequest:
    def test_user_creates_draft(self, session, workflow, refs):
        request = workflow.create_request(refs.user.as_actor(), _fields(refs))

        assert request.ready_for_payment is False
        assert request.paid is False
        assert request.amount == Decimal("100.00")
        assert request.has_participant(refs.user.id)

        history = HistorySelector(session).for_request(request.id)
        assert len(history) == 1
        assert history[0].action == "created"
        assert history[0].changed_fields["amount"] == {"old": None, "new": "100.00"}
        assert history[0].changed_fields["paid"] == {"old": None, "new": False}

    def test_user_commission_is_discarded(self, workflow, refs):
        request = workflow.create_request(
            refs.user.as_actor(), _fields(refs, commission="5.00"),
        )
        assert request.commission is None

    def test_user_cannot_preset_ready(self, session, workflow, refs):
        with pytest.raises(StatusChangeNotAllowedError):
            workflow.create_request(
                refs.user.as_actor(), _fields(refs, ready_for_payment=True),
            )
        assert session.execute(select(func.count()).select_from(PaymentRequest)).scalar_one() == 0
        assert _audit_count(session) == 0

    def test_accountant_creates_paid_request(self, workflow, refs):
        request = workflow.create_request(
            refs.accountant.as_actor(),
            _fields(refs, ready_for_payment=True, paid=True, commission="2.50"),
        )
        assert request.ready_for_payment is True
        assert request.paid is True
        assert request.commission == Decimal("2.50")

    def test_paid_without_ready_is_normalized_to_draft(self, workflow, refs):
        request = workflow.create_request(
            refs.accountant.as_actor(), _fields(refs, paid=True),
        )
        assert request.ready_for_payment is False
        assert request.paid is False

    def test_file_upload_time_is_recorded(self, workflow, refs, clock):
        request = workflow.create_request(
            refs.user.as_actor(),
            _fields(refs, requisites_file_url="/storage/requisites/a.pdf"),
        )
        assert request.requisites_file_uploaded_at == clock.now()

    def test_category_must_belong_to_type(self, workflow, refs):
        with pytest.raises(ValidationError) as exc_info:
            workflow.create_request(
                refs.user.as_actor(),
                _fields(refs, expense_category_id=refs.other_category.id),
            )
        assert "expense_category_id" in exc_info.value.errors

    def test_all_field_errors_are_reported_together(self, workflow, refs):
        with pytest.raises(ValidationError) as exc_info:
            workflow.create_request(
                refs.user.as_actor(),
                _fields(refs, amount="0", commission="-1", paid_account_id=uuid4()),
            )
        assert set(exc_info.value.errors) == {"amount", "commission", "paid_account_id"}

    def test_unknown_field_is_rejected(self, workflow, refs):
        with pytest.raises(ValidationError) as exc_info:
            workflow.create_request(refs.user.as_actor(), _fields(refs, created_by_id=uuid4()))
        assert "created_by_id" in exc_info.value.errors


# =============================================================================
# Update
# =============================================================================


class TestUpdateRequest:
    def test_amount_only_edit_writes_one_updated_record(self, session, workflow, refs, make_request):
        request = make_request()

        record = workflow.update_request(
            refs.user.as_actor(), request.id, {"amount": Decimal("150")},
        )

        assert record.action == "updated"
        assert record.changed_fields == {"amount": {"old": "100.00", "new": "150.00"}}
        assert _audit_count(session) == 1

    def test_edit_with_status_flip_is_status_changed(self, workflow, refs, make_request):
        request = make_request()

        record = workflow.update_request(
            refs.accountant.as_actor(),
            request.id,
            {"amount": "150", "ready_for_payment": True},
        )

        assert record.action == "status_changed"
        assert set(record.changed_fields) == {"amount", "ready_for_payment"}
        assert request.has_participant(refs.accountant.id)

    def test_user_cannot_mark_ready(self, session, workflow, refs, make_request):
        request = make_request()

        with pytest.raises(StatusChangeNotAllowedError):
            workflow.update_request(
                refs.user.as_actor(),
                request.id,
                {"amount": "150", "ready_for_payment": True},
            )

        assert request.amount == Decimal("100.00")
        assert request.ready_for_payment is False
        assert _audit_count(session) == 0

    def test_user_cannot_edit_ready_request(self, workflow, refs, make_request):
        request = make_request(ready_for_payment=True)
        with pytest.raises(EditNotAllowedError):
            workflow.update_request(refs.user.as_actor(), request.id, {"amount": "1"})

    def test_user_must_be_participant(self, workflow, refs, make_request):
        request = make_request()
        with pytest.raises(EditNotAllowedError):
            workflow.update_request(refs.other_user.as_actor(), request.id, {"amount": "1"})

    def test_accountant_cannot_edit_paid_request(self, workflow, refs, make_request):
        request = make_request(ready_for_payment=True, paid=True)
        with pytest.raises(EditNotAllowedError):
            workflow.update_request(refs.accountant.as_actor(), request.id, {"amount": "1"})

    def test_admin_marks_draft_paid(self, workflow, refs, make_request):
        request = make_request()

        record = workflow.update_request(
            refs.admin.as_actor(), request.id, {"ready_for_payment": True, "paid": True},
        )

        assert request.ready_for_payment is True
        assert request.paid is True
        assert record.action == "status_changed"
        assert record.changed_fields == {
            "ready_for_payment": {"old": False, "new": True},
            "paid": {"old": False, "new": True},
        }

    def test_paid_alone_keeps_draft(self, workflow, refs, make_request):
        request = make_request()

        record = workflow.update_request(refs.admin.as_actor(), request.id, {"paid": True})

        assert record is None
        assert request.ready_for_payment is False
        assert request.paid is False

    def test_unready_clears_paid(self, workflow, refs, make_request):
        request = make_request(ready_for_payment=True, paid=True)

        workflow.update_request(
            refs.admin.as_actor(), request.id, {"ready_for_payment": False},
        )

        assert request.ready_for_payment is False
        assert request.paid is False

    def test_paid_implies_ready_across_edits(self, workflow, refs, make_request):
        request = make_request()
        admin = refs.admin.as_actor()
        for change in (
            {"paid": True},
            {"ready_for_payment": False},
            {"ready_for_payment": True},
            {"paid": True, "ready_for_payment": False},
        ):
            workflow.update_request(admin, request.id, change)
            assert not request.paid or request.ready_for_payment

    def test_no_change_writes_nothing(self, session, workflow, refs, make_request):
        request = make_request()

        record = workflow.update_request(
            refs.accountant.as_actor(), request.id, {"amount": "100.00"},
        )

        assert record is None
        assert _audit_count(session) == 0
        assert not request.has_participant(refs.accountant.id)

    def test_user_commission_edit_is_ignored(self, workflow, refs, make_request):
        request = make_request(commission=Decimal("3.00"))

        record = workflow.update_request(
            refs.user.as_actor(), request.id, {"commission": "9.99"},
        )

        assert record is None
        assert request.commission == Decimal("3.00")

    def test_unknown_request(self, workflow, refs):
        with pytest.raises(PaymentRequestNotFoundError):
            workflow.update_request(refs.admin.as_actor(), uuid4(), {"amount": "1"})

    def test_update_is_logged(self, workflow, refs, make_request, captured_logs):
        request = make_request()
        workflow.update_request(refs.user.as_actor(), request.id, {"amount": "120"})

        updated = [r for r in captured_logs() if r["message"] == "payment_request_updated"]
        assert len(updated) == 1
        assert updated[0]["action"] == "updated"
        assert updated[0]["request_id"] == str(request.id)


# =============================================================================
# Reference file replacement
# =============================================================================


class TestFileReplacement:
    OLD_URL = "/storage/requisites/old.pdf"
    NEW_URL = "/storage/requisites/new.pdf"

    @pytest.fixture
    def request_with_file(self, make_request, blob_store):
        blob_store.files["requisites/old.pdf"] = b"old"
        blob_store.files["requisites/new.pdf"] = b"new"
        return make_request(
            requisites_file_url=self.OLD_URL,
            requisites_file_uploaded_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
        )

    def test_old_file_deleted_after_commit(
        self, session, workflow, refs, blob_store, clock, request_with_file,
    ):
        record = workflow.update_request(
            refs.user.as_actor(), request_with_file.id, {"requisites_file_url": self.NEW_URL},
        )

        assert record.changed_fields == {
            "requisites_file_url": {"old": self.OLD_URL, "new": self.NEW_URL},
        }
        assert request_with_file.requisites_file_uploaded_at == clock.now()
        assert "requisites/old.pdf" in blob_store.files

        session.commit()

        assert "requisites/old.pdf" not in blob_store.files
        assert "requisites/new.pdf" in blob_store.files

    def test_rollback_keeps_old_file(self, session, workflow, refs, blob_store, request_with_file):
        workflow.update_request(
            refs.user.as_actor(), request_with_file.id, {"requisites_file_url": self.NEW_URL},
        )
        session.rollback()
        session.commit()

        assert "requisites/old.pdf" in blob_store.files
        assert blob_store.deleted == []


# =============================================================================
# Read
# =============================================================================


class TestGetRequest:
    def test_participant_user_can_view(self, workflow, refs, make_request):
        request = make_request()
        assert workflow.get_request(refs.user.as_actor(), request.id) is request

    def test_other_user_cannot_view(self, workflow, refs, make_request):
        request = make_request()
        with pytest.raises(AuthorizationError):
            workflow.get_request(refs.other_user.as_actor(), request.id)

    def test_accountant_can_view_any(self, workflow, refs, make_request):
        request = make_request()
        assert workflow.get_request(refs.accountant.as_actor(), request.id).id == request.id
