"""
Tests for payment_batch.services.executor.

Validates BatchExecutor: SAVEPOINT-per-item isolation, status aggregation,
failure hooks and the persisted job record.

Uses in-memory SQLite for fast unit tests (no PostgreSQL required).
"""

from datetime import datetime
from typing import Any

import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session

from payment_kernel.domain.authorization import Role
from payment_kernel.exceptions import TaskNotRegisteredError
from payment_kernel.logging_config import LogContext
from payment_kernel.models.reference import User

from payment_batch.domain.types import BatchItemStatus, BatchJobStatus
from payment_batch.models.batch import BatchJobModel
from payment_batch.services.executor import BatchExecutor, final_status
from payment_batch.tasks.base import BatchItemInput, BatchTaskResult, TaskRegistry


# =============================================================================
# Test tasks
# =============================================================================


def _items(count: int) -> tuple[BatchItemInput, ...]:
    return tuple(
        BatchItemInput(item_index=i, item_key=f"item-{i:03d}", payload={"n": i})
        for i in range(count)
    )


class SuccessTask:
    """Task where all items succeed."""

    @property
    def task_type(self) -> str:
        return "test.success"

    @property
    def description(self) -> str:
        return "All items succeed"

    def prepare_items(
        self, parameters: dict[str, Any], session: Session, as_of: datetime,
    ) -> tuple[BatchItemInput, ...]:
        return _items(parameters.get("item_count", 3))

    def execute_item(
        self, item: BatchItemInput, parameters: dict[str, Any],
        session: Session, as_of: datetime,
    ) -> BatchTaskResult:
        return BatchTaskResult(
            status=BatchItemStatus.SUCCEEDED,
            result_data={"processed": item.item_key, "as_of": as_of.isoformat()},
        )


class WritingTask:
    """Adds a user per item; odd items raise after writing."""

    def __init__(self) -> None:
        self.failures: list[tuple[str, str]] = []

    @property
    def task_type(self) -> str:
        return "test.writing"

    @property
    def description(self) -> str:
        return "Writes then fails on odd items"

    def prepare_items(
        self, parameters: dict[str, Any], session: Session, as_of: datetime,
    ) -> tuple[BatchItemInput, ...]:
        return _items(4)

    def execute_item(
        self, item: BatchItemInput, parameters: dict[str, Any],
        session: Session, as_of: datetime,
    ) -> BatchTaskResult:
        n = item.payload["n"]
        session.add(User(name=f"batch-{n}", email=f"batch-{n}@example.com", role=Role.USER.value))
        session.flush()
        if n % 2:
            raise RuntimeError(f"boom {n}")
        return BatchTaskResult(status=BatchItemStatus.SUCCEEDED)

    def record_failure(
        self, item: BatchItemInput, error: Exception, session: Session, as_of: datetime,
    ) -> None:
        self.failures.append((item.item_key, str(error)))


class SkipAndFailTask:
    """Item 0 skipped, item 1 fails by result, item 2 succeeds."""

    def __init__(self) -> None:
        self.failures: list[str] = []

    @property
    def task_type(self) -> str:
        return "test.mixed"

    @property
    def description(self) -> str:
        return "Mixed outcomes"

    def prepare_items(
        self, parameters: dict[str, Any], session: Session, as_of: datetime,
    ) -> tuple[BatchItemInput, ...]:
        return _items(parameters.get("item_count", 3))

    def execute_item(
        self, item: BatchItemInput, parameters: dict[str, Any],
        session: Session, as_of: datetime,
    ) -> BatchTaskResult:
        if item.item_index == 0:
            return BatchTaskResult(status=BatchItemStatus.SKIPPED, result_data={"reason": "not_due"})
        if item.item_index == 1:
            return BatchTaskResult(
                status=BatchItemStatus.FAILED,
                error_code="BAD_ITEM",
                error_message="item 1 is bad",
            )
        return BatchTaskResult(status=BatchItemStatus.SUCCEEDED)

    def record_failure(
        self, item: BatchItemInput, error: Exception, session: Session, as_of: datetime,
    ) -> None:
        self.failures.append(str(error))


class BrokenPrepareTask:
    @property
    def task_type(self) -> str:
        return "test.broken_prepare"

    @property
    def description(self) -> str:
        return "prepare_items raises"

    def prepare_items(
        self, parameters: dict[str, Any], session: Session, as_of: datetime,
    ) -> tuple[BatchItemInput, ...]:
        raise RuntimeError("database unavailable")

    def execute_item(self, item, parameters, session, as_of) -> BatchTaskResult:
        raise AssertionError("not reached")


@pytest.fixture
def registry():
    reg = TaskRegistry()
    for task in (SuccessTask(), WritingTask(), SkipAndFailTask(), BrokenPrepareTask()):
        reg.register(task)
    return reg


@pytest.fixture
def executor(session, registry, clock):
    return BatchExecutor(session, registry, clock)


# =============================================================================
# Status aggregation
# =============================================================================


class TestFinalStatus:
    @pytest.mark.parametrize(
        "succeeded, failed, skipped, expected",
        [
            (0, 0, 0, BatchJobStatus.COMPLETED),
            (3, 0, 0, BatchJobStatus.COMPLETED),
            (0, 2, 0, BatchJobStatus.FAILED),
            (1, 1, 0, BatchJobStatus.PARTIALLY_COMPLETED),
            (0, 0, 2, BatchJobStatus.PARTIALLY_COMPLETED),
            (0, 1, 1, BatchJobStatus.PARTIALLY_COMPLETED),
        ],
    )
    def test_aggregation(self, succeeded, failed, skipped, expected):
        assert final_status(succeeded, failed, skipped) == expected


# =============================================================================
# run_job
# =============================================================================


class TestRunJob:
    def test_all_succeed(self, executor, clock):
        result = executor.run_job("nightly", "test.success", {"item_count": 2})

        assert result.status == BatchJobStatus.COMPLETED
        assert (result.total_items, result.succeeded, result.failed, result.skipped) == (2, 2, 0, 0)
        assert [r.item_key for r in result.item_results] == ["item-000", "item-001"]
        assert result.item_results[0].result_data["as_of"] == clock.now().isoformat()
        assert result.error_summary is None

    def test_no_items_is_completed(self, executor):
        result = executor.run_job("nightly", "test.success", {"item_count": 0})
        assert result.status == BatchJobStatus.COMPLETED
        assert result.total_items == 0

    def test_one_failure_does_not_abort_the_batch(self, session, executor, registry):
        result = executor.run_job("writer", "test.writing")

        assert result.status == BatchJobStatus.PARTIALLY_COMPLETED
        assert [r.status for r in result.item_results] == [
            BatchItemStatus.SUCCEEDED,
            BatchItemStatus.FAILED,
            BatchItemStatus.SUCCEEDED,
            BatchItemStatus.FAILED,
        ]
        failed = result.item_results[1]
        assert failed.error_code == "UNHANDLED_EXCEPTION"
        assert failed.error_message == "boom 1"

        names = session.execute(select(User.name).order_by(User.name)).scalars().all()
        assert names == ["batch-0", "batch-2"]
        assert registry.get("test.writing").failures == [
            ("item-001", "boom 1"),
            ("item-003", "boom 3"),
        ]

    def test_skipped_and_failed_results(self, executor, registry):
        result = executor.run_job("mixed", "test.mixed")

        assert result.status == BatchJobStatus.PARTIALLY_COMPLETED
        assert (result.succeeded, result.failed, result.skipped) == (1, 1, 1)
        assert result.item_results[0].result_data == {"reason": "not_due"}
        assert result.item_results[1].error_code == "BAD_ITEM"
        assert result.error_summary == "1 item(s) failed"
        assert registry.get("test.mixed").failures == ["item 1 is bad"]

    def test_prepare_failure(self, session, executor, captured_logs):
        result = executor.run_job("broken", "test.broken_prepare")

        assert result.status == BatchJobStatus.FAILED
        assert result.total_items == 0
        assert "database unavailable" in result.error_summary
        assert any(r["message"] == "batch_job_prepare_failed" for r in captured_logs())

    def test_unknown_task(self, executor):
        with pytest.raises(TaskNotRegisteredError) as exc_info:
            executor.run_job("x", "test.unknown")
        assert "test.success" in str(exc_info.value)

    def test_job_record_is_persisted(self, session, executor, clock):
        result = executor.run_job("mixed", "test.mixed")

        job = session.get(BatchJobModel, result.job_id)
        assert job.job_name == "mixed"
        assert job.task_type == "test.mixed"
        assert job.status == BatchJobStatus.PARTIALLY_COMPLETED.value
        assert (job.total_items, job.succeeded_items, job.failed_items, job.skipped_items) == (3, 1, 1, 1)
        assert job.started_at == clock.now()
        assert job.completed_at == clock.now()
        assert job.correlation_id

    def test_correlation_id_comes_from_context(self, session, executor):
        with LogContext.bind(correlation_id="corr-123"):
            result = executor.run_job("nightly", "test.success")
        assert session.get(BatchJobModel, result.job_id).correlation_id == "corr-123"

    def test_logs_are_bound_to_job(self, executor, captured_logs):
        executor.run_job("nightly", "test.success", {"item_count": 1})

        finished = [r for r in captured_logs() if r["message"] == "batch_job_finished"]
        assert len(finished) == 1
        assert finished[0]["job_name"] == "nightly"
        assert finished[0]["status"] == "completed"


class TestCheckpoints:
    def test_called_between_chunks_only(self, session, registry, clock):
        calls: list[int] = []
        executor = BatchExecutor(session, registry, clock, checkpoint_every=2)

        result = executor.run_job(
            "nightly", "test.success", {"item_count": 5},
            checkpoint=lambda: calls.append(len(calls)),
        )

        assert result.succeeded == 5
        assert calls == [0, 1]

    def test_exact_multiple_leaves_the_last_chunk_to_the_caller(self, session, registry, clock):
        calls: list[int] = []
        executor = BatchExecutor(session, registry, clock, checkpoint_every=2)

        executor.run_job(
            "nightly", "test.success", {"item_count": 4},
            checkpoint=lambda: calls.append(len(calls)),
        )

        assert calls == [0]

    @pytest.mark.parametrize("every", [0, 10])
    def test_no_checkpoint_needed(self, session, registry, clock, every):
        calls: list[int] = []
        executor = BatchExecutor(session, registry, clock, checkpoint_every=every)

        executor.run_job(
            "nightly", "test.success", {"item_count": 3},
            checkpoint=lambda: calls.append(len(calls)),
        )

        assert calls == []


class TestTaskRegistry:
    def test_duplicate_registration(self, registry):
        with pytest.raises(ValueError):
            registry.register(SuccessTask())

    def test_lookup(self, registry):
        assert "test.success" in registry
        assert len(registry) == 4
        assert registry.list_tasks()[0] == "test.broken_prepare"
