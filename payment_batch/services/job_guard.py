"""
JobGuard -- storage-level non-overlap guard for named jobs.

Contract:
    ``acquire(job_name)`` claims the ``job_locks`` row for the name in its
    own short transaction and returns a holder token; ``release()`` deletes
    the row if the token still holds it.  ``hold()`` wraps both.

Architecture: payment_batch/services.  Uses its own sessions from the
    session factory so the lock is visible to other processes before the
    guarded work starts, and is released even if that work rolls back.

Invariants enforced:
    - At most one unexpired holder per job name (UNIQUE job_name; a
      concurrent insert loses with an IntegrityError).
    - A lock older than ``lock_ttl_seconds`` belongs to a crashed holder and
      is taken over.

Failure modes:
    - JobAlreadyRunningError when another holder owns an unexpired lock.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import timedelta
from typing import Callable, Iterator
from uuid import uuid4

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from payment_kernel.domain.clock import Clock, SystemClock
from payment_kernel.exceptions import JobAlreadyRunningError
from payment_kernel.logging_config import get_logger

from payment_batch.models.batch import JobLockModel

logger = get_logger("batch.job_guard")


class JobGuard:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        clock: Clock | None = None,
        lock_ttl_seconds: int = 3600,
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._ttl = timedelta(seconds=lock_ttl_seconds)

    def acquire(self, job_name: str) -> str:
        """Claim the lock for ``job_name`` and return the holder token.

        Raises:
            JobAlreadyRunningError: If an unexpired lock is held.
        """
        token = uuid4().hex
        now = self._clock.now()
        session = self._session_factory()
        try:
            lock = session.execute(
                select(JobLockModel)
                .where(JobLockModel.job_name == job_name)
                .with_for_update()
            ).scalar_one_or_none()

            if lock is None:
                session.add(JobLockModel(
                    job_name=job_name,
                    holder_id=token,
                    acquired_at=now,
                    expires_at=now + self._ttl,
                ))
            elif not lock.is_expired(now):
                raise JobAlreadyRunningError(job_name, lock.holder_id)
            else:
                logger.warning(
                    "job_lock_taken_over",
                    extra={
                        "job_name": job_name,
                        "previous_holder": lock.holder_id,
                        "expired_at": lock.expires_at,
                    },
                )
                lock.holder_id = token
                lock.acquired_at = now
                lock.expires_at = now + self._ttl

            session.commit()
        except IntegrityError:
            session.rollback()
            raise JobAlreadyRunningError(job_name, "unknown") from None
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

        logger.debug("job_lock_acquired", extra={"job_name": job_name, "holder_id": token})
        return token

    def release(self, job_name: str, token: str) -> bool:
        """Release the lock if ``token`` still holds it.

        Returns False when the lock was taken over in the meantime.
        """
        session = self._session_factory()
        try:
            result = session.execute(
                delete(JobLockModel).where(
                    JobLockModel.job_name == job_name,
                    JobLockModel.holder_id == token,
                )
            )
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

        released = result.rowcount == 1
        if not released:
            logger.warning("job_lock_lost", extra={"job_name": job_name, "holder_id": token})
        return released

    @contextmanager
    def hold(self, job_name: str) -> Iterator[str]:
        token = self.acquire(job_name)
        try:
            yield token
        finally:
            self.release(job_name, token)
