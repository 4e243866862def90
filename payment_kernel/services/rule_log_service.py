"""
RuleLogService -- writes the per-rule execution log.

Entries are written in the caller's transaction.  The rule executor writes
failure entries after rolling back the failed rule's SAVEPOINT, so they
survive the rollback of the work they describe.
"""

from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from payment_kernel.domain.clock import Clock, SystemClock
from payment_kernel.logging_config import get_logger
from payment_kernel.models.rule_log import RuleLogEntry, RuleLogLevel

logger = get_logger("services.rule_log")


class RuleLogService:
    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()

    def info(self, rule_id: UUID, message: str, context: dict[str, Any] | None = None) -> RuleLogEntry:
        return self._write(rule_id, RuleLogLevel.INFO, message, context)

    def error(self, rule_id: UUID, message: str, context: dict[str, Any] | None = None) -> RuleLogEntry:
        return self._write(rule_id, RuleLogLevel.ERROR, message, context)

    def _write(
        self,
        rule_id: UUID,
        level: RuleLogLevel,
        message: str,
        context: dict[str, Any] | None,
    ) -> RuleLogEntry:
        entry = RuleLogEntry(
            rule_id=rule_id,
            level=level.value,
            message=message,
            context=context or None,
            created_at=self._clock.now(),
        )
        self._session.add(entry)
        self._session.flush()
        logger.debug(
            "rule_log_written",
            extra={"rule_id": str(rule_id), "level": level.value, "log_message": message},
        )
        return entry
