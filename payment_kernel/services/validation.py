"""
Input validation for payment requests and recurrence rules.

Every check runs before any mutation.  All field errors of one call are
collected and raised together as a single ``ValidationError`` keyed by
field name; the returned mapping holds coerced values (``Decimal`` amounts,
``UUID`` ids, ``date``/``time`` objects, a sorted weekday list).
"""

from __future__ import annotations

from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Mapping
from uuid import UUID
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy.orm import Session

from payment_kernel.db.types import round_money
from payment_kernel.domain.recurrence import DEFAULT_RUN_AT, RecurrenceFrequency
from payment_kernel.exceptions import ValidationError
from payment_kernel.models.reference import ExpenseCategory, ExpenseType, PaymentAccount

MIN_RULE_AMOUNT = Decimal("0.01")


class _Collector:
    """Accumulates field errors; the first error per field wins."""

    def __init__(self) -> None:
        self.errors: dict[str, str] = {}

    def add(self, field: str, message: str) -> None:
        self.errors.setdefault(field, message)

    def raise_if_any(self) -> None:
        if self.errors:
            raise ValidationError(self.errors)


def _as_uuid(value: Any, field: str, errors: _Collector) -> UUID | None:
    if value is None or value == "":
        return None
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        errors.add(field, "must be a valid identifier")
        return None


def _as_money(value: Any, field: str, errors: _Collector) -> Decimal | None:
    if value is None or value == "":
        return None
    try:
        return round_money(value)
    except ValueError:
        errors.add(field, "must be a number")
        return None


def _check_length(values: dict[str, Any], field: str, limit: int, errors: _Collector) -> None:
    value = values.get(field)
    if value is not None and len(str(value)) > limit:
        errors.add(field, f"must be at most {limit} characters")


def _check_classification(
    session: Session, values: dict[str, Any], errors: _Collector,
) -> None:
    type_id = _as_uuid(values.get("expense_type_id"), "expense_type_id", errors)
    category_id = _as_uuid(values.get("expense_category_id"), "expense_category_id", errors)
    values["expense_type_id"] = type_id
    values["expense_category_id"] = category_id

    if type_id is None:
        errors.add("expense_type_id", "is required")
    elif session.get(ExpenseType, type_id) is None:
        errors.add("expense_type_id", "does not exist")

    if category_id is None:
        errors.add("expense_category_id", "is required")
        return
    category = session.get(ExpenseCategory, category_id)
    if category is None:
        errors.add("expense_category_id", "does not exist")
    elif type_id is not None and category.expense_type_id != type_id:
        errors.add("expense_category_id", "does not belong to the selected expense type")


# =============================================================================
# Payment requests
# =============================================================================


def validate_request_fields(session: Session, raw: Mapping[str, Any]) -> dict[str, Any]:
    """Validate and coerce the full set of editable request fields.

    Raises:
        ValidationError: with every failing field.
    """
    errors = _Collector()
    values = dict(raw)

    _check_classification(session, values, errors)

    amount = _as_money(values.get("amount"), "amount", errors)
    if amount is None:
        errors.add("amount", "is required")
    elif amount <= 0:
        errors.add("amount", "must be greater than zero")
    values["amount"] = amount

    commission = _as_money(values.get("commission"), "commission", errors)
    if commission is not None and commission < 0:
        errors.add("commission", "must not be negative")
    values["commission"] = commission

    account_id = _as_uuid(values.get("paid_account_id"), "paid_account_id", errors)
    if account_id is not None and session.get(PaymentAccount, account_id) is None:
        errors.add("paid_account_id", "does not exist")
    values["paid_account_id"] = account_id

    for flag in ("ready_for_payment", "paid"):
        values[flag] = bool(values.get(flag, False))

    _check_length(values, "purchase_reference", 255, errors)
    _check_length(values, "receipt_url", 2048, errors)
    _check_length(values, "requisites_file_url", 2048, errors)

    errors.raise_if_any()
    return values


# =============================================================================
# Recurrence rules
# =============================================================================


def _as_date(value: Any, errors: _Collector) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value:
        try:
            return date.fromisoformat(value)
        except ValueError:
            pass
    errors.add("start_date", "must be a date (YYYY-MM-DD)")
    return None


def _as_time(value: Any, errors: _Collector) -> time | None:
    if isinstance(value, time):
        return value.replace(second=0, microsecond=0, tzinfo=None)
    if isinstance(value, str):
        try:
            parsed = datetime.strptime(value, "%H:%M")
            return parsed.time()
        except ValueError:
            pass
    errors.add("run_at", "must be a time of day (HH:MM)")
    return None


def _check_timezone(name: Any, errors: _Collector) -> None:
    if not isinstance(name, str) or not name or len(name) > 64:
        errors.add("timezone", "must be an IANA timezone name")
        return
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        errors.add("timezone", "is not a known timezone")


def validate_rule_fields(
    session: Session, raw: Mapping[str, Any], default_timezone: str,
) -> dict[str, Any]:
    """Validate and coerce the full set of rule fields.

    Definition fields that do not apply to the chosen frequency are cleared
    (``interval_days`` outside every_n_days, ``days_of_week`` outside weekly,
    ``day_of_month`` outside monthly).

    Raises:
        ValidationError: with every failing field.
    """
    errors = _Collector()
    values = dict(raw)

    name = (values.get("name") or "").strip()
    if not name:
        errors.add("name", "is required")
    values["name"] = name
    _check_length(values, "name", 255, errors)

    _check_classification(session, values, errors)

    amount = _as_money(values.get("amount"), "amount", errors)
    if amount is None:
        errors.add("amount", "is required")
    elif amount < MIN_RULE_AMOUNT:
        errors.add("amount", f"must be at least {MIN_RULE_AMOUNT}")
    values["amount"] = amount

    values["ready_for_payment"] = bool(values.get("ready_for_payment", False))
    values["is_active"] = bool(values.get("is_active", True))
    values["requisites"] = values.get("requisites") or None
    values["requisites_file_url"] = values.get("requisites_file_url") or None
    _check_length(values, "requisites_file_url", 2048, errors)

    frequency = values.get("frequency")
    try:
        frequency = RecurrenceFrequency(frequency)
    except ValueError:
        errors.add("frequency", "must be one of: " + ", ".join(f.value for f in RecurrenceFrequency))
        frequency = None
    values["frequency"] = frequency.value if frequency else None

    interval = values.get("interval_days")
    if frequency is RecurrenceFrequency.EVERY_N_DAYS:
        if not isinstance(interval, int) or isinstance(interval, bool) or interval < 1:
            errors.add("interval_days", "must be a whole number of at least 1")
    else:
        interval = None
    values["interval_days"] = interval

    weekdays = values.get("days_of_week")
    if frequency is RecurrenceFrequency.WEEKLY:
        if not weekdays:
            errors.add("days_of_week", "at least one weekday is required")
            weekdays = None
        elif any(
            not isinstance(d, int) or isinstance(d, bool) or not 1 <= d <= 7 for d in weekdays
        ):
            errors.add("days_of_week", "weekdays must be between 1 (Monday) and 7 (Sunday)")
            weekdays = None
        else:
            weekdays = sorted(set(weekdays))
    else:
        weekdays = None
    values["days_of_week"] = weekdays

    day_of_month = values.get("day_of_month")
    if frequency is RecurrenceFrequency.MONTHLY and day_of_month is not None:
        if not isinstance(day_of_month, int) or isinstance(day_of_month, bool) or not 1 <= day_of_month <= 31:
            errors.add("day_of_month", "must be between 1 and 31")
    elif frequency is not RecurrenceFrequency.MONTHLY:
        day_of_month = None
    values["day_of_month"] = day_of_month

    values["start_date"] = _as_date(values.get("start_date"), errors)
    values["run_at"] = _as_time(values.get("run_at") or DEFAULT_RUN_AT, errors)

    values["timezone"] = values.get("timezone") or default_timezone
    _check_timezone(values["timezone"], errors)

    errors.raise_if_any()
    return values
