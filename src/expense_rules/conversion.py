"""Helpers for converting raw store records into models.

Store rows carry audit columns, joined relations and loosely typed values
(numeric strings, comma-joined lists, ``null`` flags). These helpers pick
out the fields the models need and coerce them.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from decimal import Decimal, InvalidOperation
from typing import Any

from .models import Expense
from .per_diem import PerDiemRate, TravelTrip, TravelTripDay
from .policy import ExpensePolicy
from .transactions import ImportedTransaction, TransactionRule


def _coerce_decimal(value: object) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        return None


def _coerce_bool(value: object, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "t", "yes", "y"}
    return bool(value)


def _coerce_str_list(value: object) -> list[str] | None:
    if value is None:
        return None
    if isinstance(value, str):
        items = [item.strip() for item in value.split(",")]
    elif isinstance(value, Iterable):
        items = [str(item).strip() for item in value if item is not None]
    else:
        return None
    return [item for item in items if item]


def _first(row: Mapping[str, Any], *keys: str) -> object | None:
    for key in keys:
        value = row.get(key)
        if value is not None:
            return value
    return None


def _require(row: Mapping[str, Any], *keys: str) -> object:
    value = _first(row, *keys)
    if value is None or value == "":
        raise ValueError(f"Record is missing required field '{keys[0]}'")
    return value


def transaction_from_row(row: Mapping[str, Any]) -> ImportedTransaction:
    """Build an imported transaction from a store record."""

    return ImportedTransaction(
        transaction_id=str(_require(row, "id", "plaid_transaction_id", "transaction_id")),
        organization_id=row.get("organization_id"),
        user_id=row.get("user_id"),
        merchant_name=row.get("merchant_name") or None,
        transaction_name=str(_require(row, "transaction_name", "name")),
        amount=_coerce_decimal(_require(row, "amount")),
        currency_code=row.get("currency_code") or "USD",
        transaction_date=_require(row, "transaction_date", "date"),
        category=_coerce_str_list(_first(row, "plaid_category", "category")) or [],
        is_pending=_coerce_bool(row.get("is_pending"), False),
        status=row.get("status") or "new",
        assigned_category=row.get("assigned_category"),
        is_reimbursable=row.get("is_reimbursable"),
        matched_expense_id=row.get("matched_expense_id"),
        created_expense_id=row.get("created_expense_id"),
        needs_review=_coerce_bool(row.get("needs_review"), False),
    )


def rule_from_row(row: Mapping[str, Any]) -> TransactionRule:
    """Build a transaction rule from a store record."""

    return TransactionRule(
        rule_id=str(_require(row, "id", "rule_id")),
        organization_id=row.get("organization_id"),
        name=str(_require(row, "name")),
        description=row.get("description"),
        match_merchant_contains=_coerce_str_list(row.get("match_merchant_contains")),
        match_merchant_exact=_coerce_str_list(row.get("match_merchant_exact")),
        match_category=_coerce_str_list(row.get("match_category")),
        match_amount_min=_coerce_decimal(row.get("match_amount_min")),
        match_amount_max=_coerce_decimal(row.get("match_amount_max")),
        set_category=row.get("set_category"),
        set_is_reimbursable=row.get("set_is_reimbursable"),
        auto_create_expense=_coerce_bool(row.get("auto_create_expense"), False),
        mark_as_ignored=_coerce_bool(row.get("mark_as_ignored"), False),
        priority=int(row.get("priority") if row.get("priority") is not None else 100),
        is_active=_coerce_bool(row.get("is_active"), True),
    )


def rate_from_row(row: Mapping[str, Any]) -> PerDiemRate:
    """Build a per-diem rate from a store record."""

    return PerDiemRate(
        organization_id=row.get("organization_id"),
        location=str(_require(row, "location")),
        country_code=row.get("country_code") or "US",
        state_province=row.get("state_province") or None,
        city=row.get("city") or None,
        lodging_rate=_coerce_decimal(_require(row, "lodging_rate")),
        mie_rate=_coerce_decimal(_require(row, "mie_rate")),
        fiscal_year=row.get("fiscal_year"),
        effective_from=_require(row, "effective_from"),
        effective_until=row.get("effective_until"),
        source=row.get("source") or "custom",
        is_active=_coerce_bool(row.get("is_active"), True),
    )


def trip_day_from_row(row: Mapping[str, Any]) -> TravelTripDay:
    return TravelTripDay(
        travel_date=_require(row, "travel_date"),
        day_number=int(_require(row, "day_number")),
        location=row.get("location"),
        lodging_allowance=_coerce_decimal(row.get("lodging_allowance")) or Decimal("0"),
        mie_allowance=_coerce_decimal(row.get("mie_allowance")) or Decimal("0"),
        is_first_day=_coerce_bool(row.get("is_first_day"), False),
        is_last_day=_coerce_bool(row.get("is_last_day"), False),
        breakfast_provided=_coerce_bool(row.get("breakfast_provided"), False),
        lunch_provided=_coerce_bool(row.get("lunch_provided"), False),
        dinner_provided=_coerce_bool(row.get("dinner_provided"), False),
        adjusted_mie=_coerce_decimal(row.get("adjusted_mie")),
        notes=row.get("notes"),
    )


def trip_from_row(row: Mapping[str, Any]) -> TravelTrip:
    """Build a trip, and its joined ``travel_trip_days``, from a store record."""

    raw_days = row.get("travel_trip_days") or row.get("days") or []
    days = sorted(
        (trip_day_from_row(day) for day in raw_days), key=lambda day: day.travel_date
    )
    travel_day_rate = _coerce_decimal(row.get("travel_day_rate"))
    values: dict[str, Any] = {
        "trip_id": str(_require(row, "id", "trip_id")),
        "organization_id": row.get("organization_id"),
        "user_id": row.get("user_id"),
        "trip_name": str(_require(row, "trip_name")),
        "description": row.get("description"),
        "destination_city": str(_require(row, "destination_city")),
        "destination_state": row.get("destination_state") or None,
        "destination_country": row.get("destination_country") or "US",
        "start_date": _require(row, "start_date"),
        "end_date": _require(row, "end_date"),
        "status": row.get("status") or "planned",
        "days": days,
        "total_lodging_allowance": _coerce_decimal(row.get("total_lodging_allowance"))
        or Decimal("0"),
        "total_mie_allowance": _coerce_decimal(row.get("total_mie_allowance")) or Decimal("0"),
        "total_per_diem": _coerce_decimal(row.get("total_per_diem")) or Decimal("0"),
        "actual_lodging_expense": _coerce_decimal(row.get("actual_lodging_expense")),
        "actual_meal_expense": _coerce_decimal(row.get("actual_meal_expense")),
    }
    if travel_day_rate is not None:
        values["travel_day_rate"] = travel_day_rate
    return TravelTrip(**values)


def policy_from_row(row: Mapping[str, Any]) -> ExpensePolicy:
    """Build an expense policy from a store record."""

    receipt_age = row.get("max_receipt_age_days")
    return ExpensePolicy(
        policy_id=row.get("id") or row.get("policy_id"),
        organization_id=row.get("organization_id"),
        name=str(_require(row, "name")),
        description=row.get("description"),
        scope=_first(row, "scope_type", "scope") or "organization",
        scope_value=row.get("scope_value") or None,
        category=row.get("category") or None,
        max_amount=_coerce_decimal(row.get("max_amount")),
        max_daily_total=_coerce_decimal(row.get("max_daily_total")),
        max_monthly_total=_coerce_decimal(row.get("max_monthly_total")),
        max_receipt_age_days=int(receipt_age) if receipt_age is not None else None,
        require_receipt=_coerce_bool(row.get("require_receipt"), False),
        require_description=_coerce_bool(row.get("require_description"), False),
        allow_weekends=_coerce_bool(row.get("allow_weekends"), True),
        auto_approve_under=_coerce_decimal(row.get("auto_approve_under")),
        require_approval_over=_coerce_decimal(row.get("require_approval_over")),
        priority=int(row.get("priority") or 0),
        is_active=_coerce_bool(row.get("is_active"), True),
    )


def expense_from_row(row: Mapping[str, Any]) -> Expense:
    """Build an expense from a store record."""

    return Expense(
        expense_id=row.get("id") or row.get("expense_id"),
        organization_id=row.get("organization_id"),
        user_id=row.get("user_id"),
        merchant=str(_require(row, "merchant")),
        amount=_coerce_decimal(_require(row, "amount")),
        currency=row.get("currency") or "USD",
        category=str(_require(row, "category")),
        expense_date=_require(row, "expense_date"),
        notes=row.get("notes"),
        status=row.get("status") or "draft",
        is_reimbursable=_coerce_bool(row.get("is_reimbursable"), True),
        receipt_attached=_coerce_bool(
            row.get("receipt_attached"), row.get("receipt_id") is not None
        ),
    )
