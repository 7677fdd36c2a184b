"""Tests for converting store records into models."""

from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from expense_rules.conversion import (
    expense_from_row,
    policy_from_row,
    rate_from_row,
    rule_from_row,
    transaction_from_row,
    trip_from_row,
)
from expense_rules.per_diem import TripStatus
from expense_rules.policy import PolicyScope
from expense_rules.transactions import TransactionStatus


def test_transaction_row_coerces_values() -> None:
    transaction = transaction_from_row(
        {
            "id": "a1",
            "linked_account_id": "acct-1",
            "organization_id": "org-1",
            "user_id": "user-1",
            "merchant_name": "",
            "transaction_name": "SHELL OIL 5744",
            "amount": "45.10",
            "transaction_date": "2024-09-18",
            "plaid_category": ["Travel", "Gas Stations"],
            "status": "new",
            "needs_review": None,
            "imported_at": "2024-09-19T10:00:00Z",
        }
    )

    assert transaction.transaction_id == "a1"
    assert transaction.merchant == "SHELL OIL 5744"
    assert transaction.amount == Decimal("45.10")
    assert transaction.transaction_date == date(2024, 9, 18)
    assert transaction.category == ["Travel", "Gas Stations"]
    assert transaction.status == TransactionStatus.NEW
    assert transaction.needs_review is False


def test_transaction_row_requires_amount() -> None:
    with pytest.raises(ValueError, match="amount"):
        transaction_from_row(
            {"id": "a1", "transaction_name": "X", "transaction_date": "2024-09-18"}
        )


def test_rule_row_defaults() -> None:
    rule = rule_from_row(
        {
            "id": "r1",
            "name": "Coffee",
            "match_merchant_contains": "starbucks, dunkin",
            "match_amount_max": "15.00",
            "priority": None,
            "is_active": None,
        }
    )

    assert rule.match_merchant_contains == ["starbucks", "dunkin"]
    assert rule.match_amount_max == Decimal("15.00")
    assert rule.priority == 100
    assert rule.is_active is True
    assert rule.match_category is None


def test_rate_row() -> None:
    rate = rate_from_row(
        {
            "id": "rate-1",
            "organization_id": None,
            "location": "Austin, TX",
            "country_code": "US",
            "state_province": "TX",
            "city": "Austin",
            "lodging_rate": 217,
            "mie_rate": "74.00",
            "effective_from": "2024-01-01",
            "effective_until": None,
            "source": "gsa",
        }
    )

    assert rate.total_rate == Decimal("291.00")
    assert rate.specificity == 0


def test_trip_row_with_days() -> None:
    trip = trip_from_row(
        {
            "id": "trip-1",
            "trip_name": "Summit",
            "destination_city": "Austin",
            "destination_state": "TX",
            "start_date": "2024-09-16",
            "end_date": "2024-09-17",
            "status": "in_progress",
            "total_per_diem": "521.00",
            "travel_trip_days": [
                {
                    "travel_date": "2024-09-17",
                    "day_number": 2,
                    "lodging_allowance": "217",
                    "mie_allowance": "74",
                    "is_last_day": True,
                    "dinner_provided": "true",
                },
                {
                    "travel_date": "2024-09-16",
                    "day_number": 1,
                    "lodging_allowance": "217",
                    "mie_allowance": "74",
                    "is_first_day": True,
                },
            ],
        }
    )

    assert trip.status == TripStatus.IN_PROGRESS
    assert [day.day_number for day in trip.days] == [1, 2]
    assert trip.days[1].dinner_provided is True
    assert trip.total_per_diem == Decimal("521.00")


def test_policy_row() -> None:
    policy = policy_from_row(
        {
            "id": "p1",
            "name": "Sales",
            "scope_type": "department",
            "scope_value": "Sales",
            "category": None,
            "max_amount": "1000.00",
            "max_receipt_age_days": 60,
            "require_receipt": True,
            "require_description": None,
            "allow_weekends": None,
            "require_finance_over": "5000",
            "priority": 200,
            "created_at": "2024-01-01T00:00:00Z",
        }
    )

    assert policy.scope == PolicyScope.DEPARTMENT
    assert policy.max_amount == Decimal("1000.00")
    assert policy.max_receipt_age_days == 60
    assert policy.require_description is False
    assert policy.allow_weekends is True


def test_expense_row_receipt_flag() -> None:
    expense = expense_from_row(
        {
            "id": "e1",
            "merchant": "Hyatt",
            "amount": "189.00",
            "category": "Lodging",
            "expense_date": "2024-09-16",
            "receipt_id": "rcpt-1",
        }
    )

    assert expense.receipt_attached is True
    assert expense.amount == Decimal("189.00")
