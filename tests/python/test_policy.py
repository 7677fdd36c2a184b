"""Tests for effective-policy resolution and expense evaluation."""

from __future__ import annotations

from collections.abc import Callable
from datetime import date
from decimal import Decimal

import pytest

from expense_rules.models import Expense
from expense_rules.policy import (
    EffectivePolicy,
    ExpensePolicy,
    PolicyBook,
    PolicyScope,
    PolicySubject,
    evaluate_expense,
    resolve_effective_policy,
    shape_policy_result,
)

REFERENCE_DATE = date(2024, 9, 20)


def _policy(name: str, **overrides: object) -> ExpensePolicy:
    data: dict[str, object] = {"name": name}
    data.update(overrides)
    return ExpensePolicy(**data)


class TestPolicyModel:
    def test_scoped_policy_needs_value(self) -> None:
        with pytest.raises(ValueError):
            _policy("Sales", scope=PolicyScope.DEPARTMENT)

    def test_negative_limits_rejected(self) -> None:
        with pytest.raises(ValueError):
            _policy("Bad", max_amount=Decimal("-1"))


class TestResolveEffectivePolicy:
    """Priority merging of overlapping policies."""

    def test_defaults_without_policies(self) -> None:
        effective = resolve_effective_policy([], PolicySubject(user_id="user-1"))

        assert effective.max_amount == Decimal("500")
        assert effective.max_daily_total == Decimal("1000")
        assert effective.max_monthly_total == Decimal("5000")
        assert effective.max_receipt_age_days == 90
        assert effective.require_receipt is False
        assert effective.allow_weekends is True
        assert effective.applied_policies == []

    def test_highest_priority_limit_wins(self) -> None:
        policies = [
            _policy("Org", max_amount=Decimal("300"), max_daily_total=Decimal("800")),
            _policy(
                "Sales",
                scope=PolicyScope.DEPARTMENT,
                scope_value="Sales",
                max_amount=Decimal("1000"),
                priority=100,
            ),
        ]

        effective = resolve_effective_policy(
            policies, PolicySubject(user_id="user-1", department="sales")
        )

        assert effective.max_amount == Decimal("1000")
        assert effective.max_daily_total == Decimal("800")
        assert effective.source_of("max_amount") == "Sales"
        assert effective.source_of("max_daily_total") == "Org"
        assert effective.applied_policies == ["Sales", "Org"]

    def test_out_of_scope_policies_ignored(self) -> None:
        policies = [
            _policy("Other dept", scope="department", scope_value="Ops", max_amount=Decimal("9")),
            _policy("Other role", scope="role", scope_value="admin", max_amount=Decimal("9")),
            _policy("Other user", scope="user", scope_value="user-2", max_amount=Decimal("9")),
            _policy("Lodging only", category="Lodging", max_amount=Decimal("9")),
            _policy("Inactive", is_active=False, max_amount=Decimal("9")),
            _policy("Other org", organization_id="org-2", max_amount=Decimal("9")),
        ]
        subject = PolicySubject(
            organization_id="org-1",
            user_id="user-1",
            department="Sales",
            role="employee",
            category="Meals & Entertainment",
        )

        effective = resolve_effective_policy(policies, subject)

        assert effective.max_amount == Decimal("500")
        assert effective.applied_policies == []

    def test_user_and_category_scopes(self) -> None:
        policies = [
            _policy("Meals", scope="category", category="Meals & Entertainment", max_amount=Decimal("75"), priority=50),
            _policy("VIP", scope="user", scope_value="user-1", max_amount=Decimal("2000"), priority=500),
        ]

        meals = resolve_effective_policy(
            policies, PolicySubject(user_id="user-2", category="Meals & Entertainment")
        )
        vip = resolve_effective_policy(
            policies, PolicySubject(user_id="user-1", category="Meals & Entertainment")
        )

        assert meals.max_amount == Decimal("75")
        assert vip.max_amount == Decimal("2000")

    def test_requirements_combine(self) -> None:
        policies = [
            _policy("Strict age", max_receipt_age_days=30, priority=1),
            _policy("Lenient age", max_receipt_age_days=120, priority=9),
            _policy("Receipts", require_receipt=True),
            _policy("No weekends", allow_weekends=False),
            _policy("Descriptions", require_description=True),
        ]

        effective = resolve_effective_policy(policies, PolicySubject(user_id="user-1"))

        assert effective.max_receipt_age_days == 30
        assert effective.require_receipt is True
        assert effective.require_description is True
        assert effective.allow_weekends is False


class TestEvaluateExpense:
    """Violation and warning rules."""

    def test_clean_expense_is_valid(self, expense_factory: Callable[..., Expense]) -> None:
        result = evaluate_expense(
            expense_factory(), EffectivePolicy(), reference_date=REFERENCE_DATE
        )

        assert result.is_valid
        assert result.violations == []
        assert result.warnings == []

    def test_amount_limit(self, expense_factory: Callable[..., Expense]) -> None:
        policy = EffectivePolicy(max_amount=Decimal("40"), limit_sources={"max_amount": "Meals"})

        result = evaluate_expense(expense_factory(), policy, reference_date=REFERENCE_DATE)

        assert not result.is_valid
        violation = result.violations[0]
        assert violation.rule == "max_expense_amount"
        assert violation.policy_name == "Meals"
        assert violation.limit == Decimal("40")
        assert violation.actual == Decimal("42.50")
        assert violation.message == (
            "Expense amount $42.50 exceeds limit of $40.00 for Meals & Entertainment"
        )

    def test_daily_and_monthly_totals(self, expense_factory: Callable[..., Expense]) -> None:
        result = evaluate_expense(
            expense_factory(),
            EffectivePolicy(),
            daily_total=Decimal("960"),
            monthly_total=Decimal("4957.50"),
            reference_date=REFERENCE_DATE,
        )

        rules = [violation.rule for violation in result.violations]
        assert rules == ["max_daily_total"]
        assert result.violations[0].message == (
            "Daily total of $1002.50 would exceed limit of $1000.00"
        )

    def test_monthly_limit_exceeded(self, expense_factory: Callable[..., Expense]) -> None:
        result = evaluate_expense(
            expense_factory(),
            EffectivePolicy(),
            monthly_total=Decimal("4960"),
            reference_date=REFERENCE_DATE,
        )

        assert [violation.rule for violation in result.violations] == ["max_monthly_total"]

    def test_receipt_age(self, expense_factory: Callable[..., Expense]) -> None:
        result = evaluate_expense(
            expense_factory(expense_date=date(2024, 5, 1)),
            EffectivePolicy(),
            reference_date=REFERENCE_DATE,
        )

        violation = result.violations[0]
        assert violation.rule == "max_receipt_age"
        assert violation.message == "Expense is 142 days old, exceeding 90 day limit"

    def test_receipt_age_boundary_allowed(self, expense_factory: Callable[..., Expense]) -> None:
        result = evaluate_expense(
            expense_factory(expense_date=date(2024, 6, 22)),
            EffectivePolicy(),
            reference_date=REFERENCE_DATE,
        )

        assert result.is_valid

    def test_weekend_rule(self, expense_factory: Callable[..., Expense]) -> None:
        saturday = expense_factory(expense_date=date(2024, 9, 14))

        allowed = evaluate_expense(saturday, EffectivePolicy(), reference_date=REFERENCE_DATE)
        blocked = evaluate_expense(
            saturday, EffectivePolicy(allow_weekends=False), reference_date=REFERENCE_DATE
        )

        assert allowed.is_valid
        assert blocked.violations[0].rule == "no_weekend_expenses"
        assert blocked.violations[0].message == "Weekend expenses are not allowed per policy"

    def test_description_required(self, expense_factory: Callable[..., Expense]) -> None:
        policy = EffectivePolicy(require_description=True)

        short = evaluate_expense(
            expense_factory(notes="  ok  "), policy, reference_date=REFERENCE_DATE
        )
        missing = evaluate_expense(
            expense_factory(notes=None), policy, reference_date=REFERENCE_DATE
        )
        present = evaluate_expense(expense_factory(), policy, reference_date=REFERENCE_DATE)

        assert short.violations[0].rule == "require_description"
        assert missing.violations[0].message == (
            "Description is required for Meals & Entertainment expenses"
        )
        assert present.is_valid

    def test_warnings_do_not_invalidate(self, expense_factory: Callable[..., Expense]) -> None:
        policy = EffectivePolicy(require_receipt=True, require_approval_over=Decimal("25"))

        result = evaluate_expense(expense_factory(), policy, reference_date=REFERENCE_DATE)

        assert result.is_valid
        assert [warning.rule for warning in result.warnings] == [
            "receipt_required",
            "approval_required",
        ]
        assert result.messages()[-1] == "Expenses over $25.00 require approval"


class TestShapePolicyResult:
    """Shaping raw policy-check payloads."""

    def test_list_payload(self) -> None:
        result = shape_policy_result(
            [
                {
                    "rule": "max_expense_amount",
                    "policy_name": "Meals",
                    "limit": 75,
                    "actual": "120.50",
                    "message": "Expense amount $120.50 exceeds limit of $75.00 for Meals",
                }
            ]
        )

        assert not result.is_valid
        assert result.violations[0].limit == Decimal("75")
        assert result.violations[0].actual == Decimal("120.50")

    def test_mapping_payload_with_warnings(self) -> None:
        result = shape_policy_result(
            {
                "is_valid": True,
                "violations": [],
                "warnings": [
                    {"rule": "receipt_required", "message": "Receipt required"},
                    "Approval required",
                ],
            }
        )

        assert result.is_valid
        assert [warning.message for warning in result.warnings] == [
            "Receipt required",
            "Approval required",
        ]

    def test_malformed_entries_dropped(self) -> None:
        result = shape_policy_result(
            [
                {"rule": "max_daily_total"},
                "not a violation",
                42,
                {"rule": "ok", "message": "Kept", "limit": "n/a"},
            ]
        )

        assert [violation.message for violation in result.violations] == ["Kept"]
        assert result.violations[0].limit is None

    @pytest.mark.parametrize("limit", ["NaN", "Infinity", "-inf"])
    def test_non_finite_limit_keeps_violation(self, limit: str) -> None:
        result = shape_policy_result(
            {"violations": [{"rule": "max_daily_total", "message": "Over", "limit": limit}]}
        )

        assert [violation.message for violation in result.violations] == ["Over"]
        assert result.violations[0].limit is None

    @pytest.mark.parametrize("payload", [None, "error", 17, {"violations": "oops"}])
    def test_unusable_payloads_are_empty(self, payload: object) -> None:
        result = shape_policy_result(payload)

        assert result.is_valid
        assert result.warnings == []


class TestPolicyBook:
    def test_default_config_resolves_meals_policy(
        self, expense_factory: Callable[..., Expense]
    ) -> None:
        book = PolicyBook.from_file()

        result = book.check(
            expense_factory(amount=Decimal("120.00")), reference_date=REFERENCE_DATE
        )

        assert [violation.rule for violation in result.violations] == ["max_expense_amount"]
        assert result.violations[0].policy_name == "Meals"
        assert [warning.rule for warning in result.warnings] == ["receipt_required"]

    def test_department_subject(self, expense_factory: Callable[..., Expense]) -> None:
        book = PolicyBook.from_file()
        subject = PolicySubject(
            user_id="user-1", department="Sales", category="Meals & Entertainment"
        )

        effective = book.effective_policy(subject)

        assert effective.max_amount == Decimal("1000")
        assert effective.require_approval_over == Decimal("750")
        assert effective.require_description is True

    def test_from_yaml_requires_policies(self) -> None:
        with pytest.raises(ValueError):
            PolicyBook.from_yaml("prechecks: []")
