"""Expense policies, effective-policy resolution and violation shaping.

Authoritative policy enforcement runs in the backing store. This module
mirrors those rules so results can be previewed and displayed, and turns the
store's raw violation payloads into typed results.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable, Mapping, Sequence
from datetime import date, timedelta
from decimal import Decimal, InvalidOperation
from enum import Enum
from pathlib import Path
from typing import Annotated, Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from .models import Expense, PolicyViolation, PolicyWarning, quantize_cents

logger = logging.getLogger(__name__)

DEFAULT_MAX_AMOUNT = Decimal("500")
DEFAULT_MAX_DAILY_TOTAL = Decimal("1000")
DEFAULT_MAX_MONTHLY_TOTAL = Decimal("5000")
DEFAULT_MAX_RECEIPT_AGE_DAYS = 90
MIN_DESCRIPTION_LENGTH = 5

NonNegativeDecimal = Annotated[Decimal, Field(ge=0)]


class PolicyScope(str, Enum):
    """Level a policy applies at."""

    ORGANIZATION = "organization"
    DEPARTMENT = "department"
    ROLE = "role"
    USER = "user"
    CATEGORY = "category"


class ExpensePolicy(BaseModel):
    """A configured spending policy for part of an organization."""

    policy_id: str | None = Field(default=None)
    organization_id: str | None = Field(default=None)
    name: str = Field(..., description="Human-readable policy name")
    description: str | None = Field(default=None)
    scope: PolicyScope = Field(default=PolicyScope.ORGANIZATION)
    scope_value: str | None = Field(
        default=None, description="Department, role or user the policy targets"
    )
    category: str | None = Field(
        default=None, description="Category the policy is limited to; None for all"
    )
    max_amount: NonNegativeDecimal | None = Field(default=None)
    max_daily_total: NonNegativeDecimal | None = Field(default=None)
    max_monthly_total: NonNegativeDecimal | None = Field(default=None)
    max_receipt_age_days: int | None = Field(default=None, ge=0)
    require_receipt: bool = Field(default=False)
    require_description: bool = Field(default=False)
    allow_weekends: bool = Field(default=True)
    auto_approve_under: NonNegativeDecimal | None = Field(default=None)
    require_approval_over: NonNegativeDecimal | None = Field(default=None)
    priority: int = Field(default=0, description="Higher values win conflicts")
    is_active: bool = Field(default=True)

    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="after")
    def _validate_scope_value(self) -> ExpensePolicy:
        needs_value = self.scope in (PolicyScope.DEPARTMENT, PolicyScope.ROLE, PolicyScope.USER)
        if needs_value and not self.scope_value:
            raise ValueError(f"{self.scope.value} policies require a scope_value")
        return self


class PolicySubject(BaseModel):
    """Who and what a policy is being resolved for."""

    organization_id: str | None = None
    user_id: str | None = None
    department: str | None = None
    role: str | None = None
    category: str | None = None


def _same(left: str | None, right: str | None) -> bool:
    return left is not None and right is not None and left.casefold() == right.casefold()


def policy_applies(policy: ExpensePolicy, subject: PolicySubject) -> bool:
    """Return True when ``policy`` is active and in scope for ``subject``."""

    if not policy.is_active:
        return False
    if (
        subject.organization_id is not None
        and policy.organization_id is not None
        and policy.organization_id != subject.organization_id
    ):
        return False
    if policy.category is not None and not _same(policy.category, subject.category):
        return False

    if policy.scope in (PolicyScope.ORGANIZATION, PolicyScope.CATEGORY):
        return True
    if policy.scope == PolicyScope.DEPARTMENT:
        return _same(policy.scope_value, subject.department)
    if policy.scope == PolicyScope.ROLE:
        return _same(policy.scope_value, subject.role)
    return policy.scope_value is not None and policy.scope_value == subject.user_id


class EffectivePolicy(BaseModel):
    """Merged limits and requirements for one subject."""

    max_amount: Decimal = DEFAULT_MAX_AMOUNT
    max_daily_total: Decimal = DEFAULT_MAX_DAILY_TOTAL
    max_monthly_total: Decimal = DEFAULT_MAX_MONTHLY_TOTAL
    max_receipt_age_days: int = DEFAULT_MAX_RECEIPT_AGE_DAYS
    require_receipt: bool = False
    require_description: bool = False
    allow_weekends: bool = True
    auto_approve_under: Decimal | None = None
    require_approval_over: Decimal | None = None
    applied_policies: list[str] = Field(default_factory=list)
    limit_sources: dict[str, str] = Field(
        default_factory=dict, description="Policy name that supplied each limit"
    )

    def source_of(self, field_name: str) -> str | None:
        return self.limit_sources.get(field_name)


_FIRST_WINS = (
    "max_amount",
    "max_daily_total",
    "max_monthly_total",
    "auto_approve_under",
    "require_approval_over",
)


def resolve_effective_policy(
    policies: Iterable[ExpensePolicy], subject: PolicySubject
) -> EffectivePolicy:
    """Merge every applicable policy into one effective policy.

    Policies are considered by descending priority. Each limit comes from the
    first policy that sets it. The receipt age limit is the strictest one
    configured. Requirements are combined so any policy can add one, and
    weekends are allowed only when no policy forbids them.
    """

    applicable = sorted(
        (policy for policy in policies if policy_applies(policy, subject)),
        key=lambda policy: policy.priority,
        reverse=True,
    )

    values: dict[str, Any] = {}
    sources: dict[str, str] = {}
    receipt_age = DEFAULT_MAX_RECEIPT_AGE_DAYS
    require_receipt = False
    require_description = False
    allow_weekends = True
    applied: list[str] = []

    for policy in applicable:
        contributed = False
        for field_name in _FIRST_WINS:
            value = getattr(policy, field_name)
            if value is not None and field_name not in values:
                values[field_name] = value
                sources[field_name] = policy.name
                contributed = True
        if policy.max_receipt_age_days is not None and policy.max_receipt_age_days < receipt_age:
            receipt_age = policy.max_receipt_age_days
            sources["max_receipt_age_days"] = policy.name
            contributed = True
        if policy.require_receipt:
            require_receipt = True
            sources.setdefault("require_receipt", policy.name)
            contributed = True
        if policy.require_description:
            require_description = True
            sources.setdefault("require_description", policy.name)
            contributed = True
        if not policy.allow_weekends:
            allow_weekends = False
            sources.setdefault("allow_weekends", policy.name)
            contributed = True
        if contributed:
            applied.append(policy.name)

    effective = EffectivePolicy(
        max_amount=values.get("max_amount", DEFAULT_MAX_AMOUNT),
        max_daily_total=values.get("max_daily_total", DEFAULT_MAX_DAILY_TOTAL),
        max_monthly_total=values.get("max_monthly_total", DEFAULT_MAX_MONTHLY_TOTAL),
        max_receipt_age_days=receipt_age,
        require_receipt=require_receipt,
        require_description=require_description,
        allow_weekends=allow_weekends,
        auto_approve_under=values.get("auto_approve_under"),
        require_approval_over=values.get("require_approval_over"),
        applied_policies=applied,
        limit_sources=sources,
    )
    logger.debug(
        "Resolved effective policy for user=%s category=%s from %s",
        subject.user_id,
        subject.category,
        applied or "defaults",
    )
    return effective


class PolicyValidationResult(BaseModel):
    """Violations and warnings for one expense."""

    violations: list[PolicyViolation] = Field(default_factory=list)
    warnings: list[PolicyWarning] = Field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.violations

    def messages(self) -> list[str]:
        """Display lines, violations first."""

        return [item.message for item in self.violations] + [
            item.message for item in self.warnings
        ]


def _money(amount: Decimal) -> str:
    return str(quantize_cents(amount))


def evaluate_expense(
    expense: Expense,
    policy: EffectivePolicy,
    *,
    daily_total: Decimal = Decimal("0"),
    monthly_total: Decimal = Decimal("0"),
    reference_date: date | None = None,
) -> PolicyValidationResult:
    """Check ``expense`` against ``policy``.

    ``daily_total`` and ``monthly_total`` are the user's existing spend for
    the expense's day and month, excluding this expense.
    """

    today = reference_date or date.today()
    violations: list[PolicyViolation] = []
    warnings: list[PolicyWarning] = []

    if expense.amount > policy.max_amount:
        violations.append(
            PolicyViolation(
                rule="max_expense_amount",
                policy_name=policy.source_of("max_amount"),
                limit=policy.max_amount,
                actual=expense.amount,
                message=(
                    f"Expense amount ${_money(expense.amount)} exceeds limit of "
                    f"${_money(policy.max_amount)} for {expense.category}"
                ),
            )
        )

    projected_daily = daily_total + expense.amount
    if projected_daily > policy.max_daily_total:
        violations.append(
            PolicyViolation(
                rule="max_daily_total",
                policy_name=policy.source_of("max_daily_total"),
                limit=policy.max_daily_total,
                actual=projected_daily,
                message=(
                    f"Daily total of ${_money(projected_daily)} would exceed limit of "
                    f"${_money(policy.max_daily_total)}"
                ),
            )
        )

    projected_monthly = monthly_total + expense.amount
    if projected_monthly > policy.max_monthly_total:
        violations.append(
            PolicyViolation(
                rule="max_monthly_total",
                policy_name=policy.source_of("max_monthly_total"),
                limit=policy.max_monthly_total,
                actual=projected_monthly,
                message=(
                    f"Monthly total of ${_money(projected_monthly)} would exceed limit of "
                    f"${_money(policy.max_monthly_total)}"
                ),
            )
        )

    if expense.expense_date < today - timedelta(days=policy.max_receipt_age_days):
        age_days = (today - expense.expense_date).days
        violations.append(
            PolicyViolation(
                rule="max_receipt_age",
                policy_name=policy.source_of("max_receipt_age_days"),
                limit=Decimal(policy.max_receipt_age_days),
                actual=Decimal(age_days),
                message=(
                    f"Expense is {age_days} days old, exceeding "
                    f"{policy.max_receipt_age_days} day limit"
                ),
            )
        )

    if not policy.allow_weekends and expense.is_weekend:
        violations.append(
            PolicyViolation(
                rule="no_weekend_expenses",
                policy_name=policy.source_of("allow_weekends"),
                message="Weekend expenses are not allowed per policy",
            )
        )

    if policy.require_description and len((expense.notes or "").strip()) < MIN_DESCRIPTION_LENGTH:
        violations.append(
            PolicyViolation(
                rule="require_description",
                policy_name=policy.source_of("require_description"),
                message=f"Description is required for {expense.category} expenses",
            )
        )

    if policy.require_receipt and not expense.receipt_attached:
        warnings.append(
            PolicyWarning(
                rule="receipt_required",
                message="A receipt is required for this expense",
            )
        )

    if policy.require_approval_over is not None and expense.amount > policy.require_approval_over:
        warnings.append(
            PolicyWarning(
                rule="approval_required",
                message=(
                    f"Expenses over ${_money(policy.require_approval_over)} require approval"
                ),
            )
        )

    return PolicyValidationResult(violations=violations, warnings=warnings)


def _coerce_optional_decimal(value: object) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        amount = Decimal(str(value))
    except InvalidOperation:
        return None
    return amount if amount.is_finite() else None


def _shape_violation(raw: object) -> PolicyViolation | None:
    if not isinstance(raw, Mapping):
        return None
    rule = raw.get("rule")
    message = raw.get("message")
    if not isinstance(rule, str) or not isinstance(message, str):
        return None
    policy_name = raw.get("policy_name") or raw.get("policy")
    try:
        return PolicyViolation(
            rule=rule,
            message=message,
            policy_name=policy_name if isinstance(policy_name, str) else None,
            limit=_coerce_optional_decimal(raw.get("limit")),
            actual=_coerce_optional_decimal(raw.get("actual")),
        )
    except ValidationError:
        return None


def _shape_warning(raw: object) -> PolicyWarning | None:
    if isinstance(raw, str):
        return PolicyWarning(rule="warning", message=raw)
    if not isinstance(raw, Mapping):
        return None
    message = raw.get("message")
    if not isinstance(message, str):
        return None
    rule = raw.get("rule")
    return PolicyWarning(rule=rule if isinstance(rule, str) else "warning", message=message)


def shape_policy_result(payload: object) -> PolicyValidationResult:
    """Convert a raw policy-check payload into a typed result.

    Accepts a list of violation mappings or a mapping with ``violations``
    and ``warnings`` lists. Malformed entries are dropped.
    """

    raw_violations: object
    raw_warnings: object = ()
    if isinstance(payload, Mapping):
        raw_violations = payload.get("violations") or ()
        raw_warnings = payload.get("warnings") or ()
    elif isinstance(payload, Sequence) and not isinstance(payload, (str, bytes)):
        raw_violations = payload
    else:
        return PolicyValidationResult()

    if not isinstance(raw_violations, Sequence) or isinstance(raw_violations, (str, bytes)):
        raw_violations = ()
    if not isinstance(raw_warnings, Sequence) or isinstance(raw_warnings, (str, bytes)):
        raw_warnings = ()

    violations = [v for v in map(_shape_violation, raw_violations) if v is not None]
    warnings = [w for w in map(_shape_warning, raw_warnings) if w is not None]
    dropped = len(raw_violations) + len(raw_warnings) - len(violations) - len(warnings)
    if dropped:
        logger.warning("Dropped %d malformed policy result entries", dropped)
    return PolicyValidationResult(violations=violations, warnings=warnings)


def _default_policy_path() -> Path | None:
    for parent in Path(__file__).resolve().parents:
        candidate = parent / "config" / "policy.yaml"
        if candidate.exists():
            return candidate
    return None


class PolicyBook:
    """Collection of configured expense policies."""

    def __init__(self, policies: Iterable[ExpensePolicy]):
        self.policies = list(policies)

    @classmethod
    def from_yaml(cls, content: str) -> PolicyBook:
        data = yaml.safe_load(content) or {}
        raw_policies = data.get("policies")
        if raw_policies is None:
            raise ValueError("Policy configuration must include a 'policies' list")
        return cls(ExpensePolicy.model_validate(raw) for raw in raw_policies)

    @classmethod
    def from_file(cls, path: str | Path | None = None) -> PolicyBook:
        target_path = Path(path) if path is not None else _default_policy_path()
        if target_path is None:
            raise FileNotFoundError("No policy.yaml file found")
        return cls.from_yaml(target_path.read_text(encoding="utf-8"))

    @classmethod
    def from_environment(cls, env_var: str = "EXPENSE_POLICY_CONFIG") -> PolicyBook:
        content = os.getenv(env_var)
        if not content:
            raise ValueError(f"Environment variable '{env_var}' is not set or empty")
        return cls.from_yaml(content)

    def effective_policy(self, subject: PolicySubject) -> EffectivePolicy:
        return resolve_effective_policy(self.policies, subject)

    def check(
        self,
        expense: Expense,
        subject: PolicySubject | None = None,
        *,
        daily_total: Decimal = Decimal("0"),
        monthly_total: Decimal = Decimal("0"),
        reference_date: date | None = None,
    ) -> PolicyValidationResult:
        """Resolve the policy for the expense's submitter and evaluate it."""

        resolved_subject = subject or PolicySubject(
            organization_id=expense.organization_id,
            user_id=expense.user_id,
            category=expense.category,
        )
        if resolved_subject.category is None:
            resolved_subject = resolved_subject.model_copy(update={"category": expense.category})
        return evaluate_expense(
            expense,
            self.effective_policy(resolved_subject),
            daily_total=daily_total,
            monthly_total=monthly_total,
            reference_date=reference_date,
        )
