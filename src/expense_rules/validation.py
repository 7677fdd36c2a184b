"""Pre-submission checks for expenses.

These rules give fast feedback before an expense is sent for the
authoritative policy check; they never replace it.
"""

from __future__ import annotations

import os
from datetime import date
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Iterable, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field

from .models import Expense
from .policy import MIN_DESCRIPTION_LENGTH, EffectivePolicy, _default_policy_path


class ValidationSeverity(str, Enum):
    """Severity for validation results."""

    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class ValidationResult(BaseModel):
    """Outcome of running a validation rule."""

    code: str = Field(..., description="Stable validation code")
    message: str = Field(..., description="Human-readable explanation")
    severity: ValidationSeverity = Field(..., description="Severity level")
    rule_name: str = Field(..., description="Rule that produced the result")
    blocking: bool = Field(
        default=True,
        description="Whether the rule should prevent submission when violated",
    )

    @property
    def is_blocking(self) -> bool:
        """Return True when the result should block submission."""

        return self.blocking and self.severity == ValidationSeverity.ERROR


class ValidationRule(BaseModel):
    """Base class for pre-submission rules."""

    name: str = Field(..., description="Unique rule name")
    code: str = Field(..., description="Stable validation code")
    severity: ValidationSeverity = Field(
        default=ValidationSeverity.ERROR, description="Severity of a violation"
    )
    blocking: bool = Field(
        default=True,
        description="Whether a violation prevents submission",
    )

    model_config = ConfigDict(extra="forbid")

    def evaluate(
        self,
        expense: Expense,
        policy: EffectivePolicy,
        *,
        reference_date: date | None = None,
    ) -> list[ValidationResult]:
        """Evaluate an expense and return any validation results."""

        raise NotImplementedError

    def _result(self, *, message: str) -> ValidationResult:
        return ValidationResult(
            code=self.code,
            message=message,
            severity=self.severity,
            rule_name=self.name,
            blocking=self.blocking,
        )


class RequiredFieldsRule(ValidationRule):
    """Require the fields every expense needs before submission."""

    type: Literal["required_fields"] = Field(
        default="required_fields", description="Rule type discriminator"
    )
    required: list[Literal["merchant", "category", "amount", "expense_date", "notes"]] = Field(
        default_factory=lambda: ["merchant", "category", "amount"],
        description="Fields that must be present",
    )

    def evaluate(
        self,
        expense: Expense,
        policy: EffectivePolicy,
        *,
        reference_date: date | None = None,
    ) -> list[ValidationResult]:
        results: list[ValidationResult] = []
        for field_name in self.required:
            value = getattr(expense, field_name)
            if isinstance(value, str):
                missing = not value.strip()
            elif isinstance(value, Decimal):
                missing = value <= 0
            else:
                missing = value is None
            if missing:
                label = field_name.replace("_", " ").capitalize()
                results.append(self._result(message=f"{label} is required"))
        return results


class ReceiptRequiredRule(ValidationRule):
    """Flag expenses missing a receipt the policy requires."""

    type: Literal["receipt_required"] = Field(default="receipt_required", description="Rule type")

    def evaluate(
        self,
        expense: Expense,
        policy: EffectivePolicy,
        *,
        reference_date: date | None = None,
    ) -> list[ValidationResult]:
        if policy.require_receipt and not expense.receipt_attached:
            return [self._result(message="A receipt is required for this expense")]
        return []


class DescriptionRequiredRule(ValidationRule):
    """Require a meaningful description when the policy asks for one."""

    type: Literal["description_required"] = Field(
        default="description_required", description="Rule type"
    )
    min_length: int = Field(
        default=MIN_DESCRIPTION_LENGTH, ge=1, description="Minimum trimmed length"
    )

    def evaluate(
        self,
        expense: Expense,
        policy: EffectivePolicy,
        *,
        reference_date: date | None = None,
    ) -> list[ValidationResult]:
        if not policy.require_description:
            return []
        if len((expense.notes or "").strip()) < self.min_length:
            return [
                self._result(
                    message=(
                        f"Description is required for {expense.category} expenses "
                        f"(at least {self.min_length} characters)"
                    )
                )
            ]
        return []


class WeekendRule(ValidationRule):
    """Reject weekend-dated expenses when the policy forbids them."""

    type: Literal["weekend"] = Field(default="weekend", description="Rule type")

    def evaluate(
        self,
        expense: Expense,
        policy: EffectivePolicy,
        *,
        reference_date: date | None = None,
    ) -> list[ValidationResult]:
        if not policy.allow_weekends and expense.is_weekend:
            return [self._result(message="Weekend expenses are not allowed per policy")]
        return []


_RULE_TYPES = {
    "required_fields": RequiredFieldsRule,
    "receipt_required": ReceiptRequiredRule,
    "description_required": DescriptionRequiredRule,
    "weekend": WeekendRule,
}


def _load_rules(raw_rules: Iterable[dict[str, object]]) -> list[ValidationRule]:
    rules: list[ValidationRule] = []
    for raw_rule in raw_rules:
        rule_type = raw_rule.get("type")
        if not isinstance(rule_type, str):
            raise ValueError("Each rule must include a string 'type'")
        rule_cls = _RULE_TYPES.get(rule_type)
        if rule_cls is None:
            raise ValueError(f"Unsupported rule type: {rule_type}")
        rules.append(rule_cls.model_validate(raw_rule))
    return rules


class ExpenseValidator:
    """Run the configured pre-submission rules against an expense."""

    def __init__(self, rules: Iterable[ValidationRule]):
        self.rules = list(rules)

    @classmethod
    def from_yaml(cls, content: str) -> ExpenseValidator:
        data = yaml.safe_load(content) or {}
        raw_rules = data.get("prechecks")
        if not raw_rules:
            raise ValueError("Policy configuration must include a 'prechecks' list")
        return cls(_load_rules(raw_rules))

    @classmethod
    def from_file(cls, path: str | Path | None = None) -> ExpenseValidator:
        target_path = Path(path) if path is not None else _default_policy_path()
        if target_path is None:
            raise FileNotFoundError("No policy.yaml file found")
        return cls.from_yaml(target_path.read_text(encoding="utf-8"))

    @classmethod
    def from_environment(cls, env_var: str = "EXPENSE_POLICY_CONFIG") -> ExpenseValidator:
        content = os.getenv(env_var)
        if not content:
            raise ValueError(f"Environment variable '{env_var}' is not set or empty")
        return cls.from_yaml(content)

    def validate_expense(
        self,
        expense: Expense,
        policy: EffectivePolicy | None = None,
        *,
        reference_date: date | None = None,
    ) -> list[ValidationResult]:
        effective = policy or EffectivePolicy()
        results: list[ValidationResult] = []
        for rule in self.rules:
            results.extend(rule.evaluate(expense, effective, reference_date=reference_date))
        return results

    def can_submit(
        self,
        expense: Expense,
        policy: EffectivePolicy | None = None,
        *,
        reference_date: date | None = None,
    ) -> bool:
        return not any(
            result.is_blocking
            for result in self.validate_expense(expense, policy, reference_date=reference_date)
        )
