"""Imported transaction classification using priority-ordered rules.

Rules form a simple decision table: each rule holds optional match
predicates and an action. Active rules are evaluated in ascending priority
and the first rule whose specified predicates all match is applied.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, Field, model_validator

from .models import Expense, ExpenseCategory, ExpenseStatus

logger = logging.getLogger(__name__)

MATCH_AMOUNT_TOLERANCE = Decimal("0.01")
MATCH_DATE_WINDOW_DAYS = 3


class TransactionStatus(str, Enum):
    """Processing status of an imported transaction."""

    NEW = "new"
    MATCHED = "matched"
    CONVERTED = "converted"
    IGNORED = "ignored"
    DUPLICATE = "duplicate"


_TRANSITIONS: dict[TransactionStatus, frozenset[TransactionStatus]] = {
    TransactionStatus.NEW: frozenset(
        {
            TransactionStatus.MATCHED,
            TransactionStatus.CONVERTED,
            TransactionStatus.IGNORED,
            TransactionStatus.DUPLICATE,
        }
    ),
    TransactionStatus.MATCHED: frozenset({TransactionStatus.CONVERTED}),
    TransactionStatus.CONVERTED: frozenset(),
    TransactionStatus.IGNORED: frozenset(),
    TransactionStatus.DUPLICATE: frozenset(),
}


class ImportedTransaction(BaseModel):
    """Raw bank or card transaction imported from a provider."""

    transaction_id: str = Field(..., description="Provider transaction identifier")
    organization_id: str | None = Field(default=None)
    user_id: str | None = Field(default=None)
    merchant_name: str | None = Field(default=None, description="Merchant name")
    transaction_name: str = Field(..., description="Full transaction description")
    amount: Decimal = Field(..., description="Amount; positive values are spend")
    currency_code: str = Field(default="USD")
    transaction_date: date = Field(..., description="Transaction date")
    category: list[str] = Field(
        default_factory=list, description="Provider-supplied category path"
    )
    is_pending: bool = Field(default=False)
    status: TransactionStatus = Field(default=TransactionStatus.NEW)
    assigned_category: str | None = Field(
        default=None, description="Category set by a rule or reviewer"
    )
    is_reimbursable: bool | None = Field(default=None)
    matched_expense_id: str | None = Field(default=None)
    created_expense_id: str | None = Field(default=None)
    needs_review: bool = Field(default=False)

    @property
    def merchant(self) -> str:
        """Merchant name, falling back to the transaction description."""

        return self.merchant_name or self.transaction_name


def transition(
    transaction: ImportedTransaction, status: TransactionStatus | str
) -> ImportedTransaction:
    """Return a copy of ``transaction`` moved to ``status``.

    Transitions are one-way: a transaction leaves ``new`` once and never
    returns to it.
    """

    target = TransactionStatus(status)
    if target not in _TRANSITIONS[transaction.status]:
        msg = (
            f"Cannot move transaction {transaction.transaction_id} from "
            f"{transaction.status.value} to {target.value}"
        )
        raise ValueError(msg)
    return transaction.model_copy(update={"status": target})


class TransactionRule(BaseModel):
    """Organization rule that classifies matching transactions."""

    rule_id: str = Field(..., description="Unique rule identifier")
    organization_id: str | None = Field(default=None)
    name: str = Field(..., description="Rule name")
    description: str | None = Field(default=None)
    match_merchant_contains: list[str] | None = Field(
        default=None, description="Merchant contains any of these (case-insensitive)"
    )
    match_merchant_exact: list[str] | None = Field(
        default=None, description="Merchant equals any of these (case-insensitive)"
    )
    match_category: list[str] | None = Field(
        default=None, description="Provider category matches any of these"
    )
    match_amount_min: Decimal | None = Field(
        default=None, description="Inclusive lower amount bound"
    )
    match_amount_max: Decimal | None = Field(
        default=None, description="Inclusive upper amount bound"
    )
    set_category: str | None = Field(default=None)
    set_is_reimbursable: bool | None = Field(default=None)
    auto_create_expense: bool = Field(default=False)
    mark_as_ignored: bool = Field(default=False)
    priority: int = Field(default=100, description="Lower values are evaluated first")
    is_active: bool = Field(default=True)

    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="after")
    def _validate_amount_range(self) -> TransactionRule:
        if (
            self.match_amount_min is not None
            and self.match_amount_max is not None
            and self.match_amount_min > self.match_amount_max
        ):
            msg = "match_amount_min must not exceed match_amount_max"
            raise ValueError(msg)
        return self

    @property
    def has_predicates(self) -> bool:
        return bool(
            self.match_merchant_contains
            or self.match_merchant_exact
            or self.match_category
            or self.match_amount_min is not None
            or self.match_amount_max is not None
        )

    def matches(self, transaction: ImportedTransaction) -> bool:
        """Return True when every specified predicate matches.

        Empty or missing predicates do not constrain the match, so a rule
        without predicates matches every transaction.
        """

        merchant = transaction.merchant.casefold()
        if self.match_merchant_contains and not any(
            needle.casefold() in merchant for needle in self.match_merchant_contains
        ):
            return False
        if self.match_merchant_exact and merchant.strip() not in {
            value.casefold().strip() for value in self.match_merchant_exact
        }:
            return False
        if self.match_category:
            wanted = {value.casefold() for value in self.match_category}
            if not wanted.intersection(value.casefold() for value in transaction.category):
                return False
        if self.match_amount_min is not None and transaction.amount < self.match_amount_min:
            return False
        if self.match_amount_max is not None and transaction.amount > self.match_amount_max:
            return False
        return True


class RuleAction(BaseModel):
    """Action produced by the rule that matched a transaction."""

    rule_id: str
    rule_name: str
    set_category: str | None = None
    set_is_reimbursable: bool | None = None
    auto_create_expense: bool = False
    mark_as_ignored: bool = False

    @classmethod
    def from_rule(cls, rule: TransactionRule) -> RuleAction:
        return cls(
            rule_id=rule.rule_id,
            rule_name=rule.name,
            set_category=rule.set_category,
            set_is_reimbursable=rule.set_is_reimbursable,
            auto_create_expense=rule.auto_create_expense,
            mark_as_ignored=rule.mark_as_ignored,
        )


@dataclass(frozen=True)
class RuleMatchResult:
    """Outcome of classifying a single transaction."""

    transaction: ImportedTransaction
    action: RuleAction | None

    @property
    def matched(self) -> bool:
        return self.action is not None

    @property
    def create_expense_requested(self) -> bool:
        """True when the rule asks for the transaction to become an expense."""

        return bool(
            self.action
            and self.action.auto_create_expense
            and self.transaction.status == TransactionStatus.NEW
        )


def _load_rules(raw_rules: Iterable[dict[str, object]]) -> list[TransactionRule]:
    return [TransactionRule.model_validate(rule) for rule in raw_rules]


def _default_rules_path() -> Path | None:
    for parent in Path(__file__).resolve().parents:
        candidate = parent / "config" / "transaction_rules.yaml"
        if candidate.exists():
            return candidate
    return None


class TransactionRuleMatcher:
    """Classify imported transactions with the first matching active rule."""

    def __init__(self, rules: Iterable[TransactionRule]):
        # sorted() is stable, so equal priorities keep their configured order.
        self.rules = sorted(rules, key=lambda rule: rule.priority)

    @classmethod
    def from_yaml(cls, content: str) -> TransactionRuleMatcher:
        data = yaml.safe_load(content) or {}
        raw_rules = data.get("rules")
        if raw_rules is None:
            raise ValueError("Transaction rules configuration must include a 'rules' list")
        return cls(_load_rules(raw_rules))

    @classmethod
    def from_file(cls, path: str | Path | None = None) -> TransactionRuleMatcher:
        target_path = Path(path) if path is not None else _default_rules_path()
        if target_path is None:
            raise FileNotFoundError("No transaction_rules.yaml file found")
        return cls.from_yaml(target_path.read_text(encoding="utf-8"))

    @classmethod
    def from_environment(cls, env_var: str = "TRANSACTION_RULES") -> TransactionRuleMatcher:
        content = os.getenv(env_var)
        if not content:
            raise ValueError(f"Environment variable '{env_var}' is not set or empty")
        return cls.from_yaml(content)

    def active_rules(self, organization_id: str | None = None) -> list[TransactionRule]:
        return [
            rule
            for rule in self.rules
            if rule.is_active
            and (
                organization_id is None
                or rule.organization_id is None
                or rule.organization_id == organization_id
            )
        ]

    def find_match(self, transaction: ImportedTransaction) -> TransactionRule | None:
        """Return the first active rule, by priority, matching the transaction."""

        for rule in self.active_rules(transaction.organization_id):
            if rule.matches(transaction):
                return rule
        return None

    def apply(self, transaction: ImportedTransaction) -> RuleMatchResult:
        """Classify a new transaction and apply the matching rule's action.

        Transactions that are no longer ``new`` are returned unchanged.
        """

        if transaction.status != TransactionStatus.NEW:
            return RuleMatchResult(transaction=transaction, action=None)

        rule = self.find_match(transaction)
        if rule is None:
            logger.debug("No rule matched transaction %s", transaction.transaction_id)
            return RuleMatchResult(transaction=transaction, action=None)

        action = RuleAction.from_rule(rule)
        update: dict[str, object] = {}
        if action.set_category is not None:
            update["assigned_category"] = action.set_category
        if action.set_is_reimbursable is not None:
            update["is_reimbursable"] = action.set_is_reimbursable
        updated = transaction.model_copy(update=update)
        if action.mark_as_ignored:
            updated = transition(updated, TransactionStatus.IGNORED)

        logger.info(
            "Rule '%s' matched transaction %s (category=%s, ignored=%s, auto_create=%s)",
            rule.name,
            transaction.transaction_id,
            action.set_category,
            action.mark_as_ignored,
            action.auto_create_expense,
        )
        return RuleMatchResult(transaction=updated, action=action)

    def apply_all(self, transactions: Iterable[ImportedTransaction]) -> list[RuleMatchResult]:
        return [self.apply(transaction) for transaction in transactions]


def _merchants_overlap(left: str, right: str) -> bool:
    left_folded = left.casefold().strip()
    right_folded = right.casefold().strip()
    if not left_folded or not right_folded:
        return False
    return left_folded in right_folded or right_folded in left_folded


def match_transaction_to_expense(
    transaction: ImportedTransaction, expenses: Sequence[Expense]
) -> tuple[ImportedTransaction, Expense | None]:
    """Link a new transaction to an existing expense for the same spend.

    Candidates share the organization and user, differ in amount by less
    than a cent, fall within three days and have overlapping merchant names.
    The closest date wins. A transaction without a user matches nothing. The transaction is returned as ``matched`` when a candidate exists.
    """

    if transaction.status != TransactionStatus.NEW or transaction.user_id is None:
        return transaction, None

    candidates = [
        expense
        for expense in expenses
        if expense.organization_id == transaction.organization_id
        and expense.user_id == transaction.user_id
        and abs(expense.amount - abs(transaction.amount)) < MATCH_AMOUNT_TOLERANCE
        and abs((expense.expense_date - transaction.transaction_date).days)
        <= MATCH_DATE_WINDOW_DAYS
        and _merchants_overlap(expense.merchant, transaction.merchant)
    ]
    if not candidates:
        return transaction, None

    best = min(
        candidates,
        key=lambda expense: abs((expense.expense_date - transaction.transaction_date).days),
    )
    matched = transition(transaction, TransactionStatus.MATCHED).model_copy(
        update={"matched_expense_id": best.expense_id}
    )
    logger.info(
        "Transaction %s matched expense %s", transaction.transaction_id, best.expense_id
    )
    return matched, best


def expense_from_transaction(
    transaction: ImportedTransaction,
    *,
    category: str | None = None,
    notes: str | None = None,
) -> Expense:
    """Build the draft expense requested when converting a transaction.

    Creating the expense is left to the caller; the category falls back to
    the rule-assigned category, then the first provider category.
    """

    if transaction.status not in (TransactionStatus.NEW, TransactionStatus.MATCHED):
        msg = (
            f"Transaction {transaction.transaction_id} is {transaction.status.value} "
            "and cannot be converted"
        )
        raise ValueError(msg)

    resolved_category = (
        category
        or transaction.assigned_category
        or (transaction.category[0] if transaction.category else None)
        or ExpenseCategory.MISCELLANEOUS.value
    )
    return Expense(
        organization_id=transaction.organization_id,
        user_id=transaction.user_id,
        merchant=transaction.merchant,
        amount=abs(transaction.amount),
        currency=transaction.currency_code,
        category=resolved_category,
        expense_date=transaction.transaction_date,
        notes=notes or f"Imported transaction {transaction.transaction_id}",
        status=ExpenseStatus.DRAFT,
        is_reimbursable=(
            transaction.is_reimbursable if transaction.is_reimbursable is not None else True
        ),
    )


class ImportStats(BaseModel):
    """Counts and totals for a batch of imported transactions."""

    total_transactions: int
    new_count: int
    matched_count: int
    converted_count: int
    ignored_count: int
    duplicate_count: int
    total_amount: Decimal
    converted_amount: Decimal


def import_stats(transactions: Iterable[ImportedTransaction]) -> ImportStats:
    """Summarize transactions by status; amounts are absolute values."""

    items = list(transactions)

    def _count(status: TransactionStatus) -> int:
        return sum(1 for item in items if item.status == status)

    return ImportStats(
        total_transactions=len(items),
        new_count=_count(TransactionStatus.NEW),
        matched_count=_count(TransactionStatus.MATCHED),
        converted_count=_count(TransactionStatus.CONVERTED),
        ignored_count=_count(TransactionStatus.IGNORED),
        duplicate_count=_count(TransactionStatus.DUPLICATE),
        total_amount=sum((abs(item.amount) for item in items), Decimal("0")),
        converted_amount=sum(
            (abs(item.amount) for item in items if item.status == TransactionStatus.CONVERTED),
            Decimal("0"),
        ),
    )
