"""Expense Rules - per diem, transaction rule, receipt and policy calculations."""

from .conversion import (
    expense_from_row,
    policy_from_row,
    rate_from_row,
    rule_from_row,
    transaction_from_row,
    trip_from_row,
)
from .models import (
    Expense,
    ExpenseCategory,
    ExpenseStatus,
    PolicyViolation,
    PolicyWarning,
    quantize_cents,
)
from .per_diem import (
    GSA_MEAL_DEDUCTION_PERCENTAGES,
    TRAVEL_DAY_MIE_PERCENTAGE,
    MealType,
    PerDiemLookupResult,
    PerDiemRate,
    PerDiemRateTable,
    PerDiemSummary,
    TravelTrip,
    TravelTripDay,
    TripPerDiemCalculation,
    TripStatus,
    active_trips,
    adjusted_mie,
    calculate_trip_per_diem,
    meal_adjustments,
    meal_deduction,
    recalculate_trip,
    summarize_trips,
    travel_day_mie,
    update_trip_day,
    update_trip_status,
)
from .policy import (
    EffectivePolicy,
    ExpensePolicy,
    PolicyBook,
    PolicyScope,
    PolicySubject,
    PolicyValidationResult,
    evaluate_expense,
    resolve_effective_policy,
    shape_policy_result,
)
from .receipts import (
    CategoryMatch,
    ExtractedLineItem,
    OcrStatus,
    Receipt,
    ReceiptExtractionResult,
    ReceiptProcessor,
    classify_category,
    extract_line_items,
    should_suggest_split,
)
from .transactions import (
    ImportedTransaction,
    ImportStats,
    RuleAction,
    RuleMatchResult,
    TransactionRule,
    TransactionRuleMatcher,
    TransactionStatus,
    expense_from_transaction,
    import_stats,
    match_transaction_to_expense,
    transition,
)
from .validation import (
    DescriptionRequiredRule,
    ExpenseValidator,
    ReceiptRequiredRule,
    RequiredFieldsRule,
    ValidationResult,
    ValidationRule,
    ValidationSeverity,
    WeekendRule,
)

__all__ = [
    "CategoryMatch",
    "DescriptionRequiredRule",
    "EffectivePolicy",
    "Expense",
    "ExpenseCategory",
    "ExpensePolicy",
    "ExpenseStatus",
    "ExpenseValidator",
    "ExtractedLineItem",
    "GSA_MEAL_DEDUCTION_PERCENTAGES",
    "ImportStats",
    "ImportedTransaction",
    "MealType",
    "OcrStatus",
    "PerDiemLookupResult",
    "PerDiemRate",
    "PerDiemRateTable",
    "PerDiemSummary",
    "PolicyBook",
    "PolicyScope",
    "PolicySubject",
    "PolicyValidationResult",
    "PolicyViolation",
    "PolicyWarning",
    "Receipt",
    "ReceiptExtractionResult",
    "ReceiptProcessor",
    "ReceiptRequiredRule",
    "RequiredFieldsRule",
    "RuleAction",
    "RuleMatchResult",
    "TRAVEL_DAY_MIE_PERCENTAGE",
    "TransactionRule",
    "TransactionRuleMatcher",
    "TransactionStatus",
    "TravelTrip",
    "TravelTripDay",
    "TripPerDiemCalculation",
    "TripStatus",
    "ValidationResult",
    "ValidationRule",
    "ValidationSeverity",
    "WeekendRule",
    "active_trips",
    "adjusted_mie",
    "calculate_trip_per_diem",
    "classify_category",
    "evaluate_expense",
    "expense_from_row",
    "expense_from_transaction",
    "extract_line_items",
    "import_stats",
    "match_transaction_to_expense",
    "meal_adjustments",
    "meal_deduction",
    "policy_from_row",
    "quantize_cents",
    "rate_from_row",
    "recalculate_trip",
    "resolve_effective_policy",
    "rule_from_row",
    "shape_policy_result",
    "should_suggest_split",
    "summarize_trips",
    "transaction_from_row",
    "transition",
    "travel_day_mie",
    "trip_from_row",
    "update_trip_day",
    "update_trip_status",
    "__version__",
]
__version__ = "0.1.0"
