"""Receipt metadata, OCR text parsing and line-item classification."""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from datetime import date as dt_date
from datetime import datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field, field_validator

from .models import ExpenseCategory

logger = logging.getLogger(__name__)

ALLOWED_RECEIPT_TYPES = {".pdf", ".png", ".jpeg", ".jpg", ".heic"}
MAX_RECEIPT_SIZE_BYTES = 10 * 1024 * 1024

MAX_LINE_ITEM_AMOUNT = Decimal("10000")
MAX_DESCRIPTION_LENGTH = 200
MIN_DESCRIPTION_LENGTH = 3
MIN_ITEM_CONFIDENCE = 0.3
SPLIT_CONFIDENCE_THRESHOLD = 0.5

# Ordered: on equal hit counts the earlier category wins.
CATEGORY_KEYWORDS: dict[ExpenseCategory, tuple[str, ...]] = {
    ExpenseCategory.LODGING: (
        "hotel",
        "motel",
        "inn",
        "lodging",
        "room",
        "suite",
        "resort",
        "night",
        "stay",
        "accommodation",
        "marriott",
        "hilton",
        "hyatt",
        "airbnb",
    ),
    ExpenseCategory.MEALS: (
        "restaurant",
        "cafe",
        "coffee",
        "breakfast",
        "lunch",
        "dinner",
        "meal",
        "food",
        "room service",
        "catering",
        "bistro",
        "grill",
        "diner",
        "pizza",
        "burger",
        "sandwich",
        "snack",
        "beverage",
        "starbucks",
        "chipotle",
        "mcdonald",
    ),
    ExpenseCategory.FUEL: (
        "fuel",
        "gas",
        "gasoline",
        "diesel",
        "unleaded",
        "petrol",
        "shell",
        "chevron",
        "exxon",
        "mobil",
        "texaco",
    ),
    ExpenseCategory.GROUND_TRANSPORTATION: (
        "uber",
        "lyft",
        "taxi",
        "cab",
        "ride",
        "rideshare",
        "shuttle",
        "parking",
        "toll",
        "transit",
        "train",
        "metro",
        "car rental",
    ),
    ExpenseCategory.AIRFARE: (
        "airline",
        "airfare",
        "flight",
        "boarding pass",
        "baggage",
        "delta",
        "united airlines",
        "american airlines",
        "southwest",
        "jetblue",
    ),
    ExpenseCategory.OFFICE_SUPPLIES: (
        "office",
        "office depot",
        "staples",
        "paper",
        "pen",
        "printer",
        "toner",
        "ink",
        "notebook",
        "folder",
        "supplies",
    ),
    ExpenseCategory.SOFTWARE: (
        "software",
        "subscription",
        "license",
        "saas",
        "cloud",
        "adobe",
        "microsoft",
        "github",
        "slack",
        "zoom",
    ),
    ExpenseCategory.MILEAGE: ("mileage", "miles"),
}

_KEYWORD_PATTERNS: dict[ExpenseCategory, tuple[tuple[str, re.Pattern[str]], ...]] = {
    category: tuple(
        (keyword, re.compile(r"\b" + re.escape(keyword) + r"(?:s|es)?\b"))
        for keyword in keywords
    )
    for category, keywords in CATEGORY_KEYWORDS.items()
}

_AMOUNT = r"(?P<amount>\d{1,3}(?:,\d{3})+\.\d{2}|\d+\.\d{2})"
_LINE_PATTERNS = (
    re.compile(r"^(?P<description>.+?)\s+\$?\s*" + _AMOUNT + r"\s*$"),
    re.compile(r"^\$?\s*" + _AMOUNT + r"\s+(?P<description>.+)$"),
    re.compile(r"^(?P<description>.+?)[.\s]{2,}\$?\s*" + _AMOUNT + r"\s*$"),
)
_SKIP_PATTERN = re.compile(
    r"\b(?:sub\s*total|total|tax|vat|amount due|balance|change due|cash|tender"
    r"|payment|paid|visa|mastercard|amex|discover|debit|credit|card|tip"
    r"|gratuity|auth|approval|ref)\b",
    re.IGNORECASE,
)
_DATE_ONLY_PATTERN = re.compile(
    r"^[\d\s/:.-]+(?:am|pm)?$", re.IGNORECASE
)
_DESCRIPTION_NOISE = re.compile(r"[^A-Za-z0-9&'/.,\- ]+")
_LETTER = re.compile(r"[A-Za-z]")


class OcrStatus(str, Enum):
    """Processing state of a receipt's OCR pass."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class CategoryMatch(BaseModel):
    """Best category for a piece of receipt text."""

    category: str = Field(..., description="Suggested expense category")
    confidence: float = Field(..., ge=0, le=1)
    keywords: list[str] = Field(default_factory=list)


class ExtractedLineItem(BaseModel):
    """Line item detected in OCR text."""

    description: str = Field(..., max_length=MAX_DESCRIPTION_LENGTH)
    amount: Decimal = Field(..., gt=0)
    suggested_category: str
    confidence: float = Field(..., ge=0, le=1)
    keywords: list[str] = Field(default_factory=list)


def classify_category(text: str) -> CategoryMatch:
    """Suggest an expense category for ``text`` from keyword hits.

    Keywords match case-insensitively as whole words, plurals included, so
    "pen" matches "Pens" but not "Pending". Confidence grows with the number
    of hits and is capped at 0.95; text with no hits is ``Miscellaneous`` at 0.3.
    """

    lowered = (text or "").lower()
    best_category: ExpenseCategory | None = None
    best_keywords: list[str] = []
    for category, patterns in _KEYWORD_PATTERNS.items():
        hits = [keyword for keyword, pattern in patterns if pattern.search(lowered)]
        if len(hits) > len(best_keywords):
            best_category = category
            best_keywords = hits

    if best_category is None:
        return CategoryMatch(
            category=ExpenseCategory.MISCELLANEOUS.value, confidence=0.3, keywords=[]
        )
    confidence = round(min(0.95, 0.5 + 0.15 * len(best_keywords)), 2)
    return CategoryMatch(
        category=best_category.value, confidence=confidence, keywords=best_keywords
    )


def _clean_description(raw: str) -> str:
    cleaned = _DESCRIPTION_NOISE.sub(" ", raw)
    cleaned = " ".join(cleaned.split())
    cleaned = cleaned.strip(" .,-/&'")
    return cleaned[:MAX_DESCRIPTION_LENGTH].rstrip()


def _parse_amount(raw: str) -> Decimal | None:
    try:
        return Decimal(raw.replace(",", ""))
    except InvalidOperation:
        return None


def _parse_line(line: str) -> tuple[str, Decimal] | None:
    for pattern in _LINE_PATTERNS:
        match = pattern.match(line)
        if match is None:
            continue
        amount = _parse_amount(match.group("amount"))
        description = _clean_description(match.group("description"))
        if amount is None or not (Decimal("0") < amount < MAX_LINE_ITEM_AMOUNT):
            continue
        if len(description) < MIN_DESCRIPTION_LENGTH or not _LETTER.search(description):
            continue
        return description, amount
    return None


def extract_line_items(text: str | None) -> list[ExtractedLineItem]:
    """Detect priced line items in OCR text and classify each one.

    Totals, taxes, tender lines and bare dates or codes are skipped.
    """

    if not text:
        return []

    items: list[ExtractedLineItem] = []
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line or _SKIP_PATTERN.search(line) or _DATE_ONLY_PATTERN.match(line):
            continue
        parsed = _parse_line(line)
        if parsed is None:
            continue
        description, amount = parsed
        match = classify_category(description)
        if match.confidence < MIN_ITEM_CONFIDENCE:
            continue
        logger.debug(
            "Line item %r classified as %s (%.2f)",
            description,
            match.category,
            match.confidence,
        )
        items.append(
            ExtractedLineItem(
                description=description,
                amount=amount,
                suggested_category=match.category,
                confidence=match.confidence,
                keywords=match.keywords,
            )
        )
    return items


def should_suggest_split(items: Sequence[ExtractedLineItem]) -> bool:
    """Return True when confident items span more than one category."""

    if len(items) < 2:
        return False
    categories = {
        item.suggested_category
        for item in items
        if item.confidence >= SPLIT_CONFIDENCE_THRESHOLD
    }
    return len(categories) >= 2


class Receipt(BaseModel):
    """Metadata for an uploaded receipt and the fields read from it."""

    receipt_id: str | None = Field(default=None)
    organization_id: str | None = Field(default=None)
    user_id: str | None = Field(default=None)
    expense_id: str | None = Field(default=None)
    file_name: str = Field(..., description="Original file name")
    file_path: str | None = Field(default=None, description="Storage path")
    file_size_bytes: int = Field(..., ge=0, description="Size of the upload in bytes")
    ocr_status: OcrStatus = Field(default=OcrStatus.PENDING)
    ocr_confidence: float | None = Field(default=None, ge=0, le=1)
    extracted_merchant: str | None = Field(default=None)
    extracted_amount: Decimal | None = Field(default=None, ge=0)
    extracted_date: dt_date | None = Field(default=None)
    extracted_tax: Decimal | None = Field(default=None, ge=0)
    extracted_currency: str | None = Field(default=None)
    extracted_line_items: list[ExtractedLineItem] = Field(default_factory=list)
    suggest_split: bool = Field(default=False)

    @field_validator("file_name")
    @classmethod
    def _validate_file_name(cls, value: str) -> str:
        ext = Path(value).suffix.lower()
        if ext not in ALLOWED_RECEIPT_TYPES:
            allowed = ", ".join(sorted(ALLOWED_RECEIPT_TYPES))
            raise ValueError(f"Unsupported receipt type '{ext}'. Allowed types: {allowed}")
        return value

    @field_validator("file_size_bytes")
    @classmethod
    def _validate_file_size(cls, value: int) -> int:
        if value > MAX_RECEIPT_SIZE_BYTES:
            raise ValueError("Receipt file exceeds 10MB limit")
        return value

    @property
    def file_type(self) -> str:
        ext = Path(self.file_name).suffix.lower()
        return ".jpeg" if ext == ".jpg" else ext


class ReceiptExtractionResult(BaseModel):
    """Fields parsed from the OCR text of a receipt."""

    text: str = Field(..., description="Raw OCR text output")
    vendor: str | None = Field(default=None)
    total: Decimal | None = Field(default=None)
    date: dt_date | None = Field(default=None)
    tax: Decimal | None = Field(default=None)
    currency: str | None = Field(default=None)
    confidence: float = Field(default=0.0, ge=0, le=1)
    line_items: list[ExtractedLineItem] = Field(default_factory=list)
    suggest_split: bool = Field(default=False)


class ReceiptProcessor:
    """Parse OCR text into receipt fields."""

    TOTAL_PATTERN = re.compile(
        r"\b(?:total|amount due)\b[:\s\$]*(\d{1,3}(?:,\d{3})+\.\d{2}|\d+(?:\.\d{2})?)",
        re.IGNORECASE,
    )
    AMOUNT_PATTERN = re.compile(r"\$?\s*(\d{1,3}(?:,\d{3})+\.\d{2}|\d+\.\d{2})")
    TAX_PATTERN = re.compile(r"\btax\b", re.IGNORECASE)
    DATE_PATTERN = re.compile(
        r"(\d{4}-\d{2}-\d{2}|\d{1,2}[/-]\d{1,2}[/-]\d{2,4}"
        r"|(?:Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Oct|Nov|Dec)[a-z]*\.?\s+\d{1,2},?\s+\d{4})",
        re.IGNORECASE,
    )
    CURRENCY_KEYWORDS = {
        "USD": "USD",
        "EUR": "EUR",
        "GBP": "GBP",
        "EURO": "EUR",
        "DOLLAR": "USD",
        "POUND": "GBP",
    }
    CURRENCY_SYMBOLS = {
        "R$": "BRL",
        "C$": "CAD",
        "A$": "AUD",
        "$": "USD",
        "€": "EUR",
        "£": "GBP",
        "¥": "JPY",
    }
    FIELD_CONFIDENCE = {
        "vendor": 0.85,
        "total": 0.75,
        "date": 0.80,
        "tax": 0.70,
        "currency": 0.85,
    }

    @staticmethod
    def extract_from_text(text: str) -> ReceiptExtractionResult:
        """Extract receipt details and line items from OCR text output."""

        vendor = ReceiptProcessor._parse_vendor(text)
        total = ReceiptProcessor._parse_total(text)
        parsed_date = ReceiptProcessor._parse_date(text)
        tax = ReceiptProcessor._parse_tax(text)
        currency = ReceiptProcessor._parse_currency(text, has_amounts=total is not None)
        line_items = extract_line_items(text)

        found = {
            "vendor": vendor,
            "total": total,
            "date": parsed_date,
            "tax": tax,
            "currency": currency,
        }
        scores = [
            ReceiptProcessor.FIELD_CONFIDENCE[name]
            for name, value in found.items()
            if value is not None
        ]
        confidence = round(sum(scores) / len(scores), 2) if scores else 0.0

        return ReceiptExtractionResult(
            text=text,
            vendor=vendor,
            total=total,
            date=parsed_date,
            tax=tax,
            currency=currency,
            confidence=confidence,
            line_items=line_items,
            suggest_split=should_suggest_split(line_items),
        )

    @staticmethod
    def apply_to_receipt(receipt: Receipt, text: str | None) -> Receipt:
        """Return ``receipt`` updated with the fields parsed from ``text``."""

        if not text or not text.strip():
            logger.warning("Receipt %s produced no OCR text", receipt.receipt_id)
            return receipt.model_copy(update={"ocr_status": OcrStatus.FAILED})

        result = ReceiptProcessor.extract_from_text(text)
        if result.line_items:
            logger.info(
                "Detected %d line items on receipt %s (split suggested: %s)",
                len(result.line_items),
                receipt.receipt_id,
                result.suggest_split,
            )
        return receipt.model_copy(
            update={
                "ocr_status": OcrStatus.COMPLETED,
                "ocr_confidence": result.confidence,
                "extracted_merchant": result.vendor,
                "extracted_amount": result.total,
                "extracted_date": result.date,
                "extracted_tax": result.tax,
                "extracted_currency": result.currency,
                "extracted_line_items": result.line_items,
                "suggest_split": result.suggest_split,
            }
        )

    @staticmethod
    def _parse_total(text: str) -> Decimal | None:
        match = ReceiptProcessor.TOTAL_PATTERN.search(text)
        if match:
            value = _parse_amount(match.group(1))
            if value is not None:
                return value
        # Without a labelled total, the largest plausible amount is the total.
        amounts = [
            amount
            for amount in (
                _parse_amount(raw) for raw in ReceiptProcessor.AMOUNT_PATTERN.findall(text)
            )
            if amount is not None and Decimal("0") < amount < MAX_LINE_ITEM_AMOUNT
        ]
        return max(amounts) if amounts else None

    @staticmethod
    def _parse_tax(text: str) -> Decimal | None:
        for line in text.splitlines():
            if not ReceiptProcessor.TAX_PATTERN.search(line):
                continue
            match = ReceiptProcessor.AMOUNT_PATTERN.search(line)
            if match:
                return _parse_amount(match.group(1))
        return None

    @staticmethod
    def _parse_date(text: str) -> dt_date | None:
        match = ReceiptProcessor.DATE_PATTERN.search(text)
        if not match:
            return None
        raw_date = " ".join(match.group(1).replace(",", " ").replace(".", " ").split())
        for fmt in (
            "%Y-%m-%d",
            "%m/%d/%Y",
            "%m/%d/%y",
            "%m-%d-%Y",
            "%m-%d-%y",
            "%b %d %Y",
            "%B %d %Y",
        ):
            try:
                return datetime.strptime(raw_date, fmt).date()
            except ValueError:
                continue
        return None

    @staticmethod
    def _parse_vendor(text: str) -> str | None:
        lines = [line.strip() for line in text.splitlines() if line.strip()]
        if not lines:
            return None
        header = lines[0]
        if header.lower().startswith("receipt"):
            return lines[1] if len(lines) > 1 else None
        return header

    @staticmethod
    def _parse_currency(text: str, *, has_amounts: bool) -> str | None:
        upper = text.upper()
        for keyword, code in ReceiptProcessor.CURRENCY_KEYWORDS.items():
            if re.search(r"\b" + keyword + r"\b", upper):
                return code
        for symbol, code in ReceiptProcessor.CURRENCY_SYMBOLS.items():
            if symbol in text:
                return code
        return "USD" if has_amounts else None
