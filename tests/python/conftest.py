"""Test configuration for adding src to the import path."""

from __future__ import annotations

import sys
from collections.abc import Callable
from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[2]
SRC_PATH = ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from expense_rules import Expense, ImportedTransaction, PerDiemRate, TravelTrip


@pytest.fixture()
def expense_factory() -> Callable[..., Expense]:
    def _factory(**overrides: object) -> Expense:
        data = {
            "expense_id": "EXP-001",
            "organization_id": "org-1",
            "user_id": "user-1",
            "merchant": "Corner Bistro",
            "amount": Decimal("42.50"),
            "category": "Meals & Entertainment",
            # Wednesday
            "expense_date": date(2024, 9, 18),
            "notes": "Client lunch",
        }
        data.update(overrides)
        return Expense(**data)

    return _factory


@pytest.fixture()
def transaction_factory() -> Callable[..., ImportedTransaction]:
    def _factory(**overrides: object) -> ImportedTransaction:
        data = {
            "transaction_id": "TX-001",
            "organization_id": "org-1",
            "user_id": "user-1",
            "merchant_name": "UBER TRIP 123",
            "transaction_name": "UBER *TRIP HELP.UBER.COM",
            "amount": Decimal("23.40"),
            "transaction_date": date(2024, 9, 18),
            "category": ["Travel", "Taxi"],
        }
        data.update(overrides)
        return ImportedTransaction(**data)

    return _factory


@pytest.fixture()
def chicago_rate() -> PerDiemRate:
    return PerDiemRate(
        location="Chicago, IL",
        country_code="US",
        state_province="IL",
        city="Chicago",
        lodging_rate=Decimal("261"),
        mie_rate=Decimal("79"),
        fiscal_year=2024,
        effective_from=date(2024, 1, 1),
        source="gsa",
    )


@pytest.fixture()
def trip_factory() -> Callable[..., TravelTrip]:
    def _factory(**overrides: object) -> TravelTrip:
        data = {
            "trip_id": "TRIP-001",
            "organization_id": "org-1",
            "user_id": "user-1",
            "trip_name": "Partner summit",
            "destination_city": "Chicago",
            "destination_state": "IL",
            "start_date": date(2024, 9, 16),
            "end_date": date(2024, 9, 18),
        }
        data.update(overrides)
        return TravelTrip(**data)

    return _factory
