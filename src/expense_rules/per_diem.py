"""Per-diem travel allowances following GSA conventions.

The calculator functions are pure: given a daily meals and incidental
expenses (M&IE) rate and the flags for a day, they return the allowance for
that day. No rounding is applied; callers quantize to cents when they display
or store a value.

Trip helpers build one day record per calendar day of a trip and recompute
the trip totals from those days after every change, so the trip total always
equals the sum of the day allowances.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import date, timedelta
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Annotated

import yaml
from pydantic import BaseModel, ConfigDict, Field, model_validator

logger = logging.getLogger(__name__)


class MealType(str, Enum):
    """Meals that can be provided during travel."""

    BREAKFAST = "breakfast"
    LUNCH = "lunch"
    DINNER = "dinner"


GSA_MEAL_DEDUCTION_PERCENTAGES: dict[MealType, Decimal] = {
    MealType.BREAKFAST: Decimal("0.20"),
    MealType.LUNCH: Decimal("0.30"),
    MealType.DINNER: Decimal("0.50"),
}

# First and last day of travel receive 75% of the full M&IE rate.
TRAVEL_DAY_MIE_PERCENTAGE = Decimal("0.75")

_ZERO = Decimal("0")


def _as_decimal(value: Decimal | int | float | str) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


class MealAdjustment(BaseModel):
    """Deduction applied to a day's M&IE for a provided meal."""

    meal: MealType = Field(..., description="Meal that was provided")
    deduction: Decimal = Field(..., description="Amount deducted from M&IE")
    reason: str = Field(..., description="Explanation shown alongside the deduction")


def meal_deduction(mie_rate: Decimal | int | float | str, meal: MealType | str) -> Decimal:
    """Return the amount deducted from ``mie_rate`` when ``meal`` is provided."""

    return _as_decimal(mie_rate) * GSA_MEAL_DEDUCTION_PERCENTAGES[MealType(meal)]


def travel_day_mie(
    full_rate: Decimal | int | float | str,
    percentage: Decimal = TRAVEL_DAY_MIE_PERCENTAGE,
) -> Decimal:
    """Return the M&IE allowance for a first or last travel day."""

    return _as_decimal(full_rate) * percentage


def meal_adjustments(
    mie_rate: Decimal | int | float | str,
    *,
    breakfast_provided: bool = False,
    lunch_provided: bool = False,
    dinner_provided: bool = False,
) -> list[MealAdjustment]:
    """Itemize the deductions for the provided meals of a day."""

    provided = {
        MealType.BREAKFAST: breakfast_provided,
        MealType.LUNCH: lunch_provided,
        MealType.DINNER: dinner_provided,
    }
    adjustments: list[MealAdjustment] = []
    for meal, is_provided in provided.items():
        if not is_provided:
            continue
        percentage = GSA_MEAL_DEDUCTION_PERCENTAGES[meal]
        adjustments.append(
            MealAdjustment(
                meal=meal,
                deduction=meal_deduction(mie_rate, meal),
                reason=f"{meal.value.capitalize()} provided ({percentage:.0%} of M&IE)",
            )
        )
    return adjustments


def adjusted_mie(
    mie_rate: Decimal | int | float | str,
    *,
    is_first_or_last_day: bool = False,
    breakfast_provided: bool = False,
    lunch_provided: bool = False,
    dinner_provided: bool = False,
    travel_day_percentage: Decimal = TRAVEL_DAY_MIE_PERCENTAGE,
) -> Decimal:
    """Return the M&IE allowance for a day after travel-day and meal adjustments.

    The travel-day reduction is applied first. Meal deductions are always
    computed from the full ``mie_rate`` and the result never drops below zero.
    """

    rate = _as_decimal(mie_rate)
    allowance = travel_day_mie(rate, travel_day_percentage) if is_first_or_last_day else rate
    for adjustment in meal_adjustments(
        rate,
        breakfast_provided=breakfast_provided,
        lunch_provided=lunch_provided,
        dinner_provided=dinner_provided,
    ):
        allowance -= adjustment.deduction
    return max(_ZERO, allowance)


class PerDiemRate(BaseModel):
    """Location-based daily allowance rate."""

    organization_id: str | None = Field(
        default=None, description="Owning organization; None for system defaults"
    )
    location: str = Field(..., description="Display name for the rate location")
    country_code: str = Field(default="US", description="ISO 3166-1 alpha-2 code")
    state_province: str | None = Field(
        default=None, description="State or province; None for country-wide rates"
    )
    city: str | None = Field(
        default=None, description="City; None for state or country-wide rates"
    )
    lodging_rate: Annotated[Decimal, Field(ge=0)] = Field(
        ..., description="Daily lodging allowance"
    )
    mie_rate: Annotated[Decimal, Field(ge=0)] = Field(
        ..., description="Daily meals and incidental expenses allowance"
    )
    fiscal_year: int | None = Field(default=None, description="Fiscal year of the rate")
    effective_from: date = Field(..., description="First date the rate applies")
    effective_until: date | None = Field(
        default=None, description="Last date the rate applies; None when open-ended"
    )
    source: str = Field(default="custom", description="Rate source, e.g. gsa or custom")
    is_active: bool = Field(default=True, description="Whether the rate can be used")

    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="after")
    def _validate_dates(self) -> PerDiemRate:
        if self.effective_until and self.effective_until < self.effective_from:
            msg = "effective_until must be on or after effective_from"
            raise ValueError(msg)
        return self

    @property
    def total_rate(self) -> Decimal:
        return self.lodging_rate + self.mie_rate

    @property
    def specificity(self) -> int:
        """0 for city rates, 1 for state rates, 2 for country-wide rates."""

        if self.city is not None:
            return 0
        if self.state_province is not None:
            return 1
        return 2

    def applies_on(self, reference_date: date) -> bool:
        if reference_date < self.effective_from:
            return False
        if self.effective_until and reference_date > self.effective_until:
            return False
        return True

    def covers(self, location: str, state: str | None) -> bool:
        """Return True when the rate applies to the location and state."""

        if self.city is not None:
            names = {self.city.casefold(), self.location.casefold()}
            if location.casefold() not in names:
                return False
            if state and self.state_province:
                return state.casefold() == self.state_province.casefold()
            return True
        if self.state_province is not None:
            return state is not None and state.casefold() == self.state_province.casefold()
        return True


class PerDiemLookupResult(BaseModel):
    """Rate selected for a location."""

    location: str
    lodging_rate: Decimal
    mie_rate: Decimal
    total_rate: Decimal
    fiscal_year: int | None = None
    is_standard_rate: bool
    source: str


def _split_location(location: str) -> tuple[str, str | None]:
    city, _, state = location.partition(",")
    return city.strip(), (state.strip() or None)


class PerDiemRateTable(BaseModel):
    """Collection of per-diem rates with lookup helpers."""

    rates: list[PerDiemRate] = Field(default_factory=list)

    @classmethod
    def from_yaml(cls, content: str) -> PerDiemRateTable:
        data = yaml.safe_load(content) or {}
        rates = data.get("rates")
        if not rates:
            raise ValueError("Per diem configuration must include a 'rates' list")
        return cls.model_validate(data)

    @classmethod
    def from_file(cls, path: str | Path | None = None) -> PerDiemRateTable:
        target_path = Path(path) if path is not None else _default_rates_path()
        if target_path is None:
            raise FileNotFoundError("No per_diem_rates.yaml file found")
        return cls.from_yaml(target_path.read_text(encoding="utf-8"))

    def lookup(
        self,
        organization_id: str | None,
        location: str,
        country_code: str = "US",
        *,
        state: str | None = None,
        on: date | None = None,
    ) -> PerDiemLookupResult | None:
        """Return the most specific active rate for the location.

        Organization rates win over system defaults, then city rates over
        state rates over country-wide rates, then the most recent rate.
        ``location`` may carry the state as ``"City, ST"``.
        """

        reference_date = on or date.today()
        city, parsed_state = _split_location(location)
        state = state or parsed_state
        candidates = [
            rate
            for rate in self.rates
            if rate.is_active
            and rate.country_code.upper() == country_code.upper()
            and rate.organization_id in (None, organization_id)
            and rate.applies_on(reference_date)
            and (rate.covers(city, state) or rate.covers(location, state))
        ]
        if not candidates:
            logger.debug("No per diem rate for %s (%s)", location, country_code)
            return None

        def _rank(rate: PerDiemRate) -> tuple[int, int, int]:
            is_org = organization_id is not None and rate.organization_id == organization_id
            return (0 if is_org else 1, rate.specificity, -rate.effective_from.toordinal())

        best = min(candidates, key=_rank)
        return PerDiemLookupResult(
            location=best.location,
            lodging_rate=best.lodging_rate,
            mie_rate=best.mie_rate,
            total_rate=best.total_rate,
            fiscal_year=best.fiscal_year,
            is_standard_rate=best.specificity == 2,
            source=best.source,
        )


def _default_rates_path() -> Path | None:
    for parent in Path(__file__).resolve().parents:
        candidate = parent / "config" / "per_diem_rates.yaml"
        if candidate.exists():
            return candidate
    return None


class TripStatus(str, Enum):
    """Status of a travel trip."""

    PLANNED = "planned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


_TRIP_TRANSITIONS: dict[TripStatus, frozenset[TripStatus]] = {
    TripStatus.PLANNED: frozenset(
        {TripStatus.IN_PROGRESS, TripStatus.COMPLETED, TripStatus.CANCELLED}
    ),
    TripStatus.IN_PROGRESS: frozenset({TripStatus.COMPLETED, TripStatus.CANCELLED}),
    TripStatus.COMPLETED: frozenset(),
    TripStatus.CANCELLED: frozenset(),
}


class TravelTripDay(BaseModel):
    """Per-diem record for one calendar day of a trip."""

    travel_date: date = Field(..., description="Date of this travel day")
    day_number: Annotated[int, Field(ge=1)] = Field(
        ..., description="Day number within the trip (1-based)"
    )
    location: str | None = Field(default=None, description="Location for the day")
    lodging_allowance: Annotated[Decimal, Field(ge=0)] = Field(
        default=_ZERO, description="Lodging allowance for the day"
    )
    mie_allowance: Annotated[Decimal, Field(ge=0)] = Field(
        default=_ZERO, description="Full M&IE rate before adjustments"
    )
    is_first_day: bool = Field(default=False)
    is_last_day: bool = Field(default=False)
    breakfast_provided: bool = Field(default=False)
    lunch_provided: bool = Field(default=False)
    dinner_provided: bool = Field(default=False)
    adjusted_mie: Decimal | None = Field(
        default=None, description="M&IE after travel-day and meal adjustments"
    )
    notes: str | None = Field(default=None)

    @property
    def is_travel_day(self) -> bool:
        return self.is_first_day or self.is_last_day

    def compute_adjusted_mie(
        self, travel_day_percentage: Decimal = TRAVEL_DAY_MIE_PERCENTAGE
    ) -> Decimal:
        return adjusted_mie(
            self.mie_allowance,
            is_first_or_last_day=self.is_travel_day,
            breakfast_provided=self.breakfast_provided,
            lunch_provided=self.lunch_provided,
            dinner_provided=self.dinner_provided,
            travel_day_percentage=travel_day_percentage,
        )

    def total(self) -> Decimal:
        mie = self.adjusted_mie if self.adjusted_mie is not None else self.mie_allowance
        return self.lodging_allowance + mie


class TravelTrip(BaseModel):
    """Business trip with a per-day per-diem breakdown."""

    trip_id: str = Field(..., description="Unique identifier for the trip")
    organization_id: str | None = Field(default=None)
    user_id: str | None = Field(default=None)
    trip_name: str = Field(..., description="Trip name or purpose")
    description: str | None = Field(default=None)
    destination_city: str = Field(..., description="Primary destination city")
    destination_state: str | None = Field(default=None)
    destination_country: str = Field(default="US")
    start_date: date = Field(..., description="First day of travel")
    end_date: date = Field(..., description="Last day of travel")
    status: TripStatus = Field(default=TripStatus.PLANNED)
    travel_day_rate: Annotated[Decimal, Field(ge=0, le=1)] = Field(
        default=TRAVEL_DAY_MIE_PERCENTAGE,
        description="Share of M&IE paid on the first and last day",
    )
    days: list[TravelTripDay] = Field(default_factory=list)
    total_lodging_allowance: Decimal = Field(default=_ZERO)
    total_mie_allowance: Decimal = Field(default=_ZERO)
    total_per_diem: Decimal = Field(default=_ZERO)
    actual_lodging_expense: Decimal | None = Field(default=None)
    actual_meal_expense: Decimal | None = Field(default=None)

    @model_validator(mode="after")
    def _validate_dates(self) -> TravelTrip:
        if self.end_date < self.start_date:
            msg = "end_date must be on or after start_date"
            raise ValueError(msg)
        return self

    def total_days(self) -> int:
        return (self.end_date - self.start_date).days + 1

    def travel_dates(self) -> list[date]:
        return [self.start_date + timedelta(days=offset) for offset in range(self.total_days())]

    def day_for(self, travel_date: date) -> TravelTripDay | None:
        for day in self.days:
            if day.travel_date == travel_date:
                return day
        return None

    @property
    def actual_total(self) -> Decimal:
        return (self.actual_lodging_expense or _ZERO) + (self.actual_meal_expense or _ZERO)


class DailyPerDiemBreakdown(BaseModel):
    """Calculated allowance for one day of a trip."""

    travel_date: date
    day_number: int
    lodging: Decimal
    mie: Decimal = Field(..., description="M&IE after the travel-day reduction")
    adjustments: list[MealAdjustment] = Field(default_factory=list)
    adjusted_mie: Decimal
    total: Decimal


class TripPerDiemCalculation(BaseModel):
    """Per-diem totals and daily breakdown for a trip."""

    total_days: int
    total_lodging: Decimal
    total_mie: Decimal
    total_per_diem: Decimal
    daily_breakdown: list[DailyPerDiemBreakdown] = Field(default_factory=list)


RateLike = PerDiemRate | PerDiemLookupResult


def build_trip_days(trip: TravelTrip, rate: RateLike) -> list[TravelTripDay]:
    """Build one day record per calendar day, keeping existing meal flags."""

    dates = trip.travel_dates()
    last_number = len(dates)
    days: list[TravelTripDay] = []
    for number, travel_date in enumerate(dates, start=1):
        previous = trip.day_for(travel_date)
        day = TravelTripDay(
            travel_date=travel_date,
            day_number=number,
            location=(previous.location if previous else None) or trip.destination_city,
            lodging_allowance=rate.lodging_rate,
            mie_allowance=rate.mie_rate,
            is_first_day=number == 1,
            is_last_day=number == last_number,
            breakfast_provided=previous.breakfast_provided if previous else False,
            lunch_provided=previous.lunch_provided if previous else False,
            dinner_provided=previous.dinner_provided if previous else False,
            notes=previous.notes if previous else None,
        )
        day.adjusted_mie = day.compute_adjusted_mie(trip.travel_day_rate)
        days.append(day)
    return days


def _breakdown(day: TravelTripDay, travel_day_percentage: Decimal) -> DailyPerDiemBreakdown:
    base_mie = (
        travel_day_mie(day.mie_allowance, travel_day_percentage)
        if day.is_travel_day
        else day.mie_allowance
    )
    adjusted = day.compute_adjusted_mie(travel_day_percentage)
    return DailyPerDiemBreakdown(
        travel_date=day.travel_date,
        day_number=day.day_number,
        lodging=day.lodging_allowance,
        mie=base_mie,
        adjustments=meal_adjustments(
            day.mie_allowance,
            breakfast_provided=day.breakfast_provided,
            lunch_provided=day.lunch_provided,
            dinner_provided=day.dinner_provided,
        ),
        adjusted_mie=adjusted,
        total=day.lodging_allowance + adjusted,
    )


def calculate_trip_per_diem(trip: TravelTrip, rate: RateLike) -> TripPerDiemCalculation:
    """Calculate the per-diem allowance for every day of a trip."""

    days = build_trip_days(trip, rate)
    breakdown = [_breakdown(day, trip.travel_day_rate) for day in days]
    total_lodging = sum((entry.lodging for entry in breakdown), _ZERO)
    total_mie = sum((entry.adjusted_mie for entry in breakdown), _ZERO)
    return TripPerDiemCalculation(
        total_days=len(days),
        total_lodging=total_lodging,
        total_mie=total_mie,
        total_per_diem=total_lodging + total_mie,
        daily_breakdown=breakdown,
    )


def _with_days(trip: TravelTrip, days: list[TravelTripDay]) -> TravelTrip:
    recomputed = [
        day.model_copy(update={"adjusted_mie": day.compute_adjusted_mie(trip.travel_day_rate)})
        for day in days
    ]
    total_lodging = sum((day.lodging_allowance for day in recomputed), _ZERO)
    total_mie = sum((day.adjusted_mie or _ZERO for day in recomputed), _ZERO)
    return trip.model_copy(
        update={
            "days": recomputed,
            "total_lodging_allowance": total_lodging,
            "total_mie_allowance": total_mie,
            "total_per_diem": total_lodging + total_mie,
        }
    )


def recalculate_trip(trip: TravelTrip, rate: RateLike) -> TravelTrip:
    """Return a copy of the trip with days and totals rebuilt from ``rate``."""

    updated = _with_days(trip, build_trip_days(trip, rate))
    logger.info(
        "Recalculated per diem for trip %s: %s days, total %s",
        trip.trip_id,
        len(updated.days),
        updated.total_per_diem,
    )
    return updated


def update_trip_day(
    trip: TravelTrip,
    travel_date: date,
    *,
    breakfast_provided: bool | None = None,
    lunch_provided: bool | None = None,
    dinner_provided: bool | None = None,
    location: str | None = None,
    notes: str | None = None,
) -> TravelTrip:
    """Update one day's meal flags and recompute the trip totals.

    The trip's days must cover ``start_date`` through ``end_date`` once each;
    after the dates change, run :func:`recalculate_trip` first.
    """

    if sorted(day.travel_date for day in trip.days) != trip.travel_dates():
        msg = (
            f"Trip {trip.trip_id} days do not match its dates; "
            "run recalculate_trip before updating a day"
        )
        raise ValueError(msg)
    if trip.day_for(travel_date) is None:
        msg = f"Trip {trip.trip_id} has no day for {travel_date.isoformat()}"
        raise ValueError(msg)

    changes = {
        "breakfast_provided": breakfast_provided,
        "lunch_provided": lunch_provided,
        "dinner_provided": dinner_provided,
        "location": location,
        "notes": notes,
    }
    update = {key: value for key, value in changes.items() if value is not None}
    days = [
        day.model_copy(update=update) if day.travel_date == travel_date else day
        for day in trip.days
    ]
    logger.debug("Updated trip %s day %s: %s", trip.trip_id, travel_date, sorted(update))
    return _with_days(trip, days)


def update_trip_status(trip: TravelTrip, status: TripStatus | str) -> TravelTrip:
    """Return a copy of the trip moved to ``status``."""

    target = TripStatus(status)
    if target == trip.status:
        return trip
    if target not in _TRIP_TRANSITIONS[trip.status]:
        msg = f"Cannot move trip from {trip.status.value} to {target.value}"
        raise ValueError(msg)
    logger.info("Trip %s status %s -> %s", trip.trip_id, trip.status.value, target.value)
    return trip.model_copy(update={"status": target})


def active_trips(trips: Iterable[TravelTrip]) -> list[TravelTrip]:
    """Return planned and in-progress trips."""

    return [
        trip
        for trip in trips
        if trip.status in (TripStatus.PLANNED, TripStatus.IN_PROGRESS)
    ]


class PerDiemSummary(BaseModel):
    """Dashboard totals across trips."""

    total_trips: int
    total_per_diem_claimed: Decimal
    total_actual_expenses: Decimal
    variance: Decimal
    average_daily_rate: Decimal


def summarize_trips(trips: Iterable[TravelTrip]) -> PerDiemSummary:
    """Summarize per-diem claims against actual spend, ignoring cancelled trips."""

    counted = [trip for trip in trips if trip.status != TripStatus.CANCELLED]
    claimed = sum((trip.total_per_diem for trip in counted), _ZERO)
    actual = sum((trip.actual_total for trip in counted), _ZERO)
    total_days = sum(trip.total_days() for trip in counted)
    average = claimed / total_days if total_days else _ZERO
    return PerDiemSummary(
        total_trips=len(counted),
        total_per_diem_claimed=claimed,
        total_actual_expenses=actual,
        variance=claimed - actual,
        average_daily_rate=average,
    )
