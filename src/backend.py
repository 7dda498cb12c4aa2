"""
Backend module for the mutual-fund NAV calculator.
Contains the NAV-series calculation engine (parsing, date lookups, growth math,
lumpsum / SIP / SWP / period and rolling returns), separated from the web
server and the terminal UI.
"""
from __future__ import annotations

import datetime as dt
import enum
import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Iterator, Sequence

import numpy as np
import pandas as pd

from errors import ComputationError, DataUnavailableError, RangeError, ValidationError
from provider import NavProvider, get_default_provider

logger = logging.getLogger(__name__)

DAYS_PER_YEAR = 365.25
PROVIDER_DATE_FORMAT = "%d-%m-%Y"
REQUEST_DATE_FORMAT = "%Y-%m-%d"
DISPLAY_DATE_FORMAT = "%d-%m-%Y"
ANCHOR_DATE_FORMATS = ("%Y-%m-%d", "%d-%m-%Y", "%d/%m/%Y")
MISSING_NAV_VALUES = ("", "-")
MIN_REQUEST_YEAR = 1900
MAX_REQUEST_YEAR = 2200

# Calendar step per frequency as (months, days)
SIP_FREQUENCIES = {
    "monthly": (1, 0),
    "quarterly": (3, 0),
    "halfyearly": (6, 0),
    "yearly": (12, 0),
}
SWP_FREQUENCIES = {
    "monthly": (1, 0),
    "weekly": (0, 7),
    "daily": (0, 1),
}
PERIOD_MONTHS = {"monthly": 1, "quarterly": 3, "yearly": 12}
PERIOD_CHOICES = ("overall", *PERIOD_MONTHS)
STEP_UP_KINDS = ("percentage", "amount")
DEFAULT_ROLLING_INTERVALS = ("day", "month", "1year", "3year", "5year")
DEFAULT_STEP_UP_VALUE = 10.0
DEFAULT_ROLLING_STEP_DAYS = 30
WITHDRAWALS_PER_STEP_UP = 12


# =============================================================================
# Data Classes
# =============================================================================

@dataclass(frozen=True)
class NavPoint:
    """One trading day's published NAV."""
    date: dt.date
    nav: float
    raw_label: str  # provider-formatted date, e.g. "05-01-2024"

    @property
    def display_date(self) -> str:
        return format_display(self.date)


class NavSeries:
    """
    Immutable NAV series, strictly ascending by date.

    Backed by a DatetimeIndex so date lookups are a binary search.
    """

    def __init__(self, points: Iterable[NavPoint] = ()) -> None:
        pts = tuple(points)
        for prev, cur in zip(pts, pts[1:]):
            if not prev.date < cur.date:
                raise ValueError(
                    f"NAV series must be strictly ascending by date: {prev.date} followed by {cur.date}"
                )
        self._points = pts
        self.index = pd.DatetimeIndex([pd.Timestamp(p.date) for p in pts])

    @classmethod
    def from_pairs(cls, pairs: Iterable[tuple[dt.date | str, float]]) -> NavSeries:
        """Build a series from (date, nav) pairs; string dates are YYYY-MM-DD."""
        points = []
        for when, nav in pairs:
            day = dt.date.fromisoformat(when) if isinstance(when, str) else when
            points.append(NavPoint(day, float(nav), day.strftime(PROVIDER_DATE_FORMAT)))
        return cls(points)

    def __len__(self) -> int:
        return len(self._points)

    def __iter__(self) -> Iterator[NavPoint]:
        return iter(self._points)

    def __getitem__(self, pos: int) -> NavPoint:
        return self._points[pos]

    @property
    def first(self) -> NavPoint | None:
        return self._points[0] if self._points else None

    @property
    def last(self) -> NavPoint | None:
        return self._points[-1] if self._points else None

    @property
    def earliest_date(self) -> dt.date | None:
        return self._points[0].date if self._points else None

    @property
    def latest_date(self) -> dt.date | None:
        return self._points[-1].date if self._points else None

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(
            {
                "nav": [p.nav for p in self._points],
                "raw_date": [p.raw_label for p in self._points],
            },
            index=self.index,
        )


@dataclass
class SchemeMeta:
    scheme_code: str
    scheme_name: str | None = None
    fund_house: str | None = None
    scheme_type: str | None = None
    scheme_category: str | None = None
    isin_growth: str | None = None
    isin_div_reinvestment: str | None = None

    @classmethod
    def from_payload(cls, payload: dict, code: str) -> SchemeMeta:
        meta = payload.get("meta") or {}
        return cls(
            scheme_code=str(meta.get("scheme_code", code)),
            scheme_name=meta.get("scheme_name"),
            fund_house=meta.get("fund_house"),
            scheme_type=meta.get("scheme_type"),
            scheme_category=meta.get("scheme_category"),
            isin_growth=meta.get("isin_growth"),
            isin_div_reinvestment=meta.get("isin_div_reinvestment"),
        )

    def to_dict(self) -> dict:
        return {
            "scheme_code": self.scheme_code,
            "scheme_name": self.scheme_name,
            "fund_house": self.fund_house,
            "scheme_type": self.scheme_type,
            "scheme_category": self.scheme_category,
            "isin_growth": self.isin_growth,
            "isin_div_reinvestment": self.isin_div_reinvestment,
        }


# =============================================================================
# Date Helpers
# =============================================================================

def format_display(day: dt.date) -> str:
    return day.strftime(DISPLAY_DATE_FORMAT)


def format_iso(day: dt.date) -> str:
    return day.isoformat()


def shift_date(day: dt.date, months: int = 0, days: int = 0) -> dt.date:
    """Calendar-aware shift; month arithmetic clamps to the last day of the month (Jan 31 + 1 month = Feb 28/29)."""
    return (pd.Timestamp(day) + pd.DateOffset(months=months, days=days)).date()


def schedule_dates(start: dt.date, end: dt.date, months: int = 0, days: int = 0) -> Iterator[dt.date]:
    """Yield start, start + step, start + 2*step, ... while <= end.

    Each date is computed from the anchor so day-of-month clamping does not drift.
    """
    if months <= 0 and days <= 0:
        raise ValueError("schedule step must be positive")
    i = 0
    while True:
        when = shift_date(start, months=months * i, days=days * i)
        if when > end:
            return
        yield when
        i += 1


def days_between(start: dt.date, end: dt.date) -> int:
    return (end - start).days


def years_between(start: dt.date, end: dt.date) -> float:
    return days_between(start, end) / DAYS_PER_YEAR


def parse_request_date(value: Any, field_name: str) -> dt.date:
    """Parse a YYYY-MM-DD request date, raising ValidationError."""
    if value is None or str(value).strip() == "":
        raise ValidationError(
            f"Validation Failed: '{field_name}' date is required (YYYY-MM-DD).",
            parameter=field_name,
        )
    try:
        day = dt.datetime.strptime(str(value).strip(), REQUEST_DATE_FORMAT).date()
    except ValueError:
        raise ValidationError(
            f"Validation Failed: Invalid date format for '{field_name}'. Please use YYYY-MM-DD.",
            parameter=field_name,
            value=str(value),
        ) from None
    _check_year(day, field_name)
    return day


def parse_anchor_date(value: Any, field_name: str = "on") -> dt.date | None:
    """Parse an optional anchor date in YYYY-MM-DD, DD-MM-YYYY or DD/MM/YYYY."""
    if value is None or str(value).strip() == "":
        return None
    text = str(value).strip()
    for fmt in ANCHOR_DATE_FORMATS:
        try:
            day = dt.datetime.strptime(text, fmt).date()
        except ValueError:
            continue
        _check_year(day, field_name)
        return day
    raise ValidationError(
        f"Invalid date format for '{field_name}' parameter: {text}. Please use DD-MM-YYYY or YYYY-MM-DD.",
        parameter=field_name,
        value=text,
    )


def _check_year(day: dt.date, field_name: str) -> None:
    if not MIN_REQUEST_YEAR <= day.year <= MAX_REQUEST_YEAR:
        raise ValidationError(
            f"Validation Failed: '{field_name}' must be between {MIN_REQUEST_YEAR} and {MAX_REQUEST_YEAR}.",
            parameter=field_name,
            value=format_iso(day),
        )


# =============================================================================
# NAV Parsing and Lookup
# =============================================================================

def parse_navs(scheme: dict | None) -> NavSeries:
    """
    Convert a provider payload into an ascending NavSeries.

    Drops entries whose date is not DD-MM-YYYY and entries whose NAV is a
    sentinel ("", "-"), non-numeric, non-finite or not positive. When a date
    repeats, the entry listed first by the provider (newest first) wins.
    """
    if not scheme or not isinstance(scheme, dict) or not scheme.get("data"):
        return NavSeries()

    records = [r for r in scheme["data"] if isinstance(r, dict)]
    if not records:
        return NavSeries()

    df = pd.DataFrame(
        {
            "raw_date": [str(r.get("date", "")).strip() for r in records],
            "nav": [str(r.get("nav", "")) for r in records],
        }
    )
    df["date"] = pd.to_datetime(df["raw_date"], format=PROVIDER_DATE_FORMAT, errors="coerce")
    nav_text = df["nav"].str.replace(",", "", regex=False).str.strip()
    nav_text = nav_text.where(~nav_text.isin(MISSING_NAV_VALUES))
    df["nav"] = pd.to_numeric(nav_text, errors="coerce")

    valid = df["date"].notna() & np.isfinite(df["nav"]) & (df["nav"] > 0)
    dropped = int((~valid).sum())
    df = df[valid]
    df = df.drop_duplicates(subset="date", keep="first")
    df = df.iloc[::-1].sort_values("date", kind="stable")
    if dropped:
        logger.debug("Dropped %d invalid NAV entries", dropped)

    return NavSeries(
        NavPoint(ts.date(), float(nav), raw)
        for ts, nav, raw in zip(df["date"], df["nav"], df["raw_date"])
    )


def find_nav_on_or_before(series: NavSeries, target: dt.date) -> NavPoint | None:
    """Last point with date <= target, or None when every point is after target."""
    pos = series.index.searchsorted(pd.Timestamp(target), side="right") - 1
    if pos < 0:
        return None
    return series[pos]


def find_nav_on_or_after(series: NavSeries, target: dt.date) -> NavPoint | None:
    """First point with date >= target, or None when every point is before target."""
    pos = series.index.searchsorted(pd.Timestamp(target), side="left")
    if pos >= len(series):
        return None
    return series[pos]


class TransactionNavPolicy(str, enum.Enum):
    """Which side of a transaction date its NAV may come from."""
    AT_OR_BEFORE = "at_or_before"
    AT_OR_AFTER = "at_or_after"

    def resolve(self, series: NavSeries, target: dt.date) -> NavPoint | None:
        if self is TransactionNavPolicy.AT_OR_BEFORE:
            return find_nav_on_or_before(series, target)
        return find_nav_on_or_after(series, target)

    @property
    def phrase(self) -> str:
        return "on or before" if self is TransactionNavPolicy.AT_OR_BEFORE else "on or after"


class OnGapPolicy(str, enum.Enum):
    """What a simulation does when a scheduled date has no usable NAV."""
    STOP = "stop"  # end the simulation, keep what was executed
    SKIP = "skip"  # record a skipped event and continue
    FAIL = "fail"  # abort with ComputationError


def check_range(series: NavSeries, start: dt.date, end: dt.date | None = None) -> None:
    """Raise RangeError when requested dates fall outside the series."""
    if start < series.earliest_date or (end is not None and end > series.latest_date):
        context = {
            "earliestNAVDate": format_iso(series.earliest_date),
            "latestNAVDate": format_iso(series.latest_date),
            "requestedFrom": format_iso(start),
        }
        if end is not None:
            context["requestedTo"] = format_iso(end)
        raise RangeError(**context)


def _require_data(series: NavSeries, min_points: int = 1) -> None:
    if len(series) < min_points:
        if min_points > 1:
            raise DataUnavailableError(
                "NAV Data Error: Insufficient valid NAV data available for this scheme.",
                availablePoints=len(series),
                requiredPoints=min_points,
            )
        raise DataUnavailableError()


def _availability(series: NavSeries) -> dict:
    return {
        "availableFrom": format_iso(series.earliest_date),
        "availableTo": format_iso(series.latest_date),
    }


# =============================================================================
# Growth Math
# =============================================================================

def cagr(begin_value: float, end_value: float, years: float) -> float | None:
    """
    Compound annual growth rate as a fraction (0.10 for 10%).

    Returns None when growth is undefined (non-positive years or values),
    so "no growth" (0.0) stays distinguishable from "not applicable".
    """
    if years <= 0 or begin_value <= 0 or end_value <= 0:
        return None
    return (end_value / begin_value) ** (1 / years) - 1


def simple_return_pct(begin: float, end: float) -> float:
    """(end - begin) / begin * 100. Callers must guard begin == 0."""
    return (end - begin) / begin * 100


def as_pct(rate: float | None) -> float | None:
    return None if rate is None else rate * 100


def _round(value: float | None, digits: int) -> float | None:
    return None if value is None else round(value, digits)


def _money(value: float | None) -> float | None:
    return _round(value, 2)


def _units(value: float | None) -> float | None:
    return _round(value, 6)


# =============================================================================
# Point-in-Time Returns (Lumpsum)
# =============================================================================

@dataclass
class PointReturn:
    """Return between a start NAV and an end NAV."""
    start: NavPoint
    end: NavPoint

    @property
    def days(self) -> int:
        return days_between(self.start.date, self.end.date)

    @property
    def simple_return(self) -> float:
        return simple_return_pct(self.start.nav, self.end.nav)

    @property
    def annualized_return(self) -> float | None:
        return as_pct(cagr(self.start.nav, self.end.nav, self.days / DAYS_PER_YEAR))

    def to_dict(self) -> dict:
        return {
            "startDate": self.start.display_date,
            "endDate": self.end.display_date,
            "startNAV": self.start.nav,
            "endNAV": self.end.nav,
            "simpleReturn": _round(self.simple_return, 2),
            "annualizedReturn": _round(self.annualized_return, 2),
            "days": self.days,
        }


def calculate_point_return(series: NavSeries, start_date: dt.date, end_date: dt.date) -> PointReturn | None:
    """Start NAV on or after start_date, end NAV on or before end_date; None if no valid pair."""
    start = find_nav_on_or_after(series, start_date)
    end = find_nav_on_or_before(series, end_date)
    if start is None or end is None or start.date > end.date or start.nav <= 0:
        return None
    return PointReturn(start, end)


@dataclass
class LumpsumResult:
    investment: float
    requested_from: dt.date
    requested_to: dt.date
    start: NavPoint
    end: NavPoint
    units: float
    current_value: float
    gain: float
    simple_return: float
    annualized_return: float | None

    @property
    def date_adjusted(self) -> bool:
        return self.start.date != self.requested_from or self.end.date != self.requested_to

    def to_dict(self) -> dict:
        data = {
            "initialInvestment": _money(self.investment),
            "unitsPurchased": _units(self.units),
            "currentValue": _money(self.current_value),
            "totalGainLoss": _money(self.gain),
            "startDate": self.start.display_date,
            "endDate": self.end.display_date,
            "startNAV": self.start.nav,
            "endNAV": self.end.nav,
            "simpleReturn": _round(self.simple_return, 2),
            "annualizedReturn": _round(self.annualized_return, 2),
            "dateAdjusted": self.date_adjusted,
        }
        if self.date_adjusted:
            data["requestedFrom"] = format_display(self.requested_from)
            data["requestedTo"] = format_display(self.requested_to)
        return data


def calculate_lumpsum(series: NavSeries, investment: float, from_date: dt.date, to_date: dt.date) -> LumpsumResult:
    """One-time investment bought at the NAV on or after from_date, valued on or before to_date."""
    if investment <= 0:
        raise ValidationError("Validation Failed: 'investment' must be a positive number.", parameter="investment")
    if to_date < from_date:
        raise ValidationError("Validation Failed: 'to' date cannot be before 'from' date.", parameter="to")
    _require_data(series)
    check_range(series, from_date, to_date)

    start = find_nav_on_or_after(series, from_date)
    if start is None:
        raise ComputationError(
            f"Date Range Error: Could not find NAV data on or after start date: {format_iso(from_date)}.",
            date=format_iso(from_date),
            earliestNAVDate=format_iso(series.earliest_date),
        )
    end = find_nav_on_or_before(series, to_date)
    if end is None or start.date > end.date:
        raise ComputationError(
            "Date Range Error: Could not find NAV data up to the end date or the period is invalid.",
            date=format_iso(to_date),
            latestNAVDate=format_iso(series.latest_date),
        )
    if start.nav <= 0 or end.nav <= 0:
        bad = start if start.nav <= 0 else end
        raise ComputationError(
            "NAV Data Error: NAV is zero or negative for one of the selected dates.",
            status=400,
            date=format_iso(bad.date),
        )

    units = investment / start.nav
    current_value = units * end.nav
    gain = current_value - investment
    years = years_between(start.date, end.date)
    return LumpsumResult(
        investment=investment,
        requested_from=from_date,
        requested_to=to_date,
        start=start,
        end=end,
        units=units,
        current_value=current_value,
        gain=gain,
        simple_return=gain / investment * 100,
        annualized_return=as_pct(cagr(start.nav, end.nav, years)),
    )


# =============================================================================
# Recurring Cash-Flow Simulation (SIP / SWP)
# =============================================================================

@dataclass(frozen=True)
class StepUpRule:
    """
    Periodic increase of the installment/withdrawal amount.

    After the k-th executed cash flow the amount is stepped when
    k >= first_after and (k - first_after) % every == 0.
    """
    kind: str  # "percentage" | "amount"
    value: float
    first_after: int = 1
    every: int = 1

    def applies_after(self, count: int) -> bool:
        return count >= self.first_after and (count - self.first_after) % self.every == 0

    def apply(self, amount: float) -> float:
        if self.kind == "percentage":
            return amount * (1 + self.value / 100)
        return amount + self.value


@dataclass
class CashFlowEvent:
    """One executed (or skipped) installment or withdrawal."""
    scheduled_date: dt.date
    nav_point: NavPoint | None
    amount: float = 0.0
    units: float = 0.0
    units_after: float = 0.0
    skipped: bool = False
    reason: str | None = None

    def to_dict(self, amount_key: str = "amount", units_key: str = "units") -> dict:
        if self.skipped:
            return {
                "date": format_display(self.scheduled_date),
                "nav": None,
                "skipped": True,
                "reason": self.reason,
            }
        return {
            "date": format_display(self.scheduled_date),
            "navDateUsed": self.nav_point.display_date,
            "nav": self.nav_point.nav,
            amount_key: _money(self.amount),
            units_key: _units(self.units),
            "balanceUnits": _units(self.units_after),
        }


@dataclass
class InstallmentPlan:
    amount: float
    frequency: str
    start: dt.date
    end: dt.date
    nav_policy: TransactionNavPolicy = TransactionNavPolicy.AT_OR_BEFORE
    on_gap: OnGapPolicy = OnGapPolicy.SKIP
    step_up: StepUpRule | None = None


@dataclass
class SipResult:
    plan: InstallmentPlan
    events: list[CashFlowEvent]
    total_invested: float
    total_units: float
    valuation: NavPoint
    current_value: float
    gain: float
    simple_return: float
    annualized_return: float | None
    step_up_applied: int
    next_amount: float

    @property
    def executed(self) -> list[CashFlowEvent]:
        return [e for e in self.events if not e.skipped]

    @property
    def installments(self) -> int:
        return len(self.executed)

    @property
    def first_installment(self) -> CashFlowEvent:
        return self.executed[0]

    @property
    def last_installment(self) -> CashFlowEvent:
        return self.executed[-1]

    @property
    def date_adjusted(self) -> bool:
        return (
            self.first_installment.nav_point.date != self.plan.start
            or self.valuation.date != self.plan.end
        )

    def to_dict(self) -> dict:
        data = {
            "frequency": self.plan.frequency,
            "navPolicy": self.plan.nav_policy.value,
            "installments": self.installments,
            "firstInstallmentDate": self.first_installment.nav_point.display_date,
            "lastInstallmentDate": self.last_installment.nav_point.display_date,
            "lastValuationDate": self.valuation.display_date,
            "valuationNAV": self.valuation.nav,
            "sipAmount": _money(self.plan.amount),
            "totalInvested": _money(self.total_invested),
            "totalUnits": _units(self.total_units),
            "currentValue": _money(self.current_value),
            "totalGainLoss": _money(self.gain),
            "simpleReturn": _round(self.simple_return, 2),
            "annualizedReturn": _round(self.annualized_return, 2),
            "dateAdjusted": self.date_adjusted,
            "events": [e.to_dict("amountInvested", "unitsPurchased") for e in self.events],
        }
        if self.date_adjusted:
            data["requestedFrom"] = format_display(self.plan.start)
            data["requestedTo"] = format_display(self.plan.end)
        if self.plan.step_up is not None:
            data.update(
                {
                    "stepUpType": self.plan.step_up.kind,
                    "stepUpValue": _money(self.plan.step_up.value),
                    "stepUpAppliedTimes": self.step_up_applied,
                    "lastAmount": _money(self.last_installment.amount),
                    "nextAmount": _money(self.next_amount),
                }
            )
        return data


def simulate_installments(series: NavSeries, plan: InstallmentPlan) -> SipResult:
    """
    Run a (step-up) SIP: buy units on every scheduled date in [start, end].

    The holding period for the annualized return runs from the first executed
    installment's NAV date to the valuation date (NAV on or before end).
    """
    months, days = SIP_FREQUENCIES[plan.frequency]
    amount = plan.amount
    total_invested = 0.0
    total_units = 0.0
    count = 0
    step_up_applied = 0
    events: list[CashFlowEvent] = []

    for when in schedule_dates(plan.start, plan.end, months=months, days=days):
        point = plan.nav_policy.resolve(series, when)
        if point is None or point.nav <= 0:
            reason = f"No valid NAV found {plan.nav_policy.phrase} this date."
            if plan.on_gap is OnGapPolicy.FAIL:
                raise ComputationError(
                    f"No valid NAV found {plan.nav_policy.phrase} date {format_iso(when)} for investment.",
                    date=format_iso(when),
                    **_availability(series),
                )
            if plan.on_gap is OnGapPolicy.STOP:
                break
            events.append(CashFlowEvent(when, point, units_after=total_units, skipped=True, reason=reason))
            continue

        units = amount / point.nav
        total_invested += amount
        total_units += units
        count += 1
        events.append(CashFlowEvent(when, point, amount=amount, units=units, units_after=total_units))

        if plan.step_up is not None and plan.step_up.applies_after(count):
            amount = plan.step_up.apply(amount)
            step_up_applied += 1

    valuation = find_nav_on_or_before(series, plan.end)
    if count == 0 or valuation is None or valuation.nav <= 0 or total_units == 0:
        raise ComputationError(
            "Calculation Error: No successful installments found within the period.",
            date=format_iso(plan.end),
            **_availability(series),
        )

    first_date = next(e.nav_point.date for e in events if not e.skipped)
    current_value = total_units * valuation.nav
    gain = current_value - total_invested
    years = years_between(first_date, valuation.date)
    return SipResult(
        plan=plan,
        events=events,
        total_invested=total_invested,
        total_units=total_units,
        valuation=valuation,
        current_value=current_value,
        gain=gain,
        simple_return=gain / total_invested * 100,
        annualized_return=as_pct(cagr(total_invested, current_value, years)),
        step_up_applied=step_up_applied,
        next_amount=amount,
    )


@dataclass
class WithdrawalPlan:
    initial_investment: float
    amount: float
    frequency: str
    start: dt.date
    end: dt.date
    purchase_policy: TransactionNavPolicy = TransactionNavPolicy.AT_OR_AFTER
    nav_policy: TransactionNavPolicy = TransactionNavPolicy.AT_OR_BEFORE
    on_gap: OnGapPolicy = OnGapPolicy.STOP
    step_up: StepUpRule | None = None


@dataclass
class SwpResult:
    plan: WithdrawalPlan
    initial_point: NavPoint
    initial_units: float
    events: list[CashFlowEvent]
    total_withdrawn: float
    remaining_units: float
    valuation: NavPoint
    current_value: float
    gain: float
    simple_return: float
    step_up_applied: int
    next_amount: float
    stopped_at: dt.date | None = None

    @property
    def executed(self) -> list[CashFlowEvent]:
        return [e for e in self.events if not e.skipped]

    @property
    def withdrawals(self) -> int:
        return len(self.executed)

    @property
    def date_adjusted(self) -> bool:
        return self.initial_point.date != self.plan.start or self.valuation.date != self.plan.end

    def to_dict(self) -> dict:
        executed = self.executed
        data = {
            "initialInvestment": _money(self.plan.initial_investment),
            "initialNavDate": self.initial_point.display_date,
            "initialNAV": self.initial_point.nav,
            "initialUnits": _units(self.initial_units),
            "frequency": self.plan.frequency,
            "withdrawalAmount": _money(self.plan.amount),
            "withdrawals": self.withdrawals,
            "totalWithdrawn": _money(self.total_withdrawn),
            "remainingUnits": _units(self.remaining_units),
            "currentValue": _money(self.current_value),
            "totalGainLoss": _money(self.gain),
            "simpleReturn": _round(self.simple_return, 2),
            "finalNavDate": self.valuation.display_date,
            "finalNAV": self.valuation.nav,
            "dateRange": {"from": format_display(self.plan.start), "to": format_display(self.plan.end)},
            "onGapPolicy": self.plan.on_gap.value,
            "stoppedAt": format_display(self.stopped_at) if self.stopped_at else None,
            "dateAdjusted": self.date_adjusted,
            "events": [e.to_dict("amountReceived", "unitsSold") for e in self.events],
        }
        if self.date_adjusted:
            data["requestedFrom"] = format_display(self.plan.start)
            data["requestedTo"] = format_display(self.plan.end)
        if self.plan.step_up is not None:
            data.update(
                {
                    "stepUpType": self.plan.step_up.kind,
                    "stepUpValue": _money(self.plan.step_up.value),
                    "stepUpAppliedTimes": self.step_up_applied,
                    "lastAmount": _money(executed[-1].amount) if executed else None,
                    "nextAmount": _money(self.next_amount),
                }
            )
        return data


def simulate_withdrawals(series: NavSeries, plan: WithdrawalPlan) -> SwpResult:
    """
    Run a (step-up) SWP against a corpus bought at the start date.

    Each withdrawal sells min(amount / NAV, remaining units), so the last one
    may be partial and units never go negative. The loop ends at `end` or when
    the corpus is exhausted; a missing NAV is handled per plan.on_gap.
    """
    initial = plan.purchase_policy.resolve(series, plan.start)
    if initial is None or initial.nav <= 0:
        raise ComputationError(
            "Could not find a valid NAV for the initial investment date.",
            status=422,
            date=format_iso(plan.start),
            **_availability(series),
        )

    months, days = SWP_FREQUENCIES[plan.frequency]
    initial_units = plan.initial_investment / initial.nav
    remaining = initial_units
    amount = plan.amount
    total_withdrawn = 0.0
    count = 0
    step_up_applied = 0
    stopped_at = None
    events: list[CashFlowEvent] = []

    for when in schedule_dates(plan.start, plan.end, months=months, days=days):
        if remaining <= 0:
            break
        point = plan.nav_policy.resolve(series, when)
        if point is None or point.nav <= 0:
            if plan.on_gap is OnGapPolicy.FAIL:
                raise ComputationError(
                    f"No valid NAV found {plan.nav_policy.phrase} date {format_iso(when)} for withdrawal.",
                    date=format_iso(when),
                    **_availability(series),
                )
            if plan.on_gap is OnGapPolicy.STOP:
                stopped_at = when
                logger.info("SWP stopped at %s: no usable NAV", when)
                break
            events.append(
                CashFlowEvent(
                    when,
                    point,
                    units_after=remaining,
                    skipped=True,
                    reason=f"No NAV found {plan.nav_policy.phrase} this date.",
                )
            )
            continue

        units_sold = min(amount / point.nav, remaining)
        received = units_sold * point.nav
        remaining = max(0.0, remaining - units_sold)
        total_withdrawn += received
        count += 1
        events.append(CashFlowEvent(when, point, amount=received, units=units_sold, units_after=remaining))

        if plan.step_up is not None and plan.step_up.applies_after(count):
            amount = plan.step_up.apply(amount)
            step_up_applied += 1

    valuation = find_nav_on_or_before(series, plan.end)
    if valuation is None or valuation.nav <= 0:
        raise ComputationError(
            "No valid NAV data found near the end date for final valuation.",
            date=format_iso(plan.end),
            **_availability(series),
        )

    current_value = remaining * valuation.nav
    gain = (total_withdrawn + current_value) - plan.initial_investment
    return SwpResult(
        plan=plan,
        initial_point=initial,
        initial_units=initial_units,
        events=events,
        total_withdrawn=total_withdrawn,
        remaining_units=remaining,
        valuation=valuation,
        current_value=current_value,
        gain=gain,
        simple_return=gain / plan.initial_investment * 100,
        step_up_applied=step_up_applied,
        next_amount=amount,
        stopped_at=stopped_at,
    )


def _check_cash_flow_dates(series: NavSeries, start: dt.date, end: dt.date, min_points: int = 1) -> None:
    if end < start:
        raise ValidationError("Validation Failed: 'to' date cannot be before 'from' date.", parameter="to")
    _require_data(series, min_points)
    check_range(series, start, end)


def calculate_sip(
    series: NavSeries, amount: float, frequency: str, from_date: dt.date, to_date: dt.date
) -> SipResult:
    """Plain SIP: NAV on or before each installment date, installments without a NAV are skipped."""
    _check_cash_flow_dates(series, from_date, to_date, min_points=2)
    plan = InstallmentPlan(
        amount=amount,
        frequency=frequency,
        start=from_date,
        end=to_date,
        nav_policy=TransactionNavPolicy.AT_OR_BEFORE,
        on_gap=OnGapPolicy.SKIP,
    )
    return simulate_installments(series, plan)


def calculate_step_up_sip(
    series: NavSeries,
    amount: float,
    from_date: dt.date,
    to_date: dt.date,
    step_up: StepUpRule,
    frequency: str = "monthly",
) -> SipResult:
    """Step-up SIP: NAV on or after each installment date; a missing NAV aborts the calculation."""
    _check_cash_flow_dates(series, from_date, to_date)
    plan = InstallmentPlan(
        amount=amount,
        frequency=frequency,
        start=from_date,
        end=to_date,
        nav_policy=TransactionNavPolicy.AT_OR_AFTER,
        on_gap=OnGapPolicy.FAIL,
        step_up=step_up,
    )
    return simulate_installments(series, plan)


def calculate_swp(
    series: NavSeries,
    initial_investment: float,
    amount: float,
    frequency: str,
    from_date: dt.date,
    to_date: dt.date,
    on_gap: OnGapPolicy = OnGapPolicy.STOP,
) -> SwpResult:
    _check_cash_flow_dates(series, from_date, to_date)
    plan = WithdrawalPlan(
        initial_investment=initial_investment,
        amount=amount,
        frequency=frequency,
        start=from_date,
        end=to_date,
        on_gap=on_gap,
    )
    return simulate_withdrawals(series, plan)


def calculate_step_up_swp(
    series: NavSeries,
    initial_investment: float,
    amount: float,
    from_date: dt.date,
    to_date: dt.date,
    step_up: StepUpRule,
    on_gap: OnGapPolicy = OnGapPolicy.STOP,
) -> SwpResult:
    """Monthly SWP whose withdrawal steps up after every 12 withdrawals."""
    _check_cash_flow_dates(series, from_date, to_date)
    plan = WithdrawalPlan(
        initial_investment=initial_investment,
        amount=amount,
        frequency="monthly",
        start=from_date,
        end=to_date,
        on_gap=on_gap,
        step_up=step_up,
    )
    return simulate_withdrawals(series, plan)


# =============================================================================
# Period and Rolling Returns
# =============================================================================

def partition_periods(start: dt.date, end: dt.date, period: str) -> list[tuple[dt.date, dt.date]]:
    """
    Split [start, end] into consecutive calendar periods.

    Each period ends one day before the next one starts; the last one is
    clipped to `end`. "overall" is the whole range.
    """
    if period == "overall":
        return [(start, end)]
    months = PERIOD_MONTHS[period]
    periods = []
    i = 0
    while True:
        period_start = shift_date(start, months=months * i)
        if period_start >= end:
            break
        period_end = shift_date(start, months=months * (i + 1)) - dt.timedelta(days=1)
        periods.append((period_start, min(period_end, end)))
        i += 1
    return periods


@dataclass
class PeriodReturn:
    label: str
    point: PointReturn

    def to_dict(self) -> dict:
        return {"period": self.label, **self.point.to_dict()}


@dataclass
class PeriodReturnsResult:
    period: str
    requested_from: dt.date
    requested_to: dt.date
    returns: list[PeriodReturn]

    @property
    def date_adjusted(self) -> bool:
        if not self.returns:
            return False
        return (
            self.returns[0].point.start.date != self.requested_from
            or self.returns[-1].point.end.date != self.requested_to
        )

    def summary(self) -> dict:
        if not self.returns:
            return {"count": 0, "averageReturn": None, "best": None, "worst": None}
        simple = np.array([r.point.simple_return for r in self.returns])
        best = self.returns[int(np.argmax(simple))]
        worst = self.returns[int(np.argmin(simple))]
        return {
            "count": len(self.returns),
            "averageReturn": round(float(simple.mean()), 2),
            "best": best.to_dict(),
            "worst": worst.to_dict(),
        }

    def to_dict(self) -> dict:
        return {
            "period": self.period,
            "requestedFrom": format_display(self.requested_from),
            "requestedTo": format_display(self.requested_to),
            "dateAdjusted": self.date_adjusted,
            "returns": [r.to_dict() for r in self.returns],
            "totalPeriods": len(self.returns),
            "summary": self.summary(),
        }


def calculate_period_returns(
    series: NavSeries, from_date: dt.date, to_date: dt.date, period: str = "overall"
) -> PeriodReturnsResult:
    """Point return per calendar period; periods whose endpoints cannot be resolved are skipped."""
    if period not in PERIOD_CHOICES:
        raise ValidationError(
            f"Validation Failed: 'period' must be one of: {', '.join(PERIOD_CHOICES)}.",
            parameter="period",
        )
    if to_date < from_date:
        raise ValidationError("'to' date cannot be before 'from' date.", parameter="to")
    _require_data(series)
    check_range(series, from_date, to_date)

    returns = []
    for period_start, period_end in partition_periods(from_date, to_date, period):
        point = calculate_point_return(series, period_start, period_end)
        if point is None:
            continue
        if period == "overall":
            label = "Overall"
        else:
            label = f"{point.start.date.strftime('%b %Y')} - {point.end.date.strftime('%b %Y')}"
        returns.append(PeriodReturn(label, point))
    return PeriodReturnsResult(period, from_date, to_date, returns)


@dataclass(frozen=True)
class RollingInterval:
    """A look-back window; year windows are expressed in months."""
    label: str
    months: int = 0
    days: int = 0
    years: int = 0

    def start_target(self, end: dt.date) -> dt.date:
        return shift_date(end, months=-self.months, days=-self.days)


_YEAR_INTERVAL_RE = re.compile(r"^(\d+)year$")


def parse_interval(key: str) -> RollingInterval | None:
    key = key.strip().lower()
    if key == "day":
        return RollingInterval("day", days=1)
    if key == "month":
        return RollingInterval("month", months=1)
    match = _YEAR_INTERVAL_RE.match(key)
    if match and int(match.group(1)) > 0:
        years = int(match.group(1))
        return RollingInterval(key, months=years * 12, years=years)
    return None


@dataclass
class RollingWindowReturn:
    interval: RollingInterval
    start_target: dt.date
    start: NavPoint | None = None
    end: NavPoint | None = None
    annualize: bool = False
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def absolute_change(self) -> float:
        return self.end.nav - self.start.nav

    @property
    def percent_change(self) -> float:
        return simple_return_pct(self.start.nav, self.end.nav)

    @property
    def annualized_percent(self) -> float | None:
        if not self.annualize or self.interval.years <= 0:
            return None
        return as_pct(cagr(self.start.nav, self.end.nav, self.interval.years))

    def to_dict(self) -> dict:
        if not self.ok:
            return {"error": self.error, "startTarget": format_iso(self.start_target)}
        return {
            "startDate": self.start.display_date,
            "endDate": self.end.display_date,
            "startNav": self.start.nav,
            "endNav": self.end.nav,
            "absoluteChange": _round(self.absolute_change, 6),
            "percentChange": _round(self.percent_change, 6),
            "annualizedPercent": _round(self.annualized_percent, 6),
        }


@dataclass
class RollingReturnsResult:
    end: NavPoint
    requested_on: dt.date | None
    results: dict[str, RollingWindowReturn]

    @property
    def date_adjusted(self) -> bool:
        return self.requested_on is not None and self.requested_on != self.end.date

    def to_dict(self) -> dict:
        data: dict[str, Any] = {"endDateUsed": self.end.display_date, "dateAdjusted": self.date_adjusted}
        if self.date_adjusted:
            data["requestedDate"] = format_iso(self.requested_on)
            data["dateAdjustedTo"] = format_iso(self.end.date)
            data["notice"] = "NAV not available for requested date. Calculation adjusted to the nearest prior NAV date."
        data["results"] = {key: r.to_dict() for key, r in self.results.items()}
        return data


def calculate_rolling_returns(
    series: NavSeries,
    intervals: Sequence[RollingInterval],
    on: dt.date | None = None,
    annualize: bool = False,
) -> RollingReturnsResult:
    """
    Trailing returns ending at one anchor (NAV on or before `on`, or the latest NAV).

    Each interval succeeds or fails on its own; a window reaching past the
    start of the history is reported as "insufficient data for interval".
    """
    _require_data(series)
    if on is not None and on > series.latest_date:
        raise RangeError(
            f"Scheme data range: {format_iso(series.earliest_date)} to {format_iso(series.latest_date)}. "
            f"Data is not available for {format_iso(on)}.",
            dataRangeStart=format_iso(series.earliest_date),
            dataRangeEnd=format_iso(series.latest_date),
            requestedDate=format_iso(on),
        )

    if on is not None:
        end = find_nav_on_or_before(series, on)
        if end is None:
            raise ComputationError(
                "No NAV on or before provided 'on' date within scheme history.",
                date=format_iso(on),
                earliestNAVDate=format_iso(series.earliest_date),
            )
    else:
        end = series.last

    results: dict[str, RollingWindowReturn] = {}
    for interval in intervals:
        target = interval.start_target(end.date)
        start = find_nav_on_or_before(series, target)
        if start is None or start.date >= end.date:
            results[interval.label] = RollingWindowReturn(interval, target, error="insufficient data for interval")
        elif start.nav <= 0:
            results[interval.label] = RollingWindowReturn(
                interval, target, error="NAV at start date is zero, cannot calculate percentage return"
            )
        else:
            results[interval.label] = RollingWindowReturn(interval, target, start, end, annualize=annualize)
    return RollingReturnsResult(end=end, requested_on=on, results=results)


@dataclass
class RollingSeriesPoint:
    start: NavPoint
    end: NavPoint
    window_years: int
    requested: dt.date

    @property
    def date_adjusted(self) -> bool:
        return self.end.date != self.requested

    @property
    def percent_return(self) -> float:
        return simple_return_pct(self.start.nav, self.end.nav)

    @property
    def annualized_return(self) -> float | None:
        return as_pct(cagr(self.start.nav, self.end.nav, self.window_years))

    def to_dict(self) -> dict:
        data = {
            "endDate": self.end.display_date,
            "startDate": self.start.display_date,
            "startNav": self.start.nav,
            "endNav": self.end.nav,
            "percentReturn": _round(self.percent_return, 2),
            "annualizedReturn": _round(self.annualized_return, 2),
            "dateAdjusted": self.date_adjusted,
        }
        if self.date_adjusted:
            data["requestedDate"] = format_display(self.requested)
        return data


@dataclass
class RollingStatistics:
    average: float
    maximum: float
    minimum: float
    positive: int
    negative: int
    count: int

    @classmethod
    def from_returns(cls, returns: Sequence[float]) -> RollingStatistics:
        values = np.asarray(returns, dtype=float)
        return cls(
            average=float(values.mean()),
            maximum=float(values.max()),
            minimum=float(values.min()),
            positive=int((values > 0).sum()),
            negative=int((values < 0).sum()),
            count=len(values),
        )

    def to_dict(self) -> dict:
        return {
            "averageReturn": round(self.average, 2),
            "maxReturn": round(self.maximum, 2),
            "minReturn": round(self.minimum, 2),
            "positiveReturns": self.positive,
            "negativeReturns": self.negative,
            "positivePercentage": round(self.positive / self.count * 100, 2),
        }


@dataclass
class RollingSeriesResult:
    window_label: str
    window_years: int
    from_date: dt.date
    to_date: dt.date
    step_days: int
    points: list[RollingSeriesPoint]
    statistics: RollingStatistics

    @property
    def date_adjusted(self) -> bool:
        return any(p.date_adjusted for p in self.points)

    def to_dict(self) -> dict:
        return {
            "window": self.window_label,
            "windowYears": self.window_years,
            "stepDays": self.step_days,
            "analysisFrom": format_display(self.from_date),
            "analysisTo": format_display(self.to_date),
            "dateAdjusted": self.date_adjusted,
            "totalDataPoints": len(self.points),
            "statistics": self.statistics.to_dict(),
            "rollingReturns": [p.to_dict() for p in self.points],
        }


def calculate_rolling_series(
    series: NavSeries,
    from_date: dt.date,
    to_date: dt.date,
    window_years: int,
    step_days: int = DEFAULT_ROLLING_STEP_DAYS,
) -> RollingSeriesResult:
    """
    Rolling N-year return evaluated every step_days across [from_date, to_date].

    History must cover from_date minus the window; this is checked once up front.
    Statistics are computed over the annualized returns.
    """
    if to_date < from_date:
        raise ValidationError("'to' date cannot be before 'from' date.", parameter="to")
    if window_years <= 0:
        raise ValidationError("Validation Failed: 'window' must be at least one year.", parameter="window")
    if step_days <= 0:
        raise ValidationError("Validation Failed: 'stepDays' must be a positive integer.", parameter="stepDays")
    _require_data(series)

    window_months = window_years * 12
    required_start = shift_date(from_date, months=-window_months)
    if required_start < series.earliest_date:
        raise RangeError(
            f"Insufficient historical data. Need data from {format_iso(required_start)} "
            f"but earliest available is {format_iso(series.earliest_date)}.",
            earliestNAVDate=format_iso(series.earliest_date),
            latestNAVDate=format_iso(series.latest_date),
            requiredStartDate=format_iso(required_start),
        )
    if to_date > series.latest_date:
        raise RangeError(
            "End date is beyond available data.",
            earliestNAVDate=format_iso(series.earliest_date),
            latestNAVDate=format_iso(series.latest_date),
        )

    points = []
    for cursor in schedule_dates(from_date, to_date, days=step_days):
        end = find_nav_on_or_before(series, cursor)
        if end is None or end.nav <= 0:
            continue
        start = find_nav_on_or_before(series, shift_date(cursor, months=-window_months))
        if start is None or start.nav <= 0:
            continue
        points.append(RollingSeriesPoint(start, end, window_years, cursor))

    if not points:
        raise ComputationError(
            "No valid rolling returns could be calculated for the given period.",
            **_availability(series),
        )

    statistics = RollingStatistics.from_returns([p.annualized_return for p in points])
    return RollingSeriesResult(
        window_label=f"{window_years}year",
        window_years=window_years,
        from_date=from_date,
        to_date=to_date,
        step_days=step_days,
        points=points,
        statistics=statistics,
    )


# =============================================================================
# Calculation Requests
# =============================================================================

class CalculatorKind(str, enum.Enum):
    """Calculator kinds; values double as the API route names."""
    LUMPSUM = "lumpsum"
    SIP = "sip"
    STEP_UP_SIP = "step-up-sip"
    SWP = "swp"
    STEP_UP_SWP = "step-up-swp"
    PERIOD_RETURNS = "returns"
    ROLLING_RETURNS = "rolling-returns"
    ROLLING_SERIES = "rolling-returns-series"


@dataclass
class LumpsumRequest:
    investment: float
    start: dt.date
    end: dt.date


@dataclass
class SipRequest:
    amount: float
    frequency: str
    start: dt.date
    end: dt.date
    step_up: StepUpRule | None = None


@dataclass
class SwpRequest:
    initial_investment: float
    amount: float
    frequency: str
    start: dt.date
    end: dt.date
    on_gap: OnGapPolicy = OnGapPolicy.STOP
    step_up: StepUpRule | None = None


@dataclass
class PeriodReturnsRequest:
    start: dt.date
    end: dt.date
    period: str = "overall"


@dataclass
class RollingReturnsRequest:
    intervals: list[RollingInterval]
    on: dt.date | None = None
    annualize: bool = False


@dataclass
class RollingSeriesRequest:
    start: dt.date
    end: dt.date
    window_years: int
    step_days: int = DEFAULT_ROLLING_STEP_DAYS


def _first_present(params: dict, *keys: str) -> tuple[str, Any]:
    for key in keys:
        if params.get(key) not in (None, ""):
            return key, params[key]
    return keys[0], None


def _positive_amount(params: dict, *keys: str) -> float:
    key, value = _first_present(params, *keys)
    try:
        amount = float(value)
    except (TypeError, ValueError):
        amount = math.nan
    if not math.isfinite(amount) or amount <= 0:
        raise ValidationError(f"Validation Failed: '{key}' must be a positive number.", parameter=key)
    return amount


def _date_range(params: dict) -> tuple[dt.date, dt.date]:
    if params.get("from") in (None, "") or params.get("to") in (None, ""):
        raise ValidationError("Validation Failed: Both 'from' and 'to' dates are required (YYYY-MM-DD).")
    start = parse_request_date(params["from"], "from")
    end = parse_request_date(params["to"], "to")
    if end < start:
        raise ValidationError("Validation Failed: 'to' date cannot be before 'from' date.", parameter="to")
    return start, end


def _choice(params: dict, key: str, choices: Iterable[str], default: str) -> str:
    choices = tuple(choices)
    value = str(params.get(key) or default).strip().lower()
    if value not in choices:
        raise ValidationError(
            f"Validation Failed: '{key}' must be one of: {', '.join(choices)}.",
            parameter=key,
            value=value,
        )
    return value


def _step_up_rule(params: dict, first_after: int, every: int) -> StepUpRule:
    kind = _choice(params, "stepUpType", STEP_UP_KINDS, "percentage")
    raw = params.get("stepUpValue", DEFAULT_STEP_UP_VALUE)
    try:
        value = float(raw)
    except (TypeError, ValueError):
        value = math.nan
    if not math.isfinite(value) or value < 0:
        raise ValidationError(
            "Validation Failed: 'stepUpValue' must be a non-negative number.",
            parameter="stepUpValue",
        )
    return StepUpRule(kind=kind, value=value, first_after=first_after, every=every)


def _positive_int(params: dict, key: str, default: int) -> int:
    raw = params.get(key, default)
    try:
        value = int(raw)
    except (TypeError, ValueError):
        value = 0
    if isinstance(raw, float) and not raw.is_integer():
        value = 0
    if value <= 0:
        raise ValidationError(f"Validation Failed: '{key}' must be a positive integer.", parameter=key)
    return value


def _truthy(value: Any) -> bool:
    return str(value).strip().lower() in ("true", "1", "yes")


def parse_lumpsum_request(params: dict) -> LumpsumRequest:
    investment = _positive_amount(params, "investment")
    start, end = _date_range(params)
    return LumpsumRequest(investment, start, end)


def parse_sip_request(params: dict) -> SipRequest:
    amount = _positive_amount(params, "amount")
    frequency = _choice(params, "frequency", SIP_FREQUENCIES, "")
    start, end = _date_range(params)
    return SipRequest(amount, frequency, start, end)


def parse_step_up_sip_request(params: dict) -> SipRequest:
    amount = _positive_amount(params, "initialInvestment", "amount")
    start, end = _date_range(params)
    frequency = _choice(params, "frequency", SIP_FREQUENCIES, "monthly")
    step_up = _step_up_rule(params, first_after=2, every=1)
    return SipRequest(amount, frequency, start, end, step_up=step_up)


def parse_swp_request(params: dict) -> SwpRequest:
    initial = _positive_amount(params, "initialInvestment")
    amount = _positive_amount(params, "amount")
    frequency = _choice(params, "frequency", SWP_FREQUENCIES, "monthly")
    on_gap = OnGapPolicy(_choice(params, "onGap", (OnGapPolicy.STOP.value, OnGapPolicy.SKIP.value), "stop"))
    start = parse_request_date(params.get("from"), "from")
    if params.get("to") not in (None, ""):
        end = parse_request_date(params["to"], "to")
    elif params.get("years") not in (None, ""):
        years = _positive_amount(params, "years")
        end = shift_date(start, months=round(years * 12))
    else:
        raise ValidationError("Validation Failed: either 'to' or 'years' is required.", parameter="to")
    if end < start:
        raise ValidationError("Validation Failed: 'to' date cannot be before 'from' date.", parameter="to")
    return SwpRequest(initial, amount, frequency, start, end, on_gap=on_gap)


def parse_step_up_swp_request(params: dict) -> SwpRequest:
    initial = _positive_amount(params, "initialCorpus", "initialInvestment")
    amount = _positive_amount(params, "initialWithdrawal", "amount")
    start, end = _date_range(params)
    _choice(params, "frequency", ("monthly",), "monthly")
    on_gap = OnGapPolicy(_choice(params, "onGap", (OnGapPolicy.STOP.value, OnGapPolicy.SKIP.value), "stop"))
    step_up = _step_up_rule(params, first_after=WITHDRAWALS_PER_STEP_UP, every=WITHDRAWALS_PER_STEP_UP)
    return SwpRequest(initial, amount, "monthly", start, end, on_gap=on_gap, step_up=step_up)


def parse_period_returns_request(params: dict) -> PeriodReturnsRequest:
    start, end = _date_range(params)
    period = _choice(params, "period", PERIOD_CHOICES, "overall")
    return PeriodReturnsRequest(start, end, period)


def parse_rolling_returns_request(params: dict) -> RollingReturnsRequest:
    on = parse_anchor_date(params.get("on"), "on")
    raw = params.get("interval")
    if raw in (None, "", []):
        keys = list(DEFAULT_ROLLING_INTERVALS)
    elif isinstance(raw, (list, tuple)):
        keys = [str(k) for k in raw]
    else:
        keys = [k for k in str(raw).split(",") if k.strip()]
    intervals = []
    for key in keys:
        interval = parse_interval(key)
        if interval is None:
            raise ValidationError(
                f"Validation Failed: unknown interval '{key}'. Use day, month or Nyear (e.g. 1year, 3year).",
                parameter="interval",
                value=key,
            )
        if interval.label not in {i.label for i in intervals}:
            intervals.append(interval)
    return RollingReturnsRequest(intervals, on=on, annualize=_truthy(params.get("annualize", False)))


def parse_rolling_series_request(params: dict) -> RollingSeriesRequest:
    start, end = _date_range(params)
    window = str(params.get("window") or "1year").strip().lower()
    match = _YEAR_INTERVAL_RE.match(window)
    if not match or int(match.group(1)) <= 0:
        raise ValidationError(
            "Invalid window format. Use format like '1year', '2year', '3year'.",
            parameter="window",
            value=window,
        )
    step_days = _positive_int(params, "stepDays", DEFAULT_ROLLING_STEP_DAYS)
    return RollingSeriesRequest(start, end, int(match.group(1)), step_days)


def _run_lumpsum(series: NavSeries, req: LumpsumRequest) -> LumpsumResult:
    return calculate_lumpsum(series, req.investment, req.start, req.end)


def _run_sip(series: NavSeries, req: SipRequest) -> SipResult:
    return calculate_sip(series, req.amount, req.frequency, req.start, req.end)


def _run_step_up_sip(series: NavSeries, req: SipRequest) -> SipResult:
    return calculate_step_up_sip(series, req.amount, req.start, req.end, req.step_up, frequency=req.frequency)


def _run_swp(series: NavSeries, req: SwpRequest) -> SwpResult:
    return calculate_swp(
        series, req.initial_investment, req.amount, req.frequency, req.start, req.end, on_gap=req.on_gap
    )


def _run_step_up_swp(series: NavSeries, req: SwpRequest) -> SwpResult:
    return calculate_step_up_swp(
        series, req.initial_investment, req.amount, req.start, req.end, req.step_up, on_gap=req.on_gap
    )


def _run_period_returns(series: NavSeries, req: PeriodReturnsRequest) -> PeriodReturnsResult:
    return calculate_period_returns(series, req.start, req.end, req.period)


def _run_rolling_returns(series: NavSeries, req: RollingReturnsRequest) -> RollingReturnsResult:
    return calculate_rolling_returns(series, req.intervals, on=req.on, annualize=req.annualize)


def _run_rolling_series(series: NavSeries, req: RollingSeriesRequest) -> RollingSeriesResult:
    return calculate_rolling_series(series, req.start, req.end, req.window_years, req.step_days)


# kind -> (request parser, calculator, minimum NAV points)
CALCULATORS: dict[CalculatorKind, tuple[Callable[[dict], Any], Callable[[NavSeries, Any], Any], int]] = {
    CalculatorKind.LUMPSUM: (parse_lumpsum_request, _run_lumpsum, 1),
    CalculatorKind.SIP: (parse_sip_request, _run_sip, 2),
    CalculatorKind.STEP_UP_SIP: (parse_step_up_sip_request, _run_step_up_sip, 1),
    CalculatorKind.SWP: (parse_swp_request, _run_swp, 1),
    CalculatorKind.STEP_UP_SWP: (parse_step_up_swp_request, _run_step_up_swp, 1),
    CalculatorKind.PERIOD_RETURNS: (parse_period_returns_request, _run_period_returns, 1),
    CalculatorKind.ROLLING_RETURNS: (parse_rolling_returns_request, _run_rolling_returns, 1),
    CalculatorKind.ROLLING_SERIES: (parse_rolling_series_request, _run_rolling_series, 1),
}


# =============================================================================
# High-Level API Functions for Web Server
# =============================================================================

def _require_code(code: Any) -> str:
    text = str(code or "").strip()
    if not text:
        raise ValidationError("Missing scheme code in route parameter.", parameter="code")
    return text


def load_nav_series(code: str, provider: NavProvider | None = None, min_points: int = 1) -> tuple[SchemeMeta, NavSeries]:
    """Fetch and parse a scheme's NAV history, raising DataUnavailableError when it is too short."""
    provider = provider or get_default_provider()
    payload = provider.fetch_scheme(code)
    series = parse_navs(payload)
    _require_data(series, min_points)
    return SchemeMeta.from_payload(payload, code), series


def get_scheme(code: str, provider: NavProvider | None = None) -> dict:
    """Scheme metadata and the full NAV history, newest first."""
    code = _require_code(code)
    provider = provider or get_default_provider()
    payload = provider.fetch_scheme(code)
    if not payload or not payload.get("meta"):
        raise DataUnavailableError("Scheme not found", schemeCode=code)
    series = parse_navs(payload)
    return {
        "meta": SchemeMeta.from_payload(payload, code).to_dict(),
        "total": len(series),
        "data": [{"date": p.raw_label, "nav": p.nav} for p in reversed(list(series))],
    }


def get_point_return(code: str, from_value: Any, to_value: Any, provider: NavProvider | None = None) -> dict:
    """Single return between two dates, without the history range pre-check."""
    code = _require_code(code)
    if from_value in (None, "") or to_value in (None, ""):
        raise ValidationError("Both 'from' and 'to' query parameters are required")
    start = parse_request_date(from_value, "from")
    end = parse_request_date(to_value, "to")
    _, series = load_nav_series(code, provider)
    point = calculate_point_return(series, start, end)
    if point is None:
        raise ComputationError(
            "Could not find valid NAVs within the requested date range, or the range is invalid.",
            requestedFrom=format_iso(start),
            requestedTo=format_iso(end),
        )
    return {"schemeCode": code, **point.to_dict()}


def run_calculation(kind: CalculatorKind | str, code: str, params: dict | None, provider: NavProvider | None = None) -> dict:
    """
    Validate params, fetch the scheme's NAVs and run one calculator.

    Validation happens before any provider call. Returns the JSON-ready result.
    """
    try:
        kind = CalculatorKind(kind)
    except ValueError:
        raise ValidationError(f"Unknown calculator: {kind}", parameter="kind") from None
    code = _require_code(code)
    if params is None:
        params = {}
    if not isinstance(params, dict):
        raise ValidationError("Invalid JSON format in request body. Expected a JSON object.")

    parse_request, calculate, min_points = CALCULATORS[kind]
    request = parse_request(params)
    _, series = load_nav_series(code, provider, min_points=min_points)
    logger.debug("Running %s for scheme %s over %d NAV points", kind.value, code, len(series))
    result = calculate(series, request)
    return {"schemeCode": code, **result.to_dict()}
