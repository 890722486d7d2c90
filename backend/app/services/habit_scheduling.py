"""Expected-date generation and derived habit metrics.

Everything here is pure date arithmetic over a habit's frequency rule and its log
history; callers pass in "today" already resolved to the owner's timezone.
"""
from __future__ import annotations

import calendar
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

FREQUENCY_UNITS = ("day", "week", "month", "year")
WEEKDAY_NAMES = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")
MAX_LOOKBACK_ITERATIONS = 365
WEEKLY_WINDOW_DAYS = 7
MONTHLY_WINDOW_DAYS = 30
TREND_MONTHS = 12


@dataclass
class HabitMetrics:
    current_streak: int
    longest_streak: int
    weekly_completion_rate: float
    monthly_completion_rate: float
    total_completions: int
    last_completed_date: Optional[date]


@dataclass
class TrendPoint:
    period: str
    average: float
    minimum: float
    maximum: float
    count: int


@dataclass
class HabitTrend:
    weekly: List[TrendPoint] = field(default_factory=list)
    monthly: List[TrendPoint] = field(default_factory=list)


def resolve_timezone(name: Optional[str]) -> ZoneInfo:
    if not name:
        return ZoneInfo("UTC")
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return ZoneInfo("UTC")


def local_today(timezone_name: Optional[str], now: Optional[datetime] = None) -> date:
    """Calendar date of `now` (default: the current instant) in the given IANA zone."""
    instant = now or datetime.now(timezone.utc)
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(resolve_timezone(timezone_name)).date()


def local_date_of(moment: datetime, timezone_name: Optional[str]) -> date:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(resolve_timezone(timezone_name)).date()


def weekday_index(name: str) -> int:
    return WEEKDAY_NAMES.index(name.strip().lower())


def add_months(value: date, months: int) -> date:
    """Shift by whole calendar months, clamping to the last day of shorter months."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def shift(value: date, unit: str, quantity: int) -> date:
    if unit == "day":
        return value + timedelta(days=quantity)
    if unit == "week":
        return value + timedelta(days=7 * quantity)
    if unit == "month":
        return add_months(value, quantity)
    if unit == "year":
        return add_months(value, 12 * quantity)
    raise ValueError(f"Unknown frequency unit: {unit}")


def expected_dates(
    *,
    frequency_unit: Optional[str],
    frequency_quantity: Optional[int],
    weekdays: Sequence[str] | None,
    start: date,
    today: date,
) -> List[date]:
    """Dates the habit was due on, newest first, bounded by `start` and 365 iterations."""
    if frequency_unit is None or frequency_quantity is None:
        return [start]

    dates: List[date] = []
    current = today
    if weekdays and frequency_quantity == 1:
        allowed = {weekday_index(day) for day in weekdays}
        for _ in range(MAX_LOOKBACK_ITERATIONS):
            if current < start:
                break
            if current.weekday() in allowed:
                dates.append(current)
            current -= timedelta(days=1)
        return dates

    for _ in range(MAX_LOOKBACK_ITERATIONS):
        if current < start:
            break
        dates.append(current)
        current = shift(current, frequency_unit, -frequency_quantity)
    return dates


def next_due_date(
    *,
    frequency_unit: str,
    frequency_quantity: int,
    weekdays: Sequence[str] | None,
    due_date: date,
    logged_on: date,
) -> date:
    """First expected occurrence strictly after both the logged date and the old due date."""
    if weekdays and frequency_quantity == 1:
        allowed = {weekday_index(day) for day in weekdays}
        candidate = max(due_date, logged_on) + timedelta(days=1)
        while candidate.weekday() not in allowed:
            candidate += timedelta(days=1)
        return candidate

    candidate = shift(due_date, frequency_unit, frequency_quantity)
    while candidate <= logged_on:
        candidate = shift(candidate, frequency_unit, frequency_quantity)
    return candidate


def current_streak(
    expected: Sequence[date],
    logged: Set[date],
    today: date,
    *,
    is_bad_habit: bool,
) -> int:
    streak = 0
    for day in sorted(expected, reverse=True):
        is_logged = day in logged
        if is_bad_habit:
            if is_logged:
                break
            streak += 1
            continue
        # Today not logged yet does not break a running streak.
        if day == today and not is_logged and streak == 0:
            continue
        if not is_logged:
            break
        streak += 1
    return streak


def longest_streak(expected: Sequence[date], logged: Set[date], *, is_bad_habit: bool) -> int:
    best = 0
    running = 0
    for day in sorted(expected, reverse=True):
        success = (day not in logged) if is_bad_habit else (day in logged)
        if success:
            running += 1
        else:
            best = max(best, running)
            running = 0
    return max(best, running)


def completion_rate(
    expected: Sequence[date],
    logged: Set[date],
    today: date,
    window_days: int,
    *,
    is_bad_habit: bool,
) -> float:
    window_start = today - timedelta(days=window_days)
    in_window = [day for day in expected if window_start <= day <= today]
    if not in_window:
        return 0.0
    if is_bad_habit:
        successes = sum(1 for day in in_window if day not in logged)
    else:
        successes = sum(1 for day in in_window if day in logged)
    return round(successes / len(in_window) * 100, 2)


def compute_metrics(
    *,
    frequency_unit: Optional[str],
    frequency_quantity: Optional[int],
    weekdays: Sequence[str] | None,
    is_bad_habit: bool,
    start: date,
    today: date,
    log_dates: Iterable[date],
) -> HabitMetrics:
    logged = set(log_dates)
    expected = expected_dates(
        frequency_unit=frequency_unit,
        frequency_quantity=frequency_quantity,
        weekdays=weekdays,
        start=start,
        today=today,
    )
    return HabitMetrics(
        current_streak=current_streak(expected, logged, today, is_bad_habit=is_bad_habit),
        longest_streak=longest_streak(expected, logged, is_bad_habit=is_bad_habit),
        weekly_completion_rate=completion_rate(
            expected, logged, today, WEEKLY_WINDOW_DAYS, is_bad_habit=is_bad_habit
        ),
        monthly_completion_rate=completion_rate(
            expected, logged, today, MONTHLY_WINDOW_DAYS, is_bad_habit=is_bad_habit
        ),
        total_completions=len(logged),
        last_completed_date=max(logged) if logged else None,
    )


def iso_week_label(day: date) -> str:
    # isocalendar() already moves late-December days into week 1 of the next ISO year
    # and early-January days into week 52/53 of the previous one.
    iso_year, iso_week, _ = day.isocalendar()
    return f"{iso_year}-W{iso_week:02d}"


def compute_trend(values: Iterable[Tuple[date, float]], today: date) -> HabitTrend:
    cutoff = add_months(today, -TREND_MONTHS)
    weekly: Dict[str, List[float]] = defaultdict(list)
    monthly: Dict[str, List[float]] = defaultdict(list)
    for day, value in values:
        if day < cutoff or value is None:
            continue
        weekly[iso_week_label(day)].append(value)
        monthly[f"{day.year}-{day.month:02d}"].append(value)
    return HabitTrend(weekly=_summarize(weekly), monthly=_summarize(monthly))


def _summarize(groups: Dict[str, List[float]]) -> List[TrendPoint]:
    points = [
        TrendPoint(
            period=period,
            average=round(sum(values) / len(values), 2),
            minimum=min(values),
            maximum=max(values),
            count=len(values),
        )
        for period, values in groups.items()
    ]
    return sorted(points, key=lambda point: point.period)
