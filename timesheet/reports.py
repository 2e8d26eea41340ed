"""Dashboard aggregation over timesheet rows.

Everything here is a pure function of the rows handed in (plus ``today``).
Unlike the single-entry billing calculator, aggregation never rejects a
row: a negative span counts as zero minutes, an unparseable time counts as
zero minutes and an unparseable date drops the row from the monthly trend.
"""
from __future__ import annotations

import calendar
import logging
from dataclasses import asdict, dataclass, field
from datetime import date
from typing import Any, Iterable, Sequence

from timesheet.billing import worked_minutes
from timesheet.db import TimesheetDB, TimesheetRow

TREND_MONTHS = 6

log = logging.getLogger("timesheet.reports")


@dataclass(frozen=True)
class TrendPoint:
    month_label: str
    total_hours: float


@dataclass(frozen=True)
class BillableSplit:
    billable: int
    non_billable: int


@dataclass(frozen=True)
class DashboardTotals:
    total_users: int
    total_companies: int
    total_entries: int
    total_hours_this_month: float
    billable_amount: float
    top_user: str | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalUsers": self.total_users,
            "totalCompanies": self.total_companies,
            "totalEntries": self.total_entries,
            "totalHoursThisMonth": self.total_hours_this_month,
            "billableAmount": self.billable_amount,
            "topUser": self.top_user,
        }


@dataclass(frozen=True)
class DashboardSummary:
    hours_per_user: dict[str, float]
    billable_split: BillableSplit
    monthly_trend: list[TrendPoint]

    def to_dict(self) -> dict[str, Any]:
        return {
            "hoursPerUser": dict(self.hours_per_user),
            "billable": {"billable": self.billable_split.billable, "nonBillable": self.billable_split.non_billable},
            "monthlyTrend": [asdict(p) for p in self.monthly_trend],
        }


@dataclass(frozen=True)
class CalendarDay:
    date: str
    entries: list[TimesheetRow] = field(default_factory=list)
    is_today: bool = False

    @property
    def entry_count(self) -> int:
        return len(self.entries)


@dataclass(frozen=True)
class CalendarMonth:
    year: int
    month: int
    label: str
    leading_blanks: int
    days: list[CalendarDay]
    usernames: list[str]

    def to_dict(self) -> dict[str, Any]:
        return {
            "year": self.year,
            "month": self.month,
            "label": self.label,
            "leadingBlanks": self.leading_blanks,
            "days": [
                {
                    "date": d.date,
                    "entryCount": d.entry_count,
                    "isToday": d.is_today,
                    "entries": [e.to_dict() for e in d.entries],
                }
                for d in self.days
            ],
            "usernames": list(self.usernames),
        }


def _round2(value: float) -> float:
    return round(value, 2)


def shift_month(year: int, month: int, delta: int) -> tuple[int, int]:
    m = month + delta
    y = year
    while m < 1:
        m += 12
        y -= 1
    while m > 12:
        m -= 12
        y += 1
    return y, m


def clamped_worked_minutes(row: TimesheetRow) -> int:
    try:
        return max(0, worked_minutes(row.start_time, row.end_time, row.break_minutes))
    except (TypeError, ValueError) as e:
        log.debug("Timesheet %s counts as zero minutes: %s", getattr(row, "id", "?"), e)
        return 0


def hours_per_user(rows: Iterable[TimesheetRow]) -> dict[str, float]:
    minutes: dict[str, int] = {}
    for row in rows:
        key = row.username or ""
        minutes[key] = minutes.get(key, 0) + clamped_worked_minutes(row)
    return {name: _round2(total / 60.0) for name, total in minutes.items()}


def billable_split(rows: Sequence[TimesheetRow]) -> BillableSplit:
    billable = sum(1 for row in rows if row.billable)
    return BillableSplit(billable=billable, non_billable=len(rows) - billable)


def _row_month(row: TimesheetRow) -> tuple[int, int] | None:
    try:
        d = date.fromisoformat(str(row.date or "").strip())
    except ValueError:
        log.debug("Timesheet %s has no usable date: %r", getattr(row, "id", "?"), row.date)
        return None
    return d.year, d.month


def monthly_trend(rows: Iterable[TimesheetRow], *, today: date | None = None) -> list[TrendPoint]:
    today = today or date.today()
    by_month: dict[tuple[int, int], int] = {}
    for row in rows:
        key = _row_month(row)
        if key is None:
            continue
        by_month[key] = by_month.get(key, 0) + clamped_worked_minutes(row)

    points: list[TrendPoint] = []
    for back in range(TREND_MONTHS - 1, -1, -1):
        y, m = shift_month(today.year, today.month, -back)
        label = date(y, m, 1).strftime("%b %Y")
        points.append(TrendPoint(month_label=label, total_hours=_round2(by_month.get((y, m), 0) / 60.0)))
    return points


def month_start_iso(today: date | None = None) -> str:
    return (today or date.today()).replace(day=1).isoformat()


def hours_this_month(rows: Iterable[TimesheetRow], *, today: date | None = None) -> float:
    # Plain string comparison against the ISO month start; rows dated after
    # today still count.
    since = month_start_iso(today)
    minutes = sum(clamped_worked_minutes(row) for row in rows if str(row.date or "") >= since)
    return _round2(minutes / 60.0)


def top_user(rows: Iterable[TimesheetRow]) -> str | None:
    """Username with the most worked hours; first seen wins a tie."""
    best_name: str | None = None
    best_hours = 0.0
    for name, hours in hours_per_user(rows).items():
        if not name:
            continue
        if hours > best_hours:
            best_name, best_hours = name, hours
    return best_name


def build_dashboard(rows: Sequence[TimesheetRow], *, today: date | None = None) -> DashboardSummary:
    return DashboardSummary(
        hours_per_user=hours_per_user(rows),
        billable_split=billable_split(rows),
        monthly_trend=monthly_trend(rows, today=today),
    )


def dashboard_totals(db: TimesheetDB, *, today: date | None = None) -> DashboardTotals:
    rows = db.list_timesheets()
    return DashboardTotals(
        total_users=db.count_users(),
        total_companies=db.count_companies(),
        total_entries=db.count_timesheets(),
        total_hours_this_month=hours_this_month(rows, today=today),
        billable_amount=_round2(db.sum_billable_amount()),
        top_user=top_user(rows),
    )


def calendar_month(
    rows: Iterable[TimesheetRow],
    year: int,
    month: int,
    *,
    username: str | None = None,
    today: date | None = None,
) -> CalendarMonth:
    today = today or date.today()
    rows = list(rows)
    usernames: list[str] = []
    for row in rows:
        if row.username and row.username not in usernames:
            usernames.append(row.username)

    by_date: dict[str, list[TimesheetRow]] = {}
    for row in rows:
        if username and row.username != username:
            continue
        by_date.setdefault(row.date, []).append(row)

    first = date(year, month, 1)
    # date.weekday() is Monday=0; the grid starts on Sunday
    leading = (first.weekday() + 1) % 7
    days: list[CalendarDay] = []
    for day in range(1, calendar.monthrange(year, month)[1] + 1):
        d = date(year, month, day)
        key = d.isoformat()
        days.append(CalendarDay(date=key, entries=by_date.get(key, []), is_today=d == today))

    return CalendarMonth(
        year=year,
        month=month,
        label=first.strftime("%B %Y"),
        leading_blanks=leading,
        days=days,
        usernames=usernames,
    )
