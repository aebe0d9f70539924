from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from config import get_settings


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date

    def __post_init__(self) -> None:
        if self.start > self.end:
            raise ValueError("Start date must not be after end date")


def local_today() -> date:
    return datetime.now(ZoneInfo(get_settings().timezone)).date()


def month_start(year: int, month: int) -> date:
    return date(year, month, 1)


def month_end(year: int, month: int) -> date:
    if month == 12:
        return date(year + 1, 1, 1) - date.resolution
    return date(year, month + 1, 1) - date.resolution


def add_months(d: date, count: int) -> date:
    """First day of the month ``count`` months away from ``d``."""
    month_index = (d.year * 12) + (d.month - 1) + count
    return date(month_index // 12, (month_index % 12) + 1, 1)


def trailing_months(today: date, count: int) -> list[date]:
    """First days of the ``count`` calendar months ending with today's month."""
    if count < 1:
        raise ValueError("Month count must be at least 1")
    return [add_months(today, offset) for offset in range(-(count - 1), 1)]


def resolve_period(
    period: Optional[str],
    start: Optional[str] = None,
    end: Optional[str] = None,
    *,
    today: Optional[date] = None,
) -> Period:
    today = today or local_today()
    if period == "all":
        return Period("all", date(1970, 1, 1), today)
    if period == "week":
        # Weeks start on Sunday; date.weekday() counts from Monday.
        sunday = today - timedelta(days=(today.weekday() + 1) % 7)
        return Period("week", sunday, today)
    if period == "year":
        return Period("year", date(today.year, 1, 1), date(today.year, 12, 31))
    if period == "last_month":
        previous = add_months(today, -1)
        return Period(
            "last_month", previous, month_end(previous.year, previous.month)
        )
    if period == "custom":
        if not start or not end:
            raise ValueError("Custom period requires start and end dates")
        return Period("custom", date.fromisoformat(start), date.fromisoformat(end))
    if period not in (None, "", "month"):
        raise ValueError(f"Unknown period: {period}")
    return Period(
        "month", month_start(today.year, today.month), month_end(today.year, today.month)
    )
