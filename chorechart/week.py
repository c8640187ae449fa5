from datetime import date, datetime, timedelta
from typing import Union

DateLike = Union[date, datetime]


def day_key(d: DateLike) -> date:
    if isinstance(d, datetime):
        return d.date()
    return d


def start_of_week_monday(d: DateLike) -> date:
    day = day_key(d)
    return day - timedelta(days=day.weekday())


def add_days(d: DateLike, n: int) -> DateLike:
    return d + timedelta(days=n)


def week_days(week_start: date) -> list[date]:
    return [week_start + timedelta(days=offset) for offset in range(7)]


def week_starts_between(start: DateLike, end_exclusive: DateLike) -> list[date]:
    out: list[date] = []
    current = start_of_week_monday(start)
    end = day_key(end_exclusive)
    while current < end:
        out.append(current)
        current = current + timedelta(days=7)
    return out
