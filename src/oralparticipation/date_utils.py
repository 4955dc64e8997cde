# src/oralparticipation/date_utils.py
import time
from datetime import date, datetime, timedelta
from typing import List, Union

from dateutil.parser import isoparse
from dateutil.relativedelta import MO, relativedelta

DateLike = Union[date, datetime, str]

# Rückgabewert von day_of_week für Samstag/Sonntag
WEEKEND = -1

DAY_MS = 24 * 60 * 60 * 1000


def format_date(d: date) -> str:
    return d.strftime("%Y-%m-%d")


def parse_date(value: DateLike) -> date:
    """date, datetime oder ISO-String -> date (Uhrzeit wird verworfen)."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return isoparse(value).date()


def now_ms() -> int:
    return int(time.time() * 1000)


def is_today(value: DateLike) -> bool:
    return parse_date(value) == date.today()


def is_past_date(value: DateLike) -> bool:
    return parse_date(value) < date.today()


def monday_of(value: DateLike) -> date:
    """Montag der (ISO-)Woche; Sonntag gehört zur vorangehenden Woche."""
    return parse_date(value) + relativedelta(weekday=MO(-1))


def week_number(value: DateLike) -> int:
    return parse_date(value).isocalendar()[1]


def week_dates(start: DateLike) -> List[date]:
    """Die sieben Tage ab `start`."""
    first = parse_date(start)
    return [first + timedelta(days=i) for i in range(7)]


def day_of_week(value: DateLike) -> int:
    """0=Montag … 4=Freitag, Wochenende -> WEEKEND."""
    wd = parse_date(value).weekday()
    return WEEKEND if wd >= 5 else wd
