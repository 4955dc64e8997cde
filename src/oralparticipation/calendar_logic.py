from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from .date_utils import WEEKEND, DateLike, day_of_week, monday_of, parse_date
from .models import ScheduleSlot, Subject, WeekSystemSettings

WEEK_A = 'A'
WEEK_B = 'B'
WEEK_TYPES = (WEEK_A, WEEK_B)

PERIODS = range(1, 11)

# Doppelstunden: (1,2), (3,4), … (9,10)
DOUBLE_PERIODS: List[Tuple[str, Tuple[int, int]]] = [
    (f"{p}./{p + 1}.", (p, p + 1)) for p in range(1, 11, 2)
]
DOUBLE_PERIOD_LABELS: Dict[int, str] = {
    period: label for label, pair in DOUBLE_PERIODS for period in pair
}

# Gründe für einen leeren Tagesplan
EMPTY_WEEKEND = "weekend"
EMPTY_NO_SCHEDULE = "no_schedule"
EMPTY_NO_SUBJECTS_TODAY = "no_subjects_today"


def week_type(day: DateLike, reference: DateLike) -> str:
    """A- oder B-Woche von `day`, bezogen auf `reference` (liegt per Definition in einer A-Woche).

    Beide Daten werden auf den Montag ihrer Woche normalisiert; gerade
    Wochenabstände (auch negative) ergeben 'A', ungerade 'B'.
    """
    weeks = (monday_of(day) - monday_of(reference)).days // 7
    return WEEK_A if weeks % 2 == 0 else WEEK_B


def first_period(period: int) -> int:
    """Ungerade Stunde der Doppelstunde (2 -> 1, 4 -> 3, …)."""
    return period if period % 2 == 1 else period - 1


def double_period(first: int) -> Tuple[int, int]:
    if first not in PERIODS or first % 2 == 0:
        raise ValueError(f"double periods start at an odd period 1..9, got {first}")
    return first, first + 1


@dataclass(frozen=True)
class ScheduledSubject:
    subject: Subject
    period_label: str


def _active_week(day, settings: Optional[WeekSystemSettings]) -> Optional[str]:
    if settings is not None and settings.enabled and settings.reference_date:
        return week_type(day, settings.reference_date)
    return None


def _week_enabled(settings: Optional[WeekSystemSettings]) -> bool:
    return settings is not None and bool(settings.enabled)


def slots_for_day(day: DateLike, slots: Iterable[ScheduleSlot],
                  settings: Optional[WeekSystemSettings] = None) -> List[ScheduleSlot]:
    """Slots, die am Wochentag von `day` in der aktiven Woche gelten."""
    dow = day_of_week(day)
    if dow == WEEKEND:
        return []
    enabled = _week_enabled(settings)
    # ohne Referenzdatum gilt wie im Editor die A-Woche
    current = _active_week(day, settings) or WEEK_A
    out = []
    for slot in slots:
        if slot.day_of_week != dow:
            continue
        if enabled:
            if slot.week_type != current:
                continue
        elif slot.week_type:
            continue
        out.append(slot)
    return out


def resolve_schedule(day: DateLike, slots: Iterable[ScheduleSlot], subjects: Iterable[Subject],
                     settings: Optional[WeekSystemSettings] = None) -> List[ScheduledSubject]:
    """Fächer des Tages als Doppelstunden, sortiert nach Stunde.

    Pro (Fach, Doppelstunde) bleibt ein Eintrag; belegen zwei verschiedene
    Fächer dieselbe Doppelstunde, erscheinen beide in Slot-Reihenfolge.
    Slots, deren Fach nicht mehr existiert, fallen weg.
    """
    day = parse_date(day)
    slots = list(slots)
    if day_of_week(day) == WEEKEND or not slots:
        return []

    by_id = {s.id: s for s in subjects}
    seen = set()
    found = []
    for slot in slots_for_day(day, slots, settings):
        label = DOUBLE_PERIOD_LABELS.get(slot.period)
        if label is None:
            continue
        key = (slot.subject_id, label)
        if key in seen:
            continue
        seen.add(key)
        subject = by_id.get(slot.subject_id)
        if subject is not None:
            found.append((first_period(slot.period), ScheduledSubject(subject, label)))

    found.sort(key=lambda item: item[0])
    return [entry for _, entry in found]


def empty_reason(day: DateLike, slots: Iterable[ScheduleSlot],
                 resolved: List[ScheduledSubject]) -> Optional[str]:
    """Warum der Tagesplan leer ist (Wochenende, kein Stundenplan, heute nichts) oder None."""
    if day_of_week(day) == WEEKEND:
        return EMPTY_WEEKEND
    if not list(slots):
        return EMPTY_NO_SCHEDULE
    if not resolved:
        return EMPTY_NO_SUBJECTS_TODAY
    return None
