from collections import Counter, defaultdict
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Dict, Iterable, List, Optional

from oralparticipation.date_utils import parse_date
from oralparticipation.models import Grade, ParticipationEntry, Subject

UNKNOWN = "Unbekannt"


@dataclass
class SubjectStats:
    subject_id: str
    total_entries: int
    evaluation_counts: Dict[str, int]
    last_activity: Optional[date] = None


@dataclass
class GradeCorrelation:
    grade: float
    evaluation_counts: Dict[str, int]
    date: date
    note: Optional[str] = None


@dataclass
class DayStats:
    date: date
    entries: List[ParticipationEntry]
    total_count: int
    by_subject: Dict[str, int] = field(default_factory=dict)


def subject_stats(subjects: Iterable[Subject], entries: Iterable[ParticipationEntry]) -> List[SubjectStats]:
    """
    Pro Fach: Anzahl Einträge, Verteilung auf Bewertungen und Datum des
    zuletzt erfassten Eintrags. Einträge zu gelöschten Fächern zählen nicht mit.
    """
    by_subject: Dict[str, List[ParticipationEntry]] = defaultdict(list)
    for e in entries:
        by_subject[e.subject_id].append(e)

    out = []
    for subject in subjects:
        own = by_subject.get(subject.id, [])
        counts = Counter(e.evaluation_type_id for e in own)
        last = max(own, key=lambda e: e.timestamp or 0) if own else None
        out.append(SubjectStats(subject.id, len(own), dict(counts), last.date if last else None))
    return out


def total_entries(stats: Iterable[SubjectStats]) -> int:
    return sum(s.total_entries for s in stats)


def most_active_subject(stats: List[SubjectStats]) -> Optional[SubjectStats]:
    if not stats:
        return None
    best = stats[0]
    for s in stats[1:]:
        if s.total_entries >= best.total_entries:
            best = s
    return best


def average_per_subject(stats: List[SubjectStats]) -> float:
    if not stats:
        return 0.0
    return round(total_entries(stats) / len(stats), 1)


def average_grade(grades: Iterable[Grade], subject_id: str) -> Optional[float]:
    own = [g.grade for g in grades if g.subject_id == subject_id]
    if not own:
        return None
    return round(sum(own) / len(own), 2)


def grade_correlations(grades: Iterable[Grade], subject_id: str) -> List[GradeCorrelation]:
    """Noten eines Fachs mit ihrem Bewertungs-Snapshot, neueste zuerst.

    Ein unlesbarer Snapshot löst MalformedSnapshot aus.
    """
    out = [
        GradeCorrelation(g.grade, g.evaluation_counts(), g.date, g.note)
        for g in grades if g.subject_id == subject_id
    ]
    out.sort(key=lambda c: c.date, reverse=True)
    return out


def day_history(entries: Iterable[ParticipationEntry], today=None, days: int = 30) -> List[DayStats]:
    """Tage der letzten `days` Tage (heute eingeschlossen) mit mindestens einem Eintrag, neueste zuerst."""
    end = parse_date(today) if today is not None else date.today()
    window = {end - timedelta(days=i) for i in range(days)}
    per_day: Dict[date, List[ParticipationEntry]] = defaultdict(list)
    for e in entries:
        if e.date in window:
            per_day[e.date].append(e)
    return [
        DayStats(d, per_day[d], len(per_day[d]), dict(Counter(e.subject_id for e in per_day[d])))
        for d in sorted(per_day, reverse=True)
    ]


def name_lookup(items) -> Dict[str, str]:
    return {i.id: i.name for i in items}
