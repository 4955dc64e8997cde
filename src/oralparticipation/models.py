# src/oralparticipation/models.py
import json
from dataclasses import dataclass, field, fields
from datetime import date
from typing import Dict, Optional, Union

from oralparticipation.errors import MalformedSnapshot

SETTINGS_ID = "settings"


def to_key(name: str) -> str:
    """snake_case-Attribut -> gespeicherter camelCase-Schlüssel (subject_id -> subjectId)."""
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


class Record:
    """Gemeinsame (De-)Serialisierung der Datensätze in die Dokumentform der Collections."""

    # Felder vom Typ date, gespeichert als YYYY-MM-DD
    _date_fields: tuple = ()

    def to_record(self) -> dict:
        out = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, date):
                value = value.isoformat()
            out[to_key(f.name)] = value
        return out

    @classmethod
    def from_record(cls, doc: dict):
        init_args, later = {}, {}
        for f in fields(cls):
            key = to_key(f.name)
            if key not in doc:
                continue
            value = doc[key]
            if f.name in cls._date_fields and isinstance(value, str):
                value = date.fromisoformat(value)
            (init_args if f.init else later)[f.name] = value
        obj = cls(**init_args)
        for name, value in later.items():
            setattr(obj, name, value)
        return obj


@dataclass
class Subject(Record):
    """Ein Schulfach."""
    id: Optional[str] = field(default=None, init=False)
    name: str
    color: str
    order: int = 0                 # Anzeige-Reihenfolge
    created_at: Optional[int] = field(default=None, init=False)   # ms seit Epoch


@dataclass
class EvaluationType(Record):
    """Bewertungskategorie einer Meldung (z. B. "Richtig", "Falsch")."""
    id: Optional[str] = field(default=None, init=False)
    name: str
    color: str
    order: int = 0


@dataclass
class ParticipationEntry(Record):
    """Eine einzelne mündliche Beteiligung an einem Tag."""
    _date_fields = ("date",)

    id: Optional[str] = field(default=None, init=False)
    subject_id: str                # schwache Referenz, darf ins Leere zeigen
    date: date
    evaluation_type_id: str        # schwache Referenz
    note: Optional[str] = None
    timestamp: Optional[int] = field(default=None, init=False)


@dataclass
class ScheduleSlot(Record):
    """Eine Einzelstunde im Stundenplan."""
    id: Optional[str] = field(default=None, init=False)
    subject_id: str
    day_of_week: int               # 0=Montag … 4=Freitag
    period: int                    # 1 … 10
    week_type: Optional[str] = None    # 'A', 'B' oder None = beide Wochen
    created_at: Optional[int] = field(default=None, init=False)


@dataclass
class WeekSystemSettings(Record):
    """A/B-Wochen-Einstellung (Singleton)."""
    _date_fields = ("reference_date",)

    id: str = field(default=SETTINGS_ID, init=False)
    enabled: bool = False
    reference_date: Optional[date] = None   # ein Tag, der sicher in einer A-Woche liegt


@dataclass
class Grade(Record):
    """Eine Note mit Momentaufnahme der Bewertungsverteilung zum Zeitpunkt der Eingabe."""
    _date_fields = ("date",)

    id: Optional[str] = field(default=None, init=False)
    subject_id: str
    grade: float                   # 0 … 15 Punkte
    date: date
    evaluation_combination: Union[Dict[str, int], str] = field(default_factory=dict)
    note: Optional[str] = None
    timestamp: Optional[int] = field(default=None, init=False)

    def evaluation_counts(self) -> Dict[str, int]:
        """Snapshot als Mapping evaluationTypeId -> Anzahl.

        Ältere Datensätze speichern den Snapshot als JSON-Text; der wird hier
        gelesen, ohne den gespeicherten Datensatz anzufassen.
        """
        raw = self.evaluation_combination
        if isinstance(raw, str):
            try:
                raw = json.loads(raw)
            except ValueError as e:
                raise MalformedSnapshot(f"grade {self.id}: {e}") from e
        if not isinstance(raw, dict):
            raise MalformedSnapshot(f"grade {self.id}: snapshot is {type(raw).__name__}, not a mapping")
        counts = {}
        for key, value in raw.items():
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise MalformedSnapshot(f"grade {self.id}: invalid count {value!r} for {key!r}")
            counts[str(key)] = value
        return counts


@dataclass
class GradeReminder(Record):
    """Erinnerung, regelmäßig nach Noten zu fragen (Singleton)."""
    id: str = field(default=SETTINGS_ID, init=False)
    enabled: bool = False
    frequency: int = 7             # Tage zwischen zwei Erinnerungen, 1 … 30
    last_shown: int = 0            # ms seit Epoch
    next_reminder: int = 0         # last_shown + frequency Tage


@dataclass
class DayNote(Record):
    """Freitext-Notiz zu einem Fach an einem Tag, höchstens eine pro (Datum, Fach)."""
    _date_fields = ("date",)

    id: Optional[str] = field(default=None, init=False)
    subject_id: str
    date: date
    note: str = ""
    timestamp: Optional[int] = field(default=None, init=False)
