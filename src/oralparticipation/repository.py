# src/oralparticipation/repository.py
"""Asynchrone CRUD-Schicht über den Collections der Datenbank.

Die eigentliche SQLite-Arbeit läuft über ``asyncio.to_thread`` in einem
Worker-Thread; der Aufrufer wartet kooperativ darauf.
"""
import asyncio
import uuid
from dataclasses import fields, replace
from typing import Any, Dict, Generic, List, Optional, Tuple, Type, TypeVar

from oralparticipation.calendar_logic import WEEK_TYPES, double_period
from oralparticipation.data import READONLY, READWRITE, Database
from oralparticipation.date_utils import DAY_MS, now_ms, parse_date
from oralparticipation.errors import NotFound
from oralparticipation.models import (
    SETTINGS_ID, DayNote, EvaluationType, Grade, GradeReminder, ParticipationEntry,
    Record, ScheduleSlot, Subject, WeekSystemSettings,
)

R = TypeVar("R", bound=Record)

MIN_REMINDER_DAYS = 1
MAX_REMINDER_DAYS = 30


def new_id() -> str:
    return str(uuid.uuid4())


class Repository(Generic[R]):
    """Generische Operationen für eine Collection.

    Unterklassen setzen ``collection_name``, ``model``, optional
    ``stamp_field`` (Erzeugungszeitpunkt) und ``order_index`` (Standard-
    Sortierung für ``list_all``).
    """

    collection_name: str = ""
    model: Type[R] = Record
    stamp_field: Optional[str] = None
    order_index: Optional[str] = None

    def __init__(self, db: Database):
        self.db = db

    # sync Kern, läuft im Worker-Thread
    def _ro(self):
        return self.db.collection(self.collection_name, READONLY)

    def _rw(self):
        return self.db.collection(self.collection_name, READWRITE)

    def _load(self, doc: Optional[dict]) -> Optional[R]:
        return None if doc is None else self.model.from_record(doc)

    def _stamp(self, record: R):
        if self.stamp_field:
            # streng monoton, auch bei zwei Schreibvorgängen in derselben Millisekunde
            previous = getattr(record, self.stamp_field) or 0
            setattr(record, self.stamp_field, max(now_ms(), previous + 1))

    def _validate(self, record: R):
        """Vor jedem Schreiben: Wertebereiche prüfen, abgeleitete Felder nachziehen."""

    def _add_sync(self, record: R) -> R:
        record = replace(record)
        self._validate(record)
        record.id = new_id()
        self._stamp(record)
        self._rw().add(record.to_record())
        return record

    def _update_sync(self, key: str, changes: Dict[str, Any]) -> R:
        allowed = {f.name for f in fields(self.model)} - {"id"}
        unknown = set(changes) - allowed
        if unknown:
            raise ValueError(f"{self.collection_name}: unknown fields {sorted(unknown)}")
        coll = self._rw()
        with coll.transaction():
            updated = self._load(coll.get(key))
            if updated is None:
                raise NotFound(self.collection_name, key)
            for name, value in changes.items():
                if name in self.model._date_fields and value is not None:
                    value = parse_date(value)
                setattr(updated, name, value)
            self._validate(updated)
            coll.put(updated.to_record())
        return updated

    async def _run(self, fn, *args):
        return await asyncio.to_thread(fn, *args)

    # öffentliche, asynchrone API
    async def add(self, record: R) -> R:
        return await self._run(self._add_sync, record)

    async def get(self, key: str) -> Optional[R]:
        return await self._run(lambda: self._load(self._ro().get(key)))

    async def require(self, key: str) -> R:
        record = await self.get(key)
        if record is None:
            raise NotFound(self.collection_name, key)
        return record

    async def list_all(self) -> List[R]:
        def run():
            coll = self._ro()
            docs = coll.all_in_index_order(self.order_index) if self.order_index else coll.get_all()
            return [self._load(d) for d in docs]
        return await self._run(run)

    async def list_by_index(self, index: str, key: Any) -> List[R]:
        return await self._run(lambda: [self._load(d) for d in self._ro().get_all_by_index(index, key)])

    async def update(self, key: str, **changes) -> R:
        return await self._run(self._update_sync, key, changes)

    async def delete(self, key: str):
        await self._run(lambda: self._rw().delete(key))

    async def count(self) -> int:
        return await self._run(lambda: self._ro().count())


class UpsertMixin:
    """upsert über einen Identitätsschlüssel: vorhandenen Datensatz fortschreiben oder neu anlegen."""

    mutable_fields: Tuple[str, ...] = ()

    def _find_sync(self, coll, key) -> Optional[dict]:
        raise NotImplementedError

    def _upsert_sync(self, key, record):
        coll = self._rw()
        with coll.transaction():
            existing = self._load(self._find_sync(coll, key))
            if existing is not None:
                for name in self.mutable_fields:
                    setattr(existing, name, getattr(record, name))
                target = existing
            else:
                target = replace(record)
                target.id = self._new_key(record)
            self._validate(target)
            self._stamp(target)
            coll.put(target.to_record())
        return target

    def _new_key(self, record) -> str:
        return new_id()

    async def upsert_by_key(self, key, record):
        return await self._run(self._upsert_sync, key, record)


class SubjectRepository(Repository[Subject]):
    collection_name = "subjects"
    model = Subject
    stamp_field = "created_at"
    order_index = "order"

    async def reorder(self, ordered_ids: List[str]) -> List[Subject]:
        """Setzt `order` gemäß der Reihenfolge der ids."""
        def run():
            coll = self._rw()
            out = []
            with coll.transaction():
                for position, key in enumerate(ordered_ids):
                    rec = self._load(coll.get(key))
                    if rec is None:
                        raise NotFound(self.collection_name, key)
                    rec.order = position
                    coll.put(rec.to_record())
                    out.append(rec)
            return out
        return await self._run(run)


class EvaluationTypeRepository(SubjectRepository):
    collection_name = "evaluationTypes"
    model = EvaluationType
    stamp_field = None


class EntryRepository(Repository[ParticipationEntry]):
    collection_name = "entries"
    model = ParticipationEntry
    stamp_field = "timestamp"

    async def for_date(self, day) -> List[ParticipationEntry]:
        return await self.list_by_index("date", parse_date(day).isoformat())

    async def for_subject(self, subject_id: str) -> List[ParticipationEntry]:
        return await self.list_by_index("subjectId", subject_id)

    async def for_date_and_subject(self, day, subject_id: str) -> List[ParticipationEntry]:
        return await self.list_by_index("dateSubject", (parse_date(day).isoformat(), subject_id))

    async def between(self, start, end, subject_id: Optional[str] = None) -> List[ParticipationEntry]:
        """Einträge mit start <= date <= end, optional nur eines Fachs."""
        first, last = parse_date(start).isoformat(), parse_date(end).isoformat()
        docs = await self._run(lambda: self._ro().get_range_by_index("date", first, last))
        return [self._load(d) for d in docs if subject_id is None or d.get("subjectId") == subject_id]


class DayNoteRepository(UpsertMixin, Repository[DayNote]):
    collection_name = "dayNotes"
    model = DayNote
    stamp_field = "timestamp"
    mutable_fields = ("note",)

    def _find_sync(self, coll, key):
        day, subject_id = key
        return coll.get_by_index("dateSubject", (parse_date(day).isoformat(), subject_id))

    async def get_for(self, day, subject_id: str) -> Optional[DayNote]:
        return await self._run(lambda: self._load(self._find_sync(self._ro(), (day, subject_id))))

    async def for_date(self, day) -> Dict[str, str]:
        """Alle Notizen des Tages als {subjectId: note}."""
        iso = parse_date(day).isoformat()
        docs = await self._run(lambda: self._ro().get_all_by_prefix("dateSubject", (iso,)))
        return {d["subjectId"]: d.get("note", "") for d in docs}

    async def save(self, subject_id: str, day, note: str) -> DayNote:
        day = parse_date(day)
        return await self.upsert_by_key((day, subject_id), DayNote(subject_id, day, note))


class ScheduleSlotRepository(Repository[ScheduleSlot]):
    collection_name = "scheduleSlots"
    model = ScheduleSlot
    stamp_field = "created_at"

    def _validate(self, record: ScheduleSlot):
        _validate_slot(record)

    async def for_subject(self, subject_id: str) -> List[ScheduleSlot]:
        return await self.list_by_index("subjectId", subject_id)

    async def in_bucket(self, day_of_week: int, period: int, week_type: Optional[str]) -> Optional[ScheduleSlot]:
        return await self._run(lambda: self._load(
            self._ro().get_by_index("slotBucket", (day_of_week, period, week_type))))

    async def clear(self):
        await self._run(lambda: self._rw().clear())

    async def replace_double_period(self, day_of_week: int, first: int, subject_id: str,
                                    week_type: Optional[str] = None) -> List[ScheduleSlot]:
        """Beide Stunden einer Doppelstunde im Bucket neu belegen, in einer Transaktion."""
        periods = double_period(first)
        new = [ScheduleSlot(subject_id, day_of_week, p, week_type) for p in periods]
        for slot in new:
            self._validate(slot)

        def run():
            coll = self._rw()
            out = []
            with coll.transaction():
                for p in periods:
                    old = coll.get_by_index("slotBucket", (day_of_week, p, week_type))
                    if old is not None:
                        coll.delete(old['id'])
                for slot in new:
                    out.append(self._add_sync(slot))
            return out
        return await self._run(run)

    async def remove_double_period(self, day_of_week: int, first: int, week_type: Optional[str] = None) -> int:
        periods = double_period(first)

        def run():
            coll = self._rw()
            removed = 0
            with coll.transaction():
                for p in periods:
                    old = coll.get_by_index("slotBucket", (day_of_week, p, week_type))
                    if old is not None:
                        coll.delete(old['id'])
                        removed += 1
            return removed
        return await self._run(run)


def _validate_slot(slot: ScheduleSlot):
    if slot.day_of_week not in range(5):
        raise ValueError(f"day_of_week must be 0..4, got {slot.day_of_week}")
    if slot.period not in range(1, 11):
        raise ValueError(f"period must be 1..10, got {slot.period}")
    if slot.week_type is not None and slot.week_type not in WEEK_TYPES:
        raise ValueError(f"week_type must be 'A', 'B' or None, got {slot.week_type!r}")


class SingletonRepository(UpsertMixin, Repository[R]):
    """Einstellungs-Datensätze mit fester id 'settings' (put-Semantik)."""

    def _find_sync(self, coll, key):
        return coll.get(key)

    def _new_key(self, record) -> str:
        return SETTINGS_ID

    async def load(self) -> Optional[R]:
        return await self.get(SETTINGS_ID)

    async def store(self, record: R) -> R:
        return await self.upsert_by_key(SETTINGS_ID, record)


class WeekSystemRepository(SingletonRepository[WeekSystemSettings]):
    collection_name = "weekSystemSettings"
    model = WeekSystemSettings
    mutable_fields = ("enabled", "reference_date")

    def _validate(self, record: WeekSystemSettings):
        if record.enabled and record.reference_date is None:
            raise ValueError("reference_date is required when the week system is enabled")

    async def get_settings(self) -> Optional[WeekSystemSettings]:
        return await self.load()

    async def save_settings(self, enabled: bool, reference_date=None) -> WeekSystemSettings:
        ref = parse_date(reference_date) if reference_date is not None else None
        return await self.store(WeekSystemSettings(enabled=bool(enabled), reference_date=ref))


class GradeRepository(Repository[Grade]):
    collection_name = "grades"
    model = Grade
    stamp_field = "timestamp"

    def _validate(self, record: Grade):
        if not 0 <= record.grade <= 15:
            raise ValueError(f"grade must be within 0..15, got {record.grade}")

    async def update(self, key: str, **changes):
        # Note samt Snapshot ist eine Momentaufnahme
        raise TypeError("grades are immutable; delete and add instead")

    async def for_subject(self, subject_id: str) -> List[Grade]:
        return await self.list_by_index("subjectId", subject_id)

    async def for_date(self, day) -> List[Grade]:
        return await self.list_by_index("date", parse_date(day).isoformat())


def clamp_frequency(value) -> int:
    """Erinnerungsintervall auf 1 … 30 Tage begrenzen; leer/ungültig -> 1."""
    try:
        days = int(value)
    except (TypeError, ValueError):
        return MIN_REMINDER_DAYS
    return max(MIN_REMINDER_DAYS, min(MAX_REMINDER_DAYS, days))


class GradeReminderRepository(SingletonRepository[GradeReminder]):
    collection_name = "gradeReminder"
    model = GradeReminder
    mutable_fields = ("enabled", "frequency", "last_shown", "next_reminder")

    def _validate(self, record: GradeReminder):
        record.frequency = clamp_frequency(record.frequency)
        record.next_reminder = (record.last_shown or 0) + record.frequency * DAY_MS

    async def get_reminder(self) -> Optional[GradeReminder]:
        return await self.load()

    async def save_reminder(self, enabled: bool, frequency, last_shown: Optional[int] = None) -> GradeReminder:
        shown = last_shown if last_shown is not None else now_ms()
        return await self.store(GradeReminder(enabled=bool(enabled), frequency=frequency, last_shown=shown))
