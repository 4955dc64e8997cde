# src/oralparticipation/tracker.py
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Dict, List, Optional

from oralparticipation.calendar_logic import (
    WEEK_A, WEEK_TYPES, ScheduledSubject, empty_reason, resolve_schedule, week_type,
)
from oralparticipation.config import load_config
from oralparticipation.data import Database
from oralparticipation.date_utils import DateLike, now_ms, parse_date, week_dates
from oralparticipation.errors import NotFound
from oralparticipation.models import (
    SETTINGS_ID, DayNote, EvaluationType, Grade, GradeReminder, ParticipationEntry, ScheduleSlot, Subject,
)
from oralparticipation.repository import (
    DayNoteRepository, EntryRepository, EvaluationTypeRepository, GradeReminderRepository,
    GradeRepository, ScheduleSlotRepository, SubjectRepository, WeekSystemRepository,
)
from oralparticipation.statistics import DayStats, day_history

DEFAULT_SUBJECTS = [
    ('Mathematik', '#3b82f6'),
    ('Deutsch', '#ef4444'),
    ('Englisch', '#10b981'),
]

DEFAULT_EVALUATION_TYPES = [
    ('Richtig', '#10b981'),
    ('Teilweise richtig', '#f59e0b'),
    ('Falsch', '#ef4444'),
    ('Nicht relevant', '#6b7280'),
    ('Gemeldet', '#8b5cf6'),
]


@dataclass
class DayOverview:
    """Alles, was die Tagesansicht für ein Datum braucht."""
    day: date
    schedule: List[ScheduledSubject]
    empty_reason: Optional[str]
    week_type: Optional[str]
    entries: List[ParticipationEntry] = field(default_factory=list)
    notes: Dict[str, str] = field(default_factory=dict)


class Tracker:
    """Einstiegspunkt für Aufrufer: eine Datenbank, alle Repositories und die Abläufe darüber.

    Die Datenbank wird explizit übergeben; ``ready()`` öffnet sie beim ersten
    Aufruf und legt einmalig die Standard-Fächer und -Bewertungen an.
    """

    def __init__(self, db: Database, config: Optional[dict] = None):
        self.db = db
        self.config = config if config is not None else load_config()
        self.subjects = SubjectRepository(db)
        self.evaluation_types = EvaluationTypeRepository(db)
        self.entries = EntryRepository(db)
        self.day_notes = DayNoteRepository(db)
        self.slots = ScheduleSlotRepository(db)
        self.week_system = WeekSystemRepository(db)
        self.grades = GradeRepository(db)
        self.reminder = GradeReminderRepository(db)
        self._ready = False
        self._ready_lock = asyncio.Lock()

    async def ready(self, with_defaults: bool = True) -> "Tracker":
        async with self._ready_lock:
            if not self._ready:
                await asyncio.to_thread(self.db.open)
                if with_defaults:
                    await self.initialize_defaults()
                self._ready = True
        return self

    async def initialize_defaults(self):
        # keine Transaktion über beide Collections: jede Anlage ist ein eigener Commit
        if not await self.subjects.count():
            logging.info("[OralParticipation] Lege Standard-Fächer an")
            for order, (name, color) in enumerate(DEFAULT_SUBJECTS):
                await self.subjects.add(Subject(name, color, order))
        if not await self.evaluation_types.count():
            logging.info("[OralParticipation] Lege Standard-Bewertungen an")
            for order, (name, color) in enumerate(DEFAULT_EVALUATION_TYPES):
                await self.evaluation_types.add(EvaluationType(name, color, order))

    # Fächer / Bewertungen
    async def add_subject(self, name: str, color: str) -> Subject:
        name = name.strip()
        if not name:
            raise ValueError("subject name must not be empty")
        return await self.subjects.add(Subject(name, color, await self.subjects.count()))

    async def add_evaluation_type(self, name: str, color: str) -> EvaluationType:
        name = name.strip()
        if not name:
            raise ValueError("evaluation type name must not be empty")
        return await self.evaluation_types.add(EvaluationType(name, color, await self.evaluation_types.count()))

    # Einträge und Notizen
    async def add_entry(self, subject_id: str, day: DateLike, evaluation_type_id: str,
                        note: Optional[str] = None) -> ParticipationEntry:
        return await self.entries.add(ParticipationEntry(subject_id, parse_date(day), evaluation_type_id, note or None))

    async def save_day_note(self, subject_id: str, day: DateLike, note: str) -> DayNote:
        return await self.day_notes.save(subject_id, day, note)

    # Stundenplan
    async def schedule_for(self, day: DateLike) -> List[ScheduledSubject]:
        slots, settings, subjects = await asyncio.gather(
            self.slots.list_all(), self.week_system.get_settings(), self.subjects.list_all())
        return resolve_schedule(day, slots, subjects, settings)

    async def current_week_type(self, day: DateLike = None) -> Optional[str]:
        """'A'/'B' wenn das Wochensystem aktiv ist, sonst None."""
        settings = await self.week_system.get_settings()
        if settings is None or not settings.enabled:
            return None
        if settings.reference_date is None:
            return WEEK_A
        return week_type(day if day is not None else date.today(), settings.reference_date)

    async def day_overview(self, day: DateLike) -> DayOverview:
        day = parse_date(day)
        slots, settings, subjects = await asyncio.gather(
            self.slots.list_all(), self.week_system.get_settings(), self.subjects.list_all())
        schedule = resolve_schedule(day, slots, subjects, settings)
        wt = None
        if settings is not None and settings.enabled:
            wt = week_type(day, settings.reference_date) if settings.reference_date else WEEK_A
        return DayOverview(
            day=day,
            schedule=schedule,
            empty_reason=empty_reason(day, slots, schedule),
            week_type=wt,
            entries=await self.entries.for_date(day),
            notes=await self.day_notes.for_date(day),
        )

    async def week_entries(self, start: DateLike) -> Dict[date, List[ParticipationEntry]]:
        out = {}
        for d in week_dates(start):
            out[d] = await self.entries.for_date(d)
        return out

    async def _bucket_week(self, week: Optional[str]) -> Optional[str]:
        settings = await self.week_system.get_settings()
        if settings is None or not settings.enabled:
            return None
        if week not in WEEK_TYPES:
            raise ValueError(f"week system is enabled, week_type must be 'A' or 'B', got {week!r}")
        return week

    async def assign_double_period(self, day_of_week: int, first: int, subject_id: str,
                                   week: Optional[str] = None) -> List[ScheduleSlot]:
        """Doppelstunde belegen; bei abgeschaltetem Wochensystem gilt der Slot für beide Wochen."""
        bucket = await self._bucket_week(week)
        return await self.slots.replace_double_period(day_of_week, first, subject_id, bucket)

    async def remove_double_period(self, day_of_week: int, first: int, week: Optional[str] = None) -> int:
        bucket = await self._bucket_week(week)
        return await self.slots.remove_double_period(day_of_week, first, bucket)

    async def slot_for_double_period(self, day_of_week: int, first: int,
                                     week: Optional[str] = None) -> Optional[ScheduleSlot]:
        bucket = await self._bucket_week(week)
        return await self.slots.in_bucket(day_of_week, first, bucket)

    async def clear_schedule(self):
        logging.info("[OralParticipation] Stundenplan zurückgesetzt")
        await self.slots.clear()

    async def toggle_week_system(self, enabled: bool, today: DateLike = None):
        # wie beim ersten Einschalten: die aktuelle Woche wird zur A-Woche
        ref = parse_date(today) if today is not None else date.today()
        return await self.week_system.save_settings(enabled, ref)

    async def set_reference_date(self, day: DateLike):
        settings = await self.week_system.get_settings()
        if settings is None:
            raise NotFound("weekSystemSettings", SETTINGS_ID)
        return await self.week_system.save_settings(settings.enabled, parse_date(day))

    # Noten
    async def evaluation_snapshot(self, subject_id: str, today: DateLike = None) -> Dict[str, int]:
        """Anzahl Einträge je Bewertung im Snapshot-Zeitraum bis einschließlich heute."""
        end = parse_date(today) if today is not None else date.today()
        start = end - timedelta(days=int(self.config.get('grade_snapshot_days', 30)))
        counts: Dict[str, int] = {}
        for entry in await self.entries.between(start, end, subject_id):
            counts[entry.evaluation_type_id] = counts.get(entry.evaluation_type_id, 0) + 1
        return counts

    async def add_grade(self, subject_id: str, grade: float, note: Optional[str] = None,
                        today: DateLike = None) -> Grade:
        if not 0 <= grade <= 15:
            raise ValueError(f"grade must be within 0..15, got {grade}")
        day = parse_date(today) if today is not None else date.today()
        snapshot = await self.evaluation_snapshot(subject_id, day)
        return await self.grades.add(Grade(subject_id, grade, day, snapshot, note or None))

    # Noten-Erinnerung
    async def save_grade_reminder(self, enabled: bool, frequency=None, last_shown: Optional[int] = None) -> GradeReminder:
        if frequency is None:
            frequency = self.config.get('default_reminder_frequency', 7)
        return await self.reminder.save_reminder(enabled, frequency, last_shown)

    async def reminder_due(self, now: Optional[int] = None) -> bool:
        reminder = await self.reminder.get_reminder()
        if reminder is None or not reminder.enabled:
            return False
        return (now if now is not None else now_ms()) >= reminder.next_reminder

    async def acknowledge_reminder(self, now: Optional[int] = None) -> Optional[GradeReminder]:
        """Erinnerung als gezeigt markieren; nächster Termin ab jetzt."""
        reminder = await self.reminder.get_reminder()
        if reminder is None:
            return None
        shown = now if now is not None else now_ms()
        return await self.reminder.save_reminder(reminder.enabled, reminder.frequency, shown)

    # Verlauf
    async def history(self, today: DateLike = None) -> List[DayStats]:
        entries = await self.entries.list_all()
        return day_history(entries, today, int(self.config.get('history_days', 30)))
