# src/oralparticipation/schema.py
"""Statische Beschreibung der Collections, ihrer Indizes und der Migrationen.

Jede Collection ist eine Tabelle ``(id TEXT PRIMARY KEY, doc TEXT)``; ``doc``
enthält den vollständigen Datensatz als JSON. Sekundärindizes sind
Ausdrucks-Indizes auf ``json_extract(doc, '$.<feld>')``.
"""
import logging
import sqlite3
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Tuple

DB_NAME = "OralParticipationDB"
SCHEMA_VERSION = 4


@dataclass(frozen=True)
class IndexSpec:
    name: str
    fields: Tuple[str, ...]
    unique: bool = False
    # NULL-Werte auf '' abbilden, damit ein Unique-Index "beide Wochen" als eigenen Bucket zählt
    null_bucket: bool = False

    def expressions(self) -> List[str]:
        out = []
        for f in self.fields:
            expr = f"json_extract(doc, '$.{f}')"
            if self.null_bucket:
                expr = f"ifnull({expr}, '')"
            out.append(expr)
        return out


@dataclass(frozen=True)
class CollectionSpec:
    name: str
    indexes: Tuple[IndexSpec, ...] = field(default_factory=tuple)
    key_path: str = "id"

    def index(self, name: str) -> IndexSpec:
        for ix in self.indexes:
            if ix.name == name:
                return ix
        raise KeyError(f"{self.name} has no index {name!r}")


SLOT_BUCKET = IndexSpec("slotBucket", ("dayOfWeek", "period", "weekType"), unique=True, null_bucket=True)

COLLECTIONS: Dict[str, CollectionSpec] = {spec.name: spec for spec in (
    CollectionSpec("subjects", (IndexSpec("order", ("order",)),)),
    CollectionSpec("evaluationTypes", (IndexSpec("order", ("order",)),)),
    CollectionSpec("entries", (
        IndexSpec("date", ("date",)),
        IndexSpec("subjectId", ("subjectId",)),
        IndexSpec("dateSubject", ("date", "subjectId")),
    )),
    CollectionSpec("dayNotes", (IndexSpec("dateSubject", ("date", "subjectId")),)),
    CollectionSpec("scheduleSlots", (IndexSpec("subjectId", ("subjectId",)), SLOT_BUCKET)),
    CollectionSpec("weekSystemSettings"),
    CollectionSpec("grades", (
        IndexSpec("subjectId", ("subjectId",)),
        IndexSpec("date", ("date",)),
    )),
    CollectionSpec("gradeReminder"),
)}


def index_name(collection: str, index: str) -> str:
    return f"ix_{collection}_{index}"


def create_collection(cur: sqlite3.Cursor, name: str):
    cur.execute(f'CREATE TABLE "{name}" (id TEXT PRIMARY KEY, doc TEXT NOT NULL)')


def create_index(cur: sqlite3.Cursor, collection: str, ix: IndexSpec):
    unique = "UNIQUE " if ix.unique else ""
    cols = ", ".join(ix.expressions())
    cur.execute(f'CREATE {unique}INDEX "{index_name(collection, ix.name)}" ON "{collection}" ({cols})')


def drop_index(cur: sqlite3.Cursor, collection: str, index: str):
    cur.execute(f'DROP INDEX IF EXISTS "{index_name(collection, index)}"')


def create_current_schema(cur: sqlite3.Cursor):
    """Frische Datenbank: alle Collections und Indizes des aktuellen Stands."""
    for spec in COLLECTIONS.values():
        create_collection(cur, spec.name)
        for ix in spec.indexes:
            create_index(cur, spec.name, ix)


# --- Migrationen --------------------------------------------------------------

@dataclass(frozen=True)
class Migration:
    version: int
    description: str
    apply: Callable[[sqlite3.Cursor], None]


def _v1_base_collections(cur):
    for name in ("subjects", "evaluationTypes", "entries", "dayNotes"):
        spec = COLLECTIONS[name]
        create_collection(cur, name)
        for ix in spec.indexes:
            create_index(cur, name, ix)


def _v2_schedule_and_grades(cur):
    create_collection(cur, "scheduleSlots")
    create_index(cur, "scheduleSlots", IndexSpec("subjectId", ("subjectId",)))
    # Stand v2: Index über Tag/Stunde, mit v3 wieder entfernt
    create_index(cur, "scheduleSlots", IndexSpec("dayPeriod", ("dayOfWeek", "period")))
    create_collection(cur, "weekSystemSettings")
    create_collection(cur, "grades")
    for ix in COLLECTIONS["grades"].indexes:
        create_index(cur, "grades", ix)
    create_collection(cur, "gradeReminder")


def _v3_drop_day_period(cur):
    drop_index(cur, "scheduleSlots", "dayPeriod")


def _v4_unique_slot_bucket(cur):
    # Doppelte Belegungen aufräumen: pro Bucket bleibt der jüngste Slot
    cur.execute("""
        DELETE FROM scheduleSlots WHERE rowid NOT IN (
          SELECT rid FROM (
            SELECT rowid AS rid, ROW_NUMBER() OVER (
              PARTITION BY json_extract(doc, '$.dayOfWeek'),
                           json_extract(doc, '$.period'),
                           ifnull(json_extract(doc, '$.weekType'), '')
              ORDER BY json_extract(doc, '$.createdAt') DESC, rowid DESC
            ) AS rn FROM scheduleSlots
          ) WHERE rn = 1
        )""")
    if cur.rowcount:
        logging.warning(f"[OralParticipation] Migration v4: {cur.rowcount} doppelte Stundenplan-Slots entfernt")
    create_index(cur, "scheduleSlots", SLOT_BUCKET)


MIGRATIONS: List[Migration] = [
    Migration(1, "subjects, evaluationTypes, entries, dayNotes", _v1_base_collections),
    Migration(2, "scheduleSlots, weekSystemSettings, grades, gradeReminder", _v2_schedule_and_grades),
    Migration(3, "drop scheduleSlots.dayPeriod", _v3_drop_day_period),
    Migration(4, "unique scheduleSlots.slotBucket", _v4_unique_slot_bucket),
]


def pending_migrations(stored_version: int) -> List[Migration]:
    return [m for m in MIGRATIONS if m.version > stored_version]
