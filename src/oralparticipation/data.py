import json
import logging
import os
import sqlite3
import threading
from contextlib import contextmanager
from typing import Any, Iterator, List, Optional

from oralparticipation.config import default_db_path
from oralparticipation.errors import AccessModeError, ConstraintViolation, StoreUnavailable
from oralparticipation.schema import (
    COLLECTIONS, DB_NAME, SCHEMA_VERSION, CollectionSpec, create_current_schema, pending_migrations,
)

READONLY = "readonly"
READWRITE = "readwrite"


class Database:
    """Lokale Datenhaltung: eine SQLite-Datei mit einer Tabelle pro Collection.

    Die Verbindung wird beim ersten Zugriff geöffnet (``open`` ist idempotent)
    und danach für die Lebensdauer des Objekts wiederverwendet.
    """

    def __init__(self, db_path: str = None):
        self.db_path = db_path or default_db_path()
        self.conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()
        self._depth = 0

    # Öffnen / Migration
    def open(self) -> "Database":
        with self._lock:
            if self.conn is not None:
                return self
            try:
                if self.db_path != ':memory:':
                    os.makedirs(os.path.dirname(os.path.abspath(self.db_path)), exist_ok=True)
                conn = sqlite3.connect(self.db_path, isolation_level=None, check_same_thread=False)
                conn.row_factory = sqlite3.Row
            except (OSError, sqlite3.Error) as e:
                logging.error(f"[OralParticipation] Datenbank {self.db_path} nicht verfügbar: {e}")
                raise StoreUnavailable(f"cannot open {self.db_path}: {e}") from e
            try:
                self._upgrade(conn)
            except Exception:
                conn.close()
                raise
            self.conn = conn
            logging.info(f"[OralParticipation] {DB_NAME} v{SCHEMA_VERSION} geöffnet: {self.db_path}")
            return self

    def _upgrade(self, conn: sqlite3.Connection):
        """Schema anlegen bzw. ausstehende Migrationen anwenden, alles in einer Transaktion."""
        try:
            cur = conn.cursor()
            cur.execute("BEGIN IMMEDIATE")
            stored = cur.execute("PRAGMA user_version").fetchone()[0]
            if stored > SCHEMA_VERSION:
                raise StoreUnavailable(
                    f"{self.db_path} has schema v{stored}, this version only knows v{SCHEMA_VERSION}")
            cur.execute("CREATE TABLE IF NOT EXISTS meta (key TEXT PRIMARY KEY, value TEXT)")
            if stored == 0:
                logging.info(f"[OralParticipation] Lege {DB_NAME} v{SCHEMA_VERSION} neu an")
                create_current_schema(cur)
            else:
                for step in pending_migrations(stored):
                    logging.info(f"[OralParticipation] Migration v{step.version}: {step.description}")
                    step.apply(cur)
            cur.execute("INSERT OR REPLACE INTO meta (key, value) VALUES ('name', ?)", (DB_NAME,))
            cur.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
            cur.execute("COMMIT")
        except StoreUnavailable:
            conn.rollback()
            raise
        except sqlite3.Error as e:
            conn.rollback()
            logging.error(f"[OralParticipation] Migration fehlgeschlagen, Schema unverändert: {e}")
            raise StoreUnavailable(f"schema upgrade of {self.db_path} failed: {e}") from e
        except BaseException:
            conn.rollback()
            raise

    def schema_version(self) -> int:
        self.open()
        with self._lock:
            return self.conn.execute("PRAGMA user_version").fetchone()[0]

    def index_names(self, collection: str) -> List[str]:
        self.open()
        with self._lock:
            rows = self.conn.execute(
                "SELECT name FROM sqlite_master WHERE type='index' AND tbl_name=? AND name LIKE 'ix_%'",
                (collection,))
            return sorted(row['name'] for row in rows)

    # Transaktionen
    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Cursor]:
        """Schreibtransaktion; verschachtelte Aufrufe laufen in der äußeren mit."""
        self.open()
        with self._lock:
            cur = self.conn.cursor()
            if self._depth:
                self._depth += 1
                try:
                    yield cur
                finally:
                    self._depth -= 1
                return
            cur.execute("BEGIN IMMEDIATE")
            self._depth = 1
            try:
                yield cur
            except BaseException:
                self.conn.rollback()
                raise
            else:
                cur.execute("COMMIT")
            finally:
                self._depth = 0

    def collection(self, name: str, mode: str = READONLY) -> "Collection":
        if mode not in (READONLY, READWRITE):
            raise ValueError(f"unknown mode {mode!r}")
        spec = COLLECTIONS[name]
        self.open()
        return Collection(self, spec, mode)

    # Export/Import
    def export_to_sql(self, filename: str):
        """Dump aller Collections als SQL-Statements"""
        self.open()
        with self._lock, open(filename, 'w', encoding='utf-8') as f:
            for line in self.conn.iterdump():
                f.write(f"{line}\n")
        logging.info(f"[OralParticipation] Backup geschrieben: {filename}")

    def import_from_sql(self, filename: str):
        """Vorhandene Collections löschen und den Dump in einer Transaktion einspielen.

        Schlägt das Einlesen fehl, bleibt der bisherige Stand erhalten. Ein Dump
        mit älterem Schema wird anschließend migriert.
        """
        with open(filename, 'r', encoding='utf-8') as f:
            script = f.read()
        self.open()
        with self._lock:
            cur = self.conn.cursor()
            try:
                cur.execute("BEGIN IMMEDIATE")
                tables = [row['name'] for row in cur.execute(
                    "SELECT name FROM sqlite_master WHERE type='table' AND name NOT LIKE 'sqlite_%'")]
                for tbl in tables:
                    cur.execute(f'DROP TABLE IF EXISTS "{tbl}"')
                for statement in _split_dump(script):
                    cur.execute(statement)
                if not _has_table(cur, "meta"):
                    cur.execute("CREATE TABLE meta (key TEXT PRIMARY KEY, value TEXT)")
                # iterdump enthält user_version nicht; aus den vorhandenen Tabellen ableiten
                cur.execute(f"PRAGMA user_version = {_detect_version(cur)}")
                cur.execute("COMMIT")
            except sqlite3.Error as e:
                self.conn.rollback()
                logging.error(f"[OralParticipation] Restore fehlgeschlagen, alter Stand bleibt: {e}")
                raise
            self._upgrade(self.conn)
        logging.info(f"[OralParticipation] Restore aus {filename} abgeschlossen")

    def close(self):
        """Schließe die Datenbankverbindung sauber"""
        with self._lock:
            if self.conn:
                self.conn.close()
                self.conn = None


def _split_dump(script: str) -> List[str]:
    statements, buf = [], ""
    for line in script.splitlines(keepends=True):
        buf += line
        if sqlite3.complete_statement(buf):
            stmt = buf.strip()
            buf = ""
            # iterdump rahmt mit BEGIN/COMMIT, wir haben schon eine eigene Transaktion
            if stmt.upper() in ("BEGIN TRANSACTION;", "COMMIT;"):
                continue
            statements.append(stmt)
    return statements


def _has_table(cur: sqlite3.Cursor, name: str) -> bool:
    row = cur.execute("SELECT 1 FROM sqlite_master WHERE type='table' AND name=?", (name,)).fetchone()
    return row is not None


def _has_index(cur: sqlite3.Cursor, name: str) -> bool:
    row = cur.execute("SELECT 1 FROM sqlite_master WHERE type='index' AND name=?", (name,)).fetchone()
    return row is not None


def _detect_version(cur: sqlite3.Cursor) -> int:
    if _has_index(cur, "ix_scheduleSlots_slotBucket"):
        return 4
    if _has_table(cur, "scheduleSlots"):
        return 2 if _has_index(cur, "ix_scheduleSlots_dayPeriod") else 3
    if _has_table(cur, "subjects"):
        return 1
    return 0


class Collection:
    """Zugriff auf genau eine Collection, readonly oder readwrite."""

    def __init__(self, db: Database, spec: CollectionSpec, mode: str):
        self.db = db
        self.spec = spec
        self.mode = mode

    @property
    def name(self) -> str:
        return self.spec.name

    def _check_writable(self):
        if self.mode != READWRITE:
            raise AccessModeError(f"{self.name} was opened {self.mode}")

    def _rows(self, sql: str, params=()) -> List[dict]:
        with self.db._lock:
            return [json.loads(row['doc']) for row in self.db.conn.execute(sql, params)]

    # Lesen
    def get(self, key: str) -> Optional[dict]:
        rows = self._rows(f'SELECT doc FROM "{self.name}" WHERE id=?', (key,))
        return rows[0] if rows else None

    def get_all(self) -> List[dict]:
        return self._rows(f'SELECT doc FROM "{self.name}" ORDER BY rowid')

    def _index_query(self, index: str, key: Any, prefix: bool = False):
        ix = self.spec.index(index)
        values = tuple(key) if isinstance(key, (tuple, list)) else (key,)
        if len(values) > len(ix.fields) or (not prefix and len(values) != len(ix.fields)):
            raise ValueError(f"index {index} expects {len(ix.fields)} key parts, got {len(values)}")
        exprs = ix.expressions()
        where, params = [], []
        for expr, value in zip(exprs, values):
            if value is None and not ix.null_bucket:
                where.append(f"{expr} IS NULL")
                continue
            if value is None:
                value = ''
            where.append(f"{expr} = ?")
            params.append(value)
        order = ", ".join(exprs + ["id"])
        return f'SELECT doc FROM "{self.name}" WHERE {" AND ".join(where)} ORDER BY {order}', params

    def get_all_by_index(self, index: str, key: Any) -> List[dict]:
        """Alle Datensätze zum Indexschlüssel; ``None`` sucht nach fehlenden Werten."""
        sql, params = self._index_query(index, key)
        return self._rows(sql, params)

    def get_all_by_prefix(self, index: str, prefix: Any) -> List[dict]:
        """Wie get_all_by_index, aber nur die vorderen Felder eines zusammengesetzten Index."""
        sql, params = self._index_query(index, prefix, prefix=True)
        return self._rows(sql, params)

    def get_range_by_index(self, index: str, lower: Any, upper: Any) -> List[dict]:
        """Datensätze mit lower <= Schlüssel <= upper auf einem einspaltigen Index."""
        exprs = self.spec.index(index).expressions()
        if len(exprs) != 1:
            raise ValueError(f"range queries need a single-field index, {index} has {len(exprs)}")
        expr = exprs[0]
        return self._rows(
            f'SELECT doc FROM "{self.name}" WHERE {expr} BETWEEN ? AND ? ORDER BY {expr}, id',
            (lower, upper))

    def all_in_index_order(self, index: str) -> List[dict]:
        exprs = self.spec.index(index).expressions()
        return self._rows(f'SELECT doc FROM "{self.name}" ORDER BY {", ".join(exprs + ["id"])}')

    def get_by_index(self, index: str, key: Any) -> Optional[dict]:
        sql, params = self._index_query(index, key)
        rows = self._rows(sql + " LIMIT 1", params)
        return rows[0] if rows else None

    def count(self) -> int:
        with self.db._lock:
            return self.db.conn.execute(f'SELECT COUNT(*) FROM "{self.name}"').fetchone()[0]

    # Schreiben
    def transaction(self):
        self._check_writable()
        return self.db.transaction()

    def add(self, doc: dict) -> dict:
        self._check_writable()
        try:
            with self.db.transaction() as cur:
                cur.execute(f'INSERT INTO "{self.name}" (id, doc) VALUES (?, ?)',
                            (doc['id'], json.dumps(doc, ensure_ascii=False)))
        except sqlite3.IntegrityError as e:
            logging.error(f"[OralParticipation] {self.name}: add {doc.get('id')} verletzt Constraint: {e}")
            raise ConstraintViolation(f"{self.name}: {e}") from e
        return doc

    def put(self, doc: dict) -> dict:
        self._check_writable()
        try:
            with self.db.transaction() as cur:
                cur.execute(
                    f'INSERT INTO "{self.name}" (id, doc) VALUES (?, ?) '
                    f'ON CONFLICT(id) DO UPDATE SET doc=excluded.doc',
                    (doc['id'], json.dumps(doc, ensure_ascii=False)))
        except sqlite3.IntegrityError as e:
            logging.error(f"[OralParticipation] {self.name}: put {doc.get('id')} verletzt Constraint: {e}")
            raise ConstraintViolation(f"{self.name}: {e}") from e
        return doc

    def delete(self, key: str):
        self._check_writable()
        with self.db.transaction() as cur:
            cur.execute(f'DELETE FROM "{self.name}" WHERE id=?', (key,))

    def clear(self):
        self._check_writable()
        with self.db.transaction() as cur:
            cur.execute(f'DELETE FROM "{self.name}"')
