import json
import sqlite3
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from oralparticipation import data, schema
from oralparticipation.data import READONLY, READWRITE, Database
from oralparticipation.errors import AccessModeError, ConstraintViolation, StoreUnavailable
from oralparticipation.schema import MIGRATIONS, SCHEMA_VERSION, Migration


def test_open_creates_all_collections(db):
    db.open()
    assert db.schema_version() == SCHEMA_VERSION
    names = {row['name'] for row in db.conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
    assert set(schema.COLLECTIONS) <= names
    assert db.index_names('entries') == [
        'ix_entries_date', 'ix_entries_dateSubject', 'ix_entries_subjectId']
    assert db.index_names('scheduleSlots') == ['ix_scheduleSlots_slotBucket', 'ix_scheduleSlots_subjectId']
    assert db.index_names('weekSystemSettings') == []
    name = db.conn.execute("SELECT value FROM meta WHERE key='name'").fetchone()[0]
    assert name == 'OralParticipationDB'


def test_open_is_idempotent(db):
    db.open()
    conn = db.conn
    assert db.open() is db
    assert db.conn is conn


def test_concurrent_first_use_runs_schema_once(tmp_path, monkeypatch):
    calls = []
    original = data.create_current_schema

    def counting(cur):
        calls.append(threading.get_ident())
        original(cur)

    monkeypatch.setattr(data, 'create_current_schema', counting)
    db = Database(str(tmp_path / 'race.db'))
    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(lambda _: db.collection('subjects').count(), range(16)))
    assert len(calls) == 1
    db.close()


def test_unavailable_location(tmp_path):
    blocker = tmp_path / 'blocker'
    blocker.write_text('not a directory')
    db = Database(str(blocker / 'sub' / 'x.db'))
    with pytest.raises(StoreUnavailable):
        db.open()
    assert db.conn is None


def test_newer_schema_is_refused(tmp_path):
    path = tmp_path / 'future.db'
    conn = sqlite3.connect(str(path))
    conn.execute('PRAGMA user_version = 99')
    conn.close()
    with pytest.raises(StoreUnavailable):
        Database(str(path)).open()


def _legacy_db(path, version):
    conn = sqlite3.connect(str(path))
    cur = conn.cursor()
    for step in MIGRATIONS[:version]:
        step.apply(cur)
    conn.execute(f'PRAGMA user_version = {version}')
    conn.commit()
    return conn


def _insert(conn, table, doc):
    conn.execute(f'INSERT INTO "{table}" (id, doc) VALUES (?, ?)', (doc['id'], json.dumps(doc)))


def test_upgrade_from_v2_applies_deltas_and_keeps_data(tmp_path):
    path = tmp_path / 'v2.db'
    conn = _legacy_db(path, 2)
    _insert(conn, 'subjects', {'id': 's1', 'name': 'Mathe', 'color': '#fff', 'order': 0, 'createdAt': 1})
    # zwei Slots im selben Bucket (Mo, 1. Stunde, beide Wochen), der jüngere bleibt
    _insert(conn, 'scheduleSlots', {'id': 'old', 'subjectId': 's1', 'dayOfWeek': 0, 'period': 1,
                                    'weekType': None, 'createdAt': 10})
    _insert(conn, 'scheduleSlots', {'id': 'new', 'subjectId': 's1', 'dayOfWeek': 0, 'period': 1,
                                    'weekType': None, 'createdAt': 20})
    _insert(conn, 'scheduleSlots', {'id': 'a', 'subjectId': 's1', 'dayOfWeek': 0, 'period': 1,
                                    'weekType': 'A', 'createdAt': 5})
    conn.commit()
    conn.close()

    db = Database(str(path))
    assert db.schema_version() == SCHEMA_VERSION
    assert 'ix_scheduleSlots_dayPeriod' not in db.index_names('scheduleSlots')
    assert 'ix_scheduleSlots_slotBucket' in db.index_names('scheduleSlots')
    ids = sorted(d['id'] for d in db.collection('scheduleSlots').get_all())
    assert ids == ['a', 'new']
    assert db.collection('subjects').get('s1')['name'] == 'Mathe'
    db.close()


def test_failed_migration_leaves_schema_untouched(tmp_path, monkeypatch):
    path = tmp_path / 'v3.db'
    _legacy_db(path, 3).close()

    def broken(cur):
        cur.execute('CREATE INDEX half_done ON subjects (id)')
        raise sqlite3.OperationalError('boom')

    monkeypatch.setattr(schema, 'MIGRATIONS', MIGRATIONS[:3] + [Migration(4, 'broken', broken)])
    with pytest.raises(StoreUnavailable):
        Database(str(path)).open()

    conn = sqlite3.connect(str(path))
    assert conn.execute('PRAGMA user_version').fetchone()[0] == 3
    assert conn.execute("SELECT 1 FROM sqlite_master WHERE name='half_done'").fetchone() is None
    conn.close()

    monkeypatch.undo()
    db = Database(str(path))
    assert db.schema_version() == SCHEMA_VERSION
    db.close()


def test_readonly_collection_rejects_writes(db):
    coll = db.collection('subjects', READONLY)
    with pytest.raises(AccessModeError):
        coll.add({'id': 'x', 'name': 'x', 'color': '#000', 'order': 0})
    with pytest.raises(AccessModeError):
        coll.delete('x')
    with pytest.raises(ValueError):
        db.collection('subjects', 'readmostly')
    with pytest.raises(KeyError):
        db.collection('teachers')


def test_duplicate_key_is_constraint_violation(db):
    coll = db.collection('subjects', READWRITE)
    coll.add({'id': 'x', 'name': 'Mathe', 'color': '#000', 'order': 0})
    with pytest.raises(ConstraintViolation):
        coll.add({'id': 'x', 'name': 'Deutsch', 'color': '#111', 'order': 1})
    assert coll.get('x')['name'] == 'Mathe'


def test_index_queries_and_order(db):
    coll = db.collection('entries', READWRITE)
    coll.add({'id': '1', 'subjectId': 'm', 'date': '2024-09-03', 'evaluationTypeId': 'e'})
    coll.add({'id': '2', 'subjectId': 'd', 'date': '2024-09-03', 'evaluationTypeId': 'e'})
    coll.add({'id': '3', 'subjectId': 'm', 'date': '2024-09-04', 'evaluationTypeId': 'e'})
    assert [d['id'] for d in coll.get_all_by_index('date', '2024-09-03')] == ['1', '2']
    assert [d['id'] for d in coll.get_all_by_index('subjectId', 'm')] == ['1', '3']
    assert [d['id'] for d in coll.get_all_by_index('dateSubject', ('2024-09-03', 'm'))] == ['1']
    assert coll.get_by_index('dateSubject', ('2024-09-05', 'm')) is None
    with pytest.raises(ValueError):
        coll.get_all_by_index('dateSubject', '2024-09-03')

    subjects = db.collection('subjects', READWRITE)
    for sid, order in (('c', 2), ('a', 0), ('b', 1)):
        subjects.add({'id': sid, 'name': sid, 'color': '#000', 'order': order})
    assert [d['id'] for d in subjects.all_in_index_order('order')] == ['a', 'b', 'c']


def test_transaction_rolls_back_on_error(db):
    coll = db.collection('subjects', READWRITE)
    with pytest.raises(RuntimeError):
        with coll.transaction():
            coll.add({'id': 'x', 'name': 'x', 'color': '#000', 'order': 0})
            raise RuntimeError('abort')
    assert coll.get('x') is None
    assert coll.count() == 0


def test_delete_missing_is_noop(db):
    coll = db.collection('grades', READWRITE)
    coll.delete('nothing')
    coll.delete('nothing')
    assert coll.count() == 0


def test_slot_bucket_is_unique(db):
    coll = db.collection('scheduleSlots', READWRITE)
    coll.add({'id': '1', 'subjectId': 'm', 'dayOfWeek': 0, 'period': 1, 'weekType': None})
    coll.add({'id': '2', 'subjectId': 'm', 'dayOfWeek': 0, 'period': 1, 'weekType': 'A'})
    with pytest.raises(ConstraintViolation):
        coll.add({'id': '3', 'subjectId': 'd', 'dayOfWeek': 0, 'period': 1, 'weekType': None})
    assert coll.get_by_index('slotBucket', (0, 1, None))['id'] == '1'
    assert coll.get_by_index('slotBucket', (0, 1, 'A'))['id'] == '2'


def test_none_key_matches_missing_values_only(db):
    coll = db.collection('entries', READWRITE)
    coll.add({'id': '1', 'subjectId': 'm', 'date': '2024-09-03', 'evaluationTypeId': 'e'})
    coll.add({'id': '2', 'subjectId': 'd', 'date': '2024-09-03', 'evaluationTypeId': 'e'})
    assert coll.get_all_by_index('subjectId', None) == []
    coll.add({'id': '3', 'subjectId': None, 'date': '2024-09-03', 'evaluationTypeId': 'e'})
    assert [d['id'] for d in coll.get_all_by_index('subjectId', None)] == ['3']


def test_prefix_and_range_queries(db):
    notes = db.collection('dayNotes', READWRITE)
    notes.add({'id': 'n1', 'subjectId': 'm', 'date': '2024-09-03', 'note': 'a'})
    notes.add({'id': 'n2', 'subjectId': 'd', 'date': '2024-09-03', 'note': 'b'})
    notes.add({'id': 'n3', 'subjectId': 'm', 'date': '2024-09-04', 'note': 'c'})
    assert [d['id'] for d in notes.get_all_by_prefix('dateSubject', ('2024-09-03',))] == ['n2', 'n1']
    with pytest.raises(ValueError):
        notes.get_all_by_prefix('dateSubject', ('2024-09-03', 'm', 'x'))

    entries = db.collection('entries', READWRITE)
    for i, day in enumerate(('2024-09-01', '2024-09-02', '2024-09-05', '2024-09-06')):
        entries.add({'id': str(i), 'subjectId': 'm', 'date': day, 'evaluationTypeId': 'e'})
    assert [d['date'] for d in entries.get_range_by_index('date', '2024-09-02', '2024-09-05')] == [
        '2024-09-02', '2024-09-05']
    with pytest.raises(ValueError):
        entries.get_range_by_index('dateSubject', '2024-09-02', '2024-09-05')
