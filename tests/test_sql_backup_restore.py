# tests/test_sql_backup_restore.py

import sqlite3
from datetime import date

import pytest

from conftest import TEST_CONFIG, run
from oralparticipation.data import Database
from oralparticipation.schema import MIGRATIONS, SCHEMA_VERSION
from oralparticipation.tracker import Tracker


def test_export_import_roundtrip(tmp_path):
    # 1) Original-DB mit Fach, Eintrag, Notiz und Stundenplan
    db1 = Database(str(tmp_path / "original.db"))
    t1 = run(Tracker(db1, config=dict(TEST_CONFIG)).ready(with_defaults=False))
    mathe = run(t1.add_subject('Mathematik', '#3b82f6'))
    entry = run(t1.add_entry(mathe.id, date(2025, 1, 7), 'richtig', 'Übergröße äöü'))
    run(t1.save_day_note(mathe.id, date(2025, 1, 7), 'Test'))
    run(t1.assign_double_period(1, 1, mathe.id))

    # 2) Dump schreiben
    dump_file = tmp_path / "dump.sql"
    db1.export_to_sql(str(dump_file))
    assert dump_file.exists() and dump_file.stat().st_size > 0
    db1.close()

    # 3) in eine neue DB mit anderem Inhalt einspielen
    db2 = Database(str(tmp_path / "restored.db"))
    t2 = run(Tracker(db2, config=dict(TEST_CONFIG)).ready())
    db2.import_from_sql(str(dump_file))

    # 4) nur der Stand aus dem Dump ist übrig
    assert db2.schema_version() == SCHEMA_VERSION
    assert [s.name for s in run(t2.subjects.list_all())] == ['Mathematik']
    assert run(t2.evaluation_types.count()) == 0
    assert run(t2.entries.get(entry.id)) == entry
    assert run(t2.day_notes.for_date('2025-01-07')) == {mathe.id: 'Test'}
    assert [s.subject.name for s in run(t2.schedule_for(date(2025, 1, 7)))] == ['Mathematik']
    assert 'ix_scheduleSlots_slotBucket' in db2.index_names('scheduleSlots')
    db2.close()


def test_failed_restore_keeps_previous_state(tmp_path):
    db = Database(str(tmp_path / "keep.db"))
    t = run(Tracker(db, config=dict(TEST_CONFIG)).ready())

    broken = tmp_path / "broken.sql"
    broken.write_text(
        'BEGIN TRANSACTION;\n'
        'CREATE TABLE "subjects" (id TEXT PRIMARY KEY, doc TEXT NOT NULL);\n'
        'INSERT INTO "subjects" VALUES(\'x\', \'{}\');\n'
        'INSERT INTO nirgendwo VALUES(1);\n'
        'COMMIT;\n',
        encoding='utf-8')
    with pytest.raises(sqlite3.Error):
        db.import_from_sql(str(broken))

    assert run(t.subjects.count()) == 3
    assert run(t.evaluation_types.count()) == 5
    assert db.schema_version() == SCHEMA_VERSION
    db.close()


def test_restore_old_dump_is_migrated(tmp_path):
    # Dump einer Datenbank im Stand v2 (mit doppelt belegtem Slot)
    legacy = sqlite3.connect(str(tmp_path / "legacy.db"))
    cur = legacy.cursor()
    for step in MIGRATIONS[:2]:
        step.apply(cur)
    for sid, created in (('s-old', 1), ('s-new', 2)):
        cur.execute('INSERT INTO scheduleSlots (id, doc) VALUES (?, ?)', (
            sid, f'{{"id": "{sid}", "subjectId": "m", "dayOfWeek": 0, "period": 1, '
                 f'"weekType": null, "createdAt": {created}}}'))
    legacy.commit()
    dump_file = tmp_path / "legacy.sql"
    with open(dump_file, 'w', encoding='utf-8') as f:
        for line in legacy.iterdump():
            f.write(f"{line}\n")
    legacy.close()

    db = Database(str(tmp_path / "current.db"))
    db.import_from_sql(str(dump_file))
    assert db.schema_version() == SCHEMA_VERSION
    assert db.index_names('scheduleSlots') == ['ix_scheduleSlots_slotBucket', 'ix_scheduleSlots_subjectId']
    assert [d['id'] for d in db.collection('scheduleSlots').get_all()] == ['s-new']
    db.close()
