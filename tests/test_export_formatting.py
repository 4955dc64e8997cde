import csv
from datetime import date

from oralparticipation.export_utils import CSV_HEADER, entry_rows, export_entries_csv, export_statistics_pdf
from oralparticipation.models import ParticipationEntry
from oralparticipation.statistics import SubjectStats


def _entry(subject_id, day, evaluation, note=None, ts=0):
    e = ParticipationEntry(subject_id, day, evaluation, note)
    e.timestamp = ts
    return e


SUBJECT_NAMES = {'m': 'Mathematik', 'd': 'Deutsch'}
EVALUATION_NAMES = {'r': 'Richtig', 'f': 'Falsch'}


def test_entry_rows_sorted_with_unknown_names():
    entries = [
        _entry('d', date(2024, 9, 3), 'r', ts=5),
        _entry('m', date(2024, 9, 2), 'f', 'zu leise', ts=9),
        _entry('gone', date(2024, 9, 3), 'weg', ts=1),
    ]
    rows = entry_rows(entries, SUBJECT_NAMES, EVALUATION_NAMES)
    assert rows == [
        ['2024-09-02', 'Mo', 'Mathematik', 'Falsch', 'zu leise'],
        ['2024-09-03', 'Di', 'Unbekannt', 'Unbekannt', ''],
        ['2024-09-03', 'Di', 'Deutsch', 'Richtig', ''],
    ]


def test_export_entries_csv(tmp_path):
    out = tmp_path / 'eintraege.csv'
    n = export_entries_csv(str(out), [_entry('m', date(2024, 9, 6), 'r', 'Tafel, Aufgabe 3')],
                           SUBJECT_NAMES, EVALUATION_NAMES)
    assert n == 1
    with open(out, newline='', encoding='utf-8') as f:
        rows = list(csv.reader(f))
    assert rows[0] == CSV_HEADER
    assert rows[1] == ['2024-09-06', 'Fr', 'Mathematik', 'Richtig', 'Tafel, Aufgabe 3']


def test_export_statistics_pdf(tmp_path):
    out = tmp_path / 'statistik.pdf'
    stats = [
        SubjectStats('m', 3, {'r': 2, 'f': 1}, date(2024, 9, 4)),
        SubjectStats('d', 0, {}),
    ]
    export_statistics_pdf(str(out), stats, SUBJECT_NAMES, EVALUATION_NAMES,
                          averages={'m': 11.5, 'd': None}, generated=date(2024, 9, 5))
    data = out.read_bytes()
    assert data.startswith(b'%PDF')
    assert len(data) > 500


def test_export_statistics_pdf_many_subjects(tmp_path):
    # mehr Zeilen als auf eine Seite passen
    out = tmp_path / 'lang.pdf'
    names = {f's{i}': f'Fach {i}' for i in range(40)}
    stats = [SubjectStats(sid, 2, {'r': 1, 'f': 1}, date(2024, 9, 4)) for sid in names]
    export_statistics_pdf(str(out), stats, names, EVALUATION_NAMES)
    assert out.read_bytes().startswith(b'%PDF')
