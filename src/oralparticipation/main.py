# src/oralparticipation/main.py
import argparse
import asyncio
import logging
import sys
from datetime import date
from typing import List, Optional

from .calendar_logic import EMPTY_NO_SCHEDULE, EMPTY_WEEKEND, week_type
from .data import Database
from .date_utils import parse_date
from .errors import StoreError
from .export_utils import export_entries_csv, export_statistics_pdf
from .statistics import (
    average_grade, average_per_subject, most_active_subject, name_lookup, subject_stats, total_entries,
)
from .tracker import Tracker

EMPTY_MESSAGES = {
    EMPTY_WEEKEND: "Wochenende – kein Unterricht.",
    EMPTY_NO_SCHEDULE: "Noch kein Stundenplan angelegt.",
}


async def cmd_today(tracker: Tracker, args) -> int:
    overview = await tracker.day_overview(parse_date(args.date) if args.date else date.today())
    header = overview.day.isoformat()
    if overview.week_type:
        header += f" ({overview.week_type}-Woche)"
    print(header)
    if overview.empty_reason:
        print(EMPTY_MESSAGES.get(overview.empty_reason, "Heute stehen keine Fächer im Stundenplan."))
        return 0
    counts = {}
    for e in overview.entries:
        counts[e.subject_id] = counts.get(e.subject_id, 0) + 1
    for item in overview.schedule:
        line = f"  {item.period_label:<7} {item.subject.name}"
        if counts.get(item.subject.id):
            line += f"  [{counts[item.subject.id]} Einträge]"
        if overview.notes.get(item.subject.id):
            line += f"  – {overview.notes[item.subject.id]}"
        print(line)
    return 0


async def _stats(tracker: Tracker):
    subjects = await tracker.subjects.list_all()
    evaluations = await tracker.evaluation_types.list_all()
    entries = await tracker.entries.list_all()
    grades = await tracker.grades.list_all()
    stats = subject_stats(subjects, entries)
    averages = {s.id: average_grade(grades, s.id) for s in subjects}
    return stats, name_lookup(subjects), name_lookup(evaluations), averages


async def cmd_stats(tracker: Tracker, args) -> int:
    stats, subject_names, evaluation_names, averages = await _stats(tracker)
    print(f"Einträge gesamt: {total_entries(stats)}")
    print(f"Durchschnitt pro Fach: {average_per_subject(stats)}")
    best = most_active_subject(stats)
    if best is not None:
        print(f"Aktivstes Fach: {subject_names[best.subject_id]}")
    for s in stats:
        avg = averages.get(s.subject_id)
        print(f"  {subject_names[s.subject_id]}: {s.total_entries} Einträge"
              + (f", Notenschnitt {avg:.2f}" if avg is not None else ""))
        for eval_id, count in s.evaluation_counts.items():
            print(f"      {evaluation_names.get(eval_id, 'Unbekannt')}: {count}")
    return 0


async def cmd_export_csv(tracker: Tracker, args) -> int:
    subjects = await tracker.subjects.list_all()
    evaluations = await tracker.evaluation_types.list_all()
    entries = await tracker.entries.list_all()
    n = export_entries_csv(args.file, entries, name_lookup(subjects), name_lookup(evaluations))
    print(f"CSV erfolgreich gespeichert: {args.file} ({n} Einträge)")
    return 0


async def cmd_export_pdf(tracker: Tracker, args) -> int:
    stats, subject_names, evaluation_names, averages = await _stats(tracker)
    export_statistics_pdf(args.file, stats, subject_names, evaluation_names, averages)
    print(f"PDF erfolgreich gespeichert: {args.file}")
    return 0


async def cmd_backup(tracker: Tracker, args) -> int:
    await asyncio.to_thread(tracker.db.export_to_sql, args.file)
    print(f"Datenbank erfolgreich exportiert nach: {args.file}")
    return 0


async def cmd_restore(tracker: Tracker, args) -> int:
    await asyncio.to_thread(tracker.db.import_from_sql, args.file)
    print("Datenbank erfolgreich wiederhergestellt.")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="oralparticipation", description="Mündliche Mitarbeit erfassen und auswerten")
    parser.add_argument("--db", help="Pfad zur Datenbank (Standard: ~/.oralparticipation/oralparticipation.db)")
    parser.add_argument("-v", "--verbose", action="store_true")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("today", help="Fächer des Tages laut Stundenplan")
    p.add_argument("--date", help="YYYY-MM-DD, Standard: heute")
    p.set_defaults(func=cmd_today)

    p = sub.add_parser("week-type", help="A- oder B-Woche eines Datums")
    p.add_argument("--date", required=True)
    p.add_argument("--reference", required=True, help="ein Datum in einer A-Woche")
    p.set_defaults(func=None)

    p = sub.add_parser("stats", help="Statistik je Fach")
    p.set_defaults(func=cmd_stats)

    for name, func, helptext in (
        ("backup", cmd_backup, "SQL-Dump schreiben"),
        ("restore", cmd_restore, "SQL-Dump einspielen (überschreibt alles)"),
        ("export-csv", cmd_export_csv, "Einträge als CSV"),
        ("export-pdf", cmd_export_pdf, "Statistik als PDF"),
    ):
        p = sub.add_parser(name, help=helptext)
        p.add_argument("file")
        p.set_defaults(func=func)
    return parser


async def _run(args) -> int:
    db = Database(args.db)
    try:
        tracker = await Tracker(db).ready()
        return await args.func(tracker, args)
    finally:
        db.close()


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.INFO if args.verbose else logging.WARNING,
                        format="%(levelname)s %(message)s")

    if args.command == "week-type":
        # reine Berechnung, ohne Datenbank
        print(week_type(args.date, args.reference))
        return 0

    try:
        return asyncio.run(_run(args))
    except StoreError as e:
        logging.error(f"[OralParticipation] {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
