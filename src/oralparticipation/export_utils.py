import csv
import logging
from datetime import date
from typing import Dict, Iterable, List, Optional

from reportlab.lib.pagesizes import A4
from reportlab.pdfgen import canvas

from oralparticipation.date_utils import format_date
from oralparticipation.models import ParticipationEntry
from oralparticipation.statistics import UNKNOWN, SubjectStats, average_per_subject, most_active_subject, total_entries

WEEKDAY_NAMES = ["Mo", "Di", "Mi", "Do", "Fr", "Sa", "So"]
CSV_HEADER = ["Datum", "Wochentag", "Fach", "Bewertung", "Notiz"]


def entry_rows(entries: Iterable[ParticipationEntry], subject_names: Dict[str, str],
               evaluation_names: Dict[str, str]) -> List[List[str]]:
    """Tabellenzeilen, nach Datum sortiert; fehlende Fächer/Bewertungen als 'Unbekannt'."""
    rows = []
    for e in sorted(entries, key=lambda e: (e.date, e.timestamp or 0)):
        rows.append([
            format_date(e.date),
            WEEKDAY_NAMES[e.date.weekday()],
            subject_names.get(e.subject_id, UNKNOWN),
            evaluation_names.get(e.evaluation_type_id, UNKNOWN),
            e.note or "",
        ])
    return rows


def export_entries_csv(filename: str, entries: Iterable[ParticipationEntry],
                       subject_names: Dict[str, str], evaluation_names: Dict[str, str]) -> int:
    rows = entry_rows(entries, subject_names, evaluation_names)
    with open(filename, 'w', newline='', encoding='utf-8') as f:
        writer = csv.writer(f)
        writer.writerow(CSV_HEADER)
        writer.writerows(rows)
    logging.info(f"[OralParticipation] CSV-Export: {len(rows)} Einträge nach {filename}")
    return len(rows)


def export_statistics_pdf(filename: str, stats: List[SubjectStats], subject_names: Dict[str, str],
                          evaluation_names: Dict[str, str], averages: Optional[Dict[str, Optional[float]]] = None,
                          generated: Optional[date] = None):
    """Statistik-Bericht als PDF: Übersicht und je Fach die Verteilung der Bewertungen."""
    averages = averages or {}
    c = canvas.Canvas(filename, pagesize=A4)
    w, h = A4
    y = h - 40

    def line(text, font='Helvetica', size=10, step=15):
        nonlocal y
        if y < 60:
            c.showPage()
            y = h - 40
        c.setFont(font, size)
        c.drawString(50, y, text)
        y -= step

    line('Mündliche Mitarbeit – Statistik', 'Helvetica-Bold', 14, 30)
    line(f"Stand: {(generated or date.today()).isoformat()}", step=20)
    line(f"Einträge gesamt: {total_entries(stats)}")
    line(f"Durchschnitt pro Fach: {average_per_subject(stats)}")
    best = most_active_subject(stats)
    if best is not None:
        line(f"Aktivstes Fach: {subject_names.get(best.subject_id, UNKNOWN)} ({best.total_entries})", step=30)

    for s in stats:
        name = subject_names.get(s.subject_id, UNKNOWN)
        avg = averages.get(s.subject_id)
        avg_txt = f"{avg:.2f}" if avg is not None else "—"
        line(f"{name}: {s.total_entries} Einträge, Notenschnitt {avg_txt}", 'Helvetica-Bold', 12, 18)
        if s.last_activity:
            line(f"Letzte Aktivität: {s.last_activity.isoformat()}")
        for eval_id, count in sorted(s.evaluation_counts.items(), key=lambda kv: -kv[1]):
            line(f"    {evaluation_names.get(eval_id, UNKNOWN)}: {count}")
        y -= 10
    c.save()
    logging.info(f"[OralParticipation] PDF-Export: {filename}")
