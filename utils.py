# utils.py
from __future__ import annotations

import csv
import io
import re
import unicodedata
from datetime import time
from typing import Iterable

import pandas as pd
from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER
from reportlab.lib.pagesizes import A4, landscape
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from breaks import DAILY_BREAK_LIMIT_SECONDS
from domain import BreakSessionState, DayPunchRecord, MonthlyStats, PunchType
from locations import LocationResolver, coordinates_label
from services import WorkHoursCalculator

WEEKDAYS = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]

CSV_HEADERS = [
    "Data",
    "Nome do Funcionario",
    "Entrada",
    "Localizacao Entrada",
    "Intervalo",
    "Saida Almoco",
    "Localizacao Saida Almoco",
    "Volta Almoco",
    "Localizacao Volta Almoco",
    "Saida",
    "Localizacao Saida",
    "Total Horas",
    "Horas Extras",
    "Observacoes",
]
CSV_BOM = "\ufeff"


def format_minutes(minutes: int) -> str:
    minutes = max(0, int(minutes))
    h, m = divmod(minutes, 60)
    if h == 0:
        return f"{m} min"
    if m == 0:
        return f"{h} h"
    return f"{h} h {m} min"


def format_hours(hours: float) -> str:
    return format_minutes(int(round(float(hours) * 60)))


def format_punch(t: time | None) -> str:
    return t.strftime("%H:%M") if t is not None else ""


def eur(x: float) -> str:
    return f"{x:,.2f}".replace(",", "X").replace(".", ",").replace("X", ".")


def format_duration(seconds: int) -> str:
    hours, rest = divmod(max(0, int(seconds)), 3600)
    return f"{hours:02d}:{rest // 60:02d}"


def format_break_time(total_time_used: int, limit: int = DAILY_BREAK_LIMIT_SECONDS) -> str:
    """HH:MM of break used, or -HH:MM of excess once over the limit."""
    if total_time_used > limit:
        return "-" + format_duration(total_time_used - limit)
    return format_duration(total_time_used)


def clean_text_for_csv(text: str | None) -> str:
    """Accent-free text without separators, at most 40 characters."""
    if not text:
        return ""
    text = unicodedata.normalize("NFD", text)
    text = "".join(c for c in text if not unicodedata.combining(c))
    text = re.sub(r"[^\w\s.-]", " ", text, flags=re.ASCII)
    text = re.sub(r"\s+", " ", text)
    return text[:40].strip()


def entries_to_dataframe(records: Iterable[DayPunchRecord], calculator: WorkHoursCalculator) -> pd.DataFrame:
    rows = []
    for r in records:
        hours = calculator.compute(r)
        rows.append({
            "Date": r.work_date.isoformat(),
            "Day": WEEKDAYS[r.work_date.weekday()],
            "Clock in": format_punch(r.clock_in),
            "Lunch out": format_punch(r.lunch_out),
            "Lunch in": format_punch(r.lunch_in),
            "Clock out": format_punch(r.clock_out),
            "Lunch (h)": calculator.lunch_break_hours(r),
            "Total (h)": hours.total,
            "Regular (h)": hours.regular,
            "Overtime (h)": hours.overtime,
            "Notes": r.notes or "",
        })
    df = pd.DataFrame(rows)
    if not df.empty:
        df = df.sort_values(["Date"], ascending=False).reset_index(drop=True)
    return df


def _location_cell(record: DayPunchRecord, punch_type: PunchType, resolver: LocationResolver | None) -> str:
    location = record.locations.get(punch_type)
    if location is None:
        return ""
    if resolver is not None:
        return clean_text_for_csv(resolver.resolve(location.latitude, location.longitude))
    return clean_text_for_csv(location.address or coordinates_label(location.latitude, location.longitude))


def entries_to_csv(
    records: Iterable[DayPunchRecord],
    user_name: str,
    calculator: WorkHoursCalculator,
    break_sessions: Iterable[BreakSessionState] = (),
    resolver: LocationResolver | None = None,
) -> str:
    """Timesheet CSV: BOM, ';' separated, every cell quoted, newest day first."""
    breaks_by_date = {s.work_date: s.total_time_used for s in break_sessions}
    name = clean_text_for_csv(user_name)

    rows = []
    for r in sorted(records, key=lambda x: x.work_date, reverse=True):
        hours = calculator.compute(r)
        rows.append([
            r.work_date.strftime("%d/%m/%Y"),
            name,
            format_punch(r.clock_in),
            _location_cell(r, PunchType.CLOCK_IN, resolver),
            format_break_time(breaks_by_date.get(r.work_date, 0)),
            format_punch(r.lunch_out),
            _location_cell(r, PunchType.LUNCH_OUT, resolver),
            format_punch(r.lunch_in),
            _location_cell(r, PunchType.LUNCH_IN, resolver),
            format_punch(r.clock_out),
            _location_cell(r, PunchType.CLOCK_OUT, resolver),
            f"{hours.total:.2f}h" if hours.total else "",
            f"{hours.overtime:.2f}h" if hours.overtime else "",
            clean_text_for_csv(r.notes),
        ])

    df = pd.DataFrame(rows, columns=CSV_HEADERS)
    return CSV_BOM + df.to_csv(sep=";", index=False, quoting=csv.QUOTE_ALL, lineterminator="\n")


def monthly_summary_lines(stats: MonthlyStats) -> tuple[str, str]:
    l1 = (f"Total: {format_hours(stats.total_hours)} · Regular: {format_hours(stats.regular_hours)}"
          f" · Overtime: {format_hours(stats.overtime_hours)} · Days: {stats.working_days}")
    l2 = f"Overtime pay: {eur(stats.overtime_pay)} € · Break used: {format_duration(stats.break_time_used)}"
    return l1, l2


def dataframe_to_pdf(df: pd.DataFrame, title: str, summary: Iterable[str] = ()) -> bytes:
    buf = io.BytesIO()
    doc = SimpleDocTemplate(buf, pagesize=landscape(A4), topMargin=24, bottomMargin=24, leftMargin=24, rightMargin=24)
    styles = getSampleStyleSheet()
    title_style = ParagraphStyle(name="TitleCentered", parent=styles["Title"], alignment=TA_CENTER)
    summary_style = ParagraphStyle(
        name="Summary", parent=styles["Normal"], alignment=TA_CENTER,
        textColor=colors.black, fontSize=10, leading=12, spaceBefore=2, spaceAfter=2
    )

    story = [Paragraph(title, title_style), Spacer(1, 8)]
    if df.empty:
        story.append(Paragraph("No data to show.", styles["Normal"]))
    else:
        data = [list(df.columns)] + df.astype(str).values.tolist()
        table = Table(data, repeatRows=1, hAlign="CENTER")
        table.setStyle(TableStyle([
            ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#F5F5F7")),
            ("ALIGN", (0, 0), (-1, -1), "CENTER"),
            ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
            ("FONTSIZE", (0, 0), (-1, -1), 9),
            ("GRID", (0, 0), (-1, -1), 0.25, colors.HexColor("#E0E0E0")),
            ("ROWBACKGROUNDS", (0, 1), (-1, -1), [colors.whitesmoke, colors.white]),
            ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
        ]))
        story.append(table)

    lines = [line for line in summary if line]
    if lines:
        story.append(Spacer(1, 12))
        box = Table([[Paragraph(line, summary_style)] for line in lines],
                    colWidths=[min(520, 0.65 * doc.width)], hAlign="CENTER")
        box.setStyle(TableStyle([
            ("ALIGN", (0, 0), (-1, -1), "CENTER"),
            ("BOX", (0, 0), (-1, -1), 0.6, colors.HexColor("#C7CCD6")),
            ("LEFTPADDING", (0, 0), (-1, -1), 8),
            ("RIGHTPADDING", (0, 0), (-1, -1), 8),
            ("TOPPADDING", (0, 0), (-1, -1), 6),
            ("BOTTOMPADDING", (0, 0), (-1, -1), 6),
        ]))
        story.append(box)

    def draw_page_border(canvas, doc_obj):
        canvas.saveState()
        w, h = doc_obj.pagesize
        canvas.setStrokeColor(colors.HexColor("#C7CCD6"))
        canvas.setLineWidth(0.8)
        canvas.rect(12, 12, w - 24, h - 24)
        canvas.restoreState()

    doc.build(story, onFirstPage=draw_page_border, onLaterPages=draw_page_border)
    return buf.getvalue()
