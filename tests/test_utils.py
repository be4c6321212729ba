import csv
import io
from datetime import date, datetime, time

import pandas as pd
import pytest

from domain import BreakSessionState, DayPunchRecord, MonthlyStats, PunchLocation, PunchType
from locations import LocationResolver
from services import WorkHoursCalculator
from utils import (
    CSV_BOM,
    CSV_HEADERS,
    clean_text_for_csv,
    dataframe_to_pdf,
    entries_to_csv,
    entries_to_dataframe,
    eur,
    format_break_time,
    format_hours,
    monthly_summary_lines,
)


@pytest.fixture
def calc():
    return WorkHoursCalculator()


@pytest.fixture
def records():
    clock_in_location = PunchLocation(
        latitude=38.7105, longitude=-9.1385, accuracy=10.0,
        recorded_at=datetime(2025, 3, 5, 9, 30), address="Rua Augusta, Lisboa",
    )
    return [
        DayPunchRecord(
            work_date=date(2025, 3, 3), clock_in=time(9, 30), clock_out=time(23, 0),
        ),
        DayPunchRecord(
            work_date=date(2025, 3, 5),
            clock_in=time(9, 30), lunch_out=time(13, 0), lunch_in=time(14, 30), clock_out=time(19, 30),
            notes="Reunião; cliente",
            locations={PunchType.CLOCK_IN: clock_in_location},
        ),
    ]


def read_csv(text):
    assert text.startswith(CSV_BOM)
    return list(csv.reader(io.StringIO(text[len(CSV_BOM):]), delimiter=";"))


@pytest.mark.parametrize("seconds, expected", [
    (0, "00:00"),
    (900, "00:15"),
    (1800, "00:30"),
    (1900, "-00:01"),
    (7200, "-01:30"),
])
def test_format_break_time(seconds, expected):
    assert format_break_time(seconds) == expected


def test_clean_text_for_csv():
    assert clean_text_for_csv("José; Lda, Águeda!") == "Jose Lda Agueda"
    assert clean_text_for_csv("Rua 25 de Abril - Nº 3") == "Rua 25 de Abril - N 3"
    assert clean_text_for_csv(None) == ""
    assert len(clean_text_for_csv("a" * 80)) == 40


def test_csv_layout(records, calc):
    breaks = [BreakSessionState(work_date=date(2025, 3, 5), total_time_used=900)]
    rows = read_csv(entries_to_csv(records, "José Conceição", calc, breaks))

    assert rows[0] == CSV_HEADERS
    assert len(rows) == 3
    newest, oldest = rows[1], rows[2]
    assert newest == [
        "05/03/2025", "Jose Conceicao",
        "09:30", "Rua Augusta Lisboa",
        "00:15",
        "13:00", "",
        "14:30", "",
        "19:30", "",
        "8.50h", "",
        "Reuniao cliente",
    ]
    assert oldest[0] == "03/03/2025"
    assert oldest[4] == "00:00"
    assert oldest[11:13] == ["12.00h", "2.00h"]


def test_csv_quotes_every_cell(records, calc):
    text = entries_to_csv(records, "Ana", calc)
    body_line = text.splitlines()[1]
    assert body_line.startswith('"05/03/2025";"Ana";"09:30";')
    assert ';"";' in body_line


def test_csv_resolves_locations_through_resolver(records, calc):
    resolver = LocationResolver(fetch=lambda lat, lng: {
        "display_name": "x", "address": {"road": "Rua Nova", "city": "Porto"},
    })
    rows = read_csv(entries_to_csv(records, "Ana", calc, resolver=resolver))
    assert rows[1][3] == "Rua Nova Porto"


def test_csv_without_records_has_only_headers(calc):
    assert read_csv(entries_to_csv([], "Ana", calc)) == [CSV_HEADERS]


def test_entries_to_dataframe(records, calc):
    df = entries_to_dataframe(records, calc)
    assert list(df.columns) == [
        "Date", "Day", "Clock in", "Lunch out", "Lunch in", "Clock out",
        "Lunch (h)", "Total (h)", "Regular (h)", "Overtime (h)", "Notes",
    ]
    assert df["Date"].tolist() == ["2025-03-05", "2025-03-03"]
    assert df.loc[0, "Day"] == "Wednesday"
    assert df.loc[0, "Lunch (h)"] == 1.5
    assert df.loc[1, "Overtime (h)"] == 2.0


def test_entries_to_dataframe_empty(calc):
    assert entries_to_dataframe([], calc).empty


def test_number_formatting():
    assert format_hours(8.5) == "8 h 30 min"
    assert format_hours(0.25) == "15 min"
    assert format_hours(2) == "2 h"
    assert eur(1234.5) == "1.234,50"


def test_monthly_summary_lines():
    stats = MonthlyStats(
        total_hours=20.5, regular_hours=18.5, overtime_hours=2.0,
        overtime_pay=14.0, working_days=2, break_time_used=2700,
    )
    first, second = monthly_summary_lines(stats)
    assert "Days: 2" in first
    assert "14,00 €" in second
    assert "00:45" in second


def test_pdf_export(records, calc):
    df = entries_to_dataframe(records, calc)
    pdf = dataframe_to_pdf(df, title="Ana 2025-03", summary=("Total: 20 h 30 min",))
    assert pdf.startswith(b"%PDF")
    assert dataframe_to_pdf(pd.DataFrame(), title="empty").startswith(b"%PDF")
