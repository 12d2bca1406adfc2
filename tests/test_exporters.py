import datetime
import json
import re
from io import BytesIO

import pytest
from openpyxl import load_workbook
from pypdf import PdfReader

from aggregation import aggregate
from conftest import FakeStore, make_event, make_student
from exporters import (REPORT_SHEET_NAME, render_backup_workbook, render_report_pdf,
                       render_report_workbook, render_schedule_pdf, render_weekly_schedule_pdf,
                       report_filename, weekly_time_label)
from matrix import build_attendance_matrix, build_group_summary, build_site_summary
from periods import resolve_period


@pytest.fixture
def week_summary(store):
    return aggregate(store, resolve_period("semana", today=datetime.date(2024, 1, 10)),
                     sede="Principal", grupo="601")


def column_a(ws):
    return [cell.value for cell in ws['A']]


def test_workbook_layout(week_summary):
    content = render_report_workbook(
        week_summary,
        build_site_summary(week_summary),
        build_group_summary(week_summary),
        detail=build_attendance_matrix(week_summary),
        detail_title="Matriz de asistencia del grupo 601",
        generated_at=datetime.datetime(2024, 1, 12, 14, 30),
    )
    wb = load_workbook(BytesIO(content))
    assert wb.sheetnames == [REPORT_SHEET_NAME]
    ws = wb[REPORT_SHEET_NAME]
    values = column_a(ws)

    assert values[0].startswith("Reporte PAE")
    assert values[1] == "Fecha de análisis: 08/01/2024 a 14/01/2024"
    assert values[2] == "Generado: 12/01/2024 14:30"
    assert "Grupo: 601" in values[3]
    assert values[4].startswith("Leyenda: ✓ = Recibió")

    # blank row, section title, table header
    site_title = values.index("Resumen por sede")
    assert values[site_title - 1] is None
    assert values[site_title + 1] == "Sede"
    assert values[site_title + 2] == "Principal"

    group_title = values.index("Resumen por grupo")
    assert values[group_title - 1] is None
    assert values[group_title + 1] == "Grupo"

    matrix_title = values.index("Matriz de asistencia del grupo 601")
    assert values[matrix_title + 1] == "Estudiante"
    assert values[matrix_title + 2:matrix_title + 5] == ["ANA", "BETO", "CARLA"]


def test_workbook_column_widths_are_capped(week_summary):
    content = render_report_workbook(week_summary, build_site_summary(week_summary),
                                     build_group_summary(week_summary), max_column_width=30)
    ws = load_workbook(BytesIO(content))[REPORT_SHEET_NAME]
    widths = [dim.width for dim in ws.column_dimensions.values() if dim.width]
    assert widths
    assert max(widths) == 30


def test_report_filename():
    day = datetime.date(2024, 1, 8)
    assert report_filename("todas", "hoy", day, "xlsx") == "Reporte_PAE_Todas_las_sedes_hoy_20240108.xlsx"
    assert report_filename("Maria Inmaculada", "semana", day, "pdf") == "Reporte_PAE_Maria_Inmaculada_semana_20240108.pdf"


def test_report_pdf_is_a_pdf(week_summary):
    content = render_report_pdf(week_summary)
    assert content.startswith(b"%PDF")


def pdf_pages(content):
    return [page.extract_text() for page in PdfReader(BytesIO(content)).pages]


@pytest.fixture
def crowded_summary():
    students = [make_student(f"e{i:03d}", f"ESTUDIANTE {i:03d}", "601") for i in range(120)]
    events = [make_event(s['id'], "2024-01-08", "recibio", hora=f"{10 + i // 60:02d}:{i % 60:02d}")
              for i, s in enumerate(students)]
    return aggregate(FakeStore(students, events), resolve_period("fecha", "2024-01-08"))


def test_report_pdf_lists_exactly_the_newest_events(crowded_summary):
    pages = pdf_pages(render_report_pdf(crowded_summary, limit=10))
    assert len(pages) == 1
    listed = set(re.findall(r"ESTUDIANTE \d{3}", pages[0]))
    assert listed == {f"ESTUDIANTE {i}" for i in range(110, 120)}
    assert "Se muestran los 10 registros más recientes de 120." in pages[0]


def test_every_report_page_carries_its_number(crowded_summary):
    pages = pdf_pages(render_report_pdf(crowded_summary, limit=120))
    assert len(pages) > 1
    assert len(re.findall(r"ESTUDIANTE \d{3}", "\n".join(pages))) == 120
    for number, text in enumerate(pages, start=1):
        assert f"Página {number} de {len(pages)}" in text


def test_schedule_pdf_footer_names_the_system():
    items = [{'time': "07:10 AM", 'group': "601", 'notes': "Arroz"}]
    pages = pdf_pages(render_schedule_pdf(items, "2024-01-08"))
    assert "Página 1 de 1" in pages[0]
    assert "Generado por: Sistema PAE" in pages[0]


def test_schedule_pdf(store):
    items = [
        {'time': "07:10 AM", 'group': "601", 'notes': "Arroz con pollo"},
        {'time': "07:20 AM", 'group': "602+301", 'notes': ""},
    ]
    content = render_schedule_pdf(items, "2024-01-08", {'601': 3, '602': 2, '301': 2})
    assert content.startswith(b"%PDF")


def test_weekly_schedule_pdf():
    days = [
        {'date': "2024-01-08", 'label': "Lunes 08 ene", 'items': [{'time': "NO_ASISTE", 'group': "601", 'notes': "Salida"}]},
        {'date': "2024-01-09", 'label': "Martes 09 ene", 'items': []},
    ]
    content = render_weekly_schedule_pdf(days, datetime.date(2024, 1, 8))
    assert content.startswith(b"%PDF")


@pytest.mark.parametrize("time,label", [
    ("NO_ASISTE", "NO ASISTE"),
    ("07:10 AM - 07:20 AM", "07:10 AM"),
    ("07:10 AM", "07:10 AM"),
    ("", "-"),
])
def test_weekly_time_label(time, label):
    assert weekly_time_label({'time': time}) == label


def test_backup_workbook():
    students = [make_student("p1", "ANA", "601")]
    schedules = [{'date': "2024-01-08", 'items': [{'time': "07:10 AM", 'group': "601", 'notes': "Menú"}],
                  'updated_at': "2024-01-08T07:00:00"}]
    wb = load_workbook(BytesIO(render_backup_workbook(students, schedules)))
    assert wb.sheetnames == ["Estudiantes", "Horarios"]

    horarios = list(wb["Horarios"].iter_rows(values_only=True))
    assert horarios[0] == ("fecha", "items", "updated_at")
    assert json.loads(horarios[1][1])[0]['notes'] == "Menú"

    estudiantes = list(wb["Estudiantes"].iter_rows(values_only=True))
    assert "nombre" in estudiantes[0]
    assert len(estudiantes) == 2
