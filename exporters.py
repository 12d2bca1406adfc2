"""
Document renderers.

Every function here takes already built data and returns the file as bytes,
ready for ``st.download_button``. Nothing in this module reads the store.
"""
import datetime
import json
import logging
from io import BytesIO
from xml.sax.saxutils import escape

import pandas as pd
from openpyxl.styles import Font
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.pdfgen import canvas
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from schedule_utils import NO_SHOW_MARKER
from utils import (ALL_GROUPS, ALL_SITES, OUTCOME_LABELS, create_filename_date_range,
                   date_format, legend_text, slugify, spanish_day_label)

logger = logging.getLogger(__name__)

DEFAULT_SCHOOL_NAME = "Institución Educativa Barroblanco"
REPORT_SHEET_NAME = "Reporte PAE"
DEFAULT_MAX_COLUMN_WIDTH = 50
DEFAULT_PDF_DETAIL_LIMIT = 50

XLSX_MIME = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
PDF_MIME = "application/pdf"

HEADER_COLOR = colors.HexColor("#06B6D4")
STRIPE_COLOR = colors.HexColor("#F0FDFA")
TITLE_COLOR = colors.HexColor("#164E63")
SUBTITLE_COLOR = colors.HexColor("#475569")

SCHEDULE_REMINDERS = [
    "• Puntualidad",
    "• Uso adecuado del uniforme",
    "• Seguir las recomendaciones escritas en estas novedades",
]


class NumberedCanvas(canvas.Canvas):
    """Canvas that stamps 'Página i de n' on every page once the total is known."""

    footer_left = None

    def __init__(self, *args, **kwargs):
        canvas.Canvas.__init__(self, *args, **kwargs)
        self._saved_page_states = []

    def showPage(self):
        self._saved_page_states.append(dict(self.__dict__))
        self._startPage()

    def save(self):
        page_count = len(self._saved_page_states)
        for state in self._saved_page_states:
            self.__dict__.update(state)
            self.draw_footer(page_count)
            canvas.Canvas.showPage(self)
        canvas.Canvas.save(self)

    def draw_footer(self, page_count):
        width = self._pagesize[0]
        self.saveState()
        self.setFont("Helvetica", 8)
        self.setFillColor(colors.grey)
        self.drawCentredString(width / 2, 10 * mm, f"Página {self._pageNumber} de {page_count}")
        if self.footer_left:
            self.drawString(20 * mm, 10 * mm, self.footer_left)
        self.restoreState()


class GeneratedByCanvas(NumberedCanvas):
    footer_left = "Generado por: Sistema PAE"


def _styles():
    styles = getSampleStyleSheet()
    return {
        'title': ParagraphStyle('PaeTitle', parent=styles['Heading1'], fontSize=18,
                                alignment=1, textColor=TITLE_COLOR, spaceAfter=6),
        'subtitle': ParagraphStyle('PaeSubtitle', parent=styles['Heading2'], fontSize=13,
                                   alignment=1, textColor=SUBTITLE_COLOR, spaceAfter=4),
        'centered': ParagraphStyle('PaeCentered', parent=styles['Normal'], alignment=1,
                                   textColor=colors.grey),
        'section': styles['Heading3'],
        'normal': styles['Normal'],
        'bold': ParagraphStyle('PaeBold', parent=styles['Normal'], fontName='Helvetica-Bold'),
        'muted': ParagraphStyle('PaeMuted', parent=styles['Normal'], fontName='Helvetica-Oblique',
                                fontSize=9, textColor=colors.grey, leftIndent=10),
    }


def _grid_style(header_color=HEADER_COLOR, font_size=9, striped=True):
    commands = [
        ('BACKGROUND', (0, 0), (-1, 0), header_color),
        ('TEXTCOLOR', (0, 0), (-1, 0), colors.white),
        ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
        ('FONTSIZE', (0, 0), (-1, -1), font_size),
        ('ALIGN', (0, 0), (-1, -1), 'CENTER'),
        ('VALIGN', (0, 0), (-1, -1), 'MIDDLE'),
        ('GRID', (0, 0), (-1, -1), 0.5, colors.grey),
        ('TOPPADDING', (0, 0), (-1, -1), 4),
        ('BOTTOMPADDING', (0, 0), (-1, -1), 4),
    ]
    if striped:
        commands.append(('ROWBACKGROUNDS', (0, 1), (-1, -1), [colors.white, STRIPE_COLOR]))
    return TableStyle(commands)


def _build_pdf(elements, canvasmaker=NumberedCanvas, title=None):
    buffer = BytesIO()
    doc = SimpleDocTemplate(buffer, pagesize=A4, title=title or "",
                            leftMargin=15 * mm, rightMargin=15 * mm,
                            topMargin=15 * mm, bottomMargin=20 * mm)
    doc.build(elements, canvasmaker=canvasmaker)
    return buffer.getvalue()


def _scope_label(sede, grupo):
    sede_label = "Todas las sedes" if sede in (None, "", ALL_SITES) else sede
    grupo_label = "Todos los grupos" if grupo in (None, "", ALL_GROUPS) else grupo
    return sede_label, grupo_label


def _period_text(period):
    if period.is_single_day:
        return date_format(period.start_date)
    return f"{date_format(period.start_date)} a {date_format(period.end_date)}"


def report_filename(sede, tag, date, ext):
    """
    File name for a report download.

    Examples:
        report_filename('todas', 'hoy', date(2024, 1, 8), 'xlsx') -> 'Reporte_PAE_Todas_las_sedes_hoy_20240108.xlsx'
    """
    sede_label, _ = _scope_label(sede, None)
    return f"Reporte_PAE_{slugify(sede_label)}_{tag}{create_filename_date_range(date, date)}.{ext}"


# --- Spreadsheet ---

def _autosize_columns(ws, max_width):
    for column_cells in ws.columns:
        longest = max(len(str(cell.value or "")) for cell in column_cells)
        ws.column_dimensions[column_cells[0].column_letter].width = min(longest + 2, max_width)


def render_report_workbook(summary, site_summary, group_summary, detail=None, detail_title=None,
                           school_name=DEFAULT_SCHOOL_NAME, generated_at=None,
                           max_column_width=DEFAULT_MAX_COLUMN_WIDTH):
    """
    Single-sheet workbook with the header block and the report tables.

    Args:
        summary (AttendanceSummary): Provides filters and period for the header.
        site_summary (DataFrame): Per-site consolidated table.
        group_summary (DataFrame): Per-group consolidated table.
        detail (DataFrame, optional): Daily detail or attendance matrix.
        detail_title (str, optional): Section title for ``detail``.
        generated_at (datetime, optional): Timestamp printed in the header.
        max_column_width (int): Upper bound for auto-sized columns.

    Returns:
        bytes: The .xlsx file.
    """
    generated_at = generated_at or datetime.datetime.now()
    sede_label, grupo_label = _scope_label(summary.sede, summary.grupo)
    header = [
        f"Reporte PAE - {school_name}",
        f"Fecha de análisis: {_period_text(summary.period)}",
        f"Generado: {generated_at.strftime('%d/%m/%Y %H:%M')}",
        f"Filtros: Sede: {sede_label} | Grupo: {grupo_label} | Periodo: {summary.period.label}",
        f"Leyenda: {legend_text()}",
    ]

    sections = [("Resumen por sede", site_summary), ("Resumen por grupo", group_summary)]
    if detail is not None:
        sections.append((detail_title or "Detalle", detail))

    output = BytesIO()
    with pd.ExcelWriter(output, engine='openpyxl') as writer:
        pd.DataFrame({'info': header}).to_excel(
            writer, sheet_name=REPORT_SHEET_NAME, index=False, header=False, startrow=0)
        ws = writer.sheets[REPORT_SHEET_NAME]
        ws.cell(row=1, column=1).font = Font(bold=True, size=14)

        row = len(header)
        for title, table in sections:
            # One blank row, then the section title, then the table
            row += 1
            ws.cell(row=row + 1, column=1, value=title).font = Font(bold=True)
            row += 1
            table.to_excel(writer, sheet_name=REPORT_SHEET_NAME, index=False, startrow=row)
            row += len(table) + 1

        _autosize_columns(ws, max_column_width)

    logger.info("Report workbook rendered (%d sections)", len(sections))
    return output.getvalue()


def render_backup_workbook(students, schedules):
    """Backup workbook with an 'Estudiantes' and a 'Horarios' sheet."""
    students_df = pd.DataFrame(list(students))
    schedules_df = pd.DataFrame([
        {
            'fecha': schedule.get('date'),
            'items': json.dumps(schedule.get('items') or [], ensure_ascii=False),
            'updated_at': schedule.get('updated_at'),
        }
        for schedule in schedules
    ], columns=['fecha', 'items', 'updated_at'])

    output = BytesIO()
    with pd.ExcelWriter(output, engine='openpyxl') as writer:
        students_df.to_excel(writer, sheet_name="Estudiantes", index=False)
        schedules_df.to_excel(writer, sheet_name="Horarios", index=False)
    logger.info("Backup rendered: %d students, %d schedules", len(students_df), len(schedules_df))
    return output.getvalue()


# --- PDF ---

def _event_time(created_at):
    try:
        return datetime.datetime.fromisoformat(str(created_at)).strftime('%H:%M')
    except ValueError:
        return '-'


def render_report_pdf(summary, limit=DEFAULT_PDF_DETAIL_LIMIT, school_name=DEFAULT_SCHOOL_NAME,
                      generated_at=None):
    """
    A4 report: title, filters, summary table and the ``limit`` most recent events.

    Only the newest ``limit`` events are listed; the summary table always
    covers the whole period.
    """
    generated_at = generated_at or datetime.datetime.now()
    styles = _styles()
    sede_label, grupo_label = _scope_label(summary.sede, summary.grupo)

    elements = [
        Paragraph(escape(school_name), styles['title']),
        Paragraph("Reporte de Asistencia PAE", styles['subtitle']),
        Paragraph(f"Generado: {generated_at.strftime('%d/%m/%Y %H:%M')}", styles['centered']),
        Spacer(1, 8),
        Paragraph(
            f"<b>Periodo:</b> {escape(summary.period.label)} ({_period_text(summary.period)}) &nbsp; "
            f"<b>Sede:</b> {escape(sede_label)} &nbsp; <b>Grupo:</b> {escape(grupo_label)}",
            styles['normal']),
        Spacer(1, 10),
    ]

    concept_rows = [
        ['Concepto', 'Valor'],
        ['Estudiantes activos', str(summary.total_active_students)],
        ['Recibieron', str(summary.received_count)],
        ['No recibieron', str(summary.not_received_count)],
        ['Ausentes', str(summary.absent_count)],
        ['Inactivos', str(summary.inactive_count)],
        ['Grupos pendientes', f"{summary.pending_groups_count} de {summary.total_active_groups}"],
        ['% Asistencia', f"{summary.overall_percentage}%"],
    ]
    concept_table = Table(concept_rows, colWidths=[70 * mm, 40 * mm])
    concept_table.setStyle(_grid_style(font_size=10))
    elements.extend([concept_table, Spacer(1, 14)])

    recent = summary.events.sort_values(['fecha', 'created_at'], ascending=False, kind='mergesort').head(limit)
    elements.append(Paragraph(f"Últimos {len(recent)} registros", styles['section']))
    if recent.empty:
        elements.append(Paragraph("No hay registros en el periodo seleccionado.", styles['muted']))
    else:
        detail_rows = [['Estudiante', 'Grupo', 'Estado', 'Hora', 'Fecha']]
        for _, event in recent.iterrows():
            detail_rows.append([
                Paragraph(escape(event['nombre']), styles['normal']),
                event['grupo'],
                OUTCOME_LABELS.get(event['estado'], event['estado']),
                _event_time(event['created_at']),
                date_format(event['fecha']),
            ])
        detail_table = Table(detail_rows, colWidths=[70 * mm, 25 * mm, 30 * mm, 20 * mm, 25 * mm],
                             repeatRows=1)
        detail_table.setStyle(_grid_style(font_size=8))
        elements.append(detail_table)
        if len(summary.events) > limit:
            elements.append(Spacer(1, 6))
            elements.append(Paragraph(
                f"Se muestran los {limit} registros más recientes de {len(summary.events)}.",
                styles['muted']))

    return _build_pdf(elements, title="Reporte PAE")


def _group_student_count(group, student_counts):
    """Combined 'A+B' groups add up the members of each part."""
    if not student_counts:
        return None
    parts = [part.strip() for part in str(group).split('+')]
    counts = [student_counts.get(part) for part in parts]
    if all(count is None for count in counts):
        return None
    return sum(count or 0 for count in counts)


def render_schedule_pdf(items, date, student_counts=None, school_name=DEFAULT_SCHOOL_NAME):
    """
    One day's meal-shift schedule with the institutional reminders.

    Args:
        items (list): ScheduleItem dicts with 'time', 'group' and 'notes'.
        date (str/date): Service day.
        student_counts (dict, optional): Active students per group.
    """
    styles = _styles()
    elements = [
        Paragraph(escape(school_name), styles['title']),
        Paragraph("Horario de Restaurante Escolar", styles['subtitle']),
        Paragraph(f"Fecha: {date_format(date)}", styles['centered']),
        Spacer(1, 10),
    ]

    rows = [['Bloque / Hora', 'Grupo', 'Estudiantes', 'Menú / Observaciones']]
    for item in items:
        count = _group_student_count(item.get('group'), student_counts)
        rows.append([
            item.get('time') or '-',
            item.get('group') or '-',
            str(count) if count else '-',
            Paragraph(escape(item.get('notes') or '-'), styles['normal']),
        ])
    table = Table(rows, colWidths=[35 * mm, 35 * mm, 30 * mm, 80 * mm], repeatRows=1)
    table.setStyle(_grid_style(font_size=10))
    elements.extend([table, Spacer(1, 14)])

    elements.extend([
        Paragraph("NOTA: ESTAR ATENTOS A LAS NOVEDADES.", styles['bold']),
        Paragraph("CONSEJO ACADÉMICO DE DOCENTES", styles['bold']),
        Spacer(1, 6),
        Paragraph("RECORDEMOS QUE EL HORARIO DE BACHILLERATO DE 7 A.M A 1.00. PM", styles['normal']),
        Spacer(1, 4),
        Paragraph("RECUERDA", styles['bold']),
    ])
    elements.extend(Paragraph(reminder, styles['normal']) for reminder in SCHEDULE_REMINDERS)
    elements.extend([
        Spacer(1, 8),
        Paragraph("Equipo directivo", styles['bold']),
        Paragraph("I.E Barro Blanco", styles['bold']),
    ])
    return _build_pdf(elements, canvasmaker=GeneratedByCanvas, title="Horario de Restaurante Escolar")


def weekly_time_label(item):
    time = item.get('time') or ''
    if time == NO_SHOW_MARKER:
        return "NO ASISTE"
    return time.split(' - ')[0] or '-'


def render_weekly_schedule_pdf(days, week_start, school_name=DEFAULT_SCHOOL_NAME):
    """
    Monday-Friday consolidated schedule.

    Args:
        days (list): Dicts with 'date' and 'items', as returned by load_week().
        week_start (date): Monday of the week.
    """
    styles = _styles()
    week_end = week_start + datetime.timedelta(days=4)
    week_range = f"{spanish_day_label(week_start)} - {spanish_day_label(week_end)}"

    elements = [
        Paragraph(escape(school_name), styles['title']),
        Paragraph("Consolidado Semanal de Novedades PAE", styles['subtitle']),
        Paragraph(f"Semana: {week_range}", styles['centered']),
        Spacer(1, 10),
    ]

    for day in days:
        label = day.get('label') or spanish_day_label(day['date'])
        elements.append(Paragraph(escape(label.upper()), styles['section']))
        if day.get('items'):
            rows = [['Grupo', 'Hora / Acción', 'Novedad / Observación']]
            for item in day['items']:
                rows.append([
                    item.get('group') or '-',
                    weekly_time_label(item),
                    Paragraph(escape(item.get('notes') or 'Normal'), styles['normal']),
                ])
            table = Table(rows, colWidths=[40 * mm, 35 * mm, 105 * mm], repeatRows=1)
            table.setStyle(_grid_style(header_color=SUBTITLE_COLOR, font_size=8, striped=False))
            elements.append(table)
        else:
            elements.append(Paragraph("Sin novedades registradas para este día.", styles['muted']))
        elements.append(Spacer(1, 8))

    elements.extend([
        Spacer(1, 6),
        Paragraph("RECUERDA: Puntualidad y uso adecuado del uniforme.", styles['bold']),
        Paragraph("Equipo directivo - I.E Barro Blanco", styles['bold']),
    ])
    return _build_pdf(elements, title="Consolidado Semanal de Novedades PAE")
