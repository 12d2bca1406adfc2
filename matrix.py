import logging

import pandas as pd

from aggregation import percentage
from periods import business_dates
from utils import (ABSENT, ACTIVE, NO_DATA_GLYPH, NOT_RECEIVED, NOT_RECORDED_LABEL,
                   OUTCOME_GLYPHS, OUTCOME_LABELS, RECEIVED, group_sort_key,
                   matrix_column_label, parse_date)

logger = logging.getLogger(__name__)

DETAIL_COLUMNS = ['Estudiante', 'Estado', 'Novedad', 'Descripción']
TOTAL_RECEIVED_COLUMN = 'Total Recibió'
PERCENT_COLUMN = '%'
BAND_COLUMN = 'Desempeño'

PERFORMANCE_BANDS = [
    (90, 'Excelente'),
    (70, 'Bueno'),
    (50, 'Regular'),
]
LOWEST_BAND = 'Crítico'


def performance_band(pct):
    for threshold, label in PERFORMANCE_BANDS:
        if pct >= threshold:
            return label
    return LOWEST_BAND


def _report_students(students, events):
    """Active students plus anyone who has an event in range, sorted by name."""
    with_events = set(events['estudiante_id'])
    mask = (students['estado'] == ACTIVE) | students['id'].isin(with_events)
    return students[mask].sort_values('nombre', kind='mergesort').reset_index(drop=True)


def build_daily_detail(summary, date=None):
    """
    One row per student of the filtered group for a single day.

    Args:
        summary (AttendanceSummary): Result of aggregate().
        date (str/date, optional): Day to list, defaults to the period start.

    Returns:
        DataFrame: Estudiante, Estado, Novedad, Descripción. Students without
        an event that day are labeled 'Sin registro'.
    """
    day = parse_date(date or summary.period.start_date).isoformat()
    day_events = summary.events[summary.events['fecha'] == day]
    by_student = {row['estudiante_id']: row for _, row in day_events.iterrows()}

    rows = []
    for _, student in _report_students(summary.students, day_events).iterrows():
        event = by_student.get(student['id'])
        if event is None:
            rows.append([student['nombre'], NOT_RECORDED_LABEL, '', ''])
        else:
            rows.append([
                student['nombre'],
                OUTCOME_LABELS.get(event['estado'], event['estado']),
                event['novedad_tipo'],
                event['novedad_descripcion'],
            ])
    return pd.DataFrame(rows, columns=DETAIL_COLUMNS)


def build_attendance_matrix(summary):
    """
    Student x business-day matrix for the period.

    Columns follow business_dates() exactly. The percentage is received days
    over the days on which the student's group recorded anything. Enrollment
    dates are not tracked, so a student added mid period shows '-' before
    joining.
    """
    dates = [d.isoformat() for d in business_dates(summary.period.start_date, summary.period.end_date)]
    day_columns = [matrix_column_label(d) for d in dates]
    events = summary.events[summary.events['fecha'].isin(dates)]

    outcome_by_key = {(row['estudiante_id'], row['fecha']): row['estado'] for _, row in events.iterrows()}
    recorded_days = events.groupby('grupo')['fecha'].nunique().to_dict()
    show_group = not summary.has_group_filter

    rows = []
    for _, student in _report_students(summary.students, events).iterrows():
        row = {'Estudiante': student['nombre']}
        if show_group:
            row['Grupo'] = student['grupo']
        received = 0
        for fecha, column in zip(dates, day_columns):
            state = outcome_by_key.get((student['id'], fecha))
            row[column] = OUTCOME_GLYPHS.get(state, NO_DATA_GLYPH)
            if state == RECEIVED:
                received += 1
        pct = percentage(received, recorded_days.get(student['grupo'], 0))
        row[TOTAL_RECEIVED_COLUMN] = received
        row[PERCENT_COLUMN] = pct
        row[BAND_COLUMN] = performance_band(pct)
        rows.append(row)

    leading = ['Estudiante', 'Grupo'] if show_group else ['Estudiante']
    columns = leading + day_columns + [TOTAL_RECEIVED_COLUMN, PERCENT_COLUMN, BAND_COLUMN]
    logger.debug("Matrix built: %d students x %d days", len(rows), len(dates))
    return pd.DataFrame(rows, columns=columns)


def _state_counts(events, key):
    """{(scope, estado): count}"""
    if events.empty:
        return {}
    return events.groupby([key, 'estado']).size().to_dict()


def _consolidated(students, events, key, label):
    active_totals = students[students['estado'] == ACTIVE].groupby(key).size()
    counts = _state_counts(events, key)
    recorded_days = events.groupby(key)['fecha'].nunique()

    rows = []
    for scope in sorted(active_totals.index, key=group_sort_key):
        if scope == '':
            continue
        total = int(active_totals[scope])
        received = int(counts.get((scope, RECEIVED), 0))
        days = int(recorded_days.get(scope, 0))
        rows.append({
            label: scope,
            'Estudiantes activos': total,
            OUTCOME_LABELS[RECEIVED]: received,
            OUTCOME_LABELS[NOT_RECEIVED]: int(counts.get((scope, NOT_RECEIVED), 0)),
            OUTCOME_LABELS[ABSENT]: int(counts.get((scope, ABSENT), 0)),
            'Días con registro': days,
            PERCENT_COLUMN: percentage(received, total * days),
        })
    columns = [label, 'Estudiantes activos', OUTCOME_LABELS[RECEIVED], OUTCOME_LABELS[NOT_RECEIVED],
               OUTCOME_LABELS[ABSENT], 'Días con registro', PERCENT_COLUMN]
    return pd.DataFrame(rows, columns=columns)


def build_site_summary(summary):
    """One row per site, percentage against active students x recorded days."""
    return _consolidated(summary.site_students, summary.site_events, 'sede', 'Sede')


def build_group_summary(summary):
    """One row per group, percentage against active students x recorded days."""
    return _consolidated(summary.site_students, summary.site_events, 'grupo', 'Grupo')
