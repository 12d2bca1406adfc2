import logging

import pandas as pd
import streamlit as st

from aggregation import aggregate, report_guard
from config import check_auth, get_store, school_now, school_today, settings, setup_page
from errors import PaeError
from exporters import (PDF_MIME, XLSX_MIME, render_report_pdf, render_report_workbook,
                       report_filename)
from matrix import (build_attendance_matrix, build_daily_detail, build_group_summary,
                    build_site_summary)
from periods import PERIOD_DATE, PERIOD_LABELS, resolve_period
from utils import (ABSENT, ALL_GROUPS, ALL_SITES, INACTIVE, NOT_RECEIVED, RECEIVED,
                   date_format, group_sort_key, legend_text)

logger = logging.getLogger(__name__)

# --- Login Check ---
check_auth()

setup_page("Reportes PAE")

BREAKDOWN_TITLES = {
    RECEIVED: "Recibieron",
    NOT_RECEIVED: "No recibieron",
    ABSENT: "Ausentes",
    INACTIVE: "Inactivos",
}


@st.cache_data(ttl=300)
def load_group_options(sede):
    students = get_store().list_students(sede=None if sede == ALL_SITES else sede)
    return sorted({s.get('grupo') for s in students if s.get('grupo')}, key=group_sort_key)


# --- Filters ---
col1, col2 = st.columns(2)
with col1:
    sede = st.selectbox(
        "Sede",
        [ALL_SITES] + settings["school"]["sedes"],
        format_func=lambda s: "Todas las sedes" if s == ALL_SITES else s,
        key="reporte_sede",
    )
with col2:
    try:
        group_options = load_group_options(sede)
    except PaeError as e:
        st.error(e.message)
        group_options = []
    grupo = st.selectbox(
        "Grupo",
        [ALL_GROUPS] + group_options,
        format_func=lambda g: "Todos los grupos" if g == ALL_GROUPS else g,
        key="reporte_grupo",
    )

tag = st.radio("Periodo", list(PERIOD_LABELS), format_func=PERIOD_LABELS.get, horizontal=True, key="reporte_periodo")
specific_date = None
if tag == PERIOD_DATE:
    specific_date = st.date_input("Fecha", value=school_today(), key="reporte_fecha", format="DD/MM/YYYY")

if st.button("Generar Reporte", type="primary", key="generate_report_btn"):
    try:
        period = resolve_period(tag, specific_date, today=school_today())
        with report_guard(f"{st.session_state.get('email')}:{sede}:{grupo}:{tag}"):
            with st.spinner(f"Procesando asistencia del {date_format(period.start_date)} al {date_format(period.end_date)}..."):
                st.session_state.report_summary = aggregate(
                    get_store(), period, sede=sede, grupo=grupo,
                    excluded_group_pattern=settings["reports"]["excluded_group_pattern"],
                )
    except PaeError as e:
        st.error(e.message)

summary = st.session_state.get('report_summary')
if summary is None:
    st.info("Seleccione los filtros y presione 'Generar Reporte'.")
    st.stop()

period = summary.period
st.caption(f"{period.label}: {date_format(period.start_date)} - {date_format(period.end_date)} · "
           f"{period.business_days} día(s) hábil(es)")

# --- Stat cards ---
c1, c2, c3, c4, c5 = st.columns(5)
c1.metric("Recibieron", summary.received_count, f"{summary.overall_percentage}%")
c2.metric("No recibieron", summary.not_received_count)
c3.metric("Ausentes", summary.absent_count)
c4.metric("Inactivos", summary.inactive_count)
pending_share = round(summary.pending_groups_count / summary.total_active_groups * 100) if summary.total_active_groups else 0
c5.metric("Grupos pendientes", summary.pending_groups_count, f"{pending_share}% sin reportar", delta_color="inverse")

# --- Group breakdown ---
st.subheader("Detalle por grupo")
tabs = st.tabs(list(BREAKDOWN_TITLES.values()) + ["Pendientes"])
for tab, (state, title) in zip(tabs, BREAKDOWN_TITLES.items()):
    with tab:
        rows = [{'Grupo': g.grupo, 'Cantidad': g.count, 'Activos': g.total, '%': g.percentage}
                for g in summary.groups[state]]
        if rows:
            st.dataframe(pd.DataFrame(rows), hide_index=True, use_container_width=True)
        else:
            st.caption(f"Sin registros de '{title}' en el periodo.")
with tabs[-1]:
    if summary.pending_groups:
        st.dataframe(
            pd.DataFrame([{'Grupo': p.grupo, 'Estudiantes activos': p.total} for p in summary.pending_groups]),
            hide_index=True, use_container_width=True,
        )
    else:
        st.success("Todos los grupos activos reportaron asistencia.")

# --- Detail / matrix ---
detail = None
detail_title = None
if summary.has_group_filter:
    st.divider()
    if period.is_single_day:
        detail = build_daily_detail(summary, period.start_date)
        detail_title = f"Detalle del grupo {summary.grupo} - {date_format(period.start_date)}"
    else:
        detail = build_attendance_matrix(summary)
        detail_title = f"Matriz de asistencia del grupo {summary.grupo}"
        st.caption(legend_text())
    st.subheader(detail_title)
    st.dataframe(detail, hide_index=True, use_container_width=True)

# --- Exports ---
st.divider()
st.subheader("Exportar")
try:
    workbook = render_report_workbook(
        summary, build_site_summary(summary), build_group_summary(summary),
        detail=detail, detail_title=detail_title,
        school_name=settings["school"]["name"], generated_at=school_now(),
        max_column_width=settings["reports"]["max_column_width"],
    )
    pdf = render_report_pdf(summary, limit=settings["reports"]["pdf_detail_limit"],
                            school_name=settings["school"]["name"], generated_at=school_now())
except (ValueError, KeyError) as e:
    logger.error("Report export failed", exc_info=True)
    st.error(f"No se pudo generar el archivo: {e}")
else:
    e1, e2 = st.columns(2)
    with e1:
        st.download_button(
            "Descargar Excel",
            data=workbook,
            file_name=report_filename(summary.sede, period.tag, period.start_date, "xlsx"),
            mime=XLSX_MIME,
            key="download_report_xlsx",
        )
    with e2:
        st.download_button(
            "Descargar PDF",
            data=pdf,
            file_name=report_filename(summary.sede, period.tag, period.start_date, "pdf"),
            mime=PDF_MIME,
            key="download_report_pdf",
        )
