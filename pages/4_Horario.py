import pandas as pd
import streamlit as st

from config import check_auth, get_store, is_admin, school_today, settings, setup_page
from errors import PaeError
from exporters import PDF_MIME, render_schedule_pdf, render_weekly_schedule_pdf
from periods import week_bounds
from schedule_utils import (NO_SHOW_MARKER, active_counts_by_group, generate_time_slots,
                            is_break_time, load_schedule, load_week, process_groups,
                            save_schedule)
from utils import ACTIVE, date_format, spanish_day_label

# --- Login Check ---
check_auth()

setup_page("Horario de Restaurante")


@st.cache_data(ttl=300)
def load_group_data():
    students = get_store().list_students()
    groups = process_groups(s.get('grupo') for s in students if s.get('estado') == ACTIVE)
    return [g.label for g in groups], active_counts_by_group(students)


try:
    group_labels, student_counts = load_group_data()
except PaeError as e:
    st.error(e.message)
    st.stop()

slots = [s for s in generate_time_slots() if not is_break_time(s)] + [NO_SHOW_MARKER]

tab_day, tab_week = st.tabs(["Horario del día", "Semana"])

with tab_day:
    fecha = st.date_input("Fecha", value=school_today(), key="horario_fecha", format="DD/MM/YYYY")
    st.caption(spanish_day_label(fecha))
    try:
        items = load_schedule(get_store(), fecha)
    except PaeError as e:
        st.error(e.message)
        items = []

    schedule_df = pd.DataFrame(items, columns=['time', 'group', 'notes'])
    edited = st.data_editor(
        schedule_df,
        key=f"horario_editor_{fecha.isoformat()}",
        num_rows="dynamic" if is_admin() else "fixed",
        disabled=not is_admin(),
        hide_index=True,
        use_container_width=True,
        column_config={
            'time': st.column_config.SelectboxColumn("Hora", options=slots),
            'group': st.column_config.TextColumn("Grupo", help="Use 'A+B' para grupos combinados"),
            'notes': st.column_config.TextColumn("Menú / Observaciones"),
        },
    )
    parts = {part.strip() for value in edited['group'].dropna() for part in str(value).split('+')}
    unknown = sorted(parts - set(group_labels) - {''})
    if unknown:
        st.warning(f"Grupos sin estudiantes activos: {', '.join(unknown)}")

    d1, d2 = st.columns(2)
    with d1:
        if is_admin() and st.button("Guardar horario", type="primary", key="horario_guardar"):
            try:
                saved = save_schedule(get_store(), fecha, edited.fillna('').to_dict('records'))
            except PaeError as e:
                st.error(e.message)
            else:
                st.success(f"Horario del {date_format(fecha)} guardado ({len(saved)} turnos).")
    with d2:
        if not schedule_df.empty:
            st.download_button(
                "Descargar PDF",
                data=render_schedule_pdf(items, fecha, student_counts, school_name=settings["school"]["name"]),
                file_name=f"Horario_Restaurante_{fecha.isoformat()}.pdf",
                mime=PDF_MIME,
                key="horario_pdf",
            )

with tab_week:
    day = st.date_input("Semana de", value=school_today(), key="horario_semana", format="DD/MM/YYYY")
    monday, _ = week_bounds(day)
    try:
        week = load_week(get_store(), monday)
    except PaeError as e:
        st.error(e.message)
        st.stop()

    for entry in week:
        st.markdown(f"**{entry['label']}**")
        if entry['items']:
            st.dataframe(pd.DataFrame(entry['items']).rename(
                columns={'time': 'Hora', 'group': 'Grupo', 'notes': 'Novedad'}),
                hide_index=True, use_container_width=True)
        else:
            st.caption("Sin novedades registradas para este día.")

    st.download_button(
        "Descargar consolidado semanal",
        data=render_weekly_schedule_pdf(week, monday, school_name=settings["school"]["name"]),
        file_name=f"Horario_Semanal_{monday.isoformat()}.pdf",
        mime=PDF_MIME,
        key="horario_semana_pdf",
    )
