import logging

import pandas as pd
import streamlit as st

from aggregation import exclude_provisional_groups, students_frame
from config import check_auth, get_store, school_now, school_today, settings, setup_page
from errors import PaeError
from utils import (ACTIVE, INCIDENT_TYPES, OUTCOME_LABELS, RECEIVED, date_format,
                   group_sort_key, spanish_day_label)

logger = logging.getLogger(__name__)

# --- Login Check ---
check_auth()

setup_page("Registro de Asistencia PAE")

LABEL_TO_STATE = {label: state for state, label in OUTCOME_LABELS.items()}


@st.cache_data(ttl=60)
def load_site_roster(sede):
    students = get_store().list_students(sede=sede)
    return exclude_provisional_groups(students_frame(students), settings["reports"]["excluded_group_pattern"])


def load_day_events(fecha, sede, grupo):
    events = get_store().list_attendance(fecha, fecha, sede=sede, grupo=grupo)
    return {e['estudiante_id']: e for e in events}


col1, col2 = st.columns(2)
with col1:
    sede = st.selectbox("Sede", settings["school"]["sedes"], key="registro_sede")
with col2:
    fecha = st.date_input("Fecha", value=school_today(), key="registro_fecha", format="DD/MM/YYYY")

if fecha.weekday() >= 5:
    st.warning("La fecha seleccionada es fin de semana.")

try:
    roster = load_site_roster(sede)
except PaeError as e:
    st.error(e.message)
    st.stop()

groups = sorted(set(roster['grupo']) - {''}, key=group_sort_key)
if not groups:
    st.info("No hay grupos registrados para esta sede.")
    st.stop()

grupo = st.selectbox("Grupo", groups, key="registro_grupo")
students = roster[(roster['grupo'] == grupo) & (roster['estado'] == ACTIVE)].sort_values('nombre')

try:
    existing = load_day_events(fecha.isoformat(), sede, grupo)
except PaeError as e:
    st.error(e.message)
    st.stop()

st.subheader(f"Grupo {grupo} - {spanish_day_label(fecha)}")
st.caption(f"{len(students)} estudiantes activos · {len(existing)} registros guardados para {date_format(fecha)}")

rows = []
for _, student in students.iterrows():
    event = existing.get(student['id'], {})
    rows.append({
        'id': student['id'],
        'Estudiante': student['nombre'],
        'Estado': OUTCOME_LABELS.get(event.get('estado') or RECEIVED),
        'Novedad': event.get('novedad_tipo') or INCIDENT_TYPES[0],
        'Descripción': event.get('novedad_descripcion') or '',
    })
editor_df = pd.DataFrame(rows, columns=['id', 'Estudiante', 'Estado', 'Novedad', 'Descripción'])

edited = st.data_editor(
    editor_df,
    key=f"registro_editor_{grupo}_{fecha.isoformat()}",
    hide_index=True,
    use_container_width=True,
    disabled=['id', 'Estudiante'],
    column_config={
        'id': None,
        'Estado': st.column_config.SelectboxColumn("Estado", options=list(OUTCOME_LABELS.values()), required=True),
        'Novedad': st.column_config.SelectboxColumn("Novedad", options=INCIDENT_TYPES),
        'Descripción': st.column_config.TextColumn("Descripción", max_chars=200),
    },
)

if st.button("Guardar Asistencia", type="primary", key="registro_guardar", disabled=edited.empty):
    saved = 0
    try:
        with st.spinner("Guardando asistencia..."):
            for _, row in edited.iterrows():
                novedad = row['Novedad'] if row['Novedad'] and row['Novedad'] != INCIDENT_TYPES[0] else None
                get_store().upsert_attendance({
                    'estudiante_id': row['id'],
                    'fecha': fecha.isoformat(),
                    'estado': LABEL_TO_STATE[row['Estado']],
                    'novedad_tipo': novedad,
                    'novedad_descripcion': (row['Descripción'] or '').strip() or None,
                    'created_at': school_now().isoformat(timespec='seconds'),
                    'registrado_por': st.session_state.get('email'),
                })
                saved += 1
    except PaeError as e:
        logger.error("Attendance save stopped after %d rows: %s", saved, e)
        st.error(f"{e.message} Se guardaron {saved} de {len(edited)} registros.")
    else:
        st.success(f"Asistencia guardada: {saved} estudiantes del grupo {grupo}.")
        st.cache_data.clear()
