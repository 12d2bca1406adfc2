import logging

import pandas as pd
import streamlit as st

from aggregation import recent_receipt_rate, student_history
from bulk_import import (backup_filename, build_backup, change_group_site, import_roster,
                         move_students, rename_group, set_student_status)
from config import check_auth, get_store, school_today, settings, setup_page
from errors import PaeError
from exporters import XLSX_MIME
from utils import ACTIVE, INACTIVE, OUTCOME_LABELS, date_format, group_sort_key

logger = logging.getLogger(__name__)

# --- Login Check ---
check_auth(admin_only=True)

setup_page("Administración")


@st.cache_data(ttl=60)
def load_roster_df():
    return pd.DataFrame(get_store().list_students(),
                        columns=['id', 'nombre', 'matricula', 'grado', 'grupo', 'sede', 'estado'])


def run_action(action, success_message, *args):
    """Run one bulk action and report it in a single message."""
    try:
        affected = action(get_store(), *args)
    except PaeError as e:
        st.error(e.message)
        return
    st.success(f"{success_message} ({affected} estudiantes)")
    st.cache_data.clear()


try:
    roster = load_roster_df()
except PaeError as e:
    st.error(e.message)
    st.stop()

all_groups = sorted(set(roster['grupo'].dropna()) - {''}, key=group_sort_key)
sedes = settings["school"]["sedes"]

tab_import, tab_move, tab_rename, tab_sede, tab_status, tab_search, tab_backup = st.tabs(
    ["Carga masiva", "Mover", "Renombrar", "Sede", "Estado", "Buscar", "Respaldo"])

with tab_import:
    st.write("Suba el Excel de matrícula (.xlsx). Cada hoja puede ser un grupo; los encabezados se buscan en las primeras 25 filas.")
    uploaded = st.file_uploader("Archivo Excel", type=["xlsx"], key="roster_upload")
    inactivate_first = st.checkbox("Inactivar todos los estudiantes actuales antes de cargar", key="roster_inactivate")
    if uploaded is not None and st.button("Iniciar carga", type="primary", key="roster_import_btn"):
        progress_bar = st.progress(0, text="Procesando lotes...")
        try:
            result = import_roster(
                get_store(), uploaded,
                inactivate_first=inactivate_first,
                batch_size=settings["reports"]["batch_size"],
                known_sites=sedes,
                progress=lambda done, total: progress_bar.progress(done / total, text=f"{done} de {total}"),
            )
        except PaeError as e:
            st.error(e.message)
        else:
            if result.has_errors:
                st.warning(f"{result.message} Correctos: {result.success_count}, con error: {result.error_count}.")
            else:
                st.success(result.message)
            st.cache_data.clear()

with tab_move:
    options = roster.sort_values('nombre')
    labels = {row['id']: f"{row['nombre']} ({row['matricula']}) - {row['grupo']}" for _, row in options.iterrows()}
    selected = st.multiselect("Estudiantes", list(labels), format_func=labels.get, key="move_students")
    target = st.selectbox("Grupo destino", all_groups, key="move_target") if all_groups else None
    new_target = st.text_input("...o escriba un grupo nuevo", key="move_new_target")
    if st.button("Mover estudiantes", key="move_btn", disabled=not selected):
        run_action(move_students, "Estudiantes movidos con éxito", selected, new_target.strip() or target)

with tab_rename:
    rename_sede = st.radio("Sede", sedes, horizontal=True, key="rename_sede")
    site_groups = sorted(set(roster.loc[roster['sede'] == rename_sede, 'grupo']) - {''}, key=group_sort_key)
    old_name = st.selectbox("Grupo actual", site_groups, key="rename_old") if site_groups else None
    new_name = st.text_input("Nuevo nombre", key="rename_new")
    if st.button("Renombrar grupo", key="rename_btn", disabled=not old_name):
        run_action(rename_group, "Grupo renombrado con éxito", old_name, new_name)

with tab_sede:
    sede_group = st.selectbox("Grupo", all_groups, key="sede_group") if all_groups else None
    new_sede = st.selectbox("Nueva sede", sedes, key="sede_new")
    if st.button("Cambiar sede", key="sede_btn", disabled=not sede_group):
        run_action(change_group_site, "Sede actualizada con éxito", sede_group, new_sede)

with tab_status:
    status_group = st.selectbox("Grupo", all_groups, key="status_group") if all_groups else None
    members = roster[roster['grupo'] == status_group].sort_values('nombre')
    status_labels = {row['id']: f"{row['nombre']} · {row['estado']}" for _, row in members.iterrows()}
    chosen = st.multiselect("Estudiantes", list(status_labels), format_func=status_labels.get, key="status_students")
    s1, s2 = st.columns(2)
    with s1:
        if st.button("Activar", key="status_activate", disabled=not chosen):
            run_action(set_student_status, "Estado actualizado", chosen, ACTIVE)
    with s2:
        if st.button("Inactivar", key="status_inactivate", disabled=not chosen, type="primary"):
            run_action(set_student_status, "Estado actualizado", chosen, INACTIVE)

with tab_search:
    query = st.text_input("Buscar por nombre o matrícula", key="search_query").strip().upper()
    if query:
        matches = roster[roster['nombre'].str.upper().str.contains(query, regex=False, na=False)
                         | roster['matricula'].astype(str).str.contains(query, regex=False, na=False)]
        st.dataframe(matches.drop(columns=['id']), hide_index=True, use_container_width=True)
        if len(matches) == 1:
            student = matches.iloc[0]
            try:
                history = student_history(get_store(), student["id"], days=30, today=school_today())
            except PaeError as e:
                st.error(e.message)
            else:
                st.metric("Recibió (últimos 30 días)", f"{recent_receipt_rate(history)}%")
                if history.empty:
                    st.caption("Sin registros en los últimos 30 días.")
                else:
                    st.dataframe(pd.DataFrame({
                        'Fecha': history['fecha'].map(date_format),
                        'Estado': history['estado'].map(lambda s: OUTCOME_LABELS.get(s, s)),
                        'Novedad': history['novedad_tipo'],
                        'Descripción': history['novedad_descripcion'],
                    }), hide_index=True, use_container_width=True)

with tab_backup:
    st.write("Descarga todos los estudiantes y horarios guardados.")
    if st.button("Preparar respaldo", key="backup_btn"):
        try:
            st.session_state.backup_file = build_backup(get_store())
        except PaeError as e:
            st.error(e.message)
    if st.session_state.get('backup_file'):
        st.download_button(
            "Descargar respaldo",
            data=st.session_state.backup_file,
            file_name=backup_filename(school_today()),
            mime=XLSX_MIME,
            key="backup_download",
        )
