import streamlit as st

from aggregation import load_user_activity
from config import check_auth, get_store, is_admin, setup_page
from errors import PaeError
from utils import date_format

# --- Login Check ---
check_auth()

setup_page("Mi perfil")

email = st.session_state.get('email')
st.write(f"**Correo:** {email}")
st.write(f"**Rol:** {'Administrador' if is_admin() else 'Docente'}")


@st.cache_data(ttl=120)
def load_activity(user_email):
    return load_user_activity(get_store(), user_email)


try:
    activity = load_activity(email)
except PaeError as e:
    st.error(e.message)
    st.stop()

st.subheader("Mi actividad")
c1, c2, c3, c4 = st.columns(4)
c1.metric("Registros", activity.total_records)
c2.metric("Días activos", activity.active_days)
c3.metric("Grupos atendidos", activity.groups_served)
c4.metric("Último registro", date_format(activity.last_record) if activity.last_record else "N/A")
